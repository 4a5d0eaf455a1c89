import io
import os
from datetime import datetime, timezone

from reportlab.lib.pagesizes import LETTER
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from .formatting import format_currency

ISSUER_NAME = os.getenv("INVOICE_ISSUER_NAME", "Music Studio")
ISSUER_TAGLINE = os.getenv("INVOICE_ISSUER_TAGLINE", "Music Lesson Studio")

PAGE_TOP = 265 * mm
PAGE_BOTTOM = 25 * mm


def _draw_header(c, invoice):
    c.setFont("Helvetica-Bold", 16)
    c.drawString(20*mm, PAGE_TOP, ISSUER_NAME)
    c.setFont("Helvetica", 10)
    c.drawString(20*mm, PAGE_TOP - 5*mm, ISSUER_TAGLINE)
    c.setFont("Helvetica-Bold", 14)
    c.drawRightString(195*mm, PAGE_TOP, "INVOICE")
    c.setFont("Helvetica", 10)
    c.drawRightString(195*mm, PAGE_TOP - 5*mm, invoice.invoice_number)


def _draw_footer(c):
    c.setFont("Helvetica", 8)
    c.drawString(20*mm, 10*mm, f"Generated {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}")


def build_invoice_pdf(invoice, student) -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=LETTER)

    _draw_header(c, invoice)

    # Bill to / dates
    c.setFont("Helvetica", 11)
    y = PAGE_TOP - 20*mm
    c.drawString(20*mm, y, f"Bill to: {student.name if student else 'Student'}")
    c.drawRightString(195*mm, y, f"Date: {invoice.created_date:%m/%d/%Y}")
    y -= 6*mm
    if student and student.contact_email:
        c.drawString(20*mm, y, student.contact_email)
    c.drawRightString(195*mm, y, f"Due: {invoice.due_date:%m/%d/%Y}")
    y -= 6*mm
    c.drawRightString(195*mm, y, f"Status: {invoice.status.value}")

    # Line items
    y -= 12*mm
    c.setFont("Helvetica-Bold", 10)
    c.drawString(20*mm, y, "Description")
    c.drawRightString(135*mm, y, "Qty")
    c.drawRightString(165*mm, y, "Rate")
    c.drawRightString(195*mm, y, "Amount")
    c.setFont("Helvetica", 10)
    for item in invoice.items:
        y -= 6*mm
        if y < PAGE_BOTTOM:
            _draw_footer(c)
            c.showPage()
            c.setFont("Helvetica", 10)
            y = PAGE_TOP
        c.drawString(20*mm, y, item.description[:70])
        c.drawRightString(135*mm, y, f"{item.quantity.normalize():f}")
        c.drawRightString(165*mm, y, format_currency(item.rate))
        c.drawRightString(195*mm, y, format_currency(item.amount))

    # Totals
    rows = [("Subtotal", format_currency(invoice.subtotal))]
    if invoice.discount > 0:
        rows.append(("Discount", f"-{format_currency(invoice.discount)}"))
    if invoice.tax > 0:
        rows.append(("Tax", format_currency(invoice.tax)))
    rows.append(("Total", format_currency(invoice.total)))
    if invoice.amount_paid > 0:
        rows.append(("Amount paid", format_currency(invoice.amount_paid)))
        rows.append(("Balance due", format_currency(invoice.balance)))

    y -= 6*mm
    for label, value in rows:
        y -= 6*mm
        c.setFont("Helvetica-Bold" if label in ("Total", "Balance due") else "Helvetica", 11)
        c.drawString(130*mm, y, label)
        c.drawRightString(195*mm, y, value)

    if invoice.notes:
        y -= 12*mm
        c.setFont("Helvetica-Bold", 10)
        c.drawString(20*mm, y, "Notes")
        c.setFont("Helvetica", 10)
        c.drawString(20*mm, y - 6*mm, invoice.notes[:100])

    _draw_footer(c)
    c.showPage()
    c.save()

    buffer.seek(0)
    return buffer.getvalue()
