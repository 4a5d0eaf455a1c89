"""
Plain-text and standalone HTML renderings of an invoice for printing.
The PDF version lives in ``pdf.py``.
"""
from html import escape

from .formatting import format_currency
from .pdf import ISSUER_NAME, ISSUER_TAGLINE

STATUS_COLORS = {
    # status: (background, text)
    "draft": ("#e7e5e4", "#44403c"),
    "paid": ("#dcfce7", "#166534"),
    "unpaid": ("#dbeafe", "#1e40af"),
    "partial": ("#fef3c7", "#92400e"),
    "overdue": ("#fee2e2", "#991b1b"),
    "void": ("#f5f5f4", "#78716c"),
}


def _totals(invoice):
    rows = [("Subtotal", format_currency(invoice.subtotal))]
    if invoice.discount > 0:
        rows.append(("Discount", f"-{format_currency(invoice.discount)}"))
    if invoice.tax > 0:
        rows.append(("Tax", format_currency(invoice.tax)))
    rows.append(("Total", format_currency(invoice.total)))
    if invoice.amount_paid > 0:
        rows.append(("Amount Paid", format_currency(invoice.amount_paid)))
        rows.append(("Balance Due", format_currency(invoice.balance)))
    return rows


def build_invoice_text(invoice, student) -> str:
    lines = [
        f"INVOICE {invoice.invoice_number}",
        f"{ISSUER_NAME}",
        "",
        f"Bill to: {student.name if student else 'Student'}",
    ]
    if student and student.contact_email:
        lines.append(f"Email: {student.contact_email}")
    if student and student.contact_phone:
        lines.append(f"Phone: {student.contact_phone}")
    lines += [
        f"Date: {invoice.created_date:%m/%d/%Y}",
        f"Due: {invoice.due_date:%m/%d/%Y}",
        f"Status: {invoice.status.value}",
        "",
    ]
    for item in invoice.items:
        lines.append(
            f"{item.description}  x{item.quantity.normalize():f} @ {format_currency(item.rate)}"
            f"  {format_currency(item.amount)}"
        )
    lines.append("")
    lines += [f"{label}: {value}" for label, value in _totals(invoice)]
    if invoice.notes:
        lines += ["", f"Notes: {invoice.notes}"]
    return "\n".join(lines) + "\n"


def build_invoice_html(invoice, student) -> str:
    """Self-contained HTML document (inline styles only) ready for print."""
    background, color = STATUS_COLORS.get(invoice.status.value, ("#f5f5f4", "#1c1917"))
    cell = "padding: 8px 12px; border-bottom: 1px solid #e7e5e4;"
    item_rows = "".join(
        f"<tr><td style=\"{cell}\">{escape(item.description)}</td>"
        f"<td style=\"{cell} text-align: center;\">{item.quantity.normalize():f}</td>"
        f"<td style=\"{cell} text-align: right;\">{format_currency(item.rate)}</td>"
        f"<td style=\"{cell} text-align: right; font-weight: 600;\">{format_currency(item.amount)}</td></tr>"
        for item in invoice.items
    )
    total_rows = "".join(
        f"<tr><td style=\"padding: 4px 0; color: #78716c;\">{label}</td>"
        f"<td style=\"padding: 4px 0; text-align: right;\">{value}</td></tr>"
        for label, value in _totals(invoice)
    )
    contact = ""
    if student and student.contact_email:
        contact += f"<p style=\"color: #78716c;\">{escape(student.contact_email)}</p>"
    if student and student.contact_phone:
        contact += f"<p style=\"color: #78716c;\">{escape(student.contact_phone)}</p>"
    notes = ""
    if invoice.notes:
        notes = (
            "<div style=\"margin-top: 32px; border-top: 1px solid #e7e5e4; padding-top: 16px;\">"
            f"<p style=\"font-weight: 600; color: #78716c;\">NOTES</p><p>{escape(invoice.notes)}</p></div>"
        )

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Invoice {escape(invoice.invoice_number)}</title>
  <style>
    * {{ margin: 0; padding: 0; box-sizing: border-box; }}
    body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; color: #1c1917; padding: 40px; max-width: 800px; margin: 0 auto; }}
    @media print {{ body {{ padding: 20px; }} }}
  </style>
</head>
<body>
  <div style="display: flex; justify-content: space-between; margin-bottom: 40px;">
    <div>
      <h1 style="font-size: 28px; color: #0f766e;">{escape(ISSUER_NAME)}</h1>
      <p style="color: #78716c;">{escape(ISSUER_TAGLINE)}</p>
    </div>
    <div style="text-align: right;">
      <h2>INVOICE</h2>
      <p style="color: #78716c;">{escape(invoice.invoice_number)}</p>
    </div>
  </div>
  <div style="display: flex; justify-content: space-between; margin-bottom: 32px;">
    <div>
      <p style="font-size: 12px; font-weight: 600; color: #78716c;">BILL TO</p>
      <p style="font-weight: 600;">{escape(student.name) if student else 'Student'}</p>
      {contact}
    </div>
    <div style="text-align: right;">
      <p>Date: {invoice.created_date:%m/%d/%Y}</p>
      <p>Due: {invoice.due_date:%m/%d/%Y}</p>
      <span style="display: inline-block; padding: 3px 10px; border-radius: 12px; background: {background}; color: {color};">{invoice.status.value}</span>
    </div>
  </div>
  <table style="width: 100%; border-collapse: collapse; margin-bottom: 24px;">
    <thead><tr style="background: #f5f5f4;">
      <th style="padding: 10px 12px; text-align: left;">Description</th>
      <th style="padding: 10px 12px; text-align: center;">Qty</th>
      <th style="padding: 10px 12px; text-align: right;">Rate</th>
      <th style="padding: 10px 12px; text-align: right;">Amount</th>
    </tr></thead>
    <tbody>{item_rows}</tbody>
  </table>
  <table style="margin-left: auto; width: 240px;">{total_rows}</table>
  {notes}
  <div style="margin-top: 48px; text-align: center; color: #a8a29e; font-size: 12px;">
    <p>Thank you for your business!</p>
  </div>
</body>
</html>
"""
