import logging
import os
import smtplib
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM = os.getenv("SMTP_FROM", "noreply@example.org")
SMTP_TLS = os.getenv("SMTP_TLS", "true").lower() == "true"


def mail_enabled() -> bool:
    return bool(SMTP_HOST)


def send_mail(to_addrs: List[str], subject: str, body: str, attachments: Optional[List[Tuple[str, bytes, str]]] = None):
    msg = MIMEMultipart()
    msg["From"] = SMTP_FROM
    msg["To"] = ", ".join(to_addrs)
    msg["Subject"] = subject

    msg.attach(MIMEText(body, "plain", "utf-8"))

    for filename, data, mimetype in (attachments or []):
        main, sub = mimetype.split("/", 1)
        part = MIMEBase(main, sub)
        part.set_payload(data)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", f'attachment; filename="{filename}"')

        msg.attach(part)

    with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
        if SMTP_TLS:
            server.starttls()
        if SMTP_USER and SMTP_PASSWORD:
            server.login(SMTP_USER, SMTP_PASSWORD)
        server.sendmail(SMTP_FROM, to_addrs, msg.as_string())
    logger.info("Sent '%s' to %s", subject, ", ".join(to_addrs))


def send_invoice(invoice, student, pdf_bytes: bytes) -> bool:
    """
    E-mail a finalized invoice to the student (or the parent for minors).
    Returns False when mail is not configured or there is no address.
    """
    address = student.contact_email if student else None
    if not mail_enabled() or not address:
        logger.debug("Invoice %s not e-mailed (mail disabled or no address)", invoice.invoice_number)
        return False
    greeting = student.parent_name if student.is_minor and student.parent_name else student.name
    send_mail(
        to_addrs=[address],
        subject=f"Invoice {invoice.invoice_number}",
        body=(f"Hi {greeting},\n\nAttached is invoice {invoice.invoice_number} for "
              f"{student.name}, due {invoice.due_date:%m/%d/%Y}.\n\nThank you!"),
        attachments=[(f"Invoice_{invoice.invoice_number}.pdf", pdf_bytes, "application/pdf")],
    )
    return True
