"""
Email service for sending estimates, invoices and conversation replies.
Uses Flask-Mail for SMTP integration with UTF-8 support.
"""
import logging
import smtplib
from html import escape
from typing import Optional

from flask import current_app
from flask_mail import Mail, Message

from fieldservice.exceptions import DeliveryError

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Keeps dev and test environments from trying to reach an SMTP server.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def _html_body(body: str, business_name: str) -> str:
    paragraphs = "".join(
        f"<p>{escape(chunk).replace(chr(10), '<br>')}</p>"
        for chunk in body.split("\n\n") if chunk.strip()
    )
    return f"""
    <!DOCTYPE html>
    <html>
    <head><meta charset="UTF-8"></head>
    <body style="font-family: Arial, sans-serif; color: #333;">
        <div style="max-width: 600px; margin: auto; padding: 20px;">
            {paragraphs}
            <hr>
            <p style="font-size: 12px; color: #7F8C8D;">{escape(business_name)}</p>
        </div>
    </body>
    </html>
    """


def send_document_email(
    to_email: str,
    subject: str,
    body: str,
    attachment: Optional[bytes] = None,
    filename: Optional[str] = None,
) -> Optional[str]:
    """
    Send an estimate or invoice by email, with its PDF attached.

    Returns the Message-ID when sent, None when mail is disabled (the send is
    skipped and reported as successful so the workflow is not blocked).

    Raises:
        DeliveryError: if the SMTP server rejects or fails the send.
    """
    logger.info(f"[EMAIL] Preparing '{subject}' for {to_email}")

    if not _mail_enabled():
        logger.warning(f"[MAIL DISABLED] Document email skipped for {to_email}")
        return None

    business_name = current_app.config.get('BUSINESS_NAME', '')
    msg = Message(
        subject=subject,
        recipients=[to_email],
        body=body,
        html=_html_body(body, business_name),
    )
    if attachment is not None:
        msg.attach(filename or 'document.pdf', 'application/pdf', attachment)

    try:
        mail.send(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.exception(f"[EMAIL] Failed to send to {to_email}: {e}")
        raise DeliveryError(f"Email could not be delivered to {to_email}: {e}")

    logger.info(f"[EMAIL] Document email sent to {to_email}")
    return msg.msgId


def send_message_email(to_email: str, subject: str, body: str) -> Optional[str]:
    """Plain conversation reply; same contract as send_document_email."""
    return send_document_email(to_email, subject, body)
