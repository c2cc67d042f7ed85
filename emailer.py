"""SMTP delivery of the transactional mails: OTP, reset link and CSV report."""

import logging
import smtplib
from contextlib import contextmanager
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr
from html import escape
from typing import Iterable, Optional, Sequence, Tuple

from config import Settings, get_settings
from errors import EmailDeliveryError

logger = logging.getLogger(__name__)

APP_NAME = "Expense Tracker"

# (filename, content, mime type)
Attachment = Tuple[str, str, str]


@contextmanager
def _smtp_connection(settings: Settings):
    if settings.smtp_use_ssl:
        server = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=15)
    else:
        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15)
    try:
        if settings.smtp_use_tls and not settings.smtp_use_ssl:
            server.starttls()
        if settings.smtp_user and settings.smtp_password:
            server.login(settings.smtp_user, settings.smtp_password)
        yield server
    finally:
        try:
            server.quit()
        except smtplib.SMTPException:
            logger.debug("SMTP quit failed", exc_info=True)


def build_message(
    *,
    subject: str,
    sender: str,
    recipients: Iterable[str],
    text: str,
    html: Optional[str] = None,
    attachments: Sequence[Attachment] = (),
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = formataddr((APP_NAME, sender))
    msg["To"] = ", ".join(recipients)
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    for filename, content, mime_type in attachments:
        maintype, subtype = mime_type.split("/", 1)
        msg.add_attachment(
            content.encode("utf-8"), maintype=maintype, subtype=subtype, filename=filename
        )
    return msg


def send_email(
    *,
    subject: str,
    recipients: Sequence[str],
    text: str,
    html: Optional[str] = None,
    attachments: Sequence[Attachment] = (),
) -> None:
    """Deliver a mail or raise EmailDeliveryError."""
    settings = get_settings()
    extra = {"component": "email"}

    if settings.mail_suppress_send:
        logger.info("Email suppressed: %r to %s", subject, ", ".join(recipients), extra=extra)
        return
    if not settings.mail_configured:
        raise EmailDeliveryError("Email delivery is not configured")

    msg = build_message(
        subject=subject,
        sender=settings.email_from,
        recipients=recipients,
        text=text,
        html=html,
        attachments=attachments,
    )
    try:
        with _smtp_connection(settings) as smtp:
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Email delivery failed: %s", exc, extra=extra)
        raise EmailDeliveryError("Failed to send email") from exc
    logger.info("Email dispatched: %r to %s", subject, ", ".join(recipients), extra=extra)


def _html_layout(heading: str, body: str) -> str:
    year = datetime.now().year
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: auto;">'
        f"<h1>{APP_NAME}</h1><h2>{heading}</h2>{body}"
        f'<p style="color: #999; font-size: 12px;">&copy; {year} {APP_NAME}</p>'
        "</div>"
    )


def send_otp_email(email: str, name: str, otp: str) -> None:
    minutes = get_settings().otp_expire_minutes
    text = (
        f"Hello {name},\n\n"
        f"Your verification code is {otp}. It expires in {minutes} minutes.\n\n"
        f"If you didn't sign up for {APP_NAME}, you can ignore this email."
    )
    html = _html_layout(
        "Verify your email address",
        f"<p>Hello {escape(name)},</p><p>Use this code to verify your email:</p>"
        f'<p style="font-size: 24px; font-weight: bold; letter-spacing: 3px;">{otp}</p>'
        f"<p>This code expires in {minutes} minutes.</p>",
    )
    send_email(
        subject=f"Verify Your Email - {APP_NAME}", recipients=[email], text=text, html=html
    )


def send_password_reset_email(email: str, name: str, reset_token: str) -> None:
    settings = get_settings()
    reset_url = f"{settings.client_url}/reset-password?token={reset_token}"
    minutes = settings.reset_token_expire_minutes
    text = (
        f"Hello {name},\n\n"
        f"We received a request to reset your password. Open this link to choose a new one:\n"
        f"{reset_url}\n\n"
        f"The link expires in {minutes} minutes. If you didn't request this, ignore this email."
    )
    html = _html_layout(
        "Password reset request",
        f"<p>Hello {escape(name)},</p><p>We received a request to reset your password.</p>"
        f'<p><a href="{reset_url}">Reset Password</a></p>'
        f"<p>If the button doesn't work, paste this link into your browser:<br>{reset_url}</p>"
        f"<p>This link expires in {minutes} minutes.</p>",
    )
    send_email(
        subject=f"Reset Your Password - {APP_NAME}", recipients=[email], text=text, html=html
    )


def send_csv_report_email(email: str, name: str, csv_content: str, filename: str) -> None:
    text = f"Hello {name},\n\nYour expense report is attached ({filename})."
    html = _html_layout(
        "Your expense report",
        f"<p>Hello {escape(name)},</p><p>Your expense report is attached.</p>",
    )
    send_email(
        subject=f"Your Expense Report - {APP_NAME}",
        recipients=[email],
        text=text,
        html=html,
        attachments=[(filename, csv_content, "text/csv")],
    )
