"""Donation receipts and contact-form messages via Resend.

Without RESEND_API_KEY the senders are no-ops returning False, so webhook
processing never depends on email configuration. Delivery failures raise
EmailDeliveryError for the side-effect dispatcher to retry and log.
"""

import html
import logging
from datetime import UTC, datetime
from decimal import Decimal

import resend
from starlette.concurrency import run_in_threadpool

from donations_api.core.config import settings
from donations_api.core.exceptions import EmailDeliveryError
from donations_api.models.donation import Donation
from donations_api.schemas.contact import ContactMessageCreate

logger = logging.getLogger(__name__)

_TYPE_LABELS = {
    "zakaat": "Zakaat",
    "sadqah": "Sadqah",
    "interest": "Interest disposal",
}


def _money(amount: Decimal | None, currency: str) -> str:
    return f"{currency.upper()} {(amount or Decimal('0')):.2f}"


def _receipt_html(donation: Donation) -> str:
    paid = donation.charge_amount if donation.charge_amount is not None else donation.amount
    date_str = donation.completed_at.strftime("%B %d, %Y") if donation.completed_at else ""
    name = donation.donor_name or "friend"
    body = f"""
    <p>Dear {name},</p>
    <p>Thank you for your {_TYPE_LABELS.get(donation.type, donation.type)} donation to
    {settings.ORG_NAME}.</p>
    <p><strong>Donation:</strong> {_money(donation.amount, donation.currency)}</p>
    <p><strong>Total charged:</strong> {_money(paid, donation.currency)}</p>
    <p><strong>Date:</strong> {date_str}</p>
    <p><strong>Reference:</strong> {donation.id}</p>
    """
    return body.strip()


async def _send(to_email: str, subject: str, body: str, reply_to: str | None = None) -> bool:
    if not settings.RESEND_API_KEY or not to_email:
        logger.info("Email to %s skipped: no Resend API key configured", to_email or "<none>")
        return False

    resend.api_key = settings.RESEND_API_KEY
    params = {
        "from": settings.EMAIL_FROM,
        "to": [to_email],
        "subject": subject,
        "html": body,
    }
    if reply_to:
        params["reply_to"] = reply_to
    try:
        await run_in_threadpool(resend.Emails.send, params)
    except Exception as exc:
        raise EmailDeliveryError(f"Failed to send '{subject}' to {to_email}: {exc}") from exc

    logger.info("Email '%s' sent to %s", subject, to_email)
    return True


async def send_donation_receipt(donation: Donation, email: str) -> bool:
    subject = (
        f"Your {settings.ORG_NAME} donation receipt: "
        f"{_money(donation.amount, donation.currency)}"
    )
    return await _send(email, subject, _receipt_html(donation))


async def send_subscription_confirmation(donation: Donation, email: str) -> bool:
    subject = f"Your {donation.frequency} donation to {settings.ORG_NAME} is set up"
    body = (
        _receipt_html(donation)
        + f"""
    <p>Your {donation.frequency} donation of {_money(donation.amount, donation.currency)}
    will be charged automatically. Reply to this email to change or cancel it.</p>
    """.rstrip()
    )
    return await _send(email, subject, body)


async def send_contact_message(message: ContactMessageCreate) -> bool:
    """Forward a contact-form submission to CONTACT_EMAIL_TO, replying to the sender."""
    received = datetime.now(UTC).strftime("%B %d, %Y %H:%M UTC")
    text = html.escape(message.message).replace("\n", "<br>")
    body = f"""
    <h2>New contact form submission</h2>
    <p><strong>Name:</strong> {html.escape(message.name)}</p>
    <p><strong>Email:</strong> {html.escape(message.email)}</p>
    <p><strong>Phone:</strong> {html.escape(message.phone or "Not provided")}</p>
    <p><strong>Subject:</strong> {html.escape(message.subject)}</p>
    <h3>Message</h3>
    <p>{text}</p>
    <p><small>Submitted on {received}</small></p>
    """
    return await _send(
        settings.CONTACT_EMAIL_TO,
        f"New contact form message: {message.subject}",
        body.strip(),
        reply_to=message.email,
    )
