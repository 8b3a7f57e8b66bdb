"""
app/services/email_service.py

ZeptoMail adapter for provider emails. Email is the secondary channel:
every method returns (ok, error) and never raises, so a mail outage can
only be logged, never block an unlock.
"""

import json
import logging

import requests

from app.core.config import settings
from app.services.pricing_service import PricingService

logger = logging.getLogger(__name__)

# Bounce wording that means the address itself is bad
BAD_RECIPIENT_MARKERS = (
    "550",
    "user unknown",
    "does not exist",
    "no such user",
    "invalid address",
    "address not found",
    "recipient rejected",
    "mailbox unavailable",
)

# EM_104: request accepted and queued
QUEUED_CODES = {"EM_104"}

FOOTER = (
    "Gold Touch List provides advertising access to client inquiries. "
    "We do not arrange or guarantee appointments."
)


def _zepto_code(payload: dict) -> str | None:
    data = payload.get("data")
    if isinstance(data, list) and data:
        return data[0].get("code")
    return None


class EmailService:
    def __init__(self):
        self.api_url = settings.ZEPTO_API_URL
        self.api_key = settings.ZEPTO_API_KEY
        self.from_address = settings.ZEPTO_FROM_ADDRESS

    def send_email(self, to_email: str, subject: str, html: str, text: str = None) -> tuple[bool, str | None]:
        if not self.api_key:
            logger.info(f"📭 Email disabled (no ZEPTO_API_KEY), skipped mail to {to_email}")
            return True, "SKIPPED"

        message = {
            "from": {"address": self.from_address},
            "to": [{"email_address": {"address": to_email}}],
            "subject": subject,
            "htmlbody": html,
        }
        if text:
            message["textbody"] = text

        try:
            response = requests.post(
                self.api_url,
                data=json.dumps(message),
                headers={
                    "accept": "application/json",
                    "content-type": "application/json",
                    "authorization": self.api_key,
                },
                timeout=15,
            )
            payload = response.json()
        except requests.exceptions.ConnectionError as e:
            logger.error(f"🔌 Connection error while mailing {to_email}: {e}")
            return False, f"CONNECTION_ERROR: {e}"
        except requests.exceptions.Timeout as e:
            logger.error(f"⏱️ Timeout while mailing {to_email}: {e}")
            return False, f"TIMEOUT_ERROR: {e}"
        except ValueError as e:
            logger.error(f"❌ Unreadable ZeptoMail response for {to_email}: {e}")
            return False, str(e)

        return self._result(to_email, response.status_code, response.ok, payload)

    @staticmethod
    def _result(to_email: str, status_code: int, ok: bool, payload: dict) -> tuple[bool, str | None]:
        code = _zepto_code(payload)
        if ok or (payload.get("message", "").upper() == "OK" and code in QUEUED_CODES):
            logger.info(f"✅ Email queued for {to_email} [code={code}]")
            return True, None

        if status_code in (400, 422) or any(m in str(payload).lower() for m in BAD_RECIPIENT_MARKERS):
            logger.warning(f"📭 Recipient rejected: {to_email}: {payload}")
            return False, f"RECIPIENT_NOT_FOUND: {payload}"

        logger.error(f"❌ ZeptoMail error for {to_email}: {payload}")
        return False, str(payload)

    # ---------------------------------------------------------
    # LEAD EMAILS
    # ---------------------------------------------------------
    def send_accept_email(self, provider, lead, accept_url: str, price_cents: int):
        if not provider.email:
            return True, "SKIPPED"

        price_text = PricingService.format_price(price_cents)
        summary = lead.public_summary()
        subject = f"New Lead Available: Unlock for {price_text}"
        html = (
            f"<h2>New Lead Available</h2>"
            f"<p>Hi {provider.name or 'there'},</p>"
            f"<p>You have a new client request available. Unlock full contact details for "
            f"<strong>{price_text}</strong>.</p>"
            f"<pre>{summary}</pre>"
            f'<p><a href="{accept_url}">Accept &amp; Unlock Full Details</a></p>'
        )
        text = f"New Lead Available\n\nUnlock full contact details for {price_text}.\n\n{summary}\n\nAccept & Unlock: {accept_url}"
        return self.send_email(provider.email, subject, html, text)

    def send_unlocked_details_email(self, provider, lead):
        if not provider.email:
            return True, "SKIPPED"

        details = [
            ("Client", lead.client_name),
            ("Phone", lead.client_phone),
            ("Email", lead.client_email or "Not provided"),
            ("Address", lead.exact_address or lead.city or ""),
            ("Service", lead.service_type),
            ("When", lead.preferred_time_window or "Flexible"),
        ]
        rows = "".join(f"<p><strong>{label}:</strong> {value}</p>" for label, value in details)
        html = (
            f"<h2>Lead Unlocked</h2>"
            f"<p>Hi {provider.name or 'there'},</p>"
            f"<p>Here are the full client details:</p>"
            f"{rows}<p><small>{FOOTER}</small></p>"
        )
        text = "Lead Unlocked\n\n" + "\n".join(f"{label}: {value}" for label, value in details)
        return self.send_email(provider.email, "Lead Unlocked: Full Client Details", html, text)
