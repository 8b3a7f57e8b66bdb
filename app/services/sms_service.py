import requests
from app.core.config import settings
from app.core.exceptions import TransientSendError
import logging

logger = logging.getLogger(__name__)

# Numbers the carrier will never deliver to
UNDELIVERABLE_ERRORS = [
    "invalid phone",
    "not a valid",
    "blacklisted",
    "unsubscribed",
]


class SMSService:
    def __init__(self):
        self.api_url = settings.TEXTMAGIC_API_URL
        self.username = settings.TEXTMAGIC_USERNAME
        self.api_key = settings.TEXTMAGIC_API_KEY

    def is_enabled(self) -> bool:
        return bool(self.username and self.api_key)

    def send_sms(self, phone: str, text: str) -> dict:
        """
        Sends one SMS. Returns the delivery result on success and raises
        TransientSendError on any failure so the caller keeps its state.
        """
        if not phone:
            raise TransientSendError("No phone number to send to")

        if not self.is_enabled():
            logger.info(f"📵 SMS disabled (missing TEXTMAGIC credentials), skipped message to {phone}")
            return {"skipped": True}

        headers = {
            "X-TM-Username": self.username,
            "X-TM-Key": self.api_key,
            "accept": "application/json",
        }
        payload = {"text": text, "phones": phone.lstrip("+")}

        try:
            response = requests.post(f"{self.api_url}/messages", data=payload, headers=headers, timeout=15)
        except requests.exceptions.ConnectionError as e:
            logger.error(f"🔌 Connection error while texting {phone}: {e}")
            raise TransientSendError(f"CONNECTION_ERROR: {e}") from e
        except requests.exceptions.Timeout as e:
            logger.error(f"⏱️ Timeout while texting {phone}: {e}")
            raise TransientSendError(f"TIMEOUT_ERROR: {e}") from e

        if response.ok:
            data = response.json()
            logger.info(f"✅ SMS queued for {phone} [id={data.get('id')}]")
            return {"success": True, "message_id": data.get("id"), "data": data}

        error_message = response.text.lower()
        if any(err in error_message for err in UNDELIVERABLE_ERRORS):
            logger.warning(f"📭 Undeliverable number {phone}: {response.text}")
            raise TransientSendError(f"UNDELIVERABLE: {response.text}")

        logger.error(f"❌ TextMagic error for {phone}: {response.status_code} {response.text}")
        raise TransientSendError(f"HTTP_{response.status_code}: {response.text}")
