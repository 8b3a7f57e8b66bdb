import logging
from datetime import timedelta

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.core.clock import system_clock
from app.core.exceptions import DuplicateScheduleError, TransientSendError
from app.core.phone import normalize_phone
from app.models.follow_up import ProviderContactFollowUp, ContactFollowUpStatus as C
from app.services.unlock_store import guarded_update, insert_unique

logger = logging.getLogger(__name__)

PROVIDER_FOLLOW_UP_DELAY_MINUTES = 10
BATCH_SIZE = 50

RESPONSES = {"1": "Yes", "2": "Not yet"}

CHECKIN_TEXT = "Have you contacted {client} yet? Reply 1 = Yes, 2 = Not yet"
CONFIRMATIONS = {
    1: "Thanks for letting us know! Glad you made contact.",
    2: "No problem. Keep us updated when you do reach out.",
}


class ProviderContactCheckinEngine:
    """
    Asks the provider, 10 minutes after an unlock, whether they contacted the
    client. The answer is stored for analytics only; nothing branches on it.
    """

    def __init__(self, db: Session, sms, clock=system_clock):
        self.db = db
        self.sms = sms
        self.clock = clock

    def _existing(self, lead_id, provider_id):
        return self.db.query(ProviderContactFollowUp).filter(
            ProviderContactFollowUp.lead_id == lead_id,
            ProviderContactFollowUp.provider_id == provider_id,
        ).first()

    def schedule_follow_up(self, lead_id, provider_id, provider_phone: str, client_name: str = None):
        provider_phone = normalize_phone(provider_phone)
        if not provider_phone:
            logger.info("📅 Provider check-in: No provider phone, skipping")
            return None

        existing = self._existing(lead_id, provider_id)
        if existing:
            logger.info(f"📅 Provider check-in already scheduled for lead {lead_id}, provider {provider_id}")
            return existing

        now = self.clock.now()
        follow_up = ProviderContactFollowUp(
            lead_id=lead_id,
            provider_id=provider_id,
            provider_phone=provider_phone,
            client_name=client_name,
            status=C.SCHEDULED.value,
            send_after=now + timedelta(minutes=PROVIDER_FOLLOW_UP_DELAY_MINUTES),
            created_at=now,
            updated_at=now,
        )
        try:
            insert_unique(self.db, follow_up)
        except DuplicateScheduleError:
            return self._existing(lead_id, provider_id)

        logger.info(f"📅 Scheduled provider check-in for {follow_up.send_after.isoformat()} (lead {lead_id}, provider {provider_id})")
        return follow_up

    def process_due(self) -> int:
        now = self.clock.now()
        due = self.db.query(ProviderContactFollowUp).filter(
            ProviderContactFollowUp.status == C.SCHEDULED.value,
            ProviderContactFollowUp.send_after <= now,
        ).order_by(ProviderContactFollowUp.send_after.asc()).limit(BATCH_SIZE).all()

        if not due:
            return 0

        logger.info(f"📤 Processing {len(due)} provider contact check-ins")
        sent = 0
        for follow_up in due:
            try:
                if self._send(follow_up):
                    sent += 1
            except Exception as e:
                # Row stays SCHEDULED and is picked up again next tick
                logger.error(f"❌ Provider check-in #{follow_up.id}: status write failed: {e}")
                self.db.rollback()
        return sent

    def _send(self, follow_up: ProviderContactFollowUp) -> bool:
        now = self.clock.now()
        message = CHECKIN_TEXT.format(client=follow_up.client_name or "the client")
        try:
            self.sms.send_sms(follow_up.provider_phone, message)
        except TransientSendError as e:
            logger.error(f"❌ Provider check-in #{follow_up.id} failed: {e}")
            guarded_update(
                self.db, ProviderContactFollowUp, follow_up, [C.SCHEDULED], C.FAILED,
                updated_at=now,
            )
            return False

        guarded_update(
            self.db, ProviderContactFollowUp, follow_up, [C.SCHEDULED], C.SENT,
            sent_at=now, updated_at=now,
        )
        logger.info(f"📱 Sent provider check-in to {follow_up.provider_phone} (lead {follow_up.lead_id})")
        return True

    def handle_reply(self, phone: str, text: str) -> dict:
        code = (text or "").strip()
        if code not in RESPONSES:
            return {"handled": False, "reason": "invalid_response"}

        phone = normalize_phone(phone)
        follow_up = None
        if phone:
            follow_up = self.db.query(ProviderContactFollowUp).filter(
                ProviderContactFollowUp.provider_phone == phone,
                ProviderContactFollowUp.status == C.SENT.value,
            ).order_by(ProviderContactFollowUp.sent_at.desc(), ProviderContactFollowUp.id.desc()).first()

        if follow_up is None:
            return {"handled": False, "reason": "no_pending_follow_up"}

        value = int(code)
        now = self.clock.now()
        if not guarded_update(
            self.db, ProviderContactFollowUp, follow_up, [C.SENT], C.RESPONDED,
            responded_at=now, response_value=value, updated_at=now,
        ):
            return {"handled": True, "action": "already_processed"}

        logger.info(f"📝 Provider check-in #{follow_up.id}: {RESPONSES[code]} (lead {follow_up.lead_id})")
        try:
            self.sms.send_sms(follow_up.provider_phone, CONFIRMATIONS[value])
        except TransientSendError as e:
            logger.error(f"❌ Check-in confirmation to {follow_up.provider_phone} failed: {e}")

        return {
            "handled": True,
            "action": "provider_contact_response",
            "response": RESPONSES[code],
            "lead_id": follow_up.lead_id,
            "provider_id": follow_up.provider_id,
        }

    def stats(self, days: int = 30) -> dict:
        since = self.clock.now() - timedelta(days=days)
        F = ProviderContactFollowUp

        def count_when(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        row = self.db.query(
            func.count(F.id).label("total"),
            count_when(F.status == C.SENT.value).label("sent"),
            count_when(F.status == C.RESPONDED.value).label("responded"),
            count_when(F.response_value == 1).label("contacted_yes"),
            count_when(F.response_value == 2).label("contacted_not_yet"),
            count_when(F.status == C.FAILED.value).label("failed"),
        ).filter(F.created_at >= since).one()

        delivered = row.sent + row.responded
        return {
            "total_followups": row.total,
            "sent": row.sent,
            "responded": row.responded,
            "contacted_yes": row.contacted_yes,
            "contacted_not_yet": row.contacted_not_yet,
            "failed": row.failed,
            "response_rate_percent": round(row.responded * 100.0 / delivered, 2) if delivered else None,
            "contact_rate_percent": round(row.contacted_yes * 100.0 / row.responded, 2) if row.responded else None,
        }
