"""
app/services/follow_ups/client_follow_up.py

Client check-in after a reveal ("did the provider reach out?").

    SCHEDULED -> SENT -> YES_REPLIED
                      -> NO_REPLIED -> RECOVERY_OFFERED -> RECOVERY_ACCEPTED (lead requeued)
                                                        -> COMPLETED
    SENT / NO_REPLIED / RECOVERY_OFFERED left unanswered for 24h -> EXPIRED

A NO reply is stored before the recovery offer goes out. If that SMS fails
the row waits in NO_REPLIED and the offer is retried by the next tick or
the client's next message.

Only the scheduler tick moves SCHEDULED -> SENT. A send that succeeds
followed by a failed status write is retried on the next tick, so the
check-in can go out twice in that narrow case.
"""

import logging
import re
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.clock import system_clock
from app.core.exceptions import DuplicateScheduleError, TransientSendError, UnknownPhoneError
from app.core.phone import normalize_phone
from app.models.follow_up import ClientFollowUp, ClientFollowUpStatus as F
from app.models.lead import Lead
from app.services.unlock_store import guarded_update, insert_unique

logger = logging.getLogger(__name__)

FOLLOW_UP_AFTER_BOOKING_MINUTES = 15
FOLLOW_UP_FALLBACK_MINUTES = 30
STALE_AFTER_HOURS = 24
BATCH_SIZE = 10

OPEN_STATES = (F.SENT, F.NO_REPLIED, F.RECOVERY_OFFERED)

YES_PATTERN = re.compile(r"^(Y|YES|YE|YEP|YEAH|YA)$")
NO_PATTERN = re.compile(r"^(N|NO|NAH|NOPE)$")

CHECKIN_TEXT = "Hi {client}, just checking, did {provider} reach out to you yet?\nReply YES or NO."
CHECKIN_RETRY_TEXT = "Sorry, I didn't understand that. Did the provider reach out to you?\nReply YES or NO."
THANKS_TEXT = (
    "Great! If you need anything else, we're here. Have a wonderful experience!\n\n"
    "You can also browse other available providers here:\nhttps://goldtouchlist.com"
)
RECOVERY_OFFER_TEXT = (
    "Thanks for letting us know. Would you like us to connect you with another available "
    "provider in your area?\nReply YES to receive options."
)
RECOVERY_RETRY_TEXT = "Would you like us to connect you with another provider?\nReply YES or NO."
CLOSING_TEXT = (
    "No problem. If you change your mind, feel free to submit a new request at goldtouchlist.com. Thank you!"
)
REQUEST_EXPIRED_TEXT = (
    "We're sorry, this request has expired. Please submit a new request at goldtouchlist.com."
)
NO_PROVIDERS_TEXT = (
    "We're currently looking for available providers in your area. "
    "We'll reach out as soon as someone is available. Thank you for your patience!"
)
CONNECTING_TEXT = "We're connecting you with another available provider now. You should hear from them soon!"
TEAM_FOLLOW_UP_TEXT = (
    "We're looking into available providers for you. Someone from our team will follow up shortly."
)


def classify(text: str) -> str | None:
    """'yes' / 'no' / None for anything outside the fixed vocabulary."""
    normalized = (text or "").strip().upper().rstrip(".!")
    if YES_PATTERN.match(normalized):
        return "yes"
    if NO_PATTERN.match(normalized):
        return "no"
    return None


class ClientFollowUpEngine:
    def __init__(self, db: Session, sms, clock=system_clock, dispatcher=None):
        self.db = db
        self.sms = sms
        self.clock = clock
        # LeadDispatcher; only needed when a client accepts a recovery offer
        self.dispatcher = dispatcher

    # ---------------------------------------------------------
    # 1. SCHEDULING
    # ---------------------------------------------------------
    def _existing(self, lead_id, provider_id):
        return self.db.query(ClientFollowUp).filter(
            ClientFollowUp.lead_id == lead_id,
            ClientFollowUp.provider_id == provider_id,
        ).first()

    def schedule_follow_up(
        self,
        lead_id,
        provider_id,
        client_phone: str,
        booking_time: datetime = None,
        client_name: str = None,
        provider_name: str = None,
    ):
        client_phone = normalize_phone(client_phone)
        if not client_phone:
            logger.info("📞 FollowUp: No client phone, skipping follow-up")
            return None

        existing = self._existing(lead_id, provider_id)
        if existing:
            logger.info(f"📞 FollowUp: Already scheduled for lead {lead_id} / provider {provider_id}")
            return existing

        now = self.clock.now()
        if isinstance(booking_time, datetime) and booking_time > now:
            send_after = booking_time + timedelta(minutes=FOLLOW_UP_AFTER_BOOKING_MINUTES)
        else:
            send_after = now + timedelta(minutes=FOLLOW_UP_FALLBACK_MINUTES)

        follow_up = ClientFollowUp(
            lead_id=lead_id,
            provider_id=provider_id,
            client_phone=client_phone,
            client_name=client_name or "there",
            provider_name=provider_name or "the provider",
            status=F.SCHEDULED.value,
            send_after=send_after,
            created_at=now,
            updated_at=now,
        )
        try:
            insert_unique(self.db, follow_up)
        except DuplicateScheduleError:
            return self._existing(lead_id, provider_id)

        logger.info(f"📞 FollowUp: Scheduled for {client_phone} at {send_after.isoformat()} (lead {lead_id})")
        return follow_up

    # ---------------------------------------------------------
    # 2. SCHEDULER TICK
    # ---------------------------------------------------------
    def process_due(self) -> int:
        now = self.clock.now()
        due = self.db.query(ClientFollowUp).filter(
            ClientFollowUp.status == F.SCHEDULED.value,
            ClientFollowUp.send_after <= now,
        ).order_by(ClientFollowUp.send_after.asc()).limit(BATCH_SIZE).all()

        if not due:
            return self.retry_recovery_offers()

        logger.info(f"📞 FollowUp: Processing {len(due)} scheduled follow-ups")
        sent = 0

        for follow_up in due:
            try:
                message = CHECKIN_TEXT.format(client=follow_up.client_name, provider=follow_up.provider_name)
                self.sms.send_sms(follow_up.client_phone, message)
                guarded_update(
                    self.db, ClientFollowUp, follow_up, [F.SCHEDULED], F.SENT,
                    sent_at=now, updated_at=now,
                )
                sent += 1
                logger.info(f"📞 FollowUp: Sent check-in to {follow_up.client_phone} (follow-up #{follow_up.id})")
            except TransientSendError as e:
                logger.error(f"📞 FollowUp: Send failed for follow-up #{follow_up.id}, retrying next tick: {e}")
            except Exception as e:
                logger.error(f"📞 FollowUp: Error sending follow-up #{follow_up.id}: {e}")
                self.db.rollback()

        return sent + self.retry_recovery_offers()

    def retry_recovery_offers(self) -> int:
        """Re-sends recovery offers whose first SMS failed."""
        waiting = self.db.query(ClientFollowUp).filter(
            ClientFollowUp.status == F.NO_REPLIED.value,
        ).order_by(ClientFollowUp.replied_at.asc()).limit(BATCH_SIZE).all()

        offered = 0
        for follow_up in waiting:
            try:
                if self._offer_recovery(follow_up):
                    offered += 1
            except Exception as e:
                logger.error(f"📞 FollowUp: Error re-offering recovery for #{follow_up.id}: {e}")
                self.db.rollback()
        return offered

    def expire_stale(self) -> int:
        """Open check-ins with no reply for 24h are closed without another message."""
        now = self.clock.now()
        cutoff = now - timedelta(hours=STALE_AFTER_HOURS)
        last_outbound = func.coalesce(ClientFollowUp.recovery_offered_at, ClientFollowUp.sent_at)

        count = self.db.query(ClientFollowUp).filter(
            ClientFollowUp.status.in_([s.value for s in OPEN_STATES]),
            last_outbound < cutoff,
        ).update({"status": F.EXPIRED.value, "updated_at": now}, synchronize_session=False)
        self.db.commit()

        if count:
            logger.info(f"📞 FollowUp: Expired {count} stale follow-ups")
        return count

    # ---------------------------------------------------------
    # 3. INBOUND REPLIES
    # ---------------------------------------------------------
    def find_open(self, phone: str) -> ClientFollowUp:
        normalized = normalize_phone(phone)
        follow_up = None
        if normalized:
            follow_up = self.db.query(ClientFollowUp).filter(
                ClientFollowUp.client_phone == normalized,
                ClientFollowUp.status.in_([s.value for s in OPEN_STATES]),
            ).order_by(ClientFollowUp.sent_at.desc(), ClientFollowUp.id.desc()).first()

        if follow_up is None:
            raise UnknownPhoneError(phone)
        return follow_up

    def handle_reply(self, phone: str, text: str) -> dict:
        try:
            follow_up = self.find_open(phone)
        except UnknownPhoneError:
            return {"handled": False}

        answer = classify(text)
        if follow_up.status == F.NO_REPLIED:
            # The client already said NO; they never got the recovery question
            sent = self._offer_recovery(follow_up)
            action = "no_recovery_offered" if sent else "no_recorded"
        elif follow_up.status == F.SENT:
            action = self._on_checkin_reply(follow_up, answer)
        else:
            action = self._on_recovery_reply(follow_up, answer)
        return {"handled": True, "action": action}

    def _notify(self, follow_up: ClientFollowUp, text: str) -> bool:
        try:
            self.sms.send_sms(follow_up.client_phone, text)
            return True
        except TransientSendError as e:
            logger.error(f"📞 FollowUp #{follow_up.id}: Reply SMS failed: {e}")
            return False

    def _on_checkin_reply(self, follow_up: ClientFollowUp, answer: str | None) -> str:
        now = self.clock.now()

        if answer == "yes":
            if not guarded_update(self.db, ClientFollowUp, follow_up, [F.SENT], F.YES_REPLIED,
                                  replied_at=now, updated_at=now):
                return "already_processed"
            self._notify(follow_up, THANKS_TEXT)
            logger.info(f"📞 FollowUp #{follow_up.id}: Client confirmed provider reached out ✅")
            return "yes_confirmed"

        if answer == "no":
            if not guarded_update(self.db, ClientFollowUp, follow_up, [F.SENT], F.NO_REPLIED,
                                  replied_at=now, updated_at=now):
                return "already_processed"
            if not self._offer_recovery(follow_up):
                return "no_recorded"
            logger.info(f"📞 FollowUp #{follow_up.id}: Client said NO, recovery offered")
            return "no_recovery_offered"

        self._notify(follow_up, CHECKIN_RETRY_TEXT)
        return "unrecognized_resend"

    def _offer_recovery(self, follow_up: ClientFollowUp) -> bool:
        """NO_REPLIED -> RECOVERY_OFFERED once the offer SMS is out."""
        if not self._notify(follow_up, RECOVERY_OFFER_TEXT):
            return False
        now = self.clock.now()
        return guarded_update(self.db, ClientFollowUp, follow_up, [F.NO_REPLIED], F.RECOVERY_OFFERED,
                              recovery_offered_at=now, updated_at=now)

    def _on_recovery_reply(self, follow_up: ClientFollowUp, answer: str | None) -> str:
        now = self.clock.now()

        if answer == "yes":
            if not guarded_update(self.db, ClientFollowUp, follow_up, [F.RECOVERY_OFFERED], F.RECOVERY_ACCEPTED,
                                  replied_at=now, updated_at=now):
                return "already_processed"
            try:
                self.requeue(follow_up)
            except Exception as e:
                logger.error(f"📞 FollowUp #{follow_up.id}: Recovery failed: {e}")
                self.db.rollback()
                self._notify(follow_up, TEAM_FOLLOW_UP_TEXT)
            logger.info(f"📞 FollowUp #{follow_up.id}: Client accepted recovery ✅")
            return "recovery_accepted"

        if answer == "no":
            if not guarded_update(self.db, ClientFollowUp, follow_up, [F.RECOVERY_OFFERED], F.COMPLETED,
                                  replied_at=now, updated_at=now):
                return "already_processed"
            self._notify(follow_up, CLOSING_TEXT)
            logger.info(f"📞 FollowUp #{follow_up.id}: Client declined recovery")
            return "recovery_declined"

        self._notify(follow_up, RECOVERY_RETRY_TEXT)
        return "unrecognized_recovery_resend"

    # ---------------------------------------------------------
    # 4. RECOVERY REQUEUE
    # ---------------------------------------------------------
    def requeue(self, follow_up: ClientFollowUp) -> int:
        """Offers the lead to providers who have not seen it yet. Returns how many were contacted."""
        if self.dispatcher is None:
            raise RuntimeError("Lead requeue needs a LeadDispatcher")

        lead = self.db.get(Lead, follow_up.lead_id)
        if lead is None:
            self._notify(follow_up, REQUEST_EXPIRED_TEXT)
            return 0

        providers = self.dispatcher.find_available_providers(lead)
        if not providers:
            self._notify(follow_up, NO_PROVIDERS_TEXT)
            return 0

        self._notify(follow_up, CONNECTING_TEXT)
        unlocks = self.dispatcher.requeue(lead, providers)
        logger.info(f"📞 FollowUp Recovery: Re-sent lead {lead.id} to {len(unlocks)} new providers")
        return len(unlocks)
