"""
app/services/unlock_service.py

The Unlock lifecycle:

    PENDING -> TEASER_SENT -> [Y_RECEIVED] -> PAYMENT_LINK_SENT -> PAID -> REVEALED
                    \\______________\\______________\\____-> EXPIRED | DECLINED

Every move goes through UnlockStore.transition, so a stale caller can never
overwrite a more advanced status. Side effects (teaser SMS, reveal SMS) are
only performed by the caller that wins the guarded update, or before a
guarded update whose failure leaves the row where it was.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.clock import system_clock
from app.core.config import settings
from app.core.exceptions import InvalidTransitionError, LeadClosedError, TransientSendError
from app.core.security import accept_url
from app.models.lead import Lead
from app.models.unlock import Unlock, UnlockStatus as S
from app.services.follow_ups.client_follow_up import ClientFollowUpEngine
from app.services.follow_ups.provider_contact_checkin import ProviderContactCheckinEngine
from app.services.follow_ups.provider_nudge import ProviderNudgeEngine
from app.services.pricing_service import PricingService
from app.services.unlock_store import UnlockStore

logger = logging.getLogger(__name__)

TRANSITIONS = {
    S.PENDING: {S.TEASER_SENT, S.EXPIRED, S.DECLINED},
    S.TEASER_SENT: {S.Y_RECEIVED, S.PAYMENT_LINK_SENT, S.PAID, S.EXPIRED, S.DECLINED},
    S.Y_RECEIVED: {S.PAYMENT_LINK_SENT, S.PAID, S.EXPIRED, S.DECLINED},
    # PAYMENT_LINK_SENT -> PAYMENT_LINK_SENT re-issues a lapsed link
    S.PAYMENT_LINK_SENT: {S.PAYMENT_LINK_SENT, S.PAID, S.EXPIRED, S.DECLINED},
    S.PAID: {S.REVEALED},
    S.REVEALED: set(),
    # A payment that lands after the offer timed out or was declined is still honoured
    S.EXPIRED: {S.PAID},
    S.DECLINED: {S.PAID},
}

OPEN_OFFER = (S.TEASER_SENT, S.Y_RECEIVED, S.PAYMENT_LINK_SENT)
PAYABLE = (S.TEASER_SENT, S.Y_RECEIVED, S.PAYMENT_LINK_SENT, S.EXPIRED, S.DECLINED)
SETTLED = (S.PAID, S.REVEALED)

TEASER_TEXT = (
    "New {service} request in {city}\n"
    "When: {when}\n"
    "Unlock client contact details for {price}.\n"
    "Reply Y to unlock or N to pass."
)
REVEAL_TEXT = (
    "Lead unlocked! Client details:\n"
    "Name: {name}\n"
    "Phone: {phone}\n"
    "Email: {email}\n"
    "Address: {address}\n"
    "Service: {service}\n"
    "When: {when}\n"
    "Please reach out promptly."
)


def check_transition(current, target):
    current, target = S(current), S(target)
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)


def parse_booking_time(value: str | None) -> datetime | None:
    """The intake form sends ISO timestamps or free text like 'Evenings'."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


class UnlockStateMachine:
    def __init__(self, db: Session, sms, email=None, payments=None, clock=system_clock):
        self.db = db
        self.sms = sms
        self.email = email
        self.payments = payments
        self.clock = clock
        self.store = UnlockStore(db, clock)
        self.ttl = timedelta(hours=settings.UNLOCK_TTL_HOURS)

    def _move(self, unlock: Unlock, expected, target, extra_criteria=(), **values) -> bool:
        for current in expected:
            check_transition(current, target)
        return self.store.transition(unlock, expected, target, extra_criteria, **values)

    # ---------------------------------------------------------
    # 1. CREATE
    # ---------------------------------------------------------
    def create_if_absent(self, lead: Lead, provider) -> tuple[Unlock, bool]:
        return self.store.create_if_absent(
            lead.id,
            provider.id,
            price_cents=PricingService.price_for(lead.service_type),
        )

    # ---------------------------------------------------------
    # 2. TEASER
    # ---------------------------------------------------------
    def send_teaser(self, unlock: Unlock) -> bool:
        if unlock.status != S.PENDING:
            logger.info(f"⏭️ Unlock #{unlock.id} is {unlock.status}, teaser not sent")
            return False

        lead, provider = unlock.lead, unlock.provider
        text = TEASER_TEXT.format(
            service=lead.service_type,
            city=lead.city,
            when=lead.preferred_time_window or "Flexible",
            price=PricingService.format_price(unlock.price_cents),
        )
        # Raises TransientSendError -> row stays PENDING
        self.sms.send_sms(provider.phone, text)

        now = self.clock.now()
        moved = self._move(unlock, [S.PENDING], S.TEASER_SENT, teaser_sent_at=now, ttl_expires_at=now + self.ttl)
        if not moved:
            return False

        logger.info(f"📨 Teaser sent for lead {lead.id} to provider {provider.id}")
        ProviderNudgeEngine(self.db, self.sms, self.clock).schedule_reminder(lead.id, provider.id, provider.phone)
        self._send_accept_email(unlock)
        return True

    def _send_accept_email(self, unlock: Unlock):
        if not self.email or not unlock.provider.email or not settings.EMAIL_LINK_SECRET:
            return
        url = accept_url(unlock.lead_id, unlock.provider_id)
        ok, error = self.email.send_accept_email(unlock.provider, unlock.lead, url, unlock.price_cents)
        if not ok:
            logger.error(f"❌ Accept email failed for unlock #{unlock.id}: {error}")

    # ---------------------------------------------------------
    # 3. ACCEPTANCE -> PAYMENT LINK
    # ---------------------------------------------------------
    def record_acceptance(self, unlock: Unlock) -> str:
        """Returns the payment URL, re-using a live one when it exists."""
        now = self.clock.now()

        if unlock.status in SETTLED:
            raise InvalidTransitionError(unlock.status, S.PAYMENT_LINK_SENT.value)

        lead = unlock.lead
        if lead.is_closed and lead.closed_by_provider_id != unlock.provider_id:
            raise LeadClosedError(lead.id)
        if not lead.is_closed and lead.expires_at is not None and lead.expires_at <= now:
            raise InvalidTransitionError(unlock.status, S.EXPIRED.value)

        if self._has_live_link(unlock, now):
            return unlock.payment_link_url

        if unlock.status not in OPEN_OFFER:
            raise InvalidTransitionError(unlock.status, S.PAYMENT_LINK_SENT.value)

        if unlock.status == S.TEASER_SENT:
            self._move(unlock, [S.TEASER_SENT], S.Y_RECEIVED, y_received_at=now)
            if unlock.status not in OPEN_OFFER:
                raise InvalidTransitionError(unlock.status, S.PAYMENT_LINK_SENT.value)
            if self._has_live_link(unlock, now):
                return unlock.payment_link_url

        observed_status = unlock.status
        observed_sent_at = unlock.payment_link_sent_at
        attempt = observed_sent_at.isoformat() if observed_sent_at else "initial"

        session_id, url = self.payments.create_checkout_session(
            lead, unlock.provider, unlock, idempotency_key=f"{unlock.idempotency_key}:{attempt}",
        )

        moved = self._move(
            unlock,
            [observed_status],
            S.PAYMENT_LINK_SENT,
            extra_criteria=(Unlock.payment_link_sent_at.is_(None) if observed_sent_at is None
                            else Unlock.payment_link_sent_at == observed_sent_at,),
            checkout_session_id=session_id,
            payment_link_url=url,
            payment_link_sent_at=now,
            ttl_expires_at=now + self.ttl,
        )
        if not moved and self._has_live_link(unlock, now):
            # Someone else issued the link first
            return unlock.payment_link_url
        if not moved:
            raise InvalidTransitionError(unlock.status, S.PAYMENT_LINK_SENT.value)

        logger.info(f"💳 Payment link issued for unlock #{unlock.id}")
        return url

    @staticmethod
    def _has_live_link(unlock: Unlock, now: datetime) -> bool:
        return (
            unlock.status == S.PAYMENT_LINK_SENT
            and bool(unlock.payment_link_url)
            and unlock.ttl_expires_at is not None
            and unlock.ttl_expires_at > now
        )

    def decline(self, unlock: Unlock) -> bool:
        return self._move(unlock, [S.PENDING, *OPEN_OFFER], S.DECLINED)

    # ---------------------------------------------------------
    # 4. PAYMENT -> REVEAL
    # ---------------------------------------------------------
    def mark_paid(self, unlock: Unlock, session_id: str = None) -> bool:
        """Idempotent. Only the call that actually moves the row returns True."""
        if unlock.status in SETTLED:
            logger.info(f"⏭️ Unlock #{unlock.id} already {unlock.status}, mark_paid is a no-op")
            return False

        now = self.clock.now()
        values = {"paid_at": now, "unlocked_at": now}
        if session_id:
            values["checkout_session_id"] = session_id

        if unlock.status in (S.EXPIRED, S.DECLINED):
            logger.warning(f"⚠️ Payment arrived for {unlock.status.lower()} unlock #{unlock.id}, honouring it")

        moved = self._move(unlock, list(PAYABLE), S.PAID, **values)
        if not moved:
            return False

        self.db.query(Lead).filter(Lead.id == unlock.lead_id, Lead.is_closed.is_(False)).update(
            {"is_closed": True, "closed_by_provider_id": unlock.provider_id, "updated_at": now},
            synchronize_session=False,
        )
        self.db.commit()
        logger.info(f"💰 Unlock #{unlock.id} marked PAID (lead {unlock.lead_id} closed)")
        return True

    def reveal(self, unlock: Unlock) -> bool:
        if unlock.status != S.PAID:
            return False

        lead, provider = unlock.lead, unlock.provider
        text = REVEAL_TEXT.format(
            name=lead.client_name,
            phone=lead.client_phone,
            email=lead.client_email or "Not provided",
            address=lead.exact_address or lead.city or "",
            service=lead.service_type,
            when=lead.preferred_time_window or "Flexible",
        )
        # SMS is the primary channel: a failure here leaves the row PAID for a replay
        self.sms.send_sms(provider.phone, text)

        if self.email:
            ok, error = self.email.send_unlocked_details_email(provider, lead)
            if not ok:
                logger.error(f"❌ Reveal email failed for unlock #{unlock.id} (SMS sent): {error}")

        moved = self._move(unlock, [S.PAID], S.REVEALED, revealed_at=self.clock.now())
        if not moved:
            return False

        logger.info(f"🔓 Lead {lead.id} revealed to provider {provider.id}")
        self._schedule_follow_ups(unlock)
        return True

    def complete_payment(self, unlock: Unlock, session_id: str = None) -> Unlock:
        """mark_paid -> reveal. Safe to replay from the webhook and the fallback."""
        self.mark_paid(unlock, session_id)
        if unlock.status == S.PAID:
            self.reveal(unlock)
        return unlock

    def _schedule_follow_ups(self, unlock: Unlock):
        lead, provider = unlock.lead, unlock.provider
        try:
            ClientFollowUpEngine(self.db, self.sms, self.clock).schedule_follow_up(
                lead.id,
                provider.id,
                lead.client_phone,
                booking_time=parse_booking_time(lead.preferred_time_window),
                client_name=lead.client_name,
                provider_name=provider.name,
            )
        except Exception as e:
            logger.error(f"❌ Could not schedule client follow-up for unlock #{unlock.id}: {e}")
            self.db.rollback()

        try:
            ProviderContactCheckinEngine(self.db, self.sms, self.clock).schedule_follow_up(
                lead.id, provider.id, provider.phone, client_name=lead.client_name,
            )
        except Exception as e:
            logger.error(f"❌ Could not schedule provider check-in for unlock #{unlock.id}: {e}")
            self.db.rollback()

    # ---------------------------------------------------------
    # 5. TTL SWEEP
    # ---------------------------------------------------------
    def expire_stale(self) -> int:
        now = self.clock.now()
        open_values = [s.value for s in OPEN_OFFER]

        timed_out = self.db.query(Unlock).filter(
            or_(
                Unlock.status.in_(open_values) & (Unlock.ttl_expires_at < now),
                (Unlock.status == S.PENDING.value) & (Unlock.created_at < now - self.ttl),
            )
        ).update({"status": S.EXPIRED.value, "updated_at": now}, synchronize_session=False)

        closed_leads = select(Lead.id).where(or_(Lead.is_closed.is_(True), Lead.expires_at < now))
        lost = self.db.query(Unlock).filter(
            Unlock.status.in_([S.PENDING.value, *open_values]),
            Unlock.lead_id.in_(closed_leads),
        ).update({"status": S.EXPIRED.value, "updated_at": now}, synchronize_session=False)

        self.db.commit()
        if timed_out or lost:
            logger.info(f"⌛ Expired {timed_out} timed-out and {lost} lost unlock offers")
        return timed_out + lost
