import logging
from datetime import timedelta

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import TransientSendError
from app.models.lead import Lead
from app.models.provider import Provider
from app.services.unlock_store import UnlockStore

logger = logging.getLogger(__name__)

RATE_WINDOW = timedelta(hours=1)


class LeadDispatcher:
    """Finds providers for a lead and sends them teasers."""

    def __init__(self, db: Session, state_machine):
        self.db = db
        self.machine = state_machine
        self.clock = state_machine.clock

    # ---------------------------------------------------------
    # 1. MATCHING
    # ---------------------------------------------------------
    def find_matching_providers(self, lead: Lead) -> list[Provider]:
        query = self.db.query(Provider).filter(
            Provider.is_verified.is_(True),
            Provider.sms_opted_out.is_(False),
            Provider.phone.isnot(None),
        )
        if lead.city:
            query = query.filter(or_(
                Provider.city.is_(None),
                func.lower(Provider.city) == lead.city.strip().lower(),
            ))

        return [p for p in query.order_by(Provider.id).all() if p.offers(lead.service_type)]

    def find_available_providers(self, lead: Lead) -> list[Provider]:
        """Matching providers minus anyone who already has an unlock row for this lead."""
        already_offered = UnlockStore(self.db, self.clock).provider_ids_for_lead(lead.id)
        return [p for p in self.find_matching_providers(lead) if p.id not in already_offered]

    # ---------------------------------------------------------
    # 2. RATE LIMIT
    # ---------------------------------------------------------
    def _take_send_slot(self, provider: Provider) -> bool:
        now = self.clock.now()
        window_start = provider.messages_window_started_at

        if window_start is None or now - window_start >= RATE_WINDOW:
            provider.messages_window_started_at = now
            provider.messages_in_window = 0

        if provider.messages_in_window >= settings.PROVIDER_HOURLY_SMS_LIMIT:
            logger.warning(f"🚫 Provider {provider.id} hit {settings.PROVIDER_HOURLY_SMS_LIMIT} messages/hour, skipping")
            self.db.commit()
            return False

        provider.messages_in_window += 1
        self.db.commit()
        return True

    # ---------------------------------------------------------
    # 3. DISPATCH
    # ---------------------------------------------------------
    def dispatch(self, lead: Lead, providers: list[Provider]) -> list:
        """Creates (or reuses) an unlock per provider; only new rows get a teaser."""
        teased = []
        for provider in providers:
            if provider.sms_opted_out:
                continue

            unlock, created = self.machine.create_if_absent(lead, provider)
            if not created:
                continue

            if not self._take_send_slot(provider):
                continue

            try:
                if self.machine.send_teaser(unlock):
                    teased.append(unlock)
            except TransientSendError as e:
                logger.error(f"❌ Teaser to provider {provider.id} for lead {lead.id} failed: {e}")

        logger.info(f"📣 Lead {lead.id} sent to {len(teased)}/{len(providers)} providers")
        return teased

    def requeue(self, lead: Lead, providers: list[Provider]) -> list:
        """Re-opens a lead whose client asked for someone else and offers it again."""
        now = self.clock.now()
        lead.is_closed = False
        lead.closed_by_provider_id = None
        lead.updated_at = now
        lead.expires_at = now + timedelta(hours=settings.LEAD_TTL_HOURS)
        self.db.commit()
        return self.dispatch(lead, providers)
