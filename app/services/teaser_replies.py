import logging

from sqlalchemy.orm import Session

from app.core.exceptions import InvalidTransitionError, LeadClosedError, TransientSendError
from app.core.phone import normalize_phone
from app.models.provider import Provider
from app.models.unlock import Unlock, UnlockStatus as S
from app.services.pricing_service import PricingService
from app.services.unlock_service import OPEN_OFFER

logger = logging.getLogger(__name__)

ACCEPT_WORDS = {"Y", "YES"}
DECLINE_WORDS = {"N", "NO"}
OPT_OUT_WORDS = {"STOP", "UNSUBSCRIBE", "CANCEL"}
OPT_IN_WORDS = {"START", "UNSTOP"}

PAYMENT_LINK_TEXT = "Unlock full client details for {price}:\n{url}\nLink is valid for 24 hours."
LEAD_CLOSED_TEXT = "Sorry, this lead has already been taken by another provider. We'll text you the next one!"
DECLINED_TEXT = "No problem, we'll send you the next request in your area."
LINK_FAILED_TEXT = "We couldn't create your payment link right now. Please reply Y again in a minute."


class TeaserReplyHandler:
    """Provider answers to a teaser: Y -> payment link, N -> decline."""

    def __init__(self, db: Session, state_machine, sms):
        self.db = db
        self.machine = state_machine
        self.sms = sms

    def find_provider(self, phone: str) -> Provider | None:
        phone = normalize_phone(phone)
        if not phone:
            return None
        return self.db.query(Provider).filter(Provider.phone == phone).first()

    def _latest_open_unlock(self, provider: Provider) -> Unlock | None:
        return self.db.query(Unlock).filter(
            Unlock.provider_id == provider.id,
            Unlock.status.in_([s.value for s in OPEN_OFFER]),
        ).order_by(Unlock.teaser_sent_at.desc(), Unlock.id.desc()).first()

    def handle_opt_out(self, phone: str, text: str) -> dict:
        """STOP opts a provider out of teasers and drops their open offers; START undoes it."""
        keyword = (text or "").strip().upper()
        if keyword not in OPT_OUT_WORDS | OPT_IN_WORDS:
            return {"handled": False}

        provider = self.find_provider(phone)
        if provider is None:
            return {"handled": False}

        opting_out = keyword in OPT_OUT_WORDS
        provider.sms_opted_out = opting_out
        provider.updated_at = self.machine.clock.now()
        self.db.commit()

        if not opting_out:
            logger.info(f"🔔 Provider {provider.id} opted back in")
            return {"handled": True, "action": "opted_in"}

        open_unlocks = self.db.query(Unlock).filter(
            Unlock.provider_id == provider.id,
            Unlock.status.in_([S.PENDING.value, *(s.value for s in OPEN_OFFER)]),
        ).all()
        for unlock in open_unlocks:
            self.machine.decline(unlock)

        logger.info(f"🔕 Provider {provider.id} opted out ({len(open_unlocks)} open offers declined)")
        return {"handled": True, "action": "opted_out"}

    def handle_reply(self, phone: str, text: str) -> dict:
        keyword = (text or "").strip().upper()
        if keyword not in ACCEPT_WORDS | DECLINE_WORDS:
            return {"handled": False}

        provider = self.find_provider(phone)
        if provider is None:
            return {"handled": False}

        unlock = self._latest_open_unlock(provider)
        if unlock is None:
            return {"handled": False}

        if keyword in DECLINE_WORDS:
            self.machine.decline(unlock)
            self._reply(provider, DECLINED_TEXT)
            return {"handled": True, "action": "teaser_declined"}

        try:
            url = self.machine.record_acceptance(unlock)
        except LeadClosedError:
            self._reply(provider, LEAD_CLOSED_TEXT)
            return {"handled": True, "action": "lead_closed"}
        except InvalidTransitionError as e:
            logger.info(f"⏭️ Acceptance ignored for unlock #{unlock.id}: {e}")
            return {"handled": True, "action": "not_acceptable"}
        except TransientSendError as e:
            logger.error(f"❌ Payment link for unlock #{unlock.id} failed: {e}")
            self._reply(provider, LINK_FAILED_TEXT)
            return {"handled": True, "action": "payment_link_failed"}

        self._reply(provider, PAYMENT_LINK_TEXT.format(price=PricingService.format_price(unlock.price_cents), url=url))
        return {"handled": True, "action": "payment_link_sent"}

    def _reply(self, provider: Provider, text: str):
        try:
            self.sms.send_sms(provider.phone, text)
        except TransientSendError as e:
            logger.error(f"❌ Reply to provider {provider.id} failed: {e}")
