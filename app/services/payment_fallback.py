import logging

from sqlalchemy.orm import Session

from app.models.unlock import Unlock, UnlockStatus
from app.services.unlock_store import UnlockStore

logger = logging.getLogger(__name__)


class PaymentVerificationFallback:
    """
    Runs when a provider lands on the post-payment page. If the payment
    webhook never arrived, ask the payment provider directly and replay
    mark_paid -> reveal. This is the only backfill for lost webhooks.
    """

    def __init__(self, db: Session, state_machine, payments):
        self.db = db
        self.machine = state_machine
        self.payments = payments

    def reconcile(self, lead_id, provider_id) -> Unlock | None:
        unlock = UnlockStore(self.db, self.machine.clock).get(lead_id, provider_id)
        if unlock is None:
            return None

        if unlock.status == UnlockStatus.REVEALED:
            return unlock

        if unlock.status == UnlockStatus.PAID:
            # Paid but the reveal never went out
            logger.warning(f"[Success Page Fallback] Unlock #{unlock.id} is PAID but unrevealed, replaying reveal")
            self.machine.reveal(unlock)
            return unlock

        if not unlock.checkout_session_id:
            return unlock

        logger.info(f"[Success Page Fallback] Checking payment for unlock {lead_id}/{provider_id} (status {unlock.status})")
        if not self.payments.verify_payment(unlock.checkout_session_id):
            return unlock

        logger.warning("[Success Page Fallback] ⚠️ Payment verified but webhook missed! Triggering reveal...")
        self.machine.complete_payment(unlock, unlock.checkout_session_id)
        if unlock.status == UnlockStatus.REVEALED:
            logger.info("[Success Page Fallback] ✅ Successfully revealed via fallback!")
        return unlock
