"""Tests for reconciling a lost payment webhook from the success page."""

from app.models.unlock import UnlockStatus as S
from app.services.payment_fallback import PaymentVerificationFallback


def reveal_count(sms, provider):
    return len([t for t in sms.to(provider.phone) if t.startswith("Lead unlocked!")])


class TestReconcile:
    def test_missing_unlock(self, machine, memory_db, payments):
        fallback = PaymentVerificationFallback(memory_db, machine, payments)
        assert fallback.reconcile("no-such-lead", 999) is None

    def test_lost_webhook_is_replayed(self, machine, memory_db, sms, payments, teased_unlock, provider):
        """Paid at Stripe, never marked: fallback pays and reveals."""
        machine.record_acceptance(teased_unlock)
        payments.paid.add(teased_unlock.checkout_session_id)

        unlock = PaymentVerificationFallback(memory_db, machine, payments).reconcile(
            teased_unlock.lead_id, teased_unlock.provider_id,
        )

        assert unlock.status == S.REVEALED
        assert unlock.paid_at is not None
        assert reveal_count(sms, provider) == 1

    def test_unpaid_session_left_alone(self, machine, memory_db, payments, teased_unlock):
        machine.record_acceptance(teased_unlock)

        unlock = PaymentVerificationFallback(memory_db, machine, payments).reconcile(
            teased_unlock.lead_id, teased_unlock.provider_id,
        )

        assert unlock.status == S.PAYMENT_LINK_SENT
        assert payments.verify_calls == 1

    def test_paid_but_unrevealed_is_revealed(self, machine, memory_db, sms, payments, teased_unlock, provider):
        """A crash between mark_paid and reveal is repaired without asking Stripe."""
        machine.mark_paid(teased_unlock)

        PaymentVerificationFallback(memory_db, machine, payments).reconcile(
            teased_unlock.lead_id, teased_unlock.provider_id,
        )

        assert teased_unlock.status == S.REVEALED
        assert payments.verify_calls == 0
        assert reveal_count(sms, provider) == 1

    def test_webhook_then_fallback_reveals_once(self, machine, memory_db, sms, payments, teased_unlock, provider):
        machine.record_acceptance(teased_unlock)
        payments.paid.add(teased_unlock.checkout_session_id)
        machine.complete_payment(teased_unlock, teased_unlock.checkout_session_id)

        PaymentVerificationFallback(memory_db, machine, payments).reconcile(
            teased_unlock.lead_id, teased_unlock.provider_id,
        )

        assert teased_unlock.status == S.REVEALED
        assert payments.verify_calls == 0
        assert reveal_count(sms, provider) == 1

    def test_no_checkout_session_skips_lookup(self, machine, memory_db, payments, teased_unlock):
        unlock = PaymentVerificationFallback(memory_db, machine, payments).reconcile(
            teased_unlock.lead_id, teased_unlock.provider_id,
        )
        assert unlock.status == S.TEASER_SENT
        assert payments.verify_calls == 0

    def test_declined_offer_paid_at_stripe_is_revealed(self, machine, memory_db, sms, payments, teased_unlock, provider):
        """N was texted after the link went out, but the provider paid anyway."""
        machine.record_acceptance(teased_unlock)
        machine.decline(teased_unlock)
        payments.paid.add(teased_unlock.checkout_session_id)

        unlock = PaymentVerificationFallback(memory_db, machine, payments).reconcile(
            teased_unlock.lead_id, teased_unlock.provider_id,
        )

        assert unlock.status == S.REVEALED
        assert unlock.paid_at is not None
        assert reveal_count(sms, provider) == 1
