"""Tests for the unlock lifecycle state machine."""

from datetime import datetime, timedelta

import pytest

from app.core.exceptions import InvalidTransitionError, LeadClosedError, TransientSendError
from app.models.follow_up import ClientFollowUp, ProviderContactFollowUp, ProviderReminder
from app.models.lead import Lead
from app.models.unlock import Unlock, UnlockStatus as S
from app.services.unlock_service import check_transition, parse_booking_time
from app.services.unlock_store import UnlockStore


def reveal_messages(sms, provider):
    return [t for t in sms.to(provider.phone) if t.startswith("Lead unlocked!")]


# =========================================================================
# TRANSITION TABLE
# =========================================================================


class TestTransitionTable:
    """Only listed edges are legal."""

    def test_forward_edge_allowed(self):
        """PENDING -> TEASER_SENT is a legal move."""
        check_transition(S.PENDING, S.TEASER_SENT)

    def test_regression_rejected(self):
        """A revealed unlock can never go back to PAID."""
        with pytest.raises(InvalidTransitionError):
            check_transition(S.REVEALED, S.PAID)

    def test_skipping_payment_rejected(self):
        """TEASER_SENT cannot jump straight to REVEALED."""
        with pytest.raises(InvalidTransitionError):
            check_transition("TEASER_SENT", "REVEALED")

    def test_expired_can_still_be_paid(self):
        """A late payment on a timed-out offer is honoured."""
        check_transition(S.EXPIRED, S.PAID)

    def test_declined_can_still_be_paid(self):
        check_transition(S.DECLINED, S.PAID)


class TestParseBookingTime:
    def test_iso_timestamp(self):
        assert parse_booking_time("2026-01-05T18:00:00") == datetime(2026, 1, 5, 18, 0)

    def test_offset_converted_to_utc(self):
        assert parse_booking_time("2026-01-05T18:00:00+02:00") == datetime(2026, 1, 5, 16, 0)

    def test_free_text_is_none(self):
        assert parse_booking_time("Evenings") is None
        assert parse_booking_time(None) is None


# =========================================================================
# CREATE
# =========================================================================


class TestCreateIfAbsent:
    def test_single_row_per_pair(self, machine, memory_db, lead, provider):
        """Calling twice returns the same row and only creates it once."""
        first, created_first = machine.create_if_absent(lead, provider)
        second, created_second = machine.create_if_absent(lead, provider)

        assert created_first is True
        assert created_second is False
        assert first.id == second.id
        assert memory_db.query(Unlock).count() == 1

    def test_concurrent_creator_reuses_row(self, machine, session_factory, clock, lead, provider):
        """A second session colliding on the unique pair gets the existing row."""
        unlock, _ = machine.create_if_absent(lead, provider)

        other = session_factory()
        try:
            again, created = UnlockStore(other, clock).create_if_absent(lead.id, provider.id)
            assert created is False
            assert again.id == unlock.id
            assert again.idempotency_key == unlock.idempotency_key
        finally:
            other.close()

    def test_price_comes_from_service_type(self, machine, make_lead, provider):
        unlock, _ = machine.create_if_absent(make_lead(service_type="massage"), provider)
        assert unlock.price_cents == 1500
        assert unlock.status == S.PENDING


# =========================================================================
# TEASER
# =========================================================================


class TestSendTeaser:
    def test_teaser_sent_and_recorded(self, machine, memory_db, sms, email, clock, lead, provider):
        """Teaser goes out, TTL is set, a nudge and an accept email follow."""
        unlock, _ = machine.create_if_absent(lead, provider)

        assert machine.send_teaser(unlock) is True

        assert unlock.status == S.TEASER_SENT
        assert unlock.teaser_sent_at == clock.now()
        assert unlock.ttl_expires_at == clock.now() + timedelta(hours=24)
        assert len(sms.to(provider.phone)) == 1
        assert "Reply Y" in sms.to(provider.phone)[0]
        assert memory_db.query(ProviderReminder).count() == 1
        assert email.sent[0][0] == "accept"
        assert "/unlocks/accept?token=" in email.sent[0][2]

    def test_teaser_only_from_pending(self, machine, sms, teased_unlock, provider):
        """A second teaser attempt is a no-op."""
        assert machine.send_teaser(teased_unlock) is False
        assert len(sms.to(provider.phone)) == 1

    def test_send_failure_keeps_pending(self, machine, sms, lead, provider):
        """A failed SMS leaves the row PENDING."""
        unlock, _ = machine.create_if_absent(lead, provider)
        sms.failing.add(provider.phone)

        with pytest.raises(TransientSendError):
            machine.send_teaser(unlock)
        assert unlock.status == S.PENDING


# =========================================================================
# ACCEPTANCE
# =========================================================================


class TestRecordAcceptance:
    def test_issues_payment_link(self, machine, payments, clock, teased_unlock):
        url = machine.record_acceptance(teased_unlock)

        assert url == "https://checkout.test/cs_test_1"
        assert teased_unlock.status == S.PAYMENT_LINK_SENT
        assert teased_unlock.y_received_at == clock.now()
        assert teased_unlock.checkout_session_id == "cs_test_1"

    def test_live_link_is_reused(self, machine, payments, teased_unlock):
        """Replying Y twice does not create a second checkout session."""
        first = machine.record_acceptance(teased_unlock)
        second = machine.record_acceptance(teased_unlock)

        assert first == second
        assert payments.created == 1

    def test_lapsed_link_is_reissued(self, machine, payments, clock, teased_unlock):
        """After the link TTL a fresh checkout session is created."""
        first = machine.record_acceptance(teased_unlock)
        clock.advance(hours=25)

        second = machine.record_acceptance(teased_unlock)

        assert second != first
        assert payments.created == 2
        assert teased_unlock.payment_link_sent_at == clock.now()

    def test_lead_taken_by_other_provider(self, machine, lead, make_provider):
        """Once P1 pays, P2's acceptance is rejected."""
        p1, p2 = make_provider(), make_provider()
        u1, _ = machine.create_if_absent(lead, p1)
        u2, _ = machine.create_if_absent(lead, p2)
        machine.send_teaser(u1)
        machine.send_teaser(u2)

        machine.record_acceptance(u1)
        machine.mark_paid(u1)

        with pytest.raises(LeadClosedError):
            machine.record_acceptance(u2)

    def test_live_link_withheld_once_lead_is_taken(self, machine, lead, make_provider):
        """P1 asking again after P2 paid gets LeadClosedError, not the old checkout URL."""
        p1, p2 = make_provider(), make_provider()
        u1, _ = machine.create_if_absent(lead, p1)
        u2, _ = machine.create_if_absent(lead, p2)
        machine.send_teaser(u1)
        machine.send_teaser(u2)
        machine.record_acceptance(u1)

        machine.complete_payment(u2)

        with pytest.raises(LeadClosedError):
            machine.record_acceptance(u1)

    def test_expired_lead_cannot_be_accepted(self, machine, memory_db, clock, lead, teased_unlock):
        lead.expires_at = clock.now() + timedelta(hours=2)
        memory_db.commit()
        clock.advance(hours=3)

        with pytest.raises(InvalidTransitionError):
            machine.record_acceptance(teased_unlock)

    def test_declined_offer_cannot_be_accepted(self, machine, teased_unlock):
        assert machine.decline(teased_unlock) is True
        assert teased_unlock.status == S.DECLINED

        with pytest.raises(InvalidTransitionError):
            machine.record_acceptance(teased_unlock)

    def test_payment_error_leaves_state(self, machine, payments, teased_unlock):
        """Stripe failure propagates; the row stays at Y_RECEIVED."""
        payments.fail_create = True

        with pytest.raises(TransientSendError):
            machine.record_acceptance(teased_unlock)
        assert teased_unlock.status == S.Y_RECEIVED


# =========================================================================
# PAYMENT + REVEAL
# =========================================================================


class TestMarkPaid:
    def test_mark_paid_is_idempotent(self, machine, memory_db, clock, teased_unlock):
        """Second call is a no-op and paid_at is written once."""
        machine.record_acceptance(teased_unlock)

        assert machine.mark_paid(teased_unlock, "cs_test_1") is True
        paid_at = teased_unlock.paid_at
        clock.advance(minutes=5)
        assert machine.mark_paid(teased_unlock, "cs_test_1") is False

        assert teased_unlock.paid_at == paid_at
        assert teased_unlock.unlocked_at == paid_at

    def test_mark_paid_closes_lead(self, machine, memory_db, teased_unlock, provider):
        machine.mark_paid(teased_unlock)

        lead = memory_db.get(Lead, teased_unlock.lead_id)
        assert lead.is_closed is True
        assert lead.closed_by_provider_id == provider.id

    def test_late_payment_on_expired_offer(self, machine, clock, teased_unlock):
        """A payment landing after the TTL sweep still counts."""
        machine.record_acceptance(teased_unlock)
        clock.advance(hours=25)
        machine.expire_stale()
        assert teased_unlock.status == S.EXPIRED

        assert machine.mark_paid(teased_unlock) is True
        assert teased_unlock.status == S.PAID

    def test_payment_after_decline_is_honoured(self, machine, memory_db, teased_unlock, provider):
        """Saying N and then paying through the still-live link still counts."""
        machine.record_acceptance(teased_unlock)
        machine.decline(teased_unlock)
        assert teased_unlock.status == S.DECLINED

        assert machine.mark_paid(teased_unlock, "cs_test_1") is True
        assert teased_unlock.status == S.PAID
        assert memory_db.get(Lead, teased_unlock.lead_id).closed_by_provider_id == provider.id


class TestCompletePayment:
    def test_single_reveal_under_replay(self, machine, memory_db, sms, email, teased_unlock, provider):
        """Webhook + fallback replay produce one paid_at and one reveal SMS."""
        machine.record_acceptance(teased_unlock)

        machine.complete_payment(teased_unlock, "cs_test_1")
        machine.complete_payment(teased_unlock, "cs_test_1")

        assert teased_unlock.status == S.REVEALED
        assert len(reveal_messages(sms, provider)) == 1
        assert [e for e in email.sent if e[0] == "unlocked"] == [("unlocked", provider.email, teased_unlock.lead_id)]

    def test_reveal_schedules_follow_ups(self, machine, memory_db, clock, teased_unlock):
        machine.complete_payment(teased_unlock)

        follow_up = memory_db.query(ClientFollowUp).one()
        assert follow_up.client_phone == "+15125550100"
        assert follow_up.send_after == clock.now() + timedelta(minutes=30)
        assert memory_db.query(ProviderContactFollowUp).count() == 1

    def test_reveal_sms_failure_stays_paid(self, machine, sms, teased_unlock, provider):
        """SMS failure stops the reveal; a later replay finishes it."""
        sms.failing.add(provider.phone)
        with pytest.raises(TransientSendError):
            machine.complete_payment(teased_unlock)
        assert teased_unlock.status == S.PAID

        sms.failing.clear()
        machine.complete_payment(teased_unlock)
        assert teased_unlock.status == S.REVEALED
        assert len(reveal_messages(sms, provider)) == 1

    def test_reveal_only_from_paid(self, machine, sms, teased_unlock, provider):
        assert machine.reveal(teased_unlock) is False
        assert reveal_messages(sms, provider) == []


# =========================================================================
# TTL SWEEP
# =========================================================================


class TestExpireStale:
    def test_open_offer_times_out(self, machine, clock, teased_unlock):
        clock.advance(hours=23)
        assert machine.expire_stale() == 0

        clock.advance(hours=2)
        assert machine.expire_stale() == 1
        assert teased_unlock.status == S.EXPIRED

    def test_lost_offers_expire_when_lead_closes(self, machine, memory_db, lead, make_provider):
        p1, p2 = make_provider(), make_provider()
        u1, _ = machine.create_if_absent(lead, p1)
        u2, _ = machine.create_if_absent(lead, p2)
        machine.send_teaser(u1)
        machine.send_teaser(u2)
        machine.complete_payment(u1)

        assert machine.expire_stale() == 1
        memory_db.refresh(u2)
        memory_db.refresh(u1)
        assert u2.status == S.EXPIRED
        assert u1.status == S.REVEALED

    def test_stuck_pending_rows_expire(self, machine, memory_db, clock, lead, provider):
        """A PENDING row whose teaser never went out is swept after the TTL."""
        unlock, _ = machine.create_if_absent(lead, provider)
        clock.advance(hours=25)

        machine.expire_stale()
        memory_db.refresh(unlock)
        assert unlock.status == S.EXPIRED

    def test_offers_on_expired_lead_are_swept(self, machine, memory_db, clock, lead, teased_unlock):
        lead.expires_at = clock.now() + timedelta(hours=1)
        memory_db.commit()
        clock.advance(hours=2)

        assert machine.expire_stale() == 1
        memory_db.refresh(teased_unlock)
        assert teased_unlock.status == S.EXPIRED
