"""Tests for the SMS, email and Stripe adapters with the network mocked out."""

from types import SimpleNamespace

import pytest
import requests
import stripe

from app.core.exceptions import TransientSendError
from app.services import email_service, payment_service, sms_service
from app.services.email_service import EmailService
from app.services.payment_service import PaymentService
from app.services.sms_service import SMSService


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


# =========================================================================
# SMS
# =========================================================================


class TestSMSService:
    def _enabled(self):
        service = SMSService()
        service.username, service.api_key = "user", "key"
        return service

    def test_disabled_without_credentials(self, monkeypatch):
        service = SMSService()
        service.username = service.api_key = None
        monkeypatch.setattr(sms_service.requests, "post", pytest.fail)

        assert service.send_sms("+15125550100", "hi") == {"skipped": True}

    def test_sends_without_plus(self, monkeypatch):
        calls = []

        def post(url, data, headers, timeout):
            calls.append((url, data, headers))
            return FakeResponse(201, {"id": 42})

        monkeypatch.setattr(sms_service.requests, "post", post)

        result = self._enabled().send_sms("+15125550100", "hi")

        assert result["message_id"] == 42
        assert calls[0][0].endswith("/messages")
        assert calls[0][1] == {"text": "hi", "phones": "15125550100"}
        assert calls[0][2]["X-TM-Username"] == "user"

    def test_http_error_raises(self, monkeypatch):
        monkeypatch.setattr(sms_service.requests, "post", lambda *a, **k: FakeResponse(500, text="oops"))
        with pytest.raises(TransientSendError):
            self._enabled().send_sms("+15125550100", "hi")

    def test_timeout_raises(self, monkeypatch):
        def post(*args, **kwargs):
            raise requests.exceptions.Timeout("slow")

        monkeypatch.setattr(sms_service.requests, "post", post)
        with pytest.raises(TransientSendError):
            self._enabled().send_sms("+15125550100", "hi")


# =========================================================================
# EMAIL
# =========================================================================


class TestEmailService:
    def _enabled(self):
        service = EmailService()
        service.api_key = "zepto-key"
        return service

    def test_skipped_without_key(self):
        service = EmailService()
        service.api_key = None
        assert service.send_email("a@example.com", "s", "<p>x</p>") == (True, "SKIPPED")

    def test_queued(self, monkeypatch):
        payload = {"message": "OK", "data": [{"code": "EM_104"}]}
        monkeypatch.setattr(email_service.requests, "post", lambda *a, **k: FakeResponse(201, payload))
        assert self._enabled().send_email("a@example.com", "s", "<p>x</p>") == (True, None)

    def test_bad_recipient(self, monkeypatch):
        payload = {"error": {"message": "Invalid address"}}
        monkeypatch.setattr(email_service.requests, "post", lambda *a, **k: FakeResponse(422, payload))

        ok, error = self._enabled().send_email("nobody@example.com", "s", "<p>x</p>")

        assert ok is False
        assert error.startswith("RECIPIENT_NOT_FOUND")

    def test_connection_error_is_returned(self, monkeypatch):
        def post(*args, **kwargs):
            raise requests.exceptions.ConnectionError("down")

        monkeypatch.setattr(email_service.requests, "post", post)
        ok, error = self._enabled().send_email("a@example.com", "s", "<p>x</p>")
        assert ok is False
        assert error.startswith("CONNECTION_ERROR")

    def test_provider_without_email_skipped(self, lead, make_provider):
        provider = make_provider(email=None)
        assert EmailService().send_unlocked_details_email(provider, lead) == (True, "SKIPPED")


# =========================================================================
# STRIPE
# =========================================================================


class TestPaymentService:
    def test_checkout_session(self, monkeypatch, teased_unlock, lead, provider):
        captured = {}

        def create(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(id="cs_live_1", url="https://checkout.stripe.com/c/cs_live_1")

        monkeypatch.setattr(payment_service.stripe.checkout.Session, "create", create)
        service = PaymentService(api_key="sk_test", webhook_secret="whsec", domain="https://leads.test/")

        session_id, url = service.create_checkout_session(lead, provider, teased_unlock, idempotency_key="k:initial")

        assert (session_id, url) == ("cs_live_1", "https://checkout.stripe.com/c/cs_live_1")
        assert captured["idempotency_key"] == "k:initial"
        assert captured["line_items"][0]["price_data"]["unit_amount"] == 1500
        assert captured["metadata"]["provider_id"] == str(provider.id)
        assert captured["success_url"] == (
            f"https://leads.test/unlocks/success?lead_id={lead.id}&provider_id={provider.id}"
        )

    def test_stripe_error_is_transient(self, monkeypatch, teased_unlock, lead, provider):
        def create(**kwargs):
            raise stripe.APIConnectionError("no route")

        monkeypatch.setattr(payment_service.stripe.checkout.Session, "create", create)

        with pytest.raises(TransientSendError):
            PaymentService(api_key="sk_test").create_checkout_session(lead, provider, teased_unlock, "k")

    def test_verify_payment(self, monkeypatch):
        monkeypatch.setattr(
            payment_service.stripe.checkout.Session,
            "retrieve",
            lambda session_id, api_key: SimpleNamespace(payment_status="paid" if session_id == "cs_paid" else "unpaid"),
        )
        service = PaymentService(api_key="sk_test")

        assert service.verify_payment("cs_paid") is True
        assert service.verify_payment("cs_open") is False
