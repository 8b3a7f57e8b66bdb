"""
app/services/payment_service.py

Stripe Checkout adapter. The unlock flow only needs three things from the
payment provider: a checkout URL, a "was this session paid?" answer, and
verified webhook events.
"""

import logging

import stripe

from app.core.config import settings
from app.core.exceptions import TransientSendError
from app.services.pricing_service import PricingService

logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(self, api_key: str = None, webhook_secret: str = None, domain: str = None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.domain = (domain or settings.DOMAIN).rstrip("/")

    def create_checkout_session(self, lead, provider, unlock, idempotency_key: str) -> tuple[str, str]:
        """Returns (session_id, url). Same idempotency key -> same session."""
        price_cents = unlock.price_cents or PricingService.price_for(lead.service_type)
        query = f"lead_id={lead.id}&provider_id={provider.id}"

        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                idempotency_key=idempotency_key,
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": "usd",
                        "unit_amount": price_cents,
                        "product_data": {"name": f"Lead unlock: {lead.service_type} in {lead.city}"},
                    },
                    "quantity": 1,
                }],
                customer_email=provider.email or None,
                client_reference_id=str(unlock.id),
                metadata={
                    "lead_id": str(lead.id),
                    "provider_id": str(provider.id),
                    "unlock_key": unlock.idempotency_key,
                },
                success_url=f"{self.domain}/unlocks/success?{query}",
                cancel_url=f"{self.domain}/unlocks/cancel?lead_id={lead.id}",
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe checkout failed for lead {lead.id} / provider {provider.id}: {e}")
            raise TransientSendError(f"STRIPE_ERROR: {e}") from e

        logger.info(f"💳 Checkout session {session.id} created for lead {lead.id} / provider {provider.id}")
        return session.id, session.url

    def verify_payment(self, session_id: str) -> bool:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe lookup failed for session {session_id}: {e}")
            raise TransientSendError(f"STRIPE_ERROR: {e}") from e

        return session.payment_status == "paid"

    def construct_event(self, payload: bytes, signature: str):
        """Raises ValueError or stripe.SignatureVerificationError on a bad event."""
        return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
