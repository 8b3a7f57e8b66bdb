import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_clock, get_db, get_email_service, get_payment_service, get_sms_service
from app.core.exceptions import TransientSendError
from app.services.unlock_service import UnlockStateMachine
from app.services.unlock_store import UnlockStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def settle_checkout(session: dict, db: Session, machine: UnlockStateMachine) -> dict:
    """Blocking part of the webhook: DB lookups plus the reveal SMS/email."""
    store = UnlockStore(db, machine.clock)
    unlock = store.get_by_checkout_session(session["id"])
    if unlock is None:
        metadata = session.get("metadata") or {}
        if metadata.get("lead_id") and metadata.get("provider_id"):
            unlock = store.get(metadata["lead_id"], int(metadata["provider_id"]))

    if unlock is None:
        logger.error(f"❌ Webhook for unknown checkout session {session['id']}")
        return {"received": True, "matched": False}

    try:
        machine.complete_payment(unlock, session["id"])
    except TransientSendError as e:
        # Non-2xx makes Stripe redeliver; the row stays PAID until then
        logger.error(f"❌ Reveal failed for unlock #{unlock.id}, asking Stripe to retry: {e}")
        raise HTTPException(status_code=502, detail="Reveal failed, retry later")

    return {"received": True, "status": unlock.status}


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    sms=Depends(get_sms_service),
    email=Depends(get_email_service),
    payments=Depends(get_payment_service),
    clock=Depends(get_clock),
):
    # Signature checks need the raw body, hence the async route
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = payments.construct_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"🚫 Rejected payment webhook: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    if event["type"] != "checkout.session.completed":
        return {"received": True, "ignored": event["type"]}

    session = event["data"]["object"]
    if session.get("payment_status") != "paid":
        logger.info(f"⏳ Checkout {session.get('id')} completed but not paid yet")
        return {"received": True, "paid": False}

    machine = UnlockStateMachine(db, sms, email=email, payments=payments, clock=clock)
    return await run_in_threadpool(settle_checkout, session, db, machine)
