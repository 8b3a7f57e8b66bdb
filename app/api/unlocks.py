import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from app.api.deps import get_clock, get_db, get_email_service, get_payment_service, get_sms_service
from app.core.exceptions import InvalidTokenError, InvalidTransitionError, LeadClosedError, TransientSendError
from app.core.security import verify_accept_token
from app.models.unlock import Unlock, UnlockStatus as S
from app.services.payment_fallback import PaymentVerificationFallback
from app.services.unlock_service import SETTLED, UnlockStateMachine
from app.services.unlock_store import UnlockStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/unlocks", tags=["Unlocks"])

MIN_PREFIX_LENGTH = 8

PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; max-width: 480px; margin: 40px auto;">
<h2>{title}</h2><p>{body}</p>
</body></html>"""


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(PAGE.format(title=title, body=body), status_code=status_code)


# =========================================================
# 1. POST-PAYMENT LANDING
# =========================================================

@router.get("/success", response_class=HTMLResponse)
def payment_success(
    lead_id: str,
    provider_id: int,
    db: Session = Depends(get_db),
    sms=Depends(get_sms_service),
    email=Depends(get_email_service),
    payments=Depends(get_payment_service),
    clock=Depends(get_clock),
):
    machine = UnlockStateMachine(db, sms, email=email, payments=payments, clock=clock)
    unlock = None
    try:
        unlock = PaymentVerificationFallback(db, machine, payments).reconcile(lead_id, provider_id)
    except Exception as e:
        # The page never fails; the webhook or the next visit can still reveal
        logger.error(f"[Success Page Fallback] ❌ Reconcile failed for {lead_id}/{provider_id}: {e}")
        db.rollback()

    if unlock is not None and unlock.status == S.REVEALED:
        return _page("Lead unlocked", "The client's contact details have been sent to you by SMS and email.")

    return _page(
        "Payment received",
        "We're confirming your payment. The client's details will arrive by SMS in a moment.",
    )


@router.get("/cancel", response_class=HTMLResponse)
def payment_cancelled(lead_id: Optional[str] = None):
    logger.info(f"↩️ Checkout cancelled for lead {lead_id}")
    return _page("Payment cancelled", "No charge was made. Reply Y to the lead text any time to get a new link.")


# =========================================================
# 2. EMAIL ACCEPT LINK
# =========================================================

@router.get("/accept")
def accept_from_email(
    token: str = Query(...),
    db: Session = Depends(get_db),
    sms=Depends(get_sms_service),
    email=Depends(get_email_service),
    payments=Depends(get_payment_service),
    clock=Depends(get_clock),
):
    try:
        claims = verify_accept_token(token)
    except InvalidTokenError as e:
        logger.warning(f"🚫 Bad accept token: {e}")
        raise HTTPException(status_code=400, detail="Invalid or expired link")

    try:
        provider_id = int(claims["provider_id"])
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid or expired link")

    unlock = UnlockStore(db, clock).get(claims["lead_id"], provider_id)
    if unlock is None:
        raise HTTPException(status_code=404, detail="Lead not found")

    if unlock.status in SETTLED:
        return RedirectResponse(
            f"/unlocks/success?lead_id={unlock.lead_id}&provider_id={unlock.provider_id}", status_code=303,
        )

    machine = UnlockStateMachine(db, sms, email=email, payments=payments, clock=clock)
    try:
        url = machine.record_acceptance(unlock)
    except LeadClosedError:
        raise HTTPException(status_code=410, detail="This lead has already been taken")
    except InvalidTransitionError:
        raise HTTPException(status_code=410, detail="This offer is no longer available")
    except TransientSendError as e:
        logger.error(f"❌ Payment link from email accept failed for unlock #{unlock.id}: {e}")
        raise HTTPException(status_code=502, detail="Could not create payment link, try again")

    return RedirectResponse(url, status_code=303)


# =========================================================
# 3. SHORT PAY LINK
# =========================================================

@router.get("/pay/{lead_prefix}")
def short_pay_link(
    lead_prefix: str,
    p: Optional[int] = None,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """`/unlocks/pay/<first chars of lead id>?p=<provider id>` -> the live checkout URL."""
    if len(lead_prefix) < MIN_PREFIX_LENGTH:
        raise HTTPException(status_code=404, detail="Link not found")

    query = db.query(Unlock).filter(
        Unlock.lead_id.startswith(lead_prefix, autoescape=True),
        Unlock.status == S.PAYMENT_LINK_SENT.value,
        Unlock.payment_link_url.isnot(None),
    )
    if p is not None:
        query = query.filter(Unlock.provider_id == p)

    unlock = query.order_by(Unlock.payment_link_sent_at.desc()).first()
    if unlock is None:
        raise HTTPException(status_code=404, detail="Link not found")

    lead = unlock.lead
    if lead.is_closed and lead.closed_by_provider_id != unlock.provider_id:
        raise HTTPException(status_code=410, detail="This lead has already been taken")

    if unlock.ttl_expires_at is not None and unlock.ttl_expires_at <= clock.now():
        raise HTTPException(status_code=410, detail="This payment link has expired. Reply Y to get a new one.")

    return RedirectResponse(unlock.payment_link_url, status_code=303)
