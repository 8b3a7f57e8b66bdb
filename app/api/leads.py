import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.deps import get_clock, get_db, get_email_service, get_payment_service, get_sms_service
from app.core.config import settings
from app.core.phone import normalize_phone
from app.models.lead import Lead
from app.schemas.lead import LeadCreate, LeadCreateResponse, LeadResponse
from app.services.lead_dispatcher import LeadDispatcher
from app.services.unlock_service import UnlockStateMachine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/leads", tags=["Leads"])


@router.post("", response_model=LeadCreateResponse, status_code=201)
def create_lead(
    payload: LeadCreate,
    db: Session = Depends(get_db),
    sms=Depends(get_sms_service),
    email=Depends(get_email_service),
    payments=Depends(get_payment_service),
    clock=Depends(get_clock),
):
    client_phone = normalize_phone(payload.client_phone)
    if not client_phone:
        raise HTTPException(status_code=422, detail="client_phone is not a valid phone number")

    lead = Lead(
        city=payload.city.strip(),
        service_type=payload.service_type.strip(),
        preferred_time_window=payload.preferred_time_window,
        session_length=payload.session_length,
        client_name=payload.client_name.strip(),
        client_phone=client_phone,
        client_email=payload.client_email,
        exact_address=payload.exact_address,
        created_at=clock.now(),
        updated_at=clock.now(),
        expires_at=clock.now() + timedelta(hours=settings.LEAD_TTL_HOURS),
    )
    db.add(lead)
    db.commit()
    db.refresh(lead)
    logger.info(f"📥 New lead {lead.id}: {lead.service_type} in {lead.city}")

    machine = UnlockStateMachine(db, sms, email=email, payments=payments, clock=clock)
    dispatcher = LeadDispatcher(db, machine)
    providers = dispatcher.find_matching_providers(lead)
    teased = dispatcher.dispatch(lead, providers)

    return LeadCreateResponse(
        lead=LeadResponse.model_validate(lead),
        providers_matched=len(providers),
        teasers_sent=len(teased),
        provider_ids=[u.provider_id for u in teased],
    )
