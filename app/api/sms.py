import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_clock, get_db, get_email_service, get_payment_service, get_sms_service
from app.schemas.sms import InboundSMS, InboundSMSResult
from app.services.follow_ups.client_follow_up import ClientFollowUpEngine
from app.services.follow_ups.provider_contact_checkin import ProviderContactCheckinEngine
from app.services.lead_dispatcher import LeadDispatcher
from app.services.teaser_replies import TeaserReplyHandler
from app.services.unlock_service import UnlockStateMachine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sms", tags=["Inbound SMS"])


@router.post("/inbound", response_model=InboundSMSResult)
def inbound_sms(
    message: InboundSMS,
    db: Session = Depends(get_db),
    sms=Depends(get_sms_service),
    email=Depends(get_email_service),
    payments=Depends(get_payment_service),
    clock=Depends(get_clock),
):
    """
    Routes one inbound text. Handlers are tried in order and the first one
    that claims the message wins:
    opt-out keywords, provider contact check-in codes, client follow-up
    replies, provider Y/N teaser replies.
    """
    machine = UnlockStateMachine(db, sms, email=email, payments=payments, clock=clock)
    teasers = TeaserReplyHandler(db, machine, sms)
    checkins = ProviderContactCheckinEngine(db, sms, machine.clock)
    follow_ups = ClientFollowUpEngine(db, sms, machine.clock, dispatcher=LeadDispatcher(db, machine))

    handlers = [
        ("opt_out", teasers.handle_opt_out),
        ("provider_contact_checkin", checkins.handle_reply),
        ("client_follow_up", follow_ups.handle_reply),
        ("teaser_reply", teasers.handle_reply),
    ]

    reason = None
    for name, handler in handlers:
        result = handler(message.sender, message.text)
        if result.get("handled"):
            logger.info(f"📩 Inbound SMS from {message.sender} handled by {name}: {result.get('action')}")
            return InboundSMSResult(handled=True, handler=name, action=result.get("action"))
        reason = result.get("reason", reason)

    logger.info(f"📩 Inbound SMS from {message.sender} not handled")
    return InboundSMSResult(handled=False, reason=reason or "no_handler")
