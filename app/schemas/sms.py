from pydantic import BaseModel
from typing import Optional


class InboundSMS(BaseModel):
    # TextMagic inbound callback field names
    sender: str
    text: str = ""
    receiver: Optional[str] = None
    message_id: Optional[str] = None


class InboundSMSResult(BaseModel):
    handled: bool
    handler: Optional[str] = None
    action: Optional[str] = None
    reason: Optional[str] = None
