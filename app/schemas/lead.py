from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional
from datetime import datetime


# --- 1. INTAKE ---
class LeadCreate(BaseModel):
    city: str
    service_type: str
    preferred_time_window: Optional[str] = None   # ISO datetime or free text ("Evenings")
    session_length: Optional[str] = None

    client_name: str
    client_phone: str = Field(min_length=7)
    client_email: Optional[EmailStr] = None
    exact_address: Optional[str] = None


# --- 2. RESPONSE ---
class LeadResponse(BaseModel):
    id: str
    city: Optional[str] = None
    service_type: Optional[str] = None
    client_phone: Optional[str] = None
    is_closed: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LeadCreateResponse(BaseModel):
    lead: LeadResponse
    providers_matched: int
    teasers_sent: int
    provider_ids: List[int] = []
