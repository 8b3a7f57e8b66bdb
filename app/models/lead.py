import uuid

from sqlalchemy import Column, Integer, String, Text, Boolean, TIMESTAMP
from sqlalchemy.orm import validates
from app.core.clock import system_clock
from app.core.phone import normalize_phone
from app.core.database import Base


class Lead(Base):
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Public fields (go into the teaser)
    city = Column(String(120))
    service_type = Column(String(60))
    preferred_time_window = Column(String(120))
    session_length = Column(String(60))

    # Private fields (only revealed after payment)
    client_name = Column(String(255))
    client_phone = Column(String(20), index=True)  # E.164
    client_email = Column(String(255))
    exact_address = Column(Text)

    is_closed = Column(Boolean, default=False, nullable=False)
    closed_by_provider_id = Column(Integer, nullable=True)

    expires_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, default=system_clock.now)
    updated_at = Column(TIMESTAMP, default=system_clock.now, onupdate=system_clock.now)

    @validates("client_phone")
    def _normalize_phone(self, key, value):
        return normalize_phone(value)

    def public_summary(self) -> str:
        return (
            f"Service: {self.service_type}\n"
            f"Location: {self.city}\n"
            f"When: {self.preferred_time_window or 'Flexible'}\n"
            f"Session: {self.session_length or 'Not specified'}"
        )
