from sqlalchemy import Column, Integer, String, Boolean, TIMESTAMP
from sqlalchemy.orm import validates
from app.core.clock import system_clock
from app.core.phone import normalize_phone
from app.core.database import Base


class Provider(Base):
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(255))
    phone = Column(String(20), unique=True, index=True)  # E.164
    email = Column(String(255), nullable=True)

    # Matching criteria. Empty service_types means "any service".
    city = Column(String(120), nullable=True)
    service_types = Column(String(255), default="")

    is_verified = Column(Boolean, default=True, nullable=False)
    sms_opted_out = Column(Boolean, default=False, nullable=False)

    # Rolling one-hour SMS counter
    messages_window_started_at = Column(TIMESTAMP, nullable=True)
    messages_in_window = Column(Integer, default=0, nullable=False)

    created_at = Column(TIMESTAMP, default=system_clock.now)
    updated_at = Column(TIMESTAMP, default=system_clock.now, onupdate=system_clock.now)

    @validates("phone")
    def _normalize_phone(self, key, value):
        return normalize_phone(value)

    def offers(self, service_type: str | None) -> bool:
        wanted = [s.strip().lower() for s in (self.service_types or "").split(",") if s.strip()]
        if not wanted or not service_type:
            return True
        return service_type.strip().lower() in wanted
