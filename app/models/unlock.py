import enum

from sqlalchemy import (
    Column, Integer, String, Text, TIMESTAMP, ForeignKey, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship
from app.core.clock import system_clock
from app.core.database import Base


class UnlockStatus(str, enum.Enum):
    PENDING = "PENDING"
    TEASER_SENT = "TEASER_SENT"
    Y_RECEIVED = "Y_RECEIVED"
    PAYMENT_LINK_SENT = "PAYMENT_LINK_SENT"
    PAID = "PAID"
    REVEALED = "REVEALED"
    EXPIRED = "EXPIRED"
    DECLINED = "DECLINED"


def status_check(enum_cls, name):
    values = ", ".join(f"'{s.value}'" for s in enum_cls)
    return CheckConstraint(f"status IN ({values})", name=name)


# ---------------------------------------------------------
# UNLOCKS (one row per lead + provider)
# ---------------------------------------------------------
class Unlock(Base):
    __tablename__ = "unlocks"
    __table_args__ = (
        UniqueConstraint("lead_id", "provider_id", name="unlocks_lead_provider_unique"),
        status_check(UnlockStatus, "ck_unlocks_status"),
    )

    id = Column(Integer, primary_key=True, index=True)

    lead_id = Column(String(36), ForeignKey("leads.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)

    # Flow: PENDING -> TEASER_SENT -> [Y_RECEIVED] -> PAYMENT_LINK_SENT -> PAID -> REVEALED
    status = Column(String(30), default=UnlockStatus.PENDING.value, nullable=False, index=True)

    idempotency_key = Column(String(64), unique=True, nullable=False)
    ttl_expires_at = Column(TIMESTAMP, nullable=True, index=True)
    price_cents = Column(Integer, nullable=True)

    # Payment
    checkout_session_id = Column(String(255), nullable=True, index=True)
    payment_link_url = Column(Text, nullable=True)

    # Audit trail
    teaser_sent_at = Column(TIMESTAMP, nullable=True)
    y_received_at = Column(TIMESTAMP, nullable=True)
    payment_link_sent_at = Column(TIMESTAMP, nullable=True)
    paid_at = Column(TIMESTAMP, nullable=True)
    unlocked_at = Column(TIMESTAMP, nullable=True)
    revealed_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=system_clock.now)
    updated_at = Column(TIMESTAMP, default=system_clock.now, onupdate=system_clock.now)

    lead = relationship("Lead")
    provider = relationship("Provider")
