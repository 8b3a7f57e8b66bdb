import enum

from sqlalchemy import Column, Integer, String, TIMESTAMP, UniqueConstraint, Index, text
from app.core.clock import system_clock
from app.core.database import Base
from app.models.unlock import status_check


class ClientFollowUpStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    YES_REPLIED = "YES_REPLIED"
    NO_REPLIED = "NO_REPLIED"
    RECOVERY_OFFERED = "RECOVERY_OFFERED"
    RECOVERY_ACCEPTED = "RECOVERY_ACCEPTED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class ReminderStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    COMPLETED = "COMPLETED"


class ContactFollowUpStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    RESPONDED = "RESPONDED"
    FAILED = "FAILED"


# ---------------------------------------------------------
# 1. CLIENT CHECK-IN ("did the provider reach out?")
# ---------------------------------------------------------
class ClientFollowUp(Base):
    __tablename__ = "client_follow_ups"
    __table_args__ = (
        UniqueConstraint("lead_id", "provider_id", name="client_follow_ups_lead_provider_unique"),
        status_check(ClientFollowUpStatus, "ck_client_follow_ups_status"),
    )

    id = Column(Integer, primary_key=True, index=True)

    lead_id = Column(String(36), nullable=False, index=True)
    provider_id = Column(Integer, nullable=False)

    client_phone = Column(String(20), nullable=False, index=True)
    client_name = Column(String(255))
    provider_name = Column(String(255))

    # Flow: SCHEDULED -> SENT -> YES_REPLIED | NO_REPLIED -> RECOVERY_OFFERED -> RECOVERY_ACCEPTED | COMPLETED
    status = Column(String(30), default=ClientFollowUpStatus.SCHEDULED.value, nullable=False, index=True)

    send_after = Column(TIMESTAMP, nullable=False, index=True)
    sent_at = Column(TIMESTAMP, nullable=True)
    replied_at = Column(TIMESTAMP, nullable=True)
    recovery_offered_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=system_clock.now)
    updated_at = Column(TIMESTAMP, default=system_clock.now, onupdate=system_clock.now)


# ---------------------------------------------------------
# 2. PROVIDER NUDGE (teaser sent, nothing unlocked yet)
# ---------------------------------------------------------
class ProviderReminder(Base):
    __tablename__ = "provider_reminders"
    __table_args__ = (
        status_check(ReminderStatus, "ck_provider_reminders_status"),
        # At most one open reminder per pair
        Index(
            "uq_provider_reminders_open",
            "lead_id",
            "provider_id",
            unique=True,
            postgresql_where=text("status = 'SCHEDULED'"),
            sqlite_where=text("status = 'SCHEDULED'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    lead_id = Column(String(36), nullable=False, index=True)
    provider_id = Column(Integer, nullable=False, index=True)
    provider_phone = Column(String(20), nullable=False)

    status = Column(String(30), default=ReminderStatus.SCHEDULED.value, nullable=False, index=True)

    send_after = Column(TIMESTAMP, nullable=False, index=True)
    sent_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=system_clock.now)
    updated_at = Column(TIMESTAMP, default=system_clock.now, onupdate=system_clock.now)


# ---------------------------------------------------------
# 3. PROVIDER CONTACT CHECK-IN ("have you contacted the client?")
# ---------------------------------------------------------
class ProviderContactFollowUp(Base):
    __tablename__ = "provider_contact_follow_ups"
    __table_args__ = (
        UniqueConstraint("lead_id", "provider_id", name="provider_contact_follow_ups_lead_provider_unique"),
        status_check(ContactFollowUpStatus, "ck_provider_contact_follow_ups_status"),
    )

    id = Column(Integer, primary_key=True, index=True)

    lead_id = Column(String(36), nullable=False, index=True)
    provider_id = Column(Integer, nullable=False)
    provider_phone = Column(String(20), nullable=False, index=True)
    client_name = Column(String(255))

    status = Column(String(30), default=ContactFollowUpStatus.SCHEDULED.value, nullable=False, index=True)

    send_after = Column(TIMESTAMP, nullable=False, index=True)
    sent_at = Column(TIMESTAMP, nullable=True)
    responded_at = Column(TIMESTAMP, nullable=True)
    response_value = Column(Integer, nullable=True)  # 1 = contacted, 2 = not yet

    created_at = Column(TIMESTAMP, default=system_clock.now)
    updated_at = Column(TIMESTAMP, default=system_clock.now, onupdate=system_clock.now)
