"""initial schema: leads, providers, unlocks and the follow-up tables

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00

"""
from alembic import op
import sqlalchemy as sa


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


UNLOCK_STATUSES = ("PENDING", "TEASER_SENT", "Y_RECEIVED", "PAYMENT_LINK_SENT", "PAID", "REVEALED", "EXPIRED", "DECLINED")
CLIENT_FOLLOW_UP_STATUSES = (
    "SCHEDULED", "SENT", "YES_REPLIED", "NO_REPLIED", "RECOVERY_OFFERED", "RECOVERY_ACCEPTED", "COMPLETED", "EXPIRED",
)
REMINDER_STATUSES = ("SCHEDULED", "SENT", "COMPLETED")
CONTACT_FOLLOW_UP_STATUSES = ("SCHEDULED", "SENT", "RESPONDED", "FAILED")


def _status_check(values, name):
    return sa.CheckConstraint("status IN ({})".format(", ".join(f"'{v}'" for v in values)), name=name)


def _timestamps():
    return [
        sa.Column("created_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "leads",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("city", sa.String(length=120)),
        sa.Column("service_type", sa.String(length=60)),
        sa.Column("preferred_time_window", sa.String(length=120)),
        sa.Column("session_length", sa.String(length=60)),
        sa.Column("client_name", sa.String(length=255)),
        sa.Column("client_phone", sa.String(length=20)),
        sa.Column("client_email", sa.String(length=255)),
        sa.Column("exact_address", sa.Text()),
        sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("closed_by_provider_id", sa.Integer(), nullable=True),
        sa.Column("expires_at", sa.TIMESTAMP(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_leads_client_phone", "leads", ["client_phone"])

    op.create_table(
        "providers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255)),
        sa.Column("phone", sa.String(length=20)),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("service_types", sa.String(length=255), server_default=""),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sms_opted_out", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("messages_window_started_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("messages_in_window", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_providers_id", "providers", ["id"])
    op.create_index("ix_providers_phone", "providers", ["phone"], unique=True)

    op.create_table(
        "unlocks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("lead_id", sa.String(length=36), sa.ForeignKey("leads.id"), nullable=False),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("providers.id"), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="PENDING"),
        sa.Column("idempotency_key", sa.String(length=64), nullable=False, unique=True),
        sa.Column("ttl_expires_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=True),
        sa.Column("checkout_session_id", sa.String(length=255), nullable=True),
        sa.Column("payment_link_url", sa.Text(), nullable=True),
        sa.Column("teaser_sent_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("y_received_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("payment_link_sent_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("paid_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("unlocked_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("revealed_at", sa.TIMESTAMP(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("lead_id", "provider_id", name="unlocks_lead_provider_unique"),
        _status_check(UNLOCK_STATUSES, "ck_unlocks_status"),
    )
    op.create_index("ix_unlocks_id", "unlocks", ["id"])
    op.create_index("ix_unlocks_lead_id", "unlocks", ["lead_id"])
    op.create_index("ix_unlocks_provider_id", "unlocks", ["provider_id"])
    op.create_index("ix_unlocks_status", "unlocks", ["status"])
    op.create_index("ix_unlocks_ttl_expires_at", "unlocks", ["ttl_expires_at"])
    op.create_index("ix_unlocks_checkout_session_id", "unlocks", ["checkout_session_id"])

    op.create_table(
        "client_follow_ups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("lead_id", sa.String(length=36), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("client_phone", sa.String(length=20), nullable=False),
        sa.Column("client_name", sa.String(length=255)),
        sa.Column("provider_name", sa.String(length=255)),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="SCHEDULED"),
        sa.Column("send_after", sa.TIMESTAMP(), nullable=False),
        sa.Column("sent_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("replied_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("recovery_offered_at", sa.TIMESTAMP(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("lead_id", "provider_id", name="client_follow_ups_lead_provider_unique"),
        _status_check(CLIENT_FOLLOW_UP_STATUSES, "ck_client_follow_ups_status"),
    )
    op.create_index("ix_client_follow_ups_id", "client_follow_ups", ["id"])
    op.create_index("ix_client_follow_ups_lead_id", "client_follow_ups", ["lead_id"])
    op.create_index("ix_client_follow_ups_client_phone", "client_follow_ups", ["client_phone"])
    op.create_index("ix_client_follow_ups_status", "client_follow_ups", ["status"])
    op.create_index("ix_client_follow_ups_send_after", "client_follow_ups", ["send_after"])

    op.create_table(
        "provider_reminders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("lead_id", sa.String(length=36), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("provider_phone", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="SCHEDULED"),
        sa.Column("send_after", sa.TIMESTAMP(), nullable=False),
        sa.Column("sent_at", sa.TIMESTAMP(), nullable=True),
        *_timestamps(),
        _status_check(REMINDER_STATUSES, "ck_provider_reminders_status"),
    )
    op.create_index("ix_provider_reminders_id", "provider_reminders", ["id"])
    op.create_index("ix_provider_reminders_lead_id", "provider_reminders", ["lead_id"])
    op.create_index("ix_provider_reminders_provider_id", "provider_reminders", ["provider_id"])
    op.create_index("ix_provider_reminders_status", "provider_reminders", ["status"])
    op.create_index("ix_provider_reminders_send_after", "provider_reminders", ["send_after"])
    op.create_index(
        "uq_provider_reminders_open",
        "provider_reminders",
        ["lead_id", "provider_id"],
        unique=True,
        postgresql_where=sa.text("status = 'SCHEDULED'"),
        sqlite_where=sa.text("status = 'SCHEDULED'"),
    )

    op.create_table(
        "provider_contact_follow_ups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("lead_id", sa.String(length=36), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("provider_phone", sa.String(length=20), nullable=False),
        sa.Column("client_name", sa.String(length=255)),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="SCHEDULED"),
        sa.Column("send_after", sa.TIMESTAMP(), nullable=False),
        sa.Column("sent_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("responded_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("response_value", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("lead_id", "provider_id", name="provider_contact_follow_ups_lead_provider_unique"),
        _status_check(CONTACT_FOLLOW_UP_STATUSES, "ck_provider_contact_follow_ups_status"),
    )
    op.create_index("ix_provider_contact_follow_ups_id", "provider_contact_follow_ups", ["id"])
    op.create_index("ix_provider_contact_follow_ups_lead_id", "provider_contact_follow_ups", ["lead_id"])
    op.create_index("ix_provider_contact_follow_ups_provider_phone", "provider_contact_follow_ups", ["provider_phone"])
    op.create_index("ix_provider_contact_follow_ups_status", "provider_contact_follow_ups", ["status"])
    op.create_index("ix_provider_contact_follow_ups_send_after", "provider_contact_follow_ups", ["send_after"])


def downgrade() -> None:
    op.drop_table("provider_contact_follow_ups")
    op.drop_index("uq_provider_reminders_open", table_name="provider_reminders")
    op.drop_table("provider_reminders")
    op.drop_table("client_follow_ups")
    op.drop_table("unlocks")
    op.drop_table("providers")
    op.drop_table("leads")
