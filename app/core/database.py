import logging

from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.config import settings
from app.core.exceptions import SchemaMissingError

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

Base = declarative_base()

# Tables the follow-up engines own; these alone may be created on first use.
FOLLOWUP_TABLES = ("client_follow_ups", "provider_reminders", "provider_contact_follow_ups")
CORE_TABLES = ("leads", "providers", "unlocks")


def ensure_schema(bind=None, auto_provision_followups: bool = None):
    """
    Verifies that every table the app writes to exists.

    Core tables must come from the Alembic migrations. The follow-up tables
    are created on the spot when auto provisioning is switched on.
    """
    import app.models  # noqa: F401  (registers every table on Base.metadata)

    bind = bind or engine
    if auto_provision_followups is None:
        auto_provision_followups = settings.AUTO_PROVISION_FOLLOWUP_TABLES

    existing = set(inspect(bind).get_table_names())

    missing_core = [t for t in CORE_TABLES if t not in existing]
    if missing_core:
        raise SchemaMissingError(f"Missing tables {missing_core}. Run `alembic upgrade head`.")

    missing_followups = [t for t in FOLLOWUP_TABLES if t not in existing]
    if not missing_followups:
        return

    if not auto_provision_followups:
        raise SchemaMissingError(f"Missing follow-up tables {missing_followups}. Run `alembic upgrade head`.")

    logger.warning(f"🛠️ Provisioning follow-up tables: {missing_followups}")
    Base.metadata.create_all(
        bind=bind,
        tables=[Base.metadata.tables[name] for name in missing_followups],
    )
