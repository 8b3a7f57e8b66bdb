"""Shared pytest fixtures for the lead unlock tests.

Fixtures:
    - memory_db: Session on a fresh in-memory SQLite database
    - clock: FakeClock that tests move forward by hand
    - sms / email / payments: recording fakes for the gateways
    - machine: UnlockStateMachine wired to the fakes
    - make_lead / make_provider: row factories
    - client: FastAPI TestClient using all of the above
"""

import json
import os
from datetime import datetime, timedelta
from typing import Generator

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["EMAIL_LINK_SECRET"] = "test-link-secret"
os.environ["DOMAIN"] = "https://leads.test"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.database import Base
from app.core.exceptions import TransientSendError
from app.models.lead import Lead
from app.models.provider import Provider
from app.services.unlock_service import UnlockStateMachine

NOW = datetime(2026, 1, 5, 12, 0, 0)


# =========================================================================
# FAKES
# =========================================================================


class FakeClock:
    def __init__(self, start: datetime = NOW):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


class RecordingSMS:
    """Keeps every message; numbers in `failing` raise TransientSendError."""

    def __init__(self):
        self.sent = []
        self.failing = set()

    def send_sms(self, phone: str, text: str) -> dict:
        if phone in self.failing:
            raise TransientSendError(f"gateway down for {phone}")
        self.sent.append((phone, text))
        return {"success": True}

    def to(self, phone: str) -> list[str]:
        return [text for p, text in self.sent if p == phone]


class RecordingEmail:
    def __init__(self):
        self.sent = []

    def send_accept_email(self, provider, lead, accept_url, price_cents):
        self.sent.append(("accept", provider.email, accept_url))
        return True, None

    def send_unlocked_details_email(self, provider, lead):
        self.sent.append(("unlocked", provider.email, lead.id))
        return True, None


class FakePayments:
    """
    Checkout sessions are remembered per idempotency key, like Stripe does.
    Webhook payloads are plain JSON; the signature must equal "valid".
    """

    def __init__(self):
        self.sessions = {}
        self.paid = set()
        self.created = 0
        self.verify_calls = 0
        self.fail_create = False

    def create_checkout_session(self, lead, provider, unlock, idempotency_key):
        if self.fail_create:
            raise TransientSendError("STRIPE_ERROR: boom")
        if idempotency_key not in self.sessions:
            self.created += 1
            session_id = f"cs_test_{self.created}"
            self.sessions[idempotency_key] = (session_id, f"https://checkout.test/{session_id}")
        return self.sessions[idempotency_key]

    def verify_payment(self, session_id):
        self.verify_calls += 1
        return session_id in self.paid

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise ValueError("bad signature")
        return json.loads(payload)


# =========================================================================
# DATABASE
# =========================================================================


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture
def memory_db(session_factory) -> Generator[Session, None, None]:
    """Session on an in-memory database with every table created."""
    db = session_factory()
    yield db
    db.close()


# =========================================================================
# COLLABORATORS
# =========================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sms() -> RecordingSMS:
    return RecordingSMS()


@pytest.fixture
def email() -> RecordingEmail:
    return RecordingEmail()


@pytest.fixture
def payments() -> FakePayments:
    return FakePayments()


@pytest.fixture
def machine(memory_db, sms, email, payments, clock) -> UnlockStateMachine:
    return UnlockStateMachine(memory_db, sms, email=email, payments=payments, clock=clock)


# =========================================================================
# ROW FACTORIES
# =========================================================================


@pytest.fixture
def make_lead(memory_db, clock):
    def _make(**overrides) -> Lead:
        fields = dict(
            city="Austin",
            service_type="massage",
            preferred_time_window="Evenings",
            client_name="Dana",
            client_phone="+15125550100",
            client_email="dana@example.com",
            exact_address="12 Oak St",
            created_at=clock.now(),
            updated_at=clock.now(),
        )
        fields.update(overrides)
        lead = Lead(**fields)
        memory_db.add(lead)
        memory_db.commit()
        memory_db.refresh(lead)
        return lead

    return _make


@pytest.fixture
def make_provider(memory_db, clock):
    counter = {"n": 0}

    def _make(**overrides) -> Provider:
        counter["n"] += 1
        fields = dict(
            name=f"Provider {counter['n']}",
            phone=f"+1512555{counter['n']:04d}",
            email=f"provider{counter['n']}@example.com",
            city="Austin",
            service_types="massage",
            created_at=clock.now(),
            updated_at=clock.now(),
        )
        fields.update(overrides)
        provider = Provider(**fields)
        memory_db.add(provider)
        memory_db.commit()
        memory_db.refresh(provider)
        return provider

    return _make


@pytest.fixture
def lead(make_lead) -> Lead:
    return make_lead()


@pytest.fixture
def provider(make_provider) -> Provider:
    return make_provider()


@pytest.fixture
def teased_unlock(machine, lead, provider):
    """An unlock that has been created and teased."""
    unlock, _ = machine.create_if_absent(lead, provider)
    machine.send_teaser(unlock)
    return unlock


# =========================================================================
# HTTP
# =========================================================================


@pytest.fixture
def client(memory_db, sms, email, payments, clock):
    from fastapi.testclient import TestClient

    from app.api import deps
    from app.main import app

    def _db():
        yield memory_db

    app.dependency_overrides[deps.get_db] = _db
    app.dependency_overrides[deps.get_sms_service] = lambda: sms
    app.dependency_overrides[deps.get_email_service] = lambda: email
    app.dependency_overrides[deps.get_payment_service] = lambda: payments
    app.dependency_overrides[deps.get_clock] = lambda: clock

    yield TestClient(app)

    app.dependency_overrides.clear()
