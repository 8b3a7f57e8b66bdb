"""
app/services/unlock_store.py

Guarded reads/writes of status rows.

Every status write is an `UPDATE ... WHERE id = ? AND status IN (expected)`.
Zero rows updated means another tick / instance / request got there first,
so the caller must re-read instead of assuming its view is current.
"""

import logging
import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import system_clock
from app.core.exceptions import DuplicateScheduleError
from app.models.unlock import Unlock, UnlockStatus

logger = logging.getLogger(__name__)


def _value(status) -> str:
    return status.value if hasattr(status, "value") else status


def guarded_update(db: Session, model, row, expected, target=None, extra_criteria=(), **values) -> bool:
    """
    Moves `row` to `target` (and writes `values`) only while its status is
    still one of `expected`. Commits, reloads `row`, and reports whether this
    call won.
    """
    if target is not None:
        values["status"] = _value(target)

    count = (
        db.query(model)
        .filter(model.id == row.id, model.status.in_([_value(s) for s in expected]), *extra_criteria)
        .update(values, synchronize_session=False)
    )
    db.commit()
    db.refresh(row)
    return count == 1


def insert_unique(db: Session, row):
    """Adds and commits `row`. A unique-key collision rolls back and raises DuplicateScheduleError."""
    db.add(row)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise DuplicateScheduleError(f"{type(row).__name__} already exists") from e
    db.refresh(row)
    return row


class UnlockStore:
    def __init__(self, db: Session, clock=system_clock):
        self.db = db
        self.clock = clock

    def get(self, lead_id, provider_id) -> Unlock | None:
        return self.db.query(Unlock).filter(
            Unlock.lead_id == lead_id,
            Unlock.provider_id == provider_id,
        ).first()

    def get_by_checkout_session(self, session_id: str) -> Unlock | None:
        return self.db.query(Unlock).filter(Unlock.checkout_session_id == session_id).first()

    def provider_ids_for_lead(self, lead_id) -> set[int]:
        rows = self.db.query(Unlock.provider_id).filter(Unlock.lead_id == lead_id).all()
        return {r.provider_id for r in rows}

    def create_if_absent(self, lead_id, provider_id, price_cents: int = None) -> tuple[Unlock, bool]:
        """
        Inserts a PENDING row. The (lead_id, provider_id) unique constraint
        makes concurrent creators collide; the loser gets the winner's row.
        Returns (unlock, created).
        """
        now = self.clock.now()
        unlock = Unlock(
            lead_id=lead_id,
            provider_id=provider_id,
            status=UnlockStatus.PENDING.value,
            idempotency_key=uuid.uuid4().hex,
            price_cents=price_cents,
            created_at=now,
            updated_at=now,
        )
        self.db.add(unlock)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.get(lead_id, provider_id)
            if existing is None:
                raise
            logger.info(f"🔁 Unlock for lead {lead_id} / provider {provider_id} already exists (#{existing.id}), reusing it")
            return existing, False

        self.db.refresh(unlock)
        return unlock, True

    def transition(self, unlock: Unlock, expected, target, extra_criteria=(), **values) -> bool:
        values.setdefault("updated_at", self.clock.now())
        return guarded_update(self.db, Unlock, unlock, expected, target, extra_criteria, **values)
