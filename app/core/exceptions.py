"""
app/core/exceptions.py

Domain errors. Anything a scheduler tick can retry is caught and logged
where it happens; the rest travels up to the request path.
"""


class LeadUnlockError(Exception):
    """Base class for all domain errors."""


class DuplicateScheduleError(LeadUnlockError):
    """A follow-up already exists for the pair. Treated as a no-op."""


class LeadClosedError(LeadUnlockError):
    """Another provider already unlocked the lead."""

    def __init__(self, lead_id):
        self.lead_id = lead_id
        super().__init__(f"Lead {lead_id} is no longer available")


class UnknownPhoneError(LeadUnlockError):
    """An inbound reply matched no open follow-up."""

    def __init__(self, phone):
        self.phone = phone
        super().__init__(f"No open follow-up for {phone}")


class TransientSendError(LeadUnlockError):
    """An SMS, email or payment call failed. The next tick retries it."""


class SchemaMissingError(LeadUnlockError):
    """An expected table is absent."""


class InvalidTransitionError(LeadUnlockError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Illegal unlock transition {current} -> {target}")


class InvalidTokenError(LeadUnlockError):
    """An accept link token is malformed, tampered with or expired."""
