from .lead import Lead
from .provider import Provider
from .unlock import Unlock, UnlockStatus
from .follow_up import (
    ClientFollowUp,
    ClientFollowUpStatus,
    ProviderReminder,
    ReminderStatus,
    ProviderContactFollowUp,
    ContactFollowUpStatus,
)

__all__ = [
    "Lead",
    "Provider",
    "Unlock",
    "UnlockStatus",
    "ClientFollowUp",
    "ClientFollowUpStatus",
    "ProviderReminder",
    "ReminderStatus",
    "ProviderContactFollowUp",
    "ContactFollowUpStatus",
]
