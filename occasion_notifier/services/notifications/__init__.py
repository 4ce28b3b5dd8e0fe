from .dispatcher import NotificationDispatcher
from .ledger import NotificationLedger
from .orchestrator import (
    OCCASION_SLOTS,
    OccasionSlot,
    RunOrchestrator,
    find_slot,
)
from .resolver import RecipientResolver, club_couples

__all__ = [
    "NotificationDispatcher",
    "NotificationLedger",
    "OCCASION_SLOTS",
    "OccasionSlot",
    "RunOrchestrator",
    "find_slot",
    "RecipientResolver",
    "club_couples",
]
