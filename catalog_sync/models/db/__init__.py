from .enums import SyncStatus, OperationType, ProcessStatus, TERMINAL_FAILURE_STATUSES
from .queue_tasks import QueueTask
from .staged_offers import StagedOffer
from .offer_map import OfferMap
from .sync_state import SyncState
from .process_ledger import ProcessLedgerEntry

__all__ = [
    "SyncStatus",
    "OperationType",
    "ProcessStatus",
    "TERMINAL_FAILURE_STATUSES",
    "QueueTask",
    "StagedOffer",
    "OfferMap",
    "SyncState",
    "ProcessLedgerEntry",
]
