from .base import ResponseBase
from .tasks import TaskEnqueue, TaskRead
from .sync import SyncBatchTrigger, OfferMapRead, SyncStateRead, ProcessEntryRead, SubjectRead

__all__ = [
    # Base
    "ResponseBase",

    # Tasks
    "TaskEnqueue",
    "TaskRead",

    # Sync
    "SyncBatchTrigger",
    "OfferMapRead",
    "SyncStateRead",
    "ProcessEntryRead",
    "SubjectRead",
]
