"""Central Enum definitions for sync and ledger states.

These replace scattered string literals so DB models, schemas, and handlers
agree on the exact values stored.
"""
from __future__ import annotations
import enum


class SyncStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"
    FAILED = "failed"


class OperationType(str, enum.Enum):
    CREATE = "create"
    CORE_UPDATE = "core"
    PRICE_UPDATE = "price"
    STOCK_UPDATE = "stock"


class ProcessStatus(str, enum.Enum):
    """Ledger entry status; remote terminal statuses are stored verbatim."""
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


TERMINAL_FAILURE_STATUSES = frozenset({
    ProcessStatus.FAILURE,
    ProcessStatus.ERROR,
    ProcessStatus.TIMEOUT,
    ProcessStatus.CANCELLED,
})
