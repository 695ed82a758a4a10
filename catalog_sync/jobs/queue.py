"""Durable task queue contract and backend factory.

Two interchangeable backends implement ``QueueBackend``:

* ``DbQueue``   - relational table, claim via a conditional UPDATE (preferred).
* ``FileQueue`` - one JSON record per task under pending/processing/done/failed
  directories, claim via atomic rename.

Both apply the same ``RetryPolicy`` on nack, the same stale-reservation sweep,
and report ``concurrent_count`` on every reserved task.
"""
from __future__ import annotations

from typing import Any, Callable, Optional, Protocol

from sqlalchemy.orm import sessionmaker

from catalog_sync.config import QUEUE_SETTINGS
from catalog_sync.jobs.task import Task
from catalog_sync.utils import get_logger
from catalog_sync.utils.backoff import RetryPolicy

logger = get_logger(__name__)


class QueueBackend(Protocol):
    def enqueue(self, type: str, payload: dict[str, Any], delay_seconds: float = 0) -> str: ...
    def reserve(self) -> Optional[Task]: ...
    def ack(self, task: Task, info: Optional[str] = None) -> None: ...
    def nack(self, task: Task, reason: str, requeue: bool = False) -> None: ...
    def release_stale(self, lease_seconds: Optional[int] = None) -> int: ...
    def counts(self) -> dict[str, int]: ...
    def pending_count(self, type: Optional[str] = None, action: Optional[str] = None) -> int: ...
    def recent(self, limit: int = 10) -> list[Task]: ...
    def get(self, task_id: str) -> Optional[Task]: ...
    def snapshot(self) -> dict[str, Any]: ...


def create_queue(
    settings: Optional[dict] = None,
    *,
    session_factory: Optional[sessionmaker] = None,
    policy: Optional[RetryPolicy] = None,
    clock: Optional[Callable] = None,
) -> QueueBackend:
    """Create the queue backend selected by ``settings['driver']``."""
    cfg = dict(QUEUE_SETTINGS)
    if settings:
        cfg.update(settings)
    driver = str(cfg.get("driver", "db")).lower()
    policy = policy or RetryPolicy.from_settings()
    extra: dict[str, Any] = {"clock": clock} if clock is not None else {}

    if driver == "file":
        from catalog_sync.jobs.file_queue import FileQueue
        logger.info("Using file-backed queue", directory=str(cfg["dir"]))
        return FileQueue(str(cfg["dir"]), policy=policy, lease_seconds=int(cfg["lease_seconds"]), **extra)
    if driver == "db":
        if session_factory is None:
            raise ValueError("session_factory is required for the db queue driver")
        from catalog_sync.jobs.db_queue import DbQueue
        logger.info("Using database-backed queue")
        return DbQueue(
            session_factory,
            policy=policy,
            lease_seconds=int(cfg["lease_seconds"]),
            claim_attempts=int(cfg.get("claim_attempts", 3)),
            **extra,
        )
    raise ValueError(f"Unknown queue driver: {driver}")


__all__ = ["QueueBackend", "create_queue"]
