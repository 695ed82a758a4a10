"""Directory-backed task queue.

Layout under ``base_dir``::

    pending/<id>.json     waiting (may carry a future available_at)
    processing/<id>.json  claimed by exactly one worker
    done/<id>.json        acked
    failed/<id>.json      dead-lettered
    tmp/                  staging area for atomic writes

``os.rename`` from pending/ to processing/ is the claim: the filesystem lets
exactly one caller move a given file, every other caller gets
``FileNotFoundError`` and moves on to the next candidate. Records are always
written to tmp/ first and moved into place with ``os.replace`` so readers never
see a partial JSON document.
"""
from __future__ import annotations

import json
import os
import secrets
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from catalog_sync.jobs.task import Task, TaskStatus
from catalog_sync.utils import get_logger, log_business_event
from catalog_sync.utils.backoff import RetryPolicy
from catalog_sync.utils.time import db_now

logger = get_logger(__name__)

_STATUS_DIRS = {
    TaskStatus.PENDING: "pending",
    TaskStatus.PROCESSING: "processing",
    TaskStatus.DONE: "done",
    TaskStatus.FAILED: "failed",
}


class FileQueue:
    def __init__(
        self,
        base_dir: str | os.PathLike,
        *,
        policy: Optional[RetryPolicy] = None,
        lease_seconds: int = 7200,
        clock: Callable[[], datetime] = db_now,
    ) -> None:
        self.base = Path(base_dir)
        self.policy = policy or RetryPolicy()
        self.lease_seconds = lease_seconds
        self._clock = clock
        self._dirs = {status: self.base / name for status, name in _STATUS_DIRS.items()}
        self._tmp = self.base / "tmp"
        for d in [*self._dirs.values(), self._tmp]:
            d.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------ #
    def enqueue(self, type: str, payload: dict[str, Any], delay_seconds: float = 0) -> str:
        task_id = secrets.token_hex(8)
        now = self._clock()
        task = Task(
            id=task_id,
            type=type,
            payload=payload,
            status=TaskStatus.PENDING,
            attempts=0,
            created_at=now,
            available_at=now + timedelta(seconds=max(0.0, float(delay_seconds))),
        )
        self._write(self._path(TaskStatus.PENDING, task_id), task)
        logger.debug("Task enqueued", task_id=task_id, type=type, action=task.action, delay=delay_seconds)
        return task_id

    def reserve(self) -> Optional[Task]:
        now = self._clock()
        token = secrets.token_hex(8)
        candidates = sorted(
            (t for t in self._records(TaskStatus.PENDING) if t.available_at is None or t.available_at <= now),
            key=lambda t: (t.created_at or now, t.id),
        )
        for candidate in candidates:
            src = self._path(TaskStatus.PENDING, candidate.id)
            dst = self._path(TaskStatus.PROCESSING, candidate.id)
            try:
                os.rename(src, dst)
            except FileNotFoundError:
                logger.debug("Lost claim race", task_id=candidate.id)
                continue

            task = self._read(dst)
            if task is None:  # pragma: no cover - removed by an operator mid-claim
                continue
            task.status = TaskStatus.PROCESSING
            task.attempts += 1
            task.reserved_at = now
            task.worker_token = token
            self._write(dst, task)
            task.concurrent_count = sum(
                1
                for other in self._records(TaskStatus.PROCESSING)
                if other.id != task.id and other.type == task.type and other.action == task.action
            )
            logger.info(
                "Task reserved",
                task_id=task.id,
                type=task.type,
                action=task.action,
                attempts=task.attempts,
                concurrent_count=task.concurrent_count,
            )
            return task
        return None

    def ack(self, task: Task, info: Optional[str] = None) -> None:
        current = self._owned(task)
        if current is None:
            logger.warning("Ack ignored: reservation no longer held", task_id=task.id)
            return
        current.status = TaskStatus.DONE
        current.info = info
        current.reserved_at = None
        self._move(current, TaskStatus.PROCESSING, TaskStatus.DONE)
        task.status = TaskStatus.DONE
        task.info = info
        logger.info("Task acked", task_id=task.id, action=task.action, info=info)

    def nack(self, task: Task, reason: str, requeue: bool = False) -> None:
        current = self._owned(task)
        if current is None:
            logger.warning("Nack ignored: reservation no longer held", task_id=task.id)
            return
        retry = self.policy.should_requeue(current.attempts, requeue)
        current.error = reason
        current.reserved_at = None
        current.worker_token = None
        if retry:
            delay = self.policy.delay(current.attempts)
            current.status = TaskStatus.PENDING
            current.available_at = self._clock() + timedelta(seconds=delay)
            self._move(current, TaskStatus.PROCESSING, TaskStatus.PENDING)
            logger.warning("Task requeued with backoff", task_id=task.id, attempts=current.attempts, delay_seconds=delay, reason=reason)
        else:
            current.status = TaskStatus.FAILED
            self._move(current, TaskStatus.PROCESSING, TaskStatus.FAILED)
            logger.error("Task dead-lettered", task_id=task.id, attempts=current.attempts, reason=reason)
            log_business_event(
                "task_dead_lettered",
                {"type": current.type, "action": current.action, "attempts": current.attempts, "reason": reason},
                task_id=task.id,
            )
        task.status = current.status
        task.error = reason

    def release_stale(self, lease_seconds: Optional[int] = None) -> int:
        lease = self.lease_seconds if lease_seconds is None else lease_seconds
        cutoff = self._clock() - timedelta(seconds=lease)
        released = 0
        for task in self._records(TaskStatus.PROCESSING):
            reserved_at = task.reserved_at or self._claimed_at(task.id)
            if reserved_at is None or reserved_at >= cutoff:
                continue
            task.status = TaskStatus.PENDING
            task.reserved_at = None
            task.worker_token = None
            if self._move(task, TaskStatus.PROCESSING, TaskStatus.PENDING):
                released += 1
        if released:
            logger.warning("Released stale reservations", count=released, lease_seconds=lease)
        return released

    # ------------------------------------------------------------------ #
    def counts(self) -> dict[str, int]:
        return {status.value: len(list(d.glob("*.json"))) for status, d in self._dirs.items()}

    def pending_count(self, type: Optional[str] = None, action: Optional[str] = None) -> int:
        if type is None and action is None:
            return self.counts()[TaskStatus.PENDING.value]
        return sum(
            1
            for t in self._records(TaskStatus.PENDING)
            if (type is None or t.type == type) and (action is None or t.action == action)
        )

    def recent(self, limit: int = 10) -> list[Task]:
        tasks = [t for status in TaskStatus for t in self._records(status)]
        tasks.sort(key=lambda t: (t.created_at or datetime.min, t.id), reverse=True)
        return tasks[:limit]

    def get(self, task_id: str) -> Optional[Task]:
        for status in TaskStatus:
            task = self._read(self._path(status, task_id))
            if task is not None:
                return task
        return None

    def snapshot(self) -> dict[str, Any]:
        counts = self.counts()
        return {"backend": "file", "depth": counts[TaskStatus.PENDING.value], "counts": counts, "dir": str(self.base)}

    # ------------------------------------------------------------------ #
    def _path(self, status: TaskStatus, task_id: str) -> Path:
        return self._dirs[status] / f"{task_id}.json"

    def _claimed_at(self, task_id: str) -> Optional[datetime]:
        """Claim time of a record the claiming worker never rewrote (crashed right after the rename)."""
        try:
            mtime = self._path(TaskStatus.PROCESSING, task_id).stat().st_mtime
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(mtime, timezone.utc).replace(tzinfo=None)

    def _owned(self, task: Task) -> Optional[Task]:
        current = self._read(self._path(TaskStatus.PROCESSING, task.id))
        if current is None or current.worker_token != task.worker_token:
            return None
        return current

    def _move(self, task: Task, src: TaskStatus, dst: TaskStatus) -> bool:
        """Write the updated record into ``dst`` and drop the ``src`` copy."""
        src_path = self._path(src, task.id)
        if not src_path.exists():
            return False
        self._write(self._path(dst, task.id), task)
        src_path.unlink(missing_ok=True)
        return True

    def _write(self, path: Path, task: Task) -> None:
        tmp = self._tmp / f"{task.id}.{secrets.token_hex(4)}.tmp"
        tmp.write_text(json.dumps(task.to_dict(), ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)

    def _read(self, path: Path) -> Optional[Task]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        return Task.from_dict(data)

    def _records(self, status: TaskStatus) -> Iterator[Task]:
        for path in self._dirs[status].glob("*.json"):
            task = self._read(path)
            if task is not None:
                yield task


__all__ = ["FileQueue"]
