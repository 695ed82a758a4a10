"""Relational task queue.

Claiming is a two-step optimistic protocol: pick the oldest eligible pending
row, then flip it to processing with a conditional UPDATE guarded on
``status = 'pending'``. Only one concurrent claimer can see ``rowcount == 1``
for a given row; losers retry with the next candidate (bounded by
``claim_attempts``) and finally report an empty queue instead of an error.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import select, update, func
from sqlalchemy.orm import sessionmaker

from catalog_sync.jobs.task import Task, TaskStatus, payload_action
from catalog_sync.models.db import QueueTask
from catalog_sync.utils import get_logger, log_business_event
from catalog_sync.utils.backoff import RetryPolicy
from catalog_sync.utils.time import db_now

logger = get_logger(__name__)


class DbQueue:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        policy: Optional[RetryPolicy] = None,
        lease_seconds: int = 7200,
        claim_attempts: int = 3,
        clock: Callable[[], datetime] = db_now,
    ) -> None:
        self._session_factory = session_factory
        self.policy = policy or RetryPolicy()
        self.lease_seconds = lease_seconds
        self._claim_attempts = max(1, claim_attempts)
        self._clock = clock

    # ------------------------------------------------------------------ #
    def enqueue(self, type: str, payload: dict[str, Any], delay_seconds: float = 0) -> str:
        task_id = secrets.token_hex(8)
        action = payload_action(payload)
        now = self._clock()
        row = QueueTask(
            id=task_id,
            type=type,
            action=action,
            payload=payload,
            status=TaskStatus.PENDING,
            attempts=0,
            created_at=now,
            available_at=now + timedelta(seconds=max(0.0, float(delay_seconds))),
        )
        with self._session_factory() as session:
            session.add(row)
            session.commit()
        logger.debug("Task enqueued", task_id=task_id, type=type, action=action, delay=delay_seconds)
        return task_id

    def reserve(self) -> Optional[Task]:
        token = secrets.token_hex(8)
        for _ in range(self._claim_attempts):
            with self._session_factory() as session:
                now = self._clock()
                candidate = session.execute(
                    select(QueueTask.id)
                    .where(QueueTask.status == TaskStatus.PENDING, QueueTask.available_at <= now)
                    .order_by(QueueTask.created_at.asc(), QueueTask.id.asc())
                    .limit(1)
                ).scalar_one_or_none()
                if candidate is None:
                    return None

                result = session.execute(
                    update(QueueTask)
                    .where(QueueTask.id == candidate, QueueTask.status == TaskStatus.PENDING)
                    .values(
                        status=TaskStatus.PROCESSING,
                        reserved_at=now,
                        worker_token=token,
                        attempts=QueueTask.attempts + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    session.rollback()
                    logger.debug("Lost claim race", task_id=candidate)
                    continue
                session.commit()

                row = session.get(QueueTask, candidate)
                if row is None or row.worker_token != token:  # pragma: no cover - swept in between
                    continue
                task = self._to_task(row)
                task.concurrent_count = self._concurrent_count(session, row)
                logger.info(
                    "Task reserved",
                    task_id=task.id,
                    type=task.type,
                    action=task.action,
                    attempts=task.attempts,
                    concurrent_count=task.concurrent_count,
                )
                return task
        logger.debug("Claim contention persisted, returning no task", attempts=self._claim_attempts)
        return None

    def ack(self, task: Task, info: Optional[str] = None) -> None:
        with self._session_factory() as session:
            result = session.execute(
                update(QueueTask)
                .where(*self._owned(task))
                .values(status=TaskStatus.DONE, info=info, reserved_at=None)
                .execution_options(synchronize_session=False)
            )
            session.commit()
        if result.rowcount != 1:
            logger.warning("Ack ignored: reservation no longer held", task_id=task.id)
            return
        task.status = TaskStatus.DONE
        task.info = info
        logger.info("Task acked", task_id=task.id, action=task.action, info=info)

    def nack(self, task: Task, reason: str, requeue: bool = False) -> None:
        now = self._clock()
        retry = self.policy.should_requeue(task.attempts, requeue)
        if retry:
            delay = self.policy.delay(task.attempts)
            values: dict[str, Any] = {
                "status": TaskStatus.PENDING,
                "available_at": now + timedelta(seconds=delay),
            }
        else:
            delay = None
            values = {"status": TaskStatus.FAILED}
        values.update(reserved_at=None, worker_token=None, error=reason)

        with self._session_factory() as session:
            result = session.execute(
                update(QueueTask)
                .where(*self._owned(task))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            session.commit()
        if result.rowcount != 1:
            logger.warning("Nack ignored: reservation no longer held", task_id=task.id)
            return

        task.status = values["status"]
        task.error = reason
        if retry:
            logger.warning("Task requeued with backoff", task_id=task.id, attempts=task.attempts, delay_seconds=delay, reason=reason)
        else:
            logger.error("Task dead-lettered", task_id=task.id, attempts=task.attempts, reason=reason)
            log_business_event(
                "task_dead_lettered",
                {"type": task.type, "action": task.action, "attempts": task.attempts, "reason": reason},
                task_id=task.id,
            )

    def release_stale(self, lease_seconds: Optional[int] = None) -> int:
        lease = self.lease_seconds if lease_seconds is None else lease_seconds
        cutoff = self._clock() - timedelta(seconds=lease)
        with self._session_factory() as session:
            result = session.execute(
                update(QueueTask)
                .where(QueueTask.status == TaskStatus.PROCESSING, QueueTask.reserved_at < cutoff)
                .values(status=TaskStatus.PENDING, reserved_at=None, worker_token=None)
                .execution_options(synchronize_session=False)
            )
            session.commit()
        released = int(result.rowcount or 0)
        if released:
            logger.warning("Released stale reservations", count=released, lease_seconds=lease)
        return released

    # ------------------------------------------------------------------ #
    def counts(self) -> dict[str, int]:
        out = {status.value: 0 for status in TaskStatus}
        with self._session_factory() as session:
            rows = session.execute(select(QueueTask.status, func.count()).group_by(QueueTask.status)).all()
        for status, count in rows:
            out[TaskStatus(status).value] = int(count)
        return out

    def pending_count(self, type: Optional[str] = None, action: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(QueueTask).where(QueueTask.status == TaskStatus.PENDING)
        if type is not None:
            stmt = stmt.where(QueueTask.type == type)
        if action is not None:
            stmt = stmt.where(QueueTask.action == action)
        with self._session_factory() as session:
            return int(session.execute(stmt).scalar_one())

    def recent(self, limit: int = 10) -> list[Task]:
        with self._session_factory() as session:
            rows = session.execute(
                select(QueueTask).order_by(QueueTask.created_at.desc(), QueueTask.id.desc()).limit(limit)
            ).scalars().all()
            return [self._to_task(r) for r in rows]

    def get(self, task_id: str) -> Optional[Task]:
        with self._session_factory() as session:
            row = session.get(QueueTask, task_id)
            return self._to_task(row) if row is not None else None

    def snapshot(self) -> dict[str, Any]:
        counts = self.counts()
        return {"backend": "db", "depth": counts[TaskStatus.PENDING.value], "counts": counts}

    # ------------------------------------------------------------------ #
    @staticmethod
    def _owned(task: Task) -> tuple:
        return (
            QueueTask.id == task.id,
            QueueTask.status == TaskStatus.PROCESSING,
            QueueTask.worker_token == task.worker_token,
        )

    @staticmethod
    def _concurrent_count(session, row: QueueTask) -> int:
        action_filter = QueueTask.action.is_(None) if row.action is None else QueueTask.action == row.action
        stmt = (
            select(func.count())
            .select_from(QueueTask)
            .where(
                QueueTask.status == TaskStatus.PROCESSING,
                QueueTask.type == row.type,
                action_filter,
                QueueTask.id != row.id,
            )
        )
        return int(session.execute(stmt).scalar_one())

    @staticmethod
    def _to_task(row: QueueTask) -> Task:
        return Task(
            id=row.id,
            type=row.type,
            payload=dict(row.payload or {}),
            status=TaskStatus(row.status),
            attempts=row.attempts,
            created_at=row.created_at,
            available_at=row.available_at,
            reserved_at=row.reserved_at,
            worker_token=row.worker_token,
            error=row.error,
            info=row.info,
        )


__all__ = ["DbQueue"]
