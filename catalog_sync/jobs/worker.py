"""Queue worker: reserve, dispatch, ack/nack."""
from __future__ import annotations

import enum
import threading
import time
from typing import Optional

from catalog_sync.config import WORKER_SETTINGS
from catalog_sync.jobs.queue import QueueBackend
from catalog_sync.jobs.router import TaskRouter, is_retryable
from catalog_sync.jobs.task import Task
from catalog_sync.utils import bind_log_context, get_logger, log_performance

logger = get_logger(__name__)


class RunResult(str, enum.Enum):
    NO_TASK = "no_task"
    DONE = "done"
    FAILED = "failed"


class QueueWorker:
    def __init__(self, queue: QueueBackend, router: TaskRouter, *, settings: Optional[dict] = None):
        self.queue = queue
        self.router = router
        self.settings = dict(WORKER_SETTINGS)
        if settings:
            self.settings.update(settings)
        self.processed = 0
        self.failed = 0
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._last_sweep = 0.0

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="queue-worker", daemon=True)
        self._thread.start()
        logger.info("Queue worker started")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        logger.info("Queue worker stop requested")
        if timeout is not None and self._thread is not None:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def run_once(self) -> RunResult:
        """Process at most one task."""
        task = self.queue.reserve()
        if task is None:
            return RunResult.NO_TASK

        start = time.time()
        label = task.action or task.type
        with bind_log_context(task_id=task.id, action=label):
            logger.info("Processing task", type=task.type, attempts=task.attempts)
            try:
                info = self.router.dispatch(task)
            except Exception as e:
                return self._failed(task, e)

            self.queue.ack(task, info)
            self.processed += 1
            log_performance(f"task.{label}", (time.time() - start) * 1000, {"task_id": task.id})
            return RunResult.DONE

    def _failed(self, task: Task, e: Exception) -> RunResult:
        requeue = is_retryable(e)
        logger.error(
            "Task failed",
            error=str(e),
            error_type=type(e).__name__,
            requeue=requeue,
            exc_info=True,
        )
        self.queue.nack(task, f"{type(e).__name__}: {e}", requeue=requeue)
        self.failed += 1
        return RunResult.FAILED

    def run_forever(self, max_tasks: Optional[int] = None) -> int:
        """Loop until stopped (or ``max_tasks`` tasks were handled). Returns the number handled."""
        handled = 0
        status_every = int(self.settings.get("status_every", 50))
        while not self._stop_event.is_set():
            self._maybe_sweep()
            try:
                outcome = self.run_once()
            except Exception as e:
                # reserve/ack/nack trouble (storage unavailable); back off and try again
                logger.error("Worker loop error", error=str(e), exc_info=True)
                self._stop_event.wait(float(self.settings.get("error_sleep", 5)))
                continue

            if outcome == RunResult.NO_TASK:
                if max_tasks is not None:
                    break
                self._stop_event.wait(float(self.settings.get("idle_sleep", 5)))
                continue

            handled += 1
            if status_every and handled % status_every == 0:
                logger.info("Worker progress", handled=handled, processed=self.processed, failed=self.failed,
                            queue=self.queue.snapshot())
            if max_tasks is not None and handled >= max_tasks:
                break
            self._stop_event.wait(float(self.settings.get("between_tasks_sleep", 1)))
        logger.info("Queue worker stopped", handled=handled)
        return handled

    def _maybe_sweep(self) -> None:
        now = time.monotonic()
        every = float(self.settings.get("sweep_every_seconds", 300))
        if self._last_sweep and now - self._last_sweep < every:
            return
        self._last_sweep = now
        try:
            self.queue.release_stale()
        except Exception as e:
            logger.error("Stale reservation sweep failed", error=str(e), exc_info=True)


__all__ = ["QueueWorker", "RunResult"]
