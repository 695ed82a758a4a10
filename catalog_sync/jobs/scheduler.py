"""Enqueue loop: keeps a sync batch flowing while the queue is nearly drained."""
from __future__ import annotations

import threading
from typing import Optional

from catalog_sync.config import SCHEDULER_SETTINGS
from catalog_sync.jobs.queue import QueueBackend
from catalog_sync.jobs.task import Action, NextStep
from catalog_sync.utils import get_logger

logger = get_logger(__name__)


class EnqueueLoop:
    def __init__(self, queue: QueueBackend, *, settings: Optional[dict] = None):
        self.queue = queue
        self.settings = dict(SCHEDULER_SETTINGS)
        if settings:
            self.settings.update(settings)
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run_iteration(self) -> Optional[str]:
        """Release stale reservations, then enqueue a sync batch if few tasks are pending."""
        self.queue.release_stale()
        pending = self.queue.pending_count()
        threshold = int(self.settings.get("pending_threshold", 3))
        if pending > threshold:
            logger.debug("Queue busy, no sync batch enqueued", pending=pending, threshold=threshold)
            return None
        step = NextStep.request(Action.OFFER_SYNC_BATCH)
        task_id = self.queue.enqueue(step.type, step.payload)
        logger.info("Sync batch enqueued", task_id=task_id, pending=pending)
        return task_id

    def run(self, iterations: Optional[int] = None) -> int:
        """Run until stopped or ``iterations`` are done. Returns the number of batches enqueued."""
        enqueued = 0
        done = 0
        while not self._stop_event.is_set():
            try:
                if self.run_iteration():
                    enqueued += 1
                wait = float(self.settings.get("interval", 30))
            except Exception as e:
                logger.error("Enqueue loop error", error=str(e), exc_info=True)
                wait = float(self.settings.get("error_sleep", 60))
            done += 1
            if iterations is not None and done >= iterations:
                break
            self._stop_event.wait(wait)
        return enqueued


__all__ = ["EnqueueLoop"]
