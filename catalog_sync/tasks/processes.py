"""Process-status task handlers.

``process.status.check`` works through the ledger in shards and reschedules
itself while anything is still pending. ``process.poll`` follows a single
process id and, once it settles, enqueues the continuation stored in its own
payload (``on_success`` / ``on_failure``).
"""
from __future__ import annotations

from typing import Optional

from catalog_sync.jobs.task import ON_FAILURE, ON_SUCCESS, Action, Task
from catalog_sync.models.db import ProcessStatus
from catalog_sync.services import process_ledger
from catalog_sync.services.offer_api import PENDING_STATUSES
from catalog_sync.tasks.context import TaskContext
from catalog_sync.utils import get_logger

logger = get_logger(__name__)


def handle_status_check(ctx: TaskContext, task: Task) -> Optional[str]:
    batch_size = max(1, int(task.payload.get("batch_size") or ctx.poller_settings.get("default_batch_size", 100)))
    result = ctx.poller.check(batch_size, task.concurrent_count)
    if result.still_pending > 0:
        ctx.request(
            Action.PROCESS_STATUS_CHECK,
            delay_seconds=float(ctx.poller_settings.get("reschedule_seconds", 60)),
            batch_size=batch_size,
        )
    return result.summary()


def handle_poll(ctx: TaskContext, task: Task) -> Optional[str]:
    process_id = task.payload.get("process_id")
    if not process_id:
        raise ValueError("Payload field 'process_id' is required")
    process_id = str(process_id)
    snapshot = ctx.api.get_process_status(process_id)
    tracked = ctx.poller.pending_entry(process_id)

    if snapshot.is_success or snapshot.is_duplicate:
        if tracked is not None:
            ctx.poller.apply(snapshot, *tracked)
        step = task.next_step(ON_SUCCESS)
        if step is not None:
            ctx.enqueue_step(step.with_fields(entity_id=snapshot.resolved_offer_id))
        logger.info("Process succeeded", process_id=process_id, entity_id=snapshot.resolved_offer_id)
        return f"SUCCESS entity_id={snapshot.resolved_offer_id}"

    if snapshot.status in PENDING_STATUSES:
        # Re-enqueue the same payload so the continuation travels with it.
        ctx.sleep(float(ctx.poller_settings.get("continuation_sleep_seconds", 2)))
        ctx.queue.enqueue(task.type, dict(task.payload))
        return f"{snapshot.status} re-polled"

    if tracked is not None:
        try:
            status = ProcessStatus(snapshot.status)
        except ValueError:
            status = ProcessStatus.FAILURE
        with ctx.session_factory() as session:
            process_ledger.resolve(session, process_id, status, snapshot.raw, ctx.clock())
            session.commit()
    step = task.next_step(ON_FAILURE)
    if step is not None:
        ctx.enqueue_step(step.with_fields(status=snapshot.status, error=snapshot.failure_message))
    logger.warning("Process failed", process_id=process_id, status=snapshot.status, error=snapshot.error_message)
    return f"{snapshot.status} failed"
