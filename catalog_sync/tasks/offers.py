"""Offer task handlers (``marketplace.request`` actions under ``offer.*``).

Batch actions go through the reconciliation engine. The single-step actions
(create, per-aspect updates) exist for manual repair and for continuation
chains: each one issues a single remote operation and enqueues a
``process.poll`` that carries the follow-up step for either outcome.
"""
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import case, or_, select

from catalog_sync.jobs.task import Action, NextStep, Task
from catalog_sync.models.db import OfferMap, OperationType, StagedOffer, SyncState, SyncStatus
from catalog_sync.services import offer_mapper, offer_store, process_ledger, sync_tracker
from catalog_sync.services.offer_api import AlreadyExists, Created, CreateFailed
from catalog_sync.services.reconciliation_engine import CreateRejected, SubjectNotFound
from catalog_sync.tasks.context import TaskContext
from catalog_sync.utils import get_logger, log_business_event

logger = get_logger(__name__)


def _require(payload: dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None or value == "" or value == []:
        raise ValueError(f"Payload field '{key}' is required")
    return value


def _schedule_status_check(ctx: TaskContext, batch_size: int) -> Optional[str]:
    if batch_size <= 0:
        return None
    return ctx.request(
        Action.PROCESS_STATUS_CHECK,
        delay_seconds=float(ctx.poller_settings.get("followup_seconds", 120)),
        batch_size=batch_size,
    )


def _poll_with(ctx: TaskContext, process_id: str, on_success: NextStep, on_failure: NextStep) -> str:
    return ctx.request(
        Action.PROCESS_POLL,
        process_id=process_id,
        on_success=on_success.to_dict(),
        on_failure=on_failure.to_dict(),
    )


# ---------------------------------------------------------------------- #
def handle_sync_batch(ctx: TaskContext, task: Task) -> Optional[str]:
    """Select the next subjects due for a sync and hand them to an upsert batch."""
    payload = task.payload
    brands = list(payload.get("brands", ctx.sync_settings.get("brands") or []))
    seasons = list(payload.get("seasons", ctx.sync_settings.get("seasons") or []))
    if not brands or not seasons:
        raise ValueError("brands and seasons must not be empty")
    limit = max(1, int(payload.get("limit") or ctx.sync_settings.get("batch_limit", 100)))

    stmt = (
        select(StagedOffer.ean, StagedOffer.brand_id, StagedOffer.season)
        .outerjoin(SyncState, SyncState.ean == StagedOffer.ean)
        .where(
            StagedOffer.brand_id.in_(brands),
            StagedOffer.season.in_(seasons),
            or_(SyncState.status.is_(None), SyncState.status.in_([SyncStatus.PENDING, SyncStatus.ERROR])),
        )
        .order_by(
            case((SyncState.last_synced_at.is_(None), 0), else_=1),
            SyncState.last_synced_at.asc(),
            SyncState.retry_count.asc(),
            StagedOffer.ean.asc(),
        )
        .limit(limit)
    )
    with ctx.session_factory() as session:
        rows = session.execute(stmt).all()
        if not rows:
            logger.info("No subjects due for sync", brands=brands, seasons=seasons)
            return "no subjects"
        now = ctx.clock()
        for ean, brand_id, season in rows:
            sync_tracker.mark_in_progress(session, ean, brand_id, season, now)
        session.commit()

    eans = [row[0] for row in rows]
    task_id = ctx.request(Action.OFFER_UPSERT_BATCH, eans=eans)
    log_business_event("sync_batch_selected", {"count": len(eans), "upsert_task_id": task_id}, task_id=task.id)
    return f"selected={len(eans)}"


def handle_upsert_batch(ctx: TaskContext, task: Task) -> Optional[str]:
    eans = [str(e) for e in _require(task.payload, "eans")]
    result = ctx.engine.upsert_batch(eans)
    _schedule_status_check(ctx, result.followup_batch_size())
    return result.summary()


def handle_upsert(ctx: TaskContext, task: Task) -> Optional[str]:
    ean = str(_require(task.payload, "ean"))
    outcome = ctx.engine.upsert_one(ean)
    _schedule_status_check(ctx, 1 if outcome.created else outcome.updates)
    if outcome.error:
        return f"error: {outcome.error}"
    return f"operations={','.join(op.value for op in outcome.operations) or 'none'}"


# ---------------------------------------------------------------------- #
def handle_create(ctx: TaskContext, task: Task) -> Optional[str]:
    ean = str(_require(task.payload, "ean"))
    with ctx.session_factory() as session:
        staged = session.get(StagedOffer, ean)
        if staged is None:
            raise SubjectNotFound(f"No staged offer for EAN {ean}")
        row = staged.as_row()
        payload = offer_mapper.from_row(row, ctx.sync_settings)

        result = ctx.api.create_offer(payload)
        now = ctx.clock()
        if isinstance(result, Created):
            process_ledger.record_operation(session, result.process_id, ean, OperationType.CREATE, now)
            offer_store.store_desired(session, row, payload, now, settings=ctx.sync_settings)
            session.commit()
            _poll_with(
                ctx,
                result.process_id,
                NextStep.request(Action.OFFER_CREATE_STORE, ean=ean),
                NextStep.request(Action.OFFER_SYNC_ERROR, ean=ean),
            )
            return f"process_id={result.process_id}"
        if isinstance(result, AlreadyExists):
            offer_store.bind_identity(session, ean, result.offer_id, now)
            session.commit()
            ctx.request(Action.OFFER_SYNC_SUCCESS, ean=ean)
            return f"already exists offer_id={result.offer_id}"
        if isinstance(result, CreateFailed):
            raise CreateRejected(result.error)
    raise TypeError(f"Unexpected create result: {result!r}")


def handle_create_store(ctx: TaskContext, task: Task) -> Optional[str]:
    ean = str(_require(task.payload, "ean"))
    offer_id = task.payload.get("entity_id") or task.payload.get("offer_id")
    if not offer_id:
        raise ValueError("Offer id is required to store a created offer")
    with ctx.session_factory() as session:
        offer_store.bind_identity(session, ean, str(offer_id), ctx.clock())
        session.commit()
    ctx.request(Action.OFFER_SYNC_SUCCESS, ean=ean)
    return f"offer_id={offer_id}"


def _handle_update(ctx: TaskContext, task: Task, op: OperationType) -> Optional[str]:
    ean = str(_require(task.payload, "ean"))
    with ctx.session_factory() as session:
        staged = session.get(StagedOffer, ean)
        if staged is None:
            raise SubjectNotFound(f"No staged offer for EAN {ean}")
        mapping = session.get(OfferMap, ean)
        if mapping is None or not mapping.offer_id:
            raise LookupError(f"EAN {ean} has no bound offer id")
        payload = offer_mapper.from_row(staged.as_row(), ctx.sync_settings)

        if op == OperationType.CORE_UPDATE:
            process_id = ctx.api.update_core(mapping.offer_id, offer_mapper.core_body(payload, ctx.sync_settings))
            mapping.last_core_hash = offer_mapper.core_hash(payload, ctx.sync_settings)
            mapping.on_hold_by_retailer = bool(payload["onHoldByRetailer"])
            mapping.fulfilment_delivery_code = payload["fulfilment"]["deliveryCode"]
        elif op == OperationType.PRICE_UPDATE:
            price = offer_mapper.price_of(payload)
            process_id = ctx.api.update_price(mapping.offer_id, price)
            mapping.last_price = price
        else:
            amount = offer_mapper.stock_of(payload)
            process_id = ctx.api.update_stock(mapping.offer_id, amount)
            mapping.last_stock = amount

        now = ctx.clock()
        process_ledger.record_operation(session, process_id, ean, op, now)
        session.commit()

    _poll_with(
        ctx,
        process_id,
        NextStep.request(Action.OFFER_MAP_TOUCH, ean=ean),
        NextStep.request(Action.OFFER_SYNC_ERROR, ean=ean),
    )
    return f"{op.value} process_id={process_id}"


def handle_update_core(ctx: TaskContext, task: Task) -> Optional[str]:
    return _handle_update(ctx, task, OperationType.CORE_UPDATE)


def handle_update_price(ctx: TaskContext, task: Task) -> Optional[str]:
    return _handle_update(ctx, task, OperationType.PRICE_UPDATE)


def handle_update_stock(ctx: TaskContext, task: Task) -> Optional[str]:
    return _handle_update(ctx, task, OperationType.STOCK_UPDATE)


def handle_map_touch(ctx: TaskContext, task: Task) -> Optional[str]:
    ean = str(_require(task.payload, "ean"))
    with ctx.session_factory() as session:
        mapping = session.get(OfferMap, ean)
        if mapping is None:
            raise LookupError(f"No offer map for EAN {ean}")
        now = ctx.clock()
        mapping.last_synced_at = now
        mapping.last_checked_at = now
        session.commit()
    return "touched"


# ---------------------------------------------------------------------- #
def handle_sync_success(ctx: TaskContext, task: Task) -> Optional[str]:
    ean = str(_require(task.payload, "ean"))
    with ctx.session_factory() as session:
        sync_tracker.mark_success(session, ean, ctx.clock())
        session.commit()
    return "success"


def handle_sync_error(ctx: TaskContext, task: Task) -> Optional[str]:
    """Record a failed step; retry the subject through ``offer.upsert`` until the retry limit parks it."""
    payload = task.payload
    ean = str(_require(payload, "ean"))
    error = str(payload.get("error") or f"Process failed with status: {payload.get('status', 'UNKNOWN')}")
    with ctx.session_factory() as session:
        state = sync_tracker.mark_error(
            session,
            ean,
            error,
            ctx.clock(),
            max_retries=int(ctx.sync_settings.get("max_retries", 5)),
        )
        status = state.status
        retry_count = state.retry_count
        session.commit()
    if status == SyncStatus.FAILED:
        return f"failed after {retry_count} retries"
    ctx.request(Action.OFFER_UPSERT, ean=ean)
    return f"retry {retry_count} scheduled"
