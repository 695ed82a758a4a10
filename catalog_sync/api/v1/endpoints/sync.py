"""
Sync management endpoints: trigger a batch, inspect a subject, list ledger entries.
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session
from catalog_sync.api.deps import get_db, get_queue
from catalog_sync.jobs.queue import QueueBackend
from catalog_sync.jobs.task import Action, NextStep
from catalog_sync.models.db import OfferMap, ProcessLedgerEntry, ProcessStatus, StagedOffer, SyncState
from catalog_sync.models.schemas.base import ResponseBase
from catalog_sync.models.schemas.sync import (
    OfferMapRead,
    ProcessEntryRead,
    SubjectRead,
    SyncBatchTrigger,
    SyncStateRead,
)
from catalog_sync.services import process_ledger
from catalog_sync.utils import get_logger, log_business_event

router = APIRouter()
logger = get_logger(__name__)


def _entry(entry: ProcessLedgerEntry) -> ProcessEntryRead:
    return ProcessEntryRead(
        process_id=entry.process_id,
        ean=entry.ean,
        op_type=entry.op_type.value,
        status=entry.status.value,
        created_at=entry.created_at,
        checked_at=entry.checked_at,
    )


@router.post(
    "/batch",
    response_model=ResponseBase,
    status_code=201,
    summary="Enqueue an offer sync batch"
)
async def trigger_sync_batch(
    trigger: SyncBatchTrigger,
    request: Request,
    queue: QueueBackend = Depends(get_queue)
) -> ResponseBase:
    fields = {k: v for k, v in trigger.model_dump().items() if v is not None}
    step = NextStep.request(Action.OFFER_SYNC_BATCH, **fields)
    task_id = queue.enqueue(step.type, step.payload)
    logger.info("Sync batch enqueued via API", task_id=task_id, **fields)
    log_business_event(
        "sync_batch_triggered",
        fields,
        task_id=task_id,
        request_id=getattr(request.state, "request_id", None),
    )
    return ResponseBase(message="Sync batch enqueued", data={"task_id": task_id, **fields})


@router.get(
    "/subjects/{ean}",
    response_model=ResponseBase,
    summary="Offer binding, sync state and ledger entries for one EAN"
)
async def get_subject(ean: str, db: Session = Depends(get_db)) -> ResponseBase:
    staged = db.get(StagedOffer, ean)
    mapping = db.get(OfferMap, ean)
    state = db.get(SyncState, ean)
    if staged is None and mapping is None and state is None:
        raise HTTPException(status_code=404, detail=f"Subject {ean} not found")

    entries = db.execute(
        select(ProcessLedgerEntry)
        .where(ProcessLedgerEntry.ean == ean)
        .order_by(ProcessLedgerEntry.created_at.desc())
        .limit(50)
    ).scalars().all()

    subject = SubjectRead(
        ean=ean,
        staged=staged is not None,
        offer=OfferMapRead(
            offer_id=mapping.offer_id,
            last_price=float(mapping.last_price) if mapping.last_price is not None else None,
            last_stock=mapping.last_stock,
            last_core_hash=mapping.last_core_hash,
            on_hold_by_retailer=mapping.on_hold_by_retailer,
            fulfilment_delivery_code=mapping.fulfilment_delivery_code,
            last_synced_at=mapping.last_synced_at,
            last_checked_at=mapping.last_checked_at,
        ) if mapping is not None else None,
        sync=SyncStateRead(
            status=state.status.value,
            last_error=state.last_error,
            retry_count=state.retry_count,
            last_synced_at=state.last_synced_at,
        ) if state is not None else None,
        processes=[_entry(e) for e in entries],
    )
    return ResponseBase(data=subject.model_dump(mode="json"))


@router.get(
    "/processes",
    response_model=ResponseBase,
    summary="List process ledger entries"
)
async def list_processes(
    status: Optional[str] = Query(None, description="Filter by ledger status, e.g. PENDING"),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db)
) -> ResponseBase:
    stmt = select(ProcessLedgerEntry).order_by(ProcessLedgerEntry.created_at.asc()).limit(limit)
    if status is not None:
        try:
            wanted = ProcessStatus(status.upper())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown process status: {status}")
        stmt = stmt.where(ProcessLedgerEntry.status == wanted)
    entries = db.execute(stmt).scalars().all()
    return ResponseBase(
        data={
            "counts": process_ledger.counts_by_status(db),
            "items": [_entry(e).model_dump(mode="json") for e in entries],
        }
    )
