"""Process ledger access: record accepted operations, page pending ones, resolve them.

Resolution is one-way. ``resolve`` only updates rows still in PENDING, so a
late or repeated status read can never move an entry out of a terminal state.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from catalog_sync.models.db import OperationType, ProcessLedgerEntry, ProcessStatus
from catalog_sync.utils import get_logger

logger = get_logger(__name__)


def record_operation(
    session: Session,
    process_id: str,
    ean: str,
    op_type: OperationType,
    now: datetime,
) -> ProcessLedgerEntry:
    """Insert a PENDING entry; a re-recorded process id only becomes eligible for an immediate re-check."""
    entry = session.get(ProcessLedgerEntry, process_id)
    if entry is None:
        entry = ProcessLedgerEntry(
            process_id=process_id,
            ean=ean,
            op_type=op_type,
            status=ProcessStatus.PENDING,
            created_at=now,
        )
        session.add(entry)
        logger.debug("Ledger entry recorded", process_id=process_id, ean=ean, op_type=op_type.value)
        return entry
    if entry.status == ProcessStatus.PENDING:
        entry.checked_at = None
    logger.info("Ledger entry already recorded", process_id=process_id, status=entry.status.value)
    return entry


def pending_page(
    session: Session,
    *,
    limit: int,
    offset: int,
    recheck_before: datetime,
) -> list[ProcessLedgerEntry]:
    stmt = (
        select(ProcessLedgerEntry)
        .where(
            ProcessLedgerEntry.status == ProcessStatus.PENDING,
            or_(ProcessLedgerEntry.checked_at.is_(None), ProcessLedgerEntry.checked_at < recheck_before),
        )
        .order_by(ProcessLedgerEntry.created_at.asc(), ProcessLedgerEntry.process_id.asc())
        .offset(offset)
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())


def resolve(
    session: Session,
    process_id: str,
    status: ProcessStatus,
    result: Optional[dict[str, Any]],
    now: datetime,
) -> bool:
    """Move a PENDING entry to ``status``; False if it was already resolved (or unknown)."""
    outcome = session.execute(
        update(ProcessLedgerEntry)
        .where(ProcessLedgerEntry.process_id == process_id, ProcessLedgerEntry.status == ProcessStatus.PENDING)
        .values(status=status, last_result=result, checked_at=now)
        .execution_options(synchronize_session=False)
    )
    if outcome.rowcount != 1:
        logger.debug("Ledger entry not pending, resolution skipped", process_id=process_id, status=status.value)
        return False
    return True


def touch(session: Session, process_id: str, result: Optional[dict[str, Any]], now: datetime) -> None:
    """Still pending remotely: keep the status, remember the latest answer."""
    session.execute(
        update(ProcessLedgerEntry)
        .where(ProcessLedgerEntry.process_id == process_id, ProcessLedgerEntry.status == ProcessStatus.PENDING)
        .values(last_result=result, checked_at=now)
        .execution_options(synchronize_session=False)
    )


def counts_by_status(session: Session) -> dict[str, int]:
    out = {status.value: 0 for status in ProcessStatus}
    rows = session.execute(
        select(ProcessLedgerEntry.status, func.count()).group_by(ProcessLedgerEntry.status)
    ).all()
    for status, count in rows:
        out[ProcessStatus(status).value] = int(count)
    return out


def recheck_cutoff(now: datetime, recheck_seconds: int) -> datetime:
    return now - timedelta(seconds=recheck_seconds)


__all__ = ["record_operation", "pending_page", "resolve", "touch", "counts_by_status", "recheck_cutoff"]
