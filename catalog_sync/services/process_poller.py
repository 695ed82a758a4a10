"""Resolve pending ledger entries against the marketplace process-status API.

Concurrent status-check tasks shard the pending set by offset: the task that
was claimed while ``concurrent_count`` siblings were already running reads the
window starting at ``concurrent_count * batch_size``. Entries that were looked
at recently (``checked_at`` within the recheck interval) are skipped so a
single slow process does not eat every batch.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from catalog_sync.config import POLLER_SETTINGS, SYNC_SETTINGS
from catalog_sync.models.db import OperationType, ProcessLedgerEntry, ProcessStatus
from catalog_sync.services import offer_store, process_ledger, sync_tracker
from catalog_sync.services.offer_api import OfferAPI, ProcessSnapshot
from catalog_sync.utils import get_logger, log_business_event, log_performance
from catalog_sync.utils.time import db_now

logger = get_logger(__name__)


@dataclass
class CheckResult:
    offset: int
    checked: int = 0
    succeeded: int = 0
    failed: int = 0
    still_pending: int = 0

    def summary(self) -> str:
        return (
            f"offset={self.offset} checked={self.checked} success={self.succeeded} "
            f"failed={self.failed} pending={self.still_pending}"
        )


def shard_offset(batch_size: int, concurrent_count: int) -> int:
    return max(0, int(concurrent_count)) * max(1, int(batch_size))


class ProcessPoller:
    def __init__(
        self,
        session_factory: sessionmaker,
        offer_api: OfferAPI,
        *,
        settings: Optional[dict] = None,
        clock: Callable[[], datetime] = db_now,
    ) -> None:
        self._session_factory = session_factory
        self.api = offer_api
        self.settings = settings if settings is not None else POLLER_SETTINGS
        self._clock = clock

    def check(self, batch_size: Optional[int] = None, concurrent_count: int = 0) -> CheckResult:
        size = max(1, int(batch_size or self.settings.get("default_batch_size", 100)))
        result = CheckResult(offset=shard_offset(size, concurrent_count))
        start = time.time()

        with self._session_factory() as session:
            now = self._clock()
            cutoff = process_ledger.recheck_cutoff(now, int(self.settings.get("recheck_seconds", 30)))
            entries = process_ledger.pending_page(session, limit=size, offset=result.offset, recheck_before=cutoff)
            # checked_at is stamped per entry as it is read, never for the whole window up front.
            targets = [(e.process_id, e.ean, e.op_type) for e in entries]

        for process_id, ean, op_type in targets:
            result.checked += 1
            try:
                snapshot = self.api.get_process_status(process_id)
            except Exception as exc:
                logger.error("Process status read failed", process_id=process_id, ean=ean, error=str(exc))
                with self._session_factory() as session:
                    process_ledger.touch(session, process_id, {"error": str(exc)}, self._clock())
                    session.commit()
                result.still_pending += 1
                continue
            outcome = self.apply(snapshot, ean, op_type)
            if outcome == ProcessStatus.SUCCESS:
                result.succeeded += 1
            elif outcome == ProcessStatus.PENDING:
                result.still_pending += 1
            else:
                result.failed += 1

        log_performance("process_poller.check", (time.time() - start) * 1000, {"checked": result.checked})
        logger.info("Process status check finished", summary=result.summary())
        return result

    def apply(self, snapshot: ProcessSnapshot, ean: str, op_type: OperationType) -> ProcessStatus:
        """Fold one status read into ledger, OfferMap and SyncState. Returns the ledger status applied."""
        with self._session_factory() as session:
            now = self._clock()
            if snapshot.is_success or snapshot.is_duplicate:
                if not process_ledger.resolve(session, snapshot.process_id, ProcessStatus.SUCCESS, snapshot.raw, now):
                    session.rollback()
                    return ProcessStatus.SUCCESS
                if op_type == OperationType.CREATE:
                    offer_id = snapshot.resolved_offer_id
                    if offer_id:
                        offer_store.bind_identity(session, ean, offer_id, now)
                    else:
                        logger.warning("Create succeeded without an offer id", process_id=snapshot.process_id, ean=ean)
                sync_tracker.mark_success(session, ean, now)
                session.commit()
                log_business_event(
                    "process_resolved",
                    {"process_id": snapshot.process_id, "ean": ean, "op_type": op_type.value,
                     "status": "SUCCESS", "duplicate": snapshot.is_duplicate},
                )
                return ProcessStatus.SUCCESS

            if snapshot.is_terminal_failure:
                status = ProcessStatus(snapshot.status)
                if process_ledger.resolve(session, snapshot.process_id, status, snapshot.raw, now):
                    sync_tracker.mark_error(
                        session,
                        ean,
                        snapshot.failure_message,
                        now,
                        max_retries=int(SYNC_SETTINGS.get("max_retries", 5)),
                    )
                    logger.warning("Process failed remotely", process_id=snapshot.process_id, ean=ean, status=status.value)
                session.commit()
                return status

            process_ledger.touch(session, snapshot.process_id, snapshot.raw, now)
            session.commit()
            return ProcessStatus.PENDING

    def pending_entry(self, process_id: str) -> Optional[tuple[str, OperationType]]:
        with self._session_factory() as session:
            entry = session.get(ProcessLedgerEntry, process_id)
            if entry is None or entry.status != ProcessStatus.PENDING:
                return None
            return entry.ean, entry.op_type


__all__ = ["ProcessPoller", "CheckResult", "shard_offset"]
