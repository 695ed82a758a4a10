"""Offer reconciliation engine.

For each subject (EAN) the engine loads the desired state from staging, compares
it with what OfferMap says was last applied remotely, and issues only the
operations that are needed:

* no bound offer id   -> create (or bind the existing offer on a duplicate refusal)
* core hash differs   -> core update
* price differs       -> price update
* stock differs       -> stock update
* nothing differs     -> refresh ``last_checked_at`` only

Every accepted operation is written to the process ledger in the same commit
that records the new last-applied value. Subjects are processed independently:
an exception on one subject is recorded on its SyncState and the batch moves on.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session, sessionmaker

from catalog_sync.config import SYNC_SETTINGS
from catalog_sync.models.db import OfferMap, OperationType, StagedOffer
from catalog_sync.services import offer_mapper, offer_store, process_ledger, sync_tracker
from catalog_sync.services.offer_api import AlreadyExists, Created, CreateFailed, OfferAPI
from catalog_sync.utils import get_logger, log_performance
from catalog_sync.utils.time import db_now

logger = get_logger(__name__)


class SubjectNotFound(LookupError):
    pass


class CreateRejected(RuntimeError):
    pass


@dataclass
class SubjectOutcome:
    ean: str
    operations: list[OperationType] = field(default_factory=list)
    bound: bool = False
    error: Optional[str] = None

    @property
    def created(self) -> bool:
        return OperationType.CREATE in self.operations

    @property
    def updates(self) -> int:
        return sum(1 for op in self.operations if op != OperationType.CREATE)


@dataclass
class BatchResult:
    outcomes: list[SubjectOutcome] = field(default_factory=list)

    @property
    def creates(self) -> int:
        return sum(1 for o in self.outcomes if o.created)

    @property
    def updates(self) -> int:
        return sum(o.updates for o in self.outcomes)

    @property
    def failures(self) -> list[str]:
        return [o.ean for o in self.outcomes if o.error]

    def followup_batch_size(self) -> int:
        """Status-check batch size for the follow-up: 1 after creates, else one per update."""
        if self.creates > 0:
            return 1
        return self.updates

    def summary(self) -> str:
        return (
            f"subjects={len(self.outcomes)} creates={self.creates} "
            f"updates={self.updates} failures={len(self.failures)}"
        )


class ReconciliationEngine:
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
        self.settings = settings if settings is not None else SYNC_SETTINGS
        self._clock = clock

    def upsert_batch(self, eans: Iterable[str]) -> BatchResult:
        start = time.time()
        result = BatchResult()
        for ean in eans:
            result.outcomes.append(self.upsert_one(str(ean)))
        log_performance(
            "reconciliation.upsert_batch",
            (time.time() - start) * 1000,
            {"subjects": len(result.outcomes), "creates": result.creates, "updates": result.updates},
        )
        logger.info("Upsert batch finished", summary=result.summary())
        return result

    def upsert_one(self, ean: str) -> SubjectOutcome:
        outcome = SubjectOutcome(ean=ean)
        with self._session_factory() as session:
            try:
                self._reconcile(session, outcome)
                sync_tracker.mark_success(session, ean, self._clock())
                session.commit()
            except Exception as exc:
                session.rollback()
                outcome.error = str(exc)
                logger.error("Subject reconciliation failed", ean=ean, error=str(exc), exc_info=True)
                sync_tracker.mark_error(
                    session,
                    ean,
                    str(exc),
                    self._clock(),
                    max_retries=int(self.settings.get("max_retries", 5)),
                )
                session.commit()
        return outcome

    # ------------------------------------------------------------------ #
    def _reconcile(self, session: Session, outcome: SubjectOutcome) -> None:
        ean = outcome.ean
        staged = session.get(StagedOffer, ean)
        if staged is None:
            raise SubjectNotFound(f"No staged offer for EAN {ean}")
        row = staged.as_row()
        payload = offer_mapper.from_row(row, self.settings)
        mapping = session.get(OfferMap, ean)

        if mapping is None or mapping.offer_id is None:
            if self._create(session, row, payload, outcome):
                return
            mapping = session.get(OfferMap, ean)
            if mapping is None or mapping.offer_id is None:
                return

        self._apply_diffs(session, mapping, payload, outcome)

    def _create(self, session: Session, row: dict, payload: dict, outcome: SubjectOutcome) -> bool:
        """Issue a create. True when the subject is done for this pass, False to continue with diffs."""
        result = self.api.create_offer(payload)
        now = self._clock()
        if isinstance(result, Created):
            process_ledger.record_operation(session, result.process_id, outcome.ean, OperationType.CREATE, now)
            offer_store.store_desired(session, row, payload, now, settings=self.settings)
            session.commit()
            outcome.operations.append(OperationType.CREATE)
            logger.info("Offer create accepted", ean=outcome.ean, process_id=result.process_id)
            return True
        if isinstance(result, AlreadyExists):
            outcome.bound = offer_store.bind_identity(
                session, outcome.ean, result.offer_id, now, brand_id=row.get("brand_id"), season=row.get("season")
            )
            session.commit()
            return False
        if isinstance(result, CreateFailed):
            raise CreateRejected(result.error)
        raise TypeError(f"Unexpected create result: {result!r}")

    def _apply_diffs(self, session: Session, mapping: OfferMap, payload: dict, outcome: SubjectOutcome) -> None:
        offer_id = mapping.offer_id
        want_hash = offer_mapper.core_hash(payload, self.settings)
        if mapping.last_core_hash != want_hash:
            process_id = self.api.update_core(offer_id, offer_mapper.core_body(payload, self.settings))
            now = self._clock()
            process_ledger.record_operation(session, process_id, outcome.ean, OperationType.CORE_UPDATE, now)
            mapping.last_core_hash = want_hash
            mapping.on_hold_by_retailer = bool(payload["onHoldByRetailer"])
            mapping.fulfilment_delivery_code = payload["fulfilment"]["deliveryCode"]
            self._applied(session, mapping, outcome, OperationType.CORE_UPDATE, now)

        price = offer_mapper.price_of(payload)
        if not offer_store.price_matches(mapping, price):
            process_id = self.api.update_price(offer_id, price)
            now = self._clock()
            process_ledger.record_operation(session, process_id, outcome.ean, OperationType.PRICE_UPDATE, now)
            mapping.last_price = price
            self._applied(session, mapping, outcome, OperationType.PRICE_UPDATE, now)

        stock = offer_mapper.stock_of(payload)
        if mapping.last_stock != stock:
            process_id = self.api.update_stock(offer_id, stock)
            now = self._clock()
            process_ledger.record_operation(session, process_id, outcome.ean, OperationType.STOCK_UPDATE, now)
            mapping.last_stock = stock
            self._applied(session, mapping, outcome, OperationType.STOCK_UPDATE, now)

        if not outcome.updates:
            mapping.last_checked_at = self._clock()
            session.commit()
            logger.debug("Offer unchanged", ean=outcome.ean, offer_id=offer_id)

    @staticmethod
    def _applied(session: Session, mapping: OfferMap, outcome: SubjectOutcome, op: OperationType, now: datetime) -> None:
        mapping.last_synced_at = now
        mapping.last_checked_at = now
        # One commit per accepted operation so a later failure does not lose the ledger entry.
        session.commit()
        outcome.operations.append(op)
        logger.info("Offer update accepted", ean=outcome.ean, offer_id=mapping.offer_id, operation=op.value)


__all__ = ["ReconciliationEngine", "BatchResult", "SubjectOutcome", "SubjectNotFound", "CreateRejected"]
