"""Offer-level operations on top of ``MarketplaceClient``.

Every mutating call is asynchronous on the marketplace side: it returns a
process id that has to be polled later. ``create_offer`` additionally folds the
synchronous duplicate refusal into an ``AlreadyExists`` result so callers can
treat "created" and "already there" the same way.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from catalog_sync.config import MARKETPLACE_SETTINGS
from catalog_sync.models.db import ProcessStatus, TERMINAL_FAILURE_STATUSES
from catalog_sync.services import offer_mapper
from catalog_sync.services.conflicts import parse_create_conflict, parse_process_conflict
from catalog_sync.services.marketplace_client import MarketplaceClient, RemoteAPIError
from catalog_sync.utils import get_logger

logger = get_logger(__name__)

PENDING_STATUSES = frozenset({"PENDING", "IN_PROGRESS"})


class MissingProcessId(RuntimeError):
    """The marketplace accepted a mutation but returned no process id to track."""


@dataclass(frozen=True)
class Created:
    process_id: str


@dataclass(frozen=True)
class AlreadyExists:
    offer_id: str


@dataclass(frozen=True)
class CreateFailed:
    error: str
    status_code: Optional[int] = None


CreateResult = Union[Created, AlreadyExists, CreateFailed]


@dataclass(frozen=True)
class ProcessSnapshot:
    process_id: str
    status: str
    entity_id: Optional[str] = None
    error_message: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_duplicate(self) -> bool:
        return self.status == ProcessStatus.FAILURE.value and parse_process_conflict(self.error_message) is not None

    @property
    def is_success(self) -> bool:
        return self.status == ProcessStatus.SUCCESS.value

    @property
    def is_terminal_failure(self) -> bool:
        return not self.is_duplicate and self.status in {s.value for s in TERMINAL_FAILURE_STATUSES}

    @property
    def is_pending(self) -> bool:
        return not (self.is_success or self.is_duplicate or self.is_terminal_failure)

    @property
    def resolved_offer_id(self) -> Optional[str]:
        """Offer id the process settled on: the entity on success, the existing offer on a duplicate."""
        if self.is_success and self.entity_id:
            return self.entity_id
        if not self.is_duplicate:
            return None
        return parse_process_conflict(self.error_message).existing_identity

    @property
    def failure_message(self) -> str:
        return self.error_message or f"Process failed with status: {self.status}"


class OfferAPI:
    def __init__(self, client: MarketplaceClient, settings: Optional[dict] = None):
        cfg = settings if settings is not None else MARKETPLACE_SETTINGS
        self.client = client
        self.retailer = str(cfg.get("retailer_prefix", "/retailer")).rstrip("/")
        self.shared = str(cfg.get("shared_prefix", "/shared")).rstrip("/")
        self.accept_csv = str(cfg.get("accept_csv", "application/vnd.retailer.v10+csv"))

    def create_offer(self, payload: dict[str, Any]) -> CreateResult:
        try:
            data = self.client.request("POST", f"{self.retailer}/offers", json=payload)
        except RemoteAPIError as exc:
            conflict = parse_create_conflict(exc.body)
            if conflict is None:
                raise
            if not conflict.existing_identity:
                return CreateFailed(error=str(exc), status_code=exc.status_code)
            logger.info("Offer already exists", ean=payload.get("ean"), offer_id=conflict.existing_identity)
            return AlreadyExists(offer_id=conflict.existing_identity)

        process_id = (data or {}).get("processStatusId")
        if not process_id:
            return CreateFailed(error="No processStatusId returned on create")
        return Created(process_id=str(process_id))

    def update_core(self, offer_id: str, body: dict[str, Any]) -> str:
        return self._mutate("PUT", f"{self.retailer}/offers/{offer_id}", body)

    def update_price(self, offer_id: str, price: float) -> str:
        return self._mutate("PUT", f"{self.retailer}/offers/{offer_id}/price", offer_mapper.price_body(price))

    def update_stock(self, offer_id: str, amount: int) -> str:
        return self._mutate("PUT", f"{self.retailer}/offers/{offer_id}/stock", offer_mapper.stock_body(amount))

    def get_process_status(self, process_id: str) -> ProcessSnapshot:
        data = self.client.request("GET", f"{self.shared}/process-status/{process_id}") or {}
        entity_id = data.get("entityId")
        return ProcessSnapshot(
            process_id=str(process_id),
            status=str(data.get("status") or "UNKNOWN").upper(),
            entity_id=str(entity_id) if entity_id else None,
            error_message=data.get("errorMessage"),
            raw=data,
        )

    def request_export(self) -> str:
        return self._mutate("POST", f"{self.retailer}/offers/export", {"format": "CSV"})

    def fetch_export(self, report_id: str) -> str:
        return self.client.request("GET", f"{self.retailer}/offers/export/{report_id}", accept=self.accept_csv)

    def _mutate(self, method: str, path: str, body: dict[str, Any]) -> str:
        data = self.client.request(method, path, json=body) or {}
        process_id = data.get("processStatusId")
        if not process_id:
            raise MissingProcessId(f"No processStatusId returned by {method} {path}")
        return str(process_id)


__all__ = [
    "OfferAPI",
    "Created",
    "AlreadyExists",
    "CreateFailed",
    "CreateResult",
    "ProcessSnapshot",
    "MissingProcessId",
    "PENDING_STATUSES",
]
