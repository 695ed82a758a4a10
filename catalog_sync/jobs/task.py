"""Queue task payload structures shared by every backend."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class TaskType(str, enum.Enum):
    PING = "ping"
    # Generic envelope; the business step lives in payload["action"].
    MARKETPLACE_REQUEST = "marketplace.request"


class Action(str, enum.Enum):
    OFFER_SYNC_BATCH = "offer.sync.batch"
    OFFER_UPSERT_BATCH = "offer.upsert.batch"
    OFFER_UPSERT = "offer.upsert"
    OFFER_CREATE = "offer.create"
    OFFER_CREATE_STORE = "offer.create.store"
    OFFER_UPDATE_CORE = "offer.update.core"
    OFFER_UPDATE_PRICE = "offer.update.price"
    OFFER_UPDATE_STOCK = "offer.update.stock"
    OFFER_MAP_TOUCH = "offer.map.touch"
    OFFER_SYNC_SUCCESS = "offer.sync.success"
    OFFER_SYNC_ERROR = "offer.sync.error"
    PROCESS_STATUS_CHECK = "process.status.check"
    PROCESS_POLL = "process.poll"
    OFFERS_EXPORT_REQUEST = "offers.export.request"
    OFFERS_EXPORT_FETCH = "offers.export.fetch"


ON_SUCCESS = "on_success"
ON_FAILURE = "on_failure"


@dataclass(frozen=True, slots=True)
class NextStep:
    """A fully formed future task, stored inside the payload of the task that may trigger it."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def request(cls, action: str | Action, **fields: Any) -> "NextStep":
        action_value = action.value if isinstance(action, Action) else action
        return cls(type=TaskType.MARKETPLACE_REQUEST.value, payload={"action": action_value, **fields})

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["NextStep"]:
        if not data:
            return None
        if "type" not in data or not isinstance(data.get("payload"), dict):
            raise ValueError(f"Malformed next step: {data!r}")
        return cls(type=str(data["type"]), payload=dict(data["payload"]))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "payload": dict(self.payload)}

    def with_fields(self, **fields: Any) -> "NextStep":
        """Copy with result fields merged into the payload (None values skipped)."""
        merged = dict(self.payload)
        merged.update({k: v for k, v in fields.items() if v is not None})
        return replace(self, payload=merged)


@dataclass(slots=True)
class Task:
    id: str
    type: str
    payload: dict[str, Any]
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    created_at: datetime | None = None
    available_at: datetime | None = None
    reserved_at: datetime | None = None
    worker_token: str | None = None
    error: str | None = None
    info: str | None = None
    # Other tasks with the same (type, action) in processing when this one was claimed.
    concurrent_count: int = 0

    @property
    def action(self) -> str | None:
        value = self.payload.get("action") if isinstance(self.payload, dict) else None
        return str(value) if value else None

    def next_step(self, key: str) -> Optional[NextStep]:
        return NextStep.from_dict(self.payload.get(key))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "action": self.action,
            "payload": self.payload,
            "status": self.status.value,
            "attempts": self.attempts,
            "created_at": _iso(self.created_at),
            "available_at": _iso(self.available_at),
            "reserved_at": _iso(self.reserved_at),
            "worker_token": self.worker_token,
            "error": self.error,
            "info": self.info,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            payload=dict(data.get("payload") or {}),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            attempts=int(data.get("attempts", 0)),
            created_at=_parse(data.get("created_at")),
            available_at=_parse(data.get("available_at")),
            reserved_at=_parse(data.get("reserved_at")),
            worker_token=data.get("worker_token"),
            error=data.get("error"),
            info=data.get("info"),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def payload_action(payload: dict[str, Any]) -> str | None:
    value = payload.get("action") if isinstance(payload, dict) else None
    return str(value) if value else None


__all__ = [
    "TaskStatus",
    "TaskType",
    "Action",
    "NextStep",
    "Task",
    "ON_SUCCESS",
    "ON_FAILURE",
    "payload_action",
]
