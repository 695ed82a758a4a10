"""Queue retry policy: exponential backoff with a cap, then dead-letter."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from catalog_sync.config import RETRY_POLICY


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Requeue / dead-letter decision for failed tasks.

    ``delay(attempt) = min(cap, base * 2 ** (attempt - 1))`` with attempt counted
    from 1. ``base`` is at least 1 second and ``cap`` never below ``base``.
    """

    max_attempts: int = 5
    base_seconds: int = 5
    cap_seconds: int = 300

    def __post_init__(self) -> None:
        base = max(1, int(self.base_seconds))
        object.__setattr__(self, "base_seconds", base)
        object.__setattr__(self, "cap_seconds", max(base, int(self.cap_seconds)))

    @classmethod
    def from_settings(cls, settings: Optional[dict] = None) -> "RetryPolicy":
        cfg = settings if settings is not None else RETRY_POLICY
        return cls(
            max_attempts=int(cfg.get("max_attempts", 5)),
            base_seconds=int(cfg.get("base_seconds", 5)),
            cap_seconds=int(cfg.get("cap_seconds", 300)),
        )

    def delay(self, attempt: int) -> int:
        exponent = max(0, attempt - 1)
        return int(min(self.cap_seconds, self.base_seconds * (2 ** exponent)))

    def should_requeue(self, attempts: int, requeue: bool) -> bool:
        # Exhausted tasks are dead-lettered whatever the caller asked for.
        return requeue and attempts < self.max_attempts


__all__ = ["RetryPolicy"]
