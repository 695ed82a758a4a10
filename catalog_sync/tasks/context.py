"""Shared dependencies handed to every task handler."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from functools import cached_property
from typing import Any, Callable, Optional

from sqlalchemy.orm import sessionmaker

from catalog_sync.config import POLLER_SETTINGS, SYNC_SETTINGS
from catalog_sync.jobs.queue import QueueBackend
from catalog_sync.jobs.task import Action, NextStep
from catalog_sync.services.offer_api import OfferAPI
from catalog_sync.services.process_poller import ProcessPoller
from catalog_sync.services.reconciliation_engine import ReconciliationEngine
from catalog_sync.utils.time import db_now


@dataclass
class TaskContext:
    queue: QueueBackend
    session_factory: sessionmaker
    offer_api: Optional[OfferAPI] = None
    sync_settings: dict = field(default_factory=lambda: dict(SYNC_SETTINGS))
    poller_settings: dict = field(default_factory=lambda: dict(POLLER_SETTINGS))
    clock: Callable[[], datetime] = db_now
    sleep: Callable[[float], None] = time.sleep

    @property
    def api(self) -> OfferAPI:
        if self.offer_api is None:
            raise RuntimeError("Marketplace API is not configured for this worker")
        return self.offer_api

    @cached_property
    def engine(self) -> ReconciliationEngine:
        return ReconciliationEngine(self.session_factory, self.api, settings=self.sync_settings, clock=self.clock)

    @cached_property
    def poller(self) -> ProcessPoller:
        return ProcessPoller(self.session_factory, self.api, settings=self.poller_settings, clock=self.clock)

    def request(self, action: str | Action, delay_seconds: float = 0, **fields: Any) -> str:
        return self.enqueue_step(NextStep.request(action, **fields), delay_seconds)

    def enqueue_step(self, step: NextStep, delay_seconds: float = 0) -> str:
        return self.queue.enqueue(step.type, step.payload, delay_seconds=delay_seconds)


__all__ = ["TaskContext"]
