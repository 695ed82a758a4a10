"""Wiring shared by the API process and the CLI commands.

Builds the engine, session factory, queue backend, marketplace client and
handler registry once, from configuration, and hands them around explicitly.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from catalog_sync.config import MARKETPLACE_SETTINGS, QUEUE_SETTINGS
from catalog_sync.database import build_engine, build_session_factory, init_db
from catalog_sync.jobs.queue import QueueBackend, create_queue
from catalog_sync.jobs.router import TaskRouter
from catalog_sync.jobs.worker import QueueWorker
from catalog_sync.services.marketplace_client import MarketplaceClient
from catalog_sync.services.offer_api import OfferAPI
from catalog_sync.services.token_cache import create_token_cache
from catalog_sync.tasks import TaskContext, build_router
from catalog_sync.utils import get_logger

logger = get_logger(__name__)


@dataclass
class Runtime:
    engine: Engine
    session_factory: sessionmaker
    queue: QueueBackend
    context: TaskContext
    router: TaskRouter

    def worker(self, settings: Optional[dict] = None) -> QueueWorker:
        return QueueWorker(self.queue, self.router, settings=settings)


def build_offer_api(settings: Optional[dict] = None) -> OfferAPI:
    cfg = settings if settings is not None else MARKETPLACE_SETTINGS
    return OfferAPI(MarketplaceClient(create_token_cache(cfg), cfg), cfg)


def build_runtime(
    database_url: Optional[str] = None,
    *,
    queue_settings: Optional[dict] = None,
    offer_api: Optional[OfferAPI] = None,
    create_tables: bool = True,
) -> Runtime:
    engine = build_engine(database_url)
    if create_tables:
        init_db(engine)
    session_factory = build_session_factory(engine)
    queue = create_queue(queue_settings or QUEUE_SETTINGS, session_factory=session_factory)
    context = TaskContext(queue=queue, session_factory=session_factory, offer_api=offer_api or build_offer_api())
    router = build_router(context)
    logger.info("Runtime initialised", queue=queue.snapshot().get("backend"))
    return Runtime(engine=engine, session_factory=session_factory, queue=queue, context=context, router=router)


__all__ = ["Runtime", "build_runtime", "build_offer_api"]
