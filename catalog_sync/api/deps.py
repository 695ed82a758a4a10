"""
Dependencies for database sessions and the task queue.
"""
from typing import Generator
from fastapi import HTTPException, Request
from sqlalchemy.orm import Session
from catalog_sync.jobs.queue import QueueBackend
from catalog_sync.jobs.router import TaskRouter
from catalog_sync.utils import get_logger

logger = get_logger(__name__)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Database session dependency.
    Uses the session factory built at startup and always closes the session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = request.app.state.session_factory()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def get_queue(request: Request) -> QueueBackend:
    queue = getattr(request.app.state, "task_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Task queue not available")
    return queue


def get_router(request: Request) -> TaskRouter:
    router = getattr(request.app.state, "task_router", None)
    if router is None:
        raise HTTPException(status_code=503, detail="Task router not available")
    return router
