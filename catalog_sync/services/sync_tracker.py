"""SyncState transitions.

Functions mutate within the caller's session and never commit; the caller owns
the per-subject transaction.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from catalog_sync.config import SYNC_SETTINGS
from catalog_sync.models.db import SyncState, SyncStatus
from catalog_sync.utils import get_logger, log_business_event
from catalog_sync.utils.time import db_now

logger = get_logger(__name__)

MAX_RETRIES_SUFFIX = " (max retries reached)"


def _state(session: Session, ean: str) -> SyncState:
    state = session.get(SyncState, ean)
    if state is None:
        state = SyncState(ean=ean, status=SyncStatus.PENDING, retry_count=0)
        session.add(state)
    return state


def mark_in_progress(
    session: Session,
    ean: str,
    brand_id: Optional[str] = None,
    season: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SyncState:
    state = _state(session, ean)
    state.status = SyncStatus.IN_PROGRESS
    if brand_id is not None:
        state.brand_id = brand_id
    if season is not None:
        state.season = season
    state.last_synced_at = now or db_now()
    return state


def mark_success(session: Session, ean: str, now: Optional[datetime] = None) -> SyncState:
    state = _state(session, ean)
    state.status = SyncStatus.SUCCESS
    state.last_error = None
    state.retry_count = 0
    state.last_synced_at = now or db_now()
    return state


def mark_error(
    session: Session,
    ean: str,
    error: str,
    now: Optional[datetime] = None,
    max_retries: Optional[int] = None,
) -> SyncState:
    """Record a failed attempt; after ``max_retries`` the subject is parked as failed."""
    limit = int(SYNC_SETTINGS.get("max_retries", 5)) if max_retries is None else max_retries
    state = _state(session, ean)
    state.retry_count = int(state.retry_count or 0) + 1
    state.last_synced_at = now or db_now()
    if state.retry_count >= limit:
        _fail(state, error)
    else:
        state.status = SyncStatus.ERROR
        state.last_error = error
        logger.warning("Subject sync error", ean=ean, retry_count=state.retry_count, error=error[:300])
    return state


def _fail(state: SyncState, error: str) -> SyncState:
    ean = state.ean
    state.status = SyncStatus.FAILED
    state.last_error = error + MAX_RETRIES_SUFFIX
    logger.error("Subject sync failed permanently", ean=ean, retry_count=state.retry_count)
    log_business_event("subject_sync_failed", {"ean": ean, "retry_count": state.retry_count, "error": error[:300]})
    return state


__all__ = ["mark_in_progress", "mark_success", "mark_error", "MAX_RETRIES_SUFFIX"]
