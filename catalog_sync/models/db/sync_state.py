from __future__ import annotations
"""Per-EAN sync status / audit record."""
from datetime import datetime
from sqlalchemy import String, Integer, Text, DateTime, Enum
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base
from .enums import SyncStatus


class SyncState(Base):
    __tablename__ = "sync_state"
    ean: Mapped[str] = mapped_column(String(32), primary_key=True)
    brand_id: Mapped[str | None] = mapped_column(String(16), nullable=True)
    season: Mapped[str | None] = mapped_column(String(16), nullable=True)
    status: Mapped[SyncStatus] = mapped_column(Enum(SyncStatus), nullable=False, default=SyncStatus.PENDING, index=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
