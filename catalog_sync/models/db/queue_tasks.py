"""SQLAlchemy model backing the relational task queue."""
from __future__ import annotations

from datetime import datetime
from sqlalchemy import String, Integer, Text, DateTime, Enum, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base
from catalog_sync.jobs.task import TaskStatus


class QueueTask(Base):
    __tablename__ = "queue_tasks"
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Copy of payload["action"] so concurrent counts stay a plain indexed filter.
    action: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[TaskStatus] = mapped_column(Enum(TaskStatus), nullable=False, default=TaskStatus.PENDING, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    available_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    reserved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    worker_token: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    info: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_queue_tasks_claim", "status", "available_at", "created_at"),
    )
