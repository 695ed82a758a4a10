from __future__ import annotations
"""Ledger of marketplace async operations awaiting (or past) resolution."""
from datetime import datetime
from sqlalchemy import String, DateTime, Enum, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base
from .enums import OperationType, ProcessStatus


class ProcessLedgerEntry(Base):
    __tablename__ = "process_ledger"
    process_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    ean: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    op_type: Mapped[OperationType] = mapped_column(Enum(OperationType), nullable=False)
    status: Mapped[ProcessStatus] = mapped_column(Enum(ProcessStatus), nullable=False, default=ProcessStatus.PENDING)
    last_result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    checked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_process_ledger_pending", "status", "checked_at", "created_at"),
    )
