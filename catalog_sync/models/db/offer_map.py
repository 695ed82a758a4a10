from __future__ import annotations
"""SQLAlchemy model binding a local EAN to its marketplace offer id."""
from datetime import datetime
from sqlalchemy import String, Integer, Numeric, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class OfferMap(Base):
    __tablename__ = "offer_map"
    ean: Mapped[str] = mapped_column(String(32), primary_key=True)
    # Null while the create is still being processed remotely; immutable once set.
    offer_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    brand_id: Mapped[str | None] = mapped_column(String(16), nullable=True)
    season: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # Last state known to be applied remotely; used only for diffing.
    last_price: Mapped[float | None] = mapped_column(Numeric(10, 2), nullable=True)
    last_stock: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_core_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    on_hold_by_retailer: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    fulfilment_delivery_code: Mapped[str | None] = mapped_column(String(32), nullable=True)

    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
