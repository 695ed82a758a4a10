"""Staging rows holding the desired offer state per EAN (written by the catalog import)."""
from __future__ import annotations

from sqlalchemy import String, Integer, Numeric, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.database import Base


class StagedOffer(Base):
    __tablename__ = "staged_offers"
    ean: Mapped[str] = mapped_column(String(32), primary_key=True)
    brand_id: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    season: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    external_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    use_external_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delivery_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    on_hold_by_retailer: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    def as_row(self) -> dict:
        return {
            "ean": self.ean,
            "brand_id": self.brand_id,
            "season": self.season,
            "price": self.price,
            "stock": self.stock,
            "external_stock": self.external_stock,
            "use_external_stock": self.use_external_stock,
            "delivery_code": self.delivery_code,
            "on_hold_by_retailer": self.on_hold_by_retailer,
        }
