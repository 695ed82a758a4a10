"""Staging row -> marketplace offer payload, plus the per-aspect request bodies.

The payload produced by ``from_row`` is the single source of desired state; the
engine derives the core, price and stock update bodies (and the core hash used
for diffing) from it rather than from the row again.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Optional

from catalog_sync.config import SYNC_SETTINGS

FULFILMENT_METHOD = "FBR"


def desired_stock(row: Mapping[str, Any]) -> int:
    stock = max(0, int(row.get("stock") or 0))
    if row.get("use_external_stock"):
        stock += max(0, int(row.get("external_stock") or 0))
    return stock


def from_row(row: Mapping[str, Any], settings: Optional[dict] = None) -> dict[str, Any]:
    cfg = settings if settings is not None else SYNC_SETTINGS
    stock = desired_stock(row)
    delivery_code = row.get("delivery_code") or cfg.get("default_delivery_code", "1-8d")

    on_hold = row.get("on_hold_by_retailer")
    on_hold = stock <= 0 if on_hold is None else bool(on_hold)
    if stock <= 0:
        on_hold = True

    return {
        "ean": str(row["ean"]),
        "condition": {"name": "NEW"},
        "onHoldByRetailer": on_hold,
        "fulfilment": {"method": FULFILMENT_METHOD, "deliveryCode": delivery_code},
        "pricing": {"bundlePrices": [{"quantity": 1, "unitPrice": float(row["price"])}]},
        "stock": {"amount": stock, "managedByRetailer": True},
    }


def _core_delivery_code(payload: Mapping[str, Any], settings: Optional[dict]) -> str:
    cfg = settings if settings is not None else SYNC_SETTINGS
    return (payload.get("fulfilment") or {}).get("deliveryCode") or cfg.get("core_delivery_code", "1-2 weken")


def core_hash(payload: Mapping[str, Any], settings: Optional[dict] = None) -> str:
    """sha256 over the compact JSON of the core attributes, keys in fixed order."""
    core = {
        "onHoldByRetailer": bool(payload.get("onHoldByRetailer", False)),
        "fulfilment": {"method": FULFILMENT_METHOD, "deliveryCode": _core_delivery_code(payload, settings)},
    }
    encoded = json.dumps(core, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def core_body(payload: Mapping[str, Any], settings: Optional[dict] = None) -> dict[str, Any]:
    return {
        "reference": payload["ean"],
        "onHoldByRetailer": bool(payload.get("onHoldByRetailer", False)),
        "fulfilment": {"method": FULFILMENT_METHOD, "deliveryCode": _core_delivery_code(payload, settings)},
    }


def price_of(payload: Mapping[str, Any]) -> float:
    return float(payload["pricing"]["bundlePrices"][0]["unitPrice"])


def stock_of(payload: Mapping[str, Any]) -> int:
    return int(payload["stock"]["amount"])


def price_body(price: float) -> dict[str, Any]:
    return {"pricing": {"bundlePrices": [{"quantity": 1, "unitPrice": float(price)}]}}


def stock_body(amount: int) -> dict[str, Any]:
    return {"amount": int(amount), "managedByRetailer": True}


__all__ = [
    "from_row",
    "desired_stock",
    "core_hash",
    "core_body",
    "price_of",
    "stock_of",
    "price_body",
    "stock_body",
]
