"""OfferMap persistence: identity binding and last-applied state."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from catalog_sync.models.db import OfferMap
from catalog_sync.services import offer_mapper
from catalog_sync.utils import get_logger, log_business_event

logger = get_logger(__name__)


def get_or_new(session: Session, ean: str) -> OfferMap:
    mapping = session.get(OfferMap, ean)
    if mapping is None:
        mapping = OfferMap(ean=ean)
        session.add(mapping)
    return mapping


def bind_identity(
    session: Session,
    ean: str,
    offer_id: str,
    now: datetime,
    *,
    brand_id: Optional[str] = None,
    season: Optional[str] = None,
) -> bool:
    """Bind ``offer_id`` to the subject. Returns False when a different id is already bound."""
    mapping = get_or_new(session, ean)
    if brand_id is not None:
        mapping.brand_id = brand_id
    if season is not None:
        mapping.season = season
    return _apply_identity(mapping, offer_id, now)


def _apply_identity(mapping: OfferMap, offer_id: str, now: datetime) -> bool:
    ean = mapping.ean
    if mapping.offer_id is None:
        mapping.offer_id = offer_id
        mapping.last_synced_at = now
        logger.info("Offer identity bound", ean=ean, offer_id=offer_id)
        log_business_event("offer_identity_bound", {"ean": ean, "offer_id": offer_id})
        return True
    if mapping.offer_id != offer_id:
        logger.warning("Conflicting offer identity ignored", ean=ean, bound=mapping.offer_id, reported=offer_id)
        return False
    return True


def store_desired(
    session: Session,
    row: Mapping[str, Any],
    payload: Mapping[str, Any],
    now: datetime,
    offer_id: Optional[str] = None,
    settings: Optional[dict] = None,
) -> OfferMap:
    """Record ``payload`` as the last applied state (used right after a create).

    ``settings`` must be the ones the payload was built with so the stored core
    hash matches the one the next diff computes.
    """
    ean = str(payload["ean"])
    mapping = get_or_new(session, ean)
    if offer_id is not None:
        _apply_identity(mapping, offer_id, now)
    mapping.brand_id = row.get("brand_id")
    mapping.season = row.get("season")
    mapping.last_price = offer_mapper.price_of(payload)
    mapping.last_stock = offer_mapper.stock_of(payload)
    mapping.last_core_hash = offer_mapper.core_hash(payload, settings)
    mapping.on_hold_by_retailer = bool(payload["onHoldByRetailer"])
    mapping.fulfilment_delivery_code = payload["fulfilment"]["deliveryCode"]
    mapping.last_synced_at = now
    mapping.last_checked_at = now
    return mapping


def price_matches(mapping: OfferMap, price: float) -> bool:
    if mapping.last_price is None:
        return False
    return round(float(mapping.last_price), 2) == round(float(price), 2)


__all__ = ["get_or_new", "bind_identity", "store_desired", "price_matches"]
