"""
Pydantic schemas for sync state and process ledger views.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict


class SyncBatchTrigger(BaseModel):
    """Manual sync batch trigger; omitted fields fall back to the configured defaults."""
    brands: Optional[List[str]] = Field(None, description="Brand ids to select from")
    seasons: Optional[List[str]] = Field(None, description="Season codes to select from")
    limit: Optional[int] = Field(None, ge=1, description="Maximum subjects in the batch")


class OfferMapRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    offer_id: Optional[str] = None
    last_price: Optional[float] = None
    last_stock: Optional[int] = None
    last_core_hash: Optional[str] = None
    on_hold_by_retailer: Optional[bool] = None
    fulfilment_delivery_code: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None


class SyncStateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    last_error: Optional[str] = None
    retry_count: int = 0
    last_synced_at: Optional[datetime] = None


class ProcessEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    process_id: str
    ean: str
    op_type: str
    status: str
    created_at: datetime
    checked_at: Optional[datetime] = None


class SubjectRead(BaseModel):
    ean: str
    staged: bool
    offer: Optional[OfferMapRead] = None
    sync: Optional[SyncStateRead] = None
    processes: List[ProcessEntryRead] = Field(default_factory=list)
