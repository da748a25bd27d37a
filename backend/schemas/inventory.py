from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


StockStatus = Literal["OK", "LOW"]

ADJUSTMENT_REASONS = (
    "Restock / New Arrival",
    "Sale / Adjustment",
    "Damage / Loss",
    "Return to Publisher",
    "Inventory Correction",
    "Promotion / Sample",
    "Other",
)


def _strip_nullable(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class InventoryItemCreate(BaseModel):
    title: str
    isbn: Optional[str] = None
    low_stock_threshold: Optional[int] = None
    initial_quantity: int = 0

    @field_validator("title")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("isbn")
    @classmethod
    def _isbn(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)

    @field_validator("low_stock_threshold", "initial_quantity")
    @classmethod
    def _non_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("must be >= 0")
        return v


class InventoryItemUpdate(BaseModel):
    """Catalog fields only; quantity changes go through POST /inventory/adjust."""
    title: Optional[str] = None
    isbn: Optional[str] = None
    low_stock_threshold: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = (v or "").strip()
        if not v:
            raise ValueError("cannot be empty")
        return v

    @field_validator("isbn")
    @classmethod
    def _isbn(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)

    @field_validator("low_stock_threshold")
    @classmethod
    def _non_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("must be >= 0")
        return v


class InventoryItemOut(BaseModel):
    id: UUID
    title: str
    isbn: Optional[str] = None
    quantity: int
    low_stock_threshold: Optional[int] = None
    cover_ref: Optional[str] = None
    cover_url: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    threshold: Optional[int] = None
    status: Optional[StockStatus] = None


class StockAdjustmentCreate(BaseModel):
    # Strict: "3" or 2.5 must not be coerced into a delta
    item_id: UUID
    delta: int
    # Zero delta and blank reason are rejected by the ledger itself (InvalidAdjustment)
    reason: Optional[str] = None

    @field_validator("delta", mode="before")
    @classmethod
    def _integer_delta(cls, v):
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValueError("delta must be an integer")
        return v


class StockAdjustmentOut(BaseModel):
    id: UUID
    item_id: UUID
    item_title: Optional[str] = None
    delta: int
    resulting_quantity: int
    reason: str
    actor_id: str
    actor_name: Optional[str] = None
    source_platform: str
    created_at: datetime

    class Config:
        from_attributes = True


class AdjustmentResultOut(BaseModel):
    item_id: UUID
    entry_id: UUID
    previous_quantity: int
    delta: int
    new_quantity: int
    threshold: int
    status: StockStatus
