"""Unmapped line item schemas (triage queue for SKUs with no box number)."""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema


class ResolutionMethod(str, Enum):
    """How an unmapped item was resolved."""
    MANUAL = "manual"
    PATTERN = "pattern"
    AI_SUGGEST = "ai_suggest"
    BULK = "bulk"


class UnmappedItemResponse(BaseSchema):
    """Unmapped item row."""

    id: str
    organization_id: str
    migration_run_id: Optional[str] = None
    sku: Optional[str] = None
    product_name: str
    source_order_id: str
    customer_identifier: Optional[str] = None
    occurred_at: Optional[datetime] = None
    resolved: bool = False
    resolved_sequence: Optional[int] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_method: Optional[ResolutionMethod] = None

    @classmethod
    def from_row(cls, row: dict) -> "UnmappedItemResponse":
        return cls(
            id=row["id"],
            organization_id=row["organization_id"],
            migration_run_id=row.get("migration_run_id"),
            sku=row.get("sku"),
            product_name=row["product_name"],
            source_order_id=row["shopify_order_id"],
            customer_identifier=row.get("customer_email"),
            occurred_at=row.get("order_date"),
            resolved=row.get("resolved", False),
            resolved_sequence=row.get("resolved_sequence"),
            resolved_by=row.get("resolved_by"),
            resolved_at=row.get("resolved_at"),
            resolution_method=row.get("resolution_method"),
        )


class UnmappedItemListResponse(BaseModel):
    items: list[UnmappedItemResponse]
    total: int


class UnmappedResolveRequest(BaseSchema):
    """Assign a box number to a set of unmapped items."""

    item_ids: list[str] = Field(..., min_length=1)
    sequence: int = Field(..., ge=1, le=1000)
    method: ResolutionMethod = ResolutionMethod.MANUAL


class UnmappedSkipRequest(BaseSchema):
    """Dismiss unmapped items without a box number."""

    item_ids: list[str] = Field(..., min_length=1)
