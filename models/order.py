"""
Order history schemas.

Orders arrive from the order source as loosely shaped JSON; these models are
the validated boundary the normalizer works from.
"""

from pydantic import Field, field_validator
from typing import Optional
from enum import Enum
from datetime import datetime, timezone

from models.base import BaseSchema, FrozenSchema


class VariationType(str, Enum):
    """Catalog classification of a purchasable product variation."""
    SUBSCRIPTION = "subscription"
    ADDON = "addon"
    IGNORED = "ignored"


class MatchSource(str, Enum):
    """How a line item got its sequence number."""
    ALIAS = "alias"
    PATTERN = "pattern"
    NONE = "none"


def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so ordering never mixes naive/aware values."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class LineItem(BaseSchema):
    """One purchased product inside an order."""

    sku: str = Field(default="", max_length=255, description="Raw SKU (may be empty)")
    product_name: str = Field(..., min_length=1, description="Product title")
    variant_title: Optional[str] = Field(None, description="Variant title")
    quantity: int = Field(default=1, ge=1, description="Units purchased")

    @field_validator("sku", mode="before")
    @classmethod
    def none_sku_to_empty(cls, v):
        """Order sources send null for custom items without SKU."""
        return "" if v is None else v


class Order(BaseSchema):
    """A customer order with its line items."""

    order_id: str = Field(..., min_length=1, description="Source order ID")
    order_number: Optional[int] = Field(None, description="Human order number")
    created_at: datetime = Field(..., description="Order creation time")
    line_items: list[LineItem] = Field(default_factory=list)
    customer_id: Optional[str] = Field(None, description="Source customer ID")
    customer_email: Optional[str] = Field(None, description="Customer email")

    @field_validator("order_id", "customer_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        """Shopify IDs are integers; store them as strings."""
        if v is None:
            return v
        return str(v)

    @field_validator("created_at")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class BoxEvent(FrozenSchema):
    """
    One resolved purchase event.

    sequence_number is None when the SKU could not be mapped.
    """

    sequence_number: Optional[int] = Field(None, ge=1)
    occurred_at: datetime
    source_order_id: str
    source_order_number: Optional[int] = None
    raw_sku: str = ""
    raw_product_name: str = ""
    variant_title: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    match_source: MatchSource = MatchSource.NONE

    @property
    def is_mapped(self) -> bool:
        return self.sequence_number is not None

    @property
    def sort_key(self) -> tuple:
        """
        Purchase order: time first, then source order ID.

        Numeric IDs compare as numbers so "9" sorts before "10".
        """
        order_id = self.source_order_id
        if order_id.isdigit():
            return (self.occurred_at, 0, int(order_id), "")
        return (self.occurred_at, 1, 0, order_id)

    def to_log_dict(self) -> dict:
        """JSON-safe form stored alongside the audit record."""
        return {
            "sequence": self.sequence_number,
            "date": self.occurred_at.isoformat(),
            "order_id": self.source_order_id,
            "order_number": self.source_order_number,
            "sku": self.raw_sku,
            "product_name": self.raw_product_name,
            "quantity": self.quantity,
            "match_source": self.match_source.value,
        }
