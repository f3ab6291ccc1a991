"""Subscriber schemas (only the fields the audit touches)."""

from pydantic import Field
from typing import Optional
from enum import Enum

from models.base import BaseSchema


class MigrationStatus(str, Enum):
    """Where a subscriber stands in the migration."""
    PENDING = "pending"
    AUDITED = "audited"
    FLAGGED = "flagged"
    RESOLVED = "resolved"
    SKIPPED = "skipped"


class Subscriber(BaseSchema):
    """Subscriber row."""

    id: str
    organization_id: str
    email: Optional[str] = None
    shopify_customer_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    next_box_number: Optional[int] = Field(None, ge=1)
    migration_status: Optional[MigrationStatus] = None

    @property
    def customer_identifier(self) -> Optional[str]:
        """Customer ID is preferred over email for accuracy."""
        return self.shopify_customer_id or self.email

    @classmethod
    def from_row(cls, row: dict) -> "Subscriber":
        customer_id = row.get("shopify_customer_id")
        return cls(
            id=row["id"],
            organization_id=row["organization_id"],
            email=row.get("email"),
            shopify_customer_id=str(customer_id) if customer_id else None,
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            next_box_number=row.get("next_box_number"),
            migration_status=row.get("migration_status"),
        )
