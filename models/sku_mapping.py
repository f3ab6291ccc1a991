"""
SKU alias and product pattern schemas.
"""

from pydantic import Field, field_validator
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema
from models.order import VariationType


class PatternType(str, Enum):
    """How a product pattern is tested against a product name."""
    CONTAINS = "contains"
    PREFIX = "prefix"
    SUFFIX = "suffix"
    REGEX = "regex"

    @classmethod
    def from_legacy(cls, value: str) -> "PatternType":
        """Accept the older starts_with/ends_with spellings."""
        legacy = {"starts_with": cls.PREFIX, "ends_with": cls.SUFFIX}
        return legacy.get(value) or cls(value)


# Placeholder in a pattern marking where the box number sits in the name
SEQUENCE_PLACEHOLDER = "{N}"


# ===================
# SKU ALIASES
# ===================

class SkuAliasCreate(BaseSchema):
    """Create or update one SKU → box number mapping."""

    sku: str = Field(..., min_length=1, max_length=255, description="Raw SKU")
    sequence: int = Field(..., ge=1, le=1000, description="Box number")
    name: Optional[str] = Field(None, max_length=500, description="Product name")


class SkuAliasBulkCreate(BaseSchema):
    """Batch of alias mappings."""

    mappings: list[SkuAliasCreate] = Field(..., min_length=1)


class SkuAlias(BaseSchema):
    """SKU alias row."""

    id: Optional[str] = None
    organization_id: str
    raw_sku: str
    sequence_number: int = Field(..., ge=1)
    product_name: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "SkuAlias":
        return cls(
            id=row.get("id"),
            organization_id=row["organization_id"],
            raw_sku=row["shopify_sku"],
            sequence_number=row["product_sequence_id"],
            product_name=row.get("product_name"),
            created_at=row.get("created_at"),
        )


# ===================
# PRODUCT PATTERNS
# ===================

class ProductPatternCreate(BaseSchema):
    """
    Create a fallback product-name rule.

    sequence_number omitted means the pattern carries a {N} placeholder
    and the box number is read from the product name.
    """

    pattern: str = Field(..., min_length=1, max_length=255)
    pattern_type: PatternType = Field(default=PatternType.CONTAINS)
    sequence_number: Optional[int] = Field(None, ge=1, le=1000)
    priority: Optional[int] = Field(None, ge=0, description="Lower runs first; defaults to end of list")
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("pattern_type", mode="before")
    @classmethod
    def accept_legacy_type(cls, v):
        if isinstance(v, str):
            return PatternType.from_legacy(v)
        return v


class ProductPattern(BaseSchema):
    """Product pattern row."""

    id: Optional[str] = None
    organization_id: str
    pattern: str
    pattern_type: PatternType = PatternType.CONTAINS
    sequence_number: Optional[int] = None
    priority: int = 0
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def uses_placeholder(self) -> bool:
        return not self.sequence_number

    @classmethod
    def from_row(cls, row: dict) -> "ProductPattern":
        return cls(
            id=row.get("id"),
            organization_id=row["organization_id"],
            pattern=row["pattern"],
            pattern_type=PatternType.from_legacy(row.get("pattern_type") or "contains"),
            sequence_number=row.get("product_sequence_id") or None,
            priority=row.get("priority") or 0,
            description=row.get("description"),
            created_at=row.get("created_at"),
        )


# ===================
# CATALOG CLASSIFICATION
# ===================

class ProductClassification(BaseSchema):
    """Catalog classification of a variation, keyed by SKU and/or name."""

    sku: Optional[str] = None
    product_name: Optional[str] = None
    variation_type: VariationType = VariationType.SUBSCRIPTION

    @classmethod
    def from_row(cls, row: dict) -> "ProductClassification":
        return cls(
            sku=row.get("sku"),
            product_name=row.get("product_name"),
            variation_type=VariationType(row.get("variation_type") or "subscription"),
        )
