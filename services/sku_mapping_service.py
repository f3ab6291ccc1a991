"""
SKU mapping service.

Aliases (exact SKU → box number), product patterns (name rules), and the
catalog classifications, plus loading them into a SkuResolutionMap.
"""

from typing import Optional
import structlog

from config import get_supabase_client
from models.sku_mapping import (
    ProductClassification,
    ProductPattern,
    ProductPatternCreate,
    SkuAlias,
    SkuAliasCreate,
)
from services.sku_resolver import PatternRule, SkuResolutionMap
from exceptions import (
    DatabaseError,
    NoMappingsConfiguredError,
    PatternExistsError,
)

logger = structlog.get_logger(__name__)


class SkuMappingService:
    """Organization-level mapping rules."""

    def __init__(self):
        self.db = get_supabase_client()
        self.aliases_table = "sku_aliases"
        self.patterns_table = "product_patterns"
        self.variations_table = "product_variations"

    # ===================
    # ALIASES
    # ===================

    def get_aliases(self, organization_id: str) -> list[SkuAlias]:
        """All aliases for an organization, ordered by box number."""
        try:
            result = (
                self.db.table(self.aliases_table)
                .select("*")
                .eq("organization_id", organization_id)
                .order("product_sequence_id")
                .execute()
            )
            return [SkuAlias.from_row(row) for row in result.data]
        except Exception as e:
            logger.error("get_sku_aliases_failed", organization_id=organization_id, error=str(e))
            raise DatabaseError("select", str(e))

    def count_aliases(self, organization_id: str) -> int:
        """Number of aliases configured for an organization."""
        try:
            result = (
                self.db.table(self.aliases_table)
                .select("id", count="exact")
                .eq("organization_id", organization_id)
                .execute()
            )
            return result.count or 0
        except Exception as e:
            logger.error("count_sku_aliases_failed", organization_id=organization_id, error=str(e))
            raise DatabaseError("count", str(e))

    def upsert_aliases(self, organization_id: str, mappings: list[SkuAliasCreate]) -> int:
        """
        Create or update aliases in one call.

        Returns:
            Number of rows written
        """
        logger.info("upserting_sku_aliases", organization_id=organization_id, count=len(mappings))

        rows = [
            {
                "organization_id": organization_id,
                "shopify_sku": m.sku,
                "product_sequence_id": m.sequence,
                "product_name": m.name,
            }
            for m in mappings
        ]

        try:
            result = (
                self.db.table(self.aliases_table)
                .upsert(rows, on_conflict="organization_id,shopify_sku")
                .execute()
            )
        except Exception as e:
            logger.error("upsert_sku_aliases_failed", error=str(e))
            raise DatabaseError("upsert", str(e))

        logger.info("sku_aliases_upserted", organization_id=organization_id, count=len(result.data))
        return len(result.data)

    def delete_alias(self, organization_id: str, sku: str) -> None:
        """Remove an alias."""
        try:
            (
                self.db.table(self.aliases_table)
                .delete()
                .eq("organization_id", organization_id)
                .eq("shopify_sku", sku)
                .execute()
            )
            logger.info("sku_alias_deleted", organization_id=organization_id, sku=sku)
        except Exception as e:
            logger.error("delete_sku_alias_failed", sku=sku, error=str(e))
            raise DatabaseError("delete", str(e))

    # ===================
    # PATTERNS
    # ===================

    def get_patterns(self, organization_id: str) -> list[ProductPattern]:
        """Patterns in evaluation order (priority, then creation)."""
        try:
            result = (
                self.db.table(self.patterns_table)
                .select("*")
                .eq("organization_id", organization_id)
                .order("priority")
                .order("created_at")
                .order("id")
                .execute()
            )
            return [ProductPattern.from_row(row) for row in result.data]
        except Exception as e:
            logger.error("get_product_patterns_failed", organization_id=organization_id, error=str(e))
            raise DatabaseError("select", str(e))

    def create_pattern(self, organization_id: str, data: ProductPatternCreate) -> ProductPattern:
        """
        Add a pattern; appended after existing ones unless a priority is given.

        Raises:
            InvalidPatternError: Pattern doesn't compile
            PatternExistsError: Same pattern/type already registered
        """
        candidate = ProductPattern(
            organization_id=organization_id,
            pattern=data.pattern,
            pattern_type=data.pattern_type,
            sequence_number=data.sequence_number,
            priority=data.priority or 0,
        )
        PatternRule.compile(candidate)

        existing = self.get_patterns(organization_id)
        for pattern in existing:
            if pattern.pattern == data.pattern and pattern.pattern_type == data.pattern_type:
                raise PatternExistsError(data.pattern)

        priority = data.priority
        if priority is None:
            priority = max((p.priority for p in existing), default=-1) + 1

        row = {
            "organization_id": organization_id,
            "pattern": data.pattern,
            "pattern_type": data.pattern_type.value,
            "product_sequence_id": data.sequence_number or 0,
            "priority": priority,
            "description": data.description,
        }

        try:
            result = self.db.table(self.patterns_table).insert(row).execute()
        except Exception as e:
            logger.error("create_product_pattern_failed", pattern=data.pattern, error=str(e))
            raise DatabaseError("insert", str(e))

        created = ProductPattern.from_row(result.data[0])
        logger.info(
            "product_pattern_created",
            organization_id=organization_id,
            pattern_id=created.id,
            priority=created.priority
        )
        return created

    def delete_pattern(self, organization_id: str, pattern_id: str) -> None:
        """Remove a pattern."""
        try:
            (
                self.db.table(self.patterns_table)
                .delete()
                .eq("id", pattern_id)
                .eq("organization_id", organization_id)
                .execute()
            )
            logger.info("product_pattern_deleted", pattern_id=pattern_id)
        except Exception as e:
            logger.error("delete_product_pattern_failed", pattern_id=pattern_id, error=str(e))
            raise DatabaseError("delete", str(e))

    # ===================
    # CLASSIFICATIONS
    # ===================

    def get_classifications(self, organization_id: str) -> list[ProductClassification]:
        """Catalog variations that are explicitly not plain subscription boxes."""
        try:
            result = (
                self.db.table(self.variations_table)
                .select("sku, product_name, variation_type")
                .eq("organization_id", organization_id)
                .in_("variation_type", ["addon", "ignored"])
                .execute()
            )
            return [ProductClassification.from_row(row) for row in result.data]
        except Exception as e:
            logger.error("get_classifications_failed", organization_id=organization_id, error=str(e))
            raise DatabaseError("select", str(e))

    # ===================
    # RESOLUTION MAP
    # ===================

    def load_resolution_map(self, organization_id: str) -> SkuResolutionMap:
        """
        Build the resolution map for an audit run.

        Raises:
            NoMappingsConfiguredError: Organization has no aliases
        """
        aliases = self.get_aliases(organization_id)
        if not aliases:
            logger.warning("no_sku_mappings_configured", organization_id=organization_id)
            raise NoMappingsConfiguredError(organization_id)

        return SkuResolutionMap.build(
            aliases,
            self.get_patterns(organization_id),
            self.get_classifications(organization_id),
        )


# Singleton instance
_sku_mapping_service: Optional[SkuMappingService] = None


def get_sku_mapping_service() -> SkuMappingService:
    """Get or create SkuMappingService instance."""
    global _sku_mapping_service
    if _sku_mapping_service is None:
        _sku_mapping_service = SkuMappingService()
    return _sku_mapping_service
