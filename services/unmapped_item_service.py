"""
Unmapped item service.

Append-only sink for line items the resolution map could not place, plus the
triage operations reviewers use to clear them.
"""

from datetime import datetime, timezone
from typing import Optional
import structlog

from config import get_supabase_client
from models.unmapped_item import ResolutionMethod, UnmappedItemResponse
from exceptions import DatabaseError, UnmappedItemNotFoundError

logger = structlog.get_logger(__name__)


class UnmappedItemService:
    """
    Unmapped item persistence.

    Records are keyed by (organization, order, product name), so seeing the
    same order again on a later run doesn't create duplicates.
    """

    def __init__(self, migration_run_id: Optional[str] = None):
        self.db = get_supabase_client()
        self.table = "unmapped_items"
        self.migration_run_id = migration_run_id

    def for_run(self, migration_run_id: str) -> "UnmappedItemService":
        """Sink bound to a migration run."""
        return UnmappedItemService(migration_run_id=migration_run_id)

    # ===================
    # SINK
    # ===================

    def record(
        self,
        organization_id: Optional[str],
        sku: Optional[str],
        product_name: str,
        order_id: str,
        customer_identifier: Optional[str],
        occurred_at: datetime,
    ) -> None:
        """Store one unmapped line item for triage."""
        row = {
            "organization_id": organization_id,
            "migration_run_id": self.migration_run_id,
            "shopify_order_id": order_id,
            "sku": sku,
            "product_name": product_name,
            "order_date": occurred_at.isoformat(),
            "customer_email": customer_identifier,
        }

        try:
            (
                self.db.table(self.table)
                .upsert(row, on_conflict="organization_id,shopify_order_id,product_name")
                .execute()
            )
        except Exception as e:
            logger.error(
                "record_unmapped_item_failed",
                order_id=order_id,
                product_name=product_name,
                error=str(e)
            )
            raise DatabaseError("upsert", str(e))

        logger.debug("unmapped_item_recorded", order_id=order_id, sku=sku)

    # ===================
    # TRIAGE
    # ===================

    def list_items(
        self,
        organization_id: str,
        resolved: Optional[bool] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> tuple[list[UnmappedItemResponse], int]:
        """
        List unmapped items, newest order first.

        Returns:
            Tuple of (items, total count)
        """
        try:
            query = (
                self.db.table(self.table)
                .select("*", count="exact")
                .eq("organization_id", organization_id)
            )
            if resolved is not None:
                query = query.eq("resolved", resolved)
            if search:
                query = query.ilike("product_name", f"%{search}%")

            result = (
                query.order("order_date", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )

            items = [UnmappedItemResponse.from_row(row) for row in result.data]
            return items, result.count or 0

        except Exception as e:
            logger.error("list_unmapped_items_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def resolve_items(
        self,
        organization_id: str,
        item_ids: list[str],
        sequence: int,
        resolved_by: str,
        method: ResolutionMethod = ResolutionMethod.MANUAL
    ) -> int:
        """Assign a box number to unmapped items. Returns rows updated."""
        return self._mark_resolved(organization_id, item_ids, sequence, resolved_by, method)

    def skip_items(self, organization_id: str, item_ids: list[str], resolved_by: str) -> int:
        """Dismiss unmapped items without a box number. Returns rows updated."""
        return self._mark_resolved(organization_id, item_ids, None, resolved_by, ResolutionMethod.MANUAL)

    def _mark_resolved(
        self,
        organization_id: str,
        item_ids: list[str],
        sequence: Optional[int],
        resolved_by: str,
        method: ResolutionMethod
    ) -> int:
        logger.info(
            "resolving_unmapped_items",
            organization_id=organization_id,
            count=len(item_ids),
            sequence=sequence
        )

        try:
            result = (
                self.db.table(self.table)
                .update({
                    "resolved": True,
                    "resolved_sequence": sequence,
                    "resolved_at": datetime.now(timezone.utc).isoformat(),
                    "resolved_by": resolved_by,
                    "resolution_method": method.value,
                })
                .eq("organization_id", organization_id)
                .in_("id", item_ids)
                .execute()
            )
        except Exception as e:
            logger.error("resolve_unmapped_items_failed", error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            raise UnmappedItemNotFoundError(item_ids[0])
        return len(result.data)


# Singleton instance
_unmapped_item_service: Optional[UnmappedItemService] = None


def get_unmapped_item_service() -> UnmappedItemService:
    """Get or create UnmappedItemService instance."""
    global _unmapped_item_service
    if _unmapped_item_service is None:
        _unmapped_item_service = UnmappedItemService()
    return _unmapped_item_service
