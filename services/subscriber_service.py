"""
Subscriber store.

Only the slice of the subscribers table the audit needs: lookup, the
canonical next-box field, and migration status.
"""

from datetime import datetime, timezone
from typing import Optional
import structlog

from config import get_supabase_client
from models.subscriber import MigrationStatus, Subscriber
from exceptions import SubscriberNotFoundError, DatabaseError

logger = structlog.get_logger(__name__)

# Subscribers that still need an audit
PENDING_FILTER = "migration_status.is.null,migration_status.eq.pending"


class SubscriberService:
    """Subscriber reads/writes for the migration audit."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "subscribers"

    def get_by_ids(self, organization_id: str, subscriber_ids: list[str]) -> list[Subscriber]:
        """
        Get subscribers of one organization by ID.

        Unknown IDs (or IDs of another org) are silently absent from the result.
        """
        if not subscriber_ids:
            return []

        try:
            result = (
                self.db.table(self.table)
                .select("id, organization_id, email, shopify_customer_id, first_name, last_name, "
                        "next_box_number, migration_status")
                .eq("organization_id", organization_id)
                .in_("id", subscriber_ids)
                .execute()
            )
        except Exception as e:
            logger.error("get_subscribers_failed", organization_id=organization_id, error=str(e))
            raise DatabaseError("select", str(e))

        by_id = {row["id"]: Subscriber.from_row(row) for row in result.data}
        # Keep the caller's order
        return [by_id[sid] for sid in subscriber_ids if sid in by_id]

    def get_canonical_box_number(self, subscriber_id: str) -> Optional[int]:
        """
        Next box to ship for the subscriber.

        Raises:
            SubscriberNotFoundError: If the subscriber doesn't exist
        """
        try:
            result = (
                self.db.table(self.table)
                .select("id, next_box_number")
                .eq("id", subscriber_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_box_number_failed", subscriber_id=subscriber_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise SubscriberNotFoundError(subscriber_id)
        return result.data[0].get("next_box_number")

    def set_canonical_box_number(self, subscriber_id: str, next_box: int) -> None:
        """
        Set the next box to ship directly.

        The audit workflow does not call this; it propagates through the
        transactional RPC functions instead. Kept for admin corrections.
        """
        self._update(subscriber_id, {"next_box_number": next_box})
        logger.info("subscriber_box_number_set", subscriber_id=subscriber_id, next_box=next_box)

    def set_migration_status(self, subscriber_id: str, status: MigrationStatus) -> None:
        """Record where the subscriber stands in the migration."""
        self._update(subscriber_id, {"migration_status": status.value})
        logger.debug("subscriber_migration_status_set", subscriber_id=subscriber_id, status=status.value)

    def count_pending(self, organization_id: str) -> int:
        """Count subscribers not yet audited."""
        try:
            result = (
                self.db.table(self.table)
                .select("id", count="exact")
                .eq("organization_id", organization_id)
                .or_(PENDING_FILTER)
                .execute()
            )
            return result.count or 0
        except Exception as e:
            logger.error("count_pending_subscribers_failed", error=str(e))
            raise DatabaseError("count", str(e))

    def list_pending_ids(self, organization_id: str) -> list[str]:
        """IDs of subscribers not yet audited, oldest first."""
        try:
            result = (
                self.db.table(self.table)
                .select("id")
                .eq("organization_id", organization_id)
                .or_(PENDING_FILTER)
                .order("created_at")
                .execute()
            )
            return [row["id"] for row in result.data]
        except Exception as e:
            logger.error("list_pending_subscribers_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def _update(self, subscriber_id: str, changes: dict) -> None:
        payload = {**changes, "updated_at": datetime.now(timezone.utc).isoformat()}
        try:
            result = self.db.table(self.table).update(payload).eq("id", subscriber_id).execute()
        except Exception as e:
            logger.error("update_subscriber_failed", subscriber_id=subscriber_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            raise SubscriberNotFoundError(subscriber_id)


# Singleton instance
_subscriber_service: Optional[SubscriberService] = None


def get_subscriber_service() -> SubscriberService:
    """Get or create SubscriberService instance."""
    global _subscriber_service
    if _subscriber_service is None:
        _subscriber_service = SubscriberService()
    return _subscriber_service
