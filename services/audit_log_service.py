"""
Audit record store.

CRUD over the audit_logs table; no workflow rules live here (see
resolution_service for those).
"""

from datetime import datetime, timezone
from typing import Optional
import structlog

from config import get_supabase_client
from models.audit import AuditRecordResponse, AuditStatus
from exceptions import AuditRecordNotFoundError, DatabaseError

logger = structlog.get_logger(__name__)


class AuditLogService:
    """
    Audit record persistence.

    One row per subscriber per migration run.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "audit_logs"

    # ===================
    # READ OPERATIONS
    # ===================

    def get(self, audit_id: str, organization_id: Optional[str] = None) -> AuditRecordResponse:
        """
        Get an audit record by ID.

        Args:
            audit_id: Audit record UUID
            organization_id: When given, records of other orgs are reported as missing

        Raises:
            AuditRecordNotFoundError: If the record doesn't exist
        """
        logger.debug("getting_audit_record", audit_id=audit_id)

        try:
            query = self.db.table(self.table).select("*").eq("id", audit_id)
            if organization_id:
                query = query.eq("organization_id", organization_id)
            result = query.limit(1).execute()
        except Exception as e:
            logger.error("get_audit_record_failed", audit_id=audit_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise AuditRecordNotFoundError(audit_id)

        return AuditRecordResponse.from_row(result.data[0])

    def find_for_subscriber(
        self,
        migration_run_id: str,
        subscriber_id: str
    ) -> Optional[AuditRecordResponse]:
        """Get the record for a subscriber in a run, or None."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("migration_run_id", migration_run_id)
                .eq("subscriber_id", subscriber_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(
                "find_audit_record_failed",
                migration_run_id=migration_run_id,
                subscriber_id=subscriber_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        if not result.data:
            return None
        return AuditRecordResponse.from_row(result.data[0])

    def list_by_status(
        self,
        organization_id: str,
        status: AuditStatus,
        migration_run_id: Optional[str] = None,
        limit: int = 100
    ) -> list[AuditRecordResponse]:
        """
        List records in one status, newest first.

        Args:
            organization_id: Owning organization
            status: Status to filter by
            migration_run_id: Optional run filter
            limit: Maximum rows
        """
        logger.info(
            "listing_audit_records",
            organization_id=organization_id,
            status=status.value,
            migration_run_id=migration_run_id
        )

        try:
            query = (
                self.db.table(self.table)
                .select("*")
                .eq("organization_id", organization_id)
                .eq("status", status.value)
            )
            if migration_run_id:
                query = query.eq("migration_run_id", migration_run_id)

            result = query.order("created_at", desc=True).limit(limit).execute()

            return [AuditRecordResponse.from_row(row) for row in result.data]

        except Exception as e:
            logger.error("list_audit_records_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def count_by_status(
        self,
        organization_id: str,
        status: Optional[AuditStatus] = None,
        migration_run_id: Optional[str] = None
    ) -> int:
        """Count records, optionally for one status / run."""
        try:
            query = (
                self.db.table(self.table)
                .select("id", count="exact")
                .eq("organization_id", organization_id)
            )
            if status:
                query = query.eq("status", status.value)
            if migration_run_id:
                query = query.eq("migration_run_id", migration_run_id)
            result = query.execute()
            return result.count or 0
        except Exception as e:
            logger.error("count_audit_records_failed", error=str(e))
            raise DatabaseError("count", str(e))

    # ===================
    # WRITE OPERATIONS
    # ===================

    def upsert(self, record: dict) -> AuditRecordResponse:
        """
        Insert or replace the record for (migration_run_id, subscriber_id).

        Args:
            record: Column values (audit_logs schema)

        Returns:
            Stored record
        """
        payload = {**record, "updated_at": datetime.now(timezone.utc).isoformat()}

        try:
            result = (
                self.db.table(self.table)
                .upsert(payload, on_conflict="migration_run_id,subscriber_id")
                .execute()
            )
        except Exception as e:
            logger.error(
                "upsert_audit_record_failed",
                subscriber_id=record.get("subscriber_id"),
                error=str(e)
            )
            raise DatabaseError("upsert", str(e))

        if not result.data:
            raise DatabaseError("upsert", "no row returned")

        stored = AuditRecordResponse.from_row(result.data[0])

        logger.debug(
            "audit_record_upserted",
            audit_id=stored.id,
            subscriber_id=stored.subscriber_id,
            status=stored.status.value
        )

        return stored

    def update_where_status(
        self,
        audit_id: str,
        expected_status: AuditStatus,
        changes: dict
    ) -> Optional[AuditRecordResponse]:
        """
        Conditionally update a record still in expected_status.

        Returns:
            Updated record, or None if the status had already moved on
        """
        payload = {**changes, "updated_at": datetime.now(timezone.utc).isoformat()}

        try:
            result = (
                self.db.table(self.table)
                .update(payload)
                .eq("id", audit_id)
                .eq("status", expected_status.value)
                .execute()
            )
        except Exception as e:
            logger.error("update_audit_record_failed", audit_id=audit_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            return None
        return AuditRecordResponse.from_row(result.data[0])


# Singleton instance
_audit_log_service: Optional[AuditLogService] = None


def get_audit_log_service() -> AuditLogService:
    """Get or create AuditLogService instance."""
    global _audit_log_service
    if _audit_log_service is None:
        _audit_log_service = AuditLogService()
    return _audit_log_service
