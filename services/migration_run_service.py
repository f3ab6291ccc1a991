"""
Migration run service.

A run groups the audit of an organization's pending subscribers. Counters are
advanced through a database function so concurrent batches never lose updates.
"""

from datetime import datetime, timezone
from typing import Optional
import structlog

from config import get_supabase_client
from models.migration_run import (
    MigrationRunResponse,
    MigrationRunStartResponse,
    RunProgress,
    RunStatus,
)
from services.sku_mapping_service import get_sku_mapping_service
from services.subscriber_service import get_subscriber_service
from exceptions import (
    DatabaseError,
    InvalidRunStatusError,
    MigrationRunNotFoundError,
    NoMappingsConfiguredError,
    NoPendingSubscribersError,
)

logger = structlog.get_logger(__name__)


class MigrationRunService:
    """Migration run lifecycle."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "migration_runs"
        self.sku_mapping_service = get_sku_mapping_service()
        self.subscriber_service = get_subscriber_service()

    # ===================
    # READ OPERATIONS
    # ===================

    def get(self, run_id: str, organization_id: Optional[str] = None) -> MigrationRunResponse:
        """
        Get a run by ID.

        Raises:
            MigrationRunNotFoundError: If the run doesn't exist
        """
        try:
            query = self.db.table(self.table).select("*").eq("id", run_id)
            if organization_id:
                query = query.eq("organization_id", organization_id)
            result = query.limit(1).execute()
        except Exception as e:
            logger.error("get_migration_run_failed", run_id=run_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise MigrationRunNotFoundError(run_id)

        return MigrationRunResponse.from_row(result.data[0])

    def list_runs(self, organization_id: str, limit: int = 20) -> list[MigrationRunResponse]:
        """Runs for an organization, newest first."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("organization_id", organization_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
            return [MigrationRunResponse.from_row(row) for row in result.data]
        except Exception as e:
            logger.error("list_migration_runs_failed", error=str(e))
            raise DatabaseError("select", str(e))

    # ===================
    # LIFECYCLE
    # ===================

    def start_run(self, organization_id: str, created_by: Optional[str] = None) -> MigrationRunStartResponse:
        """
        Open a run over every pending subscriber.

        Raises:
            NoMappingsConfiguredError: No SKU aliases exist yet
            NoPendingSubscribersError: Nothing left to audit
        """
        if self.sku_mapping_service.count_aliases(organization_id) == 0:
            raise NoMappingsConfiguredError(organization_id)

        subscriber_ids = self.subscriber_service.list_pending_ids(organization_id)
        if not subscriber_ids:
            raise NoPendingSubscribersError()

        row = {
            "organization_id": organization_id,
            "status": RunStatus.RUNNING.value,
            "total_subscribers": len(subscriber_ids),
            "processed_subscribers": 0,
            "clean_count": 0,
            "flagged_count": 0,
            "error_count": 0,
            "started_at": datetime.now(timezone.utc).isoformat(),
            "created_by": created_by,
        }

        try:
            result = self.db.table(self.table).insert(row).execute()
        except Exception as e:
            logger.error("create_migration_run_failed", organization_id=organization_id, error=str(e))
            raise DatabaseError("insert", str(e))

        run = MigrationRunResponse.from_row(result.data[0])

        logger.info(
            "migration_run_started",
            run_id=run.id,
            organization_id=organization_id,
            total_subscribers=len(subscriber_ids)
        )

        return MigrationRunStartResponse(
            run=run,
            subscriber_ids=subscriber_ids,
            total_subscribers=len(subscriber_ids),
        )

    def increment_progress(self, run_id: str, progress: RunProgress) -> None:
        """Add a batch's counts to the run in one atomic statement."""
        if progress.is_empty:
            return

        try:
            self.db.rpc("increment_migration_progress", {
                "run_id": run_id,
                "processed_count": progress.processed,
                "clean_count": progress.clean,
                "flagged_count": progress.flagged,
                "error_count": progress.error,
                "unmapped_count": progress.unmapped,
            }).execute()
        except Exception as e:
            logger.error("increment_migration_progress_failed", run_id=run_id, error=str(e))
            raise DatabaseError("rpc", str(e))

        logger.info(
            "migration_progress_incremented",
            run_id=run_id,
            processed=progress.processed,
            clean=progress.clean,
            flagged=progress.flagged,
            error=progress.error,
            unmapped=progress.unmapped
        )

    def finish_run(
        self,
        run_id: str,
        status: RunStatus,
        organization_id: Optional[str] = None
    ) -> MigrationRunResponse:
        """
        Close a running run as completed or failed.

        Raises:
            MigrationRunNotFoundError: If the run doesn't exist
            InvalidRunStatusError: Run isn't running, or status isn't terminal
        """
        run = self.get(run_id, organization_id)

        if run.status != RunStatus.RUNNING or status == RunStatus.RUNNING:
            raise InvalidRunStatusError(run.status.value, status.value)

        try:
            result = (
                self.db.table(self.table)
                .update({
                    "status": status.value,
                    "completed_at": datetime.now(timezone.utc).isoformat(),
                })
                .eq("id", run_id)
                .eq("status", RunStatus.RUNNING.value)
                .execute()
            )
        except Exception as e:
            logger.error("finish_migration_run_failed", run_id=run_id, error=str(e))
            raise DatabaseError("update", str(e))

        if not result.data:
            # Closed by someone else in between
            current = self.get(run_id)
            raise InvalidRunStatusError(current.status.value, status.value)

        logger.info("migration_run_finished", run_id=run_id, status=status.value)
        return MigrationRunResponse.from_row(result.data[0])


# Singleton instance
_migration_run_service: Optional[MigrationRunService] = None


def get_migration_run_service() -> MigrationRunService:
    """Get or create MigrationRunService instance."""
    global _migration_run_service
    if _migration_run_service is None:
        _migration_run_service = MigrationRunService()
    return _migration_run_service
