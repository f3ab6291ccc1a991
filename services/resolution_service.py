"""
Resolution workflow.

Moves audit records through their lifecycle and propagates the accepted next
box to the subscriber. Every move that touches both the audit record and the
subscriber runs inside one database function, so a failure leaves neither
side written.
"""

from typing import Optional
import structlog

from config import get_supabase_client, settings
from models.audit import (
    AuditRecordResponse,
    AuditResult,
    AuditStats,
    AuditStatus,
    HUMAN_TERMINAL_STATUSES,
    is_valid_audit_transition,
)
from models.order import BoxEvent
from models.subscriber import MigrationStatus, Subscriber
from services.audit_log_service import get_audit_log_service
from services.subscriber_service import get_subscriber_service
from exceptions import (
    AlreadyResolvedError,
    InconsistentPropagationError,
    InvalidResolutionError,
)

logger = structlog.get_logger(__name__)


class ResolutionService:
    """
    Audit record lifecycle.

    pending → clean | flagged | error is driven by the batch orchestrator;
    flagged → resolved | skipped by a reviewer.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.audit_logs = get_audit_log_service()
        self.subscribers = get_subscriber_service()

    # ===================
    # VERDICTS
    # ===================

    def record_verdict(
        self,
        organization_id: str,
        migration_run_id: str,
        subscriber: Subscriber,
        result: AuditResult,
        events: list[BoxEvent]
    ) -> AuditRecordResponse:
        """
        Store the analyzer verdict for a subscriber.

        The row is written as pending first. Clean verdicts are then accepted
        (record and subscriber together); flagged ones wait for a reviewer.
        """
        record = self.audit_logs.upsert({
            **self._base_row(organization_id, migration_run_id, subscriber),
            "status": AuditStatus.PENDING.value,
            "flag_reasons": [reason.value for reason in result.flag_reasons],
            "detected_sequences": result.detected_sequences,
            "sequence_dates": [event.to_log_dict() for event in events],
            "proposed_next_box": result.proposed_next_box,
            "confidence_score": result.confidence_score,
            "error_message": None,
        })

        if result.is_clean:
            accepted = self._accept_clean(record.id)
            logger.info(
                "audit_accepted_clean",
                audit_id=accepted.id,
                subscriber_id=subscriber.id,
                next_box=accepted.proposed_next_box,
                confidence=result.confidence_score
            )
            return accepted

        flagged = self.audit_logs.update_where_status(
            record.id,
            AuditStatus.PENDING,
            {"status": AuditStatus.FLAGGED.value}
        )
        if flagged is None:
            raise InconsistentPropagationError(record.id, "Audit record left pending before it could be flagged")

        self.subscribers.set_migration_status(subscriber.id, MigrationStatus.FLAGGED)

        logger.info(
            "audit_flagged",
            audit_id=flagged.id,
            subscriber_id=subscriber.id,
            flag_reasons=flagged.flag_reasons,
            proposed_next_box=flagged.proposed_next_box,
            confidence=result.confidence_score
        )
        return flagged

    def record_error(
        self,
        organization_id: str,
        migration_run_id: str,
        subscriber: Subscriber,
        message: str
    ) -> AuditRecordResponse:
        """
        Store a failed audit.

        The subscriber's migration status is left alone so a later run picks
        them up again.
        """
        record = self.audit_logs.upsert({
            **self._base_row(organization_id, migration_run_id, subscriber),
            "status": AuditStatus.ERROR.value,
            "flag_reasons": [],
            "detected_sequences": [],
            "sequence_dates": [],
            "proposed_next_box": None,
            "confidence_score": 0,
            "error_message": message,
        })

        logger.warning(
            "audit_recorded_as_error",
            audit_id=record.id,
            subscriber_id=subscriber.id,
            error=message
        )
        return record

    # ===================
    # REVIEWER DECISIONS
    # ===================

    def resolve(
        self,
        audit_id: str,
        organization_id: str,
        next_box: int,
        resolved_by: str,
        note: Optional[str] = None
    ) -> AuditRecordResponse:
        """
        Accept a reviewer's next box for a flagged record.

        Raises:
            InvalidResolutionError: next_box out of range, or record not flagged
            AuditRecordNotFoundError: Unknown record
            AlreadyResolvedError: Record already resolved or skipped
            InconsistentPropagationError: The transactional write failed
        """
        low, high = settings.resolution_min_box, settings.resolution_max_box
        if not low <= next_box <= high:
            raise InvalidResolutionError(
                f"Next box must be between {low} and {high}",
                details={"next_box": next_box, "min": low, "max": high}
            )

        self._require_flagged(audit_id, organization_id, AuditStatus.RESOLVED)

        rows = self._call_transition(audit_id, "resolve_audit_record", {
            "p_audit_id": audit_id,
            "p_next_box": next_box,
            "p_resolved_by": resolved_by,
            "p_note": note,
        })
        resolved = AuditRecordResponse.from_row(rows[0])

        logger.info(
            "audit_resolved",
            audit_id=audit_id,
            subscriber_id=resolved.subscriber_id,
            next_box=next_box,
            proposed_next_box=resolved.proposed_next_box,
            resolved_by=resolved_by
        )
        return resolved

    def skip(
        self,
        audit_id: str,
        organization_id: str,
        resolved_by: str,
        reason: Optional[str] = None
    ) -> AuditRecordResponse:
        """
        Decline to import a flagged subscriber. No box number is propagated.

        Raises:
            AuditRecordNotFoundError: Unknown record
            AlreadyResolvedError: Record already resolved or skipped
            InvalidResolutionError: Record not flagged
        """
        self._require_flagged(audit_id, organization_id, AuditStatus.SKIPPED)

        rows = self._call_transition(audit_id, "skip_audit_record", {
            "p_audit_id": audit_id,
            "p_resolved_by": resolved_by,
            "p_note": reason,
        })
        skipped = AuditRecordResponse.from_row(rows[0])

        logger.info("audit_skipped", audit_id=audit_id, subscriber_id=skipped.subscriber_id, resolved_by=resolved_by)
        return skipped

    # ===================
    # QUERIES
    # ===================

    def get(self, audit_id: str, organization_id: str) -> AuditRecordResponse:
        return self.audit_logs.get(audit_id, organization_id)

    def list_by_status(
        self,
        organization_id: str,
        status: AuditStatus = AuditStatus.FLAGGED,
        migration_run_id: Optional[str] = None,
        limit: int = 100
    ) -> list[AuditRecordResponse]:
        return self.audit_logs.list_by_status(organization_id, status, migration_run_id, limit)

    def get_stats(self, organization_id: str, migration_run_id: Optional[str] = None) -> AuditStats:
        """Record counts per status."""
        counts = {
            status.value: self.audit_logs.count_by_status(organization_id, status, migration_run_id)
            for status in AuditStatus
        }
        return AuditStats(total=sum(counts.values()), **counts)

    # ===================
    # HELPERS
    # ===================

    def _base_row(self, organization_id: str, migration_run_id: str, subscriber: Subscriber) -> dict:
        return {
            "organization_id": organization_id,
            "migration_run_id": migration_run_id,
            "subscriber_id": subscriber.id,
            "shopify_customer_id": subscriber.shopify_customer_id,
            "email": subscriber.email,
        }

    def _require_flagged(self, audit_id: str, organization_id: str, target: AuditStatus) -> AuditRecordResponse:
        record = self.audit_logs.get(audit_id, organization_id)

        if record.status in HUMAN_TERMINAL_STATUSES:
            raise AlreadyResolvedError(audit_id, record.status.value)
        if not is_valid_audit_transition(record.status, target):
            raise InvalidResolutionError(
                f"Only flagged records can be {target.value}",
                details={"audit_id": audit_id, "status": record.status.value}
            )
        return record

    def _call_transition(self, audit_id: str, function: str, params: dict) -> list[dict]:
        """Run a transition function; no rows back means another reviewer got there first."""
        try:
            result = self.db.rpc(function, params).execute()
        except Exception as e:
            logger.error("audit_transition_failed", audit_id=audit_id, function=function, error=str(e))
            raise InconsistentPropagationError(audit_id, str(e))

        if not result.data:
            current = self.audit_logs.get(audit_id)
            raise AlreadyResolvedError(audit_id, current.status.value)
        return result.data

    def _accept_clean(self, audit_id: str) -> AuditRecordResponse:
        try:
            result = self.db.rpc("accept_clean_audit", {"p_audit_id": audit_id}).execute()
        except Exception as e:
            logger.error("accept_clean_audit_failed", audit_id=audit_id, error=str(e))
            raise InconsistentPropagationError(audit_id, str(e))

        if not result.data:
            raise InconsistentPropagationError(audit_id, "Audit record left pending before it could be accepted")
        return AuditRecordResponse.from_row(result.data[0])


# Singleton instance
_resolution_service: Optional[ResolutionService] = None


def get_resolution_service() -> ResolutionService:
    """Get or create ResolutionService instance."""
    global _resolution_service
    if _resolution_service is None:
        _resolution_service = ResolutionService()
    return _resolution_service
