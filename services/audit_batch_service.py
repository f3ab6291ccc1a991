"""
Audit batch orchestrator.

Runs the forensic audit for a bounded batch of subscribers:

    fetch order history → normalize → analyze → record verdict

Subscribers are processed one at a time with a fixed pause in between to
stay under the order source's rate limit. A failure for one subscriber is
recorded as an error record and the batch moves on.
"""

import time
from typing import Callable, Optional
import structlog

from config import settings
from models.audit import (
    AuditBatchResult,
    AuditMode,
    AuditResult,
    AuditStatus,
    SubscriberAuditOutcome,
)
from models.order import BoxEvent
from models.migration_run import RunProgress, RunStatus
from models.subscriber import Subscriber
from services.migration_run_service import get_migration_run_service
from services.order_normalizer import UnmappedItemSink, normalize
from services.resolution_service import get_resolution_service
from services.sequence_analyzer import analyzer_for
from services.sku_mapping_service import get_sku_mapping_service
from services.sku_resolver import SkuResolutionMap
from services.subscriber_service import get_subscriber_service
from services.audit_log_service import get_audit_log_service
from services.unmapped_item_service import get_unmapped_item_service
from integrations.shopify import ShopifyOrderSource, get_order_source
from exceptions import (
    AppError,
    BatchTooLargeError,
    EmptyBatchError,
    InvalidRunStatusError,
)

logger = structlog.get_logger(__name__)


class AuditBatchService:
    """Batch orchestration across the audit components."""

    def __init__(
        self,
        order_source_factory: Optional[Callable[[str], ShopifyOrderSource]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.order_source_factory = order_source_factory or get_order_source
        self.sleep = sleep
        self.runs = get_migration_run_service()
        self.sku_mappings = get_sku_mapping_service()
        self.subscribers = get_subscriber_service()
        self.audit_logs = get_audit_log_service()
        self.resolution = get_resolution_service()
        self.unmapped_items = get_unmapped_item_service()

    def run_batch(
        self,
        organization_id: str,
        migration_run_id: str,
        subscriber_ids: list[str],
        audit_mode: AuditMode = AuditMode.SKU_MAPPING
    ) -> AuditBatchResult:
        """
        Audit a batch of subscribers within a run.

        Everything that would fail the whole batch is checked before the
        first subscriber is touched.

        audit_mode picks how box numbers are derived; see
        services.sequence_analyzer.

        Raises:
            EmptyBatchError: No subscriber IDs
            BatchTooLargeError: More than audit_max_batch_size IDs
            MigrationRunNotFoundError: Unknown run
            InvalidRunStatusError: Run already completed or failed
            IntegrationNotConnectedError: No Shopify connection
            NoMappingsConfiguredError: No SKU aliases
        """
        if not subscriber_ids:
            raise EmptyBatchError()
        if len(subscriber_ids) > settings.audit_max_batch_size:
            raise BatchTooLargeError(len(subscriber_ids), settings.audit_max_batch_size)

        run = self.runs.get(migration_run_id, organization_id)
        if run.status != RunStatus.RUNNING:
            raise InvalidRunStatusError(run.status.value, "running")

        order_source = self.order_source_factory(organization_id)
        sku_map = self.sku_mappings.load_resolution_map(organization_id)
        sink = self.unmapped_items.for_run(migration_run_id)

        subscribers = self.subscribers.get_by_ids(organization_id, subscriber_ids)
        missing = set(subscriber_ids) - {s.id for s in subscribers}
        if missing:
            logger.warning("batch_subscribers_not_found", count=len(missing), subscriber_ids=sorted(missing))

        logger.info(
            "audit_batch_started",
            organization_id=organization_id,
            migration_run_id=migration_run_id,
            batch_size=len(subscribers),
            aliases=sku_map.alias_count,
            patterns=sku_map.pattern_count,
            audit_mode=audit_mode.value
        )

        analyzer = analyzer_for(audit_mode)
        outcomes: list[SubscriberAuditOutcome] = []
        progress = RunProgress()

        for index, subscriber in enumerate(subscribers):
            if index:
                self.sleep(settings.audit_inter_subscriber_delay_seconds)

            existing = self.audit_logs.find_for_subscriber(migration_run_id, subscriber.id)
            if existing and existing.status != AuditStatus.PENDING:
                logger.info(
                    "subscriber_already_audited",
                    subscriber_id=subscriber.id,
                    audit_id=existing.id,
                    status=existing.status.value
                )
                outcomes.append(SubscriberAuditOutcome(
                    subscriber_id=subscriber.id,
                    customer_identifier=subscriber.customer_identifier,
                    status=existing.status,
                    audit_log_id=existing.id,
                    flag_reasons=existing.flag_reasons,
                    proposed_next_box=existing.proposed_next_box,
                    confidence_score=existing.confidence_score,
                    error=existing.error_message,
                    reused=True,
                ))
                continue

            outcome = self._audit_subscriber(
                organization_id, migration_run_id, subscriber, order_source, sku_map, sink, analyzer
            )
            outcomes.append(outcome)

            progress.processed += 1
            if outcome.status == AuditStatus.CLEAN:
                progress.clean += 1
            elif outcome.status == AuditStatus.FLAGGED:
                progress.flagged += 1
            else:
                progress.error += 1
            progress.unmapped += outcome.unmapped_item_count

        self.runs.increment_progress(migration_run_id, progress)

        logger.info(
            "audit_batch_completed",
            migration_run_id=migration_run_id,
            processed=progress.processed,
            clean=progress.clean,
            flagged=progress.flagged,
            errors=progress.error,
            reused=len(outcomes) - progress.processed
        )

        return AuditBatchResult(
            migration_run_id=migration_run_id,
            processed=progress.processed,
            clean_count=progress.clean,
            flagged_count=progress.flagged,
            error_count=progress.error,
            results=outcomes,
        )

    def _audit_subscriber(
        self,
        organization_id: str,
        migration_run_id: str,
        subscriber: Subscriber,
        order_source: ShopifyOrderSource,
        sku_map: SkuResolutionMap,
        sink: UnmappedItemSink,
        analyzer: Callable[[list[BoxEvent]], AuditResult]
    ) -> SubscriberAuditOutcome:
        try:
            orders = order_source.fetch_orders(
                customer_id=subscriber.shopify_customer_id,
                email=subscriber.email
            )
            events = normalize(
                orders,
                sku_map,
                unmapped_sink=sink,
                organization_id=organization_id,
                customer_identifier=subscriber.customer_identifier
            )
            result = analyzer(events)
            record = self.resolution.record_verdict(organization_id, migration_run_id, subscriber, result, events)

        except Exception as e:
            message = e.message if isinstance(e, AppError) else str(e)
            logger.error(
                "subscriber_audit_failed",
                subscriber_id=subscriber.id,
                error=message,
                error_type=type(e).__name__
            )
            record = self.resolution.record_error(organization_id, migration_run_id, subscriber, message)
            return SubscriberAuditOutcome(
                subscriber_id=subscriber.id,
                customer_identifier=subscriber.customer_identifier,
                status=AuditStatus.ERROR,
                audit_log_id=record.id,
                error=message,
            )

        return SubscriberAuditOutcome(
            subscriber_id=subscriber.id,
            customer_identifier=subscriber.customer_identifier,
            status=record.status,
            audit_log_id=record.id,
            flag_reasons=record.flag_reasons,
            proposed_next_box=record.proposed_next_box,
            confidence_score=record.confidence_score,
            unmapped_item_count=result.unmapped_event_count,
        )


# Singleton instance
_audit_batch_service: Optional[AuditBatchService] = None


def get_audit_batch_service() -> AuditBatchService:
    """Get or create AuditBatchService instance."""
    global _audit_batch_service
    if _audit_batch_service is None:
        _audit_batch_service = AuditBatchService()
    return _audit_batch_service
