"""
Business logic services.

Each service handles one part of the audit: resolution map, normalizer and
analyzer are pure; the rest read and write Supabase.
The batch orchestrator lives in services.audit_batch_service and is not
re-exported here: it depends on integrations, which import the normalizer.
"""

from services.sku_resolver import SkuResolutionMap, PatternRule
from services.order_normalizer import normalize, coerce_orders, UnmappedItemSink
from services.sequence_analyzer import analyze, analyze_by_count, analyze_hybrid, analyzer_for
from services.sku_mapping_service import SkuMappingService, get_sku_mapping_service
from services.unmapped_item_service import UnmappedItemService, get_unmapped_item_service
from services.subscriber_service import SubscriberService, get_subscriber_service
from services.audit_log_service import AuditLogService, get_audit_log_service
from services.resolution_service import ResolutionService, get_resolution_service
from services.migration_run_service import MigrationRunService, get_migration_run_service

__all__ = [
    "SkuResolutionMap",
    "PatternRule",
    "normalize",
    "coerce_orders",
    "UnmappedItemSink",
    "analyze",
    "analyze_by_count",
    "analyze_hybrid",
    "analyzer_for",
    "SkuMappingService",
    "get_sku_mapping_service",
    "UnmappedItemService",
    "get_unmapped_item_service",
    "SubscriberService",
    "get_subscriber_service",
    "AuditLogService",
    "get_audit_log_service",
    "ResolutionService",
    "get_resolution_service",
    "MigrationRunService",
    "get_migration_run_service",
]
