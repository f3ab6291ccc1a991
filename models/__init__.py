"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    FrozenSchema,
    TimestampMixin,
    PaginatedResponse
)
from models.order import (
    VariationType,
    MatchSource,
    LineItem,
    Order,
    BoxEvent,
)
from models.sku_mapping import (
    PatternType,
    SEQUENCE_PLACEHOLDER,
    SkuAliasCreate,
    SkuAliasBulkCreate,
    SkuAlias,
    ProductPatternCreate,
    ProductPattern,
    ProductClassification,
)
from models.audit import (
    AuditStatus,
    FlagReason,
    AuditMode,
    AUDIT_TRANSITIONS,
    is_valid_audit_transition,
    AuditResult,
    AuditRecordResponse,
    AuditRecordListResponse,
    ResolveRequest,
    SkipRequest,
    AuditStats,
    AuditBatchRequest,
    SubscriberAuditOutcome,
    AuditBatchResult,
)
from models.migration_run import (
    RunStatus,
    RunProgress,
    MigrationRunResponse,
    MigrationRunStartResponse,
    MigrationRunStatusUpdate,
)
from models.unmapped_item import (
    ResolutionMethod,
    UnmappedItemResponse,
    UnmappedItemListResponse,
    UnmappedResolveRequest,
    UnmappedSkipRequest,
)
from models.subscriber import (
    MigrationStatus,
    Subscriber,
)

__all__ = [
    # Base
    "BaseSchema",
    "FrozenSchema",
    "TimestampMixin",
    "PaginatedResponse",

    # Orders
    "VariationType",
    "MatchSource",
    "LineItem",
    "Order",
    "BoxEvent",

    # SKU mapping
    "PatternType",
    "SEQUENCE_PLACEHOLDER",
    "SkuAliasCreate",
    "SkuAliasBulkCreate",
    "SkuAlias",
    "ProductPatternCreate",
    "ProductPattern",
    "ProductClassification",

    # Audit
    "AuditStatus",
    "FlagReason",
    "AuditMode",
    "AUDIT_TRANSITIONS",
    "is_valid_audit_transition",
    "AuditResult",
    "AuditRecordResponse",
    "AuditRecordListResponse",
    "ResolveRequest",
    "SkipRequest",
    "AuditStats",
    "AuditBatchRequest",
    "SubscriberAuditOutcome",
    "AuditBatchResult",

    # Migration runs
    "RunStatus",
    "RunProgress",
    "MigrationRunResponse",
    "MigrationRunStartResponse",
    "MigrationRunStatusUpdate",

    # Unmapped items
    "ResolutionMethod",
    "UnmappedItemResponse",
    "UnmappedItemListResponse",
    "UnmappedResolveRequest",
    "UnmappedSkipRequest",

    # Subscribers
    "MigrationStatus",
    "Subscriber",
]
