"""
Audit verdict and audit record schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema


class AuditStatus(str, Enum):
    """Audit record lifecycle states."""
    PENDING = "pending"
    CLEAN = "clean"
    FLAGGED = "flagged"
    RESOLVED = "resolved"
    SKIPPED = "skipped"
    ERROR = "error"


class FlagReason(str, Enum):
    """Anomaly kinds the analyzer can report."""
    SKIPPED_BOX = "skipped_box"
    DUPLICATE_BOX = "duplicate_box"
    OUT_OF_ORDER_PURCHASE = "out_of_order_purchase"
    UNMAPPED_ITEMS_PRESENT = "unmapped_items_present"
    NO_MAPPED_PURCHASES = "no_mapped_purchases"


class AuditMode(str, Enum):
    """How box numbers are derived from an order history."""
    SKU_MAPPING = "sku_mapping"
    ORDER_COUNT = "order_count"
    HYBRID = "hybrid"


# Allowed moves; anything not listed is refused
AUDIT_TRANSITIONS: dict[AuditStatus, frozenset[AuditStatus]] = {
    AuditStatus.PENDING: frozenset({AuditStatus.CLEAN, AuditStatus.FLAGGED, AuditStatus.ERROR}),
    AuditStatus.FLAGGED: frozenset({AuditStatus.RESOLVED, AuditStatus.SKIPPED}),
    AuditStatus.CLEAN: frozenset(),
    AuditStatus.RESOLVED: frozenset(),
    AuditStatus.SKIPPED: frozenset(),
    AuditStatus.ERROR: frozenset(),
}

# Reached through a human decision; resolving again is a conflict
HUMAN_TERMINAL_STATUSES = frozenset({AuditStatus.RESOLVED, AuditStatus.SKIPPED})


def is_valid_audit_transition(current: AuditStatus, new: AuditStatus) -> bool:
    """
    Check if an audit record may move from current to new.

    Rules:
    - pending → clean | flagged | error (analyzer / orchestrator)
    - flagged → resolved | skipped (reviewer)
    - clean, resolved, skipped, error are terminal for a run
    """
    return new in AUDIT_TRANSITIONS[current]


# ===================
# ANALYZER OUTPUT
# ===================

class AuditResult(BaseModel):
    """Verdict computed by the sequence analyzer for one subscriber."""

    status: AuditStatus
    proposed_next_box: int = Field(..., ge=1)
    detected_sequences: list[int] = Field(default_factory=list)
    flag_reasons: list[FlagReason] = Field(default_factory=list)
    confidence_score: float = Field(..., ge=0, le=1)
    mapped_event_count: int = 0
    unmapped_event_count: int = 0
    last_box_received_at: Optional[datetime] = None

    @property
    def is_clean(self) -> bool:
        return self.status == AuditStatus.CLEAN


# ===================
# AUDIT RECORDS
# ===================

class AuditRecordResponse(BaseSchema):
    """Audit record as stored in audit_logs."""

    id: str
    organization_id: str
    migration_run_id: str
    subscriber_id: str
    customer_identifier: Optional[str] = None
    status: AuditStatus
    detected_sequences: list[int] = Field(default_factory=list)
    sequence_events: list[dict] = Field(default_factory=list)
    proposed_next_box: Optional[int] = None
    resolved_next_box: Optional[int] = None
    flag_reasons: list[str] = Field(default_factory=list)
    confidence_score: float = 0.0
    error_message: Optional[str] = None
    resolution_note: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "AuditRecordResponse":
        return cls(
            id=row["id"],
            organization_id=row["organization_id"],
            migration_run_id=row["migration_run_id"],
            subscriber_id=row["subscriber_id"],
            customer_identifier=row.get("email") or row.get("shopify_customer_id"),
            status=AuditStatus(row["status"]),
            detected_sequences=row.get("detected_sequences") or [],
            sequence_events=row.get("sequence_dates") or [],
            proposed_next_box=row.get("proposed_next_box"),
            resolved_next_box=row.get("resolved_next_box"),
            flag_reasons=row.get("flag_reasons") or [],
            confidence_score=row.get("confidence_score") or 0.0,
            error_message=row.get("error_message"),
            resolution_note=row.get("resolution_note"),
            resolved_by=row.get("resolved_by"),
            resolved_at=row.get("resolved_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class AuditRecordListResponse(BaseModel):
    """List of audit records for the review queue."""
    logs: list[AuditRecordResponse]
    total: int


class ResolveRequest(BaseSchema):
    """
    Reviewer decision for a flagged record.

    Range is checked against settings in the workflow so the limits stay
    configurable; only the type is enforced here.
    """

    audit_log_id: str = Field(..., min_length=1)
    next_box: int
    note: Optional[str] = Field(None, max_length=1000)


class SkipRequest(BaseSchema):
    """Reviewer declines to import a flagged subscriber."""

    audit_log_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=1000)


class AuditStats(BaseModel):
    """Counts per audit status."""
    total: int = 0
    pending: int = 0
    clean: int = 0
    flagged: int = 0
    resolved: int = 0
    skipped: int = 0
    error: int = 0


# ===================
# BATCHES
# ===================

class AuditBatchRequest(BaseSchema):
    """Audit a bounded batch of subscribers within a run."""

    subscriber_ids: list[str] = Field(..., description="Subscribers to audit")
    migration_run_id: str = Field(..., min_length=1)
    audit_mode: AuditMode = Field(default=AuditMode.SKU_MAPPING, description="How box numbers are derived")


class SubscriberAuditOutcome(BaseModel):
    """Per-subscriber result of a batch."""

    subscriber_id: str
    customer_identifier: Optional[str] = None
    status: AuditStatus
    audit_log_id: Optional[str] = None
    flag_reasons: list[str] = Field(default_factory=list)
    proposed_next_box: Optional[int] = None
    confidence_score: Optional[float] = None
    error: Optional[str] = None
    unmapped_item_count: int = 0
    reused: bool = Field(default=False, description="Existing record from an earlier batch of the run")


class AuditBatchResult(BaseModel):
    """Aggregate batch outcome."""

    migration_run_id: str
    processed: int
    clean_count: int
    flagged_count: int
    error_count: int
    results: list[SubscriberAuditOutcome]
