"""
Forensic audit API routes.

Batch auditing, the reviewer queue for flagged records, and status counts.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.audit import (
    AuditBatchRequest,
    AuditBatchResult,
    AuditRecordListResponse,
    AuditRecordResponse,
    AuditStats,
    AuditStatus,
    ResolveRequest,
    SkipRequest,
)
from services.audit_batch_service import get_audit_batch_service
from services.resolution_service import get_resolution_service
from routes.deps import OrgContext, get_org_context
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/migration", tags=["Forensic Audit"])


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# BATCH AUDIT
# ===================

@router.post("/audit", response_model=AuditBatchResult)
def run_audit_batch(data: AuditBatchRequest, ctx: OrgContext = Depends(get_org_context)):
    """
    Audit a batch of subscribers.

    Plain def: the batch blocks on order source calls and pacing sleeps, so
    it runs in the threadpool.
    """
    try:
        return get_audit_batch_service().run_batch(
            ctx.organization_id,
            data.migration_run_id,
            data.subscriber_ids,
            audit_mode=data.audit_mode
        )
    except Exception as e:
        return handle_error(e)


# ===================
# RESOLUTION QUEUE
# ===================

@router.get("/resolve", response_model=AuditRecordListResponse)
async def list_audit_records(
    status: AuditStatus = Query(AuditStatus.FLAGGED, description="Record status"),
    migration_run_id: Optional[str] = Query(None, description="Filter by run"),
    limit: int = Query(100, ge=1, le=500),
    ctx: OrgContext = Depends(get_org_context),
):
    """List audit records by status (flagged by default)."""
    try:
        logs = get_resolution_service().list_by_status(ctx.organization_id, status, migration_run_id, limit)
        return AuditRecordListResponse(logs=logs, total=len(logs))
    except Exception as e:
        return handle_error(e)


@router.get("/resolve/{audit_id}", response_model=AuditRecordResponse)
async def get_audit_record(audit_id: str, ctx: OrgContext = Depends(get_org_context)):
    """Get one audit record."""
    try:
        return get_resolution_service().get(audit_id, ctx.organization_id)
    except Exception as e:
        return handle_error(e)


@router.post("/resolve", response_model=AuditRecordResponse)
async def resolve_audit_record(data: ResolveRequest, ctx: OrgContext = Depends(get_org_context)):
    """
    Resolve a flagged record with the reviewer's next box.

    Errors:
    - 422 INVALID_RESOLUTION: next box out of range or record not flagged
    - 409 AUDIT_ALREADY_RESOLVED: record already resolved or skipped
    """
    try:
        return get_resolution_service().resolve(
            data.audit_log_id,
            ctx.organization_id,
            data.next_box,
            resolved_by=ctx.user_id,
            note=data.note
        )
    except Exception as e:
        return handle_error(e)


@router.post("/resolve/skip", response_model=AuditRecordResponse)
async def skip_audit_record(data: SkipRequest, ctx: OrgContext = Depends(get_org_context)):
    """Skip a flagged record; the subscriber keeps their current box number."""
    try:
        return get_resolution_service().skip(
            data.audit_log_id,
            ctx.organization_id,
            resolved_by=ctx.user_id,
            reason=data.reason
        )
    except Exception as e:
        return handle_error(e)


# ===================
# STATUS
# ===================

@router.get("/status", response_model=AuditStats)
async def get_audit_status(
    migration_run_id: Optional[str] = Query(None, description="Limit counts to one run"),
    ctx: OrgContext = Depends(get_org_context),
):
    """Audit record counts per status."""
    try:
        return get_resolution_service().get_stats(ctx.organization_id, migration_run_id)
    except Exception as e:
        return handle_error(e)
