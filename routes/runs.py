"""
Migration run API routes.
"""

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
import structlog

from models.migration_run import (
    MigrationRunResponse,
    MigrationRunStartResponse,
    MigrationRunStatusUpdate,
)
from services.migration_run_service import get_migration_run_service
from routes.deps import OrgContext, get_org_context
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/migration/runs", tags=["Migration Runs"])


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


@router.get("", response_model=list[MigrationRunResponse])
async def list_runs(
    limit: int = Query(20, ge=1, le=100),
    ctx: OrgContext = Depends(get_org_context),
):
    """List runs, newest first."""
    try:
        return get_migration_run_service().list_runs(ctx.organization_id, limit)
    except Exception as e:
        return handle_error(e)


@router.post("", response_model=MigrationRunStartResponse, status_code=status.HTTP_201_CREATED)
async def start_run(ctx: OrgContext = Depends(get_org_context)):
    """
    Start a run over all pending subscribers.

    Returns the subscriber IDs so the client can submit them in batches.
    """
    try:
        return get_migration_run_service().start_run(ctx.organization_id, created_by=ctx.user_id)
    except Exception as e:
        return handle_error(e)


@router.get("/{run_id}", response_model=MigrationRunResponse)
async def get_run(run_id: str, ctx: OrgContext = Depends(get_org_context)):
    """Get a run with its counters."""
    try:
        return get_migration_run_service().get(run_id, ctx.organization_id)
    except Exception as e:
        return handle_error(e)


@router.patch("/{run_id}", response_model=MigrationRunResponse)
async def finish_run(run_id: str, data: MigrationRunStatusUpdate, ctx: OrgContext = Depends(get_org_context)):
    """Mark a running run completed or failed."""
    try:
        return get_migration_run_service().finish_run(run_id, data.status, ctx.organization_id)
    except Exception as e:
        return handle_error(e)
