"""
Unmapped item triage routes.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.unmapped_item import (
    UnmappedItemListResponse,
    UnmappedResolveRequest,
    UnmappedSkipRequest,
)
from services.unmapped_item_service import get_unmapped_item_service
from routes.deps import OrgContext, get_org_context
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/migration/unmapped", tags=["Unmapped Items"])


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


@router.get("", response_model=UnmappedItemListResponse)
async def list_unmapped_items(
    resolved: Optional[bool] = Query(False, description="Resolved items instead of open ones"),
    search: Optional[str] = Query(None, description="Product name contains"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: OrgContext = Depends(get_org_context),
):
    """List unmapped items, newest order first."""
    try:
        items, total = get_unmapped_item_service().list_items(
            ctx.organization_id,
            resolved=resolved,
            search=search,
            limit=limit,
            offset=offset
        )
        return UnmappedItemListResponse(items=items, total=total)
    except Exception as e:
        return handle_error(e)


@router.post("")
async def resolve_unmapped_items(data: UnmappedResolveRequest, ctx: OrgContext = Depends(get_org_context)):
    """Assign a box number to unmapped items."""
    try:
        count = get_unmapped_item_service().resolve_items(
            ctx.organization_id,
            data.item_ids,
            data.sequence,
            resolved_by=ctx.user_id,
            method=data.method
        )
        return {"success": True, "resolved": count}
    except Exception as e:
        return handle_error(e)


@router.delete("")
async def skip_unmapped_items(data: UnmappedSkipRequest, ctx: OrgContext = Depends(get_org_context)):
    """Dismiss unmapped items without a box number."""
    try:
        count = get_unmapped_item_service().skip_items(ctx.organization_id, data.item_ids, resolved_by=ctx.user_id)
        return {"success": True, "skipped": count}
    except Exception as e:
        return handle_error(e)
