"""
SKU mapping API routes.

Exact SKU aliases and fallback product-name patterns.
"""

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
import structlog

from models.sku_mapping import (
    ProductPattern,
    ProductPatternCreate,
    SkuAlias,
    SkuAliasBulkCreate,
)
from services.sku_mapping_service import get_sku_mapping_service
from routes.deps import OrgContext, get_org_context
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/migration", tags=["SKU Mapping"])


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
# SKU ALIASES
# ===================

@router.get("/sku-aliases", response_model=list[SkuAlias])
async def list_sku_aliases(ctx: OrgContext = Depends(get_org_context)):
    """All SKU aliases, ordered by box number."""
    try:
        return get_sku_mapping_service().get_aliases(ctx.organization_id)
    except Exception as e:
        return handle_error(e)


@router.post("/sku-aliases")
async def upsert_sku_aliases(data: SkuAliasBulkCreate, ctx: OrgContext = Depends(get_org_context)):
    """Create or update SKU aliases in bulk."""
    try:
        count = get_sku_mapping_service().upsert_aliases(ctx.organization_id, data.mappings)
        return {"success": True, "count": count}
    except Exception as e:
        return handle_error(e)


@router.delete("/sku-aliases", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sku_alias(
    sku: str = Query(..., min_length=1, description="SKU to unmap"),
    ctx: OrgContext = Depends(get_org_context),
):
    """Remove a SKU alias."""
    try:
        get_sku_mapping_service().delete_alias(ctx.organization_id, sku)
        return None
    except Exception as e:
        return handle_error(e)


# ===================
# PRODUCT PATTERNS
# ===================

@router.get("/patterns", response_model=list[ProductPattern])
async def list_patterns(ctx: OrgContext = Depends(get_org_context)):
    """Patterns in evaluation order."""
    try:
        return get_sku_mapping_service().get_patterns(ctx.organization_id)
    except Exception as e:
        return handle_error(e)


@router.post("/patterns", response_model=ProductPattern, status_code=status.HTTP_201_CREATED)
async def create_pattern(data: ProductPatternCreate, ctx: OrgContext = Depends(get_org_context)):
    """
    Add a product-name pattern.

    Errors:
    - 422 INVALID_PRODUCT_PATTERN: regex doesn't compile or {N} placeholder missing
    - 409 PRODUCT_PATTERN_EXISTS: same pattern and type already registered
    """
    try:
        return get_sku_mapping_service().create_pattern(ctx.organization_id, data)
    except Exception as e:
        return handle_error(e)


@router.delete("/patterns", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pattern(
    id: str = Query(..., min_length=1, description="Pattern ID"),
    ctx: OrgContext = Depends(get_org_context),
):
    """Remove a product pattern."""
    try:
        get_sku_mapping_service().delete_pattern(ctx.organization_id, id)
        return None
    except Exception as e:
        return handle_error(e)
