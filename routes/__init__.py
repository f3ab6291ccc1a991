"""
API route modules.

Each module defines routes for one part of the migration audit.
"""

from routes.audit import router as audit_router
from routes.runs import router as runs_router
from routes.sku_mappings import router as sku_mappings_router
from routes.unmapped import router as unmapped_router

__all__ = [
    "audit_router",
    "runs_router",
    "sku_mappings_router",
    "unmapped_router",
]
