"""
Request context shared by the migration routes.

Callers identify the organization and acting user through headers. The
capability check lives here so the services only ever see a resolved
organization ID.
"""

import hmac
from typing import Optional

from fastapi import Header
from pydantic import BaseModel
import structlog

from config import settings
from exceptions import AuthenticationError

logger = structlog.get_logger(__name__)


class OrgContext(BaseModel):
    """Organization the request acts on, and who is acting."""
    organization_id: str
    user_id: str


def get_org_context(
    x_organization_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None),
) -> OrgContext:
    """
    Resolve the request context.

    Raises:
        AuthenticationError: API key wrong/missing (when configured) or no organization
    """
    if settings.api_key_required and not hmac.compare_digest(x_api_key or "", settings.api_key):
        logger.warning("api_key_rejected", organization_id=x_organization_id)
        raise AuthenticationError("Invalid or missing API key")

    if not x_organization_id:
        raise AuthenticationError("X-Organization-Id header is required")

    return OrgContext(organization_id=x_organization_id, user_id=x_user_id or "api")
