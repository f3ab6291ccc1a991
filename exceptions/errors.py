"""
Custom exception classes for the application.

Every error carries a stable code, an HTTP status and a details dict so the
routes can return them unchanged.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "AUDIT_RECORD_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class AuthenticationError(AppError):
    """Caller identity or API key missing or wrong (401)."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# ORDER SOURCE ERRORS
# ===================

class UpstreamFetchError(ExternalServiceError):
    """Order source unreachable or returned unusable data for one customer."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        service: str = "shopify",
        details: Optional[dict] = None
    ):
        super().__init__(
            service=service,
            message=message,
            code="UPSTREAM_FETCH_ERROR",
            details={"upstream_status": status, **(details or {})}
        )
        self.upstream_status = status


class UpstreamRateLimitError(UpstreamFetchError):
    """Order source kept throttling after all retries were spent."""

    def __init__(self, attempts: int, retry_after: Optional[float] = None, service: str = "shopify"):
        super().__init__(
            message=f"Rate limited by {service} after {attempts} attempts",
            status=429,
            service=service,
            details={"attempts": attempts, "retry_after": retry_after}
        )
        self.code = "UPSTREAM_RATE_LIMITED"
        self.retry_after = retry_after


class IntegrationNotConnectedError(ValidationError):
    """Organization has no connected integration of the given type."""

    def __init__(self, integration: str):
        super().__init__(
            code="INTEGRATION_NOT_CONNECTED",
            message=f"{integration.capitalize()} not connected",
            details={"integration": integration}
        )


# ===================
# SKU MAPPING ERRORS
# ===================

class NoMappingsConfiguredError(ValidationError):
    """No SKU aliases exist for the organization, so an audit would be meaningless."""

    def __init__(self, organization_id: str):
        super().__init__(
            code="NO_MAPPINGS_CONFIGURED",
            message="No SKU mappings found. Map at least one SKU before starting the audit.",
            details={"organization_id": organization_id}
        )


class InvalidPatternError(ValidationError):
    """Product pattern cannot be compiled or is empty."""

    def __init__(self, pattern: str, reason: str):
        super().__init__(
            code="INVALID_PRODUCT_PATTERN",
            message=f"Invalid product pattern: {reason}",
            details={"pattern": pattern}
        )


class PatternExistsError(ConflictError):
    """Same pattern already registered for the organization."""

    def __init__(self, pattern: str):
        super().__init__(
            code="PRODUCT_PATTERN_EXISTS",
            message="Pattern already exists",
            details={"pattern": pattern}
        )


# ===================
# AUDIT / RESOLUTION ERRORS
# ===================

class AuditRecordNotFoundError(NotFoundError):
    """Audit record not found (or owned by another organization)."""

    def __init__(self, audit_id: str):
        super().__init__(
            resource="Audit record",
            identifier=audit_id,
            code="AUDIT_RECORD_NOT_FOUND"
        )


class InvalidResolutionError(ValidationError):
    """Resolution request is out of range or targets a record that is not flagged."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="INVALID_RESOLUTION",
            message=message,
            details=details
        )


class AlreadyResolvedError(ConflictError):
    """Record already reached resolved/skipped; it is never overwritten."""

    def __init__(self, audit_id: str, current_status: str):
        super().__init__(
            code="AUDIT_ALREADY_RESOLVED",
            message=f"Audit record is already {current_status}",
            details={"id": audit_id, "current_status": current_status}
        )


class InconsistentPropagationError(DatabaseError):
    """Transactional audit + subscriber update failed; nothing was written."""

    def __init__(self, audit_id: str, message: str):
        super().__init__(
            operation="resolve",
            message=message,
            details={"id": audit_id}
        )
        self.code = "INCONSISTENT_PROPAGATION"


# ===================
# BATCH / RUN ERRORS
# ===================

class EmptyBatchError(ValidationError):
    """Batch request carries no subscriber IDs."""

    def __init__(self):
        super().__init__(
            code="EMPTY_BATCH",
            message="subscriber_ids must contain at least one subscriber"
        )


class BatchTooLargeError(ValidationError):
    """Batch request exceeds the configured size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            code="BATCH_TOO_LARGE",
            message=f"Maximum {limit} subscribers per batch",
            details={"size": size, "limit": limit}
        )


class MigrationRunNotFoundError(NotFoundError):
    """Migration run not found."""

    def __init__(self, run_id: str):
        super().__init__(
            resource="Migration run",
            identifier=run_id,
            code="MIGRATION_RUN_NOT_FOUND"
        )


class InvalidRunStatusError(ValidationError):
    """Migration run cannot move to the requested status."""

    def __init__(self, current_status: str, new_status: str):
        super().__init__(
            code="INVALID_RUN_STATUS",
            message=f"Cannot transition run from {current_status} to {new_status}",
            details={"current_status": current_status, "new_status": new_status}
        )


class NoPendingSubscribersError(ValidationError):
    """Nothing left to audit for the organization."""

    def __init__(self):
        super().__init__(
            code="NO_PENDING_SUBSCRIBERS",
            message="No subscribers pending migration"
        )


# ===================
# SUBSCRIBER / UNMAPPED ERRORS
# ===================

class SubscriberNotFoundError(NotFoundError):
    """Subscriber not found."""

    def __init__(self, subscriber_id: str):
        super().__init__(
            resource="Subscriber",
            identifier=subscriber_id,
            code="SUBSCRIBER_NOT_FOUND"
        )


class UnmappedItemNotFoundError(NotFoundError):
    """Unmapped item not found."""

    def __init__(self, item_id: str):
        super().__init__(
            resource="Unmapped item",
            identifier=item_id,
            code="UNMAPPED_ITEM_NOT_FOUND"
        )
