"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    AuthenticationError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,

    # Order source
    UpstreamFetchError,
    UpstreamRateLimitError,
    IntegrationNotConnectedError,

    # SKU mapping
    NoMappingsConfiguredError,
    InvalidPatternError,
    PatternExistsError,

    # Audit / resolution
    AuditRecordNotFoundError,
    InvalidResolutionError,
    AlreadyResolvedError,
    InconsistentPropagationError,

    # Batches / runs
    EmptyBatchError,
    BatchTooLargeError,
    MigrationRunNotFoundError,
    InvalidRunStatusError,
    NoPendingSubscribersError,

    # Subscribers / unmapped items
    SubscriberNotFoundError,
    UnmappedItemNotFoundError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "AuthenticationError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",

    # Order source
    "UpstreamFetchError",
    "UpstreamRateLimitError",
    "IntegrationNotConnectedError",

    # SKU mapping
    "NoMappingsConfiguredError",
    "InvalidPatternError",
    "PatternExistsError",

    # Audit / resolution
    "AuditRecordNotFoundError",
    "InvalidResolutionError",
    "AlreadyResolvedError",
    "InconsistentPropagationError",

    # Batches / runs
    "EmptyBatchError",
    "BatchTooLargeError",
    "MigrationRunNotFoundError",
    "InvalidRunStatusError",
    "NoPendingSubscribersError",

    # Subscribers / unmapped items
    "SubscriberNotFoundError",
    "UnmappedItemNotFoundError",
]
