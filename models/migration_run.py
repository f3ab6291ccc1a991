"""
Migration run schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema


class RunStatus(str, Enum):
    """Migration run status values."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunProgress(BaseModel):
    """Counter deltas applied atomically after a batch."""

    processed: int = Field(default=0, ge=0)
    clean: int = Field(default=0, ge=0)
    flagged: int = Field(default=0, ge=0)
    error: int = Field(default=0, ge=0)
    unmapped: int = Field(default=0, ge=0)

    @property
    def is_empty(self) -> bool:
        return not (self.processed or self.clean or self.flagged or self.error or self.unmapped)


class MigrationRunResponse(BaseSchema):
    """Migration run row."""

    id: str
    organization_id: str
    status: RunStatus
    total_subscribers: int = 0
    processed_subscribers: int = 0
    clean_count: int = 0
    flagged_count: int = 0
    error_count: int = 0
    unmapped_count: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def remaining(self) -> int:
        return max(self.total_subscribers - self.processed_subscribers, 0)

    @classmethod
    def from_row(cls, row: dict) -> "MigrationRunResponse":
        return cls(
            id=row["id"],
            organization_id=row["organization_id"],
            status=RunStatus(row.get("status") or "running"),
            total_subscribers=row.get("total_subscribers") or 0,
            processed_subscribers=row.get("processed_subscribers") or 0,
            clean_count=row.get("clean_count") or 0,
            flagged_count=row.get("flagged_count") or 0,
            error_count=row.get("error_count") or 0,
            unmapped_count=row.get("unmapped_count") or 0,
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            created_by=row.get("created_by"),
            created_at=row.get("created_at"),
        )


class MigrationRunStartResponse(BaseModel):
    """Run created plus the subscribers queued for auditing."""
    run: MigrationRunResponse
    subscriber_ids: list[str]
    total_subscribers: int


class MigrationRunStatusUpdate(BaseSchema):
    """Finish a run."""
    status: RunStatus = Field(..., description="completed or failed")
