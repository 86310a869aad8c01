"""Period result domain models."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from choretally.core.config import Constants


class PeriodStatus(StrEnum):
    """Outcome of a counting period."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"  # Excluded from completion rates


class PeriodResult(BaseModel):
    """Finalized outcome of one task period.

    At most one exists per (task_id, period_start).
    """

    id: str = Field(..., description="Unique period result ID")
    task_id: str = Field(..., description="Task the period belongs to")
    period_start: date = Field(..., description="First day of the period")
    period_end: date = Field(..., description="Last day of the period")
    status: PeriodStatus = Field(..., description="completed, failed or skipped")
    completions_count: int = Field(default=0, ge=0, description="Completions counted at finalization")
    target_count: int = Field(default=0, ge=0, description="Target snapshot at finalization")
    finalized_at: datetime = Field(..., description="When the period was finalized (UTC)")
    finalized_by: str = Field(default=Constants.SYSTEM_ACTOR, description="Actor user ID or 'system'")
    notes: str | None = Field(default=None, description="Optional free-text note")
