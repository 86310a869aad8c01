"""Completion domain models."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class CompletionStatus(StrEnum):
    """Review status of a completion."""

    APPROVED = "approved"
    PENDING = "pending"  # Awaiting approval for tasks that require review


class Completion(BaseModel):
    """A single recorded performance of a task."""

    id: str = Field(..., description="Unique completion ID")
    task_id: str = Field(..., description="Completed task ID")
    user_id: str = Field(..., description="User who completed the task")
    household_id: str = Field(..., description="Household the task belongs to")
    completed_at: datetime = Field(..., description="When the completion was recorded (UTC)")
    due_date: date = Field(..., description="Occurrence date the completion is credited to")
    status: CompletionStatus = Field(default=CompletionStatus.APPROVED, description="Review status")
