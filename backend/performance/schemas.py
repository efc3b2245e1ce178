"""Performance Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from backend.common.constants import GoalStatus, ReviewStatus


class EmployeeBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_number: str
    first_name: str
    last_name: str


# ═════════════════════════════════════════════════════════════════════
# Reviews
# ═════════════════════════════════════════════════════════════════════


class ReviewCreate(BaseModel):
    employee_id: uuid.UUID
    reviewer_id: Optional[uuid.UUID] = Field(None, description="Defaults to the employee's manager")
    period_start: date
    period_end: date
    due_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_period(self) -> "ReviewCreate":
        if self.period_end < self.period_start:
            raise ValueError("period_end must be on or after period_start")
        return self


class ReviewUpdate(BaseModel):
    reviewer_id: Optional[uuid.UUID] = None
    due_date: Optional[date] = None


class ReviewSubmit(BaseModel):
    overall_rating: int = Field(..., ge=1, le=5)
    manager_assessment: str = Field(..., min_length=1)
    strengths: Optional[str] = None
    areas_for_improvement: Optional[str] = None
    development_plan: Optional[str] = None


class ReviewAcknowledge(BaseModel):
    employee_comments: Optional[str] = Field(None, max_length=5000)


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    reviewer_id: uuid.UUID
    period_start: date
    period_end: date
    due_date: Optional[date] = None
    status: ReviewStatus
    overall_rating: Optional[int] = None
    manager_assessment: Optional[str] = None
    strengths: Optional[str] = None
    areas_for_improvement: Optional[str] = None
    development_plan: Optional[str] = None
    employee_comments: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    created_at: datetime
    employee: Optional[EmployeeBrief] = None
    reviewer: Optional[EmployeeBrief] = None


class ReviewStats(BaseModel):
    total: int
    by_status: dict[str, int]
    average_rating: Optional[float] = None


# ═════════════════════════════════════════════════════════════════════
# Goals
# ═════════════════════════════════════════════════════════════════════


class GoalCreate(BaseModel):
    employee_id: Optional[uuid.UUID] = Field(None, description="Defaults to the caller")
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=50)
    target_date: Optional[date] = None


class GoalUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=50)
    target_date: Optional[date] = None
    status: Optional[GoalStatus] = None


class GoalProgress(BaseModel):
    progress: int = Field(..., ge=0, le=100)
    note: Optional[str] = Field(None, max_length=1000)


class GoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    target_date: Optional[date] = None
    progress: int
    status: GoalStatus
    progress_notes: list = []
    last_progress_update: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class ReminderJobResult(BaseModel):
    reminders_sent: int
    escalations_sent: int
    errors: list[str] = []
