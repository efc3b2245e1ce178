"""Time tracking Pydantic v2 schemas."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from backend.common.constants import TimeCorrectionStatus


# ── Work schedules ──────────────────────────────────────────────────

class WorkScheduleIn(BaseModel):
    """Upsert payload for one weekday (0 = Sunday)."""

    employee_id: Optional[uuid.UUID] = None
    day_of_week: int = Field(..., ge=0, le=6)
    expected_start: time = time(9, 0)
    expected_end: time = time(18, 0)
    expected_hours: Decimal = Field(Decimal("8"), ge=0, le=24)
    break_minutes: int = Field(60, ge=0, le=600)
    is_working_day: bool = True
    is_active: bool = True


class WorkScheduleOut(WorkScheduleIn):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID


# ── Entries ─────────────────────────────────────────────────────────

class ClockRequest(BaseModel):
    location: Optional[dict] = None
    notes: Optional[str] = Field(None, max_length=1000)


class TimeEntryBreakOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    break_start: datetime
    break_end: Optional[datetime] = None
    duration_minutes: Optional[int] = None


class TimeEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    date: dt.date
    clock_in: Optional[datetime] = None
    clock_out: Optional[datetime] = None
    break_minutes: int = 0
    total_hours: Optional[Decimal] = None
    overtime_hours: Decimal = Decimal("0")
    notes: Optional[str] = None
    is_approved: bool = False
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    is_locked: bool = False
    payroll_run_id: Optional[uuid.UUID] = None
    is_corrected: bool = False
    original_clock_in: Optional[datetime] = None
    original_clock_out: Optional[datetime] = None
    corrected_at: Optional[datetime] = None
    correction_reason: Optional[str] = None
    breaks: list[TimeEntryBreakOut] = []


class TimeEntryCorrection(BaseModel):
    """Manager / HR correction of a day's times."""

    clock_in: Optional[datetime] = None
    clock_out: Optional[datetime] = None
    break_minutes: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def _check_order(self):
        if self.clock_in and self.clock_out and self.clock_out < self.clock_in:
            raise ValueError("clock_out cannot be before clock_in")
        return self


class TimeSummary(BaseModel):
    employee_id: uuid.UUID
    from_date: date
    to_date: date
    days_worked: int
    total_hours: Decimal
    overtime_hours: Decimal


# ── Correction requests ─────────────────────────────────────────────

class TimeCorrectionRequestCreate(BaseModel):
    correction_date: date
    requested_clock_in: Optional[datetime] = None
    requested_clock_out: Optional[datetime] = None
    requested_break_minutes: int = Field(0, ge=0, le=600)
    reason: str = Field(..., min_length=1, max_length=2000)
    supporting_document_url: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def _check_times(self):
        if self.requested_clock_in is None and self.requested_clock_out is None:
            raise ValueError("Request at least a clock-in or a clock-out time")
        if (
            self.requested_clock_in
            and self.requested_clock_out
            and self.requested_clock_out < self.requested_clock_in
        ):
            raise ValueError("requested_clock_out cannot be before requested_clock_in")
        return self


class TimeCorrectionReview(BaseModel):
    review_notes: Optional[str] = Field(None, max_length=2000)


class TimeCorrectionRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    original_entry_id: Optional[uuid.UUID] = None
    correction_date: date
    requested_clock_in: Optional[datetime] = None
    requested_clock_out: Optional[datetime] = None
    requested_break_minutes: int = 0
    reason: str
    supporting_document_url: Optional[str] = None
    status: TimeCorrectionStatus
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_at: datetime
