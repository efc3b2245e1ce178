"""Shift Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from backend.shifts.models import WEEKDAYS


def _check_days(days: Optional[list[str]]) -> Optional[list[str]]:
    if days is None:
        return days
    cleaned = [d.strip().lower() for d in days]
    unknown = sorted(set(cleaned) - set(WEEKDAYS))
    if unknown:
        raise ValueError(f"Unknown weekday(s): {', '.join(unknown)}")
    # keep calendar order, drop duplicates
    return [d for d in WEEKDAYS if d in cleaned]


# ═════════════════════════════════════════════════════════════════════
# Shifts
# ═════════════════════════════════════════════════════════════════════


class ShiftCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    start_time: time
    end_time: time
    break_duration_minutes: int = Field(0, ge=0, le=600)
    grace_period_minutes: int = Field(15, ge=0, le=240)
    min_hours_full_day: Decimal = Field(Decimal("8"), ge=0, le=24)
    min_hours_half_day: Decimal = Field(Decimal("4"), ge=0, le=24)
    overtime_after_minutes: Optional[int] = Field(None, ge=0)
    applicable_days: list[str] = Field(default_factory=lambda: list(WEEKDAYS[:5]), min_length=1)
    is_default: bool = False
    is_active: bool = True

    @field_validator("applicable_days")
    @classmethod
    def _known_days(cls, value):
        return _check_days(value)

    @model_validator(mode="after")
    def _check_hours(self):
        if self.start_time == self.end_time:
            raise ValueError("start_time and end_time cannot be equal")
        if self.min_hours_half_day > self.min_hours_full_day:
            raise ValueError("min_hours_half_day cannot exceed min_hours_full_day")
        return self


class ShiftUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    break_duration_minutes: Optional[int] = Field(None, ge=0, le=600)
    grace_period_minutes: Optional[int] = Field(None, ge=0, le=240)
    min_hours_full_day: Optional[Decimal] = Field(None, ge=0, le=24)
    min_hours_half_day: Optional[Decimal] = Field(None, ge=0, le=24)
    overtime_after_minutes: Optional[int] = Field(None, ge=0)
    applicable_days: Optional[list[str]] = Field(None, min_length=1)
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("applicable_days")
    @classmethod
    def _known_days(cls, value):
        return _check_days(value)


class ShiftOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    start_time: time
    end_time: time
    break_duration_minutes: int
    grace_period_minutes: int
    min_hours_full_day: Decimal
    min_hours_half_day: Decimal
    overtime_after_minutes: Optional[int] = None
    applicable_days: list[str]
    is_default: bool
    is_active: bool
    crosses_midnight: bool = False


# ═════════════════════════════════════════════════════════════════════
# Assignments
# ═════════════════════════════════════════════════════════════════════


class ShiftAssignmentCreate(BaseModel):
    employee_id: uuid.UUID
    shift_id: uuid.UUID
    effective_from: date
    effective_to: Optional[date] = None
    is_temporary: bool = False
    reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def _check_range(self):
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError("effective_to cannot be before effective_from")
        return self


class ShiftAssignmentEnd(BaseModel):
    effective_to: date


class ShiftAssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    shift_id: uuid.UUID
    effective_from: date
    effective_to: Optional[date] = None
    is_temporary: bool
    reason: Optional[str] = None
    assigned_by: Optional[uuid.UUID] = None
    shift: Optional[ShiftOut] = None
