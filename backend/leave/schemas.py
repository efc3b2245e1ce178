"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Request → request bodies (write)
  - *Out                        → response bodies (read)
  - *Brief                      → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from backend.common.constants import LeaveStatus

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class EmployeeBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_number: str
    first_name: str
    last_name: str


class LeaveTypeBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    is_paid: bool = True


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=10)
    description: Optional[str] = None
    color: str = Field("#3B82F6", pattern=HEX_COLOR)
    default_days: Decimal = Field(Decimal("0"), ge=0)
    is_paid: bool = True
    requires_approval: bool = True
    requires_document: bool = False
    max_consecutive_days: Optional[int] = Field(None, ge=0)
    min_notice_days: int = Field(0, ge=0)
    carry_over_limit: Optional[Decimal] = Field(None, ge=0)


class LeaveTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(None, pattern=HEX_COLOR)
    default_days: Optional[Decimal] = Field(None, ge=0)
    is_paid: Optional[bool] = None
    requires_approval: Optional[bool] = None
    requires_document: Optional[bool] = None
    max_consecutive_days: Optional[int] = Field(None, ge=0)
    min_notice_days: Optional[int] = Field(None, ge=0)
    carry_over_limit: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None


class LeaveTypeOut(LeaveTypeCreate):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    year: int
    allocated_days: Decimal
    used_days: Decimal
    pending_days: Decimal
    carried_over_days: Decimal
    adjustment_days: Decimal
    adjustment_reason: Optional[str] = None
    available_days: Decimal
    leave_type: Optional[LeaveTypeBrief] = None


class BalanceAdjustRequest(BaseModel):
    """Manual HR correction; positive adds days, negative removes them."""

    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    adjustment_days: Decimal
    reason: str = Field(..., min_length=1, max_length=500)
    year: Optional[int] = Field(None, ge=2000, le=2100)


class AccrualResult(BaseModel):
    year: int
    employees_processed: int
    balances_created: int
    balances_updated: int


# ═════════════════════════════════════════════════════════════════════
# Leave Request
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    start_half_day: bool = False
    end_half_day: bool = False
    reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class LeaveReviewRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    start_half_day: bool
    end_half_day: bool
    total_days: Decimal
    reason: Optional[str] = None
    status: LeaveStatus
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    employee: Optional[EmployeeBrief] = None
    leave_type: Optional[LeaveTypeBrief] = None


# ═════════════════════════════════════════════════════════════════════
# Policy export / import
# ═════════════════════════════════════════════════════════════════════


class LeavePolicyItem(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=10)
    description: Optional[str] = None
    color: Optional[str] = Field(None, pattern=HEX_COLOR)
    default_days: Optional[Decimal] = Field(None, ge=0)
    is_paid: Optional[bool] = None
    requires_approval: Optional[bool] = None
    requires_document: Optional[bool] = None
    max_consecutive_days: Optional[int] = Field(None, ge=0)
    min_notice_days: Optional[int] = Field(None, ge=0)
    carry_over_limit: Optional[Decimal] = Field(None, ge=0)


class LeavePolicyExport(BaseModel):
    version: str = "1.0"
    exported_at: Optional[datetime] = None
    source_company: Optional[str] = None
    leave_types: list[LeavePolicyItem] = []


class PolicyImportError(BaseModel):
    code: str
    message: str


class PolicyImportResult(BaseModel):
    created: int = 0
    updated: int = 0
    errors: list[PolicyImportError] = []
