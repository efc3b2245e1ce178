"""Payroll Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from backend.common.constants import PayrollStatus

Money = Decimal


# ── Runs ────────────────────────────────────────────────────────────

class PayrollRunCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    period_start: date
    period_end: date
    pay_date: date
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="Defaults to company currency")
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _check_period(self):
        if self.period_end < self.period_start:
            raise ValueError("period_end cannot be before period_start")
        return self


class PayrollRunUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    pay_date: Optional[date] = None
    notes: Optional[str] = None


class PayrollRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    period_start: date
    period_end: date
    pay_date: date
    status: PayrollStatus
    currency: str
    total_gross: Money
    total_deductions: Money
    total_net: Money
    total_employer_cost: Money
    employee_count: int
    notes: Optional[str] = None
    processed_by: Optional[uuid.UUID] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


# ── Entries ─────────────────────────────────────────────────────────

class PayrollEntryCreate(BaseModel):
    """Pay inputs; gross, deductions, net and employer cost are derived.

    Leave ``pf_deduction`` unset to have it computed from the company's PF rate.
    """

    employee_id: uuid.UUID
    base_salary: Money = Field(..., ge=0)
    overtime_pay: Money = Field(Decimal("0"), ge=0)
    bonuses: Money = Field(Decimal("0"), ge=0)
    commissions: Money = Field(Decimal("0"), ge=0)
    tax_deductions: Money = Field(Decimal("0"), ge=0)
    benefits_deductions: Money = Field(Decimal("0"), ge=0)
    pf_deduction: Optional[Money] = Field(None, ge=0)
    hours_worked: Optional[Decimal] = Field(None, ge=0)
    overtime_hours: Optional[Decimal] = Field(None, ge=0)
    days_present: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


class PayrollEntryUpdate(BaseModel):
    base_salary: Optional[Money] = Field(None, ge=0)
    overtime_pay: Optional[Money] = Field(None, ge=0)
    bonuses: Optional[Money] = Field(None, ge=0)
    commissions: Optional[Money] = Field(None, ge=0)
    tax_deductions: Optional[Money] = Field(None, ge=0)
    benefits_deductions: Optional[Money] = Field(None, ge=0)
    pf_deduction: Optional[Money] = Field(None, ge=0)
    hours_worked: Optional[Decimal] = Field(None, ge=0)
    overtime_hours: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class EmployeeBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_number: str
    first_name: str
    last_name: str
    job_title: Optional[str] = None


class PayrollEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    payroll_run_id: uuid.UUID
    employee_id: uuid.UUID
    base_salary: Money
    overtime_pay: Money
    bonuses: Money
    commissions: Money
    gross_pay: Money
    tax_deductions: Money
    benefits_deductions: Money
    pf_deduction: Money
    total_deductions: Money
    net_pay: Money
    total_employer_cost: Money
    hours_worked: Optional[Decimal] = None
    overtime_hours: Optional[Decimal] = None
    days_present: Optional[int] = None
    unpaid_leave_days: Optional[Decimal] = None
    notes: Optional[str] = None
    employee: Optional[EmployeeBrief] = None


class PayslipOut(PayrollEntryOut):
    """An employee's entry together with its (completed) run."""

    payroll_run: PayrollRunOut


class BulkAddResult(BaseModel):
    added: int
    skipped: int
    run: PayrollRunOut


# ── Stats ───────────────────────────────────────────────────────────

class PayrollStats(BaseModel):
    runs_by_status: dict[str, int]
    ytd_gross: Money
    ytd_net: Money
    ytd_employer_cost: Money
    completed_runs_this_year: int
    last_run: Optional[PayrollRunOut] = None
