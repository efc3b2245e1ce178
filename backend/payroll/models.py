"""Payroll ORM models: PayrollRun and PayrollEntry."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import PayrollStatus
from backend.common.models import TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin, str_enum
from backend.core_hr.models import Employee
from backend.database import Base

MONEY = sa.Numeric(14, 2)


class PayrollRun(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """A pay period. Only ``draft`` runs accept entry changes."""

    __tablename__ = "payroll_runs"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "period_start", "period_end", name="uq_payroll_runs_period"),
        sa.CheckConstraint("period_end >= period_start", name="ck_payroll_runs_period"),
    )

    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    period_start: Mapped[date] = mapped_column(sa.Date, nullable=False)
    period_end: Mapped[date] = mapped_column(sa.Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    status: Mapped[PayrollStatus] = mapped_column(
        str_enum(PayrollStatus, "payroll_status"), nullable=False, default=PayrollStatus.draft,
    )
    currency: Mapped[str] = mapped_column(sa.String(3), nullable=False, default="USD")
    total_gross: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_net: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_employer_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    employee_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )

    entries: Mapped[list[PayrollEntry]] = relationship(
        back_populates="payroll_run", cascade="all, delete-orphan", passive_deletes=True,
    )


class PayrollEntry(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """One employee's pay within a run."""

    __tablename__ = "payroll_entries"
    __table_args__ = (
        sa.UniqueConstraint("payroll_run_id", "employee_id", name="uq_payroll_entries_run_employee"),
    )

    payroll_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("payroll_runs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    overtime_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    bonuses: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    commissions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    gross_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    benefits_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    pf_deduction: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_employer_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    hours_worked: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(7, 2))
    overtime_hours: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(7, 2))
    days_present: Mapped[Optional[int]] = mapped_column(sa.Integer)
    unpaid_leave_days: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 2))
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    payroll_run: Mapped[PayrollRun] = relationship(back_populates="entries")
    employee: Mapped[Employee] = relationship()
