"""Leave ORM models: LeaveType, LeaveBalance, LeaveRequest."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import LeaveStatus
from backend.common.models import TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin, str_enum
from backend.core_hr.models import Employee
from backend.database import Base


class LeaveType(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    __tablename__ = "leave_types"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "code", name="uq_leave_types_company_code"),
        sa.UniqueConstraint("company_id", "name", name="uq_leave_types_company_name"),
    )

    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    code: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    color: Mapped[str] = mapped_column(sa.String(7), nullable=False, default="#3B82F6")
    default_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 2), nullable=False, default=Decimal("0"))
    is_paid: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    requires_approval: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    requires_document: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    max_consecutive_days: Mapped[Optional[int]] = mapped_column(sa.Integer)
    min_notice_days: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    carry_over_limit: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 2))
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)


class LeaveBalance(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """Per (employee, leave type, year) counters.

    available = allocated + carried_over + adjustment - used - pending
    """

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "leave_type_id", "year", name="uq_leave_balance"),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id", ondelete="CASCADE"), nullable=False,
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    allocated_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False, default=Decimal("0"))
    used_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False, default=Decimal("0"))
    pending_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False, default=Decimal("0"))
    carried_over_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False, default=Decimal("0"))
    adjustment_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False, default=Decimal("0"))
    adjustment_reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    leave_type: Mapped[LeaveType] = relationship()

    @property
    def available_days(self) -> Decimal:
        return (
            Decimal(self.allocated_days) + Decimal(self.carried_over_days) + Decimal(self.adjustment_days)
            - Decimal(self.used_days) - Decimal(self.pending_days)
        )


class LeaveRequest(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_requests_dates"),
        sa.Index("ix_leave_requests_dates", "start_date", "end_date"),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id", ondelete="RESTRICT"), nullable=False,
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    start_half_day: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    end_half_day: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    total_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[LeaveStatus] = mapped_column(
        str_enum(LeaveStatus, "leave_status"), nullable=False, default=LeaveStatus.pending, index=True,
    )
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    review_notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    employee: Mapped[Employee] = relationship()
    leave_type: Mapped[LeaveType] = relationship()
