"""Shift ORM models: Shift templates and EmployeeShiftAssignment."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import time
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.models import TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin
from backend.database import Base

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class Shift(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """A company's working-hours template; at most one active default per company."""

    __tablename__ = "shifts"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "name", name="uq_shifts_company_name"),
        sa.Index("ix_shifts_company_active", "company_id", "is_active"),
    )

    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    start_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
    end_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
    break_duration_minutes: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    grace_period_minutes: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=15)
    min_hours_full_day: Mapped[Decimal] = mapped_column(sa.Numeric(4, 2), nullable=False, default=Decimal("8"))
    min_hours_half_day: Mapped[Decimal] = mapped_column(sa.Numeric(4, 2), nullable=False, default=Decimal("4"))
    overtime_after_minutes: Mapped[Optional[int]] = mapped_column(sa.Integer)
    applicable_days: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=lambda: list(WEEKDAYS[:5]),
    )
    is_default: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )

    @property
    def crosses_midnight(self) -> bool:
        return self.end_time <= self.start_time


class EmployeeShiftAssignment(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """An employee works *shift* from ``effective_from`` to ``effective_to`` (open-ended when NULL)."""

    __tablename__ = "employee_shift_assignments"
    __table_args__ = (
        sa.Index("ix_shift_assignments_effective", "employee_id", "effective_from", "effective_to"),
        sa.CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from", name="ck_shift_assignments_range",
        ),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    shift_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("shifts.id", ondelete="RESTRICT"), nullable=False,
    )
    effective_from: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)
    effective_to: Mapped[Optional[dt.date]] = mapped_column(sa.Date)
    is_temporary: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    assigned_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )

    shift: Mapped[Shift] = relationship(lazy="selectin")
