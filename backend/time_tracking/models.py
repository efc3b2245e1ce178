"""Time tracking ORM models: WorkSchedule, TimeEntry, TimeEntryBreak, TimeCorrectionRequest."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import datetime, time
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import TimeCorrectionStatus
from backend.common.models import TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin, str_enum
from backend.database import Base


class WorkSchedule(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """Expected working pattern for one weekday.

    ``employee_id`` NULL is the company default. ``day_of_week`` counts
    from Sunday (0) to Saturday (6).
    """

    __tablename__ = "work_schedules"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "employee_id", "day_of_week", name="uq_work_schedules_day"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_work_schedules_day"),
    )

    employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"),
    )
    day_of_week: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    expected_start: Mapped[time] = mapped_column(sa.Time, nullable=False, default=time(9, 0))
    expected_end: Mapped[time] = mapped_column(sa.Time, nullable=False, default=time(18, 0))
    expected_hours: Mapped[Decimal] = mapped_column(sa.Numeric(4, 2), nullable=False, default=Decimal("8"))
    break_minutes: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=60)
    is_working_day: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)


class TimeEntry(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """One employee's working day. Locked entries belong to a completed payroll run."""

    __tablename__ = "time_entries"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "date", name="uq_time_entries_employee_date"),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    date: Mapped[dt.date] = mapped_column(sa.Date, nullable=False, index=True)
    clock_in: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    clock_out: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    clock_in_location: Mapped[Optional[dict]] = mapped_column(JSONB)
    clock_out_location: Mapped[Optional[dict]] = mapped_column(JSONB)
    break_minutes: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_hours: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 2))
    overtime_hours: Mapped[Decimal] = mapped_column(sa.Numeric(5, 2), nullable=False, default=Decimal("0"))
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    is_approved: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    is_locked: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    payroll_run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("payroll_runs.id", ondelete="SET NULL"),
    )
    is_corrected: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    original_clock_in: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    original_clock_out: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    corrected_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    corrected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    correction_reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    breaks: Mapped[list[TimeEntryBreak]] = relationship(
        back_populates="time_entry", cascade="all, delete-orphan", order_by="TimeEntryBreak.break_start",
    )


class TimeEntryBreak(UUIDPrimaryKeyMixin, TenantMixin, Base):
    __tablename__ = "time_entry_breaks"

    time_entry_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("time_entries.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    break_start: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    break_end: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    duration_minutes: Mapped[Optional[int]] = mapped_column(sa.Integer)

    time_entry: Mapped[TimeEntry] = relationship(back_populates="breaks")


class TimeCorrectionRequest(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """An employee's request to fix (or create) the entry for one day.

    ``original_entry_id`` is the entry that existed when the request was
    filed; NULL means approval creates a new entry for ``correction_date``.
    """

    __tablename__ = "time_correction_requests"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    original_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("time_entries.id", ondelete="SET NULL"),
    )
    correction_date: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)
    requested_clock_in: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    requested_clock_out: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    requested_break_minutes: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    supporting_document_url: Mapped[Optional[str]] = mapped_column(sa.String(500))
    status: Mapped[TimeCorrectionStatus] = mapped_column(
        str_enum(TimeCorrectionStatus, "time_correction_status"),
        nullable=False,
        default=TimeCorrectionStatus.pending,
        index=True,
    )
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    review_notes: Mapped[Optional[str]] = mapped_column(sa.Text)
