"""Performance ORM models: PerformanceReview, Goal, ReviewReminder."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import GoalStatus, ReviewStatus
from backend.common.models import TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin, str_enum, utcnow
from backend.core_hr.models import Employee
from backend.database import Base


class PerformanceReview(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    """draft → in_progress → completed → acknowledged"""

    __tablename__ = "performance_reviews"
    __table_args__ = (
        sa.CheckConstraint("period_end >= period_start", name="ck_performance_reviews_period"),
        sa.CheckConstraint(
            "overall_rating IS NULL OR (overall_rating BETWEEN 1 AND 5)",
            name="ck_performance_reviews_rating",
        ),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    period_start: Mapped[date] = mapped_column(sa.Date, nullable=False)
    period_end: Mapped[date] = mapped_column(sa.Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    status: Mapped[ReviewStatus] = mapped_column(
        str_enum(ReviewStatus, "review_status"), nullable=False, default=ReviewStatus.draft, index=True,
    )
    overall_rating: Mapped[Optional[int]] = mapped_column(sa.SmallInteger)
    manager_assessment: Mapped[Optional[str]] = mapped_column(sa.Text)
    strengths: Mapped[Optional[str]] = mapped_column(sa.Text)
    areas_for_improvement: Mapped[Optional[str]] = mapped_column(sa.Text)
    development_plan: Mapped[Optional[str]] = mapped_column(sa.Text)
    employee_comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    started_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )

    employee: Mapped[Employee] = relationship(foreign_keys=[employee_id])
    reviewer: Mapped[Employee] = relationship(foreign_keys=[reviewer_id])


class Goal(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    __tablename__ = "goals"
    __table_args__ = (
        sa.CheckConstraint("progress BETWEEN 0 AND 100", name="ck_goals_progress"),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    category: Mapped[Optional[str]] = mapped_column(sa.String(50))
    target_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    progress: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False, default=0)
    status: Mapped[GoalStatus] = mapped_column(
        str_enum(GoalStatus, "goal_status"), nullable=False, default=GoalStatus.not_started, index=True,
    )
    # [{"date": iso, "note": str, "progress": int}, ...]
    progress_notes: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    last_progress_update: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )

    employee: Mapped[Employee] = relationship()


class ReviewReminder(UUIDPrimaryKeyMixin, TenantMixin, Base):
    """A reminder or escalation already sent for a review."""

    __tablename__ = "review_reminders"

    review_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("performance_reviews.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    reminder_type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    days_remaining: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    sent_to: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    sent_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=utcnow)
