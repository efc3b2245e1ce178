"""Billing ORM models: Plan, Subscription, TrialExtensionRequest, TrialEmailLog."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import SubscriptionStatus, TrialExtensionStatus
from backend.common.models import (
    TenantMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    str_enum,
    utcnow,
)
from backend.database import Base


class Plan(UUIDPrimaryKeyMixin, Base):
    """A subscription tier. ``modules`` is a list of plan module ids or ``"all"``."""

    __tablename__ = "plans"

    name: Mapped[str] = mapped_column(sa.String(50), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    modules: Mapped[Any] = mapped_column(JSONB, nullable=False, default=list)
    max_employees: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=-1)
    features: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    price_monthly: Mapped[Decimal] = mapped_column(
        sa.Numeric(10, 2), nullable=False, default=Decimal("0"),
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Plan {self.name!r}>"


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "subscriptions"

    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("companies.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("plans.id"), nullable=False,
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        str_enum(SubscriptionStatus, "subscription_status"),
        nullable=False,
        default=SubscriptionStatus.trialing,
    )
    trial_started_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    trial_ends_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    current_period_end: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    canceled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    plan: Mapped[Plan] = relationship(lazy="joined")


class TrialExtensionRequest(UUIDPrimaryKeyMixin, TenantMixin, Base):
    __tablename__ = "trial_extension_requests"

    requested_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False,
    )
    requested_days: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[TrialExtensionStatus] = mapped_column(
        str_enum(TrialExtensionStatus, "trial_extension_status"),
        nullable=False,
        default=TrialExtensionStatus.pending,
    )
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"),
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    review_notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )


class TrialEmailLog(UUIDPrimaryKeyMixin, TenantMixin, Base):
    """One row per trial email actually sent; guards against duplicate sends."""

    __tablename__ = "trial_email_logs"

    email_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    recipient_email: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    days_remaining: Mapped[Optional[int]] = mapped_column(sa.Integer)
    sent_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "company_id", "email_type", "recipient_email", "sent_date",
            name="uq_trial_email_logs_daily",
        ),
    )
