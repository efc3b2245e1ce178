"""Tenancy ORM models: Company, CompanyMember, CompanySetting."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import AppRole
from backend.common.models import (
    TenantMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    str_enum,
    utcnow,
)
from backend.database import Base

if TYPE_CHECKING:
    from backend.auth.models import User


class Company(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A tenant. ``is_active = False`` means the company is frozen (read-only)."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    slug: Mapped[str] = mapped_column(sa.String(100), unique=True, nullable=False)
    subdomain: Mapped[Optional[str]] = mapped_column(sa.String(63), unique=True)
    custom_domain: Mapped[Optional[str]] = mapped_column(sa.String(255), unique=True)
    logo_url: Mapped[Optional[str]] = mapped_column(sa.Text)
    timezone: Mapped[str] = mapped_column(sa.String(50), nullable=False, default="UTC")
    currency: Mapped[str] = mapped_column(sa.String(3), nullable=False, default="USD")

    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    frozen_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    frozen_reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    # Provident fund
    pf_enabled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    pf_employee_rate: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 2), nullable=False, default=Decimal("12.00"),
    )
    pf_employer_rate: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 2), nullable=False, default=Decimal("12.00"),
    )

    members: Mapped[list[CompanyMember]] = relationship(
        back_populates="company", cascade="all, delete-orphan",
    )

    @property
    def is_frozen(self) -> bool:
        return not self.is_active

    def __repr__(self) -> str:
        return f"<Company {self.slug!r}>"


class CompanyMember(UUIDPrimaryKeyMixin, TenantMixin, Base):
    """A user's membership and role inside one company."""

    __tablename__ = "company_members"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[AppRole] = mapped_column(
        str_enum(AppRole, "app_role"), nullable=False, default=AppRole.employee,
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    is_primary: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    joined_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )

    company: Mapped[Company] = relationship(back_populates="members")
    user: Mapped["User"] = relationship()

    __table_args__ = (
        sa.UniqueConstraint("company_id", "user_id", name="uq_company_members_user"),
    )


class CompanySetting(UUIDPrimaryKeyMixin, TenantMixin, Base):
    """Per-company JSON settings (employee_id_format, security, ...)."""

    __tablename__ = "company_settings"

    key: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    value: Mapped[dict] = mapped_column(JSONB, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )

    __table_args__ = (
        sa.UniqueConstraint("company_id", "key", name="uq_company_settings_key"),
    )
