"""Auth ORM models: User, UserSession, UserDevice."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import INET, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.models import TimestampMixin, UUIDPrimaryKeyMixin, as_utc, utcnow
from backend.database import Base


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A login identity. Company access comes from CompanyMember rows."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(sa.String(255))
    full_name: Mapped[str] = mapped_column(sa.String(200), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    is_platform_admin: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)

    failed_login_attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    locked_until: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    last_login_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    must_change_password: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    password_changed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    current_company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id", ondelete="SET NULL"),
    )

    sessions: Mapped[list[UserSession]] = relationship(
        back_populates="user", cascade="all, delete-orphan",
    )
    devices: Mapped[list[UserDevice]] = relationship(
        back_populates="user", cascade="all, delete-orphan",
    )

    def is_locked(self) -> bool:
        locked_until = as_utc(self.locked_until)
        return locked_until is not None and locked_until > utcnow()

    def __repr__(self) -> str:
        return f"<User {self.email!r}>"


class UserSession(Base):
    __tablename__ = "user_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(sa.String(128), nullable=False, index=True)
    refresh_token_hash: Mapped[Optional[str]] = mapped_column(sa.String(128), index=True)
    ip_address: Mapped[Optional[str]] = mapped_column(INET)
    user_agent: Mapped[Optional[str]] = mapped_column(sa.Text)
    expires_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    is_revoked: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )

    user: Mapped[User] = relationship(back_populates="sessions")


class UserDevice(Base):
    """Devices a user has signed in from, keyed by an "OS - Browser" fingerprint."""

    __tablename__ = "user_devices"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    fingerprint: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    browser: Mapped[Optional[str]] = mapped_column(sa.String(100))
    os: Mapped[Optional[str]] = mapped_column(sa.String(100))
    ip_address: Mapped[Optional[str]] = mapped_column(INET)
    first_seen_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )
    last_used_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )

    user: Mapped[User] = relationship(back_populates="devices")

    __table_args__ = (
        sa.UniqueConstraint("user_id", "fingerprint", name="uq_user_devices_fingerprint"),
    )
