"""Permission ORM models: RolePermission, UserPermission."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.common.constants import AppRole, PermissionAction, PermissionModule
from backend.common.models import TenantMixin, UUIDPrimaryKeyMixin, str_enum, utcnow
from backend.database import Base


class RolePermission(UUIDPrimaryKeyMixin, TenantMixin, Base):
    """A (module, action) grant for a role within one company. Absent row = denied."""

    __tablename__ = "role_permissions"

    role: Mapped[AppRole] = mapped_column(str_enum(AppRole, "app_role"), nullable=False)
    module: Mapped[PermissionModule] = mapped_column(
        str_enum(PermissionModule, "permission_module"), nullable=False,
    )
    action: Mapped[PermissionAction] = mapped_column(
        str_enum(PermissionAction, "permission_action"), nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "company_id", "role", "module", "action", name="uq_role_permissions",
        ),
    )


class UserPermission(UUIDPrimaryKeyMixin, TenantMixin, Base):
    """Explicit per-user override: ``granted`` True allows, False denies."""

    __tablename__ = "user_permissions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    module: Mapped[PermissionModule] = mapped_column(
        str_enum(PermissionModule, "permission_module"), nullable=False,
    )
    action: Mapped[PermissionAction] = mapped_column(
        str_enum(PermissionAction, "permission_action"), nullable=False,
    )
    granted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False)
    granted_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )

    __table_args__ = (
        sa.UniqueConstraint(
            "company_id", "user_id", "module", "action", name="uq_user_permissions",
        ),
    )
