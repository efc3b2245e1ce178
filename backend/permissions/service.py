"""Permission service — role grants, per-user overrides, effective checks.

Resolution order for ``has_permission``:
  1. super_admin members are granted everything;
  2. an explicit user override (allow or deny) wins;
  3. otherwise the member's role grants decide.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import create_audit_entry
from backend.common.constants import AppRole, AuditAction, PermissionAction, PermissionModule
from backend.common.exceptions import ForbiddenException, NotFoundException
from backend.companies.models import CompanyMember
from backend.permissions.defaults import DEFAULT_ROLE_PERMISSIONS
from backend.permissions.models import RolePermission, UserPermission
from backend.permissions.schemas import EffectivePermission

logger = logging.getLogger(__name__)


class PermissionSource:
    super_admin = "super_admin"
    explicit_allow = "explicit_allow"
    explicit_deny = "explicit_deny"
    role = "role"
    none = "none"


class PermissionService:
    """Async permission operations scoped to one company."""

    # ── Seeding ─────────────────────────────────────────────────────

    @staticmethod
    async def initialize_company_permissions(db: AsyncSession, company_id: uuid.UUID) -> int:
        """Insert the default role grants for a new company. Returns rows added."""
        existing = await db.execute(
            select(RolePermission.role, RolePermission.module, RolePermission.action).where(
                RolePermission.company_id == company_id,
            )
        )
        have = {(r, m, a) for r, m, a in existing.all()}
        added = 0
        for role, grants in DEFAULT_ROLE_PERMISSIONS.items():
            for module, action in sorted(grants, key=lambda g: (g[0].value, g[1].value)):
                if (role, module, action) in have:
                    continue
                db.add(RolePermission(
                    company_id=company_id, role=role, module=module, action=action,
                ))
                added += 1
        await db.flush()
        logger.info("Seeded %d role permissions", added, extra={"company_id": company_id})
        return added

    # ── Lookups ─────────────────────────────────────────────────────

    @staticmethod
    async def _get_member(
        db: AsyncSession, company_id: uuid.UUID, user_id: uuid.UUID,
    ) -> Optional[CompanyMember]:
        result = await db.execute(
            select(CompanyMember).where(
                CompanyMember.company_id == company_id,
                CompanyMember.user_id == user_id,
                CompanyMember.is_active.is_(True),
            )
        )
        return result.scalars().first()

    @staticmethod
    async def check_permission(
        db: AsyncSession,
        user_id: uuid.UUID,
        company_id: uuid.UUID,
        module: PermissionModule,
        action: PermissionAction,
    ) -> tuple[bool, str]:
        """Return (granted, source) for one module/action."""
        member = await PermissionService._get_member(db, company_id, user_id)
        if member is None:
            return False, PermissionSource.none
        if member.role == AppRole.super_admin:
            return True, PermissionSource.super_admin

        override = (
            await db.execute(
                select(UserPermission.granted).where(
                    UserPermission.company_id == company_id,
                    UserPermission.user_id == user_id,
                    UserPermission.module == module,
                    UserPermission.action == action,
                )
            )
        ).scalar_one_or_none()
        if override is not None:
            return (
                (True, PermissionSource.explicit_allow)
                if override
                else (False, PermissionSource.explicit_deny)
            )

        role_grant = (
            await db.execute(
                select(RolePermission.id).where(
                    RolePermission.company_id == company_id,
                    RolePermission.role == member.role,
                    RolePermission.module == module,
                    RolePermission.action == action,
                )
            )
        ).first()
        if role_grant is not None:
            return True, PermissionSource.role
        return False, PermissionSource.none

    @staticmethod
    async def has_permission(
        db: AsyncSession,
        user_id: uuid.UUID,
        company_id: uuid.UUID,
        module: PermissionModule,
        action: PermissionAction,
    ) -> bool:
        granted, _ = await PermissionService.check_permission(
            db, user_id, company_id, module, action,
        )
        return granted

    @staticmethod
    async def get_role_permissions(
        db: AsyncSession, company_id: uuid.UUID, role: AppRole,
    ) -> list[tuple[PermissionModule, PermissionAction]]:
        if role == AppRole.super_admin:
            return [(m, a) for m in PermissionModule for a in PermissionAction]
        result = await db.execute(
            select(RolePermission.module, RolePermission.action)
            .where(RolePermission.company_id == company_id, RolePermission.role == role)
            .order_by(RolePermission.module, RolePermission.action)
        )
        return [(m, a) for m, a in result.all()]

    @staticmethod
    async def get_user_permissions(
        db: AsyncSession, user_id: uuid.UUID, company_id: uuid.UUID,
    ) -> list[EffectivePermission]:
        """Effective permission matrix for a member, one entry per module/action."""
        member = await PermissionService._get_member(db, company_id, user_id)
        if member is None:
            raise NotFoundException(entity_type="Member", entity_id=user_id)

        role_grants = set(
            await PermissionService.get_role_permissions(db, company_id, member.role)
        )
        overrides_result = await db.execute(
            select(UserPermission.module, UserPermission.action, UserPermission.granted).where(
                UserPermission.company_id == company_id,
                UserPermission.user_id == user_id,
            )
        )
        overrides = {(m, a): g for m, a, g in overrides_result.all()}

        matrix: list[EffectivePermission] = []
        for module in PermissionModule:
            for action in PermissionAction:
                key = (module, action)
                if member.role == AppRole.super_admin:
                    granted, source = True, PermissionSource.super_admin
                elif key in overrides:
                    granted = overrides[key]
                    source = PermissionSource.explicit_allow if granted else PermissionSource.explicit_deny
                elif key in role_grants:
                    granted, source = True, PermissionSource.role
                else:
                    granted, source = False, PermissionSource.none
                matrix.append(EffectivePermission(
                    module=module, action=action, granted=granted, source=source,
                ))
        return matrix

    # ── Mutations ───────────────────────────────────────────────────

    @staticmethod
    async def set_role_permission(
        db: AsyncSession,
        company_id: uuid.UUID,
        role: AppRole,
        module: PermissionModule,
        action: PermissionAction,
        granted: bool,
        *,
        actor_id: uuid.UUID,
    ) -> None:
        if role == AppRole.super_admin:
            raise ForbiddenException(detail="Cannot modify super_admin permissions.")

        existing = (
            await db.execute(
                select(RolePermission).where(
                    RolePermission.company_id == company_id,
                    RolePermission.role == role,
                    RolePermission.module == module,
                    RolePermission.action == action,
                )
            )
        ).scalars().first()

        if granted and existing is None:
            db.add(RolePermission(company_id=company_id, role=role, module=module, action=action))
        elif not granted and existing is not None:
            await db.delete(existing)
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="role_permission",
            company_id=company_id,
            user_id=actor_id,
            new_values={
                "role": role.value, "module": module.value,
                "action": action.value, "granted": granted,
            },
        )

    @staticmethod
    async def _count_admins_with_user_management(
        db: AsyncSession, company_id: uuid.UUID,
    ) -> int:
        """Active admins who still hold users:update (via role or override)."""
        admins = (
            await db.execute(
                select(CompanyMember.user_id).where(
                    CompanyMember.company_id == company_id,
                    CompanyMember.is_active.is_(True),
                    CompanyMember.role.in_([AppRole.super_admin, AppRole.company_admin]),
                )
            )
        ).scalars().all()
        count = 0
        for admin_id in admins:
            if await PermissionService.has_permission(
                db, admin_id, company_id, PermissionModule.users, PermissionAction.update,
            ):
                count += 1
        return count

    @staticmethod
    async def set_user_permission(
        db: AsyncSession,
        company_id: uuid.UUID,
        target_user_id: uuid.UUID,
        module: PermissionModule,
        action: PermissionAction,
        granted: Optional[bool],
        *,
        actor_id: uuid.UUID,
    ) -> None:
        """Set (True/False) or clear (None) an explicit override for a member."""
        member = await PermissionService._get_member(db, company_id, target_user_id)
        if member is None:
            raise NotFoundException(entity_type="Member", entity_id=target_user_id)
        if member.role == AppRole.super_admin:
            raise ForbiddenException(detail="Cannot modify permissions of a super_admin.")

        if (
            granted is False
            and module == PermissionModule.users
            and action == PermissionAction.update
            and member.role == AppRole.company_admin
            and await PermissionService.has_permission(db, target_user_id, company_id, module, action)
            and await PermissionService._count_admins_with_user_management(db, company_id) <= 1
        ):
            raise ForbiddenException(
                detail="Cannot remove user management permission from the last admin.",
            )

        if granted is None:
            await db.execute(
                delete(UserPermission).where(
                    UserPermission.company_id == company_id,
                    UserPermission.user_id == target_user_id,
                    UserPermission.module == module,
                    UserPermission.action == action,
                )
            )
        else:
            existing = (
                await db.execute(
                    select(UserPermission).where(
                        UserPermission.company_id == company_id,
                        UserPermission.user_id == target_user_id,
                        UserPermission.module == module,
                        UserPermission.action == action,
                    )
                )
            ).scalars().first()
            if existing is None:
                db.add(UserPermission(
                    company_id=company_id,
                    user_id=target_user_id,
                    module=module,
                    action=action,
                    granted=granted,
                    granted_by=actor_id,
                ))
            else:
                existing.granted = granted
                existing.granted_by = actor_id
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="user_permission",
            entity_id=target_user_id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"module": module.value, "action": action.value, "granted": granted},
        )

