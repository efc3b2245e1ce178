"""Permissions router — effective permissions, role grants, user overrides.

Routes:
    /permissions/me                 — Caller's effective permission matrix
    /permissions/check              — Check one module/action for the caller
    /permissions/roles/{role}       — Role grants (users:read)
    /permissions/roles              — Set a role grant (users:update)
    /permissions/users/{user_id}    — Member matrix / set or clear override
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import AppRole, PermissionAction, PermissionModule
from backend.database import get_db
from backend.dependencies import TenantContext, get_tenant, require_permission
from backend.permissions.schemas import (
    EffectivePermission,
    PermissionCheckResponse,
    RolePermissionsOut,
    RolePermissionUpdate,
    UserPermissionUpdate,
)
from backend.permissions.service import PermissionService

router = APIRouter(prefix="", tags=["permissions"])


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=list[EffectivePermission])
async def my_permissions(
    ctx: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    return await PermissionService.get_user_permissions(db, ctx.user_id, ctx.company_id)


# ── GET /check ──────────────────────────────────────────────────────

@router.get("/check", response_model=PermissionCheckResponse)
async def check_permission(
    module: PermissionModule = Query(...),
    action: PermissionAction = Query(...),
    ctx: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    granted, source = await PermissionService.check_permission(
        db, ctx.user_id, ctx.company_id, module, action,
    )
    return PermissionCheckResponse(module=module, action=action, granted=granted, source=source)


# ── GET /roles/{role} ───────────────────────────────────────────────

@router.get("/roles/{role}", response_model=RolePermissionsOut)
async def get_role_permissions(
    role: AppRole,
    ctx: TenantContext = Depends(require_permission(PermissionModule.users, PermissionAction.read)),
    db: AsyncSession = Depends(get_db),
):
    grants = await PermissionService.get_role_permissions(db, ctx.company_id, role)
    return RolePermissionsOut(
        role=role, permissions=[f"{m.value}:{a.value}" for m, a in grants],
    )


# ── PUT /roles ──────────────────────────────────────────────────────

@router.put("/roles", response_model=RolePermissionsOut)
async def set_role_permission(
    body: RolePermissionUpdate,
    ctx: TenantContext = Depends(require_permission(PermissionModule.users, PermissionAction.update)),
    db: AsyncSession = Depends(get_db),
):
    await PermissionService.set_role_permission(
        db, ctx.company_id, body.role, body.module, body.action, body.granted,
        actor_id=ctx.user_id,
    )
    grants = await PermissionService.get_role_permissions(db, ctx.company_id, body.role)
    return RolePermissionsOut(
        role=body.role, permissions=[f"{m.value}:{a.value}" for m, a in grants],
    )


# ── GET /users/{user_id} ────────────────────────────────────────────

@router.get("/users/{user_id}", response_model=list[EffectivePermission])
async def get_member_permissions(
    user_id: uuid.UUID,
    ctx: TenantContext = Depends(require_permission(PermissionModule.users, PermissionAction.read)),
    db: AsyncSession = Depends(get_db),
):
    return await PermissionService.get_user_permissions(db, user_id, ctx.company_id)


# ── PUT /users/{user_id} ────────────────────────────────────────────

@router.put("/users/{user_id}", response_model=list[EffectivePermission])
async def set_member_permission(
    user_id: uuid.UUID,
    body: UserPermissionUpdate,
    ctx: TenantContext = Depends(require_permission(PermissionModule.users, PermissionAction.update)),
    db: AsyncSession = Depends(get_db),
):
    await PermissionService.set_user_permission(
        db, ctx.company_id, user_id, body.module, body.action, body.granted,
        actor_id=ctx.user_id,
    )
    return await PermissionService.get_user_permissions(db, user_id, ctx.company_id)
