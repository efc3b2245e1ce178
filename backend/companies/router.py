"""Companies router — onboarding, current company, settings, members.

Routes:
    /companies                          — Create a company (any signed-in user)
    /companies/resolve                  — Public host → company branding lookup
    /companies/mine                     — Companies the caller belongs to
    /companies/switch                   — Change the caller's current company
    /companies/current                  — Get / update the current company
    /companies/current/settings         — Company settings
    /companies/current/members          — Member management
    /companies/{company_id}/freeze      — Freeze / unfreeze (platform admin)
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_user, require_platform_admin
from backend.auth.models import User
from backend.common.audit import client_info
from backend.common.constants import AppRole, PermissionAction, PermissionModule
from backend.common.exceptions import NotFoundException
from backend.companies.domains import resolve_company_for_host
from backend.companies.schemas import (
    CompanyBranding,
    CompanyCreate,
    CompanyOut,
    CompanyUpdate,
    FreezeRequest,
    MemberCreate,
    MemberOut,
    MemberRoleUpdate,
    MembershipOut,
    SettingUpdate,
    SwitchCompanyRequest,
)
from backend.companies.service import CompanyService
from backend.database import get_db
from backend.dependencies import (
    TenantContext,
    get_tenant,
    require_permission,
    require_role,
    require_writable_tenant,
)

router = APIRouter(prefix="", tags=["companies"])


# ═════════════════════════════════════════════════════════════════════
#  Onboarding & host resolution
# ═════════════════════════════════════════════════════════════════════

# ── POST / ─────────────────────────────────────────────────────────

@router.post("", response_model=CompanyOut, status_code=201)
async def create_company(
    body: CompanyCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.create_company(
        db,
        name=body.name,
        slug=body.slug,
        subdomain=body.subdomain,
        plan_name=body.plan,
        owner=user,
    )


# ── GET /resolve ───────────────────────────────────────────────────

@router.get("/resolve", response_model=CompanyBranding)
async def resolve_host(
    host: str = Query(..., min_length=1, max_length=255),
    db: AsyncSession = Depends(get_db),
):
    resolution = await resolve_company_for_host(db, host)
    if resolution is None:
        raise NotFoundException(entity_type="Company", entity_id=host)
    company = resolution.company
    return CompanyBranding(
        id=company.id,
        name=company.name,
        slug=company.slug,
        logo_url=company.logo_url,
        subdomain=resolution.subdomain,
        is_custom_domain=resolution.is_custom_domain,
    )


# ── GET /mine ──────────────────────────────────────────────────────

@router.get("/mine", response_model=list[MembershipOut])
async def my_companies(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.list_memberships(db, user)


# ── POST /switch ───────────────────────────────────────────────────

@router.post("/switch", response_model=CompanyOut)
async def switch_company(
    body: SwitchCompanyRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.switch_company(db, user, body.company_id)


# ═════════════════════════════════════════════════════════════════════
#  Current company
# ═════════════════════════════════════════════════════════════════════

# ── GET /current ───────────────────────────────────────────────────

@router.get("/current", response_model=CompanyOut)
async def get_current_company(ctx: TenantContext = Depends(get_tenant)):
    return ctx.company


# ── PATCH /current ─────────────────────────────────────────────────

@router.patch("/current", response_model=CompanyOut)
async def update_current_company(
    body: CompanyUpdate,
    ctx: TenantContext = Depends(require_role(AppRole.company_admin)),
    _writable: TenantContext = Depends(require_writable_tenant),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.update_company(
        db, ctx.company, body.model_dump(exclude_unset=True), actor_id=ctx.user_id,
    )


# ── GET /current/settings ──────────────────────────────────────────

@router.get("/current/settings")
async def get_settings(
    ctx: TenantContext = Depends(require_permission(PermissionModule.settings, PermissionAction.read)),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.get_settings(db, ctx.company_id)


# ── PUT /current/settings/{key} ────────────────────────────────────

@router.put("/current/settings/{key}")
async def update_setting(
    key: str,
    body: SettingUpdate,
    ctx: TenantContext = Depends(require_permission(PermissionModule.settings, PermissionAction.update)),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.update_setting(
        db, ctx.company_id, key, body.value, actor_id=ctx.user_id,
    )


# ═════════════════════════════════════════════════════════════════════
#  Members
# ═════════════════════════════════════════════════════════════════════

# ── GET /current/members ───────────────────────────────────────────

@router.get("/current/members", response_model=list[MemberOut])
async def list_members(
    ctx: TenantContext = Depends(require_permission(PermissionModule.users, PermissionAction.read)),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.list_members(db, ctx.company_id)


# ── POST /current/members ──────────────────────────────────────────

@router.post("/current/members", response_model=MemberOut, status_code=201)
async def add_member(
    body: MemberCreate,
    ctx: TenantContext = Depends(require_permission(PermissionModule.users, PermissionAction.create)),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.add_member(
        db, ctx.company, email=body.email, role=body.role, actor=ctx.user, full_name=body.full_name,
    )


# ── PATCH /current/members/{member_id} ─────────────────────────────

@router.patch("/current/members/{member_id}", response_model=MemberOut)
async def update_member_role(
    member_id: uuid.UUID,
    body: MemberRoleUpdate,
    ctx: TenantContext = Depends(require_permission(PermissionModule.users, PermissionAction.update)),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.update_member_role(
        db, ctx.company_id, member_id, body.role, actor_id=ctx.user_id,
    )


# ── DELETE /current/members/{member_id} ────────────────────────────

@router.delete("/current/members/{member_id}", response_model=MemberOut)
async def deactivate_member(
    member_id: uuid.UUID,
    ctx: TenantContext = Depends(require_permission(PermissionModule.users, PermissionAction.delete)),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.deactivate_member(
        db, ctx.company_id, member_id, actor_id=ctx.user_id,
    )


# ═════════════════════════════════════════════════════════════════════
#  Platform administration
# ═════════════════════════════════════════════════════════════════════

# ── GET /all ───────────────────────────────────────────────────────

@router.get("/all", response_model=list[CompanyOut])
async def list_companies(
    _admin: User = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.list_companies(db)


# ── POST /{company_id}/freeze ──────────────────────────────────────

@router.post("/{company_id}/freeze", response_model=CompanyOut)
async def freeze_company(
    company_id: uuid.UUID,
    body: FreezeRequest,
    request: Request,
    admin: User = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
):
    ip, ua = client_info(request)
    return await CompanyService.freeze_company(
        db, company_id, reason=body.reason, actor_id=admin.id, ip_address=ip, user_agent=ua,
    )


# ── POST /{company_id}/unfreeze ────────────────────────────────────

@router.post("/{company_id}/unfreeze", response_model=CompanyOut)
async def unfreeze_company(
    company_id: uuid.UUID,
    admin: User = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
):
    return await CompanyService.unfreeze_company(db, company_id, actor_id=admin.id)
