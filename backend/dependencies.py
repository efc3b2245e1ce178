"""Tenant guard dependencies shared by every company-scoped router.

A request is resolved to a company in this order: the ``X-Company-Id``
header, the user's current company, then their primary membership. The
caller must be an active member. Mutating permissions additionally pass the
write guard (company not frozen, subscription active or trial running).
"""

from __future__ import annotations

import hmac
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_user
from backend.auth.models import User
from backend.auth.service import password_change_required
from backend.billing.service import BillingService
from backend.common.audit import client_info, log_security_event
from backend.common.constants import (
    READ_ONLY_ACTIONS,
    ROLE_HIERARCHY,
    AppRole,
    PermissionAction,
    PermissionModule,
    SecurityEventType,
    SecuritySeverity,
)
from backend.common.exceptions import ForbiddenException, TenantException, UnauthorizedException, get_error_message
from backend.companies.models import Company, CompanyMember
from backend.companies.settings import primary_company_id
from backend.config import settings
from backend.database import get_db
from backend.permissions.service import PermissionService

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass
class TenantContext:
    user: User
    company: Company
    member: CompanyMember

    @property
    def company_id(self) -> uuid.UUID:
        return self.company.id

    @property
    def user_id(self) -> uuid.UUID:
        return self.user.id

    @property
    def role(self) -> AppRole:
        return self.member.role

    def has_role(self, minimum: AppRole) -> bool:
        return ROLE_HIERARCHY[self.member.role] >= ROLE_HIERARCHY[minimum]


# ── Company resolution ──────────────────────────────────────────────

async def get_tenant(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    x_company_id: Optional[str] = Header(default=None, alias="X-Company-Id"),
) -> TenantContext:
    company_id: Optional[uuid.UUID] = None
    if x_company_id:
        try:
            company_id = uuid.UUID(x_company_id)
        except ValueError:
            raise TenantException("no_company", detail="X-Company-Id is not a valid id.")
    if company_id is None:
        company_id = user.current_company_id or await primary_company_id(db, user.id)
    if company_id is None:
        raise TenantException("no_company")

    company = await db.get(Company, company_id)
    if company is None:
        raise TenantException("no_company")

    member = (
        await db.execute(
            select(CompanyMember).where(
                CompanyMember.company_id == company_id,
                CompanyMember.user_id == user.id,
                CompanyMember.is_active.is_(True),
            )
        )
    ).scalars().first()
    if member is None:
        raise TenantException("not_member")
    if await password_change_required(db, user, company.id):
        raise ForbiddenException(
            detail=get_error_message("password_change_required"), code="password_change_required",
        )

    request.state.company_id = company.id
    return TenantContext(user=user, company=company, member=member)


async def require_active_company(
    ctx: TenantContext = Depends(get_tenant),
) -> TenantContext:
    if ctx.company.is_frozen:
        raise TenantException("company_frozen")
    return ctx


async def ensure_can_write(db: AsyncSession, company: Company) -> None:
    """Raise the matching tenant error when *company* is read-only."""
    if company.is_frozen:
        raise TenantException("company_frozen")
    if not await BillingService.can_write(db, company):
        raise TenantException("read_only_mode")


# ── Dependency factories ────────────────────────────────────────────

def require_module(module: PermissionModule) -> Callable:
    """Return a dependency that rejects companies whose plan lacks *module*."""

    async def _check(
        ctx: TenantContext = Depends(get_tenant),
        db: AsyncSession = Depends(get_db),
    ) -> TenantContext:
        if not await BillingService.has_module(db, ctx.company_id, module):
            raise TenantException("module_not_available")
        return ctx

    return _check


def require_permission(module: PermissionModule, action: PermissionAction) -> Callable:
    """Return a dependency enforcing plan module, permission and write guard."""

    async def _check(
        request: Request,
        ctx: TenantContext = Depends(get_tenant),
        db: AsyncSession = Depends(get_db),
    ) -> TenantContext:
        if not await BillingService.has_module(db, ctx.company_id, module):
            raise TenantException("module_not_available")

        granted, _ = await PermissionService.check_permission(
            db, ctx.user_id, ctx.company_id, module, action,
        )
        if not granted:
            ip, ua = client_info(request)
            await log_security_event(
                db,
                event_type=SecurityEventType.permission_denied,
                severity=SecuritySeverity.low,
                description=f"Denied {module.value}:{action.value}",
                company_id=ctx.company_id,
                user_id=ctx.user_id,
                details={"module": module.value, "action": action.value, "path": request.url.path},
                ip_address=ip,
                user_agent=ua,
            )
            await db.commit()
            raise ForbiddenException(
                detail=f"Permission '{module.value}:{action.value}' is required.",
                code="42501",
            )

        if action not in READ_ONLY_ACTIONS and request.method not in SAFE_METHODS:
            await ensure_can_write(db, ctx.company)
        return ctx

    return _check


def require_role(minimum: AppRole) -> Callable:
    """Return a dependency requiring at least *minimum* in the role hierarchy."""

    async def _check(ctx: TenantContext = Depends(get_tenant)) -> TenantContext:
        if not ctx.has_role(minimum):
            raise ForbiddenException(
                detail=f"Role '{ctx.role.value}' is not permitted. Required: {minimum.value} or higher.",
            )
        return ctx

    return _check


async def require_writable_tenant(
    ctx: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    """For self-service writes (own leave, clock-in) that need no permission."""
    await ensure_can_write(db, ctx.company)
    return ctx


# ── Scheduled jobs ──────────────────────────────────────────────────

async def verify_cron_secret(
    x_cron_secret: Optional[str] = Header(default=None, alias="X-Cron-Secret"),
) -> None:
    if not settings.CRON_SECRET or not x_cron_secret or not hmac.compare_digest(
        x_cron_secret, settings.CRON_SECRET,
    ):
        raise UnauthorizedException("invalid_token", detail="Invalid cron secret.")
