"""Billing router — plans, subscription, trial info and extensions.

Routes:
    /billing/plans                              — Active plans (public to members)
    /billing/subscription                       — Current company's subscription
    /billing/trial                              — Trial status for the banner
    /billing/trial/extension-requests           — Request an extension (admin)
    /billing/admin/extension-requests           — Review queue (platform admin)
    /billing/admin/companies/{id}/plan          — Change plan (platform admin)
    /billing/admin/companies/{id}/activate      — Activate paid subscription
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import require_platform_admin
from backend.auth.models import User
from backend.billing.schemas import (
    ActivateRequest,
    PlanChangeRequest,
    PlanOut,
    SubscriptionOut,
    TrialExtensionCreate,
    TrialExtensionOut,
    TrialExtensionReview,
    TrialInfo,
)
from backend.billing.service import BillingService, effective_status
from backend.common.constants import AppRole, TrialExtensionStatus
from backend.common.exceptions import NotFoundException
from backend.companies.models import Company
from backend.database import get_db
from backend.dependencies import TenantContext, get_tenant, require_active_company, require_role

router = APIRouter(prefix="", tags=["billing"])


async def _subscription_out(db: AsyncSession, company: Company) -> SubscriptionOut:
    subscription = await BillingService.get_subscription(db, company.id)
    if subscription is None:
        raise NotFoundException(entity_type="Subscription", entity_id=company.id)
    out = SubscriptionOut.model_validate(subscription)
    out.effective_status = effective_status(subscription)
    out.can_write = await BillingService.can_write(db, company)
    return out


# ═════════════════════════════════════════════════════════════════════
#  Company-facing
# ═════════════════════════════════════════════════════════════════════

# ── GET /plans ─────────────────────────────────────────────────────

@router.get("/plans", response_model=list[PlanOut])
async def list_plans(db: AsyncSession = Depends(get_db)):
    await BillingService.ensure_default_plans(db)
    return await BillingService.list_plans(db)


# ── GET /subscription ──────────────────────────────────────────────

@router.get("/subscription", response_model=SubscriptionOut)
async def get_subscription(
    ctx: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    return await _subscription_out(db, ctx.company)


# ── GET /trial ─────────────────────────────────────────────────────

@router.get("/trial", response_model=TrialInfo)
async def get_trial(
    ctx: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    return await BillingService.get_trial_info(db, ctx.company_id)


# ── POST /trial/extension-requests ─────────────────────────────────

@router.post("/trial/extension-requests", response_model=TrialExtensionOut, status_code=201)
async def request_extension(
    body: TrialExtensionCreate,
    ctx: TenantContext = Depends(require_role(AppRole.company_admin)),
    _active: TenantContext = Depends(require_active_company),
    db: AsyncSession = Depends(get_db),
):
    return await BillingService.request_trial_extension(
        db,
        ctx.company_id,
        requested_days=body.requested_days,
        reason=body.reason,
        user_id=ctx.user_id,
    )


# ═════════════════════════════════════════════════════════════════════
#  Platform administration
# ═════════════════════════════════════════════════════════════════════

# ── GET /admin/extension-requests ──────────────────────────────────

@router.get("/admin/extension-requests", response_model=list[TrialExtensionOut])
async def list_extension_requests(
    status: Optional[TrialExtensionStatus] = Query(None),
    _admin: User = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
):
    return await BillingService.list_extension_requests(db, status)


# ── POST /admin/extension-requests/{request_id}/review ─────────────

@router.post("/admin/extension-requests/{request_id}/review", response_model=TrialExtensionOut)
async def review_extension_request(
    request_id: uuid.UUID,
    body: TrialExtensionReview,
    admin: User = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
):
    return await BillingService.review_trial_extension(
        db, request_id, approve=body.approve, reviewer_id=admin.id, notes=body.notes,
    )


# ── PUT /admin/companies/{company_id}/plan ─────────────────────────

@router.put("/admin/companies/{company_id}/plan", response_model=SubscriptionOut)
async def change_plan(
    company_id: uuid.UUID,
    body: PlanChangeRequest,
    admin: User = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
):
    company = await db.get(Company, company_id)
    if company is None:
        raise NotFoundException(entity_type="Company", entity_id=company_id)
    await BillingService.change_plan(db, company_id, body.plan, actor_id=admin.id)
    return await _subscription_out(db, company)


# ── POST /admin/companies/{company_id}/activate ────────────────────

@router.post("/admin/companies/{company_id}/activate", response_model=SubscriptionOut)
async def activate_subscription(
    company_id: uuid.UUID,
    body: ActivateRequest,
    admin: User = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
):
    company = await db.get(Company, company_id)
    if company is None:
        raise NotFoundException(entity_type="Company", entity_id=company_id)
    await BillingService.activate_subscription(
        db, company_id, period_days=body.period_days, actor_id=admin.id,
    )
    return await _subscription_out(db, company)
