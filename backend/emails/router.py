"""Email router — company email settings, test send, delivery logs.

Routes:
    /emails/settings        — Get / update the company's provider settings
    /emails/settings/test   — Send a test email with the current settings
    /emails/logs            — Delivery log for the company
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import EmailStatus, PermissionAction, PermissionModule
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.database import get_db
from backend.dependencies import TenantContext, require_permission
from backend.emails.schemas import (
    EmailLogOut,
    EmailSendResultOut,
    EmailSettingsOut,
    EmailSettingsUpdate,
    TestEmailRequest,
)
from backend.emails.service import EmailService

router = APIRouter(prefix="", tags=["emails"])


# ── GET /settings ───────────────────────────────────────────────────

@router.get("/settings", response_model=EmailSettingsOut)
async def get_email_settings(
    ctx: TenantContext = Depends(require_permission(PermissionModule.settings, PermissionAction.read)),
    db: AsyncSession = Depends(get_db),
):
    row = await EmailService.get_settings(db, ctx.company_id)
    return EmailSettingsOut.from_row(row)


# ── PUT /settings ───────────────────────────────────────────────────

@router.put("/settings", response_model=EmailSettingsOut)
async def update_email_settings(
    body: EmailSettingsUpdate,
    ctx: TenantContext = Depends(require_permission(PermissionModule.settings, PermissionAction.update)),
    db: AsyncSession = Depends(get_db),
):
    row = await EmailService.update_settings(
        db, ctx.company_id, body.model_dump(exclude_unset=True, mode="json"),
    )
    return EmailSettingsOut.from_row(row)


# ── POST /settings/test ─────────────────────────────────────────────

@router.post("/settings/test", response_model=EmailSendResultOut)
async def send_test_email(
    body: TestEmailRequest,
    ctx: TenantContext = Depends(require_permission(PermissionModule.settings, PermissionAction.update)),
    db: AsyncSession = Depends(get_db),
):
    result = await EmailService.send_test(db, ctx.company_id, body.to)
    return EmailSendResultOut(
        success=result.success,
        provider=result.provider,
        message_id=result.message_id,
        error=result.error,
    )


# ── GET /logs ───────────────────────────────────────────────────────

@router.get("/logs", response_model=PaginatedResponse[EmailLogOut])
async def list_email_logs(
    status: Optional[EmailStatus] = Query(None),
    template_type: Optional[str] = Query(None, max_length=100),
    params: PaginationParams = Depends(),
    ctx: TenantContext = Depends(require_permission(PermissionModule.settings, PermissionAction.read)),
    db: AsyncSession = Depends(get_db),
):
    return await EmailService.list_logs(
        db, ctx.company_id, params, status=status, template_type=template_type,
    )
