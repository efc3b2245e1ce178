"""Notification endpoints — list, mark read, unread count."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import NotificationType
from backend.common.pagination import PaginationParams
from backend.database import get_db
from backend.dependencies import TenantContext, get_tenant
from backend.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
    UnreadCount,
)
from backend.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


# ── GET / — list current user's notifications ───────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None, description="Filter by read status"),
    type: Optional[NotificationType] = Query(
        default=None, alias="type", description="Filter by notification type"
    ),
    pagination: PaginationParams = Depends(),
    ctx: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    """List notifications for the authenticated user (paginated)."""
    return await NotificationService.get_notifications(
        db,
        ctx.company_id,
        ctx.user_id,
        pagination,
        is_read=is_read,
        notification_type=type,
    )


# ── GET /unread-count — badge count ─────────────────────────────────
# Registered before /{notification_id}/read so the literal segment wins.

@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    ctx: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    count = await NotificationService.get_unread_count(db, ctx.company_id, ctx.user_id)
    return UnreadCount(count=count)


# ── PUT /read-all — bulk mark all as read ───────────────────────────

@router.put("/read-all", response_model=UnreadCount)
async def mark_all_read(
    ctx: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    """Mark all unread notifications as read; returns how many changed."""
    count = await NotificationService.mark_all_read(db, ctx.company_id, ctx.user_id)
    return UnreadCount(count=count)


# ── PUT /{notification_id}/read — mark single as read ───────────────

@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    ctx: TenantContext = Depends(get_tenant),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService.mark_read(db, ctx.company_id, notification_id, ctx.user_id)
