"""Audit router — audit log, security events, export.

Routes:
    /logs              — Company audit log
    /security-events   — Security events
    /export            — JSON export of the audit log (records data_export)
"""


import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.audit.schemas import AuditExport, AuditLogOut, SecurityEventOut
from backend.audit.service import AuditService
from backend.common.audit import client_info
from backend.common.constants import AuditAction, PermissionAction, PermissionModule, SecurityEventType, SecuritySeverity
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.database import get_db
from backend.dependencies import TenantContext, require_permission

router = APIRouter(prefix="", tags=["audit"])

_read = require_permission(PermissionModule.audit, PermissionAction.read)
_export = require_permission(PermissionModule.audit, PermissionAction.export)


@router.get("/logs", response_model=PaginatedResponse[AuditLogOut])
async def list_audit_logs(
    user_id: Optional[uuid.UUID] = Query(None),
    action: Optional[AuditAction] = Query(None),
    entity_type: Optional[str] = Query(None, max_length=50),
    entity_id: Optional[uuid.UUID] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await AuditService.list_audit_logs(
        db,
        ctx.company_id,
        pagination,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/security-events", response_model=PaginatedResponse[SecurityEventOut])
async def list_security_events(
    event_type: Optional[SecurityEventType] = Query(None),
    severity: Optional[SecuritySeverity] = Query(None),
    user_id: Optional[uuid.UUID] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await AuditService.list_security_events(
        db,
        ctx.company_id,
        pagination,
        event_type=event_type,
        severity=severity,
        user_id=user_id,
        date_from=date_from,
        date_to=date_to,
    )


# ── POST /export ───────────────────────────────────────────────────

@router.post("/export", response_model=AuditExport)
async def export_audit_logs(
    request: Request,
    action: Optional[AuditAction] = Query(None),
    entity_type: Optional[str] = Query(None, max_length=50),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_export),
):
    ip, ua = client_info(request)
    return await AuditService.export_audit_logs(
        db,
        ctx.company_id,
        actor_id=ctx.user_id,
        ip_address=ip,
        user_agent=ua,
        action=action,
        entity_type=entity_type,
        date_from=date_from,
        date_to=date_to,
    )
