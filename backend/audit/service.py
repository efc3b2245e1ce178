"""Audit service — company audit-log and security-event queries, JSON export."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.audit.schemas import AuditExport, AuditLogOut, SecurityEventOut
from backend.common.audit import AuditLog, SecurityEvent, log_security_event
from backend.common.constants import AuditAction, SecurityEventType, SecuritySeverity
from backend.common.models import utcnow
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate

logger = logging.getLogger(__name__)

EXPORT_LIMIT = 10_000


def _audit_query(
    company_id: uuid.UUID,
    *,
    user_id: Optional[uuid.UUID] = None,
    action: Optional[AuditAction] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> Select:
    query = select(AuditLog).where(AuditLog.company_id == company_id).order_by(AuditLog.created_at.desc())
    if user_id is not None:
        query = query.where(AuditLog.user_id == user_id)
    if action is not None:
        query = query.where(AuditLog.action == action)
    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.where(AuditLog.entity_id == entity_id)
    if date_from is not None:
        query = query.where(AuditLog.created_at >= date_from)
    if date_to is not None:
        query = query.where(AuditLog.created_at <= date_to)
    return query


class AuditService:

    @staticmethod
    async def list_audit_logs(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        **filters,
    ) -> PaginatedResponse[AuditLogOut]:
        return await paginate(db, _audit_query(company_id, **filters), pagination, schema=AuditLogOut)

    @staticmethod
    async def list_security_events(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        event_type: Optional[SecurityEventType] = None,
        severity: Optional[SecuritySeverity] = None,
        user_id: Optional[uuid.UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> PaginatedResponse[SecurityEventOut]:
        query = (
            select(SecurityEvent)
            .where(SecurityEvent.company_id == company_id)
            .order_by(SecurityEvent.created_at.desc())
        )
        if event_type is not None:
            query = query.where(SecurityEvent.event_type == event_type)
        if severity is not None:
            query = query.where(SecurityEvent.severity == severity)
        if user_id is not None:
            query = query.where(SecurityEvent.user_id == user_id)
        if date_from is not None:
            query = query.where(SecurityEvent.created_at >= date_from)
        if date_to is not None:
            query = query.where(SecurityEvent.created_at <= date_to)
        return await paginate(db, query, pagination, schema=SecurityEventOut)

    @staticmethod
    async def export_audit_logs(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        actor_id: uuid.UUID,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        **filters,
    ) -> AuditExport:
        """Return matching audit rows as JSON and record a ``data_export`` event."""
        rows = (await db.execute(
            _audit_query(company_id, **filters).limit(EXPORT_LIMIT + 1)
        )).scalars().all()
        truncated = len(rows) > EXPORT_LIMIT
        rows = rows[:EXPORT_LIMIT]

        await log_security_event(
            db,
            event_type=SecurityEventType.data_export,
            severity=SecuritySeverity.medium,
            description=f"Exported {len(rows)} audit log entries",
            company_id=company_id,
            user_id=actor_id,
            details={
                "resource": "audit_logs",
                "count": len(rows),
                "filters": {k: str(v) for k, v in filters.items() if v is not None},
            },
            ip_address=ip_address,
            user_agent=user_agent,
        )
        logger.info("Audit export: %d rows", len(rows), extra={"company_id": company_id})
        return AuditExport(
            exported_at=utcnow(),
            count=len(rows),
            truncated=truncated,
            audit_logs=[AuditLogOut.model_validate(r) for r in rows],
        )
