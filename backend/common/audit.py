"""Audit log and security event models plus async helpers to record them."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from fastapi import Request
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from backend.common.constants import AuditAction, SecurityEventType, SecuritySeverity
from backend.common.models import str_enum, utcnow
from backend.database import Base

logger = logging.getLogger(__name__)


# ── Immutable audit-log table ───────────────────────────────────────

class AuditLog(Base):
    """Immutable log of every significant data change inside a company."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id", ondelete="CASCADE"),
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    action: Mapped[AuditAction] = mapped_column(
        str_enum(AuditAction, "audit_action"), nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    old_values: Mapped[Optional[dict]] = mapped_column(JSONB)
    new_values: Mapped[Optional[dict]] = mapped_column(JSONB)
    details: Mapped[Optional[dict]] = mapped_column(JSONB)
    ip_address: Mapped[Optional[str]] = mapped_column(INET)
    user_agent: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )

    __table_args__ = (
        sa.Index("ix_audit_logs_company_created", "company_id", "created_at"),
        sa.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        sa.Index("ix_audit_logs_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.entity_type}/{self.entity_id} by {self.user_id}>"


class SecurityEvent(Base):
    """Authentication and access anomalies (logins, lockouts, exports)."""

    __tablename__ = "security_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("companies.id", ondelete="CASCADE"),
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    event_type: Mapped[SecurityEventType] = mapped_column(
        str_enum(SecurityEventType, "security_event_type"), nullable=False,
    )
    severity: Mapped[SecuritySeverity] = mapped_column(
        str_enum(SecuritySeverity, "security_severity"),
        nullable=False,
        default=SecuritySeverity.low,
    )
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    details: Mapped[Optional[dict]] = mapped_column(JSONB)
    ip_address: Mapped[Optional[str]] = mapped_column(INET)
    user_agent: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )

    __table_args__ = (
        sa.Index("ix_security_events_company_created", "company_id", "created_at"),
        sa.Index("ix_security_events_user_id", "user_id"),
    )


# ── Helpers ─────────────────────────────────────────────────────────

def client_info(request: Optional[Request]) -> tuple[Optional[str], Optional[str]]:
    """Return (ip, user_agent) for *request*."""
    if request is None:
        return None, None
    ip = request.client.host if request.client else None
    return ip, request.headers.get("user-agent")


async def create_audit_entry(
    session: AsyncSession,
    *,
    action: AuditAction,
    entity_type: str,
    entity_id: Optional[uuid.UUID] = None,
    company_id: Optional[uuid.UUID] = None,
    user_id: Optional[uuid.UUID] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
    details: Optional[dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditLog:
    """
    Create and flush an audit-log entry.

    Args:
        session: Async SQLAlchemy session.
        action: one of ``AuditAction``.
        entity_type: e.g. "employee", "payroll_run", "employee_document".
        entity_id: UUID of the affected entity.
        company_id: Owning company.
        user_id: User performing the action.
        old_values: Previous state (for updates/deletes).
        new_values: New state (for creates/updates).
        details: Free-form context (file name, counts, ...).
    """
    entry = AuditLog(
        company_id=company_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    session.add(entry)
    await session.flush()
    return entry


async def log_security_event(
    session: AsyncSession,
    *,
    event_type: SecurityEventType,
    severity: SecuritySeverity = SecuritySeverity.low,
    description: Optional[str] = None,
    company_id: Optional[uuid.UUID] = None,
    user_id: Optional[uuid.UUID] = None,
    details: Optional[dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> SecurityEvent:
    """Persist a security event; high/critical events are also logged as warnings."""
    event = SecurityEvent(
        company_id=company_id,
        user_id=user_id,
        event_type=event_type,
        severity=severity,
        description=description,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    session.add(event)
    await session.flush()
    if severity in (SecuritySeverity.high, SecuritySeverity.critical):
        logger.warning(
            "Security event %s (%s): %s",
            event_type.value, severity.value, description,
            extra={"user_id": user_id, "company_id": company_id},
        )
    return event
