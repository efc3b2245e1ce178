"""Audit / security log Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from backend.common.constants import AuditAction, SecurityEventType, SecuritySeverity


class _LogRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ip_address: Optional[str] = None

    # asyncpg returns INET columns as ipaddress objects
    @field_validator("ip_address", mode="before")
    @classmethod
    def _ip_to_str(cls, value: Any) -> Optional[str]:
        return str(value) if value is not None else None


class AuditLogOut(_LogRow):
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    action: AuditAction
    entity_type: str
    entity_id: Optional[uuid.UUID] = None
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    details: Optional[dict] = None
    user_agent: Optional[str] = None
    created_at: datetime


class SecurityEventOut(_LogRow):
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    event_type: SecurityEventType
    severity: SecuritySeverity
    description: Optional[str] = None
    details: Optional[dict] = None
    user_agent: Optional[str] = None
    created_at: datetime


class AuditExport(BaseModel):
    exported_at: datetime
    count: int
    truncated: bool
    audit_logs: list[AuditLogOut]
