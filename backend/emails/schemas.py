"""Email Pydantic schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from backend.common.constants import EmailProviderName, EmailStatus


class EmailSettingsOut(BaseModel):
    """Company email settings. Secrets are reported as set / not set only."""

    model_config = ConfigDict(from_attributes=True)

    company_id: uuid.UUID
    use_platform_default: bool
    provider: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = None
    smtp_username: Optional[str] = None
    smtp_use_tls: bool = True
    has_api_key: bool = False
    has_smtp_password: bool = False
    is_verified: bool = False
    verified_at: Optional[datetime] = None
    last_test_at: Optional[datetime] = None
    last_test_result: Optional[dict[str, Any]] = None

    @classmethod
    def from_row(cls, row) -> "EmailSettingsOut":
        out = cls.model_validate(row)
        out.has_api_key = bool(row.api_key)
        out.has_smtp_password = bool(row.smtp_password)
        return out


class EmailSettingsUpdate(BaseModel):
    use_platform_default: Optional[bool] = None
    provider: Optional[EmailProviderName] = None
    from_email: Optional[EmailStr] = None
    from_name: Optional[str] = Field(None, max_length=255)
    api_key: Optional[str] = None
    smtp_host: Optional[str] = Field(None, max_length=255)
    smtp_port: Optional[int] = Field(None, ge=1, le=65535)
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: Optional[bool] = None


class TestEmailRequest(BaseModel):
    to: EmailStr


class EmailSendResultOut(BaseModel):
    success: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: Optional[uuid.UUID] = None
    template_type: Optional[str] = None
    subject: str
    recipient_email: str
    status: EmailStatus
    provider: Optional[str] = None
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    sent_at: Optional[datetime] = None
