"""Document Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from backend.common.constants import VerificationStatus


# ── Document types ──────────────────────────────────────────────────

class DocumentTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=20, pattern=r"^[A-Z0-9_]+$")
    description: Optional[str] = Field(None, max_length=500)
    requires_expiry: bool = False
    is_required: bool = False
    allowed_for_employee_upload: bool = True
    allowed_mime_types: Optional[list[str]] = None
    max_file_size_mb: Optional[int] = Field(None, ge=1, le=50)


class DocumentTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    requires_expiry: Optional[bool] = None
    is_required: Optional[bool] = None
    allowed_for_employee_upload: Optional[bool] = None
    allowed_mime_types: Optional[list[str]] = None
    max_file_size_mb: Optional[int] = Field(None, ge=1, le=50)
    is_active: Optional[bool] = None


class DocumentTypeOut(DocumentTypeCreate):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    is_active: bool


class DocumentTypeBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    code: str


# ── Documents ───────────────────────────────────────────────────────

class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    document_type_id: uuid.UUID
    title: str
    description: Optional[str] = None
    file_name: str
    mime_type: str
    file_size: int
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    verification_status: VerificationStatus
    verified_by: Optional[uuid.UUID] = None
    verified_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    parent_document_id: Optional[uuid.UUID] = None
    version: int
    is_latest: bool
    uploaded_by: Optional[uuid.UUID] = None
    created_at: datetime
    document_type: Optional[DocumentTypeBrief] = None


class VerifyRequest(BaseModel):
    status: VerificationStatus = Field(..., description="verified or rejected")
    rejection_reason: Optional[str] = Field(None, max_length=1000)


class SignedUrl(BaseModel):
    url: str
    expires_in: int


class DocumentLimits(BaseModel):
    max_storage_mb: int
    max_per_employee: int
    current_storage_bytes: int
    current_count: int
    can_upload: bool


class ExpiryJobResult(BaseModel):
    documents_expired: int
    notifications_sent: int
    errors: list[str] = []
