"""Company / membership Pydantic schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from backend.common.constants import AppRole

_SLUG = r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$"


# ── Companies ───────────────────────────────────────────────────────

class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=2, max_length=63, pattern=_SLUG)
    subdomain: Optional[str] = Field(None, min_length=2, max_length=63, pattern=_SLUG)
    plan: Optional[str] = None


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    logo_url: Optional[str] = None
    timezone: Optional[str] = Field(None, max_length=50)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    custom_domain: Optional[str] = Field(None, max_length=255)
    pf_enabled: Optional[bool] = None
    pf_employee_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    pf_employer_rate: Optional[Decimal] = Field(None, ge=0, le=100)


class CompanyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    slug: str
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None
    logo_url: Optional[str] = None
    timezone: str
    currency: str
    is_active: bool
    frozen_at: Optional[datetime] = None
    frozen_reason: Optional[str] = None
    pf_enabled: bool
    pf_employee_rate: Decimal
    pf_employer_rate: Decimal
    created_at: datetime


class FreezeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class CompanyBranding(BaseModel):
    """Public, unauthenticated view returned by host resolution."""

    id: uuid.UUID
    name: str
    slug: str
    logo_url: Optional[str] = None
    subdomain: Optional[str] = None
    is_custom_domain: bool


# ── Settings ────────────────────────────────────────────────────────

class SettingUpdate(BaseModel):
    value: dict[str, Any]


# ── Members ─────────────────────────────────────────────────────────

class MemberOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    email: str
    full_name: str
    role: AppRole
    is_active: bool
    is_primary: bool
    joined_at: datetime


class MemberCreate(BaseModel):
    email: EmailStr
    role: AppRole = AppRole.employee
    full_name: Optional[str] = Field(None, max_length=200)


class MemberRoleUpdate(BaseModel):
    role: AppRole


class MembershipOut(BaseModel):
    """A company the current user belongs to."""

    company_id: uuid.UUID
    company_name: str
    slug: str
    role: AppRole
    is_primary: bool
    is_current: bool


class SwitchCompanyRequest(BaseModel):
    company_id: uuid.UUID
