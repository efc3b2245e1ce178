"""Billing Pydantic schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from backend.common.constants import SubscriptionStatus, TrialExtensionStatus


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    modules: Any
    max_employees: int
    features: dict
    price_monthly: Decimal


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    plan: PlanOut
    status: SubscriptionStatus
    effective_status: Optional[SubscriptionStatus] = None
    can_write: bool = True
    trial_started_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


class TrialInfo(BaseModel):
    status: Optional[SubscriptionStatus] = None
    plan: str
    is_trialing: bool
    is_expired: bool
    trial_started_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    can_request_extension: bool
    has_pending_request: bool


class TrialExtensionCreate(BaseModel):
    requested_days: int = Field(..., ge=1, le=30)
    reason: Optional[str] = Field(None, max_length=2000)


class TrialExtensionReview(BaseModel):
    approve: bool
    notes: Optional[str] = Field(None, max_length=2000)


class TrialExtensionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    requested_by: uuid.UUID
    requested_days: int
    reason: Optional[str] = None
    status: TrialExtensionStatus
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_at: datetime


class PlanChangeRequest(BaseModel):
    plan: str


class ActivateRequest(BaseModel):
    period_days: int = Field(30, ge=1, le=366)


class TrialJobResult(BaseModel):
    companies_checked: int
    emails_sent: int
    errors: list[str]
