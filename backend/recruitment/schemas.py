"""Recruitment Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from backend.common.constants import CandidateStatus, EmploymentType, JobStatus


# ═════════════════════════════════════════════════════════════════════
# Jobs
# ═════════════════════════════════════════════════════════════════════


class JobCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    department_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    requirements: Optional[str] = None
    location: Optional[str] = Field(None, max_length=200)
    employment_type: EmploymentType = EmploymentType.full_time
    salary_min: Optional[Decimal] = Field(None, ge=0)
    salary_max: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    openings: int = Field(1, ge=1)

    @model_validator(mode="after")
    def _check_salary(self):
        if self.salary_min is not None and self.salary_max is not None and self.salary_max < self.salary_min:
            raise ValueError("salary_max must be greater than or equal to salary_min")
        return self


class JobUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    department_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    requirements: Optional[str] = None
    location: Optional[str] = Field(None, max_length=200)
    employment_type: Optional[EmploymentType] = None
    salary_min: Optional[Decimal] = Field(None, ge=0)
    salary_max: Optional[Decimal] = Field(None, ge=0)
    openings: Optional[int] = Field(None, ge=1)


class JobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    department_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    requirements: Optional[str] = None
    location: Optional[str] = None
    employment_type: EmploymentType
    salary_min: Optional[Decimal] = None
    salary_max: Optional[Decimal] = None
    currency: str
    openings: int
    status: JobStatus
    published_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Candidates
# ═════════════════════════════════════════════════════════════════════


class CandidateCreate(BaseModel):
    job_id: uuid.UUID
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=30)
    resume_url: Optional[str] = Field(None, max_length=500)
    cover_letter: Optional[str] = None
    source: Optional[str] = Field(None, max_length=50)


class CandidateUpdate(BaseModel):
    phone: Optional[str] = Field(None, max_length=30)
    resume_url: Optional[str] = Field(None, max_length=500)
    rating: Optional[int] = Field(None, ge=1, le=5)
    notes: Optional[str] = None


class CandidateStatusChange(BaseModel):
    status: CandidateStatus
    rejected_reason: Optional[str] = Field(None, max_length=1000)


class CandidateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    resume_url: Optional[str] = None
    cover_letter: Optional[str] = None
    source: Optional[str] = None
    status: CandidateStatus
    rating: Optional[int] = None
    notes: Optional[str] = None
    rejected_reason: Optional[str] = None
    status_changed_at: Optional[datetime] = None
    created_at: datetime


class PipelineStats(BaseModel):
    open_jobs: int
    total_candidates: int
    by_status: dict[str, int]
