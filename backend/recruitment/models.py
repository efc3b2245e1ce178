"""Recruitment ORM models: Job, Candidate."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import CandidateStatus, EmploymentType, JobStatus
from backend.common.models import TenantMixin, TimestampMixin, UUIDPrimaryKeyMixin, str_enum
from backend.core_hr.models import Department
from backend.database import Base


class Job(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    __tablename__ = "jobs"
    __table_args__ = (
        sa.CheckConstraint(
            "salary_min IS NULL OR salary_max IS NULL OR salary_max >= salary_min",
            name="ck_jobs_salary_range",
        ),
    )

    title: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("departments.id", ondelete="SET NULL"),
    )
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    requirements: Mapped[Optional[str]] = mapped_column(sa.Text)
    location: Mapped[Optional[str]] = mapped_column(sa.String(200))
    employment_type: Mapped[EmploymentType] = mapped_column(
        str_enum(EmploymentType, "employment_type"), nullable=False, default=EmploymentType.full_time,
    )
    salary_min: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(14, 2))
    salary_max: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(14, 2))
    currency: Mapped[str] = mapped_column(sa.String(3), nullable=False, default="USD")
    openings: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    status: Mapped[JobStatus] = mapped_column(
        str_enum(JobStatus, "job_status"), nullable=False, default=JobStatus.draft, index=True,
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    closed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )

    department: Mapped[Optional[Department]] = relationship()


class Candidate(UUIDPrimaryKeyMixin, TenantMixin, TimestampMixin, Base):
    __tablename__ = "candidates"
    __table_args__ = (
        sa.UniqueConstraint("job_id", "email", name="uq_candidates_job_email"),
        sa.CheckConstraint("rating IS NULL OR (rating BETWEEN 1 AND 5)", name="ck_candidates_rating"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(sa.String(30))
    resume_url: Mapped[Optional[str]] = mapped_column(sa.String(500))
    cover_letter: Mapped[Optional[str]] = mapped_column(sa.Text)
    source: Mapped[Optional[str]] = mapped_column(sa.String(50))
    status: Mapped[CandidateStatus] = mapped_column(
        str_enum(CandidateStatus, "candidate_status"), nullable=False, default=CandidateStatus.applied, index=True,
    )
    rating: Mapped[Optional[int]] = mapped_column(sa.SmallInteger)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    rejected_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status_changed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    status_changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )

    job: Mapped[Job] = relationship()
