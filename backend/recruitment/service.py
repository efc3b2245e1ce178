"""Recruitment service — job postings and the candidate pipeline.

Candidates move one stage at a time::

    applied → screening → interviewing → offered → hired

``rejected`` and ``withdrawn`` are reachable from any stage that is not
final; ``hired``, ``rejected`` and ``withdrawn`` are final.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import create_audit_entry
from backend.common.constants import AuditAction, CandidateStatus, JobStatus
from backend.common.exceptions import ConflictError, InvalidStateException
from backend.common.models import get_for_company, utcnow
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.companies.models import Company
from backend.core_hr.models import Department
from backend.notifications.service import notify_candidate_update
from backend.recruitment.models import Candidate, Job
from backend.recruitment.schemas import (
    CandidateCreate,
    CandidateOut,
    CandidateUpdate,
    JobCreate,
    JobOut,
    JobUpdate,
    PipelineStats,
)

logger = logging.getLogger(__name__)

JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.draft: frozenset({JobStatus.open, JobStatus.closed}),
    JobStatus.open: frozenset({JobStatus.on_hold, JobStatus.closed}),
    JobStatus.on_hold: frozenset({JobStatus.open, JobStatus.closed}),
    JobStatus.closed: frozenset(),
}

PIPELINE = (
    CandidateStatus.applied,
    CandidateStatus.screening,
    CandidateStatus.interviewing,
    CandidateStatus.offered,
    CandidateStatus.hired,
)
FINAL_STATUSES = frozenset({CandidateStatus.hired, CandidateStatus.rejected, CandidateStatus.withdrawn})


def can_transition(current: CandidateStatus, target: CandidateStatus) -> bool:
    if current in FINAL_STATUSES:
        return False
    if target in (CandidateStatus.rejected, CandidateStatus.withdrawn):
        return True
    if target not in PIPELINE:
        return False
    return PIPELINE.index(target) == PIPELINE.index(current) + 1


async def _notify_job_owner(
    db: AsyncSession, job: Job, candidate: Candidate, actor_id: uuid.UUID, *, title: str, message: str,
) -> None:
    """Tell whoever opened the job, unless they made the change themselves."""
    if job.created_by is None or job.created_by == actor_id:
        return
    await notify_candidate_update(db, candidate, job.created_by, title=title, message=message)
    logger.info("Candidate %s update sent to job owner %s", candidate.id, job.created_by)


class RecruitmentService:
    """Async recruitment operations."""

    # ═════════════════════════════════════════════════════════════════
    # Jobs
    # ═════════════════════════════════════════════════════════════════

    @staticmethod
    async def list_jobs(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        status: Optional[JobStatus] = None,
        department_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse[JobOut]:
        query = select(Job).where(Job.company_id == company_id).order_by(Job.created_at.desc())
        if status is not None:
            query = query.where(Job.status == status)
        if department_id is not None:
            query = query.where(Job.department_id == department_id)
        return await paginate(db, query, pagination, model=Job, schema=JobOut)

    @staticmethod
    async def get_job(db: AsyncSession, company_id: uuid.UUID, job_id: uuid.UUID) -> Job:
        return await get_for_company(db, Job, company_id, job_id, "Job")

    @staticmethod
    async def create_job(
        db: AsyncSession, company: Company, data: JobCreate, *, actor_id: uuid.UUID,
    ) -> Job:
        if data.department_id is not None:
            await get_for_company(db, Department, company.id, data.department_id, "Department")
        values = data.model_dump()
        values["currency"] = data.currency or company.currency
        job = Job(company_id=company.id, status=JobStatus.draft, created_by=actor_id, **values)
        db.add(job)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="job",
            entity_id=job.id,
            company_id=company.id,
            user_id=actor_id,
            new_values={"title": job.title, "status": job.status.value},
        )
        return job

    @staticmethod
    async def update_job(
        db: AsyncSession, company_id: uuid.UUID, job_id: uuid.UUID, data: JobUpdate, *, actor_id: uuid.UUID,
    ) -> Job:
        job = await RecruitmentService.get_job(db, company_id, job_id)
        if job.status == JobStatus.closed:
            raise InvalidStateException("Closed jobs cannot be edited.")
        changes = data.model_dump(exclude_unset=True)
        if changes.get("department_id") is not None:
            await get_for_company(db, Department, company_id, changes["department_id"], "Department")
        salary_min = changes.get("salary_min", job.salary_min)
        salary_max = changes.get("salary_max", job.salary_max)
        if salary_min is not None and salary_max is not None and salary_max < salary_min:
            raise InvalidStateException("salary_max must be greater than or equal to salary_min.")
        for field, value in changes.items():
            setattr(job, field, value)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="job",
            entity_id=job.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={k: str(v) if v is not None else None for k, v in changes.items()},
        )
        return job

    @staticmethod
    async def set_job_status(
        db: AsyncSession, company_id: uuid.UUID, job_id: uuid.UUID, target: JobStatus, *, actor_id: uuid.UUID,
    ) -> Job:
        job = await RecruitmentService.get_job(db, company_id, job_id)
        if target not in JOB_TRANSITIONS[job.status]:
            raise InvalidStateException(
                f"Cannot move a job from {job.status.value} to {target.value}."
            )
        previous = job.status
        job.status = target
        if target == JobStatus.open and job.published_at is None:
            job.published_at = utcnow()
        if target == JobStatus.closed:
            job.closed_at = utcnow()
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="job",
            entity_id=job.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"status": previous.value},
            new_values={"status": target.value},
        )
        logger.info("Job %s moved %s -> %s", job.id, previous.value, target.value)
        return job

    @staticmethod
    async def delete_job(
        db: AsyncSession, company_id: uuid.UUID, job_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> None:
        job = await RecruitmentService.get_job(db, company_id, job_id)
        if job.status != JobStatus.draft:
            raise InvalidStateException("Only draft jobs can be deleted; close the job instead.")
        await create_audit_entry(
            db,
            action=AuditAction.delete,
            entity_type="job",
            entity_id=job.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"title": job.title},
        )
        await db.delete(job)
        await db.flush()

    # ═════════════════════════════════════════════════════════════════
    # Candidates
    # ═════════════════════════════════════════════════════════════════

    @staticmethod
    async def list_candidates(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        job_id: Optional[uuid.UUID] = None,
        status: Optional[CandidateStatus] = None,
        search: Optional[str] = None,
    ) -> PaginatedResponse[CandidateOut]:
        query = select(Candidate).where(Candidate.company_id == company_id).order_by(Candidate.created_at.desc())
        if job_id is not None:
            query = query.where(Candidate.job_id == job_id)
        if status is not None:
            query = query.where(Candidate.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                func.lower(Candidate.first_name).like(pattern)
                | func.lower(Candidate.last_name).like(pattern)
                | func.lower(Candidate.email).like(pattern)
            )
        return await paginate(db, query, pagination, model=Candidate, schema=CandidateOut)

    @staticmethod
    async def get_candidate(db: AsyncSession, company_id: uuid.UUID, candidate_id: uuid.UUID) -> Candidate:
        return await get_for_company(db, Candidate, company_id, candidate_id, "Candidate")

    @staticmethod
    async def add_candidate(
        db: AsyncSession, company_id: uuid.UUID, data: CandidateCreate, *, actor_id: uuid.UUID,
    ) -> Candidate:
        job = await RecruitmentService.get_job(db, company_id, data.job_id)
        if job.status != JobStatus.open:
            raise InvalidStateException("Applications are only accepted for open jobs.")
        email = data.email.lower()
        duplicate = (await db.execute(
            select(Candidate.id).where(Candidate.job_id == job.id, func.lower(Candidate.email) == email)
        )).first()
        if duplicate:
            raise ConflictError("email", email)

        values = data.model_dump()
        values["email"] = email
        candidate = Candidate(
            company_id=company_id,
            status=CandidateStatus.applied,
            status_changed_at=utcnow(),
            **values,
        )
        db.add(candidate)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="candidate",
            entity_id=candidate.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"job_id": str(job.id), "email": email},
        )
        await _notify_job_owner(
            db, job, candidate, actor_id,
            title=f"New candidate for {job.title}",
            message=f"{candidate.first_name} {candidate.last_name} applied for {job.title}.",
        )
        return candidate

    @staticmethod
    async def update_candidate(
        db: AsyncSession,
        company_id: uuid.UUID,
        candidate_id: uuid.UUID,
        data: CandidateUpdate,
        *,
        actor_id: uuid.UUID,
    ) -> Candidate:
        candidate = await RecruitmentService.get_candidate(db, company_id, candidate_id)
        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(candidate, field, value)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="candidate",
            entity_id=candidate.id,
            company_id=company_id,
            user_id=actor_id,
            new_values=changes,
        )
        return candidate

    @staticmethod
    async def change_status(
        db: AsyncSession,
        company_id: uuid.UUID,
        candidate_id: uuid.UUID,
        target: CandidateStatus,
        *,
        actor_id: uuid.UUID,
        rejected_reason: Optional[str] = None,
    ) -> Candidate:
        candidate = await RecruitmentService.get_candidate(db, company_id, candidate_id)
        if not can_transition(candidate.status, target):
            raise InvalidStateException(
                f"Cannot move a candidate from {candidate.status.value} to {target.value}."
            )
        previous = candidate.status
        candidate.status = target
        candidate.status_changed_at = utcnow()
        candidate.status_changed_by = actor_id
        if target == CandidateStatus.rejected:
            candidate.rejected_reason = rejected_reason
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="candidate",
            entity_id=candidate.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"status": previous.value},
            new_values={"status": target.value},
            details={"action_type": "status_change"},
        )
        job = await db.get(Job, candidate.job_id)
        await _notify_job_owner(
            db, job, candidate, actor_id,
            title=f"Candidate {target.value}: {candidate.first_name} {candidate.last_name}",
            message=(
                f"{candidate.first_name} {candidate.last_name} moved from {previous.value} "
                f"to {target.value} for {job.title}."
            ),
        )
        return candidate

    @staticmethod
    async def pipeline_stats(
        db: AsyncSession, company_id: uuid.UUID, job_id: Optional[uuid.UUID] = None,
    ) -> PipelineStats:
        query = select(Candidate.status, func.count(Candidate.id)).where(Candidate.company_id == company_id)
        if job_id is not None:
            query = query.where(Candidate.job_id == job_id)
        by_status = {s.value: 0 for s in CandidateStatus}
        for status, count in (await db.execute(query.group_by(Candidate.status))).all():
            by_status[status.value] = count
        open_jobs = (await db.execute(
            select(func.count(Job.id)).where(Job.company_id == company_id, Job.status == JobStatus.open)
        )).scalar_one()
        return PipelineStats(open_jobs=open_jobs, total_candidates=sum(by_status.values()), by_status=by_status)
