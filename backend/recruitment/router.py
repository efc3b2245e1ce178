"""Recruitment router — jobs and candidates.

Routes:
    /jobs                         — List, create
    /jobs/{id}                    — Detail, edit, delete (draft)
    /jobs/{id}/publish|hold|close — Job lifecycle
    /candidates                   — List, add an application
    /candidates/{id}              — Detail, edit (rating / notes)
    /candidates/{id}/status       — Pipeline move
    /stats                        — Pipeline counts
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import CandidateStatus, JobStatus, PermissionAction, PermissionModule
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.database import get_db
from backend.dependencies import TenantContext, require_permission
from backend.recruitment.schemas import (
    CandidateCreate,
    CandidateOut,
    CandidateStatusChange,
    CandidateUpdate,
    JobCreate,
    JobOut,
    JobUpdate,
    PipelineStats,
)
from backend.recruitment.service import RecruitmentService

router = APIRouter(prefix="", tags=["recruitment"])

_read = require_permission(PermissionModule.recruitment, PermissionAction.read)
_create = require_permission(PermissionModule.recruitment, PermissionAction.create)
_update = require_permission(PermissionModule.recruitment, PermissionAction.update)
_delete = require_permission(PermissionModule.recruitment, PermissionAction.delete)


# ═════════════════════════════════════════════════════════════════════
# Jobs
# ═════════════════════════════════════════════════════════════════════


@router.get("/jobs", response_model=PaginatedResponse[JobOut])
async def list_jobs(
    status: Optional[JobStatus] = Query(None),
    department_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await RecruitmentService.list_jobs(
        db, ctx.company_id, pagination, status=status, department_id=department_id,
    )


@router.post("/jobs", response_model=JobOut, status_code=201)
async def create_job(
    body: JobCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await RecruitmentService.create_job(db, ctx.company, body, actor_id=ctx.user_id)


@router.get("/jobs/{job_id}", response_model=JobOut)
async def get_job(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await RecruitmentService.get_job(db, ctx.company_id, job_id)


@router.patch("/jobs/{job_id}", response_model=JobOut)
async def update_job(
    job_id: uuid.UUID,
    body: JobUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await RecruitmentService.update_job(db, ctx.company_id, job_id, body, actor_id=ctx.user_id)


@router.delete("/jobs/{job_id}", status_code=204)
async def delete_job(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_delete),
):
    await RecruitmentService.delete_job(db, ctx.company_id, job_id, actor_id=ctx.user_id)


# ── Job lifecycle ──────────────────────────────────────────────────

@router.post("/jobs/{job_id}/publish", response_model=JobOut)
async def publish_job(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await RecruitmentService.set_job_status(db, ctx.company_id, job_id, JobStatus.open, actor_id=ctx.user_id)


@router.post("/jobs/{job_id}/hold", response_model=JobOut)
async def hold_job(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await RecruitmentService.set_job_status(
        db, ctx.company_id, job_id, JobStatus.on_hold, actor_id=ctx.user_id,
    )


@router.post("/jobs/{job_id}/close", response_model=JobOut)
async def close_job(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await RecruitmentService.set_job_status(
        db, ctx.company_id, job_id, JobStatus.closed, actor_id=ctx.user_id,
    )


# ═════════════════════════════════════════════════════════════════════
# Candidates
# ═════════════════════════════════════════════════════════════════════


@router.get("/candidates", response_model=PaginatedResponse[CandidateOut])
async def list_candidates(
    job_id: Optional[uuid.UUID] = Query(None),
    status: Optional[CandidateStatus] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await RecruitmentService.list_candidates(
        db, ctx.company_id, pagination, job_id=job_id, status=status, search=search,
    )


@router.post("/candidates", response_model=CandidateOut, status_code=201)
async def add_candidate(
    body: CandidateCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await RecruitmentService.add_candidate(db, ctx.company_id, body, actor_id=ctx.user_id)


@router.get("/candidates/{candidate_id}", response_model=CandidateOut)
async def get_candidate(
    candidate_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await RecruitmentService.get_candidate(db, ctx.company_id, candidate_id)


@router.patch("/candidates/{candidate_id}", response_model=CandidateOut)
async def update_candidate(
    candidate_id: uuid.UUID,
    body: CandidateUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await RecruitmentService.update_candidate(db, ctx.company_id, candidate_id, body, actor_id=ctx.user_id)


@router.post("/candidates/{candidate_id}/status", response_model=CandidateOut)
async def change_candidate_status(
    candidate_id: uuid.UUID,
    body: CandidateStatusChange,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await RecruitmentService.change_status(
        db,
        ctx.company_id,
        candidate_id,
        body.status,
        actor_id=ctx.user_id,
        rejected_reason=body.rejected_reason,
    )


@router.get("/stats", response_model=PipelineStats)
async def pipeline_stats(
    job_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await RecruitmentService.pipeline_stats(db, ctx.company_id, job_id)
