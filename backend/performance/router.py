"""Performance router — reviews and goals.

Routes:
    /reviews                      — List (scoped), create
    /reviews/mine                 — Reviews of the caller
    /reviews/to-complete          — Reviews assigned to the caller
    /reviews/stats                — Counts by status, average rating
    /reviews/{id}                 — Detail, edit, delete (draft)
    /reviews/{id}/start|submit    — Reviewer workflow
    /reviews/{id}/acknowledge     — Employee acknowledgement
    /goals                        — List (scoped), create
    /goals/mine                   — Caller's goals
    /goals/{id}                   — Detail, edit
    /goals/{id}/progress          — Progress update (owner or manager)
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import AppRole, GoalStatus, PermissionAction, PermissionModule, ReviewStatus
from backend.common.exceptions import ForbiddenException
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.core_hr.service import EmployeeService
from backend.database import get_db
from backend.dependencies import (
    TenantContext,
    ensure_can_write,
    require_module,
    require_permission,
)
from backend.performance.schemas import (
    GoalCreate,
    GoalOut,
    GoalProgress,
    GoalUpdate,
    ReviewAcknowledge,
    ReviewCreate,
    ReviewOut,
    ReviewStats,
    ReviewSubmit,
    ReviewUpdate,
)
from backend.performance.service import PerformanceService
from backend.permissions.service import PermissionService

router = APIRouter(prefix="", tags=["performance"])

_module = require_module(PermissionModule.performance)
_read = require_permission(PermissionModule.performance, PermissionAction.read)
_create = require_permission(PermissionModule.performance, PermissionAction.create)
_update = require_permission(PermissionModule.performance, PermissionAction.update)
_delete = require_permission(PermissionModule.performance, PermissionAction.delete)


async def _team_scope(db: AsyncSession, ctx: TenantContext) -> Optional[list[uuid.UUID]]:
    if ctx.has_role(AppRole.hr_manager):
        return None
    me = await EmployeeService.get_for_user(db, ctx.company_id, ctx.user_id)
    if me is None:
        return []
    return [me.id] + [e.id for e in await EmployeeService.get_direct_reports(db, ctx.company_id, me.id)]


async def _ensure_in_scope(db: AsyncSession, ctx: TenantContext, employee_id: uuid.UUID) -> None:
    scope = await _team_scope(db, ctx)
    if scope is not None and employee_id not in scope:
        raise ForbiddenException("You can only manage performance records for your team.")


async def _my_employee_id(db: AsyncSession, ctx: TenantContext) -> Optional[uuid.UUID]:
    me = await EmployeeService.get_for_user(db, ctx.company_id, ctx.user_id)
    return me.id if me else None


# ═════════════════════════════════════════════════════════════════════
# Reviews
# ═════════════════════════════════════════════════════════════════════


@router.get("/reviews", response_model=PaginatedResponse[ReviewOut])
async def list_reviews(
    employee_id: Optional[uuid.UUID] = Query(None),
    status: Optional[ReviewStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await PerformanceService.list_reviews(
        db,
        ctx.company_id,
        pagination,
        employee_ids=await _team_scope(db, ctx),
        employee_id=employee_id,
        status=status,
    )


@router.get("/reviews/mine", response_model=PaginatedResponse[ReviewOut])
async def my_reviews(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await PerformanceService.list_reviews(db, ctx.company_id, pagination, employee_id=employee.id)


@router.get("/reviews/to-complete", response_model=PaginatedResponse[ReviewOut])
async def reviews_to_complete(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await PerformanceService.list_reviews(db, ctx.company_id, pagination, reviewer_id=employee.id)


@router.get("/reviews/stats", response_model=ReviewStats)
async def review_stats(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await PerformanceService.review_stats(db, ctx.company_id, await _team_scope(db, ctx))


# ── POST /reviews ──────────────────────────────────────────────────

@router.post("/reviews", response_model=ReviewOut, status_code=201)
async def create_review(
    body: ReviewCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    await _ensure_in_scope(db, ctx, body.employee_id)
    return await PerformanceService.create_review(db, ctx.company_id, body, actor_id=ctx.user_id)


@router.get("/reviews/{review_id}", response_model=ReviewOut)
async def get_review(
    review_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    review = await PerformanceService.get_review(db, ctx.company_id, review_id)
    me = await _my_employee_id(db, ctx)
    if me not in (review.employee_id, review.reviewer_id):
        if not await PermissionService.has_permission(
            db, ctx.user_id, ctx.company_id, PermissionModule.performance, PermissionAction.read,
        ):
            raise ForbiddenException("You cannot view this review.")
        await _ensure_in_scope(db, ctx, review.employee_id)
    return review


@router.patch("/reviews/{review_id}", response_model=ReviewOut)
async def update_review(
    review_id: uuid.UUID,
    body: ReviewUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    review = await PerformanceService.get_review(db, ctx.company_id, review_id)
    await _ensure_in_scope(db, ctx, review.employee_id)
    return await PerformanceService.update_review(db, ctx.company_id, review_id, body, actor_id=ctx.user_id)


@router.delete("/reviews/{review_id}", status_code=204)
async def delete_review(
    review_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_delete),
):
    await PerformanceService.delete_review(db, ctx.company_id, review_id, actor_id=ctx.user_id)


# ── Reviewer / employee workflow ───────────────────────────────────

@router.post("/reviews/{review_id}/start", response_model=ReviewOut)
async def start_review(
    review_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await PerformanceService.start_review(
        db,
        ctx.company_id,
        review_id,
        actor_id=ctx.user_id,
        actor_employee_id=await _my_employee_id(db, ctx),
        is_hr=ctx.has_role(AppRole.hr_manager),
    )


@router.post("/reviews/{review_id}/submit", response_model=ReviewOut)
async def submit_review(
    review_id: uuid.UUID,
    body: ReviewSubmit,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await PerformanceService.submit_review(
        db,
        ctx.company_id,
        review_id,
        body,
        actor_id=ctx.user_id,
        actor_employee_id=await _my_employee_id(db, ctx),
    )


@router.post("/reviews/{review_id}/acknowledge", response_model=ReviewOut)
async def acknowledge_review(
    review_id: uuid.UUID,
    body: ReviewAcknowledge,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    await ensure_can_write(db, ctx.company)
    return await PerformanceService.acknowledge_review(
        db,
        ctx.company_id,
        review_id,
        body.employee_comments,
        actor_id=ctx.user_id,
        actor_employee_id=await _my_employee_id(db, ctx),
    )


# ═════════════════════════════════════════════════════════════════════
# Goals
# ═════════════════════════════════════════════════════════════════════


@router.get("/goals", response_model=PaginatedResponse[GoalOut])
async def list_goals(
    employee_id: Optional[uuid.UUID] = Query(None),
    status: Optional[GoalStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await PerformanceService.list_goals(
        db,
        ctx.company_id,
        pagination,
        employee_ids=await _team_scope(db, ctx),
        employee_id=employee_id,
        status=status,
    )


@router.get("/goals/mine", response_model=PaginatedResponse[GoalOut])
async def my_goals(
    status: Optional[GoalStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await PerformanceService.list_goals(
        db, ctx.company_id, pagination, employee_id=employee.id, status=status,
    )


# ── POST /goals — own goal, or a report's with performance:create ──

@router.post("/goals", response_model=GoalOut, status_code=201)
async def create_goal(
    body: GoalCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    await ensure_can_write(db, ctx.company)
    me = await _my_employee_id(db, ctx)
    employee_id = body.employee_id or me
    if employee_id is None:
        employee_id = (await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)).id
    if employee_id != me:
        if not await PermissionService.has_permission(
            db, ctx.user_id, ctx.company_id, PermissionModule.performance, PermissionAction.create,
        ):
            raise ForbiddenException(
                detail="Permission 'performance:create' is required.", code="42501",
            )
        await _ensure_in_scope(db, ctx, employee_id)
    return await PerformanceService.create_goal(db, ctx.company_id, employee_id, body, actor_id=ctx.user_id)


async def _goal_for_write(db: AsyncSession, ctx: TenantContext, goal_id: uuid.UUID):
    goal = await PerformanceService.get_goal(db, ctx.company_id, goal_id)
    if goal.employee_id == await _my_employee_id(db, ctx):
        return goal
    if not await PermissionService.has_permission(
        db, ctx.user_id, ctx.company_id, PermissionModule.performance, PermissionAction.update,
    ):
        raise ForbiddenException(detail="Permission 'performance:update' is required.", code="42501")
    await _ensure_in_scope(db, ctx, goal.employee_id)
    return goal


@router.get("/goals/{goal_id}", response_model=GoalOut)
async def get_goal(
    goal_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    goal = await PerformanceService.get_goal(db, ctx.company_id, goal_id)
    if goal.employee_id != await _my_employee_id(db, ctx):
        if not await PermissionService.has_permission(
            db, ctx.user_id, ctx.company_id, PermissionModule.performance, PermissionAction.read,
        ):
            raise ForbiddenException("You cannot view this goal.")
        await _ensure_in_scope(db, ctx, goal.employee_id)
    return goal


@router.patch("/goals/{goal_id}", response_model=GoalOut)
async def update_goal(
    goal_id: uuid.UUID,
    body: GoalUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    await ensure_can_write(db, ctx.company)
    await _goal_for_write(db, ctx, goal_id)
    return await PerformanceService.update_goal(db, ctx.company_id, goal_id, body, actor_id=ctx.user_id)


@router.post("/goals/{goal_id}/progress", response_model=GoalOut)
async def update_goal_progress(
    goal_id: uuid.UUID,
    body: GoalProgress,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    await ensure_can_write(db, ctx.company)
    await _goal_for_write(db, ctx, goal_id)
    return await PerformanceService.update_progress(db, ctx.company_id, goal_id, body, actor_id=ctx.user_id)
