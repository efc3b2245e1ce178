"""Time tracking router — clocking, breaks, entries, schedules.

Routes:
    /today                    — Caller's entry for today
    /clock-in, /clock-out     — Start / finish the working day
    /breaks/start|end         — Break handling
    /entries/mine             — Caller's entries
    /entries                  — Team (managers) or company (HR) entries
    /entries/{id}             — Detail, correction
    /entries/{id}/approve     — Manager / HR approval
    /summary                  — Hours worked in a period
    /corrections              — Employee correction requests and their review
    /schedules                — Work schedules
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import AppRole, PermissionAction, PermissionModule, TimeCorrectionStatus
from backend.common.exceptions import ForbiddenException
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.core_hr.service import EmployeeService
from backend.database import get_db
from backend.dependencies import TenantContext, require_permission, require_role
from backend.time_tracking.schemas import (
    ClockRequest,
    TimeCorrectionRequestCreate,
    TimeCorrectionRequestOut,
    TimeCorrectionReview,
    TimeEntryCorrection,
    TimeEntryOut,
    TimeSummary,
    WorkScheduleIn,
    WorkScheduleOut,
)
from backend.time_tracking.service import TimeTrackingService

router = APIRouter(prefix="", tags=["time-tracking"])

_read = require_permission(PermissionModule.time_tracking, PermissionAction.read)
_create = require_permission(PermissionModule.time_tracking, PermissionAction.create)
_update = require_permission(PermissionModule.time_tracking, PermissionAction.update)
_approve = require_permission(PermissionModule.time_tracking, PermissionAction.approve)
_hr_only = [Depends(require_role(AppRole.hr_manager))]


async def _team_scope(db: AsyncSession, ctx: TenantContext) -> Optional[list[uuid.UUID]]:
    """None for HR (whole company); direct reports for managers; self otherwise."""
    if ctx.has_role(AppRole.hr_manager):
        return None
    me = await EmployeeService.get_for_user(db, ctx.company_id, ctx.user_id)
    if me is None:
        return []
    if ctx.has_role(AppRole.manager):
        return [me.id] + [e.id for e in await EmployeeService.get_direct_reports(db, ctx.company_id, me.id)]
    return [me.id]


# ═════════════════════════════════════════════════════════════════════
# Clocking
# ═════════════════════════════════════════════════════════════════════


@router.get("/today", response_model=Optional[TimeEntryOut])
async def today_entry(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await TimeTrackingService.get_today(db, employee)


# ── POST /clock-in ─────────────────────────────────────────────────

@router.post("/clock-in", response_model=TimeEntryOut, status_code=201)
async def clock_in(
    body: Optional[ClockRequest] = None,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await TimeTrackingService.clock_in(db, employee, body)


# ── POST /clock-out ────────────────────────────────────────────────

@router.post("/clock-out", response_model=TimeEntryOut)
async def clock_out(
    body: Optional[ClockRequest] = None,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await TimeTrackingService.clock_out(db, employee, body)


@router.post("/breaks/start", response_model=TimeEntryOut)
async def start_break(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await TimeTrackingService.start_break(db, employee)


@router.post("/breaks/end", response_model=TimeEntryOut)
async def end_break(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await TimeTrackingService.end_break(db, employee)


# ═════════════════════════════════════════════════════════════════════
# Entries
# ═════════════════════════════════════════════════════════════════════


@router.get("/entries/mine", response_model=PaginatedResponse[TimeEntryOut])
async def my_entries(
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await TimeTrackingService.list_entries(
        db, ctx.company_id, pagination, employee_id=employee.id, from_date=from_date, to_date=to_date,
    )


# ── GET /entries — team or company ─────────────────────────────────

@router.get("/entries", response_model=PaginatedResponse[TimeEntryOut])
async def list_entries(
    employee_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    is_approved: Optional[bool] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await TimeTrackingService.list_entries(
        db,
        ctx.company_id,
        pagination,
        employee_ids=await _team_scope(db, ctx),
        employee_id=employee_id,
        from_date=from_date,
        to_date=to_date,
        is_approved=is_approved,
    )


@router.get("/entries/{entry_id}", response_model=TimeEntryOut)
async def get_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    entry = await TimeTrackingService.get_entry(db, ctx.company_id, entry_id)
    scope = await _team_scope(db, ctx)
    if scope is not None and entry.employee_id not in scope:
        raise ForbiddenException("You can only view your own or your team's time entries.")
    return entry


# ── PATCH /entries/{id} — correction ───────────────────────────────

@router.patch("/entries/{entry_id}", response_model=TimeEntryOut, dependencies=_hr_only)
async def correct_entry(
    entry_id: uuid.UUID,
    body: TimeEntryCorrection,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await TimeTrackingService.correct_entry(db, ctx.company_id, entry_id, body, actor_id=ctx.user_id)


@router.post("/entries/{entry_id}/approve", response_model=TimeEntryOut)
async def approve_entry(
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_approve),
):
    me = await EmployeeService.get_for_user(db, ctx.company_id, ctx.user_id)
    return await TimeTrackingService.approve_entry(
        db,
        ctx.company_id,
        entry_id,
        approver_id=ctx.user_id,
        approver_employee_id=me.id if me else None,
        can_approve_all=ctx.has_role(AppRole.hr_manager),
    )


# ── GET /summary ───────────────────────────────────────────────────

@router.get("/summary", response_model=TimeSummary)
async def time_summary(
    from_date: date = Query(...),
    to_date: date = Query(...),
    employee_id: Optional[uuid.UUID] = Query(None, description="Defaults to the caller"),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    if employee_id is None:
        employee_id = (await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)).id
    scope = await _team_scope(db, ctx)
    if scope is not None and employee_id not in scope:
        raise ForbiddenException("You can only view your own or your team's time summary.")
    return await TimeTrackingService.summarize(db, ctx.company_id, employee_id, from_date, to_date)


# ═════════════════════════════════════════════════════════════════════
# Correction requests
# ═════════════════════════════════════════════════════════════════════


@router.post("/corrections", response_model=TimeCorrectionRequestOut, status_code=201)
async def request_correction(
    body: TimeCorrectionRequestCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await TimeTrackingService.create_correction_request(db, employee, body, actor_id=ctx.user_id)


@router.get("/corrections/mine", response_model=PaginatedResponse[TimeCorrectionRequestOut])
async def my_corrections(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await TimeTrackingService.list_correction_requests(
        db, ctx.company_id, pagination, employee_id=employee.id,
    )


# ── GET /corrections — team or company queue ───────────────────────

@router.get("/corrections", response_model=PaginatedResponse[TimeCorrectionRequestOut])
async def list_corrections(
    status: Optional[TimeCorrectionStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_approve),
):
    return await TimeTrackingService.list_correction_requests(
        db,
        ctx.company_id,
        pagination,
        employee_ids=await _team_scope(db, ctx),
        employee_id=employee_id,
        status=status,
    )


@router.get("/corrections/{request_id}", response_model=TimeCorrectionRequestOut)
async def get_correction(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    correction = await TimeTrackingService.get_correction_request(db, ctx.company_id, request_id)
    scope = await _team_scope(db, ctx)
    if scope is not None and correction.employee_id not in scope:
        raise ForbiddenException("You can only view your own or your team's correction requests.")
    return correction


async def _review(
    db: AsyncSession, ctx: TenantContext, request_id: uuid.UUID, target: TimeCorrectionStatus, notes: Optional[str],
):
    return await TimeTrackingService.review_correction_request(
        db,
        ctx.company_id,
        request_id,
        target,
        reviewer_id=ctx.user_id,
        can_review_all=ctx.has_role(AppRole.hr_manager),
        notes=notes,
    )


@router.post("/corrections/{request_id}/approve", response_model=TimeCorrectionRequestOut)
async def approve_correction(
    request_id: uuid.UUID,
    body: Optional[TimeCorrectionReview] = None,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_approve),
):
    return await _review(db, ctx, request_id, TimeCorrectionStatus.approved, body.review_notes if body else None)


@router.post("/corrections/{request_id}/reject", response_model=TimeCorrectionRequestOut)
async def reject_correction(
    request_id: uuid.UUID,
    body: TimeCorrectionReview,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_approve),
):
    return await _review(db, ctx, request_id, TimeCorrectionStatus.rejected, body.review_notes)


@router.post("/corrections/{request_id}/clarify", response_model=TimeCorrectionRequestOut)
async def request_clarification(
    request_id: uuid.UUID,
    body: TimeCorrectionReview,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_approve),
):
    return await _review(db, ctx, request_id, TimeCorrectionStatus.clarification_needed, body.review_notes)


# ═════════════════════════════════════════════════════════════════════
# Work schedules
# ═════════════════════════════════════════════════════════════════════


@router.get("/schedules", response_model=list[WorkScheduleOut])
async def list_schedules(
    employee_id: Optional[uuid.UUID] = Query(None, description="Omit for the company default"),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await TimeTrackingService.list_schedules(db, ctx.company_id, employee_id=employee_id)


@router.put("/schedules", response_model=WorkScheduleOut, dependencies=_hr_only)
async def upsert_schedule(
    body: WorkScheduleIn,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await TimeTrackingService.upsert_schedule(db, ctx.company_id, body, actor_id=ctx.user_id)


@router.delete("/schedules/{schedule_id}", status_code=204, dependencies=_hr_only)
async def delete_schedule(
    schedule_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    await TimeTrackingService.delete_schedule(db, ctx.company_id, schedule_id, actor_id=ctx.user_id)
