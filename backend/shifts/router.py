"""Shift router — shift templates and employee shift assignments.

Routes:
    /                         — List / create shifts
    /default                  — The company default (created on first use)
    /mine                     — Caller's shift for a day
    /{id}                     — Detail, update, delete
    /assignments              — List / create assignments
    /assignments/{id}/end     — Close an assignment
    /assignments/{id}         — Delete an assignment
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import AppRole, PermissionAction, PermissionModule
from backend.common.exceptions import ForbiddenException
from backend.common.models import utcnow
from backend.core_hr.service import EmployeeService
from backend.database import get_db
from backend.dependencies import TenantContext, require_permission
from backend.shifts.schemas import (
    ShiftAssignmentCreate,
    ShiftAssignmentEnd,
    ShiftAssignmentOut,
    ShiftCreate,
    ShiftOut,
    ShiftUpdate,
)
from backend.shifts.service import ShiftService

router = APIRouter(prefix="", tags=["shifts"])

_read = require_permission(PermissionModule.shifts, PermissionAction.read)
_create = require_permission(PermissionModule.shifts, PermissionAction.create)
_update = require_permission(PermissionModule.shifts, PermissionAction.update)
_delete = require_permission(PermissionModule.shifts, PermissionAction.delete)


# ═════════════════════════════════════════════════════════════════════
# Shifts
# ═════════════════════════════════════════════════════════════════════


@router.get("", response_model=list[ShiftOut])
async def list_shifts(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await ShiftService.list_shifts(db, ctx.company_id, active_only=active_only)


@router.post("", response_model=ShiftOut, status_code=201)
async def create_shift(
    body: ShiftCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await ShiftService.create_shift(db, ctx.company_id, body, actor_id=ctx.user_id)


# ── POST /default — ensure the company default exists ──────────────

@router.post("/default", response_model=ShiftOut)
async def ensure_default_shift(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await ShiftService.ensure_default_shift(db, ctx.company_id, actor_id=ctx.user_id)


@router.get("/mine", response_model=Optional[ShiftOut])
async def my_shift(
    day: Optional[date] = Query(None, description="Defaults to today"),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await ShiftService.shift_for_date(db, ctx.company_id, employee.id, day or utcnow().date())


# ═════════════════════════════════════════════════════════════════════
# Assignments
# ═════════════════════════════════════════════════════════════════════


@router.get("/assignments", response_model=list[ShiftAssignmentOut])
async def list_assignments(
    employee_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    if not ctx.has_role(AppRole.hr_manager):
        me = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
        if employee_id is not None and employee_id != me.id:
            raise ForbiddenException("You can only view your own shift assignments.")
        employee_id = me.id
    return await ShiftService.list_assignments(db, ctx.company_id, employee_id=employee_id)


@router.post("/assignments", response_model=ShiftAssignmentOut, status_code=201)
async def assign_shift(
    body: ShiftAssignmentCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await ShiftService.assign_shift(db, ctx.company_id, body, actor_id=ctx.user_id)


@router.post("/assignments/{assignment_id}/end", response_model=ShiftAssignmentOut)
async def end_assignment(
    assignment_id: uuid.UUID,
    body: ShiftAssignmentEnd,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await ShiftService.end_assignment(
        db, ctx.company_id, assignment_id, body.effective_to, actor_id=ctx.user_id,
    )


@router.delete("/assignments/{assignment_id}", status_code=204)
async def delete_assignment(
    assignment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_delete),
):
    await ShiftService.delete_assignment(db, ctx.company_id, assignment_id, actor_id=ctx.user_id)


# ═════════════════════════════════════════════════════════════════════
# Single shift
# ═════════════════════════════════════════════════════════════════════


@router.get("/{shift_id}", response_model=ShiftOut)
async def get_shift(
    shift_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await ShiftService.get_shift(db, ctx.company_id, shift_id)


@router.patch("/{shift_id}", response_model=ShiftOut)
async def update_shift(
    shift_id: uuid.UUID,
    body: ShiftUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await ShiftService.update_shift(db, ctx.company_id, shift_id, body, actor_id=ctx.user_id)


@router.delete("/{shift_id}", status_code=204)
async def delete_shift(
    shift_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_delete),
):
    await ShiftService.delete_shift(db, ctx.company_id, shift_id, actor_id=ctx.user_id)
