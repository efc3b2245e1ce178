"""Leave router — types, balances, requests, approvals, policy export/import.

Routes:
    /types                          — List, create leave types
    /types/{id}                     — Update, delete a leave type
    /balances                       — Caller's balances
    /balances/adjust                — HR manual adjustment
    /balances/accrue                — Allocate a year's balances
    /employees/{id}/balances        — Another employee's balances
    /requests                       — Submit; list team / company requests
    /requests/mine                  — Caller's requests
    /requests/{id}                  — Request detail
    /requests/{id}/approve|reject   — Reviewer decisions
    /requests/{id}/cancel           — Owner cancellation
    /policies/export|import         — Leave policy JSON
"""


import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import AppRole, LeaveStatus, PermissionAction, PermissionModule
from backend.common.exceptions import ForbiddenException
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.core_hr.service import EmployeeService
from backend.database import get_db
from backend.dependencies import TenantContext, require_permission, require_role
from backend.leave.schemas import (
    AccrualResult,
    BalanceAdjustRequest,
    LeaveBalanceOut,
    LeavePolicyExport,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveReviewRequest,
    LeaveTypeCreate,
    LeaveTypeOut,
    LeaveTypeUpdate,
    PolicyImportResult,
)
from backend.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])

_read = require_permission(PermissionModule.leave, PermissionAction.read)
_create = require_permission(PermissionModule.leave, PermissionAction.create)
_update = require_permission(PermissionModule.leave, PermissionAction.update)
_delete = require_permission(PermissionModule.leave, PermissionAction.delete)
_approve = require_permission(PermissionModule.leave, PermissionAction.approve)
_hr_only = [Depends(require_role(AppRole.hr_manager))]


def _year(year: Optional[int]) -> int:
    return year or datetime.now(timezone.utc).year


# ═════════════════════════════════════════════════════════════════════
# Leave types
# ═════════════════════════════════════════════════════════════════════


@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await LeaveService.list_types(db, ctx.company_id, include_inactive=include_inactive)


@router.post("/types", response_model=LeaveTypeOut, status_code=201, dependencies=_hr_only)
async def create_leave_type(
    body: LeaveTypeCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await LeaveService.create_type(db, ctx.company_id, body, actor_id=ctx.user_id)


@router.patch("/types/{leave_type_id}", response_model=LeaveTypeOut, dependencies=_hr_only)
async def update_leave_type(
    leave_type_id: uuid.UUID,
    body: LeaveTypeUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await LeaveService.update_type(db, ctx.company_id, leave_type_id, body, actor_id=ctx.user_id)


@router.delete("/types/{leave_type_id}", status_code=204, dependencies=_hr_only)
async def delete_leave_type(
    leave_type_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_delete),
):
    await LeaveService.delete_type(db, ctx.company_id, leave_type_id, actor_id=ctx.user_id)


# ═════════════════════════════════════════════════════════════════════
# Balances
# ═════════════════════════════════════════════════════════════════════


# ── GET /balances — own balances ───────────────────────────────────

@router.get("/balances", response_model=list[LeaveBalanceOut])
async def my_balances(
    year: Optional[int] = Query(None, description="Leave year; defaults to current year"),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await LeaveService.get_balances(db, ctx.company_id, employee.id, _year(year))


@router.post("/balances/adjust", response_model=LeaveBalanceOut, dependencies=_hr_only)
async def adjust_balance(
    body: BalanceAdjustRequest,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await LeaveService.adjust_balance(db, ctx.company_id, body, actor_id=ctx.user_id)


@router.post("/balances/accrue", response_model=AccrualResult, dependencies=_hr_only)
async def accrue_balances(
    year: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await LeaveService.accrue_balances(db, ctx.company_id, _year(year), actor_id=ctx.user_id)


@router.get("/employees/{employee_id}/balances", response_model=list[LeaveBalanceOut])
async def employee_balances(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_approve),
):
    return await LeaveService.get_balances(db, ctx.company_id, employee_id, _year(year))


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


# ── POST /requests — submit ────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
async def create_leave_request(
    body: LeaveRequestCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await LeaveService.create_request(db, ctx.company, employee, body, actor_id=ctx.user_id)


# ── GET /requests/mine ─────────────────────────────────────────────

@router.get("/requests/mine", response_model=PaginatedResponse[LeaveRequestOut])
async def my_leave_requests(
    status: Optional[LeaveStatus] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await LeaveService.list_requests(
        db, ctx.company_id, pagination, employee_id=employee.id, status=status,
    )


# ── GET /requests — team (managers) or company (HR) ────────────────

@router.get("/requests", response_model=PaginatedResponse[LeaveRequestOut])
async def list_leave_requests(
    status: Optional[LeaveStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_approve),
):
    scope: Optional[list[uuid.UUID]] = None
    if not ctx.has_role(AppRole.hr_manager):
        me = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
        scope = [e.id for e in await EmployeeService.get_direct_reports(db, ctx.company_id, me.id)]
    return await LeaveService.list_requests(
        db,
        ctx.company_id,
        pagination,
        employee_ids=scope,
        employee_id=employee_id,
        status=status,
        leave_type_id=leave_type_id,
        from_date=from_date,
        to_date=to_date,
    )


# ── GET /requests/{id} ─────────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    leave_request = await LeaveService.get_request(db, ctx.company_id, request_id)
    if not ctx.has_role(AppRole.manager):
        employee = await EmployeeService.get_for_user(db, ctx.company_id, ctx.user_id)
        if employee is None or employee.id != leave_request.employee_id:
            raise ForbiddenException("You can only view your own leave requests.")
    return leave_request


# ── POST /requests/{id}/approve ────────────────────────────────────

@router.post("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave_request(
    request_id: uuid.UUID,
    body: Optional[LeaveReviewRequest] = None,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_approve),
):
    return await LeaveService.approve_request(
        db,
        ctx.company_id,
        request_id,
        reviewer_id=ctx.user_id,
        can_review_all=ctx.has_role(AppRole.hr_manager),
        notes=body.notes if body else None,
    )


# ── POST /requests/{id}/reject ─────────────────────────────────────

@router.post("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave_request(
    request_id: uuid.UUID,
    body: Optional[LeaveReviewRequest] = None,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_approve),
):
    return await LeaveService.reject_request(
        db,
        ctx.company_id,
        request_id,
        reviewer_id=ctx.user_id,
        can_review_all=ctx.has_role(AppRole.hr_manager),
        notes=body.notes if body else None,
    )


# ── POST /requests/{id}/cancel ─────────────────────────────────────

@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await LeaveService.cancel_request(db, ctx.company_id, request_id, user_id=ctx.user_id)


# ═════════════════════════════════════════════════════════════════════
# Policy export / import
# ═════════════════════════════════════════════════════════════════════


@router.get("/policies/export", response_model=LeavePolicyExport)
async def export_leave_policies(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await LeaveService.export_policies(db, ctx.company)


@router.post("/policies/import", response_model=PolicyImportResult, dependencies=_hr_only)
async def import_leave_policies(
    payload: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await LeaveService.import_policies(db, ctx.company_id, payload, actor_id=ctx.user_id)
