"""Core HR router — Employee and Department API endpoints.

Routes:
    /employees                      — List, create employees
    /employees/me                   — Caller's own employee record
    /employees/my-team              — Caller's direct reports
    /employees/{id}                 — Get, update employee
    /employees/{id}/terminate       — End employment
    /employees/{id}/account         — Create a portal login
    /employees/{id}/direct-reports  — Manager's direct reports
    /departments                    — List, create departments
    /departments/{id}               — Update, delete department
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import AppRole, EmploymentStatus, PermissionAction, PermissionModule
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.core_hr.models import Department
from backend.core_hr.schemas import (
    DepartmentCreate,
    DepartmentResponse,
    DepartmentUpdate,
    EmployeeCreate,
    EmployeeDetail,
    EmployeeListItem,
    EmployeeSummary,
    EmployeeTerminate,
    EmployeeUpdate,
)
from backend.core_hr.service import DepartmentService, EmployeeService
from backend.database import get_db
from backend.dependencies import TenantContext, get_tenant, require_permission

employees_router = APIRouter(prefix="", tags=["employees"])
departments_router = APIRouter(prefix="", tags=["departments"])


# ═════════════════════════════════════════════════════════════════════
# Employee Endpoints
# ═════════════════════════════════════════════════════════════════════


# ── GET /employees — List employees ─────────────────────────────────

@employees_router.get("", response_model=PaginatedResponse[EmployeeListItem])
async def list_employees(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.employees, PermissionAction.read)),
    pagination: PaginationParams = Depends(),
    search: Optional[str] = Query(None, description="Search by name, email, number or title"),
    department_id: Optional[uuid.UUID] = Query(None, description="Filter by department"),
    employment_status: Optional[EmploymentStatus] = Query(None, description="Filter by status"),
    manager_id: Optional[uuid.UUID] = Query(None, description="Filter by manager"),
):
    return await EmployeeService.list_employees(
        db,
        ctx.company_id,
        pagination,
        search=search,
        department_id=department_id,
        employment_status=employment_status,
        manager_id=manager_id,
    )


# ── POST /employees — Create employee ──────────────────────────────

@employees_router.post("", response_model=EmployeeDetail, status_code=201)
async def create_employee(
    body: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.employees, PermissionAction.create)),
):
    employee = await EmployeeService.create_employee(db, ctx.company, body, actor_id=ctx.user_id)
    return await EmployeeService.get_employee(db, ctx.company_id, employee.id)


# ── GET /employees/me — Own record ─────────────────────────────────

@employees_router.get("/me", response_model=EmployeeDetail)
async def my_employee_record(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await EmployeeService.get_employee(db, ctx.company_id, employee.id)


# ── GET /employees/my-team — Caller's direct reports ───────────────

@employees_router.get("/my-team", response_model=list[EmployeeSummary])
async def my_team(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.my_team, PermissionAction.read)),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await EmployeeService.get_direct_reports(db, ctx.company_id, employee.id)


# ── GET /employees/{id} — Employee detail ──────────────────────────

@employees_router.get("/{employee_id}", response_model=EmployeeDetail)
async def get_employee(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.employees, PermissionAction.read)),
):
    return await EmployeeService.get_employee(db, ctx.company_id, employee_id)


# ── PATCH /employees/{id} — Update employee ────────────────────────

@employees_router.patch("/{employee_id}", response_model=EmployeeDetail)
async def update_employee(
    employee_id: uuid.UUID,
    body: EmployeeUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.employees, PermissionAction.update)),
):
    await EmployeeService.update_employee(db, ctx.company_id, employee_id, body, actor_id=ctx.user_id)
    return await EmployeeService.get_employee(db, ctx.company_id, employee_id)


# ── POST /employees/{id}/terminate ─────────────────────────────────

@employees_router.post("/{employee_id}/terminate", response_model=EmployeeDetail)
async def terminate_employee(
    employee_id: uuid.UUID,
    body: EmployeeTerminate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.employees, PermissionAction.delete)),
):
    await EmployeeService.terminate_employee(
        db,
        ctx.company_id,
        employee_id,
        termination_date=body.termination_date,
        reason=body.reason,
        actor_id=ctx.user_id,
    )
    return await EmployeeService.get_employee(db, ctx.company_id, employee_id)


# ── POST /employees/{id}/account — Portal login ────────────────────

@employees_router.post("/{employee_id}/account", response_model=EmployeeDetail)
async def create_employee_account(
    employee_id: uuid.UUID,
    role: AppRole = Query(AppRole.employee),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.users, PermissionAction.create)),
):
    employee = await EmployeeService.get_owned(db, ctx.company_id, employee_id)
    await EmployeeService.create_account(db, ctx.company, employee, role=role, actor_id=ctx.user_id)
    return await EmployeeService.get_employee(db, ctx.company_id, employee_id)


# ── GET /employees/{id}/direct-reports ─────────────────────────────

@employees_router.get("/{employee_id}/direct-reports", response_model=list[EmployeeSummary])
async def direct_reports(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.employees, PermissionAction.read)),
):
    await EmployeeService.get_owned(db, ctx.company_id, employee_id)
    return await EmployeeService.get_direct_reports(db, ctx.company_id, employee_id)


# ═════════════════════════════════════════════════════════════════════
# Department Endpoints
# ═════════════════════════════════════════════════════════════════════


# ── GET /departments ───────────────────────────────────────────────

@departments_router.get("", response_model=list[DepartmentResponse])
async def list_departments(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.departments, PermissionAction.read)),
):
    return await DepartmentService.list_departments(db, ctx.company_id, include_inactive=include_inactive)


# ── POST /departments ──────────────────────────────────────────────

@departments_router.post("", response_model=DepartmentResponse, status_code=201)
async def create_department(
    body: DepartmentCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.departments, PermissionAction.create)),
):
    dept: Department = await DepartmentService.create_department(
        db, ctx.company_id, body.model_dump(), actor_id=ctx.user_id,
    )
    return DepartmentResponse.model_validate(dept)


# ── PATCH /departments/{id} ────────────────────────────────────────

@departments_router.patch("/{department_id}", response_model=DepartmentResponse)
async def update_department(
    department_id: uuid.UUID,
    body: DepartmentUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.departments, PermissionAction.update)),
):
    dept = await DepartmentService.update_department(
        db, ctx.company_id, department_id, body.model_dump(exclude_unset=True), actor_id=ctx.user_id,
    )
    return DepartmentResponse.model_validate(dept)


# ── DELETE /departments/{id} ───────────────────────────────────────

@departments_router.delete("/{department_id}", status_code=204)
async def delete_department(
    department_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(require_permission(PermissionModule.departments, PermissionAction.delete)),
):
    await DepartmentService.delete_department(db, ctx.company_id, department_id, actor_id=ctx.user_id)
