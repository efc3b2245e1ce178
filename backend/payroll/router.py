"""Payroll router — runs, entries, lifecycle, payslips, stats.

Routes:
    /runs                              — List, create runs
    /runs/{id}                         — Get, update, delete (draft) run
    /runs/{id}/entries                 — List, add entries
    /runs/{id}/entries/bulk            — Add all active employees
    /runs/{id}/entries/{entry_id}      — Update, delete an entry
    /runs/{id}/process|complete|fail   — Lifecycle transitions
    /payslips/mine                     — Caller's completed payslips
    /stats                             — Run counts and year-to-date totals
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import PayrollStatus, PermissionAction, PermissionModule
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.core_hr.service import EmployeeService
from backend.database import get_db
from backend.dependencies import TenantContext, get_tenant, require_permission
from backend.payroll.schemas import (
    BulkAddResult,
    PayrollEntryCreate,
    PayrollEntryOut,
    PayrollEntryUpdate,
    PayrollRunCreate,
    PayrollRunOut,
    PayrollRunUpdate,
    PayrollStats,
    PayslipOut,
)
from backend.payroll.service import PayrollService

router = APIRouter(prefix="", tags=["payroll"])

_read = require_permission(PermissionModule.payroll, PermissionAction.read)
_create = require_permission(PermissionModule.payroll, PermissionAction.create)
_update = require_permission(PermissionModule.payroll, PermissionAction.update)
_delete = require_permission(PermissionModule.payroll, PermissionAction.delete)
_process = require_permission(PermissionModule.payroll, PermissionAction.process)


# ═════════════════════════════════════════════════════════════════════
# Runs
# ═════════════════════════════════════════════════════════════════════


@router.get("/runs", response_model=PaginatedResponse[PayrollRunOut])
async def list_runs(
    status: Optional[PayrollStatus] = Query(None),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await PayrollService.list_runs(db, ctx.company_id, pagination, status=status, year=year)


@router.post("/runs", response_model=PayrollRunOut, status_code=201)
async def create_run(
    body: PayrollRunCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await PayrollService.create_run(db, ctx.company, body, actor_id=ctx.user_id)


@router.get("/runs/{run_id}", response_model=PayrollRunOut)
async def get_run(
    run_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await PayrollService.get_run(db, ctx.company_id, run_id)


@router.patch("/runs/{run_id}", response_model=PayrollRunOut)
async def update_run(
    run_id: uuid.UUID,
    body: PayrollRunUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await PayrollService.update_run(db, ctx.company_id, run_id, body, actor_id=ctx.user_id)


@router.delete("/runs/{run_id}", status_code=204)
async def delete_run(
    run_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_delete),
):
    await PayrollService.delete_run(db, ctx.company_id, run_id, actor_id=ctx.user_id)


# ═════════════════════════════════════════════════════════════════════
# Entries
# ═════════════════════════════════════════════════════════════════════


@router.get("/runs/{run_id}/entries", response_model=list[PayrollEntryOut])
async def list_entries(
    run_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await PayrollService.list_entries(db, ctx.company_id, run_id)


@router.post("/runs/{run_id}/entries", response_model=PayrollEntryOut, status_code=201)
async def add_entry(
    run_id: uuid.UUID,
    body: PayrollEntryCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await PayrollService.add_entry(db, ctx.company, run_id, body, actor_id=ctx.user_id)


# ── POST /runs/{id}/entries/bulk ───────────────────────────────────

@router.post("/runs/{run_id}/entries/bulk", response_model=BulkAddResult)
async def bulk_add_entries(
    run_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await PayrollService.bulk_add(db, ctx.company, run_id, actor_id=ctx.user_id)


@router.patch("/runs/{run_id}/entries/{entry_id}", response_model=PayrollEntryOut)
async def update_entry(
    run_id: uuid.UUID,
    entry_id: uuid.UUID,
    body: PayrollEntryUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await PayrollService.update_entry(db, ctx.company, run_id, entry_id, body, actor_id=ctx.user_id)


@router.delete("/runs/{run_id}/entries/{entry_id}", status_code=204)
async def delete_entry(
    run_id: uuid.UUID,
    entry_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    await PayrollService.delete_entry(db, ctx.company_id, run_id, entry_id, actor_id=ctx.user_id)


# ═════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════


@router.post("/runs/{run_id}/process", response_model=PayrollRunOut)
async def process_run(
    run_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_process),
):
    return await PayrollService.process_run(db, ctx.company_id, run_id, actor_id=ctx.user_id)


@router.post("/runs/{run_id}/complete", response_model=PayrollRunOut)
async def complete_run(
    run_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_process),
):
    return await PayrollService.complete_run(db, ctx.company, run_id, actor_id=ctx.user_id)


@router.post("/runs/{run_id}/fail", response_model=PayrollRunOut)
async def fail_run(
    run_id: uuid.UUID,
    reason: Optional[str] = Query(None, max_length=1000),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_process),
):
    return await PayrollService.fail_run(db, ctx.company_id, run_id, actor_id=ctx.user_id, reason=reason)


# ═════════════════════════════════════════════════════════════════════
# Payslips / stats
# ═════════════════════════════════════════════════════════════════════


@router.get("/payslips/mine", response_model=list[PayslipOut])
async def my_payslips(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await PayrollService.list_payslips(db, ctx.company_id, employee.id)


@router.get("/stats", response_model=PayrollStats)
async def payroll_stats(
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await PayrollService.get_stats(db, ctx.company_id)
