"""Leave service layer — balance engine, leave requests, approvals, policy import.

Business logic:
  - Working-day counting (weekends excluded, half-day start/end = 0.5)
  - Balances per (employee, type, year), auto-created from ``default_days``
  - pending → approved / rejected / canceled with balance bookkeeping
  - Yearly accrual with carry-over
  - Leave policy export / import as JSON
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.common.audit import create_audit_entry
from backend.common.constants import AuditAction, EmploymentStatus, LeaveStatus
from backend.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from backend.common.models import get_for_company
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.companies.models import Company
from backend.core_hr.models import Employee
from backend.emails.service import EmailService
from backend.leave.models import LeaveBalance, LeaveRequest, LeaveType
from backend.leave.schemas import (
    AccrualResult,
    BalanceAdjustRequest,
    LeaveBalanceOut,
    LeavePolicyExport,
    LeavePolicyItem,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveTypeCreate,
    LeaveTypeUpdate,
    PolicyImportError,
    PolicyImportResult,
)
from backend.notifications.service import (
    notify_leave_approved,
    notify_leave_rejected,
    notify_leave_request,
)

logger = logging.getLogger(__name__)

POLICY_FORMAT_VERSION = "1.0"
HALF = Decimal("0.5")


def count_leave_days(
    start: date,
    end: date,
    *,
    start_half_day: bool = False,
    end_half_day: bool = False,
) -> Decimal:
    """Weekdays between *start* and *end* inclusive; half-day ends count 0.5."""
    if end < start:
        return Decimal("0")

    total = Decimal("0")
    current = start
    while current <= end:
        if current.weekday() < 5:
            total += 1
        current += timedelta(days=1)

    if start == end:
        if total and (start_half_day or end_half_day):
            return HALF
        return total
    if start_half_day and start.weekday() < 5:
        total -= HALF
    if end_half_day and end.weekday() < 5:
        total -= HALF
    return total


def format_days(value: Decimal) -> str:
    """``Decimal("10.00")`` → ``"10"``, ``Decimal("2.50")`` → ``"2.5"``."""
    return f"{Decimal(value).normalize():f}"


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: types, balances, requests, approvals, policies."""

    # ─────────────────────────────────────────────────────────────────
    # Leave Types
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_types(
        db: AsyncSession, company_id: uuid.UUID, *, include_inactive: bool = False,
    ) -> list[LeaveType]:
        query = select(LeaveType).where(LeaveType.company_id == company_id).order_by(LeaveType.name)
        if not include_inactive:
            query = query.where(LeaveType.is_active.is_(True))
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def _ensure_unique_type(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        name: Optional[str] = None,
        code: Optional[str] = None,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        for field, column, value in (("name", LeaveType.name, name), ("code", LeaveType.code, code)):
            if value is None:
                continue
            query = select(LeaveType.id).where(LeaveType.company_id == company_id, column == value)
            if exclude_id is not None:
                query = query.where(LeaveType.id != exclude_id)
            if (await db.execute(query)).first():
                raise ConflictError(field, value)

    @staticmethod
    async def create_type(
        db: AsyncSession, company_id: uuid.UUID, data: LeaveTypeCreate, *, actor_id: uuid.UUID,
    ) -> LeaveType:
        await LeaveService._ensure_unique_type(db, company_id, name=data.name, code=data.code)
        leave_type = LeaveType(company_id=company_id, **data.model_dump())
        db.add(leave_type)
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="leave_type",
            entity_id=leave_type.id,
            company_id=company_id,
            user_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        return leave_type

    @staticmethod
    async def update_type(
        db: AsyncSession,
        company_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        data: LeaveTypeUpdate,
        *,
        actor_id: uuid.UUID,
    ) -> LeaveType:
        leave_type = await get_for_company(db, LeaveType, company_id, leave_type_id, label="Leave type")
        changes = data.model_dump(exclude_unset=True)
        if changes.get("name"):
            await LeaveService._ensure_unique_type(db, company_id, name=changes["name"], exclude_id=leave_type.id)
        for key, value in changes.items():
            setattr(leave_type, key, value)
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="leave_type",
            entity_id=leave_type.id,
            company_id=company_id,
            user_id=actor_id,
            new_values=data.model_dump(exclude_unset=True, mode="json"),
        )
        return leave_type

    @staticmethod
    async def delete_type(
        db: AsyncSession, company_id: uuid.UUID, leave_type_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> None:
        """Hard delete when unused; otherwise the type must be deactivated instead."""
        leave_type = await get_for_company(db, LeaveType, company_id, leave_type_id, label="Leave type")
        in_use = (
            await db.execute(select(LeaveRequest.id).where(LeaveRequest.leave_type_id == leave_type.id).limit(1))
        ).first()
        if in_use:
            raise InvalidStateException("Leave type has requests; deactivate it instead.")
        await db.delete(leave_type)
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.delete,
            entity_type="leave_type",
            entity_id=leave_type_id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"name": leave_type.name, "code": leave_type.code},
        )

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _find_balance(
        db: AsyncSession, employee_id: uuid.UUID, leave_type_id: uuid.UUID, year: int,
    ) -> Optional[LeaveBalance]:
        result = await db.execute(
            select(LeaveBalance).where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.leave_type_id == leave_type_id,
                LeaveBalance.year == year,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def get_or_create_balance(
        db: AsyncSession,
        employee: Employee,
        leave_type: LeaveType,
        year: int,
        *,
        allow_empty: bool = False,
    ) -> Optional[LeaveBalance]:
        """Existing balance, or a new one allocated ``default_days``.

        Types without a default allocation get no automatic balance unless
        *allow_empty* is set (manual adjustments start from zero).
        """
        balance = await LeaveService._find_balance(db, employee.id, leave_type.id, year)
        if balance is not None:
            return balance
        if not allow_empty and not leave_type.default_days:
            return None
        balance = LeaveBalance(
            company_id=employee.company_id,
            employee_id=employee.id,
            leave_type_id=leave_type.id,
            year=year,
            allocated_days=Decimal(leave_type.default_days or 0),
            used_days=Decimal("0"),
            pending_days=Decimal("0"),
            carried_over_days=Decimal("0"),
            adjustment_days=Decimal("0"),
        )
        db.add(balance)
        await db.flush()
        return balance

    @staticmethod
    async def get_balances(
        db: AsyncSession, company_id: uuid.UUID, employee_id: uuid.UUID, year: int,
    ) -> list[LeaveBalanceOut]:
        await get_for_company(db, Employee, company_id, employee_id)
        result = await db.execute(
            select(LeaveBalance)
            .where(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
            .options(selectinload(LeaveBalance.leave_type))
            .execution_options(populate_existing=True)
        )
        balances = sorted(result.scalars().all(), key=lambda b: b.leave_type.name)
        return [LeaveBalanceOut.model_validate(b) for b in balances]

    @staticmethod
    async def adjust_balance(
        db: AsyncSession,
        company_id: uuid.UUID,
        data: BalanceAdjustRequest,
        *,
        actor_id: uuid.UUID,
    ) -> LeaveBalanceOut:
        employee = await get_for_company(db, Employee, company_id, data.employee_id)
        leave_type = await get_for_company(db, LeaveType, company_id, data.leave_type_id, label="Leave type")
        year = data.year or datetime.now(timezone.utc).year

        balance = await LeaveService.get_or_create_balance(db, employee, leave_type, year, allow_empty=True)
        old = Decimal(balance.adjustment_days)
        balance.adjustment_days = old + data.adjustment_days
        line = f"[{date.today().isoformat()}] {data.reason}: {format_days(data.adjustment_days)} days"
        balance.adjustment_reason = f"{balance.adjustment_reason}\n{line}" if balance.adjustment_reason else line
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="leave_balance",
            entity_id=balance.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"adjustment_days": str(old)},
            new_values={"adjustment_days": str(balance.adjustment_days)},
            details={"reason": data.reason, "year": year},
        )
        balances = await LeaveService.get_balances(db, company_id, employee.id, year)
        return next(b for b in balances if b.id == balance.id)

    @staticmethod
    async def accrue_balances(
        db: AsyncSession, company_id: uuid.UUID, year: int, *, actor_id: Optional[uuid.UUID] = None,
    ) -> AccrualResult:
        """Allocate *year* balances for every non-terminated employee.

        Carry-over is the previous year's unused days capped at the type's
        ``carry_over_limit``; types without a limit carry nothing.
        """
        employees = (
            await db.execute(
                select(Employee).where(
                    Employee.company_id == company_id,
                    Employee.employment_status != EmploymentStatus.terminated,
                )
            )
        ).scalars().all()
        types = await LeaveService.list_types(db, company_id)

        created = updated = 0
        for employee in employees:
            for leave_type in types:
                carry = Decimal("0")
                previous = await LeaveService._find_balance(db, employee.id, leave_type.id, year - 1)
                if previous is not None and leave_type.carry_over_limit is not None:
                    remaining = (
                        Decimal(previous.allocated_days) + Decimal(previous.carried_over_days)
                        + Decimal(previous.adjustment_days) - Decimal(previous.used_days)
                    )
                    carry = min(max(remaining, Decimal("0")), Decimal(leave_type.carry_over_limit))

                balance = await LeaveService._find_balance(db, employee.id, leave_type.id, year)
                if balance is None:
                    db.add(
                        LeaveBalance(
                            company_id=company_id,
                            employee_id=employee.id,
                            leave_type_id=leave_type.id,
                            year=year,
                            allocated_days=Decimal(leave_type.default_days or 0),
                            carried_over_days=carry,
                            used_days=Decimal("0"),
                            pending_days=Decimal("0"),
                            adjustment_days=Decimal("0"),
                        )
                    )
                    created += 1
                else:
                    balance.allocated_days = Decimal(leave_type.default_days or 0)
                    balance.carried_over_days = carry
                    updated += 1
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="leave_balances",
            company_id=company_id,
            user_id=actor_id,
            details={"action_type": "bulk_accrual", "year": year, "employees": len(employees)},
        )
        logger.info("Accrued %d leave balances for %s", created + updated, year, extra={"company_id": company_id})
        return AccrualResult(
            year=year,
            employees_processed=len(employees),
            balances_created=created,
            balances_updated=updated,
        )

    # ─────────────────────────────────────────────────────────────────
    # Requests — reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load_request(db: AsyncSession, company_id: uuid.UUID, request_id: uuid.UUID) -> LeaveRequest:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id, LeaveRequest.company_id == company_id)
            .options(selectinload(LeaveRequest.employee), selectinload(LeaveRequest.leave_type))
            .execution_options(populate_existing=True)
        )
        leave_request = result.scalars().first()
        if leave_request is None:
            raise NotFoundException("Leave request", request_id)
        return leave_request

    @staticmethod
    async def get_request(db: AsyncSession, company_id: uuid.UUID, request_id: uuid.UUID) -> LeaveRequestOut:
        return LeaveRequestOut.model_validate(await LeaveService._load_request(db, company_id, request_id))

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        employee_ids: Optional[list[uuid.UUID]] = None,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        leave_type_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> PaginatedResponse:
        """*employee_ids* restricts the scope (a manager's team); None means all."""
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.company_id == company_id)
            .options(selectinload(LeaveRequest.employee), selectinload(LeaveRequest.leave_type))
            .order_by(LeaveRequest.start_date.desc(), LeaveRequest.created_at.desc())
        )
        if employee_ids is not None:
            query = query.where(LeaveRequest.employee_id.in_(employee_ids))
        if employee_id is not None:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        if leave_type_id is not None:
            query = query.where(LeaveRequest.leave_type_id == leave_type_id)
        if from_date is not None:
            query = query.where(LeaveRequest.end_date >= from_date)
        if to_date is not None:
            query = query.where(LeaveRequest.start_date <= to_date)

        if pagination.sort:
            query = query.order_by(None)
        return await paginate(db, query, pagination, model=LeaveRequest, schema=LeaveRequestOut)

    # ─────────────────────────────────────────────────────────────────
    # Requests — create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_request(
        db: AsyncSession,
        company: Company,
        employee: Employee,
        data: LeaveRequestCreate,
        *,
        actor_id: uuid.UUID,
    ) -> LeaveRequestOut:
        """Submit a leave request for *employee*; it starts ``pending``."""
        leave_type = await get_for_company(db, LeaveType, company.id, data.leave_type_id, label="Leave type")
        if not leave_type.is_active:
            raise ValidationException({"leave_type_id": ["This leave type is not active."]})
        if employee.employment_status == EmploymentStatus.terminated:
            raise InvalidStateException("Terminated employees cannot request leave.")

        total_days = count_leave_days(
            data.start_date,
            data.end_date,
            start_half_day=data.start_half_day,
            end_half_day=data.end_half_day,
        )
        if total_days <= 0:
            raise ValidationException({"dates": ["The selected range contains no working days."]})
        if leave_type.max_consecutive_days and total_days > leave_type.max_consecutive_days:
            raise ValidationException(
                {"dates": [f"{leave_type.name} allows at most {leave_type.max_consecutive_days} consecutive days."]}
            )
        if leave_type.min_notice_days:
            notice = (data.start_date - date.today()).days
            if notice < leave_type.min_notice_days:
                raise ValidationException(
                    {"start_date": [f"{leave_type.name} requires {leave_type.min_notice_days} days notice."]}
                )

        overlap = (
            await db.execute(
                select(LeaveRequest.id).where(
                    LeaveRequest.employee_id == employee.id,
                    LeaveRequest.status.in_([LeaveStatus.pending, LeaveStatus.approved]),
                    LeaveRequest.start_date <= data.end_date,
                    LeaveRequest.end_date >= data.start_date,
                ).limit(1)
            )
        ).first()
        if overlap:
            raise ValidationException(
                {"dates": ["You already have a pending or approved leave request overlapping these dates."]}
            )

        balance = await LeaveService.get_or_create_balance(db, employee, leave_type, data.start_date.year)
        _check_balance(balance, total_days)

        leave_request = LeaveRequest(
            company_id=company.id,
            employee_id=employee.id,
            leave_type_id=leave_type.id,
            start_date=data.start_date,
            end_date=data.end_date,
            start_half_day=data.start_half_day,
            end_half_day=data.end_half_day,
            total_days=total_days,
            reason=data.reason,
            status=LeaveStatus.pending,
        )
        db.add(leave_request)
        balance.pending_days = Decimal(balance.pending_days) + total_days
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="leave_request",
            entity_id=leave_request.id,
            company_id=company.id,
            user_id=actor_id,
            new_values={
                "leave_type": leave_type.code,
                "start_date": data.start_date.isoformat(),
                "end_date": data.end_date.isoformat(),
                "total_days": str(total_days),
            },
        )

        if employee.manager_id is not None:
            manager = await db.get(Employee, employee.manager_id)
            if manager is not None:
                await notify_leave_request(db, leave_request, manager.user_id, employee.full_name)
                await EmailService.send(
                    db,
                    email_type="leave_request_submitted",
                    to={"email": manager.email, "name": manager.full_name},
                    data={
                        "manager_name": manager.first_name,
                        "employee_name": employee.full_name,
                        "leave_type": leave_type.name,
                        "start_date": data.start_date.isoformat(),
                        "end_date": data.end_date.isoformat(),
                    },
                    company_id=company.id,
                )

        return await LeaveService.get_request(db, company.id, leave_request.id)

    # ─────────────────────────────────────────────────────────────────
    # Requests — transitions
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _check_reviewer(
        db: AsyncSession, leave_request: LeaveRequest, reviewer_id: uuid.UUID, *, can_review_all: bool,
    ) -> None:
        employee = leave_request.employee
        if employee.user_id == reviewer_id:
            raise ForbiddenException("You cannot review your own leave request.")
        if can_review_all:
            return
        manager = await db.get(Employee, employee.manager_id) if employee.manager_id else None
        if manager is None or manager.user_id != reviewer_id:
            raise ForbiddenException("Only the employee's manager or HR can review this request.")

    @staticmethod
    async def approve_request(
        db: AsyncSession,
        company_id: uuid.UUID,
        request_id: uuid.UUID,
        *,
        reviewer_id: uuid.UUID,
        can_review_all: bool,
        notes: Optional[str] = None,
    ) -> LeaveRequestOut:
        """pending → approved; the request's pending days become used days."""
        leave_request = await LeaveService._load_request(db, company_id, request_id)
        if leave_request.status != LeaveStatus.pending:
            raise InvalidStateException(f"Leave request is already {leave_request.status.value}.")
        await LeaveService._check_reviewer(db, leave_request, reviewer_id, can_review_all=can_review_all)

        days = Decimal(leave_request.total_days)
        balance = await LeaveService.get_or_create_balance(
            db, leave_request.employee, leave_request.leave_type, leave_request.start_date.year,
        )
        # This request is already counted in pending_days.
        if balance is not None:
            balance.pending_days = max(Decimal(balance.pending_days) - days, Decimal("0"))
        _check_balance(balance, days)
        balance.used_days = Decimal(balance.used_days) + days

        leave_request.status = LeaveStatus.approved
        leave_request.reviewed_by = reviewer_id
        leave_request.reviewed_at = datetime.now(timezone.utc)
        leave_request.review_notes = notes
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="leave_request",
            entity_id=leave_request.id,
            company_id=company_id,
            user_id=reviewer_id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": LeaveStatus.approved.value, "notes": notes},
        )

        employee = leave_request.employee
        await notify_leave_approved(db, leave_request, employee.user_id)
        await EmailService.send(
            db,
            email_type="leave_request_approved",
            to={"email": employee.email, "name": employee.full_name},
            data=_email_data(leave_request),
            company_id=company_id,
        )
        return await LeaveService.get_request(db, company_id, leave_request.id)

    @staticmethod
    async def reject_request(
        db: AsyncSession,
        company_id: uuid.UUID,
        request_id: uuid.UUID,
        *,
        reviewer_id: uuid.UUID,
        can_review_all: bool,
        notes: Optional[str] = None,
    ) -> LeaveRequestOut:
        """pending → rejected; the pending days are released."""
        leave_request = await LeaveService._load_request(db, company_id, request_id)
        if leave_request.status != LeaveStatus.pending:
            raise InvalidStateException(f"Leave request is already {leave_request.status.value}.")
        await LeaveService._check_reviewer(db, leave_request, reviewer_id, can_review_all=can_review_all)

        await _release(db, leave_request)
        leave_request.status = LeaveStatus.rejected
        leave_request.reviewed_by = reviewer_id
        leave_request.reviewed_at = datetime.now(timezone.utc)
        leave_request.review_notes = notes
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="leave_request",
            entity_id=leave_request.id,
            company_id=company_id,
            user_id=reviewer_id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={"status": LeaveStatus.rejected.value, "notes": notes},
        )

        employee = leave_request.employee
        await notify_leave_rejected(db, leave_request, employee.user_id, notes)
        await EmailService.send(
            db,
            email_type="leave_request_rejected",
            to={"email": employee.email, "name": employee.full_name},
            data={**_email_data(leave_request), "reason": notes},
            company_id=company_id,
        )
        return await LeaveService.get_request(db, company_id, leave_request.id)

    @staticmethod
    async def cancel_request(
        db: AsyncSession,
        company_id: uuid.UUID,
        request_id: uuid.UUID,
        *,
        user_id: uuid.UUID,
    ) -> LeaveRequestOut:
        """pending | approved → canceled, by the requesting employee only."""
        leave_request = await LeaveService._load_request(db, company_id, request_id)
        if leave_request.employee.user_id != user_id:
            raise ForbiddenException("Only the employee who requested the leave can cancel it.")
        if leave_request.status not in (LeaveStatus.pending, LeaveStatus.approved):
            raise InvalidStateException(f"Leave request is already {leave_request.status.value}.")

        old_status = leave_request.status
        await _release(db, leave_request)
        leave_request.status = LeaveStatus.canceled
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="leave_request",
            entity_id=leave_request.id,
            company_id=company_id,
            user_id=user_id,
            old_values={"status": old_status.value},
            new_values={"status": LeaveStatus.canceled.value},
        )
        return await LeaveService.get_request(db, company_id, leave_request.id)

    # ─────────────────────────────────────────────────────────────────
    # Policy export / import
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def export_policies(db: AsyncSession, company: Company) -> LeavePolicyExport:
        types = await LeaveService.list_types(db, company.id, include_inactive=False)
        return LeavePolicyExport(
            version=POLICY_FORMAT_VERSION,
            exported_at=datetime.now(timezone.utc),
            source_company=company.name,
            leave_types=[LeavePolicyItem.model_validate(t, from_attributes=True) for t in types],
        )

    @staticmethod
    async def import_policies(
        db: AsyncSession, company_id: uuid.UUID, payload: dict[str, Any], *, actor_id: uuid.UUID,
    ) -> PolicyImportResult:
        """Create or update leave types by name from an exported policy file.

        Structural problems (missing version, no ``leave_types`` list) reject
        the whole file; a bad item is reported and skipped.
        """
        version = payload.get("version")
        items = payload.get("leave_types")
        if not isinstance(version, str) or not version:
            raise ValidationException({"version": ["Missing or invalid version field."]})
        if not isinstance(items, list) or not items:
            raise ValidationException({"leave_types": ["Missing or empty leave_types array."]})

        result = PolicyImportResult()
        existing = {t.name: t for t in await LeaveService.list_types(db, company_id, include_inactive=True)}
        codes = {t.code: t for t in existing.values()}

        for index, raw in enumerate(items, start=1):
            label = raw.get("code") if isinstance(raw, dict) and raw.get("code") else f"item {index}"
            try:
                item = LeavePolicyItem.model_validate(raw)
            except ValidationError as exc:
                first = exc.errors()[0]
                field = ".".join(str(p) for p in first["loc"]) or "item"
                result.errors.append(PolicyImportError(code=str(label), message=f"{field}: {first['msg']}"))
                continue

            fields = {
                key: value
                for key, value in item.model_dump(exclude_unset=True, exclude={"name", "code"}).items()
                if value is not None
            }
            current = existing.get(item.name)
            if current is not None:
                clash = codes.get(item.code)
                if clash is not None and clash.id != current.id:
                    result.errors.append(
                        PolicyImportError(code=item.code, message=f"Code '{item.code}' is used by another type.")
                    )
                    continue
                codes.pop(current.code, None)
                current.code = item.code
                codes[item.code] = current
                for key, value in fields.items():
                    setattr(current, key, value)
                result.updated += 1
            else:
                if item.code in codes:
                    result.errors.append(
                        PolicyImportError(code=item.code, message=f"Code '{item.code}' is used by another type.")
                    )
                    continue
                leave_type = LeaveType(company_id=company_id, name=item.name, code=item.code, **fields)
                db.add(leave_type)
                existing[item.name] = leave_type
                codes[item.code] = leave_type
                result.created += 1
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.import_,
            entity_type="leave_types",
            company_id=company_id,
            user_id=actor_id,
            details={
                "version": version,
                "created": result.created,
                "updated": result.updated,
                "errors": len(result.errors),
            },
        )
        return result


# ── Module helpers ──────────────────────────────────────────────────


def _check_balance(balance: Optional[LeaveBalance], days: Decimal) -> None:
    if balance is None:
        raise ValidationException(
            {"leave_type_id": ["No leave balance allocated for this leave type"]},
            detail="No leave balance allocated for this leave type",
        )
    available = balance.available_days
    if available < days:
        message = (
            f"Insufficient balance. Available: {format_days(available)} days, "
            f"Requested: {format_days(days)} days"
        )
        raise ValidationException({"balance": [message]}, detail=message)


async def _release(db: AsyncSession, leave_request: LeaveRequest) -> None:
    """Return a pending or approved request's days to its balance."""
    balance = await LeaveService._find_balance(
        db, leave_request.employee_id, leave_request.leave_type_id, leave_request.start_date.year,
    )
    if balance is None:
        return
    days = Decimal(leave_request.total_days)
    if leave_request.status == LeaveStatus.pending:
        balance.pending_days = max(Decimal(balance.pending_days) - days, Decimal("0"))
    elif leave_request.status == LeaveStatus.approved:
        balance.used_days = max(Decimal(balance.used_days) - days, Decimal("0"))


def _email_data(leave_request: LeaveRequest) -> dict[str, Any]:
    return {
        "employee_name": leave_request.employee.first_name,
        "leave_type": leave_request.leave_type.name,
        "start_date": leave_request.start_date.isoformat(),
        "end_date": leave_request.end_date.isoformat(),
    }
