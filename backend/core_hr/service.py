"""Core HR service layer — async CRUD + business logic.

Uses:
  - ``paginate()`` from backend.common.pagination
  - ``apply_filters / apply_search`` from backend.common.filters
  - ``create_audit_entry`` from backend.common.audit
  - ``NotFoundException / ConflictError`` from backend.common.exceptions

Every lookup is scoped to a company; ids from another tenant read as 404.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.auth.models import User
from backend.auth.service import get_user_by_email, hash_password
from backend.billing.service import BillingService
from backend.common.audit import create_audit_entry
from backend.common.constants import AppRole, AuditAction, EmploymentStatus
from backend.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from backend.common.filters import apply_filters, apply_search
from backend.common.models import get_for_company
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.companies.models import Company, CompanyMember
from backend.companies.service import CompanyService
from backend.companies.settings import get_company_setting
from backend.config import settings
from backend.core_hr.models import Department, Employee
from backend.core_hr.schemas import (
    DepartmentResponse,
    EmployeeCreate,
    EmployeeDetail,
    EmployeeListItem,
    EmployeeSummary,
    EmployeeUpdate,
)
from backend.emails.service import EmailService

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# EmployeeService
# ═════════════════════════════════════════════════════════════════════


class EmployeeService:
    """Async CRUD operations for employees."""

    # ── Lookups ─────────────────────────────────────────────────────

    @staticmethod
    async def get_owned(db: AsyncSession, company_id: uuid.UUID, employee_id: uuid.UUID) -> Employee:
        return await get_for_company(db, Employee, company_id, employee_id)

    @staticmethod
    async def get_for_user(
        db: AsyncSession, company_id: uuid.UUID, user_id: uuid.UUID,
    ) -> Optional[Employee]:
        """The caller's own employee record in *company_id*, if any."""
        result = await db.execute(
            select(Employee).where(Employee.company_id == company_id, Employee.user_id == user_id)
        )
        return result.scalars().first()

    @staticmethod
    async def require_for_user(
        db: AsyncSession, company_id: uuid.UUID, user_id: uuid.UUID,
    ) -> Employee:
        employee = await EmployeeService.get_for_user(db, company_id, user_id)
        if employee is None:
            raise NotFoundException(entity_type="Employee record", entity_id=user_id)
        return employee

    # ── List (paginated, searchable, filterable) ────────────────────

    @staticmethod
    async def list_employees(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        search: Optional[str] = None,
        department_id: Optional[uuid.UUID] = None,
        employment_status: Optional[EmploymentStatus] = None,
        manager_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        """Return a paginated, filtered, searchable employee list."""

        query = (
            select(Employee)
            .where(Employee.company_id == company_id)
            .order_by(Employee.last_name, Employee.first_name)
        )

        filters: dict[str, Any] = {
            "department_id": department_id,
            "employment_status": employment_status,
            "manager_id": manager_id,
        }
        query = apply_filters(query, Employee, filters)

        if search:
            query = apply_search(
                query,
                Employee,
                search,
                ["first_name", "last_name", "email", "employee_number", "job_title"],
            )

        if pagination.sort:
            query = query.order_by(None)
        return await paginate(db, query, pagination, model=Employee, schema=EmployeeListItem)

    # ── Get single ──────────────────────────────────────────────────

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> EmployeeDetail:
        """Load full employee detail including department and manager."""

        result = await db.execute(
            select(Employee)
            .where(Employee.id == employee_id, Employee.company_id == company_id)
            .options(
                selectinload(Employee.department),
                selectinload(Employee.manager),
            )
            .execution_options(populate_existing=True)
        )
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))

        direct_reports_count = (
            await db.execute(
                select(func.count())
                .select_from(Employee)
                .where(
                    Employee.manager_id == employee.id,
                    Employee.employment_status != EmploymentStatus.terminated,
                )
            )
        ).scalar() or 0

        detail = EmployeeDetail.model_validate(employee)
        detail.direct_reports_count = direct_reports_count
        return detail

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def _check_references(
        db: AsyncSession,
        company_id: uuid.UUID,
        department_id: Optional[uuid.UUID],
        manager_id: Optional[uuid.UUID],
    ) -> None:
        if department_id is not None:
            await get_for_company(db, Department, company_id, department_id)
        if manager_id is not None:
            await get_for_company(db, Employee, company_id, manager_id, label="Manager")

    @staticmethod
    async def _ensure_unique(
        db: AsyncSession,
        company_id: uuid.UUID,
        *,
        employee_number: Optional[str] = None,
        email: Optional[str] = None,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        for field, column, value in (
            ("employee_number", Employee.employee_number, employee_number),
            ("email", Employee.email, email),
        ):
            if value is None:
                continue
            query = select(Employee.id).where(Employee.company_id == company_id, column == value)
            if exclude_id is not None:
                query = query.where(Employee.id != exclude_id)
            if (await db.execute(query)).first():
                raise ConflictError(field, value)

    @staticmethod
    async def create_employee(
        db: AsyncSession,
        company: Company,
        data: EmployeeCreate,
        *,
        actor_id: uuid.UUID,
    ) -> Employee:
        """Create a new employee record, optionally with a portal account."""
        await BillingService.check_employee_limit(db, company.id)
        await EmployeeService._check_references(db, company.id, data.department_id, data.manager_id)

        employee_number = data.employee_number
        if not employee_number:
            fmt = await get_company_setting(db, company.id, "employee_id_format")
            if not fmt.get("auto_generate", True):
                raise ValidationException({"employee_number": ["An employee number is required."]})
            employee_number = await CompanyService.generate_employee_number(db, company.id)

        email = data.email.strip().lower()
        await EmployeeService._ensure_unique(
            db, company.id, employee_number=employee_number, email=email,
        )

        exclude = {"employee_number", "email", "create_account", "account_role"}
        employee = Employee(
            company_id=company.id,
            employee_number=employee_number,
            email=email,
            **data.model_dump(exclude=exclude),
        )
        db.add(employee)
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="employee",
            entity_id=employee.id,
            company_id=company.id,
            user_id=actor_id,
            new_values={
                "employee_number": employee_number,
                "email": email,
                **data.model_dump(exclude=exclude, mode="json"),
            },
        )

        if data.create_account:
            await EmployeeService.create_account(db, company, employee, role=data.account_role, actor_id=actor_id)

        logger.info("Created employee %s", employee_number, extra={"company_id": company.id})
        return employee

    @staticmethod
    async def create_account(
        db: AsyncSession,
        company: Company,
        employee: Employee,
        *,
        role: AppRole = AppRole.employee,
        actor_id: uuid.UUID,
    ) -> User:
        """Give *employee* a login and membership; new users get a temporary password."""
        if role == AppRole.super_admin:
            raise ForbiddenException(detail="The super_admin role cannot be granted.")
        if employee.user_id is not None:
            raise ConflictError(field="user_id", value=employee.user_id)

        temporary_password: Optional[str] = None
        user = await get_user_by_email(db, employee.email)
        if user is None:
            temporary_password = secrets.token_urlsafe(9)
            security = await get_company_setting(db, company.id, "security")
            user = User(
                email=employee.email,
                full_name=employee.full_name,
                password_hash=hash_password(temporary_password),
                must_change_password=bool(security.get("require_password_change_first_login", True)),
            )
            db.add(user)
            await db.flush()

        member = (
            await db.execute(
                select(CompanyMember).where(
                    CompanyMember.company_id == company.id, CompanyMember.user_id == user.id,
                )
            )
        ).scalars().first()
        if member is None:
            db.add(CompanyMember(company_id=company.id, user_id=user.id, role=role))
        else:
            member.is_active = True
        if user.current_company_id is None:
            user.current_company_id = company.id
        employee.user_id = user.id
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="user",
            entity_id=user.id,
            company_id=company.id,
            user_id=actor_id,
            details={"employee_id": str(employee.id), "role": role.value},
        )

        prefs = await get_company_setting(db, company.id, "notification_preferences")
        if temporary_password is not None and prefs.get("send_onboarding_email", True):
            await EmailService.send(
                db,
                email_type="employee_account_created",
                to={"email": employee.email, "name": employee.full_name},
                data={
                    "employee_name": employee.full_name,
                    "company_name": company.name,
                    "employee_number": employee.employee_number,
                    "email": employee.email,
                    "temporary_password": temporary_password,
                    "login_url": f"{settings.APP_URL}/auth",
                },
                company_id=company.id,
            )
        return user

    # ── Update ──────────────────────────────────────────────────────

    @staticmethod
    async def update_employee(
        db: AsyncSession,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
        data: EmployeeUpdate,
        *,
        actor_id: uuid.UUID,
    ) -> Employee:
        employee = await EmployeeService.get_owned(db, company_id, employee_id)
        changes = data.model_dump(exclude_unset=True)

        if "manager_id" in changes and changes["manager_id"] == employee.id:
            raise ValidationException({"manager_id": ["An employee cannot manage themselves."]})
        await EmployeeService._check_references(
            db, company_id, changes.get("department_id"), changes.get("manager_id"),
        )
        if changes.get("email"):
            changes["email"] = changes["email"].strip().lower()
            await EmployeeService._ensure_unique(
                db, company_id, email=changes["email"], exclude_id=employee.id,
            )
        old_values: dict[str, Any] = {}
        new_values: dict[str, Any] = {}
        for key, value in changes.items():
            old = getattr(employee, key)
            if old != value:
                old_values[key] = old
                new_values[key] = value
                setattr(employee, key, value)
        await db.flush()

        if new_values:
            await create_audit_entry(
                db,
                action=AuditAction.update,
                entity_type="employee",
                entity_id=employee.id,
                company_id=company_id,
                user_id=actor_id,
                old_values=_jsonable(old_values),
                new_values=_jsonable(new_values),
            )
        return employee

    # ── Terminate ───────────────────────────────────────────────────

    @staticmethod
    async def terminate_employee(
        db: AsyncSession,
        company_id: uuid.UUID,
        employee_id: uuid.UUID,
        *,
        termination_date,
        reason: Optional[str],
        actor_id: uuid.UUID,
    ) -> Employee:
        employee = await EmployeeService.get_owned(db, company_id, employee_id)
        if employee.employment_status == EmploymentStatus.terminated:
            raise InvalidStateException("Employee is already terminated.")
        if termination_date < employee.hire_date:
            raise ValidationException({"termination_date": ["Cannot be before the hire date."]})

        old_status = employee.employment_status
        employee.employment_status = EmploymentStatus.terminated
        employee.termination_date = termination_date
        employee.termination_reason = reason
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="employee",
            entity_id=employee.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"employment_status": old_status.value},
            new_values={
                "employment_status": EmploymentStatus.terminated.value,
                "termination_date": termination_date.isoformat(),
            },
        )
        return employee

    # ── Team ────────────────────────────────────────────────────────

    @staticmethod
    async def get_direct_reports(
        db: AsyncSession, company_id: uuid.UUID, manager_id: uuid.UUID,
    ) -> list[EmployeeSummary]:
        result = await db.execute(
            select(Employee)
            .where(
                Employee.company_id == company_id,
                Employee.manager_id == manager_id,
                Employee.employment_status != EmploymentStatus.terminated,
            )
            .order_by(Employee.first_name, Employee.last_name)
        )
        return [EmployeeSummary.model_validate(e) for e in result.scalars().all()]

    @staticmethod
    async def is_manager_of(
        db: AsyncSession, manager_id: uuid.UUID, employee_id: uuid.UUID,
    ) -> bool:
        result = await db.execute(
            select(Employee.id).where(Employee.id == employee_id, Employee.manager_id == manager_id)
        )
        return result.first() is not None


def _jsonable(values: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for key, value in values.items():
        if value is None or isinstance(value, (str, int, float, bool, dict, list)):
            out[key] = value
        elif hasattr(value, "value"):
            out[key] = value.value
        else:
            out[key] = str(value)
    return out


# ═════════════════════════════════════════════════════════════════════
# DepartmentService
# ═════════════════════════════════════════════════════════════════════


class DepartmentService:
    """Async operations for departments."""

    @staticmethod
    async def list_departments(
        db: AsyncSession, company_id: uuid.UUID, *, include_inactive: bool = False,
    ) -> list[DepartmentResponse]:
        """All departments with their active head-count."""

        count_sub = (
            select(
                Employee.department_id,
                func.count(Employee.id).label("employee_count"),
            )
            .where(
                Employee.company_id == company_id,
                Employee.employment_status != EmploymentStatus.terminated,
            )
            .group_by(Employee.department_id)
            .subquery()
        )

        query = (
            select(Department, func.coalesce(count_sub.c.employee_count, 0))
            .outerjoin(count_sub, Department.id == count_sub.c.department_id)
            .where(Department.company_id == company_id)
            .order_by(Department.name)
        )
        if not include_inactive:
            query = query.where(Department.is_active.is_(True))

        departments = []
        for dept, emp_count in (await db.execute(query)).all():
            resp = DepartmentResponse.model_validate(dept)
            resp.employee_count = emp_count
            departments.append(resp)
        return departments

    @staticmethod
    async def _ensure_unique_name(
        db: AsyncSession, company_id: uuid.UUID, name: str, exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = select(Department.id).where(
            Department.company_id == company_id, func.lower(Department.name) == name.lower(),
        )
        if exclude_id is not None:
            query = query.where(Department.id != exclude_id)
        if (await db.execute(query)).first():
            raise ConflictError("name", name)

    @staticmethod
    async def create_department(
        db: AsyncSession, company_id: uuid.UUID, data: dict[str, Any], *, actor_id: uuid.UUID,
    ) -> Department:
        name = data["name"].strip()
        await DepartmentService._ensure_unique_name(db, company_id, name)
        if data.get("parent_id"):
            await get_for_company(db, Department, company_id, data["parent_id"], label="Parent department")
        if data.get("manager_id"):
            await get_for_company(db, Employee, company_id, data["manager_id"], label="Manager")

        dept = Department(company_id=company_id, **{**data, "name": name})
        db.add(dept)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="department",
            entity_id=dept.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"name": name, "code": dept.code},
        )
        return dept

    @staticmethod
    async def update_department(
        db: AsyncSession,
        company_id: uuid.UUID,
        department_id: uuid.UUID,
        changes: dict[str, Any],
        *,
        actor_id: uuid.UUID,
    ) -> Department:
        dept = await get_for_company(db, Department, company_id, department_id)
        if changes.get("name"):
            changes["name"] = changes["name"].strip()
            await DepartmentService._ensure_unique_name(db, company_id, changes["name"], exclude_id=dept.id)
        if changes.get("parent_id"):
            if changes["parent_id"] == dept.id:
                raise ValidationException({"parent_id": ["A department cannot be its own parent."]})
            await get_for_company(db, Department, company_id, changes["parent_id"], label="Parent department")
        if changes.get("manager_id"):
            await get_for_company(db, Employee, company_id, changes["manager_id"], label="Manager")

        for key, value in changes.items():
            setattr(dept, key, value)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="department",
            entity_id=dept.id,
            company_id=company_id,
            user_id=actor_id,
            new_values=_jsonable(changes),
        )
        return dept

    @staticmethod
    async def delete_department(
        db: AsyncSession, company_id: uuid.UUID, department_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> None:
        dept = await get_for_company(db, Department, company_id, department_id)
        assigned = (
            await db.execute(
                select(func.count()).select_from(Employee).where(
                    Employee.department_id == dept.id,
                    Employee.employment_status != EmploymentStatus.terminated,
                )
            )
        ).scalar_one()
        if assigned:
            raise InvalidStateException(
                f"Cannot delete a department with {assigned} assigned employee(s).",
            )
        await db.delete(dept)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.delete,
            entity_type="department",
            entity_id=department_id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"name": dept.name},
        )
