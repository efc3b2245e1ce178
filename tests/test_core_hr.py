"""Core HR tests — employee CRUD, numbering, accounts, team views, departments."""

from __future__ import annotations

import uuid
from datetime import date

import pytest
from sqlalchemy import select

from backend.auth.models import User
from backend.common.audit import AuditLog
from backend.common.constants import AuditAction, EmploymentStatus
from backend.common.exceptions import ConflictError, InvalidStateException, NotFoundException, ValidationException
from backend.common.pagination import PaginationParams
from backend.core_hr.models import Department, Employee
from backend.core_hr.schemas import EmployeeUpdate
from backend.core_hr.service import DepartmentService, EmployeeService
from backend.emails.models import EmailLog
from tests.conftest import TestSessionFactory, make_employee


def _new_hire(**overrides) -> dict:
    payload = {
        "first_name": "Nora",
        "last_name": "Newhire",
        "email": "Nora.Newhire@example.com",
        "hire_date": "2026-02-01",
        "job_title": "Analyst",
    }
    payload.update(overrides)
    return payload


def _page(**kwargs) -> PaginationParams:
    return PaginationParams(page=kwargs.get("page", 1), page_size=kwargs.get("page_size", 20), sort=kwargs.get("sort"))


# ═════════════════════════════════════════════════════════════════════
# EMPLOYEES
# ═════════════════════════════════════════════════════════════════════


class TestCreateEmployee:

    async def test_create_generates_number(self, client, tenant):
        resp = await client.post("/api/v1/employees", headers=tenant.hr.headers, json=_new_hire())
        assert resp.status_code == 201
        data = resp.json()
        assert data["employee_number"] == "EMP0001"
        assert data["email"] == "nora.newhire@example.com"
        assert data["employment_status"] == "active"

        resp = await client.post(
            "/api/v1/employees",
            headers=tenant.hr.headers,
            json=_new_hire(email="second@example.com", first_name="Sam"),
        )
        assert resp.json()["employee_number"] == "EMP0002"

    async def test_explicit_number_is_kept(self, client, tenant):
        resp = await client.post(
            "/api/v1/employees", headers=tenant.hr.headers, json=_new_hire(employee_number="X-77"),
        )
        assert resp.status_code == 201
        assert resp.json()["employee_number"] == "X-77"

    async def test_duplicate_email_is_conflict(self, client, tenant):
        await client.post("/api/v1/employees", headers=tenant.hr.headers, json=_new_hire())
        resp = await client.post(
            "/api/v1/employees", headers=tenant.hr.headers, json=_new_hire(email="nora.newhire@EXAMPLE.com"),
        )
        assert resp.status_code == 409
        assert "email" in resp.json()["errors"]

    async def test_same_email_in_other_company_is_fine(self, client, tenant, other_tenant):
        first = await client.post("/api/v1/employees", headers=tenant.hr.headers, json=_new_hire())
        second = await client.post("/api/v1/employees", headers=other_tenant.hr.headers, json=_new_hire())
        assert first.status_code == 201
        assert second.status_code == 201

    async def test_manager_from_other_company_is_404(self, client, tenant, other_tenant):
        resp = await client.post(
            "/api/v1/employees",
            headers=tenant.hr.headers,
            json=_new_hire(manager_id=str(other_tenant.manager.employee.id)),
        )
        assert resp.status_code == 404
        assert resp.json()["title"] == "Manager Not Found"

    async def test_probation_before_hire_is_rejected(self, client, tenant):
        resp = await client.post(
            "/api/v1/employees", headers=tenant.hr.headers, json=_new_hire(probation_end_date="2026-01-01"),
        )
        assert resp.status_code == 422

    async def test_employee_cannot_create(self, client, tenant):
        resp = await client.post("/api/v1/employees", headers=tenant.employee.headers, json=_new_hire())
        assert resp.status_code == 403
        assert resp.json()["code"] == "42501"

    async def test_create_with_account(self, client, tenant):
        resp = await client.post(
            "/api/v1/employees", headers=tenant.hr.headers, json=_new_hire(create_account=True),
        )
        assert resp.status_code == 201
        assert resp.json()["user_id"] is not None

        async with TestSessionFactory() as session:
            user = (await session.execute(
                select(User).where(User.email == "nora.newhire@example.com")
            )).scalars().one()
            assert user.current_company_id == tenant.company_id
            assert user.must_change_password is True
            emails = (await session.execute(
                select(EmailLog).where(EmailLog.template_type == "employee_account_created")
            )).scalars().all()
        assert len(emails) == 1
        assert emails[0].recipient_email == "nora.newhire@example.com"

    async def test_account_cannot_be_created_twice(self, client, tenant):
        resp = await client.post(
            f"/api/v1/employees/{tenant.employee.employee.id}/account", headers=tenant.admin.headers,
        )
        assert resp.status_code == 409


class TestReadEmployees:

    async def test_list_is_company_scoped(self, client, tenant, other_tenant):
        resp = await client.get("/api/v1/employees", headers=tenant.employee.headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["total"] == 4
        ids = {e["id"] for e in body["data"]}
        assert str(other_tenant.employee.employee.id) not in ids

    async def test_search(self, db, tenant):
        result = await EmployeeService.list_employees(db, tenant.company_id, _page(), search="hana")
        assert [e.first_name for e in result.data] == ["Hana"]

    async def test_filter_by_manager(self, db, tenant):
        result = await EmployeeService.list_employees(
            db, tenant.company_id, _page(), manager_id=tenant.manager.employee.id,
        )
        assert [e.id for e in result.data] == [tenant.employee.employee.id]

    async def test_pagination_meta(self, db, tenant):
        result = await EmployeeService.list_employees(db, tenant.company_id, _page(page=2, page_size=3))
        assert len(result.data) == 1
        assert result.meta.total_pages == 2
        assert result.meta.has_prev is True
        assert result.meta.has_next is False

    async def test_detail_counts_direct_reports(self, client, tenant):
        resp = await client.get(
            f"/api/v1/employees/{tenant.manager.employee.id}", headers=tenant.hr.headers,
        )
        assert resp.status_code == 200
        assert resp.json()["direct_reports_count"] == 1

    async def test_other_company_employee_is_404(self, client, tenant, other_tenant):
        resp = await client.get(
            f"/api/v1/employees/{other_tenant.employee.employee.id}", headers=tenant.admin.headers,
        )
        assert resp.status_code == 404

    async def test_me(self, client, tenant):
        resp = await client.get("/api/v1/employees/me", headers=tenant.employee.headers)
        assert resp.status_code == 200
        assert resp.json()["first_name"] == "Eve"
        assert resp.json()["manager"]["first_name"] == "Max"

    async def test_my_team(self, client, tenant):
        resp = await client.get("/api/v1/employees/my-team", headers=tenant.manager.headers)
        assert resp.status_code == 200
        assert [e["first_name"] for e in resp.json()] == ["Eve"]

    async def test_my_team_needs_permission(self, client, tenant):
        resp = await client.get("/api/v1/employees/my-team", headers=tenant.employee.headers)
        assert resp.status_code == 403


class TestUpdateEmployee:

    async def test_update_writes_audit_diff(self, db, tenant):
        employee_id = tenant.employee.employee.id
        await EmployeeService.update_employee(
            db, tenant.company_id, employee_id,
            EmployeeUpdate(job_title="Senior Analyst", first_name="Eve"),
            actor_id=tenant.hr.user_id,
        )
        entry = (await db.execute(
            select(AuditLog).where(
                AuditLog.entity_type == "employee",
                AuditLog.entity_id == employee_id,
                AuditLog.action == AuditAction.update,
            )
        )).scalars().one()
        assert entry.new_values == {"job_title": "Senior Analyst"}

    async def test_cannot_manage_self(self, db, tenant):
        employee_id = tenant.employee.employee.id
        with pytest.raises(ValidationException):
            await EmployeeService.update_employee(
                db, tenant.company_id, employee_id, EmployeeUpdate(manager_id=employee_id),
                actor_id=tenant.hr.user_id,
            )

    async def test_patch_endpoint(self, client, tenant):
        resp = await client.patch(
            f"/api/v1/employees/{tenant.employee.employee.id}",
            headers=tenant.hr.headers,
            json={"phone": "+1 555 0100"},
        )
        assert resp.status_code == 200
        assert resp.json()["phone"] == "+1 555 0100"


class TestTerminate:

    async def test_terminate(self, client, tenant):
        resp = await client.post(
            f"/api/v1/employees/{tenant.employee.employee.id}/terminate",
            headers=tenant.admin.headers,
            json={"termination_date": "2026-03-31", "reason": "Relocation"},
        )
        assert resp.status_code == 200
        assert resp.json()["employment_status"] == "terminated"
        assert resp.json()["termination_date"] == "2026-03-31"

        resp = await client.get(
            f"/api/v1/employees/{tenant.manager.employee.id}", headers=tenant.admin.headers,
        )
        assert resp.json()["direct_reports_count"] == 0

    async def test_terminate_twice(self, db, tenant):
        args = (db, tenant.company_id, tenant.employee.employee.id)
        await EmployeeService.terminate_employee(
            *args, termination_date=date(2026, 3, 31), reason=None, actor_id=tenant.admin.user_id,
        )
        with pytest.raises(InvalidStateException):
            await EmployeeService.terminate_employee(
                *args, termination_date=date(2026, 4, 1), reason=None, actor_id=tenant.admin.user_id,
            )

    async def test_termination_before_hire(self, db, tenant):
        with pytest.raises(ValidationException):
            await EmployeeService.terminate_employee(
                db, tenant.company_id, tenant.employee.employee.id,
                termination_date=date(2020, 1, 1), reason=None, actor_id=tenant.admin.user_id,
            )

    async def test_hr_cannot_terminate(self, client, tenant):
        resp = await client.post(
            f"/api/v1/employees/{tenant.employee.employee.id}/terminate",
            headers=tenant.hr.headers,
            json={"termination_date": "2026-03-31"},
        )
        assert resp.status_code == 403


class TestDirectReports:

    async def test_is_manager_of(self, db, tenant):
        assert await EmployeeService.is_manager_of(db, tenant.manager.employee.id, tenant.employee.employee.id)
        assert not await EmployeeService.is_manager_of(db, tenant.employee.employee.id, tenant.manager.employee.id)

    async def test_terminated_reports_are_hidden(self, db, tenant):
        gone = await make_employee(
            db, tenant.company_id, first_name="Gus", manager_id=tenant.manager.employee.id,
        )
        gone.employment_status = EmploymentStatus.terminated
        await db.flush()
        reports = await EmployeeService.get_direct_reports(db, tenant.company_id, tenant.manager.employee.id)
        assert [r.first_name for r in reports] == ["Eve"]


# ═════════════════════════════════════════════════════════════════════
# DEPARTMENTS
# ═════════════════════════════════════════════════════════════════════


class TestDepartments:

    async def test_create_and_list_with_headcount(self, client, tenant):
        resp = await client.post(
            "/api/v1/departments", headers=tenant.hr.headers, json={"name": " Engineering ", "code": "ENG"},
        )
        assert resp.status_code == 201
        dept_id = resp.json()["id"]
        assert resp.json()["name"] == "Engineering"

        resp = await client.patch(
            f"/api/v1/employees/{tenant.employee.employee.id}",
            headers=tenant.hr.headers,
            json={"department_id": dept_id},
        )
        assert resp.json()["department"]["name"] == "Engineering"

        resp = await client.get("/api/v1/departments", headers=tenant.employee.headers)
        assert resp.status_code == 200
        assert [(d["name"], d["employee_count"]) for d in resp.json()] == [("Engineering", 1)]

    async def test_duplicate_name_is_case_insensitive(self, db, tenant):
        await DepartmentService.create_department(
            db, tenant.company_id, {"name": "Sales"}, actor_id=tenant.admin.user_id,
        )
        with pytest.raises(ConflictError):
            await DepartmentService.create_department(
                db, tenant.company_id, {"name": "sales"}, actor_id=tenant.admin.user_id,
            )

    async def test_cannot_be_own_parent(self, db, tenant):
        dept = await DepartmentService.create_department(
            db, tenant.company_id, {"name": "Ops"}, actor_id=tenant.admin.user_id,
        )
        with pytest.raises(ValidationException):
            await DepartmentService.update_department(
                db, tenant.company_id, dept.id, {"parent_id": dept.id}, actor_id=tenant.admin.user_id,
            )

    async def test_inactive_hidden_by_default(self, db, tenant):
        dept = await DepartmentService.create_department(
            db, tenant.company_id, {"name": "Legacy"}, actor_id=tenant.admin.user_id,
        )
        await DepartmentService.update_department(
            db, tenant.company_id, dept.id, {"is_active": False}, actor_id=tenant.admin.user_id,
        )
        assert await DepartmentService.list_departments(db, tenant.company_id) == []
        everything = await DepartmentService.list_departments(db, tenant.company_id, include_inactive=True)
        assert [d.name for d in everything] == ["Legacy"]

    async def test_delete_with_employees_is_refused(self, db, tenant):
        dept = await DepartmentService.create_department(
            db, tenant.company_id, {"name": "Support"}, actor_id=tenant.admin.user_id,
        )
        employee = await db.get(Employee, tenant.employee.employee.id)
        employee.department_id = dept.id
        await db.flush()
        with pytest.raises(InvalidStateException, match="1 assigned"):
            await DepartmentService.delete_department(db, tenant.company_id, dept.id, actor_id=tenant.admin.user_id)

    async def test_delete(self, client, db, tenant):
        dept = await DepartmentService.create_department(
            db, tenant.company_id, {"name": "Temp"}, actor_id=tenant.admin.user_id,
        )
        await db.commit()
        resp = await client.delete(f"/api/v1/departments/{dept.id}", headers=tenant.admin.headers)
        assert resp.status_code == 204
        async with TestSessionFactory() as session:
            assert await session.get(Department, dept.id) is None

    async def test_other_company_department_is_404(self, db, tenant, other_tenant):
        dept = await DepartmentService.create_department(
            db, other_tenant.company_id, {"name": "Hidden"}, actor_id=other_tenant.admin.user_id,
        )
        with pytest.raises(NotFoundException):
            await DepartmentService.update_department(
                db, tenant.company_id, dept.id, {"name": "Mine"}, actor_id=tenant.admin.user_id,
            )

    async def test_unknown_department_is_404(self, client, tenant):
        resp = await client.delete(f"/api/v1/departments/{uuid.uuid4()}", headers=tenant.admin.headers)
        assert resp.status_code == 404
