"""Tests for common utilities — filters, pagination, and error responses.

Exercises apply_filters, apply_sorting, apply_search, paginate and the
RFC 7807 handlers registered on the app.
"""

from __future__ import annotations

import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.exceptions import _sqlstate, get_error_message
from backend.common.filters import _get_column, apply_filters, apply_search, apply_sorting
from backend.common.pagination import PaginationParams, build_meta, paginate
from backend.core_hr.models import Department


# ── Helpers ─────────────────────────────────────────────────────────


async def _seed_departments(db: AsyncSession, company_id, *names, **kwargs) -> list[Department]:
    departments = [Department(company_id=company_id, name=name, **kwargs) for name in names]
    db.add_all(departments)
    await db.flush()
    return departments


def _scoped(company_id):
    return select(Department).where(Department.company_id == company_id)


# ═════════════════════════════════════════════════════════════════════
# FILTER TESTS
# ═════════════════════════════════════════════════════════════════════


class TestApplyFilters:

    async def test_filter_by_equality(self, db, tenant):
        await _seed_departments(db, tenant.company_id, "Sales", "Support")
        query = apply_filters(_scoped(tenant.company_id), Department, {"name": "Sales"})
        rows = (await db.execute(query)).scalars().all()
        assert [d.name for d in rows] == ["Sales"]

    async def test_none_values_skipped(self, db, tenant):
        await _seed_departments(db, tenant.company_id, "Sales", "Support")
        query = apply_filters(_scoped(tenant.company_id), Department, {"name": None, "is_active": True})
        assert len((await db.execute(query)).scalars().all()) == 2

    async def test_filter_by_ilike(self, db, tenant):
        await _seed_departments(db, tenant.company_id, "Engineering", "Marketing")
        query = apply_filters(_scoped(tenant.company_id), Department, {"name__ilike": "ENGIN"})
        rows = (await db.execute(query)).scalars().all()
        assert [d.name for d in rows] == ["Engineering"]

    async def test_filter_by_in(self, db, tenant):
        await _seed_departments(db, tenant.company_id, "Sales", "Support", "Legal")
        query = apply_filters(_scoped(tenant.company_id), Department, {"name__in": ["Sales", "Legal"]})
        rows = (await db.execute(query)).scalars().all()
        assert {d.name for d in rows} == {"Sales", "Legal"}

    async def test_filter_by_range(self, db, tenant):
        await _seed_departments(db, tenant.company_id, "A", "B", "C")
        query = apply_filters(
            _scoped(tenant.company_id), Department, {"name__from": "B", "name__to": "C"},
        )
        rows = (await db.execute(query)).scalars().all()
        assert {d.name for d in rows} == {"B", "C"}

    async def test_unknown_column_ignored(self, db, tenant):
        await _seed_departments(db, tenant.company_id, "Sales")
        query = apply_filters(_scoped(tenant.company_id), Department, {"nonexistent_field": "value"})
        assert len((await db.execute(query)).scalars().all()) == 1


class TestApplySearch:

    async def test_search_across_columns(self, db, tenant):
        await _seed_departments(db, tenant.company_id, "Finance")
        (support,) = await _seed_departments(db, tenant.company_id, "Support", cost_center="CC-FIN-2")

        query = apply_search(_scoped(tenant.company_id), Department, "  fin ", ["name", "cost_center"])
        rows = (await db.execute(query)).scalars().all()
        assert len(rows) == 2

        query = apply_search(_scoped(tenant.company_id), Department, "cc-fin", ["name", "cost_center"])
        assert (await db.execute(query)).scalars().all() == [support]

    def test_blank_search_is_no_op(self):
        query = select(Department)
        assert apply_search(query, Department, "   ", ["name"]) is query
        assert apply_search(query, Department, "x", ["not_a_column"]) is query


class TestApplySorting:

    async def test_sort_ascending_and_descending(self, db, tenant):
        await _seed_departments(db, tenant.company_id, "Charlie", "Alpha", "Bravo")

        asc = apply_sorting(_scoped(tenant.company_id), Department, "name")
        assert [d.name for d in (await db.execute(asc)).scalars().all()] == ["Alpha", "Bravo", "Charlie"]

        desc = apply_sorting(_scoped(tenant.company_id), Department, "-name")
        assert [d.name for d in (await db.execute(desc)).scalars().all()] == ["Charlie", "Bravo", "Alpha"]

    def test_none_and_unknown_are_no_ops(self):
        query = select(Department)
        assert apply_sorting(query, Department, None) is query
        assert apply_sorting(query, Department, "-password; drop table") is query


class TestGetColumn:

    def test_existing_column(self):
        assert _get_column(Department, "name") is not None

    def test_relationships_and_missing_names(self):
        assert _get_column(Department, "totally_fake_column") is None
        assert _get_column(Department, "__tablename__") is None


# ═════════════════════════════════════════════════════════════════════
# PAGINATION
# ═════════════════════════════════════════════════════════════════════


class TestPagination:

    @pytest.mark.parametrize(
        "page,page_size,total,total_pages,has_next,has_prev",
        [
            (1, 20, 0, 0, False, False),
            (1, 20, 20, 1, False, False),
            (1, 20, 21, 2, True, False),
            (2, 20, 21, 2, False, True),
        ],
    )
    def test_build_meta(self, page, page_size, total, total_pages, has_next, has_prev):
        meta = build_meta(page, page_size, total)
        assert meta.total_pages == total_pages
        assert meta.has_next is has_next
        assert meta.has_prev is has_prev

    async def test_paginate_with_sort(self, db, tenant):
        await _seed_departments(db, tenant.company_id, *(f"D{i}" for i in range(5)))
        params = PaginationParams(page=1, page_size=3, sort="-name")
        result = await paginate(db, _scoped(tenant.company_id), params, model=Department)
        assert [d.name for d in result.data] == ["D4", "D3", "D2"]
        assert result.meta.total == 5
        assert result.meta.has_next is True

    async def test_paginate_last_page(self, db, tenant):
        await _seed_departments(db, tenant.company_id, *(f"D{i}" for i in range(5)))
        params = PaginationParams(page=2, page_size=3, sort="name")
        result = await paginate(db, _scoped(tenant.company_id), params, model=Department)
        assert [d.name for d in result.data] == ["D3", "D4"]
        assert result.meta.has_prev is True
        assert result.meta.has_next is False

    async def test_sort_ignored_without_model(self, db, tenant):
        await _seed_departments(db, tenant.company_id, "B", "A")
        query = _scoped(tenant.company_id).order_by(Department.name)
        params = PaginationParams(page=1, page_size=10, sort="-name")
        result = await paginate(db, query, params)
        assert [d.name for d in result.data] == ["A", "B"]

    async def test_paginate_empty(self, db, tenant):
        query = _scoped(tenant.company_id).where(Department.name == "ZZZ_NONEXISTENT")
        result = await paginate(db, query, PaginationParams(page=1, page_size=10, sort=None))
        assert result.data == []
        assert result.meta.total == 0
        assert result.meta.total_pages == 0


# ═════════════════════════════════════════════════════════════════════
# ERROR RESPONSES
# ═════════════════════════════════════════════════════════════════════


class TestErrorResponses:

    async def test_not_found_problem_detail(self, client, tenant):
        missing = uuid.uuid4()
        resp = await client.get(f"/api/v1/employees/{missing}", headers=tenant.admin.headers)
        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["type"].endswith("/not-found")
        assert body["title"] == "Employee Not Found"
        assert body["instance"] == f"/api/v1/employees/{missing}"
        assert str(missing) in body["detail"]

    async def test_query_validation_errors_by_field(self, client, tenant):
        resp = await client.get("/api/v1/employees", headers=tenant.admin.headers, params={"page": 0})
        assert resp.status_code == 422
        body = resp.json()
        assert body["title"] == "Validation Error"
        assert "page" in body["errors"]

    async def test_forbidden_carries_code(self, client, tenant):
        resp = await client.post(
            "/api/v1/departments", headers=tenant.employee.headers, json={"name": "Skunkworks"},
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "42501"

    def test_error_messages(self):
        assert get_error_message("module_not_available").startswith("This module")
        assert get_error_message("nope") == "An unexpected error occurred."
        assert get_error_message("nope", "Custom") == "Custom"


class TestSqlState:

    def _error(self, orig) -> IntegrityError:
        return IntegrityError("INSERT ...", {}, orig)

    def test_driver_sqlstate_wins(self):
        assert _sqlstate(self._error(SimpleNamespace(sqlstate="23503"))) == "23503"
        assert _sqlstate(self._error(SimpleNamespace(pgcode="23514"))) == "23514"

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("UNIQUE constraint failed: departments.name", "23505"),
            ("FOREIGN KEY constraint failed", "23503"),
            ("CHECK constraint failed: ck_positive", "23514"),
            ("disk I/O error", None),
        ],
    )
    def test_message_fallback(self, message, expected):
        assert _sqlstate(self._error(Exception(message))) == expected
