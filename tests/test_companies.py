"""Tenancy tests — onboarding, tenant guards, settings, members, host resolution."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from backend.billing.models import Subscription
from backend.common.audit import AuditLog
from backend.common.constants import AppRole, SubscriptionStatus
from backend.common.exceptions import ConflictError, ForbiddenException
from backend.companies.domains import extract_subdomain, normalize_host, resolve_company_for_host
from backend.companies.models import Company, CompanyMember, CompanySetting
from backend.companies.service import CompanyService
from backend.emails.models import EmailLog
from backend.permissions.models import RolePermission
from tests.conftest import (
    TestSessionFactory,
    auth_headers_for,
    make_company,
    make_employee,
    make_tenant,
    make_user,
)


# ═════════════════════════════════════════════════════════════════════
# ONBOARDING
# ═════════════════════════════════════════════════════════════════════


class TestCreateCompany:

    async def test_create_company_seeds_tenant(self, db):
        owner = await make_user(db, email="founder@example.com")
        company = await make_company(db, owner, name="Initech", slug="initech", plan_name="Pro")

        member = (await db.execute(
            select(CompanyMember).where(CompanyMember.company_id == company.id)
        )).scalars().one()
        assert member.user_id == owner.id
        assert member.role == AppRole.company_admin
        assert member.is_primary is True
        assert owner.current_company_id == company.id
        assert company.subdomain == "initech"

        settings_keys = set((await db.execute(
            select(CompanySetting.key).where(CompanySetting.company_id == company.id)
        )).scalars().all())
        assert {"employee_id_format", "security", "notification_preferences"} <= settings_keys

        grants = (await db.execute(
            select(RolePermission).where(RolePermission.company_id == company.id)
        )).scalars().all()
        assert grants

        subscription = (await db.execute(
            select(Subscription).where(Subscription.company_id == company.id)
        )).scalars().one()
        assert subscription.status == SubscriptionStatus.trialing
        assert subscription.plan.name == "Pro"

        email = (await db.execute(
            select(EmailLog).where(EmailLog.company_id == company.id)
        )).scalars().one()
        assert email.template_type == "trial_started"
        assert email.recipient_email == "founder@example.com"

    async def test_duplicate_slug_is_conflict(self, db):
        owner = await make_user(db)
        await make_company(db, owner, slug="same-slug")
        with pytest.raises(ConflictError):
            await make_company(db, owner, slug="same-slug")

    async def test_second_company_is_not_primary(self, db):
        owner = await make_user(db)
        first = await make_company(db, owner)
        second = await make_company(db, owner)
        rows = (await db.execute(
            select(CompanyMember).where(CompanyMember.user_id == owner.id)
        )).scalars().all()
        primary = {m.company_id: m.is_primary for m in rows}
        assert primary == {first.id: True, second.id: False}
        assert owner.current_company_id == second.id


async def test_create_company_endpoint(client, db):
    user = await make_user(db)
    headers = await auth_headers_for(db, user)
    await db.commit()

    resp = await client.post(
        "/api/v1/companies",
        headers=headers,
        json={"name": "Hooli", "slug": "hooli"},
    )
    assert resp.status_code == 201
    assert resp.json()["slug"] == "hooli"

    resp = await client.get("/api/v1/companies/mine", headers=headers)
    assert [c["slug"] for c in resp.json()] == ["hooli"]
    assert resp.json()[0]["is_current"] is True


async def test_create_company_rejects_bad_slug(client, db):
    user = await make_user(db)
    headers = await auth_headers_for(db, user)
    await db.commit()
    resp = await client.post("/api/v1/companies", headers=headers, json={"name": "X", "slug": "Not A Slug"})
    assert resp.status_code == 422


# ═════════════════════════════════════════════════════════════════════
# TENANT GUARDS
# ═════════════════════════════════════════════════════════════════════


class TestTenantResolution:

    async def test_header_selects_company(self, client, tenant):
        resp = await client.get("/api/v1/companies/current", headers=tenant.employee.headers)
        assert resp.status_code == 200
        assert resp.json()["id"] == str(tenant.company_id)

    async def test_non_member_is_rejected(self, client, tenant, other_tenant):
        headers = {**tenant.employee.headers, "X-Company-Id": str(other_tenant.company_id)}
        resp = await client.get("/api/v1/companies/current", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "not_member"

    async def test_user_without_company(self, client, db):
        user = await make_user(db)
        headers = await auth_headers_for(db, user)
        await db.commit()
        resp = await client.get("/api/v1/companies/current", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "no_company"

    async def test_malformed_company_header(self, client, tenant):
        headers = {**tenant.employee.headers, "X-Company-Id": "not-a-uuid"}
        resp = await client.get("/api/v1/companies/current", headers=headers)
        assert resp.status_code == 403

    async def test_switch_company(self, client, db, tenant):
        other = await make_company(db, tenant.admin.user, name="Second")
        tenant.admin.user.current_company_id = tenant.company_id
        await db.commit()
        headers = {"Authorization": tenant.admin.headers["Authorization"]}

        resp = await client.post("/api/v1/companies/switch", headers=headers, json={"company_id": str(other.id)})
        assert resp.status_code == 200

        resp = await client.get("/api/v1/companies/current", headers=headers)
        assert resp.json()["id"] == str(other.id)


class TestWriteGuard:

    async def test_frozen_company_blocks_writes(self, client, db, tenant):
        company = await db.get(Company, tenant.company_id)
        company.is_active = False
        await db.commit()

        resp = await client.patch(
            "/api/v1/companies/current", headers=tenant.admin.headers, json={"name": "Renamed"},
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "company_frozen"

        # reads still work
        resp = await client.get("/api/v1/companies/current", headers=tenant.admin.headers)
        assert resp.status_code == 200

    async def test_expired_trial_is_read_only(self, client, db, tenant):
        subscription = (await db.execute(
            select(Subscription).where(Subscription.company_id == tenant.company_id)
        )).scalars().one()
        subscription.trial_ends_at = datetime.now(timezone.utc) - timedelta(days=1)
        await db.commit()

        resp = await client.put(
            "/api/v1/companies/current/settings/security",
            headers=tenant.admin.headers,
            json={"value": {"max_failed_attempts": 3}},
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "read_only_mode"

        resp = await client.get("/api/v1/companies/current/settings", headers=tenant.admin.headers)
        assert resp.status_code == 200

    async def test_module_outside_plan(self, client, db):
        tenant = await make_tenant(db, plan_name="Pro")
        resp = await client.get("/api/v1/audit/logs", headers=tenant.admin.headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "module_not_available"

    async def test_role_gate(self, client, tenant):
        resp = await client.patch(
            "/api/v1/companies/current", headers=tenant.hr.headers, json={"name": "Nope"},
        )
        assert resp.status_code == 403


# ═════════════════════════════════════════════════════════════════════
# SETTINGS
# ═════════════════════════════════════════════════════════════════════


class TestSettings:

    async def test_update_setting_merges_and_audits(self, client, tenant):
        resp = await client.put(
            "/api/v1/companies/current/settings/security",
            headers=tenant.admin.headers,
            json={"value": {"max_failed_attempts": 3}},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["max_failed_attempts"] == 3
        assert "lockout_duration_minutes" in data

        async with TestSessionFactory() as session:
            entries = (await session.execute(
                select(AuditLog).where(
                    AuditLog.company_id == tenant.company_id,
                    AuditLog.entity_type == "company_setting",
                )
            )).scalars().all()
        assert len(entries) == 1

    async def test_invalid_security_value(self, client, tenant):
        resp = await client.put(
            "/api/v1/companies/current/settings/security",
            headers=tenant.admin.headers,
            json={"value": {"max_failed_attempts": 0}},
        )
        assert resp.status_code == 422

    async def test_employee_cannot_read_settings(self, client, tenant):
        resp = await client.get("/api/v1/companies/current/settings", headers=tenant.employee.headers)
        assert resp.status_code == 403
        assert resp.json()["code"] == "42501"


class TestEmployeeNumbers:

    async def test_next_number_follows_highest(self, db, tenant):
        employee = await make_employee(db, tenant.company_id)
        employee.employee_number = "EMP0041"
        await db.flush()
        assert await CompanyService.generate_employee_number(db, tenant.company_id) == "EMP0042"

    async def test_custom_prefix_and_padding(self, db, tenant):
        await CompanyService.update_setting(
            db, tenant.company_id, "employee_id_format", {"prefix": "AC-", "padding": 3},
            actor_id=tenant.admin.user_id,
        )
        assert await CompanyService.generate_employee_number(db, tenant.company_id) == "AC-001"


# ═════════════════════════════════════════════════════════════════════
# MEMBERS
# ═════════════════════════════════════════════════════════════════════


class TestMembers:

    async def test_add_member_creates_user_and_invites(self, client, tenant):
        resp = await client.post(
            "/api/v1/companies/current/members",
            headers=tenant.admin.headers,
            json={"email": "invitee@example.com", "role": "manager", "full_name": "Ivy Invitee"},
        )
        assert resp.status_code == 201
        assert resp.json()["role"] == "manager"

        async with TestSessionFactory() as session:
            email = (await session.execute(
                select(EmailLog).where(EmailLog.template_type == "user_invitation")
            )).scalars().one()
        assert email.recipient_email == "invitee@example.com"

    async def test_add_existing_member_is_conflict(self, client, tenant):
        resp = await client.post(
            "/api/v1/companies/current/members",
            headers=tenant.admin.headers,
            json={"email": tenant.hr.user.email, "role": "employee"},
        )
        assert resp.status_code == 409

    async def test_super_admin_cannot_be_granted(self, client, tenant):
        resp = await client.post(
            "/api/v1/companies/current/members",
            headers=tenant.admin.headers,
            json={"email": "boss@example.com", "role": "super_admin"},
        )
        assert resp.status_code == 403

    async def test_last_admin_cannot_be_demoted(self, db, tenant):
        member = (await db.execute(
            select(CompanyMember).where(
                CompanyMember.company_id == tenant.company_id,
                CompanyMember.user_id == tenant.admin.user_id,
            )
        )).scalars().one()
        with pytest.raises(ForbiddenException, match="last company admin"):
            await CompanyService.update_member_role(
                db, tenant.company_id, member.id, AppRole.employee, actor_id=tenant.admin.user_id,
            )

    async def test_deactivated_member_loses_access(self, client, db, tenant):
        member = (await db.execute(
            select(CompanyMember).where(
                CompanyMember.company_id == tenant.company_id,
                CompanyMember.user_id == tenant.employee.user_id,
            )
        )).scalars().one()
        resp = await client.delete(
            f"/api/v1/companies/current/members/{member.id}", headers=tenant.admin.headers,
        )
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

        resp = await client.get("/api/v1/companies/current", headers=tenant.employee.headers)
        assert resp.status_code == 403


# ═════════════════════════════════════════════════════════════════════
# HOST RESOLUTION
# ═════════════════════════════════════════════════════════════════════


class TestDomains:

    def test_normalize_host(self):
        assert normalize_host("Acme.HR.Example.com:8443") == "acme.hr.example.com"
        assert normalize_host("example.com.") == "example.com"

    def test_known_base_domain(self):
        info = extract_subdomain("acme.hr.example.com", ["hr.example.com"])
        assert info.subdomain == "acme"
        assert info.base_domain == "hr.example.com"

    def test_bare_base_domain(self):
        assert extract_subdomain("hr.example.com", ["hr.example.com"]).subdomain is None

    def test_common_prefix_is_not_a_subdomain(self):
        assert extract_subdomain("www.example.com", []).subdomain is None

    def test_three_part_host(self):
        assert extract_subdomain("acme.example.com", []).subdomain == "acme"

    async def test_resolve_by_subdomain_and_custom_domain(self, db, tenant):
        company = await db.get(Company, tenant.company_id)
        company.custom_domain = "people.acme.test"
        await db.flush()

        by_sub = await resolve_company_for_host(
            db, f"{company.subdomain}.hr.example.com", ["hr.example.com"],
        )
        assert by_sub.company.id == company.id
        assert by_sub.is_custom_domain is False

        by_domain = await resolve_company_for_host(db, "people.acme.test", ["hr.example.com"])
        assert by_domain.company.id == company.id
        assert by_domain.is_custom_domain is True

        assert await resolve_company_for_host(db, "localhost") is None

    async def test_resolve_endpoint(self, client, db, tenant):
        company = await db.get(Company, tenant.company_id)
        company.custom_domain = "people.acme.test"
        await db.commit()

        resp = await client.get("/api/v1/companies/resolve", params={"host": "people.acme.test"})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Acme"

        resp = await client.get("/api/v1/companies/resolve", params={"host": "unknown.test"})
        assert resp.status_code == 404
