"""Auth module tests — registration, login lockout, JWT sessions, refresh rotation."""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt
from sqlalchemy import select

from backend.auth.models import User, UserDevice, UserSession
from backend.auth.service import check_suspicious_login, password_change_required, verify_password
from backend.common.audit import SecurityEvent
from backend.common.constants import AppRole, SecurityEventType
from backend.common.exceptions import ValidationException
from backend.companies.models import CompanyMember
from backend.companies.service import CompanyService
from backend.config import settings
from tests.conftest import DEFAULT_PASSWORD, TestSessionFactory, make_user


async def _register(client, email="new.user@example.com", password=DEFAULT_PASSWORD):
    return await client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": password, "full_name": "New User"},
    )


async def _login(client, email, password=DEFAULT_PASSWORD):
    return await client.post("/api/v1/auth/login", json={"email": email, "password": password})


# ── Registration ────────────────────────────────────────────────────


async def test_register_returns_token_pair(client):
    resp = await _register(client)
    assert resp.status_code == 201
    data = resp.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"] and data["refresh_token"]
    assert data["user"]["email"] == "new.user@example.com"
    assert data["user"]["current_company_id"] is None


async def test_register_duplicate_email_is_conflict(client):
    await _register(client)
    resp = await _register(client, email="NEW.USER@example.com")
    assert resp.status_code == 409
    assert resp.json()["code"] == "email_exists"


async def test_register_rejects_short_password(client):
    resp = await _register(client, password="short")
    assert resp.status_code == 422
    assert "password" in resp.json()["errors"]


# ── Login ───────────────────────────────────────────────────────────


async def test_login_success_records_device_and_event(client, db):
    user = await make_user(db, email="login@example.com")
    await db.commit()

    resp = await _login(client, "login@example.com")
    assert resp.status_code == 200
    assert resp.json()["user"]["id"] == str(user.id)

    async with TestSessionFactory() as session:
        devices = (await session.execute(
            select(UserDevice).where(UserDevice.user_id == user.id)
        )).scalars().all()
        events = (await session.execute(
            select(SecurityEvent).where(
                SecurityEvent.user_id == user.id,
                SecurityEvent.event_type == SecurityEventType.login_success,
            )
        )).scalars().all()
    assert len(devices) == 1
    assert len(events) == 1


async def test_login_unknown_email_is_401(client):
    resp = await _login(client, "nobody@example.com")
    assert resp.status_code == 401
    assert resp.json()["code"] == "invalid_credentials"


async def test_login_locks_account_after_max_failures(client, db):
    await make_user(db, email="locked@example.com")
    await db.commit()

    for _ in range(settings.MAX_FAILED_LOGIN_ATTEMPTS - 1):
        resp = await _login(client, "locked@example.com", password="wrong-password")
        assert resp.status_code == 401

    resp = await _login(client, "locked@example.com", password="wrong-password")
    assert resp.status_code == 423
    assert resp.json()["code"] == "account_locked"

    # Correct password is refused while locked
    resp = await _login(client, "locked@example.com")
    assert resp.status_code == 423

    async with TestSessionFactory() as session:
        user = (await session.execute(
            select(User).where(User.email == "locked@example.com")
        )).scalars().one()
        assert user.failed_login_attempts == settings.MAX_FAILED_LOGIN_ATTEMPTS
        assert user.locked_until is not None


async def test_login_after_lock_expiry_resets_counter(client, db):
    user = await make_user(db, email="expired-lock@example.com")
    user.failed_login_attempts = 5
    user.locked_until = datetime.now(timezone.utc) - timedelta(minutes=1)
    await db.commit()

    resp = await _login(client, "expired-lock@example.com")
    assert resp.status_code == 200

    async with TestSessionFactory() as session:
        refreshed = await session.get(User, user.id)
        assert refreshed.failed_login_attempts == 0
        assert refreshed.locked_until is None


async def test_inactive_user_cannot_login(client, db):
    user = await make_user(db, email="gone@example.com")
    user.is_active = False
    await db.commit()

    resp = await _login(client, "gone@example.com")
    assert resp.status_code == 401


# ── JWT / sessions ──────────────────────────────────────────────────


async def test_access_token_claims(client):
    resp = await _register(client)
    payload = jwt.decode(
        resp.json()["access_token"], settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM],
    )
    assert payload["type"] == "access"
    assert payload["sub"] == resp.json()["user"]["id"]
    assert "exp" in payload and "jti" in payload


async def test_me_requires_bearer(client):
    resp = await client.get("/api/v1/auth/me")
    assert resp.status_code == 401


async def test_token_without_session_is_rejected(client, db):
    user = await make_user(db)
    await db.commit()
    token = jwt.encode(
        {
            "sub": str(user.id),
            "type": "access",
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        },
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


async def test_refresh_token_cannot_be_used_as_access(client):
    resp = await _register(client)
    refresh = resp.json()["refresh_token"]
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {refresh}"})
    assert resp.status_code == 401


async def test_me_lists_memberships(client, tenant):
    resp = await client.get("/api/v1/auth/me", headers=tenant.employee.headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["role"] == "employee"
    assert data["current_company_id"] == str(tenant.company_id)
    assert [m["company_name"] for m in data["memberships"]] == ["Acme"]


async def test_logout_revokes_session(client):
    resp = await _register(client)
    headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}

    resp = await client.post("/api/v1/auth/logout", headers=headers)
    assert resp.status_code == 200

    resp = await client.get("/api/v1/auth/me", headers=headers)
    assert resp.status_code == 401


# ── Refresh rotation ────────────────────────────────────────────────


async def test_refresh_rotates_tokens(client):
    resp = await _register(client)
    old_refresh = resp.json()["refresh_token"]

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": old_refresh})
    assert resp.status_code == 200
    assert resp.json()["refresh_token"] != old_refresh

    async with TestSessionFactory() as session:
        old = (await session.execute(
            select(UserSession).where(
                UserSession.refresh_token_hash == hashlib.sha256(old_refresh.encode()).hexdigest()
            )
        )).scalars().one()
        assert old.is_revoked is True


async def test_refresh_reuse_revokes_all_sessions(client):
    resp = await _register(client)
    old_refresh = resp.json()["refresh_token"]

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": old_refresh})
    new_access = resp.json()["access_token"]

    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": old_refresh})
    assert resp.status_code == 401
    assert "reuse" in resp.json()["detail"].lower()

    resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {new_access}"})
    assert resp.status_code == 401


async def test_refresh_with_garbage_token(client):
    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": "not-a-jwt"})
    assert resp.status_code == 401


# ── Password change ─────────────────────────────────────────────────


async def test_change_password_revokes_other_sessions(client, db):
    await make_user(db, email="pw@example.com")
    await db.commit()

    first = (await _login(client, "pw@example.com")).json()["access_token"]
    second = (await _login(client, "pw@example.com")).json()["access_token"]

    resp = await client.post(
        "/api/v1/auth/change-password",
        headers={"Authorization": f"Bearer {first}"},
        json={"current_password": DEFAULT_PASSWORD, "new_password": "an-even-better-one"},
    )
    assert resp.status_code == 200
    assert resp.json()["sessions_revoked"] == 1

    assert (await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {first}"})).status_code == 200
    assert (await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {second}"})).status_code == 401

    async with TestSessionFactory() as session:
        user = (await session.execute(select(User).where(User.email == "pw@example.com"))).scalars().one()
        assert verify_password(user.password_hash, "an-even-better-one")


async def test_change_password_wrong_current(client):
    resp = await _register(client)
    resp = await client.post(
        "/api/v1/auth/change-password",
        headers={"Authorization": f"Bearer {resp.json()['access_token']}"},
        json={"current_password": "not-it-at-all", "new_password": "an-even-better-one"},
    )
    assert resp.status_code == 422
    assert "current_password" in resp.json()["errors"]


# ── New-device detection ────────────────────────────────────────────


class TestSuspiciousLogin:

    async def test_first_device_is_not_suspicious(self, db):
        user = await make_user(db)
        assert await check_suspicious_login(db, user, "10.0.0.1", "Mozilla/5.0 (Windows NT 10.0) Chrome/120.0") is False

    async def test_known_device_is_not_suspicious(self, db):
        user = await make_user(db)
        ua = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) Version/17.0 Safari/605.1.15"
        await check_suspicious_login(db, user, "10.0.0.1", ua)
        assert await check_suspicious_login(db, user, "10.0.0.2", ua) is False

    async def test_new_device_is_suspicious(self, db):
        user = await make_user(db)
        await check_suspicious_login(db, user, "10.0.0.1", "Mozilla/5.0 (Windows NT 10.0) Chrome/120.0")
        flagged = await check_suspicious_login(
            db, user, "10.0.0.9", "Mozilla/5.0 (X11; Linux x86_64) Firefox/121.0",
        )
        assert flagged is True
        events = (await db.execute(
            select(SecurityEvent).where(
                SecurityEvent.user_id == user.id,
                SecurityEvent.event_type == SecurityEventType.suspicious_activity,
            )
        )).scalars().all()
        assert len(events) == 1
        assert events[0].details["reason"] == "new_device"


async def test_unknown_subject_rejected(client, db):
    """A valid session whose user no longer exists is refused."""
    token = jwt.encode(
        {"sub": str(uuid.uuid4()), "type": "access", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


# ── Password policy ─────────────────────────────────────────────────


async def test_new_account_must_change_password(client, db, tenant):
    user = await make_user(db, email="temp@example.com")
    user.must_change_password = True
    user.current_company_id = tenant.company_id
    db.add(CompanyMember(company_id=tenant.company_id, user_id=user.id, role=AppRole.employee))
    await db.commit()

    login = (await _login(client, "temp@example.com")).json()
    assert login["password_change_required"] is True
    headers = {"Authorization": f"Bearer {login['access_token']}"}

    resp = await client.get("/api/v1/employees", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["code"] == "password_change_required"

    resp = await client.post(
        "/api/v1/auth/change-password",
        headers=headers,
        json={"current_password": DEFAULT_PASSWORD, "new_password": "a-fresh-password"},
    )
    assert resp.status_code == 200

    resp = await client.get("/api/v1/employees", headers=headers)
    assert resp.status_code == 200
    me = (await client.get("/api/v1/auth/me", headers=headers)).json()
    assert me["password_change_required"] is False


async def test_password_expiry_follows_company_setting(db, tenant):
    user = tenant.employee.user
    user.password_changed_at = datetime.now(timezone.utc) - timedelta(days=40)
    assert await password_change_required(db, user, tenant.company_id) is False

    await CompanyService.update_setting(
        db, tenant.company_id, "security", {"password_expiry_days": 30}, actor_id=tenant.admin.user_id,
    )
    assert await password_change_required(db, user, tenant.company_id) is True

    user.password_changed_at = datetime.now(timezone.utc) - timedelta(days=5)
    assert await password_change_required(db, user, tenant.company_id) is False


async def test_password_expiry_must_be_positive(db, tenant):
    with pytest.raises(ValidationException):
        await CompanyService.update_setting(
            db, tenant.company_id, "security", {"password_expiry_days": 0}, actor_id=tenant.admin.user_id,
        )
