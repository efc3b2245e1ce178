"""Shared test fixtures — async DB, client, tenants, actors and auth helpers.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os
import tempfile

# Settings are read at import time; set test values before anything touches them
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("EMAIL_PROVIDER", "console")
os.environ.setdefault("LOG_LEVEL", "info")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="people-hub-uploads-"))

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

from backend.auth.models import User
from backend.auth.service import create_session, hash_password
from backend.common.constants import AppRole
from backend.companies.models import Company, CompanyMember
from backend.companies.service import CompanyService
from backend.core_hr.models import Employee
from backend.database import get_db
from backend.main import create_app
from backend.models import metadata

DEFAULT_PASSWORD = "correct-horse-battery"
CRON_SECRET = os.environ["CRON_SECRET"]


# ── SQLite compat: compile PG-specific types to TEXT ───────────────

@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(32)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture(autouse=True)
def _disable_rate_limiter():
    from backend.common.rate_limit import limiter

    limiter.enabled = False
    yield
    limiter.enabled = True


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Factories ───────────────────────────────────────────────────────

async def make_user(
    db: AsyncSession,
    *,
    email: Optional[str] = None,
    full_name: str = "Test User",
    password: str = DEFAULT_PASSWORD,
) -> User:
    user = User(
        email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
        password_hash=hash_password(password),
        full_name=full_name,
    )
    db.add(user)
    await db.flush()
    return user


async def make_company(
    db: AsyncSession,
    owner: User,
    *,
    name: str = "Acme",
    slug: Optional[str] = None,
    plan_name: str = "Enterprise",
) -> Company:
    return await CompanyService.create_company(
        db,
        name=name,
        slug=slug or f"acme-{uuid.uuid4().hex[:6]}",
        owner=owner,
        plan_name=plan_name,
    )


async def make_employee(
    db: AsyncSession,
    company_id: uuid.UUID,
    *,
    user: Optional[User] = None,
    first_name: str = "Test",
    last_name: str = "Employee",
    email: Optional[str] = None,
    manager_id: Optional[uuid.UUID] = None,
    salary: Optional[Decimal] = None,
    hire_date: date = date(2024, 1, 15),
) -> Employee:
    employee = Employee(
        company_id=company_id,
        user_id=user.id if user else None,
        employee_number=f"EMP-{uuid.uuid4().hex[:6].upper()}",
        first_name=first_name,
        last_name=last_name,
        email=email or (user.email if user else f"{uuid.uuid4().hex[:8]}@example.com"),
        manager_id=manager_id,
        salary=salary,
        hire_date=hire_date,
    )
    db.add(employee)
    await db.flush()
    return employee


async def auth_headers_for(db: AsyncSession, user: User, company_id: Optional[uuid.UUID] = None) -> dict[str, str]:
    """Persist a session for *user* and return Bearer (+ tenant) headers."""
    access_token, _, _ = await create_session(db, user, None, None)
    headers = {"Authorization": f"Bearer {access_token}"}
    if company_id is not None:
        headers["X-Company-Id"] = str(company_id)
    return headers


@dataclass
class Actor:
    user: User
    employee: Optional[Employee]
    role: AppRole
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def user_id(self) -> uuid.UUID:
        return self.user.id


async def make_actor(
    db: AsyncSession,
    company: Company,
    role: AppRole,
    *,
    first_name: str = "Test",
    manager: Optional[Actor] = None,
    salary: Optional[Decimal] = None,
    with_employee: bool = True,
) -> Actor:
    user = await make_user(db, full_name=f"{first_name} {role.value}")
    db.add(CompanyMember(company_id=company.id, user_id=user.id, role=role, is_primary=True))
    user.current_company_id = company.id
    await db.flush()
    employee = None
    if with_employee:
        employee = await make_employee(
            db,
            company.id,
            user=user,
            first_name=first_name,
            last_name=role.value.title(),
            manager_id=manager.employee.id if manager and manager.employee else None,
            salary=salary,
        )
    headers = await auth_headers_for(db, user, company.id)
    return Actor(user=user, employee=employee, role=role, headers=headers)


@dataclass
class Tenant:
    company: Company
    admin: Actor
    hr: Actor
    manager: Actor
    employee: Actor

    @property
    def company_id(self) -> uuid.UUID:
        return self.company.id


async def make_tenant(db: AsyncSession, *, plan_name: str = "Enterprise", name: str = "Acme") -> Tenant:
    owner = await make_user(db, full_name="Owner Admin")
    company = await make_company(db, owner, name=name, plan_name=plan_name)
    admin_employee = await make_employee(db, company.id, user=owner, first_name="Owner", last_name="Admin")
    admin = Actor(
        user=owner,
        employee=admin_employee,
        role=AppRole.company_admin,
        headers=await auth_headers_for(db, owner, company.id),
    )
    hr = await make_actor(db, company, AppRole.hr_manager, first_name="Hana", salary=Decimal("6000"))
    manager = await make_actor(db, company, AppRole.manager, first_name="Max", salary=Decimal("5000"))
    employee = await make_actor(
        db, company, AppRole.employee, first_name="Eve", manager=manager, salary=Decimal("4400"),
    )
    await db.commit()
    return Tenant(company=company, admin=admin, hr=hr, manager=manager, employee=employee)


@pytest.fixture
async def tenant(db) -> Tenant:
    """Enterprise-plan company with an admin, HR manager, manager and report."""
    return await make_tenant(db)


@pytest.fixture
async def other_tenant(db) -> Tenant:
    return await make_tenant(db, name="Globex")


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
