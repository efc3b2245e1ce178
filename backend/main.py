"""People Hub — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.audit.router import router as audit_router
from backend.auth.router import router as auth_router
from backend.billing.router import router as billing_router
from backend.common.exceptions import register_exception_handlers
from backend.common.logging_utils import RequestIdMiddleware, configure_logging
from backend.common.rate_limit import limiter
from backend.companies.router import router as companies_router
from backend.config import settings
from backend.core_hr.router import departments_router, employees_router
from backend.database import engine
from backend.documents.router import router as documents_router
from backend.emails.router import router as emails_router
from backend.jobs.router import router as jobs_router
from backend.leave.router import router as leave_router
from backend.notifications.router import router as notifications_router
from backend.payroll.router import router as payroll_router
from backend.performance.router import router as performance_router
from backend.permissions.router import router as permissions_router
from backend.recruitment.router import router as recruitment_router
from backend.shifts.router import router as shifts_router
from backend.time_tracking.router import router as time_tracking_router

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("People Hub API starting (%s)", settings.ENVIRONMENT)
    yield
    await engine.dispose()
    logger.info("People Hub API stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    app = FastAPI(
        title="People Hub",
        description="Multi-tenant HR platform: people, time, leave, payroll, documents, talent",
        version=VERSION,
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807, including 429 from slowapi)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": VERSION,
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(auth_router, prefix="/api/v1/auth", tags=["auth"])
    app.include_router(companies_router, prefix="/api/v1/companies", tags=["companies"])
    app.include_router(billing_router, prefix="/api/v1/billing", tags=["billing"])
    app.include_router(permissions_router, prefix="/api/v1/permissions", tags=["permissions"])
    app.include_router(emails_router, prefix="/api/v1/emails", tags=["emails"])
    app.include_router(employees_router, prefix="/api/v1/employees", tags=["employees"])
    app.include_router(departments_router, prefix="/api/v1/departments", tags=["departments"])
    app.include_router(leave_router, prefix="/api/v1/leave", tags=["leave"])
    app.include_router(time_tracking_router, prefix="/api/v1/time-tracking", tags=["time-tracking"])
    app.include_router(shifts_router, prefix="/api/v1/shifts", tags=["shifts"])
    app.include_router(payroll_router, prefix="/api/v1/payroll", tags=["payroll"])
    app.include_router(documents_router, prefix="/api/v1/documents", tags=["documents"])
    app.include_router(performance_router, prefix="/api/v1/performance", tags=["performance"])
    app.include_router(recruitment_router, prefix="/api/v1/recruitment", tags=["recruitment"])
    app.include_router(audit_router, prefix="/api/v1/audit", tags=["audit"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["notifications"])
    app.include_router(jobs_router, prefix="/api/v1/jobs", tags=["jobs"])

    return app


app = create_app()
