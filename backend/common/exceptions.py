"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)

BASE_ERROR_URI = "https://peoplehub.dev/errors"

# User-facing messages keyed by error code (application codes and the
# PostgreSQL SQLSTATEs surfaced through IntegrityError).
ERROR_MESSAGES: dict[str, str] = {
    # Auth
    "invalid_credentials": "Invalid email or password. Please try again.",
    "email_exists": "An account with this email already exists.",
    "over_request_rate_limit": "Too many requests. Please wait a moment and try again.",
    "account_locked": "Account temporarily locked due to too many failed login attempts.",
    "invalid_token": "Your session has expired. Please sign in again.",
    # Database
    "42501": "You don't have permission to perform this action.",
    "23505": "This record already exists.",
    "23503": "This record is referenced by other data and cannot be changed.",
    "23514": "The provided data violates a validation rule.",
    # Tenant
    "company_frozen": "Your company account is frozen. Please contact support.",
    "no_company": "You are not associated with any company.",
    "not_member": "You are not a member of this company.",
    "module_not_available": "This module is not available on your current plan.",
    "employee_limit_reached": "You have reached the employee limit for your plan. Please upgrade.",
    "read_only_mode": "Your subscription is inactive. The account is in read-only mode.",
    "document_storage_limit": "Your plan's document storage limit has been reached.",
    "document_count_limit": "This employee has reached the document limit for your plan.",
    "correction_pending": "A time correction for this day is already awaiting review.",
    "password_change_required": "You must change your password before continuing.",
}


def get_error_message(code: str, fallback: Optional[str] = None) -> str:
    return ERROR_MESSAGES.get(code, fallback or "An unexpected error occurred.")


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
        code: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        self.code = code
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found (also used for other tenants' rows)."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ConflictError(AppException):
    """409 — unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any, code: Optional[str] = None) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=get_error_message(code) if code else f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
            code=code,
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
        code: Optional[str] = None,
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
            code=code,
        )


class UnauthorizedException(AppException):
    """401 — missing or rejected credentials."""

    def __init__(self, code: str = "invalid_credentials", detail: Optional[str] = None) -> None:
        super().__init__(
            status_code=401,
            error_type="unauthorized",
            title="Unauthorized",
            detail=detail or get_error_message(code),
            code=code,
        )


class AccountLockedException(AppException):
    """423 — too many failed logins."""

    def __init__(self, locked_until: Any) -> None:
        super().__init__(
            status_code=423,
            error_type="account-locked",
            title="Account Locked",
            detail=f"{get_error_message('account_locked')} Try again after {locked_until}.",
            code="account_locked",
        )


class TenantException(AppException):
    """403 — tenant guard failures (frozen company, missing membership, plan)."""

    def __init__(self, code: str, detail: Optional[str] = None) -> None:
        super().__init__(
            status_code=403,
            error_type=code.replace("_", "-"),
            title="Tenant Access Denied",
            detail=detail or get_error_message(code),
            code=code,
        )


class LimitExceededException(TenantException):
    """403 — a plan quota would be exceeded."""


class InvalidStateException(AppException):
    """409 — operation not allowed in the entity's current lifecycle state."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=409,
            error_type="invalid-state",
            title="Invalid State",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]], detail: Optional[str] = None) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail=detail or "One or more fields failed validation.",
            errors=errors,
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.code:
        body["code"] = exc.code
    if exc.errors:
        body["errors"] = exc.errors
    return body


def _sqlstate(exc: IntegrityError) -> Optional[str]:
    """Extract the SQLSTATE from a driver error (asyncpg/psycopg), if any."""
    orig = getattr(exc, "orig", None)
    for attr in ("sqlstate", "pgcode"):
        value = getattr(orig, attr, None)
        if value:
            return str(value)
    message = str(orig or exc).lower()
    if "unique" in message:
        return "23505"
    if "foreign key" in message:
        return "23503"
    if "check constraint" in message:
        return "23514"
    return None


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_integrity_error(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    code = _sqlstate(exc) or "23505"
    logger.warning("Integrity error on %s: %s", request.url.path, exc.orig)
    return JSONResponse(
        status_code=409,
        content={
            "type": f"{BASE_ERROR_URI}/conflict",
            "title": "Conflict",
            "status": 409,
            "detail": get_error_message(code),
            "instance": str(request.url.path),
            "code": code,
        },
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


async def _handle_rate_limit(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "type": f"{BASE_ERROR_URI}/rate-limited",
            "title": "Too Many Requests",
            "status": 429,
            "detail": get_error_message("over_request_rate_limit"),
            "instance": str(request.url.path),
            "code": "over_request_rate_limit",
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _handle_integrity_error)      # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, _handle_rate_limit)
