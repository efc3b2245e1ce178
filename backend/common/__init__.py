"""Common module — shared utilities for People Hub."""

from backend.common.audit import (
    AuditLog,
    SecurityEvent,
    client_info,
    create_audit_entry,
    log_security_event,
)
from backend.common.constants import (
    ADMIN_ROLES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    READ_ONLY_ACTIONS,
    ROLE_HIERARCHY,
    AppRole,
    AuditAction,
    PermissionAction,
    PermissionModule,
    SecurityEventType,
    SecuritySeverity,
)
from backend.common.exceptions import (
    ERROR_MESSAGES,
    AppException,
    ConflictError,
    ForbiddenException,
    InvalidStateException,
    LimitExceededException,
    NotFoundException,
    TenantException,
    UnauthorizedException,
    ValidationException,
    get_error_message,
    register_exception_handlers,
)
from backend.common.filters import apply_filters, apply_search, apply_sorting
from backend.common.models import as_utc, utcnow
from backend.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditLog",
    "SecurityEvent",
    "client_info",
    "create_audit_entry",
    "log_security_event",
    # Constants / Enums
    "ADMIN_ROLES",
    "AppRole",
    "AuditAction",
    "PermissionAction",
    "PermissionModule",
    "READ_ONLY_ACTIONS",
    "ROLE_HIERARCHY",
    "SecurityEventType",
    "SecuritySeverity",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "ERROR_MESSAGES",
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "InvalidStateException",
    "LimitExceededException",
    "NotFoundException",
    "TenantException",
    "UnauthorizedException",
    "ValidationException",
    "get_error_message",
    "register_exception_handlers",
    # Filters
    "apply_filters",
    "apply_search",
    "apply_sorting",
    # Dates
    "as_utc",
    "utcnow",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
