"""Documents router — types, uploads, versions, signed downloads, verification.

Routes:
    /types                 — Document types (HR manages)
    /limits                — Plan quota and usage for an employee
    /mine                  — Caller's own documents
    /download?token=       — Signed-link download (no session)
    /                      — Upload (multipart) / company listing
    /{id}                  — Detail, soft delete
    /{id}/versions         — Version chain
    /{id}/access           — Issue a short-lived download link
    /{id}/verify           — Verify or reject
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import AppRole, PermissionAction, PermissionModule, VerificationStatus
from backend.common.exceptions import ForbiddenException, NotFoundException
from backend.common.models import get_for_company
from backend.common.pagination import PaginatedResponse, PaginationParams
from backend.core_hr.models import Employee
from backend.core_hr.service import EmployeeService
from backend.database import get_db
from backend.dependencies import (
    TenantContext,
    ensure_can_write,
    require_module,
    require_permission,
    require_role,
)
from backend.documents.models import Document, DocumentType
from backend.documents.schemas import (
    DocumentLimits,
    DocumentOut,
    DocumentTypeCreate,
    DocumentTypeOut,
    DocumentTypeUpdate,
    SignedUrl,
    VerifyRequest,
)
from backend.documents.service import DocumentService
from backend.documents.storage import get_storage, verify_download_token
from backend.permissions.service import PermissionService

router = APIRouter(prefix="", tags=["documents"])

_module = require_module(PermissionModule.documents)
_read = require_permission(PermissionModule.documents, PermissionAction.read)
_create = require_permission(PermissionModule.documents, PermissionAction.create)
_update = require_permission(PermissionModule.documents, PermissionAction.update)
_verify = require_permission(PermissionModule.documents, PermissionAction.verify)
_hr_only = [Depends(require_role(AppRole.hr_manager))]


async def _can(db: AsyncSession, ctx: TenantContext, action: PermissionAction) -> bool:
    return await PermissionService.has_permission(
        db, ctx.user_id, ctx.company_id, PermissionModule.documents, action,
    )


async def _is_owner(db: AsyncSession, ctx: TenantContext, document: Document) -> bool:
    me = await EmployeeService.get_for_user(db, ctx.company_id, ctx.user_id)
    return me is not None and document.employee_id == me.id


async def _require_owner_or(
    db: AsyncSession, ctx: TenantContext, document: Document, action: PermissionAction,
) -> None:
    if await _is_owner(db, ctx, document):
        return
    if not await _can(db, ctx, action):
        raise ForbiddenException(
            detail=f"Permission '{PermissionModule.documents.value}:{action.value}' is required.",
            code="42501",
        )


# ═════════════════════════════════════════════════════════════════════
# Document types
# ═════════════════════════════════════════════════════════════════════


@router.get("/types", response_model=list[DocumentTypeOut])
async def list_types(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    return await DocumentService.list_types(db, ctx.company_id, include_inactive=include_inactive)


@router.post("/types", response_model=DocumentTypeOut, status_code=201, dependencies=_hr_only)
async def create_type(
    body: DocumentTypeCreate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_create),
):
    return await DocumentService.create_type(db, ctx.company_id, body, actor_id=ctx.user_id)


@router.patch("/types/{type_id}", response_model=DocumentTypeOut, dependencies=_hr_only)
async def update_type(
    type_id: uuid.UUID,
    body: DocumentTypeUpdate,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_update),
):
    return await DocumentService.update_type(db, ctx.company_id, type_id, body, actor_id=ctx.user_id)


# ── GET /limits ────────────────────────────────────────────────────

@router.get("/limits", response_model=DocumentLimits)
async def document_limits(
    employee_id: Optional[uuid.UUID] = Query(None, description="Defaults to the caller"),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    if employee_id is None:
        employee_id = (await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)).id
    return await DocumentService.check_document_limits(db, ctx.company_id, employee_id)


# ═════════════════════════════════════════════════════════════════════
# Documents
# ═════════════════════════════════════════════════════════════════════


@router.get("/mine", response_model=PaginatedResponse[DocumentOut])
async def my_documents(
    document_type_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
    return await DocumentService.list_documents(
        db, ctx.company_id, pagination, employee_id=employee.id, document_type_id=document_type_id,
    )


# ── GET /download — signed link, no session ────────────────────────

@router.get("/download")
async def download(
    token: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    document_id = verify_download_token(token)
    document = await DocumentService.get_for_download(db, document_id)
    storage = get_storage()
    if not storage.exists(document.storage_path):
        raise NotFoundException(entity_type="Document file", entity_id=document_id)
    return FileResponse(
        storage.full_path(document.storage_path),
        media_type=document.mime_type or "application/octet-stream",
        filename=document.file_name,
    )


# ── POST / — multipart upload ──────────────────────────────────────

@router.post("", response_model=DocumentOut, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    document_type_id: uuid.UUID = Form(...),
    title: str = Form(..., min_length=1, max_length=200),
    employee_id: Optional[uuid.UUID] = Form(None, description="Defaults to the caller"),
    description: Optional[str] = Form(None),
    issue_date: Optional[date] = Form(None),
    expiry_date: Optional[date] = Form(None),
    parent_document_id: Optional[uuid.UUID] = Form(None),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    """Upload a file for the caller or, with documents:create, any employee.

    Self-service uploads are allowed only for document types that permit
    employee upload.
    """
    await ensure_can_write(db, ctx.company)
    me = await EmployeeService.get_for_user(db, ctx.company_id, ctx.user_id)
    doc_type = await get_for_company(db, DocumentType, ctx.company_id, document_type_id, "Document type")

    if employee_id is None or (me is not None and employee_id == me.id):
        if me is None:
            employee = await EmployeeService.require_for_user(db, ctx.company_id, ctx.user_id)
        else:
            employee = me
        if not doc_type.allowed_for_employee_upload and not await _can(db, ctx, PermissionAction.create):
            raise ForbiddenException(detail="Employees cannot upload this document type.")
    else:
        if not await _can(db, ctx, PermissionAction.create):
            raise ForbiddenException(
                detail="Permission 'documents:create' is required to upload for other employees.",
                code="42501",
            )
        employee = await get_for_company(db, Employee, ctx.company_id, employee_id, "Employee")

    content = await file.read()
    return await DocumentService.upload(
        db,
        ctx.company_id,
        employee,
        document_type_id=doc_type.id,
        title=title,
        file_name=file.filename or "document",
        mime_type=file.content_type,
        content=content,
        actor_id=ctx.user_id,
        description=description,
        issue_date=issue_date,
        expiry_date=expiry_date,
        parent_document_id=parent_document_id,
    )


# ── GET / — company listing ────────────────────────────────────────

@router.get("", response_model=PaginatedResponse[DocumentOut])
async def list_documents(
    employee_id: Optional[uuid.UUID] = Query(None),
    document_type_id: Optional[uuid.UUID] = Query(None),
    verification_status: Optional[VerificationStatus] = Query(None),
    expiring_before: Optional[date] = Query(None),
    include_all_versions: bool = Query(False),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_read),
):
    return await DocumentService.list_documents(
        db,
        ctx.company_id,
        pagination,
        employee_id=employee_id,
        document_type_id=document_type_id,
        verification_status=verification_status,
        expiring_before=expiring_before,
        include_all_versions=include_all_versions,
    )


@router.get("/{document_id}", response_model=DocumentOut)
async def get_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    document = await DocumentService.get_document(db, ctx.company_id, document_id)
    await _require_owner_or(db, ctx, document, PermissionAction.read)
    return document


@router.get("/{document_id}/versions", response_model=list[DocumentOut])
async def document_versions(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    document = await DocumentService.get_document(db, ctx.company_id, document_id)
    await _require_owner_or(db, ctx, document, PermissionAction.read)
    return await DocumentService.version_history(db, ctx.company_id, document_id)


# ── POST /{id}/access — signed download link ───────────────────────

@router.post("/{document_id}/access", response_model=SignedUrl)
async def access_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    document = await DocumentService.get_document(db, ctx.company_id, document_id)
    await _require_owner_or(db, ctx, document, PermissionAction.read)
    return await DocumentService.create_access_link(db, ctx.company_id, document_id, actor_id=ctx.user_id)


# ── POST /{id}/verify ──────────────────────────────────────────────

@router.post("/{document_id}/verify", response_model=DocumentOut)
async def verify_document(
    document_id: uuid.UUID,
    body: VerifyRequest,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_verify),
):
    return await DocumentService.verify(
        db,
        ctx.company_id,
        document_id,
        status=body.status,
        rejection_reason=body.rejection_reason,
        actor_id=ctx.user_id,
    )


@router.delete("/{document_id}", status_code=204)
async def delete_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: TenantContext = Depends(_module),
):
    await ensure_can_write(db, ctx.company)
    document = await DocumentService.get_document(db, ctx.company_id, document_id)
    await _require_owner_or(db, ctx, document, PermissionAction.delete)
    await DocumentService.soft_delete(db, ctx.company_id, document_id, actor_id=ctx.user_id)
