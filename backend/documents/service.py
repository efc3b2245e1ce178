"""Document service — types, uploads, versions, verification, plan limits."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.billing.service import BillingService
from backend.common.audit import create_audit_entry
from backend.common.constants import AuditAction, SubscriptionStatus, VerificationStatus
from backend.common.exceptions import (
    ConflictError,
    InvalidStateException,
    LimitExceededException,
    NotFoundException,
    ValidationException,
)
from backend.common.models import get_for_company, utcnow
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.core_hr.models import Employee
from backend.documents.models import Document, DocumentType
from backend.documents.schemas import (
    DocumentLimits,
    DocumentOut,
    DocumentTypeCreate,
    DocumentTypeUpdate,
    SignedUrl,
)
from backend.documents.storage import (
    build_storage_path,
    create_download_token,
    get_storage,
    validate_upload,
)
from backend.notifications.service import notify_document_verification

logger = logging.getLogger(__name__)

UNLIMITED = -1
MB = 1024 * 1024
LIMITED_STATUSES = (SubscriptionStatus.active, SubscriptionStatus.trialing)


class DocumentService:
    """Async document operations."""

    # ── Document types ──────────────────────────────────────────────

    @staticmethod
    async def list_types(
        db: AsyncSession, company_id: uuid.UUID, *, include_inactive: bool = False,
    ) -> list[DocumentType]:
        query = select(DocumentType).where(DocumentType.company_id == company_id).order_by(DocumentType.name)
        if not include_inactive:
            query = query.where(DocumentType.is_active.is_(True))
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def _ensure_unique_type(
        db: AsyncSession, company_id: uuid.UUID, field: str, value: str, exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        column = getattr(DocumentType, field)
        query = select(DocumentType.id).where(DocumentType.company_id == company_id, column == value)
        if exclude_id is not None:
            query = query.where(DocumentType.id != exclude_id)
        if (await db.execute(query)).first():
            raise ConflictError(field, value)

    @staticmethod
    async def create_type(
        db: AsyncSession, company_id: uuid.UUID, data: DocumentTypeCreate, *, actor_id: uuid.UUID,
    ) -> DocumentType:
        await DocumentService._ensure_unique_type(db, company_id, "name", data.name)
        await DocumentService._ensure_unique_type(db, company_id, "code", data.code)
        doc_type = DocumentType(company_id=company_id, **data.model_dump())
        db.add(doc_type)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.create,
            entity_type="document_type",
            entity_id=doc_type.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={"name": doc_type.name, "code": doc_type.code},
        )
        return doc_type

    @staticmethod
    async def update_type(
        db: AsyncSession,
        company_id: uuid.UUID,
        type_id: uuid.UUID,
        data: DocumentTypeUpdate,
        *,
        actor_id: uuid.UUID,
    ) -> DocumentType:
        doc_type = await get_for_company(db, DocumentType, company_id, type_id, "Document type")
        changes = data.model_dump(exclude_unset=True)
        if changes.get("name") and changes["name"] != doc_type.name:
            await DocumentService._ensure_unique_type(db, company_id, "name", changes["name"], type_id)
        for field, value in changes.items():
            setattr(doc_type, field, value)
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="document_type",
            entity_id=doc_type.id,
            company_id=company_id,
            user_id=actor_id,
            new_values={k: v for k, v in changes.items() if not isinstance(v, list)},
        )
        return doc_type

    # ── Limits ──────────────────────────────────────────────────────

    @staticmethod
    async def check_document_limits(
        db: AsyncSession, company_id: uuid.UUID, employee_id: uuid.UUID,
    ) -> DocumentLimits:
        """Plan quotas and the employee's current usage.

        Quotas only bind while the subscription is active or trialing;
        otherwise both read as unlimited. Every live version counts
        toward storage and the per-employee total.
        """
        max_storage_mb = max_per_employee = UNLIMITED
        subscription = await BillingService.get_subscription(db, company_id)
        if subscription is not None and subscription.status in LIMITED_STATUSES:
            max_storage_mb = await BillingService.get_plan_feature(
                db, company_id, "documents.max_storage_mb", UNLIMITED,
            )
            max_per_employee = await BillingService.get_plan_feature(
                db, company_id, "documents.max_per_employee", UNLIMITED,
            )

        storage_bytes, count = (await db.execute(
            select(func.coalesce(func.sum(Document.file_size), 0), func.count(Document.id)).where(
                Document.company_id == company_id,
                Document.employee_id == employee_id,
                Document.deleted_at.is_(None),
            )
        )).one()

        can_upload = (max_storage_mb == UNLIMITED or storage_bytes < max_storage_mb * MB) and (
            max_per_employee == UNLIMITED or count < max_per_employee
        )
        return DocumentLimits(
            max_storage_mb=max_storage_mb,
            max_per_employee=max_per_employee,
            current_storage_bytes=int(storage_bytes or 0),
            current_count=count or 0,
            can_upload=can_upload,
        )

    @staticmethod
    async def enforce_limits(
        db: AsyncSession, company_id: uuid.UUID, employee_id: uuid.UUID, new_size: int,
    ) -> None:
        limits = await DocumentService.check_document_limits(db, company_id, employee_id)
        if limits.max_storage_mb != UNLIMITED and limits.current_storage_bytes + new_size > limits.max_storage_mb * MB:
            raise LimitExceededException("document_storage_limit")
        if limits.max_per_employee != UNLIMITED and limits.current_count >= limits.max_per_employee:
            raise LimitExceededException("document_count_limit")

    # ── Upload ──────────────────────────────────────────────────────

    @staticmethod
    async def upload(
        db: AsyncSession,
        company_id: uuid.UUID,
        employee: Employee,
        *,
        document_type_id: uuid.UUID,
        title: str,
        file_name: str,
        mime_type: Optional[str],
        content: bytes,
        actor_id: uuid.UUID,
        description: Optional[str] = None,
        issue_date: Optional[date] = None,
        expiry_date: Optional[date] = None,
        parent_document_id: Optional[uuid.UUID] = None,
    ) -> Document:
        doc_type = await get_for_company(db, DocumentType, company_id, document_type_id, "Document type")
        if not doc_type.is_active:
            raise ValidationException({"document_type_id": ["This document type is inactive."]})
        if doc_type.requires_expiry and expiry_date is None:
            raise ValidationException({"expiry_date": ["Expiry date is required for this document type."]})
        if issue_date and expiry_date and expiry_date < issue_date:
            raise ValidationException({"expiry_date": ["Expiry date cannot be before the issue date."]})

        validate_upload(
            mime_type,
            len(content),
            type_mime_types=doc_type.allowed_mime_types,
            type_max_mb=doc_type.max_file_size_mb,
        )

        parent: Optional[Document] = None
        version = 1
        if parent_document_id is not None:
            parent = await DocumentService.get_document(db, company_id, parent_document_id)
            if parent.employee_id != employee.id:
                raise ValidationException({"parent_document_id": ["Parent document belongs to another employee."]})
            if not parent.is_latest:
                raise InvalidStateException("Only the latest version of a document can be replaced.")
            version = parent.version + 1

        await DocumentService.enforce_limits(db, company_id, employee.id, len(content))

        document_id = uuid.uuid4()
        path = build_storage_path(company_id, employee.id, document_id, file_name)
        storage = get_storage()
        storage.save(path, content)

        if parent is not None:
            parent.is_latest = False
        document = Document(
            id=document_id,
            company_id=company_id,
            employee_id=employee.id,
            document_type_id=doc_type.id,
            title=title,
            description=description,
            file_name=file_name,
            storage_path=path,
            mime_type=mime_type,
            file_size=len(content),
            issue_date=issue_date,
            expiry_date=expiry_date,
            verification_status=VerificationStatus.pending,
            parent_document_id=parent.id if parent else None,
            version=version,
            is_latest=True,
            uploaded_by=actor_id,
        )
        try:
            db.add(document)
            await db.flush()
            await create_audit_entry(
                db,
                action=AuditAction.create,
                entity_type="employee_document",
                entity_id=document.id,
                company_id=company_id,
                user_id=actor_id,
                new_values={"title": title, "employee_id": str(employee.id), "version": version},
                details={"file_name": file_name, "file_size": len(content), "mime_type": mime_type},
            )
        except Exception:
            # the row never landed, so the stored file has no owner
            storage.delete(path)
            raise
        logger.info("Uploaded document %s (v%d) for employee %s", document.id, version, employee.id)
        return await DocumentService._load(db, document.id)

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def _load(db: AsyncSession, document_id: uuid.UUID) -> Document:
        result = await db.execute(
            select(Document)
            .where(Document.id == document_id)
            .options(selectinload(Document.document_type))
            .execution_options(populate_existing=True)
        )
        return result.scalars().one()

    @staticmethod
    async def get_document(db: AsyncSession, company_id: uuid.UUID, document_id: uuid.UUID) -> Document:
        """Load a live document; deleted and foreign-tenant documents read as missing."""
        document = await get_for_company(db, Document, company_id, document_id, "Document")
        if document.deleted_at is not None:
            raise NotFoundException(entity_type="Document", entity_id=document_id)
        return await DocumentService._load(db, document.id)

    @staticmethod
    async def list_documents(
        db: AsyncSession,
        company_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        employee_ids: Optional[list[uuid.UUID]] = None,
        employee_id: Optional[uuid.UUID] = None,
        document_type_id: Optional[uuid.UUID] = None,
        verification_status: Optional[VerificationStatus] = None,
        expiring_before: Optional[date] = None,
        include_all_versions: bool = False,
    ) -> PaginatedResponse[DocumentOut]:
        query = (
            select(Document)
            .where(Document.company_id == company_id, Document.deleted_at.is_(None))
            .options(selectinload(Document.document_type))
            .order_by(Document.created_at.desc())
        )
        if not include_all_versions:
            query = query.where(Document.is_latest.is_(True))
        if employee_ids is not None:
            query = query.where(Document.employee_id.in_(employee_ids))
        if employee_id is not None:
            query = query.where(Document.employee_id == employee_id)
        if document_type_id is not None:
            query = query.where(Document.document_type_id == document_type_id)
        if verification_status is not None:
            query = query.where(Document.verification_status == verification_status)
        if expiring_before is not None:
            query = query.where(Document.expiry_date.is_not(None), Document.expiry_date <= expiring_before)
        return await paginate(db, query, pagination, schema=DocumentOut)

    @staticmethod
    async def version_history(
        db: AsyncSession, company_id: uuid.UUID, document_id: uuid.UUID,
    ) -> list[Document]:
        """Every live version in the chain containing *document_id*, newest first."""
        document = await DocumentService.get_document(db, company_id, document_id)

        root = document
        while root.parent_document_id is not None:
            parent = await db.get(Document, root.parent_document_id)
            if parent is None or parent.company_id != company_id:
                break
            root = parent

        chain = [root]
        frontier = [root.id]
        while frontier:
            children = (await db.execute(
                select(Document).where(Document.parent_document_id.in_(frontier))
            )).scalars().all()
            chain.extend(children)
            frontier = [c.id for c in children]

        ids = [d.id for d in chain if d.deleted_at is None]
        result = await db.execute(
            select(Document)
            .where(Document.id.in_(ids))
            .options(selectinload(Document.document_type))
            .order_by(Document.version.desc())
        )
        return list(result.scalars().all())

    # ── Access ──────────────────────────────────────────────────────

    @staticmethod
    async def create_access_link(
        db: AsyncSession, company_id: uuid.UUID, document_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> SignedUrl:
        document = await DocumentService.get_document(db, company_id, document_id)
        token, expires_in = create_download_token(document.id)
        document.access_count = (document.access_count or 0) + 1
        document.last_accessed_at = utcnow()
        document.last_accessed_by = actor_id
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.read,
            entity_type="employee_document",
            entity_id=document.id,
            company_id=company_id,
            user_id=actor_id,
        )
        return SignedUrl(url=f"/api/v1/documents/download?token={token}", expires_in=expires_in)

    @staticmethod
    async def get_for_download(db: AsyncSession, document_id: uuid.UUID) -> Document:
        document = await db.get(Document, document_id)
        if document is None or document.deleted_at is not None:
            raise NotFoundException(entity_type="Document", entity_id=document_id)
        return document

    # ── Verification ────────────────────────────────────────────────

    @staticmethod
    async def verify(
        db: AsyncSession,
        company_id: uuid.UUID,
        document_id: uuid.UUID,
        *,
        status: VerificationStatus,
        rejection_reason: Optional[str],
        actor_id: uuid.UUID,
    ) -> Document:
        if status not in (VerificationStatus.verified, VerificationStatus.rejected):
            raise ValidationException({"status": ["Status must be 'verified' or 'rejected'."]})
        if status == VerificationStatus.rejected and not (rejection_reason or "").strip():
            raise ValidationException({"rejection_reason": ["A reason is required when rejecting a document."]})

        document = await DocumentService.get_document(db, company_id, document_id)
        if document.verification_status != VerificationStatus.pending:
            raise InvalidStateException(
                f"Only pending documents can be reviewed (current status: {document.verification_status.value})."
            )

        document.verification_status = status
        document.verified_by = actor_id
        document.verified_at = utcnow()
        document.rejection_reason = rejection_reason if status == VerificationStatus.rejected else None
        await db.flush()

        await create_audit_entry(
            db,
            action=AuditAction.update,
            entity_type="employee_document",
            entity_id=document.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"verification_status": VerificationStatus.pending.value},
            new_values={"verification_status": status.value, "rejection_reason": document.rejection_reason},
        )
        owner = await db.get(Employee, document.employee_id)
        await notify_document_verification(
            db,
            document,
            owner.user_id if owner else None,
            verified=status == VerificationStatus.verified,
            reason=document.rejection_reason,
        )
        return await DocumentService._load(db, document.id)

    # ── Delete ──────────────────────────────────────────────────────

    @staticmethod
    async def soft_delete(
        db: AsyncSession, company_id: uuid.UUID, document_id: uuid.UUID, *, actor_id: uuid.UUID,
    ) -> None:
        """Hide a document; the previous version becomes latest again."""
        document = await DocumentService.get_document(db, company_id, document_id)
        document.deleted_at = utcnow()
        document.deleted_by = actor_id
        if document.is_latest:
            document.is_latest = False
            if document.parent_document_id is not None:
                parent = await db.get(Document, document.parent_document_id)
                if parent is not None and parent.deleted_at is None:
                    parent.is_latest = True
        await db.flush()
        await create_audit_entry(
            db,
            action=AuditAction.delete,
            entity_type="employee_document",
            entity_id=document.id,
            company_id=company_id,
            user_id=actor_id,
            old_values={"title": document.title, "version": document.version},
        )
