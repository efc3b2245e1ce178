"""Document tests — upload rules, versions, verification, links, plan limits, expiry job."""

from __future__ import annotations

import os
import uuid
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from backend.billing.service import BillingService
from backend.common.constants import NotificationType, SubscriptionStatus, VerificationStatus
from backend.common.exceptions import (
    InvalidStateException,
    LimitExceededException,
    UnauthorizedException,
    ValidationException,
)
from backend.common.pagination import PaginationParams
from backend.config import settings
from backend.documents import service as document_service
from backend.documents.expiry import run_document_expiry
from backend.documents.models import Document, DocumentExpiryNotification
from backend.documents.schemas import DocumentTypeCreate
from backend.documents.service import MB, DocumentService
from backend.documents.storage import (
    build_storage_path,
    create_download_token,
    sanitize_filename,
    validate_upload,
    verify_download_token,
)
from backend.emails.models import EmailLog
from backend.notifications.models import Notification
from tests.conftest import TestSessionFactory

PDF = b"%PDF-1.4 test document"
TODAY = date(2026, 3, 1)


async def _doc_type(db, tenant, **overrides):
    data = {"name": "Passport", "code": "PASSPORT"}
    data.update(overrides)
    return await DocumentService.create_type(
        db, tenant.company_id, DocumentTypeCreate(**data), actor_id=tenant.hr.user_id,
    )


async def _upload(db, tenant, doc_type, *, actor=None, content=PDF, **kwargs):
    actor = actor or tenant.employee
    kwargs.setdefault("title", "Passport")
    kwargs.setdefault("file_name", "passport.pdf")
    kwargs.setdefault("mime_type", "application/pdf")
    return await DocumentService.upload(
        db,
        tenant.company_id,
        actor.employee,
        document_type_id=doc_type.id,
        content=content,
        actor_id=actor.user_id,
        **kwargs,
    )


# ═════════════════════════════════════════════════════════════════════
# STORAGE HELPERS
# ═════════════════════════════════════════════════════════════════════


class TestStorageHelpers:

    def test_sanitize_filename(self):
        assert sanitize_filename("../../etc/pass wd.pdf") == "pass_wd.pdf"
        assert sanitize_filename("") == "file"

    def test_storage_path_layout(self):
        path = build_storage_path("c", "e", "d", "my cv.pdf")
        assert path == "c/e/d/my_cv.pdf"

    def test_rejects_disallowed_mime(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_upload("application/x-msdownload", 100)
        assert "not allowed" in exc_info.value.errors["file"][0]

    def test_type_can_narrow_limits(self):
        with pytest.raises(ValidationException, match="Maximum size is 1 MB"):
            validate_upload("application/pdf", 2 * MB, type_max_mb=1)
        with pytest.raises(ValidationException):
            validate_upload("image/png", 10, type_mime_types=["application/pdf"])
        validate_upload("application/pdf", 10, type_mime_types=["application/pdf"], type_max_mb=1)

    def test_empty_file(self):
        with pytest.raises(ValidationException, match="empty"):
            validate_upload("application/pdf", 0)

    def test_download_token_round_trip(self):
        document_id = uuid.uuid4()
        token, expires_in = create_download_token(document_id, expires_in=60)
        assert expires_in == 60
        assert verify_download_token(token) == document_id
        with pytest.raises(UnauthorizedException):
            verify_download_token(token + "x")


# ═════════════════════════════════════════════════════════════════════
# UPLOAD & VERSIONS
# ═════════════════════════════════════════════════════════════════════


class TestUpload:

    async def test_employee_uploads_own_document(self, client, db, tenant):
        doc_type = await _doc_type(db, tenant)
        await db.commit()

        resp = await client.post(
            "/api/v1/documents",
            headers=tenant.employee.headers,
            data={"document_type_id": str(doc_type.id), "title": "My passport"},
            files={"file": ("passport.pdf", PDF, "application/pdf")},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["verification_status"] == "pending"
        assert data["version"] == 1
        assert data["employee_id"] == str(tenant.employee.employee.id)
        assert data["document_type"]["code"] == "PASSPORT"

        resp = await client.get("/api/v1/documents/mine", headers=tenant.employee.headers)
        assert resp.json()["meta"]["total"] == 1

    async def test_employee_cannot_upload_for_colleague(self, client, db, tenant):
        doc_type = await _doc_type(db, tenant)
        await db.commit()
        resp = await client.post(
            "/api/v1/documents",
            headers=tenant.employee.headers,
            data={
                "document_type_id": str(doc_type.id),
                "title": "Contract",
                "employee_id": str(tenant.manager.employee.id),
            },
            files={"file": ("contract.pdf", PDF, "application/pdf")},
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "42501"

    async def test_hr_only_type(self, client, db, tenant):
        doc_type = await _doc_type(db, tenant, name="Contract", code="CONTRACT", allowed_for_employee_upload=False)
        await db.commit()
        resp = await client.post(
            "/api/v1/documents",
            headers=tenant.employee.headers,
            data={"document_type_id": str(doc_type.id), "title": "Contract"},
            files={"file": ("contract.pdf", PDF, "application/pdf")},
        )
        assert resp.status_code == 403

        resp = await client.post(
            "/api/v1/documents",
            headers=tenant.hr.headers,
            data={
                "document_type_id": str(doc_type.id),
                "title": "Contract",
                "employee_id": str(tenant.employee.employee.id),
            },
            files={"file": ("contract.pdf", PDF, "application/pdf")},
        )
        assert resp.status_code == 201

    async def test_bad_file_type(self, client, db, tenant):
        doc_type = await _doc_type(db, tenant)
        await db.commit()
        resp = await client.post(
            "/api/v1/documents",
            headers=tenant.employee.headers,
            data={"document_type_id": str(doc_type.id), "title": "Tool"},
            files={"file": ("tool.exe", b"MZ", "application/x-msdownload")},
        )
        assert resp.status_code == 422
        assert "file" in resp.json()["errors"]

    async def test_expiry_required_by_type(self, db, tenant):
        doc_type = await _doc_type(db, tenant, requires_expiry=True)
        with pytest.raises(ValidationException) as exc_info:
            await _upload(db, tenant, doc_type)
        assert "expiry_date" in exc_info.value.errors

    async def test_expiry_before_issue(self, db, tenant):
        doc_type = await _doc_type(db, tenant)
        with pytest.raises(ValidationException):
            await _upload(db, tenant, doc_type, issue_date=date(2026, 5, 1), expiry_date=date(2026, 4, 1))

    async def test_inactive_type(self, db, tenant):
        doc_type = await _doc_type(db, tenant)
        doc_type.is_active = False
        await db.flush()
        with pytest.raises(ValidationException):
            await _upload(db, tenant, doc_type)


class TestVersions:

    async def test_new_version_replaces_latest(self, db, tenant):
        doc_type = await _doc_type(db, tenant)
        first = await _upload(db, tenant, doc_type)
        second = await _upload(db, tenant, doc_type, parent_document_id=first.id, title="Passport (renewed)")

        assert second.version == 2
        assert second.parent_document_id == first.id
        assert second.is_latest is True
        assert (await DocumentService.get_document(db, tenant.company_id, first.id)).is_latest is False

        history = await DocumentService.version_history(db, tenant.company_id, first.id)
        assert [d.version for d in history] == [2, 1]

        with pytest.raises(InvalidStateException, match="latest version"):
            await _upload(db, tenant, doc_type, parent_document_id=first.id)

    async def test_listing_shows_latest_only(self, db, tenant):
        doc_type = await _doc_type(db, tenant)
        first = await _upload(db, tenant, doc_type)
        await _upload(db, tenant, doc_type, parent_document_id=first.id)

        page = PaginationParams(page=1, page_size=20, sort=None)
        latest = await DocumentService.list_documents(db, tenant.company_id, page)
        every = await DocumentService.list_documents(db, tenant.company_id, page, include_all_versions=True)
        assert latest.meta.total == 1
        assert every.meta.total == 2

    async def test_deleting_latest_restores_parent(self, client, db, tenant):
        doc_type = await _doc_type(db, tenant)
        first = await _upload(db, tenant, doc_type)
        second = await _upload(db, tenant, doc_type, parent_document_id=first.id)
        await db.commit()

        resp = await client.delete(f"/api/v1/documents/{second.id}", headers=tenant.employee.headers)
        assert resp.status_code == 204

        async with TestSessionFactory() as session:
            restored = await session.get(Document, first.id)
            deleted = await session.get(Document, second.id)
            assert restored.is_latest is True
            assert deleted.deleted_at is not None

        resp = await client.get(f"/api/v1/documents/{second.id}", headers=tenant.hr.headers)
        assert resp.status_code == 404

    async def test_parent_must_belong_to_employee(self, db, tenant):
        doc_type = await _doc_type(db, tenant)
        mine = await _upload(db, tenant, doc_type)
        with pytest.raises(ValidationException) as exc_info:
            await _upload(db, tenant, doc_type, actor=tenant.manager, parent_document_id=mine.id)
        assert "parent_document_id" in exc_info.value.errors


# ═════════════════════════════════════════════════════════════════════
# ACCESS & VERIFICATION
# ═════════════════════════════════════════════════════════════════════


class TestAccess:

    async def test_signed_link_downloads_file(self, client, db, tenant):
        doc_type = await _doc_type(db, tenant)
        document = await _upload(db, tenant, doc_type)
        await db.commit()

        resp = await client.post(f"/api/v1/documents/{document.id}/access", headers=tenant.employee.headers)
        assert resp.status_code == 200
        link = resp.json()
        assert link["url"].startswith("/api/v1/documents/download?token=")

        resp = await client.get(link["url"])
        assert resp.status_code == 200
        assert resp.content == PDF

        async with TestSessionFactory() as session:
            stored = await session.get(Document, document.id)
            assert stored.access_count == 1
            assert stored.last_accessed_by == tenant.employee.user_id

    async def test_colleague_cannot_read(self, client, db, tenant):
        doc_type = await _doc_type(db, tenant)
        document = await _upload(db, tenant, doc_type)
        await db.commit()
        resp = await client.get(f"/api/v1/documents/{document.id}", headers=tenant.manager.headers)
        assert resp.status_code == 403
        resp = await client.get(f"/api/v1/documents/{document.id}", headers=tenant.hr.headers)
        assert resp.status_code == 200

    async def test_other_tenant_sees_nothing(self, client, db, tenant, other_tenant):
        doc_type = await _doc_type(db, tenant)
        document = await _upload(db, tenant, doc_type)
        await db.commit()
        resp = await client.get(f"/api/v1/documents/{document.id}", headers=other_tenant.hr.headers)
        assert resp.status_code == 404

    async def test_bad_token(self, client):
        resp = await client.get("/api/v1/documents/download", params={"token": "not-a-token"})
        assert resp.status_code == 401


class TestVerification:

    async def test_hr_verifies(self, client, db, tenant):
        doc_type = await _doc_type(db, tenant)
        document = await _upload(db, tenant, doc_type)
        await db.commit()

        resp = await client.post(
            f"/api/v1/documents/{document.id}/verify", headers=tenant.hr.headers, json={"status": "verified"},
        )
        assert resp.status_code == 200
        assert resp.json()["verification_status"] == "verified"
        assert resp.json()["verified_by"] == str(tenant.hr.user_id)

        resp = await client.post(
            f"/api/v1/documents/{document.id}/verify",
            headers=tenant.hr.headers,
            json={"status": "rejected", "rejection_reason": "x"},
        )
        assert resp.status_code == 409

        async with TestSessionFactory() as session:
            notification = (await session.execute(
                select(Notification).where(Notification.user_id == tenant.employee.user_id)
            )).scalars().one()
            assert notification.type == NotificationType.document_verified

    async def test_rejection_needs_reason(self, db, tenant):
        doc_type = await _doc_type(db, tenant)
        document = await _upload(db, tenant, doc_type)
        with pytest.raises(ValidationException) as exc_info:
            await DocumentService.verify(
                db, tenant.company_id, document.id,
                status=VerificationStatus.rejected, rejection_reason="  ", actor_id=tenant.hr.user_id,
            )
        assert "rejection_reason" in exc_info.value.errors

        rejected = await DocumentService.verify(
            db, tenant.company_id, document.id,
            status=VerificationStatus.rejected, rejection_reason="Blurry scan", actor_id=tenant.hr.user_id,
        )
        assert rejected.rejection_reason == "Blurry scan"

    async def test_employee_cannot_verify(self, client, db, tenant):
        doc_type = await _doc_type(db, tenant)
        document = await _upload(db, tenant, doc_type)
        await db.commit()
        resp = await client.post(
            f"/api/v1/documents/{document.id}/verify", headers=tenant.employee.headers, json={"status": "verified"},
        )
        assert resp.status_code == 403


# ═════════════════════════════════════════════════════════════════════
# PLAN LIMITS
# ═════════════════════════════════════════════════════════════════════


def _limit_plan(monkeypatch, *, storage_mb=-1, per_employee=-1):
    features = {"documents.max_storage_mb": storage_mb, "documents.max_per_employee": per_employee}

    async def fake_feature(db, company_id, path, default=None):
        return features.get(path, default)

    monkeypatch.setattr(BillingService, "get_plan_feature", staticmethod(fake_feature))


class TestLimits:

    async def test_every_version_counts(self, db, tenant, monkeypatch):
        _limit_plan(monkeypatch, per_employee=2)
        doc_type = await _doc_type(db, tenant)
        first = await _upload(db, tenant, doc_type)
        second = await _upload(db, tenant, doc_type, parent_document_id=first.id)
        assert second.version == 2

        limits = await DocumentService.check_document_limits(db, tenant.company_id, tenant.employee.employee.id)
        assert limits.current_count == 2
        assert limits.can_upload is False

        with pytest.raises(LimitExceededException) as exc_info:
            await _upload(db, tenant, doc_type, title="Visa")
        assert exc_info.value.code == "document_count_limit"
        with pytest.raises(LimitExceededException):
            await _upload(db, tenant, doc_type, parent_document_id=second.id)

    async def test_storage_limit(self, db, tenant, monkeypatch):
        _limit_plan(monkeypatch, storage_mb=1)
        doc_type = await _doc_type(db, tenant)
        with pytest.raises(LimitExceededException) as exc_info:
            await _upload(db, tenant, doc_type, content=b"x" * (MB + 1))
        assert exc_info.value.code == "document_storage_limit"

    async def test_usage_is_per_employee(self, db, tenant, monkeypatch):
        _limit_plan(monkeypatch, storage_mb=1, per_employee=1)
        doc_type = await _doc_type(db, tenant)
        await _upload(db, tenant, doc_type, content=b"x" * (MB - 10))

        own = await DocumentService.check_document_limits(db, tenant.company_id, tenant.employee.employee.id)
        assert own.current_storage_bytes == MB - 10
        assert own.can_upload is False

        colleague = await DocumentService.check_document_limits(db, tenant.company_id, tenant.hr.employee.id)
        assert colleague.current_storage_bytes == 0
        assert colleague.current_count == 0
        assert colleague.can_upload is True
        await _upload(db, tenant, doc_type, actor=tenant.hr, content=b"y" * (MB - 10))

    async def test_limits_lifted_outside_active_or_trial(self, db, tenant, monkeypatch):
        _limit_plan(monkeypatch, per_employee=1)
        doc_type = await _doc_type(db, tenant)
        await _upload(db, tenant, doc_type)

        subscription = await BillingService.get_subscription(db, tenant.company_id)
        subscription.status = SubscriptionStatus.past_due
        await db.flush()

        limits = await DocumentService.check_document_limits(db, tenant.company_id, tenant.employee.employee.id)
        assert limits.max_per_employee == -1
        assert limits.max_storage_mb == -1
        assert limits.can_upload is True
        await _upload(db, tenant, doc_type, title="Visa")

    async def test_limits_endpoint_defaults_to_caller(self, client, db, tenant):
        doc_type = await _doc_type(db, tenant)
        await _upload(db, tenant, doc_type)
        await db.commit()
        resp = await client.get("/api/v1/documents/limits", headers=tenant.employee.headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["current_count"] == 1
        assert data["current_storage_bytes"] == len(PDF)
        assert data["max_per_employee"] == -1
        assert data["can_upload"] is True

        resp = await client.get("/api/v1/documents/limits", headers=tenant.hr.headers)
        assert resp.json()["current_storage_bytes"] == 0


class TestUploadCleanup:

    async def test_failed_write_removes_stored_file(self, db, tenant, monkeypatch):
        doc_type = await _doc_type(db, tenant)

        async def broken_audit(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(document_service, "create_audit_entry", broken_audit)
        with pytest.raises(RuntimeError):
            await _upload(db, tenant, doc_type, file_name="orphan.pdf")

        employee_dir = os.path.join(settings.UPLOAD_DIR, str(tenant.company_id), str(tenant.employee.employee.id))
        leftovers = [
            name for _, _, files in os.walk(employee_dir) for name in files if name == "orphan.pdf"
        ]
        assert leftovers == []


# ═════════════════════════════════════════════════════════════════════
# EXPIRY JOB
# ═════════════════════════════════════════════════════════════════════


class TestExpiryJob:

    async def test_expires_and_notifies(self, db, tenant):
        doc_type = await _doc_type(db, tenant)
        stale = await _upload(db, tenant, doc_type, title="Old visa", expiry_date=TODAY - timedelta(days=1))
        soon = await _upload(db, tenant, doc_type, title="Passport", expiry_date=TODAY + timedelta(days=7))
        await _upload(db, tenant, doc_type, title="Licence", expiry_date=TODAY + timedelta(days=10))

        result = await run_document_expiry(db, today=TODAY)
        assert result.documents_expired == 1
        # owner plus manager at the seven-day mark
        assert result.notifications_sent == 2
        assert result.errors == []

        assert (await DocumentService.get_document(db, tenant.company_id, stale.id)).verification_status == (
            VerificationStatus.expired
        )
        records = (await db.execute(
            select(DocumentExpiryNotification).where(DocumentExpiryNotification.document_id == soon.id)
        )).scalars().all()
        assert {r.notification_type for r in records} == {"expiring_7_days", "manager_expiring_7_days"}

        manager_notes = (await db.execute(
            select(Notification).where(Notification.user_id == tenant.manager.user_id)
        )).scalars().all()
        assert [n.title for n in manager_notes] == ["Team member document expiring: Eve Employee"]

        emails = (await db.execute(
            select(EmailLog).where(EmailLog.template_type == "document_expiring")
        )).scalars().all()
        assert len(emails) == 1

    async def test_rerun_sends_nothing(self, db, tenant):
        doc_type = await _doc_type(db, tenant)
        await _upload(db, tenant, doc_type, expiry_date=TODAY + timedelta(days=30))

        first = await run_document_expiry(db, today=TODAY)
        second = await run_document_expiry(db, today=TODAY)
        assert first.notifications_sent == 1
        assert second.notifications_sent == 0

    async def test_superseded_versions_are_ignored(self, db, tenant):
        doc_type = await _doc_type(db, tenant)
        old = await _upload(db, tenant, doc_type, expiry_date=TODAY - timedelta(days=3))
        await _upload(db, tenant, doc_type, parent_document_id=old.id, expiry_date=TODAY + timedelta(days=400))

        result = await run_document_expiry(db, today=TODAY)
        assert result.documents_expired == 0
        assert result.notifications_sent == 0
