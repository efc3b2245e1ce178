"""Email tests — rendering, recipients, provider payloads and retries, fallback, logs."""

from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import select
from tenacity import wait_none

from backend.common.constants import EmailStatus
from backend.common.exceptions import ValidationException
from backend.emails import factory
from backend.emails.models import CompanyEmailSettings, EmailLog
from backend.emails.providers import (
    BrevoEmailProvider,
    ConsoleEmailProvider,
    ResendEmailProvider,
    SendGridEmailProvider,
    create_provider,
)
from backend.emails.service import EmailService
from backend.emails.templates import render_email
from backend.emails.types import EmailMessage, EmailRecipient, ProviderConfig, normalize_recipients


def _message(**kwargs) -> EmailMessage:
    defaults = dict(
        to=[EmailRecipient(email="eve@example.com", name="Eve")],
        subject="Hello",
        html="<p>Hello</p>",
        text="Hello",
    )
    defaults.update(kwargs)
    return EmailMessage(**defaults)


def _config(provider: str, **kwargs) -> ProviderConfig:
    return ProviderConfig(
        provider=provider, from_email="hr@acme.com", from_name="Acme HR", api_key="key-123", **kwargs,
    )


def _mock_client(responses: list[httpx.Response], seen: list[httpx.Request]) -> httpx.AsyncClient:
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return queue.pop(0)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ═════════════════════════════════════════════════════════════════════
# TEMPLATES & RECIPIENTS
# ═════════════════════════════════════════════════════════════════════


class TestTemplates:

    def test_trial_expiring_pluralization(self):
        one = render_email("trial_expiring_1_day", {
            "company_name": "Acme", "user_name": "Ann", "days_remaining": 1,
            "upgrade_url": "u", "extension_url": "e",
            "can_request_extension": True, "has_pending_request": False,
        })
        assert one.subject == "Your trial ends tomorrow"
        assert "ends in 1 day." in one.text
        assert "Request an extension" in one.text

    def test_html_is_escaped(self):
        rendered = render_email("document_expiring", {
            "employee_name": "<script>x</script>",
            "document_name": "Passport",
            "expiry_date": "2026-05-01",
            "days_until_expiry": 7,
        })
        assert "<script>x</script>" not in rendered.html
        assert "&lt;script&gt;" in rendered.html
        assert rendered.subject == "Passport expires in 7 days"

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            render_email("no_such_template", {})


class TestRecipients:

    def test_normalizes_and_dedupes(self):
        recipients = normalize_recipients([
            " Ann@Example.com ", {"email": "ann@example.com"}, "bob@example.com", "not-an-email", "",
        ])
        assert [r.email for r in recipients] == ["ann@example.com", "bob@example.com"]

    def test_dict_keeps_name(self):
        (recipient,) = normalize_recipients({"email": "a@example.com", "name": "Ann"})
        assert recipient.name == "Ann"


# ═════════════════════════════════════════════════════════════════════
# PROVIDERS
# ═════════════════════════════════════════════════════════════════════


class TestProviders:

    def test_unknown_provider_falls_back_to_console(self):
        assert isinstance(create_provider(ProviderConfig(provider="pigeon")), ConsoleEmailProvider)

    def test_http_provider_needs_api_key(self):
        assert not create_provider(ProviderConfig(provider="sendgrid", from_email="a@b.c")).validate_config()

    async def test_sendgrid_payload(self):
        seen: list[httpx.Request] = []
        client = _mock_client([httpx.Response(202, headers={"x-message-id": "sg-1"})], seen)
        provider = SendGridEmailProvider(_config("sendgrid"), client=client, wait=wait_none())

        result = await provider.send(_message(tags={"template": "welcome"}))
        assert result.success is True
        assert result.message_id == "sg-1"

        body = json.loads(seen[0].content)
        assert body["personalizations"][0]["to"] == [{"email": "eve@example.com", "name": "Eve"}]
        assert body["from"] == {"email": "hr@acme.com", "name": "Acme HR"}
        assert body["custom_args"] == {"template": "welcome"}
        assert seen[0].headers["Authorization"] == "Bearer key-123"

    async def test_resend_message_id_from_body(self):
        seen: list[httpx.Request] = []
        client = _mock_client([httpx.Response(200, json={"id": "re_123"})], seen)
        provider = ResendEmailProvider(_config("resend"), client=client, wait=wait_none())
        result = await provider.send(_message())
        assert result.message_id == "re_123"
        assert json.loads(seen[0].content)["to"] == ["eve@example.com"]

    async def test_brevo_uses_api_key_header(self):
        seen: list[httpx.Request] = []
        client = _mock_client([httpx.Response(201, json={"messageId": "<b@1>"})], seen)
        provider = BrevoEmailProvider(_config("brevo"), client=client, wait=wait_none())
        result = await provider.send(_message())
        assert result.success is True
        assert seen[0].headers["api-key"] == "key-123"
        assert "Authorization" not in seen[0].headers

    async def test_retries_server_errors(self):
        seen: list[httpx.Request] = []
        client = _mock_client(
            [httpx.Response(503, text="busy"), httpx.Response(429, text="slow down"), httpx.Response(202)],
            seen,
        )
        provider = SendGridEmailProvider(_config("sendgrid"), client=client, max_attempts=3, wait=wait_none())
        result = await provider.send(_message())
        assert result.success is True
        assert len(seen) == 3

    async def test_gives_up_after_max_attempts(self):
        seen: list[httpx.Request] = []
        client = _mock_client([httpx.Response(500, text="boom") for _ in range(3)], seen)
        provider = SendGridEmailProvider(_config("sendgrid"), client=client, max_attempts=3, wait=wait_none())
        result = await provider.send(_message())
        assert result.success is False
        assert "HTTP 500" in result.error
        assert len(seen) == 3

    async def test_client_error_is_not_retried(self):
        seen: list[httpx.Request] = []
        client = _mock_client(
            [httpx.Response(400, json={"errors": [{"message": "bad from address"}]})], seen,
        )
        provider = SendGridEmailProvider(_config("sendgrid"), client=client, max_attempts=3, wait=wait_none())
        result = await provider.send(_message())
        assert result.success is False
        assert result.error == "bad from address"
        assert len(seen) == 1


# ═════════════════════════════════════════════════════════════════════
# SERVICE
# ═════════════════════════════════════════════════════════════════════


class TestEmailService:

    async def test_send_logs_delivery(self, db, tenant):
        result = await EmailService.send(
            db,
            email_type="welcome",
            to="eve@example.com",
            data={"user_name": "Eve", "company_name": "Acme"},
            company_id=tenant.company_id,
        )
        assert result.success is True
        assert result.provider == "console"

        log = (await db.execute(
            select(EmailLog).where(EmailLog.template_type == "welcome")
        )).scalars().one()
        assert log.status == EmailStatus.sent
        assert log.sent_at is not None
        assert log.metadata_["to"] == ["eve@example.com"]

    async def test_send_batch(self, db, tenant):
        results = await EmailService.send_batch(db, [
            {"email_type": "welcome", "to": "eve@example.com", "data": {}, "company_id": tenant.company_id},
            {"email_type": "welcome", "to": "", "data": {}},
            {"email_type": "welcome", "to": "max@example.com", "data": {}, "company_id": tenant.company_id},
        ])
        assert [r.success for r in results] == [True, False, True]

        logs = (await db.execute(
            select(EmailLog).where(EmailLog.template_type == "welcome")
        )).scalars().all()
        assert sorted(log.recipient_email for log in logs) == ["eve@example.com", "max@example.com"]

    async def test_unknown_type_raises(self, db):
        with pytest.raises(ValueError):
            await EmailService.send(db, email_type="nope", to="a@example.com", data={})

    async def test_no_recipients_is_failure(self, db):
        result = await EmailService.send(db, email_type="welcome", to="   ", data={})
        assert result.success is False
        assert result.error == "No valid recipients"

    async def test_company_provider_falls_back_to_platform(self, db, tenant, monkeypatch):
        db.add(CompanyEmailSettings(
            company_id=tenant.company_id,
            use_platform_default=False,
            provider="sendgrid",
            from_email="hr@acme.com",
            api_key="key",
        ))
        await db.flush()

        class FailingProvider(ConsoleEmailProvider):
            name = "sendgrid"

            async def send(self, message):
                return self._failure("HTTP 401")

        monkeypatch.setattr(
            factory, "create_provider",
            lambda config: FailingProvider(config) if config.provider == "sendgrid" else ConsoleEmailProvider(config),
        )

        result = await EmailService.send(
            db, email_type="welcome", to="eve@example.com", data={}, company_id=tenant.company_id,
        )
        assert result.success is True
        assert result.provider == "console"

    async def test_invalid_company_settings_rejected(self, db, tenant):
        with pytest.raises(ValidationException):
            await EmailService.update_settings(
                db, tenant.company_id, {"use_platform_default": False, "provider": "sendgrid"},
            )


class TestEmailEndpoints:

    async def test_settings_hide_secrets(self, client, tenant):
        resp = await client.put(
            "/api/v1/emails/settings",
            headers=tenant.admin.headers,
            json={
                "use_platform_default": False,
                "provider": "resend",
                "from_email": "hr@acme.com",
                "api_key": "re_secret",
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["has_api_key"] is True
        assert "api_key" not in data
        assert data["is_verified"] is False

    async def test_send_test_with_platform_default(self, client, tenant):
        resp = await client.post(
            "/api/v1/emails/settings/test", headers=tenant.admin.headers, json={"to": "ops@example.com"},
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = await client.get("/api/v1/emails/settings", headers=tenant.admin.headers)
        assert resp.json()["is_verified"] is True
        assert resp.json()["last_test_result"]["tested_to"] == "ops@example.com"

    async def test_logs_are_company_scoped(self, client, tenant, other_tenant):
        resp = await client.get("/api/v1/emails/logs", headers=tenant.admin.headers)
        assert resp.status_code == 200
        company_ids = {item["company_id"] for item in resp.json()["data"]}
        assert company_ids == {str(tenant.company_id)}
