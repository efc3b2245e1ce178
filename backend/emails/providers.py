"""Email delivery providers.

Every provider exposes ``name``, ``send(message) -> EmailSendResult`` and
``validate_config()``. ``send`` never raises for delivery problems: failures
come back as ``EmailSendResult(success=False, error=...)``.

HTTP providers retry network errors, 429 and 5xx responses with exponential
backoff before giving up.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import uuid
from email.message import EmailMessage as MimeMessage
from email.utils import formataddr
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from backend.config import settings
from backend.emails.types import EmailMessage, EmailRecipient, EmailSendResult, ProviderConfig

logger = logging.getLogger(__name__)


class TransientProviderError(Exception):
    """Provider answered with a retryable status (429 / 5xx)."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {body[:200]}")


class EmailProvider:
    name: str = "base"

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    async def send(self, message: EmailMessage) -> EmailSendResult:
        raise NotImplementedError

    def validate_config(self) -> bool:
        return bool(self.config.from_email)

    def _failure(self, error: str) -> EmailSendResult:
        return EmailSendResult(success=False, provider=self.name, error=error)


# ── Console ─────────────────────────────────────────────────────────

class ConsoleEmailProvider(EmailProvider):
    """Logs messages instead of delivering them (development default)."""

    name = "console"

    async def send(self, message: EmailMessage) -> EmailSendResult:
        logger.info(
            "[console email] to=%s subject=%r",
            ", ".join(r.email for r in message.to),
            message.subject,
            extra={"provider": self.name},
        )
        logger.debug("[console email] body:\n%s", message.text or message.html)
        return EmailSendResult(
            success=True, provider=self.name, message_id=f"console-{uuid.uuid4().hex}",
        )

    def validate_config(self) -> bool:
        return True


# ── SMTP ────────────────────────────────────────────────────────────

class SmtpEmailProvider(EmailProvider):
    name = "smtp"

    def validate_config(self) -> bool:
        return bool(self.config.smtp_host and self.config.from_email)

    def _build_mime(self, message: EmailMessage) -> MimeMessage:
        mime = MimeMessage()
        mime["From"] = formataddr((self.config.from_name, self.config.from_email))
        mime["To"] = ", ".join(formataddr((r.name or "", r.email)) for r in message.to)
        if message.cc:
            mime["Cc"] = ", ".join(r.email for r in message.cc)
        if message.reply_to:
            mime["Reply-To"] = message.reply_to.email
        mime["Subject"] = message.subject
        mime.set_content(message.text or "")
        mime.add_alternative(message.html, subtype="html")
        return mime

    def _deliver(self, mime: MimeMessage, recipients: list[str]) -> None:
        port = self.config.smtp_port or 587
        if port == 465:
            client: smtplib.SMTP = smtplib.SMTP_SSL(self.config.smtp_host, port, timeout=30)
        else:
            client = smtplib.SMTP(self.config.smtp_host, port, timeout=30)
        with client:
            if port != 465 and self.config.smtp_use_tls:
                client.starttls()
            if self.config.smtp_username:
                client.login(self.config.smtp_username, self.config.smtp_password or "")
            client.send_message(mime, to_addrs=recipients)

    async def send(self, message: EmailMessage) -> EmailSendResult:
        if not self.validate_config():
            return self._failure("SMTP host or sender address is not configured")
        mime = self._build_mime(message)
        recipients = [r.email for r in message.to + message.cc + message.bcc]
        try:
            await asyncio.to_thread(self._deliver, mime, recipients)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP send failed: %s", exc, extra={"provider": self.name})
            return self._failure(str(exc))
        return EmailSendResult(
            success=True, provider=self.name, message_id=f"smtp-{uuid.uuid4().hex}",
        )


# ── HTTP API providers ──────────────────────────────────────────────

class HttpEmailProvider(EmailProvider):
    """Shared POST + retry logic for JSON email APIs."""

    endpoint: str = ""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: Optional[int] = None,
        wait: Any = None,
    ) -> None:
        super().__init__(config)
        self._client = client
        self.max_attempts = max_attempts or settings.EMAIL_MAX_RETRIES
        self.wait = wait if wait is not None else wait_exponential(multiplier=1, min=1, max=10)

    def validate_config(self) -> bool:
        return bool(self.config.api_key and self.config.from_email)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}", "Content-Type": "application/json"}

    def _payload(self, message: EmailMessage) -> dict[str, Any]:
        raise NotImplementedError

    def _message_id(self, response: httpx.Response) -> Optional[str]:
        return response.headers.get("x-message-id")

    async def _post_once(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> httpx.Response:
        response = await client.post(self.endpoint, json=payload, headers=self._headers())
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientProviderError(response.status_code, response.text)
        return response

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        async def _attempts(client: httpx.AsyncClient) -> httpx.Response:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=self.wait,
                retry=retry_if_exception_type((httpx.TransportError, TransientProviderError)),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "Retrying %s send (attempt %d)",
                            self.name, attempt.retry_state.attempt_number,
                            extra={"provider": self.name},
                        )
                    return await self._post_once(client, payload)
            raise RuntimeError("unreachable")  # pragma: no cover

        if self._client is not None:
            return await _attempts(self._client)
        async with httpx.AsyncClient(timeout=15) as client:
            return await _attempts(client)

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"
        if isinstance(body, dict):
            if isinstance(body.get("errors"), list) and body["errors"]:
                first = body["errors"][0]
                return first.get("message", str(first)) if isinstance(first, dict) else str(first)
            if body.get("message"):
                return str(body["message"])
        return f"HTTP {response.status_code}"

    async def send(self, message: EmailMessage) -> EmailSendResult:
        if not self.validate_config():
            return self._failure(f"{self.name} API key or sender address is not configured")
        try:
            response = await self._post(self._payload(message))
        except (httpx.HTTPError, TransientProviderError) as exc:
            logger.error("%s send failed after retries: %s", self.name, exc, extra={"provider": self.name})
            return self._failure(str(exc))
        if not response.is_success:
            error = self._error_text(response)
            logger.error("%s API error: %s", self.name, error, extra={"provider": self.name})
            return self._failure(error)
        return EmailSendResult(
            success=True,
            provider=self.name,
            message_id=self._message_id(response) or f"{self.name}-{uuid.uuid4().hex}",
        )


def _addr(r: EmailRecipient) -> dict[str, str]:
    return {"email": r.email, "name": r.name} if r.name else {"email": r.email}


class SendGridEmailProvider(HttpEmailProvider):
    name = "sendgrid"
    endpoint = "https://api.sendgrid.com/v3/mail/send"

    def _payload(self, message: EmailMessage) -> dict[str, Any]:
        personalization: dict[str, Any] = {"to": [_addr(r) for r in message.to]}
        if message.cc:
            personalization["cc"] = [_addr(r) for r in message.cc]
        if message.bcc:
            personalization["bcc"] = [_addr(r) for r in message.bcc]
        content = []
        if message.text:
            content.append({"type": "text/plain", "value": message.text})
        content.append({"type": "text/html", "value": message.html})
        payload: dict[str, Any] = {
            "personalizations": [personalization],
            "from": {"email": self.config.from_email, "name": self.config.from_name},
            "subject": message.subject,
            "content": content,
        }
        if message.reply_to:
            payload["reply_to"] = _addr(message.reply_to)
        if message.tags:
            payload["custom_args"] = message.tags
        return payload


class ResendEmailProvider(HttpEmailProvider):
    name = "resend"
    endpoint = "https://api.resend.com/emails"

    def _payload(self, message: EmailMessage) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "from": formataddr((self.config.from_name, self.config.from_email)),
            "to": [r.email for r in message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text
        if message.cc:
            payload["cc"] = [r.email for r in message.cc]
        if message.bcc:
            payload["bcc"] = [r.email for r in message.bcc]
        if message.reply_to:
            payload["reply_to"] = message.reply_to.email
        if message.tags:
            payload["tags"] = [{"name": k, "value": v} for k, v in message.tags.items()]
        return payload

    def _message_id(self, response: httpx.Response) -> Optional[str]:
        try:
            return response.json().get("id")
        except ValueError:
            return None


class BrevoEmailProvider(HttpEmailProvider):
    name = "brevo"
    endpoint = "https://api.brevo.com/v3/smtp/email"

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "api-key": self.config.api_key or "",
        }

    def _payload(self, message: EmailMessage) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sender": {"email": self.config.from_email, "name": self.config.from_name},
            "to": [_addr(r) for r in message.to],
            "subject": message.subject,
            "htmlContent": message.html,
        }
        if message.text:
            payload["textContent"] = message.text
        if message.cc:
            payload["cc"] = [_addr(r) for r in message.cc]
        if message.bcc:
            payload["bcc"] = [_addr(r) for r in message.bcc]
        if message.reply_to:
            payload["replyTo"] = _addr(message.reply_to)
        if message.tags:
            payload["tags"] = list(message.tags)
        return payload

    def _message_id(self, response: httpx.Response) -> Optional[str]:
        try:
            return response.json().get("messageId")
        except ValueError:
            return None


class MailerSendEmailProvider(HttpEmailProvider):
    name = "mailersend"
    endpoint = "https://api.mailersend.com/v1/email"

    def _payload(self, message: EmailMessage) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "from": {"email": self.config.from_email, "name": self.config.from_name},
            "to": [_addr(r) for r in message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text
        if message.cc:
            payload["cc"] = [_addr(r) for r in message.cc]
        if message.bcc:
            payload["bcc"] = [_addr(r) for r in message.bcc]
        if message.reply_to:
            payload["reply_to"] = _addr(message.reply_to)
        if message.tags:
            payload["tags"] = list(message.tags)
        return payload


PROVIDERS: dict[str, type[EmailProvider]] = {
    ConsoleEmailProvider.name: ConsoleEmailProvider,
    SmtpEmailProvider.name: SmtpEmailProvider,
    SendGridEmailProvider.name: SendGridEmailProvider,
    ResendEmailProvider.name: ResendEmailProvider,
    BrevoEmailProvider.name: BrevoEmailProvider,
    MailerSendEmailProvider.name: MailerSendEmailProvider,
}


def create_provider(config: ProviderConfig) -> EmailProvider:
    """Instantiate the provider named in *config* (unknown names → console)."""
    provider_cls = PROVIDERS.get((config.provider or "console").lower())
    if provider_cls is None:
        logger.warning("Unknown email provider %r, using console", config.provider)
        provider_cls = ConsoleEmailProvider
    return provider_cls(config)
