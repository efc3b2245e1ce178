"""Provider-neutral email message types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class EmailRecipient:
    email: str
    name: Optional[str] = None


@dataclass
class EmailMessage:
    to: list[EmailRecipient]
    subject: str
    html: str
    text: Optional[str] = None
    cc: list[EmailRecipient] = field(default_factory=list)
    bcc: list[EmailRecipient] = field(default_factory=list)
    reply_to: Optional[EmailRecipient] = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class EmailSendResult:
    success: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ProviderConfig:
    """Everything a provider may need; each provider reads its own fields."""

    provider: str = "console"
    from_email: str = ""
    from_name: str = ""
    api_key: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = None
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True


def normalize_recipients(to) -> list[EmailRecipient]:
    """Accept a string, a dict, an EmailRecipient or a list of those.

    Addresses are stripped and lower-cased; duplicates are dropped.
    """
    items = to if isinstance(to, (list, tuple)) else [to]
    seen: set[str] = set()
    recipients: list[EmailRecipient] = []
    for item in items:
        if isinstance(item, EmailRecipient):
            email, name = item.email, item.name
        elif isinstance(item, dict):
            email, name = item.get("email", ""), item.get("name")
        else:
            email, name = str(item), None
        email = email.strip().lower()
        if not email or "@" not in email or email in seen:
            continue
        seen.add(email)
        recipients.append(EmailRecipient(email=email, name=name))
    return recipients
