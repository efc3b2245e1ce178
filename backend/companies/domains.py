"""Map a request hostname to the company it belongs to.

``acme.hr.example.com`` resolves through the known base domain
``hr.example.com`` to the subdomain ``acme``; anything else is tried as a
company's custom domain.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.companies.models import Company
from backend.config import settings

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})
COMMON_PREFIXES = frozenset({"www", "mail", "ftp", "api", "admin"})


@dataclass
class SubdomainInfo:
    subdomain: Optional[str]
    base_domain: Optional[str]


@dataclass
class DomainResolution:
    company: Company
    subdomain: Optional[str]
    is_custom_domain: bool


def normalize_host(hostname: str) -> str:
    """Lower-case, strip a port and a trailing dot."""
    host = hostname.strip().lower()
    if host.startswith("[") or host.count(":") > 1:
        return host
    return host.split(":", 1)[0].rstrip(".")


def extract_subdomain(hostname: str, base_domains: Iterable[str]) -> SubdomainInfo:
    host = normalize_host(hostname)
    for base in base_domains:
        if host == base:
            return SubdomainInfo(subdomain=None, base_domain=base)
        if host.endswith(f".{base}"):
            prefix = host[: -(len(base) + 1)]
            return SubdomainInfo(subdomain=prefix.split(".")[0], base_domain=base)

    parts = host.split(".")
    if len(parts) >= 4:
        return SubdomainInfo(subdomain=parts[0], base_domain=".".join(parts[1:]))
    if len(parts) == 3 and parts[0] not in COMMON_PREFIXES:
        return SubdomainInfo(subdomain=parts[0], base_domain=".".join(parts[1:]))
    return SubdomainInfo(subdomain=None, base_domain=host)


async def resolve_company_for_host(
    db: AsyncSession,
    hostname: str,
    base_domains: Optional[Iterable[str]] = None,
) -> Optional[DomainResolution]:
    """Return the active company served at *hostname*, or None."""
    host = normalize_host(hostname)
    if not host or host in LOCAL_HOSTS:
        return None

    bases = list(base_domains) if base_domains is not None else settings.known_base_domains_list
    info = extract_subdomain(host, bases)

    if info.subdomain:
        company = (
            await db.execute(
                select(Company).where(
                    func.lower(Company.subdomain) == info.subdomain,
                    Company.is_active.is_(True),
                )
            )
        ).scalars().first()
        if company is not None:
            return DomainResolution(company=company, subdomain=info.subdomain, is_custom_domain=False)

    company = (
        await db.execute(
            select(Company).where(
                func.lower(Company.custom_domain) == host,
                Company.is_active.is_(True),
            )
        )
    ).scalars().first()
    if company is not None:
        return DomainResolution(company=company, subdomain=None, is_custom_domain=True)
    return None
