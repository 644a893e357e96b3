"""
Partner resolution - map the request hostname to the partner whose funnel is served.

Order: a verified custom domain, then a subdomain of the platform domain.
Only active partners resolve. Database errors propagate to the caller.
"""
from __future__ import annotations

import ipaddress
import logging
import uuid
from typing import Optional

from sqlalchemy import or_, select

from src.models.partner import Partner
from src.models.service_category import ServiceCategory
from src.models.form_question import FormQuestion

logger = logging.getLogger(__name__)

IGNORED_LABELS = {"www"}


def normalize_host(raw: Optional[str]) -> str:
    """Lower-case, drop any port and trailing dot. 'Acme.Example.com:443.' -> 'acme.example.com'."""
    host = (raw or "").strip().lower()
    if not host:
        return ""
    # X-Forwarded-Host may carry a comma-separated chain; the first entry is the client's
    host = host.split(",")[0].strip()
    if host.startswith("["):
        # Bracketed IPv6 literal
        return host.split("]")[0].lstrip("[")
    if host.count(":") == 1:
        host = host.split(":")[0]
    return host.rstrip(".")


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


def extract_subdomain(host: str, base_domain: Optional[str]) -> Optional[str]:
    """
    Label left of the platform domain ('acme.quotes.example' -> 'acme').
    Without a configured platform domain the first label is used.
    """
    base = normalize_host(base_domain)
    if base:
        suffix = f".{base}"
        if not host.endswith(suffix):
            return None
        remainder = host[: -len(suffix)]
        labels = [label for label in remainder.split(".") if label and label not in IGNORED_LABELS]
        return labels[-1] if labels else None

    labels = [label for label in host.split(".") if label and label not in IGNORED_LABELS]
    if len(labels) < 2:
        return None
    return labels[0]


async def resolve_partner(db, hostname: Optional[str], base_domain: Optional[str] = None) -> Optional[Partner]:
    host = normalize_host(hostname)
    if not host or host == "localhost" or _is_ip_literal(host):
        return None

    result = await db.execute(
        select(Partner).where(
            Partner.custom_domain == host,
            Partner.status == "active",
            or_(Partner.domain_verified == True, Partner.domain_verified.is_(None)),  # noqa: E712
        ).limit(1)
    )
    partner = result.scalar_one_or_none()
    if partner:
        return partner

    subdomain = extract_subdomain(host, base_domain)
    if not subdomain:
        logger.info("No partner binding for host %s", host)
        return None

    result = await db.execute(
        select(Partner).where(
            Partner.subdomain == subdomain,
            Partner.status == "active",
        ).limit(1)
    )
    partner = result.scalar_one_or_none()
    if partner is None:
        logger.info("No active partner for subdomain %s", subdomain)
    return partner


async def resolve_partner_by_subdomain(db, subdomain: str) -> Optional[Partner]:
    """Explicit subdomain override sent by embedded funnels."""
    result = await db.execute(
        select(Partner).where(
            Partner.subdomain == subdomain.strip().lower(),
            Partner.status == "active",
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def get_category_by_slug(db, slug: str) -> Optional[ServiceCategory]:
    result = await db.execute(
        select(ServiceCategory).where(
            ServiceCategory.slug == slug.strip().lower(),
            ServiceCategory.is_active == True,  # noqa: E712
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def load_active_questions(db, partner_id: uuid.UUID, service_category_id: uuid.UUID) -> list[FormQuestion]:
    result = await db.execute(
        select(FormQuestion)
        .where(
            FormQuestion.partner_id == partner_id,
            FormQuestion.service_category_id == service_category_id,
            FormQuestion.status == "active",
            FormQuestion.is_deleted == False,  # noqa: E712
        )
        .order_by(FormQuestion.step_number, FormQuestion.display_order_in_step)
    )
    return list(result.scalars().all())
