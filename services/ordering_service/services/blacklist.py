"""Checkout eligibility gate.

A customer is blocked when their email or phone matches an active
``customer_blacklist`` row. The gate fails open: a lookup error or a lookup
that outlives ``BLACKLIST_LOOKUP_TIMEOUT_SECONDS`` lets the customer through,
so an outage of this check never stops ordering.
"""

import asyncio
import re
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from libs.common.cache import view_cache
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.ordering_service.models import CustomerBlacklist
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

_PHONE_NOISE = re.compile(r"[\s\-()]")


@dataclass(frozen=True)
class BlacklistCheck:
    blocked: bool
    reason: Optional[str] = None
    blocked_at: Optional[datetime] = None
    blocked_by: Optional[str] = None


ALLOWED = BlacklistCheck(blocked=False)


def _to_cache(check: BlacklistCheck) -> dict:
    data = asdict(check)
    if check.blocked_at is not None:
        data["blocked_at"] = check.blocked_at.isoformat()
    return data


def _from_cache(data: dict) -> BlacklistCheck:
    blocked_at = data.get("blocked_at")
    return BlacklistCheck(
        blocked=data["blocked"],
        reason=data.get("reason"),
        blocked_at=datetime.fromisoformat(blocked_at) if blocked_at else None,
        blocked_by=data.get("blocked_by"),
    )


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email or not email.strip():
        return None
    return email.strip().lower()


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Drop spaces, dashes and parentheses: ``+358 (40) 123-4567`` -> ``+358401234567``."""
    if not phone:
        return None
    return _PHONE_NOISE.sub("", phone) or None


def _cache_key(email: Optional[str], phone: Optional[str]) -> str:
    return f"blacklist:{email or ''}:{phone or ''}"


async def _lookup(
    db: AsyncSession, email: Optional[str], phone: Optional[str]
) -> BlacklistCheck:
    matchers = []
    if email:
        matchers.append(CustomerBlacklist.email == email)
    if phone:
        matchers.append(CustomerBlacklist.phone == phone)

    result = await db.execute(
        select(CustomerBlacklist)
        .where(CustomerBlacklist.is_active.is_(True), or_(*matchers))
        .order_by(CustomerBlacklist.blocked_at.desc())
        .limit(1)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        return ALLOWED
    return BlacklistCheck(
        blocked=True,
        reason=entry.reason,
        blocked_at=entry.blocked_at,
        blocked_by=entry.blocked_by,
    )


async def check_blacklist(
    db: AsyncSession,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> BlacklistCheck:
    """Whether the customer identified by ``email``/``phone`` may check out."""
    email = normalize_email(email)
    phone = normalize_phone(phone)
    if not email and not phone:
        return ALLOWED

    key = _cache_key(email, phone)
    cached = await view_cache.get(key)
    if cached is not None:
        return _from_cache(cached)

    settings = get_settings()
    try:
        check = await asyncio.wait_for(
            _lookup(db, email, phone),
            timeout=settings.BLACKLIST_LOOKUP_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error(
            "Blacklist lookup timed out after %ss, allowing checkout",
            settings.BLACKLIST_LOOKUP_TIMEOUT_SECONDS,
        )
        return ALLOWED
    except Exception as e:
        logger.error("Blacklist lookup failed, allowing checkout: %s", e)
        return ALLOWED

    if check.blocked:
        logger.warning(
            "Blocked checkout attempt",
            extra={"extra_fields": {"email": email, "phone": phone}},
        )
    await view_cache.set(key, _to_cache(check), settings.BLACKLIST_CACHE_TTL_SECONDS)
    return check
