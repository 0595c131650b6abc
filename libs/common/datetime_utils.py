"""Datetime utilities for timezone-aware timestamps.

Usage:
    from libs.common.datetime_utils import utc_now

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now
    )
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from libs.common.config import get_settings


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime.

    This replaces the deprecated datetime.utcnow() which returns naive datetimes.
    Always use this for timestamps in the database.
    """
    return datetime.now(timezone.utc)


def local_timezone() -> ZoneInfo:
    """Return the restaurant's configured timezone."""
    return ZoneInfo(get_settings().TIMEZONE)


def to_local(moment: datetime | None = None) -> datetime:
    """Convert ``moment`` (default: now) to restaurant-local wall-clock time.

    Naive datetimes are assumed to already be local.
    """
    if moment is None:
        return datetime.now(local_timezone())
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(local_timezone())


def ensure_aware(moment: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (some drivers drop tzinfo on read)."""
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
