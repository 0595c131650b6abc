"""Typed weekly opening hours.

``branches.opening_hours`` is free-form JSON in the store. It is parsed once,
here, into a schedule with exactly one entry per weekday, so call sites never
deal with missing days or malformed times.
"""

import re
from typing import Any, Optional

from libs.common.logging import get_logger
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from services.ordering_service.models.enums import Weekday

logger = get_logger(__name__)

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)")


def time_to_minutes(value: str) -> int:
    """``"HH:MM"`` -> minutes since midnight."""
    match = _HHMM.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


class DayHours(BaseModel):
    open: str = "00:00"
    close: str = "00:00"
    closed: bool = False

    model_config = ConfigDict(frozen=True)

    @field_validator("open", "close")
    @classmethod
    def _normalize_time(cls, v: str) -> str:
        minutes = time_to_minutes(v)
        return f"{minutes // 60:02d}:{minutes % 60:02d}"

    @property
    def open_minutes(self) -> int:
        return time_to_minutes(self.open)

    @property
    def close_minutes(self) -> int:
        return time_to_minutes(self.close)

    @property
    def is_overnight(self) -> bool:
        return self.close_minutes < self.open_minutes


CLOSED_DAY = DayHours(closed=True)


class WeeklySchedule(BaseModel):
    """Mandatory hours for every weekday."""

    days: dict[Weekday, DayHours]

    model_config = ConfigDict(frozen=True)

    def for_day(self, day: Weekday) -> DayHours:
        return self.days.get(day, CLOSED_DAY)

    @property
    def is_always_closed(self) -> bool:
        return all(self.for_day(day).closed for day in Weekday)

    @classmethod
    def closed_all_week(cls) -> "WeeklySchedule":
        return cls(days={day: CLOSED_DAY for day in Weekday})

    @classmethod
    def from_raw(cls, raw: Optional[dict[str, Any]]) -> "WeeklySchedule":
        """Parse the stored JSON map; bad or missing days are closed."""
        if not raw:
            return cls.closed_all_week()

        days: dict[Weekday, DayHours] = {}
        for day in Weekday:
            entry = raw.get(day.value)
            if not entry:
                days[day] = CLOSED_DAY
                continue
            try:
                days[day] = DayHours.model_validate(entry)
            except ValidationError as e:
                logger.warning("Invalid opening hours for %s: %s", day.value, e)
                days[day] = CLOSED_DAY
        return cls(days=days)
