"""Branch opening hours: open/closed state and next opening time.

All branches share the restaurant timezone (``settings.TIMEZONE``). Times are
compared at minute granularity with both bounds inclusive; a window whose
close is earlier than its open runs past midnight.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from libs.common.datetime_utils import to_local
from services.ordering_service.models import Branch, Weekday
from services.ordering_service.models.schedule import DayHours, WeeklySchedule

DAY_NAMES_FI = {
    Weekday.MONDAY: "Maanantai",
    Weekday.TUESDAY: "Tiistai",
    Weekday.WEDNESDAY: "Keskiviikko",
    Weekday.THURSDAY: "Torstai",
    Weekday.FRIDAY: "Perjantai",
    Weekday.SATURDAY: "Lauantai",
    Weekday.SUNDAY: "Sunnuntai",
}


@dataclass(frozen=True)
class NextOpening:
    weekday: Weekday
    time: str  # HH:MM

    @property
    def day(self) -> str:
        return DAY_NAMES_FI[self.weekday]

    @property
    def day_en(self) -> str:
        return self.weekday.value.capitalize()


@dataclass(frozen=True)
class BranchStatus:
    branch: Branch
    is_open: bool
    next_opening: Optional[NextOpening]


def _local_day_and_minutes(now: Optional[datetime]) -> tuple[Weekday, int]:
    local = to_local(now)
    return Weekday.from_index(local.weekday()), local.hour * 60 + local.minute


def is_within_hours(hours: DayHours, minutes: int) -> bool:
    """Whether ``minutes`` since midnight falls inside ``hours``."""
    if hours.closed:
        return False
    if hours.is_overnight:
        return minutes >= hours.open_minutes or minutes <= hours.close_minutes
    return hours.open_minutes <= minutes <= hours.close_minutes


def is_schedule_open(schedule: WeeklySchedule, now: Optional[datetime] = None) -> bool:
    day, minutes = _local_day_and_minutes(now)
    return is_within_hours(schedule.for_day(day), minutes)


def next_schedule_opening(
    schedule: WeeklySchedule, now: Optional[datetime] = None
) -> Optional[NextOpening]:
    """Next opening time, or None when every day is closed."""
    day, minutes = _local_day_and_minutes(now)

    today = schedule.for_day(day)
    if not today.closed and minutes < today.open_minutes:
        return NextOpening(weekday=day, time=today.open)

    days = list(Weekday)
    start = days.index(day)
    for offset in range(1, 8):
        candidate = days[(start + offset) % 7]
        hours = schedule.for_day(candidate)
        if not hours.closed:
            return NextOpening(weekday=candidate, time=hours.open)

    return None


def is_branch_open(branch: Optional[Branch], now: Optional[datetime] = None) -> bool:
    """Check if a branch is open at ``now`` (default: current time)."""
    if branch is None or not branch.is_active or not branch.opening_hours:
        return False
    return is_schedule_open(branch.schedule, now)


def next_opening(
    branch: Optional[Branch], now: Optional[datetime] = None
) -> Optional[NextOpening]:
    if branch is None or not branch.opening_hours:
        return None
    return next_schedule_opening(branch.schedule, now)


def branch_status(branch: Branch, now: Optional[datetime] = None) -> BranchStatus:
    return BranchStatus(
        branch=branch,
        is_open=is_branch_open(branch, now),
        next_opening=next_opening(branch, now),
    )


def is_ordering_available(
    branch: Optional[Branch], now: Optional[datetime] = None
) -> bool:
    """A branch takes orders only while it is both active and open."""
    return branch is not None and branch.is_active and is_branch_open(branch, now)


def open_branches(
    branches: Iterable[Branch], now: Optional[datetime] = None
) -> list[Branch]:
    return [branch for branch in branches if is_branch_open(branch, now)]


def is_any_branch_open(
    branches: Iterable[Branch], now: Optional[datetime] = None
) -> bool:
    return any(is_branch_open(branch, now) for branch in branches)


def nearest_open_branch(
    branches: Sequence[Branch], now: Optional[datetime] = None
) -> Optional[Branch]:
    """First open branch in display order."""
    ordered = sorted(branches, key=lambda b: b.display_order)
    found = open_branches(ordered, now)
    return found[0] if found else None


def format_branch_hours(branch: Branch, language: str = "fi") -> list[dict[str, str]]:
    """Monday-first rows of ``{"day", "hours"}`` for display."""
    if not branch.opening_hours:
        return []

    closed_text = "Suljettu" if language == "fi" else "Closed"
    rows = []
    for day in Weekday:
        if day.value not in branch.opening_hours:
            continue
        hours = branch.schedule.for_day(day)
        label = DAY_NAMES_FI[day] if language == "fi" else day.value.capitalize()
        rows.append(
            {
                "day": label,
                "hours": closed_text if hours.closed else f"{hours.open} - {hours.close}",
            }
        )
    return rows
