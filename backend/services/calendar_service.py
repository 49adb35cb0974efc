"""Challenge calendar generation and completion statistics.

Everything in this module is a pure function over in-memory values. Callers
load the sparse per-day progress from storage first and pass it in.
"""
from __future__ import annotations

import calendar as _calendar
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Mapping

from utils.datetime_utils import resolve_zone, to_date, today_for_tz


DEFAULT_DURATION_DAYS = 75
DEFAULT_TOTAL_TASKS = 6


class InvalidConfigurationError(ValueError):
    """Raised when a challenge window cannot produce any days."""


class DayStatus(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    PARTIAL = "partial"
    FUTURE = "future"
    TODAY = "today"
    SKIPPED = "skipped"


# Statuses a user can filter the calendar by. TODAY and FUTURE always show.
FILTERABLE_STATUSES = frozenset(
    {DayStatus.COMPLETE, DayStatus.PARTIAL, DayStatus.INCOMPLETE, DayStatus.SKIPPED}
)


@dataclass(frozen=True)
class ChallengeWindow:
    start_date: date
    timezone: str
    duration_days: int = DEFAULT_DURATION_DAYS

    @property
    def end_date(self) -> date:
        return self.start_date + timedelta(days=self.duration_days - 1)

    def contains(self, d: date) -> bool:
        return self.start_date <= d <= self.end_date

    def day_number_of(self, d: date) -> int:
        return (d - self.start_date).days + 1


@dataclass(frozen=True)
class DayProgressInput:
    completed: bool = False
    tasks_completed: int = 0
    total_tasks: int = DEFAULT_TOTAL_TASKS


@dataclass(frozen=True)
class CalendarDay:
    day_number: int
    date: date
    status: DayStatus
    tasks_completed: int = 0
    total_tasks: int = DEFAULT_TOTAL_TASKS
    hidden: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        out = {
            "day_number": self.day_number,
            "date": self.date.isoformat(),
            "status": self.status.value,
            "tasks_completed": self.tasks_completed,
            "total_tasks": self.total_tasks,
        }
        if self.hidden is not None:
            out["hidden"] = self.hidden
        return out


@dataclass(frozen=True)
class CalendarStats:
    total_days: int = 0
    completed_days: int = 0
    partial_days: int = 0
    incomplete_days: int = 0
    skipped_days: int = 0
    today_days: int = 0
    future_days: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    completion_percentage: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_days": self.total_days,
            "completed_days": self.completed_days,
            "partial_days": self.partial_days,
            "incomplete_days": self.incomplete_days,
            "skipped_days": self.skipped_days,
            "today_days": self.today_days,
            "future_days": self.future_days,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "completion_percentage": self.completion_percentage,
        }


@dataclass
class CalendarMonth:
    name: str
    year: int
    month: int
    start_offset: int
    days: list[CalendarDay] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "year": self.year,
            "month": self.month,
            "start_offset": self.start_offset,
            "days": [d.to_dict() for d in self.days],
        }


def _check_duration(duration_days: int) -> None:
    if int(duration_days) <= 0:
        raise InvalidConfigurationError(f"duration_days must be positive, got {duration_days}")


def _classify(day: date, today: date, entry: DayProgressInput | None) -> DayStatus:
    if day > today:
        return DayStatus.FUTURE
    if entry is not None:
        if entry.completed:
            return DayStatus.COMPLETE
        if entry.tasks_completed > 0:
            return DayStatus.PARTIAL
        return DayStatus.INCOMPLETE
    if day == today:
        return DayStatus.TODAY
    return DayStatus.SKIPPED


def generate_calendar(
    start_date: date | datetime,
    progress: Mapping[int, DayProgressInput] | None,
    tz_name: str,
    duration_days: int = DEFAULT_DURATION_DAYS,
    today: date | None = None,
) -> list[CalendarDay]:
    """Build one status record per challenge day.

    ``today`` defaults to the current calendar date in ``tz_name``. Passing it
    explicitly still validates the zone so a bad profile never renders.
    """
    _check_duration(duration_days)
    resolve_zone(tz_name)
    local_today = to_date(today) if today is not None else today_for_tz(tz_name)
    start = to_date(start_date)
    progress = progress or {}

    days: list[CalendarDay] = []
    for i in range(duration_days):
        day_number = i + 1
        day = start + timedelta(days=i)
        entry = progress.get(day_number)
        days.append(
            CalendarDay(
                day_number=day_number,
                date=day,
                status=_classify(day, local_today, entry),
                tasks_completed=entry.tasks_completed if entry else 0,
                total_tasks=entry.total_tasks if entry else DEFAULT_TOTAL_TASKS,
            )
        )
    return days


def day_number_for(
    start_date: date | datetime,
    tz_name: str,
    duration_days: int = DEFAULT_DURATION_DAYS,
    today: date | None = None,
) -> int:
    """Current challenge day, 0 before the start and capped at ``duration_days``."""
    _check_duration(duration_days)
    resolve_zone(tz_name)
    local_today = to_date(today) if today is not None else today_for_tz(tz_name)
    start = to_date(start_date)
    if local_today < start:
        return 0
    return min((local_today - start).days + 1, duration_days)


def _current_streak(days: list[CalendarDay]) -> int:
    streak = 0
    for day in reversed(days):
        if day.status == DayStatus.FUTURE:
            continue
        if day.status != DayStatus.COMPLETE:
            break
        streak += 1
    return streak


def _longest_streak(days: list[CalendarDay]) -> int:
    run = 0
    longest = 0
    for day in days:
        if day.status == DayStatus.COMPLETE:
            run += 1
            longest = max(longest, run)
        elif day.status != DayStatus.FUTURE:
            run = 0
    return longest


def _percentage(part: int, whole: int) -> int:
    # Round half up, not to even.
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def compute_stats(days: Iterable[CalendarDay]) -> CalendarStats:
    seq = list(days)
    counts = {status: 0 for status in DayStatus}
    for day in seq:
        counts[day.status] += 1

    completed = counts[DayStatus.COMPLETE]
    non_future = len(seq) - counts[DayStatus.FUTURE]
    return CalendarStats(
        total_days=len(seq),
        completed_days=completed,
        partial_days=counts[DayStatus.PARTIAL],
        incomplete_days=counts[DayStatus.INCOMPLETE],
        skipped_days=counts[DayStatus.SKIPPED],
        today_days=counts[DayStatus.TODAY],
        future_days=counts[DayStatus.FUTURE],
        current_streak=_current_streak(seq),
        longest_streak=_longest_streak(seq),
        completion_percentage=_percentage(completed, non_future),
    )


def filter_calendar(days: Iterable[CalendarDay], statuses: Iterable[DayStatus | str] | None) -> list[CalendarDay]:
    """Mark days outside ``statuses`` as hidden. An empty filter shows everything."""
    wanted = {DayStatus(s) for s in (statuses or [])}
    if not wanted:
        return list(days)
    out: list[CalendarDay] = []
    for day in days:
        if day.status in (DayStatus.TODAY, DayStatus.FUTURE):
            out.append(day)
        elif day.status not in wanted:
            out.append(replace(day, hidden=True))
        else:
            out.append(day)
    return out


def group_calendar_by_month(days: Iterable[CalendarDay]) -> list[CalendarMonth]:
    """Split days into month pages for a Sunday-first grid."""
    months: list[CalendarMonth] = []
    for day in days:
        if not months or (months[-1].year, months[-1].month) != (day.date.year, day.date.month):
            months.append(
                CalendarMonth(
                    name=_calendar.month_name[day.date.month],
                    year=day.date.year,
                    month=day.date.month,
                    # Monday is weekday() 0; shift so Sunday lands in column 0.
                    start_offset=(day.date.weekday() + 1) % 7,
                )
            )
        months[-1].days.append(day)
    return months


def progress_map_from_rows(
    rows: Iterable[Any],
    window: ChallengeWindow,
    total_tasks: int = DEFAULT_TOTAL_TASKS,
) -> dict[int, DayProgressInput]:
    """Key persisted progress rows (anything with date/is_complete/tasks_completed) by day number."""
    progress: dict[int, DayProgressInput] = {}
    for row in rows:
        row_date = to_date(row.date)
        if not window.contains(row_date):
            continue
        progress[window.day_number_of(row_date)] = DayProgressInput(
            completed=bool(row.is_complete),
            tasks_completed=int(row.tasks_completed or 0),
            total_tasks=total_tasks,
        )
    return progress
