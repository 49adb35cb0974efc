from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable

from services.calendar_service import CalendarDay, DayStatus, compute_stats


MILESTONES: tuple[int, ...] = (7, 14, 21, 30, 40, 50, 60, 70, 75)


@dataclass(frozen=True)
class StreakRun:
    start_date: date
    end_date: date
    length: int
    is_active: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "length": self.length,
            "is_active": self.is_active,
        }


def _without_open_today(days: Iterable[CalendarDay]) -> list[CalendarDay]:
    # A TODAY record has no progress yet; the day is still in play.
    return [d for d in days if d.status != DayStatus.TODAY]


def streak_history(days: Iterable[CalendarDay]) -> list[StreakRun]:
    """Every maximal run of COMPLETE days, oldest first.

    FUTURE days and a not-yet-logged today neither extend nor break a run.
    The last run is active when nothing else follows it, so a run that ended
    yesterday stays active until today is logged.
    """
    runs: list[StreakRun] = []
    run_start: date | None = None
    run_end: date | None = None
    length = 0

    def _close() -> None:
        nonlocal run_start, run_end, length
        if length:
            runs.append(StreakRun(start_date=run_start, end_date=run_end, length=length, is_active=False))
        run_start, run_end, length = None, None, 0

    for day in _without_open_today(days):
        if day.status == DayStatus.COMPLETE:
            if not length:
                run_start = day.date
            run_end = day.date
            length += 1
        elif day.status != DayStatus.FUTURE:
            _close()

    if length:
        runs.append(StreakRun(start_date=run_start, end_date=run_end, length=length, is_active=True))
    return runs


def active_streak(days: Iterable[CalendarDay]) -> int:
    """Length of the streak the user can still extend today.

    Unlike ``CalendarStats.current_streak`` an unlogged today does not reset
    it, so completing every day through yesterday keeps the streak alive.
    """
    history = streak_history(days)
    if history and history[-1].is_active:
        return history[-1].length
    return 0


def milestones(completed_days: int) -> dict[str, Any]:
    reached = [m for m in MILESTONES if completed_days >= m]
    upcoming = [m for m in MILESTONES if completed_days < m]
    return {
        "reached": reached,
        "upcoming": upcoming,
        "next": upcoming[0] if upcoming else None,
    }


def streak_summary(days: Iterable[CalendarDay]) -> dict[str, Any]:
    seq = list(days)
    stats = compute_stats(seq)
    history = streak_history(seq)
    active = history[-1] if history and history[-1].is_active else None
    last_completed = next((d.date for d in reversed(seq) if d.status == DayStatus.COMPLETE), None)
    return {
        "current_streak": stats.current_streak,
        "active_streak": active.length if active else 0,
        "longest_streak": stats.longest_streak,
        "total_completed_days": stats.completed_days,
        "completion_rate": stats.completion_percentage,
        "is_active_streak": active is not None,
        "streak_start_date": active.start_date.isoformat() if active else None,
        "last_completed_date": last_completed.isoformat() if last_completed else None,
        "history": [run.to_dict() for run in history],
        "milestones": milestones(stats.completed_days),
    }
