from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Mapping

from sqlalchemy.orm import Session

from config import settings
from db.models import Challenge, DailyProgress
from services.calendar_service import ChallengeWindow
from services.challenge_service import challenge_window
from services.task_definitions import TASK_IDS
from utils.datetime_utils import today_for_tz

logger = logging.getLogger(__name__)

_TASK_FIELDS = {"completed", "duration", "notes", "photo_url"}


class ProgressUpdateError(ValueError):
    """Raised when a progress write targets an invalid task or day."""


def _safe_json_loads(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable tasks JSON on daily_progress row")
        return {}
    return data if isinstance(data, dict) else {}


def load_tasks(row: DailyProgress | None) -> dict[str, dict[str, Any]]:
    if row is None:
        return {}
    return _safe_json_loads(row.tasks)


def get_progress(db: Session, challenge: Challenge, day: date) -> DailyProgress | None:
    return (
        db.query(DailyProgress)
        .filter(DailyProgress.challenge_id == challenge.id, DailyProgress.date == day)
        .first()
    )


def get_progress_range(db: Session, challenge: Challenge, start: date, end: date) -> list[DailyProgress]:
    return (
        db.query(DailyProgress)
        .filter(
            DailyProgress.challenge_id == challenge.id,
            DailyProgress.date >= start,
            DailyProgress.date <= end,
        )
        .order_by(DailyProgress.date.asc())
        .all()
    )


def ensure_loggable_day(challenge: Challenge, tz_name: str, day: date) -> ChallengeWindow:
    """Reject days outside the challenge window or after today in ``tz_name``."""
    window = challenge_window(challenge, tz_name)
    if not window.contains(day):
        raise ProgressUpdateError(f"{day.isoformat()} is outside the challenge window")
    if day > today_for_tz(tz_name):
        raise ProgressUpdateError("Cannot record progress for a future day")
    return window


def _merge_task(current: Mapping[str, Any] | None, updates: Mapping[str, Any], now: datetime) -> dict[str, Any]:
    unknown = set(updates) - _TASK_FIELDS
    if unknown:
        raise ProgressUpdateError(f"Unsupported task fields: {sorted(unknown)}")
    merged = {"completed": False, "completed_at": None, **(current or {})}
    for key, value in updates.items():
        if value is not None:
            merged[key] = value
    if "completed" in updates and updates["completed"] is not None:
        was_completed = bool((current or {}).get("completed"))
        merged["completed"] = bool(updates["completed"])
        if merged["completed"] and not was_completed:
            merged["completed_at"] = now.isoformat()
        elif not merged["completed"]:
            merged["completed_at"] = None
    return merged


def batch_update_tasks(
    db: Session,
    challenge: Challenge,
    tz_name: str,
    day: date,
    task_updates: Mapping[str, Mapping[str, Any]],
    *,
    notes: str | None = None,
) -> DailyProgress:
    """Merge per-task updates into the day's row and recompute completion."""
    window = ensure_loggable_day(challenge, tz_name, day)
    unknown = set(task_updates) - TASK_IDS
    if unknown:
        raise ProgressUpdateError(f"Unknown task ids: {sorted(unknown)}")

    row = get_progress(db, challenge, day)
    tasks = load_tasks(row)
    now = datetime.now(timezone.utc)
    for task_id, updates in task_updates.items():
        tasks[task_id] = _merge_task(tasks.get(task_id), updates, now)

    completed_count = sum(1 for task_id, task in tasks.items() if task_id in TASK_IDS and task.get("completed"))
    if row is None:
        row = DailyProgress(
            user_id=challenge.user_id,
            challenge_id=challenge.id,
            date=day,
            day_number=window.day_number_of(day),
        )
        db.add(row)
    row.tasks = json.dumps(tasks, ensure_ascii=True)
    row.tasks_completed = completed_count
    row.is_complete = completed_count >= settings.TASKS_PER_DAY
    if notes is not None:
        row.notes = notes
    db.flush()
    if row.is_complete:
        logger.info("Challenge %s day %s complete", challenge.id, row.day_number)
    return row


def update_task_progress(
    db: Session,
    challenge: Challenge,
    tz_name: str,
    day: date,
    task_id: str,
    updates: Mapping[str, Any],
) -> DailyProgress:
    return batch_update_tasks(db, challenge, tz_name, day, {task_id: updates})


def progress_to_dict(row: DailyProgress | None, day: date, day_number: int) -> dict[str, Any]:
    if row is None:
        return {
            "date": day.isoformat(),
            "day_number": day_number,
            "tasks": {},
            "tasks_completed": 0,
            "total_tasks": settings.TASKS_PER_DAY,
            "is_complete": False,
            "notes": None,
        }
    return {
        "id": row.id,
        "date": row.date.isoformat(),
        "day_number": row.day_number,
        "tasks": load_tasks(row),
        "tasks_completed": row.tasks_completed,
        "total_tasks": settings.TASKS_PER_DAY,
        "is_complete": bool(row.is_complete),
        "notes": row.notes,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
