"""Daily water intake, stored in ounces and mirrored onto the water task."""
from __future__ import annotations

import json
import logging
from datetime import date, timedelta
from typing import Any

from sqlalchemy.orm import Session

from config import settings
from db.models import Challenge, WaterIntake
from services.progress_service import batch_update_tasks, ensure_loggable_day
from utils.datetime_utils import today_for_tz, utcnow

logger = logging.getLogger(__name__)

WATER_TASK_ID = "water-intake"

OUNCES_PER_UNIT: dict[str, float] = {
    "oz": 1.0,
    "cups": 8.0,
    "ml": 0.033814,
    "liters": 33.814,
}


class WaterIntakeError(ValueError):
    """Raised for non-positive amounts or unknown units."""


def to_ounces(amount: float, unit: str = "oz") -> float:
    factor = OUNCES_PER_UNIT.get((unit or "").strip().lower())
    if factor is None:
        raise WaterIntakeError(f"Unknown unit {unit!r}; expected one of {sorted(OUNCES_PER_UNIT)}")
    if amount is None or amount <= 0:
        raise WaterIntakeError("Amount must be positive")
    return float(amount) * factor


def _load_log(raw: str | None) -> list[dict[str, Any]]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return data if isinstance(data, list) else []


def get_intake(db: Session, challenge: Challenge, day: date) -> WaterIntake | None:
    return (
        db.query(WaterIntake)
        .filter(WaterIntake.challenge_id == challenge.id, WaterIntake.date == day)
        .first()
    )


def get_or_create_intake(db: Session, challenge: Challenge, tz_name: str, day: date) -> WaterIntake:
    ensure_loggable_day(challenge, tz_name, day)
    row = get_intake(db, challenge, day)
    if row is None:
        row = WaterIntake(
            user_id=challenge.user_id,
            challenge_id=challenge.id,
            date=day,
            amount=0.0,
            goal=settings.WATER_DAILY_GOAL_OZ,
            unit="oz",
            intake_log="[]",
        )
        db.add(row)
        db.flush()
    return row


def _sync_water_task(db: Session, challenge: Challenge, tz_name: str, row: WaterIntake, was_met: bool) -> None:
    is_met = row.amount >= row.goal
    if is_met == was_met:
        return
    batch_update_tasks(db, challenge, tz_name, row.date, {WATER_TASK_ID: {"completed": is_met}})
    if is_met:
        logger.info("Challenge %s water goal met on %s", challenge.id, row.date.isoformat())


def add_intake(
    db: Session,
    challenge: Challenge,
    tz_name: str,
    amount: float,
    unit: str = "oz",
    day: date | None = None,
) -> WaterIntake:
    """Log a drink. Reaching the goal completes the day's water task."""
    ounces = to_ounces(amount, unit)
    row = get_or_create_intake(db, challenge, tz_name, day or today_for_tz(tz_name))
    was_met = row.amount >= row.goal
    log = _load_log(row.intake_log)
    log.append({"timestamp": utcnow().isoformat(), "amount": amount, "unit": unit})
    row.intake_log = json.dumps(log)
    row.amount = row.amount + ounces
    db.flush()
    _sync_water_task(db, challenge, tz_name, row, was_met)
    return row


def remove_intake(
    db: Session,
    challenge: Challenge,
    tz_name: str,
    amount: float,
    unit: str = "oz",
    day: date | None = None,
) -> WaterIntake:
    """Undo part of the day's intake; never drops below zero."""
    ounces = to_ounces(amount, unit)
    row = get_or_create_intake(db, challenge, tz_name, day or today_for_tz(tz_name))
    was_met = row.amount >= row.goal
    row.amount = max(0.0, row.amount - ounces)
    db.flush()
    _sync_water_task(db, challenge, tz_name, row, was_met)
    return row


def update_goal(
    db: Session,
    challenge: Challenge,
    tz_name: str,
    goal: float,
    unit: str = "oz",
    day: date | None = None,
) -> WaterIntake:
    row = get_or_create_intake(db, challenge, tz_name, day or today_for_tz(tz_name))
    was_met = row.amount >= row.goal
    row.goal = to_ounces(goal, unit)
    row.unit = unit.strip().lower()
    db.flush()
    _sync_water_task(db, challenge, tz_name, row, was_met)
    return row


def intake_history(db: Session, challenge: Challenge, tz_name: str, days: int = 7) -> list[WaterIntake]:
    end = today_for_tz(tz_name)
    start = end - timedelta(days=max(0, days))
    return (
        db.query(WaterIntake)
        .filter(
            WaterIntake.challenge_id == challenge.id,
            WaterIntake.date >= start,
            WaterIntake.date <= end,
        )
        .order_by(WaterIntake.date.desc())
        .all()
    )


def intake_to_dict(row: WaterIntake | None, day: date) -> dict[str, Any]:
    if row is None:
        return {
            "date": day.isoformat(),
            "amount": 0.0,
            "goal": settings.WATER_DAILY_GOAL_OZ,
            "unit": "oz",
            "goal_met": False,
            "intake_log": [],
        }
    return {
        "id": row.id,
        "date": row.date.isoformat(),
        "amount": round(row.amount, 2),
        "goal": round(row.goal, 2),
        "unit": row.unit,
        "goal_met": row.amount >= row.goal,
        "intake_log": _load_log(row.intake_log),
    }
