from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from config import settings
from db.models import Challenge, DailyProgress, User, UserProfile
from services.calendar_service import (
    CalendarDay,
    ChallengeWindow,
    day_number_for,
    generate_calendar,
    progress_map_from_rows,
)
from utils.datetime_utils import resolve_zone, today_for_tz


def user_timezone(user: User) -> str:
    """Profile timezone, or the configured default when the profile has none.

    A stored but unknown zone is returned as-is so callers fail on it.
    """
    tz_name = getattr(getattr(user, "profile", None), "timezone", None)
    return (tz_name or "").strip() or settings.DEFAULT_TIMEZONE


def ensure_profile(db: Session, user: User) -> UserProfile:
    if user.profile is None:
        profile = UserProfile(user_id=user.id)
        db.add(profile)
        db.flush()
        user.profile = profile
    return user.profile


def challenge_window(challenge: Challenge, tz_name: str) -> ChallengeWindow:
    return ChallengeWindow(
        start_date=challenge.start_date,
        timezone=tz_name,
        duration_days=int(challenge.duration_days or settings.CHALLENGE_DURATION_DAYS),
    )


def get_active_challenge(db: Session, user: User) -> Challenge | None:
    return (
        db.query(Challenge)
        .filter(Challenge.user_id == user.id, Challenge.is_active.is_(True))
        .order_by(Challenge.created_at.desc(), Challenge.id.desc())
        .first()
    )


def get_challenge(db: Session, user: User, challenge_id: int) -> Challenge | None:
    return db.query(Challenge).filter(Challenge.id == challenge_id, Challenge.user_id == user.id).first()


def list_challenges(db: Session, user: User) -> list[Challenge]:
    return (
        db.query(Challenge)
        .filter(Challenge.user_id == user.id)
        .order_by(Challenge.start_date.desc(), Challenge.id.desc())
        .all()
    )


def start_challenge(
    db: Session,
    user: User,
    *,
    name: str | None = None,
    description: str | None = None,
    start_date: date | None = None,
) -> Challenge:
    """Start a new challenge; any active one is closed first."""
    tz_name = user_timezone(user)
    resolve_zone(tz_name)
    today_local = today_for_tz(tz_name)

    for previous in db.query(Challenge).filter(Challenge.user_id == user.id, Challenge.is_active.is_(True)).all():
        previous.is_active = False
        previous.end_date = previous.end_date or today_local

    challenge = Challenge(
        user_id=user.id,
        name=(name or "").strip() or "75 Hard",
        description=description,
        start_date=start_date or today_local,
        duration_days=settings.CHALLENGE_DURATION_DAYS,
        is_active=True,
    )
    db.add(challenge)
    db.flush()
    return challenge


def end_challenge(db: Session, user: User, challenge: Challenge) -> Challenge:
    challenge.is_active = False
    challenge.end_date = challenge.end_date or today_for_tz(user_timezone(user))
    db.flush()
    return challenge


def load_calendar(
    db: Session,
    challenge: Challenge,
    tz_name: str,
    today: date | None = None,
) -> list[CalendarDay]:
    window = challenge_window(challenge, tz_name)
    rows = (
        db.query(DailyProgress)
        .filter(
            DailyProgress.challenge_id == challenge.id,
            DailyProgress.date >= window.start_date,
            DailyProgress.date <= window.end_date,
        )
        .all()
    )
    progress = progress_map_from_rows(rows, window, total_tasks=settings.TASKS_PER_DAY)
    return generate_calendar(
        window.start_date,
        progress,
        tz_name=tz_name,
        duration_days=window.duration_days,
        today=today,
    )


def challenge_to_dict(challenge: Challenge, tz_name: str) -> dict[str, Any]:
    window = challenge_window(challenge, tz_name)
    return {
        "id": challenge.id,
        "name": challenge.name,
        "description": challenge.description,
        "start_date": challenge.start_date.isoformat(),
        "end_date": challenge.end_date.isoformat() if challenge.end_date else None,
        "scheduled_end_date": window.end_date.isoformat(),
        "duration_days": window.duration_days,
        "is_active": bool(challenge.is_active),
        "current_day": day_number_for(challenge.start_date, tz_name, window.duration_days),
        "created_at": challenge.created_at.isoformat() if challenge.created_at else None,
    }
