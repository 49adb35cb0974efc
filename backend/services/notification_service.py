from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from config import settings
from db.models import (
    Challenge,
    NotificationLog,
    NotificationPreference,
    PushSubscription,
    User,
)
from services.challenge_service import load_calendar, user_timezone
from services.push_client import DeliveryResult, PushRelayClient
from services.streak_service import MILESTONES, active_streak
from utils.datetime_utils import (
    InvalidTimezoneError,
    hhmm_to_minutes,
    is_valid_hhmm,
    local_time_hhmm,
    resolve_zone,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_PREFERENCES: dict[str, Any] = {
    "enabled": False,
    "daily_reminder": True,
    "daily_reminder_time": "06:00",
    "workout_reminders": True,
    "workout_reminder_times": ["07:00", "17:00"],
    "water_reminders": True,
    "water_reminder_interval": 2,
    "reading_reminder": True,
    "reading_reminder_time": "20:00",
    "photo_reminder": True,
    "photo_reminder_time": "07:30",
    "streak_alerts": True,
    "achievement_alerts": True,
}

_TIME_FIELDS = ("daily_reminder_time", "reading_reminder_time", "photo_reminder_time")
_MINUTES_PER_DAY = 24 * 60

# Major milestones also earn an in-app achievement.
ACHIEVEMENT_TITLES: dict[int, str] = {
    7: "Week Warrior",
    30: "Monthly Master",
    75: "75 Hard Champion!",
}


@dataclass
class PendingNotification:
    user_id: int
    type: str
    payload: dict[str, Any]
    scheduled_for: datetime | None = None


@dataclass
class DispatchSummary:
    queued: int = 0
    sent: int = 0
    failed: int = 0
    removed_subscriptions: int = 0
    achievements: int = 0
    skipped_users: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "queued": self.queued,
            "sent": self.sent,
            "failed": self.failed,
            "removed_subscriptions": self.removed_subscriptions,
            "achievements": self.achievements,
            "skipped_users": list(self.skipped_users),
        }


# ---------------------------------------------------------------------------
# Preferences & subscriptions
# ---------------------------------------------------------------------------


def _workout_times(row: NotificationPreference) -> list[str]:
    try:
        times = json.loads(row.workout_reminder_times or "[]")
    except json.JSONDecodeError:
        return list(DEFAULT_PREFERENCES["workout_reminder_times"])
    return [str(t) for t in times] if isinstance(times, list) else []


def preferences_to_dict(row: NotificationPreference | None) -> dict[str, Any]:
    if row is None:
        return dict(DEFAULT_PREFERENCES, workout_reminder_times=list(DEFAULT_PREFERENCES["workout_reminder_times"]))
    return {
        "enabled": bool(row.enabled),
        "daily_reminder": bool(row.daily_reminder),
        "daily_reminder_time": row.daily_reminder_time,
        "workout_reminders": bool(row.workout_reminders),
        "workout_reminder_times": _workout_times(row),
        "water_reminders": bool(row.water_reminders),
        "water_reminder_interval": int(row.water_reminder_interval or 2),
        "reading_reminder": bool(row.reading_reminder),
        "reading_reminder_time": row.reading_reminder_time,
        "photo_reminder": bool(row.photo_reminder),
        "photo_reminder_time": row.photo_reminder_time,
        "streak_alerts": bool(row.streak_alerts),
        "achievement_alerts": bool(row.achievement_alerts),
    }


def save_preferences(db: Session, user: User, payload: dict[str, Any]) -> NotificationPreference:
    """Upsert the user's preferences. Raises ValueError on malformed times."""
    for key in _TIME_FIELDS:
        if key in payload and payload[key] is not None and not is_valid_hhmm(payload[key]):
            raise ValueError(f"{key} must be HH:MM")
    workout_times = payload.get("workout_reminder_times")
    if workout_times is not None:
        if len(workout_times) > 2 or not all(is_valid_hhmm(t) for t in workout_times):
            raise ValueError("workout_reminder_times must be up to two HH:MM values")
    interval = payload.get("water_reminder_interval")
    if interval is not None and not 1 <= int(interval) <= 12:
        raise ValueError("water_reminder_interval must be between 1 and 12 hours")

    row = db.query(NotificationPreference).filter(NotificationPreference.user_id == user.id).first()
    if row is None:
        row = NotificationPreference(user_id=user.id)
        db.add(row)
    for key, value in payload.items():
        if value is None or key not in DEFAULT_PREFERENCES:
            continue
        if key == "workout_reminder_times":
            row.workout_reminder_times = json.dumps(list(value))
        else:
            setattr(row, key, value)
    db.flush()
    return row


def save_subscription(
    db: Session,
    user: User,
    *,
    endpoint: str,
    p256dh: str,
    auth: str,
    user_agent: str | None = None,
) -> PushSubscription:
    row = (
        db.query(PushSubscription)
        .filter(PushSubscription.user_id == user.id, PushSubscription.endpoint == endpoint)
        .first()
    )
    if row is None:
        row = PushSubscription(user_id=user.id, endpoint=endpoint)
        db.add(row)
    row.p256dh = p256dh
    row.auth = auth
    row.user_agent = (user_agent or "")[:512] or None
    row.updated_at = datetime.now(timezone.utc)
    db.flush()
    return row


def delete_subscription(db: Session, user: User, endpoint: str) -> bool:
    deleted = (
        db.query(PushSubscription)
        .filter(PushSubscription.user_id == user.id, PushSubscription.endpoint == endpoint)
        .delete(synchronize_session=False)
    )
    db.flush()
    return bool(deleted)


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


def daily_payload() -> dict[str, Any]:
    return {
        "title": "75 Hard Daily Check-in",
        "body": "Time to complete your daily tasks!",
        "tag": "daily",
        "data": {"type": "daily"},
        "actions": [
            {"action": "open-checklist", "title": "Open Checklist"},
            {"action": "dismiss", "title": "Dismiss"},
        ],
    }


def workout_payload(workout_number: int) -> dict[str, Any]:
    return {
        "title": f"Workout {workout_number} Reminder",
        "body": "Time for your indoor workout!" if workout_number == 1 else "Time for your outdoor workout!",
        "tag": "workout",
        "data": {"type": "workout", "workoutNumber": workout_number},
        "actions": [
            {"action": "start-timer", "title": "Start Timer"},
            {"action": "mark-complete", "title": "Mark Complete"},
        ],
    }


def water_payload() -> dict[str, Any]:
    return {
        "title": "Water Reminder",
        "body": "Time to drink water! Stay hydrated!",
        "tag": "water",
        "data": {"type": "water"},
        "actions": [
            {"action": "log-water", "title": "Log Water"},
            {"action": "snooze", "title": "Remind Later"},
        ],
    }


def reading_payload() -> dict[str, Any]:
    return {
        "title": "Reading Time",
        "body": "Don't forget to read your 10 pages today!",
        "tag": "reading",
        "data": {"type": "reading"},
        "actions": [
            {"action": "log-reading", "title": "Log Reading"},
            {"action": "dismiss", "title": "Dismiss"},
        ],
    }


def photo_payload() -> dict[str, Any]:
    return {
        "title": "Progress Photo",
        "body": "Time to take your daily progress photo!",
        "tag": "photo",
        "data": {"type": "photo"},
        "actions": [
            {"action": "take-photo", "title": "Take Photo"},
            {"action": "snooze", "title": "Remind Later"},
        ],
    }


def streak_payload(days: int) -> dict[str, Any]:
    return {
        "title": f"{days} Day Streak!",
        "body": f"Amazing! You've maintained a {days} day streak!",
        "tag": "streak",
        "data": {"type": "streak", "days": days},
    }


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


def is_time_match(current: str, target: str | None, window_minutes: int) -> bool:
    """True when two "HH:MM" strings are within ``window_minutes`` of each other."""
    if not is_valid_hhmm(target):
        return False
    diff = abs(hhmm_to_minutes(current) - hhmm_to_minutes(target))
    # 23:58 and 00:01 are three minutes apart, not 1437.
    diff = min(diff, _MINUTES_PER_DAY - diff)
    return diff <= window_minutes


def _water_due(row: NotificationPreference, local_hhmm: str, now: datetime) -> bool:
    hour = hhmm_to_minutes(local_hhmm) // 60
    if hour < settings.WATER_REMINDER_START_HOUR or hour > settings.WATER_REMINDER_END_HOUR:
        return False
    last_sent = row.last_notification_sent_at
    if last_sent is None:
        return True
    if last_sent.tzinfo is None:
        last_sent = last_sent.replace(tzinfo=timezone.utc)
    interval_hours = int(row.water_reminder_interval or 2)
    return now - last_sent >= timedelta(hours=interval_hours)


def collect_due_notifications(
    db: Session,
    now: datetime | None = None,
    window_minutes: int | None = None,
    skipped_users: list[int] | None = None,
) -> list[PendingNotification]:
    """Walk enabled preference rows and queue reminders due at ``now`` in each user's zone."""
    now = now or utcnow()
    window = settings.NOTIFICATION_MATCH_WINDOW_MINUTES if window_minutes is None else window_minutes
    pending: list[PendingNotification] = []

    rows = db.query(NotificationPreference).filter(NotificationPreference.enabled.is_(True)).all()
    for row in rows:
        tz_name = user_timezone(row.user)
        try:
            local_hhmm = local_time_hhmm(tz_name, now)
        except InvalidTimezoneError:
            logger.warning("Skipping reminders for user %s: unknown timezone %r", row.user_id, tz_name)
            if skipped_users is not None:
                skipped_users.append(row.user_id)
            continue

        def _queue(kind: str, payload: dict[str, Any]) -> None:
            pending.append(PendingNotification(user_id=row.user_id, type=kind, payload=payload, scheduled_for=now))

        if row.daily_reminder and is_time_match(local_hhmm, row.daily_reminder_time, window):
            _queue("daily", daily_payload())
        if row.workout_reminders:
            for index, reminder_time in enumerate(_workout_times(row)[:2]):
                if is_time_match(local_hhmm, reminder_time, window):
                    _queue("workout", workout_payload(index + 1))
        if row.reading_reminder and is_time_match(local_hhmm, row.reading_reminder_time, window):
            _queue("reading", reading_payload())
        if row.photo_reminder and is_time_match(local_hhmm, row.photo_reminder_time, window):
            _queue("photo", photo_payload())
        if row.water_reminders and _water_due(row, local_hhmm, now):
            _queue("water", water_payload())
    return pending


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


async def send_to_user(
    db: Session,
    client: PushRelayClient,
    notification: PendingNotification,
    summary: DispatchSummary,
) -> bool:
    """Fan one notification out to every subscription the user has registered."""
    subscriptions = db.query(PushSubscription).filter(PushSubscription.user_id == notification.user_id).all()
    if not subscriptions:
        logger.info("No push subscriptions for user %s", notification.user_id)
        return False

    delivered = False
    for subscription in subscriptions:
        result = await client.send(subscription, notification.payload)
        if result == DeliveryResult.SENT:
            delivered = True
        elif result == DeliveryResult.GONE:
            db.delete(subscription)
            summary.removed_subscriptions += 1
        else:
            summary.failed += 1

    if delivered:
        summary.sent += 1
        sent_at = utcnow()
        db.add(
            NotificationLog(
                user_id=notification.user_id,
                type=notification.type,
                title=notification.payload.get("title"),
                body=notification.payload.get("body"),
                scheduled_for=notification.scheduled_for,
                sent_at=sent_at,
            )
        )
        if notification.type == "water":
            pref = (
                db.query(NotificationPreference)
                .filter(NotificationPreference.user_id == notification.user_id)
                .first()
            )
            if pref is not None:
                pref.last_notification_sent_at = sent_at
    db.flush()
    return delivered


async def dispatch(
    db: Session,
    notifications: list[PendingNotification],
    client: PushRelayClient | None = None,
    summary: DispatchSummary | None = None,
) -> DispatchSummary:
    summary = summary or DispatchSummary()
    summary.queued += len(notifications)
    if not notifications:
        return summary
    relay = client or PushRelayClient()
    async with relay:
        for notification in notifications:
            await send_to_user(db, relay, notification, summary)
    db.commit()
    return summary


async def run_notification_cycle(
    db: Session,
    now: datetime | None = None,
    client: PushRelayClient | None = None,
) -> DispatchSummary:
    summary = DispatchSummary()
    pending = collect_due_notifications(db, now=now, skipped_users=summary.skipped_users)
    await dispatch(db, pending, client=client, summary=summary)
    logger.info(
        "Notification cycle: queued=%s sent=%s failed=%s removed=%s",
        summary.queued,
        summary.sent,
        summary.failed,
        summary.removed_subscriptions,
    )
    return summary


def _record_achievement(db: Session, challenge: Challenge, streak: int) -> bool:
    """Log an in-app achievement once per challenge and milestone."""
    title = ACHIEVEMENT_TITLES[streak]
    exists = (
        db.query(NotificationLog.id)
        .filter(
            NotificationLog.user_id == challenge.user_id,
            NotificationLog.type == "achievement",
            NotificationLog.title == title,
            NotificationLog.created_at >= challenge.created_at,
        )
        .first()
    )
    if exists:
        return False
    db.add(
        NotificationLog(
            user_id=challenge.user_id,
            type="achievement",
            title=title,
            body=f"Congratulations on reaching {streak} days!",
            sent_at=utcnow(),
        )
    )
    db.flush()
    return True


async def run_streak_check(
    db: Session,
    client: PushRelayClient | None = None,
) -> DispatchSummary:
    """Alert users whose live streak sits on a milestone.

    The streak counts through yesterday when today is not logged yet, so the
    morning run still congratulates someone who finished every past day.
    """
    summary = DispatchSummary()
    pending: list[PendingNotification] = []
    challenges = db.query(Challenge).filter(Challenge.is_active.is_(True)).all()
    for challenge in challenges:
        pref = challenge.user.notification_preferences
        if pref is None or not pref.enabled:
            continue
        if not (pref.streak_alerts or pref.achievement_alerts):
            continue
        tz_name = user_timezone(challenge.user)
        try:
            resolve_zone(tz_name)
        except InvalidTimezoneError:
            logger.warning("Skipping streak check for user %s: unknown timezone %r", challenge.user_id, tz_name)
            summary.skipped_users.append(challenge.user_id)
            continue
        streak = active_streak(load_calendar(db, challenge, tz_name))
        if streak not in MILESTONES:
            continue
        if pref.streak_alerts:
            pending.append(
                PendingNotification(user_id=challenge.user_id, type="streak", payload=streak_payload(streak))
            )
        if pref.achievement_alerts and streak in ACHIEVEMENT_TITLES:
            if _record_achievement(db, challenge, streak):
                summary.achievements += 1
    await dispatch(db, pending, client=client, summary=summary)
    db.commit()
    logger.info(
        "Streak check: %s challenges, %s alerts queued, %s achievements",
        len(challenges),
        summary.queued,
        summary.achievements,
    )
    return summary
