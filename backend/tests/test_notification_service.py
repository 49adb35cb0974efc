"""Reminder scheduling and push relay delivery."""
from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import (  # noqa: E402
    DailyProgress,
    NotificationLog,
    NotificationPreference,
    PushSubscription,
    User,
    UserProfile,
)
from services.challenge_service import start_challenge  # noqa: E402
from services.notification_service import (  # noqa: E402
    collect_due_notifications,
    is_time_match,
    preferences_to_dict,
    run_notification_cycle,
    run_streak_check,
    save_preferences,
)
from services.push_client import DeliveryResult, PushRelayClient  # noqa: E402
from utils.datetime_utils import today_for_tz  # noqa: E402


RELAY_URL = "https://relay.test/push"
GONE_ENDPOINT = "https://push.example/gone"


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _new_user(db, username, tz_name="UTC", enabled=True, **prefs) -> User:
    user = User(
        username=username,
        username_normalized=username.lower(),
        password_hash="hash",
        display_name=username,
    )
    db.add(user)
    db.flush()
    db.add(UserProfile(user_id=user.id, timezone=tz_name))
    db.add(NotificationPreference(user_id=user.id, enabled=enabled, **prefs))
    db.commit()
    db.refresh(user)
    return user


def _subscribe(db, user, endpoint):
    db.add(PushSubscription(user_id=user.id, endpoint=endpoint, p256dh="p256dh-key", auth="auth-key"))
    db.commit()


def _relay(calls: list):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append(body)
        if body["subscription"]["endpoint"] == GONE_ENDPOINT:
            return httpx.Response(410)
        return httpx.Response(201, json={"ok": True})

    return PushRelayClient(url=RELAY_URL, api_key="test-key", transport=httpx.MockTransport(handler))


# ─── Time matching ───


def test_time_match_within_window():
    assert is_time_match("06:03", "06:00", 5)
    assert is_time_match("05:55", "06:00", 5)
    assert not is_time_match("06:06", "06:00", 5)


def test_time_match_wraps_midnight():
    assert is_time_match("23:58", "00:01", 5)
    assert not is_time_match("23:50", "00:01", 5)


def test_time_match_ignores_malformed_targets():
    assert not is_time_match("06:00", None, 5)
    assert not is_time_match("06:00", "6am", 5)


# ─── Preferences ───


def test_preferences_defaults_and_validation():
    db = _new_db()
    user = _new_user(db, "prefs_user", enabled=False)

    defaults = preferences_to_dict(None)
    assert defaults["enabled"] is False
    assert defaults["workout_reminder_times"] == ["07:00", "17:00"]

    row = save_preferences(db, user, {"enabled": True, "daily_reminder_time": "05:30"})
    assert preferences_to_dict(row)["daily_reminder_time"] == "05:30"

    with pytest.raises(ValueError):
        save_preferences(db, user, {"reading_reminder_time": "25:00"})
    with pytest.raises(ValueError):
        save_preferences(db, user, {"workout_reminder_times": ["06:00", "12:00", "18:00"]})
    with pytest.raises(ValueError):
        save_preferences(db, user, {"water_reminder_interval": 0})


# ─── Collection ───


def test_collects_reminders_in_user_local_time():
    db = _new_db()
    utc_user = _new_user(db, "utc_user", water_reminders=False)
    _new_user(db, "ny_user", tz_name="America/New_York", water_reminders=False)
    _new_user(db, "disabled_user", enabled=False, water_reminders=False)

    # 06:03 UTC is 01:03 in New York in January.
    now = datetime(2026, 1, 5, 6, 3, tzinfo=timezone.utc)
    pending = collect_due_notifications(db, now=now)

    assert [(p.user_id, p.type) for p in pending] == [(utc_user.id, "daily")]
    assert pending[0].scheduled_for == now


def test_workout_reminders_are_numbered():
    db = _new_db()
    _new_user(db, "workout_user", workout_reminder_times='["07:00", "17:00"]', water_reminders=False)

    pending = collect_due_notifications(db, now=datetime(2026, 1, 5, 17, 2, tzinfo=timezone.utc))
    assert [p.type for p in pending] == ["workout"]
    assert "Workout 2" in pending[0].payload["title"]


def test_water_reminders_respect_hours_and_interval():
    db = _new_db()
    user = _new_user(db, "water_user", daily_reminder=False, workout_reminders=False, water_reminder_interval=2)
    noon = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    assert [p.type for p in collect_due_notifications(db, now=noon)] == ["water"]
    assert collect_due_notifications(db, now=datetime(2026, 1, 5, 23, 0, tzinfo=timezone.utc)) == []

    pref = db.query(NotificationPreference).filter(NotificationPreference.user_id == user.id).one()
    pref.last_notification_sent_at = noon - timedelta(hours=1)
    db.commit()
    assert collect_due_notifications(db, now=noon) == []

    pref.last_notification_sent_at = noon - timedelta(hours=2)
    db.commit()
    assert [p.type for p in collect_due_notifications(db, now=noon)] == ["water"]


def test_unknown_timezone_is_skipped():
    db = _new_db()
    broken = _new_user(db, "broken_tz", tz_name="Not/AZone")
    skipped: list[int] = []

    pending = collect_due_notifications(db, now=datetime(2026, 1, 5, 6, 0, tzinfo=timezone.utc), skipped_users=skipped)
    assert pending == []
    assert skipped == [broken.id]


# ─── Delivery ───


def test_cycle_delivers_logs_and_prunes_gone_subscriptions():
    db = _new_db()
    user = _new_user(db, "delivery_user", water_reminders=False)
    _subscribe(db, user, "https://push.example/live")
    _subscribe(db, user, GONE_ENDPOINT)
    calls: list = []

    now = datetime(2026, 1, 5, 6, 0, tzinfo=timezone.utc)
    summary = asyncio.run(run_notification_cycle(db, now=now, client=_relay(calls)))

    assert summary.queued == 1
    assert summary.sent == 1
    assert summary.removed_subscriptions == 1
    assert summary.failed == 0
    assert len(calls) == 2
    assert calls[0]["notification"]["tag"] == "daily"
    assert calls[0]["subscription"]["keys"] == {"p256dh": "p256dh-key", "auth": "auth-key"}

    endpoints = [s.endpoint for s in db.query(PushSubscription).all()]
    assert endpoints == ["https://push.example/live"]
    logs = db.query(NotificationLog).all()
    assert [(log.user_id, log.type) for log in logs] == [(user.id, "daily")]


def test_water_delivery_stamps_last_sent():
    db = _new_db()
    user = _new_user(db, "water_stamp", daily_reminder=False, workout_reminders=False)
    _subscribe(db, user, "https://push.example/live")

    asyncio.run(run_notification_cycle(db, now=datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc), client=_relay([])))

    pref = db.query(NotificationPreference).filter(NotificationPreference.user_id == user.id).one()
    assert pref.last_notification_sent_at is not None


def test_relay_errors_count_as_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("relay down", request=request)

    db = _new_db()
    user = _new_user(db, "relay_down", water_reminders=False)
    _subscribe(db, user, "https://push.example/live")
    client = PushRelayClient(url=RELAY_URL, api_key="k", transport=httpx.MockTransport(handler))

    summary = asyncio.run(run_notification_cycle(db, now=datetime(2026, 1, 5, 6, 0, tzinfo=timezone.utc), client=client))

    assert summary.sent == 0
    assert summary.failed == 1
    assert db.query(NotificationLog).count() == 0
    assert db.query(PushSubscription).count() == 1


def test_client_maps_status_codes():
    async def _send(status: int) -> DeliveryResult:
        client = PushRelayClient(
            url=RELAY_URL,
            api_key="k",
            transport=httpx.MockTransport(lambda request: httpx.Response(status)),
        )
        sub = PushSubscription(id=1, endpoint="https://push.example/x", p256dh="p", auth="a")
        async with client:
            return await client.send(sub, {"title": "t", "body": "b"})

    assert asyncio.run(_send(201)) == DeliveryResult.SENT
    assert asyncio.run(_send(404)) == DeliveryResult.GONE
    assert asyncio.run(_send(410)) == DeliveryResult.GONE
    assert asyncio.run(_send(500)) == DeliveryResult.FAILED


# ─── Streak alerts ───


def _complete_days(db, user, challenge, count):
    for i in range(count):
        day = challenge.start_date + timedelta(days=i)
        db.add(
            DailyProgress(
                user_id=user.id,
                challenge_id=challenge.id,
                date=day,
                day_number=i + 1,
                tasks="{}",
                tasks_completed=6,
                is_complete=True,
            )
        )
    db.commit()


def test_streak_check_alerts_on_milestones_only():
    db = _new_db()
    today = today_for_tz("UTC")

    on_milestone = _new_user(db, "seven_days")
    _subscribe(db, on_milestone, "https://push.example/seven")
    challenge = start_challenge(db, on_milestone, start_date=today - timedelta(days=6))
    db.commit()
    _complete_days(db, on_milestone, challenge, 7)

    off_milestone = _new_user(db, "five_days")
    _subscribe(db, off_milestone, "https://push.example/five")
    other = start_challenge(db, off_milestone, start_date=today - timedelta(days=4))
    db.commit()
    _complete_days(db, off_milestone, other, 5)

    calls: list = []
    summary = asyncio.run(run_streak_check(db, client=_relay(calls)))

    assert summary.queued == 1
    assert summary.sent == 1
    assert len(calls) == 1
    assert calls[0]["subscription"]["endpoint"] == "https://push.example/seven"
    assert calls[0]["notification"]["title"] == "7 Day Streak!"
    assert summary.achievements == 1


def test_streak_check_counts_through_yesterday_when_today_is_open():
    db = _new_db()
    today = today_for_tz("UTC")
    user = _new_user(db, "open_today")
    _subscribe(db, user, "https://push.example/open")
    challenge = start_challenge(db, user, start_date=today - timedelta(days=7))
    db.commit()
    _complete_days(db, user, challenge, 7)

    calls: list = []
    summary = asyncio.run(run_streak_check(db, client=_relay(calls)))

    assert summary.queued == 1
    assert summary.sent == 1
    assert calls[0]["notification"]["title"] == "7 Day Streak!"


def test_major_milestones_record_one_achievement():
    db = _new_db()
    today = today_for_tz("UTC")
    user = _new_user(db, "achiever")
    challenge = start_challenge(db, user, start_date=today - timedelta(days=6))
    db.commit()
    _complete_days(db, user, challenge, 7)

    first = asyncio.run(run_streak_check(db, client=_relay([])))
    second = asyncio.run(run_streak_check(db, client=_relay([])))

    assert first.achievements == 1
    assert second.achievements == 0
    logs = db.query(NotificationLog).filter(NotificationLog.type == "achievement").all()
    assert [(log.user_id, log.title) for log in logs] == [(user.id, "Week Warrior")]
    assert logs[0].body == "Congratulations on reaching 7 days!"


def test_achievements_follow_their_own_preference():
    db = _new_db()
    today = today_for_tz("UTC")
    muted = _new_user(db, "no_achievements", achievement_alerts=False, streak_alerts=False)
    challenge = start_challenge(db, muted, start_date=today - timedelta(days=6))
    db.commit()
    _complete_days(db, muted, challenge, 7)

    only_achievements = _new_user(db, "achievements_only", streak_alerts=False)
    _subscribe(db, only_achievements, "https://push.example/quiet")
    other = start_challenge(db, only_achievements, start_date=today - timedelta(days=6))
    db.commit()
    _complete_days(db, only_achievements, other, 7)

    calls: list = []
    summary = asyncio.run(run_streak_check(db, client=_relay(calls)))

    assert calls == []
    assert summary.queued == 0
    assert summary.achievements == 1
    logs = db.query(NotificationLog).filter(NotificationLog.type == "achievement").all()
    assert [log.user_id for log in logs] == [only_achievements.id]
