"""Daily task progress persistence against an in-memory database."""
from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import DailyProgress, User, UserProfile  # noqa: E402
from services.calendar_service import DayStatus, compute_stats  # noqa: E402
from services.challenge_service import end_challenge, get_active_challenge, load_calendar, start_challenge  # noqa: E402
from services.progress_service import (  # noqa: E402
    ProgressUpdateError,
    batch_update_tasks,
    get_progress_range,
    load_tasks,
    progress_to_dict,
    update_task_progress,
)
from services.task_definitions import TASK_IDS  # noqa: E402
from utils.datetime_utils import today_for_tz  # noqa: E402


TZ = "UTC"
ALL_DONE = {task_id: {"completed": True} for task_id in TASK_IDS}


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _new_user(db, username="progress_tester", tz_name=TZ) -> User:
    user = User(
        username=username,
        username_normalized=username.lower(),
        password_hash="hash",
        display_name="Progress Tester",
    )
    db.add(user)
    db.flush()
    db.add(UserProfile(user_id=user.id, timezone=tz_name))
    db.commit()
    db.refresh(user)
    return user


def _challenge(db, user, days_ago=3):
    today = today_for_tz(TZ)
    challenge = start_challenge(db, user, start_date=today - timedelta(days=days_ago))
    db.commit()
    return challenge, today


def test_single_task_update_creates_partial_day():
    db = _new_db()
    user = _new_user(db)
    challenge, today = _challenge(db, user)

    row = update_task_progress(db, challenge, TZ, today, "workout-indoor", {"completed": True, "duration": 45})
    db.commit()

    assert row.day_number == 4
    assert row.tasks_completed == 1
    assert row.is_complete is False
    task = load_tasks(row)["workout-indoor"]
    assert task["completed"] is True
    assert task["duration"] == 45
    assert task["completed_at"]


def test_all_tasks_complete_the_day():
    db = _new_db()
    user = _new_user(db)
    challenge, today = _challenge(db, user)

    row = batch_update_tasks(db, challenge, TZ, today - timedelta(days=1), ALL_DONE, notes="felt good")
    db.commit()

    assert row.tasks_completed == len(TASK_IDS)
    assert row.is_complete is True
    assert row.notes == "felt good"
    assert db.query(DailyProgress).count() == 1


def test_repeat_updates_reuse_the_same_row():
    db = _new_db()
    user = _new_user(db)
    challenge, today = _challenge(db, user)

    update_task_progress(db, challenge, TZ, today, "water-intake", {"completed": True})
    update_task_progress(db, challenge, TZ, today, "read-nonfiction", {"completed": True})
    db.commit()

    rows = db.query(DailyProgress).all()
    assert len(rows) == 1
    assert rows[0].tasks_completed == 2


def test_uncompleting_a_task_clears_its_timestamp():
    db = _new_db()
    user = _new_user(db)
    challenge, today = _challenge(db, user)

    batch_update_tasks(db, challenge, TZ, today, ALL_DONE)
    row = update_task_progress(db, challenge, TZ, today, "follow-diet", {"completed": False})
    db.commit()

    assert row.is_complete is False
    assert row.tasks_completed == len(TASK_IDS) - 1
    assert load_tasks(row)["follow-diet"]["completed_at"] is None


def test_rejects_future_days_and_days_outside_window():
    db = _new_db()
    user = _new_user(db)
    challenge, today = _challenge(db, user)

    with pytest.raises(ProgressUpdateError):
        update_task_progress(db, challenge, TZ, today + timedelta(days=1), "water-intake", {"completed": True})
    with pytest.raises(ProgressUpdateError):
        update_task_progress(db, challenge, TZ, today - timedelta(days=10), "water-intake", {"completed": True})


def test_rejects_unknown_tasks_and_fields():
    db = _new_db()
    user = _new_user(db)
    challenge, today = _challenge(db, user)

    with pytest.raises(ProgressUpdateError):
        update_task_progress(db, challenge, TZ, today, "meditation", {"completed": True})
    with pytest.raises(ProgressUpdateError):
        update_task_progress(db, challenge, TZ, today, "water-intake", {"calories": 100})


def test_range_and_dict_shape():
    db = _new_db()
    user = _new_user(db)
    challenge, today = _challenge(db, user)
    batch_update_tasks(db, challenge, TZ, today - timedelta(days=2), ALL_DONE)
    update_task_progress(db, challenge, TZ, today, "water-intake", {"completed": True})
    db.commit()

    rows = get_progress_range(db, challenge, today - timedelta(days=3), today)
    assert [r.date for r in rows] == [today - timedelta(days=2), today]

    empty = progress_to_dict(None, today - timedelta(days=1), 3)
    assert empty["tasks_completed"] == 0
    assert empty["is_complete"] is False
    assert progress_to_dict(rows[0], rows[0].date, rows[0].day_number)["is_complete"] is True


def test_persisted_progress_feeds_the_calendar():
    db = _new_db()
    user = _new_user(db)
    challenge, today = _challenge(db, user)
    batch_update_tasks(db, challenge, TZ, today - timedelta(days=3), ALL_DONE)
    batch_update_tasks(db, challenge, TZ, today - timedelta(days=2), ALL_DONE)
    update_task_progress(db, challenge, TZ, today - timedelta(days=1), "water-intake", {"completed": True})
    db.commit()

    days = load_calendar(db, challenge, TZ, today=today)
    assert [d.status for d in days[:4]] == [
        DayStatus.COMPLETE,
        DayStatus.COMPLETE,
        DayStatus.PARTIAL,
        DayStatus.TODAY,
    ]
    stats = compute_stats(days)
    assert stats.longest_streak == 2
    assert stats.current_streak == 0


def test_starting_a_new_challenge_closes_the_previous_one():
    db = _new_db()
    user = _new_user(db)
    first, today = _challenge(db, user)
    second = start_challenge(db, user, name="Round two")
    db.commit()

    db.refresh(first)
    assert first.is_active is False
    assert first.end_date == today
    assert get_active_challenge(db, user).id == second.id
    assert second.start_date == today

    end_challenge(db, user, second)
    db.commit()
    assert get_active_challenge(db, user) is None
