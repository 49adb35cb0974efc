"""Water intake totals, unit conversion and the linked water task."""
from __future__ import annotations

import json
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
from db.models import User, UserProfile  # noqa: E402
from services.challenge_service import start_challenge  # noqa: E402
from services.progress_service import ProgressUpdateError, get_progress, load_tasks  # noqa: E402
from services.water_service import (  # noqa: E402
    WaterIntakeError,
    add_intake,
    intake_history,
    intake_to_dict,
    remove_intake,
    to_ounces,
    update_goal,
)
from utils.datetime_utils import today_for_tz  # noqa: E402


TZ = "UTC"


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _challenge(db, days_ago=3):
    user = User(username="water_tester", username_normalized="water_tester", password_hash="hash", display_name="W")
    db.add(user)
    db.flush()
    db.add(UserProfile(user_id=user.id, timezone=TZ))
    db.commit()
    db.refresh(user)
    today = today_for_tz(TZ)
    challenge = start_challenge(db, user, start_date=today - timedelta(days=days_ago))
    db.commit()
    return challenge, today


def _water_done(db, challenge, day):
    return bool(load_tasks(get_progress(db, challenge, day)).get("water-intake", {}).get("completed"))


def test_units_convert_to_ounces():
    assert to_ounces(2, "cups") == 16
    assert to_ounces(1, "Liters") == pytest.approx(33.814)
    assert to_ounces(500, "ml") == pytest.approx(16.907)
    with pytest.raises(WaterIntakeError):
        to_ounces(1, "gallons")
    with pytest.raises(WaterIntakeError):
        to_ounces(0)


def test_reaching_goal_completes_water_task_and_dropping_below_reopens_it():
    db = _new_db()
    challenge, today = _challenge(db)

    row = add_intake(db, challenge, TZ, 100)
    assert row.amount == 100
    assert get_progress(db, challenge, today) is None

    add_intake(db, challenge, TZ, 4, "cups")
    db.commit()
    assert row.amount == 132
    assert _water_done(db, challenge, today)
    assert [entry["unit"] for entry in json.loads(row.intake_log)] == ["oz", "cups"]

    remove_intake(db, challenge, TZ, 10)
    db.commit()
    assert not _water_done(db, challenge, today)

    remove_intake(db, challenge, TZ, 500)
    assert row.amount == 0


def test_lowering_the_goal_can_complete_the_task():
    db = _new_db()
    challenge, today = _challenge(db)

    add_intake(db, challenge, TZ, 2, "liters")
    assert not _water_done(db, challenge, today)

    row = update_goal(db, challenge, TZ, 2, "liters")
    db.commit()
    assert row.unit == "liters"
    assert intake_to_dict(row, today)["goal_met"] is True
    assert _water_done(db, challenge, today)


def test_past_days_are_loggable_but_future_days_are_not():
    db = _new_db()
    challenge, today = _challenge(db)

    add_intake(db, challenge, TZ, 16, day=today - timedelta(days=2))
    add_intake(db, challenge, TZ, 8)
    db.commit()
    assert [r.date for r in intake_history(db, challenge, TZ, days=7)] == [today, today - timedelta(days=2)]

    with pytest.raises(ProgressUpdateError):
        add_intake(db, challenge, TZ, 8, day=today + timedelta(days=1))
    with pytest.raises(ProgressUpdateError):
        add_intake(db, challenge, TZ, 8, day=today - timedelta(days=10))


def test_empty_day_reports_default_goal():
    body = intake_to_dict(None, today_for_tz(TZ))
    assert body["amount"] == 0.0
    assert body["goal"] == 128.0
    assert body["goal_met"] is False
