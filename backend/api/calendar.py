from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.challenges import active_challenge_or_404, timezone_or_400
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.calendar_service import (
    FILTERABLE_STATUSES,
    DayStatus,
    compute_stats,
    day_number_for,
    filter_calendar,
    group_calendar_by_month,
)
from services.challenge_service import challenge_window, get_challenge, load_calendar

router = APIRouter(prefix="/calendar", tags=["calendar"])


def _parse_filters(raw: list[str] | None) -> list[DayStatus]:
    filters: list[DayStatus] = []
    for value in raw or []:
        try:
            status = DayStatus(value.strip().lower())
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown status filter: {value}")
        if status not in FILTERABLE_STATUSES:
            raise HTTPException(status_code=422, detail=f"Status {value} cannot be filtered")
        filters.append(status)
    return filters


@router.get("")
def get_calendar(
    challenge_id: Optional[int] = None,
    status: Optional[list[str]] = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tz_name = timezone_or_400(user)
    if challenge_id is not None:
        challenge = get_challenge(db, user, challenge_id)
        if not challenge:
            raise HTTPException(status_code=404, detail="Challenge not found")
    else:
        challenge = active_challenge_or_404(db, user)

    filters = _parse_filters(status)
    days = load_calendar(db, challenge, tz_name)
    stats = compute_stats(days)
    visible = filter_calendar(days, filters)
    window = challenge_window(challenge, tz_name)
    return {
        "challenge_id": challenge.id,
        "timezone": tz_name,
        "current_day": day_number_for(window.start_date, tz_name, window.duration_days),
        "duration_days": window.duration_days,
        "filters": [f.value for f in filters],
        "days": [d.to_dict() for d in visible],
        "months": [m.to_dict() for m in group_calendar_by_month(visible)],
        "stats": stats.to_dict(),
    }


@router.get("/stats")
def get_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    tz_name = timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    return compute_stats(load_calendar(db, challenge, tz_name)).to_dict()
