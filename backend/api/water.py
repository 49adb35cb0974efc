from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.challenges import active_challenge_or_404, timezone_or_400
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.water_service import (
    add_intake,
    get_intake,
    intake_history,
    intake_to_dict,
    remove_intake,
    update_goal,
)
from utils.datetime_utils import today_for_tz

router = APIRouter(prefix="/water", tags=["water"])


class WaterAmountRequest(BaseModel):
    amount: float = Field(gt=0, le=1000)
    unit: str = "oz"
    day: Optional[date] = None


class WaterGoalRequest(BaseModel):
    goal: float = Field(gt=0, le=1000)
    unit: str = "oz"
    day: Optional[date] = None


@router.get("")
def get_day(
    day: Optional[date] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tz_name = timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    target = day or today_for_tz(tz_name)
    return intake_to_dict(get_intake(db, challenge, target), target)


@router.get("/history")
def history(
    days: int = Query(default=7, ge=1, le=75),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tz_name = timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    return [intake_to_dict(row, row.date) for row in intake_history(db, challenge, tz_name, days)]


def _apply(db: Session, user: User, write, req_day: Optional[date], *args):
    tz_name = timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    try:
        row = write(db, challenge, tz_name, *args, day=req_day)
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(row)
    return intake_to_dict(row, row.date)


@router.post("/add")
def add(req: WaterAmountRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _apply(db, user, add_intake, req.day, req.amount, req.unit)


@router.post("/remove")
def remove(req: WaterAmountRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _apply(db, user, remove_intake, req.day, req.amount, req.unit)


@router.put("/goal")
def set_goal(req: WaterGoalRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _apply(db, user, update_goal, req.day, req.goal, req.unit)
