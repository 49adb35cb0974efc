from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.challenges import active_challenge_or_404, timezone_or_400
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.challenge_service import challenge_window
from services.progress_service import (
    ProgressUpdateError,
    batch_update_tasks,
    get_progress,
    get_progress_range,
    progress_to_dict,
    update_task_progress,
)
from services.task_definitions import TASK_DEFINITIONS
from utils.datetime_utils import today_for_tz

router = APIRouter(prefix="/progress", tags=["progress"])


class TaskUpdateRequest(BaseModel):
    completed: Optional[bool] = None
    duration: Optional[int] = Field(default=None, ge=0, le=24 * 60)
    notes: Optional[str] = Field(default=None, max_length=5000)
    photo_url: Optional[str] = None


class BatchUpdateRequest(BaseModel):
    day: Optional[date] = None
    tasks: dict[str, TaskUpdateRequest]
    notes: Optional[str] = Field(default=None, max_length=5000)


@router.get("/tasks")
def list_task_definitions():
    return [t.to_dict() for t in TASK_DEFINITIONS]


@router.get("")
def get_day(
    day: Optional[date] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tz_name = timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    target = day or today_for_tz(tz_name)
    window = challenge_window(challenge, tz_name)
    return progress_to_dict(get_progress(db, challenge, target), target, window.day_number_of(target))


@router.get("/range")
def get_range(
    start: date,
    end: date,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    return [
        progress_to_dict(row, row.date, row.day_number)
        for row in get_progress_range(db, challenge, start, end)
    ]


@router.put("/tasks/{task_id}")
def update_task(
    task_id: str,
    req: TaskUpdateRequest,
    day: Optional[date] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tz_name = timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    target = day or today_for_tz(tz_name)
    try:
        row = update_task_progress(db, challenge, tz_name, target, task_id, req.model_dump(exclude_unset=True))
    except ProgressUpdateError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(row)
    return progress_to_dict(row, row.date, row.day_number)


@router.put("/tasks")
def update_tasks(
    req: BatchUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tz_name = timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    target = req.day or today_for_tz(tz_name)
    updates = {task_id: body.model_dump(exclude_unset=True) for task_id, body in req.tasks.items()}
    try:
        row = batch_update_tasks(db, challenge, tz_name, target, updates, notes=req.notes)
    except ProgressUpdateError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(row)
    return progress_to_dict(row, row.date, row.day_number)
