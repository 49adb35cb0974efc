from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import Challenge, User
from services.challenge_service import (
    challenge_to_dict,
    end_challenge,
    get_active_challenge,
    get_challenge,
    list_challenges,
    start_challenge,
    user_timezone,
)
from utils.datetime_utils import InvalidTimezoneError, resolve_zone

router = APIRouter(prefix="/challenges", tags=["challenges"])


def timezone_or_400(user: User) -> str:
    tz_name = user_timezone(user)
    try:
        resolve_zone(tz_name)
    except InvalidTimezoneError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return tz_name


def active_challenge_or_404(db: Session, user: User) -> Challenge:
    challenge = get_active_challenge(db, user)
    if not challenge:
        raise HTTPException(status_code=404, detail="No active challenge")
    return challenge


class ChallengeStartRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    start_date: Optional[date] = None


class ChallengeUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None


@router.get("")
def list_user_challenges(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    tz_name = timezone_or_400(user)
    return [challenge_to_dict(c, tz_name) for c in list_challenges(db, user)]


@router.get("/active")
def get_active(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    tz_name = timezone_or_400(user)
    return challenge_to_dict(active_challenge_or_404(db, user), tz_name)


@router.post("", status_code=201)
def start(
    req: ChallengeStartRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tz_name = timezone_or_400(user)
    challenge = start_challenge(
        db,
        user,
        name=req.name,
        description=req.description,
        start_date=req.start_date,
    )
    db.commit()
    db.refresh(challenge)
    return challenge_to_dict(challenge, tz_name)


@router.put("/{challenge_id}")
def update(
    challenge_id: int,
    req: ChallengeUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tz_name = timezone_or_400(user)
    challenge = get_challenge(db, user, challenge_id)
    if not challenge:
        raise HTTPException(status_code=404, detail="Challenge not found")
    if req.name is not None:
        challenge.name = req.name.strip()
    if req.description is not None:
        challenge.description = req.description
    db.commit()
    db.refresh(challenge)
    return challenge_to_dict(challenge, tz_name)


@router.post("/{challenge_id}/end")
def end(
    challenge_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tz_name = timezone_or_400(user)
    challenge = get_challenge(db, user, challenge_id)
    if not challenge:
        raise HTTPException(status_code=404, detail="Challenge not found")
    end_challenge(db, user, challenge)
    db.commit()
    db.refresh(challenge)
    return challenge_to_dict(challenge, tz_name)
