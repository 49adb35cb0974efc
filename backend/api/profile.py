from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from config import settings
from db.database import get_db
from db.models import User
from services.challenge_service import ensure_profile, user_timezone
from utils.datetime_utils import is_valid_timezone

router = APIRouter(prefix="/profile", tags=["profile"])


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    timezone: Optional[str] = None
    onboarding_completed: Optional[bool] = None


def _profile_to_dict(user: User) -> dict:
    profile = user.profile
    completed_at = profile.onboarding_completed_at if profile else None
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name,
        "timezone": user_timezone(user),
        "timezone_is_default": not (profile and profile.timezone),
        "default_timezone": settings.DEFAULT_TIMEZONE,
        "onboarding_completed_at": completed_at.isoformat() if completed_at else None,
    }


@router.get("")
def get_profile(user: User = Depends(get_current_user)):
    return _profile_to_dict(user)


@router.put("")
def update_profile(
    update: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    payload = update.model_dump(exclude_unset=True)
    profile = ensure_profile(db, user)

    if "timezone" in payload:
        tz_name = (payload["timezone"] or "").strip()
        if tz_name and not is_valid_timezone(tz_name):
            raise HTTPException(status_code=400, detail=f"Unknown timezone: {payload['timezone']}")
        profile.timezone = tz_name or None
    if payload.get("display_name"):
        user.display_name = payload["display_name"].strip()
    if payload.get("onboarding_completed") and not profile.onboarding_completed_at:
        profile.onboarding_completed_at = datetime.now(timezone.utc)

    db.commit()
    db.refresh(user)
    return _profile_to_dict(user)
