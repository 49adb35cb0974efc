from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.challenges import active_challenge_or_404, timezone_or_400
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.challenge_service import load_calendar
from services.streak_service import streak_summary

router = APIRouter(prefix="/streaks", tags=["streaks"])


@router.get("")
def get_streaks(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    tz_name = timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    return {"challenge_id": challenge.id, **streak_summary(load_calendar(db, challenge, tz_name))}
