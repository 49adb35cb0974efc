from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth.utils import require_cron_secret
from db.database import get_db
from services.notification_service import run_notification_cycle, run_streak_check
from utils.datetime_utils import utcnow

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.get("/notifications")
async def notifications(db: Session = Depends(get_db)):
    now = utcnow()
    summary = await run_notification_cycle(db, now=now)
    return {"success": True, "timestamp": now.isoformat(), **summary.to_dict()}


@router.get("/daily-check")
async def daily_check(db: Session = Depends(get_db)):
    summary = await run_streak_check(db)
    return {"success": True, "timestamp": utcnow().isoformat(), **summary.to_dict()}
