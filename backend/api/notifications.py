from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import NotificationLog, NotificationPreference, User
from services.notification_service import (
    PendingNotification,
    delete_subscription,
    dispatch,
    preferences_to_dict,
    save_preferences,
    save_subscription,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


class PreferencesUpdate(BaseModel):
    enabled: Optional[bool] = None
    daily_reminder: Optional[bool] = None
    daily_reminder_time: Optional[str] = None
    workout_reminders: Optional[bool] = None
    workout_reminder_times: Optional[list[str]] = None
    water_reminders: Optional[bool] = None
    water_reminder_interval: Optional[int] = None
    reading_reminder: Optional[bool] = None
    reading_reminder_time: Optional[str] = None
    photo_reminder: Optional[bool] = None
    photo_reminder_time: Optional[str] = None
    streak_alerts: Optional[bool] = None
    achievement_alerts: Optional[bool] = None


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class SubscribeRequest(BaseModel):
    endpoint: str = Field(min_length=1)
    keys: SubscriptionKeys


class UnsubscribeRequest(BaseModel):
    endpoint: str = Field(min_length=1)


@router.get("/preferences")
def get_preferences(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    row = db.query(NotificationPreference).filter(NotificationPreference.user_id == user.id).first()
    return preferences_to_dict(row)


@router.put("/preferences")
def update_preferences(
    update: PreferencesUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        row = save_preferences(db, user, update.model_dump(exclude_unset=True))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(row)
    return {"status": "ok", "preferences": preferences_to_dict(row)}


@router.post("/subscribe")
def subscribe(
    req: SubscribeRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    row = save_subscription(
        db,
        user,
        endpoint=req.endpoint,
        p256dh=req.keys.p256dh,
        auth=req.keys.auth,
        user_agent=request.headers.get("user-agent"),
    )
    db.commit()
    return {"status": "ok", "subscription_id": row.id}


@router.delete("/subscribe")
def unsubscribe(
    req: UnsubscribeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    removed = delete_subscription(db, user, req.endpoint)
    db.commit()
    if not removed:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return {"status": "ok"}


@router.post("/test")
async def send_test(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    notification = PendingNotification(
        user_id=user.id,
        type="test",
        payload={
            "title": "Test Notification",
            "body": "Push notifications are working!",
            "tag": "test",
            "data": {"type": "test"},
        },
    )
    summary = await dispatch(db, [notification])
    if summary.sent == 0:
        raise HTTPException(status_code=400, detail="No reachable push subscriptions")
    return {"status": "ok", **summary.to_dict()}


@router.get("/history")
def history(
    limit: int = 50,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(NotificationLog)
        .filter(NotificationLog.user_id == user.id)
        .order_by(NotificationLog.created_at.desc(), NotificationLog.id.desc())
        .limit(max(1, min(limit, 200)))
        .all()
    )
    return [
        {
            "id": r.id,
            "type": r.type,
            "title": r.title,
            "body": r.body,
            "sent_at": r.sent_at.isoformat() if r.sent_at else None,
        }
        for r in rows
    ]
