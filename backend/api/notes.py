from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.challenges import active_challenge_or_404, timezone_or_400
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.notes_service import (
    export_markdown,
    favorite_notes,
    get_note,
    note_history,
    note_to_dict,
    save_note,
    search_notes,
    toggle_favorite,
)
from utils.datetime_utils import today_for_tz

router = APIRouter(prefix="/notes", tags=["notes"])


class NoteRequest(BaseModel):
    day: Optional[date] = None
    title: Optional[str] = Field(default=None, max_length=200)
    content: str = Field(default="", max_length=20000)
    tags: list[str] = Field(default_factory=list)


@router.get("")
def get_day(
    day: Optional[date] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tz_name = timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    target = day or today_for_tz(tz_name)
    return note_to_dict(get_note(db, challenge, target), target)


@router.put("")
def save(req: NoteRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    tz_name = timezone_or_400(user)
    challenge = active_challenge_or_404(db, user)
    target = req.day or today_for_tz(tz_name)
    try:
        note = save_note(db, challenge, tz_name, target, content=req.content, title=req.title, tags=req.tags)
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(note)
    return note_to_dict(note)


@router.get("/history")
def history(
    limit: int = Query(default=30, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    challenge = active_challenge_or_404(db, user)
    return [note_to_dict(n) for n in note_history(db, challenge, limit)]


@router.get("/favorites")
def favorites(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    challenge = active_challenge_or_404(db, user)
    return [note_to_dict(n) for n in favorite_notes(db, challenge)]


@router.get("/search")
def search(
    q: str = Query(min_length=1, max_length=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    challenge = active_challenge_or_404(db, user)
    return [note_to_dict(n) for n in search_notes(db, challenge, q)]


@router.get("/export", response_class=PlainTextResponse)
def export(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    challenge = active_challenge_or_404(db, user)
    return export_markdown(db, challenge)


@router.post("/{note_id}/favorite")
def favorite(note_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    note = toggle_favorite(db, user, note_id)
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    db.commit()
    db.refresh(note)
    return note_to_dict(note)
