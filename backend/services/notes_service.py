from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Iterable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from db.models import Challenge, DailyNote, User
from services.progress_service import ensure_loggable_day

logger = logging.getLogger(__name__)

MAX_TAGS = 20


class NoteError(ValueError):
    """Raised for note writes that cannot be applied."""


def _clean_tags(tags: Iterable[str] | None) -> list[str]:
    seen: list[str] = []
    for tag in tags or []:
        value = str(tag).strip()
        if value and value not in seen:
            seen.append(value)
    if len(seen) > MAX_TAGS:
        raise NoteError(f"At most {MAX_TAGS} tags per note")
    return seen


def _load_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(t) for t in data] if isinstance(data, list) else []


def get_note(db: Session, challenge: Challenge, day: date) -> DailyNote | None:
    return (
        db.query(DailyNote)
        .filter(DailyNote.challenge_id == challenge.id, DailyNote.date == day)
        .first()
    )


def save_note(
    db: Session,
    challenge: Challenge,
    tz_name: str,
    day: date,
    *,
    content: str,
    title: str | None = None,
    tags: Iterable[str] | None = None,
) -> DailyNote:
    """Create or replace the single note kept for ``day``."""
    ensure_loggable_day(challenge, tz_name, day)
    cleaned = _clean_tags(tags)
    note = get_note(db, challenge, day)
    if note is None:
        note = DailyNote(user_id=challenge.user_id, challenge_id=challenge.id, date=day)
        db.add(note)
    note.title = (title or "").strip() or None
    note.content = content or ""
    note.tags = json.dumps(cleaned)
    db.flush()
    return note


def note_history(db: Session, challenge: Challenge, limit: int = 30) -> list[DailyNote]:
    return (
        db.query(DailyNote)
        .filter(DailyNote.challenge_id == challenge.id)
        .order_by(DailyNote.date.desc())
        .limit(max(1, limit))
        .all()
    )


def favorite_notes(db: Session, challenge: Challenge) -> list[DailyNote]:
    return (
        db.query(DailyNote)
        .filter(DailyNote.challenge_id == challenge.id, DailyNote.is_favorite.is_(True))
        .order_by(DailyNote.date.desc())
        .all()
    )


def search_notes(db: Session, challenge: Challenge, term: str) -> list[DailyNote]:
    """Case-insensitive match on title or content, newest first."""
    term = (term or "").strip()
    if not term:
        return []
    pattern = f"%{term}%"
    return (
        db.query(DailyNote)
        .filter(
            DailyNote.challenge_id == challenge.id,
            or_(DailyNote.content.ilike(pattern), DailyNote.title.ilike(pattern)),
        )
        .order_by(DailyNote.date.desc())
        .all()
    )


def toggle_favorite(db: Session, user: User, note_id: int) -> DailyNote | None:
    note = db.query(DailyNote).filter(DailyNote.id == note_id, DailyNote.user_id == user.id).first()
    if note is None:
        return None
    note.is_favorite = not bool(note.is_favorite)
    db.flush()
    return note


def export_markdown(db: Session, challenge: Challenge) -> str:
    notes = (
        db.query(DailyNote)
        .filter(DailyNote.challenge_id == challenge.id)
        .order_by(DailyNote.date.asc())
        .all()
    )
    lines = ["# 75 Hard Challenge Notes", ""]
    for note in notes:
        lines.append(f"## {note.date.strftime('%A, %B')} {note.date.day}, {note.date.year}")
        lines.append("")
        if note.title:
            lines.append(f"### {note.title}")
            lines.append("")
        lines.append(note.content or "")
        lines.append("")
        tags = _load_tags(note.tags)
        if tags:
            lines.append(f"Tags: {', '.join(tags)}")
            lines.append("")
        lines.append("---")
        lines.append("")
    logger.info("Exported %d notes for challenge %s", len(notes), challenge.id)
    return "\n".join(lines)


def note_to_dict(note: DailyNote | None, day: date | None = None) -> dict[str, Any] | None:
    if note is None:
        if day is None:
            return None
        return {"date": day.isoformat(), "title": None, "content": "", "tags": [], "is_favorite": False}
    return {
        "id": note.id,
        "date": note.date.isoformat(),
        "title": note.title,
        "content": note.content,
        "tags": _load_tags(note.tags),
        "is_favorite": bool(note.is_favorite),
        "updated_at": note.updated_at.isoformat() if note.updated_at else None,
    }
