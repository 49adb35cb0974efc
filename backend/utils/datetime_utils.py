import re
from datetime import datetime, date, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class InvalidTimezoneError(ValueError):
    """Raised when a timezone name is not a known IANA zone."""

    def __init__(self, tz_name):
        self.tz_name = tz_name
        super().__init__(f"Unknown timezone: {tz_name!r}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_zone(tz_name: str | None) -> ZoneInfo:
    """Look up an IANA zone, failing loudly instead of falling back to UTC."""
    name = (tz_name or "").strip()
    if not name:
        raise InvalidTimezoneError(tz_name)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(tz_name) from exc


def is_valid_timezone(tz_name: str | None) -> bool:
    try:
        resolve_zone(tz_name)
    except InvalidTimezoneError:
        return False
    return True


def today_for_tz(tz_name: str | None, now: datetime | None = None) -> date:
    """Return today's calendar date in the given zone, time-of-day discarded."""
    zone = resolve_zone(tz_name)
    instant = now or utcnow()
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(zone).date()


def local_time_hhmm(tz_name: str | None, now: datetime | None = None) -> str:
    """Wall-clock "HH:MM" of ``now`` in the given zone."""
    zone = resolve_zone(tz_name)
    instant = now or utcnow()
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(zone).strftime("%H:%M")


def to_date(value: date | datetime) -> date:
    """Strip any time component."""
    if isinstance(value, datetime):
        return value.date()
    return value


def is_valid_hhmm(value: str | None) -> bool:
    return bool(_HHMM_RE.match((value or "").strip()))


def hhmm_to_minutes(value: str) -> int:
    match = _HHMM_RE.match((value or "").strip())
    if not match:
        raise ValueError(f"Invalid HH:MM time: {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))
