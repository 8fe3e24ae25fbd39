from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Treat naive datetimes as UTC (pymongo returns naive values unless tz_aware is set).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """
    Coerce a stored timestamp into an aware UTC datetime.
    Accepts datetimes, dates and ISO-8601 strings (a trailing "Z" is allowed).
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(raw))
        except ValueError:
            return None
    return None


def is_past(value: Any, *, now: datetime | None = None) -> bool:
    moment = parse_timestamp(value)
    if moment is None:
        return False
    return moment <= (now or utc_now())


def today_iso(now: datetime | None = None) -> str:
    return (now or utc_now()).date().isoformat()
