import re
from typing import Any, Mapping

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TIME_UNIT_MARKERS = ("second", "minute", "time")
TIME_UNIT_ALIASES = {"sec", "min", "s"}

ROLE_ATHLETE = "athlete"
ROLE_ADMIN = "admin"
ROLE_SUPER = "super"
CLUB_ROLES = frozenset({ROLE_ATHLETE, ROLE_ADMIN})


def normalize_email(value: Any) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.fullmatch(value.strip()))


def emails_match(left: Any, right: Any) -> bool:
    left_norm = normalize_email(left)
    return bool(left_norm) and left_norm == normalize_email(right)


def normalize_role(value: Any, *, default: str = ROLE_ATHLETE) -> str | None:
    """
    Lower-case a club role, falling back to `default` when empty.
    Returns None for values outside CLUB_ROLES.
    """
    cleaned = str(value or "").strip().lower()
    if not cleaned:
        return default
    if cleaned not in CLUB_ROLES:
        return None
    return cleaned


def missing_fields(payload: Mapping[str, Any] | None, *names: str) -> list[str]:
    data = payload or {}
    missing = []
    for name in names:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def is_time_unit(unit: str | None) -> bool:
    if not unit:
        return False
    lowered = unit.strip().lower()
    return any(marker in lowered for marker in TIME_UNIT_MARKERS) or lowered in TIME_UNIT_ALIASES


def parse_time_value(value: str) -> float | None:
    """
    Parse "MM:SS", "MM:SS.ms" or plain seconds into seconds.
    """
    cleaned = value.strip()
    if not cleaned:
        return None
    if ":" in cleaned:
        parts = cleaned.split(":")
        if len(parts) != 2:
            raise ValueError(f"Invalid time format: {cleaned}. Expected format: MM:SS or MM:SS.ms")
        try:
            minutes = float(parts[0])
            seconds = float(parts[1])
        except ValueError:
            raise ValueError(
                f"Invalid time format: {cleaned}. Expected format: MM:SS or MM:SS.ms"
            ) from None
        return minutes * 60 + seconds
    try:
        return float(cleaned)
    except ValueError:
        raise ValueError(
            f"Invalid time value: {cleaned}. Expected decimal number or MM:SS format"
        ) from None


def parse_performance_value(value: Any, unit: str | None = None) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).strip()
    if not cleaned:
        return None
    if is_time_unit(unit):
        return parse_time_value(cleaned)
    try:
        return float(cleaned)
    except ValueError:
        raise ValueError(f"Invalid numeric value: {cleaned}") from None


def format_time_value(seconds: float | None) -> str:
    if seconds is None:
        return ""
    minutes = int(seconds // 60)
    remaining = seconds - minutes * 60
    if minutes > 0:
        return f"{minutes}:{remaining:05.2f}"
    return f"{remaining:.2f}"
