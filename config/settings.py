from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Iterable

from . import constants


@dataclass(frozen=True)
class Settings:
    mongodb_uri: str
    mongodb_db_name: str = constants.DEFAULT_DB_NAME
    test_mode: bool = False
    invite_ttl_hours: int = constants.DEFAULT_INVITE_TTL_HOURS
    session_ttl_seconds: int = constants.DEFAULT_SESSION_TTL_SECONDS
    claims_write_attempts: int = constants.DEFAULT_CLAIMS_WRITE_ATTEMPTS
    api_request_timeout_seconds: int = constants.DEFAULT_API_REQUEST_TIMEOUT_SECONDS
    api_rate_limit_max: int = constants.DEFAULT_API_RATE_LIMIT_MAX
    api_rate_limit_window_seconds: int = constants.DEFAULT_API_RATE_LIMIT_WINDOW_SECONDS
    feature_flags: set[str] = field(default_factory=set)


def _required_str(name: str, missing: list[str]) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        missing.append(name)
    return value


def _optional_int_default(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer.") from None


def _optional_str_set(name: str) -> set[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return set()
    return {part.strip() for part in raw.split(",") if part.strip()}


def _optional_str(name: str) -> str | None:
    raw = os.getenv(name, "").strip()
    return raw or None


def _optional_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"{name} must be a boolean (true/false).")


def _format_list(values: Iterable[str]) -> str:
    return ", ".join(sorted(values))


def load_settings() -> Settings:
    """
    Load and validate environment configuration.
    Raises RuntimeError with a consolidated message when required values are missing/invalid.
    """
    missing: list[str] = []

    mongodb_uri = _required_str(constants.MONGODB_URI_ENV, missing)
    if missing:
        raise RuntimeError(f"Missing required config: {_format_list(missing)}")

    invite_ttl_hours = _optional_int_default(
        constants.INVITE_TTL_HOURS_ENV, default=constants.DEFAULT_INVITE_TTL_HOURS
    )
    session_ttl_seconds = _optional_int_default(
        constants.SESSION_TTL_SECONDS_ENV, default=constants.DEFAULT_SESSION_TTL_SECONDS
    )
    claims_write_attempts = _optional_int_default(
        constants.CLAIMS_WRITE_ATTEMPTS_ENV, default=constants.DEFAULT_CLAIMS_WRITE_ATTEMPTS
    )
    api_request_timeout_seconds = _optional_int_default(
        constants.API_REQUEST_TIMEOUT_SECONDS_ENV,
        default=constants.DEFAULT_API_REQUEST_TIMEOUT_SECONDS,
    )
    api_rate_limit_max = _optional_int_default(
        constants.API_RATE_LIMIT_MAX_ENV, default=constants.DEFAULT_API_RATE_LIMIT_MAX
    )
    api_rate_limit_window_seconds = _optional_int_default(
        constants.API_RATE_LIMIT_WINDOW_SECONDS_ENV,
        default=constants.DEFAULT_API_RATE_LIMIT_WINDOW_SECONDS,
    )

    if invite_ttl_hours <= 0:
        raise RuntimeError("INVITE_TTL_HOURS must be > 0.")
    if session_ttl_seconds <= 0:
        raise RuntimeError("SESSION_TTL_SECONDS must be > 0.")
    if claims_write_attempts <= 0:
        raise RuntimeError("CLAIMS_WRITE_ATTEMPTS must be > 0.")
    if api_request_timeout_seconds <= 0:
        raise RuntimeError("API_REQUEST_TIMEOUT_SECONDS must be > 0.")
    if api_rate_limit_max <= 0:
        raise RuntimeError("API_RATE_LIMIT_MAX must be > 0.")
    if api_rate_limit_window_seconds <= 0:
        raise RuntimeError("API_RATE_LIMIT_WINDOW_SECONDS must be > 0.")

    return Settings(
        mongodb_uri=mongodb_uri,
        mongodb_db_name=_optional_str(constants.MONGODB_DB_NAME_ENV) or constants.DEFAULT_DB_NAME,
        test_mode=_optional_bool(constants.TEST_MODE_ENV, default=False),
        invite_ttl_hours=invite_ttl_hours,
        session_ttl_seconds=session_ttl_seconds,
        claims_write_attempts=claims_write_attempts,
        api_request_timeout_seconds=api_request_timeout_seconds,
        api_rate_limit_max=api_rate_limit_max,
        api_rate_limit_window_seconds=api_rate_limit_window_seconds,
        feature_flags=_optional_str_set(constants.FEATURE_FLAGS_ENV),
    )


def summarize_settings(settings: Settings) -> dict[str, object]:
    """
    Produce a non-secret snapshot of configuration for startup logging.
    """
    return {
        "test_mode": settings.test_mode,
        "feature_flags": sorted(settings.feature_flags),
        "invites": {"ttl_hours": settings.invite_ttl_hours},
        "sessions": {"ttl_seconds": settings.session_ttl_seconds},
        "claims_write_attempts": settings.claims_write_attempts,
        "api": {
            "request_timeout_seconds": settings.api_request_timeout_seconds,
            "rate_limit_max": settings.api_rate_limit_max,
            "rate_limit_window_seconds": settings.api_rate_limit_window_seconds,
        },
        "mongodb_uri_present": bool(settings.mongodb_uri),
        "mongodb_db_name": settings.mongodb_db_name,
    }
