from __future__ import annotations

import logging
import os
from importlib import metadata
from typing import Any

from config import Settings
from utils.redaction import scrub

_INITIALIZED = False

SENTRY_DSN_ENV = "SENTRY_DSN"
SENTRY_ENVIRONMENT_ENV = "SENTRY_ENVIRONMENT"
SENTRY_RELEASE_ENV = "SENTRY_RELEASE"
SENTRY_TRACES_SAMPLE_RATE_ENV = "SENTRY_TRACES_SAMPLE_RATE"


def _before_send(event: Any, hint: dict[str, Any]) -> Any | None:  # noqa: ARG001
    try:
        return scrub(event)
    except Exception:
        return event


def _release() -> str:
    configured = os.getenv(SENTRY_RELEASE_ENV, "").strip()
    if configured:
        return configured
    try:
        return f"peaklog@{metadata.version('peaklog')}"
    except metadata.PackageNotFoundError:
        return "peaklog"


def _traces_sample_rate() -> float:
    raw = os.getenv(SENTRY_TRACES_SAMPLE_RATE_ENV, "").strip()
    if not raw:
        return 0.0
    try:
        rate = float(raw)
    except ValueError:
        logging.warning("Ignoring invalid %s=%r.", SENTRY_TRACES_SAMPLE_RATE_ENV, raw)
        return 0.0
    return min(max(rate, 0.0), 1.0)


def init_error_reporting(*, settings: Settings, service_name: str) -> None:
    """
    Enable Sentry when SENTRY_DSN is set and sentry-sdk is installed (the `sentry` extra).
    Safe to call more than once.
    """
    global _INITIALIZED
    if _INITIALIZED:
        return

    dsn = os.getenv(SENTRY_DSN_ENV, "").strip()
    if not dsn:
        return

    try:
        import sentry_sdk  # type: ignore[import-not-found]
        from sentry_sdk.integrations.aiohttp import (
            AioHttpIntegration,  # type: ignore[import-not-found]
        )
        from sentry_sdk.integrations.logging import (
            LoggingIntegration,  # type: ignore[import-not-found]
        )
    except ImportError:
        logging.warning("SENTRY_DSN is set but sentry-sdk is not installed; error reporting off.")
        return

    environment = os.getenv(SENTRY_ENVIRONMENT_ENV, "").strip() or (
        "test" if settings.test_mode else "production"
    )
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=_release(),
        send_default_pii=False,
        before_send=_before_send,
        integrations=[
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            AioHttpIntegration(),
        ],
        traces_sample_rate=_traces_sample_rate(),
    )
    sentry_sdk.set_tag("service", service_name)
    sentry_sdk.set_tag("db_name", settings.mongodb_db_name)

    _INITIALIZED = True
    logging.info("Error reporting enabled (%s, env=%s).", service_name, environment)


def capture_exception(exc: BaseException, *, tags: dict[str, str] | None = None) -> None:
    """
    Forward an exception to Sentry when it is configured. Never raises.
    """
    if not _INITIALIZED:
        return
    try:
        import sentry_sdk  # type: ignore[import-not-found]
    except ImportError:
        return

    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in (tags or {}).items():
                scope.set_tag(key, value)
            sentry_sdk.capture_exception(exc)
    except Exception:
        logging.debug("Failed to forward exception to Sentry.", exc_info=True)
