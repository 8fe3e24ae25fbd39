from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import MutableMapping

from aiohttp import web

from config import Settings, load_settings
from migrations import apply_migrations
from peaklog.api import routes
from peaklog.api.errors import api_error
from services.club_access_service import ClubAccessContext
from services.error_reporting_service import init_error_reporting
from services.session_service import resolve_session
from utils.metrics import record_event
from utils.redaction import redact_bearer

MAX_REQUEST_BYTES = int(os.environ.get("API_MAX_REQUEST_BYTES", "65536").strip() or "65536")
HEALTH_PATHS = frozenset({"/health", "/ready"})


@dataclass
class RateLimitState:
    buckets: dict[tuple[str, str], tuple[int, float]] = field(default_factory=dict)
    last_sweep: float = 0.0


def _apply_security_headers(headers: MutableMapping[str, str]) -> None:
    headers.setdefault("Cache-Control", "no-store")
    headers.setdefault("X-Content-Type-Options", "nosniff")
    headers.setdefault("X-Frame-Options", "DENY")
    headers.setdefault("Referrer-Policy", "no-referrer")
    headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none';")


def _is_https(request: web.Request) -> bool:
    forwarded = request.headers.get("X-Forwarded-Proto", "")
    if forwarded:
        proto = forwarded.split(",")[0].strip().lower()
        return proto == "https"
    return bool(getattr(request, "secure", False))


@web.middleware
async def security_headers_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        _apply_security_headers(exc.headers)
        raise

    if isinstance(response, web.StreamResponse):
        _apply_security_headers(response.headers)
        if _is_https(request):
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
            )
    return response


def _client_ip(request: web.Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return str(request.remote or "")


def _rate_limit_allowed(
    state: RateLimitState, *, key: tuple[str, str], limit: int, window_seconds: int
) -> tuple[bool, int]:
    now = time.time()
    count, window_start = state.buckets.get(key, (0, now))
    if now - window_start >= window_seconds:
        count, window_start = 0, now
    count += 1
    state.buckets[key] = (count, window_start)
    if count <= limit:
        return True, 0
    retry_after = max(0, int(window_seconds - (now - window_start)))
    return False, retry_after


def _sweep_rate_limit_state(state: RateLimitState, *, window_seconds: int) -> None:
    now = time.time()
    if now - state.last_sweep < window_seconds:
        return
    state.last_sweep = now
    cutoff = now - (window_seconds * 2)
    for key in [key for key, (_count, start) in state.buckets.items() if start < cutoff]:
        state.buckets.pop(key, None)


@web.middleware
async def rate_limit_middleware(request: web.Request, handler):
    if request.path in HEALTH_PATHS:
        return await handler(request)

    settings: Settings = request.app["settings"]
    window_seconds = max(1, int(settings.api_rate_limit_window_seconds))
    state: RateLimitState = request.app["rate_limit_state"]
    _sweep_rate_limit_state(state, window_seconds=window_seconds)

    ip = _client_ip(request)
    allowed, retry_after = _rate_limit_allowed(
        state,
        key=("api", ip),
        limit=max(1, int(settings.api_rate_limit_max)),
        window_seconds=window_seconds,
    )
    if not allowed:
        record_event("rate_limited")
        logging.warning(
            "event=rate_limited ip=%s path=%s retry_after=%s", ip, request.path, retry_after
        )
        resp = web.json_response(
            {"error": {"code": "rate-limited", "message": "Too many requests."}},
            status=429,
        )
        resp.headers["Retry-After"] = str(retry_after)
        return resp

    return await handler(request)


@web.middleware
async def timeout_middleware(request: web.Request, handler):
    settings: Settings = request.app["settings"]
    try:
        return await asyncio.wait_for(
            handler(request), timeout=float(settings.api_request_timeout_seconds)
        )
    except asyncio.TimeoutError:
        logging.warning("event=request_timeout ip=%s path=%s", _client_ip(request), request.path)
        raise api_error(status=408, code="timeout", message="Request timed out.") from None


def _bearer_token(request: web.Request) -> str | None:
    header = request.headers.get("Authorization", "").strip()
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@web.middleware
async def session_middleware(request: web.Request, handler):
    """
    Resolve `Authorization: Bearer <token>` into `request["caller"]`.
    Missing or expired credentials leave the caller unset; operations decide whether
    that is an error.
    """
    request["caller"] = None
    request["session_token"] = None
    token = _bearer_token(request)
    if token:
        context: ClubAccessContext = request.app["context"]
        caller = resolve_session(token, collection=context.sessions)
        if caller is None:
            logging.info(
                "event=session_rejected path=%s auth=%s",
                request.path,
                redact_bearer(request.headers.get("Authorization", "")),
            )
        else:
            request["caller"] = caller
            request["session_token"] = token
    return await handler(request)


async def health(_request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


async def ready(request: web.Request) -> web.Response:
    context: ClubAccessContext = request.app["context"]
    try:
        context.users.database.command("ping")
    except Exception as exc:
        logging.warning("event=ready_check_failed", exc_info=exc)
        return web.json_response({"ok": False, "mongo": "unavailable"}, status=503)
    return web.json_response({"ok": True, "mongo": "ok"})


def create_app(
    *,
    settings: Settings | None = None,
    context: ClubAccessContext | None = None,
    migrate: bool | None = None,
) -> web.Application:
    app = web.Application(
        client_max_size=max(1, int(MAX_REQUEST_BYTES)),
        middlewares=[
            security_headers_middleware,
            rate_limit_middleware,
            timeout_middleware,
            session_middleware,
        ],
    )
    app_settings = settings or (context.settings if context is not None else load_settings())
    app_context = context or ClubAccessContext.from_settings(app_settings)
    app["settings"] = app_settings
    app["context"] = app_context
    app["rate_limit_state"] = RateLimitState()
    init_error_reporting(settings=app_settings, service_name="api")

    if migrate is None:
        migrate = context is None
    if migrate:
        apply_migrations(settings=app_settings, db=app_context.users.database)

    app.router.add_get("/health", health)
    app.router.add_get("/ready", ready)
    routes.add_routes(app)
    return app

