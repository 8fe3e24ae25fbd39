from __future__ import annotations

import json
from typing import Any, Callable

from aiohttp import web

from peaklog.api.errors import api_error, api_error_from
from services import club_access_service
from services.club_access_service import ClubAccessContext
from services.error_reporting_service import capture_exception
from services.performance_service import DEFAULT_LEADERBOARD_SIZE
from services.session_service import CallerIdentity, refresh_session
from utils.errors import (
    ERROR_UNKNOWN,
    ClubAccessError,
    InvalidArgument,
    Unauthenticated,
    Unknown,
    log_call_error,
    new_error_id,
)
from utils.logging import log_call_event
from utils.metrics import now_ms, record_call


def _context(request: web.Request) -> ClubAccessContext:
    return request.app["context"]


def _caller(request: web.Request) -> CallerIdentity | None:
    return request.get("caller")


async def _read_payload(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    raw = await request.text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        raise InvalidArgument("Request body must be valid JSON.") from None
    if not isinstance(data, dict):
        raise InvalidArgument("Request body must be a JSON object.")
    return data


async def _invoke(
    request: web.Request,
    operation: str,
    call: Callable[[], Any],
) -> web.Response:
    """
    Run a callable operation and translate its outcome into a JSON response.
    """
    started = now_ms()
    caller = _caller(request)
    caller_uid = caller.uid if caller is not None else None
    try:
        result = call()
    except ClubAccessError as exc:
        error_id = None
        if isinstance(exc, Unknown):
            error_id = new_error_id()
            log_call_error(exc, operation=operation, caller_uid=caller_uid, error_id=error_id)
            capture_exception(exc.cause or exc, tags={"operation": operation, "error_id": error_id})
        log_call_event(operation, caller, status=exc.code)
        record_call(operation, status=exc.code, duration_ms=now_ms() - started)
        raise api_error_from(exc, error_id=error_id) from None
    except Exception as exc:
        error_id = new_error_id()
        log_call_error(exc, operation=operation, caller_uid=caller_uid, error_id=error_id)
        capture_exception(exc, tags={"operation": operation, "error_id": error_id})
        record_call(operation, status=ERROR_UNKNOWN, duration_ms=now_ms() - started)
        raise api_error(
            status=500,
            code=ERROR_UNKNOWN,
            message="Something went wrong.",
            details={"error_id": error_id},
        ) from None
    record_call(operation, status="ok", duration_ms=now_ms() - started)
    return web.json_response(result)


def _callable_handler(name: str):
    operation = club_access_service.OPERATIONS[name]

    async def handler(request: web.Request) -> web.Response:
        try:
            payload = await _read_payload(request)
        except ClubAccessError as exc:
            raise api_error_from(exc) from None
        context = _context(request)
        return await _invoke(
            request,
            name,
            lambda: operation(_caller(request), payload, context=context),
        )

    handler.__name__ = f"{name}_handler"
    return handler


assign_admin = _callable_handler("assignAdmin")
remove_admin = _callable_handler("removeAdmin")
redeem_invite = _callable_handler("redeemInvite")
accept_pending_by_email = _callable_handler("acceptPendingByEmail")
create_invite = _callable_handler("createInvite")


async def submit_record(request: web.Request) -> web.Response:
    try:
        payload = await _read_payload(request)
    except ClubAccessError as exc:
        raise api_error_from(exc) from None
    context = _context(request)
    return await _invoke(
        request,
        "submitRecord",
        lambda: club_access_service.submit_record(_caller(request), payload, context=context),
    )


async def check_goal(request: web.Request) -> web.Response:
    goal_id = request.match_info.get("goal_id", "").strip()
    context = _context(request)
    return await _invoke(
        request,
        "checkGoal",
        lambda: club_access_service.check_goal(_caller(request), goal_id, context=context),
    )


def _limit_param(request: web.Request) -> int:
    raw = request.query.get("limit", "").strip()
    if not raw:
        return DEFAULT_LEADERBOARD_SIZE
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgument("limit must be an integer") from None


async def club_leaderboard(request: web.Request) -> web.Response:
    club_id = request.match_info.get("club_id", "").strip()
    category_id = request.match_info.get("category_id", "").strip()
    context = _context(request)
    return await _invoke(
        request,
        "clubLeaderboard",
        lambda: club_access_service.club_leaderboard(
            _caller(request),
            club_id,
            category_id,
            limit=_limit_param(request),
            context=context,
        ),
    )


def _refresh(request: web.Request) -> dict[str, Any]:
    token = request.get("session_token")
    if not token:
        raise Unauthenticated()
    context = _context(request)
    caller = refresh_session(
        token,
        provider=context.provider,
        collection=context.sessions,
        ttl_seconds=context.settings.session_ttl_seconds,
    )
    if caller is None:
        raise Unauthenticated("Session expired.")
    return {
        "uid": caller.uid,
        "email": caller.email,
        "emailVerified": caller.email_verified,
        "claims": caller.claims,
        "expiresIn": context.settings.session_ttl_seconds,
    }


async def session_refresh(request: web.Request) -> web.Response:
    return await _invoke(request, "refreshSession", lambda: _refresh(request))


def add_routes(app: web.Application) -> None:
    app.router.add_post("/api/assignAdmin", assign_admin)
    app.router.add_post("/api/removeAdmin", remove_admin)
    app.router.add_post("/api/redeemInvite", redeem_invite)
    app.router.add_post("/api/acceptPendingByEmail", accept_pending_by_email)
    app.router.add_post("/api/createInvite", create_invite)
    app.router.add_post("/api/records", submit_record)
    app.router.add_post("/api/goals/{goal_id}/check", check_goal)
    app.router.add_get("/api/clubs/{club_id}/leaderboard/{category_id}", club_leaderboard)
    app.router.add_post("/api/session/refresh", session_refresh)
