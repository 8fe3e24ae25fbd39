from __future__ import annotations

import json
from typing import Any

from aiohttp import web

from utils.errors import (
    ERROR_DEADLINE_EXCEEDED,
    ERROR_FAILED_PRECONDITION,
    ERROR_INVALID_ARGUMENT,
    ERROR_NOT_FOUND,
    ERROR_PERMISSION_DENIED,
    ERROR_UNAUTHENTICATED,
    ERROR_UNKNOWN,
    ClubAccessError,
)

STATUS_BY_CODE: dict[str, int] = {
    ERROR_UNAUTHENTICATED: 401,
    ERROR_PERMISSION_DENIED: 403,
    ERROR_INVALID_ARGUMENT: 400,
    ERROR_NOT_FOUND: 404,
    ERROR_FAILED_PRECONDITION: 409,
    ERROR_DEADLINE_EXCEEDED: 410,
    ERROR_UNKNOWN: 500,
}

_EXCEPTION_BY_STATUS: dict[int, type[web.HTTPException]] = {
    400: web.HTTPBadRequest,
    401: web.HTTPUnauthorized,
    403: web.HTTPForbidden,
    404: web.HTTPNotFound,
    408: web.HTTPRequestTimeout,
    409: web.HTTPConflict,
    410: web.HTTPGone,
    500: web.HTTPInternalServerError,
}


def _payload(code: str, message: str, details: dict[str, Any] | None = None) -> str:
    body: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        body["error"]["details"] = details
    return json.dumps(body)


def api_error(
    *,
    status: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> web.HTTPException:
    exc_cls = _EXCEPTION_BY_STATUS.get(status, web.HTTPBadRequest)
    return exc_cls(text=_payload(code, message, details), content_type="application/json")


def api_error_from(error: ClubAccessError, *, error_id: str | None = None) -> web.HTTPException:
    details = {"error_id": error_id} if error_id else None
    return api_error(
        status=STATUS_BY_CODE.get(error.code, 500),
        code=error.code,
        message=error.message,
        details=details,
    )
