from __future__ import annotations

import logging
import uuid
from typing import Any

ERROR_UNAUTHENTICATED = "unauthenticated"
ERROR_PERMISSION_DENIED = "permission-denied"
ERROR_INVALID_ARGUMENT = "invalid-argument"
ERROR_NOT_FOUND = "not-found"
ERROR_FAILED_PRECONDITION = "failed-precondition"
ERROR_DEADLINE_EXCEEDED = "deadline-exceeded"
ERROR_UNKNOWN = "unknown"


class ClubAccessError(Exception):
    """
    Base error for every failure surfaced to a caller.
    `code` is the wire-level failure kind; `cause` keeps the original downstream exception.
    """

    code = ERROR_UNKNOWN
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None, *, cause: BaseException | None = None) -> None:
        self.message = message or self.default_message
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class Unauthenticated(ClubAccessError):
    code = ERROR_UNAUTHENTICATED
    default_message = "Must be authenticated."


class PermissionDenied(ClubAccessError):
    code = ERROR_PERMISSION_DENIED
    default_message = "Permission denied."


class InvalidArgument(ClubAccessError):
    code = ERROR_INVALID_ARGUMENT
    default_message = "Invalid argument."


class NotFound(ClubAccessError):
    code = ERROR_NOT_FOUND
    default_message = "Not found."


class FailedPrecondition(ClubAccessError):
    code = ERROR_FAILED_PRECONDITION
    default_message = "Failed precondition."


class DeadlineExceeded(ClubAccessError):
    code = ERROR_DEADLINE_EXCEEDED
    default_message = "Deadline exceeded."


class Unknown(ClubAccessError):
    code = ERROR_UNKNOWN


def wrap_unknown(exc: BaseException) -> Unknown:
    if isinstance(exc, Unknown):
        return exc
    return Unknown(str(exc) or exc.__class__.__name__, cause=exc)


def log_call_error(
    error: BaseException,
    *,
    operation: str,
    caller_uid: str | None,
    error_id: str | None = None,
) -> None:
    prefix = f"[error_id={error_id}] " if error_id else ""
    logging.error(
        "%sCall error operation=%s caller=%s",
        prefix,
        operation,
        caller_uid,
        exc_info=error,
    )


def new_error_id() -> str:
    return uuid.uuid4().hex[:8]
