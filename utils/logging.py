from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from services.session_service import CallerIdentity


def _call_context(operation: str, caller: CallerIdentity | None) -> dict[str, Any]:
    return {
        "operation": operation,
        "caller_uid": caller.uid if caller is not None else None,
        "caller_role": caller.claims.get("role") if caller is not None else None,
        "caller_club_id": caller.claims.get("clubId") if caller is not None else None,
    }


def log_call_event(operation: str, caller: CallerIdentity | None, *, status: str) -> None:
    """
    Emit a structured log line for a callable operation.
    """
    ctx = _call_context(operation, caller)
    logging.info(
        "call event status=%s operation=%s caller=%s role=%s club=%s",
        status,
        ctx["operation"],
        ctx["caller_uid"],
        ctx["caller_role"],
        ctx["caller_club_id"],
        extra=ctx,
    )
