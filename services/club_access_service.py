"""
Callable entry points.

Each operation takes the verified caller (or None when the request carried no valid
credential) and the raw request payload, and returns a JSON-ready dict. Failures are
raised as `utils.errors.ClubAccessError` subclasses and rendered by the HTTP layer.

Checks run in a fixed order: authentication, then privilege, then arguments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from pymongo.collection import Collection
from pymongo.database import Database

from config import Settings
from database import (
    ATHLETE_GOALS_COLLECTION,
    ATHLETE_RECORDS_COLLECTION,
    AUTH_SESSIONS_COLLECTION,
    AUTH_USERS_COLLECTION,
    CLUB_INVITES_COLLECTION,
    CLUB_MEMBERS_COLLECTION,
    USERS_COLLECTION,
    get_database,
)
from services import goal_service, invite_service
from services.authorization_service import can_manage_club, is_super_admin, require_super_admin
from services.claims_service import clear_role_claims, grant_club_admin
from services.error_reporting_service import capture_exception
from services.identity_provider import (
    IdentityProvider,
    IdentityRecord,
    MongoIdentityProvider,
    UserNotFoundError,
)
from services.membership_service import get_membership, remove_membership, upsert_membership
from services.performance_service import DEFAULT_LEADERBOARD_SIZE, get_category_leaderboard
from services.session_service import CallerIdentity
from utils.errors import (
    InvalidArgument,
    NotFound,
    PermissionDenied,
    Unauthenticated,
    wrap_unknown,
)
from utils.flags import FLAG_LEADERBOARDS, feature_enabled
from utils.logging import log_call_event
from utils.metrics import record_event
from utils.redaction import redact_email
from utils.validation import (
    ROLE_ADMIN,
    is_valid_email,
    missing_fields,
    normalize_email,
    normalize_role,
)


@dataclass(frozen=True)
class ClubAccessContext:
    provider: IdentityProvider
    users: Collection
    members: Collection
    invites: Collection
    records: Collection
    goals: Collection
    sessions: Collection
    settings: Settings

    @classmethod
    def from_database(cls, db: Database, *, settings: Settings) -> ClubAccessContext:
        return cls(
            provider=MongoIdentityProvider(db[AUTH_USERS_COLLECTION]),
            users=db[USERS_COLLECTION],
            members=db[CLUB_MEMBERS_COLLECTION],
            invites=db[CLUB_INVITES_COLLECTION],
            records=db[ATHLETE_RECORDS_COLLECTION],
            goals=db[ATHLETE_GOALS_COLLECTION],
            sessions=db[AUTH_SESSIONS_COLLECTION],
            settings=settings,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> ClubAccessContext:
        return cls.from_database(get_database(settings), settings=settings)


def _require_caller(caller: CallerIdentity | None) -> CallerIdentity:
    if caller is None or not caller.uid:
        raise Unauthenticated("Must be authenticated.")
    return caller


def _require_fields(payload: Mapping[str, Any] | None, *names: str) -> dict[str, str]:
    missing = missing_fields(payload, *names)
    if missing:
        raise InvalidArgument(f"{' and '.join(names)} are required")
    data = payload or {}
    for name in names:
        if not isinstance(data[name], str):
            raise InvalidArgument(f"{name} must be a string")
    return {name: data[name].strip() for name in names}


def _fresh_identity(caller: CallerIdentity, provider: IdentityProvider) -> IdentityRecord:
    try:
        return provider.get_user(caller.uid)
    except UserNotFoundError:
        raise Unauthenticated("Caller identity no longer exists.") from None
    except Exception as exc:
        raise wrap_unknown(exc) from exc


def _find_or_provision(email: str, provider: IdentityProvider) -> IdentityRecord:
    try:
        return provider.get_user_by_email(email)
    except UserNotFoundError:
        pass
    except Exception as exc:
        raise wrap_unknown(exc) from exc

    try:
        user = provider.create_user(email=email, email_verified=False, disabled=False)
    except Exception as exc:
        raise wrap_unknown(exc) from exc
    logging.info("event=identity_provisioned uid=%s email=%s", user.uid, redact_email(email))
    record_event("identity_provisioned")
    return user


def assign_admin(
    caller: CallerIdentity | None,
    payload: Mapping[str, Any] | None,
    *,
    context: ClubAccessContext,
) -> dict[str, Any]:
    caller = _require_caller(caller)
    require_super_admin(
        caller,
        provider=context.provider,
        users=context.users,
        message="Only super admins can assign admins",
    )
    fields = _require_fields(payload, "clubId", "email")
    club_id = fields["clubId"]
    email = normalize_email(fields["email"])
    if not is_valid_email(email):
        raise InvalidArgument("email is not a valid address")

    user = _find_or_provision(email, context.provider)

    try:
        upsert_membership(
            club_id,
            user.uid,
            ROLE_ADMIN,
            email=email,
            members=context.members,
            users=context.users,
        )
    except Exception as exc:
        raise wrap_unknown(exc) from exc

    try:
        grant_club_admin(
            user.uid,
            club_id,
            provider=context.provider,
            attempts=context.settings.claims_write_attempts,
        )
    except Exception as exc:
        logging.error(
            "event=assign_admin_claims_failed club=%s uid=%s", club_id, user.uid, exc_info=exc
        )
        capture_exception(exc, tags={"operation": "assign_admin", "club_id": club_id})
        raise wrap_unknown(exc) from exc

    log_call_event("assign_admin", caller, status="ok")
    logging.info(
        "event=admin_assigned club=%s uid=%s email=%s by=%s",
        club_id,
        user.uid,
        redact_email(email),
        caller.uid,
    )
    return {"uid": user.uid}


def remove_admin(
    caller: CallerIdentity | None,
    payload: Mapping[str, Any] | None,
    *,
    context: ClubAccessContext,
) -> dict[str, Any]:
    caller = _require_caller(caller)
    require_super_admin(
        caller,
        provider=context.provider,
        users=context.users,
        message="Only super admins can remove admins",
    )
    fields = _require_fields(payload, "clubId", "uid")
    club_id, uid = fields["clubId"], fields["uid"]

    try:
        clear_role_claims(uid, provider=context.provider)
    except UserNotFoundError:
        raise NotFound("User not found") from None
    except Exception as exc:
        raise wrap_unknown(exc) from exc

    try:
        remove_membership(club_id, uid, members=context.members, users=context.users)
    except Exception as exc:
        raise wrap_unknown(exc) from exc

    log_call_event("remove_admin", caller, status="ok")
    logging.info("event=admin_removed club=%s uid=%s by=%s", club_id, uid, caller.uid)
    return {"success": True}


def redeem_invite(
    caller: CallerIdentity | None,
    payload: Mapping[str, Any] | None,
    *,
    context: ClubAccessContext,
) -> dict[str, Any]:
    caller = _require_caller(caller)
    fields = _require_fields(payload, "clubId", "inviteId")
    user = _fresh_identity(caller, context.provider)

    invite_service.redeem_invite(
        fields["clubId"],
        fields["inviteId"],
        user,
        provider=context.provider,
        invites=context.invites,
        members=context.members,
        users=context.users,
        claims_attempts=context.settings.claims_write_attempts,
    )
    log_call_event("redeem_invite", caller, status="ok")
    return {"success": True}


def accept_pending_by_email(
    caller: CallerIdentity | None,
    payload: Mapping[str, Any] | None = None,
    *,
    context: ClubAccessContext,
) -> dict[str, Any]:
    caller = _require_caller(caller)
    user = _fresh_identity(caller, context.provider)

    result = invite_service.redeem_all_pending_for_email(
        user,
        provider=context.provider,
        invites=context.invites,
        members=context.members,
        users=context.users,
        claims_attempts=context.settings.claims_write_attempts,
    )
    log_call_event("accept_pending_by_email", caller, status="ok")
    return {
        "matched": result.matched,
        "processed": result.processed,
        "results": [item.to_dict() for item in result.items],
    }


def create_invite(
    caller: CallerIdentity | None,
    payload: Mapping[str, Any] | None,
    *,
    context: ClubAccessContext,
) -> dict[str, Any]:
    """
    Invite an e-mail address to a club. Club admins may invite athletes; admin
    invites need a super admin.
    """
    caller = _require_caller(caller)
    data = payload or {}
    club_id = str(data.get("clubId") or "").strip()
    if not can_manage_club(caller, club_id, provider=context.provider, users=context.users):
        raise PermissionDenied("Only club admins can invite members")
    fields = _require_fields(data, "clubId", "email")
    role = normalize_role(data.get("role"))
    if role is None:
        raise InvalidArgument(f"Unsupported invite role: {data.get('role')!r}")
    if role == ROLE_ADMIN and not is_super_admin(
        caller.uid, provider=context.provider, users=context.users
    ):
        raise PermissionDenied("Only super admins can invite admins")

    invite = invite_service.create_invite(
        fields["clubId"],
        fields["email"],
        role=role,
        ttl_hours=context.settings.invite_ttl_hours,
        invited_by=caller.uid,
        collection=context.invites,
    )
    log_call_event("create_invite", caller, status="ok")
    return {
        "inviteId": invite["_id"],
        "clubId": invite["club_id"],
        "email": invite["email"],
        "role": invite["role"],
        "expiresAt": invite["expires_at"].isoformat(),
    }


def _require_athlete_or_manager(
    caller: CallerIdentity, athlete_id: str, club_id: str, context: ClubAccessContext
) -> None:
    if caller.uid == athlete_id:
        return
    if can_manage_club(caller, club_id, provider=context.provider, users=context.users):
        return
    raise PermissionDenied("Only the athlete or a club admin can do this")


def submit_record(
    caller: CallerIdentity | None,
    payload: Mapping[str, Any] | None,
    *,
    context: ClubAccessContext,
) -> dict[str, Any]:
    """
    Store a performance record and complete any goals it satisfies.
    """
    caller = _require_caller(caller)
    data = dict(payload or {})
    athlete_id = str(data.get("athleteId") or caller.uid).strip()
    fields = _require_fields({**data, "athleteId": athlete_id}, "athleteId", "clubId", "categoryId")
    _require_athlete_or_manager(caller, athlete_id, fields["clubId"], context)
    if missing_fields(data, "value"):
        raise InvalidArgument("value is required")

    record, achieved = goal_service.record_and_reconcile(
        athlete_id,
        fields["clubId"],
        category_id=fields["categoryId"],
        value=data.get("value"),
        unit=data.get("unit"),
        date=data.get("date"),
        notes=str(data.get("notes") or ""),
        records=context.records,
        goals=context.goals,
    )
    log_call_event("submit_record", caller, status="ok")
    return {
        "recordId": record["_id"],
        "value": record["value"],
        "achievedGoals": [result.to_dict() for result in achieved],
    }


def check_goal(
    caller: CallerIdentity | None,
    goal_id: str,
    *,
    context: ClubAccessContext,
) -> dict[str, Any]:
    caller = _require_caller(caller)
    if not goal_id:
        raise InvalidArgument("goalId is required")
    goal = goal_service.get_goal(goal_id, collection=context.goals)
    if goal is None:
        raise NotFound(f"Goal not found: {goal_id}")
    _require_athlete_or_manager(
        caller, str(goal.get("athlete_id")), str(goal.get("club_id")), context
    )

    result = goal_service.check_goal_achievement(
        goal_id, goals=context.goals, records=context.records
    )
    log_call_event("check_goal", caller, status="ok")
    return result.to_dict()


def club_leaderboard(
    caller: CallerIdentity | None,
    club_id: str,
    category_id: str,
    *,
    limit: int = DEFAULT_LEADERBOARD_SIZE,
    context: ClubAccessContext,
) -> dict[str, Any]:
    caller = _require_caller(caller)
    if not feature_enabled(FLAG_LEADERBOARDS, context.settings):
        raise NotFound("Leaderboards are not enabled.")
    is_member = get_membership(club_id, caller.uid, members=context.members) is not None
    if not is_member and not can_manage_club(
        caller, club_id, provider=context.provider, users=context.users
    ):
        raise PermissionDenied("Only club members can view the leaderboard")
    if not category_id:
        raise InvalidArgument("categoryId is required")
    if limit <= 0:
        raise InvalidArgument("limit must be > 0")

    rows = get_category_leaderboard(
        club_id, category_id, limit=limit, collection=context.records, users=context.users
    )
    return {
        "clubId": club_id,
        "categoryId": category_id,
        "entries": [
            {
                "athleteId": row.get("athlete_id"),
                "athleteName": row["athlete_name"],
                "value": row.get("value"),
                "date": row.get("date"),
            }
            for row in rows
        ],
    }


OPERATIONS = {
    "assignAdmin": assign_admin,
    "removeAdmin": remove_admin,
    "redeemInvite": redeem_invite,
    "acceptPendingByEmail": accept_pending_by_email,
    "createInvite": create_invite,
}
