"""
Club invites.

An invite is a single-use, time-bounded offer of a club role tied to an email address.
Stored states are `pending`, `used` and `revoked`; "expired" is derived from
`expires_at` at redemption time and never written back.

Redemption is a small saga over two independently writable stores:

1. conditional `pending -> used` transition (the loser of a concurrent redemption
   gets FailedPrecondition);
2. membership + profile upserts; on failure the invite is put back to `pending`;
3. admin claims, written last and retried.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pymongo import ReturnDocument
from pymongo.collection import Collection

from config.constants import DEFAULT_INVITE_TTL_HOURS
from database import (
    CLUB_INVITES_COLLECTION,
    CLUB_MEMBERS_COLLECTION,
    USERS_COLLECTION,
    get_collection,
)
from services.claims_service import grant_club_admin
from services.error_reporting_service import capture_exception
from services.identity_provider import IdentityProvider, IdentityRecord
from services.membership_service import upsert_membership
from utils.errors import (
    ClubAccessError,
    DeadlineExceeded,
    FailedPrecondition,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    wrap_unknown,
)
from utils.redaction import redact_email
from utils.time_utils import is_past, utc_now
from utils.validation import (
    ROLE_ADMIN,
    ROLE_ATHLETE,
    emails_match,
    is_valid_email,
    normalize_email,
    normalize_role,
)

INVITE_STATUS_PENDING = "pending"
INVITE_STATUS_USED = "used"
INVITE_STATUS_REVOKED = "revoked"
INVITE_STATUSES = frozenset({INVITE_STATUS_PENDING, INVITE_STATUS_USED, INVITE_STATUS_REVOKED})

INVITE_TOKEN_LENGTH = 40

OUTCOME_PROCESSED = "processed"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class RedemptionResult:
    club_id: str
    invite_id: str
    uid: str
    role: str
    claims_granted: bool = False


@dataclass(frozen=True)
class BulkRedemptionItem:
    club_id: str
    invite_id: str
    role: str
    outcome: str
    error_code: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "clubId": self.club_id,
            "inviteId": self.invite_id,
            "role": self.role,
            "outcome": self.outcome,
        }
        if self.error_code:
            item["error"] = {"code": self.error_code, "message": self.error_message}
        return item


@dataclass(frozen=True)
class BulkRedemptionResult:
    matched: int
    processed: int
    items: list[BulkRedemptionItem] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.matched - self.processed


def _invites(collection: Collection | None) -> Collection:
    return collection if collection is not None else get_collection(name=CLUB_INVITES_COLLECTION)


def _generate_token(length: int = INVITE_TOKEN_LENGTH) -> str:
    alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
    return "".join(secrets.choice(alphabet) for _ in range(length))


def is_invite_expired(invite: dict[str, Any], *, now: datetime | None = None) -> bool:
    return is_past(invite.get("expires_at"), now=now)


def create_invite(
    club_id: str,
    email: str,
    *,
    role: str = ROLE_ATHLETE,
    ttl_hours: int = DEFAULT_INVITE_TTL_HOURS,
    invited_by: str | None = None,
    collection: Collection | None = None,
) -> dict[str, Any]:
    collection = _invites(collection)
    norm_email = normalize_email(email)
    if not club_id or not is_valid_email(norm_email):
        raise InvalidArgument("clubId and a valid email are required")
    norm_role = normalize_role(role)
    if norm_role is None:
        raise InvalidArgument(f"Unsupported invite role: {role!r}")

    now = utc_now()
    doc: dict[str, Any] = {
        "_id": _generate_token(),
        "club_id": club_id,
        "email": norm_email,
        "role": norm_role,
        "status": INVITE_STATUS_PENDING,
        "created_at": now,
        "updated_at": now,
        "expires_at": now + timedelta(hours=ttl_hours),
        "used_at": None,
        "invited_by": invited_by,
    }
    collection.insert_one(doc)
    logging.info(
        "event=invite_created club=%s invite=%s email=%s role=%s",
        club_id,
        doc["_id"],
        redact_email(norm_email),
        norm_role,
    )
    return doc


def get_invite(
    club_id: str, invite_id: str, *, collection: Collection | None = None
) -> dict[str, Any] | None:
    return _invites(collection).find_one({"_id": invite_id, "club_id": club_id})


def list_invites(
    club_id: str,
    *,
    status: str | None = None,
    collection: Collection | None = None,
) -> list[dict[str, Any]]:
    query: dict[str, Any] = {"club_id": club_id}
    if status is not None:
        query["status"] = status
    return list(_invites(collection).find(query, sort=[("created_at", -1)]))


def revoke_invite(
    club_id: str, invite_id: str, *, collection: Collection | None = None
) -> bool:
    """
    Move a pending invite to `revoked`. Missing or already-settled invites are left alone.
    """
    result = _invites(collection).update_one(
        {"_id": invite_id, "club_id": club_id, "status": INVITE_STATUS_PENDING},
        {"$set": {"status": INVITE_STATUS_REVOKED, "updated_at": utc_now()}},
    )
    return result.modified_count > 0


def _claim_invite(
    invites: Collection, invite: dict[str, Any], *, uid: str, now: datetime
) -> None:
    claimed = invites.find_one_and_update(
        {"_id": invite["_id"], "club_id": invite["club_id"], "status": INVITE_STATUS_PENDING},
        {"$set": {"status": INVITE_STATUS_USED, "used_at": now, "used_by": uid, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
    )
    if claimed is None:
        raise FailedPrecondition("Invite already used or revoked")


def _release_invite(invites: Collection, invite: dict[str, Any], *, uid: str) -> None:
    invites.update_one(
        {
            "_id": invite["_id"],
            "club_id": invite["club_id"],
            "status": INVITE_STATUS_USED,
            "used_by": uid,
        },
        {
            "$set": {"status": INVITE_STATUS_PENDING, "updated_at": utc_now()},
            "$unset": {"used_at": "", "used_by": ""},
        },
    )


def _apply_invite(
    invite: dict[str, Any],
    user: IdentityRecord,
    *,
    provider: IdentityProvider,
    invites: Collection,
    members: Collection | None,
    users: Collection | None,
    claims_attempts: int,
    now: datetime,
) -> RedemptionResult:
    club_id = str(invite["club_id"])
    role = normalize_role(invite.get("role")) or ROLE_ATHLETE

    try:
        _claim_invite(invites, invite, uid=user.uid, now=now)
    except ClubAccessError:
        raise
    except Exception as exc:
        raise wrap_unknown(exc) from exc

    try:
        upsert_membership(club_id, user.uid, role, email=user.email, members=members, users=users)
    except Exception as exc:
        logging.error(
            "event=invite_membership_failed club=%s invite=%s uid=%s; releasing invite",
            club_id,
            invite["_id"],
            user.uid,
            exc_info=exc,
        )
        try:
            _release_invite(invites, invite, uid=user.uid)
        except Exception:
            logging.exception(
                "event=invite_release_failed club=%s invite=%s uid=%s",
                club_id,
                invite["_id"],
                user.uid,
            )
        raise wrap_unknown(exc) from exc

    claims_granted = False
    if role == ROLE_ADMIN:
        try:
            grant_club_admin(user.uid, club_id, provider=provider, attempts=claims_attempts)
        except Exception as exc:
            logging.error(
                "event=invite_claims_failed club=%s invite=%s uid=%s",
                club_id,
                invite["_id"],
                user.uid,
                exc_info=exc,
            )
            capture_exception(exc, tags={"operation": "redeem_invite", "club_id": club_id})
            raise wrap_unknown(exc) from exc
        claims_granted = True

    logging.info(
        "event=invite_redeemed club=%s invite=%s uid=%s role=%s",
        club_id,
        invite["_id"],
        user.uid,
        role,
    )
    return RedemptionResult(
        club_id=club_id,
        invite_id=str(invite["_id"]),
        uid=user.uid,
        role=role,
        claims_granted=claims_granted,
    )


def redeem_invite(
    club_id: str,
    invite_id: str,
    user: IdentityRecord,
    *,
    provider: IdentityProvider,
    invites: Collection | None = None,
    members: Collection | None = None,
    users: Collection | None = None,
    claims_attempts: int = 3,
    now: datetime | None = None,
) -> RedemptionResult:
    invites = _invites(invites)
    now = now or utc_now()

    invite = invites.find_one({"_id": invite_id, "club_id": club_id})
    if invite is None:
        raise NotFound("Invite not found")
    if invite.get("status") != INVITE_STATUS_PENDING:
        raise FailedPrecondition("Invite already used or revoked")
    if is_invite_expired(invite, now=now):
        raise DeadlineExceeded("Invite expired")
    if not normalize_email(user.email):
        raise FailedPrecondition("User has no email")
    if not emails_match(user.email, invite.get("email")):
        raise PermissionDenied("Invite email mismatch")

    return _apply_invite(
        invite,
        user,
        provider=provider,
        invites=invites,
        members=members if members is not None else get_collection(name=CLUB_MEMBERS_COLLECTION),
        users=users if users is not None else get_collection(name=USERS_COLLECTION),
        claims_attempts=claims_attempts,
        now=now,
    )


def find_pending_invites_for_email(
    email: str,
    *,
    collection: Collection | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """
    Cross-club lookup of every pending, unexpired invite addressed to `email`.
    `expires_at` may be a date or an ISO-8601 string, so expiry is filtered after the query.
    """
    norm = normalize_email(email)
    if not norm:
        return []
    now = now or utc_now()
    pending = _invites(collection).find(
        {"email": norm, "status": INVITE_STATUS_PENDING},
        sort=[("created_at", 1)],
    )
    return [invite for invite in pending if not is_invite_expired(invite, now=now)]


def redeem_all_pending_for_email(
    user: IdentityRecord,
    *,
    provider: IdentityProvider,
    invites: Collection | None = None,
    members: Collection | None = None,
    users: Collection | None = None,
    claims_attempts: int = 3,
    now: datetime | None = None,
) -> BulkRedemptionResult:
    """
    Redeem every pending invite matching the user's email, across all clubs.

    Matches are fetched once up front and processed one by one. A failing invite does
    not undo earlier ones; it is reported as a `failed` item and left out of
    `processed`.
    """
    email = normalize_email(user.email)
    if not email:
        raise FailedPrecondition("User has no email")

    invites = _invites(invites)
    members = members if members is not None else get_collection(name=CLUB_MEMBERS_COLLECTION)
    users = users if users is not None else get_collection(name=USERS_COLLECTION)
    now = now or utc_now()

    matched = find_pending_invites_for_email(email, collection=invites, now=now)
    items: list[BulkRedemptionItem] = []
    processed = 0
    for invite in matched:
        club_id = str(invite.get("club_id") or "")
        role = normalize_role(invite.get("role")) or ROLE_ATHLETE
        try:
            _apply_invite(
                invite,
                user,
                provider=provider,
                invites=invites,
                members=members,
                users=users,
                claims_attempts=claims_attempts,
                now=now,
            )
        except ClubAccessError as exc:
            logging.warning(
                "event=bulk_invite_failed club=%s invite=%s uid=%s code=%s",
                club_id,
                invite.get("_id"),
                user.uid,
                exc.code,
            )
            items.append(
                BulkRedemptionItem(
                    club_id=club_id,
                    invite_id=str(invite.get("_id")),
                    role=role,
                    outcome=OUTCOME_FAILED,
                    error_code=exc.code,
                    error_message=exc.message,
                )
            )
            continue
        processed += 1
        items.append(
            BulkRedemptionItem(
                club_id=club_id,
                invite_id=str(invite.get("_id")),
                role=role,
                outcome=OUTCOME_PROCESSED,
            )
        )

    logging.info(
        "event=pending_invites_accepted uid=%s email=%s matched=%s processed=%s",
        user.uid,
        redact_email(email),
        len(matched),
        processed,
    )
    return BulkRedemptionResult(matched=len(matched), processed=processed, items=items)
