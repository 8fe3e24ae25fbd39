"""
Bearer sessions.

A session is the credential presented by a caller. It carries a snapshot of the
identity's claims taken when the session was issued or last refreshed, so claim
changes become visible to a caller only after `refresh_session`.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from pymongo import ReturnDocument
from pymongo.collection import Collection

from services.identity_provider import IdentityProvider, UserNotFoundError
from utils.errors import PermissionDenied
from utils.time_utils import parse_timestamp, utc_now


@dataclass(frozen=True)
class CallerIdentity:
    uid: str
    email: str | None = None
    email_verified: bool = False
    claims: dict[str, Any] = field(default_factory=dict)


def _caller_from_doc(doc: dict[str, Any]) -> CallerIdentity:
    claims = doc.get("claims")
    return CallerIdentity(
        uid=str(doc["uid"]),
        email=doc.get("email") or None,
        email_verified=bool(doc.get("email_verified", False)),
        claims=dict(claims) if isinstance(claims, dict) else {},
    )


def issue_session(
    uid: str,
    *,
    provider: IdentityProvider,
    collection: Collection,
    ttl_seconds: int,
) -> str:
    user = provider.get_user(uid)
    if user.disabled:
        raise PermissionDenied("User account is disabled.")
    now = utc_now()
    token = secrets.token_urlsafe(32)
    collection.insert_one(
        {
            "_id": token,
            "uid": user.uid,
            "email": user.email,
            "email_verified": user.email_verified,
            "claims": dict(user.custom_claims),
            "created_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
        }
    )
    return token


def resolve_session(token: str | None, *, collection: Collection) -> CallerIdentity | None:
    if not token:
        return None
    doc = collection.find_one({"_id": token})
    if not doc:
        return None
    expires_at = parse_timestamp(doc.get("expires_at"))
    if expires_at is None or expires_at <= utc_now():
        collection.delete_one({"_id": token})
        return None
    return _caller_from_doc(doc)


def refresh_session(
    token: str,
    *,
    provider: IdentityProvider,
    collection: Collection,
    ttl_seconds: int,
) -> CallerIdentity | None:
    """
    Re-read email and claims from the identity provider and extend the session.
    Returns None when the session is unknown/expired or the identity no longer exists.
    """
    current = resolve_session(token, collection=collection)
    if current is None:
        return None
    try:
        user = provider.get_user(current.uid)
    except UserNotFoundError:
        collection.delete_one({"_id": token})
        return None
    now = utc_now()
    doc = collection.find_one_and_update(
        {"_id": token},
        {
            "$set": {
                "email": user.email,
                "email_verified": user.email_verified,
                "claims": dict(user.custom_claims),
                "refreshed_at": now,
                "expires_at": now + timedelta(seconds=ttl_seconds),
            }
        },
        return_document=ReturnDocument.AFTER,
    )
    if not isinstance(doc, dict):
        return None
    return _caller_from_doc(doc)


def revoke_session(token: str, *, collection: Collection) -> bool:
    result = collection.delete_one({"_id": token})
    return result.deleted_count > 0


def revoke_user_sessions(uid: str, *, collection: Collection) -> int:
    result = collection.delete_many({"uid": uid})
    return int(result.deleted_count)
