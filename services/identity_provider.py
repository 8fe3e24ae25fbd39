"""
Identity provider boundary.

Identities (uid, email, custom claims) are owned by the provider; this system only
reads them and writes the claims map. Services receive an `IdentityProvider` explicitly
so tests can swap in a mongomock-backed instance.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import Any, Protocol

from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from utils.time_utils import utc_now
from utils.validation import normalize_email

USER_NOT_FOUND_CODE = "auth/user-not-found"
EMAIL_EXISTS_CODE = "auth/email-already-exists"


class IdentityProviderError(Exception):
    code = "auth/internal-error"


class UserNotFoundError(IdentityProviderError, LookupError):
    code = USER_NOT_FOUND_CODE


class EmailAlreadyExistsError(IdentityProviderError):
    code = EMAIL_EXISTS_CODE


@dataclass(frozen=True)
class IdentityRecord:
    uid: str
    email: str | None
    email_verified: bool = False
    disabled: bool = False
    custom_claims: dict[str, Any] = field(default_factory=dict)


class IdentityProvider(Protocol):
    def get_user(self, uid: str) -> IdentityRecord: ...

    def get_user_by_email(self, email: str) -> IdentityRecord: ...

    def create_user(
        self, *, email: str, email_verified: bool = False, disabled: bool = False
    ) -> IdentityRecord: ...

    def set_custom_claims(self, uid: str, claims: dict[str, Any]) -> None: ...


def _record_from_doc(doc: dict[str, Any]) -> IdentityRecord:
    claims = doc.get("custom_claims")
    return IdentityRecord(
        uid=str(doc["_id"]),
        email=doc.get("email") or None,
        email_verified=bool(doc.get("email_verified", False)),
        disabled=bool(doc.get("disabled", False)),
        custom_claims=dict(claims) if isinstance(claims, dict) else {},
    )


class MongoIdentityProvider:
    """Identity store kept in the `auth_users` collection."""

    def __init__(self, collection: Collection) -> None:
        self.collection = collection

    def get_user(self, uid: str) -> IdentityRecord:
        doc = self.collection.find_one({"_id": uid})
        if doc is None:
            raise UserNotFoundError(f"No user record for uid {uid!r}.")
        return _record_from_doc(doc)

    def get_user_by_email(self, email: str) -> IdentityRecord:
        norm = normalize_email(email)
        doc = self.collection.find_one({"email": norm}) if norm else None
        if doc is None:
            raise UserNotFoundError("No user record for the provided email.")
        return _record_from_doc(doc)

    def create_user(
        self, *, email: str, email_verified: bool = False, disabled: bool = False
    ) -> IdentityRecord:
        now = utc_now()
        doc: dict[str, Any] = {
            "_id": secrets.token_urlsafe(21),
            "email": normalize_email(email) or None,
            "email_verified": email_verified,
            "disabled": disabled,
            "custom_claims": {},
            "created_at": now,
            "updated_at": now,
        }
        try:
            self.collection.insert_one(doc)
        except DuplicateKeyError:
            raise EmailAlreadyExistsError("A user with this email already exists.") from None
        return _record_from_doc(doc)

    def set_custom_claims(self, uid: str, claims: dict[str, Any]) -> None:
        result = self.collection.update_one(
            {"_id": uid},
            {"$set": {"custom_claims": dict(claims), "updated_at": utc_now()}},
        )
        if result.matched_count == 0:
            raise UserNotFoundError(f"No user record for uid {uid!r}.")
