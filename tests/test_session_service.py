from __future__ import annotations

from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from services.identity_provider import MongoIdentityProvider
from services.session_service import (
    issue_session,
    refresh_session,
    resolve_session,
    revoke_session,
    revoke_user_sessions,
)
from utils.errors import PermissionDenied


def _setup():
    db = mongomock.MongoClient(tz_aware=True)["testdb"]
    return MongoIdentityProvider(db["auth_users"]), db["auth_sessions"]


def test_issue_and_resolve_session() -> None:
    provider, sessions = _setup()
    user = provider.create_user(email="alice@example.com", email_verified=True)
    provider.set_custom_claims(user.uid, {"role": "admin", "clubId": "C1"})

    token = issue_session(user.uid, provider=provider, collection=sessions, ttl_seconds=60)
    caller = resolve_session(token, collection=sessions)

    assert caller is not None
    assert caller.uid == user.uid
    assert caller.email == "alice@example.com"
    assert caller.email_verified is True
    assert caller.claims == {"role": "admin", "clubId": "C1"}
    assert resolve_session(None, collection=sessions) is None
    assert resolve_session("unknown", collection=sessions) is None


def test_claim_changes_visible_only_after_refresh() -> None:
    provider, sessions = _setup()
    user = provider.create_user(email="alice@example.com")
    token = issue_session(user.uid, provider=provider, collection=sessions, ttl_seconds=60)

    provider.set_custom_claims(user.uid, {"role": "admin", "clubId": "C1"})
    assert resolve_session(token, collection=sessions).claims == {}

    refreshed = refresh_session(token, provider=provider, collection=sessions, ttl_seconds=60)
    assert refreshed.claims == {"role": "admin", "clubId": "C1"}
    assert resolve_session(token, collection=sessions).claims == {"role": "admin", "clubId": "C1"}


def test_expired_session_is_dropped() -> None:
    provider, sessions = _setup()
    user = provider.create_user(email="alice@example.com")
    token = issue_session(user.uid, provider=provider, collection=sessions, ttl_seconds=60)
    sessions.update_one(
        {"_id": token},
        {"$set": {"expires_at": datetime.now(timezone.utc) - timedelta(seconds=5)}},
    )

    assert resolve_session(token, collection=sessions) is None
    assert sessions.find_one({"_id": token}) is None
    assert refresh_session(token, provider=provider, collection=sessions, ttl_seconds=60) is None


def test_refresh_drops_session_of_deleted_identity() -> None:
    provider, sessions = _setup()
    user = provider.create_user(email="alice@example.com")
    token = issue_session(user.uid, provider=provider, collection=sessions, ttl_seconds=60)
    provider.collection.delete_one({"_id": user.uid})

    assert refresh_session(token, provider=provider, collection=sessions, ttl_seconds=60) is None
    assert sessions.count_documents({}) == 0


def test_disabled_user_cannot_get_a_session() -> None:
    provider, sessions = _setup()
    user = provider.create_user(email="alice@example.com", disabled=True)

    with pytest.raises(PermissionDenied):
        issue_session(user.uid, provider=provider, collection=sessions, ttl_seconds=60)


def test_revoke_sessions() -> None:
    provider, sessions = _setup()
    user = provider.create_user(email="alice@example.com")
    first = issue_session(user.uid, provider=provider, collection=sessions, ttl_seconds=60)
    issue_session(user.uid, provider=provider, collection=sessions, ttl_seconds=60)
    issue_session(user.uid, provider=provider, collection=sessions, ttl_seconds=60)

    assert revoke_session(first, collection=sessions) is True
    assert revoke_session(first, collection=sessions) is False
    assert revoke_user_sessions(user.uid, collection=sessions) == 2
