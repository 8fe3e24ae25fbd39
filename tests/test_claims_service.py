from __future__ import annotations

import mongomock
import pytest

from services.claims_service import (
    clear_role_claims,
    get_claims,
    grant_club_admin,
    set_claims,
)
from services.identity_provider import MongoIdentityProvider, UserNotFoundError


def _provider() -> MongoIdentityProvider:
    return MongoIdentityProvider(mongomock.MongoClient(tz_aware=True)["testdb"]["auth_users"])


def test_set_claims_merges_over_existing_keys() -> None:
    provider = _provider()
    user = provider.create_user(email="coach@example.com", email_verified=True)
    provider.set_custom_claims(user.uid, {"super_admin": True})

    merged = set_claims(user.uid, {"role": "admin", "clubId": "C1"}, provider=provider)

    assert merged == {"super_admin": True, "role": "admin", "clubId": "C1"}
    assert get_claims(user.uid, provider=provider) == merged


def test_clear_role_claims_keeps_unrelated_keys() -> None:
    provider = _provider()
    user = provider.create_user(email="coach@example.com")
    provider.set_custom_claims(user.uid, {"role": "admin", "clubId": "C1", "super_admin": True})

    remaining = clear_role_claims(user.uid, provider=provider)

    assert remaining == {"super_admin": True}
    assert provider.get_user(user.uid).custom_claims == {"super_admin": True}


def test_grant_club_admin_retries_transient_failures(monkeypatch) -> None:
    provider = _provider()
    user = provider.create_user(email="coach@example.com")
    real_set = provider.set_custom_claims
    calls: list[dict] = []

    def flaky(uid, claims):
        calls.append(dict(claims))
        if len(calls) < 3:
            raise ConnectionError("provider unavailable")
        real_set(uid, claims)

    monkeypatch.setattr(provider, "set_custom_claims", flaky)

    claims = grant_club_admin(user.uid, "C1", provider=provider, attempts=3)

    assert claims == {"role": "admin", "clubId": "C1"}
    assert len(calls) == 3
    assert provider.get_user(user.uid).custom_claims == {"role": "admin", "clubId": "C1"}


def test_grant_club_admin_gives_up_after_attempts(monkeypatch) -> None:
    provider = _provider()
    user = provider.create_user(email="coach@example.com")
    calls = []

    def always_fail(uid, claims):
        calls.append(uid)
        raise ConnectionError("provider unavailable")

    monkeypatch.setattr(provider, "set_custom_claims", always_fail)

    with pytest.raises(ConnectionError):
        grant_club_admin(user.uid, "C1", provider=provider, attempts=2)
    assert len(calls) == 2


def test_grant_club_admin_does_not_retry_missing_user() -> None:
    provider = _provider()
    with pytest.raises(UserNotFoundError):
        grant_club_admin("missing", "C1", provider=provider, attempts=5)
