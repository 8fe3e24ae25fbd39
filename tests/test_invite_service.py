from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import mongomock
import pytest
from pymongo.errors import PyMongoError

from services import invite_service
from services.identity_provider import IdentityRecord, MongoIdentityProvider
from services.invite_service import (
    INVITE_STATUS_PENDING,
    INVITE_STATUS_REVOKED,
    INVITE_STATUS_USED,
    OUTCOME_FAILED,
    OUTCOME_PROCESSED,
    create_invite,
    get_invite,
    is_invite_expired,
    list_invites,
    redeem_all_pending_for_email,
    redeem_invite,
    revoke_invite,
)
from utils.errors import (
    DeadlineExceeded,
    FailedPrecondition,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    Unknown,
)


class _Env:
    def __init__(self) -> None:
        db = mongomock.MongoClient(tz_aware=True)["testdb"]
        self.provider = MongoIdentityProvider(db["auth_users"])
        self.invites = db["club_invites"]
        self.members = db["club_members"]
        self.users = db["users"]

    def seed_invite(
        self,
        invite_id: str = "I1",
        *,
        club_id: str = "C1",
        email: str = "alice@example.com",
        role: str = "athlete",
        status: str = INVITE_STATUS_PENDING,
        expires_in: timedelta | None = timedelta(days=1),
    ) -> None:
        now = datetime.now(timezone.utc)
        self.invites.insert_one(
            {
                "_id": invite_id,
                "club_id": club_id,
                "email": email,
                "role": role,
                "status": status,
                "created_at": now,
                "expires_at": now + expires_in if expires_in is not None else None,
            }
        )

    def redeem(self, invite_id: str, user: IdentityRecord, *, club_id: str = "C1", **kwargs: Any):
        return redeem_invite(
            club_id,
            invite_id,
            user,
            provider=self.provider,
            invites=self.invites,
            members=self.members,
            users=self.users,
            **kwargs,
        )

    def redeem_all(self, user: IdentityRecord, **kwargs: Any):
        return redeem_all_pending_for_email(
            user,
            provider=self.provider,
            invites=self.invites,
            members=self.members,
            users=self.users,
            **kwargs,
        )


class _StaleInvites:
    """Collection proxy whose find_one returns the invite as it looked before another redemption."""

    def __init__(self, real, stale: dict[str, Any]) -> None:
        self._real = real
        self._stale = stale

    def find_one(self, *_args, **_kwargs):
        return dict(self._stale)

    def __getattr__(self, name):
        return getattr(self._real, name)


class _FailingMembers:
    def __init__(self, real, *, fail_club: str | None = None) -> None:
        self._real = real
        self._fail_club = fail_club

    def update_one(self, filter, *args, **kwargs):
        if self._fail_club is None or filter.get("club_id") == self._fail_club:
            raise PyMongoError("write failed")
        return self._real.update_one(filter, *args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._real, name)


def test_redeem_athlete_invite_creates_membership() -> None:
    env = _Env()
    env.seed_invite()
    alice = env.provider.create_user(email="alice@example.com", email_verified=True)

    result = env.redeem("I1", alice)

    assert result.role == "athlete"
    assert result.claims_granted is False
    invite = env.invites.find_one({"_id": "I1"})
    assert invite["status"] == INVITE_STATUS_USED
    assert invite["used_by"] == alice.uid
    assert invite["used_at"] is not None
    member = env.members.find_one({"club_id": "C1", "user_id": alice.uid})
    assert member["role"] == "athlete"
    assert member["status"] == "active"
    assert env.users.find_one({"_id": alice.uid})["team_id"] == "C1"
    assert env.provider.get_user(alice.uid).custom_claims == {}


def test_redeem_admin_invite_sets_claims() -> None:
    env = _Env()
    env.seed_invite(role="admin")
    alice = env.provider.create_user(email="alice@example.com", email_verified=True)

    result = env.redeem("I1", alice)

    assert result.claims_granted is True
    assert env.provider.get_user(alice.uid).custom_claims == {"role": "admin", "clubId": "C1"}
    assert env.members.find_one({"user_id": alice.uid})["role"] == "admin"


def test_redeem_matches_email_case_insensitively() -> None:
    env = _Env()
    env.seed_invite(email="alice@example.com")
    user = IdentityRecord(uid="alice", email="ALICE@Example.COM", email_verified=True)

    env.redeem("I1", user)

    assert env.invites.find_one({"_id": "I1"})["status"] == INVITE_STATUS_USED


def test_expired_invite_raises_deadline_and_stays_pending() -> None:
    env = _Env()
    env.seed_invite(expires_in=timedelta(hours=-1))
    alice = env.provider.create_user(email="alice@example.com")

    with pytest.raises(DeadlineExceeded):
        env.redeem("I1", alice)

    assert env.invites.find_one({"_id": "I1"})["status"] == INVITE_STATUS_PENDING
    assert env.members.count_documents({}) == 0


def test_invite_expiring_exactly_now_is_expired() -> None:
    env = _Env()
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    env.invites.insert_one(
        {
            "_id": "I1",
            "club_id": "C1",
            "email": "alice@example.com",
            "role": "athlete",
            "status": INVITE_STATUS_PENDING,
            "expires_at": now,
        }
    )
    alice = env.provider.create_user(email="alice@example.com")

    with pytest.raises(DeadlineExceeded):
        env.redeem("I1", alice, now=now)
    assert env.redeem_all(alice, now=now).matched == 0


def test_missing_invite_raises_not_found() -> None:
    env = _Env()
    alice = env.provider.create_user(email="alice@example.com")
    with pytest.raises(NotFound):
        env.redeem("nope", alice)


def test_invite_is_scoped_to_its_club() -> None:
    env = _Env()
    env.seed_invite(club_id="C1")
    alice = env.provider.create_user(email="alice@example.com")
    with pytest.raises(NotFound):
        env.redeem("I1", alice, club_id="C2")


@pytest.mark.parametrize("status", [INVITE_STATUS_USED, INVITE_STATUS_REVOKED])
def test_non_pending_invite_raises_failed_precondition(status: str) -> None:
    env = _Env()
    env.seed_invite(status=status)
    alice = env.provider.create_user(email="alice@example.com")

    with pytest.raises(FailedPrecondition):
        env.redeem("I1", alice)
    assert env.invites.find_one({"_id": "I1"})["status"] == status


def test_email_mismatch_raises_permission_denied() -> None:
    env = _Env()
    env.seed_invite(email="alice@example.com")
    mallory = env.provider.create_user(email="mallory@example.com")

    with pytest.raises(PermissionDenied):
        env.redeem("I1", mallory)
    assert env.invites.find_one({"_id": "I1"})["status"] == INVITE_STATUS_PENDING


def test_identity_without_email_raises_failed_precondition() -> None:
    env = _Env()
    env.seed_invite()
    with pytest.raises(FailedPrecondition):
        env.redeem("I1", IdentityRecord(uid="phone-only", email=None))


def test_expiry_is_checked_before_email() -> None:
    env = _Env()
    env.seed_invite(expires_in=timedelta(minutes=-5))
    mallory = IdentityRecord(uid="m", email="mallory@example.com")
    with pytest.raises(DeadlineExceeded):
        env.redeem("I1", mallory)


def test_invite_without_expiry_never_expires() -> None:
    env = _Env()
    env.seed_invite(expires_in=None)
    alice = env.provider.create_user(email="alice@example.com")

    env.redeem("I1", alice)

    assert env.invites.find_one({"_id": "I1"})["status"] == INVITE_STATUS_USED


def test_concurrent_redemption_loser_gets_failed_precondition() -> None:
    env = _Env()
    env.seed_invite()
    stale = env.invites.find_one({"_id": "I1"})
    first = IdentityRecord(uid="first", email="alice@example.com")
    second = IdentityRecord(uid="second", email="alice@example.com")
    env.redeem("I1", first)

    with pytest.raises(FailedPrecondition):
        redeem_invite(
            "C1",
            "I1",
            second,
            provider=env.provider,
            invites=_StaleInvites(env.invites, stale),
            members=env.members,
            users=env.users,
        )

    assert env.invites.find_one({"_id": "I1"})["used_by"] == "first"
    assert env.members.find_one({"user_id": "second"}) is None


def test_membership_failure_releases_invite() -> None:
    env = _Env()
    env.seed_invite()
    alice = env.provider.create_user(email="alice@example.com")

    with pytest.raises(Unknown) as excinfo:
        redeem_invite(
            "C1",
            "I1",
            alice,
            provider=env.provider,
            invites=env.invites,
            members=_FailingMembers(env.members),
            users=env.users,
        )

    assert isinstance(excinfo.value.cause, PyMongoError)
    invite = env.invites.find_one({"_id": "I1"})
    assert invite["status"] == INVITE_STATUS_PENDING
    assert "used_by" not in invite
    assert "used_at" not in invite

    env.redeem("I1", alice)
    assert env.invites.find_one({"_id": "I1"})["status"] == INVITE_STATUS_USED


def test_claims_failure_surfaces_unknown_and_is_reported(monkeypatch) -> None:
    env = _Env()
    env.seed_invite(role="admin")
    alice = env.provider.create_user(email="alice@example.com")
    reported = []

    def broken_claims(uid, claims):
        raise ConnectionError("provider unavailable")

    monkeypatch.setattr(env.provider, "set_custom_claims", broken_claims)
    monkeypatch.setattr(
        invite_service, "capture_exception", lambda exc, tags=None: reported.append(tags)
    )

    with pytest.raises(Unknown):
        env.redeem("I1", alice, claims_attempts=2)

    assert reported and reported[0]["operation"] == "redeem_invite"
    assert env.members.find_one({"user_id": alice.uid})["role"] == "admin"
    assert env.invites.find_one({"_id": "I1"})["status"] == INVITE_STATUS_USED


def test_create_invite_normalizes_and_sets_expiry() -> None:
    env = _Env()
    before = datetime.now(timezone.utc)

    doc = create_invite("C1", "  Alice@Example.com ", role="Admin", ttl_hours=2, collection=env.invites)

    stored = get_invite("C1", doc["_id"], collection=env.invites)
    assert stored["email"] == "alice@example.com"
    assert stored["role"] == "admin"
    assert stored["status"] == INVITE_STATUS_PENDING
    assert len(doc["_id"]) == invite_service.INVITE_TOKEN_LENGTH
    assert stored["expires_at"] >= before + timedelta(hours=2) - timedelta(seconds=1)
    assert not is_invite_expired(stored)


def test_create_invite_rejects_bad_input() -> None:
    env = _Env()
    with pytest.raises(InvalidArgument):
        create_invite("C1", "not-an-email", collection=env.invites)
    with pytest.raises(InvalidArgument):
        create_invite("C1", "alice@example.com", role="super", collection=env.invites)
    with pytest.raises(InvalidArgument):
        create_invite("", "alice@example.com", collection=env.invites)


def test_revoke_and_list_invites() -> None:
    env = _Env()
    env.seed_invite("I1")
    env.seed_invite("I2", email="bob@example.com")

    assert revoke_invite("C1", "I1", collection=env.invites) is True
    assert revoke_invite("C1", "I1", collection=env.invites) is False
    assert revoke_invite("C1", "missing", collection=env.invites) is False

    pending = list_invites("C1", status=INVITE_STATUS_PENDING, collection=env.invites)
    assert [doc["_id"] for doc in pending] == ["I2"]
    assert len(list_invites("C1", collection=env.invites)) == 2


def test_is_invite_expired_handles_missing_and_string_values() -> None:
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert is_invite_expired({}, now=now) is False
    assert is_invite_expired({"expires_at": "2025-12-31T23:00:00Z"}, now=now) is True
    assert is_invite_expired({"expires_at": "2026-01-02T00:00:00Z"}, now=now) is False


def test_accept_all_pending_across_clubs_is_idempotent() -> None:
    env = _Env()
    env.seed_invite("I1", club_id="C1")
    env.seed_invite("I2", club_id="C2", role="admin")
    env.seed_invite("I3", club_id="C3", expires_in=timedelta(days=-1))
    env.seed_invite("I4", club_id="C1", email="bob@example.com")
    alice = env.provider.create_user(email="alice@example.com", email_verified=True)

    first = env.redeem_all(alice)

    assert first.matched == 2
    assert first.processed == 2
    assert first.failed == 0
    assert {item.club_id for item in first.items} == {"C1", "C2"}
    assert all(item.outcome == OUTCOME_PROCESSED for item in first.items)
    assert env.provider.get_user(alice.uid).custom_claims == {"role": "admin", "clubId": "C2"}
    assert env.invites.find_one({"_id": "I3"})["status"] == INVITE_STATUS_PENDING
    assert env.invites.find_one({"_id": "I4"})["status"] == INVITE_STATUS_PENDING

    second = env.redeem_all(alice)
    assert second.matched == 0
    assert second.processed == 0


def test_accept_all_reports_partial_failures_per_item() -> None:
    env = _Env()
    env.seed_invite("I1", club_id="C1")
    env.seed_invite("I2", club_id="C2")
    alice = env.provider.create_user(email="alice@example.com")

    result = redeem_all_pending_for_email(
        alice,
        provider=env.provider,
        invites=env.invites,
        members=_FailingMembers(env.members, fail_club="C2"),
        users=env.users,
    )

    assert result.matched == 2
    assert result.processed == 1
    by_club = {item.club_id: item for item in result.items}
    assert by_club["C1"].outcome == OUTCOME_PROCESSED
    assert by_club["C2"].outcome == OUTCOME_FAILED
    assert by_club["C2"].error_code == "unknown"
    assert by_club["C2"].to_dict()["error"]["code"] == "unknown"
    assert env.invites.find_one({"_id": "I2"})["status"] == INVITE_STATUS_PENDING


def test_accept_all_requires_email() -> None:
    env = _Env()
    with pytest.raises(FailedPrecondition):
        env.redeem_all(IdentityRecord(uid="phone-only", email=""))


class _FlakyInvites:
    """Collection proxy whose find_one_and_update fails on the given call numbers."""

    def __init__(self, real, *, fail_on: set[int]) -> None:
        self._real = real
        self._fail_on = fail_on
        self.calls = 0

    def find_one_and_update(self, *args, **kwargs):
        self.calls += 1
        if self.calls in self._fail_on:
            raise PyMongoError("transient")
        return self._real.find_one_and_update(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._real, name)


def test_accept_all_continues_past_store_errors() -> None:
    env = _Env()
    env.seed_invite("I1", club_id="C1")
    env.seed_invite("I2", club_id="C2")
    env.seed_invite("I3", club_id="C3")
    alice = env.provider.create_user(email="alice@example.com")

    result = redeem_all_pending_for_email(
        alice,
        provider=env.provider,
        invites=_FlakyInvites(env.invites, fail_on={2}),
        members=env.members,
        users=env.users,
    )

    assert result.matched == 3
    assert result.processed == 2
    failed = [item for item in result.items if item.outcome == OUTCOME_FAILED]
    assert len(failed) == 1
    assert failed[0].error_code == "unknown"
    assert env.invites.count_documents({"status": INVITE_STATUS_USED}) == 2
    assert env.invites.count_documents({"status": INVITE_STATUS_PENDING}) == 1


def test_single_redeem_wraps_store_errors() -> None:
    env = _Env()
    env.seed_invite()
    alice = env.provider.create_user(email="alice@example.com")

    with pytest.raises(Unknown) as excinfo:
        redeem_invite(
            "C1",
            "I1",
            alice,
            provider=env.provider,
            invites=_FlakyInvites(env.invites, fail_on={1}),
            members=env.members,
            users=env.users,
        )
    assert isinstance(excinfo.value.cause, PyMongoError)


def test_accept_all_matches_string_expiries() -> None:
    env = _Env()
    now = datetime.now(timezone.utc)
    for invite_id, club_id, expires_at in (
        ("I1", "C1", (now + timedelta(days=1)).isoformat()),
        ("I2", "C2", (now - timedelta(days=1)).isoformat()),
    ):
        env.invites.insert_one(
            {
                "_id": invite_id,
                "club_id": club_id,
                "email": "alice@example.com",
                "role": "athlete",
                "status": INVITE_STATUS_PENDING,
                "created_at": now,
                "expires_at": expires_at,
            }
        )
    alice = env.provider.create_user(email="alice@example.com")

    first = env.redeem_all(alice, now=now)

    assert first.matched == 1
    assert first.processed == 1
    assert first.items[0].club_id == "C1"
    assert env.invites.find_one({"_id": "I2"})["status"] == INVITE_STATUS_PENDING
    assert env.redeem_all(alice, now=now).matched == 0
