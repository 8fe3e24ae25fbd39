from __future__ import annotations

import mongomock
import pytest

from services.membership_service import (
    change_member_role,
    get_membership,
    get_user_memberships,
    list_admins,
    list_members,
    remove_membership,
    upsert_membership,
)
from utils.errors import NotFound


def _collections():
    db = mongomock.MongoClient(tz_aware=True)["testdb"]
    return db["club_members"], db["users"]


def test_upsert_membership_writes_member_and_profile() -> None:
    members, users = _collections()

    doc = upsert_membership("C1", "alice", "athlete", email="Alice@Example.com", members=members, users=users)

    assert doc["club_id"] == "C1"
    assert doc["user_id"] == "alice"
    assert doc["role"] == "athlete"
    assert doc["status"] == "active"
    assert doc["joined_at"] is not None

    profile = users.find_one({"_id": "alice"})
    assert profile["role"] == "athlete"
    assert profile["team_id"] == "C1"
    assert profile["email"] == "alice@example.com"


def test_upsert_membership_is_idempotent_and_keeps_join_date() -> None:
    members, users = _collections()
    first = upsert_membership("C1", "alice", "athlete", members=members, users=users)
    users.update_one({"_id": "alice"}, {"$set": {"email": "kept@example.com"}})

    second = upsert_membership(
        "C1", "alice", "admin", email="other@example.com", members=members, users=users
    )

    assert members.count_documents({"club_id": "C1", "user_id": "alice"}) == 1
    assert second["role"] == "admin"
    assert second["joined_at"] == first["joined_at"]
    assert users.find_one({"_id": "alice"})["email"] == "kept@example.com"


def test_remove_membership_resets_profile_and_deletes_member() -> None:
    members, users = _collections()
    upsert_membership("C1", "bob", "admin", members=members, users=users)

    assert remove_membership("C1", "bob", members=members, users=users) is True

    assert get_membership("C1", "bob", members=members) is None
    profile = users.find_one({"_id": "bob"})
    assert profile["role"] == "athlete"
    assert profile["team_id"] == ""
    assert remove_membership("C1", "bob", members=members, users=users) is False


def test_listing_helpers() -> None:
    members, users = _collections()
    upsert_membership("C1", "alice", "athlete", members=members, users=users)
    upsert_membership("C1", "bob", "admin", members=members, users=users)
    upsert_membership("C2", "bob", "athlete", members=members, users=users)

    assert {m["user_id"] for m in list_members("C1", members=members)} == {"alice", "bob"}
    assert [m["user_id"] for m in list_admins("C1", members=members)] == ["bob"]
    assert {m["club_id"] for m in get_user_memberships("bob", members=members)} == {"C1", "C2"}


def test_change_member_role_requires_existing_membership() -> None:
    members, users = _collections()
    with pytest.raises(NotFound):
        change_member_role("C1", "ghost", "admin", members=members, users=users)

    upsert_membership("C1", "alice", "athlete", members=members, users=users)
    change_member_role("C1", "alice", "admin", members=members, users=users)

    assert get_membership("C1", "alice", members=members)["role"] == "admin"
    assert users.find_one({"_id": "alice"})["role"] == "admin"
