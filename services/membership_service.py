from __future__ import annotations

from typing import Any

from pymongo.collection import Collection

from database import CLUB_MEMBERS_COLLECTION, USERS_COLLECTION, get_collection
from utils.errors import NotFound
from utils.time_utils import utc_now
from utils.validation import ROLE_ADMIN, ROLE_ATHLETE, normalize_email

MEMBER_STATUS_ACTIVE = "active"


def _members(collection: Collection | None) -> Collection:
    return collection if collection is not None else get_collection(name=CLUB_MEMBERS_COLLECTION)


def _users(collection: Collection | None) -> Collection:
    return collection if collection is not None else get_collection(name=USERS_COLLECTION)


def upsert_membership(
    club_id: str,
    uid: str,
    role: str,
    *,
    email: str | None = None,
    members: Collection | None = None,
    users: Collection | None = None,
) -> dict[str, Any]:
    """
    Write the club membership and mirror role/club onto the user profile.

    Two sequential upserts with no transaction around them; a failure in the second
    leaves the first in place.
    """
    members = _members(members)
    users = _users(users)
    now = utc_now()

    member_filter = {"club_id": club_id, "user_id": uid}
    members.update_one(
        member_filter,
        {
            "$set": {"role": role, "status": MEMBER_STATUS_ACTIVE, "updated_at": now},
            "$setOnInsert": {**member_filter, "joined_at": now},
        },
        upsert=True,
    )

    on_insert: dict[str, Any] = {"created_at": now}
    if email:
        on_insert["email"] = normalize_email(email)
    users.update_one(
        {"_id": uid},
        {
            "$set": {"role": role, "team_id": club_id, "updated_at": now},
            "$setOnInsert": on_insert,
        },
        upsert=True,
    )

    doc = members.find_one(member_filter)
    if doc is None:
        raise RuntimeError("Failed to upsert club membership.")
    return doc


def remove_membership(
    club_id: str,
    uid: str,
    *,
    members: Collection | None = None,
    users: Collection | None = None,
) -> bool:
    members = _members(members)
    users = _users(users)
    users.update_one(
        {"_id": uid},
        {"$set": {"role": ROLE_ATHLETE, "team_id": "", "updated_at": utc_now()}},
        upsert=True,
    )
    result = members.delete_one({"club_id": club_id, "user_id": uid})
    return result.deleted_count > 0


def get_membership(
    club_id: str, uid: str, *, members: Collection | None = None
) -> dict[str, Any] | None:
    return _members(members).find_one({"club_id": club_id, "user_id": uid})


def list_members(club_id: str, *, members: Collection | None = None) -> list[dict[str, Any]]:
    return list(_members(members).find({"club_id": club_id}, sort=[("joined_at", 1)]))


def list_admins(club_id: str, *, members: Collection | None = None) -> list[dict[str, Any]]:
    return list(
        _members(members).find({"club_id": club_id, "role": ROLE_ADMIN}, sort=[("joined_at", 1)])
    )


def get_user_memberships(uid: str, *, members: Collection | None = None) -> list[dict[str, Any]]:
    return [
        {
            "club_id": doc.get("club_id"),
            "role": doc.get("role"),
            "joined_at": doc.get("joined_at"),
            "status": doc.get("status") or MEMBER_STATUS_ACTIVE,
        }
        for doc in _members(members).find({"user_id": uid}, sort=[("joined_at", 1)])
    ]


def change_member_role(
    club_id: str,
    uid: str,
    new_role: str,
    *,
    members: Collection | None = None,
    users: Collection | None = None,
) -> None:
    members = _members(members)
    users = _users(users)
    now = utc_now()
    result = members.update_one(
        {"club_id": club_id, "user_id": uid},
        {"$set": {"role": new_role, "updated_at": now}},
    )
    if result.matched_count == 0:
        raise NotFound("Membership not found")
    users.update_one(
        {"_id": uid, "team_id": club_id},
        {"$set": {"role": new_role, "updated_at": now}},
    )
