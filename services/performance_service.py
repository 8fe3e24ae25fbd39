from __future__ import annotations

import logging
import secrets
from typing import Any

from pymongo.collection import Collection

from database import ATHLETE_RECORDS_COLLECTION, USERS_COLLECTION, get_collection
from utils.errors import InvalidArgument, NotFound
from utils.time_utils import today_iso, utc_now
from utils.validation import parse_performance_value

DEFAULT_LEADERBOARD_SIZE = 10
UNKNOWN_ATHLETE = "Unknown Athlete"


def _records(collection: Collection | None) -> Collection:
    return collection if collection is not None else get_collection(name=ATHLETE_RECORDS_COLLECTION)


def _active_query(**fields: Any) -> dict[str, Any]:
    return {**fields, "is_active": True}


def create_record(
    athlete_id: str,
    club_id: str,
    *,
    category_id: str,
    value: Any,
    unit: str | None = None,
    date: str | None = None,
    notes: str = "",
    collection: Collection | None = None,
) -> dict[str, Any]:
    if not athlete_id or not club_id or not category_id:
        raise InvalidArgument("athleteId, clubId and categoryId are required")
    try:
        parsed = parse_performance_value(value, unit)
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from None
    if parsed is None:
        raise InvalidArgument("A record value is required")

    now = utc_now()
    doc: dict[str, Any] = {
        "_id": secrets.token_urlsafe(15),
        "athlete_id": athlete_id,
        "club_id": club_id,
        "category_id": category_id,
        "value": parsed,
        "notes": notes or "",
        "date": date or today_iso(now),
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }
    _records(collection).insert_one(doc)
    logging.info(
        "event=record_created athlete=%s club=%s category=%s value=%s",
        athlete_id,
        club_id,
        category_id,
        parsed,
    )
    return doc


def get_athlete_records(
    athlete_id: str, club_id: str, *, collection: Collection | None = None
) -> list[dict[str, Any]]:
    return list(
        _records(collection).find(
            _active_query(athlete_id=athlete_id, club_id=club_id), sort=[("date", -1)]
        )
    )


def get_best_record(
    athlete_id: str,
    club_id: str,
    category_id: str,
    *,
    collection: Collection | None = None,
) -> dict[str, Any] | None:
    """
    Highest-valued active record for the athlete in a category.
    Ties are broken by whichever document the store returns first.
    """
    return _records(collection).find_one(
        _active_query(athlete_id=athlete_id, club_id=club_id, category_id=category_id),
        sort=[("value", -1)],
    )


def get_category_records(
    club_id: str, category_id: str, *, collection: Collection | None = None
) -> list[dict[str, Any]]:
    return list(
        _records(collection).find(
            _active_query(club_id=club_id, category_id=category_id), sort=[("date", -1)]
        )
    )


def update_record(
    record_id: str,
    *,
    value: Any = None,
    unit: str | None = None,
    date: str | None = None,
    notes: str | None = None,
    collection: Collection | None = None,
) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    if value is not None:
        try:
            updates["value"] = parse_performance_value(value, unit)
        except ValueError as exc:
            raise InvalidArgument(str(exc)) from None
    if date is not None:
        updates["date"] = date
    if notes is not None:
        updates["notes"] = notes
    updates["updated_at"] = utc_now()

    result = _records(collection).update_one(
        _active_query(_id=record_id), {"$set": updates}
    )
    if result.matched_count == 0:
        raise NotFound("Record not found")
    return updates


def delete_record(record_id: str, *, collection: Collection | None = None) -> bool:
    result = _records(collection).update_one(
        _active_query(_id=record_id),
        {"$set": {"is_active": False, "updated_at": utc_now()}},
    )
    return result.modified_count > 0


def delete_records_by_category(
    category_id: str, club_id: str, *, collection: Collection | None = None
) -> int:
    result = _records(collection).update_many(
        _active_query(category_id=category_id, club_id=club_id),
        {"$set": {"is_active": False, "updated_at": utc_now()}},
    )
    return int(result.modified_count)


def _athlete_name(profile: dict[str, Any] | None) -> str:
    if not profile:
        return UNKNOWN_ATHLETE
    first = str(profile.get("first_name") or "").strip()
    last = str(profile.get("last_name") or "").strip()
    if first and last:
        return f"{first} {last}"
    return str(profile.get("email") or UNKNOWN_ATHLETE)


def get_category_leaderboard(
    club_id: str,
    category_id: str,
    *,
    limit: int = DEFAULT_LEADERBOARD_SIZE,
    collection: Collection | None = None,
    users: Collection | None = None,
) -> list[dict[str, Any]]:
    records = list(
        _records(collection).find(
            _active_query(club_id=club_id, category_id=category_id),
            sort=[("value", -1)],
            limit=max(1, limit),
        )
    )
    users = users if users is not None else get_collection(name=USERS_COLLECTION)
    athlete_ids = sorted({str(r.get("athlete_id")) for r in records})
    profiles: dict[str, dict[str, Any]] = {}
    if athlete_ids:
        profiles = {str(doc["_id"]): doc for doc in users.find({"_id": {"$in": athlete_ids}})}

    return [
        {**record, "athlete_name": _athlete_name(profiles.get(str(record.get("athlete_id"))))}
        for record in records
    ]
