from __future__ import annotations

import logging
import re

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from config import Settings, load_settings

INVALID_DB_NAME_PATTERN = re.compile(r'[\\/\.\s"$\x00]')
_CLIENT: MongoClient | None = None

DEFAULT_DB_NAME = "PeakLog"

AUTH_USERS_COLLECTION = "auth_users"
AUTH_SESSIONS_COLLECTION = "auth_sessions"
USERS_COLLECTION = "users"
CLUB_MEMBERS_COLLECTION = "club_members"
CLUB_INVITES_COLLECTION = "club_invites"
ATHLETE_RECORDS_COLLECTION = "athlete_records"
ATHLETE_GOALS_COLLECTION = "athlete_goals"

COLLECTION_NAMES: frozenset[str] = frozenset(
    {
        AUTH_USERS_COLLECTION,
        AUTH_SESSIONS_COLLECTION,
        USERS_COLLECTION,
        CLUB_MEMBERS_COLLECTION,
        CLUB_INVITES_COLLECTION,
        ATHLETE_RECORDS_COLLECTION,
        ATHLETE_GOALS_COLLECTION,
    }
)


def _require_value(value: str | None, name: str) -> str:
    if not value:
        raise RuntimeError(f"{name} is required for database access.")
    return value


def _normalize_db_name(name: str) -> str:
    normalized = INVALID_DB_NAME_PATTERN.sub("_", name.strip())
    if not normalized:
        raise RuntimeError("MONGODB_DB_NAME resolved to empty after sanitization.")
    if len(normalized.encode("utf-8")) > 63:
        raise RuntimeError("MONGODB_DB_NAME exceeds MongoDB length limits.")
    if normalized != name:
        logging.warning(
            "Normalized MONGODB_DB_NAME from %r to %r to satisfy MongoDB naming rules.",
            name,
            normalized,
        )
    return normalized


def _settings_or_default(settings: Settings | None) -> Settings:
    return settings or load_settings()


def get_client(settings: Settings | None = None) -> MongoClient:
    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT
    settings = _settings_or_default(settings)
    uri = _require_value(settings.mongodb_uri, "MONGODB_URI")
    _CLIENT = MongoClient(uri, serverSelectionTimeoutMS=5000, tz_aware=True)
    return _CLIENT


def get_database(settings: Settings | None = None) -> Database:
    settings = _settings_or_default(settings)
    db_name = _normalize_db_name(settings.mongodb_db_name or DEFAULT_DB_NAME)
    return get_client(settings)[db_name]


def get_collection(settings: Settings | None = None, *, name: str) -> Collection:
    if name not in COLLECTION_NAMES:
        raise RuntimeError(f"Unknown collection {name!r}; update COLLECTION_NAMES.")
    return get_database(settings)[name]


def close_client() -> None:
    """
    Close the cached Mongo client (used during graceful shutdown).
    """
    global _CLIENT
    if _CLIENT is not None:
        _CLIENT.close()
        _CLIENT = None


def ensure_indexes(db: Database) -> list[str]:
    indexes: list[str] = []

    members = db[CLUB_MEMBERS_COLLECTION]
    indexes.append(
        members.create_index(
            [("club_id", 1), ("user_id", 1)],
            unique=True,
            name="uniq_club_member",
        )
    )
    indexes.append(members.create_index([("user_id", 1)], name="idx_member_user"))

    invites = db[CLUB_INVITES_COLLECTION]
    # Cross-club lookup used when accepting every pending invite for an email.
    indexes.append(
        invites.create_index(
            [("email", 1), ("status", 1), ("expires_at", 1)],
            name="idx_invite_email_status",
        )
    )
    indexes.append(
        invites.create_index([("club_id", 1), ("status", 1)], name="idx_invite_club_status")
    )

    users = db[USERS_COLLECTION]
    indexes.append(users.create_index([("email", 1)], name="idx_user_email"))

    auth_users = db[AUTH_USERS_COLLECTION]
    indexes.append(
        auth_users.create_index(
            [("email", 1)],
            unique=True,
            name="uniq_auth_email",
            partialFilterExpression={"email": {"$type": "string"}},
        )
    )

    sessions = db[AUTH_SESSIONS_COLLECTION]
    indexes.append(sessions.create_index("expires_at", expireAfterSeconds=0, name="ttl_expires_at"))
    indexes.append(sessions.create_index([("uid", 1)], name="idx_session_uid"))

    records = db[ATHLETE_RECORDS_COLLECTION]
    indexes.append(
        records.create_index(
            [("athlete_id", 1), ("club_id", 1), ("category_id", 1), ("is_active", 1), ("value", -1)],
            name="idx_record_best",
        )
    )
    indexes.append(
        records.create_index(
            [("club_id", 1), ("category_id", 1), ("is_active", 1)],
            name="idx_record_category",
        )
    )

    goals = db[ATHLETE_GOALS_COLLECTION]
    indexes.append(
        goals.create_index(
            [("athlete_id", 1), ("club_id", 1), ("category_id", 1), ("status", 1), ("is_active", 1)],
            name="idx_goal_open",
        )
    )
    indexes.append(
        goals.create_index(
            [("club_id", 1), ("category_id", 1), ("is_active", 1)],
            name="idx_goal_category",
        )
    )

    return indexes
