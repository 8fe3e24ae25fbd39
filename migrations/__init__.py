from __future__ import annotations

import logging
from typing import Any, Callable

from pymongo.database import Database

from database import CLUB_INVITES_COLLECTION, USERS_COLLECTION, ensure_indexes, get_database
from utils.time_utils import utc_now
from utils.validation import normalize_email

MigrationFunc = Callable[[dict[str, Any]], None]

SCHEMA_VERSION_ID = "schema_version"


def _meta_collection(db: Database):
    return db["_meta"]


def _get_current_version(db: Database) -> int:
    meta = _meta_collection(db).find_one({"_id": SCHEMA_VERSION_ID})
    return int(meta["version"]) if meta and "version" in meta else 0


def _set_version(db: Database, version: int, description: str | None = None) -> None:
    _meta_collection(db).update_one(
        {"_id": SCHEMA_VERSION_ID},
        {"$set": {"version": version, "description": description, "updated_at": utc_now()}},
        upsert=True,
    )


def _migration_1(context: dict[str, Any]) -> None:
    """
    Create membership, invite, identity, session, record and goal indexes.
    """
    ensure_indexes(context["db"])


def _migration_2(context: dict[str, Any]) -> None:
    """
    Lower-case stored e-mail addresses so equality lookups match regardless of input case.
    """
    db: Database = context["db"]
    for name in (CLUB_INVITES_COLLECTION, USERS_COLLECTION):
        collection = db[name]
        for doc in collection.find({"email": {"$type": "string"}}, {"email": 1}):
            normalized = normalize_email(doc["email"])
            if normalized != doc["email"]:
                collection.update_one({"_id": doc["_id"]}, {"$set": {"email": normalized}})


MIGRATIONS: list[tuple[int, str, MigrationFunc]] = [
    (1, "Ensure access indexes", _migration_1),
    (2, "Normalize stored e-mail case", _migration_2),
]


def apply_migrations(
    *,
    settings=None,
    db: Database | None = None,
    logger: logging.Logger | None = None,
) -> int:
    """
    Apply pending migrations in order. Returns the latest version after migration.
    """
    log = logger or logging.getLogger(__name__)
    if db is None:
        db = get_database(settings)
    current = _get_current_version(db)
    log.info("Current schema version: %s", current)
    for version, description, func in MIGRATIONS:
        if version <= current:
            continue
        log.info("Applying migration %s: %s", version, description)
        func({"db": db, "settings": settings})
        _set_version(db, version, description)
        log.info("Migration %s applied.", version)
    return _get_current_version(db)
