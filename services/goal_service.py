"""
Athlete goals and goal-achievement reconciliation.

A goal is achieved once the athlete's best active record in the goal's category
reaches `target_value`. Reconciliation only ever moves `in_progress` goals to
`completed`; paused goals wait until they are resumed.
"""

from __future__ import annotations

import logging
import secrets
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from pymongo.collection import Collection

from database import ATHLETE_GOALS_COLLECTION, get_collection
from services import performance_service
from utils.errors import InvalidArgument, NotFound
from utils.metrics import record_event
from utils.time_utils import today_iso, utc_now
from utils.validation import parse_performance_value

GOAL_STATUS_IN_PROGRESS = "in_progress"
GOAL_STATUS_COMPLETED = "completed"
GOAL_STATUS_PAUSED = "paused"
GOAL_STATUSES = frozenset({GOAL_STATUS_IN_PROGRESS, GOAL_STATUS_COMPLETED, GOAL_STATUS_PAUSED})

UPDATABLE_GOAL_FIELDS = ("category_id", "target_value", "target_date", "notes", "status")


@dataclass(frozen=True)
class GoalCheckResult:
    goal_id: str
    achieved: bool
    newly_achieved: bool = False
    achieved_value: float | None = None
    achieved_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"goalId": self.goal_id, "achieved": self.achieved}
        if self.achieved:
            data["achievedValue"] = self.achieved_value
            data["achievedDate"] = self.achieved_date
            data["newlyAchieved"] = self.newly_achieved
        return data


def _goals(collection: Collection | None) -> Collection:
    return collection if collection is not None else get_collection(name=ATHLETE_GOALS_COLLECTION)


def _parse_target(value: Any, unit: str | None) -> float:
    try:
        parsed = parse_performance_value(value, unit)
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from None
    if parsed is None:
        raise InvalidArgument("A target value is required")
    return parsed


def create_goal(
    athlete_id: str,
    club_id: str,
    *,
    category_id: str,
    target_value: Any,
    unit: str | None = None,
    target_date: str | None = None,
    notes: str = "",
    collection: Collection | None = None,
) -> dict[str, Any]:
    if not athlete_id or not club_id or not category_id:
        raise InvalidArgument("athleteId, clubId and categoryId are required")

    now = utc_now()
    doc: dict[str, Any] = {
        "_id": secrets.token_urlsafe(15),
        "athlete_id": athlete_id,
        "club_id": club_id,
        "category_id": category_id,
        "target_value": _parse_target(target_value, unit),
        "target_date": target_date,
        "notes": notes or "",
        "status": GOAL_STATUS_IN_PROGRESS,
        "achieved_value": None,
        "achieved_date": None,
        "is_active": True,
        "created_at": now,
        "updated_at": now,
    }
    _goals(collection).insert_one(doc)
    logging.info(
        "event=goal_created goal=%s athlete=%s club=%s category=%s target=%s",
        doc["_id"],
        athlete_id,
        club_id,
        category_id,
        doc["target_value"],
    )
    return doc


def get_goal(goal_id: str, *, collection: Collection | None = None) -> dict[str, Any] | None:
    return _goals(collection).find_one({"_id": goal_id, "is_active": True})


def get_athlete_goals(
    athlete_id: str, club_id: str, *, collection: Collection | None = None
) -> list[dict[str, Any]]:
    return list(
        _goals(collection).find(
            {"athlete_id": athlete_id, "club_id": club_id, "is_active": True},
            sort=[("created_at", -1)],
        )
    )


def update_goal(
    goal_id: str,
    patch: dict[str, Any],
    *,
    unit: str | None = None,
    collection: Collection | None = None,
) -> dict[str, Any]:
    updates = {key: patch[key] for key in UPDATABLE_GOAL_FIELDS if key in patch}
    if "status" in updates and updates["status"] not in GOAL_STATUSES:
        raise InvalidArgument(f"Unsupported goal status: {updates['status']!r}")
    if "target_value" in updates:
        updates["target_value"] = _parse_target(updates["target_value"], unit)
    updates["updated_at"] = utc_now()

    result = _goals(collection).update_one({"_id": goal_id, "is_active": True}, {"$set": updates})
    if result.matched_count == 0:
        raise NotFound("Goal not found")
    return updates


def complete_goal(
    goal_id: str,
    *,
    achieved_value: float | None = None,
    achieved_date: str | None = None,
    collection: Collection | None = None,
) -> dict[str, Any]:
    updates: dict[str, Any] = {
        "status": GOAL_STATUS_COMPLETED,
        "achieved_date": achieved_date or today_iso(),
        "updated_at": utc_now(),
    }
    if achieved_value is not None:
        updates["achieved_value"] = achieved_value
    result = _goals(collection).update_one({"_id": goal_id, "is_active": True}, {"$set": updates})
    if result.matched_count == 0:
        raise NotFound("Goal not found")
    return updates


def delete_goal(goal_id: str, *, collection: Collection | None = None) -> bool:
    result = _goals(collection).update_one(
        {"_id": goal_id, "is_active": True},
        {"$set": {"is_active": False, "updated_at": utc_now()}},
    )
    return result.modified_count > 0


def delete_goals_by_category(
    category_id: str, club_id: str, *, collection: Collection | None = None
) -> int:
    result = _goals(collection).update_many(
        {"category_id": category_id, "club_id": club_id, "is_active": True},
        {"$set": {"is_active": False, "updated_at": utc_now()}},
    )
    return int(result.modified_count)


def _stored_achievement(goal: dict[str, Any]) -> GoalCheckResult:
    value = goal.get("achieved_value")
    return GoalCheckResult(
        goal_id=str(goal["_id"]),
        achieved=True,
        achieved_value=float(value) if value is not None else None,
        achieved_date=goal.get("achieved_date"),
    )


def check_goal_achievement(
    goal_id: str,
    *,
    goals: Collection | None = None,
    records: Collection | None = None,
) -> GoalCheckResult:
    """
    Compare a goal against the athlete's best active record and complete it when met.

    The `in_progress -> completed` write is conditional on the goal still being in
    progress, so concurrent checks complete a goal once and the rest report the stored
    achievement.
    """
    goals = _goals(goals)
    goal = goals.find_one({"_id": goal_id})
    if goal is None or not goal.get("is_active", True):
        raise NotFound(f"Goal not found: {goal_id}")

    status = goal.get("status")
    if status == GOAL_STATUS_COMPLETED:
        return _stored_achievement(goal)
    if status != GOAL_STATUS_IN_PROGRESS:
        return GoalCheckResult(goal_id=goal_id, achieved=False)

    best = performance_service.get_best_record(
        str(goal.get("athlete_id")),
        str(goal.get("club_id")),
        str(goal.get("category_id")),
        collection=records,
    )
    target = goal.get("target_value")
    if best is None or target is None or float(best["value"]) < float(target):
        return GoalCheckResult(goal_id=goal_id, achieved=False)

    achieved_value = float(best["value"])
    achieved_date = best.get("date") or today_iso()
    result = goals.update_one(
        {"_id": goal_id, "status": GOAL_STATUS_IN_PROGRESS, "is_active": True},
        {
            "$set": {
                "status": GOAL_STATUS_COMPLETED,
                "achieved_value": achieved_value,
                "achieved_date": achieved_date,
                "updated_at": utc_now(),
            }
        },
    )
    if result.modified_count == 0:
        current = goals.find_one({"_id": goal_id})
        if current and current.get("status") == GOAL_STATUS_COMPLETED:
            return _stored_achievement(current)
        return GoalCheckResult(goal_id=goal_id, achieved=False)

    record_event("goal_achieved")
    logging.info(
        "event=goal_achieved goal=%s athlete=%s value=%s target=%s",
        goal_id,
        goal.get("athlete_id"),
        achieved_value,
        target,
    )
    return GoalCheckResult(
        goal_id=goal_id,
        achieved=True,
        newly_achieved=True,
        achieved_value=achieved_value,
        achieved_date=achieved_date,
    )


def auto_check_goals(
    athlete_id: str,
    club_id: str,
    category_id: str,
    *,
    goals: Collection | None = None,
    records: Collection | None = None,
) -> list[GoalCheckResult]:
    goals = _goals(goals)
    candidates = list(
        goals.find(
            {
                "athlete_id": athlete_id,
                "club_id": club_id,
                "category_id": category_id,
                "status": GOAL_STATUS_IN_PROGRESS,
                "is_active": True,
            },
            {"_id": 1},
        )
    )
    achieved: list[GoalCheckResult] = []
    for candidate in candidates:
        try:
            result = check_goal_achievement(str(candidate["_id"]), goals=goals, records=records)
        except NotFound:
            # soft-deleted between the query and the check
            continue
        if result.newly_achieved:
            achieved.append(result)

    logging.info(
        "event=goals_auto_checked athlete=%s club=%s category=%s checked=%s achieved=%s",
        athlete_id,
        club_id,
        category_id,
        len(candidates),
        len(achieved),
    )
    return achieved


def record_and_reconcile(
    athlete_id: str,
    club_id: str,
    *,
    category_id: str,
    value: Any,
    unit: str | None = None,
    date: str | None = None,
    notes: str = "",
    records: Collection | None = None,
    goals: Collection | None = None,
) -> tuple[dict[str, Any], list[GoalCheckResult]]:
    record = performance_service.create_record(
        athlete_id,
        club_id,
        category_id=category_id,
        value=value,
        unit=unit,
        date=date,
        notes=notes,
        collection=records,
    )
    achieved = auto_check_goals(athlete_id, club_id, category_id, goals=goals, records=records)
    return record, achieved


def delete_category_performance_data(
    category_id: str,
    club_id: str,
    *,
    records: Collection | None = None,
    goals: Collection | None = None,
) -> dict[str, int]:
    deleted_records = performance_service.delete_records_by_category(
        category_id, club_id, collection=records
    )
    deleted_goals = delete_goals_by_category(category_id, club_id, collection=goals)
    logging.info(
        "event=category_data_deleted club=%s category=%s records=%s goals=%s",
        club_id,
        category_id,
        deleted_records,
        deleted_goals,
    )
    return {"records": deleted_records, "goals": deleted_goals}


def get_athlete_performance_summary(
    athlete_id: str,
    club_id: str,
    *,
    records: Collection | None = None,
    goals: Collection | None = None,
) -> dict[str, Any]:
    athlete_records = performance_service.get_athlete_records(
        athlete_id, club_id, collection=records
    )
    athlete_goals = get_athlete_goals(athlete_id, club_id, collection=goals)

    records_by_category: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for record in athlete_records:
        records_by_category[str(record.get("category_id"))].append(record)
    goals_by_category: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for goal in athlete_goals:
        goals_by_category[str(goal.get("category_id"))].append(goal)

    total_goals = len(athlete_goals)
    completed = sum(1 for g in athlete_goals if g.get("status") == GOAL_STATUS_COMPLETED)
    in_progress = sum(1 for g in athlete_goals if g.get("status") == GOAL_STATUS_IN_PROGRESS)
    return {
        "records": athlete_records,
        "goals": athlete_goals,
        "records_by_category": dict(records_by_category),
        "goals_by_category": dict(goals_by_category),
        "statistics": {
            "total_records": len(athlete_records),
            "total_goals": total_goals,
            "completed_goals": completed,
            "in_progress_goals": in_progress,
            "goal_completion_rate": (completed / total_goals) * 100 if total_goals else 0.0,
        },
    }
