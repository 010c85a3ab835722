"""
Daily Service — wellness pills, check-ins, score and leaderboard.

Each user gets a fixed subset of the pill catalogue per calendar day. The
subset is a seeded shuffle, so repeated calls within the same day agree.
"""

import logging
import random
from datetime import date

from sqlalchemy.exc import IntegrityError

from oris.core.exceptions import ConflictError, ValidationError
from oris.models import db
from oris.models.daily import Checkin, Pill
from oris.models.user import User
from oris.services.user_service import get_user

logger = logging.getLogger(__name__)

DEFAULT_PILL_COUNT = 3
LEADERBOARD_SIZE = 10


def select_daily_pills(user_id, day: date, pills: list, k: int = DEFAULT_PILL_COUNT) -> list:
    """Deterministic ordered subset of ``pills`` for ``user_id`` on ``day``."""
    ordered = sorted(pills, key=lambda p: p.id)
    rng = random.Random(f"{user_id}{day.isoformat()}")
    rng.shuffle(ordered)
    return ordered[:k]


def get_daily_pills(user_id, day=None, k=DEFAULT_PILL_COUNT) -> list[Pill]:
    day = day or date.today()
    return select_daily_pills(user_id, day, Pill.query.all(), k)


def get_checkin(user_id, day=None):
    return Checkin.query.filter_by(user_id=user_id, date=day or date.today()).first()


def complete_checkin(user_id, tasks, day=None, k=DEFAULT_PILL_COUNT) -> tuple[Checkin, User]:
    """Record today's check-in and add the completed pills' points to the score.

    ``tasks`` is ``[{id, completed}]``; ids must belong to the day's pills.
    Points come from the catalogue, not from the request.
    """
    day = day or date.today()
    if not isinstance(tasks, list):
        raise ValidationError("Invalid check-in", details={"tasks": "Tasks must be an array"})

    pills = {p.id: p for p in get_daily_pills(user_id, day, k)}
    errors = {}
    recorded = []
    for i, task in enumerate(tasks):
        if not isinstance(task, dict):
            errors[f"tasks[{i}]"] = "must be an object"
            continue
        pill = pills.get(task.get("id"))
        if pill is None:
            errors[f"tasks[{i}].id"] = "Invalid task ID"
            continue
        if not isinstance(task.get("completed"), bool):
            errors[f"tasks[{i}].completed"] = "Task completion status must be a boolean"
            continue
        recorded.append({"id": pill.id, "completed": task["completed"], "points": pill.points})
    if errors:
        raise ValidationError("Invalid check-in", details=errors)

    user = get_user(user_id)
    if get_checkin(user_id, day):
        raise ConflictError(resource="Checkin", field="date", value=day.isoformat())

    points = sum(t["points"] for t in recorded if t["completed"])
    checkin = Checkin(user_id=user_id, date=day, tasks=recorded, points_earned=points)
    db.session.add(checkin)
    user.score = (user.score or 0) + points
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(resource="Checkin", field="date", value=day.isoformat())

    logger.info("User %s checked in for %s (+%d)", user_id, day, points)
    return checkin, user


def score_and_rank(user_id) -> dict:
    user = get_user(user_id)
    score = user.score or 0
    higher = User.query.filter(User.score > score).count()
    return {"score": score, "rank": higher + 1}


def leaderboard(limit=LEADERBOARD_SIZE) -> list[dict]:
    users = User.query.order_by(User.score.desc(), User.id).limit(limit).all()
    return [{"id": u.id, "name": u.name, "score": u.score or 0} for u in users]


def checkin_history(user_id, limit=30):
    return (
        Checkin.query.filter_by(user_id=user_id)
        .order_by(Checkin.date.desc())
        .limit(limit)
        .all()
    )
