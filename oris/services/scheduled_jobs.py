"""
ORIS Backend
Scheduled Jobs.

Concrete job implementations that run on a schedule.

Jobs:
    - overdue_action_plans: notifies responsible users and admins of plans past deadline
    - upcoming_deadlines: warns responsible users of plans due within 3 days
    - monthly_risk_report: writes and uploads the previous month's risk report
    - expired_exams: flags exams past their validity and notifies their owners

The sweeps never change ActionPlan or RiskReport state; "overdue" is
derived from the deadline on every run.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime, timedelta, timezone
from typing import Any

from oris.models import db
from oris.models.exam import Exam
from oris.models.risk import ActionPlan, ActionPlanStatus
from oris.models.scheduling import ReportSnapshot
from oris.services import risk_reporting
from oris.services.notification import NotificationService
from oris.services.scheduler_service import register_job
from oris.services.storage import StorageService

logger = logging.getLogger(__name__)

UPCOMING_WINDOW_DAYS = 3


def _open_plans():
    return ActionPlan.query.filter(ActionPlan.status != ActionPlanStatus.COMPLETED)


def find_overdue_plans(today: date) -> list[ActionPlan]:
    """Plans with deadline before ``today`` that are not Completed."""
    return (
        _open_plans()
        .filter(ActionPlan.deadline < today)
        .order_by(ActionPlan.deadline, ActionPlan.id)
        .all()
    )


def find_upcoming_plans(today: date, window_days: int = UPCOMING_WINDOW_DAYS) -> list[tuple[ActionPlan, int]]:
    """``(plan, days_remaining)`` for plans due within ``[today, today + window_days]``."""
    plans = (
        _open_plans()
        .filter(ActionPlan.deadline >= today, ActionPlan.deadline <= today + timedelta(days=window_days))
        .order_by(ActionPlan.deadline, ActionPlan.id)
        .all()
    )
    return [(plan, (plan.deadline - today).days) for plan in plans]


def _plan_payload(plan: ActionPlan, **extra) -> dict:
    payload = {
        "plan_id": plan.id,
        "risk_id": plan.risk_id,
        "risk_title": plan.risk.title if plan.risk else None,
        "description": plan.description,
        "deadline": plan.deadline.isoformat(),
    }
    payload.update(extra)
    return payload


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Overdue action plans
# ═══════════════════════════════════════════════════════════════════════════

@register_job("overdue_action_plans")
def overdue_action_plans(app, today: date | None = None) -> dict[str, Any]:
    """Notify responsible users and admins of action plans past their deadline."""
    today = today or date.today()
    plans = find_overdue_plans(today)

    results = {"plans_overdue": len(plans), "notifications_created": 0, "plan_ids": []}
    for plan in plans:
        payload = _plan_payload(plan)
        if NotificationService.notify(
            plan.responsible_id, "actionPlanOverdue", payload,
            entity_type="action_plan", entity_id=plan.id,
        ) is not None:
            results["notifications_created"] += 1
        results["notifications_created"] += NotificationService.notify_admins(
            "actionPlanOverdue", payload, entity_type="action_plan", entity_id=plan.id,
        )
        results["plan_ids"].append(plan.id)

    db.session.commit()
    logger.info("Overdue sweep: %d plans, %d notifications",
                results["plans_overdue"], results["notifications_created"])
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Upcoming deadlines
# ═══════════════════════════════════════════════════════════════════════════

@register_job("upcoming_deadlines")
def upcoming_deadlines(app, today: date | None = None) -> dict[str, Any]:
    """Warn responsible users of action plans due within the next 3 days."""
    today = today or date.today()
    upcoming = find_upcoming_plans(today)

    results = {"plans_upcoming": len(upcoming), "notifications_created": 0, "plans": []}
    for plan, days_remaining in upcoming:
        if NotificationService.notify(
            plan.responsible_id, "actionPlanDeadlineWarning",
            _plan_payload(plan, days_remaining=days_remaining),
            entity_type="action_plan", entity_id=plan.id,
        ) is not None:
            results["notifications_created"] += 1
        results["plans"].append({"plan_id": plan.id, "days_remaining": days_remaining})

    db.session.commit()
    logger.info("Upcoming-deadline sweep: %d plans", results["plans_upcoming"])
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Monthly risk report
# ═══════════════════════════════════════════════════════════════════════════

def previous_month(today: date) -> tuple[date, date]:
    """First and last day of the calendar month before ``today``."""
    last_day = today.replace(day=1) - timedelta(days=1)
    return last_day.replace(day=1), last_day


@register_job("monthly_risk_report")
def monthly_risk_report(app, today: date | None = None) -> dict[str, Any]:
    """Write the previous month's risk report to disk and object storage."""
    today = today or date.today()
    start, end = previous_month(today)
    file_name = f"report_{start.year}_{start.month}.json"

    report = risk_reporting.build_report(start, end)
    report["period"].update({"year": start.year, "month": start.month})
    body = json.dumps(report, indent=2, ensure_ascii=False).encode("utf-8")

    reports_dir = app.config["REPORTS_DIR"]
    local_path = os.path.join(reports_dir, file_name)
    try:
        os.makedirs(reports_dir, exist_ok=True)
        with open(local_path, "wb") as fh:
            fh.write(body)
    except OSError:
        logger.exception("Monthly report %s could not be written locally", file_name)
        return {"status": "failed", "file": file_name}

    storage_url = None
    try:
        storage_url = StorageService.upload(
            body, "application/json", object_name=f"reports/{file_name}", upsert=True,
        )
    except Exception:
        logger.exception("Monthly report %s upload failed", file_name)

    snapshot = ReportSnapshot(
        year=start.year,
        month=start.month,
        period_start=start,
        period_end=end,
        local_path=local_path,
        storage_url=storage_url,
        generated_at=datetime.now(timezone.utc),
    )
    db.session.add(snapshot)
    db.session.commit()
    logger.info("Monthly report %s generated (%s)", file_name, storage_url or "local only")

    return {
        "status": "uploaded" if storage_url else "local_only",
        "file": file_name,
        "storage_url": storage_url,
        "snapshot_id": snapshot.id,
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Job 4: Expired exams
# ═══════════════════════════════════════════════════════════════════════════

@register_job("expired_exams")
def expired_exams(app, now: datetime | None = None) -> dict[str, Any]:
    """Flag exams past expires_at and notify each owner once."""
    now = now or datetime.now(timezone.utc)
    exams = Exam.query.filter(Exam.expires_at < now, Exam.is_expired.is_(False)).all()

    results = {"exams_expired": 0, "notifications_created": 0}
    for exam in exams:
        exam.is_expired = True
        results["exams_expired"] += 1
        if exam.notification_sent:
            continue
        if NotificationService.notify(
            exam.user_id, "examExpired",
            {"exam_id": exam.id, "type": exam.type, "expires_at": exam.expires_at.isoformat()},
            entity_type="exam", entity_id=exam.id,
        ) is not None:
            exam.notification_sent = True
            results["notifications_created"] += 1

    db.session.commit()
    logger.info("Expired-exam sweep: %s", results)
    return results
