"""Risk reporting — read-only aggregations over RiskReport and ActionPlan.

Every function is side-effect free: calling it twice with the same
arguments and no intervening writes returns the same result. The optional
``start``/``end`` window filters on creation timestamp; a bare end date
covers that whole day.
"""
import logging
import math
from datetime import date, datetime, time, timezone

from sqlalchemy import case, func

from oris.models import db
from oris.models.risk import (
    ActionPlan,
    ActionPlanStatus,
    RiskHistoryLog,
    RiskPriority,
    RiskReport,
    RiskStatus,
)
from oris.utils.helpers import as_utc, date_window

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

_STATUS_KEYS = {
    RiskStatus.OPEN: "open",
    RiskStatus.IN_TREATMENT: "in_treatment",
    RiskStatus.RESOLVED: "resolved",
    RiskStatus.CANCELLED: "cancelled",
}


def _windowed(query, column, start, end):
    start_dt, end_dt = date_window(start, end)
    if start_dt:
        query = query.filter(column >= start_dt)
    if end_dt:
        query = query.filter(column <= end_dt)
    return query


def _status_count(status):
    return func.sum(case((RiskReport.status == status, 1), else_=0))


def _group_counts(group_column, key, start, end, *, with_critical=False):
    columns = [group_column, func.count(RiskReport.id)]
    columns += [_status_count(status) for status in _STATUS_KEYS]
    if with_critical:
        columns.append(func.sum(case((RiskReport.priority == RiskPriority.CRITICAL, 1), else_=0)))

    q = _windowed(db.session.query(*columns), RiskReport.created_at, start, end)
    rows = q.group_by(group_column).all()

    groups = []
    for row in rows:
        value = row[0].value if hasattr(row[0], "value") else row[0]
        entry = {key: value, "total": int(row[1])}
        for offset, status_key in enumerate(_STATUS_KEYS.values(), start=2):
            entry[status_key] = int(row[offset] or 0)
        if with_critical:
            entry["critical"] = int(row[-1] or 0)
        groups.append(entry)

    groups.sort(key=lambda g: (-g["total"], g[key]))
    return groups


def risks_by_location(start=None, end=None):
    """Per-location totals split by current status, plus critical count."""
    return _group_counts(RiskReport.location, "location", start, end, with_critical=True)


def risks_by_category(start=None, end=None):
    """Per-category totals split by current status."""
    return _group_counts(RiskReport.category, "category", start, end)


def _resolution_days(risk):
    """Ceiling of whole days from creation entry to first Resolved entry, or None."""
    if not risk.history_logs:
        return None
    resolved = risk.first_log_with_status(RiskStatus.RESOLVED)
    if resolved is None:
        return None
    created_at = as_utc(risk.history_logs[0].timestamp)
    resolved_at = as_utc(resolved.timestamp)
    seconds = abs((resolved_at - created_at).total_seconds())
    return math.ceil(seconds / SECONDS_PER_DAY)


def average_resolution_time(start=None, end=None):
    """Average days to first resolution over currently Resolved risks.

    Risks without a Resolved history entry are left out entirely.
    """
    q = _windowed(
        RiskReport.query.filter(RiskReport.status == RiskStatus.RESOLVED),
        RiskReport.created_at, start, end,
    )
    resolved = q.order_by(RiskReport.id).all()

    durations = [d for d in (_resolution_days(r) for r in resolved) if d is not None]
    average = sum(durations) / len(durations) if durations else 0

    return {
        "average_resolution_time_days": average,
        "total_resolved_risks": len(resolved),
        "risks_with_valid_history": len(durations),
    }


def _deadline_end(deadline):
    return datetime.combine(deadline, time.max, tzinfo=timezone.utc)


def action_plan_compliance(start=None, end=None):
    """Share of Completed plans whose first completion is within the deadline day."""
    q = _windowed(
        ActionPlan.query.filter(ActionPlan.status == ActionPlanStatus.COMPLETED),
        ActionPlan.created_at, start, end,
    )
    on_time = late = 0
    for plan in q.order_by(ActionPlan.id).all():
        completion = plan.first_log_with_status(ActionPlanStatus.COMPLETED)
        if completion is None:
            continue
        if as_utc(completion.timestamp) <= _deadline_end(plan.deadline):
            on_time += 1
        else:
            late += 1

    total = on_time + late
    return {
        "total_completed_plans": total,
        "on_time_plans": on_time,
        "late_plans": late,
        "compliance_rate_percentage": (on_time / total) * 100 if total else 0,
    }


def monthly_evolution(year=None):
    """Twelve zero-filled buckets of creations and first resolutions for ``year``."""
    year = year or date.today().year
    year_start = datetime(year, 1, 1, tzinfo=timezone.utc)
    year_end = datetime(year, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)

    buckets = [{"month": m, "count": 0, "resolved": 0} for m in range(1, 13)]

    created = db.session.query(RiskReport.created_at).filter(
        RiskReport.created_at >= year_start, RiskReport.created_at <= year_end,
    )
    for (created_at,) in created:
        buckets[as_utc(created_at).month - 1]["count"] += 1

    first_resolved = {}
    logs = (
        db.session.query(RiskHistoryLog.risk_id, RiskHistoryLog.timestamp)
        .filter(RiskHistoryLog.status == RiskStatus.RESOLVED)
        .order_by(RiskHistoryLog.id)
    )
    for risk_id, timestamp in logs:
        first_resolved.setdefault(risk_id, as_utc(timestamp))
    for resolved_at in first_resolved.values():
        if resolved_at.year == year:
            buckets[resolved_at.month - 1]["resolved"] += 1

    return {"year": year, "months": buckets}


def _count_by(query, column):
    return {
        (value.value if hasattr(value, "value") else value): int(count)
        for value, count in query.with_entities(column, func.count()).group_by(column).all()
    }


def risks_summary(start=None, end=None):
    """Totals by status, priority and category, plus action-plan totals."""
    risk_q = _windowed(RiskReport.query, RiskReport.created_at, start, end)
    plan_q = _windowed(ActionPlan.query, ActionPlan.created_at, start, end)

    return {
        "total_risks": risk_q.count(),
        "by_status": _count_by(risk_q, RiskReport.status),
        "by_priority": _count_by(risk_q, RiskReport.priority),
        "by_category": _count_by(risk_q, RiskReport.category),
        "action_plans": {
            "total": plan_q.count(),
            "by_status": _count_by(plan_q, ActionPlan.status),
        },
    }


def build_report(start, end):
    """Combined report payload for ``[start, end]``; used for monthly snapshots."""
    return {
        "period": {
            "start": start.isoformat() if hasattr(start, "isoformat") else start,
            "end": end.isoformat() if hasattr(end, "isoformat") else end,
        },
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "summary": risks_summary(start, end),
        "risks_by_location": risks_by_location(start, end),
        "risks_by_category": risks_by_category(start, end),
        "average_resolution_time": average_resolution_time(start, end),
        "action_plan_compliance": action_plan_compliance(start, end),
    }
