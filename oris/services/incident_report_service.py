"""
Incident Report Service — free-form workplace reports with comments.

Reports are independent of the risk lifecycle: they carry their own status
vocabulary and are resolved by an admin with a written resolution.
"""

import logging
from datetime import datetime, timezone

from oris.core.exceptions import NotFoundError, ValidationError
from oris.models import db
from oris.models.report import REPORT_STATUSES, REPORT_UPDATABLE_FIELDS, Report, ReportComment
from oris.utils.helpers import date_window

logger = logging.getLogger(__name__)

REPORT_TYPES = {"logistico", "estrutural", "sugestao", "reclamacao"}
REPORT_IMPACTS = {"baixo", "medio", "alto", "critico"}
TITLE_MIN, TITLE_MAX = 5, 100
DESCRIPTION_MIN = 20
COMMENT_MIN = 5
RESOLUTION_MIN = 20


def _validate(data, partial=False):
    errors = {}

    def present(field):
        return not partial or field in data

    if present("type") and data.get("type") not in REPORT_TYPES:
        errors["type"] = "Invalid report type"
    if present("impact") and data.get("impact") not in REPORT_IMPACTS:
        errors["impact"] = "Invalid impact level"
    if present("title"):
        title = str(data.get("title") or "").strip()
        if not title:
            errors["title"] = "Title is required"
        elif not TITLE_MIN <= len(title) <= TITLE_MAX:
            errors["title"] = f"Title must be between {TITLE_MIN} and {TITLE_MAX} characters"
    if present("description"):
        description = str(data.get("description") or "").strip()
        if not description:
            errors["description"] = "Description is required"
        elif len(description) < DESCRIPTION_MIN:
            errors["description"] = f"Description must be at least {DESCRIPTION_MIN} characters long"
    if present("location") and not str(data.get("location") or "").strip():
        errors["location"] = "Location is required"
    if partial and "status" in data and data["status"] not in REPORT_STATUSES:
        errors["status"] = "Invalid status"

    if errors:
        raise ValidationError("Invalid report", details=errors)


def create_report(data, user_id, attachments=None) -> Report:
    """Create a report; ``anonymous`` drops the author link."""
    _validate(data)
    anonymous = bool(data.get("anonymous"))
    report = Report(
        user_id=None if anonymous else user_id,
        type=data["type"],
        location=data["location"].strip(),
        title=data["title"].strip(),
        description=data["description"].strip(),
        impact=data["impact"],
        attachments=list(attachments or []),
    )
    db.session.add(report)
    db.session.commit()
    logger.info("Incident report %s created%s", report.id, " anonymously" if anonymous else "")
    return report


def list_reports(filters):
    q = Report.query
    for field in ("type", "status", "impact"):
        if filters.get(field):
            q = q.filter(getattr(Report, field) == filters[field])
    start, end = date_window(
        filters.get("start_date") or filters.get("startDate"),
        filters.get("end_date") or filters.get("endDate"),
    )
    if start is not None:
        q = q.filter(Report.created_at >= start)
    if end is not None:
        q = q.filter(Report.created_at <= end)
    return q.order_by(Report.created_at.desc(), Report.id.desc())


def get_report(report_id) -> Report:
    report = db.session.get(Report, report_id)
    if not report:
        raise NotFoundError(resource="Report", resource_id=report_id)
    return report


def update_report(report_id, data) -> Report:
    invalid = set(data) - REPORT_UPDATABLE_FIELDS
    if invalid:
        raise ValidationError("Invalid updates", details={f: "not updatable" for f in sorted(invalid)})
    _validate(data, partial=True)

    report = get_report(report_id)
    for field, value in data.items():
        setattr(report, field, value.strip() if isinstance(value, str) else value)
    db.session.commit()
    return report


def add_comment(report_id, user_id, text) -> Report:
    text = str(text or "").strip()
    if len(text) < COMMENT_MIN:
        raise ValidationError(
            "Invalid comment",
            details={"text": f"Comment must be at least {COMMENT_MIN} characters long"},
        )
    report = get_report(report_id)
    db.session.add(ReportComment(report_id=report.id, user_id=user_id, text=text))
    db.session.commit()
    db.session.refresh(report)
    return report


def resolve_report(report_id, description, now=None) -> Report:
    description = str(description or "").strip()
    if len(description) < RESOLUTION_MIN:
        raise ValidationError(
            "Invalid resolution",
            details={"description": f"Resolution description must be at least {RESOLUTION_MIN} characters long"},
        )
    report = get_report(report_id)
    report.status = "resolvido"
    report.resolution = description
    report.resolved_at = now or datetime.now(timezone.utc)
    db.session.commit()
    logger.info("Incident report %s resolved", report_id)
    return report


def report_stats() -> dict:
    by_type_status = (
        db.session.query(Report.type, Report.status, db.func.count(Report.id))
        .group_by(Report.type, Report.status)
        .order_by(Report.type, Report.status)
        .all()
    )
    by_impact = (
        db.session.query(Report.impact, db.func.count(Report.id))
        .group_by(Report.impact)
        .all()
    )
    return {
        "total": Report.query.count(),
        "by_type_and_status": [
            {"type": t, "status": s, "count": c} for t, s, c in by_type_status
        ],
        "by_impact": {impact: c for impact, c in by_impact},
    }
