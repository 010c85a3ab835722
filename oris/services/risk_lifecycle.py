"""Risk lifecycle engine — RiskReport and ActionPlan state machine.

Transaction policy: unlike the CRUD services, every write operation here
commits its own unit of work. Completing an ActionPlan is two units: the
plan update commits first, then the parent-risk cascade runs as a
separate step whose failure leaves the committed plan in place.

Operations receive the acting user id explicitly and never read request
state (``flask.g``).

Rules:
- Every status change goes through ``record_status`` so the entity status
  always equals the status of its last history entry.
- A RiskReport is created Open with one "created" entry by the reporter.
- An ActionPlan is created Pending with one "created" entry attributed to
  its responsible user (``CREATION_AUDIT_ACTOR``), not the acting user.
- Creating a plan under an Open risk moves the risk to InTreatment.
- Completing the last non-completed plan of a risk resolves the risk.
- Manual risk status changes never cascade to plans.
- A risk with action plans cannot be deleted.
"""
import logging

from flask import current_app

from oris.core.exceptions import (
    CascadeFailure,
    NotFoundError,
    PermissionDenied,
    ReferentialIntegrityError,
    ValidationError,
)
from oris.models import db
from oris.models.risk import (
    ActionPlan,
    ActionPlanStatus,
    RiskCategory,
    RiskPriority,
    RiskReport,
    RiskStatus,
)
from oris.models.user import User
from oris.services.notification import NotificationService
from oris.utils.helpers import as_int, date_window, parse_date

logger = logging.getLogger(__name__)

CREATED_COMMENT = "created"
AUTO_IN_TREATMENT_COMMENT = "auto-transitioned on first action plan"
AUTO_RESOLVED_COMMENT = "auto-resolved after all action plans completed"

# The creation entry of an ActionPlan is attributed to this field of the plan.
CREATION_AUDIT_ACTOR = "responsible"

TITLE_MIN, TITLE_MAX = 5, 100
DESCRIPTION_MIN = 10
COMMENT_MIN = 3

RISK_SORT_FIELDS = {"created_at", "updated_at", "title", "priority", "status", "category", "location"}
PLAN_SORT_FIELDS = {"created_at", "updated_at", "deadline", "status"}


# ── Validation helpers ───────────────────────────────────────────────────


def _pick(data, *keys):
    """First present key among snake_case/camelCase spellings."""
    for key in keys:
        if key in data:
            return True, data[key]
    return False, None


def _parse_enum(enum_cls, value, field, errors):
    try:
        return enum_cls.parse(value)
    except ValueError:
        errors[field] = f"must be one of: {', '.join(enum_cls.values())}"
        return None


def _check_text(value, field, errors, *, min_len=None, max_len=None):
    text = (value or "").strip() if isinstance(value, str) or value is None else None
    if text is None:
        errors[field] = "must be a string"
        return None
    if min_len is not None and len(text) < min_len:
        errors[field] = f"must be at least {min_len} characters"
    elif max_len is not None and len(text) > max_len:
        errors[field] = f"must be at most {max_len} characters"
    return text


def _check_user(value, field, errors):
    user_id = as_int(value)
    if user_id is None or db.session.get(User, user_id) is None:
        errors[field] = "must reference an existing user"
        return None
    return user_id


def _check_comment(comment):
    if comment is None or comment == "":
        return None
    text = str(comment).strip()
    if len(text) < COMMENT_MIN:
        raise ValidationError(
            "Invalid status comment",
            details={"comment": f"must be at least {COMMENT_MIN} characters"},
        )
    return text


def _check_evidence(files):
    files = list(files or [])
    limit = current_app.config.get("MAX_EVIDENCE_FILES", 5)
    if len(files) > limit:
        raise ValidationError(
            "Too many evidence files",
            details={"evidence_files": f"at most {limit} files per request"},
        )
    return files


def _validate_risk_fields(data, *, partial):
    """Validate RiskReport fields. Returns the cleaned subset present in ``data``."""
    errors = {}
    cleaned = {}

    for field, min_len, max_len in (
        ("title", TITLE_MIN, TITLE_MAX),
        ("description", DESCRIPTION_MIN, None),
        ("location", 1, None),
    ):
        present, value = _pick(data, field)
        if present:
            cleaned[field] = _check_text(value, field, errors, min_len=min_len, max_len=max_len)
        elif not partial:
            errors[field] = "is required"

    for field, enum_cls in (("category", RiskCategory), ("priority", RiskPriority)):
        present, value = _pick(data, field)
        if present:
            cleaned[field] = _parse_enum(enum_cls, value, field, errors)
        elif not partial:
            errors[field] = "is required"

    present, value = _pick(data, "assigned_to", "assignedTo", "assigned_to_id")
    if present:
        cleaned["assigned_to_id"] = (
            None if value in (None, "") else _check_user(value, "assigned_to", errors)
        )

    if errors:
        raise ValidationError("Invalid risk report", details=errors)
    return cleaned


def _validate_plan_fields(data, *, partial):
    errors = {}
    cleaned = {}

    present, value = _pick(data, "responsible", "responsible_id")
    if present:
        cleaned["responsible_id"] = _check_user(value, "responsible", errors)
    elif not partial:
        errors["responsible"] = "is required"

    present, value = _pick(data, "description")
    if present:
        cleaned["description"] = _check_text(value, "description", errors, min_len=DESCRIPTION_MIN)
    elif not partial:
        errors["description"] = "is required"

    present, value = _pick(data, "deadline")
    if present:
        deadline = parse_date(value)
        if deadline is None:
            errors["deadline"] = "must be an ISO-8601 date"
        cleaned["deadline"] = deadline
    elif not partial:
        errors["deadline"] = "is required"

    if errors:
        raise ValidationError("Invalid action plan", details=errors)
    return cleaned


def _default_comment(status):
    return f"Status changed to {status.value}"


# ── Lookups ──────────────────────────────────────────────────────────────


def get_risk(risk_id):
    risk = db.session.get(RiskReport, risk_id)
    if not risk:
        raise NotFoundError(resource="RiskReport", resource_id=risk_id)
    return risk


def get_risk_with_plans(risk_id):
    """Return ``(risk, action_plans)``."""
    risk = get_risk(risk_id)
    plans = risk.action_plans.order_by(ActionPlan.id).all()
    return risk, plans


def get_action_plan(plan_id):
    plan = db.session.get(ActionPlan, plan_id)
    if not plan:
        raise NotFoundError(resource="ActionPlan", resource_id=plan_id)
    return plan


def _sorted(query, model, sort_by, sort_order, allowed):
    column = getattr(model, sort_by if sort_by in allowed else "created_at")
    if sort_order == "asc":
        return query.order_by(column.asc(), model.id.asc())
    return query.order_by(column.desc(), model.id.desc())


def list_risks(filters):
    """Build the filtered, sorted RiskReport query.

    Recognised filters: status, priority, category, location, reporter,
    assigned_to, start_date, end_date, sort_by, sort_order.
    """
    q = RiskReport.query
    errors = {}
    for field, enum_cls in (("status", RiskStatus), ("priority", RiskPriority), ("category", RiskCategory)):
        if filters.get(field):
            member = _parse_enum(enum_cls, filters[field], field, errors)
            if member is not None:
                q = q.filter(getattr(RiskReport, field) == member)
    if errors:
        raise ValidationError("Invalid filter", details=errors)

    if filters.get("location"):
        q = q.filter(RiskReport.location == filters["location"])
    if as_int(filters.get("reporter")) is not None:
        q = q.filter(RiskReport.reporter_id == as_int(filters["reporter"]))
    if as_int(filters.get("assigned_to")) is not None:
        q = q.filter(RiskReport.assigned_to_id == as_int(filters["assigned_to"]))

    start, end = date_window(filters.get("start_date"), filters.get("end_date"))
    if start:
        q = q.filter(RiskReport.created_at >= start)
    if end:
        q = q.filter(RiskReport.created_at <= end)

    return _sorted(q, RiskReport, filters.get("sort_by"), filters.get("sort_order"), RISK_SORT_FIELDS)


def list_action_plans(filters):
    """Build the filtered, sorted ActionPlan query.

    Recognised filters: risk_id, responsible, status, start_date, end_date,
    deadline_start, deadline_end, sort_by, sort_order.
    """
    q = ActionPlan.query
    if as_int(filters.get("risk_id")) is not None:
        q = q.filter(ActionPlan.risk_id == as_int(filters["risk_id"]))
    if as_int(filters.get("responsible")) is not None:
        q = q.filter(ActionPlan.responsible_id == as_int(filters["responsible"]))
    if filters.get("status"):
        errors = {}
        member = _parse_enum(ActionPlanStatus, filters["status"], "status", errors)
        if errors:
            raise ValidationError("Invalid filter", details=errors)
        q = q.filter(ActionPlan.status == member)

    start, end = date_window(filters.get("start_date"), filters.get("end_date"))
    if start:
        q = q.filter(ActionPlan.created_at >= start)
    if end:
        q = q.filter(ActionPlan.created_at <= end)

    deadline_start = parse_date(filters.get("deadline_start"))
    deadline_end = parse_date(filters.get("deadline_end"))
    if deadline_start:
        q = q.filter(ActionPlan.deadline >= deadline_start)
    if deadline_end:
        q = q.filter(ActionPlan.deadline <= deadline_end)

    return _sorted(q, ActionPlan, filters.get("sort_by"), filters.get("sort_order"), PLAN_SORT_FIELDS)


# ── Notifications ────────────────────────────────────────────────────────


def _risk_payload(risk, **extra):
    payload = {
        "risk_id": risk.id,
        "title": risk.title,
        "priority": risk.priority.value,
        "status": risk.status.value,
    }
    payload.update(extra)
    return payload


def _commit_notifications():
    """Commit notification rows written after the business commit."""
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Failed to persist notifications")


def _notify_status_change(risk, old_status):
    if risk.assigned_to_id is None:
        return
    NotificationService.notify(
        risk.assigned_to_id, "riskStatusChanged",
        _risk_payload(risk, previous_status=old_status.value),
        entity_type="risk", entity_id=risk.id,
    )


# ── RiskReport writes ────────────────────────────────────────────────────


def create_risk(data, reporter_id, evidence_files=None):
    """Create a RiskReport in status Open.

    Returns:
        RiskReport instance (committed).
    """
    cleaned = _validate_risk_fields(data, partial=False)
    files = _check_evidence(evidence_files)
    if db.session.get(User, reporter_id) is None:
        raise NotFoundError(resource="User", resource_id=reporter_id)

    risk = RiskReport(
        title=cleaned["title"],
        description=cleaned["description"],
        category=cleaned["category"],
        location=cleaned["location"],
        priority=cleaned["priority"],
        reporter_id=reporter_id,
        assigned_to_id=cleaned.get("assigned_to_id"),
        evidence_files=files,
    )
    risk.record_status(RiskStatus.OPEN, reporter_id, CREATED_COMMENT)
    db.session.add(risk)
    db.session.commit()
    logger.info("RiskReport %s created by user %s [%s]", risk.id, reporter_id, risk.priority.value)

    if risk.priority == RiskPriority.CRITICAL:
        NotificationService.notify_admins(
            "newCriticalRisk",
            _risk_payload(risk, created_at=risk.created_at.isoformat()),
            entity_type="risk", entity_id=risk.id,
        )
        _commit_notifications()

    return risk


def _apply_risk_status(risk, new_status, comment, acting_user_id):
    """Append a status entry when the status differs. Returns the old status or None."""
    if new_status == risk.status:
        return None
    old_status = risk.status
    risk.record_status(new_status, acting_user_id, comment or _default_comment(new_status))
    return old_status


def update_risk(risk_id, data, acting_user_id, evidence_files=None):
    """Edit RiskReport fields, optionally changing its status.

    New evidence files are appended to the existing list.
    """
    risk = get_risk(risk_id)
    cleaned = _validate_risk_fields(data, partial=True)
    files = _check_evidence(evidence_files)

    new_status = None
    present, value = _pick(data, "status")
    if present and value not in (None, ""):
        errors = {}
        new_status = _parse_enum(RiskStatus, value, "status", errors)
        if errors:
            raise ValidationError("Invalid risk report", details=errors)
    comment = _check_comment(data.get("comment"))

    old_priority = risk.priority
    for field, value in cleaned.items():
        setattr(risk, field, value)
    if files:
        risk.evidence_files = [*(risk.evidence_files or []), *files]

    old_status = None
    if new_status is not None:
        old_status = _apply_risk_status(risk, new_status, comment, acting_user_id)

    db.session.commit()

    if risk.priority == RiskPriority.CRITICAL and old_priority != RiskPriority.CRITICAL:
        NotificationService.notify_admins(
            "riskReclassifiedAsCritical",
            _risk_payload(risk, updated_at=risk.updated_at.isoformat()),
            entity_type="risk", entity_id=risk.id,
        )
    if old_status is not None:
        _notify_status_change(risk, old_status)
    _commit_notifications()
    return risk


def update_risk_status(risk_id, new_status, comment, acting_user_id):
    """Manually set a RiskReport status. Never cascades to its action plans."""
    risk = get_risk(risk_id)
    errors = {}
    status = _parse_enum(RiskStatus, new_status, "status", errors)
    if errors:
        raise ValidationError("Invalid status", details=errors)
    comment = _check_comment(comment)

    old_status = _apply_risk_status(risk, status, comment, acting_user_id)
    if old_status is None:
        return risk

    db.session.commit()
    logger.info(
        "RiskReport %s status %s → %s by user %s",
        risk.id, old_status.value, status.value, acting_user_id,
    )
    _notify_status_change(risk, old_status)
    _commit_notifications()
    return risk


def delete_risk(risk_id, acting_user_id, is_admin):
    """Hard-delete a RiskReport that has no action plans. Admin only."""
    if not is_admin:
        raise PermissionDenied("Only administrators can delete risk reports")
    risk = get_risk(risk_id)
    plan_count = ActionPlan.query.filter_by(risk_id=risk.id).count()
    if plan_count:
        raise ReferentialIntegrityError(
            resource="RiskReport", resource_id=risk.id,
            dependent="ActionPlan", count=plan_count,
        )
    db.session.delete(risk)
    db.session.commit()
    logger.info("RiskReport %s deleted by admin %s", risk_id, acting_user_id)


# ── ActionPlan writes ────────────────────────────────────────────────────


def create_action_plan(data, acting_user_id, evidence_files=None):
    """Create an ActionPlan in status Pending under an existing RiskReport.

    Moves an Open parent risk to InTreatment in the same commit.
    """
    present, raw_risk_id = _pick(data, "risk_id", "riskId")
    risk_id = as_int(raw_risk_id)
    if not present or risk_id is None:
        raise ValidationError("Invalid action plan", details={"risk_id": "is required"})
    cleaned = _validate_plan_fields(data, partial=False)
    files = _check_evidence(evidence_files)

    risk = get_risk(risk_id)

    plan = ActionPlan(
        risk_id=risk.id,
        responsible_id=cleaned["responsible_id"],
        description=cleaned["description"],
        deadline=cleaned["deadline"],
        evidence_files=files,
    )
    plan.record_status(
        ActionPlanStatus.PENDING,
        getattr(plan, f"{CREATION_AUDIT_ACTOR}_id"),
        CREATED_COMMENT,
    )
    db.session.add(plan)

    if risk.status == RiskStatus.OPEN:
        risk.record_status(RiskStatus.IN_TREATMENT, acting_user_id, AUTO_IN_TREATMENT_COMMENT)
        logger.info("RiskReport %s moved to InTreatment by first action plan", risk.id)

    db.session.commit()
    logger.info("ActionPlan %s created for RiskReport %s by user %s", plan.id, risk.id, acting_user_id)
    return plan


def update_action_plan(plan_id, data, acting_user_id, evidence_files=None):
    """Edit ActionPlan fields. ``risk_id`` cannot change.

    A ``status`` key is forwarded to :func:`update_action_plan_status`
    after the field edits are committed.
    """
    plan = get_action_plan(plan_id)

    present, raw_risk_id = _pick(data, "risk_id", "riskId")
    if present and as_int(raw_risk_id) != plan.risk_id:
        raise ValidationError(
            "riskId cannot be changed after creation",
            details={"risk_id": "immutable"},
        )

    cleaned = _validate_plan_fields(data, partial=True)
    files = _check_evidence(evidence_files)

    new_status = None
    present, value = _pick(data, "status")
    if present and value not in (None, ""):
        errors = {}
        new_status = _parse_enum(ActionPlanStatus, value, "status", errors)
        if errors:
            raise ValidationError("Invalid action plan", details=errors)
    comment = _check_comment(data.get("comment"))

    for field, value in cleaned.items():
        setattr(plan, field, value)
    if files:
        plan.evidence_files = [*(plan.evidence_files or []), *files]
    db.session.commit()

    if new_status is not None:
        return update_action_plan_status(plan.id, new_status, comment, acting_user_id)
    return plan


def update_action_plan_status(plan_id, new_status, comment, acting_user_id):
    """Change an ActionPlan status, resolving the parent risk on last completion.

    Same status: plain update, no history entry.
    """
    plan = get_action_plan(plan_id)
    errors = {}
    status = _parse_enum(ActionPlanStatus, new_status, "status", errors)
    if errors:
        raise ValidationError("Invalid status", details=errors)
    comment = _check_comment(comment)

    if status == plan.status:
        db.session.commit()
        return plan

    old_status = plan.status
    plan.record_status(status, acting_user_id, comment or _default_comment(status))
    db.session.commit()
    logger.info(
        "ActionPlan %s status %s → %s by user %s",
        plan.id, old_status.value, status.value, acting_user_id,
    )

    if status == ActionPlanStatus.COMPLETED:
        risk_id, completed_id = plan.risk_id, plan.id
        try:
            _resolve_parent_risk(risk_id, completed_id, acting_user_id)
        except Exception as exc:
            db.session.rollback()
            failure = CascadeFailure(risk_id=risk_id, plan_id=completed_id, cause=exc)
            logger.error("%s", failure, exc_info=True,
                         extra={"risk_id": risk_id, "action_plan_id": completed_id})

    return plan


def _resolve_parent_risk(risk_id, completed_plan_id, acting_user_id):
    """Resolve the risk when no sibling plan remains non-completed.

    Returns True when the risk was resolved.
    """
    pending = ActionPlan.query.filter(
        ActionPlan.risk_id == risk_id,
        ActionPlan.status != ActionPlanStatus.COMPLETED,
        ActionPlan.id != completed_plan_id,
    ).count()
    if pending:
        return False

    risk = get_risk(risk_id)
    risk.record_status(RiskStatus.RESOLVED, acting_user_id, AUTO_RESOLVED_COMMENT)
    db.session.commit()
    logger.info("RiskReport %s auto-resolved after ActionPlan %s", risk_id, completed_plan_id)
    return True
