"""
Risk reporting blueprint — read-only aggregations.

Routes (optional ``start_date`` / ``end_date`` on every route but
monthly-evolution, which takes ``year``):
    GET /api/v1/risk-reports/risks-summary
    GET /api/v1/risk-reports/risks-by-location
    GET /api/v1/risk-reports/risks-by-category
    GET /api/v1/risk-reports/average-resolution-time
    GET /api/v1/risk-reports/action-plan-compliance
    GET /api/v1/risk-reports/monthly-evolution
"""

from flask import Blueprint, jsonify, request

from oris.core.exceptions import ValidationError
from oris.middleware.jwt_auth import login_required
from oris.services import risk_reporting
from oris.utils.helpers import parse_datetime

risk_report_bp = Blueprint("risk_report_bp", __name__, url_prefix="/api/v1/risk-reports")


def _window():
    """``(start, end)`` raw query values; both must parse when present."""
    start = request.args.get("start_date") or request.args.get("startDate")
    end = request.args.get("end_date") or request.args.get("endDate")
    errors = {
        field: "must be an ISO-8601 date"
        for field, value in (("start_date", start), ("end_date", end))
        if value and parse_datetime(value) is None
    }
    if errors:
        raise ValidationError("Invalid date window", details=errors)
    return start, end


@risk_report_bp.route("/risks-summary", methods=["GET"])
@login_required
def risks_summary():
    return jsonify(risk_reporting.risks_summary(*_window()))


@risk_report_bp.route("/risks-by-location", methods=["GET"])
@login_required
def risks_by_location():
    return jsonify(risk_reporting.risks_by_location(*_window()))


@risk_report_bp.route("/risks-by-category", methods=["GET"])
@login_required
def risks_by_category():
    return jsonify(risk_reporting.risks_by_category(*_window()))


@risk_report_bp.route("/average-resolution-time", methods=["GET"])
@login_required
def average_resolution_time():
    return jsonify(risk_reporting.average_resolution_time(*_window()))


@risk_report_bp.route("/action-plan-compliance", methods=["GET"])
@login_required
def action_plan_compliance():
    return jsonify(risk_reporting.action_plan_compliance(*_window()))


@risk_report_bp.route("/monthly-evolution", methods=["GET"])
@login_required
def monthly_evolution():
    year = request.args.get("year", type=int)
    if "year" in request.args and year is None:
        raise ValidationError("Invalid year", details={"year": "must be an integer"})
    return jsonify(risk_reporting.monthly_evolution(year))
