"""
Incident report blueprint.

Routes:
    POST  /api/v1/incident-reports                   — create (JSON or multipart with ``foto``)
    GET   /api/v1/incident-reports                   — list (type, status, impact, date window)
    GET   /api/v1/incident-reports/stats             — admin
    GET   /api/v1/incident-reports/<id>
    PATCH /api/v1/incident-reports/<id>
    POST  /api/v1/incident-reports/<id>/comments
    POST  /api/v1/incident-reports/<id>/resolve      — admin
"""

from flask import Blueprint, g, jsonify, request

from oris.blueprints import paginate_query, request_payload, upload_evidence
from oris.middleware.jwt_auth import admin_required, login_required
from oris.services import incident_report_service

incident_report_bp = Blueprint("incident_report_bp", __name__, url_prefix="/api/v1/incident-reports")

PHOTO_FIELD = "foto"


@incident_report_bp.route("", methods=["POST"])
@login_required
def create_report():
    data = request_payload()
    if isinstance(data.get("anonymous"), str):
        data["anonymous"] = data["anonymous"].lower() == "true"
    attachments = upload_evidence("reports", field=PHOTO_FIELD)
    report = incident_report_service.create_report(data, g.current_user_id, attachments)
    return jsonify(report.to_dict()), 201


@incident_report_bp.route("", methods=["GET"])
@login_required
def list_reports():
    q = incident_report_service.list_reports(request.args.to_dict())
    reports, total = paginate_query(q)
    return jsonify({"items": [r.to_dict(include_comments=False) for r in reports], "total": total})


@incident_report_bp.route("/stats", methods=["GET"])
@admin_required
def report_stats():
    return jsonify(incident_report_service.report_stats())


@incident_report_bp.route("/<int:report_id>", methods=["GET"])
@login_required
def get_report(report_id):
    return jsonify(incident_report_service.get_report(report_id).to_dict())


@incident_report_bp.route("/<int:report_id>", methods=["PATCH"])
@login_required
def update_report(report_id):
    data = request.get_json(silent=True) or {}
    return jsonify(incident_report_service.update_report(report_id, data).to_dict())


@incident_report_bp.route("/<int:report_id>/comments", methods=["POST"])
@login_required
def add_comment(report_id):
    data = request.get_json(silent=True) or {}
    report = incident_report_service.add_comment(report_id, g.current_user_id, data.get("text"))
    return jsonify(report.to_dict()), 201


@incident_report_bp.route("/<int:report_id>/resolve", methods=["POST"])
@admin_required
def resolve_report(report_id):
    data = request.get_json(silent=True) or {}
    report = incident_report_service.resolve_report(report_id, data.get("description"))
    return jsonify(report.to_dict())
