"""
Risk report blueprint.

Routes:
    GET    /api/v1/risks                       — list (filters, sort, pagination)
    POST   /api/v1/risks                       — create (JSON or multipart with evidenceFiles)
    GET    /api/v1/risks/<id>                  — detail with action plans
    PUT    /api/v1/risks/<id>                  — edit fields / status
    PATCH  /api/v1/risks/<id>/status           — status change with comment
    DELETE /api/v1/risks/<id>                  — admin; only without action plans
    GET    /api/v1/risks/<id>/action-plans     — plans of one risk
"""

from flask import Blueprint, g, jsonify, request

from oris.blueprints import paginate_query, request_payload, upload_evidence
from oris.middleware.jwt_auth import admin_required, login_required
from oris.services import risk_lifecycle

risk_bp = Blueprint("risk_bp", __name__, url_prefix="/api/v1/risks")


@risk_bp.route("", methods=["GET"])
@login_required
def list_risks():
    q = risk_lifecycle.list_risks(request.args.to_dict())
    risks, total = paginate_query(q)
    return jsonify({"items": [r.to_dict(include_history=False) for r in risks], "total": total})


@risk_bp.route("", methods=["POST"])
@login_required
def create_risk():
    data = request_payload()
    files = upload_evidence("risks")
    risk = risk_lifecycle.create_risk(data, g.current_user_id, evidence_files=files)
    return jsonify(risk.to_dict()), 201


@risk_bp.route("/<int:risk_id>", methods=["GET"])
@login_required
def get_risk(risk_id):
    risk, plans = risk_lifecycle.get_risk_with_plans(risk_id)
    body = risk.to_dict()
    body["action_plans"] = [p.to_dict(include_history=False) for p in plans]
    return jsonify(body)


@risk_bp.route("/<int:risk_id>", methods=["PUT", "PATCH"])
@login_required
def update_risk(risk_id):
    risk_lifecycle.get_risk(risk_id)
    data = request_payload()
    files = upload_evidence("risks")
    risk = risk_lifecycle.update_risk(risk_id, data, g.current_user_id, evidence_files=files)
    return jsonify(risk.to_dict())


@risk_bp.route("/<int:risk_id>/status", methods=["PATCH"])
@login_required
def update_risk_status(risk_id):
    data = request.get_json(silent=True) or {}
    risk = risk_lifecycle.update_risk_status(
        risk_id, data.get("status"), data.get("comment"), g.current_user_id,
    )
    return jsonify(risk.to_dict())


@risk_bp.route("/<int:risk_id>", methods=["DELETE"])
@admin_required
def delete_risk(risk_id):
    risk_lifecycle.delete_risk(risk_id, g.current_user_id, g.is_admin)
    return jsonify({"message": "Risk report deleted successfully", "id": risk_id})


@risk_bp.route("/<int:risk_id>/action-plans", methods=["GET"])
@login_required
def list_risk_action_plans(risk_id):
    _, plans = risk_lifecycle.get_risk_with_plans(risk_id)
    return jsonify({"items": [p.to_dict() for p in plans], "total": len(plans)})
