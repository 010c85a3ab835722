"""
Action plan blueprint.

Routes:
    GET   /api/v1/action-plans               — list (filters, sort, pagination)
    POST  /api/v1/action-plans               — create under an existing risk
    GET   /api/v1/action-plans/<id>          — detail with history
    PUT   /api/v1/action-plans/<id>          — edit fields (riskId immutable) / status
    PATCH /api/v1/action-plans/<id>/status   — status change; completing the last
                                               open plan resolves the risk
"""

from flask import Blueprint, g, jsonify, request

from oris.blueprints import paginate_query, request_payload, upload_evidence
from oris.middleware.jwt_auth import login_required
from oris.services import risk_lifecycle

action_plan_bp = Blueprint("action_plan_bp", __name__, url_prefix="/api/v1/action-plans")


@action_plan_bp.route("", methods=["GET"])
@login_required
def list_action_plans():
    q = risk_lifecycle.list_action_plans(request.args.to_dict())
    plans, total = paginate_query(q)
    return jsonify({"items": [p.to_dict(include_history=False) for p in plans], "total": total})


@action_plan_bp.route("", methods=["POST"])
@login_required
def create_action_plan():
    data = request_payload()
    files = upload_evidence("action-plans")
    plan = risk_lifecycle.create_action_plan(data, g.current_user_id, evidence_files=files)
    return jsonify(plan.to_dict()), 201


@action_plan_bp.route("/<int:plan_id>", methods=["GET"])
@login_required
def get_action_plan(plan_id):
    return jsonify(risk_lifecycle.get_action_plan(plan_id).to_dict())


@action_plan_bp.route("/<int:plan_id>", methods=["PUT", "PATCH"])
@login_required
def update_action_plan(plan_id):
    risk_lifecycle.get_action_plan(plan_id)
    data = request_payload()
    files = upload_evidence("action-plans")
    plan = risk_lifecycle.update_action_plan(plan_id, data, g.current_user_id, evidence_files=files)
    return jsonify(plan.to_dict())


@action_plan_bp.route("/<int:plan_id>/status", methods=["PATCH"])
@login_required
def update_action_plan_status(plan_id):
    data = request.get_json(silent=True) or {}
    plan = risk_lifecycle.update_action_plan_status(
        plan_id, data.get("status"), data.get("comment"), g.current_user_id,
    )
    return jsonify(plan.to_dict())
