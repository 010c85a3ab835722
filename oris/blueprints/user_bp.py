"""
User self-service blueprint.

Routes:
    GET   /api/v1/users/profile   — own profile (public view + email/role)
    PATCH /api/v1/users/profile   — update profile fields
    GET   /api/v1/users/health    — own health data
    PATCH /api/v1/users/health    — update health data
    PATCH /api/v1/users/privacy   — update privacy settings
"""

from flask import Blueprint, g, jsonify, request

from oris.middleware.jwt_auth import login_required
from oris.services import user_service

user_bp = Blueprint("user_bp", __name__, url_prefix="/api/v1/users")


@user_bp.route("/profile", methods=["GET"])
@login_required
def get_profile():
    return jsonify(user_service.get_user(g.current_user_id).to_dict())


@user_bp.route("/profile", methods=["PATCH"])
@login_required
def update_profile():
    data = request.get_json(silent=True) or {}
    user = user_service.update_profile(g.current_user_id, data)
    return jsonify(user.to_dict())


@user_bp.route("/health", methods=["GET"])
@login_required
def get_health():
    return jsonify(user_service.get_user(g.current_user_id).health_data())


@user_bp.route("/health", methods=["PATCH"])
@login_required
def update_health():
    data = request.get_json(silent=True) or {}
    user, updated = user_service.update_health_data(g.current_user_id, data)
    return jsonify({
        "message": "Health data updated successfully",
        "updated_fields": updated,
        "health_data": user.health_data(),
    })


@user_bp.route("/privacy", methods=["PATCH"])
@login_required
def update_privacy():
    data = request.get_json(silent=True) or {}
    user = user_service.update_privacy(g.current_user_id, data)
    return jsonify(user.to_dict()["privacy_settings"])
