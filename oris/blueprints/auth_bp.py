"""
Auth blueprint.

Routes:
    POST /api/v1/auth/register   — create account, returns tokens
    POST /api/v1/auth/login      — email + password, returns tokens
    POST /api/v1/auth/refresh    — rotate tokens
    POST /api/v1/auth/logout     — revoke the stored refresh token
    GET  /api/v1/auth/me         — current user
"""

from flask import Blueprint, g, jsonify, request

from oris.middleware.jwt_auth import login_required
from oris.services import user_service

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


@auth_bp.route("/register", methods=["POST"])
def register():
    data = request.get_json(silent=True) or {}
    user, tokens = user_service.register_user(data)
    return jsonify({"user": user.to_dict(), **tokens}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    user, tokens = user_service.authenticate(data.get("email"), data.get("password"))
    return jsonify({"user": user.public_profile(), "role": user.role, **tokens})


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    data = request.get_json(silent=True) or {}
    token = data.get("refresh_token") or data.get("refreshToken")
    return jsonify(user_service.refresh_tokens(token))


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    user_service.logout(g.current_user_id)
    return jsonify({"message": "Logged out successfully"})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(user_service.get_user(g.current_user_id).to_dict())
