"""
Daily gamification blueprint.

Routes:
    GET  /api/v1/daily/tasks              — today's pills for the current user
    POST /api/v1/daily/checkin            — complete today's check-in
    GET  /api/v1/daily/score              — score and rank
    GET  /api/v1/daily/leaderboard        — top 10 by score
    GET  /api/v1/daily/checkin/history    — recent check-ins
"""

from flask import Blueprint, current_app, g, jsonify, request

from oris.middleware.jwt_auth import login_required
from oris.services import daily_service
from oris.utils.helpers import as_int

daily_bp = Blueprint("daily_bp", __name__, url_prefix="/api/v1/daily")


def _pill_count():
    return current_app.config.get("DAILY_PILL_COUNT", daily_service.DEFAULT_PILL_COUNT)


@daily_bp.route("/tasks", methods=["GET"])
@login_required
def daily_tasks():
    pills = daily_service.get_daily_pills(g.current_user_id, k=_pill_count())
    checkin = daily_service.get_checkin(g.current_user_id)
    done = {t["id"] for t in (checkin.tasks if checkin else []) if t.get("completed")}
    return jsonify({
        "checked_in": checkin is not None,
        "tasks": [{**p.to_dict(), "completed": p.id in done} for p in pills],
    })


@daily_bp.route("/checkin", methods=["POST"])
@login_required
def complete_checkin():
    data = request.get_json(silent=True) or {}
    checkin, user = daily_service.complete_checkin(
        g.current_user_id, data.get("tasks"), k=_pill_count(),
    )
    return jsonify({
        "message": "Check-in completed successfully",
        "points_earned": checkin.points_earned,
        "total_score": user.score,
        "checkin": checkin.to_dict(),
    }), 201


@daily_bp.route("/score", methods=["GET"])
@login_required
def score():
    return jsonify(daily_service.score_and_rank(g.current_user_id))


@daily_bp.route("/leaderboard", methods=["GET"])
@login_required
def leaderboard():
    return jsonify(daily_service.leaderboard())


@daily_bp.route("/checkin/history", methods=["GET"])
@login_required
def checkin_history():
    limit = min(max(as_int(request.args.get("limit"), 30), 1), 365)
    checkins = daily_service.checkin_history(g.current_user_id, limit=limit)
    return jsonify([c.to_dict() for c in checkins])
