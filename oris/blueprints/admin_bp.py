"""
Admin blueprint — user management, dashboard stats and scheduled jobs.

Routes:
    GET    /api/v1/admin/users
    POST   /api/v1/admin/users
    GET    /api/v1/admin/users/<id>
    PATCH  /api/v1/admin/users/<id>
    DELETE /api/v1/admin/users/<id>
    GET    /api/v1/admin/stats
    GET    /api/v1/admin/scheduler/jobs
    GET    /api/v1/admin/scheduler/jobs/<job_name>
    POST   /api/v1/admin/scheduler/jobs/<job_name>/trigger
    PATCH  /api/v1/admin/scheduler/jobs/<job_name>/toggle
"""

import logging

from flask import Blueprint, g, jsonify, request

from oris.blueprints import paginate_query
from oris.middleware.jwt_auth import admin_required
from oris.services import user_service
from oris.services.scheduler_service import SchedulerService
from oris.utils.errors import E, api_error

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/v1/admin")


# ═══════════════════════════════════════════════════════════════════════════
#  USERS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/users", methods=["GET"])
@admin_required
def list_users():
    users, total = paginate_query(user_service.list_users())
    return jsonify({"items": [u.to_dict() for u in users], "total": total})


@admin_bp.route("/users", methods=["POST"])
@admin_required
def create_user():
    data = request.get_json(silent=True) or {}
    user = user_service.create_user(data)
    return jsonify(user.to_dict()), 201


@admin_bp.route("/users/<int:user_id>", methods=["GET"])
@admin_required
def get_user(user_id):
    return jsonify(user_service.get_user(user_id).to_dict())


@admin_bp.route("/users/<int:user_id>", methods=["PATCH"])
@admin_required
def update_user(user_id):
    data = request.get_json(silent=True) or {}
    user = user_service.update_user(user_id, data)
    return jsonify(user.to_dict())


@admin_bp.route("/users/<int:user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id):
    if user_id == g.current_user_id:
        return api_error(E.VALIDATION_INVALID, "Administrators cannot delete their own account")
    user_service.delete_user(user_id)
    return jsonify({"message": "User deleted successfully", "id": user_id})


@admin_bp.route("/stats", methods=["GET"])
@admin_required
def stats():
    return jsonify(user_service.admin_stats())


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/scheduler/jobs", methods=["GET"])
@admin_required
def list_scheduled_jobs():
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@admin_bp.route("/scheduler/jobs/<job_name>", methods=["GET"])
@admin_required
def get_job_status(job_name):
    return jsonify(SchedulerService.get_job_status(job_name))


@admin_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
@admin_required
def trigger_job(job_name):
    """Manually trigger a scheduled job."""
    logger.info("Admin %s triggered job %s", g.current_user_id, job_name)
    return jsonify(SchedulerService.run_job(job_name))


@admin_bp.route("/scheduler/jobs/<job_name>/toggle", methods=["PATCH"])
@admin_required
def toggle_job_status(job_name):
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if not isinstance(enabled, bool):
        return api_error(E.VALIDATION_REQUIRED, "'enabled' field is required (true/false)")
    return jsonify(SchedulerService.toggle_job(job_name, enabled))
