"""
Notification blueprint — the current user's room.

Routes:
    GET   /api/v1/notifications                  — list (?unread=true, limit, offset)
    GET   /api/v1/notifications/unread-count
    PATCH /api/v1/notifications/<id>/read
    PATCH /api/v1/notifications/read-all
"""

from flask import Blueprint, g, jsonify, request

from oris.middleware.jwt_auth import login_required
from oris.services.notification import NotificationService
from oris.utils.helpers import as_int

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1/notifications")


@notification_bp.route("", methods=["GET"])
@login_required
def list_notifications():
    unread_only = request.args.get("unread", "false").lower() == "true"
    limit = min(max(as_int(request.args.get("limit"), 50), 1), 200)
    offset = max(as_int(request.args.get("offset"), 0), 0)

    items, total = NotificationService.list_for_user(
        g.current_user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(g.current_user_id),
    })


@notification_bp.route("/unread-count", methods=["GET"])
@login_required
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(g.current_user_id)})


@notification_bp.route("/<int:nid>/read", methods=["PATCH"])
@login_required
def mark_read(nid):
    return jsonify(NotificationService.mark_read(nid, g.current_user_id).to_dict())


@notification_bp.route("/read-all", methods=["PATCH"])
@login_required
def mark_all_read():
    return jsonify({"marked_read": NotificationService.mark_all_read(g.current_user_id)})
