"""
ORIS Backend
Notification Service.

Best-effort fan-out of domain events to per-user rooms. A room is the set
of Notification rows addressed to one user id. Delivery never raises:
failures are logged and dropped so the triggering business operation is
unaffected.

Writes happen inside a SAVEPOINT and are not committed here; the caller's
unit of work commits them together with its own changes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from oris.core.exceptions import NotFoundError, NotificationFailure
from oris.models import db
from oris.models.notification import EVENT_TITLES, Notification
from oris.models.user import User

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Delivery ──────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_id, event_name, payload=None, *, entity_type="", entity_id=None):
        """
        Deliver ``event_name`` to the room of ``user_id``.

        Returns:
            The Notification, or None when delivery failed.
        """
        try:
            with db.session.begin_nested():
                notif = Notification(
                    recipient_id=user_id,
                    event=event_name,
                    title=EVENT_TITLES.get(event_name, event_name),
                    payload=payload or {},
                    entity_type=entity_type,
                    entity_id=entity_id,
                )
                db.session.add(notif)
            return notif
        except Exception as exc:
            failure = NotificationFailure(f"{event_name} → user {user_id}: {exc}")
            logger.error("Notification delivery failed: %s", failure, exc_info=True,
                         extra={"event_name": event_name, "recipient_id": user_id})
            return None

    @staticmethod
    def notify_admins(event_name, payload=None, *, entity_type="", entity_id=None):
        """Deliver ``event_name`` to every administrator. Returns the delivered count."""
        try:
            admin_ids = [row.id for row in db.session.query(User.id).filter(User.role == "admin")]
        except Exception:
            logger.exception("Could not resolve admin recipients for %s", event_name)
            return 0

        delivered = 0
        for admin_id in admin_ids:
            if NotificationService.notify(
                admin_id, event_name, payload, entity_type=entity_type, entity_id=entity_id,
            ) is not None:
                delivered += 1
        return delivered

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """Notifications addressed to ``user_id``, newest first."""
        q = Notification.query.filter_by(recipient_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(recipient_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one of the user's notifications as read."""
        notif = db.session.get(Notification, notification_id)
        if not notif or notif.recipient_id != user_id:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all of the user's notifications as read. Returns the updated count."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(recipient_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count
