"""
ORIS Backend
Notification domain model.

Models:
    - Notification: one event delivered to one user's room, with read tracking
"""

from datetime import datetime, timezone

from oris.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_EVENTS = {
    "newCriticalRisk",
    "riskReclassifiedAsCritical",
    "riskStatusChanged",
    "actionPlanOverdue",
    "actionPlanDeadlineWarning",
    "examExpired",
}

EVENT_TITLES = {
    "newCriticalRisk": "New critical risk reported",
    "riskReclassifiedAsCritical": "Risk reclassified as critical",
    "riskStatusChanged": "Risk status changed",
    "actionPlanOverdue": "Action plan overdue",
    "actionPlanDeadlineWarning": "Action plan deadline approaching",
    "examExpired": "Exam expired",
}


class Notification(db.Model):
    """
    Per-user notification record.

    ``recipient_id`` is the room key: a user only ever sees rows addressed
    to their own id. One record per recipient per event.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_recipient_read", "recipient_id", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    event = db.Column(db.String(60), nullable=False, index=True)
    title = db.Column(db.String(300), nullable=False)
    payload = db.Column(db.JSON, default=dict)

    # Link to source entity
    entity_type = db.Column(db.String(30), default="", comment="risk/action_plan/exam")
    entity_id = db.Column(db.Integer, nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "event": self.event,
            "title": self.title,
            "payload": self.payload or {},
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "is_read": bool(self.is_read),
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.event} → user {self.recipient_id}>"
