"""
ORIS Backend
Daily gamification models.

Models:
    - Pill: a small wellness task worth a number of points
    - Checkin: one user's completed daily check-in
"""

from datetime import datetime, timezone

from oris.models import db


class Pill(db.Model):
    __tablename__ = "pills"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    points = db.Column(db.Integer, default=0, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "points": self.points,
        }

    def __repr__(self):
        return f"<Pill {self.id}: {self.title} (+{self.points})>"


class Checkin(db.Model):
    """
    A user's check-in for one calendar day.

    ``tasks`` is ``[{id, completed, points}]`` where ``id`` is a Pill id.
    """

    __tablename__ = "checkins"
    __table_args__ = (
        db.UniqueConstraint("user_id", "date", name="uq_checkin_user_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    date = db.Column(db.Date, nullable=False)
    tasks = db.Column(db.JSON, default=list)
    points_earned = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "date": self.date.isoformat(),
            "tasks": list(self.tasks or []),
            "points_earned": self.points_earned,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Checkin user={self.user_id} {self.date}>"
