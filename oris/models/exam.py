"""
ORIS Backend
Medical exam model.

Models:
    - Exam: uploaded exam document with validity window and review status
"""

from datetime import datetime, timezone

from oris.models import db
from oris.utils.helpers import as_utc


# ── Constants ────────────────────────────────────────────────────────────────

EXAM_TYPES = {"blood", "urine", "xray", "mri", "ct", "other"}
EXAM_STATUSES = {"pending", "approved", "rejected"}


class Exam(db.Model):
    """An exam file uploaded by a user, valid until ``expires_at``."""

    __tablename__ = "exams"
    __table_args__ = (
        db.Index("ix_exams_user_performed", "user_id", "performed_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(20), nullable=False)

    # Stored file
    file_url = db.Column(db.String(1000), nullable=False)
    file_original_name = db.Column(db.String(300), default="")
    file_mime_type = db.Column(db.String(100), default="")
    file_size = db.Column(db.Integer, default=0)

    description = db.Column(db.Text, default="")
    performed_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    status = db.Column(db.String(20), default="pending", index=True)
    results = db.Column(db.Text, default="")
    doctor_notes = db.Column(db.Text, default="")
    is_expired = db.Column(db.Boolean, default=False)
    notification_sent = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    user = db.relationship("User")

    def check_expiration(self, now=None):
        now = now or datetime.now(timezone.utc)
        self.is_expired = now > as_utc(self.expires_at)
        return self.is_expired

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "file": {
                "url": self.file_url,
                "original_name": self.file_original_name,
                "mime_type": self.file_mime_type,
                "size": self.file_size,
            },
            "description": self.description,
            "performed_at": as_utc(self.performed_at).isoformat(),
            "expires_at": as_utc(self.expires_at).isoformat(),
            "status": self.status,
            "results": self.results,
            "doctor_notes": self.doctor_notes,
            "is_expired": bool(self.is_expired),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Exam {self.id}: {self.type} user={self.user_id} [{self.status}]>"
