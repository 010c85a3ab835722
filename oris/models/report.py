"""
ORIS Backend
Incident report models.

Models:
    - Report: free-form incident report, optionally anonymous
    - ReportComment: discussion entry on a Report
"""

from datetime import datetime, timezone

from oris.models import db


# ── Constants ────────────────────────────────────────────────────────────────

REPORT_STATUSES = {"pendente", "em_analise", "em_andamento", "resolvido", "fechado"}
REPORT_UPDATABLE_FIELDS = {"title", "description", "type", "location", "impact", "status"}


class Report(db.Model):
    """
    Incident report.

    ``user_id`` is nullable: anonymous reports keep no link to their author.
    """

    __tablename__ = "reports"
    __table_args__ = (
        db.Index("ix_reports_user_created", "user_id", "created_at"),
        db.Index("ix_reports_status_type", "status", "type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    type = db.Column(db.String(100), nullable=False)
    location = db.Column(db.String(200), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    impact = db.Column(db.String(100), nullable=False)
    attachments = db.Column(db.JSON, default=list, comment="[{url, name, type}]")
    status = db.Column(db.String(20), default="pendente", nullable=False)
    resolution = db.Column(db.Text, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    user = db.relationship("User")
    comments = db.relationship(
        "ReportComment", order_by="ReportComment.id",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self, include_comments=True):
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "type": self.type,
            "location": self.location,
            "title": self.title,
            "description": self.description,
            "impact": self.impact,
            "attachments": list(self.attachments or []),
            "status": self.status,
            "resolution": self.resolution,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_comments:
            data["comments"] = [c.to_dict() for c in self.comments]
        return data

    def __repr__(self):
        return f"<Report {self.id}: {self.title[:40]} [{self.status}]>"


class ReportComment(db.Model):
    __tablename__ = "report_comments"

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.Integer, db.ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    text = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user": self.user.to_summary() if self.user else None,
            "text": self.text,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
