"""
ORIS Backend
Occupational-risk domain models.

Models:
    - RiskReport: a reported hazard with lifecycle status and audit trail
    - RiskHistoryLog: append-only status audit entry of a RiskReport
    - ActionPlan: remediation task tied to exactly one RiskReport
    - ActionPlanHistoryLog: append-only status audit entry of an ActionPlan

Architecture chain: RiskReport → ActionPlan (0..n)

Status values are closed ``enum.Enum`` types stored by value. The stored
values are the labels used by the field teams (Portuguese); member names
are the English identifiers used in code.
"""

import enum
import re
from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.orm import validates

from oris.core.exceptions import ValidationError
from oris.models import db


# ── Enumerations ─────────────────────────────────────────────────────────────

class LabeledEnum(str, enum.Enum):
    """String enum that also accepts its member name as input.

    ``RiskStatus.parse("Em Tratamento")``, ``RiskStatus.parse("IN_TREATMENT")``
    and ``RiskStatus.parse("InTreatment")`` all return ``RiskStatus.IN_TREATMENT``.
    """

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValueError(f"{cls.__name__} value is required")
        raw = str(value).strip()
        for member in cls:
            if member.value == raw:
                return member
        key = re.sub(r"[^a-z0-9]", "", raw.lower())
        for member in cls:
            if member.name.replace("_", "").lower() == key:
                return member
        raise ValueError(f"Invalid {cls.__name__}: {value!r}")

    @classmethod
    def values(cls):
        return [m.value for m in cls]


class RiskCategory(LabeledEnum):
    INFRASTRUCTURE = "Infraestrutura"
    CONDUCT = "Conduta"
    ENVIRONMENTAL = "Ambiental"
    OTHER = "Outro"


class RiskPriority(LabeledEnum):
    LOW = "Baixa"
    MEDIUM = "Média"
    HIGH = "Alta"
    CRITICAL = "Crítica"


class RiskStatus(LabeledEnum):
    OPEN = "Aberto"
    IN_TREATMENT = "Em Tratamento"
    RESOLVED = "Resolvido"
    CANCELLED = "Cancelado"


class ActionPlanStatus(LabeledEnum):
    PENDING = "Pendente"
    IN_PROGRESS = "Em Andamento"
    COMPLETED = "Concluído"


def _enum_column(enum_cls, name):
    return db.Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=30,
        values_callable=lambda cls: [m.value for m in cls],
        validate_strings=True,
    )


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt else None


# ═══════════════════════════════════════════════════════════════════════════
#  HISTORY LOGS (append-only)
# ═══════════════════════════════════════════════════════════════════════════

class RiskHistoryLog(db.Model):
    """One status transition of a RiskReport. Never updated after insert."""

    __tablename__ = "risk_history_logs"

    id = db.Column(db.Integer, primary_key=True)
    risk_id = db.Column(
        db.Integer, db.ForeignKey("risk_reports.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    status = db.Column(_enum_column(RiskStatus, "risk_status"), nullable=False)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=True)
    comment = db.Column(db.Text, default="")
    timestamp = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    updated_by_user = db.relationship("User", foreign_keys=[updated_by])

    def to_dict(self):
        return {
            "id": self.id,
            "status": self.status.value,
            "updated_by": self.updated_by,
            "updated_by_user": self.updated_by_user.to_summary() if self.updated_by_user else None,
            "comment": self.comment,
            "timestamp": _iso(self.timestamp),
        }


class ActionPlanHistoryLog(db.Model):
    """One status transition of an ActionPlan. Never updated after insert."""

    __tablename__ = "action_plan_history_logs"

    id = db.Column(db.Integer, primary_key=True)
    action_plan_id = db.Column(
        db.Integer, db.ForeignKey("action_plans.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    status = db.Column(_enum_column(ActionPlanStatus, "action_plan_status"), nullable=False)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=True)
    comment = db.Column(db.Text, default="")
    timestamp = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    updated_by_user = db.relationship("User", foreign_keys=[updated_by])

    def to_dict(self):
        return {
            "id": self.id,
            "status": self.status.value,
            "updated_by": self.updated_by,
            "updated_by_user": self.updated_by_user.to_summary() if self.updated_by_user else None,
            "comment": self.comment,
            "timestamp": _iso(self.timestamp),
        }


@event.listens_for(RiskHistoryLog, "before_update")
@event.listens_for(ActionPlanHistoryLog, "before_update")
def _reject_history_update(mapper, connection, target):
    raise RuntimeError(
        f"{type(target).__name__} id={target.id} is append-only and cannot be modified"
    )


# ═══════════════════════════════════════════════════════════════════════════
#  RISK REPORT
# ═══════════════════════════════════════════════════════════════════════════

class RiskReport(db.Model):
    """
    A reported occupational/operational hazard.

    ``status`` always equals ``history_logs[-1].status``; use
    :meth:`record_status` for every status change so both move together.
    """

    __tablename__ = "risk_reports"
    __table_args__ = (
        db.Index("ix_risk_reports_status_priority", "status", "priority"),
        db.Index("ix_risk_reports_reporter_created", "reporter_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(_enum_column(RiskCategory, "risk_category"), nullable=False, index=True)
    location = db.Column(db.String(200), nullable=False, index=True)
    priority = db.Column(_enum_column(RiskPriority, "risk_priority"), nullable=False)
    status = db.Column(_enum_column(RiskStatus, "risk_status"), nullable=False, default=RiskStatus.OPEN)
    reporter_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    assigned_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    evidence_files = db.Column(db.JSON, default=list, comment="[{url, name, type}]")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    reporter = db.relationship("User", foreign_keys=[reporter_id])
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])
    history_logs = db.relationship(
        "RiskHistoryLog",
        order_by="RiskHistoryLog.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    action_plans = db.relationship(
        "ActionPlan", back_populates="risk", lazy="dynamic", passive_deletes="all",
    )

    def record_status(self, status, updated_by, comment, timestamp=None):
        """Set the status and append the matching audit entry."""
        self.status = status
        self.history_logs.append(RiskHistoryLog(
            status=status,
            updated_by=updated_by,
            comment=comment,
            timestamp=timestamp or _utcnow(),
        ))

    def first_log_with_status(self, status):
        return next((log for log in self.history_logs if log.status == status), None)

    def to_dict(self, include_history=True):
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "location": self.location,
            "priority": self.priority.value,
            "status": self.status.value,
            "reporter_id": self.reporter_id,
            "reporter": self.reporter.to_summary() if self.reporter else None,
            "assigned_to_id": self.assigned_to_id,
            "assigned_to": self.assigned_to.to_summary() if self.assigned_to else None,
            "evidence_files": list(self.evidence_files or []),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_history:
            data["history_logs"] = [log.to_dict() for log in self.history_logs]
        return data

    def to_summary(self):
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category.value,
            "priority": self.priority.value,
            "status": self.status.value,
        }

    def __repr__(self):
        return f"<RiskReport {self.id}: {self.title[:40]} [{self.status.value}]>"


# ═══════════════════════════════════════════════════════════════════════════
#  ACTION PLAN
# ═══════════════════════════════════════════════════════════════════════════

class ActionPlan(db.Model):
    """
    A remediation task for exactly one RiskReport.

    ``risk_id`` is fixed at creation. ``status`` always equals
    ``history_logs[-1].status``.
    """

    __tablename__ = "action_plans"

    id = db.Column(db.Integer, primary_key=True)
    risk_id = db.Column(
        db.Integer, db.ForeignKey("risk_reports.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    responsible_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    description = db.Column(db.Text, nullable=False)
    deadline = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(
        _enum_column(ActionPlanStatus, "action_plan_status"),
        nullable=False, default=ActionPlanStatus.PENDING, index=True,
    )
    evidence_files = db.Column(db.JSON, default=list, comment="[{url, name, type}]")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    risk = db.relationship("RiskReport", back_populates="action_plans")
    responsible = db.relationship("User", foreign_keys=[responsible_id])
    history_logs = db.relationship(
        "ActionPlanHistoryLog",
        order_by="ActionPlanHistoryLog.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @validates("risk_id")
    def _validate_risk_id(self, key, value):
        if self.risk_id is not None and value != self.risk_id:
            raise ValidationError(
                "riskId cannot be changed after creation",
                details={"risk_id": "immutable"},
            )
        return value

    def record_status(self, status, updated_by, comment, timestamp=None):
        """Set the status and append the matching audit entry."""
        self.status = status
        self.history_logs.append(ActionPlanHistoryLog(
            status=status,
            updated_by=updated_by,
            comment=comment,
            timestamp=timestamp or _utcnow(),
        ))

    def first_log_with_status(self, status):
        return next((log for log in self.history_logs if log.status == status), None)

    def to_dict(self, include_history=True):
        data = {
            "id": self.id,
            "risk_id": self.risk_id,
            "risk": self.risk.to_summary() if self.risk else None,
            "responsible_id": self.responsible_id,
            "responsible": self.responsible.to_summary() if self.responsible else None,
            "description": self.description,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "status": self.status.value,
            "evidence_files": list(self.evidence_files or []),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_history:
            data["history_logs"] = [log.to_dict() for log in self.history_logs]
        return data

    def __repr__(self):
        return f"<ActionPlan {self.id} risk={self.risk_id} [{self.status.value}]>"
