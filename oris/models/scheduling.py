"""
ORIS Backend
Scheduling models.

Models:
    - ScheduledJob: persisted schedule registry (run history + config)
    - ReportSnapshot: metadata of a generated monthly report artifact
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import event

from oris.models import db
from oris.utils.helpers import as_utc


# ── Constants ────────────────────────────────────────────────────────────────

JOB_STATUSES = {"active", "paused", "failed"}
RUN_STATUSES = {"success", "failed", "skipped"}


class ScheduledJob(db.Model):
    """
    Registry of scheduled background jobs.

    ``schedule_config`` holds a cron-like dict: ``{"minute": 0, "hour": 8}``
    or ``{"minute": 0, "hour": 3, "day": 1}``. Missing keys match any value.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="Unique job identifier: overdue_action_plans, monthly_risk_report, ...")
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(30), default="cron")
    schedule_config = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), default="active")
    is_enabled = db.Column(db.Boolean, default=True)

    # Execution tracking
    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def is_due(self, moment):
        """True when every configured cron field matches ``moment``."""
        config = self.schedule_config or {}
        checks = (
            ("minute", moment.minute),
            ("hour", moment.hour),
            ("day", moment.day),
            ("weekday", moment.weekday()),
        )
        return all(config.get(key) is None or config[key] == value for key, value in checks)

    def latest_slot(self, moment):
        """
        Most recent scheduled minute at or before ``moment``.

        Looks back at most a year; returns None when nothing matches
        (e.g. ``{"day": 31, "weekday": 0}`` never lining up).
        """
        config = self.schedule_config or {}
        hours = [config["hour"]] if config.get("hour") is not None else range(23, -1, -1)
        minutes = [config["minute"]] if config.get("minute") is not None else range(59, -1, -1)
        floor = moment.replace(second=0, microsecond=0)
        for back in range(367):
            day = floor - timedelta(days=back)
            if config.get("day") is not None and config["day"] != day.day:
                continue
            if config.get("weekday") is not None and config["weekday"] != day.weekday():
                continue
            for hour in hours:
                for minute in minutes:
                    slot = day.replace(hour=hour, minute=minute)
                    if slot <= floor:
                        return slot
        return None

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        """Record a job execution. ``last_run_at`` never moves backwards."""
        now = datetime.now(timezone.utc)
        previous = as_utc(self.last_run_at)
        self.last_run_at = max(previous, now) if previous else now
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_type": self.schedule_type,
            "schedule_config": self.schedule_config,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"


class ReportSnapshot(db.Model):
    """A written monthly report artifact. Rows are never modified."""

    __tablename__ = "report_snapshots"
    __table_args__ = (
        db.UniqueConstraint("year", "month", "generated_at", name="uq_snapshot_period_generated"),
    )

    id = db.Column(db.Integer, primary_key=True)
    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    local_path = db.Column(db.String(500), nullable=True)
    storage_url = db.Column(db.String(1000), nullable=True)
    generated_at = db.Column(db.DateTime(timezone=True),
                             default=lambda: datetime.now(timezone.utc), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "year": self.year,
            "month": self.month,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "local_path": self.local_path,
            "storage_url": self.storage_url,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }

    def __repr__(self):
        return f"<ReportSnapshot {self.year}-{self.month:02d}>"


@event.listens_for(ReportSnapshot, "before_update")
def _reject_snapshot_update(mapper, connection, target):
    raise RuntimeError(f"ReportSnapshot id={target.id} is immutable")
