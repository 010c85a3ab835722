"""
ORIS Backend
Scheduler Service.

Lightweight background job scheduler. Job functions are registered with
``@register_job(name)`` and persisted as ``ScheduledJob`` rows that carry
their cron-like schedule and run history.

Architecture:
    - SchedulerService: job registration, persistence and execution
    - Jobs run inside the Flask app context and receive the app
    - Manual trigger / toggle via the admin API
    - Optional polling thread (``SCHEDULER_ENABLED``) fires each scheduled
      slot once, catching up slots a late poll stepped over
    - Each slot is claimed with a conditional UPDATE before it runs, so
      several workers polling the same DB run it once
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import nullcontext
from datetime import datetime, timedelta, timezone
from typing import Callable

from flask import Flask, has_app_context
from sqlalchemy import or_, update

from oris.core.exceptions import NotFoundError
from oris.models import db
from oris.models.scheduling import ScheduledJob
from oris.utils.helpers import as_utc

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("overdue_action_plans")
        def overdue_action_plans(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Lightweight scheduler service.

    Manages job registration, persistence, and execution.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None
    _stop: threading.Event | None = None
    _thread: threading.Thread | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        # Importing the module registers the jobs.
        from oris.services import scheduled_jobs  # noqa: F401

        cls._app = app
        app.extensions["scheduler"] = cls
        cls.ensure_jobs_registered()
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

        if app.config.get("SCHEDULER_ENABLED"):
            cls.start(app.config.get("SCHEDULER_POLL_SECONDS", 60))

    @classmethod
    def _context(cls):
        """Reuse the caller's app context when there is one."""
        return nullcontext() if has_app_context() else cls._app.app_context()

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config.
        """
        if not cls._app:
            return []

        created = []
        with cls._context():
            for name, fn in _job_registry.items():
                if ScheduledJob.query.filter_by(job_name=name).first():
                    continue
                schedule = _get_default_schedule(name)
                job = ScheduledJob(
                    job_name=name,
                    description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                    schedule_type="cron",
                    schedule_config=schedule,
                    status="active",
                    is_enabled=True,
                )
                db.session.add(job)
                created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    # ── Execution ─────────────────────────────────────────────────────────

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Job failures are logged and recorded, never raised.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            raise NotFoundError(resource="ScheduledJob", resource_id=job_name)
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        with cls._context():
            try:
                result = fn(cls._app)
            except Exception as exc:
                db.session.rollback()
                status = "failed"
                error = str(exc)
                logger.exception("Job %s failed: %s", job_name, exc,
                                 extra={"job_name": job_name})

            duration_ms = int((time.monotonic() - start) * 1000)
            if status == "success":
                logger.info("Job %s finished", job_name,
                            extra={"job_name": job_name, "duration_ms": duration_ms})

            try:
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception("Failed to update job record for %s", job_name)

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def _pending_slot(cls, job: ScheduledJob, moment: datetime) -> datetime | None:
        """The scheduled minute ``job`` still owes at ``moment``, if any.

        A job that has run before catches up its latest missed slot however
        late the poll is; one that never ran only within the catch-up window.
        """
        slot = job.latest_slot(moment)
        if slot is None:
            return None
        last = as_utc(job.last_run_at)
        if last is not None:
            return slot if last < slot else None
        window = timedelta(minutes=cls._app.config.get("SCHEDULER_CATCHUP_MINUTES", 60))
        return slot if moment - slot <= window else None

    @classmethod
    def due_jobs(cls, moment: datetime) -> list[str]:
        """Names of enabled jobs with a scheduled slot at or before ``moment``
        that has not run yet."""
        moment = as_utc(moment)
        return [name for name, _slot in cls._due_slots(moment)]

    @classmethod
    def _due_slots(cls, moment: datetime) -> list[tuple[str, datetime]]:
        due = []
        for job in ScheduledJob.query.filter_by(is_enabled=True).order_by(ScheduledJob.id):
            if job.job_name not in _job_registry:
                continue
            slot = cls._pending_slot(job, moment)
            if slot is not None:
                due.append((job.job_name, slot))
        return due

    @classmethod
    def claim(cls, job_name: str, slot: datetime) -> bool:
        """
        Atomically mark ``slot`` as taken for ``job_name``.

        Only one caller (thread, worker process) wins a given slot; the
        conditional UPDATE is the lock.
        """
        outcome = db.session.execute(
            update(ScheduledJob)
            .where(
                ScheduledJob.job_name == job_name,
                or_(ScheduledJob.last_run_at.is_(None), ScheduledJob.last_run_at < slot),
            )
            .values(last_run_at=slot)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return outcome.rowcount == 1

    @classmethod
    def tick(cls, moment: datetime | None = None) -> list[dict]:
        """Run every job due at ``moment`` (defaults to now, UTC).

        Jobs whose slot was already claimed elsewhere are skipped.
        """
        moment = as_utc(moment) if moment else datetime.now(timezone.utc)
        with cls._context():
            claimed = []
            for name, slot in cls._due_slots(moment):
                if cls.claim(name, slot):
                    claimed.append(name)
                else:
                    logger.info("Job %s slot %s already claimed, skipping", name, slot.isoformat())
        return [cls.run_job(name) for name in claimed]

    # ── Polling thread ────────────────────────────────────────────────────

    @classmethod
    def start(cls, poll_seconds: int = 60) -> None:
        if cls._thread and cls._thread.is_alive():
            return
        cls._stop = threading.Event()

        def _loop():
            while not cls._stop.is_set():
                try:
                    cls.tick()
                except Exception:
                    logger.exception("Scheduler tick failed")
                cls._stop.wait(poll_seconds)

        cls._thread = threading.Thread(target=_loop, name="oris-scheduler", daemon=True)
        cls._thread.start()
        logger.info("Scheduler polling thread started (every %ss)", poll_seconds)

    @classmethod
    def stop(cls) -> None:
        if cls._stop:
            cls._stop.set()
        if cls._thread:
            cls._thread.join(timeout=5)
        cls._thread = None

    # ── Admin API helpers ─────────────────────────────────────────────────

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict:
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            raise NotFoundError(resource="ScheduledJob", resource_id=job_name)
        return job_record.to_dict()

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict:
        """Enable or disable a scheduled job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            raise NotFoundError(resource="ScheduledJob", resource_id=job_name)
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        db.session.commit()
        logger.info("Scheduled job %s %s", job_name, "enabled" if enabled else "paused")
        return job_record.to_dict()


def _get_default_schedule(job_name: str) -> dict:
    """Return default schedule config for known job types."""
    defaults = {
        "overdue_action_plans": {"hour": 8, "minute": 0, "description": "Daily at 08:00"},
        "upcoming_deadlines": {"hour": 8, "minute": 0, "description": "Daily at 08:00"},
        "monthly_risk_report": {"day": 1, "hour": 3, "minute": 0,
                                "description": "Day 1 of each month at 03:00"},
        "expired_exams": {"hour": 2, "minute": 0, "description": "Daily at 02:00"},
    }
    return defaults.get(job_name, {"hour": 0, "minute": 0, "description": "Daily at midnight"})
