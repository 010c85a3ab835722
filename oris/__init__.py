"""
ORIS Backend
Flask Application Factory.

Usage:
    from oris import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from oris.config import config
from oris.middleware.jwt_auth import init_jwt_middleware
from oris.middleware.logging_config import configure_logging
from oris.middleware.rate_limiter import init_rate_limits
from oris.middleware.timing import init_request_timing
from oris.models import db
from oris.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    if config_name == "production":
        config[config_name]()  # raises when DATABASE_URL or SECRET_KEY is missing

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from oris.models import daily as _daily_models              # noqa: F401
    from oris.models import exam as _exam_models                # noqa: F401
    from oris.models import notification as _notification_models  # noqa: F401
    from oris.models import report as _report_models            # noqa: F401
    from oris.models import risk as _risk_models                # noqa: F401
    from oris.models import scheduling as _scheduling_models    # noqa: F401
    from oris.models import user as _user_models                # noqa: F401

    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from oris.blueprints.action_plan_bp import action_plan_bp
    from oris.blueprints.admin_bp import admin_bp
    from oris.blueprints.auth_bp import auth_bp
    from oris.blueprints.daily_bp import daily_bp
    from oris.blueprints.exam_bp import exam_bp
    from oris.blueprints.health_bp import health_bp
    from oris.blueprints.incident_report_bp import incident_report_bp
    from oris.blueprints.notification_bp import notification_bp
    from oris.blueprints.risk_bp import risk_bp
    from oris.blueprints.risk_report_bp import risk_report_bp
    from oris.blueprints.user_bp import user_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(risk_bp)
    app.register_blueprint(action_plan_bp)
    app.register_blueprint(risk_report_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(daily_bp)
    app.register_blueprint(exam_bp)
    app.register_blueprint(incident_report_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler (imports the job module to register jobs) ──────────────
    from oris.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    return app
