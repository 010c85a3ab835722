"""
Rate limiting configuration.

The Limiter instance is created in ``oris/__init__.py`` with no default
limits; this module applies limits per blueprint.

Usage:
    from oris.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

AUTH_LIMIT = "20/minute"
WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Auth endpoints:     20/minute  (credential guessing)
        - Upload-heavy areas: 60/minute
        - Reporting:          200/minute
        - Health check:       exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("auth_bp")
    if bp:
        limiter.limit(AUTH_LIMIT)(bp)

    for bp_name in ("risk_bp", "action_plan_bp", "exam_bp", "incident_report_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("risk_report_bp")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured: auth=%s write=%s read=%s",
                AUTH_LIMIT, WRITE_LIMIT, READ_LIMIT)
