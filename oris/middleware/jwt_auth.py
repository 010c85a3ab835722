"""
JWT Auth Middleware — parses ``Authorization: Bearer <token>`` into ``g``.

    g.current_user_id  → int user id, or None
    g.current_role     → "user" | "admin" | None
    g.is_admin         → bool

The hook never rejects a request by itself; ``login_required`` and
``admin_required`` decide per view.
"""

import logging
from functools import wraps

import jwt as pyjwt
from flask import g, request

from oris.core.exceptions import AuthenticationError, PermissionDenied
from oris.models import db
from oris.models.user import User
from oris.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/register",
    "/api/v1/auth/refresh",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user_id = None
        g.current_role = None
        g.is_admin = False
        g.auth_error = None

        path = request.path
        if not path.startswith("/api/v1/") or path.startswith(JWT_SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        try:
            payload = decode_access_token(auth_header[7:])
        except pyjwt.ExpiredSignatureError:
            g.auth_error = "Token expired"
            return
        except pyjwt.InvalidTokenError:
            g.auth_error = "Invalid token"
            return

        # The role in the token may be stale; the stored user is authoritative.
        user = db.session.get(User, payload["sub"])
        if user is None:
            g.auth_error = "User no longer exists"
            return
        g.current_user_id = user.id
        g.current_role = user.role
        g.is_admin = user.is_admin


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "current_user_id", None) is None:
            raise AuthenticationError(getattr(g, "auth_error", None) or "Please authenticate.")
        return fn(*args, **kwargs)
    return wrapper


def admin_required(fn):
    """Authenticated and ``role == "admin"``."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "current_user_id", None) is None:
            raise AuthenticationError(getattr(g, "auth_error", None) or "Please authenticate.")
        if not g.is_admin:
            logger.warning("User %s denied admin access to %s", g.current_user_id, request.path)
            raise PermissionDenied("Access denied. Admin only.")
        return fn(*args, **kwargs)
    return wrapper
