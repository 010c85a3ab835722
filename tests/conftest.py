"""
Shared pytest fixtures for the ORIS backend test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - user / other_user / admin: persisted accounts
    - auth_headers / admin_headers: Bearer headers for those accounts
    - make_user / bearer: factories for extra accounts and headers
"""

import pytest

from oris import create_app
from oris.models import db as _db
from oris.models.user import User
from oris.services.jwt_service import generate_access_token
from oris.utils.crypto import hash_password


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db, tmp_path):
    """Per-test: open app context, rollback after test, recreate tables.

    Uploads and report files go to a per-test temporary directory.
    """
    app.config["STORAGE_LOCAL_DIR"] = str(tmp_path / "uploads")
    app.config["REPORTS_DIR"] = str(tmp_path / "reports")
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Accounts ─────────────────────────────────────────────────────────────


def _make_user(name="Ana Souza", email="ana@example.com", role="user", password="secret123", **extra):
    """Insert a user directly (bypasses the API)."""
    u = User(name=name, email=email, role=role, password_hash=hash_password(password), **extra)
    _db.session.add(u)
    _db.session.commit()
    return u


def _bearer(user):
    return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}


@pytest.fixture()
def user():
    return _make_user()


@pytest.fixture()
def other_user():
    return _make_user(name="Bruno Lima", email="bruno@example.com")


@pytest.fixture()
def admin():
    return _make_user(name="Carla Admin", email="carla@example.com", role="admin")


@pytest.fixture()
def auth_headers(user):
    return _bearer(user)


@pytest.fixture()
def admin_headers(admin):
    return _bearer(admin)


@pytest.fixture()
def make_user():
    """Factory fixture: ``make_user(name=..., email=..., role=...)``."""
    return _make_user


@pytest.fixture()
def bearer():
    """Factory fixture: ``bearer(user)`` → Authorization header dict."""
    return _bearer
