"""
User Service — registration, login/token lifecycle, profile and admin CRUD.
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt as pyjwt
from email_validator import EmailNotValidError, validate_email

from oris.core.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from oris.models import db
from oris.models.daily import Checkin
from oris.models.exam import Exam
from oris.models.risk import ActionPlan, ActionPlanHistoryLog, RiskHistoryLog, RiskReport
from oris.models.user import GENDERS, MOODS, SLEEP_QUALITIES, USER_ROLES, User
from oris.services.jwt_service import decode_refresh_token, generate_token_pair, hash_token
from oris.utils.crypto import hash_password, verify_password
from oris.utils.helpers import parse_date

logger = logging.getLogger(__name__)

PASSWORD_MIN = 6
PROFILE_FIELDS = {"name", "company", "department", "position", "gender", "phone", "birth_date"}
ADMIN_UPDATE_FIELDS = {"name", "email", "role", "health_data"}


# ═══════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════
def _normalize_email(email) -> str:
    try:
        valid = validate_email(str(email or ""), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError("Invalid email", details={"email": str(e)})
    return valid.normalized.lower()


def _check_role(role):
    if role not in USER_ROLES:
        raise ValidationError(
            "Invalid role", details={"role": 'must be either "user" or "admin"'},
        )
    return role


def _ensure_email_free(email, exclude_id=None):
    q = User.query.filter(User.email == email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    if q.first():
        raise ConflictError(resource="User", field="email", value=email)


def _non_negative(value, field, errors, cast=float):
    try:
        number = cast(value)
    except (TypeError, ValueError):
        errors[field] = "must be a positive number"
        return None
    if number < 0:
        errors[field] = "must be a positive number"
        return None
    return number


def apply_health_data(user, data):
    """Apply a health-data patch; returns the list of updated field names.

    ``blood_pressure`` accepts ``"120/80"`` or ``{"systolic", "diastolic"}``.
    """
    errors = {}
    updated = []

    for field in ("weight", "height"):
        if data.get(field) is not None:
            value = _non_negative(data[field], field, errors)
            if value is not None:
                setattr(user, field, value)
                updated.append(field)

    bp = data.get("blood_pressure", data.get("bloodPressure"))
    if bp is not None:
        if isinstance(bp, str):
            parts = bp.split("/")
            bp = {"systolic": parts[0], "diastolic": parts[1]} if len(parts) == 2 else {}
        systolic = _non_negative(bp.get("systolic"), "blood_pressure", errors, int) if bp else None
        diastolic = _non_negative(bp.get("diastolic"), "blood_pressure", errors, int) if bp else None
        if systolic is None or diastolic is None:
            errors["blood_pressure"] = "expected '120/80' or {systolic, diastolic}"
        else:
            user.blood_pressure_systolic = systolic
            user.blood_pressure_diastolic = diastolic
            updated.append("blood_pressure")

    checkup = data.get("last_checkup", data.get("lastCheckup"))
    if checkup is not None:
        parsed = parse_date(checkup)
        if parsed is None:
            errors["last_checkup"] = "Invalid checkup date"
        else:
            user.last_checkup = parsed
            updated.append("last_checkup")

    for field, allowed in (("sleep_quality", SLEEP_QUALITIES), ("mood", MOODS)):
        if data.get(field) is not None:
            if data[field] not in allowed:
                errors[field] = f"must be one of: {', '.join(sorted(allowed))}"
            else:
                setattr(user, field, data[field])
                updated.append(field)

    if data.get("flu_symptoms") is not None:
        user.flu_symptoms = bool(data["flu_symptoms"])
        updated.append("flu_symptoms")

    if errors:
        raise ValidationError("Invalid health data", details=errors)
    return updated


def _apply_profile(user, data):
    errors = {}
    for field in PROFILE_FIELDS & data.keys():
        value = data[field]
        if field == "name":
            if not str(value or "").strip():
                errors["name"] = "Name is required"
                continue
            value = str(value).strip()
        elif field == "gender" and value is not None and value not in GENDERS:
            errors["gender"] = f"must be one of: {', '.join(sorted(GENDERS))}"
            continue
        elif field == "birth_date":
            value = parse_date(value)
        setattr(user, field, value)
    if errors:
        raise ValidationError("Invalid profile", details=errors)


# ═══════════════════════════════════════════════════════════════
# Auth
# ═══════════════════════════════════════════════════════════════
def _issue_tokens(user) -> dict:
    pair = generate_token_pair(user.id, user.role)
    user.refresh_token_hash = pair["token_hash"]
    return {
        "access_token": pair["access_token"],
        "refresh_token": pair["refresh_token"],
        "token_type": pair["token_type"],
        "expires_in": pair["expires_in"],
    }


def register_user(data) -> tuple[User, dict]:
    """Create a user account and log it in. Returns ``(user, tokens)``.

    Self-registered accounts are always ``user``; admins are created
    through :func:`create_user`.
    """
    errors = {}
    name = str(data.get("name") or "").strip()
    if not name:
        errors["name"] = "Name is required"
    password = data.get("password") or ""
    if len(password) < PASSWORD_MIN:
        errors["password"] = f"Password must be at least {PASSWORD_MIN} characters long"
    if errors:
        raise ValidationError("Invalid registration", details=errors)

    email = _normalize_email(data.get("email"))
    role = "user"
    _ensure_email_free(email)

    user = User(name=name, email=email, password_hash=hash_password(password), role=role)
    _apply_profile(user, {k: v for k, v in data.items() if k in PROFILE_FIELDS - {"name"}})
    db.session.add(user)
    db.session.flush()
    tokens = _issue_tokens(user)
    db.session.commit()
    logger.info("User %s registered (%s)", user.id, role)
    return user, tokens


def authenticate(email, password) -> tuple[User, dict]:
    """Verify credentials and issue a fresh token pair."""
    if not email or not password:
        raise ValidationError(
            "Email and password are required",
            details={k: "is required" for k, v in (("email", email), ("password", password)) if not v},
        )
    user = User.query.filter_by(email=str(email).strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        logger.warning("Failed login for %s", email)
        raise AuthenticationError("Invalid credentials")

    user.last_login = datetime.now(timezone.utc)
    tokens = _issue_tokens(user)
    db.session.commit()
    return user, tokens


def refresh_tokens(refresh_token) -> dict:
    """Rotate the token pair. The presented refresh token must be the stored one."""
    try:
        payload = decode_refresh_token(refresh_token or "")
    except pyjwt.ExpiredSignatureError:
        raise AuthenticationError("Refresh token expired")
    except pyjwt.InvalidTokenError:
        raise AuthenticationError("Invalid refresh token")

    user = db.session.get(User, payload["sub"])
    if not user or user.refresh_token_hash != hash_token(refresh_token):
        raise AuthenticationError("Invalid refresh token")

    tokens = _issue_tokens(user)
    db.session.commit()
    return tokens


def logout(user_id):
    user = get_user(user_id)
    user.refresh_token_hash = None
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Self-service profile
# ═══════════════════════════════════════════════════════════════
def get_user(user_id) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def update_profile(user_id, data) -> User:
    user = get_user(user_id)
    _apply_profile(user, data)
    if isinstance(data.get("health_data"), dict):
        apply_health_data(user, data["health_data"])
    if isinstance(data.get("privacy_settings"), dict):
        update_privacy(user_id, data["privacy_settings"], commit=False)
    db.session.commit()
    return user


def update_health_data(user_id, data) -> tuple[User, list]:
    user = get_user(user_id)
    updated = apply_health_data(user, data)
    if not updated:
        raise ValidationError(
            "No valid health data provided for update",
            details={"available_fields": "weight, height, blood_pressure, last_checkup, "
                                         "sleep_quality, mood, flu_symptoms"},
        )
    db.session.commit()
    return user, updated


def update_privacy(user_id, data, commit=True) -> User:
    user = get_user(user_id)
    errors = {}
    for field in ("share_health_data", "share_activity"):
        if field in data:
            if not isinstance(data[field], bool):
                errors[field] = f"{field} must be a boolean"
            else:
                setattr(user, field, data[field])
    if errors:
        raise ValidationError("Invalid privacy settings", details=errors)
    if commit:
        db.session.commit()
    return user


# ═══════════════════════════════════════════════════════════════
# Admin CRUD
# ═══════════════════════════════════════════════════════════════
def list_users():
    return User.query.order_by(User.created_at.desc(), User.id.desc())


def create_user(data) -> User:
    """Admin-created account; no tokens are issued."""
    errors = {}
    name = str(data.get("name") or "").strip()
    if not name:
        errors["name"] = "Name is required"
    password = data.get("password") or ""
    if len(password) < PASSWORD_MIN:
        errors["password"] = f"Password must be at least {PASSWORD_MIN} characters long"
    if errors:
        raise ValidationError("Invalid user", details=errors)

    email = _normalize_email(data.get("email"))
    role = _check_role(data.get("role") or "user")
    _ensure_email_free(email)

    user = User(name=name, email=email, password_hash=hash_password(password), role=role)
    db.session.add(user)
    db.session.commit()
    logger.info("Admin created user %s (%s)", user.id, role)
    return user


def update_user(user_id, data) -> User:
    """Admin update restricted to name, email, role and health data."""
    invalid = set(data) - ADMIN_UPDATE_FIELDS
    if invalid:
        raise ValidationError("Invalid updates", details={f: "not updatable" for f in sorted(invalid)})

    user = get_user(user_id)
    if "name" in data:
        _apply_profile(user, {"name": data["name"]})
    if "email" in data:
        email = _normalize_email(data["email"])
        _ensure_email_free(email, exclude_id=user.id)
        user.email = email
    if "role" in data:
        user.role = _check_role(data["role"])
    if isinstance(data.get("health_data"), dict):
        apply_health_data(user, data["health_data"])
    db.session.commit()
    return user


def delete_user(user_id):
    """Delete a user with their exams and check-ins.

    Users still referenced by risk reports, action plans or any status
    history entry cannot be deleted; history rows are never rewritten.
    """
    user = get_user(user_id)
    for model, column, label in (
        (RiskReport, RiskReport.reporter_id, "RiskReport"),
        (ActionPlan, ActionPlan.responsible_id, "ActionPlan"),
        (RiskHistoryLog, RiskHistoryLog.updated_by, "RiskHistoryLog"),
        (ActionPlanHistoryLog, ActionPlanHistoryLog.updated_by, "ActionPlanHistoryLog"),
    ):
        count = model.query.filter(column == user.id).count()
        if count:
            raise ReferentialIntegrityError(
                resource="User", resource_id=user.id, dependent=label, count=count,
            )

    Exam.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    Checkin.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    db.session.delete(user)
    db.session.commit()
    logger.info("User %s deleted", user_id)


def admin_stats(now=None) -> dict:
    """User and exam statistics for the admin dashboard."""
    now = now or datetime.now(timezone.utc)
    thirty_days_ago = now - timedelta(days=30)
    soon = now + timedelta(days=15)

    exams_by_type = db.session.query(Exam.type, db.func.count(Exam.id)).group_by(Exam.type).all()
    exams_by_status = db.session.query(Exam.status, db.func.count(Exam.id)).group_by(Exam.status).all()
    top_users = (
        User.query.filter_by(role="user")
        .order_by(User.score.desc(), User.id)
        .limit(5).all()
    )

    return {
        "total_users": User.query.filter_by(role="user").count(),
        "recent_users": User.query.filter(User.created_at >= thirty_days_ago).count(),
        "active_users": User.query.filter(User.last_login >= thirty_days_ago).count(),
        "total_exams": Exam.query.count(),
        "pending_exams": Exam.query.filter_by(status="pending").count(),
        "expired_exams": Exam.query.filter_by(is_expired=True).count(),
        "expiring_soon": Exam.query.filter(Exam.expires_at >= now, Exam.expires_at <= soon).count(),
        "exams_by_type": {t: c for t, c in exams_by_type},
        "exams_by_status": {s: c for s, c in exams_by_status},
        "top_users": [{"id": u.id, "name": u.name, "score": u.score or 0} for u in top_users],
    }
