"""
Exam Service — medical exam uploads and review.

Uploads are validated in full before the file goes to object storage, and
the Exam row is only written once the upload succeeded.
"""

import logging
from datetime import datetime, timedelta, timezone

from oris.core.exceptions import NotFoundError, ValidationError
from oris.models import db
from oris.models.exam import EXAM_STATUSES, EXAM_TYPES, Exam
from oris.services.storage import StorageService
from oris.utils.helpers import as_utc, parse_datetime

logger = logging.getLogger(__name__)

DESCRIPTION_MAX = 500
REVIEW_TEXT_MAX = 1000
MAX_VALIDITY_YEARS = 5


def _validate_exam(data, now):
    errors = {}
    exam_type = data.get("type")
    if exam_type not in EXAM_TYPES:
        errors["type"] = "Invalid exam type"

    performed_raw = data.get("performed_at") or data.get("performedAt")
    expires_raw = data.get("expires_at") or data.get("expiresAt")
    performed = parse_datetime(performed_raw)
    expires = parse_datetime(expires_raw)

    if not performed_raw:
        errors["performed_at"] = "Performed date is required"
    elif performed is None:
        errors["performed_at"] = "Invalid performed date format"
    elif performed > now:
        errors["performed_at"] = "Performed date cannot be in the future"

    if not expires_raw:
        errors["expires_at"] = "Expiration date is required"
    elif expires is None:
        errors["expires_at"] = "Invalid expiration date format"
    elif performed is not None and expires <= performed:
        errors["expires_at"] = "Expiration date must be after performed date"
    elif expires > now + timedelta(days=366 * MAX_VALIDITY_YEARS):
        errors["expires_at"] = f"Expiration date cannot be more than {MAX_VALIDITY_YEARS} years in the future"

    description = (data.get("description") or "").strip()
    if len(description) > DESCRIPTION_MAX:
        errors["description"] = f"Description must be less than {DESCRIPTION_MAX} characters"

    if errors:
        raise ValidationError("Invalid exam", details=errors)
    return exam_type, performed, expires, description


def upload_exam(user_id, data, file, now=None) -> Exam:
    """Validate, upload the file and persist the exam."""
    now = now or datetime.now(timezone.utc)
    exam_type, performed, expires, description = _validate_exam(data, now)
    if file is None or not file.filename:
        raise ValidationError("No file uploaded", details={"file": "is required"})

    stored = StorageService.upload_files([file], prefix=f"exams/{user_id}")[0]

    exam = Exam(
        user_id=user_id,
        type=exam_type,
        description=description,
        performed_at=performed,
        expires_at=expires,
        file_url=stored["url"],
        file_original_name=stored["name"],
        file_mime_type=stored["type"],
        file_size=stored["size"],
    )
    exam.check_expiration(now)
    db.session.add(exam)
    db.session.commit()
    logger.info("Exam %s (%s) uploaded by user %s", exam.id, exam_type, user_id)
    return exam


def list_user_exams(user_id, exam_type=None):
    q = Exam.query.filter_by(user_id=user_id)
    if exam_type is not None:
        if exam_type not in EXAM_TYPES:
            raise ValidationError("Invalid exam type", details={"type": exam_type})
        q = q.filter_by(type=exam_type)
    return q.order_by(Exam.performed_at.desc(), Exam.id.desc()).all()


def get_exam(exam_id, user_id=None) -> Exam:
    """Fetch an exam; with ``user_id`` the exam must belong to that user."""
    exam = db.session.get(Exam, exam_id)
    if not exam or (user_id is not None and exam.user_id != user_id):
        raise NotFoundError(resource="Exam", resource_id=exam_id)
    return exam


def delete_exam(exam_id, user_id):
    exam = get_exam(exam_id, user_id)
    db.session.delete(exam)
    db.session.commit()
    logger.info("Exam %s deleted by user %s", exam_id, user_id)


def review_exam(exam_id, data) -> Exam:
    """Admin review: set status and optionally results / doctor notes."""
    errors = {}
    status = data.get("status")
    if status not in EXAM_STATUSES:
        errors["status"] = "Invalid status"
    results = data.get("results")
    notes = data.get("doctor_notes", data.get("doctorNotes"))
    for field, value in (("results", results), ("doctor_notes", notes)):
        if value is not None and len(str(value).strip()) > REVIEW_TEXT_MAX:
            errors[field] = f"must be less than {REVIEW_TEXT_MAX} characters"
    if errors:
        raise ValidationError("Invalid exam review", details=errors)

    exam = get_exam(exam_id)
    exam.status = status
    if results:
        exam.results = str(results).strip()
    if notes:
        exam.doctor_notes = str(notes).strip()
    db.session.commit()
    logger.info("Exam %s reviewed: %s", exam_id, status)
    return exam


def status_by_type(user_id, now=None) -> dict:
    """Per exam type: whether the user holds an unexpired exam and until when."""
    now = now or datetime.now(timezone.utc)
    latest = {}
    for exam in Exam.query.filter_by(user_id=user_id):
        expires = as_utc(exam.expires_at)
        if expires <= now:
            continue
        if exam.type not in latest or expires > latest[exam.type]:
            latest[exam.type] = expires

    return {
        exam_type: {
            "valid": exam_type in latest,
            "expires_at": latest[exam_type].isoformat() if exam_type in latest else None,
        }
        for exam_type in sorted(EXAM_TYPES)
    }
