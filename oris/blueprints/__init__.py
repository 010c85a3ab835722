"""
ORIS Backend
Blueprint registry and shared request helpers.
"""

from flask import current_app, request

from oris.core.exceptions import ValidationError
from oris.services.storage import StorageService

EVIDENCE_FIELD = "evidenceFiles"


def paginate_query(query, default_limit=50, max_limit=200):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)
        page   — 1-based page number; used when offset is absent

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = max(min(int(request.args.get("limit", default_limit)), max_limit), 1)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        if "offset" in request.args:
            offset = max(int(request.args["offset"]), 0)
        else:
            offset = (max(int(request.args.get("page", 1)), 1) - 1) * limit
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def request_payload():
    """JSON body, or the form fields of a multipart request."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def upload_evidence(prefix, field=EVIDENCE_FIELD):
    """Upload the multipart files under ``field``; returns ``[{url, name, type}]``."""
    files = [f for f in request.files.getlist(field) if f and f.filename]
    if not files:
        return []
    limit = current_app.config.get("MAX_EVIDENCE_FILES", 5)
    if len(files) > limit:
        raise ValidationError(
            "Too many evidence files",
            details={"evidence_files": f"at most {limit} files per request"},
        )
    uploaded = StorageService.upload_files(files, prefix=prefix)
    return [{k: item[k] for k in ("url", "name", "type")} for item in uploaded]
