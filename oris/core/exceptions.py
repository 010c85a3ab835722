"""
Platform-wide exception hierarchy.

Services raise these types; blueprints never build ad-hoc error
classes. A single set of handlers (``oris.utils.errors.register_error_handlers``)
maps them to HTTP responses so every endpoint answers the same way.

Usage:
    from oris.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="RiskReport", resource_id=42)
    raise ValidationError("Invalid risk report", details={"title": "..."})
"""


class NotFoundError(Exception):
    """Raised when a referenced record does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "RiskReport", "ActionPlan").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed or violates a business rule.

    Always raised before any persistence happens, so the caller can
    correct the payload and resubmit.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown; keys are field names, values are
                 error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class ReferentialIntegrityError(Exception):
    """Raised when deleting a record that other records still reference.

    The operation is aborted with no state change. Maps to HTTP 409.

    Args:
        resource: Entity being deleted.
        resource_id: Its PK.
        dependent: Name of the referencing entity type.
        count: How many dependents still exist.
    """

    def __init__(self, resource: str, resource_id: int, dependent: str, count: int) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.dependent = dependent
        self.count = count
        super().__init__(
            f"{resource} id={resource_id} cannot be deleted: "
            f"{count} {dependent} record(s) still reference it"
        )


class AuthenticationError(Exception):
    """Raised when credentials or tokens are missing/invalid. Maps to HTTP 401."""


class PermissionDenied(Exception):
    """Raised when the acting user lacks the required role. Maps to HTTP 403."""


class CascadeFailure(Exception):
    """The secondary RiskReport update of an action-plan completion failed.

    Never propagated to the HTTP caller: the primary ActionPlan update has
    already been committed and stands. Logged for manual reconciliation.
    """

    def __init__(self, risk_id: int, plan_id: int, cause: Exception) -> None:
        self.risk_id = risk_id
        self.plan_id = plan_id
        self.cause = cause
        super().__init__(
            f"Cascade to RiskReport id={risk_id} after completing ActionPlan "
            f"id={plan_id} failed: {cause}"
        )


class NotificationFailure(Exception):
    """Best-effort notification delivery failed. Always swallowed after logging."""


class StorageError(Exception):
    """Object storage upload failed. No partial upload is left behind."""
