"""
Engine-wide exception hierarchy.

Every service in ``app.services`` raises one of these types. The action plan
blueprint registers a single mapping from type to HTTP status, so callers
never have to import ad-hoc exception classes from service modules.

Usage:
    from app.core.exceptions import ValidationError, ConflictError

    raise ValidationError(
        "Progress note must be at least 5 characters",
        details={"progress_note": {"min_length": 5, "actual": 2}},
    )
    raise ConflictError("ActionPlan", "version", "3")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "ActionPlan").
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
    """Raised when input is missing, undersized or violates a lifecycle rule.

    Recoverable by the caller. ``details`` is keyed by field name; for
    length rules the value always carries the exact ``min_length`` so the
    caller can report the required threshold.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PermissionDenied(Exception):
    """Raised when the caller lacks a capability or a lock bypass."""

    def __init__(self, user_id: str | None, action: str, reason: str | None = None) -> None:
        msg = f"User {user_id or 'anonymous'} may not '{action}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.user_id = user_id
        self.action = action
        self.reason = reason


class ConflictError(Exception):
    """Raised when server state diverged from what the caller assumed.

    The caller must refetch the record before retrying.

    Args:
        resource: Model name.
        field: The field whose value diverged (``version``, ``status``...).
        value: The value the caller expected, if known.
        reason: Optional explanation appended to the message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} {field} conflict"
        if value is not None:
            msg += f" (expected {value!r})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class RecalledError(ConflictError):
    """Raised when a plan was pulled back to draft by its owner while being graded."""

    def __init__(self, plan_id: str) -> None:
        super().__init__(
            "ActionPlan",
            "submission_status",
            "submitted",
            reason=f"plan {plan_id} was recalled by its department; refresh and try again",
        )
        self.plan_id = plan_id


class TransientError(Exception):
    """Raised when a remote call failed or timed out. Never assume it succeeded."""

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        msg = f"{operation} failed transiently"
        if cause is not None:
            msg += f": {cause.__class__.__name__}"
        super().__init__(msg)
        self.operation = operation
        self.cause = cause


class PolicyConfigError(Exception):
    """Raised when required administrator configuration is absent.

    The operation stays blocked until an administrator configures it.
    """

    def __init__(self, setting: str, message: str | None = None) -> None:
        self.setting = setting
        super().__init__(message or f"Required configuration '{setting}' is not defined")
