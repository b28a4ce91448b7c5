"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Action plan not found")
    return api_error(E.VALIDATION_REQUIRED, "department_code is required")
    return api_error(E.CONFLICT_RECALLED, str(exc), details={"plan_id": pid})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
     • ITEM_RECALLED is kept unprefixed; clients match on it to refetch
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_RECALLED = "ITEM_RECALLED"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Policy configuration missing – HTTP 422
    POLICY_CONFIG = "ERR_POLICY_CONFIG"

    # Rate limit – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500 / 503
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"
    TRANSIENT = "ERR_TRANSIENT"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_RECALLED: 409,
    E.FORBIDDEN: 403,
    E.POLICY_CONFIG: 422,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.TRANSIENT: 503,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field thresholds, conflicting ids, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── Service exception mapping ─────────────────────────────────────────
def register_service_errors(bp):
    """Map ``app.core.exceptions`` types to ``api_error`` responses on *bp*.

    Flask resolves handlers along the exception MRO, so RecalledError gets
    its dedicated ITEM_RECALLED code ahead of the generic conflict handler.
    """
    from app.core.exceptions import (
        ConflictError,
        NotFoundError,
        PermissionDenied,
        PolicyConfigError,
        RecalledError,
        TransientError,
        ValidationError,
    )

    @bp.errorhandler(ValidationError)
    def _validation(exc):
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)

    @bp.errorhandler(PermissionDenied)
    def _forbidden(exc):
        return api_error(E.FORBIDDEN, str(exc), details={"action": exc.action, "reason": exc.reason})

    @bp.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @bp.errorhandler(RecalledError)
    def _recalled(exc):
        return api_error(E.CONFLICT_RECALLED, str(exc), details={"plan_id": exc.plan_id, "refetch": True})

    @bp.errorhandler(ConflictError)
    def _conflict(exc):
        return api_error(E.CONFLICT_STATE, str(exc), details={"field": exc.field, "refetch": True})

    @bp.errorhandler(TransientError)
    def _transient(exc):
        return api_error(E.TRANSIENT, str(exc), details={"operation": exc.operation, "retry": True})

    @bp.errorhandler(PolicyConfigError)
    def _policy_config(exc):
        return api_error(E.POLICY_CONFIG, str(exc), details={"setting": exc.setting})
