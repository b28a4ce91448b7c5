"""
Caller Context Middleware: resolves who is calling, once per request.

Identity is supplied by the upstream gateway as request headers; this
service performs no authentication itself.

    X-User-Id     opaque user id
    X-User-Role   admin | leader | dept_head | staff | executive
    X-Department  department code the user belongs to

The result is stored as ``g.caller`` (an immutable CallerContext) and passed
explicitly into every engine call by the blueprints.  Requests without a
recognised role get a CallerContext with no capabilities, so every mutation
they attempt is refused with 403.
"""

import logging

from flask import g, request

from app.services.capabilities import ROLE_CAPABILITIES, caller_for_role

logger = logging.getLogger(__name__)

CALLER_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_caller_context(app):
    """Register the caller resolution hook as a before_request handler."""

    @app.before_request
    def _caller_context():
        g.caller = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in CALLER_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        user_id = (request.headers.get("X-User-Id") or "").strip() or None
        role = (request.headers.get("X-User-Role") or "").strip().lower()
        department = (request.headers.get("X-Department") or "").strip() or None

        if role and role not in ROLE_CAPABILITIES:
            logger.warning("Unknown role %r from user %s: no capabilities granted", role, user_id)

        g.caller = caller_for_role(user_id, role, department_code=department)
        return None


def current_caller():
    """CallerContext for the active request (anonymous when unresolved)."""
    caller = getattr(g, "caller", None)
    if caller is None:
        caller = caller_for_role(None, None)
    return caller
