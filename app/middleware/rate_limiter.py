"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)


def caller_rate_limit_key():
    """Rate limit per calling user when identified, else per remote IP."""
    caller = getattr(g, "caller", None)
    if caller is not None and caller.user_id:
        return f"user:{caller.user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per user, falling back to remote IP):
        - Action plan endpoints:  ACTION_PLAN_RATE_LIMIT (default 300/minute)
        - Grading endpoint:       GRADING_RATE_LIMIT     (default 60/minute)
        - Settings endpoints:     GRADING_RATE_LIMIT
        - Health check:           exempt

    Rate limiting is disabled in testing mode or when RATELIMIT_ENABLED is off.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    plan_limit = app.config.get("ACTION_PLAN_RATE_LIMIT", "300/minute")
    grading_limit = app.config.get("GRADING_RATE_LIMIT", "60/minute")

    bp = app.blueprints.get("action_plan_bp")
    if bp:
        limiter.limit(plan_limit, key_func=caller_rate_limit_key)(bp)

    grade_view = app.view_functions.get("action_plan_bp.grade")
    if grade_view:
        limiter.limit(grading_limit, key_func=caller_rate_limit_key)(grade_view)

    bp = app.blueprints.get("settings_bp")
    if bp:
        limiter.limit(grading_limit, key_func=caller_rate_limit_key)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured (action plans: %s, grading/settings: %s)",
        plan_limit, grading_limit,
    )
