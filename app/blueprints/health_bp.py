"""
Health check blueprint.

Endpoints:
    GET /api/v1/health       : simple 200 for load balancers
    GET /api/v1/health/live  : database round-trip check
"""

import logging
import time

from flask import Blueprint, jsonify

from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    """Simple readiness probe: always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check including the database."""
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks = {"database": {"status": "ok", "latency_ms": round(db_ms, 1)}}
        overall = True
    except Exception as exc:
        db.session.rollback()
        checks = {"database": {"status": "error", "detail": str(exc)}}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    status_code = 200 if overall else 503
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), status_code
