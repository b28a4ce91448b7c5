"""
Policy Settings Blueprint: administrator configuration of the lifecycle rules.

Routes (prefix /api/v1/action-plans/settings):
  GET    /                     – effective policy (all callers)
  PUT    /                     – update policy values (admin)
  GET    /lock-schedules       – monthly lock overrides
  PUT    /lock-schedules       – create / replace one month's override (admin)
  GET    /failure-reasons      – gap categories
  POST   /failure-reasons      – add a gap category (admin)
"""

from flask import Blueprint, jsonify, request

from app.middleware.caller_context import current_caller
from app.models import db
from app.models.settings import FailureReasonOption, MonthlyLockSchedule
from app.services import plan_settings
from app.services.capabilities import require_admin
from app.services.lock_policy import parse_month_name
from app.utils.errors import E, api_error, register_service_errors
from app.utils.helpers import parse_datetime, parse_int

settings_bp = Blueprint("settings_bp", __name__, url_prefix="/api/v1/action-plans/settings")
register_service_errors(settings_bp)


@settings_bp.errorhandler(ValueError)
def _bad_value(exc):
    return api_error(E.VALIDATION_INVALID, str(exc))


@settings_bp.route("", methods=["GET"])
def get_settings():
    return jsonify(plan_settings.load_policy_settings().to_dict())


@settings_bp.route("", methods=["PUT"])
def update_settings():
    """Body: any subset of SystemSettings.EDITABLE_FIELDS."""
    caller = current_caller()
    require_admin(caller, "update_settings")
    data = request.get_json(silent=True) or {}
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No settings supplied")
    plan_settings.update_policy_settings(data, caller.actor)
    db.session.commit()
    return jsonify(plan_settings.load_policy_settings().to_dict())


@settings_bp.route("/lock-schedules", methods=["GET"])
def list_lock_schedules():
    q = MonthlyLockSchedule.query
    year = request.args.get("year", type=int)
    if year:
        q = q.filter_by(year=year)
    rows = q.order_by(MonthlyLockSchedule.year, MonthlyLockSchedule.month_index).all()
    return jsonify([r.to_dict() for r in rows])


@settings_bp.route("/lock-schedules", methods=["PUT"])
def upsert_lock_schedule():
    """Body: { month | month_index, year, lock_date?, is_force_open? }"""
    caller = current_caller()
    require_admin(caller, "upsert_lock_schedule")
    data = request.get_json(silent=True) or {}

    year = parse_int(data.get("year"), "year")
    if year is None:
        return api_error(E.VALIDATION_REQUIRED, "year is required")
    if data.get("month_index") is not None:
        month_index = parse_int(data.get("month_index"), "month_index")
    else:
        month_index = parse_month_name(data.get("month"))

    schedule = plan_settings.upsert_lock_schedule(
        month_index, year,
        lock_date=parse_datetime(data.get("lock_date")),
        force_open=bool(data.get("is_force_open", False)),
        actor=caller.actor,
    )
    db.session.commit()
    return jsonify(schedule.to_dict())


@settings_bp.route("/failure-reasons", methods=["GET"])
def list_failure_reasons():
    q = FailureReasonOption.query
    if request.args.get("active") == "true":
        q = q.filter_by(is_active=True)
    rows = q.order_by(FailureReasonOption.sort_order, FailureReasonOption.label).all()
    return jsonify([r.to_dict() for r in rows])


@settings_bp.route("/failure-reasons", methods=["POST"])
def add_failure_reason():
    """Body: { label, sort_order? }"""
    caller = current_caller()
    require_admin(caller, "add_failure_reason")
    data = request.get_json(silent=True) or {}
    option = plan_settings.add_failure_reason(
        data.get("label"), caller.actor,
        sort_order=parse_int(data.get("sort_order"), "sort_order") or 0,
    )
    db.session.commit()
    return jsonify(option.to_dict()), 201
