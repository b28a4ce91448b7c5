"""
Action Plan Blueprint: lifecycle engine over HTTP.

Routes (prefix /api/v1/action-plans):
  GET    /                                 – list plans (department_code, month, year, status)
  POST   /                                 – create an Open draft plan
  GET    /<plan_id>                        – plan + display status, lock, edit mode
  PATCH  /<plan_id>                        – update planning fields (full edit mode)
  GET    /<plan_id>/lock                   – lock result for the caller
  GET    /<plan_id>/timeline               – progress / blocker timeline
  POST   /<plan_id>/transition             – status transition or execution update
  POST   /<plan_id>/grade                  – grade / regrade a submitted plan
  POST   /<plan_id>/recall                 – pull a submission back to draft
  POST   /<plan_id>/drop-decision          – approve / reject a pending drop
  POST   /<plan_id>/unlock-request         – ask for a temporal unlock
  POST   /<plan_id>/unlock-decision        – approve / reject an unlock request
  POST   /<plan_id>/escalation/resolve     – resolve a Management_BOD blocker
  GET    /pending-drops                    – drop requests awaiting approval
  GET    /escalations                      – management escalation queue
  POST   /finalize                         – submit a department's month report

Identity comes from ``g.caller`` (see middleware/caller_context).  Service
exceptions are mapped to JSON errors by ``register_service_errors``.
"""

import logging

from flask import Blueprint, jsonify, request

from app.middleware.caller_context import current_caller
from app.services import escalation, grading, lock_policy, plan_lifecycle, resolution_policy
from app.services.plan_settings import load_policy_settings
from app.services.plan_store import fetch_plan
from app.utils.errors import E, api_error, register_service_errors
from app.utils.helpers import parse_int

logger = logging.getLogger(__name__)

action_plan_bp = Blueprint("action_plan_bp", __name__, url_prefix="/api/v1/action-plans")
register_service_errors(action_plan_bp)


# ── helpers ──────────────────────────────────────────────────────────────

def _body():
    return request.get_json(silent=True) or {}


def _flag(data, key="date_override"):
    value = data.get(key, request.args.get(key))
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _expected_version(data):
    return parse_int(data.get("expected_version"), "expected_version")


@action_plan_bp.errorhandler(ValueError)
def _bad_value(exc):
    return api_error(E.VALIDATION_INVALID, str(exc))


# ═════════════════════════════════════════════════════════════════════════════
# PLANS
# ═════════════════════════════════════════════════════════════════════════════

@action_plan_bp.route("", methods=["GET"])
def list_plans():
    """List plans with derived state for the caller."""
    items = plan_lifecycle.list_plans(
        current_caller(),
        department_code=request.args.get("department_code"),
        month=request.args.get("month"),
        year=request.args.get("year", type=int),
        status=request.args.get("status"),
    )
    return jsonify({"items": items, "total": len(items)})


@action_plan_bp.route("", methods=["POST"])
def create_plan():
    """Create a plan.

    Body: { department_code?, month, year, action_plan, goal_strategy?, indicator?,
            pic?, category?, report_format? }
    """
    result = plan_lifecycle.create_plan(_body(), current_caller())
    return jsonify(result), 201


@action_plan_bp.route("/<plan_id>", methods=["GET"])
def get_plan(plan_id):
    return jsonify(plan_lifecycle.get_plan(plan_id, current_caller(), date_override=_flag({})))


@action_plan_bp.route("/<plan_id>", methods=["PATCH"])
def update_plan(plan_id):
    """Body: { <planning fields>, expected_version?, date_override? }"""
    data = _body()
    fields = {k: v for k, v in data.items() if k not in ("expected_version", "date_override")}
    result = plan_lifecycle.update_planning_fields(
        plan_id, fields, current_caller(),
        expected_version=_expected_version(data),
        date_override=_flag(data),
    )
    return jsonify(result)


@action_plan_bp.route("/<plan_id>/lock", methods=["GET"])
def get_lock(plan_id):
    caller = current_caller()
    plan = fetch_plan(plan_id)
    lock = lock_policy.compute_lock(plan, caller, load_policy_settings(), date_override=_flag({}))
    return jsonify({
        "plan_id": plan.id,
        "lock": lock.to_dict(),
        "edit_mode": lock_policy.resolve_edit_mode(caller, lock).value,
    })


@action_plan_bp.route("/<plan_id>/timeline", methods=["GET"])
def get_timeline(plan_id):
    return jsonify(plan_lifecycle.get_timeline(plan_id))


# ═════════════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ═════════════════════════════════════════════════════════════════════════════

@action_plan_bp.route("/<plan_id>/transition", methods=["POST"])
def transition(plan_id):
    """Move a plan to a new status.

    Body: { status, progress_note?, resolution_note?, blocker_category?,
            blocker_reason?, attention_level?, gap_category?, gap_analysis?,
            specify_reason?, follow_up?, attachments?, remark?,
            expected_version?, date_override? }
    """
    data = _body()
    status = (data.get("status") or "").strip()
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    result = plan_lifecycle.transition_plan(
        plan_id, status, data, current_caller(),
        expected_version=_expected_version(data),
        date_override=_flag(data),
    )
    return jsonify(result)


@action_plan_bp.route("/<plan_id>/grade", methods=["POST"])
def grade(plan_id):
    """Body: { score, verdict?, feedback?, revision_days?, expected_version? }"""
    data = _body()
    grade_input = grading.GradeInput(
        score=parse_int(data.get("score"), "score"),
        verdict=data.get("verdict") or None,
        feedback=data.get("feedback"),
        revision_days=parse_int(data.get("revision_days"), "revision_days"),
    )
    result = grading.grade_plan(
        plan_id, grade_input, current_caller(),
        expected_version=_expected_version(data),
    )
    return jsonify(result)


@action_plan_bp.route("/<plan_id>/recall", methods=["POST"])
def recall(plan_id):
    data = _body()
    result = plan_lifecycle.recall_submission(
        plan_id, current_caller(), expected_version=_expected_version(data),
    )
    return jsonify(result)


@action_plan_bp.route("/finalize", methods=["POST"])
def finalize_month():
    """Body: { department_code, month, year, resolutions?: [{plan_id, action, reason?}], date_override? }"""
    data = _body()
    department_code = (data.get("department_code") or "").strip()
    year = parse_int(data.get("year"), "year")
    if not department_code or year is None or not data.get("month"):
        return api_error(E.VALIDATION_REQUIRED, "department_code, month and year are required")
    result = plan_lifecycle.finalize_month_report(
        department_code, data["month"], year, current_caller(),
        resolutions=data.get("resolutions"),
        date_override=_flag(data),
    )
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════════
# DROP APPROVAL
# ═════════════════════════════════════════════════════════════════════════════

@action_plan_bp.route("/pending-drops", methods=["GET"])
def pending_drops():
    plans = resolution_policy.list_pending_drops(department_code=request.args.get("department_code"))
    return jsonify({"items": [p.to_dict() for p in plans], "total": len(plans)})


@action_plan_bp.route("/<plan_id>/drop-decision", methods=["POST"])
def drop_decision(plan_id):
    """Body: { decision: approve|reject, reason?, expected_version? }"""
    data = _body()
    result = resolution_policy.decide_drop(
        plan_id, data.get("decision"), current_caller(), data.get("reason"),
        expected_version=_expected_version(data),
    )
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════════
# UNLOCK REQUESTS
# ═════════════════════════════════════════════════════════════════════════════

@action_plan_bp.route("/<plan_id>/unlock-request", methods=["POST"])
def unlock_request(plan_id):
    data = _body()
    result = lock_policy.request_unlock(
        plan_id, data.get("reason"), current_caller(),
        expected_version=_expected_version(data),
    )
    return jsonify(result)


@action_plan_bp.route("/<plan_id>/unlock-decision", methods=["POST"])
def unlock_decision(plan_id):
    """Body: { decision: approve|reject, hours?, expected_version? }"""
    data = _body()
    result = lock_policy.decide_unlock(
        plan_id, data.get("decision"), current_caller(),
        hours=parse_int(data.get("hours"), "hours"),
        expected_version=_expected_version(data),
    )
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════════
# MANAGEMENT ESCALATIONS
# ═════════════════════════════════════════════════════════════════════════════

@action_plan_bp.route("/escalations", methods=["GET"])
def escalations():
    items = escalation.list_management_escalations(department_code=request.args.get("department_code"))
    return jsonify({"items": items, "total": len(items)})


@action_plan_bp.route("/<plan_id>/escalation/resolve", methods=["POST"])
def resolve_escalation(plan_id):
    """Body: { note, action_plan?, indicator?, expected_version? }"""
    data = _body()
    result = escalation.resolve_management_escalation(
        plan_id, data.get("note"), current_caller(),
        action_plan=data.get("action_plan"),
        indicator=data.get("indicator"),
        expected_version=_expected_version(data),
    )
    return jsonify(result)
