"""
Action plan lifecycle: the status state machine and report submission.

Transitions and what they need:

    Open → On Progress                      progress note (≥5 chars)
    {Open, On Progress, Blocked} → Blocked  blocker report (see escalation)
    Blocked → On Progress / Achieved / Not Achieved
                                            resolution note (≥5 chars)
    * → Achieved                            ≥1 evidence attachment
    * → Not Achieved                        evidence, gap category, gap analysis,
                                            follow-up (see resolution_policy)

Any other target is a no-op on status that only applies execution fields
(attachments, remark).  Every mutation passes the lock gate first and
validates its whole payload before writing anything.

Usage:
    from app.services.plan_lifecycle import transition_plan

    result = transition_plan(plan_id, "On Progress", {"progress_note": "Kick-off done"}, caller)
"""

import logging
from contextlib import ExitStack
from datetime import datetime

from app.core.exceptions import ConflictError, PermissionDenied, ValidationError
from app.models.action_plan import (
    PLAN_STATUSES,
    STATUS_ACHIEVED,
    STATUS_BLOCKED,
    STATUS_NOT_ACHIEVED,
    STATUS_ON_PROGRESS,
    STATUS_OPEN,
    ActionPlan,
)
from app.models import db
from app.services import escalation, plan_store
from app.services.capabilities import (
    Capability,
    CallerContext,
    require_capability,
    require_department,
)
from app.services.lock_policy import (
    EditMode,
    assert_editable,
    compute_lock,
    compute_temporal_lock,
    normalize_month,
    resolve_edit_mode,
)
from app.services.plan_settings import active_failure_reasons, load_policy_settings
from app.services.plan_state import (
    RESOLUTION_CARRIED_OVER,
    ActiveDetail,
    AchievedDetail,
    NotAchievedDetail,
    check_invariants,
    display_status,
    gap_analysis_required_length,
    score_limit,
    write_status_detail,
)
from app.services.priority import classify_priority
from app.services.resolution_policy import can_carry_over, decide_follow_up, materialize_successor
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

MIN_PROGRESS_NOTE_LENGTH = 5
MIN_SPECIFY_REASON_LENGTH = 3
OTHER_GAP_CATEGORY = "Other"

ATTACHMENT_TYPES = ("file", "link")
ATTACHMENT_KEYS = ("type", "url", "name", "size", "mime", "title")

PLANNING_FIELDS = (
    "goal_strategy", "action_plan", "indicator", "pic", "category", "report_format",
)

AUTO_GRADE_FEEDBACK = "System: Auto-graded (Not Achieved)"
MONTH_END_GAP_CATEGORY = "Unresolved at Month End"

UNRESOLVED_STATUSES = (STATUS_OPEN, STATUS_ON_PROGRESS, STATUS_BLOCKED)


# ═════════════════════════════════════════════════════════════════════════════
# Payload helpers
# ═════════════════════════════════════════════════════════════════════════════

def _text(payload: dict, key: str) -> str:
    return (payload.get(key) or "").strip()


def _min_length_error(errors: dict, field: str, value: str, required: int) -> None:
    if len(value) < required:
        errors[field] = {"min_length": required, "actual": len(value)}


def _normalize_attachments(raw) -> list[dict]:
    """Validate the opaque evidence list; only its shape matters here."""
    if not isinstance(raw, list):
        raise ValidationError("attachments must be a list", details={"attachments": {"type": "list"}})
    cleaned = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict) or not (item.get("url") or "").strip():
            raise ValidationError(
                f"Attachment #{index + 1} needs a url",
                details={"attachments": {"index": index, "required": ["type", "url"]}},
            )
        kind = item.get("type") or "link"
        if kind not in ATTACHMENT_TYPES:
            raise ValidationError(
                f"Attachment #{index + 1} has unknown type {kind!r}",
                details={"attachments": {"index": index, "allowed": list(ATTACHMENT_TYPES)}},
            )
        entry = {key: item[key] for key in ATTACHMENT_KEYS if item.get(key) is not None}
        entry["type"] = kind
        cleaned.append(entry)
    return cleaned


def _apply_execution_fields(plan, payload: dict, attachments: list[dict] | None) -> None:
    if attachments is not None:
        plan.attachments = attachments
        plan.outcome_link = attachments[0]["url"] if attachments else None
    if "remark" in payload:
        plan.remark = (payload.get("remark") or "").strip() or None


def _transition_kind(current: str, target: str) -> str:
    if target == STATUS_BLOCKED and current in UNRESOLVED_STATUSES:
        return "escalate"
    if current == STATUS_BLOCKED and target in (STATUS_ON_PROGRESS, STATUS_ACHIEVED, STATUS_NOT_ACHIEVED):
        return "resolve_blocker"
    if current == STATUS_OPEN and target == STATUS_ON_PROGRESS:
        return "start"
    if target == STATUS_ACHIEVED and current != STATUS_ACHIEVED:
        return "complete"
    if target == STATUS_NOT_ACHIEVED and current != STATUS_NOT_ACHIEVED:
        return "fail"
    return "update"


def _validate_not_achieved(plan, payload: dict, settings, errors: dict):
    """Shape checks for a Not Achieved transition. Returns the derived detail or None."""
    options = active_failure_reasons()
    gap_category = _text(payload, "gap_category")
    specify_reason = _text(payload, "specify_reason")
    gap_analysis = _text(payload, "gap_analysis")

    if gap_category not in options:
        errors["gap_category"] = {"required": True, "allowed": options}
    elif gap_category == OTHER_GAP_CATEGORY:
        _min_length_error(errors, "specify_reason", specify_reason, MIN_SPECIFY_REASON_LENGTH)

    follow_up = decide_follow_up(plan, payload.get("follow_up"), settings)
    required = gap_analysis_required_length(follow_up.resolution_type, plan.category, settings)
    _min_length_error(errors, "gap_analysis", gap_analysis, required)
    if errors:
        return None
    return NotAchievedDetail(
        gap_category=gap_category,
        gap_analysis=gap_analysis,
        specify_reason=specify_reason if gap_category == OTHER_GAP_CATEGORY else None,
        follow_up=follow_up,
    )


def _raise_errors(errors: dict, target: str) -> None:
    if not errors:
        return
    first_field, first = next(iter(errors.items()))
    if isinstance(first, dict) and "min_length" in first:
        message = f"{first_field.replace('_', ' ').capitalize()} must be at least {first['min_length']} characters"
    else:
        message = f"Cannot move to {target}: {', '.join(errors)} invalid or missing"
    raise ValidationError(message, details=errors)


# ═════════════════════════════════════════════════════════════════════════════
# State machine
# ═════════════════════════════════════════════════════════════════════════════

def transition_plan(
    plan_id: str,
    target_status: str,
    payload: dict,
    caller: CallerContext,
    *,
    expected_version: int | None = None,
    date_override: bool = False,
    now: datetime | None = None,
) -> dict:
    """Move a plan to *target_status*, or apply execution fields when the move is not a transition."""
    now = now or utcnow()
    payload = payload or {}
    if target_status not in PLAN_STATUSES:
        raise ValidationError(
            f"Unknown status {target_status!r}",
            details={"status": {"allowed": list(PLAN_STATUSES)}},
        )

    with plan_store.plan_mutation(plan_id):
        plan = plan_store.fetch_plan(plan_id, expected_version=expected_version)
        require_department(caller, plan.department_code, "transition")
        settings = load_policy_settings()
        lock, _mode = assert_editable(plan, caller, settings, "transition",
                                      date_override=date_override, now=now)

        current = plan.status
        kind = _transition_kind(current, target_status)
        attachments = _normalize_attachments(payload["attachments"]) if "attachments" in payload else None
        evidence = len(attachments if attachments is not None else (plan.attachments or []))
        progress_note = _text(payload, "progress_note")

        # ── Validate everything before touching the plan ──
        errors = {}
        detail = None
        resolution = None
        if kind == "escalate":
            detail = escalation.enter_blocked(plan, payload, caller, settings, now=now)
        elif kind == "resolve_blocker":
            resolution = escalation.leave_blocked(plan, target_status, payload)
        elif kind == "start":
            _min_length_error(errors, "progress_note", progress_note, MIN_PROGRESS_NOTE_LENGTH)
            detail = ActiveDetail(STATUS_ON_PROGRESS)

        if target_status in (STATUS_ACHIEVED, STATUS_NOT_ACHIEVED) and kind != "update":
            if evidence < 1:
                errors["attachments"] = {"min_count": 1, "actual": evidence}
            if target_status == STATUS_ACHIEVED:
                detail = AchievedDetail()
            else:
                detail = _validate_not_achieved(plan, payload, settings, errors)
        elif kind == "resolve_blocker":
            detail = ActiveDetail(STATUS_ON_PROGRESS)
        _raise_errors(errors, target_status)

        # ── Write ──
        before = plan_store.snapshot(plan)
        previous_level = plan.attention_level if current == STATUS_BLOCKED else None
        if detail is not None:
            write_status_detail(plan, detail)
        _apply_execution_fields(plan, payload, attachments)

        if kind == "escalate":
            alerted = escalation.raise_management_alert(plan, previous_level, now)
            plan_store.append_timeline(
                plan, "blocker_report", f"[{plan.blocker_category}] {plan.blocker_reason}",
                caller.user_id, meta={"attention_level": plan.attention_level, "alert": alerted},
                created_at=now,
            )
        elif kind == "resolve_blocker":
            plan_store.append_timeline(
                plan, "blocker_resolved", resolution.note, caller.user_id,
                meta={"resolution_kind": resolution.kind, "target": target_status},
                created_at=now,
            )
            plan_store.append_timeline(
                plan, "progress_update", resolution.progress_message, caller.user_id,
                meta={"resolution_kind": resolution.kind}, created_at=now,
            )
        elif progress_note:
            plan_store.append_timeline(plan, "progress_update", progress_note, caller.user_id, created_at=now)
        if kind in ("complete", "fail") or (kind == "resolve_blocker" and target_status != STATUS_ON_PROGRESS):
            plan_store.append_timeline(
                plan, "comment", f"Marked {target_status} with {evidence} evidence item(s)",
                caller.user_id, meta={"follow_up": plan.resolution_type}, created_at=now,
            )

        check_invariants(plan, settings)
        plan_store.commit_plan(plan, "transition")

    action = {
        "escalate": "action_plan.escalate",
        "resolve_blocker": "action_plan.resolve_blocker",
        "update": "action_plan.update",
    }.get(kind, "action_plan.transition")
    diff = plan_store.field_diff(before, plan_store.snapshot(plan))
    if resolution is not None:
        diff["resolution_kind"] = resolution.kind
    if lock.temporal_bypassed:
        diff["date_override"] = True
    warnings = plan_store.record_audit(plan.id, action, caller.actor, diff)

    if resolution is not None:
        logger.info("ActionPlan %s blocker resolved (%s) → %s by %s",
                    plan.id, resolution.kind, plan.status, caller.actor)
    else:
        logger.info("ActionPlan %s %s: %s → %s by %s", plan.id, kind, current, plan.status, caller.actor)
    return {
        "plan": plan.to_dict(),
        "display_status": display_status(plan),
        "transition": kind,
        "resolution_kind": resolution.kind if resolution is not None else None,
        "date_override": lock.temporal_bypassed,
        "warnings": warnings,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Planning fields
# ═════════════════════════════════════════════════════════════════════════════

def create_plan(data: dict, caller: CallerContext, *, now: datetime | None = None) -> dict:
    """Create an Open draft plan for the caller's department."""
    now = now or utcnow()
    require_capability(caller, Capability.CAN_EDIT_FULL, "create")
    if caller.read_only:
        raise PermissionDenied(caller.user_id, "create", "read-only access")

    data = data or {}
    errors = {}
    department_code = _text(data, "department_code") or (caller.department_code or "")
    if not department_code:
        errors["department_code"] = {"required": True}
    if not _text(data, "action_plan"):
        errors["action_plan"] = {"required": True}
    year = data.get("year")
    if isinstance(year, bool) or not isinstance(year, int) or not 2000 <= year <= 2100:
        errors["year"] = {"required": True, "type": "integer", "min": 2000, "max": 2100}
    if errors:
        raise ValidationError(f"Invalid action plan: {', '.join(errors)}", details=errors)
    month = normalize_month(data.get("month"))
    require_department(caller, department_code, "create")

    plan = ActionPlan(
        department_code=department_code,
        month=month,
        year=year,
        status=STATUS_OPEN,
        submission_status="draft",
        attachments=[],
        created_by=caller.user_id,
        **{name: _text(data, name) or None for name in PLANNING_FIELDS},
    )
    settings = load_policy_settings()
    if not caller.is_admin and compute_temporal_lock(plan, settings, now).locked:
        raise PermissionDenied(caller.user_id, "create", f"{month} {year} is locked")

    db.session.add(plan)
    plan_store.commit_plan(plan, "create")
    warnings = plan_store.record_audit(
        plan.id, "action_plan.create", caller.actor,
        {"department_code": department_code, "month": month, "year": year,
         "category": plan.category, "priority_bucket": classify_priority(plan.category).value},
    )
    logger.info("ActionPlan %s created for %s %s %s by %s", plan.id, department_code, month, year, caller.actor)
    return {"plan": plan.to_dict(), "warnings": warnings}


def update_planning_fields(
    plan_id: str,
    fields: dict,
    caller: CallerContext,
    *,
    expected_version: int | None = None,
    date_override: bool = False,
    now: datetime | None = None,
) -> dict:
    """Edit goal/plan/indicator fields. Full edit mode only."""
    now = now or utcnow()
    fields = fields or {}
    unknown = set(fields) - set(PLANNING_FIELDS)
    if unknown:
        raise ValidationError(
            f"Not a planning field: {', '.join(sorted(unknown))}",
            details={"fields": {"allowed": list(PLANNING_FIELDS)}},
        )
    if "action_plan" in fields and not (fields.get("action_plan") or "").strip():
        raise ValidationError("action_plan cannot be empty", details={"action_plan": {"required": True}})

    with plan_store.plan_mutation(plan_id):
        plan = plan_store.fetch_plan(plan_id, expected_version=expected_version)
        require_department(caller, plan.department_code, "update_planning")
        settings = load_policy_settings()
        lock, mode = assert_editable(plan, caller, settings, "update_planning",
                                     date_override=date_override, now=now)
        if mode is not EditMode.FULL:
            raise PermissionDenied(caller.user_id, "update_planning", "planning fields need full edit access")

        before = {name: getattr(plan, name) for name in PLANNING_FIELDS}
        for name, value in fields.items():
            setattr(plan, name, (value or "").strip() or None)
        plan_store.commit_plan(plan, "update_planning")

    diff = plan_store.field_diff(before, {name: getattr(plan, name) for name in PLANNING_FIELDS})
    if lock.temporal_bypassed:
        diff["date_override"] = True
    warnings = plan_store.record_audit(plan.id, "action_plan.update_planning", caller.actor, diff)
    return {"plan": plan.to_dict(), "date_override": lock.temporal_bypassed, "warnings": warnings}


# ═════════════════════════════════════════════════════════════════════════════
# Report submission
# ═════════════════════════════════════════════════════════════════════════════

def _month_end_follow_ups(plans, resolutions, month, year, settings) -> dict:
    """Validate month-end decisions for every unresolved plan.

    Returns {plan_id: (FollowUp, gap_analysis, action)}.  Nothing is written.
    """
    if resolutions is None:
        resolutions = []
    if not isinstance(resolutions, list) or not all(isinstance(r, dict) for r in resolutions):
        raise ValidationError(
            "resolutions must be a list of {plan_id, action}",
            details={"resolutions": {"type": "list", "item": ["plan_id", "action"]}},
        )
    requested = {str(r.get("plan_id")): r for r in resolutions}

    unresolved = [p for p in plans if p.status in UNRESOLVED_STATUSES and not p.is_drop_pending]
    unresolved_ids = {p.id for p in unresolved}
    unknown = sorted(pid for pid in requested if pid not in unresolved_ids)
    if unknown:
        raise ValidationError(
            "Resolutions can only be given for unresolved plans of this month",
            details={"resolutions": {"unknown_plan_ids": unknown}},
        )

    missing = [p for p in unresolved if p.id not in requested]
    if missing:
        raise ValidationError(
            f"{len(missing)} plan(s) are still unresolved; complete them or choose "
            f"carry_over / drop for each",
            details={"unresolved": [
                {"id": p.id, "status": p.status, "can_carry_over": can_carry_over(p)}
                for p in missing
            ]},
        )

    follow_ups, errors = {}, {}
    for plan in unresolved:
        entry = requested[plan.id]
        action = entry.get("action")
        try:
            follow_up = decide_follow_up(plan, action, settings)
        except ValidationError as exc:
            errors[plan.id] = exc.details
            continue
        analysis = (entry.get("reason") or "").strip() or (
            f"Still {plan.status} when the {month} {year} report was submitted"
        )
        required = gap_analysis_required_length(follow_up.resolution_type, plan.category, settings)
        if len(analysis) < required:
            errors[plan.id] = {"gap_analysis": {"min_length": required, "actual": len(analysis)}}
            continue
        follow_ups[plan.id] = (follow_up, analysis, action)
    if errors:
        raise ValidationError("Invalid month-end resolutions", details={"resolutions": errors})
    return follow_ups


def finalize_month_report(
    department_code: str,
    month,
    year: int,
    caller: CallerContext,
    *,
    resolutions: list[dict] | None = None,
    date_override: bool = False,
    now: datetime | None = None,
) -> dict:
    """Submit every draft plan of a department's month for grading.

    Plans still Open / On Progress / Blocked need a month-end decision in
    *resolutions* (``[{plan_id, action: carry_over|drop, reason?}]``); they
    become Not Achieved with that follow-up and need no evidence.  A
    Late_Month_2 plan can only be dropped.  Not Achieved plans are auto-scored
    0; carried-over plans get their successor, penalised when the carry-over
    was decided here.
    """
    now = now or utcnow()
    require_capability(caller, Capability.CAN_EDIT_FULL, "finalize_month_report")
    require_department(caller, department_code, "finalize_month_report")
    month = normalize_month(month)

    plans = (
        ActionPlan.query
        .filter_by(department_code=department_code, month=month, year=year)
        .order_by(ActionPlan.created_at)
        .all()
    )
    if not plans:
        raise ValidationError(
            f"No action plans for {department_code} {month} {year}",
            details={"department_code": department_code, "month": month, "year": year},
        )

    ref = f"{department_code} {month} {year}"
    with ExitStack() as stack:
        for plan in plans:
            stack.enter_context(plan_store.plan_mutation(plan.id))
        plans = [plan_store.fetch_plan(plan.id) for plan in plans]

        settings = load_policy_settings()
        follow_ups = _month_end_follow_ups(plans, resolutions, month, year, settings)

        drafts = [p for p in plans if p.submission_status != "submitted"]
        submitted, auto_graded, successors, overridden, resolved = [], [], [], [], {}
        for plan in drafts:
            lock, _mode = assert_editable(plan, caller, settings, "finalize_month_report",
                                          date_override=date_override, now=now)
            if lock.temporal_bypassed:
                overridden.append(plan.id)
            if plan.id in follow_ups:
                follow_up, analysis, action = follow_ups[plan.id]
                previous = plan.status
                write_status_detail(plan, NotAchievedDetail(
                    gap_category=MONTH_END_GAP_CATEGORY,
                    gap_analysis=analysis,
                    follow_up=follow_up,
                ))
                plan_store.append_timeline(
                    plan, "comment", f"Resolved at month end ({previous}): {action}",
                    caller.user_id, meta={"follow_up": action, "previous_status": previous},
                    created_at=now,
                )
                resolved[plan.id] = action
            plan.submission_status = "submitted"
            plan.submitted_at = now
            plan.submitted_by = caller.user_id
            if plan.status == STATUS_NOT_ACHIEVED and plan.quality_score is None and not plan.is_drop_pending:
                plan.quality_score = 0
                plan.admin_feedback = AUTO_GRADE_FEEDBACK
                auto_graded.append(plan.id)
            if plan.resolution_type == RESOLUTION_CARRIED_OVER:
                successor = materialize_successor(plan, apply_penalty=plan.id in resolved,
                                                  settings=settings, actor=caller.user_id)
                successors.append({"from": plan.id, "to": successor.id})
            check_invariants(plan, settings)
            submitted.append(plan.id)

        plan_store.commit("finalize_month_report", ref)

    warnings = []
    successor_for = {link["from"]: link["to"] for link in successors}
    for plan_id in submitted:
        diff = {
            "submission_status": {"old": "draft", "new": "submitted"},
            "auto_graded": plan_id in auto_graded,
        }
        if plan_id in resolved:
            diff["month_end_resolution"] = resolved[plan_id]
        if plan_id in successor_for:
            diff["successor_id"] = successor_for[plan_id]
        if plan_id in overridden:
            diff["date_override"] = True
        warnings += plan_store.record_audit(plan_id, "action_plan.submit", caller.actor, diff)

    logger.info(
        "Month report %s finalized by %s: %d submitted, %d resolved at month end, "
        "%d auto-graded, %d carried over",
        ref, caller.actor, len(submitted), len(resolved), len(auto_graded), len(successors),
    )
    return {
        "department_code": department_code,
        "month": month,
        "year": year,
        "submitted": submitted,
        "resolved": [{"plan_id": pid, "action": action} for pid, action in resolved.items()],
        "auto_graded": auto_graded,
        "successors": successors,
        "warnings": warnings,
    }


def recall_submission(
    plan_id: str,
    caller: CallerContext,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Pull a submitted, not yet manually graded plan back to draft."""
    now = now or utcnow()
    require_capability(caller, Capability.CAN_EDIT_FULL, "recall")

    with plan_store.plan_mutation(plan_id):
        plan = plan_store.fetch_plan(plan_id, expected_version=expected_version)
        require_department(caller, plan.department_code, "recall")
        if plan.submission_status != "submitted":
            raise ConflictError("ActionPlan", "submission_status", "submitted",
                                reason="plan is not submitted")
        auto_graded = (
            plan.status == STATUS_NOT_ACHIEVED
            and plan.quality_score == 0
            and plan.admin_feedback == AUTO_GRADE_FEEDBACK
        )
        if plan.quality_score is not None and not auto_graded:
            raise ConflictError("ActionPlan", "quality_score",
                                reason="plan was already graded and can no longer be recalled")

        before = plan_store.snapshot(plan)
        plan.submission_status = "draft"
        plan.submitted_at = None
        plan.submitted_by = None
        if auto_graded:
            plan.quality_score = None
            plan.admin_feedback = None
        plan_store.append_timeline(plan, "comment", "Submission recalled to draft", caller.user_id,
                                   created_at=now)
        plan_store.commit_plan(plan, "recall")

    warnings = plan_store.record_audit(
        plan.id, "action_plan.recall", caller.actor,
        plan_store.field_diff(before, plan_store.snapshot(plan)),
    )
    logger.info("ActionPlan %s recalled to draft by %s", plan.id, caller.actor)
    return {"plan": plan.to_dict(), "warnings": warnings}


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════

def plan_view(plan, caller: CallerContext, settings, *, date_override: bool = False,
              now: datetime | None = None) -> dict:
    """Plan plus its derived state for *caller*."""
    now = now or utcnow()
    lock = compute_lock(plan, caller, settings, date_override=date_override, now=now)
    data = plan.to_dict()
    data["display_status"] = display_status(plan)
    data["priority_bucket"] = classify_priority(plan.category).value
    data["score_limit"] = score_limit(plan)
    data["edit_mode"] = resolve_edit_mode(caller, lock).value
    data["lock"] = lock.to_dict()
    if plan.status == STATUS_BLOCKED:
        days = escalation.blocked_days(plan, now)
        data["blocked_days"] = days
        data["blocked_severity"] = escalation.blocked_severity(days)
    return data


def get_plan(plan_id: str, caller: CallerContext, *, date_override: bool = False,
             now: datetime | None = None) -> dict:
    plan = plan_store.fetch_plan(plan_id)
    return plan_view(plan, caller, load_policy_settings(), date_override=date_override, now=now)


def list_plans(caller: CallerContext, *, department_code: str | None = None, month=None,
               year: int | None = None, status: str | None = None) -> list[dict]:
    q = ActionPlan.query
    if department_code:
        q = q.filter_by(department_code=department_code)
    if month:
        q = q.filter_by(month=normalize_month(month))
    if year:
        q = q.filter_by(year=year)
    if status:
        q = q.filter_by(status=status)
    settings = load_policy_settings()
    now = utcnow()
    return [plan_view(p, caller, settings, now=now) for p in q.order_by(ActionPlan.created_at).all()]


def get_timeline(plan_id: str) -> list[dict]:
    plan = plan_store.fetch_plan(plan_id)
    return [entry.to_dict() for entry in plan.timeline.all()]
