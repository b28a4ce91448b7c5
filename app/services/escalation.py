"""
Blocker escalation workflow.

Entering Blocked needs a category, an attention level the caller's role may
pick, and a reason whose minimum length depends on that level (policy
configuration).  Leaving Blocked needs a resolution note; a plan that goes
straight from Blocked to a terminal status is labelled ``auto_resolved`` so
it never reads like a manual resolution.

Blockers tagged Management_BOD raise a management alert and appear in the
management queue; resolving one there appends a dated note to the remark and
clears the alert fields.

Usage:
    from app.services.escalation import enter_blocked, leave_blocked

    detail = enter_blocked(plan, payload, caller, settings, now=now)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from app.core.exceptions import ConflictError, PermissionDenied, ValidationError
from app.models.action_plan import (
    STATUS_BLOCKED,
    STATUS_ON_PROGRESS,
    TERMINAL_STATUSES,
    ActionPlan,
)
from app.services import plan_store
from app.services.capabilities import (
    ROLE_DEPT_HEAD,
    ROLE_LEADER,
    Capability,
    CallerContext,
    require_capability,
)
from app.services.plan_settings import load_policy_settings
from app.services.plan_state import (
    ActiveDetail,
    BlockedDetail,
    blocker_reason_min_length,
    check_invariants,
    write_status_detail,
)
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

BLOCKER_CATEGORIES = ("Internal", "External", "Budget", "Approval")

ATTENTION_STANDARD = "Standard"
ATTENTION_LEADER = "Leader"
ATTENTION_MANAGEMENT = "Management_BOD"
ATTENTION_LEVELS = (ATTENTION_STANDARD, ATTENTION_LEADER, ATTENTION_MANAGEMENT)

MIN_RESOLUTION_NOTE_LENGTH = 5
RESOLVED_MARKER = "[BLOCKER RESOLVED]"

RESOLUTION_MANUAL = "manual"
RESOLUTION_AUTO = "auto_resolved"

ALERT_OPEN = "open"

# Severity of a long-running blocker (days blocked)
SEVERITY_WARNING_DAYS = 4
SEVERITY_CRITICAL_DAYS = 8


@dataclass(frozen=True)
class BlockerResolution:
    note: str
    kind: str
    progress_message: str


def allowed_attention_levels(caller: CallerContext) -> tuple[str, ...]:
    """Attention levels *caller* may pick when reporting a blocker.

    Leaders escalate past themselves, so they cannot pick "Leader".
    Read-only callers cannot report blockers at all.
    """
    if caller.read_only:
        return ()
    if caller.role in (ROLE_LEADER, ROLE_DEPT_HEAD):
        return (ATTENTION_STANDARD, ATTENTION_MANAGEMENT)
    return ATTENTION_LEVELS


def min_reason_length(attention_level: str, settings) -> int:
    return blocker_reason_min_length(attention_level, settings)


def enter_blocked(plan, payload: dict, caller: CallerContext, settings, *,
                  now: datetime | None = None) -> BlockedDetail:
    """Validate a blocker report and build the Blocked detail for *plan*."""
    now = now or utcnow()
    category = (payload.get("blocker_category") or "").strip()
    level = (payload.get("attention_level") or ATTENTION_STANDARD).strip()
    reason = (payload.get("blocker_reason") or "").strip()

    errors = {}
    if category not in BLOCKER_CATEGORIES:
        errors["blocker_category"] = {"required": True, "allowed": list(BLOCKER_CATEGORIES)}
    if level not in ATTENTION_LEVELS:
        errors["attention_level"] = {"allowed": list(ATTENTION_LEVELS)}
    else:
        required = min_reason_length(level, settings)
        if len(reason) < required:
            errors["blocker_reason"] = {"min_length": required, "actual": len(reason)}
    if errors:
        first = next(iter(errors))
        if first == "blocker_reason":
            message = f"Blocker reason must be at least {errors[first]['min_length']} characters for {level}"
        else:
            message = f"Invalid blocker report: {', '.join(errors)}"
        raise ValidationError(message, details=errors)

    allowed = allowed_attention_levels(caller)
    if level not in allowed:
        raise PermissionDenied(
            caller.user_id, "escalate",
            f"attention level '{level}' is not available to role '{caller.role}'",
        )

    blocked_at = as_utc(plan.blocked_at) if plan.status == STATUS_BLOCKED and plan.blocked_at else now
    return BlockedDetail(category=category, reason=reason, attention_level=level, blocked_at=blocked_at)


def raise_management_alert(plan, previous_level: str | None, now: datetime) -> bool:
    """Open a management alert when a blocker newly reaches Management_BOD."""
    if plan.attention_level != ATTENTION_MANAGEMENT or previous_level == ATTENTION_MANAGEMENT:
        return False
    plan.alert_status = ALERT_OPEN
    plan.alert_status_at = now
    return True


def leave_blocked(plan, target_status: str, payload: dict) -> BlockerResolution:
    """Validate leaving Blocked and derive the timeline message."""
    note = (payload.get("resolution_note") or "").strip()
    if len(note) < MIN_RESOLUTION_NOTE_LENGTH:
        raise ValidationError(
            f"Resolution note must be at least {MIN_RESOLUTION_NOTE_LENGTH} characters",
            details={"resolution_note": {"min_length": MIN_RESOLUTION_NOTE_LENGTH, "actual": len(note)}},
        )
    progress_note = (payload.get("progress_note") or "").strip()
    if len(progress_note) >= MIN_RESOLUTION_NOTE_LENGTH:
        message = progress_note
    else:
        message = f"{RESOLVED_MARKER} {note}"
    kind = RESOLUTION_AUTO if target_status in TERMINAL_STATUSES else RESOLUTION_MANUAL
    return BlockerResolution(note=note, kind=kind, progress_message=message)


def is_escalated(plan) -> bool:
    return plan.status == STATUS_BLOCKED and plan.attention_level == ATTENTION_MANAGEMENT


def blocked_days(plan, now: datetime | None = None) -> int:
    if plan.status != STATUS_BLOCKED or plan.blocked_at is None:
        return 0
    now = now or utcnow()
    return max(0, (now - as_utc(plan.blocked_at)).days)


def blocked_severity(days: int) -> str:
    if days >= SEVERITY_CRITICAL_DAYS:
        return "critical"
    if days >= SEVERITY_WARNING_DAYS:
        return "warning"
    return "normal"


# ═════════════════════════════════════════════════════════════════════════════
# Management queue
# ═════════════════════════════════════════════════════════════════════════════

def list_management_escalations(*, department_code: str | None = None,
                                now: datetime | None = None) -> list[dict]:
    """Blocked Management_BOD plans, longest blocked first."""
    now = now or utcnow()
    q = ActionPlan.query.filter_by(status=STATUS_BLOCKED, attention_level=ATTENTION_MANAGEMENT)
    if department_code:
        q = q.filter_by(department_code=department_code)
    items = []
    for plan in q.order_by(ActionPlan.blocked_at.asc()).all():
        days = blocked_days(plan, now)
        item = plan.to_dict()
        item["blocked_days"] = days
        item["severity"] = blocked_severity(days)
        items.append(item)
    return items


def resolve_management_escalation(
    plan_id: str,
    note: str,
    caller: CallerContext,
    *,
    action_plan: str | None = None,
    indicator: str | None = None,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Close a Management_BOD blocker from the management queue."""
    now = now or utcnow()
    require_capability(caller, Capability.CAN_APPROVE_DROP, "resolve_escalation")

    note = (note or "").strip()
    if len(note) < MIN_RESOLUTION_NOTE_LENGTH:
        raise ValidationError(
            f"Resolution note must be at least {MIN_RESOLUTION_NOTE_LENGTH} characters",
            details={"note": {"min_length": MIN_RESOLUTION_NOTE_LENGTH, "actual": len(note)}},
        )

    with plan_store.plan_mutation(plan_id):
        plan = plan_store.fetch_plan(plan_id, expected_version=expected_version)
        if not is_escalated(plan):
            raise ConflictError(
                "ActionPlan", "attention_level", ATTENTION_MANAGEMENT,
                reason="plan is no longer escalated to management",
            )
        settings = load_policy_settings()
        before = plan_store.snapshot(plan)

        write_status_detail(plan, ActiveDetail(STATUS_ON_PROGRESS))
        if action_plan is not None and action_plan.strip():
            plan.action_plan = action_plan.strip()
        if indicator is not None and indicator.strip():
            plan.indicator = indicator.strip()
        audit_note = f"[MANAGEMENT RESOLVED - {now.strftime('%Y-%m-%d')}]\n{note}"
        plan.remark = f"{plan.remark}\n\n{audit_note}" if plan.remark else audit_note
        plan.alert_status = None
        plan.alert_status_at = None

        plan_store.append_timeline(
            plan, "blocker_resolved", f"{RESOLVED_MARKER} {note}", caller.user_id,
            meta={"resolution_kind": "management"}, created_at=now,
        )
        check_invariants(plan, settings)
        plan_store.commit_plan(plan, "resolve_escalation")

    diff = plan_store.field_diff(before, plan_store.snapshot(plan))
    diff["note"] = note
    warnings = plan_store.record_audit(plan.id, "action_plan.management_resolve", caller.actor, diff)
    logger.info("Management escalation on ActionPlan %s resolved by %s", plan.id, caller.actor)
    return {"plan": plan.to_dict(), "warnings": warnings}
