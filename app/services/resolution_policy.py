"""
Resolution policy: what happens to a plan that ends Not Achieved.

Every Not Achieved transition needs a follow-up:

  carry_over  resolution_type = carried_over. A successor plan for the next
              month is materialized when the month is finalized (or right
              away for a grading carry-over verdict, which also caps the
              successor's max_possible_score with the next penalty).
              Normal → Late_Month_1 → Late_Month_2; a Late_Month_2 plan
              cannot be carried over again.

  drop        resolution_type = dropped. Plans whose priority bucket requires
              management approval wait as ``is_drop_pending`` and need the
              longer justification.  An approval authority then approves
              (Not Achieved, score 0) or rejects (back to Open, drop flags
              cleared; the plan must be carried over instead).
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from app.core.exceptions import ConflictError, ValidationError
from app.models import db
from app.models.action_plan import STATUS_OPEN, ActionPlan
from app.services import plan_store
from app.services.capabilities import Capability, CallerContext, require_capability
from app.services.lock_policy import next_period
from app.services.plan_settings import load_policy_settings
from app.services.plan_state import (
    RESOLUTION_CARRIED_OVER,
    RESOLUTION_DROPPED,
    ActiveDetail,
    FollowUp,
    NotAchievedDetail,
    check_invariants,
    drop_needs_approval,
    gap_analysis_required_length,
    read_status_detail,
    score_limit,
    write_status_detail,
)
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

FOLLOW_UP_CARRY_OVER = "carry_over"
FOLLOW_UP_DROP = "drop"
FOLLOW_UPS = (FOLLOW_UP_CARRY_OVER, FOLLOW_UP_DROP)

CARRY_NORMAL = "Normal"
CARRY_LATE_1 = "Late_Month_1"
CARRY_LATE_2 = "Late_Month_2"

_NEXT_CARRY_STATUS = {
    CARRY_NORMAL: CARRY_LATE_1,
    CARRY_LATE_1: CARRY_LATE_2,
}

MIN_REJECTION_REASON_LENGTH = 5


def _resolution_type_for(follow_up: str | None) -> str | None:
    return {
        FOLLOW_UP_CARRY_OVER: RESOLUTION_CARRIED_OVER,
        FOLLOW_UP_DROP: RESOLUTION_DROPPED,
    }.get(follow_up)


def is_drop_approval_required(plan, settings) -> bool:
    return drop_needs_approval(plan.category, settings)


def gap_analysis_min_length(follow_up: str | None, plan, settings) -> int:
    """Default minimum, raised to the drop-justification minimum for approval-required drops."""
    return gap_analysis_required_length(_resolution_type_for(follow_up), plan.category, settings)


def can_carry_over(plan) -> bool:
    return (plan.carry_over_status or CARRY_NORMAL) in _NEXT_CARRY_STATUS


def carry_over_label(plan) -> str | None:
    """carry_over_status the successor will get; None when no further carry-over is allowed."""
    return _NEXT_CARRY_STATUS.get(plan.carry_over_status or CARRY_NORMAL)


def next_carry_over_score(plan, settings) -> int | None:
    """Penalty ceiling for the next generation (penalty 1 then penalty 2)."""
    status = plan.carry_over_status or CARRY_NORMAL
    if status == CARRY_NORMAL:
        return settings.carry_over_penalty_1
    if status == CARRY_LATE_1:
        return settings.carry_over_penalty_2
    return None


def decide_follow_up(plan, follow_up: str | None, settings) -> FollowUp:
    """Turn the requested follow-up into a FollowUp, or raise ValidationError."""
    if follow_up not in FOLLOW_UPS:
        raise ValidationError(
            "A follow-up decision is required for Not Achieved plans",
            details={"follow_up": {"required": True, "allowed": list(FOLLOW_UPS)}},
        )
    if follow_up == FOLLOW_UP_CARRY_OVER:
        if not can_carry_over(plan):
            raise ValidationError(
                f"Plan is already {CARRY_LATE_2}; it cannot be carried over again. Drop it instead.",
                details={"follow_up": {"allowed": [FOLLOW_UP_DROP]}},
            )
        return FollowUp(RESOLUTION_CARRIED_OVER, drop_pending=False)

    if plan.drop_rejected:
        raise ValidationError(
            "A drop for this plan was rejected by management; carry it over instead",
            details={"follow_up": {"allowed": [FOLLOW_UP_CARRY_OVER]},
                     "drop_rejection_reason": plan.drop_rejection_reason},
        )
    return FollowUp(RESOLUTION_DROPPED, drop_pending=is_drop_approval_required(plan, settings))


# ═════════════════════════════════════════════════════════════════════════════
# Successor materialization
# ═════════════════════════════════════════════════════════════════════════════

def materialize_successor(plan, *, apply_penalty: bool, settings, actor: str | None = None):
    """Stage the next-month copy of a carried-over plan in the session.

    Returns the existing successor when one was already created for *plan*;
    with *apply_penalty* its ceiling is lowered to the next penalty.
    The caller commits.
    """
    if plan.carried_over_to_id:
        existing = db.session.get(ActionPlan, plan.carried_over_to_id)
        if existing is not None:
            if apply_penalty:
                penalty = next_carry_over_score(plan, settings)
                if penalty is not None:
                    existing.max_possible_score = min(score_limit(existing), penalty)
                    logger.info(
                        "Carry-over successor %s of ActionPlan %s capped at %s",
                        existing.id, plan.id, existing.max_possible_score,
                    )
            return existing

    next_status = carry_over_label(plan)
    if next_status is None:
        raise ValidationError(
            f"Plan {plan.id} is {CARRY_LATE_2} and cannot be carried over again",
            details={"carry_over_status": plan.carry_over_status},
        )

    if apply_penalty:
        limit = min(score_limit(plan), next_carry_over_score(plan, settings))
    else:
        limit = plan.max_possible_score

    month, year = next_period(plan.month, plan.year)
    successor = ActionPlan(
        id=str(uuid.uuid4()),
        department_code=plan.department_code,
        month=month,
        year=year,
        goal_strategy=plan.goal_strategy,
        action_plan=plan.action_plan,
        indicator=plan.indicator,
        pic=plan.pic,
        category=plan.category,
        report_format=plan.report_format,
        status=STATUS_OPEN,
        submission_status="draft",
        max_possible_score=limit,
        carry_over_status=next_status,
        carried_over_from_id=plan.id,
        attachments=[],
        created_by=actor,
    )
    db.session.add(successor)
    plan.carried_over_to_id = successor.id
    logger.info(
        "Carry-over successor %s staged for ActionPlan %s (%s, limit=%s)",
        successor.id, plan.id, next_status, limit,
    )
    return successor


def withdraw_successor(plan) -> str | None:
    """Remove the staged successor of *plan* when it is no longer carried over.

    Only an untouched successor (still Open and draft) can be withdrawn;
    anything else raises ConflictError.  Returns the removed successor id.
    The caller commits.
    """
    if not plan.carried_over_to_id:
        return None
    successor_id = plan.carried_over_to_id
    successor = db.session.get(ActionPlan, successor_id)
    if successor is not None:
        if successor.status != STATUS_OPEN or successor.submission_status != "draft":
            raise ConflictError(
                "ActionPlan", "carried_over_to_id", successor_id,
                reason=f"the carry-over successor is already {successor.status}; "
                       "it can no longer be withdrawn",
            )
        db.session.delete(successor)
    plan.carried_over_to_id = None
    logger.info("Carry-over successor %s of ActionPlan %s withdrawn", successor_id, plan.id)
    return successor_id


# ═════════════════════════════════════════════════════════════════════════════
# Drop approval
# ═════════════════════════════════════════════════════════════════════════════

def list_pending_drops(*, department_code: str | None = None) -> list[ActionPlan]:
    q = ActionPlan.query.filter_by(is_drop_pending=True)
    if department_code:
        q = q.filter_by(department_code=department_code)
    return q.order_by(ActionPlan.updated_at.asc()).all()


def decide_drop(
    plan_id: str,
    decision: str,
    caller: CallerContext,
    reason: str | None = None,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Approve or reject a pending drop request, on fresh server state."""
    now = now or utcnow()
    require_capability(caller, Capability.CAN_APPROVE_DROP, "decide_drop")
    if decision not in ("approve", "reject"):
        raise ValidationError(
            "decision must be 'approve' or 'reject'",
            details={"decision": {"allowed": ["approve", "reject"]}},
        )
    reason = (reason or "").strip()
    if decision == "reject" and len(reason) < MIN_REJECTION_REASON_LENGTH:
        raise ValidationError(
            f"Rejection reason must be at least {MIN_REJECTION_REASON_LENGTH} characters",
            details={"reason": {"min_length": MIN_REJECTION_REASON_LENGTH, "actual": len(reason)}},
        )

    with plan_store.plan_mutation(plan_id):
        plan = plan_store.fetch_plan(plan_id, expected_version=expected_version)
        if not plan.is_drop_pending:
            raise ConflictError(
                "ActionPlan", "is_drop_pending", "True",
                reason="the drop request is no longer pending; refetch",
            )
        settings = load_policy_settings()
        before = plan_store.snapshot(plan)
        detail = read_status_detail(plan)

        if decision == "approve":
            write_status_detail(plan, NotAchievedDetail(
                gap_category=detail.gap_category,
                gap_analysis=detail.gap_analysis,
                specify_reason=detail.specify_reason,
                follow_up=FollowUp(RESOLUTION_DROPPED, drop_pending=False),
            ))
            plan.quality_score = 0
            message = "Drop approved by management"
        else:
            write_status_detail(plan, ActiveDetail(STATUS_OPEN))
            plan.submission_status = "draft"
            plan.drop_rejected = True
            plan.drop_rejection_reason = reason
            message = f"Drop rejected by management: {reason}"
        plan.reviewed_by = caller.user_id
        plan.reviewed_at = now

        plan_store.append_timeline(plan, "comment", message, caller.user_id,
                                   meta={"drop_decision": decision}, created_at=now)
        check_invariants(plan, settings)
        plan_store.commit_plan(plan, "decide_drop")

    action = "action_plan.drop_approve" if decision == "approve" else "action_plan.drop_reject"
    diff = plan_store.field_diff(before, plan_store.snapshot(plan))
    if reason:
        diff["reason"] = reason
    warnings = plan_store.record_audit(plan.id, action, caller.actor, diff)
    logger.info("Drop %s for ActionPlan %s by %s", decision, plan.id, caller.actor)
    return {"plan": plan.to_dict(), "warnings": warnings}
