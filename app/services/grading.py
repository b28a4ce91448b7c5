"""
Grading engine: turns a submitted plan's score into a verdict.

    limit            max_possible_score when set and below 100, else 100
    score            clamped to [0, limit]
    lenient mode     approval always marks the plan Achieved; the score is informational
    strict mode      effective_target = min(threshold[bucket], limit)
                     Achieved  ⟺  score ≥ effective_target

A strict failure is not committed until the grader picks a verdict:

    revision     back to On Progress + draft, score cleared, feedback required,
                 edit grace window of 1..14 days (temporary_unlock_expiry)
    carry_over   Not Achieved, successor created now with the next penalty cap
    failed       Not Achieved, no successor

Any verdict other than carry_over withdraws a successor staged at month
finalization, as long as that successor is still an untouched Open draft.
``revision`` is also available for passing grades.  Grading re-reads the
plan; if its department recalled the submission meanwhile the grade fails
with RecalledError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.exceptions import ConflictError, RecalledError, ValidationError
from app.models.action_plan import (
    STATUS_ACHIEVED,
    STATUS_NOT_ACHIEVED,
    STATUS_ON_PROGRESS,
    TERMINAL_STATUSES,
)
from app.services import plan_store
from app.services.capabilities import Capability, CallerContext, require_capability
from app.services.plan_settings import load_policy_settings
from app.services.plan_state import (
    ActiveDetail,
    AchievedDetail,
    FollowUp,
    NotAchievedDetail,
    RESOLUTION_CARRIED_OVER,
    check_invariants,
    gap_analysis_required_length,
    score_limit,
    write_status_detail,
)
from app.services.priority import PriorityBucket, classify_priority
from app.services.resolution_policy import can_carry_over, materialize_successor, withdraw_successor
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

VERDICT_APPROVE = "approve"
VERDICT_REVISION = "revision"
VERDICT_CARRY_OVER = "carry_over"
VERDICT_FAILED = "failed"
VERDICTS = (VERDICT_APPROVE, VERDICT_REVISION, VERDICT_CARRY_OVER, VERDICT_FAILED)
FAILURE_VERDICTS = (VERDICT_REVISION, VERDICT_CARRY_OVER, VERDICT_FAILED)

DEFAULT_REVISION_DAYS = 3
MIN_REVISION_DAYS = 1
MAX_REVISION_DAYS = 14

BELOW_TARGET_GAP_CATEGORY = "Below Target"


@dataclass(frozen=True)
class GradeInput:
    score: int | None
    verdict: str | None = None
    feedback: str | None = None
    revision_days: int | None = None


@dataclass(frozen=True)
class GradeDecision:
    score: int
    limit: int
    bucket: PriorityBucket
    strict: bool
    threshold: int | None
    effective_target: int | None
    status: str

    @property
    def verdict_required(self) -> bool:
        return self.status == STATUS_NOT_ACHIEVED

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "limit": self.limit,
            "bucket": self.bucket.value,
            "bucket_label": self.bucket.label,
            "strict": self.strict,
            "threshold": self.threshold,
            "effective_target": self.effective_target,
            "status": self.status,
            "verdict_required": self.verdict_required,
        }


def clamp_score(score: int, limit: int) -> int:
    return max(0, min(int(score), int(limit)))


def evaluate_grade(plan, score: int, settings) -> GradeDecision:
    """Pure pass/fail decision for *score* on *plan* under *settings*."""
    limit = score_limit(plan)
    clamped = clamp_score(score, limit)
    bucket = classify_priority(plan.category)

    if not settings.is_strict_grading_enabled:
        return GradeDecision(clamped, limit, bucket, False, None, None, STATUS_ACHIEVED)

    threshold = settings.threshold_for(bucket)
    target = min(threshold, limit)
    status = STATUS_ACHIEVED if clamped >= target else STATUS_NOT_ACHIEVED
    return GradeDecision(clamped, limit, bucket, True, threshold, target, status)


def _validate_input(grade: GradeInput) -> tuple[int | None, int]:
    errors = {}
    if grade.verdict is not None and grade.verdict not in VERDICTS:
        errors["verdict"] = {"allowed": list(VERDICTS)}

    score = grade.score
    if grade.verdict != VERDICT_REVISION:
        if score is None or isinstance(score, bool) or not isinstance(score, int):
            errors["score"] = {"required": True, "type": "integer"}

    days = DEFAULT_REVISION_DAYS if grade.revision_days is None else grade.revision_days
    if grade.verdict == VERDICT_REVISION:
        if not (grade.feedback or "").strip():
            errors["feedback"] = {"required": True, "min_length": 1}
        if isinstance(days, bool) or not isinstance(days, int) or not (
            MIN_REVISION_DAYS <= days <= MAX_REVISION_DAYS
        ):
            errors["revision_days"] = {"min": MIN_REVISION_DAYS, "max": MAX_REVISION_DAYS}

    if errors:
        raise ValidationError(f"Invalid grade: {', '.join(errors)}", details=errors)
    return score, days


def _below_target_analysis(plan, decision: GradeDecision, feedback: str, settings) -> tuple[str, str]:
    """Gap fields for a strict failure; a PIC-supplied analysis is kept."""
    required = gap_analysis_required_length(RESOLUTION_CARRIED_OVER, plan.category, settings)
    if plan.status == STATUS_NOT_ACHIEVED and plan.gap_category and len((plan.gap_analysis or "").strip()) >= required:
        return plan.gap_category, plan.gap_analysis
    if len(feedback) >= required:
        return BELOW_TARGET_GAP_CATEGORY, feedback
    return BELOW_TARGET_GAP_CATEGORY, (
        f"Scored {decision.score} against a {decision.bucket.label} target of "
        f"{decision.effective_target}"
    )


def grade_plan(
    plan_id: str,
    grade: GradeInput,
    caller: CallerContext,
    *,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Grade (or regrade) a submitted plan. Returns the committed outcome."""
    now = now or utcnow()
    require_capability(caller, Capability.CAN_GRADE, "grade")
    score, revision_days = _validate_input(grade)
    feedback = (grade.feedback or "").strip()

    successor = None
    withdrawn = None
    with plan_store.plan_mutation(plan_id):
        plan = plan_store.fetch_plan(plan_id, expected_version=expected_version)
        if plan.submission_status != "submitted":
            raise RecalledError(plan.id)
        if plan.status not in TERMINAL_STATUSES:
            raise ConflictError(
                "ActionPlan", "status", reason=f"only completed plans can be graded (status is {plan.status})",
            )
        if plan.is_drop_pending:
            raise ConflictError(
                "ActionPlan", "is_drop_pending", reason="a drop request is awaiting management approval",
            )

        settings = load_policy_settings()
        before = plan_store.snapshot(plan)
        is_overwrite = plan.quality_score is not None
        decision = evaluate_grade(plan, score, settings) if score is not None else None

        if grade.verdict == VERDICT_REVISION:
            withdrawn = withdraw_successor(plan)
            write_status_detail(plan, ActiveDetail(STATUS_ON_PROGRESS))
            plan.submission_status = "draft"
            plan.temporary_unlock_expiry = now + timedelta(days=revision_days)
            action = "action_plan.revision"
            timeline_message = f"Returned for revision ({revision_days} day window): {feedback}"

        elif decision.status == STATUS_ACHIEVED:
            if grade.verdict in (VERDICT_CARRY_OVER, VERDICT_FAILED):
                raise ValidationError(
                    f"Score {decision.score} meets the target; '{grade.verdict}' only applies to a failing grade",
                    details={"verdict": {"allowed": [VERDICT_APPROVE, VERDICT_REVISION]},
                             "grade": decision.to_dict()},
                )
            withdrawn = withdraw_successor(plan)
            write_status_detail(plan, AchievedDetail())
            plan.quality_score = decision.score
            action = "action_plan.regrade" if is_overwrite else "action_plan.grade"
            timeline_message = f"Graded {decision.score}/{decision.limit}: Achieved"

        else:
            if grade.verdict not in (VERDICT_CARRY_OVER, VERDICT_FAILED):
                raise ValidationError(
                    f"Score {decision.score} is below the {decision.bucket.label} target of "
                    f"{decision.effective_target}; choose a verdict",
                    details={"verdict": {"required": True, "allowed": list(FAILURE_VERDICTS)},
                             "grade": decision.to_dict()},
                )
            if grade.verdict == VERDICT_CARRY_OVER and not can_carry_over(plan):
                raise ValidationError(
                    f"Plan is {plan.carry_over_status}; it cannot be carried over again",
                    details={"verdict": {"allowed": [VERDICT_REVISION, VERDICT_FAILED]}},
                )
            gap_category, gap_analysis = _below_target_analysis(plan, decision, feedback, settings)
            follow_up = FollowUp(RESOLUTION_CARRIED_OVER) if grade.verdict == VERDICT_CARRY_OVER else None
            if follow_up is None:
                withdrawn = withdraw_successor(plan)
            write_status_detail(plan, NotAchievedDetail(
                gap_category=gap_category,
                gap_analysis=gap_analysis,
                specify_reason=plan.specify_reason if plan.status == STATUS_NOT_ACHIEVED else None,
                follow_up=follow_up,
            ))
            plan.quality_score = decision.score
            if follow_up is not None:
                successor = materialize_successor(plan, apply_penalty=True, settings=settings, actor=caller.user_id)
            action = "action_plan.regrade" if is_overwrite else "action_plan.grade"
            timeline_message = f"Graded {decision.score}/{decision.limit}: Not Achieved ({grade.verdict})"

        plan.admin_feedback = feedback or None
        plan.reviewed_by = caller.user_id
        plan.reviewed_at = now
        plan_store.append_timeline(plan, "comment", timeline_message, caller.user_id,
                                   meta={"verdict": grade.verdict, "overwrite": is_overwrite},
                                   created_at=now)
        check_invariants(plan, settings)
        plan_store.commit_plan(plan, "grade")

    diff = plan_store.field_diff(before, plan_store.snapshot(plan))
    diff["verdict"] = grade.verdict
    if decision is not None:
        diff["decision"] = decision.to_dict()
    if successor is not None:
        diff["successor_id"] = successor.id
    if withdrawn is not None:
        diff["withdrawn_successor_id"] = withdrawn
    warnings = plan_store.record_audit(plan.id, action, caller.actor, diff)

    logger.info(
        "ActionPlan %s %s by %s → %s%s",
        plan.id, "regraded" if is_overwrite else "graded", caller.actor, plan.status,
        f" (successor {successor.id})" if successor is not None else "",
    )
    return {
        "plan": plan.to_dict(),
        "decision": decision.to_dict() if decision is not None else None,
        "is_overwrite": is_overwrite,
        "successor": successor.to_dict() if successor is not None else None,
        "warnings": warnings,
    }
