"""
Status detail: the status-dependent plan fields as one tagged union.

A plan's blocker, gap and follow-up columns are only meaningful for one
status each.  Services never set them individually; they build a detail
variant and project it with ``write_status_detail``, which also clears every
field the variant does not own.  That keeps combinations such as "Open with
a pending drop" unrepresentable.

    ActiveDetail(status)                         Open / On Progress
    BlockedDetail(category, reason, level, …)    Blocked
    NotAchievedDetail(gap…, follow_up)           Not Achieved
    AchievedDetail()                             Achieved

``display_status`` is the read-side projection that shows "Waiting Approval"
for a submitted, ungraded Achieved plan.  It is never stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.core.exceptions import PolicyConfigError, ValidationError
from app.models.action_plan import (
    STATUS_ACHIEVED,
    STATUS_BLOCKED,
    STATUS_NOT_ACHIEVED,
    STATUS_ON_PROGRESS,
    STATUS_OPEN,
    STATUS_WAITING_APPROVAL,
    TERMINAL_STATUSES,
)
from app.services.priority import classify_priority, is_recognised_priority

RESOLUTION_CARRIED_OVER = "carried_over"
RESOLUTION_DROPPED = "dropped"
RESOLUTION_TYPES = (RESOLUTION_CARRIED_OVER, RESOLUTION_DROPPED)

DEFAULT_ATTENTION_LEVEL = "Standard"

MAX_SCORE = 100


@dataclass(frozen=True)
class FollowUp:
    resolution_type: str
    drop_pending: bool = False

    def __post_init__(self):
        if self.resolution_type not in RESOLUTION_TYPES:
            raise ValueError(f"Unknown resolution type {self.resolution_type!r}")
        if self.drop_pending and self.resolution_type != RESOLUTION_DROPPED:
            raise ValueError("Only a drop can be pending approval")


@dataclass(frozen=True)
class ActiveDetail:
    status: str = STATUS_OPEN

    def __post_init__(self):
        if self.status not in (STATUS_OPEN, STATUS_ON_PROGRESS):
            raise ValueError(f"ActiveDetail cannot hold status {self.status!r}")


@dataclass(frozen=True)
class BlockedDetail:
    category: str
    reason: str
    attention_level: str = DEFAULT_ATTENTION_LEVEL
    blocked_at: datetime | None = None

    status = STATUS_BLOCKED


@dataclass(frozen=True)
class NotAchievedDetail:
    gap_category: str
    gap_analysis: str
    specify_reason: str | None = None
    follow_up: FollowUp | None = None

    status = STATUS_NOT_ACHIEVED


@dataclass(frozen=True)
class AchievedDetail:
    status = STATUS_ACHIEVED


StatusDetail = ActiveDetail | BlockedDetail | NotAchievedDetail | AchievedDetail


# ═════════════════════════════════════════════════════════════════════════════
# Projection
# ═════════════════════════════════════════════════════════════════════════════

def read_status_detail(plan) -> StatusDetail:
    """Lift the flat columns of *plan* into its status detail variant."""
    if plan.status == STATUS_BLOCKED:
        return BlockedDetail(
            category=plan.blocker_category,
            reason=plan.blocker_reason,
            attention_level=plan.attention_level or DEFAULT_ATTENTION_LEVEL,
            blocked_at=plan.blocked_at,
        )
    if plan.status == STATUS_NOT_ACHIEVED:
        follow_up = None
        if plan.resolution_type in RESOLUTION_TYPES:
            follow_up = FollowUp(plan.resolution_type, bool(plan.is_drop_pending))
        return NotAchievedDetail(
            gap_category=plan.gap_category,
            gap_analysis=plan.gap_analysis,
            specify_reason=plan.specify_reason,
            follow_up=follow_up,
        )
    if plan.status == STATUS_ACHIEVED:
        return AchievedDetail()
    return ActiveDetail(plan.status or STATUS_OPEN)


def _clear_blocker(plan) -> None:
    plan.is_blocked = False
    plan.blocker_category = None
    plan.blocker_reason = None
    plan.attention_level = DEFAULT_ATTENTION_LEVEL
    plan.blocked_at = None


def _clear_gap(plan) -> None:
    plan.gap_category = None
    plan.gap_analysis = None
    plan.specify_reason = None
    plan.resolution_type = None
    plan.is_drop_pending = False


def write_status_detail(plan, detail: StatusDetail) -> None:
    """Project *detail* onto the flat columns of *plan*."""
    if isinstance(detail, BlockedDetail):
        _clear_gap(plan)
        plan.status = STATUS_BLOCKED
        plan.is_blocked = True
        plan.blocker_category = detail.category
        plan.blocker_reason = detail.reason
        plan.attention_level = detail.attention_level
        plan.blocked_at = detail.blocked_at
        plan.quality_score = None
    elif isinstance(detail, NotAchievedDetail):
        _clear_blocker(plan)
        plan.status = STATUS_NOT_ACHIEVED
        plan.gap_category = detail.gap_category
        plan.gap_analysis = detail.gap_analysis
        plan.specify_reason = detail.specify_reason
        if detail.follow_up is None:
            plan.resolution_type = None
            plan.is_drop_pending = False
        else:
            plan.resolution_type = detail.follow_up.resolution_type
            plan.is_drop_pending = detail.follow_up.drop_pending
    elif isinstance(detail, AchievedDetail):
        _clear_blocker(plan)
        _clear_gap(plan)
        plan.status = STATUS_ACHIEVED
    elif isinstance(detail, ActiveDetail):
        _clear_blocker(plan)
        _clear_gap(plan)
        plan.status = detail.status
        plan.quality_score = None
    else:
        raise TypeError(f"Unknown status detail {detail!r}")


def score_limit(plan) -> int:
    """Highest score the plan can earn; carry-over penalties lower it below MAX_SCORE."""
    cap = plan.max_possible_score
    if cap is not None and cap < MAX_SCORE:
        return int(cap)
    return MAX_SCORE


def display_status(plan) -> str:
    """Status as shown to people: Achieved awaiting a grade reads "Waiting Approval"."""
    if (
        plan.status == STATUS_ACHIEVED
        and plan.submission_status == "submitted"
        and plan.quality_score is None
    ):
        return STATUS_WAITING_APPROVAL
    return plan.status


# ═════════════════════════════════════════════════════════════════════════════
# Invariants
# ═════════════════════════════════════════════════════════════════════════════

def blocker_reason_min_length(attention_level: str, settings) -> int:
    try:
        return int(settings.blocker_min_length[attention_level])
    except KeyError:
        raise PolicyConfigError(
            f"blocker_min_length.{attention_level}",
            f"No minimum blocker reason length is configured for attention level "
            f"'{attention_level}'",
        ) from None


def drop_needs_approval(category: str | None, settings) -> bool:
    if not is_recognised_priority(category):
        return False
    return settings.drop_requires_approval(classify_priority(category))


def gap_analysis_required_length(resolution_type: str | None, category: str | None, settings) -> int:
    """Drops that need management approval require the longer justification."""
    if resolution_type == RESOLUTION_DROPPED and drop_needs_approval(category, settings):
        return settings.drop_justification_min_length
    return settings.gap_analysis_min_length


def _text_len(value) -> int:
    return len((value or "").strip())


def check_invariants(plan, settings) -> None:
    """Raise ValidationError if *plan* violates a lifecycle invariant.

    Called right before commit; a violation aborts the mutation.
    """
    problems = {}

    if plan.quality_score is not None and plan.status not in TERMINAL_STATUSES:
        problems["quality_score"] = f"scored plans must be terminal, status is {plan.status!r}"

    if plan.status == STATUS_BLOCKED:
        required = blocker_reason_min_length(plan.attention_level, settings)
        if not plan.blocker_category:
            problems["blocker_category"] = "required while Blocked"
        if _text_len(plan.blocker_reason) < required:
            problems["blocker_reason"] = {"min_length": required, "actual": _text_len(plan.blocker_reason)}
    elif plan.is_blocked or plan.blocker_reason or plan.blocker_category:
        problems["blocker_reason"] = "blocker fields must be cleared outside Blocked"

    if plan.status == STATUS_NOT_ACHIEVED:
        required = gap_analysis_required_length(plan.resolution_type, plan.category, settings)
        if not plan.gap_category:
            problems["gap_category"] = "required while Not Achieved"
        if _text_len(plan.gap_analysis) < required:
            problems["gap_analysis"] = {"min_length": required, "actual": _text_len(plan.gap_analysis)}

    if plan.is_drop_pending and not (
        plan.status == STATUS_NOT_ACHIEVED and plan.resolution_type == RESOLUTION_DROPPED
    ):
        problems["is_drop_pending"] = "a pending drop must be a Not Achieved plan with resolution 'dropped'"

    if problems:
        raise ValidationError(f"ActionPlan {plan.id} violates lifecycle invariants", details=problems)
