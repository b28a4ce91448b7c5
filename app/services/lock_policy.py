"""
Lock policy: decides whether a plan's fields are editable right now.

Two independent sources are OR-ed together:

  Submission lock   the plan was submitted (or shows as Waiting Approval).
                    Bypassed by lock-override callers that are not read-only.
                    Submission-mode callers (status updates only) stay
                    unlocked until the plan is graded or a drop is pending.

  Temporal lock     derived from the plan's month/year and the cutoff day,
                    resolved in this order:
                      1. revision grace window (temporary_unlock_expiry)
                      2. lock feature disabled
                      3. monthly override: force-open, or a custom lock date
                      4. approved unlock request
                      5. locked from (1st of next month + cutoff_day)

An admin date override bypasses the temporal lock only; mutations made under
it are flagged ``date_override`` in their audit diff.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from app.core.exceptions import ConflictError, PermissionDenied, ValidationError
from app.services.capabilities import (
    Capability,
    CallerContext,
    require_capability,
    require_department,
)
from app.services.plan_state import display_status
from app.services import plan_store
from app.services.plan_settings import load_policy_settings
from app.models.action_plan import STATUS_WAITING_APPROVAL
from app.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_FULL_MONTHS = ("january", "february", "march", "april", "may", "june", "july",
                "august", "september", "october", "november", "december")

MIN_UNLOCK_REASON_LENGTH = 5

UNLOCK_PENDING = "pending"
UNLOCK_APPROVED = "approved"
UNLOCK_REJECTED = "rejected"


class EditMode(str, Enum):
    FULL = "full"
    SUBMISSION = "submission"
    READ_ONLY = "read_only"


@dataclass(frozen=True)
class LockResult:
    locked: bool
    bypassable: bool
    message: str
    submission_locked: bool = False
    submission_mode_locked: bool = False
    temporal_locked: bool = False
    temporal_bypassed: bool = False
    override_active: bool = False
    deadline: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "locked": self.locked,
            "bypassable": self.bypassable,
            "message": self.message,
            "submission_locked": self.submission_locked,
            "submission_mode_locked": self.submission_mode_locked,
            "temporal_locked": self.temporal_locked,
            "temporal_bypassed": self.temporal_bypassed,
            "override_active": self.override_active,
            "deadline": self.deadline.isoformat() if self.deadline else None,
        }


@dataclass(frozen=True)
class TemporalLock:
    locked: bool
    message: str
    deadline: datetime | None = None
    custom_deadline: bool = False


# ═════════════════════════════════════════════════════════════════════════════
# Calendar helpers
# ═════════════════════════════════════════════════════════════════════════════

def parse_month_name(month) -> int:
    """'Jan' / 'january' / 'JAN' → 0. Raises ValidationError otherwise."""
    text = str(month or "").strip().lower()
    for index, name in enumerate(_FULL_MONTHS):
        if text and (text == name or text == name[:3]):
            return index
    raise ValidationError(
        f"Unknown month {month!r}",
        details={"month": {"allowed": list(MONTHS)}},
    )


def normalize_month(month) -> str:
    return MONTHS[parse_month_name(month)]


def next_period(month, year: int) -> tuple[str, int]:
    index = parse_month_name(month)
    if index == 11:
        return MONTHS[0], year + 1
    return MONTHS[index + 1], year


def lock_deadline(month, year: int, settings) -> tuple[datetime, bool]:
    """Moment the plan's period locks, and whether it came from a monthly override.

    Derived deadline: first day of the following month plus ``lock_cutoff_day``
    days, cutoff clamped to 1..28. Jan 2026 with cutoff 6 locks at
    2026-02-07 00:00 UTC, i.e. Feb 6 is the last editable day.
    """
    index = parse_month_name(month)
    override = settings.find_override(index, year)
    if override is not None and override.lock_date is not None:
        return as_utc(override.lock_date), True

    cutoff = min(max(int(settings.lock_cutoff_day), 1), 28)
    next_month, next_year = (1, year + 1) if index == 11 else (index + 2, year)
    first_of_next = datetime(next_year, next_month, 1, tzinfo=timezone.utc)
    return first_of_next + timedelta(days=cutoff), False


def lock_status_message(locked: bool, deadline: datetime, now: datetime, *, custom: bool = False) -> str:
    suffix = " (custom deadline)" if custom else ""
    if locked:
        last_day = deadline - timedelta(microseconds=1)
        return f"Locked since {last_day.strftime('%b %d, %Y')}{suffix}"
    days_left = max(1, math.ceil((deadline - now).total_seconds() / 86400))
    unit = "day" if days_left == 1 else "days"
    return f"Editable for {days_left} more {unit}{suffix}"


# ═════════════════════════════════════════════════════════════════════════════
# Lock computation
# ═════════════════════════════════════════════════════════════════════════════

def compute_temporal_lock(plan, settings, now: datetime) -> TemporalLock:
    expiry = as_utc(plan.temporary_unlock_expiry)
    if expiry is not None and now < expiry:
        return TemporalLock(False, f"Revision window open until {expiry.strftime('%b %d, %Y %H:%M')} UTC", expiry)

    if not settings.is_lock_enabled:
        return TemporalLock(False, "Lock feature disabled")

    override = settings.find_override(parse_month_name(plan.month), plan.year)
    if override is not None and override.force_open:
        return TemporalLock(False, "Force-opened by admin for this month")

    deadline, custom = lock_deadline(plan.month, plan.year, settings)

    approved_until = as_utc(plan.approved_until)
    if plan.unlock_status == UNLOCK_APPROVED and (approved_until is None or now < approved_until):
        return TemporalLock(False, "Unlocked by admin", deadline, custom)

    locked = now >= deadline
    if locked and plan.unlock_status == UNLOCK_PENDING:
        message = "Locked - Unlock request pending"
    elif locked and plan.unlock_status == UNLOCK_REJECTED:
        message = "Locked - Unlock request rejected"
    else:
        message = lock_status_message(locked, deadline, now, custom=custom)
    return TemporalLock(locked, message, deadline, custom)


def is_submission_mode(caller: CallerContext) -> bool:
    return not caller.can(Capability.CAN_EDIT_FULL) and caller.can(Capability.CAN_UPDATE_STATUS)


def compute_lock(
    plan,
    caller: CallerContext,
    settings,
    *,
    date_override: bool = False,
    now: datetime | None = None,
) -> LockResult:
    """Combine the submission and temporal locks for *caller* on *plan*."""
    now = now or utcnow()

    submission_locked = (
        plan.submission_status == "submitted"
        or display_status(plan) == STATUS_WAITING_APPROVAL
    )
    lock_override = caller.can(Capability.CAN_OVERRIDE_LOCK) and not caller.read_only
    submission_mode = is_submission_mode(caller)
    submission_mode_locked = submission_mode and (
        plan.quality_score is not None or bool(plan.is_drop_pending)
    )

    temporal = compute_temporal_lock(plan, settings, now)
    override_active = bool(date_override) and caller.is_admin
    temporal_bypassed = temporal.locked and override_active

    locked = (
        (submission_locked and not lock_override and not submission_mode)
        or (submission_mode and submission_mode_locked)
        or (temporal.locked and not temporal_bypassed)
    )
    bypassable = (not submission_locked or lock_override) and (
        not temporal.locked or caller.is_admin
    ) and not submission_mode_locked

    if submission_mode_locked:
        message = "Graded - no further updates" if plan.quality_score is not None else "Drop pending approval"
    elif submission_locked and not lock_override and not submission_mode:
        message = "Submitted - awaiting review"
    elif temporal_bypassed:
        message = "Date override active (admin)"
    else:
        message = temporal.message

    return LockResult(
        locked=locked,
        bypassable=bypassable,
        message=message,
        submission_locked=submission_locked,
        submission_mode_locked=submission_mode_locked,
        temporal_locked=temporal.locked,
        temporal_bypassed=temporal_bypassed,
        override_active=override_active,
        deadline=temporal.deadline,
    )


def resolve_edit_mode(caller: CallerContext, lock: LockResult) -> EditMode:
    """Pure function of (capabilities, lock): which field set the caller may touch."""
    if caller.read_only or lock.locked:
        return EditMode.READ_ONLY
    if caller.can(Capability.CAN_EDIT_FULL):
        return EditMode.FULL
    if caller.can(Capability.CAN_UPDATE_STATUS):
        return EditMode.SUBMISSION
    return EditMode.READ_ONLY


def assert_editable(plan, caller: CallerContext, settings, action: str, *,
                    date_override: bool = False, now: datetime | None = None) -> tuple[LockResult, EditMode]:
    """Gate used by every field mutation. Raises PermissionDenied when locked."""
    lock = compute_lock(plan, caller, settings, date_override=date_override, now=now)
    mode = resolve_edit_mode(caller, lock)
    if mode is EditMode.READ_ONLY:
        logger.info("Rejected %s on ActionPlan %s for %s: %s", action, plan.id, caller.actor, lock.message)
        raise PermissionDenied(caller.user_id, action, lock.message if lock.locked else "read-only access")
    return lock, mode


# ═════════════════════════════════════════════════════════════════════════════
# Unlock requests
# ═════════════════════════════════════════════════════════════════════════════

def request_unlock(plan_id: str, reason: str, caller: CallerContext, *,
                   expected_version: int | None = None, now: datetime | None = None) -> dict:
    """Ask an administrator to reopen a temporally locked plan."""
    now = now or utcnow()
    if caller.read_only or not (
        caller.can(Capability.CAN_EDIT_FULL) or caller.can(Capability.CAN_UPDATE_STATUS)
    ):
        raise PermissionDenied(caller.user_id, "request_unlock", "read-only access")

    reason = (reason or "").strip()
    if len(reason) < MIN_UNLOCK_REASON_LENGTH:
        raise ValidationError(
            f"Unlock reason must be at least {MIN_UNLOCK_REASON_LENGTH} characters",
            details={"reason": {"min_length": MIN_UNLOCK_REASON_LENGTH, "actual": len(reason)}},
        )

    with plan_store.plan_mutation(plan_id):
        plan = plan_store.fetch_plan(plan_id, expected_version=expected_version)
        require_department(caller, plan.department_code, "request_unlock")
        settings = load_policy_settings()
        temporal = compute_temporal_lock(plan, settings, now)
        if not temporal.locked:
            raise ValidationError("Plan is not locked; no unlock needed", details={"lock": temporal.message})
        if plan.unlock_status == UNLOCK_PENDING:
            raise ConflictError("ActionPlan", "unlock_status", reason="an unlock request is already pending")

        plan.unlock_status = UNLOCK_PENDING
        plan.unlock_reason = reason
        plan.approved_until = None
        plan_store.commit_plan(plan, "request_unlock")

    warnings = plan_store.record_audit(
        plan.id, "action_plan.unlock_request", caller.actor, {"reason": reason},
    )
    logger.info("Unlock requested for ActionPlan %s by %s", plan.id, caller.actor)
    return {"plan": plan.to_dict(), "warnings": warnings}


def decide_unlock(plan_id: str, decision: str, caller: CallerContext, *,
                  hours: int | None = None, expected_version: int | None = None,
                  now: datetime | None = None) -> dict:
    """Approve (time-boxed reopen) or reject a pending unlock request."""
    now = now or utcnow()
    require_capability(caller, Capability.CAN_OVERRIDE_LOCK, "decide_unlock")
    if caller.read_only:
        raise PermissionDenied(caller.user_id, "decide_unlock", "read-only access")
    if decision not in ("approve", "reject"):
        raise ValidationError(
            "decision must be 'approve' or 'reject'",
            details={"decision": {"allowed": ["approve", "reject"]}},
        )

    with plan_store.plan_mutation(plan_id):
        plan = plan_store.fetch_plan(plan_id, expected_version=expected_version)
        if plan.unlock_status != UNLOCK_PENDING:
            raise ConflictError(
                "ActionPlan", "unlock_status", UNLOCK_PENDING,
                reason=f"no pending unlock request (current: {plan.unlock_status})",
            )
        if decision == "approve":
            window = hours if hours is not None else load_policy_settings().unlock_window_hours
            if not 1 <= int(window) <= 24 * 14:
                raise ValidationError("hours must be 1..336", details={"hours": {"min": 1, "max": 336}})
            plan.unlock_status = UNLOCK_APPROVED
            plan.approved_until = now + timedelta(hours=int(window))
        else:
            plan.unlock_status = UNLOCK_REJECTED
            plan.approved_until = None
        plan_store.commit_plan(plan, "decide_unlock")

    action = "action_plan.unlock_approve" if decision == "approve" else "action_plan.unlock_reject"
    warnings = plan_store.record_audit(
        plan.id, action, caller.actor,
        {"unlock_status": plan.unlock_status, "approved_until": plan.approved_until},
    )
    logger.info("Unlock %s for ActionPlan %s by %s", decision, plan.id, caller.actor)
    return {"plan": plan.to_dict(), "warnings": warnings}
