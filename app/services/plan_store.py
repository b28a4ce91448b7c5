"""
Persistence gate for action plan mutations.

Every engine operation goes through the same steps:

    with plan_mutation(plan_id):                 # one in-flight mutation per plan
        plan = fetch_plan(plan_id, expected_version=...)   # fresh state
        ... validate, derive, write ...
        commit_plan(plan, "grade")               # StaleDataError → ConflictError
    warnings += record_audit(...)                # after commit, never rolled back

Mutations on different plans run in parallel; a second mutation on a plan
that is still being written fails fast with ConflictError instead of queueing
behind the first.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConflictError, NotFoundError, TransientError
from app.models import db
from app.models.action_plan import TIMELINE_ENTRY_TYPES, ActionPlan, PlanTimelineEntry
from app.models.audit import write_audit

logger = logging.getLogger(__name__)

_inflight: set[str] = set()
_inflight_lock = threading.Lock()


@contextmanager
def plan_mutation(plan_id: str):
    """Serialize mutations per plan. Raises ConflictError if one is already running.

    Any exception inside the block rolls the session back.
    """
    with _inflight_lock:
        if plan_id in _inflight:
            raise ConflictError(
                "ActionPlan", "id", plan_id,
                reason="another change to this plan is still in flight",
            )
        _inflight.add(plan_id)
    try:
        yield
    except Exception:
        # Nothing staged by a failed mutation may leak into a later commit.
        db.session.rollback()
        raise
    finally:
        with _inflight_lock:
            _inflight.discard(plan_id)


def fetch_plan(plan_id: str, *, expected_version: int | None = None) -> ActionPlan:
    """Load the current server state of a plan, bypassing the identity map."""
    try:
        plan = db.session.get(ActionPlan, plan_id, populate_existing=True)
    except (OperationalError, PoolTimeoutError) as exc:
        db.session.rollback()
        logger.warning("Fetch of ActionPlan %s failed transiently", plan_id, exc_info=True)
        raise TransientError("fetch action plan", exc) from exc
    if plan is None:
        raise NotFoundError("ActionPlan", plan_id)
    if expected_version is not None and plan.version != expected_version:
        raise ConflictError(
            "ActionPlan", "version", str(expected_version),
            reason=f"plan is at version {plan.version}; refetch before retrying",
        )
    return plan


def commit(operation: str, ref: str) -> None:
    """Commit the session, translating concurrency and DB errors.

    *ref* names what was written (plan id, department/period) for the logs.
    """
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.info("Concurrent update lost on %s during %s", ref, operation)
        raise ConflictError(
            "ActionPlan", "version", reason="the plan was changed by someone else; refetch",
        ) from exc
    except (OperationalError, PoolTimeoutError) as exc:
        db.session.rollback()
        logger.warning("Commit of %s on %s failed transiently", operation, ref, exc_info=True)
        raise TransientError(operation, exc) from exc


def commit_plan(plan: ActionPlan, operation: str) -> None:
    commit(operation, f"ActionPlan {plan.id}")


def append_timeline(
    plan: ActionPlan,
    entry_type: str,
    message: str,
    author_id: str | None,
    *,
    meta: dict | None = None,
    created_at=None,
) -> PlanTimelineEntry:
    """Stage a timeline row in the current session; committed with the plan."""
    if entry_type not in TIMELINE_ENTRY_TYPES:
        raise ValueError(f"Unknown timeline entry type {entry_type!r}")
    entry = PlanTimelineEntry(
        action_plan_id=plan.id,
        entry_type=entry_type,
        message=message,
        author_id=author_id,
        meta=meta or {},
    )
    if created_at is not None:
        entry.created_at = created_at
    db.session.add(entry)
    return entry


def record_audit(plan_id: str, action: str, actor: str, diff: dict | None = None) -> list[str]:
    """Write the audit row for an already committed mutation.

    Returns a list with one warning message when the write fails; the core
    change stays committed either way.
    """
    try:
        write_audit(
            entity_type="action_plan",
            entity_id=plan_id,
            action=action,
            actor=actor,
            diff=diff,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning(
            "Audit log failed for %s on ActionPlan %s, main flow unaffected",
            action, plan_id, exc_info=True,
        )
        return [f"Audit log for {action} could not be written; the change itself was saved"]
    return []


def field_diff(before: dict, after: dict) -> dict:
    """{field: {old, new}} for keys whose value changed."""
    return {
        key: {"old": before.get(key), "new": value}
        for key, value in after.items()
        if before.get(key) != value
    }


SNAPSHOT_FIELDS = (
    "status", "submission_status", "quality_score", "max_possible_score",
    "carry_over_status", "blocker_category", "blocker_reason", "attention_level",
    "gap_category", "gap_analysis", "specify_reason", "resolution_type",
    "is_drop_pending", "drop_rejected", "unlock_status", "remark",
)


def snapshot(plan: ActionPlan) -> dict:
    return {name: getattr(plan, name) for name in SNAPSHOT_FIELDS}
