"""
Lock policy: temporal deadlines, submission lock, edit mode and unlock requests.

Jan 2026 with the default cutoff day (6) locks at 2026-02-07 00:00 UTC.
"""

from datetime import UTC, datetime, timedelta

import pytest

from app.core.exceptions import ConflictError, PermissionDenied, ValidationError
from app.models.audit import AuditLog
from app.services import lock_policy, plan_store
from app.services.lock_policy import (
    EditMode,
    compute_lock,
    compute_temporal_lock,
    lock_deadline,
    next_period,
    normalize_month,
    resolve_edit_mode,
)
from app.services.plan_settings import PolicySettings, load_policy_settings, upsert_lock_schedule
from app.utils.helpers import as_utc

BEFORE_CUTOFF = datetime(2026, 2, 3, 12, 0, tzinfo=UTC)
AFTER_CUTOFF = datetime(2026, 2, 10, 9, 0, tzinfo=UTC)


# ═════════════════════════════════════════════════════════════════════════════
# Calendar
# ═════════════════════════════════════════════════════════════════════════════


class TestCalendar:
    def test_derived_deadline(self):
        deadline, custom = lock_deadline("Jan", 2026, PolicySettings())
        assert deadline == datetime(2026, 2, 7, tzinfo=UTC)
        assert custom is False

    def test_december_rolls_into_next_year(self):
        deadline, _ = lock_deadline("Dec", 2025, PolicySettings(lock_cutoff_day=3))
        assert deadline == datetime(2026, 1, 4, tzinfo=UTC)

    def test_cutoff_is_clamped(self):
        deadline, _ = lock_deadline("Jan", 2026, PolicySettings(lock_cutoff_day=45))
        assert deadline == datetime(2026, 3, 1, tzinfo=UTC)

    @pytest.mark.parametrize("raw,expected", [("jan", "Jan"), ("January", "Jan"), ("DEC", "Dec")])
    def test_normalize_month(self, raw, expected):
        assert normalize_month(raw) == expected

    def test_unknown_month(self):
        with pytest.raises(ValidationError):
            normalize_month("Janvier")

    def test_next_period(self):
        assert next_period("Dec", 2026) == ("Jan", 2027)
        assert next_period("Mar", 2026) == ("Apr", 2026)


# ═════════════════════════════════════════════════════════════════════════════
# Temporal lock
# ═════════════════════════════════════════════════════════════════════════════


class TestTemporalLock:
    def test_editable_before_cutoff(self, make_plan):
        result = compute_temporal_lock(make_plan(), PolicySettings(), BEFORE_CUTOFF)
        assert result.locked is False
        assert result.message == "Editable for 4 more days"

    def test_locked_after_cutoff(self, make_plan):
        result = compute_temporal_lock(make_plan(), PolicySettings(), AFTER_CUTOFF)
        assert result.locked is True
        assert result.message == "Locked since Feb 06, 2026"

    def test_lock_feature_disabled(self, make_plan):
        result = compute_temporal_lock(make_plan(), PolicySettings(is_lock_enabled=False), AFTER_CUTOFF)
        assert result.locked is False
        assert result.message == "Lock feature disabled"

    def test_force_open_month(self, make_plan):
        upsert_lock_schedule(0, 2026, lock_date=None, force_open=True, actor="u-admin")
        result = compute_temporal_lock(make_plan(), load_policy_settings(), AFTER_CUTOFF)
        assert result.locked is False

    def test_custom_deadline(self, make_plan):
        upsert_lock_schedule(0, 2026, lock_date=datetime(2026, 2, 15, tzinfo=UTC),
                             force_open=False, actor="u-admin")
        result = compute_temporal_lock(make_plan(), load_policy_settings(), AFTER_CUTOFF)
        assert result.locked is False
        assert result.custom_deadline is True
        assert result.message.endswith("(custom deadline)")

    def test_approved_unlock_reopens_until_expiry(self, make_plan):
        plan = make_plan(unlock_status="approved", approved_until=AFTER_CUTOFF + timedelta(hours=6))
        assert compute_temporal_lock(plan, PolicySettings(), AFTER_CUTOFF).locked is False
        later = AFTER_CUTOFF + timedelta(hours=7)
        assert compute_temporal_lock(plan, PolicySettings(), later).locked is True

    def test_pending_unlock_message(self, make_plan):
        plan = make_plan(unlock_status="pending", unlock_reason="Late invoice")
        result = compute_temporal_lock(plan, PolicySettings(), AFTER_CUTOFF)
        assert result.locked is True
        assert result.message == "Locked - Unlock request pending"

    def test_revision_window_wins_over_cutoff(self, make_plan):
        """On Progress plan with a 2-day grace window is editable after the cutoff, then relocks."""
        plan = make_plan(status="On Progress", temporary_unlock_expiry=AFTER_CUTOFF + timedelta(days=2))
        inside = compute_temporal_lock(plan, PolicySettings(), AFTER_CUTOFF)
        assert inside.locked is False
        assert inside.message.startswith("Revision window open until")

        after = compute_temporal_lock(plan, PolicySettings(), AFTER_CUTOFF + timedelta(days=3))
        assert after.locked is True
        assert after.message == "Locked since Feb 06, 2026"


# ═════════════════════════════════════════════════════════════════════════════
# Combined lock and edit mode
# ═════════════════════════════════════════════════════════════════════════════


class TestComputeLock:
    def test_non_admin_locked_after_cutoff_admin_override_unlocks(self, make_plan, leader, admin):
        plan = make_plan()
        settings = PolicySettings()

        as_leader = compute_lock(plan, leader, settings, now=AFTER_CUTOFF)
        assert as_leader.locked is True
        assert as_leader.bypassable is False
        assert resolve_edit_mode(leader, as_leader) is EditMode.READ_ONLY

        as_admin = compute_lock(plan, admin, settings, now=AFTER_CUTOFF)
        assert as_admin.locked is True
        assert as_admin.bypassable is True

        overridden = compute_lock(plan, admin, settings, date_override=True, now=AFTER_CUTOFF)
        assert overridden.locked is False
        assert overridden.temporal_bypassed is True
        assert resolve_edit_mode(admin, overridden) is EditMode.FULL

    def test_override_flag_ignored_for_non_admin(self, make_plan, leader):
        lock = compute_lock(make_plan(), leader, PolicySettings(), date_override=True, now=AFTER_CUTOFF)
        assert lock.locked is True
        assert lock.override_active is False

    def test_submitted_plan_locked_for_leader(self, make_plan, leader, admin):
        plan = make_plan(status="Achieved", submission_status="submitted", attachments=[{"type": "link", "url": "x"}])
        lock = compute_lock(plan, leader, PolicySettings(), now=BEFORE_CUTOFF)
        assert lock.locked is True
        assert lock.message == "Submitted - awaiting review"
        assert compute_lock(plan, admin, PolicySettings(), now=BEFORE_CUTOFF).locked is False

    def test_submission_mode_stays_open_until_graded(self, make_plan, staff):
        plan = make_plan(status="Achieved", submission_status="submitted")
        lock = compute_lock(plan, staff, PolicySettings(), now=BEFORE_CUTOFF)
        assert lock.locked is False
        assert resolve_edit_mode(staff, lock) is EditMode.SUBMISSION

        graded = make_plan(status="Achieved", submission_status="submitted", quality_score=90)
        lock = compute_lock(graded, staff, PolicySettings(), now=BEFORE_CUTOFF)
        assert lock.locked is True
        assert lock.submission_mode_locked is True
        assert lock.bypassable is False

    def test_read_only_caller_never_edits(self, make_plan, executive):
        lock = compute_lock(make_plan(), executive, PolicySettings(), now=BEFORE_CUTOFF)
        assert lock.locked is False
        assert resolve_edit_mode(executive, lock) is EditMode.READ_ONLY


# ═════════════════════════════════════════════════════════════════════════════
# Unlock requests
# ═════════════════════════════════════════════════════════════════════════════


class TestUnlockRequests:
    def test_request_then_approve(self, make_plan, leader, admin):
        plan = make_plan()
        result = lock_policy.request_unlock(plan.id, "Late vendor invoice", leader, now=AFTER_CUTOFF)
        assert result["plan"]["unlock_status"] == "pending"

        result = lock_policy.decide_unlock(plan.id, "approve", admin, hours=12, now=AFTER_CUTOFF)
        assert result["plan"]["unlock_status"] == "approved"
        refreshed = plan_store.fetch_plan(plan.id)
        assert as_utc(refreshed.approved_until) == AFTER_CUTOFF + timedelta(hours=12)
        assert compute_lock(refreshed, leader, load_policy_settings(), now=AFTER_CUTOFF).locked is False

        actions = [a.action for a in AuditLog.query.filter_by(entity_id=plan.id).order_by(AuditLog.id).all()]
        assert actions == ["action_plan.unlock_request", "action_plan.unlock_approve"]

    def test_request_needs_reason(self, make_plan, leader):
        with pytest.raises(ValidationError) as exc:
            lock_policy.request_unlock(make_plan().id, "pls", leader, now=AFTER_CUTOFF)
        assert exc.value.details["reason"]["min_length"] == 5

    def test_request_on_unlocked_plan_is_refused(self, make_plan, leader):
        with pytest.raises(ValidationError):
            lock_policy.request_unlock(make_plan().id, "Need more time", leader, now=BEFORE_CUTOFF)

    def test_duplicate_request_conflicts(self, make_plan, leader):
        plan = make_plan()
        lock_policy.request_unlock(plan.id, "Need more time", leader, now=AFTER_CUTOFF)
        with pytest.raises(ConflictError):
            lock_policy.request_unlock(plan.id, "Need more time", leader, now=AFTER_CUTOFF)

    def test_only_lock_overriders_decide(self, make_plan, leader):
        plan = make_plan(unlock_status="pending", unlock_reason="Need more time")
        with pytest.raises(PermissionDenied):
            lock_policy.decide_unlock(plan.id, "approve", leader, now=AFTER_CUTOFF)

    def test_reject(self, make_plan, admin):
        plan = make_plan(unlock_status="pending", unlock_reason="Need more time")
        result = lock_policy.decide_unlock(plan.id, "reject", admin, now=AFTER_CUTOFF)
        assert result["plan"]["unlock_status"] == "rejected"
        refreshed = plan_store.fetch_plan(plan.id)
        lock = compute_temporal_lock(refreshed, PolicySettings(), AFTER_CUTOFF)
        assert lock.message == "Locked - Unlock request rejected"
