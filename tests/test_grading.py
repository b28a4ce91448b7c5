"""
Grading engine: lenient and strict verdicts, score ceilings, carry-over
successors, revision windows and recalled submissions.
"""

from datetime import UTC, datetime, timedelta

import pytest

from app.core.exceptions import ConflictError, PermissionDenied, RecalledError, ValidationError
from app.models import db
from app.models.action_plan import ActionPlan
from app.models.audit import AuditLog
from app.services import plan_lifecycle, plan_store
from app.services.grading import GradeInput, clamp_score, evaluate_grade, grade_plan
from app.services.plan_settings import PolicySettings
from app.utils.helpers import as_utc

NOW = datetime(2026, 2, 12, 15, 0, tzinfo=UTC)
STRICT = PolicySettings(is_strict_grading_enabled=True)


@pytest.fixture()
def submitted(make_plan, evidence):
    def _submitted(**overrides):
        values = {"status": "Achieved", "submission_status": "submitted", "attachments": evidence()}
        values.update(overrides)
        return make_plan(**values)

    return _submitted


# ═════════════════════════════════════════════════════════════════════════════
# Pure evaluation
# ═════════════════════════════════════════════════════════════════════════════


class TestEvaluateGrade:
    @pytest.mark.parametrize("score,limit", [(-5, 100), (0, 100), (73, 80), (95, 80), (140, 100)])
    def test_clamp_is_idempotent(self, score, limit):
        once = clamp_score(score, limit)
        assert clamp_score(once, limit) == once
        assert 0 <= once <= limit

    def test_lenient_always_achieved(self):
        plan = ActionPlan(category="High", max_possible_score=None)
        decision = evaluate_grade(plan, 40, PolicySettings())
        assert decision.status == "Achieved"
        assert decision.strict is False
        assert decision.score == 40

    def test_strict_high_below_target(self):
        plan = ActionPlan(category="High", max_possible_score=100)
        decision = evaluate_grade(plan, 85, STRICT)
        assert decision.effective_target == 100
        assert decision.status == "Not Achieved"
        assert decision.verdict_required is True

    def test_strict_target_capped_by_ceiling(self):
        plan = ActionPlan(category="Medium", max_possible_score=50, carry_over_status="Late_Month_2")
        decision = evaluate_grade(plan, 50, STRICT)
        assert decision.threshold == 80
        assert decision.effective_target == 50
        assert decision.status == "Achieved"

    def test_score_clamped_to_ceiling(self):
        plan = ActionPlan(category="Low", max_possible_score=80)
        assert evaluate_grade(plan, 95, STRICT).score == 80

    @pytest.mark.parametrize("category", ["UH", "High", "Medium", "Low"])
    @pytest.mark.parametrize("cap", [None, 80, 50])
    @pytest.mark.parametrize("score", [0, 49, 50, 70, 79, 80, 99, 100])
    def test_strict_pass_iff_score_meets_effective_target(self, category, cap, score):
        plan = ActionPlan(category=category, max_possible_score=cap)
        decision = evaluate_grade(plan, score, STRICT)
        target = min(decision.threshold, cap if cap is not None else 100)
        assert (decision.status == "Achieved") == (decision.score >= target)


# ═════════════════════════════════════════════════════════════════════════════
# grade_plan
# ═════════════════════════════════════════════════════════════════════════════


class TestGradePlan:
    def test_lenient_low_score_approves(self, submitted, admin):
        plan = submitted(category="High")
        result = grade_plan(plan.id, GradeInput(score=40, verdict="approve"), admin, now=NOW)
        assert result["plan"]["status"] == "Achieved"
        assert result["plan"]["quality_score"] == 40
        assert result["is_overwrite"] is False
        assert AuditLog.query.filter_by(entity_id=plan.id, action="action_plan.grade").count() == 1

    def test_lenient_approval_of_not_achieved_marks_achieved(self, submitted, admin):
        plan = submitted(status="Not Achieved", gap_category="Vendor Delay",
                         gap_analysis="Partner slipped three weeks", resolution_type="carried_over")
        result = grade_plan(plan.id, GradeInput(score=60, verdict="approve"), admin, now=NOW)
        assert result["plan"]["status"] == "Achieved"
        assert result["plan"]["gap_category"] is None

    def test_strict_failure_requires_verdict(self, submitted, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan = submitted(category="High")
        with pytest.raises(ValidationError) as exc:
            grade_plan(plan.id, GradeInput(score=85), admin, now=NOW)
        assert exc.value.details["verdict"]["required"] is True
        assert exc.value.details["grade"]["effective_target"] == 100
        assert plan_store.fetch_plan(plan.id).quality_score is None

    def test_strict_failure_failed_verdict(self, submitted, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan = submitted(category="High")
        result = grade_plan(plan.id, GradeInput(score=85, verdict="failed"), admin, now=NOW)
        data = result["plan"]
        assert data["status"] == "Not Achieved"
        assert data["quality_score"] == 85
        assert data["gap_category"] == "Below Target"
        assert data["gap_analysis"] == "Scored 85 against a High target of 100"
        assert result["successor"] is None

    def test_strict_failure_keeps_feedback_as_analysis(self, submitted, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan = submitted(category="High")
        result = grade_plan(
            plan.id, GradeInput(score=60, verdict="failed", feedback="Only two of five sites migrated"),
            admin, now=NOW,
        )
        assert result["plan"]["gap_analysis"] == "Only two of five sites migrated"
        assert result["plan"]["admin_feedback"] == "Only two of five sites migrated"

    def test_carry_over_ceiling_passes_at_ceiling(self, submitted, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan = submitted(category="Medium", max_possible_score=50, carry_over_status="Late_Month_2")
        result = grade_plan(plan.id, GradeInput(score=50, verdict="approve"), admin, now=NOW)
        assert result["plan"]["status"] == "Achieved"
        assert result["decision"]["effective_target"] == 50

    def test_carry_over_verdict_creates_penalised_successor(self, submitted, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan = submitted(category="High")
        result = grade_plan(plan.id, GradeInput(score=70, verdict="carry_over"), admin, now=NOW)

        successor = result["successor"]
        assert successor["month"] == "Feb"
        assert successor["year"] == 2026
        assert successor["status"] == "Open"
        assert successor["submission_status"] == "draft"
        assert successor["carry_over_status"] == "Late_Month_1"
        assert successor["max_possible_score"] == 80
        assert successor["carried_over_from_id"] == plan.id
        assert result["plan"]["carried_over_to_id"] == successor["id"]
        assert result["plan"]["resolution_type"] == "carried_over"

        audit = AuditLog.query.filter_by(entity_id=plan.id, action="action_plan.grade").one()
        assert audit.diff["successor_id"] == successor["id"]

    def test_second_carry_over_uses_second_penalty(self, submitted, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan = submitted(category="Low", max_possible_score=80, carry_over_status="Late_Month_1")
        result = grade_plan(plan.id, GradeInput(score=30, verdict="carry_over"), admin, now=NOW)
        assert result["successor"]["max_possible_score"] == 50
        assert result["successor"]["carry_over_status"] == "Late_Month_2"

    def test_late_month_2_cannot_carry_over(self, submitted, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan = submitted(category="High", max_possible_score=50, carry_over_status="Late_Month_2")
        with pytest.raises(ValidationError):
            grade_plan(plan.id, GradeInput(score=10, verdict="carry_over"), admin, now=NOW)
        assert ActionPlan.query.count() == 1

    def test_passing_grade_rejects_failure_verdict(self, submitted, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan = submitted(category="Low")
        with pytest.raises(ValidationError):
            grade_plan(plan.id, GradeInput(score=90, verdict="failed"), admin, now=NOW)

    def test_regrade_is_flagged_as_overwrite(self, submitted, admin):
        plan = submitted()
        grade_plan(plan.id, GradeInput(score=70, verdict="approve"), admin, now=NOW)
        result = grade_plan(plan.id, GradeInput(score=90, verdict="approve"), admin, now=NOW)
        assert result["is_overwrite"] is True
        assert result["plan"]["quality_score"] == 90
        actions = [a.action for a in AuditLog.query.filter_by(entity_id=plan.id).order_by(AuditLog.id)]
        assert actions == ["action_plan.grade", "action_plan.regrade"]

    def test_revision_reopens_plan_with_grace_window(self, submitted, admin):
        plan = submitted()
        result = grade_plan(
            plan.id, GradeInput(score=None, verdict="revision", feedback="Attach the signed minutes",
                                revision_days=5),
            admin, now=NOW,
        )
        data = result["plan"]
        assert data["status"] == "On Progress"
        assert data["submission_status"] == "draft"
        assert data["quality_score"] is None
        refreshed = plan_store.fetch_plan(plan.id)
        assert as_utc(refreshed.temporary_unlock_expiry) == NOW + timedelta(days=5)
        assert AuditLog.query.filter_by(entity_id=plan.id, action="action_plan.revision").count() == 1

    def test_revision_requires_feedback(self, submitted, admin):
        with pytest.raises(ValidationError) as exc:
            grade_plan(submitted().id, GradeInput(score=None, verdict="revision"), admin, now=NOW)
        assert "feedback" in exc.value.details

    @pytest.mark.parametrize("days", [0, 15])
    def test_revision_window_bounds(self, submitted, admin, days):
        grade_input = GradeInput(score=None, verdict="revision", feedback="Redo", revision_days=days)
        with pytest.raises(ValidationError) as exc:
            grade_plan(submitted().id, grade_input, admin, now=NOW)
        assert exc.value.details["revision_days"] == {"min": 1, "max": 14}

    def test_score_required(self, submitted, admin):
        with pytest.raises(ValidationError):
            grade_plan(submitted().id, GradeInput(score=None, verdict="approve"), admin, now=NOW)

    def test_only_graders_grade(self, submitted, leader):
        with pytest.raises(PermissionDenied):
            grade_plan(submitted().id, GradeInput(score=80), leader, now=NOW)

    def test_pending_drop_cannot_be_graded(self, submitted, admin):
        plan = submitted(status="Not Achieved", gap_category="Vendor Delay",
                         gap_analysis="x" * 40, resolution_type="dropped", is_drop_pending=True)
        with pytest.raises(ConflictError):
            grade_plan(plan.id, GradeInput(score=0, verdict="approve"), admin, now=NOW)

    def test_recalled_plan_raises_recalled(self, submitted, admin, leader):
        plan = submitted()
        plan_lifecycle.recall_submission(plan.id, leader, now=NOW)
        with pytest.raises(RecalledError) as exc:
            grade_plan(plan.id, GradeInput(score=80, verdict="approve"), admin, now=NOW)
        assert exc.value.plan_id == plan.id
        assert plan_store.fetch_plan(plan.id).quality_score is None

    def test_stale_version_conflicts(self, submitted, admin):
        plan = submitted()
        with pytest.raises(ConflictError) as exc:
            grade_plan(plan.id, GradeInput(score=80, verdict="approve"), admin,
                       expected_version=plan.version + 1, now=NOW)
        assert exc.value.field == "version"


# ═════════════════════════════════════════════════════════════════════════════
# Successors staged at month finalization
# ═════════════════════════════════════════════════════════════════════════════


FINALIZED_AT = datetime(2026, 2, 3, 12, 0, tzinfo=UTC)


@pytest.fixture()
def finalized_carry_over(make_plan, evidence, leader):
    """Not Achieved plan carried over by its PIC, then submitted with the month."""
    plan = make_plan(
        status="Not Achieved", attachments=evidence(), gap_category="Vendor Delay",
        gap_analysis="Vendor slipped the go-live by a month", resolution_type="carried_over",
    )
    result = plan_lifecycle.finalize_month_report("FIN", "Jan", 2026, leader, now=FINALIZED_AT)
    successor_id = result["successors"][0]["to"]
    assert plan_store.fetch_plan(successor_id).max_possible_score is None
    return plan, successor_id


class TestStagedSuccessor:
    def test_carry_over_verdict_caps_existing_successor(self, finalized_carry_over, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan, successor_id = finalized_carry_over

        result = grade_plan(plan.id, GradeInput(score=30, verdict="carry_over"), admin, now=NOW)

        assert result["is_overwrite"] is True
        assert result["successor"]["id"] == successor_id
        assert result["successor"]["max_possible_score"] == 80
        assert plan_store.fetch_plan(successor_id).max_possible_score == 80
        assert ActionPlan.query.count() == 2

    def test_failed_verdict_withdraws_successor(self, finalized_carry_over, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan, successor_id = finalized_carry_over

        result = grade_plan(plan.id, GradeInput(score=30, verdict="failed"), admin, now=NOW)

        assert result["plan"]["resolution_type"] is None
        assert result["plan"]["carried_over_to_id"] is None
        assert ActionPlan.query.count() == 1
        audit = AuditLog.query.filter_by(entity_id=plan.id, action="action_plan.regrade").one()
        assert audit.diff["withdrawn_successor_id"] == successor_id

    def test_approval_withdraws_successor(self, finalized_carry_over, admin):
        plan, _ = finalized_carry_over
        result = grade_plan(plan.id, GradeInput(score=60, verdict="approve"), admin, now=NOW)
        assert result["plan"]["status"] == "Achieved"
        assert result["plan"]["carried_over_to_id"] is None
        assert ActionPlan.query.count() == 1

    def test_carry_over_then_failed_leaves_no_successor(self, submitted, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan = submitted(category="High")
        grade_plan(plan.id, GradeInput(score=30, verdict="carry_over"), admin, now=NOW)
        assert ActionPlan.query.count() == 2

        result = grade_plan(plan.id, GradeInput(score=30, verdict="failed"), admin, now=NOW)
        assert result["plan"]["carried_over_to_id"] is None
        assert ActionPlan.query.count() == 1

    def test_started_successor_cannot_be_withdrawn(self, finalized_carry_over, admin, set_policy):
        set_policy(is_strict_grading_enabled=True)
        plan, successor_id = finalized_carry_over
        successor = plan_store.fetch_plan(successor_id)
        successor.status = "On Progress"
        db.session.commit()

        with pytest.raises(ConflictError) as exc:
            grade_plan(plan.id, GradeInput(score=30, verdict="failed"), admin, now=NOW)
        assert exc.value.field == "carried_over_to_id"

        unchanged = plan_store.fetch_plan(plan.id)
        assert unchanged.carried_over_to_id == successor_id
        assert unchanged.resolution_type == "carried_over"
        assert ActionPlan.query.count() == 2
