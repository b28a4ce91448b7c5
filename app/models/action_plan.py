"""
Action Plan domain models.

Models:
    - ActionPlan: a department's committed initiative for one month/year.
    - PlanTimelineEntry: append-only progress / blocker timeline per plan.

Flat columns are the persistence projection only; services read and write
the status-dependent fields through ``app.services.plan_state``.
"""

import uuid
from datetime import datetime, timezone

from app.models import db


__all__ = [
    "ActionPlan",
    "PlanTimelineEntry",
    "PLAN_STATUSES",
    "STATUS_OPEN",
    "STATUS_ON_PROGRESS",
    "STATUS_BLOCKED",
    "STATUS_ACHIEVED",
    "STATUS_NOT_ACHIEVED",
    "STATUS_WAITING_APPROVAL",
    "TERMINAL_STATUSES",
    "TIMELINE_ENTRY_TYPES",
]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_OPEN = "Open"
STATUS_ON_PROGRESS = "On Progress"
STATUS_BLOCKED = "Blocked"
STATUS_ACHIEVED = "Achieved"
STATUS_NOT_ACHIEVED = "Not Achieved"

# Display-only; never written to ``status``.
STATUS_WAITING_APPROVAL = "Waiting Approval"

PLAN_STATUSES = (
    STATUS_OPEN,
    STATUS_ON_PROGRESS,
    STATUS_BLOCKED,
    STATUS_ACHIEVED,
    STATUS_NOT_ACHIEVED,
)
TERMINAL_STATUSES = (STATUS_ACHIEVED, STATUS_NOT_ACHIEVED)

TIMELINE_ENTRY_TYPES = {
    "progress_update",
    "blocker_report",
    "blocker_resolved",
    "comment",
}


# ═════════════════════════════════════════════════════════════════════════════
# 1. ActionPlan
# ═════════════════════════════════════════════════════════════════════════════

class ActionPlan(db.Model):
    """
    Monthly action plan owned by a department.

    ``version`` is SQLAlchemy's optimistic-concurrency counter: a flush that
    updates a row whose version moved underneath raises StaleDataError.
    """

    __tablename__ = "action_plans"
    __table_args__ = (
        db.Index("idx_ap_dept_period", "department_code", "year", "month"),
        db.Index("idx_ap_status", "status"),
        db.Index("idx_ap_drop_pending", "is_drop_pending"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    version = db.Column(db.Integer, nullable=False, default=1)

    # Planning
    department_code = db.Column(db.String(20), nullable=False, index=True)
    month = db.Column(db.String(10), nullable=False, comment="Jan .. Dec")
    year = db.Column(db.Integer, nullable=False)
    goal_strategy = db.Column(db.Text, nullable=True)
    action_plan = db.Column(db.Text, nullable=False)
    indicator = db.Column(db.Text, nullable=True)
    pic = db.Column(db.String(150), nullable=True)
    category = db.Column(
        db.String(50), nullable=True,
        comment="Free-text priority label, e.g. 'UH (Ultra High)'",
    )
    report_format = db.Column(db.String(50), nullable=True)

    # Lifecycle
    status = db.Column(db.String(20), nullable=False, default=STATUS_OPEN)
    submission_status = db.Column(
        db.String(10), nullable=False, default="draft",
        comment="draft | submitted",
    )
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_by = db.Column(db.String(36), nullable=True)

    # Grading
    quality_score = db.Column(db.Integer, nullable=True)
    max_possible_score = db.Column(db.Integer, nullable=True)
    carry_over_status = db.Column(
        db.String(20), nullable=False, default="Normal",
        comment="Normal | Late_Month_1 | Late_Month_2",
    )
    carried_over_from_id = db.Column(db.String(36), nullable=True)
    carried_over_to_id = db.Column(db.String(36), nullable=True)
    admin_feedback = db.Column(db.Text, nullable=True)
    reviewed_by = db.Column(db.String(36), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Blocker / escalation
    is_blocked = db.Column(db.Boolean, nullable=False, default=False)
    blocker_category = db.Column(db.String(30), nullable=True)
    blocker_reason = db.Column(db.Text, nullable=True)
    attention_level = db.Column(db.String(20), nullable=False, default="Standard")
    blocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    alert_status = db.Column(db.String(30), nullable=True)
    alert_status_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Failure / resolution
    gap_category = db.Column(db.String(100), nullable=True)
    gap_analysis = db.Column(db.Text, nullable=True)
    specify_reason = db.Column(db.Text, nullable=True)
    resolution_type = db.Column(
        db.String(20), nullable=True,
        comment="carried_over | dropped",
    )
    is_drop_pending = db.Column(db.Boolean, nullable=False, default=False)
    drop_rejected = db.Column(db.Boolean, nullable=False, default=False)
    drop_rejection_reason = db.Column(db.Text, nullable=True)

    # Temporal lock overrides
    unlock_status = db.Column(
        db.String(10), nullable=True,
        comment="pending | approved | rejected",
    )
    unlock_reason = db.Column(db.Text, nullable=True)
    approved_until = db.Column(db.DateTime(timezone=True), nullable=True)
    temporary_unlock_expiry = db.Column(db.DateTime(timezone=True), nullable=True)

    # Execution
    attachments = db.Column(db.JSON, nullable=False, default=list)
    outcome_link = db.Column(db.Text, nullable=True)
    remark = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    __mapper_args__ = {"version_id_col": version}

    timeline = db.relationship(
        "PlanTimelineEntry", backref="plan", lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="PlanTimelineEntry.created_at",
    )

    @property
    def evidence_count(self) -> int:
        return len(self.attachments or [])

    def to_dict(self) -> dict:
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "version": self.version,
            "department_code": self.department_code,
            "month": self.month,
            "year": self.year,
            "goal_strategy": self.goal_strategy,
            "action_plan": self.action_plan,
            "indicator": self.indicator,
            "pic": self.pic,
            "category": self.category,
            "report_format": self.report_format,
            "status": self.status,
            "submission_status": self.submission_status,
            "submitted_at": _iso(self.submitted_at),
            "submitted_by": self.submitted_by,
            "quality_score": self.quality_score,
            "max_possible_score": self.max_possible_score,
            "carry_over_status": self.carry_over_status,
            "carried_over_from_id": self.carried_over_from_id,
            "carried_over_to_id": self.carried_over_to_id,
            "admin_feedback": self.admin_feedback,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _iso(self.reviewed_at),
            "is_blocked": self.is_blocked,
            "blocker_category": self.blocker_category,
            "blocker_reason": self.blocker_reason,
            "attention_level": self.attention_level,
            "blocked_at": _iso(self.blocked_at),
            "alert_status": self.alert_status,
            "gap_category": self.gap_category,
            "gap_analysis": self.gap_analysis,
            "specify_reason": self.specify_reason,
            "resolution_type": self.resolution_type,
            "is_drop_pending": self.is_drop_pending,
            "drop_rejected": self.drop_rejected,
            "drop_rejection_reason": self.drop_rejection_reason,
            "unlock_status": self.unlock_status,
            "unlock_reason": self.unlock_reason,
            "approved_until": _iso(self.approved_until),
            "temporary_unlock_expiry": _iso(self.temporary_unlock_expiry),
            "attachments": list(self.attachments or []),
            "outcome_link": self.outcome_link,
            "remark": self.remark,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ActionPlan {self.id} {self.month} {self.year} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. PlanTimelineEntry
# ═════════════════════════════════════════════════════════════════════════════

class PlanTimelineEntry(db.Model):
    """Append-only timeline row. Never updated after insert."""

    __tablename__ = "action_plan_timeline"
    __table_args__ = (
        db.Index("idx_apt_plan_created", "action_plan_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    action_plan_id = db.Column(
        db.String(36), db.ForeignKey("action_plans.id", ondelete="CASCADE"),
        nullable=False,
    )
    entry_type = db.Column(
        db.String(20), nullable=False,
        comment="progress_update | blocker_report | blocker_resolved | comment",
    )
    message = db.Column(db.Text, nullable=False)
    author_id = db.Column(db.String(36), nullable=True)
    meta = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action_plan_id": self.action_plan_id,
            "entry_type": self.entry_type,
            "message": self.message,
            "author_id": self.author_id,
            "meta": dict(self.meta or {}),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<PlanTimelineEntry {self.id}: {self.entry_type} on {self.action_plan_id}>"
