"""
Policy configuration store.

Models:
    - SystemSettings: singleton row (id=1) with lock, grading, drop and
      minimum-length policy.
    - MonthlyLockSchedule: per-month lock deadline override or force-open.
    - FailureReasonOption: admin-managed gap categories for Not Achieved.
"""

from datetime import datetime, timezone

from app.models import db


__all__ = [
    "SystemSettings",
    "MonthlyLockSchedule",
    "FailureReasonOption",
    "SETTINGS_ROW_ID",
]

SETTINGS_ROW_ID = 1


def _utcnow():
    return datetime.now(timezone.utc)


class SystemSettings(db.Model):
    """Singleton policy row. Services never cache it across operations."""

    __tablename__ = "system_settings"

    id = db.Column(db.Integer, primary_key=True, default=SETTINGS_ROW_ID)

    # Temporal lock
    is_lock_enabled = db.Column(db.Boolean, nullable=False, default=True)
    lock_cutoff_day = db.Column(db.Integer, nullable=False, default=6)
    unlock_window_hours = db.Column(db.Integer, nullable=False, default=24)

    # Grading
    is_strict_grading_enabled = db.Column(db.Boolean, nullable=False, default=False)
    threshold_uh = db.Column(db.Integer, nullable=False, default=100)
    threshold_h = db.Column(db.Integer, nullable=False, default=100)
    threshold_m = db.Column(db.Integer, nullable=False, default=80)
    threshold_l = db.Column(db.Integer, nullable=False, default=70)

    # Drop approval policy
    drop_approval_req_uh = db.Column(db.Boolean, nullable=False, default=True)
    drop_approval_req_h = db.Column(db.Boolean, nullable=False, default=True)
    drop_approval_req_m = db.Column(db.Boolean, nullable=False, default=False)
    drop_approval_req_l = db.Column(db.Boolean, nullable=False, default=False)

    # Carry-over penalties (successor max_possible_score)
    carry_over_penalty_1 = db.Column(db.Integer, nullable=False, default=80)
    carry_over_penalty_2 = db.Column(db.Integer, nullable=False, default=50)

    # Minimum-length policy
    blocker_min_length = db.Column(
        db.JSON, nullable=False,
        default=lambda: {"Standard": 10, "Leader": 10, "Management_BOD": 20},
        comment="{attention_level: min chars}",
    )
    gap_analysis_min_length = db.Column(db.Integer, nullable=False, default=10)
    drop_justification_min_length = db.Column(db.Integer, nullable=False, default=30)

    updated_by = db.Column(db.String(36), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=_utcnow, onupdate=_utcnow,
    )

    EDITABLE_FIELDS = (
        "is_lock_enabled", "lock_cutoff_day", "unlock_window_hours",
        "is_strict_grading_enabled",
        "threshold_uh", "threshold_h", "threshold_m", "threshold_l",
        "drop_approval_req_uh", "drop_approval_req_h",
        "drop_approval_req_m", "drop_approval_req_l",
        "carry_over_penalty_1", "carry_over_penalty_2",
        "blocker_min_length", "gap_analysis_min_length",
        "drop_justification_min_length",
    )

    def to_dict(self) -> dict:
        d = {field: getattr(self, field) for field in self.EDITABLE_FIELDS}
        d["updated_by"] = self.updated_by
        d["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return d


class MonthlyLockSchedule(db.Model):
    """Admin override of the derived lock deadline for one (month, year)."""

    __tablename__ = "monthly_lock_schedules"
    __table_args__ = (
        db.UniqueConstraint("month_index", "year", name="uq_mls_month_year"),
    )

    id = db.Column(db.Integer, primary_key=True)
    month_index = db.Column(db.Integer, nullable=False, comment="0 = Jan .. 11 = Dec")
    year = db.Column(db.Integer, nullable=False)
    lock_date = db.Column(db.DateTime(timezone=True), nullable=True)
    is_force_open = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "month_index": self.month_index,
            "year": self.year,
            "lock_date": self.lock_date.isoformat() if self.lock_date else None,
            "is_force_open": self.is_force_open,
        }


class FailureReasonOption(db.Model):
    """Selectable gap category for a Not Achieved plan."""

    __tablename__ = "failure_reason_options"
    __table_args__ = (
        db.UniqueConstraint("label", name="uq_fro_label"),
    )

    id = db.Column(db.Integer, primary_key=True)
    label = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
        }
