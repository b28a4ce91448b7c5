"""
Policy settings: the configuration store behind every lifecycle rule.

Administrators own the values; nothing in the engine hardcodes a threshold.
Each operation loads a fresh immutable ``PolicySettings`` snapshot from the
``system_settings`` row plus the monthly lock schedule. When the row has not
been created yet the app's ``POLICY_DEFAULTS`` are used.

Usage:
    from app.services.plan_settings import load_policy_settings

    settings = load_policy_settings()
    settings.threshold_for(PriorityBucket.HIGH)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from app.config import POLICY_DEFAULTS
from app.core.exceptions import PolicyConfigError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.settings import (
    SETTINGS_ROW_ID,
    FailureReasonOption,
    MonthlyLockSchedule,
    SystemSettings,
)
from app.services.priority import PriorityBucket
from app.utils.helpers import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonthlyOverride:
    month_index: int
    year: int
    lock_date: datetime | None = None
    force_open: bool = False


@dataclass(frozen=True)
class PolicySettings:
    """Immutable snapshot of lifecycle policy for one operation."""

    is_lock_enabled: bool = True
    lock_cutoff_day: int = 6
    unlock_window_hours: int = 24
    monthly_overrides: tuple[MonthlyOverride, ...] = ()

    is_strict_grading_enabled: bool = False
    thresholds: dict = field(default_factory=lambda: {
        PriorityBucket.ULTRA_HIGH: 100,
        PriorityBucket.HIGH: 100,
        PriorityBucket.MEDIUM: 80,
        PriorityBucket.LOW: 70,
    })
    drop_approval: dict = field(default_factory=lambda: {
        PriorityBucket.ULTRA_HIGH: True,
        PriorityBucket.HIGH: True,
        PriorityBucket.MEDIUM: False,
        PriorityBucket.LOW: False,
    })

    carry_over_penalty_1: int = 80
    carry_over_penalty_2: int = 50

    blocker_min_length: dict = field(default_factory=lambda: {
        "Standard": 10, "Leader": 10, "Management_BOD": 20,
    })
    gap_analysis_min_length: int = 10
    drop_justification_min_length: int = 30

    def threshold_for(self, bucket: PriorityBucket) -> int:
        return int(self.thresholds[bucket])

    def drop_requires_approval(self, bucket: PriorityBucket) -> bool:
        return bool(self.drop_approval.get(bucket, False))

    def find_override(self, month_index: int, year: int) -> MonthlyOverride | None:
        for override in self.monthly_overrides:
            if override.month_index == month_index and override.year == year:
                return override
        return None

    def to_dict(self) -> dict:
        return {
            "is_lock_enabled": self.is_lock_enabled,
            "lock_cutoff_day": self.lock_cutoff_day,
            "unlock_window_hours": self.unlock_window_hours,
            "is_strict_grading_enabled": self.is_strict_grading_enabled,
            "thresholds": {b.value: v for b, v in self.thresholds.items()},
            "drop_approval": {b.value: v for b, v in self.drop_approval.items()},
            "carry_over_penalty_1": self.carry_over_penalty_1,
            "carry_over_penalty_2": self.carry_over_penalty_2,
            "blocker_min_length": dict(self.blocker_min_length),
            "gap_analysis_min_length": self.gap_analysis_min_length,
            "drop_justification_min_length": self.drop_justification_min_length,
            "monthly_overrides": [
                {
                    "month_index": o.month_index,
                    "year": o.year,
                    "lock_date": o.lock_date.isoformat() if o.lock_date else None,
                    "is_force_open": o.force_open,
                }
                for o in self.monthly_overrides
            ],
        }


def _settings_from_values(values: dict, overrides: tuple[MonthlyOverride, ...]) -> PolicySettings:
    return PolicySettings(
        is_lock_enabled=bool(values["is_lock_enabled"]),
        lock_cutoff_day=int(values["lock_cutoff_day"]),
        unlock_window_hours=int(values["unlock_window_hours"]),
        monthly_overrides=overrides,
        is_strict_grading_enabled=bool(values["is_strict_grading_enabled"]),
        thresholds={
            PriorityBucket.ULTRA_HIGH: int(values["threshold_uh"]),
            PriorityBucket.HIGH: int(values["threshold_h"]),
            PriorityBucket.MEDIUM: int(values["threshold_m"]),
            PriorityBucket.LOW: int(values["threshold_l"]),
        },
        drop_approval={
            PriorityBucket.ULTRA_HIGH: bool(values["drop_approval_req_uh"]),
            PriorityBucket.HIGH: bool(values["drop_approval_req_h"]),
            PriorityBucket.MEDIUM: bool(values["drop_approval_req_m"]),
            PriorityBucket.LOW: bool(values["drop_approval_req_l"]),
        },
        carry_over_penalty_1=int(values["carry_over_penalty_1"]),
        carry_over_penalty_2=int(values["carry_over_penalty_2"]),
        blocker_min_length=dict(values["blocker_min_length"] or {}),
        gap_analysis_min_length=int(values["gap_analysis_min_length"]),
        drop_justification_min_length=int(values["drop_justification_min_length"]),
    )


def _configured_defaults() -> dict:
    defaults = dict(POLICY_DEFAULTS)
    defaults.update(current_app.config.get("POLICY_DEFAULTS") or {})
    return defaults


def load_policy_settings() -> PolicySettings:
    """Read the current policy from the configuration store."""
    row = db.session.get(SystemSettings, SETTINGS_ROW_ID, populate_existing=True)
    if row is None:
        values = _configured_defaults()
    else:
        values = {name: getattr(row, name) for name in SystemSettings.EDITABLE_FIELDS}

    overrides = tuple(
        MonthlyOverride(
            month_index=s.month_index,
            year=s.year,
            lock_date=as_utc(s.lock_date),
            force_open=bool(s.is_force_open),
        )
        for s in MonthlyLockSchedule.query.all()
    )
    return _settings_from_values(values, overrides)


# ═════════════════════════════════════════════════════════════════════════════
# Admin configuration
# ═════════════════════════════════════════════════════════════════════════════

_INT_RANGES = {
    "lock_cutoff_day": (1, 28),
    "unlock_window_hours": (1, 24 * 14),
    "threshold_uh": (0, 100),
    "threshold_h": (0, 100),
    "threshold_m": (0, 100),
    "threshold_l": (0, 100),
    "carry_over_penalty_1": (0, 100),
    "carry_over_penalty_2": (0, 100),
    "gap_analysis_min_length": (1, 2000),
    "drop_justification_min_length": (1, 2000),
}


def update_policy_settings(changes: dict, actor: str) -> SystemSettings:
    """Validate and apply admin changes to the settings row (created on first write)."""
    unknown = set(changes) - set(SystemSettings.EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown setting(s): {', '.join(sorted(unknown))}",
            details={name: "unknown setting" for name in unknown},
        )

    errors = {}
    for name, (low, high) in _INT_RANGES.items():
        if name not in changes:
            continue
        value = changes[name]
        if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
            errors[name] = {"min": low, "max": high, "actual": value}
    if "blocker_min_length" in changes:
        levels = changes["blocker_min_length"]
        if not isinstance(levels, dict) or not all(
            isinstance(v, int) and v > 0 for v in levels.values()
        ):
            errors["blocker_min_length"] = "expected {attention_level: positive int}"
    if errors:
        raise ValidationError("Invalid policy settings", details=errors)

    row = db.session.get(SystemSettings, SETTINGS_ROW_ID)
    if row is None:
        row = SystemSettings(id=SETTINGS_ROW_ID, **{
            name: value for name, value in _configured_defaults().items()
            if name in SystemSettings.EDITABLE_FIELDS
        })
        db.session.add(row)

    diff = {}
    for name, value in changes.items():
        old = getattr(row, name)
        if old != value:
            diff[name] = {"old": old, "new": value}
            setattr(row, name, value)
    row.updated_by = actor
    db.session.flush()

    write_audit(
        entity_type="system_settings", entity_id=str(SETTINGS_ROW_ID),
        action="settings.update", actor=actor, diff=diff,
    )
    logger.info("Policy settings updated by %s: %s", actor, ", ".join(sorted(diff)) or "no changes")
    return row


def upsert_lock_schedule(
    month_index: int,
    year: int,
    *,
    lock_date: datetime | None,
    force_open: bool,
    actor: str,
) -> MonthlyLockSchedule:
    """Create or replace the override for one (month, year)."""
    if not 0 <= month_index <= 11:
        raise ValidationError("month_index must be 0..11", details={"month_index": month_index})
    if lock_date is None and not force_open:
        raise ValidationError(
            "A lock schedule needs a lock_date or is_force_open",
            details={"lock_date": "required unless is_force_open"},
        )

    schedule = MonthlyLockSchedule.query.filter_by(month_index=month_index, year=year).first()
    if schedule is None:
        schedule = MonthlyLockSchedule(month_index=month_index, year=year, created_by=actor)
        db.session.add(schedule)
    schedule.lock_date = lock_date
    schedule.is_force_open = force_open
    db.session.flush()

    write_audit(
        entity_type="lock_schedule", entity_id=str(schedule.id),
        action="lock_schedule.upsert", actor=actor,
        diff={"month_index": month_index, "year": year,
              "lock_date": lock_date, "is_force_open": force_open},
    )
    return schedule


def active_failure_reasons() -> list[str]:
    """Active gap category labels. Raises PolicyConfigError when none are configured."""
    options = (
        FailureReasonOption.query
        .filter_by(is_active=True)
        .order_by(FailureReasonOption.sort_order, FailureReasonOption.label)
        .all()
    )
    if not options:
        raise PolicyConfigError(
            "failure_reason_options",
            "No failure reasons are configured; an administrator must define them "
            "before a plan can be marked Not Achieved",
        )
    return [o.label for o in options]


def add_failure_reason(label: str, actor: str, *, sort_order: int = 0) -> FailureReasonOption:
    label = (label or "").strip()
    if not label:
        raise ValidationError("label is required", details={"label": {"min_length": 1}})
    if FailureReasonOption.query.filter_by(label=label).first():
        raise ValidationError(f"Failure reason '{label}' already exists", details={"label": label})
    option = FailureReasonOption(label=label, sort_order=sort_order)
    db.session.add(option)
    db.session.flush()
    write_audit(
        entity_type="failure_reason", entity_id=str(option.id),
        action="failure_reason.create", actor=actor, diff={"label": label},
    )
    return option
