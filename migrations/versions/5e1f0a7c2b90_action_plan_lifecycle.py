"""action_plan_lifecycle

Create action plan, timeline, policy settings, lock schedule, failure reason
and audit tables.

Revision ID: 5e1f0a7c2b90
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5e1f0a7c2b90"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "action_plans" not in existing_tables:
        op.create_table(
            "action_plans",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("department_code", sa.String(length=20), nullable=False),
            sa.Column("month", sa.String(length=10), nullable=False),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("goal_strategy", sa.Text(), nullable=True),
            sa.Column("action_plan", sa.Text(), nullable=False),
            sa.Column("indicator", sa.Text(), nullable=True),
            sa.Column("pic", sa.String(length=150), nullable=True),
            sa.Column("category", sa.String(length=50), nullable=True),
            sa.Column("report_format", sa.String(length=50), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Open"),
            sa.Column("submission_status", sa.String(length=10), nullable=False, server_default="draft"),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("submitted_by", sa.String(length=36), nullable=True),
            sa.Column("quality_score", sa.Integer(), nullable=True),
            sa.Column("max_possible_score", sa.Integer(), nullable=True),
            sa.Column("carry_over_status", sa.String(length=20), nullable=False, server_default="Normal"),
            sa.Column("carried_over_from_id", sa.String(length=36), nullable=True),
            sa.Column("carried_over_to_id", sa.String(length=36), nullable=True),
            sa.Column("admin_feedback", sa.Text(), nullable=True),
            sa.Column("reviewed_by", sa.String(length=36), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("blocker_category", sa.String(length=30), nullable=True),
            sa.Column("blocker_reason", sa.Text(), nullable=True),
            sa.Column("attention_level", sa.String(length=20), nullable=False, server_default="Standard"),
            sa.Column("blocked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("alert_status", sa.String(length=30), nullable=True),
            sa.Column("alert_status_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("gap_category", sa.String(length=100), nullable=True),
            sa.Column("gap_analysis", sa.Text(), nullable=True),
            sa.Column("specify_reason", sa.Text(), nullable=True),
            sa.Column("resolution_type", sa.String(length=20), nullable=True),
            sa.Column("is_drop_pending", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("drop_rejected", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("drop_rejection_reason", sa.Text(), nullable=True),
            sa.Column("unlock_status", sa.String(length=10), nullable=True),
            sa.Column("unlock_reason", sa.Text(), nullable=True),
            sa.Column("approved_until", sa.DateTime(timezone=True), nullable=True),
            sa.Column("temporary_unlock_expiry", sa.DateTime(timezone=True), nullable=True),
            sa.Column("attachments", sa.JSON(), nullable=False),
            sa.Column("outcome_link", sa.Text(), nullable=True),
            sa.Column("remark", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_action_plans_department_code", "action_plans", ["department_code"])
        op.create_index("idx_ap_dept_period", "action_plans", ["department_code", "year", "month"])
        op.create_index("idx_ap_status", "action_plans", ["status"])
        op.create_index("idx_ap_drop_pending", "action_plans", ["is_drop_pending"])

    if "action_plan_timeline" not in existing_tables:
        op.create_table(
            "action_plan_timeline",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("action_plan_id", sa.String(length=36), nullable=False),
            sa.Column("entry_type", sa.String(length=20), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("author_id", sa.String(length=36), nullable=True),
            sa.Column("meta", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["action_plan_id"], ["action_plans.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_apt_plan_created", "action_plan_timeline", ["action_plan_id", "created_at"])

    if "system_settings" not in existing_tables:
        op.create_table(
            "system_settings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("is_lock_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("lock_cutoff_day", sa.Integer(), nullable=False, server_default="6"),
            sa.Column("unlock_window_hours", sa.Integer(), nullable=False, server_default="24"),
            sa.Column("is_strict_grading_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("threshold_uh", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("threshold_h", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("threshold_m", sa.Integer(), nullable=False, server_default="80"),
            sa.Column("threshold_l", sa.Integer(), nullable=False, server_default="70"),
            sa.Column("drop_approval_req_uh", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("drop_approval_req_h", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("drop_approval_req_m", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("drop_approval_req_l", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("carry_over_penalty_1", sa.Integer(), nullable=False, server_default="80"),
            sa.Column("carry_over_penalty_2", sa.Integer(), nullable=False, server_default="50"),
            sa.Column("blocker_min_length", sa.JSON(), nullable=False),
            sa.Column("gap_analysis_min_length", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("drop_justification_min_length", sa.Integer(), nullable=False, server_default="30"),
            sa.Column("updated_by", sa.String(length=36), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if "monthly_lock_schedules" not in existing_tables:
        op.create_table(
            "monthly_lock_schedules",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("month_index", sa.Integer(), nullable=False),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("lock_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_force_open", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("month_index", "year", name="uq_mls_month_year"),
        )

    if "failure_reason_options" not in existing_tables:
        op.create_table(
            "failure_reason_options",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("label", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("label", name="uq_fro_label"),
        )

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("failure_reason_options")
    op.drop_table("monthly_lock_schedules")
    op.drop_table("system_settings")
    op.drop_index("idx_apt_plan_created", table_name="action_plan_timeline")
    op.drop_table("action_plan_timeline")
    op.drop_index("idx_ap_drop_pending", table_name="action_plans")
    op.drop_index("idx_ap_status", table_name="action_plans")
    op.drop_index("idx_ap_dept_period", table_name="action_plans")
    op.drop_index("ix_action_plans_department_code", table_name="action_plans")
    op.drop_table("action_plans")
