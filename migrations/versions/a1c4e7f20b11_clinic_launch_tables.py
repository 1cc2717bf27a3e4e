"""clinic_launch_tables

Creates the clinic launch orchestration tables:
  - clinic_launches        — one row per clinic opening
  - launch_phases          — six gated phases per launch
  - launch_workstreams     — six functional workstreams per launch
  - launch_tasks           — task graph (dependency ids stored as JSON)
  - launch_risks           — risk register
  - launch_weeks           — 13-week execution tracker
  - launch_deliverables    — per-week deliverables
  - launch_target_metrics  — weekly targets over daily metric columns
  - launch_daily_metrics   — append-only operating metrics
  - launch_kpis            — point-in-time KPI readings

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: a1c4e7f20b11
Revises:
Create Date: 2026-03-02 09:14:37.512044
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c4e7f20b11'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _launch_fk():
    return sa.ForeignKeyConstraint(["clinic_launch_id"], ["clinic_launches.id"], ondelete="CASCADE")


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── ClinicLaunch ──────────────────────────────────────────────────────
    if "clinic_launches" not in existing:
        op.create_table(
            "clinic_launches",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("clinic_id", sa.String(length=64), nullable=False),
            sa.Column("launch_name", sa.String(length=200), nullable=False),
            sa.Column("launch_code", sa.String(length=30), nullable=False),
            sa.Column("launch_owner_id", sa.String(length=64), nullable=True),
            sa.Column("executive_sponsor_id", sa.String(length=64), nullable=True),
            sa.Column("target_open_date", sa.Date(), nullable=True),
            sa.Column("planned_start_date", sa.Date(), nullable=True),
            sa.Column("actual_start_date", sa.Date(), nullable=True),
            sa.Column("actual_open_date", sa.Date(), nullable=True),
            sa.Column("stabilization_target_date", sa.Date(), nullable=True),
            sa.Column(
                "current_phase", sa.String(length=50), nullable=False,
                comment="phase_0_deal_authorization … phase_5_stabilization",
            ),
            sa.Column(
                "status", sa.String(length=30), nullable=True,
                comment="planning | approved | in_progress | delayed | at_risk | completed | cancelled",
            ),
            sa.Column("overall_completion_pct", sa.Float(), nullable=True, comment="0-100, derived"),
            sa.Column("approved_budget", sa.Numeric(precision=14, scale=2), nullable=True),
            sa.Column("actual_cost", sa.Numeric(precision=14, scale=2), nullable=True),
            sa.Column("is_partner_clinic", sa.Boolean(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("launch_code"),
        )
        op.create_index("ix_clinic_launches_clinic_id", "clinic_launches", ["clinic_id"])
        op.create_index("ix_clinic_launches_status", "clinic_launches", ["status"])

    # ── LaunchPhase ───────────────────────────────────────────────────────
    if "launch_phases" not in existing:
        op.create_table(
            "launch_phases",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("clinic_launch_id", sa.Integer(), nullable=False),
            sa.Column("phase_name", sa.String(length=50), nullable=False),
            sa.Column("phase_order", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("planned_start_date", sa.Date(), nullable=True),
            sa.Column("planned_end_date", sa.Date(), nullable=True),
            sa.Column("actual_start_date", sa.Date(), nullable=True),
            sa.Column("actual_end_date", sa.Date(), nullable=True),
            sa.Column("gate_passed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("gate_passed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("gate_passed_by", sa.String(length=64), nullable=True),
            sa.Column("gate_notes", sa.Text(), nullable=True),
            sa.Column("completion_pct", sa.Float(), nullable=True, comment="mean of task completion_pct"),
            *_timestamps(),
            _launch_fk(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("clinic_launch_id", "phase_name", name="uq_launch_phase_name"),
        )
        op.create_index("ix_launch_phases_clinic_launch_id", "launch_phases", ["clinic_launch_id"])

    # ── LaunchWorkstream ──────────────────────────────────────────────────
    if "launch_workstreams" not in existing:
        op.create_table(
            "launch_workstreams",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("clinic_launch_id", sa.Integer(), nullable=False),
            sa.Column("workstream_type", sa.String(length=40), nullable=False),
            sa.Column("workstream_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.String(length=64), nullable=True),
            sa.Column("owner_role", sa.String(length=50), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("total_tasks", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completed_tasks", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completion_pct", sa.Float(), nullable=True, comment="completed/total × 100"),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("target_end_date", sa.Date(), nullable=True),
            sa.Column("actual_end_date", sa.Date(), nullable=True),
            *_timestamps(),
            _launch_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_launch_workstreams_clinic_launch_id", "launch_workstreams", ["clinic_launch_id"])

    # ── LaunchTask ────────────────────────────────────────────────────────
    if "launch_tasks" not in existing:
        op.create_table(
            "launch_tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("clinic_launch_id", sa.Integer(), nullable=False),
            sa.Column("workstream_id", sa.Integer(), nullable=True),
            sa.Column("phase_name", sa.String(length=50), nullable=True),
            sa.Column("task_name", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_gate_blocker", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("assigned_to", sa.String(length=64), nullable=True),
            sa.Column("assigned_role", sa.String(length=50), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("completed_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("completion_pct", sa.Integer(), nullable=True, comment="0-100"),
            sa.Column("depends_on_task_ids", sa.JSON(), nullable=True),
            sa.Column("blocks_task_ids", sa.JSON(), nullable=True),
            sa.Column("estimated_hours", sa.Float(), nullable=True),
            sa.Column("actual_hours", sa.Float(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            *_timestamps(),
            _launch_fk(),
            sa.ForeignKeyConstraint(["workstream_id"], ["launch_workstreams.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_launch_tasks_clinic_launch_id", "launch_tasks", ["clinic_launch_id"])
        op.create_index("ix_launch_tasks_workstream_id", "launch_tasks", ["workstream_id"])
        op.create_index("ix_launch_tasks_phase_name", "launch_tasks", ["phase_name"])
        op.create_index("ix_launch_tasks_assigned_to", "launch_tasks", ["assigned_to"])
        op.create_index("ix_launch_tasks_status", "launch_tasks", ["status"])

    # ── LaunchRisk ────────────────────────────────────────────────────────
    if "launch_risks" not in existing:
        op.create_table(
            "launch_risks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("clinic_launch_id", sa.Integer(), nullable=False),
            sa.Column("phase_name", sa.String(length=50), nullable=True),
            sa.Column("workstream_id", sa.Integer(), nullable=True),
            sa.Column("risk_title", sa.String(length=300), nullable=False),
            sa.Column("risk_description", sa.Text(), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("probability", sa.String(length=20), nullable=True),
            sa.Column("impact_description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("identified_by", sa.String(length=64), nullable=True),
            sa.Column("owner_id", sa.String(length=64), nullable=True),
            sa.Column("mitigation_plan", sa.Text(), nullable=True),
            sa.Column("mitigation_actions", sa.JSON(), nullable=True),
            sa.Column("identified_date", sa.Date(), nullable=False),
            sa.Column("target_resolution_date", sa.Date(), nullable=True),
            sa.Column("resolved_date", sa.Date(), nullable=True),
            sa.Column("ai_detected", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("ai_confidence", sa.Float(), nullable=True),
            *_timestamps(),
            _launch_fk(),
            sa.ForeignKeyConstraint(["workstream_id"], ["launch_workstreams.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_launch_risks_clinic_launch_id", "launch_risks", ["clinic_launch_id"])
        op.create_index("ix_launch_risks_severity", "launch_risks", ["severity"])
        op.create_index("ix_launch_risks_status", "launch_risks", ["status"])

    # ── LaunchWeek ────────────────────────────────────────────────────────
    if "launch_weeks" not in existing:
        op.create_table(
            "launch_weeks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("clinic_launch_id", sa.Integer(), nullable=False),
            sa.Column("phase_id", sa.Integer(), nullable=True),
            sa.Column("week_number", sa.Integer(), nullable=False),
            sa.Column("week_label", sa.String(length=100), nullable=False),
            sa.Column("start_day", sa.Integer(), nullable=False),
            sa.Column("end_day", sa.Integer(), nullable=False),
            sa.Column("week_objective", sa.Text(), nullable=True),
            sa.Column("key_actions", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("completion_pct", sa.Float(), nullable=True),
            sa.Column("actual_start_date", sa.Date(), nullable=True),
            sa.Column("actual_end_date", sa.Date(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            *_timestamps(),
            _launch_fk(),
            sa.ForeignKeyConstraint(["phase_id"], ["launch_phases.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("clinic_launch_id", "week_number", name="uq_launch_week_number"),
        )
        op.create_index("ix_launch_weeks_clinic_launch_id", "launch_weeks", ["clinic_launch_id"])

    # ── LaunchDeliverable ─────────────────────────────────────────────────
    if "launch_deliverables" not in existing:
        op.create_table(
            "launch_deliverables",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("clinic_launch_id", sa.Integer(), nullable=False),
            sa.Column("week_id", sa.Integer(), nullable=True),
            sa.Column("deliverable_name", sa.String(length=300), nullable=False),
            sa.Column("deliverable_description", sa.Text(), nullable=True),
            sa.Column("is_critical", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("due_day", sa.Integer(), nullable=True, comment="offset from actual start"),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.String(length=64), nullable=True),
            sa.Column("evidence_url", sa.String(length=500), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            *_timestamps(),
            _launch_fk(),
            sa.ForeignKeyConstraint(["week_id"], ["launch_weeks.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_launch_deliverables_clinic_launch_id", "launch_deliverables", ["clinic_launch_id"])
        op.create_index("ix_launch_deliverables_week_id", "launch_deliverables", ["week_id"])
        op.create_index("ix_launch_deliverables_status", "launch_deliverables", ["status"])

    # ── LaunchTargetMetric ────────────────────────────────────────────────
    if "launch_target_metrics" not in existing:
        op.create_table(
            "launch_target_metrics",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("clinic_launch_id", sa.Integer(), nullable=False),
            sa.Column("week_id", sa.Integer(), nullable=False),
            sa.Column("metric_name", sa.String(length=100), nullable=False),
            sa.Column("target_value", sa.Float(), nullable=False),
            sa.Column("target_operator", sa.String(length=2), nullable=False, server_default=">="),
            sa.Column("unit", sa.String(length=30), nullable=True),
            sa.Column("is_critical", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _launch_fk(),
            sa.ForeignKeyConstraint(["week_id"], ["launch_weeks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_launch_target_metrics_week_id", "launch_target_metrics", ["week_id"])

    # ── LaunchDailyMetric ─────────────────────────────────────────────────
    if "launch_daily_metrics" not in existing:
        op.create_table(
            "launch_daily_metrics",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("clinic_launch_id", sa.Integer(), nullable=False),
            sa.Column("partner_clinic_id", sa.String(length=64), nullable=True),
            sa.Column("metric_date", sa.Date(), nullable=False),
            sa.Column("day_number", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("patients_treated_today", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("cumulative_patients", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("new_conversions_today", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("clinician_utilization_pct", sa.Float(), nullable=True),
            sa.Column("data_completeness_pct", sa.Float(), nullable=True),
            sa.Column("avg_intake_to_first_visit_days", sa.Float(), nullable=True),
            sa.Column("revenue_today", sa.Float(), nullable=True),
            sa.Column("cumulative_revenue", sa.Float(), nullable=True),
            sa.Column("revenue_per_patient", sa.Float(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            _launch_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_launch_daily_metrics_clinic_launch_id", "launch_daily_metrics", ["clinic_launch_id"])
        op.create_index("ix_launch_daily_metrics_metric_date", "launch_daily_metrics", ["metric_date"])

    # ── LaunchKPI ─────────────────────────────────────────────────────────
    if "launch_kpis" not in existing:
        op.create_table(
            "launch_kpis",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("clinic_launch_id", sa.Integer(), nullable=False),
            sa.Column("metric_name", sa.String(length=100), nullable=False),
            sa.Column("metric_category", sa.String(length=50), nullable=True),
            sa.Column("metric_value", sa.Float(), nullable=False),
            sa.Column("metric_unit", sa.String(length=30), nullable=True),
            sa.Column("measurement_date", sa.Date(), nullable=False),
            sa.Column("phase_name", sa.String(length=50), nullable=True),
            sa.Column("target_value", sa.Float(), nullable=True),
            sa.Column("is_on_target", sa.Boolean(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=True),
            _launch_fk(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_launch_kpis_clinic_launch_id", "launch_kpis", ["clinic_launch_id"])
        op.create_index("ix_launch_kpis_metric_name", "launch_kpis", ["metric_name"])


def downgrade():
    for table in (
        "launch_kpis",
        "launch_daily_metrics",
        "launch_target_metrics",
        "launch_deliverables",
        "launch_weeks",
        "launch_risks",
        "launch_tasks",
        "launch_workstreams",
        "launch_phases",
        "clinic_launches",
    ):
        op.drop_table(table)
