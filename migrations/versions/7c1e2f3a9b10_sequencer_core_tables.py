"""sequencer_core_tables

Creates the weekly sequencing schema:
  - organizations, locations          — orgs and their site calendars
  - roles, domains, competencies,
    pro_moves, manager_priorities     — pro-move catalog
  - staff, weekly_plan, weekly_scores — plan slots and submissions
  - plan_pipelines                    — per (org, role) pipeline state
  - backlog_items                     — carried-over site actions
  - rollover_runs                     — append-only run ledger
  - feature_flags, org_feature_flags  — sequencer_auto and friends
  - scheduled_jobs                    — job registry

Tables created conditionally so the migration is idempotent against a
database that already received them through db.create_all().

Revision ID: 7c1e2f3a9b10
Revises:
Create Date: 2026-10-12 09:30:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e2f3a9b10'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, **kw):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=True, **kw)


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Organizations & sites ─────────────────────────────────────────────
    if "organizations" not in existing:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("timezone", sa.String(length=64), nullable=True,
                      comment="IANA zone; falls back to ROLLOVER_TIMEZONE"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.PrimaryKeyConstraint("id"),
        )

    if "locations" not in existing:
        op.create_table(
            "locations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("org_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("timezone", sa.String(length=64), nullable=False,
                      server_default="America/Chicago"),
            sa.Column("program_start_date", sa.Date(), nullable=False),
            sa.Column("cycle_length_weeks", sa.Integer(), nullable=False, server_default="6"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_locations_org_id", "locations", ["org_id"])

    # ── Catalog ───────────────────────────────────────────────────────────
    if "roles" not in existing:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "domains" not in existing:
        op.create_table(
            "domains",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "competencies" not in existing:
        op.create_table(
            "competencies",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("domain_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.ForeignKeyConstraint(["domain_id"], ["domains.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_competencies_domain_id", "competencies", ["domain_id"])

    if "pro_moves" not in existing:
        op.create_table(
            "pro_moves",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("competency_id", sa.Integer(), nullable=False),
            sa.Column("statement", sa.String(length=500), nullable=False),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
            sa.ForeignKeyConstraint(["competency_id"], ["competencies.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_pro_moves_role_id", "pro_moves", ["role_id"])

    if "manager_priorities" not in existing:
        op.create_table(
            "manager_priorities",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("action_id", sa.Integer(), nullable=False),
            sa.Column("weight", sa.Float(), nullable=False, server_default="1.0"),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
            sa.ForeignKeyConstraint(["action_id"], ["pro_moves.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("role_id", "action_id", name="uq_manager_priority_role_action"),
        )
        op.create_index("ix_manager_priorities_role_id", "manager_priorities", ["role_id"])

    # ── Staff & weekly plan ───────────────────────────────────────────────
    if "staff" not in existing:
        op.create_table(
            "staff",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=True),
            sa.Column("primary_location_id", sa.Integer(), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
            sa.ForeignKeyConstraint(["primary_location_id"], ["locations.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_staff_role_id", "staff", ["role_id"])
        op.create_index("ix_staff_primary_location_id", "staff", ["primary_location_id"])

    if "weekly_plan" not in existing:
        op.create_table(
            "weekly_plan",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("org_id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("week_start_date", sa.Date(), nullable=False,
                      comment="Monday in the org calendar"),
            sa.Column("display_order", sa.Integer(), nullable=False),
            sa.Column("action_id", sa.Integer(), nullable=True),
            sa.Column("self_select", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="proposed", comment="proposed | locked"),
            sa.Column("generated_by", sa.String(length=20), nullable=False,
                      server_default="auto", comment="auto | manual"),
            sa.Column("rank_score", sa.Float(), nullable=True),
            sa.Column("rank_snapshot", sa.JSON(), nullable=True,
                      comment="Signal parts, drivers and reason code of the pick"),
            sa.Column("rank_version", sa.String(length=40), nullable=True),
            sa.Column("overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("overridden_at"),
            sa.Column("overridden_by", sa.String(length=120), nullable=True),
            _ts("locked_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
            sa.ForeignKeyConstraint(["action_id"], ["pro_moves.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("org_id", "role_id", "week_start_date", "display_order",
                                name="uq_weekly_plan_slot"),
            sa.CheckConstraint("display_order BETWEEN 1 AND 3",
                               name="ck_weekly_plan_display_order"),
        )
        op.create_index("ix_weekly_plan_org_role_week", "weekly_plan",
                        ["org_id", "role_id", "week_start_date"])

    if "weekly_scores" not in existing:
        op.create_table(
            "weekly_scores",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("staff_id", sa.Integer(), nullable=False),
            sa.Column("plan_row_id", sa.Integer(), nullable=False),
            sa.Column("action_id", sa.Integer(), nullable=True),
            sa.Column("confidence_score", sa.Integer(), nullable=True),
            _ts("confidence_date"),
            sa.Column("confidence_late", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("performance_score", sa.Integer(), nullable=True),
            _ts("performance_date"),
            sa.Column("performance_late", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["staff_id"], ["staff.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["plan_row_id"], ["weekly_plan.id"]),
            sa.ForeignKeyConstraint(["action_id"], ["pro_moves.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("staff_id", "plan_row_id", name="uq_weekly_score_staff_slot"),
        )
        op.create_index("ix_weekly_scores_staff_id", "weekly_scores", ["staff_id"])
        op.create_index("ix_weekly_scores_plan_row_id", "weekly_scores", ["plan_row_id"])

    if "plan_pipelines" not in existing:
        op.create_table(
            "plan_pipelines",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("org_id", sa.Integer(), nullable=False),
            sa.Column("role_id", sa.Integer(), nullable=False),
            sa.Column("state", sa.String(length=30), nullable=False,
                      server_default="first_run_seeded"),
            sa.Column("seeded_week_start", sa.Date(), nullable=True),
            sa.Column("last_tick_week_start", sa.Date(), nullable=True),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("org_id", "role_id", name="uq_plan_pipeline_org_role"),
        )

    # ── Backlog ───────────────────────────────────────────────────────────
    if "backlog_items" not in existing:
        op.create_table(
            "backlog_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("staff_id", sa.Integer(), nullable=False),
            sa.Column("action_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("source_cycle", sa.Integer(), nullable=True),
            sa.Column("source_week", sa.Integer(), nullable=True),
            sa.Column("source_week_start", sa.Date(), nullable=True),
            sa.Column("assigned_on", sa.DateTime(timezone=True), nullable=False),
            _ts("resolved_on"),
            sa.Column("resolved_week_start", sa.Date(), nullable=True),
            sa.Column("cleared_by", sa.String(length=120), nullable=True),
            sa.ForeignKeyConstraint(["staff_id"], ["staff.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["action_id"], ["pro_moves.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_backlog_staff_status", "backlog_items", ["staff_id", "status"])
        # At most one open item per (staff, action)
        op.create_index(
            "uq_backlog_open_staff_action", "backlog_items", ["staff_id", "action_id"],
            unique=True,
            sqlite_where=sa.text("status = 'open'"),
            postgresql_where=sa.text("status = 'open'"),
        )

    # ── Run ledger ────────────────────────────────────────────────────────
    if "rollover_runs" not in existing:
        op.create_table(
            "rollover_runs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False,
                      comment="plan_tick | reconcile"),
            sa.Column("org_id", sa.Integer(), nullable=True),
            sa.Column("role_id", sa.Integer(), nullable=True),
            sa.Column("location_id", sa.Integer(), nullable=True),
            sa.Column("target_week_start", sa.Date(), nullable=True),
            sa.Column("trigger", sa.String(length=20), nullable=False, server_default="manual"),
            sa.Column("dry_run", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("status", sa.String(length=20), nullable=False,
                      comment="success | failed | skipped | partial"),
            sa.Column("stage", sa.String(length=40), nullable=True),
            sa.Column("logs", sa.JSON(), nullable=True),
            sa.Column("config_snapshot", sa.JSON(), nullable=True),
            sa.Column("result", sa.JSON(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            _ts("finished_at"),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_rollover_runs_org_role_week", "rollover_runs",
                        ["org_id", "role_id", "target_week_start"])
        op.create_index("ix_rollover_runs_location_week", "rollover_runs",
                        ["location_id", "target_week_start"])

    # ── Feature flags ─────────────────────────────────────────────────────
    if "feature_flags" not in existing:
        op.create_table(
            "feature_flags",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(length=100), nullable=False),
            sa.Column("display_name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("default_enabled", sa.Boolean(), nullable=True),
            sa.Column("category", sa.String(length=50), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("key"),
        )

    if "org_feature_flags" not in existing:
        op.create_table(
            "org_feature_flags",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("org_id", sa.Integer(), nullable=False),
            sa.Column("feature_flag_id", sa.Integer(), nullable=False),
            sa.Column("is_enabled", sa.Boolean(), nullable=False),
            sa.Column("reason", sa.String(length=500), nullable=True),
            sa.Column("updated_by", sa.String(length=200), nullable=True),
            _ts("updated_at"),
            sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["feature_flag_id"], ["feature_flags.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("org_id", "feature_flag_id", name="uq_org_feature_flag"),
        )
        op.create_index("ix_org_feature_flags_org", "org_feature_flags", ["org_id"])

    # ── Scheduler ─────────────────────────────────────────────────────────
    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            _ts("last_run_at"),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_trigger", sa.String(length=10), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("skip_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in (
        "scheduled_jobs",
        "org_feature_flags",
        "feature_flags",
        "rollover_runs",
        "backlog_items",
        "plan_pipelines",
        "weekly_scores",
        "weekly_plan",
        "staff",
        "manager_priorities",
        "pro_moves",
        "competencies",
        "domains",
        "roles",
        "locations",
        "organizations",
    ):
        op.drop_table(table)
