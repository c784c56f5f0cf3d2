"""
Pro-Move Sequencer
Weekly plan models.

Models:
    - WeeklyPlanRow: one of three assignment slots of an (org, role, week)
    - PlanPipeline: persisted pipeline state per (org, role)

Lifecycle:
    proposed ──lock──▶ locked          (one-directional)
    any ──override──▶ overridden=True  (manual, permanent until cleared)
"""

from datetime import datetime, timezone

from sequencer.models import db

SLOTS_PER_WEEK = 3

PLAN_STATUS_PROPOSED = "proposed"
PLAN_STATUS_LOCKED = "locked"
PLAN_STATUSES = (PLAN_STATUS_PROPOSED, PLAN_STATUS_LOCKED)

GENERATED_AUTO = "auto"
GENERATED_MANUAL = "manual"

# Automation may only move forward; a locked row is terminal.
PLAN_STATUS_TRANSITIONS = {
    PLAN_STATUS_PROPOSED: [PLAN_STATUS_LOCKED],
    PLAN_STATUS_LOCKED: [],
}

PIPELINE_FIRST_RUN_SEEDED = "first_run_seeded"
PIPELINE_STEADY_STATE = "steady_state"
PIPELINE_STATES = (PIPELINE_FIRST_RUN_SEEDED, PIPELINE_STEADY_STATE)


def validate_plan_transition(current, target):
    """Return True if the plan row status can move from *current* to *target*."""
    return target in PLAN_STATUS_TRANSITIONS.get(current, [])


class WeeklyPlanRow(db.Model):
    """
    Assignment slot keyed on (org, role, week_start_date, display_order).

    ``action_id`` is NULL for a self-select slot (staff picks the action).
    """

    __tablename__ = "weekly_plan"
    __table_args__ = (
        db.UniqueConstraint("org_id", "role_id", "week_start_date", "display_order",
                            name="uq_weekly_plan_slot"),
        db.CheckConstraint("display_order BETWEEN 1 AND 3", name="ck_weekly_plan_display_order"),
        db.Index("ix_weekly_plan_org_role_week", "org_id", "role_id", "week_start_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
                       nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)
    week_start_date = db.Column(db.Date, nullable=False, comment="Monday in the org calendar")
    display_order = db.Column(db.Integer, nullable=False)

    action_id = db.Column(db.Integer, db.ForeignKey("pro_moves.id"), nullable=True)
    self_select = db.Column(db.Boolean, default=False, nullable=False)
    status = db.Column(db.String(20), default=PLAN_STATUS_PROPOSED, nullable=False,
                       comment="proposed | locked")
    generated_by = db.Column(db.String(20), default=GENERATED_AUTO, nullable=False,
                             comment="auto | manual")
    rank_score = db.Column(db.Float, nullable=True)
    rank_snapshot = db.Column(db.JSON(none_as_null=True), nullable=True,
                              comment="Signal parts, drivers and reason code of the pick")
    rank_version = db.Column(db.String(40), nullable=True)

    overridden = db.Column(db.Boolean, default=False, nullable=False)
    overridden_at = db.Column(db.DateTime(timezone=True), nullable=True)
    overridden_by = db.Column(db.String(120), nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    action = db.relationship("ProMove")

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "role_id": self.role_id,
            "week_start_date": self.week_start_date.isoformat(),
            "display_order": self.display_order,
            "action_id": self.action_id,
            "self_select": self.self_select,
            "status": self.status,
            "generated_by": self.generated_by,
            "rank_score": self.rank_score,
            "rank_snapshot": self.rank_snapshot,
            "rank_version": self.rank_version,
            "overridden": self.overridden,
            "overridden_at": self.overridden_at.isoformat() if self.overridden_at else None,
            "overridden_by": self.overridden_by,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
        }

    def __repr__(self):
        return (f"<WeeklyPlanRow org={self.org_id} role={self.role_id} "
                f"{self.week_start_date} #{self.display_order} {self.status}>")


class PlanPipeline(db.Model):
    """Pipeline state of an (org, role); absence means Uninitialized."""

    __tablename__ = "plan_pipelines"
    __table_args__ = (
        db.UniqueConstraint("org_id", "role_id", name="uq_plan_pipeline_org_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
                       nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)
    state = db.Column(db.String(30), nullable=False, default=PIPELINE_FIRST_RUN_SEEDED)
    seeded_week_start = db.Column(db.Date, nullable=True,
                                  comment="Current week at the time of the first-run seed")
    last_tick_week_start = db.Column(db.Date, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "org_id": self.org_id,
            "role_id": self.role_id,
            "state": self.state,
            "seeded_week_start": self.seeded_week_start.isoformat() if self.seeded_week_start else None,
            "last_tick_week_start": self.last_tick_week_start.isoformat() if self.last_tick_week_start else None,
        }
