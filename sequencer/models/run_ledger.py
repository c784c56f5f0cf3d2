"""
Pro-Move Sequencer
Run ledger model.

One row per pipeline execution (plan tick or site reconciliation), manual or
scheduled, live or dry-run. Rows are insert-only; an UPDATE through the ORM
is refused.
"""

from datetime import datetime, timezone

from sqlalchemy import event

from sequencer.models import db

RUN_KIND_PLAN_TICK = "plan_tick"
RUN_KIND_RECONCILE = "reconcile"

TRIGGER_CRON = "cron"
TRIGGER_MANUAL = "manual"

RUN_STATUS_SUCCESS = "success"
RUN_STATUS_FAILED = "failed"
RUN_STATUS_SKIPPED = "skipped"
RUN_STATUS_PARTIAL = "partial"


class RolloverRun(db.Model):
    __tablename__ = "rollover_runs"
    __table_args__ = (
        db.Index("ix_rollover_runs_org_role_week", "org_id", "role_id", "target_week_start"),
        db.Index("ix_rollover_runs_location_week", "location_id", "target_week_start"),
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False, comment="plan_tick | reconcile")
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
                       nullable=True)
    role_id = db.Column(db.Integer, nullable=True)
    location_id = db.Column(db.Integer, nullable=True)
    target_week_start = db.Column(db.Date, nullable=True)

    trigger = db.Column(db.String(20), nullable=False, default=TRIGGER_MANUAL)
    dry_run = db.Column(db.Boolean, nullable=False, default=False)
    success = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False,
                       comment="success | failed | skipped | partial")
    stage = db.Column(db.String(40), nullable=True, comment="Stage reached or failed at")

    logs = db.Column(db.JSON, default=list)
    config_snapshot = db.Column(db.JSON, default=dict)
    result = db.Column(db.JSON, default=dict)
    error = db.Column(db.Text, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "org_id": self.org_id,
            "role_id": self.role_id,
            "location_id": self.location_id,
            "target_week_start": self.target_week_start.isoformat() if self.target_week_start else None,
            "trigger": self.trigger,
            "dry_run": self.dry_run,
            "success": self.success,
            "status": self.status,
            "stage": self.stage,
            "logs": self.logs or [],
            "config_snapshot": self.config_snapshot or {},
            "result": self.result or {},
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
        }

    def __repr__(self):
        return f"<RolloverRun {self.id} {self.kind} {self.status}>"


@event.listens_for(RolloverRun, "before_update")
def _refuse_update(mapper, connection, target):
    raise RuntimeError(f"RolloverRun {target.id} is append-only")
