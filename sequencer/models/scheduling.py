"""
Pro-Move Sequencer
Scheduled job registry model.

One row per registered batch job (``weekly_plan_rollover``,
``site_reconciliation``). The external cron only decides *when* a job is
invoked; the row holds whether it may run and what happened last time.
Per-organization and per-site outcomes live in the rollover run ledger.
"""

from datetime import datetime, timezone

from sequencer.models import db

JOB_STATUS_ACTIVE = "active"
JOB_STATUS_PAUSED = "paused"

RUN_SUCCESS = "success"
RUN_FAILED = "failed"
RUN_SKIPPED = "skipped"


def _utcnow():
    return datetime.now(timezone.utc)


class ScheduledJob(db.Model):
    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(30), default="cron", comment="cron, interval")
    schedule_config = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), default=JOB_STATUS_ACTIVE, comment="active, paused")
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True, comment="success, failed, skipped")
    last_trigger = db.Column(db.String(10), nullable=True, comment="cron, manual")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    skip_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def set_enabled(self, enabled: bool) -> None:
        self.is_enabled = enabled
        self.status = JOB_STATUS_ACTIVE if enabled else JOB_STATUS_PAUSED

    def record_run(self, *, status=RUN_SUCCESS, trigger="cron", duration_ms=0, result=None, error=None):
        """Record one execution; failures keep their message in ``last_error``."""
        self.last_run_at = _utcnow()
        self.last_run_status = status
        self.last_trigger = trigger
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == RUN_FAILED:
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def record_skip(self, *, trigger="cron"):
        """A cron invocation that found the job paused."""
        self.skip_count = (self.skip_count or 0) + 1
        self.last_trigger = trigger

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_type": self.schedule_type,
            "schedule_config": self.schedule_config,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_trigger": self.last_trigger,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "skip_count": self.skip_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} {self.status}>"
