"""
Pro-Move Sequencer
Run Ledger service.

Every pipeline execution ends in exactly one immutable ``RolloverRun`` row.
``RunRecorder`` collects stage changes and log lines while a tick or a site
reconciliation is running and writes the row once at the end.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from sqlalchemy import select

from sequencer.models import db
from sequencer.models.run_ledger import (
    RUN_STATUS_SUCCESS,
    RolloverRun,
)

logger = logging.getLogger(__name__)


def record_run(*, kind, status, org_id=None, role_id=None, location_id=None,
               target_week_start=None, trigger="manual", dry_run=False, stage=None,
               logs=None, config_snapshot=None, result=None, error=None,
               started_at=None, finished_at=None, duration_ms=None) -> RolloverRun:
    """Insert one ledger row and flush it. The caller commits."""
    finished_at = finished_at or datetime.now(timezone.utc)
    entry = RolloverRun(
        kind=kind,
        org_id=org_id,
        role_id=role_id,
        location_id=location_id,
        target_week_start=target_week_start,
        trigger=trigger,
        dry_run=dry_run,
        success=status == RUN_STATUS_SUCCESS,
        status=status,
        stage=stage,
        logs=list(logs or []),
        config_snapshot=dict(config_snapshot or {}),
        result=dict(result or {}),
        error=error,
        started_at=started_at or finished_at,
        finished_at=finished_at,
        duration_ms=duration_ms,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


class RunRecorder:
    """Accumulates the context of one execution for its ledger row."""

    def __init__(self, kind, *, org_id=None, role_id=None, location_id=None,
                 trigger="manual", dry_run=False, config_snapshot=None):
        self.kind = kind
        self.org_id = org_id
        self.role_id = role_id
        self.location_id = location_id
        self.trigger = trigger
        self.dry_run = dry_run
        self.config_snapshot = config_snapshot or {}
        self.target_week_start = None
        self.stage = None
        self.logs: list[dict] = []
        self.started_at = datetime.now(timezone.utc)
        self._t0 = time.monotonic()

    def _extra(self, **fields):
        extra = {
            "org_id": self.org_id,
            "role_id": self.role_id,
            "location_id": self.location_id,
            "stage": self.stage,
        }
        if self.target_week_start is not None:
            extra["target_week"] = self.target_week_start.isoformat()
        extra.update(fields)
        return {k: v for k, v in extra.items() if v is not None}

    def enter(self, stage):
        self.stage = stage

    def log(self, message, *args, level=logging.INFO, **fields):
        text = message % args if args else message
        self.logs.append({
            "at": datetime.now(timezone.utc).isoformat(),
            "level": logging.getLevelName(level).lower(),
            "stage": self.stage,
            "message": text,
        })
        logger.log(level, text, extra=self._extra(**fields))

    def finish(self, status, *, result=None, error=None) -> RolloverRun:
        if error is not None:
            self.log("%s: %s", type(error).__name__, error, level=logging.ERROR)
        return record_run(
            kind=self.kind,
            status=status,
            org_id=self.org_id,
            role_id=self.role_id,
            location_id=self.location_id,
            target_week_start=self.target_week_start,
            trigger=self.trigger,
            dry_run=self.dry_run,
            stage=self.stage,
            logs=self.logs,
            config_snapshot=self.config_snapshot,
            result=result,
            error=str(error) if error is not None else None,
            started_at=self.started_at,
            duration_ms=int((time.monotonic() - self._t0) * 1000),
        )


def _filtered(kind=None, org_id=None, role_id=None, location_id=None, target_week_start=None):
    stmt = select(RolloverRun)
    if kind:
        stmt = stmt.where(RolloverRun.kind == kind)
    if org_id is not None:
        stmt = stmt.where(RolloverRun.org_id == org_id)
    if role_id is not None:
        stmt = stmt.where(RolloverRun.role_id == role_id)
    if location_id is not None:
        stmt = stmt.where(RolloverRun.location_id == location_id)
    if target_week_start is not None:
        stmt = stmt.where(RolloverRun.target_week_start == target_week_start)
    return stmt.order_by(RolloverRun.id.desc())


def list_runs(*, kind=None, org_id=None, role_id=None, location_id=None,
              target_week_start=None, limit=50):
    """Newest-first ledger rows matching the filters."""
    stmt = _filtered(kind, org_id, role_id, location_id, target_week_start).limit(limit)
    return db.session.execute(stmt).scalars().all()


def latest_run(*, kind=None, org_id=None, role_id=None, location_id=None,
               target_week_start=None, successful_only=False):
    stmt = _filtered(kind, org_id, role_id, location_id, target_week_start)
    if successful_only:
        stmt = stmt.where(RolloverRun.success.is_(True))
    return db.session.execute(stmt.limit(1)).scalars().first()
