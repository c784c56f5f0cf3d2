"""
Pro-Move Sequencer
Completion & Backlog Reconciler.

Runs once per site at its rollover instant (Monday 00:01 local) for the
week that just ended. Per staff member:

    1. load the week's assigned slots and the staff member's scores
    2. every slot has a performance score → nothing to do
    3. site-assigned slots lacking performance → open backlog item
       (deduplicated, tagged with source cycle/week)
    4. every slot lacking performance → confidence score/date reset

Staff members are reconciled in isolation, each in its own transaction,
on a bounded worker pool. The run ends in one ledger entry per site.
Re-running for the same week changes nothing.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy import select

from sequencer.core.exceptions import InvalidSiteCalendarError, NotFoundError
from sequencer.models import db
from sequencer.models.backlog import BacklogItem
from sequencer.models.organization import Location
from sequencer.models.plan import WeeklyPlanRow
from sequencer.models.run_ledger import (
    RUN_KIND_RECONCILE,
    RUN_STATUS_FAILED,
    RUN_STATUS_PARTIAL,
    RUN_STATUS_SUCCESS,
    TRIGGER_CRON,
    TRIGGER_MANUAL,
)
from sequencer.models.staff import Staff, StaffWeeklyScore
from sequencer.services import backlog_service, run_ledger
from sequencer.services.clock import resolve_now
from sequencer.services.run_ledger import RunRecorder
from sequencer.services.week_anchor import anchors_for_location

logger = logging.getLogger(__name__)


@dataclass
class StaffReconcileResult:
    staff_id: int
    status: str = "ok"
    assignments: int = 0
    fully_performed: bool = False
    backlog_added: int = 0
    confidence_reset: int = 0
    error: str | None = None


def reconcile_staff(staff_id, location, previous_anchors, *, now) -> StaffReconcileResult:
    """Reconcile one staff member for the week described by ``previous_anchors``.

    Does not commit.
    """
    staff = db.session.get(Staff, staff_id)
    if staff is None:
        raise NotFoundError("Staff", staff_id)
    result = StaffReconcileResult(staff_id=staff_id)
    week_start = previous_anchors.week_start

    rows = db.session.execute(
        select(WeeklyPlanRow).where(
            WeeklyPlanRow.org_id == location.org_id,
            WeeklyPlanRow.role_id == staff.role_id,
            WeeklyPlanRow.week_start_date == week_start,
        ).order_by(WeeklyPlanRow.display_order)
    ).scalars().all()
    result.assignments = len(rows)
    if not rows:
        result.status = "no_assignments"
        return result

    scores = {
        s.plan_row_id: s for s in db.session.execute(
            select(StaffWeeklyScore).where(
                StaffWeeklyScore.staff_id == staff_id,
                StaffWeeklyScore.plan_row_id.in_([r.id for r in rows]),
            )
        ).scalars()
    }
    missing = [r for r in rows if scores.get(r.id) is None or scores[r.id].performance_score is None]
    if not missing:
        result.fully_performed = True
        return result

    # Items already carried from this week (open, resolved or cleared) are
    # not opened again on a retry.
    carried = set(db.session.execute(
        select(BacklogItem.action_id).where(
            BacklogItem.staff_id == staff_id,
            BacklogItem.source_week_start == week_start,
        )
    ).scalars())

    for row in missing:
        if row.self_select or row.action_id is None or row.action_id in carried:
            continue
        if backlog_service.add_backlog_if_missing(
            staff_id, row.action_id,
            source_cycle=previous_anchors.cycle,
            source_week=previous_anchors.week_in_cycle,
            source_week_start=week_start,
            now=now,
        ):
            result.backlog_added += 1

    for row in missing:
        score = scores.get(row.id)
        if score is None:
            continue
        if score.confidence_score is not None or score.confidence_date is not None:
            score.confidence_score = None
            score.confidence_date = None
            result.confidence_reset += 1
    db.session.flush()
    return result


def _reconcile_isolated(staff_id, location, previous_anchors, now) -> StaffReconcileResult:
    try:
        result = reconcile_staff(staff_id, location, previous_anchors, now=now)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        logger.exception("Reconciliation failed for staff %s", staff_id,
                         extra={"staff_id": staff_id, "location_id": location.id,
                                "target_week": previous_anchors.week_start.isoformat(),
                                "stage": "reconcile_staff"})
        return StaffReconcileResult(staff_id=staff_id, status="failed", error=str(exc))
    logger.info("Reconciled staff %s: %d backlog, %d resets", staff_id,
                result.backlog_added, result.confidence_reset,
                extra={"staff_id": staff_id, "location_id": location.id,
                       "target_week": previous_anchors.week_start.isoformat(),
                       "stage": "reconcile_staff"})
    return result


def _reconcile_in_worker(app, staff_id, location_id, previous_anchors, now):
    with app.app_context():
        location = db.session.get(Location, location_id)
        try:
            return _reconcile_isolated(staff_id, location, previous_anchors, now)
        finally:
            db.session.remove()


def _reconcile_all(staff_ids, location, previous_anchors, now):
    max_workers = current_app.config.get("RECONCILE_MAX_WORKERS", 4)
    if max_workers <= 1 or len(staff_ids) <= 1:
        return [_reconcile_isolated(sid, location, previous_anchors, now) for sid in staff_ids]

    app = current_app._get_current_object()
    location_id = location.id
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="reconcile") as pool:
        futures = [
            pool.submit(_reconcile_in_worker, app, sid, location_id, previous_anchors, now)
            for sid in staff_ids
        ]
        return [f.result() for f in futures]


def reconcile_site(location_id, *, clock=None, as_of=None, trigger=TRIGGER_MANUAL) -> dict:
    """Reconcile every active staff member of a site for the week that just ended.

    A no-op (``executed=False``) before the site's rollover instant.
    """
    location = db.session.get(Location, location_id)
    if location is None:
        raise NotFoundError("Location", location_id)
    now = resolve_now(clock, as_of)

    current = anchors_for_location(location, now)
    previous = current.shifted(-1)
    if now < previous.rollover_at:
        return {"executed": False, "reason": "not_rollover_time", "location_id": location_id,
                "rollover_at": previous.rollover_at.isoformat()}
    if not previous.program_started:
        return {"executed": False, "reason": "program_not_started", "location_id": location_id,
                "week_start": previous.week_start.isoformat()}

    recorder = RunRecorder(RUN_KIND_RECONCILE, org_id=location.org_id, location_id=location_id,
                           trigger=trigger, config_snapshot={"timezone": location.timezone,
                                                             "cycle_length": location.cycle_length_weeks})
    recorder.target_week_start = previous.week_start
    recorder.enter("reconcile")
    recorder.log("Reconciling week %s (cycle %d week %d)", previous.week_start.isoformat(),
                 previous.cycle, previous.week_in_cycle)

    staff_ids = [s.id for s in Staff.query.filter_by(primary_location_id=location_id, active=True)
                 .order_by(Staff.id).all()]
    outcomes = _reconcile_all(staff_ids, location, previous, now)

    failed = [o for o in outcomes if o.status == "failed"]
    for outcome in failed:
        recorder.log("Staff %s failed: %s", outcome.staff_id, outcome.error, level=logging.ERROR)
    if not failed:
        status = RUN_STATUS_SUCCESS
    elif len(failed) == len(outcomes):
        status = RUN_STATUS_FAILED
    else:
        status = RUN_STATUS_PARTIAL
    recorder.enter("done")
    summary = {
        "week_start": previous.week_start.isoformat(),
        "cycle": previous.cycle,
        "week_in_cycle": previous.week_in_cycle,
        "staff": [asdict(o) for o in outcomes],
        "backlog_added": sum(o.backlog_added for o in outcomes),
        "confidence_reset": sum(o.confidence_reset for o in outcomes),
        "failed": len(failed),
    }
    entry = recorder.finish(status, result=summary)
    db.session.commit()
    return {"executed": True, "location_id": location_id, "status": status,
            "run_id": entry.id, **summary}


def reconcile_due_sites(clock=None) -> dict:
    """Cron entry: reconcile every site whose last week is due and not yet done."""
    now = resolve_now(clock)
    results = {"sites": 0, "reconciled": 0, "not_due": 0, "already_done": 0, "failed": 0}
    location_ids = [loc.id for loc in Location.query.filter_by(active=True).order_by(Location.id).all()]
    for location_id in location_ids:
        results["sites"] += 1
        location = db.session.get(Location, location_id)
        try:
            previous = anchors_for_location(location, now).shifted(-1)
        except InvalidSiteCalendarError as exc:
            logger.warning("Skipping site %s: %s", location_id, exc,
                           extra={"location_id": location_id, "stage": "reconcile"})
            results["failed"] += 1
            continue
        if now < previous.rollover_at or not previous.program_started:
            results["not_due"] += 1
            continue
        done = run_ledger.latest_run(kind=RUN_KIND_RECONCILE, location_id=location_id,
                                     target_week_start=previous.week_start, successful_only=True)
        if done is not None:
            results["already_done"] += 1
            continue
        try:
            outcome = reconcile_site(location_id, clock=clock, as_of=now, trigger=TRIGGER_CRON)
        except Exception:
            db.session.rollback()
            logger.exception("Site reconciliation crashed for %s", location_id,
                             extra={"location_id": location_id, "stage": "reconcile"})
            results["failed"] += 1
            continue
        if outcome.get("status") == RUN_STATUS_SUCCESS:
            results["reconciled"] += 1
        else:
            results["failed"] += 1
    return results
