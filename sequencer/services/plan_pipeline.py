"""
Pro-Move Sequencer
Plan Pipeline Controller.

Keeps the three-week window (current / next / week-after) of every
(org, role) plan up to date. One tick per (org, role):

    Uninitialized     no pipeline state and no current-week rows
                      → seed current+1 and current+2 as proposed, never lock
    FirstRunSeeded    still in the seeding week
                      → re-seed the same two weeks (idempotent refresh)
    SteadyState       any later week
                      → generate current if absent, lock current,
                        refresh next and week-after

Overridden weeks are skipped (logged, not an error); locked weeks are never
regenerated. Ranking runs under a per-tick deadline. Every tick is its own
transaction and ends in exactly one run ledger entry, dry-runs included.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import date, timedelta

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from sequencer.core.exceptions import (
    ConfigurationError,
    InvalidSiteCalendarError,
    NotFoundError,
    TickTimeoutError,
    TransientError,
)
from sequencer.models import db
from sequencer.models.catalog import Role
from sequencer.models.organization import Location, Organization
from sequencer.models.plan import (
    PIPELINE_FIRST_RUN_SEEDED,
    PIPELINE_STEADY_STATE,
    PlanPipeline,
)
from sequencer.models.run_ledger import (
    RUN_KIND_PLAN_TICK,
    RUN_STATUS_FAILED,
    RUN_STATUS_SKIPPED,
    RUN_STATUS_SUCCESS,
    TRIGGER_CRON,
    TRIGGER_MANUAL,
)
from sequencer.models.upsert import insert_for
from sequencer.services import candidate_pool, plan_store
from sequencer.services.clock import resolve_now
from sequencer.services.feature_flag_service import SEQUENCER_AUTO, is_enabled, resolve
from sequencer.services.ranking import RankingConfig, advance_pool, rank
from sequencer.services.run_ledger import RunRecorder
from sequencer.services.week_anchor import anchors_for_location, week_start_for

logger = logging.getLogger(__name__)

MODE_FIRST_RUN = "first_run"
MODE_RESEED = "reseed"
MODE_STEADY = "steady"

SKIP_OVERRIDDEN = "overridden"
SKIP_LOCKED = "locked"
SKIP_CURRENT_EXISTS = "current_exists"


# ═══════════════════════════════════════════════════════════════════════════
#  Gates
# ═══════════════════════════════════════════════════════════════════════════


def rollover_enabled(org_id) -> bool:
    """Deployment switch plus the organization's ``sequencer_auto`` flag."""
    if not current_app.config.get("ROLLOVER_ENABLED", True):
        return False
    return is_enabled(SEQUENCER_AUTO, org_id, default=True)


def check_feasibility(org_id, now) -> dict:
    """The org is ready once one active site has reached the gate cycle."""
    min_cycle = current_app.config.get("SEQUENCER_GATE_MIN_CYCLE", 4)
    locations = Location.query.filter_by(org_id=org_id, active=True).order_by(Location.id).all()
    sites = []
    for location in locations:
        try:
            anchors = anchors_for_location(location, now)
        except InvalidSiteCalendarError as exc:
            logger.warning("Site %s has an invalid calendar: %s", location.id, exc,
                           extra={"org_id": org_id, "location_id": location.id, "stage": "gate"})
            continue
        sites.append({"location_id": location.id, "cycle": anchors.cycle,
                      "program_started": anchors.program_started})
    met = any(s["program_started"] and s["cycle"] >= min_cycle for s in sites)
    return {"met": met, "min_cycle": min_cycle, "sites": sites}


def org_timezone(org):
    return org.timezone or current_app.config.get("ROLLOVER_TIMEZONE", "America/Chicago")


def _ranking_config() -> RankingConfig:
    return RankingConfig.from_mapping(current_app.config.get("RANKING"))


# ═══════════════════════════════════════════════════════════════════════════
#  Tick planning
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class WeekTarget:
    week_start: date
    existing: list = field(default_factory=list)
    skip: str | None = None
    picks: list = field(default_factory=list)


def _detect_mode(org_id, role_id, current_week):
    state = db.session.execute(
        select(PlanPipeline).where(PlanPipeline.org_id == org_id, PlanPipeline.role_id == role_id)
    ).scalars().first()
    if state is None:
        # Weeks planned before the pipeline existed count as steady state.
        if plan_store.week_exists(org_id, role_id, current_week):
            return MODE_STEADY
        return MODE_FIRST_RUN
    if state.state == PIPELINE_FIRST_RUN_SEEDED and state.seeded_week_start is not None \
            and current_week <= state.seeded_week_start:
        return MODE_RESEED
    return MODE_STEADY


def _targets(org_id, role_id, current_week, mode):
    weeks = [current_week + timedelta(weeks=1), current_week + timedelta(weeks=2)]
    if mode == MODE_STEADY:
        weeks.insert(0, current_week)
    targets = []
    for week in weeks:
        rows = plan_store.get_week(org_id, role_id, week)
        target = WeekTarget(week_start=week, existing=[r.action_id for r in rows])
        if any(r.overridden for r in rows):
            target.skip = SKIP_OVERRIDDEN
        elif any(r.status == "locked" for r in rows):
            target.skip = SKIP_LOCKED
        elif week == current_week and rows:
            target.skip = SKIP_CURRENT_EXISTS
        targets.append(target)
    return targets


def plan_weeks(role_id, pool, targets, config, ranker=None):
    """Rank every target week in order, chaining the pool between weeks.

    Pure: no storage access, safe to run on a worker thread.
    """
    ranker = ranker or rank
    for target in targets:
        if target.skip:
            pool = advance_pool(pool, target.existing, target.week_start)
            continue
        target.picks = ranker(role_id, target.week_start, pool, config)
        pool = advance_pool(pool, target.picks, target.week_start)
    return targets


def _rank_with_deadline(org_id, role_id, fn, timeout):
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rank")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout:
        raise TickTimeoutError(org_id, role_id, timeout) from None
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def _save_state(org_id, role_id, mode, current_week, now):
    state = PIPELINE_STEADY_STATE if mode == MODE_STEADY else PIPELINE_FIRST_RUN_SEEDED
    stmt = insert_for(PlanPipeline).values(
        org_id=org_id,
        role_id=role_id,
        state=state,
        seeded_week_start=current_week if mode == MODE_FIRST_RUN else None,
        last_tick_week_start=current_week,
        updated_at=now,
    )
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=["org_id", "role_id"],
        set_={
            "state": excluded.state,
            "last_tick_week_start": excluded.last_tick_week_start,
            "updated_at": excluded.updated_at,
        },
        where=(
            PlanPipeline.state.is_distinct_from(excluded.state)
            | PlanPipeline.last_tick_week_start.is_distinct_from(excluded.last_tick_week_start)
        ),
    )
    db.session.execute(stmt)


def _tick(org, role_id, now, dry_run, recorder, ranker):
    org_id = org.id
    recorder.enter("anchor")
    current_week = week_start_for(now, org_timezone(org))
    recorder.target_week_start = current_week
    mode = _detect_mode(org_id, role_id, current_week)
    recorder.log("Tick for week %s in mode %s", current_week.isoformat(), mode)

    recorder.enter("load_candidates")
    targets = _targets(org_id, role_id, current_week, mode)
    for target in targets:
        if target.skip == SKIP_OVERRIDDEN:
            recorder.log("Week %s is overridden, regeneration skipped", target.week_start.isoformat())
        elif target.skip == SKIP_LOCKED:
            recorder.log("Week %s is locked, regeneration skipped", target.week_start.isoformat())
    config = _ranking_config()
    pool = candidate_pool.load_candidates(org_id, role_id, targets[0].week_start, config)

    recorder.enter("rank")
    timeout = current_app.config.get("TICK_TIMEOUT_SECONDS", 30)
    _rank_with_deadline(
        org_id, role_id,
        lambda: plan_weeks(role_id, pool, targets, config, ranker),
        timeout,
    )

    result = {
        "mode": mode,
        "current_week": current_week.isoformat(),
        "generated": [],
        "skipped": [{"week": t.week_start.isoformat(), "reason": t.skip} for t in targets if t.skip],
        "picks": {t.week_start.isoformat(): [p.action_id for p in t.picks] for t in targets if t.picks},
        "locked": 0,
        "written": 0,
    }

    recorder.enter("upsert")
    for target in targets:
        if not target.picks:
            continue
        ids = [p.action_id for p in target.picks]
        if dry_run:
            recorder.log("Dry run: would upsert week %s with %s", target.week_start.isoformat(), ids)
        else:
            result["written"] += plan_store.upsert_proposed(
                org_id, role_id, target.week_start, target.picks, now=now,
            )
            recorder.log("Upserted week %s with %s", target.week_start.isoformat(), ids)
        result["generated"].append(target.week_start.isoformat())

    if mode == MODE_STEADY:
        recorder.enter("lock")
        if plan_store.is_week_overridden(org_id, role_id, current_week):
            recorder.log("Current week %s is overridden, lock skipped", current_week.isoformat())
        elif dry_run:
            result["locked"] = plan_store.count_lockable(org_id, role_id, current_week)
            recorder.log("Dry run: would lock %d rows of week %s", result["locked"],
                         current_week.isoformat())
        else:
            result["locked"] = plan_store.lock(org_id, role_id, current_week, now=now)
            recorder.log("Locked %d rows of week %s", result["locked"], current_week.isoformat())

    if not dry_run:
        recorder.enter("state")
        _save_state(org_id, role_id, mode, current_week, now)
    recorder.enter("done")
    return result


def _run_tick(org, role_id, now, dry_run, trigger, ranker):
    recorder = RunRecorder(
        RUN_KIND_PLAN_TICK, org_id=org.id, role_id=role_id, trigger=trigger,
        dry_run=dry_run, config_snapshot=_snapshot(),
    )
    status, result, error = RUN_STATUS_SUCCESS, None, None
    try:
        result = _tick(org, role_id, now, dry_run, recorder, ranker)
        if dry_run:
            db.session.rollback()
        else:
            db.session.commit()
    except (ConfigurationError, TransientError) as exc:
        db.session.rollback()
        status, error = RUN_STATUS_FAILED, exc
        logger.warning("Tick failed org=%s role=%s at %s: %s", org.id, role_id, recorder.stage, exc,
                       extra={"org_id": org.id, "role_id": role_id, "stage": recorder.stage})
    except SQLAlchemyError as exc:
        db.session.rollback()
        status, error = RUN_STATUS_FAILED, TransientError(f"Storage error: {exc}")
        logger.exception("Storage error in tick org=%s role=%s", org.id, role_id,
                         extra={"org_id": org.id, "role_id": role_id, "stage": recorder.stage})
    except Exception as exc:
        db.session.rollback()
        status, error = RUN_STATUS_FAILED, exc
        logger.exception("Unexpected error in tick org=%s role=%s", org.id, role_id,
                         extra={"org_id": org.id, "role_id": role_id, "stage": recorder.stage})

    entry = recorder.finish(status, result=result, error=error)
    db.session.commit()
    return entry.to_dict()


def _snapshot():
    cfg = current_app.config
    return {
        "ranking": cfg.get("RANKING"),
        "timezone": cfg.get("ROLLOVER_TIMEZONE"),
        "gate_min_cycle": cfg.get("SEQUENCER_GATE_MIN_CYCLE"),
        "tick_timeout_seconds": cfg.get("TICK_TIMEOUT_SECONDS"),
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Status view
# ═══════════════════════════════════════════════════════════════════════════


def pipeline_status(org_id, as_of=None, *, clock=None) -> dict:
    """Operator view of an organization's automation: switches, gate and weeks.

    Read-only. ``roles`` holds, per active role, the persisted pipeline state,
    whether the first week was seeded, whether the current week is locked and
    whether next week has been proposed.
    """
    org = db.session.get(Organization, org_id)
    if org is None:
        raise NotFoundError("Organization", org_id)
    now = resolve_now(clock, as_of)
    tz = org_timezone(org)
    current_week = week_start_for(now, tz)
    next_week = current_week + timedelta(weeks=1)
    auto_enabled, auto_source = resolve(SEQUENCER_AUTO, org_id, default=True)

    states = {
        p.role_id: p for p in db.session.execute(
            select(PlanPipeline).where(PlanPipeline.org_id == org_id)
        ).scalars()
    }
    roles = []
    for role_id in active_role_ids():
        state = states.get(role_id)
        seeded = state.seeded_week_start if state else None
        roles.append({
            "role_id": role_id,
            "state": state.state if state else None,
            "first_week_seeded": state is not None
            or plan_store.week_exists(org_id, role_id, current_week),
            "seeded_week_start": seeded.isoformat() if seeded else None,
            "current_week_locked": plan_store.is_week_locked(org_id, role_id, current_week),
            "current_week_overridden": plan_store.is_week_overridden(org_id, role_id, current_week),
            "next_week_proposed": plan_store.week_exists(org_id, role_id, next_week),
        })

    return {
        "org_id": org_id,
        "as_of": now.isoformat(),
        "timezone": tz,
        "deployment_enabled": bool(current_app.config.get("ROLLOVER_ENABLED", True)),
        "auto_enabled": auto_enabled,
        "auto_source": auto_source,
        "enabled": rollover_enabled(org_id),
        "gate": check_feasibility(org_id, now),
        "current_week": current_week.isoformat(),
        "next_week": next_week.isoformat(),
        "roles": roles,
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Trigger surface
# ═══════════════════════════════════════════════════════════════════════════


def active_role_ids():
    return [r.id for r in Role.query.filter_by(active=True).order_by(Role.id).all()]


def run_rollover(org_id, roles=None, as_of=None, dry_run=False, *,
                 trigger=TRIGGER_MANUAL, clock=None, ranker=None) -> dict:
    """Run one rollover tick for every requested role of an organization.

    Args:
        org_id: Organization to tick.
        roles: Role ids; all active roles when empty.
        as_of: Simulated instant; defaults to the clock's time.
        dry_run: Compute and log, write only the ledger entries.

    Returns:
        ``{"status": "disabled"}`` when rollover is switched off, otherwise a
        summary with one ledger entry per role under ``runs``.
    """
    org = db.session.get(Organization, org_id)
    if org is None:
        raise NotFoundError("Organization", org_id)
    now = resolve_now(clock, as_of)

    if not rollover_enabled(org_id):
        logger.info("Rollover disabled for org %s", org_id, extra={"org_id": org_id, "stage": "gate"})
        return {"status": "disabled", "org_id": org_id}

    role_ids = list(roles or active_role_ids())
    summary = {
        "org_id": org_id,
        "as_of": now.isoformat(),
        "dry_run": dry_run,
        "trigger": trigger,
        "runs": [],
    }

    gate = check_feasibility(org_id, now)
    if not gate["met"]:
        for role_id in role_ids:
            recorder = RunRecorder(RUN_KIND_PLAN_TICK, org_id=org_id, role_id=role_id,
                                   trigger=trigger, dry_run=dry_run, config_snapshot=_snapshot())
            recorder.enter("gate")
            recorder.log("Feasibility gate not met: no active site at cycle %d yet", gate["min_cycle"])
            summary["runs"].append(recorder.finish(RUN_STATUS_SKIPPED, result={"gate": gate}).to_dict())
        db.session.commit()
        summary["status"] = "skipped"
        summary["reason"] = "gate_not_met"
        return summary

    for role_id in role_ids:
        summary["runs"].append(_run_tick(org, role_id, now, dry_run, trigger, ranker))

    failures = sum(1 for run in summary["runs"] if not run["success"])
    if not failures:
        summary["status"] = "ok"
    elif failures == len(summary["runs"]):
        summary["status"] = "failed"
    else:
        summary["status"] = "partial"
    return summary


def rollover_all_orgs(clock=None) -> dict:
    """Cron entry: tick every active organization for all active roles."""
    results = {"orgs": 0, "ok": 0, "failed": 0, "skipped": 0, "disabled": 0}
    org_ids = [o.id for o in Organization.query.filter_by(active=True).order_by(Organization.id).all()]
    for org_id in org_ids:
        results["orgs"] += 1
        try:
            outcome = run_rollover(org_id, trigger=TRIGGER_CRON, clock=clock)
        except Exception:
            db.session.rollback()
            logger.exception("Rollover crashed for org %s", org_id, extra={"org_id": org_id})
            results["failed"] += 1
            continue
        status = outcome["status"]
        if status == "ok":
            results["ok"] += 1
        elif status in ("skipped", "disabled"):
            results[status] += 1
        else:
            results["failed"] += 1
    return results
