"""
Pro-Move Sequencer
Weekly Plan Store.

Every writer is a single statement keyed on
(org_id, role_id, week_start_date, display_order):

    upsert_proposed   INSERT .. ON CONFLICT DO UPDATE, guarded by
                      status='proposed' AND NOT overridden AND changed values
    lock              UPDATE .. WHERE status='proposed' AND NOT overridden
    apply_override    INSERT .. ON CONFLICT DO UPDATE, sets overridden=True
    clear_override    UPDATE .. WHERE overridden

None of these commit; the caller owns the transaction.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import and_, or_, select, update

from sequencer.core.exceptions import NotFoundError, ValidationError
from sequencer.models import db
from sequencer.models.catalog import ProMove, Role
from sequencer.models.organization import Organization
from sequencer.models.plan import (
    GENERATED_AUTO,
    GENERATED_MANUAL,
    PLAN_STATUS_LOCKED,
    PLAN_STATUS_PROPOSED,
    SLOTS_PER_WEEK,
    WeeklyPlanRow,
)
from sequencer.models.upsert import insert_for

logger = logging.getLogger(__name__)

SLOT_KEY = ["org_id", "role_id", "week_start_date", "display_order"]


def _now(now):
    return now or datetime.now(timezone.utc)


def _execute(stmt):
    db.session.flush()
    result = db.session.execute(stmt)
    # Loaded rows may be stale after a statement-level write.
    db.session.expire_all()
    return result


def _week_filter(org_id, role_id, week_start):
    return and_(
        WeeklyPlanRow.org_id == org_id,
        WeeklyPlanRow.role_id == role_id,
        WeeklyPlanRow.week_start_date == week_start,
    )


# ── Writers ──────────────────────────────────────────────────────────────


def upsert_proposed(org_id, role_id, week_start, picks, *, now=None):
    """Write ranked picks as the proposed rows of a week.

    Each row keeps the pick's rank snapshot and ranking version. Locked or
    overridden slots are left alone; slots whose action, score and version
    are unchanged are not touched at all. Returns the number of rows
    inserted or changed.
    """
    if len(picks) != SLOTS_PER_WEEK:
        raise ValidationError(f"Exactly {SLOTS_PER_WEEK} picks are required",
                              details={"picks": len(picks)})
    now = _now(now)
    rows = [
        {
            "org_id": org_id,
            "role_id": role_id,
            "week_start_date": week_start,
            "display_order": order,
            "action_id": pick.action_id,
            "self_select": False,
            "status": PLAN_STATUS_PROPOSED,
            "generated_by": GENERATED_AUTO,
            "rank_score": pick.score,
            "rank_snapshot": pick.snapshot(),
            "rank_version": pick.version,
            "overridden": False,
            "created_at": now,
            "updated_at": now,
        }
        for order, pick in enumerate(picks, start=1)
    ]
    stmt = insert_for(WeeklyPlanRow).values(rows)
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=SLOT_KEY,
        set_={
            "action_id": excluded.action_id,
            "self_select": excluded.self_select,
            "rank_score": excluded.rank_score,
            "rank_snapshot": excluded.rank_snapshot,
            "rank_version": excluded.rank_version,
            "generated_by": excluded.generated_by,
            "updated_at": excluded.updated_at,
        },
        where=and_(
            WeeklyPlanRow.status == PLAN_STATUS_PROPOSED,
            WeeklyPlanRow.overridden.is_(False),
            or_(
                WeeklyPlanRow.action_id.is_distinct_from(excluded.action_id),
                WeeklyPlanRow.rank_score.is_distinct_from(excluded.rank_score),
                WeeklyPlanRow.rank_version.is_distinct_from(excluded.rank_version),
                WeeklyPlanRow.self_select.is_distinct_from(excluded.self_select),
            ),
        ),
    )
    written = _execute(stmt).rowcount
    logger.debug("Upserted proposed week org=%s role=%s %s: %s rows", org_id, role_id, week_start, written,
                 extra={"org_id": org_id, "role_id": role_id, "target_week": week_start.isoformat(),
                        "stage": "upsert"})
    return written


def lock(org_id, role_id, week_start, *, now=None):
    """Promote the proposed, non-overridden rows of a week to locked.

    Single conditional UPDATE; already-locked and overridden rows are not
    matched. Returns the number of rows locked.
    """
    now = _now(now)
    stmt = (
        update(WeeklyPlanRow)
        .where(
            _week_filter(org_id, role_id, week_start),
            WeeklyPlanRow.status == PLAN_STATUS_PROPOSED,
            WeeklyPlanRow.overridden.is_(False),
        )
        .values(status=PLAN_STATUS_LOCKED, locked_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return _execute(stmt).rowcount


def apply_override(org_id, role_id, week_start, action_ids, *, overridden_by=None, now=None):
    """Replace a week's three slots by hand.

    ``action_ids`` holds exactly three entries; ``None`` makes that slot a
    self-select slot. The rows are flagged ``overridden`` and automation
    leaves them alone until ``clear_override``. A locked week stays locked.
    """
    if db.session.get(Organization, org_id) is None:
        raise NotFoundError("Organization", org_id)
    if db.session.get(Role, role_id) is None:
        raise NotFoundError("Role", role_id)
    if len(action_ids) != SLOTS_PER_WEEK:
        raise ValidationError(f"Exactly {SLOTS_PER_WEEK} slots are required",
                              details={"action_ids": action_ids})
    chosen = [a for a in action_ids if a is not None]
    if len(set(chosen)) != len(chosen):
        raise ValidationError("An action may appear only once per week",
                              details={"action_ids": action_ids})
    if chosen:
        found = {
            pm.id: pm for pm in db.session.execute(
                select(ProMove).where(ProMove.id.in_(chosen))
            ).scalars()
        }
        for action_id in chosen:
            pm = found.get(action_id)
            if pm is None:
                raise NotFoundError("ProMove", action_id)
            if not pm.active or pm.role_id != role_id:
                raise ValidationError(
                    f"Pro-move {action_id} is not an active pro-move of role {role_id}",
                    details={"action_id": action_id},
                )

    now = _now(now)
    rows = [
        {
            "org_id": org_id,
            "role_id": role_id,
            "week_start_date": week_start,
            "display_order": order,
            "action_id": action_id,
            "self_select": action_id is None,
            "status": PLAN_STATUS_PROPOSED,
            "generated_by": GENERATED_MANUAL,
            "rank_score": None,
            "rank_snapshot": None,
            "rank_version": None,
            "overridden": True,
            "overridden_at": now,
            "overridden_by": overridden_by,
            "created_at": now,
            "updated_at": now,
        }
        for order, action_id in enumerate(action_ids, start=1)
    ]
    stmt = insert_for(WeeklyPlanRow).values(rows)
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=SLOT_KEY,
        set_={
            "action_id": excluded.action_id,
            "self_select": excluded.self_select,
            "rank_score": None,
            "rank_snapshot": None,
            "rank_version": None,
            "generated_by": GENERATED_MANUAL,
            "overridden": True,
            "overridden_at": excluded.overridden_at,
            "overridden_by": excluded.overridden_by,
            "updated_at": excluded.updated_at,
        },
    )
    _execute(stmt)
    logger.info("Override applied org=%s role=%s week=%s by %s", org_id, role_id, week_start,
                overridden_by or "unknown",
                extra={"org_id": org_id, "role_id": role_id, "target_week": week_start.isoformat(),
                       "stage": "override"})
    return get_week(org_id, role_id, week_start)


def clear_override(org_id, role_id, week_start, *, now=None):
    """Hand a week back to automation. Returns the number of rows cleared."""
    now = _now(now)
    stmt = (
        update(WeeklyPlanRow)
        .where(_week_filter(org_id, role_id, week_start), WeeklyPlanRow.overridden.is_(True))
        .values(overridden=False, overridden_at=None, overridden_by=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    cleared = _execute(stmt).rowcount
    if cleared:
        logger.info("Override cleared org=%s role=%s week=%s", org_id, role_id, week_start,
                    extra={"org_id": org_id, "role_id": role_id, "target_week": week_start.isoformat(),
                           "stage": "override"})
    return cleared


# ── Read views ───────────────────────────────────────────────────────────


def get_week(org_id, role_id, week_start):
    return db.session.execute(
        select(WeeklyPlanRow)
        .where(_week_filter(org_id, role_id, week_start))
        .order_by(WeeklyPlanRow.display_order)
    ).scalars().all()


def week_exists(org_id, role_id, week_start):
    return db.session.execute(
        select(WeeklyPlanRow.id).where(_week_filter(org_id, role_id, week_start)).limit(1)
    ).first() is not None


def is_week_overridden(org_id, role_id, week_start):
    return db.session.execute(
        select(WeeklyPlanRow.id)
        .where(_week_filter(org_id, role_id, week_start), WeeklyPlanRow.overridden.is_(True))
        .limit(1)
    ).first() is not None


def is_week_locked(org_id, role_id, week_start):
    return db.session.execute(
        select(WeeklyPlanRow.id)
        .where(_week_filter(org_id, role_id, week_start), WeeklyPlanRow.status == PLAN_STATUS_LOCKED)
        .limit(1)
    ).first() is not None


def count_lockable(org_id, role_id, week_start):
    """Rows ``lock`` would promote right now."""
    return len(db.session.execute(
        select(WeeklyPlanRow.id).where(
            _week_filter(org_id, role_id, week_start),
            WeeklyPlanRow.status == PLAN_STATUS_PROPOSED,
            WeeklyPlanRow.overridden.is_(False),
        )
    ).all())


def list_weeks(org_id, role_id, start=None, end=None):
    """Plan rows of an (org, role) grouped by week, oldest first."""
    stmt = select(WeeklyPlanRow).where(
        WeeklyPlanRow.org_id == org_id, WeeklyPlanRow.role_id == role_id,
    )
    if start is not None:
        stmt = stmt.where(WeeklyPlanRow.week_start_date >= start)
    if end is not None:
        stmt = stmt.where(WeeklyPlanRow.week_start_date <= end)
    stmt = stmt.order_by(WeeklyPlanRow.week_start_date, WeeklyPlanRow.display_order)

    weeks = {}
    for row in db.session.execute(stmt).scalars():
        weeks.setdefault(row.week_start_date, []).append(row)
    return [
        {
            "week_start_date": week.isoformat(),
            "status": PLAN_STATUS_LOCKED if all(r.status == PLAN_STATUS_LOCKED for r in rows)
            else PLAN_STATUS_PROPOSED,
            "overridden": any(r.overridden for r in rows),
            "rows": [r.to_dict() for r in rows],
        }
        for week, rows in weeks.items()
    ]
