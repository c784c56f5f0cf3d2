"""
Pro-Move Sequencer
Score Submission Service.

Confidence (staff, early in the week) and performance (observer, later in
the week) for one weekly plan slot. Late flags are computed against the
site's week anchors. A performance score on an action that sits open in
the staff member's backlog resolves that backlog item.
"""

import logging

from sqlalchemy import select

from sequencer.core.exceptions import NotFoundError, ValidationError
from sequencer.models import db
from sequencer.models.catalog import ProMove
from sequencer.models.plan import WeeklyPlanRow
from sequencer.models.staff import SCORE_MAX, SCORE_MIN, Staff, StaffWeeklyScore
from sequencer.models.upsert import insert_for
from sequencer.services import backlog_service
from sequencer.services.clock import resolve_now
from sequencer.services.week_anchor import anchors_for_week

logger = logging.getLogger(__name__)


def _validate_score(score):
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError("score must be an integer", details={"score": score})
    if not SCORE_MIN <= score <= SCORE_MAX:
        raise ValidationError(f"score must be between {SCORE_MIN} and {SCORE_MAX}",
                              details={"score": score})


def _load_context(staff_id, plan_row_id):
    staff = db.session.get(Staff, staff_id)
    if staff is None:
        raise NotFoundError("Staff", staff_id)
    row = db.session.get(WeeklyPlanRow, plan_row_id)
    if row is None:
        raise NotFoundError("WeeklyPlanRow", plan_row_id)
    location = staff.location
    if location is None:
        raise ValidationError(f"Staff {staff_id} has no primary location")
    if row.org_id != location.org_id or row.role_id != staff.role_id:
        raise ValidationError(
            f"Plan row {plan_row_id} is not assigned to staff {staff_id}",
            details={"plan_row_id": plan_row_id},
        )
    anchors = anchors_for_week(row.week_start_date, location.timezone,
                               location.program_start_date, location.cycle_length_weeks)
    return staff, row, anchors


def _resolve_action(row, staff, action_id):
    if not row.self_select:
        if action_id is not None and action_id != row.action_id:
            raise ValidationError("Site-assigned slots cannot change their pro-move",
                                  details={"action_id": action_id})
        return row.action_id
    if action_id is None:
        raise ValidationError("action_id is required for a self-select slot")
    pm = db.session.get(ProMove, action_id)
    if pm is None:
        raise NotFoundError("ProMove", action_id)
    if not pm.active or pm.role_id != staff.role_id:
        raise ValidationError(f"Pro-move {action_id} is not available for this role",
                              details={"action_id": action_id})
    return action_id


def get_score(staff_id, plan_row_id):
    return db.session.execute(
        select(StaffWeeklyScore).where(
            StaffWeeklyScore.staff_id == staff_id,
            StaffWeeklyScore.plan_row_id == plan_row_id,
        )
    ).scalars().first()


def record_confidence(staff_id, plan_row_id, score, *, action_id=None, now=None, clock=None):
    """Insert or update the confidence half of a weekly score."""
    _validate_score(score)
    now = resolve_now(clock, now)
    staff, row, anchors = _load_context(staff_id, plan_row_id)
    if now < anchors.checkin_open:
        raise ValidationError("Check-in for this week is not open yet",
                              details={"checkin_open": anchors.checkin_open.isoformat()})
    existing = get_score(staff_id, plan_row_id)
    if existing is not None and existing.action_id is not None and action_id is None:
        action_id = existing.action_id if row.self_select else None
    chosen = _resolve_action(row, staff, action_id)
    late = anchors.is_confidence_late(now)

    stmt = insert_for(StaffWeeklyScore).values(
        staff_id=staff_id,
        plan_row_id=plan_row_id,
        action_id=chosen,
        confidence_score=score,
        confidence_date=now,
        confidence_late=late,
        performance_late=False,
        created_at=now,
        updated_at=now,
    )
    excluded = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=["staff_id", "plan_row_id"],
        set_={
            "action_id": excluded.action_id,
            "confidence_score": excluded.confidence_score,
            "confidence_date": excluded.confidence_date,
            "confidence_late": excluded.confidence_late,
            "updated_at": excluded.updated_at,
        },
    )
    db.session.execute(stmt)
    db.session.commit()
    db.session.expire_all()
    logger.info("Confidence recorded staff=%s row=%s score=%s late=%s", staff_id, plan_row_id,
                score, late, extra={"staff_id": staff_id, "target_week": row.week_start_date.isoformat()})
    return get_score(staff_id, plan_row_id)


def record_performance(staff_id, plan_row_id, score, *, now=None, clock=None):
    """Record the performance half; requires a confidence score first.

    Resolves the matching open backlog item, if there is one.
    """
    _validate_score(score)
    now = resolve_now(clock, now)
    staff, row, anchors = _load_context(staff_id, plan_row_id)
    existing = get_score(staff_id, plan_row_id)
    if existing is None or existing.confidence_score is None:
        raise ValidationError("Confidence must be submitted before performance")
    if not anchors.is_performance_open(now):
        raise ValidationError("The performance window for this week is not open yet",
                              details={"performance_open": anchors.performance_open.isoformat()})

    existing.performance_score = score
    existing.performance_date = now
    existing.performance_late = anchors.is_performance_late(now)
    db.session.flush()

    resolved = 0
    if existing.action_id is not None:
        resolved = backlog_service.resolve_open_item(
            staff_id, existing.action_id, week_start=row.week_start_date, now=now,
        )
    db.session.commit()
    logger.info("Performance recorded staff=%s row=%s score=%s (backlog resolved: %s)",
                staff_id, plan_row_id, score, resolved,
                extra={"staff_id": staff_id, "target_week": row.week_start_date.isoformat()})
    return get_score(staff_id, plan_row_id)
