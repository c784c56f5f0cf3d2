"""
Candidate pool loader.

Maps storage rows (pro-moves, plan history, staff scores, manager
priorities) into the plain ``Candidate`` records the ranking function takes.
Everything the ranker sees is assembled here, once per tick.
"""

import logging
from datetime import timedelta

from sqlalchemy import func, select

from sequencer.models import db
from sequencer.models.catalog import Competency, ManagerPriority, MAX_PRIORITIES_PER_ROLE, ProMove
from sequencer.models.organization import Location
from sequencer.models.plan import WeeklyPlanRow
from sequencer.models.staff import SCORE_MAX, SCORE_MIN, Staff, StaffWeeklyScore
from sequencer.services.ranking import (
    LOW_CONF_NEED,
    TAG_LOW_CONF,
    Candidate,
    RankingConfig,
    smooth_confidence,
)

logger = logging.getLogger(__name__)

DOMAIN_WINDOW_WEEKS = 8
# Confidence scores at or below this count towards the low-confidence share.
LOW_CONFIDENCE_SCORE = 2
SNAPSHOT_LOOKBACK_ROWS = 100


def _normalise(avg):
    """Map a 1..4 score (or average) onto 0..1."""
    if avg is None:
        return None
    return (float(avg) - SCORE_MIN) / (SCORE_MAX - SCORE_MIN)


def _confidence_samples(org_id, role_id):
    """Every confidence score given to an action by staff of this org and role."""
    rows = db.session.execute(
        select(StaffWeeklyScore.action_id, StaffWeeklyScore.confidence_score)
        .join(Staff, Staff.id == StaffWeeklyScore.staff_id)
        .join(Location, Location.id == Staff.primary_location_id)
        .where(
            Location.org_id == org_id,
            Staff.role_id == role_id,
            StaffWeeklyScore.action_id.is_not(None),
            StaffWeeklyScore.confidence_score.is_not(None),
        )
        .order_by(StaffWeeklyScore.action_id, StaffWeeklyScore.id)
    ).all()
    samples = {}
    for action_id, score in rows:
        samples.setdefault(action_id, []).append(score)
    return samples


def was_low_confidence_pick(snapshot) -> bool:
    """True when a stored rank snapshot shows the pick was driven by low confidence."""
    if not snapshot:
        return False
    if TAG_LOW_CONF in (snapshot.get("reason_tags") or []):
        return True
    return (snapshot.get("parts") or {}).get("C", 0.0) >= LOW_CONF_NEED


def _retest_candidates(org_id, role_id, target_week):
    """Actions whose most recent ranked selection was a low-confidence pick."""
    rows = db.session.execute(
        select(WeeklyPlanRow.action_id, WeeklyPlanRow.rank_snapshot)
        .where(
            WeeklyPlanRow.org_id == org_id,
            WeeklyPlanRow.role_id == role_id,
            WeeklyPlanRow.action_id.is_not(None),
            WeeklyPlanRow.rank_snapshot.is_not(None),
            WeeklyPlanRow.week_start_date < target_week,
        )
        .order_by(WeeklyPlanRow.week_start_date.desc(), WeeklyPlanRow.display_order)
        .limit(SNAPSHOT_LOOKBACK_ROWS)
    ).all()
    latest = {}
    for action_id, snapshot in rows:
        latest.setdefault(action_id, snapshot)
    return {action_id for action_id, snapshot in latest.items() if was_low_confidence_pick(snapshot)}


def load_candidates(org_id, role_id, target_week, config=None):
    """Return the active pro-moves of ``role_id`` as Candidates for ``target_week``.

    Plan history is read strictly before ``target_week`` so that ranking the
    same week twice sees the same inputs. Confidence is smoothed with the
    trim and prior settings of ``config``.
    """
    config = config or RankingConfig.from_mapping({"weights": {"C": 1}})
    actions = db.session.execute(
        select(ProMove.id, ProMove.statement, ProMove.competency_id, Competency.domain_id)
        .join(Competency, Competency.id == ProMove.competency_id)
        .where(ProMove.role_id == role_id, ProMove.active.is_(True))
        .order_by(ProMove.id)
    ).all()

    history = WeeklyPlanRow.__table__
    last_used = dict(db.session.execute(
        select(history.c.action_id, func.max(history.c.week_start_date))
        .where(
            history.c.org_id == org_id,
            history.c.role_id == role_id,
            history.c.action_id.is_not(None),
            history.c.week_start_date < target_week,
        )
        .group_by(history.c.action_id)
    ).all())

    confidence = _confidence_samples(org_id, role_id)
    performance = dict(db.session.execute(
        select(StaffWeeklyScore.action_id, func.avg(StaffWeeklyScore.performance_score))
        .join(Staff, Staff.id == StaffWeeklyScore.staff_id)
        .join(Location, Location.id == Staff.primary_location_id)
        .where(
            Location.org_id == org_id,
            Staff.role_id == role_id,
            StaffWeeklyScore.action_id.is_not(None),
        )
        .group_by(StaffWeeklyScore.action_id)
    ).all())
    retest = _retest_candidates(org_id, role_id, target_week)

    window_start = target_week - timedelta(weeks=DOMAIN_WINDOW_WEEKS)
    domain_counts = dict(db.session.execute(
        select(Competency.domain_id, func.count(WeeklyPlanRow.id))
        .join(ProMove, ProMove.id == WeeklyPlanRow.action_id)
        .join(Competency, Competency.id == ProMove.competency_id)
        .where(
            WeeklyPlanRow.org_id == org_id,
            WeeklyPlanRow.role_id == role_id,
            WeeklyPlanRow.week_start_date >= window_start,
            WeeklyPlanRow.week_start_date < target_week,
        )
        .group_by(Competency.domain_id)
    ).all())
    slots = sum(domain_counts.values())

    priorities = db.session.execute(
        select(ManagerPriority.action_id, ManagerPriority.weight)
        .where(ManagerPriority.role_id == role_id)
        .order_by(ManagerPriority.weight.desc(), ManagerPriority.action_id)
        .limit(MAX_PRIORITIES_PER_ROLE)
    ).all()
    priority_weights = {action_id: weight for action_id, weight in priorities}

    candidates = []
    for action_id, statement, competency_id, domain_id in actions:
        scores = confidence.get(action_id, [])
        candidates.append(Candidate(
            action_id=action_id,
            name=statement,
            domain_id=domain_id,
            competency_id=competency_id,
            last_used_week=last_used.get(action_id),
            confidence_avg=smooth_confidence([_normalise(s) for s in scores], config),
            eval_avg=_normalise(performance.get(action_id)),
            domain_share=(domain_counts.get(domain_id, 0) / slots) if slots else None,
            priority_weight=float(priority_weights.get(action_id, 0.0)),
            confidence_n=len(scores),
            low_conf_share=(sum(1 for s in scores if s <= LOW_CONFIDENCE_SCORE) / len(scores)
                            if scores else None),
            retest_eligible=action_id in retest,
        ))

    logger.debug(
        "Loaded %d candidates for org %s role %s week %s (%d retest eligible)",
        len(candidates), org_id, role_id, target_week, len(retest),
        extra={"org_id": org_id, "role_id": role_id, "target_week": target_week.isoformat(),
               "stage": "load_candidates"},
    )
    return candidates
