"""
Week assembly for staff views.

Site-assigned slots first, then self-select slots filled from the staff
member's open backlog (oldest first), then whatever self-select slots are
left. Read-only.
"""

from sqlalchemy import select

from sequencer.core.exceptions import NotFoundError, ValidationError
from sequencer.models import db
from sequencer.models.staff import Staff, StaffWeeklyScore
from sequencer.services import backlog_service, plan_store

SLOT_SITE = "site"
SLOT_BACKLOG = "backlog"
SLOT_SELF_SELECT = "self_select"


def assemble_week(staff_id, week_start):
    staff = db.session.get(Staff, staff_id)
    if staff is None:
        raise NotFoundError("Staff", staff_id)
    if staff.location is None or staff.role_id is None:
        raise ValidationError(f"Staff {staff_id} has no site or role")

    rows = plan_store.get_week(staff.location.org_id, staff.role_id, week_start)
    scores = {
        s.plan_row_id: s for s in db.session.execute(
            select(StaffWeeklyScore).where(
                StaffWeeklyScore.staff_id == staff_id,
                StaffWeeklyScore.plan_row_id.in_([r.id for r in rows]),
            )
        ).scalars()
    } if rows else {}

    site_actions = {r.action_id for r in rows if not r.self_select}
    backlog = [item for item in backlog_service.get_open_backlog(staff_id)
               if item.action_id not in site_actions]

    slots = []
    for row in rows:
        score = scores.get(row.id)
        slot = {
            "plan_row_id": row.id,
            "display_order": row.display_order,
            "status": row.status,
            "action_id": row.action_id,
            "type": SLOT_SITE,
            "backlog_item_id": None,
            "required": not row.self_select,
            "confidence_score": score.confidence_score if score else None,
            "performance_score": score.performance_score if score else None,
        }
        if row.self_select:
            if score is not None and score.action_id is not None:
                slot["action_id"] = score.action_id
                slot["type"] = SLOT_SELF_SELECT
            elif backlog:
                item = backlog.pop(0)
                slot["action_id"] = item.action_id
                slot["type"] = SLOT_BACKLOG
                slot["backlog_item_id"] = item.id
            else:
                slot["type"] = SLOT_SELF_SELECT
        slots.append(slot)

    return {
        "staff_id": staff_id,
        "week_start": week_start.isoformat(),
        "slots": slots,
        "open_backlog": len(backlog_service.get_open_backlog(staff_id)),
    }
