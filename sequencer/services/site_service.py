"""
Site & catalog administration helpers.

Only the writes the sequencer depends on: a site calendar validated at
creation time, and the per-role manager priority list (at most five).
"""

import logging

from sqlalchemy import delete, select

from sequencer.core.exceptions import NotFoundError, ValidationError
from sequencer.models import db
from sequencer.models.catalog import MAX_PRIORITIES_PER_ROLE, ManagerPriority, ProMove, Role
from sequencer.models.organization import Location, Organization
from sequencer.services.week_anchor import validate_site_calendar

logger = logging.getLogger(__name__)


def create_location(org_id, name, *, timezone, program_start_date, cycle_length_weeks):
    """Create a site after validating its calendar.

    Raises:
        NotFoundError: unknown organization.
        InvalidSiteCalendarError: unknown zone, non-Monday start, cycle outside 1..12.
    """
    if db.session.get(Organization, org_id) is None:
        raise NotFoundError("Organization", org_id)
    if not name:
        raise ValidationError("name is required")
    validate_site_calendar(timezone, program_start_date, cycle_length_weeks)
    location = Location(
        org_id=org_id,
        name=name,
        timezone=timezone,
        program_start_date=program_start_date,
        cycle_length_weeks=cycle_length_weeks,
    )
    db.session.add(location)
    db.session.commit()
    logger.info("Location %s created for org %s", location.id, org_id,
                extra={"org_id": org_id, "location_id": location.id})
    return location


def set_manager_priorities(role_id, priorities):
    """Replace the priority list of a role.

    ``priorities`` is a list of ``{"action_id": int, "weight": float}``.
    """
    if db.session.get(Role, role_id) is None:
        raise NotFoundError("Role", role_id)
    if len(priorities) > MAX_PRIORITIES_PER_ROLE:
        raise ValidationError(
            f"At most {MAX_PRIORITIES_PER_ROLE} priorities per role",
            details={"count": len(priorities)},
        )
    seen = set()
    for entry in priorities:
        action_id = entry.get("action_id")
        weight = entry.get("weight", 1.0)
        if action_id in seen:
            raise ValidationError(f"Duplicate priority action {action_id}")
        seen.add(action_id)
        try:
            weight = float(weight)
        except (TypeError, ValueError):
            raise ValidationError("weight must be a number", details={"action_id": action_id}) from None
        if weight <= 0:
            raise ValidationError("weight must be positive", details={"action_id": action_id})
        pm = db.session.get(ProMove, action_id) if action_id is not None else None
        if pm is None:
            raise NotFoundError("ProMove", action_id)
        if pm.role_id != role_id or not pm.active:
            raise ValidationError(f"Pro-move {action_id} is not an active pro-move of role {role_id}")
        entry["weight"] = weight

    db.session.execute(delete(ManagerPriority).where(ManagerPriority.role_id == role_id))
    for entry in priorities:
        db.session.add(ManagerPriority(role_id=role_id, action_id=entry["action_id"],
                                       weight=entry["weight"]))
    db.session.commit()
    logger.info("Role %s now has %d manager priorities", role_id, len(priorities),
                extra={"role_id": role_id})
    return db.session.execute(
        select(ManagerPriority).where(ManagerPriority.role_id == role_id)
        .order_by(ManagerPriority.weight.desc(), ManagerPriority.action_id)
    ).scalars().all()
