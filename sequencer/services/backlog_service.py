"""
Pro-Move Sequencer
Backlog Service.

Staff backlog of carried-over site pro-moves:
    - add_backlog_if_missing: INSERT .. ON CONFLICT DO NOTHING against the
      partial unique index (one open item per staff + action)
    - resolve_open_item: implicit resolution by a later performance score
    - clear_backlog_item: explicit clear by a coach, never a delete
    - get_open_backlog: FIFO view for staff screens
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update

from sequencer.core.exceptions import NotFoundError, ValidationError
from sequencer.models import db
from sequencer.models.backlog import (
    BACKLOG_CLEARED,
    BACKLOG_OPEN,
    BACKLOG_RESOLVED,
    OPEN_ITEM_PREDICATE,
    BacklogItem,
)
from sequencer.models.upsert import insert_for

logger = logging.getLogger(__name__)


def get_open_backlog(staff_id):
    """Open items of a staff member, oldest first."""
    return db.session.execute(
        select(BacklogItem)
        .where(BacklogItem.staff_id == staff_id, BacklogItem.status == BACKLOG_OPEN)
        .order_by(BacklogItem.assigned_on, BacklogItem.id)
    ).scalars().all()


def list_backlog(staff_id, status=None):
    stmt = select(BacklogItem).where(BacklogItem.staff_id == staff_id)
    if status:
        stmt = stmt.where(BacklogItem.status == status)
    return db.session.execute(stmt.order_by(BacklogItem.assigned_on, BacklogItem.id)).scalars().all()


def add_backlog_if_missing(staff_id, action_id, *, source_cycle=None, source_week=None,
                           source_week_start=None, now=None):
    """Open a backlog item unless one is already open. Returns True if added.

    Does not commit.
    """
    stmt = insert_for(BacklogItem).values(
        staff_id=staff_id,
        action_id=action_id,
        status=BACKLOG_OPEN,
        source_cycle=source_cycle,
        source_week=source_week,
        source_week_start=source_week_start,
        assigned_on=now or datetime.now(timezone.utc),
    ).on_conflict_do_nothing(
        index_elements=["staff_id", "action_id"],
        index_where=OPEN_ITEM_PREDICATE,
    )
    added = db.session.execute(stmt).rowcount == 1
    if added:
        logger.info("Backlog item opened staff=%s action=%s", staff_id, action_id,
                    extra={"staff_id": staff_id, "stage": "backlog"})
    return added


def resolve_open_item(staff_id, action_id, *, week_start=None, now=None):
    """Resolve the open item for (staff, action), if any. Does not commit."""
    now = now or datetime.now(timezone.utc)
    stmt = (
        update(BacklogItem)
        .where(
            BacklogItem.staff_id == staff_id,
            BacklogItem.action_id == action_id,
            BacklogItem.status == BACKLOG_OPEN,
        )
        .values(status=BACKLOG_RESOLVED, resolved_on=now, resolved_week_start=week_start)
        .execution_options(synchronize_session=False)
    )
    resolved = db.session.execute(stmt).rowcount
    if resolved:
        db.session.expire_all()
        logger.info("Backlog item resolved staff=%s action=%s", staff_id, action_id,
                    extra={"staff_id": staff_id, "stage": "backlog"})
    return resolved


def clear_backlog_item(item_id, cleared_by, *, now=None):
    """Explicitly clear an open item. The row is kept with status ``cleared``."""
    item = db.session.get(BacklogItem, item_id)
    if item is None:
        raise NotFoundError("BacklogItem", item_id)
    if not item.is_open:
        raise ValidationError(f"Backlog item {item_id} is already {item.status}",
                              details={"status": item.status})
    if not cleared_by:
        raise ValidationError("cleared_by is required")
    item.status = BACKLOG_CLEARED
    item.cleared_by = cleared_by
    item.resolved_on = now or datetime.now(timezone.utc)
    db.session.commit()
    logger.info("Backlog item %s cleared by %s", item_id, cleared_by,
                extra={"staff_id": item.staff_id, "stage": "backlog"})
    return item
