"""
Pro-Move Sequencer
Backlog model.

A backlog item carries a site-assigned pro-move that a staff member did not
complete into later weeks. Items are never deleted: they move from ``open``
to ``resolved`` (a later performance submission) or ``cleared`` (a coach).
"""

from datetime import datetime, timezone

from sequencer.models import db

BACKLOG_OPEN = "open"
BACKLOG_RESOLVED = "resolved"
BACKLOG_CLEARED = "cleared"
BACKLOG_STATUSES = (BACKLOG_OPEN, BACKLOG_RESOLVED, BACKLOG_CLEARED)

# Predicate of the partial unique index; also the ON CONFLICT target filter.
OPEN_ITEM_PREDICATE = db.text("status = 'open'")


class BacklogItem(db.Model):
    __tablename__ = "backlog_items"
    __table_args__ = (
        db.Index(
            "uq_backlog_open_staff_action", "staff_id", "action_id",
            unique=True,
            sqlite_where=OPEN_ITEM_PREDICATE,
            postgresql_where=OPEN_ITEM_PREDICATE,
        ),
        db.Index("ix_backlog_staff_status", "staff_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False)
    action_id = db.Column(db.Integer, db.ForeignKey("pro_moves.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=BACKLOG_OPEN)

    # Provenance
    source_cycle = db.Column(db.Integer, nullable=True)
    source_week = db.Column(db.Integer, nullable=True)
    source_week_start = db.Column(db.Date, nullable=True)

    assigned_on = db.Column(db.DateTime(timezone=True),
                            default=lambda: datetime.now(timezone.utc), nullable=False)
    resolved_on = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_week_start = db.Column(db.Date, nullable=True)
    cleared_by = db.Column(db.String(120), nullable=True)

    action = db.relationship("ProMove")

    @property
    def is_open(self):
        return self.status == BACKLOG_OPEN

    def to_dict(self):
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "action_id": self.action_id,
            "status": self.status,
            "source_cycle": self.source_cycle,
            "source_week": self.source_week,
            "source_week_start": self.source_week_start.isoformat() if self.source_week_start else None,
            "assigned_on": self.assigned_on.isoformat() if self.assigned_on else None,
            "resolved_on": self.resolved_on.isoformat() if self.resolved_on else None,
            "resolved_week_start": self.resolved_week_start.isoformat() if self.resolved_week_start else None,
            "cleared_by": self.cleared_by,
        }

    def __repr__(self):
        return f"<BacklogItem staff={self.staff_id} action={self.action_id} {self.status}>"
