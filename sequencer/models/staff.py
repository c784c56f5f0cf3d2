"""
Pro-Move Sequencer
Staff & weekly score models.

Models:
    - Staff: a team member with one role and one primary site
    - StaffWeeklyScore: confidence (self) + performance (observer) for one
      assigned plan slot; complete only when both halves are present
"""

from datetime import datetime, timezone

from sequencer.models import db

SCORE_MIN = 1
SCORE_MAX = 4


class Staff(db.Model):
    __tablename__ = "staff"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=True, index=True)
    primary_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"),
                                    nullable=True, index=True)
    active = db.Column(db.Boolean, default=True, nullable=False)

    location = db.relationship("Location")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "role_id": self.role_id,
            "primary_location_id": self.primary_location_id,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Staff {self.id} {self.name}>"


class StaffWeeklyScore(db.Model):
    """
    One staff member's scores for one weekly plan slot.

    ``action_id`` is the action actually practised: the site action for a
    site-assigned slot, the chosen (or backlog) action for a self-select slot.
    """

    __tablename__ = "weekly_scores"
    __table_args__ = (
        db.UniqueConstraint("staff_id", "plan_row_id", name="uq_weekly_score_staff_slot"),
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id", ondelete="CASCADE"),
                         nullable=False, index=True)
    plan_row_id = db.Column(db.Integer, db.ForeignKey("weekly_plan.id"), nullable=False, index=True)
    action_id = db.Column(db.Integer, db.ForeignKey("pro_moves.id"), nullable=True)

    confidence_score = db.Column(db.Integer, nullable=True)
    confidence_date = db.Column(db.DateTime(timezone=True), nullable=True)
    confidence_late = db.Column(db.Boolean, default=False, nullable=False)

    performance_score = db.Column(db.Integer, nullable=True)
    performance_date = db.Column(db.DateTime(timezone=True), nullable=True)
    performance_late = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    plan_row = db.relationship("WeeklyPlanRow")

    @property
    def is_complete(self):
        return self.confidence_score is not None and self.performance_score is not None

    def to_dict(self):
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "plan_row_id": self.plan_row_id,
            "action_id": self.action_id,
            "confidence_score": self.confidence_score,
            "confidence_date": self.confidence_date.isoformat() if self.confidence_date else None,
            "confidence_late": self.confidence_late,
            "performance_score": self.performance_score,
            "performance_date": self.performance_date.isoformat() if self.performance_date else None,
            "performance_late": self.performance_late,
        }
