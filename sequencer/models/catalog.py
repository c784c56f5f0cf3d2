"""
Pro-Move Sequencer
Pro-move catalog models.

Models:
    - Role: job function selecting the candidate pool
    - Domain / Competency: grouping of pro-moves
    - ProMove: a coachable action (immutable identity, mutable active flag)
    - ManagerPriority: coach-declared priority boost, at most 5 per role
"""

from datetime import datetime, timezone

from sequencer.models import db

MAX_PRIORITIES_PER_ROLE = 5


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "active": self.active}


class Domain(db.Model):
    __tablename__ = "domains"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)


class Competency(db.Model):
    __tablename__ = "competencies"

    id = db.Column(db.Integer, primary_key=True)
    domain_id = db.Column(db.Integer, db.ForeignKey("domains.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)

    domain = db.relationship("Domain")


class ProMove(db.Model):
    """A coachable behavior assigned to staff for practice and evaluation."""

    __tablename__ = "pro_moves"

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False, index=True)
    competency_id = db.Column(db.Integer, db.ForeignKey("competencies.id"), nullable=False)
    statement = db.Column(db.String(500), nullable=False)
    active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    competency = db.relationship("Competency")

    def to_dict(self):
        return {
            "id": self.id,
            "role_id": self.role_id,
            "competency_id": self.competency_id,
            "statement": self.statement,
            "active": self.active,
        }

    def __repr__(self):
        return f"<ProMove {self.id} role={self.role_id}>"


class ManagerPriority(db.Model):
    """Coach-declared priority action for a role, with a boost weight."""

    __tablename__ = "manager_priorities"
    __table_args__ = (
        db.UniqueConstraint("role_id", "action_id", name="uq_manager_priority_role_action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False, index=True)
    action_id = db.Column(db.Integer, db.ForeignKey("pro_moves.id"), nullable=False)
    weight = db.Column(db.Float, nullable=False, default=1.0)

    def to_dict(self):
        return {"role_id": self.role_id, "action_id": self.action_id, "weight": self.weight}
