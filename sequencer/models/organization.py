"""
Pro-Move Sequencer
Organization & site models.

Models:
    - Organization: owns the weekly plan; its time zone defines plan weeks
    - Location: a site of an organization with its own program calendar
"""

from datetime import datetime, timezone

from sequencer.models import db


class Organization(db.Model):
    """An organization whose staff share one weekly plan per role."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    timezone = db.Column(db.String(64), nullable=True,
                         comment="IANA zone; falls back to ROLLOVER_TIMEZONE")
    active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    locations = db.relationship("Location", back_populates="organization",
                                lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "timezone": self.timezone,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Organization {self.id} {self.name}>"


class Location(db.Model):
    """
    A site: organization + location with its own program calendar.

    ``program_start_date`` must be a Monday and ``cycle_length_weeks`` lies
    in 1..12; both are validated by ``site_service.create_location``.
    """

    __tablename__ = "locations"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"),
                       nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default="America/Chicago")
    program_start_date = db.Column(db.Date, nullable=False)
    cycle_length_weeks = db.Column(db.Integer, nullable=False, default=6)
    active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    organization = db.relationship("Organization", back_populates="locations")

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "timezone": self.timezone,
            "program_start_date": self.program_start_date.isoformat() if self.program_start_date else None,
            "cycle_length_weeks": self.cycle_length_weeks,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Location {self.id} {self.name} [{self.timezone}]>"
