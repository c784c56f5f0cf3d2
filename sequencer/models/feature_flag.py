"""
Feature flags with per-organization overrides.

``sequencer_auto`` is the one the engine reads: switching it off for an
organization pauses automated rollover there (manual overrides and
reconciliation keep working). An override records who set it and why, so a
paused organization can be explained from the admin API.
"""

from datetime import datetime, timezone

from sequencer.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class FeatureFlag(db.Model):
    __tablename__ = "feature_flags"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    display_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    default_enabled = db.Column(db.Boolean, default=False)
    category = db.Column(db.String(50), default="general", comment="general, sequencer, beta")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    overrides = db.relationship(
        "OrgFeatureFlag", back_populates="feature_flag",
        lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "display_name": self.display_name,
            "description": self.description,
            "default_enabled": self.default_enabled,
            "category": self.category,
        }

    def __repr__(self):
        return f"<FeatureFlag {self.key} default={self.default_enabled}>"


class OrgFeatureFlag(db.Model):
    __tablename__ = "org_feature_flags"

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False,
    )
    feature_flag_id = db.Column(
        db.Integer, db.ForeignKey("feature_flags.id", ondelete="CASCADE"), nullable=False,
    )
    is_enabled = db.Column(db.Boolean, nullable=False)
    reason = db.Column(db.String(500), nullable=True)
    updated_by = db.Column(db.String(200), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("org_id", "feature_flag_id", name="uq_org_feature_flag"),
        db.Index("ix_org_feature_flags_org", "org_id"),
    )

    feature_flag = db.relationship("FeatureFlag", back_populates="overrides")

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "feature_flag_id": self.feature_flag_id,
            "key": self.feature_flag.key if self.feature_flag else None,
            "is_enabled": self.is_enabled,
            "reason": self.reason,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
