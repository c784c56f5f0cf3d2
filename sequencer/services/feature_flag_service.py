"""
Feature Flag Service

Global flags and per-organization overrides. The engine only asks one
question, ``is_enabled(SEQUENCER_AUTO, org_id, default=True)``, before each
automated rollover; the rest is the admin surface for answering it.

Write functions return ``(obj, error_message)`` tuples; the blueprint maps
the message to a status code.
"""

import logging

from sqlalchemy import select

from sequencer.models import db
from sequencer.models.feature_flag import FeatureFlag, OrgFeatureFlag
from sequencer.models.organization import Organization

logger = logging.getLogger(__name__)

SEQUENCER_AUTO = "sequencer_auto"

SOURCE_OVERRIDE = "override"
SOURCE_DEFAULT = "default"
SOURCE_UNDEFINED = "undefined"

_EDITABLE_FIELDS = ("display_name", "description", "default_enabled", "category")


# ── Global flags ─────────────────────────────────────────────────────────


def list_flags():
    return [f.to_dict() for f in FeatureFlag.query.order_by(FeatureFlag.key).all()]


def get_flag(flag_id):
    return db.session.get(FeatureFlag, flag_id)


def create_flag(data):
    key = data["key"].strip()
    if FeatureFlag.query.filter_by(key=key).first():
        return None, "Flag key already exists"
    flag = FeatureFlag(
        key=key,
        display_name=data.get("display_name") or key,
        description=data.get("description", ""),
        default_enabled=bool(data.get("default_enabled", False)),
        category=data.get("category", "sequencer" if key == SEQUENCER_AUTO else "general"),
    )
    db.session.add(flag)
    db.session.commit()
    logger.info("Created feature flag %s (default=%s)", flag.key, flag.default_enabled)
    return flag, None


def update_flag(flag_id, data):
    flag = db.session.get(FeatureFlag, flag_id)
    if not flag:
        return None, "Flag not found"
    for field in _EDITABLE_FIELDS:
        if field in data:
            value = bool(data[field]) if field == "default_enabled" else data[field]
            setattr(flag, field, value)
    db.session.commit()
    logger.info("Updated feature flag %s", flag.key)
    return flag, None


def delete_flag(flag_id):
    """Delete a flag together with its organization overrides."""
    flag = db.session.get(FeatureFlag, flag_id)
    if not flag:
        return False, "Flag not found"
    key = flag.key
    db.session.delete(flag)
    db.session.commit()
    logger.info("Deleted feature flag %s", key)
    return True, None


# ── Resolution ───────────────────────────────────────────────────────────


def resolve(flag_key, org_id, default=False):
    """Effective state of a flag for one organization.

    Returns ``(enabled, source)``: the organization override wins, then the
    flag's global default, then *default* when the flag is not defined.
    """
    row = db.session.execute(
        select(FeatureFlag.default_enabled, OrgFeatureFlag.is_enabled)
        .outerjoin(
            OrgFeatureFlag,
            (OrgFeatureFlag.feature_flag_id == FeatureFlag.id) & (OrgFeatureFlag.org_id == org_id),
        )
        .where(FeatureFlag.key == flag_key)
    ).first()
    if row is None:
        return default, SOURCE_UNDEFINED
    flag_default, override = row
    if override is not None:
        return bool(override), SOURCE_OVERRIDE
    return bool(flag_default), SOURCE_DEFAULT


def is_enabled(flag_key, org_id, default=False):
    return resolve(flag_key, org_id, default)[0]


# ── Organization overrides ───────────────────────────────────────────────


def get_org_flags(org_id):
    """Every flag with its effective state for one organization."""
    overrides = {
        o.feature_flag_id: o
        for o in OrgFeatureFlag.query.filter_by(org_id=org_id).all()
    }
    result = []
    for flag in FeatureFlag.query.order_by(FeatureFlag.key).all():
        entry = flag.to_dict()
        override = overrides.get(flag.id)
        entry["has_override"] = override is not None
        entry["is_enabled"] = override.is_enabled if override else bool(flag.default_enabled)
        entry["reason"] = override.reason if override else None
        result.append(entry)
    return result


def set_org_flag(org_id, flag_id, enabled, *, updated_by=None, reason=None):
    """Create or update an organization override."""
    flag = db.session.get(FeatureFlag, flag_id)
    if not flag:
        return None, "Flag not found"
    if db.session.get(Organization, org_id) is None:
        return None, "Organization not found"

    override = OrgFeatureFlag.query.filter_by(org_id=org_id, feature_flag_id=flag_id).first()
    if override is None:
        override = OrgFeatureFlag(org_id=org_id, feature_flag_id=flag_id)
        db.session.add(override)
    override.is_enabled = enabled
    override.updated_by = updated_by
    override.reason = reason
    db.session.commit()

    if flag.key == SEQUENCER_AUTO:
        logger.info("Automated rollover %s for org %d by %s: %s",
                    "resumed" if enabled else "paused", org_id, updated_by or "unknown",
                    reason or "no reason given", extra={"org_id": org_id})
    else:
        logger.info("Org %d flag %s set to %s", org_id, flag.key, enabled, extra={"org_id": org_id})
    return override, None


def remove_org_flag(org_id, flag_id):
    """Drop an override so the organization follows the global default again."""
    override = OrgFeatureFlag.query.filter_by(org_id=org_id, feature_flag_id=flag_id).first()
    if not override:
        return False, "Override not found"
    db.session.delete(override)
    db.session.commit()
    logger.info("Org %d override of flag %d removed", org_id, flag_id, extra={"org_id": org_id})
    return True, None
