"""
Sequencer Blueprint

Manual triggers and read views of the weekly sequencing engine.

Endpoints:
    POST   /api/v1/sequencer/rollover         — run a rollover tick (rate-limited)
    GET    /api/v1/sequencer/plans            — plan weeks of an (org, role)
    POST   /api/v1/sequencer/plans/override   — manual override of one week
    DELETE /api/v1/sequencer/plans/override   — hand a week back to automation
    GET    /api/v1/sequencer/runs             — run ledger
    GET    /api/v1/sequencer/status           — automation status of an organization
    GET    /api/v1/sequencer/anchors          — week anchors of a site
    POST   /api/v1/sequencer/reconcile        — reconcile a site now
"""

import logging
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request

from sequencer.models import db
from sequencer.models.organization import Location, Organization
from sequencer.services import plan_pipeline, plan_store, reconciler, run_ledger
from sequencer.services.clock import resolve_now
from sequencer.services.week_anchor import anchors_for_location, week_start_for
from sequencer.utils.errors import E, api_error, register_error_handlers
from sequencer.utils.helpers import get_or_404, parse_as_of, parse_bool, parse_date

logger = logging.getLogger(__name__)

sequencer_bp = Blueprint("sequencer", __name__, url_prefix="/api/v1/sequencer")
register_error_handlers(sequencer_bp)


def _clock():
    return current_app.extensions.get("sequencer_clock")


def _as_of(value):
    """Parse ``as_of``; returns (datetime | None, error_response | None)."""
    try:
        return parse_as_of(value), None
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc))


def _is_id(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _required_int(data, key):
    value = data.get(key)
    if value in (None, ""):
        return None, api_error(E.VALIDATION_REQUIRED, f"{key} is required")
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{key} must be an integer")


# ═══════════════════════════════════════════════════════════════
# Rollover trigger
# ═══════════════════════════════════════════════════════════════

@sequencer_bp.route("/rollover", methods=["POST"])
def run_rollover():
    """Run the rollover for an organization; returns the ledger entries."""
    data = request.get_json(silent=True) or {}
    org_id, err = _required_int(data, "org_id")
    if err:
        return err
    roles = data.get("roles") or []
    if not isinstance(roles, list) or not all(_is_id(r) for r in roles):
        return api_error(E.VALIDATION_INVALID, "roles must be a list of role ids")
    as_of, err = _as_of(data.get("as_of"))
    if err:
        return err

    result = plan_pipeline.run_rollover(
        org_id, roles, as_of=as_of, dry_run=parse_bool(data.get("dry_run")),
        trigger="manual", clock=_clock(),
    )
    return jsonify(result), 200


# ═══════════════════════════════════════════════════════════════
# Plan views & overrides
# ═══════════════════════════════════════════════════════════════

@sequencer_bp.route("/plans", methods=["GET"])
def list_plans():
    """Plan weeks of an (org, role); defaults to the current three-week window."""
    org_id = request.args.get("org_id", type=int)
    role_id = request.args.get("role_id", type=int)
    if org_id is None or role_id is None:
        return api_error(E.VALIDATION_REQUIRED, "org_id and role_id are required")
    org, err = get_or_404(Organization, org_id)
    if err:
        return err

    start = parse_date(request.args.get("start"))
    end = parse_date(request.args.get("end"))
    if start is None and end is None:
        now = resolve_now(_clock())
        start = week_start_for(now, plan_pipeline.org_timezone(org))
        end = start + timedelta(weeks=2)
    weeks = plan_store.list_weeks(org_id, role_id, start, end)
    return jsonify({"org_id": org_id, "role_id": role_id, "weeks": weeks, "total": len(weeks)}), 200


@sequencer_bp.route("/plans/override", methods=["POST"])
def apply_override():
    """Replace one week's three slots; ``null`` entries become self-select slots."""
    data = request.get_json(silent=True) or {}
    org_id, err = _required_int(data, "org_id")
    if err:
        return err
    role_id, err = _required_int(data, "role_id")
    if err:
        return err
    week_start = parse_date(data.get("week_start"))
    if week_start is None:
        return api_error(E.VALIDATION_REQUIRED, "week_start is required (YYYY-MM-DD)")
    if week_start.weekday() != 0:
        return api_error(E.VALIDATION_INVALID, "week_start must be a Monday")
    action_ids = data.get("action_ids")
    if not isinstance(action_ids, list):
        return api_error(E.VALIDATION_REQUIRED, "action_ids must be a list of three entries")

    rows = plan_store.apply_override(
        org_id, role_id, week_start, action_ids, overridden_by=data.get("overridden_by"),
    )
    db.session.commit()
    return jsonify({"week_start": week_start.isoformat(), "rows": [r.to_dict() for r in rows]}), 200


@sequencer_bp.route("/plans/override", methods=["DELETE"])
def clear_override():
    data = request.get_json(silent=True) or {}
    org_id, err = _required_int(data, "org_id")
    if err:
        return err
    role_id, err = _required_int(data, "role_id")
    if err:
        return err
    week_start = parse_date(data.get("week_start"))
    if week_start is None:
        return api_error(E.VALIDATION_REQUIRED, "week_start is required (YYYY-MM-DD)")

    cleared = plan_store.clear_override(org_id, role_id, week_start)
    db.session.commit()
    return jsonify({"week_start": week_start.isoformat(), "cleared": cleared}), 200


# ═══════════════════════════════════════════════════════════════
# Run ledger
# ═══════════════════════════════════════════════════════════════

@sequencer_bp.route("/runs", methods=["GET"])
def list_runs():
    limit = min(request.args.get("limit", 50, type=int), 500)
    runs = run_ledger.list_runs(
        kind=request.args.get("kind"),
        org_id=request.args.get("org_id", type=int),
        role_id=request.args.get("role_id", type=int),
        location_id=request.args.get("location_id", type=int),
        target_week_start=parse_date(request.args.get("week_start")),
        limit=limit,
    )
    return jsonify({"runs": [r.to_dict() for r in runs], "total": len(runs)}), 200


# ═══════════════════════════════════════════════════════════════
# Site anchors & reconciliation
# ═══════════════════════════════════════════════════════════════

@sequencer_bp.route("/anchors", methods=["GET"])
def get_anchors():
    location_id = request.args.get("location_id", type=int)
    if location_id is None:
        return api_error(E.VALIDATION_REQUIRED, "location_id is required")
    location, err = get_or_404(Location, location_id)
    if err:
        return err
    as_of, err = _as_of(request.args.get("as_of"))
    if err:
        return err
    now = resolve_now(_clock(), as_of)
    return jsonify(anchors_for_location(location, now).to_dict()), 200


@sequencer_bp.route("/reconcile", methods=["POST"])
def reconcile_site():
    data = request.get_json(silent=True) or {}
    location_id, err = _required_int(data, "location_id")
    if err:
        return err
    as_of, err = _as_of(data.get("as_of"))
    if err:
        return err
    result = reconciler.reconcile_site(location_id, clock=_clock(), as_of=as_of, trigger="manual")
    return jsonify(result), 200


# ═══════════════════════════════════════════════════════════════
# Automation status
# ═══════════════════════════════════════════════════════════════

@sequencer_bp.route("/status", methods=["GET"])
def get_status():
    """Switches, feasibility gate and per-role week status of an organization."""
    org_id = request.args.get("org_id", type=int)
    if org_id is None:
        return api_error(E.VALIDATION_REQUIRED, "org_id is required")
    as_of, err = _as_of(request.args.get("as_of"))
    if err:
        return err
    return jsonify(plan_pipeline.pipeline_status(org_id, as_of, clock=_clock())), 200
