"""
Staff Blueprint

Staff-facing views and score submission.

Endpoints:
    GET  /api/v1/staff/<id>/backlog               — open backlog, oldest first
    GET  /api/v1/staff/<id>/week                  — assembled week (site + backlog slots)
    POST /api/v1/staff/<id>/scores/confidence     — submit a confidence score
    POST /api/v1/staff/<id>/scores/performance    — submit a performance score
    POST /api/v1/backlog/<id>/clear               — explicit backlog clear
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from sequencer.models.staff import Staff
from sequencer.services import backlog_service, submission_service
from sequencer.services.clock import resolve_now
from sequencer.services.week_anchor import anchors_for_location
from sequencer.services.week_assembly import assemble_week
from sequencer.utils.errors import E, api_error, register_error_handlers
from sequencer.utils.helpers import get_or_404, parse_date

logger = logging.getLogger(__name__)

staff_bp = Blueprint("staff", __name__, url_prefix="/api/v1")
register_error_handlers(staff_bp)


def _now():
    return resolve_now(current_app.extensions.get("sequencer_clock"))


# ═══════════════════════════════════════════════════════════════
# Backlog
# ═══════════════════════════════════════════════════════════════

@staff_bp.route("/staff/<int:staff_id>/backlog", methods=["GET"])
def get_backlog(staff_id):
    """Open backlog items (``?status=`` for resolved / cleared history)."""
    _, err = get_or_404(Staff, staff_id)
    if err:
        return err
    status = request.args.get("status")
    if status:
        items = backlog_service.list_backlog(staff_id, status)
    else:
        items = backlog_service.get_open_backlog(staff_id)
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)}), 200


@staff_bp.route("/backlog/<int:item_id>/clear", methods=["POST"])
def clear_backlog_item(item_id):
    data = request.get_json(silent=True) or {}
    cleared_by = (data.get("cleared_by") or "").strip()
    if not cleared_by:
        return api_error(E.VALIDATION_REQUIRED, "cleared_by is required")
    item = backlog_service.clear_backlog_item(item_id, cleared_by, now=_now())
    return jsonify(item.to_dict()), 200


# ═══════════════════════════════════════════════════════════════
# Week view
# ═══════════════════════════════════════════════════════════════

@staff_bp.route("/staff/<int:staff_id>/week", methods=["GET"])
def get_week(staff_id):
    """Assembled week; defaults to the current week of the staff member's site."""
    staff, err = get_or_404(Staff, staff_id)
    if err:
        return err
    week_start = parse_date(request.args.get("week_start"))
    if week_start is None:
        if staff.location is None:
            return api_error(E.VALIDATION_RULE, "Staff has no primary location")
        week_start = anchors_for_location(staff.location, _now()).week_start
    return jsonify(assemble_week(staff_id, week_start)), 200


# ═══════════════════════════════════════════════════════════════
# Score submission
# ═══════════════════════════════════════════════════════════════

def _score_payload():
    data = request.get_json(silent=True) or {}
    if data.get("plan_row_id") is None or data.get("score") is None:
        return None, api_error(E.VALIDATION_REQUIRED, "plan_row_id and score are required")
    return data, None


@staff_bp.route("/staff/<int:staff_id>/scores/confidence", methods=["POST"])
def submit_confidence(staff_id):
    data, err = _score_payload()
    if err:
        return err
    score = submission_service.record_confidence(
        staff_id, data["plan_row_id"], data["score"],
        action_id=data.get("action_id"), now=_now(),
    )
    return jsonify(score.to_dict()), 201


@staff_bp.route("/staff/<int:staff_id>/scores/performance", methods=["POST"])
def submit_performance(staff_id):
    data, err = _score_payload()
    if err:
        return err
    score = submission_service.record_performance(
        staff_id, data["plan_row_id"], data["score"], now=_now(),
    )
    return jsonify(score.to_dict()), 200
