"""
Feature Flag Blueprint

Endpoints:
    GET    /api/v1/admin/feature-flags                        — all flags
    POST   /api/v1/admin/feature-flags                        — create
    GET    /api/v1/admin/feature-flags/<id>                   — one flag
    PUT    /api/v1/admin/feature-flags/<id>                   — update
    DELETE /api/v1/admin/feature-flags/<id>                   — delete (with overrides)
    GET    /api/v1/admin/feature-flags/org/<org_id>           — effective state per org
    GET    /api/v1/admin/feature-flags/org/<org_id>/automation — sequencer_auto resolution
    PUT    /api/v1/admin/feature-flags/org/<org_id>/<id>      — set override
    DELETE /api/v1/admin/feature-flags/org/<org_id>/<id>      — remove override
"""

from flask import Blueprint, jsonify, request

from sequencer.services import feature_flag_service as svc
from sequencer.utils.errors import E, api_error

feature_flag_bp = Blueprint("feature_flag", __name__, url_prefix="/api/v1/admin/feature-flags")

_ERROR_STATUS = {
    "Flag key already exists": 409,
}


def _fail(message):
    status = _ERROR_STATUS.get(message, 404)
    code = E.CONFLICT_DUPLICATE if status == 409 else E.NOT_FOUND
    return api_error(code, message, status=status)


# ═══════════════════════════════════════════════════════════════
# Global flags
# ═══════════════════════════════════════════════════════════════

@feature_flag_bp.route("", methods=["GET"])
def list_flags():
    return jsonify(svc.list_flags()), 200


@feature_flag_bp.route("", methods=["POST"])
def create_flag():
    data = request.get_json(silent=True) or {}
    if not str(data.get("key") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "key is required")
    flag, err = svc.create_flag(data)
    if err:
        return _fail(err)
    return jsonify(flag.to_dict()), 201


@feature_flag_bp.route("/<int:flag_id>", methods=["GET"])
def get_flag(flag_id):
    flag = svc.get_flag(flag_id)
    if not flag:
        return _fail("Flag not found")
    return jsonify(flag.to_dict()), 200


@feature_flag_bp.route("/<int:flag_id>", methods=["PUT"])
def update_flag(flag_id):
    flag, err = svc.update_flag(flag_id, request.get_json(silent=True) or {})
    if err:
        return _fail(err)
    return jsonify(flag.to_dict()), 200


@feature_flag_bp.route("/<int:flag_id>", methods=["DELETE"])
def delete_flag(flag_id):
    ok, err = svc.delete_flag(flag_id)
    if not ok:
        return _fail(err)
    return jsonify({"message": "Deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Organization overrides
# ═══════════════════════════════════════════════════════════════

@feature_flag_bp.route("/org/<int:org_id>", methods=["GET"])
def get_org_flags(org_id):
    return jsonify(svc.get_org_flags(org_id)), 200


@feature_flag_bp.route("/org/<int:org_id>/automation", methods=["GET"])
def get_org_automation(org_id):
    """Whether automated rollover runs for this org, and which setting decided it."""
    enabled, source = svc.resolve(svc.SEQUENCER_AUTO, org_id, default=True)
    return jsonify({"org_id": org_id, "flag": svc.SEQUENCER_AUTO,
                    "enabled": enabled, "source": source}), 200


@feature_flag_bp.route("/org/<int:org_id>/<int:flag_id>", methods=["PUT"])
def set_org_flag(org_id, flag_id):
    data = request.get_json(silent=True) or {}
    if "is_enabled" not in data:
        return api_error(E.VALIDATION_REQUIRED, "is_enabled is required")
    override, err = svc.set_org_flag(
        org_id, flag_id, bool(data["is_enabled"]),
        updated_by=data.get("updated_by"), reason=data.get("reason"),
    )
    if err:
        return _fail(err)
    return jsonify(override.to_dict()), 200


@feature_flag_bp.route("/org/<int:org_id>/<int:flag_id>", methods=["DELETE"])
def remove_org_flag(org_id, flag_id):
    ok, err = svc.remove_org_flag(org_id, flag_id)
    if not ok:
        return _fail(err)
    return jsonify({"message": "Override removed"}), 200
