"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — 200 whenever the process is up
    GET /api/v1/health/live   — database, rollover calendar and job status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from sequencer.core.exceptions import InvalidSiteCalendarError
from sequencer.models import db
from sequencer.models.scheduling import RUN_FAILED, ScheduledJob
from sequencer.services.week_anchor import get_zone

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


def _check_database():
    t0 = time.perf_counter()
    db.session.execute(db.text("SELECT 1"))
    return {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}


def _check_rollover():
    tz = current_app.config.get("ROLLOVER_TIMEZONE")
    get_zone(tz)
    return {"status": "ok", "enabled": current_app.config.get("ROLLOVER_ENABLED"), "timezone": tz}


def _check_jobs():
    """Last outcome per job. A failed last run warns but does not degrade."""
    jobs = {}
    for job in ScheduledJob.query.order_by(ScheduledJob.job_name).all():
        jobs[job.job_name] = {
            "enabled": job.is_enabled,
            "last_run_at": job.last_run_at.isoformat() if job.last_run_at else None,
            "last_run_status": job.last_run_status,
        }
    failing = [name for name, info in jobs.items() if info["last_run_status"] == RUN_FAILED]
    return {"status": "warning" if failing else "ok", "failing": failing, "jobs": jobs}


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}
    overall = True

    try:
        checks["database"] = _check_database()
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    try:
        checks["rollover"] = _check_rollover()
    except InvalidSiteCalendarError as exc:
        checks["rollover"] = {"status": "error", "detail": str(exc)}
        overall = False

    if overall:
        checks["scheduler"] = _check_jobs()

    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), 200 if overall else 503
