"""
Scheduler Blueprint

Endpoints:
    GET   /api/v1/scheduler/jobs                  — registered jobs + last run
    GET   /api/v1/scheduler/jobs/<name>           — one job
    POST  /api/v1/scheduler/jobs/<name>/trigger   — run now (even when paused)
    PATCH /api/v1/scheduler/jobs/<name>/toggle    — pause / resume
"""

import logging

from flask import Blueprint, jsonify, request

from sequencer.services.scheduler_service import SchedulerService, get_registered_jobs
from sequencer.utils.errors import E, api_error
from sequencer.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/v1/scheduler")


def _unknown(job_name):
    return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")


@scheduler_bp.route("/jobs", methods=["GET"])
def list_scheduled_jobs():
    SchedulerService.ensure_jobs_registered()
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)}), 200


@scheduler_bp.route("/jobs/<job_name>", methods=["GET"])
def get_job_status(job_name):
    if job_name in get_registered_jobs():
        SchedulerService.ensure_jobs_registered()
    job = SchedulerService.get_job_status(job_name)
    if not job:
        return _unknown(job_name)
    return jsonify(job), 200


@scheduler_bp.route("/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    if job_name not in get_registered_jobs():
        return _unknown(job_name)
    logger.info("Manual trigger of job %s", job_name)
    result = SchedulerService.run_job(job_name, force=True)
    return jsonify(result), 200


@scheduler_bp.route("/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job_status(job_name):
    data = request.get_json(silent=True) or {}
    if "enabled" not in data:
        return api_error(E.VALIDATION_REQUIRED, "'enabled' field is required (true/false)")
    result = SchedulerService.toggle_job(job_name, parse_bool(data["enabled"]))
    if not result:
        return _unknown(job_name)
    return jsonify(result), 200
