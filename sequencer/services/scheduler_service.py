"""
Pro-Move Sequencer
Scheduler Service.

Registry for the two periodic batch jobs. There is no in-process timer: an
external cron calls ``flask run-job NAME`` (or the trigger endpoint) every
hour on Mondays, and both jobs are idempotent, so the job only needs to be
*invoked often enough*; each site or organization decides for itself whether
it is due.

Architecture:
    - register_job: decorator adding a job function to the registry
    - JOB_SCHEDULES: the cron cadence recorded on each ScheduledJob row
    - SchedulerService: registry persistence, execution, enable/disable
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask

from sequencer.models import db
from sequencer.models.scheduling import RUN_FAILED, RUN_SKIPPED, RUN_SUCCESS, ScheduledJob

logger = logging.getLogger(__name__)

TRIGGER_CRON = "cron"
TRIGGER_MANUAL = "manual"

# Sites roll over at Monday 00:01 in their own zone, so a UTC cron has to
# fire every hour of Monday (and early Tuesday UTC for Pacific sites).
JOB_SCHEDULES = {
    "weekly_plan_rollover": {
        "day_of_week": "mon,tue", "hour": "*", "minute": "5",
        "description": "Hourly Mon-Tue UTC; each org ticks once its week has turned",
    },
    "site_reconciliation": {
        "day_of_week": "mon,tue", "hour": "*", "minute": "2",
        "description": "Hourly Mon-Tue UTC; each site runs after its 00:01 rollover",
    },
}
_FALLBACK_SCHEDULE = {"hour": "0", "minute": "0", "description": "Daily at midnight UTC"}


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("site_reconciliation")
        def site_reconciliation(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _job_row(job_name: str) -> ScheduledJob | None:
    return ScheduledJob.query.filter_by(job_name=job_name).first()


class SchedulerService:
    """Runs registered jobs inside their own Flask app context."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        created = []
        for name, fn in _job_registry.items():
            if _job_row(name) is not None:
                continue
            summary = (fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0]
            job = ScheduledJob(
                job_name=name,
                description=summary,
                schedule_type="cron",
                schedule_config=dict(JOB_SCHEDULES.get(name, _FALLBACK_SCHEDULE)),
            )
            job.set_enabled(True)
            db.session.add(job)
            created.append(job)
        if created:
            db.session.commit()
            logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str, *, force: bool = False) -> dict:
        """
        Execute a single job by name.

        A paused job is skipped (and the skip counted) unless ``force`` is
        set, which is what the manual trigger does.

        Returns:
            Dict with job_name, status, trigger, duration_ms, result, error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"status": "error", "error": "Scheduler not initialized"}
        trigger = TRIGGER_MANUAL if force else TRIGGER_CRON

        with cls._app.app_context():
            cls.ensure_jobs_registered()
            job_record = _job_row(job_name)
            if job_record and not job_record.is_enabled and not force:
                job_record.record_skip(trigger=trigger)
                db.session.commit()
                logger.info("Job %s is paused, skipping", job_name)
                return {"job_name": job_name, "status": RUN_SKIPPED, "trigger": trigger,
                        "duration_ms": 0, "result": None, "error": None}

        start = time.monotonic()
        result = None
        error = None
        status = RUN_SUCCESS

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = RUN_FAILED
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc)

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("Job %s finished: %s in %dms", job_name, status, duration_ms,
                    extra={"duration_ms": duration_ms})

        try:
            with cls._app.app_context():
                job_record = _job_row(job_name)
                if job_record:
                    job_record.record_run(
                        status=status,
                        trigger=trigger,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name)

        return {
            "job_name": job_name,
            "status": status,
            "trigger": trigger,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        jobs = []
        for name in _job_registry:
            job_record = _job_row(name)
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        job_record = _job_row(job_name)
        return job_record.to_dict() if job_record else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Pause or resume a job; returns None for an unknown job."""
        if job_name in _job_registry:
            cls.ensure_jobs_registered()
        job_record = _job_row(job_name)
        if not job_record:
            return None
        job_record.set_enabled(enabled)
        db.session.commit()
        logger.info("Job %s %s", job_name, "resumed" if enabled else "paused")
        return job_record.to_dict()
