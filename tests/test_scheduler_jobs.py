"""
Tests — scheduler registry, scheduled jobs and CLI commands.

Covers:
    1. ScheduledJob model
    2. SchedulerService (registration, toggle, execution)
    3. Scheduled job functions (rollover, reconciliation)
    4. Scheduler API
    5. flask CLI commands
"""

from datetime import date

import pytest

from sequencer.models import db
from sequencer.models.plan import WeeklyPlanRow
from sequencer.models.run_ledger import RolloverRun
from sequencer.models.scheduling import ScheduledJob
from sequencer.services.clock import FixedClock
from sequencer.services.scheduler_service import SchedulerService, get_registered_jobs
from tests.helpers import chicago

W0 = date(2026, 2, 2)


@pytest.fixture()
def freeze(app, monkeypatch):
    def _freeze(instant):
        clock = FixedClock(instant)
        monkeypatch.setitem(app.extensions, "sequencer_clock", clock)
        return clock
    return _freeze


# ═══════════════════════════════════════════════════════════════════════════
#  1. ScheduledJob model
# ═══════════════════════════════════════════════════════════════════════════

class TestScheduledJobModel:

    def test_record_run_success(self):
        job = ScheduledJob(job_name="nightly_check")
        db.session.add(job)
        db.session.commit()
        job.record_run(status="success", duration_ms=12, result={"sites": 0})
        assert job.run_count == 1
        assert job.error_count in (0, None)
        assert job.last_run_result == {"sites": 0}

    def test_record_run_failure(self):
        job = ScheduledJob(job_name="nightly_check")
        job.record_run(status="failed", error="boom")
        assert job.error_count == 1
        assert job.last_error == "boom"

    def test_pause_and_skip(self):
        job = ScheduledJob(job_name="nightly_check")
        job.set_enabled(False)
        job.record_skip()
        assert job.status == "paused"
        assert job.skip_count == 1
        assert job.run_count in (0, None)


# ═══════════════════════════════════════════════════════════════════════════
#  2. SchedulerService
# ═══════════════════════════════════════════════════════════════════════════

class TestSchedulerService:

    def test_registered_jobs(self):
        jobs = get_registered_jobs()
        assert {"weekly_plan_rollover", "site_reconciliation"} <= set(jobs)

    def test_ensure_jobs_registered(self):
        created = SchedulerService.ensure_jobs_registered()
        assert {j.job_name for j in created} >= {"weekly_plan_rollover", "site_reconciliation"}
        rollover = ScheduledJob.query.filter_by(job_name="weekly_plan_rollover").one()
        assert rollover.schedule_config["day_of_week"] == "mon,tue"
        assert rollover.is_enabled
        assert SchedulerService.ensure_jobs_registered() == []

    def test_toggle_job(self):
        result = SchedulerService.toggle_job("site_reconciliation", False)
        assert result["status"] == "paused"
        assert result["is_enabled"] is False
        assert SchedulerService.toggle_job("site_reconciliation", True)["status"] == "active"

    def test_toggle_unknown_job(self):
        assert SchedulerService.toggle_job("nonexistent", True) is None

    def test_run_unknown_job(self):
        result = SchedulerService.run_job("unknown_job_xyz")
        assert result["status"] == "error"
        assert "Unknown job" in result["error"]

    def test_disabled_job_skipped_unless_forced(self, org, location, catalog, freeze):
        freeze(chicago(2026, 2, 3, 9))
        SchedulerService.toggle_job("weekly_plan_rollover", False)

        skipped = SchedulerService.run_job("weekly_plan_rollover")
        assert skipped["status"] == "skipped"

        forced = SchedulerService.run_job("weekly_plan_rollover", force=True)
        assert forced["status"] == "success"
        assert forced["trigger"] == "manual"
        assert forced["result"]["ok"] == 1

        db.session.expire_all()
        job = ScheduledJob.query.filter_by(job_name="weekly_plan_rollover").one()
        assert (job.skip_count, job.run_count) == (1, 1)
        assert job.last_trigger == "manual"

    def test_run_records_history(self, staff_member, site_week, freeze):
        site_week(W0)
        freeze(chicago(2026, 2, 9, 0, 30))

        result = SchedulerService.run_job("site_reconciliation")
        assert result["status"] == "success"
        assert result["result"]["reconciled"] == 1

        db.session.expire_all()
        job = ScheduledJob.query.filter_by(job_name="site_reconciliation").one()
        assert job.run_count == 1
        assert job.last_run_status == "success"
        assert job.last_run_result["reconciled"] == 1


# ═══════════════════════════════════════════════════════════════════════════
#  3. Job functions
# ═══════════════════════════════════════════════════════════════════════════

class TestJobFunctions:

    def test_weekly_plan_rollover_job(self, app, org, location, catalog, freeze):
        from sequencer.services.scheduled_jobs import weekly_plan_rollover
        freeze(chicago(2026, 2, 3, 9))
        result = weekly_plan_rollover(app)
        assert result == {"orgs": 1, "ok": 1, "failed": 0, "skipped": 0, "disabled": 0}
        assert WeeklyPlanRow.query.filter_by(org_id=org.id).count() == 6

    def test_weekly_plan_rollover_job_is_idempotent(self, app, org, location, catalog, freeze):
        from sequencer.services.scheduled_jobs import weekly_plan_rollover
        freeze(chicago(2026, 2, 3, 9))
        weekly_plan_rollover(app)
        before = {r.id: (r.action_id, r.updated_at) for r in WeeklyPlanRow.query.all()}
        weekly_plan_rollover(app)
        db.session.expire_all()
        after = {r.id: (r.action_id, r.updated_at) for r in WeeklyPlanRow.query.all()}
        assert before == after

    def test_site_reconciliation_job(self, app, staff_member, site_week, freeze):
        from sequencer.services.scheduled_jobs import site_reconciliation
        site_week(W0)
        freeze(chicago(2026, 2, 9, 0, 30))
        result = site_reconciliation(app)
        assert result["reconciled"] == 1
        assert RolloverRun.query.filter_by(kind="reconcile").count() == 1


# ═══════════════════════════════════════════════════════════════════════════
#  4. Scheduler API
# ═══════════════════════════════════════════════════════════════════════════

class TestSchedulerAPI:

    def test_list_jobs(self, client):
        body = client.get("/api/v1/scheduler/jobs").get_json()
        names = {j["job_name"] for j in body["jobs"]}
        assert {"weekly_plan_rollover", "site_reconciliation"} <= names
        assert all(j["db_record"] is not None for j in body["jobs"])

    def test_get_job(self, client):
        client.get("/api/v1/scheduler/jobs")
        res = client.get("/api/v1/scheduler/jobs/site_reconciliation")
        assert res.status_code == 200
        assert res.get_json()["job_name"] == "site_reconciliation"

    def test_get_unknown_job(self, client):
        assert client.get("/api/v1/scheduler/jobs/nope").status_code == 404

    def test_trigger_unknown_job(self, client):
        assert client.post("/api/v1/scheduler/jobs/nope/trigger").status_code == 404

    def test_toggle_requires_enabled(self, client):
        assert client.patch("/api/v1/scheduler/jobs/site_reconciliation/toggle",
                            json={}).status_code == 400

    def test_toggle(self, client):
        res = client.patch("/api/v1/scheduler/jobs/site_reconciliation/toggle",
                           json={"enabled": False})
        assert res.status_code == 200
        assert res.get_json()["is_enabled"] is False

    def test_trigger_runs_disabled_job(self, client, staff_member, site_week, freeze):
        site_week(W0)
        freeze(chicago(2026, 2, 9, 0, 30))
        client.patch("/api/v1/scheduler/jobs/site_reconciliation/toggle", json={"enabled": False})
        body = client.post("/api/v1/scheduler/jobs/site_reconciliation/trigger").get_json()
        assert body["status"] == "success"
        assert body["result"]["reconciled"] == 1


# ═══════════════════════════════════════════════════════════════════════════
#  5. CLI
# ═══════════════════════════════════════════════════════════════════════════

class TestCLI:

    def test_run_rollover_dry_run(self, app, org, location, catalog):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["run-rollover", "--org-id", str(org.id),
                                     "--as-of", "2026-02-03T15:00:00Z", "--dry-run"])
        assert result.exit_code == 0, result.output
        assert "status=ok" in result.output
        assert "week=2026-02-02" in result.output
        db.session.expire_all()
        assert WeeklyPlanRow.query.count() == 0

    def test_run_rollover_rejects_bad_as_of(self, app, org):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["run-rollover", "--org-id", str(org.id), "--as-of", "soon"])
        assert result.exit_code != 0
        assert "as-of" in result.output

    def test_reconcile_one_site(self, app, staff_member, site_week):
        site_week(W0)
        runner = app.test_cli_runner()
        result = runner.invoke(args=["reconcile-sites",
                                     "--location-id", str(staff_member.primary_location_id),
                                     "--as-of", "2026-02-09T06:05:00Z"])
        assert result.exit_code == 0, result.output
        assert "'backlog_added': 3" in result.output

    def test_run_job_unknown_exits_nonzero(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["run-job", "nope"])
        assert result.exit_code == 1
        assert "nope: error" in result.output
