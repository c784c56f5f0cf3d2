"""
Tests — completion & backlog reconciler.

Covers:
    1. Rollover-time gating (no-op before Monday 00:01 local)
    2. Backlog creation for site actions lacking performance
    3. Confidence reset on incomplete slots
    4. Idempotence across re-runs, and re-entry after an explicit clear
    5. Cron entry (due sites, already-done sites)
"""

from datetime import date, timedelta

import pytest

from sequencer.core.exceptions import NotFoundError
from sequencer.models import db
from sequencer.models.backlog import BacklogItem
from sequencer.models.run_ledger import RolloverRun
from sequencer.services import backlog_service, plan_store, reconciler, submission_service
from sequencer.services.clock import FixedClock
from sequencer.services.reconciler import reconcile_due_sites, reconcile_site
from tests.helpers import chicago

W0 = date(2026, 2, 2)
W1 = W0 + timedelta(weeks=1)

MON_W0 = chicago(2026, 2, 2, 10)
THU_W0 = chicago(2026, 2, 5, 10)
ROLLOVER_W0 = chicago(2026, 2, 9, 0, 1)


def _confidence_all(staff_id, rows, at=MON_W0):
    for row in rows:
        submission_service.record_confidence(staff_id, row.id, 3, now=at)


def _perform(staff_id, rows, at=THU_W0):
    for row in rows:
        submission_service.record_performance(staff_id, row.id, 4, now=at)


def _open_items(staff_id):
    return backlog_service.get_open_backlog(staff_id)


# ═══════════════════════════════════════════════════════════════════════════
#  1. Gating
# ═══════════════════════════════════════════════════════════════════════════

class TestRolloverGate:

    def test_before_rollover_instant_is_a_no_op(self, staff_member, site_week):
        site_week(W0)
        result = reconcile_site(staff_member.primary_location_id,
                                as_of=chicago(2026, 2, 9, 0, 0, 30))
        assert result["executed"] is False
        assert result["reason"] == "not_rollover_time"
        assert RolloverRun.query.count() == 0
        assert _open_items(staff_member.id) == []

    def test_at_rollover_instant_runs(self, staff_member, site_week):
        site_week(W0)
        result = reconcile_site(staff_member.primary_location_id, as_of=ROLLOVER_W0)
        assert result["executed"] is True
        assert result["week_start"] == W0.isoformat()
        assert (result["cycle"], result["week_in_cycle"]) == (1, 5)

    def test_program_not_started(self, staff_member):
        result = reconcile_site(staff_member.primary_location_id, as_of=chicago(2026, 1, 5, 0, 5))
        assert result["executed"] is False
        assert result["reason"] == "program_not_started"

    def test_unknown_location(self):
        with pytest.raises(NotFoundError):
            reconcile_site(4242, as_of=ROLLOVER_W0)


# ═══════════════════════════════════════════════════════════════════════════
#  2–3. Backlog & resets
# ═══════════════════════════════════════════════════════════════════════════

class TestReconcileStaff:

    def test_one_missed_action_goes_to_backlog(self, staff_member, site_week):
        rows = site_week(W0)
        _confidence_all(staff_member.id, rows)
        _perform(staff_member.id, rows[:2])

        result = reconcile_site(staff_member.primary_location_id, as_of=ROLLOVER_W0)
        assert result["status"] == "success"
        assert result["backlog_added"] == 1
        assert result["confidence_reset"] == 1

        items = _open_items(staff_member.id)
        assert [i.action_id for i in items] == [rows[2].action_id]
        assert (items[0].source_cycle, items[0].source_week) == (1, 5)
        assert items[0].source_week_start == W0

        missed = submission_service.get_score(staff_member.id, rows[2].id)
        assert missed.confidence_score is None
        assert missed.confidence_date is None
        kept = submission_service.get_score(staff_member.id, rows[0].id)
        assert kept.confidence_score == 3 and kept.performance_score == 4

    def test_fully_performed_week_changes_nothing(self, staff_member, site_week):
        rows = site_week(W0)
        _confidence_all(staff_member.id, rows)
        _perform(staff_member.id, rows)

        result = reconcile_site(staff_member.primary_location_id, as_of=ROLLOVER_W0)
        assert result["backlog_added"] == 0
        assert result["confidence_reset"] == 0
        assert result["staff"][0]["fully_performed"] is True

    def test_no_submissions_backlogs_every_site_action(self, staff_member, site_week):
        rows = site_week(W0)
        result = reconcile_site(staff_member.primary_location_id, as_of=ROLLOVER_W0)
        assert result["backlog_added"] == 3
        assert result["confidence_reset"] == 0
        assert {i.action_id for i in _open_items(staff_member.id)} == {r.action_id for r in rows}

    def test_self_select_slot_is_not_backlogged(self, org, staff_member, catalog, site_week):
        a = catalog["actions"]
        site_week(W0)
        plan_store.apply_override(org.id, catalog["role"].id, W0, [a[0], None, a[1]])
        db.session.commit()

        result = reconcile_site(staff_member.primary_location_id, as_of=ROLLOVER_W0)
        assert result["backlog_added"] == 2
        assert {i.action_id for i in _open_items(staff_member.id)} == {a[0], a[1]}

    def test_staff_without_assignments(self, staff_member):
        result = reconcile_site(staff_member.primary_location_id, as_of=ROLLOVER_W0)
        assert result["staff"][0]["status"] == "no_assignments"
        assert result["status"] == "success"

    def test_each_staff_member_reconciled(self, staff_member, make_staff, site_week):
        other = make_staff("Sam Okafor")
        rows = site_week(W0)
        _confidence_all(staff_member.id, rows)
        _perform(staff_member.id, rows)

        result = reconcile_site(staff_member.primary_location_id, as_of=ROLLOVER_W0)
        by_staff = {s["staff_id"]: s for s in result["staff"]}
        assert by_staff[staff_member.id]["backlog_added"] == 0
        assert by_staff[other.id]["backlog_added"] == 3

    def test_ledger_entry_written(self, staff_member, site_week):
        site_week(W0)
        result = reconcile_site(staff_member.primary_location_id, as_of=ROLLOVER_W0)
        entry = db.session.get(RolloverRun, result["run_id"])
        assert entry.kind == "reconcile"
        assert entry.location_id == staff_member.primary_location_id
        assert entry.target_week_start == W0
        assert entry.success is True

    def test_one_failing_staff_member_does_not_stop_the_site(self, staff_member, make_staff,
                                                            site_week, monkeypatch):
        other = make_staff("Sam Okafor")
        site_week(W0)
        real = reconciler.reconcile_staff

        def flaky(staff_id, *args, **kwargs):
            if staff_id == other.id:
                raise RuntimeError("scores table unavailable")
            return real(staff_id, *args, **kwargs)

        monkeypatch.setattr(reconciler, "reconcile_staff", flaky)
        result = reconcile_site(staff_member.primary_location_id, as_of=ROLLOVER_W0)

        assert result["status"] == "partial"
        assert result["failed"] == 1
        by_staff = {s["staff_id"]: s for s in result["staff"]}
        assert by_staff[other.id]["status"] == "failed"
        assert by_staff[staff_member.id]["backlog_added"] == 3
        assert len(_open_items(staff_member.id)) == 3
        assert _open_items(other.id) == []

        entry = db.session.get(RolloverRun, result["run_id"])
        assert entry.status == "partial"
        errors = [line for line in entry.logs if line["level"] == "error"]
        assert errors[0]["message"] == f"Staff {other.id} failed: scores table unavailable"


# ═══════════════════════════════════════════════════════════════════════════
#  4. Idempotence
# ═══════════════════════════════════════════════════════════════════════════

class TestIdempotence:

    def test_rerun_adds_nothing(self, staff_member, site_week):
        rows = site_week(W0)
        _confidence_all(staff_member.id, rows)
        _perform(staff_member.id, rows[:2])
        location_id = staff_member.primary_location_id

        reconcile_site(location_id, as_of=ROLLOVER_W0)
        again = reconcile_site(location_id, as_of=ROLLOVER_W0 + timedelta(hours=3))
        assert again["backlog_added"] == 0
        assert again["confidence_reset"] == 0
        assert BacklogItem.query.filter_by(staff_id=staff_member.id).count() == 1

    def test_retry_does_not_reopen_a_cleared_item(self, staff_member, site_week):
        site_week(W0)
        location_id = staff_member.primary_location_id
        reconcile_site(location_id, as_of=ROLLOVER_W0)
        for item in _open_items(staff_member.id):
            backlog_service.clear_backlog_item(item.id, "coach")

        again = reconcile_site(location_id, as_of=ROLLOVER_W0 + timedelta(hours=1))
        assert again["backlog_added"] == 0
        assert _open_items(staff_member.id) == []

    def test_cleared_item_can_be_carried_again_later(self, staff_member, catalog, site_week):
        a = catalog["actions"]
        site_week(W0, a[:3])
        location_id = staff_member.primary_location_id
        reconcile_site(location_id, as_of=ROLLOVER_W0)
        first = next(i for i in _open_items(staff_member.id) if i.action_id == a[0])
        backlog_service.clear_backlog_item(first.id, "coach")

        site_week(W1, [a[0], a[6], a[7]])
        reconcile_site(location_id, as_of=ROLLOVER_W0 + timedelta(weeks=1))

        items = BacklogItem.query.filter_by(staff_id=staff_member.id, action_id=a[0]).all()
        assert sorted(i.status for i in items) == ["cleared", "open"]
        reopened = next(i for i in items if i.is_open)
        assert reopened.source_week_start == W1

    def test_open_item_is_not_duplicated_by_a_later_week(self, staff_member, catalog, site_week):
        a = catalog["actions"]
        site_week(W0, a[:3])
        site_week(W1, [a[0], a[6], a[7]])
        location_id = staff_member.primary_location_id

        reconcile_site(location_id, as_of=ROLLOVER_W0)
        result = reconcile_site(location_id, as_of=ROLLOVER_W0 + timedelta(weeks=1))
        assert result["backlog_added"] == 2
        assert BacklogItem.query.filter_by(staff_id=staff_member.id, action_id=a[0]).count() == 1


# ═══════════════════════════════════════════════════════════════════════════
#  5. Cron entry
# ═══════════════════════════════════════════════════════════════════════════

class TestDueSites:

    def test_reconciles_then_skips_done_site(self, staff_member, site_week):
        site_week(W0)
        clock = FixedClock(ROLLOVER_W0 + timedelta(minutes=30))

        first = reconcile_due_sites(clock=clock)
        assert first["sites"] == 1 and first["reconciled"] == 1

        second = reconcile_due_sites(clock=clock)
        assert second["already_done"] == 1
        assert RolloverRun.query.filter_by(kind="reconcile").count() == 1

    def test_site_not_due_before_first_rollover(self, staff_member):
        result = reconcile_due_sites(clock=FixedClock(chicago(2026, 1, 5, 0, 0, 30)))
        assert result["not_due"] == 1
        assert result["reconciled"] == 0
