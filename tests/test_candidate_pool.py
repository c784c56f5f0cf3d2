"""
Tests — candidate pool loader.

Storage rows mapped into Candidates: smoothed confidence, low-confidence
share and retest eligibility read back from stored rank snapshots.
"""

from datetime import date, timedelta

import pytest

from sequencer.config import DEFAULT_RANKING
from sequencer.models import db
from sequencer.models.staff import StaffWeeklyScore
from sequencer.services import plan_store
from sequencer.services.candidate_pool import load_candidates, was_low_confidence_pick
from sequencer.services.ranking import RankedPick, RankingConfig

W0 = date(2026, 2, 2)
W2 = W0 + timedelta(weeks=2)


@pytest.fixture()
def config():
    return RankingConfig.from_mapping(DEFAULT_RANKING)


def _by_id(candidates):
    return {c.action_id: c for c in candidates}


class TestConfidence:

    def test_scores_are_trimmed_and_shrunk(self, org, catalog, staff_member, make_staff,
                                           site_week, config):
        row = site_week(W0)[0]
        staff = [staff_member, make_staff("Sam Ortiz"), make_staff("Lee Park")]
        for member, score in zip(staff, (1, 1, 4)):
            db.session.add(StaffWeeklyScore(staff_id=member.id, plan_row_id=row.id,
                                            action_id=row.action_id, confidence_score=score))
        db.session.commit()

        candidate = _by_id(load_candidates(org.id, catalog["role"].id, W2, config))[row.action_id]
        # Normalised scores 0, 0, 1; three values trim nothing at 5%.
        assert candidate.confidence_avg == pytest.approx((1.0 + 20 * 0.70) / 23)
        assert candidate.confidence_n == 3
        assert candidate.low_conf_share == pytest.approx(2 / 3)

    def test_unrated_action(self, org, catalog, config):
        candidate = load_candidates(org.id, catalog["role"].id, W2, config)[0]
        assert candidate.confidence_avg is None
        assert candidate.confidence_n == 0
        assert candidate.low_conf_share is None


class TestRetestEligibility:

    def _write(self, org, catalog, week, ids, **pick_kwargs):
        picks = [RankedPick(action_id=a, score=0.5, **pick_kwargs) for a in ids]
        plan_store.upsert_proposed(org.id, catalog["role"].id, week, picks)
        db.session.commit()

    def test_low_confidence_pick_is_eligible(self, org, catalog, config):
        a = catalog["actions"]
        self._write(org, catalog, W0, a[:3], components={"C": 0.75})
        candidates = _by_id(load_candidates(org.id, catalog["role"].id, W2, config))
        assert all(candidates[action_id].retest_eligible for action_id in a[:3])
        assert not candidates[a[3]].retest_eligible

    def test_reason_tag_marks_low_confidence(self, org, catalog, config):
        a = catalog["actions"]
        self._write(org, catalog, W0, a[:3], components={"C": 0.1},
                    explanation={"reason_tags": ["low_conf_trigger"]})
        candidates = _by_id(load_candidates(org.id, catalog["role"].id, W2, config))
        assert candidates[a[0]].retest_eligible

    def test_confident_pick_is_not_eligible(self, org, catalog, config):
        a = catalog["actions"]
        self._write(org, catalog, W0, a[:3], components={"C": 0.2})
        candidates = _by_id(load_candidates(org.id, catalog["role"].id, W2, config))
        assert not any(c.retest_eligible for c in candidates.values())

    def test_only_history_before_target_week_counts(self, org, catalog, config):
        self._write(org, catalog, W0, catalog["actions"][:3], components={"C": 0.9})
        candidates = load_candidates(org.id, catalog["role"].id, W0, config)
        assert not any(c.retest_eligible for c in candidates)

    def test_snapshot_helper(self):
        assert was_low_confidence_pick({"parts": {"C": 0.6}})
        assert not was_low_confidence_pick({"parts": {"C": 0.59}, "reason_tags": []})
        assert not was_low_confidence_pick(None)
