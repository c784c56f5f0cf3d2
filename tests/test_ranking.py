"""
Tests — need-based ranking function.

Pure function tests: no database access.
"""

import logging
from datetime import date, timedelta

import pytest

from sequencer.config import DEFAULT_RANKING
from sequencer.core.exceptions import ConfigurationError, InsufficientCandidatesError
from sequencer.services.ranking import (
    RANK_VERSION,
    Candidate,
    NeedScorer,
    RankedPick,
    RankingConfig,
    _cap_priorities,
    advance_pool,
    eb_smooth,
    in_cooldown,
    rank,
    smooth_confidence,
    trimmed_mean,
)

WEEK = date(2026, 3, 2)
ROLE = 7


def _config(**overrides):
    mapping = dict(DEFAULT_RANKING)
    mapping.update(overrides)
    return RankingConfig.from_mapping(mapping)


def _pool(n=9, domains=3):
    return [Candidate(action_id=i, domain_id=(i % domains) + 1) for i in range(1, n + 1)]


# ═══════════════════════════════════════════════════════════════════════════
#  Configuration
# ═══════════════════════════════════════════════════════════════════════════

class TestRankingConfig:

    def test_weights_are_normalised(self):
        cfg = RankingConfig.from_mapping({"weights": {"C": 2, "R": 2}})
        assert cfg.weights == {"C": 0.5, "R": 0.5, "E": 0.0, "D": 0.0, "M": 0.0}

    def test_unknown_weight_rejected(self):
        with pytest.raises(ConfigurationError, match="Unknown ranking weights"):
            RankingConfig.from_mapping({"weights": {"Z": 1}})

    def test_all_zero_weights_rejected(self):
        with pytest.raises(ConfigurationError):
            RankingConfig.from_mapping({"weights": {"C": 0, "R": 0}})

    def test_snapshot_round_numbers(self):
        snap = _config().snapshot()
        assert set(snap["weights"]) == {"C", "R", "E", "D", "M"}
        assert snap["cooldown_weeks"] == 4
        assert abs(sum(snap["weights"].values()) - 1.0) < 1e-5


# ═══════════════════════════════════════════════════════════════════════════
#  Scoring
# ═══════════════════════════════════════════════════════════════════════════

class TestNeedScorer:

    def test_unrated_candidate_uses_confidence_prior(self):
        cfg = RankingConfig.from_mapping({"weights": {"C": 1}})
        score, components = NeedScorer().score(Candidate(action_id=1), WEEK, cfg)
        assert components["C"] == pytest.approx(0.30)
        assert score == pytest.approx(0.30)

    def test_recency_is_linear_between_cooldown_and_horizon(self):
        cfg = RankingConfig.from_mapping({"weights": {"R": 1}})
        c = Candidate(action_id=1, last_used_week=WEEK - timedelta(weeks=10))
        _, components = NeedScorer().score(c, WEEK, cfg)
        assert components["R"] == pytest.approx(0.5)

    def test_never_used_has_full_recency(self):
        cfg = RankingConfig.from_mapping({"weights": {"R": 1}})
        _, components = NeedScorer().score(Candidate(action_id=1), WEEK, cfg)
        assert components["R"] == 1.0

    def test_weighted_evaluation_term_is_capped(self):
        cfg = RankingConfig.from_mapping({"weights": {"E": 1}})
        score, components = NeedScorer().score(Candidate(action_id=1, eval_avg=0.0), WEEK, cfg)
        assert components["E"] == pytest.approx(1.0)
        assert score == pytest.approx(0.25)

    def test_evaluation_term_below_cap_is_kept(self):
        cfg = RankingConfig.from_mapping({"weights": {"C": 1, "E": 1}})
        score, components = NeedScorer().score(Candidate(action_id=1, eval_avg=0.8), WEEK, cfg)
        assert components["E"] == pytest.approx(0.2)
        assert score == pytest.approx(0.5 * 0.30 + 0.5 * 0.2)

    def test_retest_boost_inside_window(self):
        cfg = RankingConfig.from_mapping({"weights": {"C": 1}})
        c = Candidate(action_id=1, last_used_week=WEEK - timedelta(weeks=4), retest_eligible=True)
        score, components = NeedScorer().score(c, WEEK, cfg)
        assert components["T"] == pytest.approx(0.10)
        assert score == pytest.approx(0.30 + 0.10)

    def test_no_retest_boost_outside_window_or_when_not_eligible(self):
        cfg = _config()
        late = Candidate(action_id=1, last_used_week=WEEK - timedelta(weeks=5), retest_eligible=True)
        plain = Candidate(action_id=2, last_used_week=WEEK - timedelta(weeks=4))
        assert NeedScorer().score(late, WEEK, cfg)[1]["T"] == 0.0
        assert NeedScorer().score(plain, WEEK, cfg)[1]["T"] == 0.0


class TestConfidenceSmoothing:

    def test_trimmed_mean_drops_both_tails(self):
        values = [0.0] + [0.5] * 18 + [1.0]
        assert trimmed_mean(values, 0.05) == pytest.approx(0.5)

    def test_trimmed_mean_without_trim(self):
        assert trimmed_mean([0.0, 1.0], 0.05) == pytest.approx(0.5)
        assert trimmed_mean([], 0.05) is None

    def test_eb_smooth_shrinks_toward_prior(self):
        assert eb_smooth(0.2, 20, 0.7, 20) == pytest.approx(0.45)
        assert eb_smooth(0.2, 0, 0.7, 20) == pytest.approx(0.7)

    def test_few_low_scores_barely_move_confidence(self):
        cfg = _config()
        assert smooth_confidence([0.0, 0.0], cfg) == pytest.approx(14 / 22)
        assert smooth_confidence([], cfg) is None

    def test_trim_pct_must_stay_below_half(self):
        with pytest.raises(ConfigurationError, match="trim_pct"):
            _config(trim_pct=0.5)

    def test_snapshot_carries_smoothing_settings(self):
        snap = _config().snapshot()
        assert (snap["eb_k"], snap["trim_pct"], snap["retest_boost"]) == (20, 0.05, 0.10)


class TestExplanation:

    def _explain(self, candidate, cfg=None):
        cfg = cfg or _config()
        scorer = NeedScorer()
        _, components = scorer.score(candidate, WEEK, cfg)
        return scorer.explain(candidate, WEEK, cfg, components)

    def test_top_two_drivers(self):
        cfg = RankingConfig.from_mapping({"weights": {"C": 1, "R": 1}})
        explanation = self._explain(Candidate(action_id=1), cfg)
        assert explanation["drivers"] == ["R", "C"]
        assert explanation["contributions"]["R"] == pytest.approx(0.5)

    def test_never_practised(self):
        explanation = self._explain(Candidate(action_id=1))
        assert explanation["reason_code"] == "NEVER"
        assert {"never_practiced", "long_unseen"} <= set(explanation["reason_tags"])
        assert explanation["weeks_since"] is None

    def test_retest_wins_over_other_reasons(self):
        c = Candidate(action_id=1, last_used_week=WEEK - timedelta(weeks=4), retest_eligible=True,
                      low_conf_share=0.9)
        explanation = self._explain(c)
        assert explanation["reason_code"] == "RETEST"
        assert "retest_window" in explanation["reason_tags"]

    def test_low_confidence_share(self):
        c = Candidate(action_id=1, confidence_avg=0.2, low_conf_share=0.5, confidence_n=4,
                      last_used_week=WEEK - timedelta(weeks=5))
        explanation = self._explain(c)
        assert (explanation["reason_code"], explanation["reason_value"]) == ("LOW_CONF", 0.5)
        assert "low_conf_trigger" in explanation["reason_tags"]
        assert explanation["confidence_n"] == 4

    def test_stale_and_tie(self):
        stale = self._explain(Candidate(action_id=1, last_used_week=WEEK - timedelta(weeks=8)))
        recent = self._explain(Candidate(action_id=2, last_used_week=WEEK - timedelta(weeks=5)))
        assert (stale["reason_code"], stale["reason_value"]) == ("STALE", 8)
        assert recent["reason_code"] == "TIE"


# ═══════════════════════════════════════════════════════════════════════════
#  Ranking
# ═══════════════════════════════════════════════════════════════════════════

class TestRank:

    def test_returns_three_distinct_picks(self):
        picks = rank(ROLE, WEEK, _pool(), _config())
        assert len(picks) == 3
        assert len({p.action_id for p in picks}) == 3
        assert all(isinstance(p, RankedPick) for p in picks)

    def test_deterministic_for_identical_input(self):
        pool = _pool(12)
        first = [p.action_id for p in rank(ROLE, WEEK, pool, _config())]
        second = [p.action_id for p in rank(ROLE, WEEK, list(reversed(pool)), _config())]
        assert first == second

    def test_ties_break_on_action_id(self):
        picks = rank(ROLE, WEEK, _pool(6), _config(min_distinct_domains=1))
        assert [p.action_id for p in picks] == [1, 2, 3]

    def test_cooldown_excludes_recent_actions(self):
        pool = _pool(6)
        pool[0] = Candidate(action_id=1, domain_id=2, last_used_week=WEEK - timedelta(weeks=3))
        picks = rank(ROLE, WEEK, pool, _config(min_distinct_domains=1))
        assert 1 not in [p.action_id for p in picks]

    def test_cooldown_boundary(self):
        cfg = _config()
        assert in_cooldown(Candidate(1, last_used_week=WEEK - timedelta(weeks=3)), WEEK, cfg)
        assert not in_cooldown(Candidate(1, last_used_week=WEEK - timedelta(weeks=4)), WEEK, cfg)

    def test_insufficient_candidates(self):
        pool = [Candidate(action_id=1), Candidate(action_id=2),
                Candidate(action_id=3, last_used_week=WEEK - timedelta(weeks=1))]
        with pytest.raises(InsufficientCandidatesError) as exc_info:
            rank(ROLE, WEEK, pool, _config())
        assert exc_info.value.eligible == 2
        assert exc_info.value.role_id == ROLE

    def test_domain_diversity_is_honoured(self):
        cfg = RankingConfig.from_mapping({"weights": {"C": 1}, "min_distinct_domains": 2})
        pool = [
            Candidate(action_id=1, domain_id=1, confidence_avg=0.0),
            Candidate(action_id=2, domain_id=1, confidence_avg=0.0),
            Candidate(action_id=3, domain_id=1, confidence_avg=0.0),
            Candidate(action_id=4, domain_id=2, confidence_avg=0.9),
        ]
        picks = rank(ROLE, WEEK, pool, cfg)
        assert [p.action_id for p in picks] == [1, 2, 4]

    def test_domain_diversity_relaxed_with_warning(self, caplog):
        cfg = RankingConfig.from_mapping({"weights": {"C": 1}, "min_distinct_domains": 2})
        pool = [Candidate(action_id=i, domain_id=1) for i in range(1, 5)]
        with caplog.at_level(logging.WARNING, logger="sequencer.services.ranking"):
            picks = rank(ROLE, WEEK, pool, cfg)
        assert [p.action_id for p in picks] == [1, 2, 3]
        assert "Relaxing domain diversity" in caplog.text

    def test_manager_priority_lifts_candidate(self):
        pool = _pool(9)
        pool[8] = Candidate(action_id=9, domain_id=1, priority_weight=1.0)
        picks = rank(ROLE, WEEK, pool, _config())
        assert picks[0].action_id == 9

    def test_custom_scorer(self):
        class ByActionId:
            def score(self, candidate, effective_date, config):
                return float(candidate.action_id), {}

        picks = rank(ROLE, WEEK, _pool(9), _config(min_distinct_domains=1), scorer=ByActionId())
        assert [p.action_id for p in picks] == [9, 8, 7]
        assert picks[0].explanation == {}
        assert picks[0].version is None

    def test_picks_carry_explanation_and_version(self):
        picks = rank(ROLE, WEEK, _pool(), _config())
        for pick in picks:
            snap = pick.snapshot()
            assert pick.version == RANK_VERSION
            assert len(snap["drivers"]) == 2
            assert snap["reason_code"] == "NEVER"
            assert snap["score"] == pick.score
            assert set(snap["parts"]) == {"C", "R", "E", "D", "M", "T"}


class TestPriorityCap:

    def test_only_top_five_keep_their_weight(self):
        pool = [Candidate(action_id=i, priority_weight=float(10 - i)) for i in range(1, 8)]
        capped = _cap_priorities(pool, 5)
        boosted = [c.action_id for c in capped if c.priority_weight > 0]
        assert boosted == [1, 2, 3, 4, 5]

    def test_unboosted_candidates_untouched(self):
        pool = [Candidate(action_id=1), Candidate(action_id=2, priority_weight=0.5)]
        assert _cap_priorities(pool, 5) == pool


class TestAdvancePool:

    def test_marks_picks_as_used(self):
        pool = _pool(4)
        advanced = advance_pool(pool, [RankedPick(2, 0.5), 3, None], WEEK)
        used = {c.action_id: c.last_used_week for c in advanced}
        assert used[2] == WEEK and used[3] == WEEK
        assert used[1] is None and used[4] is None

    def test_chained_weeks_never_repeat_inside_cooldown(self):
        pool, seen = _pool(15), []
        for offset in range(3):
            week = WEEK + timedelta(weeks=offset)
            picks = rank(ROLE, week, pool, _config())
            seen.extend(p.action_id for p in picks)
            pool = advance_pool(pool, picks, week)
        assert len(seen) == len(set(seen)) == 9
