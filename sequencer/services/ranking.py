"""
Pro-Move Sequencer
Need-Based Ranking Function.

Pure function boundary: given a role, a target week and a candidate pool,
return the top picks for that week. No storage access happens here, so the
plan pipeline can run it under a deadline and dry-runs can chain it across
several weeks without writing.

Default need score (weights normalised to sum to 1):
    C  confidence gap      1 - smoothed confidence (prior when unrated)
    R  recency             0 inside cooldown, linear to 1 at the horizon
    E  evaluation gap      1 - avg evaluation; weighted term capped at eval_cap
    D  domain balance      1 - share of recent slots in the same domain
    M  manager priority    coach-declared weight (top ``priority_cap`` only)
    T  retest boost        flat bonus when a low-confidence pick comes back
                           inside the retest window (not weighted)

Confidence is a trimmed mean shrunk toward ``confidence_prior`` with
strength ``eb_k`` (empirical Bayes), so a handful of scores cannot swing a
candidate to either end.

Every pick carries an explanation: its signal parts, the two largest
weighted contributions ("drivers"), a primary reason code and reason tags.
The plan store keeps it with the row as the rank snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Protocol

from sequencer.core.exceptions import ConfigurationError, InsufficientCandidatesError

logger = logging.getLogger(__name__)

PICKS_PER_WEEK = 3
WEIGHT_KEYS = ("C", "R", "E", "D", "M")
RANK_VERSION = "need-v2"

# Primary reason codes, checked in this order.
REASON_RETEST = "RETEST"
REASON_LOW_CONF = "LOW_CONF"
REASON_NEVER = "NEVER"
REASON_STALE = "STALE"
REASON_TIE = "TIE"

TAG_LOW_CONF = "low_conf_trigger"
TAG_RETEST = "retest_window"
TAG_NEVER = "never_practiced"
TAG_LONG_UNSEEN = "long_unseen"

LOW_CONF_SHARE_THRESHOLD = 0.30
LOW_CONF_NEED = 0.60
LONG_UNSEEN_RECENCY = 0.80
STALE_WEEKS = 6


@dataclass(frozen=True)
class Candidate:
    action_id: int
    name: str = ""
    domain_id: int | None = None
    competency_id: int | None = None
    last_used_week: date | None = None
    confidence_avg: float | None = None
    eval_avg: float | None = None
    domain_share: float | None = None
    priority_weight: float = 0.0
    confidence_n: int = 0
    low_conf_share: float | None = None
    retest_eligible: bool = False


@dataclass(frozen=True)
class RankedPick:
    action_id: int
    score: float
    domain_id: int | None = None
    components: dict = field(default_factory=dict, compare=False)
    explanation: dict = field(default_factory=dict, compare=False)
    version: str | None = field(default=None, compare=False)

    def snapshot(self):
        """What the plan store keeps with the row."""
        snap = {"score": self.score, "parts": dict(self.components)}
        snap.update(self.explanation)
        return snap

    def to_dict(self):
        return {
            "action_id": self.action_id,
            "score": self.score,
            "domain_id": self.domain_id,
            "components": dict(self.components),
            "explanation": dict(self.explanation),
            "version": self.version,
        }


@dataclass(frozen=True)
class RankingConfig:
    weights: dict
    cooldown_weeks: int = 4
    min_distinct_domains: int = 2
    recency_horizon_weeks: int = 16
    confidence_prior: float = 0.70
    eb_k: float = 20.0
    trim_pct: float = 0.05
    eval_cap: float = 0.25
    priority_cap: int = 5
    retest_boost: float = 0.10
    retest_min_weeks: int = 2
    retest_max_weeks: int = 4

    _FIELDS = (
        "cooldown_weeks", "min_distinct_domains", "recency_horizon_weeks",
        "confidence_prior", "eb_k", "trim_pct", "eval_cap", "priority_cap",
        "retest_boost", "retest_min_weeks", "retest_max_weeks",
    )

    @classmethod
    def from_mapping(cls, mapping: dict | None) -> "RankingConfig":
        """Build a config from app settings, normalising the weights."""
        mapping = dict(mapping or {})
        raw = {k: float(v) for k, v in (mapping.pop("weights", None) or {}).items()}
        unknown = set(raw) - set(WEIGHT_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown ranking weights: {sorted(unknown)}")
        if any(v < 0 for v in raw.values()):
            raise ConfigurationError("Ranking weights must be non-negative")
        total = sum(raw.values())
        if total <= 0:
            raise ConfigurationError("At least one ranking weight must be positive")
        weights = {k: raw.get(k, 0.0) / total for k in WEIGHT_KEYS}
        known = {k: mapping[k] for k in cls._FIELDS if k in mapping}
        if not 0 <= float(known.get("trim_pct", 0.0)) < 0.5:
            raise ConfigurationError("trim_pct must be in [0, 0.5)")
        if float(known.get("eb_k", 0.0)) < 0:
            raise ConfigurationError("eb_k must be non-negative")
        return cls(weights=weights, **known)

    def snapshot(self) -> dict:
        snap = {"weights": {k: round(v, 6) for k, v in self.weights.items()}}
        snap.update({k: getattr(self, k) for k in self._FIELDS})
        return snap


# ── Confidence smoothing ─────────────────────────────────────────────────


def trimmed_mean(values, trim_pct):
    """Mean after dropping ``trim_pct`` of the values at each end."""
    if not values:
        return None
    ordered = sorted(values)
    k = int(len(ordered) * trim_pct)
    kept = ordered[k:len(ordered) - k] or ordered
    return sum(kept) / len(kept)


def eb_smooth(mean, n, prior, k):
    """Shrink a sample mean of ``n`` values toward ``prior`` with strength ``k``."""
    if n + k <= 0:
        return prior
    return (n * mean + k * prior) / (n + k)


def smooth_confidence(values, config):
    """Smoothed 0..1 confidence of a candidate, None when unrated."""
    if not values:
        return None
    mean = trimmed_mean(values, config.trim_pct)
    return eb_smooth(mean, len(values), config.confidence_prior, config.eb_k)


# ── Scoring ──────────────────────────────────────────────────────────────


class Scorer(Protocol):
    def score(self, candidate: Candidate, effective_date: date,
              config: RankingConfig) -> tuple[float, dict]:
        ...


def _weeks_between(earlier: date, later: date) -> int:
    return (later - earlier).days // 7


def _weeks_since(candidate, effective_date):
    if candidate.last_used_week is None:
        return None
    return _weeks_between(candidate.last_used_week, effective_date)


def retest_due(candidate, effective_date, config) -> bool:
    weeks = _weeks_since(candidate, effective_date)
    return (candidate.retest_eligible and weeks is not None
            and config.retest_min_weeks <= weeks <= config.retest_max_weeks)


class NeedScorer:
    """Default weighted need score."""

    version = RANK_VERSION

    def score(self, candidate, effective_date, config):
        confidence = candidate.confidence_avg
        if confidence is None:
            confidence = config.confidence_prior
        c = 1.0 - _clamp(confidence)

        weeks = _weeks_since(candidate, effective_date)
        if weeks is None:
            r = 1.0
        else:
            span = config.recency_horizon_weeks - config.cooldown_weeks
            r = 1.0 if span <= 0 else _clamp((weeks - config.cooldown_weeks) / span)

        e = 0.0 if candidate.eval_avg is None else 1.0 - _clamp(candidate.eval_avg)
        d = 1.0 if candidate.domain_share is None else 1.0 - _clamp(candidate.domain_share)
        m = max(0.0, candidate.priority_weight)
        t = config.retest_boost if retest_due(candidate, effective_date, config) else 0.0

        components = {"C": c, "R": r, "E": e, "D": d, "M": m, "T": t}
        total = sum(self.contributions(components, config).values())
        return round(total, 9), components

    @staticmethod
    def contributions(components, config):
        """Weighted terms that add up to the score."""
        terms = {k: config.weights[k] * components.get(k, 0.0) for k in WEIGHT_KEYS}
        terms["E"] = min(terms["E"], config.eval_cap)
        terms["T"] = components.get("T", 0.0)
        return terms

    def explain(self, candidate, effective_date, config, components):
        terms = self.contributions(components, config)
        # sorted() is stable, so equal terms keep the C, R, E, D, M, T order.
        drivers = [k for k, _ in sorted(terms.items(), key=lambda kv: -kv[1])[:2]]
        weeks = _weeks_since(candidate, effective_date)

        tags = []
        if components["C"] >= LOW_CONF_NEED:
            tags.append(TAG_LOW_CONF)
        if components["T"] > 0:
            tags.append(TAG_RETEST)
        if weeks is None:
            tags.append(TAG_NEVER)
        if components["R"] >= LONG_UNSEEN_RECENCY:
            tags.append(TAG_LONG_UNSEEN)

        value = None
        if components["T"] > 0:
            code = REASON_RETEST
        elif candidate.low_conf_share is not None and candidate.low_conf_share >= LOW_CONF_SHARE_THRESHOLD:
            code, value = REASON_LOW_CONF, round(candidate.low_conf_share, 4)
        elif weeks is None:
            code = REASON_NEVER
        elif weeks >= STALE_WEEKS:
            code, value = REASON_STALE, weeks
        else:
            code = REASON_TIE

        return {
            "contributions": {k: round(v, 6) for k, v in terms.items()},
            "drivers": drivers,
            "reason_code": code,
            "reason_value": value,
            "reason_tags": tags,
            "weeks_since": weeks,
            "confidence_n": candidate.confidence_n,
        }


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def in_cooldown(candidate: Candidate, effective_date: date, config: RankingConfig) -> bool:
    if candidate.last_used_week is None:
        return False
    return (effective_date - candidate.last_used_week).days < config.cooldown_weeks * 7


def _cap_priorities(candidates, cap):
    """Keep the priority weight of at most *cap* candidates (highest first)."""
    boosted = sorted(
        (c for c in candidates if c.priority_weight > 0),
        key=lambda c: (-c.priority_weight, c.action_id),
    )
    keep = {c.action_id for c in boosted[:cap]}
    return [c if c.priority_weight <= 0 or c.action_id in keep else replace(c, priority_weight=0.0)
            for c in candidates]


def _pick(scorer, candidate, value, components, effective_date, config):
    explain = getattr(scorer, "explain", None)
    explanation = explain(candidate, effective_date, config, components) if explain else {}
    return RankedPick(candidate.action_id, value, candidate.domain_id, components,
                      explanation=explanation, version=getattr(scorer, "version", None))


def rank(role_id, effective_date, candidates, config, scorer=None, top_n=PICKS_PER_WEEK):
    """
    Return ``top_n`` RankedPicks for ``role_id`` in the week ``effective_date``.

    Deterministic: candidates are ordered by (-score, action_id). The
    min-distinct-domains constraint is honoured when possible and relaxed
    (with a warning) when the eligible pool cannot satisfy it.

    Raises:
        InsufficientCandidatesError: fewer than ``top_n`` eligible candidates.
    """
    scorer = scorer or NeedScorer()
    eligible = [c for c in candidates if not in_cooldown(c, effective_date, config)]
    if len(eligible) < top_n:
        raise InsufficientCandidatesError(role_id, len(eligible), top_n)

    eligible = _cap_priorities(eligible, config.priority_cap)
    scored = []
    for candidate in eligible:
        value, components = scorer.score(candidate, effective_date, config)
        scored.append((value, candidate, components))
    scored.sort(key=lambda item: (-item[0], item[1].action_id))

    wanted = min(config.min_distinct_domains, top_n)
    picks, domains = [], set()
    for value, candidate, components in scored:
        if len(picks) == top_n:
            break
        new_domains = domains | {candidate.domain_id}
        slots_left = top_n - len(picks) - 1
        if len(new_domains) + slots_left < wanted:
            continue
        picks.append(_pick(scorer, candidate, value, components, effective_date, config))
        domains = new_domains

    if len(picks) < top_n:
        logger.warning(
            "Relaxing domain diversity for role %s week %s (%d distinct domains wanted)",
            role_id, effective_date, wanted,
            extra={"role_id": role_id, "target_week": effective_date.isoformat(), "stage": "rank"},
        )
        taken = {p.action_id for p in picks}
        for value, candidate, components in scored:
            if len(picks) == top_n:
                break
            if candidate.action_id not in taken:
                picks.append(_pick(scorer, candidate, value, components, effective_date, config))
        picks.sort(key=lambda p: (-p.score, p.action_id))

    return picks


def advance_pool(candidates, picks, week_start):
    """The pool as it would look once *picks* were used in ``week_start``."""
    used = {p if isinstance(p, int) else p.action_id for p in picks if p is not None}
    return [replace(c, last_used_week=week_start) if c.action_id in used else c
            for c in candidates]
