"""Tests for the priority scorer."""

import math

import pytest

from hubcrawl.config import DEFAULT_SOURCE_BONUSES
from hubcrawl.models import BehavioralProgress, Candidate, CandidateKind, Mode, Strategy
from hubcrawl.scoring import PriorityScorer

from conftest import FRANCE


def cand(source="pattern-match", kind=CandidateKind.COUNTRY_HUB, cost=None, gap_fill=False, importance=90.0,
         url="https://news.example.com/world/france"):
    entities = () if kind is CandidateKind.ARTICLE else (FRANCE,)
    return Candidate(url=url, entities=entities, kind=kind, strategy=Strategy.LEARNED_PATTERN,
                     confidence=0.8, source=source, estimated_cost_ms=cost, gap_fill=gap_fill,
                     importance=importance, domain="news.example.com")


class TestCostAdjustment:
    """Base bonus 20 -> adjustment must stay within [-2, +2]."""

    @pytest.mark.parametrize("cost,expected", [
        (0, 2.0),
        (50, 1.0),
        (100, 0.0),      # inclusive-fast: boost shrinks to zero exactly at the threshold
        (300, 0.0),
        (500, 0.0),      # exclusive-slow: no penalty at exactly 500
        (750, -1.0),
        (1000, -2.0),
        (10 ** 9, -2.0),
    ])
    def test_piecewise(self, cfg, cost, expected):
        assert PriorityScorer(cfg).cost_adjustment(20.0, cost) == pytest.approx(expected)

    @pytest.mark.parametrize("cost", [None, float("nan"), float("inf"), -1.0, -1e12, 0.0, 1e300])
    def test_bounded_by_ten_percent_of_base(self, cfg, cost):
        adj = PriorityScorer(cfg).cost_adjustment(20.0, cost)
        assert not math.isnan(adj)
        assert abs(adj) <= 2.0 + 1e-9

    def test_nan_and_missing_cost_are_neutral(self, cfg):
        s = PriorityScorer(cfg)
        assert s.cost_adjustment(20.0, None) == 0.0
        assert s.cost_adjustment(20.0, float("nan")) == 0.0

    def test_negative_cost_is_treated_as_zero(self, cfg):
        assert PriorityScorer(cfg).cost_adjustment(20.0, -50) == pytest.approx(2.0)


class TestScore:
    def test_deterministic(self, cfg):
        s = PriorityScorer(cfg)
        c = cand(cost=42.0, gap_fill=True)
        assert s.score(c, Mode.NORMAL, True) == s.score(c, Mode.NORMAL, True)

    def test_components(self, cfg):
        scored = PriorityScorer(cfg).score(cand(cost=0.0, gap_fill=True))
        assert scored.base_bonus == 20.0
        assert scored.cost_adjustment == pytest.approx(2.0)
        assert scored.gap_boost == 5.0
        assert scored.score == pytest.approx(27.0)

    def test_explicit_cost_overrides_candidate_estimate(self, cfg):
        s = PriorityScorer(cfg)
        assert s.score(cand(cost=0.0), cost_ms=1000.0).cost_adjustment == pytest.approx(-2.0)

    def test_unknown_source_gets_default_bonus(self, cfg):
        assert PriorityScorer(cfg).score(cand(source="mystery")).base_bonus == cfg.default_source_bonus

    def test_gap_boost_needs_high_importance(self, cfg):
        s = PriorityScorer(cfg)
        assert s.gap_boost(cand(gap_fill=True, importance=30)) == 0.0
        assert s.gap_boost(cand(gap_fill=False, importance=90)) == 0.0
        assert s.gap_boost(cand(gap_fill=True, importance=50)) == cfg.gap_fill_boost

    def test_gap_emphasis_doubles_boost(self, cfg):
        s = PriorityScorer(cfg)
        assert s.gap_boost(cand(gap_fill=True), gap_emphasis=True) == 2 * cfg.gap_fill_boost


class TestExclusiveHubFocus:
    def test_non_hub_scores_below_every_hub(self, cfg):
        s = PriorityScorer(cfg.with_overrides(source_bonuses={**DEFAULT_SOURCE_BONUSES, "huge": 10_000.0, "tiny": -50.0}))
        hubs = [
            cand(source="tiny", cost=10 ** 6),
            cand(source="speculative", cost=2000.0),
            cand(source="pattern-match", gap_fill=True, cost=0.0),
        ]
        non_hubs = [
            cand(source="huge", kind=CandidateKind.ARTICLE, url="https://news.example.com/a/b-c-d-e"),
            cand(source="article-from-hub", kind=CandidateKind.ARTICLE, cost=0.0,
                 url="https://news.example.com/a/f-g-h-i"),
        ]
        hub_scores = [s.score(c, Mode.EXCLUSIVE_HUB_FOCUS).score for c in hubs]
        other_scores = [s.score(c, Mode.EXCLUSIVE_HUB_FOCUS).score for c in non_hubs]
        assert max(other_scores) < min(hub_scores)

    def test_hub_scores_stay_inside_band(self, cfg):
        s = PriorityScorer(cfg.with_overrides(source_bonuses={**DEFAULT_SOURCE_BONUSES, "huge": 10_000.0}))
        score = s.score(cand(source="huge"), Mode.EXCLUSIVE_HUB_FOCUS).score
        assert cfg.focus_band_floor <= score <= cfg.focus_band_ceiling

    def test_normal_mode_leaves_scores_alone(self, cfg):
        s = PriorityScorer(cfg)
        c = cand(kind=CandidateKind.ARTICLE, source="article-from-hub", url="https://news.example.com/a/b-c-d-e")
        assert s.score(c, Mode.NORMAL).score == 8.0


class TestGapEmphasis:
    def test_needs_enough_attempts(self, cfg):
        p = BehavioralProgress(rejected=cfg.gap_emphasis_min_attempts - 1)
        assert not PriorityScorer(cfg).should_emphasize_gaps(p)

    def test_low_hit_rate_turns_it_on(self, cfg):
        p = BehavioralProgress(confirmed=1, rejected=9)
        assert PriorityScorer(cfg).should_emphasize_gaps(p)

    def test_good_hit_rate_keeps_it_off(self, cfg):
        p = BehavioralProgress(confirmed=5, rejected=5)
        assert not PriorityScorer(cfg).should_emphasize_gaps(p)
