"""Tests for the blackboard planner and its reasoning plugins."""

from hubcrawl.gaps import default_analyzers
from hubcrawl.models import Candidate, CandidateKind, HubRecord, Mode, Strategy, Verdict
from hubcrawl.planner import (BlackboardPlanner, CostEstimator, GazetteerReasoner, HubArticleReasoner,
                              PlanningContext, default_plugins)
from hubcrawl.prediction import PredictionContext, PredictionLibrary
from hubcrawl.scoring import PriorityScorer
from hubcrawl.telemetry import CANDIDATE_PROPOSED, PLANNING_WARNING

from conftest import DOMAIN, FRANCE

FR_URL = "https://news.example.com/world/fr"


class Posting:
    """Plugin that posts fixed candidates."""

    def __init__(self, *cands, name="posting"):
        self.cands = list(cands)
        self.name = name

    def propose(self, ctx, board):
        board.post(self.name, self.cands)


class Broken:
    name = "broken"

    def propose(self, ctx, board):
        raise RuntimeError("plugin exploded")


def make(cfg, gazetteer, plugins=None, analyzers=True, telemetry=None):
    lib = PredictionLibrary()
    return BlackboardPlanner(
        PriorityScorer(cfg),
        default_plugins(gazetteer, lib, cfg) if plugins is None else plugins,
        default_analyzers(gazetteer, lib, cfg) if analyzers else [],
        cfg,
        telemetry,
    )


def context(cfg, gazetteer, **kw):
    return PlanningContext(DOMAIN, PredictionContext.from_config(cfg, gazetteer=gazetteer), **kw)


def fr_candidate(source, cost=None):
    return Candidate(url=FR_URL, entities=(FRANCE,), kind=CandidateKind.COUNTRY_HUB,
                     strategy=Strategy.LEARNED_PATTERN, confidence=0.8, source=source,
                     estimated_cost_ms=cost, domain=DOMAIN)


class TestFirstCycle:
    def test_fresh_domain_gets_one_candidate_per_country_by_importance(self, cfg, countries, telemetry):
        result = make(cfg, countries, telemetry=telemetry).plan(context(cfg, countries))
        assert [c.coverage_key for c in result.candidates] == ["country-hub:fr", "country-hub:de", "country-hub:jp"]
        assert all(c.kind is CandidateKind.COUNTRY_HUB for c in result.candidates)
        assert result.warnings == []
        assert len(telemetry.of(CANDIDATE_PROPOSED)) == 3

    def test_each_cycle_starts_with_an_empty_board(self, cfg, countries):
        planner = make(cfg, countries)
        first = planner.plan(context(cfg, countries))
        second = planner.plan(context(cfg, countries))
        assert first.board is not second.board
        assert len(second.board.proposals) == len(first.board.proposals)

    def test_limit(self, cfg, countries):
        result = make(cfg, countries).plan(context(cfg, countries, limit=2))
        assert len(result.ranked) == 2

    def test_scores_are_descending(self, cfg, world):
        result = make(cfg, world).plan(context(cfg, world, confirmed=frozenset({"country-hub:us"})))
        scores = [s.score for s in result.ranked]
        assert scores == sorted(scores, reverse=True)


class TestIsolation:
    def test_failing_plugin_becomes_a_warning(self, cfg, countries, telemetry):
        result = make(cfg, countries, plugins=[Broken()], telemetry=telemetry).plan(context(cfg, countries))
        assert len(result.candidates) == 3
        assert len(result.warnings) == 1 and "broken" in result.warnings[0]
        assert telemetry.of(PLANNING_WARNING)[0][2]["source"] == "broken"

    def test_posts_from_a_failing_plugin_are_rolled_back(self, cfg, countries):
        junk = Candidate(url="https://news.example.com/junk", entities=(FRANCE,), kind=CandidateKind.COUNTRY_HUB,
                         strategy=Strategy.LEARNED_PATTERN, confidence=0.9, source="pattern-match", domain=DOMAIN)

        class PostThenFail:
            name = "half-done"

            def propose(self, ctx, board):
                board.post(self.name, [junk])
                board.estimate_cost(DOMAIN, 99999.0)
                raise RuntimeError("plugin exploded after posting")

        keep = Posting(fr_candidate("pattern-match"), name="steady")
        result = make(cfg, countries, plugins=[keep, PostThenFail()], analyzers=False).plan(context(cfg, countries))

        assert [c.url for c in result.candidates] == [FR_URL]
        assert "https://news.example.com/junk" not in {c.url for c in result.candidates}
        assert result.board.contributors == {"steady": 1}
        assert result.board.cost_estimates == {}
        assert len(result.warnings) == 1 and "half-done" in result.warnings[0]

    def test_failing_analyzer_becomes_a_warning(self, cfg, countries):
        class BadAnalyzer:
            def find_gaps(self, domain, confirmed):
                raise ValueError("no")

        planner = BlackboardPlanner(PriorityScorer(cfg), [], [BadAnalyzer()], cfg)
        result = planner.plan(context(cfg, countries))
        assert result.ranked == []
        assert "BadAnalyzer" in result.warnings[0]


class TestDedupe:
    def test_higher_bonus_wins(self, cfg, countries):
        result = make(cfg, countries, plugins=[Posting(fr_candidate("pattern-match"))]).plan(context(cfg, countries))
        same = [c for c in result.candidates if c.url == FR_URL]
        assert len(same) == 1 and same[0].source == "pattern-match"

    def test_lower_bonus_loses(self, cfg, countries):
        result = make(cfg, countries, plugins=[Posting(fr_candidate("speculative"))]).plan(context(cfg, countries))
        same = [c for c in result.candidates if c.url == FR_URL]
        assert len(same) == 1 and same[0].source == "gazetteer-seed"

    def test_equal_bonus_prefers_lower_cost(self, cfg, countries):
        plugin = Posting(fr_candidate("pattern-match", 900.0), fr_candidate("pattern-match", 50.0))
        result = make(cfg, countries, plugins=[plugin], analyzers=False).plan(context(cfg, countries))
        assert [c.estimated_cost_ms for c in result.candidates] == [50.0]


class TestPlugins:
    def test_cost_estimate_applies_to_candidates_without_one(self, cfg, countries):
        planner = make(cfg, countries, plugins=[CostEstimator()])
        result = planner.plan(context(cfg, countries, fetch_costs={DOMAIN: 1000.0}))
        assert result.board.cost_estimates == {DOMAIN: 1000.0}
        assert all(s.candidate.estimated_cost_ms == 1000.0 for s in result.ranked)
        assert all(s.cost_adjustment < 0 for s in result.ranked)

    def test_cost_estimator_without_data_posts_nothing(self, cfg, countries):
        result = make(cfg, countries, plugins=[CostEstimator()]).plan(context(cfg, countries))
        assert result.board.cost_estimates == {}

    def test_siblings_of_a_confirmed_hub(self, cfg, countries):
        rec = HubRecord(url="https://news.example.com/world/france", domain=DOMAIN, entity_ids=("fr",),
                        kind=CandidateKind.COUNTRY_HUB, verdict=Verdict.CONFIRMED)
        plugin = GazetteerReasoner(countries, PredictionLibrary(), cfg)
        planner = make(cfg, countries, plugins=[plugin], analyzers=False)
        result = planner.plan(context(cfg, countries, confirmed=frozenset({"country-hub:fr"}), confirmed_hubs=[rec]))
        assert {c.url for c in result.candidates} == {"https://news.example.com/world/germany",
                                                      "https://news.example.com/world/japan"}
        assert all(c.source == "adaptive-seed" and c.gap_fill for c in result.candidates)
        assert result.board.contributors == {"gazetteer-reasoner": 2}

    def test_busy_siblings_are_skipped(self, cfg, countries):
        rec = HubRecord(url="https://news.example.com/world/france", domain=DOMAIN, entity_ids=("fr",),
                        kind=CandidateKind.COUNTRY_HUB, verdict=Verdict.CONFIRMED)
        planner = make(cfg, countries, plugins=[GazetteerReasoner(countries, PredictionLibrary(), cfg)],
                       analyzers=False)
        result = planner.plan(context(cfg, countries, confirmed_hubs=[rec], busy_keys=frozenset({"country-hub:de"})))
        assert [c.url for c in result.candidates] == ["https://news.example.com/world/japan"]

    def test_articles_from_hubs(self, cfg, countries):
        pending = ["https://news.example.com/world/france/a-long-story-slug-1",
                   "https://news.example.com/world/france/a-long-story-slug-2"]
        planner = make(cfg, countries, plugins=[HubArticleReasoner(cfg)], analyzers=False)
        result = planner.plan(context(cfg, countries, pending_articles=pending, exclude_urls=frozenset(pending[:1])))
        assert [c.url for c in result.candidates] == pending[1:]
        assert result.candidates[0].kind is CandidateKind.ARTICLE

    def test_exclusive_focus_ranks_hubs_above_articles(self, cfg, countries):
        pending = ["https://news.example.com/world/france/a-long-story-slug-1"]
        planner = make(cfg, countries, plugins=[HubArticleReasoner(cfg)])
        result = planner.plan(context(cfg, countries, pending_articles=pending, mode=Mode.EXCLUSIVE_HUB_FOCUS))
        assert result.candidates[-1].kind is CandidateKind.ARTICLE

    def test_default_plugins_follow_config(self, cfg, countries):
        names = [p.name for p in default_plugins(countries, PredictionLibrary(), cfg)]
        assert "hub-article-reasoner" not in names
        names = [p.name for p in default_plugins(countries, PredictionLibrary(), cfg.with_overrides(follow_articles=True))]
        assert names == ["gazetteer-reasoner", "cost-estimator", "hub-article-reasoner"]
