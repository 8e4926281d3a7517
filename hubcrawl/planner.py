# hubcrawl/planner.py
"""
Blackboard planner: one planning cycle = one fresh Blackboard.

Per cycle:
  1. every registered reasoning plugin writes proposals / cost estimates onto the board
  2. gap analyzers add their proposals
  3. cost estimates are applied to candidates that carry none
  4. duplicates by URL collapse to the entry with the highest raw bonus
     (exact tie: lower estimated cost)
  5. survivors are scored and stable-sorted, highest first
  6. the top N are returned

A plugin or analyzer that raises is logged and left out of this cycle only;
anything a failing plugin posted before raising is rolled back.
Nothing on the board outlives the cycle.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import AbstractSet, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .config import Config
from .gaps import GapAnalyzer
from .interfaces import Gazetteer, TelemetrySink
from .models import (Candidate, CandidateKind, HubRecord, Mode, ScoredCandidate, Strategy,
                     coverage_key)
from .prediction import PredictionContext, PredictionLibrary
from .scoring import PriorityScorer
from .telemetry import CANDIDATE_PROPOSED, PLANNING_WARNING

logger = logging.getLogger(__name__)


@dataclass
class PlanningContext:
    domain: str
    prediction: PredictionContext
    confirmed: AbstractSet[str] = frozenset()
    confirmed_hubs: Sequence[HubRecord] = ()
    mode: Mode = Mode.NORMAL
    gap_emphasis: bool = False
    exclude_urls: AbstractSet[str] = frozenset()
    busy_keys: AbstractSet[str] = frozenset()
    pending_articles: Sequence[str] = ()
    fetch_costs: Mapping[str, float] = field(default_factory=dict)
    limit: Optional[int] = None


@dataclass
class Blackboard:
    proposals: List[Candidate] = field(default_factory=list)
    cost_estimates: Dict[str, float] = field(default_factory=dict)   # domain -> ms
    contributors: Dict[str, int] = field(default_factory=dict)

    def post(self, plugin: str, candidates: Sequence[Candidate]) -> None:
        self.proposals.extend(candidates)
        self.contributors[plugin] = self.contributors.get(plugin, 0) + len(candidates)

    def estimate_cost(self, domain: str, ms: float) -> None:
        self.cost_estimates[domain] = ms

    def checkpoint(self) -> Tuple[int, Dict[str, float], Dict[str, int]]:
        return len(self.proposals), dict(self.cost_estimates), dict(self.contributors)

    def rollback(self, mark: Tuple[int, Dict[str, float], Dict[str, int]]) -> None:
        """Forget everything posted since `mark`."""
        n, costs, contributors = mark
        del self.proposals[n:]
        self.cost_estimates = costs
        self.contributors = contributors


@dataclass
class PlanResult:
    ranked: List[ScoredCandidate]
    warnings: List[str]
    board: Blackboard

    @property
    def candidates(self) -> List[Candidate]:
        return [s.candidate for s in self.ranked]


class ReasoningPlugin(Protocol):
    name: str

    def propose(self, ctx: PlanningContext, board: Blackboard) -> None: ...


# --------------------------------- plugins ---------------------------------

class GazetteerReasoner:
    """Siblings of confirmed hubs: /world/france confirmed -> try /world/germany next."""
    name = "gazetteer-reasoner"

    def __init__(self, gazetteer: Gazetteer, library: PredictionLibrary, cfg: Config):
        self.gazetteer = gazetteer
        self.library = library
        self.cfg = cfg

    def propose(self, ctx: PlanningContext, board: Blackboard) -> None:
        out: List[Candidate] = []
        for rec in ctx.confirmed_hubs:
            if rec.kind.is_composite or not rec.kind.is_hub or len(rec.entity_ids) != 1:
                continue
            known = self.gazetteer.get(rec.entity_ids[0])
            if known is None:
                continue
            siblings = [
                e for e in self.gazetteer.list_entities(known.kind, (ctx.domain,))
                if e.id != known.id and self.gazetteer.importance_rank(e) > 0
                and coverage_key(rec.kind, (e,)) not in ctx.confirmed
                and coverage_key(rec.kind, (e,)) not in ctx.busy_keys
            ]
            siblings.sort(key=lambda e: (-self.gazetteer.importance_rank(e), e.id))
            for c in self.library.predict_siblings(rec.url, known, siblings[: self.cfg.sibling_limit],
                                                   ctx.domain, rec.kind):
                if c.url not in ctx.exclude_urls:
                    out.append(c.with_overrides(gap_fill=True))
        board.post(self.name, out)


class CostEstimator:
    """Per-domain cost estimate from observed fetch durations."""
    name = "cost-estimator"

    def __init__(self, default_ms: Optional[float] = None):
        self.default_ms = default_ms

    def propose(self, ctx: PlanningContext, board: Blackboard) -> None:
        ms = ctx.fetch_costs.get(ctx.domain, self.default_ms)
        if ms is not None:
            board.estimate_cost(ctx.domain, float(ms))


class HubArticleReasoner:
    """Queue articles surfaced by confirmed hubs (indexing work, not hub discovery)."""
    name = "hub-article-reasoner"

    def __init__(self, cfg: Config):
        self.cfg = cfg

    def propose(self, ctx: PlanningContext, board: Blackboard) -> None:
        out = []
        for url in ctx.pending_articles:
            if url in ctx.exclude_urls:
                continue
            out.append(Candidate(
                url=url, entities=(), kind=CandidateKind.ARTICLE, strategy=Strategy.HUB_ARTICLE,
                confidence=1.0, source="article-from-hub", domain=ctx.domain, reason="surfaced by hub",
            ))
        board.post(self.name, out)


# --------------------------------- planner ---------------------------------

class BlackboardPlanner:
    def __init__(self, scorer: PriorityScorer, plugins: Sequence[ReasoningPlugin],
                 analyzers: Sequence[GapAnalyzer], cfg: Config,
                 telemetry: Optional[TelemetrySink] = None):
        self.scorer = scorer
        self.plugins = list(plugins)
        self.analyzers = list(analyzers)
        self.cfg = cfg
        self.telemetry = telemetry

    def plan(self, ctx: PlanningContext) -> PlanResult:
        board = Blackboard()
        warnings: List[str] = []

        for plugin in self.plugins:
            mark = board.checkpoint()
            try:
                plugin.propose(ctx, board)
            except Exception as exc:
                # A failing plugin sits this cycle out, including whatever it posted first.
                board.rollback(mark)
                warnings.append(self._warn(ctx.domain, getattr(plugin, "name", type(plugin).__name__), exc))

        gap_props: List[Candidate] = []
        for analyzer in self.analyzers:
            try:
                gaps = analyzer.find_gaps(ctx.domain, ctx.confirmed)
                gap_props.extend(analyzer.propose_for_gaps(
                    gaps, ctx.domain, ctx.prediction, exclude=ctx.exclude_urls, busy=ctx.busy_keys))
            except Exception as exc:
                warnings.append(self._warn(ctx.domain, type(analyzer).__name__, exc))

        merged = self._dedupe(self._with_costs(board.proposals + gap_props, board))
        scored = [self.scorer.score(c, ctx.mode, ctx.gap_emphasis) for c in merged]
        # sorted() is stable, so equal scores keep proposal order
        scored = sorted(scored, key=lambda s: -s.score)
        limit = self.cfg.batch_size if ctx.limit is None else ctx.limit
        ranked = scored[:limit]

        if self.telemetry is not None:
            for s in ranked:
                self.telemetry.emit(CANDIDATE_PROPOSED, ctx.domain, url=s.candidate.url,
                                    kind=s.candidate.kind.value, strategy=s.candidate.strategy.value,
                                    score=s.score, confidence=s.candidate.confidence)
        logger.debug("planned %d/%d candidates for %s (%d warnings)",
                     len(ranked), len(scored), ctx.domain, len(warnings))
        return PlanResult(ranked, warnings, board)

    # -------------------------------- internals --------------------------------

    @staticmethod
    def _with_costs(cands: List[Candidate], board: Blackboard) -> List[Candidate]:
        out = []
        for c in cands:
            if c.estimated_cost_ms is None and c.domain in board.cost_estimates:
                c = c.with_overrides(estimated_cost_ms=board.cost_estimates[c.domain])
            out.append(c)
        return out

    def _dedupe(self, cands: List[Candidate]) -> List[Candidate]:
        """One entry per URL, at the position the URL was first proposed."""
        best: Dict[str, Candidate] = {}
        order: List[str] = []
        for c in cands:
            prior = best.get(c.url)
            if prior is None:
                best[c.url] = c
                order.append(c.url)
            elif self._beats(c, prior):
                best[c.url] = c
        return [best[u] for u in order]

    def _beats(self, a: Candidate, b: Candidate) -> bool:
        ba, bb = self.scorer.base_bonus(a), self.scorer.base_bonus(b)
        if ba != bb:
            return ba > bb
        ca = math.inf if a.estimated_cost_ms is None else a.estimated_cost_ms
        cb = math.inf if b.estimated_cost_ms is None else b.estimated_cost_ms
        return ca < cb

    def _warn(self, domain: str, who: str, exc: Exception) -> str:
        msg = f"{who} failed: {exc!r}"
        logger.warning("planning warning on %s: %s", domain, msg, exc_info=True)
        if self.telemetry is not None:
            self.telemetry.emit(PLANNING_WARNING, domain, source=who, error=repr(exc))
        return msg


def default_plugins(gazetteer: Gazetteer, library: PredictionLibrary, cfg: Config) -> List[ReasoningPlugin]:
    plugins: List[ReasoningPlugin] = [GazetteerReasoner(gazetteer, library, cfg), CostEstimator()]
    if cfg.follow_articles:
        plugins.append(HubArticleReasoner(cfg))
    return plugins
