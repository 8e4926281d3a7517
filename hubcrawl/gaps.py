# hubcrawl/gaps.py
"""
Gap analyzers: what should exist on a domain (per the gazetteer) but has no confirmed hub yet.

One analyzer per hub kind:

    CountryGapAnalyzer, RegionGapAnalyzer, CityGapAnalyzer, TopicGapAnalyzer
        single-entity gaps, one per ranked entity
    PlaceTopicGapAnalyzer
        (country, topic) pairs
    HierarchicalPlaceGapAnalyzer
        (parent place, child place) pairs, e.g. (us, california)
    CrossPlaceGapAnalyzer
        (country, country) pairs, e.g. us-china

Composite pairs are only listed once one member already has a confirmed hub:
composition needs an anchor, and without one the pair space is just noise.

Ordering is importance descending, then coverage key ascending, so two runs over
the same inputs list gaps identically.
"""

from __future__ import annotations

import itertools
import logging
from typing import AbstractSet, Iterable, List, Optional, Sequence

from .config import Config
from .gazetteer import SEED_ENTITIES
from .interfaces import Gazetteer
from .models import Candidate, CandidateKind, Entity, EntityKind, Target, coverage_key
from .prediction import PredictionContext, PredictionLibrary

logger = logging.getLogger(__name__)


class GapAnalyzer:
    kind: CandidateKind

    def __init__(self, gazetteer: Gazetteer, library: PredictionLibrary, cfg: Config):
        self.gazetteer = gazetteer
        self.library = library
        self.cfg = cfg

    # ---------------------------------- public ---------------------------------

    def find_gaps(self, domain: str, confirmed: AbstractSet[str]) -> List[Target]:
        gaps = [t for t in self._targets(domain, confirmed) if t.key not in confirmed]
        gaps.sort(key=lambda t: (-t.importance, t.key))
        return gaps

    def propose_for_gaps(self, gaps: Sequence[Target], domain: str, ctx: PredictionContext,
                         exclude: AbstractSet[str] = frozenset(),
                         busy: AbstractSet[str] = frozenset(),
                         limit: Optional[int] = None) -> List[Candidate]:
        """
        One candidate per gap: the most confident predicted URL not tried yet this run.
        Gaps with a candidate already queued or in flight (`busy`) are skipped.
        """
        limit = self.cfg.max_candidates_per_cycle if limit is None else limit
        out: List[Candidate] = []
        for gap in gaps:
            if len(out) >= limit:
                break
            if gap.key in busy:
                continue
            options = [c for c in self.library.generate(gap, domain, ctx) if c.url not in exclude]
            if not options:
                continue
            # max() keeps the first of equals, i.e. strategy precedence breaks ties
            best = max(options, key=lambda c: c.confidence)
            out.append(best.with_overrides(gap_fill=True))
        return out

    # -------------------------------- internals --------------------------------

    def _targets(self, domain: str, confirmed: AbstractSet[str]) -> Iterable[Target]:
        raise NotImplementedError

    def _ranked(self, kind: EntityKind, domain: str) -> List[Entity]:
        """Importance-ranked entities of `kind`; seed list on a domain nothing is ranked for."""
        ranked = self._ranked_only(kind, domain)
        if ranked or not self._is_new_domain(domain):
            return ranked
        seeds = [e for e in SEED_ENTITIES if e.kind is kind]
        if seeds:
            logger.info("no ranked entities for %s; using %d %s seeds", domain, len(seeds), kind.value)
        return seeds

    def _ranked_only(self, kind: EntityKind, domain: str) -> List[Entity]:
        ents = [e for e in self.gazetteer.list_entities(kind, (domain,))
                if self.gazetteer.importance_rank(e) > 0]
        ents.sort(key=lambda e: (-self.gazetteer.importance_rank(e), e.id))
        return ents

    def _is_new_domain(self, domain: str) -> bool:
        return not any(self._ranked_only(k, domain) for k in EntityKind)

    def _importance(self, entity: Entity) -> float:
        if self.gazetteer.get(entity.id) is None:
            return entity.importance     # seed entity
        return self.gazetteer.importance_rank(entity)

    def _single_hub_confirmed(self, entity: Entity, confirmed: AbstractSet[str]) -> bool:
        return coverage_key(CandidateKind.for_entity(entity.kind), (entity,)) in confirmed


class _SingleEntityGapAnalyzer(GapAnalyzer):
    entity_kind: EntityKind

    def _targets(self, domain, confirmed):
        for e in self._ranked(self.entity_kind, domain):
            yield Target(self.kind, (e,), self._importance(e))


class CountryGapAnalyzer(_SingleEntityGapAnalyzer):
    kind = CandidateKind.COUNTRY_HUB
    entity_kind = EntityKind.COUNTRY


class RegionGapAnalyzer(_SingleEntityGapAnalyzer):
    kind = CandidateKind.REGION_HUB
    entity_kind = EntityKind.REGION


class CityGapAnalyzer(_SingleEntityGapAnalyzer):
    kind = CandidateKind.CITY_HUB
    entity_kind = EntityKind.CITY


class TopicGapAnalyzer(_SingleEntityGapAnalyzer):
    kind = CandidateKind.TOPIC_HUB
    entity_kind = EntityKind.TOPIC


class PlaceTopicGapAnalyzer(GapAnalyzer):
    kind = CandidateKind.PLACE_TOPIC_HUB

    def _targets(self, domain, confirmed):
        places = self._ranked(EntityKind.COUNTRY, domain)[: self.cfg.composite_place_limit]
        topics = self._ranked(EntityKind.TOPIC, domain)[: self.cfg.composite_topic_limit]
        for place, topic in itertools.product(places, topics):
            if self._single_hub_confirmed(place, confirmed) or self._single_hub_confirmed(topic, confirmed):
                imp = (self._importance(place) + self._importance(topic)) / 2.0
                yield Target(self.kind, (place, topic), imp)


class HierarchicalPlaceGapAnalyzer(GapAnalyzer):
    kind = CandidateKind.HIERARCHICAL_PLACE_HUB

    def _targets(self, domain, confirmed):
        parents = self._ranked(EntityKind.COUNTRY, domain) + self._ranked(EntityKind.REGION, domain)
        for parent in parents:
            if not self._single_hub_confirmed(parent, confirmed):
                continue
            for child in self.gazetteer.children(parent.id):
                if child.kind in (EntityKind.REGION, EntityKind.CITY) and self._importance(child) > 0:
                    yield Target(self.kind, (parent, child), self._importance(child))


class CrossPlaceGapAnalyzer(GapAnalyzer):
    kind = CandidateKind.CROSS_PLACE_HUB

    def _targets(self, domain, confirmed):
        countries = self._ranked(EntityKind.COUNTRY, domain)[: self.cfg.composite_place_limit]
        # countries are importance-ordered, so `a` is always the more important one
        for a, b in itertools.combinations(countries, 2):
            if self._single_hub_confirmed(a, confirmed) or self._single_hub_confirmed(b, confirmed):
                yield Target(self.kind, (a, b), min(self._importance(a), self._importance(b)))


DEFAULT_ANALYZERS = (
    CountryGapAnalyzer,
    RegionGapAnalyzer,
    CityGapAnalyzer,
    TopicGapAnalyzer,
    PlaceTopicGapAnalyzer,
    HierarchicalPlaceGapAnalyzer,
    CrossPlaceGapAnalyzer,
)


def default_analyzers(gazetteer: Gazetteer, library: PredictionLibrary, cfg: Config) -> List[GapAnalyzer]:
    return [cls(gazetteer, library, cfg) for cls in DEFAULT_ANALYZERS]
