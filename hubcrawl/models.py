# hubcrawl/models.py
"""
Value types shared by every component.

Entities are reference data (frozen). Candidates live for one planning cycle.
Learned patterns and hub records are what we persist through the storage layer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from .urls import slugify


class EntityKind(str, Enum):
    COUNTRY = "country"
    REGION = "region"
    CITY = "city"
    TOPIC = "topic"


class CandidateKind(str, Enum):
    COUNTRY_HUB = "country-hub"
    REGION_HUB = "region-hub"
    CITY_HUB = "city-hub"
    TOPIC_HUB = "topic-hub"
    PLACE_TOPIC_HUB = "place-topic-hub"
    HIERARCHICAL_PLACE_HUB = "hierarchical-place-hub"
    CROSS_PLACE_HUB = "cross-place-hub"
    # Not a hub: an article surfaced by a confirmed hub, queued for indexing.
    ARTICLE = "article"

    @property
    def is_hub(self) -> bool:
        return self is not CandidateKind.ARTICLE

    @property
    def is_composite(self) -> bool:
        return self in COMPOSITE_KINDS

    @classmethod
    def for_entity(cls, kind: EntityKind) -> "CandidateKind":
        return _SINGLE_KIND_FOR_ENTITY[kind]


COMPOSITE_KINDS = frozenset({
    CandidateKind.PLACE_TOPIC_HUB,
    CandidateKind.HIERARCHICAL_PLACE_HUB,
    CandidateKind.CROSS_PLACE_HUB,
})

_SINGLE_KIND_FOR_ENTITY = {
    EntityKind.COUNTRY: CandidateKind.COUNTRY_HUB,
    EntityKind.REGION: CandidateKind.REGION_HUB,
    EntityKind.CITY: CandidateKind.CITY_HUB,
    EntityKind.TOPIC: CandidateKind.TOPIC_HUB,
}

# Placeholder names used in URL templates, one per entity position.
SLOT_NAMES: Dict[CandidateKind, Tuple[str, ...]] = {
    CandidateKind.COUNTRY_HUB: ("slug",),
    CandidateKind.REGION_HUB: ("slug",),
    CandidateKind.CITY_HUB: ("slug",),
    CandidateKind.TOPIC_HUB: ("slug",),
    CandidateKind.PLACE_TOPIC_HUB: ("place", "topic"),
    CandidateKind.HIERARCHICAL_PLACE_HUB: ("parent", "child"),
    CandidateKind.CROSS_PLACE_HUB: ("a", "b"),
}


def code_slot(slot: str) -> str:
    """Placeholder name for an entity's short code: slug -> code, place -> place_code."""
    return "code" if slot == "slug" else f"{slot}_code"


class Strategy(str, Enum):
    LEARNED_PATTERN = "learned-pattern"
    GAZETTEER_DERIVED = "gazetteer-derived"
    FALLBACK_PATTERN = "fallback-pattern"
    REGIONAL_COMPOSITION = "regional-composition"
    SIBLING_PATTERN = "sibling-pattern"
    HUB_ARTICLE = "hub-article"


class Verdict(str, Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    INCONCLUSIVE = "inconclusive"


class ValidationState(str, Enum):
    PENDING = "pending"
    FETCHED = "fetched"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    INCONCLUSIVE = "inconclusive"


class Mode(str, Enum):
    NORMAL = "normal"
    EXCLUSIVE_HUB_FOCUS = "exclusive-hub-focus"


class Phase(str, Enum):
    DISCOVERY = "discovery"
    VALIDATION = "validation"
    INDEXING = "indexing"
    COMPLETION = "completion"


class LifecycleState(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    PAUSED = "paused"
    DRAINING = "draining"
    ABORTING = "aborting"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Entity:
    kind: EntityKind
    id: str
    name: str
    importance: float = 0.0
    parent_id: Optional[str] = None
    aliases: Tuple[str, ...] = ()
    code: Optional[str] = None
    domain_hints: Tuple[str, ...] = ()

    @property
    def slug(self) -> str:
        return slugify(self.name)

    def tokens(self) -> Tuple[str, ...]:
        """Every slug-form string a URL segment may use for this entity."""
        out: List[str] = [self.slug]
        if self.code:
            out.append(self.code.lower())
        out.extend(slugify(a) for a in self.aliases)
        seen, tokens = set(), []
        for t in out:
            if t and t not in seen:
                seen.add(t)
                tokens.append(t)
        return tuple(tokens)

    def names(self) -> Tuple[str, ...]:
        """Display name plus aliases, lowercased, for text matching."""
        return tuple(n.lower() for n in (self.name,) + tuple(self.aliases) if n)


def coverage_key(kind: CandidateKind, entities: Tuple[Entity, ...]) -> str:
    """
    Stable identifier of what a hub covers, e.g. 'country-hub:fr' or
    'cross-place-hub:de+fr'. Cross-place pairs are unordered.
    """
    ids = [e.id for e in entities]
    if kind is CandidateKind.CROSS_PLACE_HUB:
        ids = sorted(ids)
    return f"{kind.value}:{'+'.join(ids)}"


@dataclass(frozen=True)
class Target:
    """What we want a hub for: one entity, or an ordered pair for composite kinds."""
    kind: CandidateKind
    entities: Tuple[Entity, ...]
    importance: float = 0.0

    @property
    def key(self) -> str:
        return coverage_key(self.kind, self.entities)

    @property
    def label(self) -> str:
        return "+".join(e.id for e in self.entities)


@dataclass
class Candidate:
    url: str
    entities: Tuple[Entity, ...]
    kind: CandidateKind
    strategy: Strategy
    confidence: float
    source: str
    estimated_cost_ms: Optional[float] = None
    gap_fill: bool = False
    importance: float = 0.0
    domain: str = ""
    reason: str = ""

    @property
    def coverage_key(self) -> str:
        return coverage_key(self.kind, self.entities)

    def with_overrides(self, **kwargs) -> "Candidate":
        return replace(self, **kwargs)


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: Candidate
    score: float
    base_bonus: float
    cost_adjustment: float
    gap_boost: float


@dataclass
class LearnedPattern:
    domain: str
    kind: CandidateKind
    template: str
    success_count: int = 0
    average_yield: float = 0.0
    last_updated: float = 0.0
    # url -> articles discovered on that hub; makes re-observation idempotent
    yields: Dict[str, float] = field(default_factory=dict)
    superseded_by: Optional[str] = None

    def record(self, url: str, articles: float, now: Optional[float] = None) -> bool:
        """Fold one confirmed hub into this pattern. Returns False if nothing changed."""
        if self.yields.get(url) == articles:
            return False
        self.yields[url] = articles
        self.success_count = len(self.yields)
        self.average_yield = sum(self.yields.values()) / self.success_count
        self.last_updated = time.time() if now is None else now
        return True

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "kind": self.kind.value,
            "template": self.template,
            "success_count": self.success_count,
            "average_yield": self.average_yield,
            "last_updated": self.last_updated,
            "yields": dict(self.yields),
            "superseded_by": self.superseded_by,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "LearnedPattern":
        return cls(
            domain=d["domain"],
            kind=CandidateKind(d["kind"]),
            template=d["template"],
            success_count=int(d.get("success_count", 0)),
            average_yield=float(d.get("average_yield", 0.0)),
            last_updated=float(d.get("last_updated", 0.0)),
            yields={k: float(v) for k, v in (d.get("yields") or {}).items()},
            superseded_by=d.get("superseded_by"),
        )


@dataclass
class HubRecord:
    url: str
    domain: str
    entity_ids: Tuple[str, ...]
    kind: CandidateKind
    verdict: Verdict
    article_urls: FrozenSet[str] = frozenset()
    visited_at: float = 0.0
    visits: int = 1
    evidence: Dict[str, object] = field(default_factory=dict)

    @property
    def coverage_key(self) -> str:
        ids = list(self.entity_ids)
        if self.kind is CandidateKind.CROSS_PLACE_HUB:
            ids = sorted(ids)
        return f"{self.kind.value}:{'+'.join(ids)}"

    def merged_with(self, newer: "HubRecord") -> "HubRecord":
        """Revisit: newest verdict and evidence win, article URLs accumulate."""
        return replace(
            newer,
            article_urls=self.article_urls | newer.article_urls,
            visits=self.visits + 1,
        )

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "domain": self.domain,
            "entity_ids": list(self.entity_ids),
            "kind": self.kind.value,
            "verdict": self.verdict.value,
            "article_urls": sorted(self.article_urls),
            "visited_at": self.visited_at,
            "visits": self.visits,
            "evidence": self.evidence,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "HubRecord":
        return cls(
            url=d["url"],
            domain=d["domain"],
            entity_ids=tuple(d.get("entity_ids") or ()),
            kind=CandidateKind(d["kind"]),
            verdict=Verdict(d["verdict"]),
            article_urls=frozenset(d.get("article_urls") or ()),
            visited_at=float(d.get("visited_at", 0.0)),
            visits=int(d.get("visits", 1)),
            evidence=dict(d.get("evidence") or {}),
        )


@dataclass
class BehavioralProgress:
    """Per-run counters. Written only by the controller's outcome path."""
    entities_discovered: int = 0
    entities_validated: int = 0
    articles_surfaced: int = 0
    articles_indexed: int = 0
    confirmed: int = 0
    rejected: int = 0
    inconclusive: int = 0
    fetches: int = 0
    phase: Phase = Phase.DISCOVERY

    @property
    def attempts(self) -> int:
        return self.confirmed + self.rejected + self.inconclusive

    def reset(self) -> None:
        self.__init__()

    def snapshot(self) -> dict:
        return {
            "entities_discovered": self.entities_discovered,
            "entities_validated": self.entities_validated,
            "articles_surfaced": self.articles_surfaced,
            "articles_indexed": self.articles_indexed,
            "confirmed": self.confirmed,
            "rejected": self.rejected,
            "inconclusive": self.inconclusive,
            "fetches": self.fetches,
            "phase": self.phase.value,
        }
