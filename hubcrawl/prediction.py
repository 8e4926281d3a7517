# hubcrawl/prediction.py
"""
Prediction strategy library: turn a Target (entity or entity pair) into candidate hub URLs.

Strategies are tried in a fixed precedence and each one stamps its own confidence band:

    learned-pattern       0.60 - 0.95   templates confirmed on this domain before
    gazetteer-derived     0.50 - 0.75   codes, aliases and parent names from the gazetteer
    fallback-pattern      0.20 - 0.45   generic shapes news sites commonly use
    regional-composition  0.40 - 0.70   confirmed parent/constituent URL + child slug

Everything here is side-effect free: no network, no storage writes. The only
inputs are the target, the domain and a PredictionContext snapshot.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .config import Config
from .errors import StructuralError
from .interfaces import Gazetteer
from .models import (SLOT_NAMES, Candidate, CandidateKind, Entity, LearnedPattern,
                     Strategy, Target, code_slot, coverage_key)
from .urls import canonicalize, join_path, path_segments, slugify

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass
class PredictionContext:
    """Read-only view of what we know about one domain when predicting."""
    patterns: Mapping[CandidateKind, Sequence[LearnedPattern]] = field(default_factory=dict)
    confirmed_urls: Mapping[str, str] = field(default_factory=dict)   # coverage key -> url
    gazetteer: Optional[Gazetteer] = None
    min_pattern_successes: int = 1
    pattern_confidence_base: float = 0.6
    pattern_confidence_step: float = 0.1
    pattern_confidence_cap: float = 0.95
    scheme: str = "https"

    @classmethod
    def from_config(cls, cfg: Config, **kwargs) -> "PredictionContext":
        return cls(
            min_pattern_successes=cfg.min_pattern_successes,
            pattern_confidence_base=cfg.pattern_confidence_base,
            pattern_confidence_step=cfg.pattern_confidence_step,
            pattern_confidence_cap=cfg.pattern_confidence_cap,
            scheme=cfg.url_scheme,
            **kwargs,
        )

    def confirmed_url(self, kind: CandidateKind, entities: Tuple[Entity, ...]) -> Optional[str]:
        return self.confirmed_urls.get(coverage_key(kind, entities))

    def confirmed_place_url(self, entity: Entity) -> Optional[str]:
        return self.confirmed_url(CandidateKind.for_entity(entity.kind), (entity,))

    def lookup(self, entity_id: Optional[str]) -> Optional[Entity]:
        if not entity_id or self.gazetteer is None:
            return None
        return self.gazetteer.get(entity_id)


# ------------------------------ template helpers ------------------------------

def slot_values(kind: CandidateKind, entities: Sequence[Entity]) -> Dict[str, str]:
    """{slug}/{code} for single kinds, {place}/{place_code}/{topic}... for pairs."""
    values: Dict[str, str] = {}
    for slot, entity in zip(SLOT_NAMES.get(kind, ()), entities):
        values[slot] = entity.slug
        if entity.code:
            values[code_slot(slot)] = entity.code.lower()
    return values


def render_template(template: str, values: Mapping[str, str]) -> Optional[str]:
    """Fill placeholders; None if the template needs a value we don't have."""
    missing = False

    def sub(m):
        nonlocal missing
        v = values.get(m.group(1))
        if not v:
            missing = True
            return ""
        return v

    path = _PLACEHOLDER.sub(sub, template)
    return None if missing else path


def _scaled(low: float, high: float, importance: float) -> float:
    """Map importance 0..100 linearly into a confidence band."""
    frac = min(max(importance, 0.0), 100.0) / 100.0
    return round(low + (high - low) * frac, 4)


# ---------------------------------- strategies --------------------------------

class PredictionStrategy:
    """Base: subclasses set `strategy`, `source` and implement paths()."""
    strategy: Strategy
    source: str

    def propose(self, target: Target, domain: str, ctx: PredictionContext) -> List[Candidate]:
        out = []
        for path_or_url, confidence, note in self.paths(target, ctx):
            url = path_or_url if "://" in path_or_url else join_path(domain, path_or_url, ctx.scheme)
            try:
                url = canonicalize(url)
            except StructuralError:
                logger.debug("%s produced malformed url %r", self.strategy.value, url)
                continue
            out.append(Candidate(
                url=url,
                entities=target.entities,
                kind=target.kind,
                strategy=self.strategy,
                confidence=confidence,
                source=self.source,
                importance=target.importance,
                domain=domain,
                reason=note,
            ))
        return out

    def paths(self, target: Target, ctx: PredictionContext) -> List[Tuple[str, float, str]]:
        raise NotImplementedError


class LearnedPatternStrategy(PredictionStrategy):
    strategy = Strategy.LEARNED_PATTERN
    source = "pattern-match"

    def paths(self, target, ctx):
        patterns = [
            p for p in ctx.patterns.get(target.kind, ())
            if p.success_count >= ctx.min_pattern_successes and not p.superseded_by
        ]
        patterns.sort(key=lambda p: (-p.average_yield, -p.success_count, p.template))
        values = slot_values(target.kind, target.entities)
        out = []
        for p in patterns:
            path = render_template(p.template, values)
            if path is None:
                continue
            conf = min(ctx.pattern_confidence_cap,
                       ctx.pattern_confidence_base + ctx.pattern_confidence_step * p.success_count)
            out.append((path, round(conf, 4), f"learned template {p.template} ({p.success_count} hits)"))
        return out


class GazetteerStrategy(PredictionStrategy):
    """Shapes built from what the gazetteer knows beyond the name: codes, aliases, parents."""
    strategy = Strategy.GAZETTEER_DERIVED
    source = "gazetteer-seed"

    TEMPLATES: Dict[CandidateKind, Tuple[str, ...]] = {
        CandidateKind.COUNTRY_HUB: ("/world/{code}", "/{code}", "/news/world/{slug}"),
        CandidateKind.REGION_HUB: ("/{parent_code}/{slug}", "/{parent}/{slug}", "/news/{parent}/{slug}"),
        CandidateKind.CITY_HUB: ("/{parent}/{slug}", "/local/{slug}"),
        CandidateKind.TOPIC_HUB: ("/news/{slug}",),
        CandidateKind.PLACE_TOPIC_HUB: ("/{place_code}/{topic}", "/{topic}/{place_code}"),
        CandidateKind.HIERARCHICAL_PLACE_HUB: ("/{parent_code}/{child}",),
        CandidateKind.CROSS_PLACE_HUB: ("/world/{a_code}-{b_code}",),
    }
    ALIAS_TEMPLATES: Dict[CandidateKind, Tuple[str, ...]] = {
        CandidateKind.COUNTRY_HUB: ("/world/{alias}",),
        CandidateKind.REGION_HUB: ("/{alias}",),
        CandidateKind.CITY_HUB: ("/{alias}",),
        CandidateKind.TOPIC_HUB: ("/{alias}",),
    }
    BAND = (0.5, 0.75)

    def paths(self, target, ctx):
        values = slot_values(target.kind, target.entities)
        if len(target.entities) == 1:
            parent = ctx.lookup(target.entities[0].parent_id)
            if parent is not None:
                values["parent"] = parent.slug
                if parent.code:
                    values["parent_code"] = parent.code.lower()
        conf = _scaled(*self.BAND, target.importance)
        out = []
        for tpl in self.TEMPLATES.get(target.kind, ()):
            path = render_template(tpl, values)
            if path is not None:
                out.append((path, conf, f"gazetteer shape {tpl}"))
        if len(target.entities) == 1:
            for alias in target.entities[0].aliases:
                for tpl in self.ALIAS_TEMPLATES.get(target.kind, ()):
                    path = render_template(tpl, {"alias": slugify(alias)})
                    if path is not None:
                        out.append((path, round(conf - 0.05, 4), f"alias {alias!r}"))
        return out


class FallbackStrategy(PredictionStrategy):
    strategy = Strategy.FALLBACK_PATTERN
    source = "speculative"

    TEMPLATES: Dict[CandidateKind, Tuple[str, ...]] = {
        CandidateKind.COUNTRY_HUB: ("/world/{slug}", "/international/{slug}", "/{slug}"),
        CandidateKind.REGION_HUB: ("/{slug}", "/region/{slug}", "/news/{slug}"),
        CandidateKind.CITY_HUB: ("/{slug}", "/city/{slug}", "/cities/{slug}"),
        CandidateKind.TOPIC_HUB: ("/{slug}", "/topics/{slug}", "/topic/{slug}", "/section/{slug}"),
        CandidateKind.PLACE_TOPIC_HUB: ("/world/{place}/{topic}", "/{place}/{topic}", "/{topic}/{place}"),
        CandidateKind.HIERARCHICAL_PLACE_HUB: ("/{parent}/{child}", "/world/{parent}/{child}"),
        CandidateKind.CROSS_PLACE_HUB: ("/world/{a}-{b}", "/{a}/{b}"),
    }
    BAND = (0.2, 0.45)

    def paths(self, target, ctx):
        values = slot_values(target.kind, target.entities)
        top = _scaled(*self.BAND, target.importance)
        out = []
        # Earlier templates are the more common shapes; shave a little off each later one.
        for i, tpl in enumerate(self.TEMPLATES.get(target.kind, ())):
            path = render_template(tpl, values)
            if path is not None:
                out.append((path, round(max(self.BAND[0], top - 0.02 * i), 4), f"fallback {tpl}"))
        return out


class RegionalCompositionStrategy(PredictionStrategy):
    """Join an already-confirmed hub URL with the other entity's slug."""
    strategy = Strategy.REGIONAL_COMPOSITION
    source = "hierarchy"
    BAND = (0.4, 0.7)

    def paths(self, target, ctx):
        conf = _scaled(*self.BAND, target.importance)
        out = []
        for anchor, child in self._anchors(target, ctx):
            url = ctx.confirmed_place_url(anchor)
            if url:
                out.append((url.rstrip("/") + "/" + child.slug, conf, f"composed under {url}"))
        return out

    def _anchors(self, target, ctx) -> List[Tuple[Entity, Entity]]:
        ents = target.entities
        if target.kind is CandidateKind.HIERARCHICAL_PLACE_HUB:
            return [(ents[0], ents[1])]
        if target.kind in (CandidateKind.PLACE_TOPIC_HUB, CandidateKind.CROSS_PLACE_HUB):
            return [(ents[0], ents[1]), (ents[1], ents[0])]
        if target.kind in (CandidateKind.REGION_HUB, CandidateKind.CITY_HUB):
            parent = ctx.lookup(ents[0].parent_id)
            return [(parent, ents[0])] if parent is not None else []
        return []


DEFAULT_STRATEGIES: Tuple[type, ...] = (
    LearnedPatternStrategy,
    GazetteerStrategy,
    FallbackStrategy,
    RegionalCompositionStrategy,
)


class PredictionLibrary:
    def __init__(self, strategies: Optional[Sequence[PredictionStrategy]] = None):
        self.strategies = list(strategies) if strategies is not None else [s() for s in DEFAULT_STRATEGIES]

    def generate(self, target: Target, domain: str, ctx: PredictionContext) -> List[Candidate]:
        """Candidates for `target` in strategy precedence order, first URL wins on duplicates."""
        out: List[Candidate] = []
        seen = set()
        for strat in self.strategies:
            try:
                proposals = strat.propose(target, domain, ctx)
            except Exception:
                logger.warning("prediction strategy %s failed for %s on %s",
                               type(strat).__name__, target.key, domain, exc_info=True)
                continue
            for c in proposals:
                if c.url not in seen:
                    seen.add(c.url)
                    out.append(c)
        return out

    def predict_siblings(self, known_url: str, known: Entity, siblings: Sequence[Entity],
                         domain: str, kind: Optional[CandidateKind] = None) -> List[Candidate]:
        """
        /world/france confirmed -> /world/germany, /world/spain, ...

        The segment naming `known` (by slug, code or alias) is swapped for each
        sibling; code segments get the sibling's code when it has one.
        """
        kind = kind or CandidateKind.for_entity(known.kind)
        segments = path_segments(known_url)
        tokens = known.tokens()
        code = known.code.lower() if known.code else None
        idx = next((i for i, s in enumerate(segments) if s in tokens), None)
        if idx is None:
            return []
        used_code = code is not None and segments[idx] == code
        prefix = known_url.split("://", 1)[0]
        out = []
        for sib in siblings:
            if sib.id == known.id:
                continue
            replacement = sib.code.lower() if used_code and sib.code else sib.slug
            new_segments = list(segments)
            new_segments[idx] = replacement
            try:
                url = canonicalize(f"{prefix}://{domain}/" + "/".join(new_segments))
            except StructuralError:
                continue
            out.append(Candidate(
                url=url,
                entities=(sib,),
                kind=kind,
                strategy=Strategy.SIBLING_PATTERN,
                confidence=_scaled(0.7, 0.9, sib.importance),
                source="adaptive-seed",
                importance=sib.importance,
                domain=domain,
                reason=f"sibling of {known_url}",
            ))
        return out
