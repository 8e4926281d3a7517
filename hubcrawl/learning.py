# hubcrawl/learning.py
"""
Pattern discovery: learn per-domain URL templates from confirmed hubs.

A confirmed hub at https://news.example.com/world/france for entity France
becomes the template "/world/{slug}" for (news.example.com, country-hub).
Templates only ever grow: rejections are counted but never subtract from a
template, because one bad instance says little about the shape.

Called from the controller's outcome path only, so no locking.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from .interfaces import Storage, TelemetrySink
from .models import SLOT_NAMES, CandidateKind, Entity, LearnedPattern, Strategy, Verdict, code_slot
from .telemetry import PATTERN_LEARNED
from .urls import path_segments

logger = logging.getLogger(__name__)


def _placeholder_for(segment: str, slot: str, entity: Entity) -> Optional[str]:
    if segment == entity.slug:
        return "{%s}" % slot
    if entity.code and segment == entity.code.lower():
        return "{%s}" % code_slot(slot)
    return None


def _variants(slot: str, entity: Entity) -> List[Tuple[str, str]]:
    out = [(entity.slug, "{%s}" % slot)]
    if entity.code:
        out.append((entity.code.lower(), "{%s}" % code_slot(slot)))
    return out


def _joined_placeholder(segment: str, slots: Sequence[str], entities: Sequence[Entity]) -> Optional[str]:
    """'us-china' -> '{a_code}-{b}' style templates for pairs named in one segment."""
    first = _variants(slots[0], entities[0])
    second = _variants(slots[1], entities[1])
    for a, pa in first:
        for b, pb in second:
            if segment == f"{a}-{b}":
                return f"{pa}-{pb}"
            if segment == f"{b}-{a}":
                return f"{pb}-{pa}"
    return None


def extract_template(url: str, kind: CandidateKind, entities: Sequence[Entity]) -> Optional[str]:
    """
    Replace the entity-specific path segments of `url` with placeholders.

    Returns None when some entity cannot be located in the path: a template we
    cannot fill back in is worse than no template.
    """
    segments = path_segments(url)
    slots = SLOT_NAMES.get(kind)
    if not segments or not slots or len(slots) != len(entities):
        return None
    out = list(segments)
    matched = [False] * len(entities)
    for i, seg in enumerate(segments):
        for j, (slot, ent) in enumerate(zip(slots, entities)):
            if matched[j]:
                continue
            ph = _placeholder_for(seg, slot, ent)
            if ph:
                out[i] = ph
                matched[j] = True
                break
        else:
            if len(entities) == 2 and not any(matched):
                ph = _joined_placeholder(seg, slots, entities)
                if ph:
                    out[i] = ph
                    matched = [True, True]
    if not all(matched):
        return None
    return "/" + "/".join(out)


class PatternLearner:
    def __init__(self, storage: Storage, telemetry: Optional[TelemetrySink] = None,
                 min_successes: int = 1):
        self.storage = storage
        self.telemetry = telemetry
        self.min_successes = min_successes
        self.rejections: Counter = Counter()
        self._strategy_outcomes: Dict[str, Counter] = defaultdict(Counter)

    def observe(self, domain: str, kind: CandidateKind, url: str, outcome: Verdict,
                entities: Sequence[Entity] = (), articles: float = 0.0,
                structural: bool = False) -> Optional[LearnedPattern]:
        """
        Fold one validated fetch into the pattern store.

        Returns the pattern that changed, or None. Re-observing the same
        confirmed (domain, url) with the same yield changes nothing.
        """
        if outcome is Verdict.REJECTED:
            self.rejections[(domain, kind)] += 1
            if structural:
                logger.info("structural rejection for %s (%s); not learning from it", url, kind.value)
            return None
        if outcome is not Verdict.CONFIRMED or not kind.is_hub:
            return None

        template = extract_template(url, kind, entities)
        if template is None:
            logger.debug("no generalizable template in %s for %s", url, [e.id for e in entities])
            return None

        patterns = {p.template: p for p in self.storage.get_learned_patterns(domain, kind)}
        pattern = patterns.get(template)
        created = pattern is None
        if created:
            pattern = LearnedPattern(domain=domain, kind=kind, template=template)
            patterns[template] = pattern
        if not pattern.record(url, float(articles)):
            return None

        for p in self._resolve_supersession(patterns.values()):
            self.storage.put_learned_pattern(p)
        self.storage.put_learned_pattern(pattern)

        logger.info("%s pattern %s for %s/%s (hits=%d, yield=%.1f)",
                    "learned" if created else "reinforced", template, domain, kind.value,
                    pattern.success_count, pattern.average_yield)
        if self.telemetry is not None:
            self.telemetry.emit(PATTERN_LEARNED, domain, template=template, kind=kind.value,
                                success_count=pattern.success_count,
                                average_yield=pattern.average_yield, created=created)
        return pattern

    def _resolve_supersession(self, patterns) -> List[LearnedPattern]:
        """Mark lower-yield templates superseded by the best established one; return those changed."""
        established = [p for p in patterns if p.success_count >= self.min_successes]
        if not established:
            return []
        best = max(established, key=lambda p: (p.average_yield, p.success_count, p.template))
        changed = []
        for p in patterns:
            target = None
            if p is not best and p.average_yield < best.average_yield:
                target = best.template
            if p.superseded_by != target:
                p.superseded_by = target
                changed.append(p)
        return changed

    # ---------------------------- strategy telemetry ----------------------------

    def record_prediction_outcome(self, strategy: Strategy, outcome: Verdict) -> None:
        self._strategy_outcomes[strategy.value][outcome.value] += 1

    def strategy_stats(self) -> Dict[str, Dict[str, float]]:
        """Hit/miss counts and accuracy per generating strategy."""
        out = {}
        for name, counts in sorted(self._strategy_outcomes.items()):
            total = sum(counts.values())
            hits = counts[Verdict.CONFIRMED.value]
            out[name] = {
                "total": total,
                "hits": hits,
                "misses": counts[Verdict.REJECTED.value],
                "inconclusive": counts[Verdict.INCONCLUSIVE.value],
                "accuracy": hits / total if total else 0.0,
            }
        return out
