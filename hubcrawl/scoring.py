# hubcrawl/scoring.py
"""
Priority scoring. Higher score = dispatched sooner.

    score = base bonus (by source label)
          + cost adjustment      within ±10% of the base bonus
          + gap-fill boost       fixed, for gaps on high-importance entities
    then the mode override:
          exclusive-hub-focus    hubs shifted into [floor, ceiling], non-hub work capped below floor

Cost adjustment (boundaries: inclusive-fast, exclusive-slow):

    cost <= 100ms   +fraction * base * (1 - cost/100)      (+10% at 0ms, 0 at exactly 100ms)
    100 < cost <= 500   0
    cost > 500ms    -fraction * base * min((cost-500)/500, 1)

score() is a pure function of (candidate, mode, gap emphasis, cost): no clocks,
no counters, so the same inputs always rank the same way.
"""

import math
from typing import Optional

from .config import Config
from .models import BehavioralProgress, Candidate, Mode, ScoredCandidate


class PriorityScorer:
    def __init__(self, cfg: Config):
        self.cfg = cfg

    def base_bonus(self, candidate: Candidate) -> float:
        return self.cfg.bonus_for(candidate.source)

    def cost_adjustment(self, base: float, cost_ms: Optional[float]) -> float:
        if cost_ms is None or math.isnan(cost_ms):
            return 0.0
        cost = max(cost_ms, 0.0)
        scale = abs(base) * self.cfg.cost_adjust_fraction
        fast, slow = self.cfg.fast_cost_ms, self.cfg.slow_cost_ms
        if cost <= fast:
            return scale * (1.0 - cost / fast) if fast > 0 else scale
        if cost > slow:
            over = (cost - slow) / slow if slow > 0 else 1.0
            return -scale * min(over, 1.0)
        return 0.0

    def gap_boost(self, candidate: Candidate, gap_emphasis: bool = False) -> float:
        if not candidate.gap_fill or candidate.importance < self.cfg.high_importance_threshold:
            return 0.0
        return self.cfg.gap_fill_boost * (2.0 if gap_emphasis else 1.0)

    def score(self, candidate: Candidate, mode: Mode = Mode.NORMAL, gap_emphasis: bool = False,
              cost_ms: Optional[float] = None) -> ScoredCandidate:
        cost = candidate.estimated_cost_ms if cost_ms is None else cost_ms
        base = self.base_bonus(candidate)
        adj = self.cost_adjustment(base, cost)
        boost = self.gap_boost(candidate, gap_emphasis)
        raw = base + adj + boost
        return ScoredCandidate(candidate, self._apply_mode(raw, candidate, mode), base, adj, boost)

    def _apply_mode(self, raw: float, candidate: Candidate, mode: Mode) -> float:
        if mode is not Mode.EXCLUSIVE_HUB_FOCUS:
            return raw
        floor, ceiling = self.cfg.focus_band_floor, self.cfg.focus_band_ceiling
        if candidate.kind.is_hub:
            return floor + min(max(raw, 0.0), ceiling - floor)
        return min(raw, floor - 1.0)

    def should_emphasize_gaps(self, progress: BehavioralProgress) -> bool:
        """Plenty of attempts but few confirmations: lean harder on gap filling."""
        attempts = progress.attempts
        if attempts < self.cfg.gap_emphasis_min_attempts:
            return False
        return progress.confirmed / attempts < self.cfg.gap_emphasis_ratio
