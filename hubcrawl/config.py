# hubcrawl/config.py
"""
Central configuration for the hub crawler.
Keep policy and tunables here so the engine classes stay lean.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Set

from .urls import DEFAULT_DISALLOWED_EXT

# Base bonus per source label. Higher scores are dispatched first.
DEFAULT_SOURCE_BONUSES: Dict[str, float] = {
    "pattern-match": 20.0,      # learned template for this domain/kind
    "adaptive-seed": 14.0,      # sibling of a confirmed hub
    "gazetteer-seed": 12.0,     # shape derived from gazetteer names/codes
    "hierarchy": 10.0,          # child/pair composed from a confirmed parent URL
    "article-from-hub": 8.0,    # article surfaced by a confirmed hub
    "speculative": 6.0,         # generic fallback template
    "link": 2.0,
}


@dataclass(frozen=True)
class Config:
    # Identity and politeness
    user_agent: str = "hubcrawl/0.1 (+https://example.org/hubcrawl)"
    respect_robots: bool = True
    fetch_timeout_sec: float = 10.0
    min_domain_interval_sec: float = 1.0

    # Concurrency and frontier
    max_in_flight: int = 4
    frontier_capacity: int = 500
    frontier_low_watermark: int = 10
    idle_poll_sec: float = 0.05

    # Crawl limits
    max_fetches: int = 1000

    # Planning
    plan_batch_size: Optional[int] = None   # None -> frontier_capacity
    max_candidates_per_cycle: int = 50
    min_pattern_successes: int = 1
    composite_place_limit: int = 10
    composite_topic_limit: int = 8
    sibling_limit: int = 10
    url_scheme: str = "https"

    # Scoring
    source_bonuses: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SOURCE_BONUSES))
    default_source_bonus: float = 2.0
    gap_fill_boost: float = 5.0
    high_importance_threshold: float = 50.0
    cost_adjust_fraction: float = 0.1
    fast_cost_ms: float = 100.0
    slow_cost_ms: float = 500.0
    focus_band_floor: float = 100.0
    focus_band_ceiling: float = 150.0
    # Gap emphasis kicks in once enough attempts failed to confirm anything new
    gap_emphasis_min_attempts: int = 10
    gap_emphasis_ratio: float = 0.25

    # Validation
    html_mime_prefix: str = "text/html"
    max_html_bytes: int = 512 * 1024
    min_hub_article_links: int = 5
    article_min_words: int = 350
    max_transient_retries: int = 2
    inconclusive_retries: int = 1
    backoff_base_sec: float = 0.5
    content_cache_size: int = 256
    disallowed_ext: Set[str] = field(default_factory=lambda: set(DEFAULT_DISALLOWED_EXT))

    # Learning
    pattern_confidence_base: float = 0.6
    pattern_confidence_step: float = 0.1
    pattern_confidence_cap: float = 0.95

    # Article follow-up (indexing phase)
    follow_articles: bool = False
    max_articles_per_hub: int = 20

    # Output
    log_path: Optional[str] = "logs/run.tsv"
    telemetry_queue_size: int = 1024

    def with_overrides(self, **kwargs) -> "Config":
        """Return a copy with specific fields overridden."""
        return replace(self, **kwargs)

    @property
    def batch_size(self) -> int:
        return self.plan_batch_size or self.frontier_capacity

    def bonus_for(self, source: str) -> float:
        return self.source_bonuses.get(source, self.default_source_bonus)
