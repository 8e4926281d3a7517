# tools/smoke.py
"""
Zero-network smoke checks to make sure the project is wired correctly.

What it does:
  1) Imports all modules (fails fast if paths/packaging are broken).
  2) Builds a Config with overrides and prints key fields.
  3) Sanity-checks URL helpers (canonicalize, domain_of, slugify).
  4) Profiles a tiny hub-like HTML snippet with the BeautifulSoup parser.
  5) Asks the planner for a first batch on a made-up domain and prints it.

What it does NOT do:
  - No network calls, no robots.txt fetch, no crawling. Keep it safe/offline.

Usage:
    python3 tools/smoke.py
"""

from hubcrawl.config import Config
from hubcrawl.controller import CrawlController
from hubcrawl.gazetteer import SEED_ENTITIES, StaticGazetteer
from hubcrawl.gaps import default_analyzers
from hubcrawl.parser_bs4 import profile_page
from hubcrawl.planner import BlackboardPlanner, PlanningContext, default_plugins
from hubcrawl.prediction import PredictionContext, PredictionLibrary
from hubcrawl.scoring import PriorityScorer
from hubcrawl.storage import MemoryStorage
from hubcrawl.urls import canonicalize, domain_of, has_disallowed_ext, slugify


class _NoFetch:
    def fetch(self, url, timeout, cancel=None):
        raise AssertionError("smoke test must not fetch")


def check_imports_and_config():
    print("[1] Imports OK")
    cfg = Config().with_overrides(
        user_agent="hubcrawl-smoke/0.1 (Smoke Test; you@example.org)",
        max_in_flight=2,
        max_fetches=10,
        fetch_timeout_sec=3.0,
        log_path=None,
    )
    print("[2] Config OK")
    print(f"    UA={cfg.user_agent}")
    print(f"    max_in_flight={cfg.max_in_flight}, max_fetches={cfg.max_fetches}, batch={cfg.batch_size}")
    return cfg


def check_url_helpers():
    print("[3] URL helper sanity")
    raw = "HTTP://News.Example.com:80/World/France/#top"
    c = canonicalize(raw)
    d = domain_of(c)
    print(f"    raw: {raw}")
    print(f"    canonical: {c}")
    print(f"    domain: {d}, slug: {slugify('United Kingdom')}")
    assert d == "news.example.com"
    assert slugify("United Kingdom") == "united-kingdom"
    assert not has_disallowed_ext("/world/france", {".jpg", ".png"})


def check_parser():
    print("[4] Parser smoke")
    stories = "".join(
        f'<li><a href="/world/france/2024/05/0{i}/story-about-thing-{i}">Story {i}</a></li>' for i in range(1, 7)
    )
    html = f"""
    <html><head><title>France | Example News</title></head><body>
      <h1>France</h1>
      <ul>{stories}</ul>
      <a href="mailto:desk@example.com">Email</a>
    </body></html>
    """.encode("utf-8")
    profile = profile_page(html, "https://news.example.com/world/france")
    print(f"    title={profile.title!r} articles={len(profile.article_links)} links={len(profile.links)}")
    assert profile.title.startswith("France")
    assert len(profile.article_links) == 6


def check_planner(cfg):
    print("[5] Planner smoke")
    gazetteer = StaticGazetteer(SEED_ENTITIES)
    library = PredictionLibrary()
    planner = BlackboardPlanner(PriorityScorer(cfg), default_plugins(gazetteer, library, cfg),
                                default_analyzers(gazetteer, library, cfg), cfg)
    ctx = PlanningContext(domain="news.example.com",
                          prediction=PredictionContext.from_config(cfg, gazetteer=gazetteer))
    result = planner.plan(ctx)
    for s in result.ranked[:5]:
        print(f"    {s.score:6.2f}  {s.candidate.kind.value:<12} {s.candidate.url}")
    assert result.ranked and not result.warnings


def main():
    cfg = check_imports_and_config()
    # Create a controller object just to ensure constructor wiring is fine.
    CrawlController(cfg, ["news.example.com"], _NoFetch(), StaticGazetteer(SEED_ENTITIES), MemoryStorage())
    print("[6] Controller constructed OK (no run invoked)")
    check_url_helpers()
    check_parser()
    check_planner(cfg)
    print("\nSmoke tests passed. If this works, your project structure is sane.")


if __name__ == "__main__":
    main()
