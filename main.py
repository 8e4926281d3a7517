# main.py
"""
Entry point for the hub-discovery crawler.
Wires up: domains + gazetteer + store -> build Config -> run CrawlController -> save store.
"""

import argparse
import logging
import os
import signal
import sys
import threading
from typing import List

from hubcrawl.config import Config
from hubcrawl.controller import CrawlController
from hubcrawl.errors import FatalStartupError
from hubcrawl.fetch import UrllibFetcher
from hubcrawl.gazetteer import SEED_ENTITIES, StaticGazetteer
from hubcrawl.models import Mode
from hubcrawl.storage import JsonFileStorage, MemoryStorage
from hubcrawl.telemetry import TelemetryBus

logger = logging.getLogger("hubcrawl.main")


def read_domains(values: List[str]) -> List[str]:
    """--domain may repeat; '@file' loads one domain per line, ignoring blanks and '#'."""
    domains: List[str] = []
    for v in values:
        if not v.startswith("@"):
            domains.append(v)
            continue
        try:
            with open(v[1:], "r", encoding="utf-8") as f:
                for line in f:
                    s = line.strip()
                    if s and not s.startswith("#"):
                        domains.append(s)
        except FileNotFoundError:
            print(f"Domains file not found: {v[1:]}", file=sys.stderr)
            sys.exit(2)
    return domains


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Hub-discovery crawler: predicts, validates and learns place/topic hub URLs on news sites."
    )
    p.add_argument("--domain", action="append", required=True,
                   help="Domain to crawl (repeatable), or @path to a file with one domain per line.")
    p.add_argument("--gazetteer", default=None,
                   help="Gazetteer JSON. Without it a small built-in seed list is used.")
    p.add_argument("--store", default=None,
                   help="JSON file for hub records and learned patterns (loaded, then saved at exit).")
    p.add_argument("--log", default="logs/run.tsv", help="Path to output TSV log file.")
    p.add_argument("--user-agent", default=Config.user_agent,
                   help="Identify yourself. Many sites block anonymous crawlers.")
    p.add_argument("--concurrency", type=int, default=4, help="Maximum fetches in flight.")
    p.add_argument("--max-fetches", type=int, default=1000, help="Stop dispatching after this many candidates.")
    p.add_argument("--timeout", type=float, default=10.0, help="Per-request timeout, in seconds.")
    p.add_argument("--min-interval", type=float, default=1.0,
                   help="Minimum seconds between fetches to the same host.")
    p.add_argument("--no-robots", action="store_true",
                   help="If set, skip robots.txt checks (not recommended).")
    p.add_argument("--mode", choices=[m.value for m in Mode], default=Mode.NORMAL.value,
                   help="Behavioral mode; exclusive-hub-focus ranks every hub candidate above other work.")
    p.add_argument("--follow-articles", action="store_true",
                   help="Also fetch article links found on confirmed hubs.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # 1) Domains
    domains = read_domains(args.domain)
    if not domains:
        print("No domains given. Pass --domain news.example.com (repeatable).", file=sys.stderr)
        sys.exit(2)

    # 2) Build config
    cfg = Config().with_overrides(
        user_agent=args.user_agent,
        respect_robots=not args.no_robots,
        fetch_timeout_sec=args.timeout,
        min_domain_interval_sec=args.min_interval,
        max_in_flight=args.concurrency,
        max_fetches=args.max_fetches,
        log_path=args.log,
        follow_articles=args.follow_articles,
    )

    # 3) Collaborators
    gazetteer = StaticGazetteer.load(args.gazetteer) if args.gazetteer else StaticGazetteer(SEED_ENTITIES)
    storage = JsonFileStorage(args.store) if args.store else MemoryStorage()
    telemetry = TelemetryBus(cfg.telemetry_queue_size)
    ctl = CrawlController(cfg, domains, UrllibFetcher(cfg), gazetteer, storage, telemetry,
                          mode=Mode(args.mode))

    # Ctrl-C aborts: in-flight fetches are cancelled, queued work is dropped.
    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, lambda signum, frame: ctl.abort())

    # 4) Run
    try:
        report = ctl.run()
    except FatalStartupError as exc:
        logger.error("startup failed: %s", exc)
        sys.exit(1)
    finally:
        telemetry.close()
        if isinstance(storage, JsonFileStorage):
            storage.save()
            logger.info("saved store to %s", os.path.abspath(storage.path))

    print(f"status: {report.status}")
    print(f"dispatched: {report.dispatched}  confirmed: {len(report.confirmed_urls)}  "
          f"dropped (inconclusive): {report.dropped_inconclusive}")
    for url in report.confirmed_urls:
        print(f"  {url}")
    for domain, n in sorted(report.remaining_gaps.items()):
        print(f"remaining gaps on {domain}: {n}")
    for w in report.warnings:
        print(f"warning: {w}")


if __name__ == "__main__":
    main()
