"""End-to-end tests for the crawl controller, driven by FakeFetcher."""

import csv
import threading
import time

import pytest

from hubcrawl.controller import (STATUS_ABORTED, STATUS_COMPLETED, STATUS_COMPLETED_WITH_GAPS, TSV_COLUMNS,
                                 CrawlController)
from hubcrawl.errors import FatalStartupError, FetchError
from hubcrawl.gazetteer import StaticGazetteer
from hubcrawl.models import (Candidate, CandidateKind, Entity, EntityKind, HubRecord, LifecycleState, Mode,
                             Strategy, Verdict)
from hubcrawl.storage import MemoryStorage
from hubcrawl.telemetry import (CANDIDATE_DISPATCHED, GAP_FILLED, HUB_CONFIRMED, HUB_INCONCLUSIVE,
                                LIFECYCLE_STAGE_CHANGED)

from conftest import DOMAIN, FRANCE, FakeFetcher, hub_html, page

FR_HUB = "https://news.example.com/world/fr"


def stages(telemetry):
    return [data["stage"] for _, _, data in telemetry.of(LIFECYCLE_STAGE_CHANGED)]


def run_in_thread(ctl):
    box = {}

    def target():
        box["report"] = ctl.run()

    t = threading.Thread(target=target, daemon=True)
    t.start()
    return t, box


def many_countries(n):
    return StaticGazetteer([Entity(EntityKind.COUNTRY, f"c{i:02d}", f"Country {i}", 90 - i, code=f"c{i:02d}")
                            for i in range(n)])


class TestRun:
    def test_confirms_hub_and_records_coverage(self, cfg, countries, storage, telemetry):
        fetcher = FakeFetcher({FR_HUB: page(FR_HUB, hub_html("France", "/world/fr"))})
        ctl = CrawlController(cfg.with_overrides(max_in_flight=2), [DOMAIN], fetcher, countries, storage, telemetry)
        report = ctl.run()

        assert ctl.state is LifecycleState.STOPPED
        assert report.status == STATUS_COMPLETED_WITH_GAPS
        assert report.confirmed_urls == [FR_HUB]
        assert storage.get_coverage_snapshot(DOMAIN) == {"country-hub:fr"}
        assert len(telemetry.of(HUB_CONFIRMED)) == 1
        assert [d["key"] for _, _, d in telemetry.of(GAP_FILLED)] == ["country-hub:fr"]
        assert report.progress["confirmed"] == 1
        assert report.progress["phase"] == "completion"
        assert report.remaining_gaps[DOMAIN] > 0
        assert len(ctl.frontier) == 0
        assert stages(telemetry)[:4] == ["storage-ready", "gazetteer-ready", "planner-ready", "running"]
        assert stages(telemetry)[-1] == "stopped"

    def test_first_dispatches_follow_importance(self, cfg, countries, telemetry):
        ctl = CrawlController(cfg.with_overrides(max_in_flight=1), [DOMAIN], FakeFetcher(), countries,
                              MemoryStorage(), telemetry)
        ctl.run()
        urls = [d["url"] for _, _, d in telemetry.of(CANDIDATE_DISPATCHED)]
        assert urls[:2] == ["https://news.example.com/world/fr", "https://news.example.com/world/de"]
        assert urls.index("https://news.example.com/world/de") < urls.index("https://news.example.com/world/jp")

    def test_completed_when_no_gaps_remain(self, cfg, storage):
        g = StaticGazetteer([FRANCE])
        fetcher = FakeFetcher({FR_HUB: page(FR_HUB, hub_html("France", "/world/fr"))})
        report = CrawlController(cfg, [DOMAIN], fetcher, g, storage).run()
        assert report.status == STATUS_COMPLETED
        assert report.remaining_gaps == {DOMAIN: 0}

    def test_prior_coverage_is_not_revisited(self, cfg, countries, storage):
        storage.put_hub_record(HubRecord(url="https://news.example.com/world/france", domain=DOMAIN,
                                         entity_ids=("fr",), kind=CandidateKind.COUNTRY_HUB,
                                         verdict=Verdict.CONFIRMED))
        fetcher = FakeFetcher()
        CrawlController(cfg, [DOMAIN], fetcher, countries, storage).run()
        revisits = {FR_HUB, "https://news.example.com/world/france", "https://news.example.com/fr"}
        assert not revisits & set(fetcher.calls)
        assert "https://news.example.com/world/germany" in fetcher.calls

    def test_fetch_budget(self, cfg, countries):
        fetcher = FakeFetcher()
        ctl = CrawlController(cfg.with_overrides(max_fetches=2, max_in_flight=1), [DOMAIN], fetcher, countries,
                              MemoryStorage())
        report = ctl.run()
        assert report.dispatched == 2
        assert len(fetcher.calls) == 2
        assert report.status == STATUS_COMPLETED_WITH_GAPS

    def test_inconclusive_is_dropped_for_the_run(self, cfg, countries, telemetry):
        fetcher = FakeFetcher({FR_HUB: FetchError("timed out", kind="timeout")})
        report = CrawlController(cfg, [DOMAIN], fetcher, countries, MemoryStorage(), telemetry).run()
        assert report.dropped_inconclusive == 1
        assert report.status == STATUS_COMPLETED_WITH_GAPS
        assert [d["url"] for _, _, d in telemetry.of(HUB_INCONCLUSIVE)] == [FR_HUB]
        assert fetcher.calls.count(FR_HUB) == cfg.max_transient_retries + 1

    def test_follow_articles_indexes_surfaced_stories(self, cfg):
        story = "https://news.example.com/world/fr/a-long-story-slug-0"
        fetcher = FakeFetcher({
            FR_HUB: page(FR_HUB, hub_html("France", "/world/fr", n_articles=5)),
            story: page(story, b"<html><p>story</p></html>"),
        })
        report = CrawlController(cfg.with_overrides(follow_articles=True), [DOMAIN], fetcher,
                                 StaticGazetteer([FRANCE]), MemoryStorage()).run()
        assert report.progress["articles_surfaced"] == 5
        assert report.progress["articles_indexed"] == 1
        assert story in fetcher.calls

    def test_strategy_stats_in_report(self, cfg, countries):
        fetcher = FakeFetcher({FR_HUB: page(FR_HUB, hub_html("France", "/world/fr"))})
        report = CrawlController(cfg, [DOMAIN], fetcher, countries, MemoryStorage()).run()
        assert report.strategy_stats["gazetteer-derived"]["hits"] >= 1

    def test_runs_only_once(self, cfg):
        ctl = CrawlController(cfg, [DOMAIN], FakeFetcher(), StaticGazetteer([FRANCE]), MemoryStorage())
        ctl.run()
        with pytest.raises(RuntimeError):
            ctl.run()


class FlakyStorage(MemoryStorage):
    """Fails the first hub-record and pattern writes, then recovers."""

    def __init__(self):
        super().__init__()
        self.failed_records = 0
        self.failed_patterns = 0

    def put_hub_record(self, record):
        if not self.failed_records:
            self.failed_records += 1
            raise OSError("disk briefly unavailable")
        super().put_hub_record(record)

    def put_learned_pattern(self, pattern):
        if not self.failed_patterns:
            self.failed_patterns += 1
            raise OSError("disk briefly unavailable")
        super().put_learned_pattern(pattern)


class TestStorageFailures:
    def test_failed_write_is_a_warning_not_a_crash(self, cfg, countries, telemetry):
        storage = FlakyStorage()
        fetcher = FakeFetcher({FR_HUB: page(FR_HUB, hub_html("France", "/world/fr"))})
        ctl = CrawlController(cfg.with_overrides(max_in_flight=1), [DOMAIN], fetcher, countries, storage, telemetry)
        report = ctl.run()

        assert ctl.state is LifecycleState.STOPPED
        assert report.status == STATUS_COMPLETED_WITH_GAPS
        assert storage.failed_records == 1
        assert any("disk briefly unavailable" in w for w in report.warnings)
        assert report.dispatched > 1
        assert len(storage.hub_records(DOMAIN)) == report.dispatched - 1
        assert report.confirmed_urls == [FR_HUB]

    def test_failed_pattern_write_keeps_the_confirmation(self, cfg):
        flaky = FlakyStorage()
        flaky.failed_records = 1
        fetcher = FakeFetcher({FR_HUB: page(FR_HUB, hub_html("France", "/world/fr"))})
        report = CrawlController(cfg, [DOMAIN], fetcher, StaticGazetteer([FRANCE]), flaky).run()

        assert flaky.failed_patterns == 1
        assert report.confirmed_urls == [FR_HUB]
        assert report.progress["confirmed"] == 1
        assert flaky.get_coverage_snapshot(DOMAIN) == {"country-hub:fr"}
        assert any("pattern update" in w for w in report.warnings)

    def test_storage_errors_stat_row(self, cfg, countries, tmp_path):
        log = tmp_path / "run.tsv"
        CrawlController(cfg.with_overrides(log_path=str(log), max_fetches=3), [DOMAIN], FakeFetcher(),
                        countries, FlakyStorage()).run()
        with open(log, newline="", encoding="utf-8") as f:
            stats = {r[1]: r[2] for r in csv.reader(f, delimiter="\t") if r and r[0] == "STAT"}
        assert stats["storage_errors"] == "1"
        assert stats["aborted"] == "0"


class TestTsvLog:
    def test_rows_and_stats(self, cfg, tmp_path):
        log = tmp_path / "logs" / "run.tsv"
        fetcher = FakeFetcher({FR_HUB: page(FR_HUB, hub_html("France", "/world/fr"))})
        CrawlController(cfg.with_overrides(log_path=str(log)), [DOMAIN], fetcher, StaticGazetteer([FRANCE]),
                        MemoryStorage()).run()

        with open(log, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f, delimiter="\t"))
        assert rows[0] == TSV_COLUMNS
        data = [r for r in rows[1:] if r and r[0] != "STAT"]
        assert [r[1] for r in data] == [FR_HUB]
        assert data[0][2] == "confirmed"
        stats = {r[1]: r[2] for r in rows if r and r[0] == "STAT"}
        assert stats["confirmed"] == "1"
        assert stats["aborted"] == "0"


class TestStartup:
    def test_empty_gazetteer_is_fatal(self, cfg, telemetry):
        ctl = CrawlController(cfg, [DOMAIN], FakeFetcher(), StaticGazetteer([]), MemoryStorage(), telemetry)
        with pytest.raises(FatalStartupError):
            ctl.run()
        assert ctl.state is LifecycleState.STOPPED
        assert "running" not in stages(telemetry)

    def test_unreachable_storage_is_fatal(self, cfg, countries):
        class DeadStorage(MemoryStorage):
            def get_coverage_snapshot(self, domain):
                raise OSError("disk gone")

        with pytest.raises(FatalStartupError, match="storage"):
            CrawlController(cfg, [DOMAIN], FakeFetcher(), countries, DeadStorage()).run()

    def test_no_domains_is_fatal(self, cfg, countries):
        with pytest.raises(FatalStartupError):
            CrawlController(cfg, ["  "], FakeFetcher(), countries, MemoryStorage()).run()


class TestControl:
    def test_abort_stops_dispatch_and_empties_frontier(self, cfg, telemetry):
        fetcher = FakeFetcher(block=True)
        ctl = CrawlController(cfg.with_overrides(max_in_flight=5), [DOMAIN], fetcher, many_countries(25),
                              MemoryStorage(), telemetry)
        t, box = run_in_thread(ctl)
        for _ in range(5):
            assert fetcher.started.acquire(timeout=5.0)
        assert len(ctl.frontier) >= 15

        assert ctl.abort()
        dispatched_at_abort = len(telemetry.of(CANDIDATE_DISPATCHED))
        assert len(ctl.frontier) == 0
        t.join(10.0)

        assert not t.is_alive()
        assert ctl.state is LifecycleState.STOPPED
        assert box["report"].status == STATUS_ABORTED
        assert dispatched_at_abort == 5
        assert len(telemetry.of(CANDIDATE_DISPATCHED)) == 5
        assert len(fetcher.calls) == 5
        assert not ctl.abort()

    def test_pause_gates_dispatch(self, cfg, telemetry):
        fetcher = FakeFetcher(block=True)
        ctl = CrawlController(cfg.with_overrides(max_in_flight=1), [DOMAIN], fetcher, StaticGazetteer([FRANCE]),
                              MemoryStorage(), telemetry)
        t, box = run_in_thread(ctl)
        assert fetcher.started.acquire(timeout=5.0)

        assert ctl.pause()
        assert not ctl.pause()
        fetcher.release.set()
        time.sleep(0.2)
        assert len(fetcher.calls) == 1
        assert ctl.state is LifecycleState.PAUSED

        assert ctl.resume()
        t.join(10.0)
        assert not t.is_alive()
        assert len(fetcher.calls) > 1
        assert box["report"].status == STATUS_COMPLETED_WITH_GAPS
        assert {"pause-acknowledged", "resumed"} <= set(stages(telemetry))

    def test_resume_when_not_paused_is_a_noop(self, cfg, countries):
        ctl = CrawlController(cfg, [DOMAIN], FakeFetcher(), countries, MemoryStorage())
        assert not ctl.resume()
        assert not ctl.pause()

    def test_set_mode_rescores_queued_work(self, cfg, countries):
        ctl = CrawlController(cfg, [DOMAIN], FakeFetcher(), countries, MemoryStorage())
        article = Candidate(url="https://news.example.com/world/fr/a-long-story-slug-1", entities=(),
                            kind=CandidateKind.ARTICLE, strategy=Strategy.HUB_ARTICLE, confidence=1.0,
                            source="article-from-hub", domain=DOMAIN)
        hub = Candidate(url="https://news.example.com/world/jp", entities=(FRANCE,),
                        kind=CandidateKind.COUNTRY_HUB, strategy=Strategy.FALLBACK_PATTERN, confidence=0.3,
                        source="speculative", domain=DOMAIN)
        ctl.frontier.push(ctl.scorer.score(article))
        ctl.frontier.push(ctl.scorer.score(hub))
        assert ctl.frontier.peek().candidate is article

        assert ctl.set_mode(Mode.EXCLUSIVE_HUB_FOCUS)
        assert ctl.frontier.peek().candidate is hub
        assert not ctl.set_mode(Mode.EXCLUSIVE_HUB_FOCUS)

    def test_abort_before_run_stops_at_once(self, cfg, countries, telemetry):
        fetcher = FakeFetcher()
        ctl = CrawlController(cfg, [DOMAIN], fetcher, countries, MemoryStorage(), telemetry)
        assert ctl.abort()
        assert ctl.state is LifecycleState.STOPPED
        assert stages(telemetry) == ["aborting", "stopped"]
        assert not ctl.abort()

        report = ctl.run()
        assert report.status == STATUS_ABORTED
        assert report.dispatched == 0
        assert fetcher.calls == []
        assert ctl.state is LifecycleState.STOPPED
