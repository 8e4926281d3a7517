# hubcrawl/controller.py
"""
Crawl lifecycle controller: turns plans into bounded-concurrency fetch work.

What this file does (at a glance)
---------------------------------
• Startup stages: storage reachable, gazetteer non-empty, planner wired; any
  failure raises FatalStartupError before the controller ever reaches `running`
• Worker threads (max_in_flight of them) pop the shared Frontier, honor the
  per-domain minimum interval, and run the Hub Validator on each candidate
• The calling thread is the coordinator: it drains worker outcomes, routes
  them to storage, the pattern learner, coverage, progress and telemetry, and
  re-plans when the frontier runs low
• Writes one TSV row per finalized candidate, plus STAT rows at the end
• pause() / resume() / abort() / set_mode() are safe from any thread

States
------
    initializing -> running <-> paused
    running -> draining -> stopped
    any non-stopped state -> aborting -> stopped
    (an abort before run() goes straight through aborting to stopped)

Pause gates new dispatch only; in-flight fetches finish. Abort additionally
signals cancellation to in-flight fetches and empties the frontier. Nothing
is dispatched once abort() returns: dispatch and abort share one lock.

TSV output columns
------------------
timestamp    url    verdict    status    domain    kind    strategy    priority
confidence    attempts    elapsed_ms    articles    reason
"""

from __future__ import annotations

import csv
import logging
import os
import queue
import threading
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .config import Config
from .errors import FatalStartupError
from .frontier import DomainThrottle, Frontier
from .gaps import GapAnalyzer, default_analyzers
from .interfaces import Fetcher, Gazetteer, Storage, TelemetrySink
from .learning import PatternLearner
from .models import (BehavioralProgress, CandidateKind, EntityKind, HubRecord, LifecycleState, Mode,
                     Phase, ScoredCandidate, Verdict)
from .planner import BlackboardPlanner, PlanningContext, ReasoningPlugin, default_plugins
from .prediction import PredictionContext, PredictionLibrary
from .scoring import PriorityScorer
from .telemetry import (CANDIDATE_DISPATCHED, GAP_FILLED, HUB_CONFIRMED, HUB_INCONCLUSIVE, HUB_REJECTED,
                        LIFECYCLE_STAGE_CHANGED, TelemetryBus)
from .urls import normalize_domain
from .validation import HubValidator, ValidationResult

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_COMPLETED_WITH_GAPS = "completed-with-gaps"
STATUS_ABORTED = "aborted"

_PHASE_ORDER = (Phase.DISCOVERY, Phase.VALIDATION, Phase.INDEXING, Phase.COMPLETION)
_COST_SMOOTHING = 0.3     # weight of the newest fetch in the per-domain cost average

TSV_COLUMNS = [
    "timestamp", "url", "verdict", "status", "domain", "kind", "strategy", "priority",
    "confidence", "attempts", "elapsed_ms", "articles", "reason",
]


@dataclass
class RunReport:
    status: str
    domains: List[str]
    progress: Dict[str, object]
    confirmed_urls: List[str] = field(default_factory=list)
    dispatched: int = 0
    dropped_inconclusive: int = 0
    remaining_gaps: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    strategy_stats: Dict[str, Dict[str, float]] = field(default_factory=dict)
    elapsed_sec: float = 0.0


class CrawlController:
    """
    Typical usage:
        ctl = CrawlController(cfg, ["news.example.com"], fetcher, gazetteer, storage)
        report = ctl.run()        # blocks; call ctl.abort() from elsewhere to stop early
    """

    # --------------------------- lifecycle & wiring ---------------------------

    def __init__(self, cfg: Config, domains: Sequence[str], fetcher: Fetcher, gazetteer: Gazetteer,
                 storage: Storage, telemetry: Optional[TelemetrySink] = None, *,
                 library: Optional[PredictionLibrary] = None,
                 analyzers: Optional[Sequence[GapAnalyzer]] = None,
                 plugins: Optional[Sequence[ReasoningPlugin]] = None,
                 validator: Optional[HubValidator] = None,
                 mode: Mode = Mode.NORMAL):
        self.cfg = cfg
        self.domains = [normalize_domain(d) for d in domains if d and d.strip()]
        self.gazetteer = gazetteer
        self.storage = storage
        self._owns_telemetry = telemetry is None
        self.telemetry = telemetry if telemetry is not None else TelemetryBus(cfg.telemetry_queue_size)

        self.library = library or PredictionLibrary()
        self.scorer = PriorityScorer(cfg)
        self.analyzers = list(analyzers) if analyzers is not None else default_analyzers(gazetteer, self.library, cfg)
        plugins = list(plugins) if plugins is not None else default_plugins(gazetteer, self.library, cfg)
        self.planner = BlackboardPlanner(self.scorer, plugins, self.analyzers, cfg, self.telemetry)
        self.validator = validator or HubValidator(fetcher, cfg)
        self.learner = PatternLearner(storage, self.telemetry, cfg.min_pattern_successes)

        self.frontier = Frontier(cfg.frontier_capacity)
        self.throttle = DomainThrottle(cfg.min_domain_interval_sec)
        self.progress = BehavioralProgress()
        self.mode = mode
        self.state = LifecycleState.INITIALIZING

        # Shared with workers; guarded by self._lock.
        self._lock = threading.Lock()
        self._abort = threading.Event()
        self._done = threading.Event()
        self._in_flight = 0
        self._in_flight_urls: Set[str] = set()
        self._in_flight_keys: Counter = Counter()
        self._dispatched = 0
        self._outcomes: "queue.Queue[Tuple[ScoredCandidate, ValidationResult, int]]" = queue.Queue()

        # Coordinator-only state.
        self._coverage: Dict[str, Set[str]] = defaultdict(set)
        self._confirmed_urls: Dict[str, Dict[str, str]] = defaultdict(dict)
        self._confirmed_records: Dict[str, List[HubRecord]] = defaultdict(list)
        self._dropped_keys: Dict[str, Set[str]] = defaultdict(set)
        self._pending_articles: Dict[str, List[str]] = defaultdict(list)
        self._articles_seen: Set[str] = set()
        self._proposed_keys: Set[str] = set()
        self._tried: Set[str] = set()
        self._fetch_costs: Dict[str, float] = {}
        self._gap_emphasis = False
        self._dirty = True
        self._dropped_inconclusive = 0
        self._storage_errors = 0
        self._warnings: List[str] = []
        self._threads: List[threading.Thread] = []
        self._log = None
        self._csv = None
        self.t0 = time.time()

    def run(self) -> RunReport:
        """
        Start up, crawl until the plan is exhausted, the fetch budget is spent or
        abort() is called, then write stats. Blocks the calling thread.
        """
        with self._lock:
            aborted_before_start = self._abort.is_set() and not self._threads
            if self.state is not LifecycleState.INITIALIZING and not aborted_before_start:
                raise RuntimeError(f"controller already ran (state={self.state.value})")
        if aborted_before_start:
            logger.info("abort() came before run(); nothing to crawl")
            if self._owns_telemetry and isinstance(self.telemetry, TelemetryBus):
                self.telemetry.close()
            return self._report()
        self.t0 = time.time()
        self.progress.reset()
        try:
            self._startup()
        except FatalStartupError as exc:
            logger.error("startup failed: %s", exc)
            with self._lock:
                self.state = LifecycleState.STOPPED
            self._emit_stage("startup-failed", error=str(exc))
            raise
        self._open_log()
        try:
            # False when abort() landed during startup.
            if self._set_state(LifecycleState.RUNNING, "running", only_from=(LifecycleState.INITIALIZING,)):
                for i in range(max(1, self.cfg.max_in_flight)):
                    t = threading.Thread(target=self._worker, args=(i,), name=f"hub-worker-{i}", daemon=True)
                    t.start()
                    self._threads.append(t)
                self._coordinate()
        except KeyboardInterrupt:
            # Graceful-ish shutdown so we still write stats
            self.abort()
        except Exception:
            self.abort()
            raise
        finally:
            self._shutdown()
        return self._report()

    def pause(self) -> bool:
        """Stop dispatching new fetches. In-flight fetches complete. No-op unless running."""
        return self._set_state(LifecycleState.PAUSED, "pause-acknowledged", only_from=(LifecycleState.RUNNING,))

    def resume(self) -> bool:
        return self._set_state(LifecycleState.RUNNING, "resumed", only_from=(LifecycleState.PAUSED,))

    def abort(self) -> bool:
        """Cancel in-flight fetches (best effort) and discard the frontier. Idempotent."""
        with self._lock:
            if self.state in (LifecycleState.ABORTING, LifecycleState.STOPPED):
                return False
            self._abort.set()
            discarded = self.frontier.clear()
            prior, self.state = self.state, LifecycleState.ABORTING
        logger.warning("abort requested (was %s); discarded %d queued candidates, %d in flight",
                       prior.value, discarded, self._in_flight)
        self._emit_stage("aborting", discarded=discarded)
        if prior is LifecycleState.INITIALIZING:
            # run() never started workers, so nothing is left to settle.
            with self._lock:
                self.state = LifecycleState.STOPPED
            self._emit_stage("stopped", aborted=True)
        return True

    def set_mode(self, mode: Mode) -> bool:
        """Switch behavioral mode; everything already queued is re-scored."""
        mode = Mode(mode)
        with self._lock:
            if mode is self.mode:
                return False
            self.mode = mode
            emphasis = self._gap_emphasis
            self.frontier.rescore(lambda s: self.scorer.score(s.candidate, mode, emphasis))
        logger.info("mode -> %s", mode.value)
        self._emit_stage("mode-changed", mode=mode.value)
        return True

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def dispatched(self) -> int:
        with self._lock:
            return self._dispatched

    # -------------------------------- startup --------------------------------

    def _startup(self) -> None:
        if not self.domains:
            raise FatalStartupError("no domains to crawl")
        try:
            for domain in self.domains:
                snapshot = self.storage.get_coverage_snapshot(domain)
                self._coverage[domain].update(snapshot)
                for rec in self.storage.hub_records(domain):
                    if rec.verdict is Verdict.CONFIRMED and rec.kind.is_hub:
                        self._confirmed_urls[domain].setdefault(rec.coverage_key, rec.url)
                        self._confirmed_records[domain].append(rec)
        except Exception as exc:
            raise FatalStartupError(f"storage unreachable: {exc!r}") from exc
        self._emit_stage("storage-ready", hubs=sum(len(v) for v in self._coverage.values()))

        try:
            known = sum(len(self.gazetteer.list_entities(k)) for k in EntityKind)
        except Exception as exc:
            raise FatalStartupError(f"gazetteer unreadable: {exc!r}") from exc
        if known == 0:
            raise FatalStartupError("gazetteer has no entities")
        self._emit_stage("gazetteer-ready", entities=known)

        self._emit_stage("planner-ready", analyzers=len(self.analyzers), plugins=len(self.planner.plugins),
                         mode=self.mode.value)
        logger.info("startup complete: %d domain(s), %d gazetteer entities, %d prior hubs",
                    len(self.domains), known, sum(len(v) for v in self._coverage.values()))

    def _open_log(self) -> None:
        if not self.cfg.log_path:
            return
        parent = os.path.dirname(os.path.abspath(self.cfg.log_path))
        os.makedirs(parent, exist_ok=True)
        self._log = open(self.cfg.log_path, "w", newline="", encoding="utf-8")
        self._csv = csv.writer(self._log, delimiter="\t")
        self._csv.writerow(TSV_COLUMNS)

    # ------------------------------ coordinator ------------------------------

    def _coordinate(self) -> None:
        idle = self.cfg.idle_poll_sec
        while True:
            self._drain_outcomes(idle)
            if self._abort.is_set():
                return
            with self._lock:
                state = self.state
            if state is LifecycleState.PAUSED:
                continue

            budget_left = self.dispatched < self.cfg.max_fetches
            if state is LifecycleState.RUNNING and budget_left and self._dirty \
                    and len(self.frontier) <= self.cfg.frontier_low_watermark:
                self._plan_cycle()

            with self._lock:
                idle_now = len(self.frontier) == 0 and self._in_flight == 0 and self._outcomes.empty()
                exhausted = not budget_left or (idle_now and not self._dirty)
                if self.state is LifecycleState.RUNNING and exhausted:
                    self.state = LifecycleState.DRAINING
                    draining = True
                else:
                    draining = self.state is LifecycleState.DRAINING
            if draining:
                self._drain()
                return

    def _drain(self) -> None:
        """Let in-flight work finish; drop whatever is still queued."""
        self._emit_stage("draining", in_flight=self.in_flight, queued=len(self.frontier))
        while not self._abort.is_set():
            with self._lock:
                if self._in_flight == 0 and self._outcomes.empty():
                    break
            self._drain_outcomes(self.cfg.idle_poll_sec)
        if self._abort.is_set():
            return
        left = self.frontier.clear()
        self._set_phase(Phase.COMPLETION)
        self._emit_stage("drain-complete", unqueued=left)

    def _drain_outcomes(self, timeout: float) -> None:
        try:
            item = self._outcomes.get(timeout=timeout)
        except queue.Empty:
            return
        while True:
            self._handle_outcome(*item)
            try:
                item = self._outcomes.get_nowait()
            except queue.Empty:
                return

    def _plan_cycle(self) -> None:
        self._dirty = False
        self._gap_emphasis = self.scorer.should_emphasize_gaps(self.progress)
        for domain in self.domains:
            if self._abort.is_set():
                return
            ctx = self._planning_context(domain)
            result = self.planner.plan(ctx)
            self._warnings.extend(result.warnings)
            pushed = 0
            with self._lock:
                if self._abort.is_set():
                    return
                for scored in result.ranked:
                    if not self.frontier.push(scored):
                        continue
                    pushed += 1
                    c = scored.candidate
                    if c.kind is CandidateKind.ARTICLE:
                        self._pending_articles[domain].remove(c.url)
                    elif c.coverage_key not in self._proposed_keys:
                        self._proposed_keys.add(c.coverage_key)
                        self.progress.entities_discovered += 1
            logger.info("planned %s: %d ranked, %d queued (frontier=%d, emphasis=%s)",
                        domain, len(result.ranked), pushed, len(self.frontier), self._gap_emphasis)

    def _planning_context(self, domain: str) -> PlanningContext:
        patterns = {}
        for kind in CandidateKind:
            if kind.is_hub:
                found = self._storage_call("pattern lookup", self.storage.get_learned_patterns, domain, kind)
                patterns[kind] = found or []
        with self._lock:
            queued = self.frontier.snapshot()
            exclude = set(self._tried) | set(self._in_flight_urls)
            busy = set(self._in_flight_keys) | self._dropped_keys[domain]
            mode = self.mode
        exclude.update(s.candidate.url for s in queued)
        busy.update(s.candidate.coverage_key for s in queued if s.candidate.kind.is_hub)
        return PlanningContext(
            domain=domain,
            prediction=PredictionContext.from_config(
                self.cfg, patterns=patterns, confirmed_urls=dict(self._confirmed_urls[domain]),
                gazetteer=self.gazetteer),
            confirmed=frozenset(self._coverage[domain]),
            confirmed_hubs=list(self._confirmed_records[domain]),
            mode=mode,
            gap_emphasis=self._gap_emphasis,
            exclude_urls=frozenset(exclude),
            busy_keys=frozenset(busy),
            pending_articles=list(self._pending_articles[domain]),
            fetch_costs=dict(self._fetch_costs),
        )

    # -------------------------------- workers --------------------------------

    def _worker(self, wid: int) -> None:
        """
        Worker loop:
          - pop the top candidate unless paused, draining, aborted or out of budget
          - the frontier skips throttled hosts; if every queued host is throttled,
            wait (on the abort event) and try again
          - validate, hand the outcome to the coordinator
        """
        idle = self.cfg.idle_poll_sec
        while not (self._abort.is_set() or self._done.is_set()):
            item, wait = None, 0.0
            with self._lock:
                if self._abort.is_set():
                    break
                if self.state is LifecycleState.RUNNING and self._dispatched < self.cfg.max_fetches:
                    item, wait = self.frontier.pop_ready(self.throttle)
                    if item is not None:
                        c = item.candidate
                        self._in_flight += 1
                        self._dispatched += 1
                        self._in_flight_urls.add(c.url)
                        self._in_flight_keys[c.coverage_key] += 1
                        self.telemetry.emit(CANDIDATE_DISPATCHED, c.domain, url=c.url, kind=c.kind.value,
                                            score=item.score, worker=wid)
            if item is None:
                self._abort.wait(min(wait, idle) if wait > 0 else idle)
                continue

            t0 = time.time()
            result = self._validate(item)
            self._outcomes.put((item, result, int((time.time() - t0) * 1000)))

    def _validate(self, item: ScoredCandidate) -> ValidationResult:
        c = item.candidate
        try:
            if c.kind is CandidateKind.ARTICLE:
                return self.validator.index_article(c, self._abort)
            return self.validator.validate(c, self._abort)
        except Exception as exc:
            # A broken fetcher must not take the worker down with it.
            logger.exception("validator failed on %s", c.url)
            res = ValidationResult(c, Verdict.INCONCLUSIVE, f"validator error: {exc!r}")
            res.transient = True
            return res

    # ---------------------------- outcome routing ----------------------------

    def _handle_outcome(self, item: ScoredCandidate, res: ValidationResult, elapsed_ms: int) -> None:
        c = item.candidate
        with self._lock:
            self._in_flight -= 1
            self._in_flight_urls.discard(c.url)
            self._in_flight_keys[c.coverage_key] -= 1
            if self._in_flight_keys[c.coverage_key] <= 0:
                del self._in_flight_keys[c.coverage_key]
        if res.cancelled:
            logger.debug("discarding cancelled outcome for %s", c.url)
            return

        self._dirty = True
        self._tried.add(c.url)
        self.progress.fetches += res.attempts
        if res.attempts and not res.from_cache and res.fetch_duration_ms:
            prev = self._fetch_costs.get(c.domain)
            ms = float(res.fetch_duration_ms)
            self._fetch_costs[c.domain] = ms if prev is None else prev + _COST_SMOOTHING * (ms - prev)

        if c.kind is CandidateKind.ARTICLE:
            if res.verdict is Verdict.CONFIRMED:
                self.progress.articles_indexed += 1
            self._set_phase(Phase.INDEXING)
        else:
            self._route_hub_outcome(item, res)
        self._write_row(item, res, elapsed_ms)

    def _route_hub_outcome(self, item: ScoredCandidate, res: ValidationResult) -> None:
        c = item.candidate
        domain, key = c.domain, c.coverage_key
        self.learner.record_prediction_outcome(c.strategy, res.verdict)
        self._set_phase(Phase.VALIDATION)

        if res.verdict is Verdict.INCONCLUSIVE:
            self.progress.inconclusive += 1
            # Retried already inside the validator; the gap stays open for a later run.
            self._dropped_keys[domain].add(key)
            self._dropped_inconclusive += 1
            self.telemetry.emit(HUB_INCONCLUSIVE, domain, url=c.url, kind=c.kind.value, reason=res.reason)
            logger.info("inconclusive %s (%s); dropped for this run", c.url, res.reason)
            return

        record = HubRecord(
            url=c.url,
            domain=domain,
            entity_ids=tuple(e.id for e in c.entities),
            kind=c.kind,
            verdict=res.verdict,
            article_urls=frozenset(res.article_urls),
            visited_at=time.time(),
            evidence={"reason": res.reason, "status": res.status, "final_url": res.final_url,
                      "strategy": c.strategy.value},
        )
        self._storage_call("write of hub record", self.storage.put_hub_record, record)

        if res.verdict is Verdict.REJECTED:
            self.progress.rejected += 1
            self._storage_call("rejection update", self.learner.observe, domain, c.kind, c.url, Verdict.REJECTED,
                               c.entities, structural=res.structural)
            self.telemetry.emit(HUB_REJECTED, domain, url=c.url, kind=c.kind.value, reason=res.reason,
                                structural=res.structural)
            logger.debug("rejected %s: %s", c.url, res.reason)
            return

        self.progress.confirmed += 1
        new_articles = [u for u in res.article_urls if u not in self._articles_seen]
        self._articles_seen.update(new_articles)
        self.progress.articles_surfaced += len(new_articles)
        self._storage_call("pattern update", self.learner.observe, domain, c.kind, c.url, Verdict.CONFIRMED,
                           c.entities, articles=float(len(res.article_urls)))
        self.telemetry.emit(HUB_CONFIRMED, domain, url=c.url, kind=c.kind.value, entities=record.entity_ids,
                            articles=len(res.article_urls), strategy=c.strategy.value)
        logger.info("confirmed %s hub %s (%d article links)", c.kind.value, c.url, len(res.article_urls))

        if key not in self._coverage[domain]:
            self._coverage[domain].add(key)
            self._confirmed_urls[domain].setdefault(key, c.url)
            self._confirmed_records[domain].append(record)
            self.progress.entities_validated += 1
            self.telemetry.emit(GAP_FILLED, domain, key=key, url=c.url, importance=c.importance)

        if self.cfg.follow_articles and new_articles:
            self._pending_articles[domain].extend(new_articles[: self.cfg.max_articles_per_hub])

    def _storage_call(self, what: str, fn, *args, **kwargs):
        """
        Call into storage once the run is going. A failing store costs us that
        call, never the run: the error is logged, counted and reported.
        """
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            self._storage_errors += 1
            logger.warning("storage %s failed; continuing without it", what, exc_info=True)
            self._warnings.append(f"storage: {what} failed: {exc!r}")
            return None

    def _set_phase(self, phase: Phase) -> None:
        """Phases only move forward."""
        if _PHASE_ORDER.index(phase) <= _PHASE_ORDER.index(self.progress.phase):
            return
        self.progress.phase = phase
        self._emit_stage(f"phase-{phase.value}", **self.progress.snapshot())

    # ------------------------------- reporting -------------------------------

    def _write_row(self, item: ScoredCandidate, res: ValidationResult, elapsed_ms: int) -> None:
        if self._csv is None:
            return
        c = item.candidate
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())
        self._csv.writerow([
            ts, c.url, res.verdict.value, res.status if res.status is not None else "", c.domain,
            c.kind.value, c.strategy.value, f"{item.score:.3f}", f"{c.confidence:.3f}",
            res.attempts, elapsed_ms, len(res.article_urls), res.reason,
        ])

    def _remaining_gaps(self) -> Dict[str, int]:
        out = {}
        for domain in self.domains:
            n = 0
            for analyzer in self.analyzers:
                try:
                    n += len(analyzer.find_gaps(domain, frozenset(self._coverage[domain])))
                except Exception:
                    logger.warning("gap count failed for %s on %s", type(analyzer).__name__, domain,
                                   exc_info=True)
            out[domain] = n
        return out

    def _report(self) -> RunReport:
        aborted = self._abort.is_set()
        remaining = {} if aborted else self._remaining_gaps()
        if aborted:
            status = STATUS_ABORTED
        elif self._dropped_inconclusive or any(remaining.values()):
            status = STATUS_COMPLETED_WITH_GAPS
        else:
            status = STATUS_COMPLETED
        confirmed = [u for d in self.domains for u in self._confirmed_urls[d].values()]
        return RunReport(
            status=status,
            domains=list(self.domains),
            progress=self.progress.snapshot(),
            confirmed_urls=sorted(confirmed),
            dispatched=self._dispatched,
            dropped_inconclusive=self._dropped_inconclusive,
            remaining_gaps=remaining,
            warnings=list(self._warnings),
            strategy_stats=self.learner.strategy_stats(),
            elapsed_sec=time.time() - self.t0,
        )

    def _shutdown(self) -> None:
        """Join workers, settle what they finished, write stats, stop."""
        self._done.set()
        grace = self.cfg.fetch_timeout_sec * (self.cfg.max_transient_retries + 1) + 1.0
        deadline = time.time() + grace
        for t in self._threads:
            t.join(max(0.0, deadline - time.time()))
        if any(t.is_alive() for t in self._threads):
            logger.warning("%d worker(s) still busy after %.1fs; leaving them behind",
                           sum(t.is_alive() for t in self._threads), grace)
        while True:
            try:
                self._handle_outcome(*self._outcomes.get_nowait())
            except queue.Empty:
                break
        self._write_stats()
        with self._lock:
            self.state = LifecycleState.STOPPED
        self._emit_stage("stopped", aborted=self._abort.is_set(), **self.progress.snapshot())
        if self._owns_telemetry and isinstance(self.telemetry, TelemetryBus):
            self.telemetry.close()

    def _write_stats(self) -> None:
        if self._csv is None:
            return
        elapsed = time.time() - self.t0
        p = self.progress
        self._csv.writerow([])
        self._csv.writerow(["STAT", "dispatched", self._dispatched])
        self._csv.writerow(["STAT", "fetches", p.fetches])
        self._csv.writerow(["STAT", "confirmed", p.confirmed])
        self._csv.writerow(["STAT", "rejected", p.rejected])
        self._csv.writerow(["STAT", "inconclusive", p.inconclusive])
        self._csv.writerow(["STAT", "articles_surfaced", p.articles_surfaced])
        self._csv.writerow(["STAT", "articles_indexed", p.articles_indexed])
        self._csv.writerow(["STAT", "planning_warnings", len(self._warnings)])
        self._csv.writerow(["STAT", "storage_errors", self._storage_errors])
        self._csv.writerow(["STAT", "aborted", int(self._abort.is_set())])
        self._csv.writerow(["STAT", "elapsed_sec", f"{elapsed:.3f}"])
        rate = self._dispatched / elapsed if elapsed > 0 else 0.0
        self._csv.writerow(["STAT", "rate_dispatch_per_sec", f"{rate:.2f}"])
        try:
            self._log.flush()
            self._log.close()
        finally:
            self._log, self._csv = None, None

    # -------------------------------- internals ------------------------------

    def _set_state(self, new: LifecycleState, stage: str, only_from: Tuple[LifecycleState, ...]) -> bool:
        with self._lock:
            if self.state not in only_from:
                return False
            self.state = new
        logger.info("lifecycle: %s", stage)
        self._emit_stage(stage)
        return True

    def _emit_stage(self, stage: str, **data) -> None:
        self.telemetry.emit(LIFECYCLE_STAGE_CHANGED, "", stage=stage, state=self.state.value, **data)
