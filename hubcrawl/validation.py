# hubcrawl/validation.py
"""
Hub validation: decide whether a fetched page really is the hub it was predicted to be.

State machine per candidate (recorded in ValidationResult.history):

    pending -> fetched -> confirmed | rejected | inconclusive

Confirmed needs all of:
  - URL structure fits a hub of its kind (no date, no article/utility segment,
    sane depth; pair kinds name both entities in the path)
  - content looks like a listing (enough story links, not a single long article)
  - every entity check passes; place+topic and place+place kinds are conjunctive

Rejected on a decisive failure: 4xx, article page, dated URL, soft redirect to
the site root, a failed entity check.

Inconclusive when the page is ambiguous (empty, unfollowed redirect). Ambiguous
pages are re-fetched once after a backoff, then finalized as rejected.
Transient fetch failures (timeout, 429, 5xx, DNS) retry with exponential
backoff up to a cap, then finalize as inconclusive: the gap stays open for a
later run.

Sub-checks are plain functions so each can be tested alone:
    check_url_structure, analyze_content, check_entity
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import Config
from .errors import FetchError, StructuralError
from .interfaces import Fetcher, FetchResult
from .models import Candidate, CandidateKind, Entity, ValidationState, Verdict
from .parser_bs4 import PageProfile, profile_page
from .urls import canonicalize, has_disallowed_ext, is_dated_article, is_root_path, path_segments

logger = logging.getLogger(__name__)

# Path segments that mark a page as something other than a hub.
NON_HUB_SEGMENTS = frozenset({
    "article", "articles", "story", "stories", "post", "comment", "comments", "author",
    "about", "contact", "search", "login", "signup", "register", "account", "profile",
    "settings", "terms", "privacy", "help", "faq", "api", "feed", "rss", "video", "gallery",
})
MAX_HUB_DEPTH = 5
MIN_HUB_DEPTH = {
    CandidateKind.PLACE_TOPIC_HUB: 2,
    CandidateKind.HIERARCHICAL_PLACE_HUB: 2,
    CandidateKind.CROSS_PLACE_HUB: 2,
}

_AMBIGUOUS = object()


@dataclass(frozen=True)
class CheckResult:
    passed: bool
    reason: str
    decisive: bool = True


@dataclass(frozen=True)
class ContentAssessment:
    verdict: str            # "hub" | "article" | "ambiguous"
    reason: str
    metrics: Dict[str, object] = field(default_factory=dict)


@dataclass
class ValidationResult:
    candidate: Candidate
    verdict: Verdict
    reason: str
    history: List[ValidationState] = field(default_factory=lambda: [ValidationState.PENDING])
    status: Optional[int] = None
    final_url: str = ""
    article_urls: Tuple[str, ...] = ()
    evidence: Dict[str, object] = field(default_factory=dict)
    attempts: int = 0           # fetch calls actually made
    retries: int = 0            # re-fetches after a transient error or an ambiguous page
    transient: bool = False
    structural: bool = False
    cancelled: bool = False
    from_cache: bool = False
    fetch_duration_ms: float = 0.0

    @property
    def state(self) -> ValidationState:
        return self.history[-1]


# ---------------------------------- sub-checks ---------------------------------

def check_url_structure(url: str, cfg: Optional[Config] = None,
                        kind: Optional[CandidateKind] = None) -> CheckResult:
    segments = path_segments(url)
    if is_dated_article(url):
        return CheckResult(False, "URL contains a date; looks like an article")
    if cfg is not None and has_disallowed_ext(url.split("?", 1)[0], cfg.disallowed_ext):
        return CheckResult(False, "URL points at a non-HTML asset")
    bad = [s for s in segments if s in NON_HUB_SEGMENTS]
    if bad:
        return CheckResult(False, f"URL has non-hub segment {bad[0]!r}")
    if len(segments) > MAX_HUB_DEPTH:
        return CheckResult(False, f"URL path too deep ({len(segments)} segments)")
    if kind is not None and kind.is_hub:
        if not segments:
            return CheckResult(False, "site root is not a hub")
        # A pair hub names both entities: two segments, or one joined segment like 'us-china'.
        need = MIN_HUB_DEPTH.get(kind, 1)
        if len(segments) < need and not (kind.is_composite and "-" in segments[-1]):
            return CheckResult(False, f"{kind.value} URL needs {need} path segments, got {len(segments)}")
    return CheckResult(True, "URL shape fits a hub")


def analyze_content(profile: PageProfile, cfg: Config) -> ContentAssessment:
    metrics = {
        "links": len(profile.links),
        "article_links": len(profile.article_links),
        "nav_links": profile.nav_links,
        "paragraph_words": profile.paragraph_words,
        "article_tags": profile.article_tags,
        "og_type": profile.og_type,
    }
    enough_links = len(profile.article_links) >= cfg.min_hub_article_links
    if profile.is_empty:
        return ContentAssessment("ambiguous", "empty page", metrics)
    if profile.og_type == "article" and not enough_links:
        return ContentAssessment("article", "page declares og:type=article", metrics)
    if (profile.paragraph_words >= cfg.article_min_words and not enough_links
            and profile.article_tags <= 1):
        return ContentAssessment("article", "long body text with few story links", metrics)
    if enough_links:
        return ContentAssessment("hub", f"{len(profile.article_links)} story links", metrics)
    return ContentAssessment(
        "ambiguous", f"only {len(profile.article_links)} story links (need {cfg.min_hub_article_links})",
        metrics,
    )


def _segment_mentions(segments: List[str], token: str) -> bool:
    for seg in segments:
        if seg == token or f"-{token}-" in f"-{seg}-":
            return True
    return False


def check_entity(entity: Entity, url: str, profile: Optional[PageProfile]) -> CheckResult:
    """The page is about `entity` if its URL names it or its title/headings do."""
    segments = path_segments(url)
    for token in entity.tokens():
        if _segment_mentions(segments, token):
            return CheckResult(True, f"URL names {entity.id} as {token!r}")
    if profile is not None:
        for name in entity.names():
            pattern = re.compile(r"\b" + re.escape(name) + r"\b")
            if any(pattern.search(m) for m in profile.text_markers):
                return CheckResult(True, f"title/headings mention {name!r}")
    return CheckResult(False, f"no mention of {entity.id} in URL or headings")


# ------------------------------------ cache ------------------------------------

class ContentCache:
    """Small LRU of fetch results, so a URL is fetched at most once per run."""

    def __init__(self, max_entries: int = 256):
        self.max_entries = max_entries
        self._data: "OrderedDict[str, FetchResult]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, url: str) -> Optional[FetchResult]:
        with self._lock:
            res = self._data.get(url)
            if res is not None:
                self._data.move_to_end(url)
            return res

    def put(self, url: str, res: FetchResult) -> None:
        with self._lock:
            self._data[url] = res
            self._data.move_to_end(url)
            while len(self._data) > self.max_entries:
                self._data.popitem(last=False)

    def __len__(self) -> int:
        return len(self._data)


# ---------------------------------- validator ----------------------------------

class HubValidator:
    def __init__(self, fetcher: Fetcher, cfg: Config, cache: Optional[ContentCache] = None):
        self.fetcher = fetcher
        self.cfg = cfg
        self.cache = cache if cache is not None else ContentCache(cfg.content_cache_size)

    def validate(self, candidate: Candidate, cancel: Optional[threading.Event] = None) -> ValidationResult:
        res = ValidationResult(candidate, Verdict.INCONCLUSIVE, "")
        try:
            url = canonicalize(candidate.url)
        except StructuralError as exc:
            return self._finish(res, Verdict.REJECTED, str(exc), structural=True)

        url_check = check_url_structure(url, self.cfg, candidate.kind)
        res.evidence["url_check"] = url_check.reason
        if not url_check.passed:
            return self._finish(res, Verdict.REJECTED, url_check.reason, structural=True)

        for attempt in range(1 + self.cfg.inconclusive_retries):
            if attempt:
                res.retries += 1
                if self._wait(self.cfg.backoff_base_sec, cancel):
                    return self._cancelled(res)
            try:
                page = self._fetch(url, res, cancel, use_cache=attempt == 0)
            except FetchError as exc:
                if exc.cancelled:
                    return self._cancelled(res)
                if exc.transient:
                    res.status = exc.status
                    return self._finish(res, Verdict.INCONCLUSIVE, f"gave up after transient errors: {exc}",
                                        transient=True)
                if exc.kind == "redirect-loop":
                    res.history.append(ValidationState.INCONCLUSIVE)
                    res.evidence["ambiguous"] = str(exc)
                    continue
                return self._finish(res, Verdict.REJECTED, str(exc))

            res.history.append(ValidationState.FETCHED)
            res.status = page.status
            res.final_url = page.final_url
            res.fetch_duration_ms = page.fetch_duration_ms

            decided = self._judge_response(res, url, page)
            if decided is _AMBIGUOUS:
                res.history.append(ValidationState.INCONCLUSIVE)
                continue
            if decided is not None:
                return decided

            profile = profile_page(page.content, page.final_url or url)
            content = analyze_content(profile, self.cfg)
            res.evidence["content"] = content.metrics
            res.evidence["content_reason"] = content.reason
            if content.verdict == "article":
                return self._finish(res, Verdict.REJECTED, content.reason)
            if content.verdict == "ambiguous":
                res.history.append(ValidationState.INCONCLUSIVE)
                res.evidence["ambiguous"] = content.reason
                continue
            return self._judge_entities(res, page.final_url or url, profile)

        return self._finish(res, Verdict.REJECTED,
                            f"still inconclusive after retry: {res.evidence.get('ambiguous', 'ambiguous page')}")

    def index_article(self, candidate: Candidate, cancel: Optional[threading.Event] = None) -> ValidationResult:
        """Fetch an article surfaced by a hub. Confirmed here just means 'fetched OK'."""
        res = ValidationResult(candidate, Verdict.INCONCLUSIVE, "")
        try:
            url = canonicalize(candidate.url)
            page = self._fetch(url, res, cancel, use_cache=True)
        except StructuralError as exc:
            return self._finish(res, Verdict.REJECTED, str(exc), structural=True)
        except FetchError as exc:
            if exc.cancelled:
                return self._cancelled(res)
            return self._finish(res, Verdict.INCONCLUSIVE if exc.transient else Verdict.REJECTED,
                                str(exc), transient=exc.transient)
        res.history.append(ValidationState.FETCHED)
        res.status = page.status
        res.final_url = page.final_url
        res.fetch_duration_ms = page.fetch_duration_ms
        if page.status == 200:
            return self._finish(res, Verdict.CONFIRMED, "article indexed")
        return self._finish(res, Verdict.REJECTED, f"HTTP {page.status}")

    # -------------------------------- internals --------------------------------

    def _judge_response(self, res: ValidationResult, url: str, page: FetchResult):
        """
        Decide on status, content type and redirects alone.
        Returns a finished result, _AMBIGUOUS, or None to go on to content analysis.
        """
        if 400 <= page.status < 500:
            return self._finish(res, Verdict.REJECTED, f"HTTP {page.status}")
        if 300 <= page.status < 400:
            res.evidence["ambiguous"] = f"unfollowed redirect (HTTP {page.status})"
            return _AMBIGUOUS
        if page.status != 200:
            return self._finish(res, Verdict.REJECTED, f"HTTP {page.status}")
        if page.content_type and not page.content_type.startswith(self.cfg.html_mime_prefix):
            return self._finish(res, Verdict.REJECTED, f"not HTML ({page.content_type})")
        final = page.final_url or url
        if final != url:
            res.evidence["redirected_to"] = final
            if is_root_path(final) and not is_root_path(url):
                return self._finish(res, Verdict.REJECTED, "redirected to site root")
            moved = check_url_structure(final, self.cfg, res.candidate.kind)
            if not moved.passed:
                return self._finish(res, Verdict.REJECTED, f"redirect target: {moved.reason}")
        return None

    def _judge_entities(self, res: ValidationResult, url: str, profile: PageProfile) -> ValidationResult:
        checks = {e.id: check_entity(e, url, profile) for e in res.candidate.entities}
        res.evidence["entity_checks"] = {k: (v.passed, v.reason) for k, v in checks.items()}
        failed = [k for k, v in checks.items() if not v.passed]
        if failed:
            return self._finish(res, Verdict.REJECTED, f"entity check failed for {', '.join(failed)}")
        res.article_urls = tuple(profile.article_links)
        res.evidence["article_links"] = len(profile.article_links)
        return self._finish(res, Verdict.CONFIRMED, f"validated as {res.candidate.kind.value}")

    def _fetch(self, url: str, res: ValidationResult, cancel: Optional[threading.Event],
               use_cache: bool) -> FetchResult:
        if use_cache:
            cached = self.cache.get(url)
            if cached is not None:
                res.from_cache = True
                return cached
        cap = self.cfg.max_transient_retries
        for i in range(cap + 1):
            if cancel is not None and cancel.is_set():
                raise FetchError(f"cancelled: {url}", kind="cancelled")
            res.attempts += 1
            try:
                page = self.fetcher.fetch(url, self.cfg.fetch_timeout_sec, cancel)
                # Fetchers may hand back 429 or 5xx as a plain response.
                transient = FetchError.for_status(url, page.status)
                if transient is not None:
                    raise transient
            except FetchError as exc:
                if not exc.transient or i == cap:
                    raise
                res.retries += 1
                delay = self.cfg.backoff_base_sec * (2 ** i)
                logger.debug("transient %s on %s; retry %d in %.2fs", exc.kind, url, i + 1, delay)
                if self._wait(delay, cancel):
                    raise FetchError(f"cancelled: {url}", kind="cancelled") from exc
                continue
            self.cache.put(url, page)
            return page
        raise AssertionError("unreachable")

    @staticmethod
    def _wait(delay: float, cancel: Optional[threading.Event]) -> bool:
        """Sleep `delay` seconds; True if cancelled meanwhile."""
        if delay <= 0:
            return cancel is not None and cancel.is_set()
        if cancel is None:
            time.sleep(delay)
            return False
        return cancel.wait(delay)

    @staticmethod
    def _finish(res: ValidationResult, verdict: Verdict, reason: str, *,
                transient: bool = False, structural: bool = False) -> ValidationResult:
        res.verdict = verdict
        res.reason = reason
        res.transient = transient
        res.structural = structural
        state = ValidationState(verdict.value)
        if res.history[-1] is not state:
            res.history.append(state)
        return res

    @staticmethod
    def _cancelled(res: ValidationResult) -> ValidationResult:
        res.cancelled = True
        return HubValidator._finish(res, Verdict.INCONCLUSIVE, "cancelled")
