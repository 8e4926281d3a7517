"""Shared fixtures and fakes. Nothing here touches the network."""

import threading
from typing import Dict, List, Optional, Union

import pytest

from hubcrawl.config import Config
from hubcrawl.errors import FetchError
from hubcrawl.gazetteer import StaticGazetteer
from hubcrawl.interfaces import FetchResult
from hubcrawl.models import Entity, EntityKind
from hubcrawl.storage import MemoryStorage
from hubcrawl.telemetry import TelemetryBus

DOMAIN = "news.example.com"

FRANCE = Entity(EntityKind.COUNTRY, "fr", "France", 90, code="fr")
GERMANY = Entity(EntityKind.COUNTRY, "de", "Germany", 60, code="de")
JAPAN = Entity(EntityKind.COUNTRY, "jp", "Japan", 30, code="jp")
USA = Entity(EntityKind.COUNTRY, "us", "United States", 100, code="us", aliases=("america",))
CHINA = Entity(EntityKind.COUNTRY, "cn", "China", 95, code="cn")
CALIFORNIA = Entity(EntityKind.REGION, "us-ca", "California", 70, parent_id="us", code="ca")
POLITICS = Entity(EntityKind.TOPIC, "politics", "Politics", 80)
SPORT = Entity(EntityKind.TOPIC, "sport", "Sport", 40, aliases=("sports",))


def hub_html(title: str, path: str, n_articles: int = 8, host: str = DOMAIN) -> bytes:
    """A listing page: a title, a heading and n same-host story links under `path`."""
    base = path.rstrip("/")
    items = "".join(
        f'<li><a href="https://{host}{base}/a-long-story-slug-{i}">Story {i}</a></li>'
        for i in range(n_articles)
    )
    return (f"<html><head><title>{title} | Example News</title></head>"
            f"<body><nav><a href='/'>Home</a></nav><h1>{title}</h1><ul>{items}</ul></body></html>"
            ).encode("utf-8")


def page(url: str, content: bytes = b"", status: int = 200, final_url: Optional[str] = None,
         content_type: str = "text/html; charset=utf-8", ms: float = 20.0) -> FetchResult:
    return FetchResult(url=url, status=status, final_url=final_url or url, content=content,
                       content_type=content_type, fetch_duration_ms=ms)


class FakeFetcher:
    """
    url -> FetchResult | Exception. Unknown URLs answer 404.
    Set `block` to make fetches wait on the cancel event (or `release`).
    """

    def __init__(self, pages: Optional[Dict[str, Union[FetchResult, Exception]]] = None, block: bool = False):
        self.pages = dict(pages or {})
        self.calls: List[str] = []
        self.block = block
        self.release = threading.Event()
        self.started = threading.Semaphore(0)
        self._lock = threading.Lock()

    def fetch(self, url, timeout, cancel=None):
        with self._lock:
            self.calls.append(url)
        if self.block:
            self.started.release()
            while not self.release.is_set():
                if cancel is not None and cancel.wait(0.01):
                    raise FetchError(f"cancelled: {url}", kind="cancelled")
        got = self.pages.get(url)
        if isinstance(got, Exception):
            raise got
        if got is None:
            return page(url, b"", status=404)
        return got


class RecordingTelemetry:
    """TelemetrySink that keeps (type, domain, data) tuples in order."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def emit(self, event_type, domain="", **data):
        with self._lock:
            self.events.append((event_type, domain, data))

    def of(self, event_type):
        with self._lock:
            return [e for e in self.events if e[0] == event_type]


@pytest.fixture
def cfg():
    return Config().with_overrides(
        log_path=None,
        backoff_base_sec=0.0,
        min_domain_interval_sec=0.0,
        idle_poll_sec=0.01,
        fetch_timeout_sec=1.0,
    )


@pytest.fixture
def countries():
    return StaticGazetteer([FRANCE, GERMANY, JAPAN])


@pytest.fixture
def world():
    return StaticGazetteer([USA, CHINA, FRANCE, CALIFORNIA, POLITICS, SPORT])


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest.fixture
def bus():
    b = TelemetryBus(queue_size=16)
    yield b
    b.close()
