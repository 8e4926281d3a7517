# hubcrawl/fetch.py
"""
Default fetch pipeline: standard library urllib, one request per call.

What it does
------------
- Identifies with the configured User-Agent
- Enforces a per-call timeout
- Reads HTML up to max_html_bytes, other content types only a small sniff
- Checks robots.txt (cached per host) unless disabled
- Maps failures onto FetchError kinds so the validator can decide retry vs. give up

HTTP error statuses are returned as FetchResult (status 404 etc.), not raised:
deciding what a 404 means is the validator's job. Only 429, 408 and 5xx are raised as
transient FetchErrors, because they say nothing about the page itself.
"""

from __future__ import annotations

import socket
import threading
import time
from typing import Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen
from urllib.robotparser import RobotFileParser

from .config import Config
from .errors import FetchError
from .interfaces import FetchResult
from .urls import domain_of


class RobotsCache:
    """
    Minimal cache around urllib.robotparser.RobotFileParser.

    We fetch /robots.txt once per host and cache it. If fetching or parsing fails,
    we default to allow.
    """

    def __init__(self, ua: str, max_entries: int = 2048):
        self.ua = ua
        self.max_entries = max_entries
        self._cache: Dict[str, RobotFileParser] = {}
        self._lock = threading.Lock()

    def allowed(self, url: str) -> bool:
        host = domain_of(url)
        if not host:
            return False
        with self._lock:
            rp = self._cache.get(host)
            if rp is None:
                rp = RobotFileParser()
                rp.set_url(f"{urlparse(url).scheme}://{host}/robots.txt")
                try:
                    rp.read()
                except (OSError, ValueError):
                    # Unreachable robots.txt: treat as allow-all.
                    rp.parse([])
                if len(self._cache) >= self.max_entries:
                    self._cache.pop(next(iter(self._cache)))
                self._cache[host] = rp
        return rp.can_fetch(self.ua, url)


class UrllibFetcher:
    def __init__(self, cfg: Config):
        self.cfg = cfg
        self.robots = RobotsCache(cfg.user_agent) if cfg.respect_robots else None

    def fetch(self, url: str, timeout: float, cancel: Optional[threading.Event] = None) -> FetchResult:
        if cancel is not None and cancel.is_set():
            raise FetchError(f"cancelled before fetch: {url}", kind="cancelled")
        if self.robots is not None and not self.robots.allowed(url):
            raise FetchError(f"robots.txt disallows {url}", kind="robots", transient=False)

        req = Request(url, headers={"User-Agent": self.cfg.user_agent})
        t0 = time.time()
        try:
            with urlopen(req, timeout=timeout) as resp:
                ct = resp.headers.get("Content-Type", "") or ""
                data, truncated = self._read_body(resp, ct, cancel)
                status = resp.getcode() or 200
                final_url = resp.geturl() or url
        except HTTPError as e:
            transient = FetchError.for_status(url, e.code)
            if transient is not None:
                raise transient from e
            if e.code in (301, 302, 303, 307, 308):
                raise FetchError(f"redirect loop: {url}", kind="redirect-loop", transient=False,
                                 status=e.code) from e
            return FetchResult(url, e.code, url, b"", "", (time.time() - t0) * 1000)
        except URLError as e:
            reason = e.reason
            if isinstance(reason, socket.timeout):
                raise FetchError(f"timeout: {url}", kind="timeout") from e
            if isinstance(reason, socket.gaierror):
                raise FetchError(f"dns failure: {url}", kind="dns") from e
            raise FetchError(f"network error {reason}: {url}", kind="network") from e
        except socket.timeout as e:
            raise FetchError(f"timeout: {url}", kind="timeout") from e
        except OSError as e:
            raise FetchError(f"network error {e}: {url}", kind="network") from e

        return FetchResult(url, status, final_url, data, ct, (time.time() - t0) * 1000, truncated)

    def _read_body(self, resp, ct: str, cancel: Optional[threading.Event]):
        """Read HTML body but stop at the cap; non-HTML gets a 4 KB sniff."""
        if not ct.startswith(self.cfg.html_mime_prefix):
            return resp.read(4096), False
        remaining = max(0, self.cfg.max_html_bytes)
        chunks = []
        while remaining > 0:
            if cancel is not None and cancel.is_set():
                raise FetchError("cancelled during read", kind="cancelled")
            chunk = resp.read(min(65536, remaining))
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks), remaining <= 0
