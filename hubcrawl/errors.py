# hubcrawl/errors.py
"""
Exception taxonomy for the hub crawler.

Four families, matching how the controller reacts to them:
  - FetchError        : the fetch pipeline failed. `transient` decides retry vs. give up.
  - StructuralError   : the URL or a template is malformed. Rejected at once, never learned.
  - FatalStartupError : storage or gazetteer unusable. Raised before the crawl starts running.
  - HubCrawlError     : common base, so callers can catch everything we raise.

Plugin and strategy failures are not modelled as a type here: whatever they raise is
caught at the planner boundary and logged as a warning.
"""

from typing import Optional


class HubCrawlError(Exception):
    """Base class for every error raised by hubcrawl."""


class FetchError(HubCrawlError):
    """
    A fetch did not produce a response we can analyze.

    kind is a short machine label ("timeout", "rate-limited", "dns", "network",
    "http", "redirect-loop", "robots", "cancelled"). Transient failures are
    retried with backoff; the rest are final on first sight.
    """

    TRANSIENT_KINDS = frozenset({"timeout", "rate-limited", "dns", "network", "server"})

    def __init__(self, message: str, kind: str = "network", transient: Optional[bool] = None,
                 status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status
        self.transient = kind in self.TRANSIENT_KINDS if transient is None else transient

    @property
    def cancelled(self) -> bool:
        return self.kind == "cancelled"

    @classmethod
    def for_status(cls, url: str, status: int) -> Optional["FetchError"]:
        """The transient error an HTTP status stands for (429, 408, 5xx), or None."""
        if status == 429:
            return cls(f"rate limited: {url}", kind="rate-limited", status=status)
        if status == 408:
            return cls(f"request timeout: {url}", kind="timeout", status=status)
        if 500 <= status <= 599:
            return cls(f"server error {status}: {url}", kind="server", status=status)
        return None


class StructuralError(HubCrawlError):
    """Malformed URL or template; the candidate is rejected without retry."""


class FatalStartupError(HubCrawlError):
    """The crawl cannot start (storage unreachable, gazetteer empty)."""
