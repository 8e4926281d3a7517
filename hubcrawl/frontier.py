# hubcrawl/frontier.py
"""
The shared frontier and per-domain politeness throttle.

Frontier
--------
• Bounded max-priority heap of ScoredCandidate (higher score pops first)
• Ties pop in push order (monotonic sequence number), so a planning cycle's
  batch is dispatched in exactly the order the planner ranked it
• When full, a new entry evicts the current worst only if it scores higher
• pop_ready() pops the best entry whose host is not throttled; within one
  host entries still pop in score order. If every host is throttled, nothing
  pops and the caller learns how long to wait

Both classes guard their state with one short lock; the frontier takes the
throttle's lock while holding its own (never the other way round).
"""

from __future__ import annotations

import heapq
import threading
import time
from typing import Callable, Dict, List, Optional, Set, Tuple

from .models import ScoredCandidate
from .urls import domain_of


class DomainThrottle:
    """Minimum interval between fetch starts to the same host."""

    def __init__(self, min_interval_sec: float, clock: Callable[[], float] = time.monotonic):
        self.min_interval = max(0.0, float(min_interval_sec))
        self.clock = clock
        self._next_allowed: Dict[str, float] = {}
        self._lock = threading.Lock()

    def wait_time(self, host: str) -> float:
        with self._lock:
            return max(0.0, self._next_allowed.get(host, 0.0) - self.clock())

    def reserve(self, host: str) -> float:
        """
        Claim the next fetch slot for `host`.
        Returns 0.0 when claimed, otherwise the seconds left until it can be.
        """
        with self._lock:
            now = self.clock()
            due = self._next_allowed.get(host, 0.0)
            if now < due:
                return due - now
            self._next_allowed[host] = now + self.min_interval
            return 0.0


class Frontier:
    def __init__(self, capacity: int):
        self.capacity = max(1, int(capacity))
        self._heap: List[Tuple[float, int, ScoredCandidate]] = []
        self._urls: Set[str] = set()
        self._seq = 0
        self._lock = threading.Lock()
        self.evicted = 0
        self.dropped = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    def __contains__(self, url: str) -> bool:
        with self._lock:
            return url in self._urls

    def push(self, item: ScoredCandidate) -> bool:
        """Queue one scored candidate. Returns False if it was a duplicate or did not fit."""
        with self._lock:
            url = item.candidate.url
            if url in self._urls:
                return False
            if len(self._heap) >= self.capacity:
                worst = max(range(len(self._heap)), key=lambda i: self._heap[i][:2])
                if -self._heap[worst][0] >= item.score:
                    self.dropped += 1
                    return False
                _, _, gone = self._heap.pop(worst)
                self._urls.discard(gone.candidate.url)
                heapq.heapify(self._heap)
                self.evicted += 1
            self._seq += 1
            heapq.heappush(self._heap, (-item.score, self._seq, item))
            self._urls.add(url)
            return True

    def peek(self) -> Optional[ScoredCandidate]:
        with self._lock:
            return self._heap[0][2] if self._heap else None

    def pop_ready(self, throttle: Optional[DomainThrottle] = None) -> Tuple[Optional[ScoredCandidate], float]:
        """
        Pop the best candidate whose host may be fetched now.

        Entries for a throttled host stay queued; the best entry of the next
        ready host pops instead. Returns (item, 0.0) on success, (None, wait_sec)
        when every queued host is throttled, and (None, 0.0) when empty.
        """
        with self._lock:
            if not self._heap:
                return None, 0.0
            if throttle is None:
                _, _, top = heapq.heappop(self._heap)
                self._urls.discard(top.candidate.url)
                return top, 0.0

            waits: Dict[str, float] = {}
            for entry in sorted(self._heap, key=lambda e: e[:2]):
                item = entry[2]
                host = item.candidate.domain or domain_of(item.candidate.url)
                if host in waits:
                    continue
                wait = throttle.reserve(host)
                if wait > 0:
                    waits[host] = wait
                    continue
                self._heap.remove(entry)
                heapq.heapify(self._heap)
                self._urls.discard(item.candidate.url)
                return item, 0.0
            return None, min(waits.values())

    def clear(self) -> int:
        """Drop everything queued. Returns how many entries were discarded."""
        with self._lock:
            n = len(self._heap)
            self._heap.clear()
            self._urls.clear()
            return n

    def rescore(self, fn: Callable[[ScoredCandidate], ScoredCandidate]) -> None:
        """Re-rank every queued entry (e.g. after a mode change); push order still breaks ties."""
        with self._lock:
            self._heap = [(-new.score, seq, new) for (_, seq, old) in self._heap for new in (fn(old),)]
            heapq.heapify(self._heap)

    def snapshot(self) -> List[ScoredCandidate]:
        """Queued entries, best first. A copy; the frontier keeps running."""
        with self._lock:
            return [item for _, _, item in sorted(self._heap, key=lambda e: e[:2])]
