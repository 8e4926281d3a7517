# hubcrawl/telemetry.py
"""
Structured telemetry events.

The engine calls TelemetryBus.emit() from any thread. Events are stamped,
appended to a short in-memory history, and pushed onto a bounded queue that a
daemon thread drains into subscribers. emit() never waits: if the queue is
full the event is dropped for subscribers (history still has it) and counted.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

CANDIDATE_PROPOSED = "candidate-proposed"
CANDIDATE_DISPATCHED = "candidate-dispatched"
HUB_CONFIRMED = "hub-confirmed"
HUB_REJECTED = "hub-rejected"
HUB_INCONCLUSIVE = "hub-inconclusive"
GAP_FILLED = "gap-filled"
PATTERN_LEARNED = "pattern-learned"
LIFECYCLE_STAGE_CHANGED = "lifecycle-stage-changed"
PLANNING_WARNING = "planning-warning"


@dataclass(frozen=True)
class TelemetryEvent:
    type: str
    timestamp: float
    domain: str
    data: Dict[str, object] = field(default_factory=dict)


Subscriber = Callable[[TelemetryEvent], None]

_STOP = object()


class TelemetryBus:
    def __init__(self, queue_size: int = 1024, history_size: int = 10000):
        self._subs: List[Subscriber] = []
        self._subs_lock = threading.Lock()
        self._q: "queue.Queue[object]" = queue.Queue(maxsize=queue_size)
        self._history: Deque[TelemetryEvent] = deque(maxlen=history_size)
        self._history_lock = threading.Lock()
        self.dropped = 0
        self._thread: Optional[threading.Thread] = None

    def subscribe(self, fn: Subscriber) -> None:
        with self._subs_lock:
            self._subs.append(fn)
        self._ensure_thread()

    def emit(self, event_type: str, domain: str = "", **data) -> TelemetryEvent:
        ev = TelemetryEvent(event_type, time.time(), domain, data)
        with self._history_lock:
            self._history.append(ev)
        if self._subs:
            try:
                self._q.put_nowait(ev)
            except queue.Full:
                self.dropped += 1
        return ev

    def events(self, event_type: Optional[str] = None) -> List[TelemetryEvent]:
        """Recent events, oldest first, optionally filtered by type."""
        with self._history_lock:
            return [e for e in self._history if event_type is None or e.type == event_type]

    def close(self, timeout: float = 2.0) -> None:
        """Deliver what is queued, then stop the delivery thread."""
        if self._thread is None:
            return
        try:
            self._q.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("telemetry queue full at close; %d events undelivered", self._q.qsize())
            return
        self._thread.join(timeout)
        self._thread = None

    # -------------------------------- internals ------------------------------

    def _ensure_thread(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(target=self._deliver, name="telemetry", daemon=True)
            self._thread.start()

    def _deliver(self) -> None:
        while True:
            item = self._q.get()
            if item is _STOP:
                return
            with self._subs_lock:
                subs = list(self._subs)
            for fn in subs:
                try:
                    fn(item)
                except Exception:
                    logger.exception("telemetry subscriber %r failed", fn)
