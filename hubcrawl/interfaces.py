# hubcrawl/interfaces.py
"""
Boundary contracts the engine consumes.

The engine never imports a concrete fetcher, gazetteer, store or telemetry sink;
it talks to these protocols. Default implementations live in fetch.py,
gazetteer.py, storage.py and telemetry.py.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Protocol

from .models import CandidateKind, Entity, EntityKind, HubRecord, LearnedPattern


@dataclass(frozen=True)
class FetchResult:
    url: str
    status: int
    final_url: str
    content: bytes
    content_type: str
    fetch_duration_ms: float
    truncated: bool = False


class Fetcher(Protocol):
    def fetch(self, url: str, timeout: float, cancel: Optional[threading.Event] = None) -> FetchResult:
        """Return a response (any status) or raise FetchError."""


class Gazetteer(Protocol):
    def list_entities(self, kind: EntityKind, domain_hints: Iterable[str] = ()) -> List[Entity]: ...

    def importance_rank(self, entity: Entity) -> float: ...

    def get(self, entity_id: str) -> Optional[Entity]: ...

    def children(self, entity_id: str) -> List[Entity]: ...


class Storage(Protocol):
    def get_hub_record(self, url: str) -> Optional[HubRecord]: ...

    def put_hub_record(self, record: HubRecord) -> None: ...

    def hub_records(self, domain: Optional[str] = None) -> List[HubRecord]: ...

    def get_learned_patterns(self, domain: str, kind: CandidateKind) -> List[LearnedPattern]: ...

    def put_learned_pattern(self, pattern: LearnedPattern) -> None: ...

    def get_coverage_snapshot(self, domain: str) -> FrozenSet[str]: ...


class TelemetrySink(Protocol):
    def emit(self, event_type: str, domain: str = "", **data) -> None: ...
