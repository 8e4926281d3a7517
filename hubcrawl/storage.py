# hubcrawl/storage.py
"""
Key/record stores for hub records and learned patterns.

MemoryStorage keeps everything in dicts. JsonFileStorage adds load/save to a
single JSON file so a CLI run can resume what a previous run learned.

Both are written to from the controller's outcome thread only.
"""

from __future__ import annotations

import json
import logging
import os
from collections import defaultdict
from typing import Dict, FrozenSet, List, Optional, Tuple

from .models import CandidateKind, HubRecord, LearnedPattern, Verdict

logger = logging.getLogger(__name__)


class MemoryStorage:
    def __init__(self):
        self._hubs: Dict[str, HubRecord] = {}
        self._patterns: Dict[Tuple[str, CandidateKind], Dict[str, LearnedPattern]] = defaultdict(dict)

    # ------------------------------ hub records ------------------------------

    def get_hub_record(self, url: str) -> Optional[HubRecord]:
        return self._hubs.get(url)

    def put_hub_record(self, record: HubRecord) -> None:
        prior = self._hubs.get(record.url)
        self._hubs[record.url] = prior.merged_with(record) if prior else record

    def hub_records(self, domain: Optional[str] = None) -> List[HubRecord]:
        return [r for r in self._hubs.values() if domain is None or r.domain == domain]

    def get_coverage_snapshot(self, domain: str) -> FrozenSet[str]:
        return frozenset(
            r.coverage_key for r in self._hubs.values()
            if r.domain == domain and r.verdict is Verdict.CONFIRMED
        )

    def confirmed_urls(self, domain: str) -> Dict[str, str]:
        """coverage key -> confirmed hub URL (first one wins)."""
        out: Dict[str, str] = {}
        for r in self._hubs.values():
            if r.domain == domain and r.verdict is Verdict.CONFIRMED:
                out.setdefault(r.coverage_key, r.url)
        return out

    # ---------------------------- learned patterns ---------------------------

    def get_learned_patterns(self, domain: str, kind: CandidateKind) -> List[LearnedPattern]:
        return list(self._patterns.get((domain, kind), {}).values())

    def put_learned_pattern(self, pattern: LearnedPattern) -> None:
        self._patterns[(pattern.domain, pattern.kind)][pattern.template] = pattern


class JsonFileStorage(MemoryStorage):
    """MemoryStorage persisted to one JSON file. Call save() to flush."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        if os.path.exists(path):
            self._load()

    def _load(self) -> None:
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        for row in data.get("hubs", []):
            rec = HubRecord.from_dict(row)
            self._hubs[rec.url] = rec
        for row in data.get("patterns", []):
            MemoryStorage.put_learned_pattern(self, LearnedPattern.from_dict(row))
        logger.info("loaded %d hub records and %d patterns from %s",
                    len(self._hubs), len(data.get("patterns", [])), self.path)

    def save(self) -> None:
        data = {
            "hubs": [r.to_dict() for r in self._hubs.values()],
            "patterns": [p.to_dict() for bucket in self._patterns.values() for p in bucket.values()],
        }
        parent = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(parent, exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp, self.path)
