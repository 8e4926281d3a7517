# hubcrawl/gazetteer.py
"""
Read-only reference gazetteer.

StaticGazetteer holds a fixed set of Entity objects in memory. It is loaded once
per run (usually from JSON) and shared between threads without locking, since
nothing mutates it after construction.

JSON layout:
    {"entities": [
        {"kind": "country", "id": "fr", "name": "France", "importance": 90,
         "code": "fr", "aliases": ["french"], "parent": null,
         "domains": ["lemonde.fr"]},
        ...
    ]}
"""

from __future__ import annotations

import json
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from .models import Entity, EntityKind
from .urls import normalize_domain

# Globally important entities used when a domain has no ranked entities at all.
SEED_ENTITIES: List[Entity] = [
    Entity(EntityKind.COUNTRY, "us", "United States", 100, code="us", aliases=("usa", "america")),
    Entity(EntityKind.COUNTRY, "cn", "China", 95, code="cn"),
    Entity(EntityKind.COUNTRY, "gb", "United Kingdom", 90, code="uk", aliases=("britain",)),
    Entity(EntityKind.COUNTRY, "in", "India", 88, code="in"),
    Entity(EntityKind.COUNTRY, "ru", "Russia", 85, code="ru"),
    Entity(EntityKind.COUNTRY, "fr", "France", 80, code="fr"),
    Entity(EntityKind.COUNTRY, "de", "Germany", 80, code="de"),
    Entity(EntityKind.COUNTRY, "jp", "Japan", 75, code="jp"),
    Entity(EntityKind.TOPIC, "politics", "Politics", 90),
    Entity(EntityKind.TOPIC, "business", "Business", 85, aliases=("economy",)),
    Entity(EntityKind.TOPIC, "technology", "Technology", 80, aliases=("tech",)),
    Entity(EntityKind.TOPIC, "sport", "Sport", 75, aliases=("sports",)),
    Entity(EntityKind.TOPIC, "science", "Science", 70),
]


class StaticGazetteer:
    """In-memory gazetteer. Entity ids must be unique across kinds."""

    def __init__(self, entities: Iterable[Entity]):
        self._by_id: Dict[str, Entity] = {}
        self._by_kind: Dict[EntityKind, List[Entity]] = defaultdict(list)
        self._children: Dict[str, List[Entity]] = defaultdict(list)
        for e in entities:
            if e.id in self._by_id:
                raise ValueError(f"duplicate entity id: {e.id}")
            self._by_id[e.id] = e
            self._by_kind[e.kind].append(e)
            if e.parent_id:
                self._children[e.parent_id].append(e)

    def __len__(self) -> int:
        return len(self._by_id)

    @classmethod
    def from_dict(cls, data: dict) -> "StaticGazetteer":
        entities = []
        for row in data.get("entities", []):
            entities.append(Entity(
                kind=EntityKind(row["kind"]),
                id=str(row["id"]),
                name=row["name"],
                importance=float(row.get("importance") or 0.0),
                parent_id=row.get("parent"),
                aliases=tuple(row.get("aliases") or ()),
                code=row.get("code"),
                domain_hints=tuple(normalize_domain(d) for d in row.get("domains") or ()),
            ))
        return cls(entities)

    @classmethod
    def load(cls, path: str) -> "StaticGazetteer":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def list_entities(self, kind: EntityKind, domain_hints: Iterable[str] = ()) -> List[Entity]:
        """
        Entities of `kind` relevant to the hinted domains. An entity without
        domain hints is relevant everywhere.
        """
        hints = {normalize_domain(h) for h in domain_hints}
        out = []
        for e in self._by_kind.get(kind, []):
            if not e.domain_hints or not hints or hints.intersection(e.domain_hints):
                out.append(e)
        return out

    def importance_rank(self, entity: Entity) -> float:
        return entity.importance

    def get(self, entity_id: str) -> Optional[Entity]:
        return self._by_id.get(entity_id)

    def children(self, entity_id: str) -> List[Entity]:
        return list(self._children.get(entity_id, []))
