"""In-memory cache of each family's active categories.

Expense and dashboard lookups resolve category names, colours and the
budget-exclusion flag through this cache instead of querying the
database. Entries are keyed by family UUID, expire after a TTL and are
evicted whenever a category of that family changes.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger("accountbook.services")


@dataclass(frozen=True)
class CategorySnapshot:
    """Immutable copy of a category row as stored in the cache."""
    uuid: str
    family_uuid: str
    name: str
    color: str
    icon: Optional[str]
    exclude_from_budget: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, category) -> "CategorySnapshot":
        return cls(
            uuid=category.uuid,
            family_uuid=category.family_uuid,
            name=category.name,
            color=category.color,
            icon=category.icon,
            exclude_from_budget=bool(category.exclude_from_budget),
            created_at=category.created_at,
            updated_at=category.updated_at,
        )


class CategoryCache:
    def __init__(self, max_size: int = 500, ttl_seconds: int = 3600):
        self._cache: TTLCache = TTLCache(maxsize=max_size, ttl=ttl_seconds)
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, family_uuid: str) -> Optional[tuple[CategorySnapshot, ...]]:
        with self._lock:
            entry = self._cache.get(family_uuid)
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
            return entry

    def put(self, family_uuid: str, categories) -> tuple[CategorySnapshot, ...]:
        entry = tuple(categories)
        with self._lock:
            self._cache[family_uuid] = entry
        return entry

    def evict(self, family_uuid: str) -> None:
        with self._lock:
            removed = self._cache.pop(family_uuid, None)
        if removed is not None:
            logger.debug("category cache evicted family=%s", family_uuid)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict:
        with self._lock:
            return {"hits": self._hits, "misses": self._misses, "size": len(self._cache)}
