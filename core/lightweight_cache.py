# core/lightweight_cache.py
"""
Small per-component in-memory result caches.

Each engine component owns its own `ResultCache` instance; there is no global
registry and no substring-based invalidation. Keys are hashable fingerprints
(`QueryFingerprint`, tuples of entity ids) and invalidation is an explicit
`clear()` issued by the owner, typically on every relationship graph mutation.

- TTL is optional (None = entries only leave by eviction or clear()).
- Caches are bounded (LRU eviction).
- Basic thread safety is provided via a lock.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from collections.abc import Hashable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


def _now() -> float:
    """Time source for TTL evaluation (monotonic for correctness).

    This is a dedicated function to make TTL behavior easy to test via monkeypatch.
    """
    return time.monotonic()


DEFAULT_MAXSIZE: int = 1024
"""Default cache bound to prevent unbounded growth."""


@dataclass(frozen=True)
class _CacheEntry:
    value: Any
    expires_at: float | None


class ResultCache:
    """Bounded cache with optional TTL, LRU eviction, hit/miss counters and a lock."""

    def __init__(self, name: str, *, maxsize: int = DEFAULT_MAXSIZE, ttl: float | None = None) -> None:
        if maxsize <= 0:
            raise ValueError(f"maxsize must be > 0, got {maxsize}")
        self.name = name
        self.maxsize = maxsize
        self.ttl = ttl
        self.hits = 0
        self.misses = 0
        self._lock = threading.Lock()
        self._data: OrderedDict[Hashable, _CacheEntry] = OrderedDict()

    def _purge_expired_locked(self, now: float) -> None:
        if not self._data:
            return

        expired_keys = [
            key for key, entry in self._data.items() if entry.expires_at is not None and entry.expires_at <= now
        ]
        for key in expired_keys:
            self._data.pop(key, None)

    def _evict_lru_locked(self) -> None:
        while len(self._data) > self.maxsize:
            # pop the least-recently-used key (front of OrderedDict)
            self._data.popitem(last=False)

    def get(self, key: Hashable) -> Any | None:
        now = _now()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return None

            if entry.expires_at is not None and entry.expires_at <= now:
                self._data.pop(key, None)
                self.misses += 1
                return None

            # LRU: reading counts as use
            self._data.move_to_end(key)
            self.hits += 1
            return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        now = _now()
        expires_at: float | None = None
        if self.ttl is not None:
            # ttl <= 0 means "immediately expired".
            expires_at = now + self.ttl

        with self._lock:
            self._purge_expired_locked(now)
            self._data[key] = _CacheEntry(value=value, expires_at=expires_at)
            self._data.move_to_end(key)
            self._evict_lru_locked()

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def size(self) -> int:
        now = _now()
        with self._lock:
            self._purge_expired_locked(now)
            return len(self._data)

    def __len__(self) -> int:
        return self.size()

    def metrics(self) -> dict[str, Any]:
        """Return minimal cache metrics."""
        with self._lock:
            lookups = self.hits + self.misses
            hit_rate = self.hits / lookups if lookups else 0.0
        return {
            "name": self.name,
            "size": self.size(),
            "maxsize": self.maxsize,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": hit_rate,
        }


def _canonical_json(value: Any) -> str:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    return json.dumps(value, sort_keys=True, default=str, separators=(",", ":"))


def digest(value: Any) -> str:
    """Return a stable sha256 hex digest of a model or JSON-compatible value."""
    return hashlib.sha256(_canonical_json(value).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class QueryFingerprint:
    """Structured cache key for query results.

    Two queries share a fingerprint only when the filter, the game-state snapshot,
    the requested entity type set and the result-shaping options are all equal.
    """

    filter_digest: str
    state_digest: str
    entity_types: tuple[str, ...]
    options_digest: str

    @classmethod
    def build(cls, query_filter: BaseModel, game_state: BaseModel, options: BaseModel) -> QueryFingerprint:
        entity_types = tuple(sorted(getattr(query_filter, "entity_types", None) or ()))
        return cls(
            filter_digest=digest(query_filter),
            state_digest=digest(game_state),
            entity_types=entity_types,
            options_digest=digest(options),
        )
