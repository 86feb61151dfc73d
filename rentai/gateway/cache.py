"""Result Cache — TTL memoization for idempotent, expensive operations.

Keys are fingerprints: SHA-256 of the operation name plus the canonicalized
parameter bag, so semantically identical requests (same keys in a different
order, 3.0 vs 3, padded strings) share an entry.

Eviction:
  - Lazy: an expired entry is dropped on the lookup that finds it
  - Bounded: when full, expired entries are purged first, then the oldest
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from rentai.gateway.types import Operation, OperationParams, params_to_dict

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0  # 5 minutes
DEFAULT_MAX_ENTRIES = 100


def canonicalize(value: Any) -> Any:
    """Normalize a value so equivalent parameter bags serialize identically."""
    if isinstance(value, dict):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((canonicalize(v) for v in value), key=repr)
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return value.strip()
    return value


def fingerprint(operation: Operation, params: OperationParams | dict[str, Any]) -> str:
    """Deterministic cache key for (operation, params)."""
    bag = params if isinstance(params, dict) else params_to_dict(params)
    payload = json.dumps(
        {"operation": operation.value, "params": canonicalize(bag)},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    value: Any
    served_by: str
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class ResultCache:
    """Thread-safe in-memory TTL cache. Last write wins."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> CacheEntry | None:
        """Live entry for the key, or None on a miss."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry

    def put(self, key: str, value: Any, ttl: float | None = None, served_by: str = "") -> CacheEntry:
        entry = CacheEntry(
            fingerprint=key,
            value=value,
            served_by=served_by,
            created_at=self._clock(),
            ttl=self.ttl_seconds if ttl is None else ttl,
        )
        with self._lock:
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_entries:
                self._evict()
            self._entries[key] = entry
        return entry

    def _evict(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        while self._entries and len(self._entries) >= self.max_entries:
            oldest = min(self._entries.values(), key=lambda e: e.created_at)
            del self._entries[oldest.fingerprint]
        logger.debug("Cache eviction: %d expired purged, %d entries remain", len(expired), len(self._entries))

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def flush(self) -> int:
        """Drop every entry. Returns how many were removed."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Result cache flushed (%d entries)", count)
        return count

    def get_stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "maxEntries": self.max_entries,
            "ttlSeconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
        }

    def __len__(self) -> int:
        return len(self._entries)
