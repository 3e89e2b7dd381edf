"""TTL cache for orchestration results.

Keys are canonical hashes of (feature, payload). An entry past its
``expires_at`` is indistinguishable from a miss and is evicted lazily
on the next access or by ``sweep()``. Stored and returned results are
deep copies, so callers cannot change what later hits see.
"""

import copy
import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Mapping, Optional

from ..interfaces import CacheEntry, Feature, OrchestrationResult

logger = logging.getLogger(__name__)


def cache_key(feature: Feature, payload: Mapping[str, Any]) -> str:
    """Canonical key for a feature request.

    Payload key order does not matter. Values that JSON cannot encode
    natively (datetimes, Decimals) are encoded with ``str``.
    """
    canonical = json.dumps(
        {"feature": feature.value, "payload": dict(payload)},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{feature.value}:{digest}"


class ResultCache:
    """In-process result cache with per-entry TTL.

    Usage:
        cache = ResultCache()
        key = cache_key(Feature.PRICE, {"distance": 8.5, "time": 25})
        cache.put(key, result, ttl_seconds=300)
        hit = cache.get(key)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[OrchestrationResult]:
        """Return the cached result, or None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return copy.deepcopy(entry.value)

    def put(self, key: str, value: OrchestrationResult, ttl_seconds: float) -> None:
        """Store a result. A non-positive TTL stores nothing."""
        if ttl_seconds <= 0:
            return
        entry = CacheEntry(key=key, value=copy.deepcopy(value), expires_at=self._clock() + ttl_seconds)
        with self._lock:
            self._entries[key] = entry

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_feature(self, feature: Feature) -> int:
        """Drop every entry for a feature. Returns the number removed."""
        prefix = f"{feature.value}:"
        with self._lock:
            stale = [k for k in self._entries if k.startswith(prefix)]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached {feature.value} results")
        return len(stale)

    def sweep(self) -> int:
        """Evict all expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
