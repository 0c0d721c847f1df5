"""AnalysisCache — TTL + capacity bounded cache for validated generative payloads."""
from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

logger = logging.getLogger("scenecast.script.cache")


class AnalysisCache:
    """Thread-safe in-memory cache keyed by script content hash.

    Entries expire ``ttl_sec`` after creation; above ``max_entries`` the
    oldest entries are evicted first. ``get_or_create`` serialises
    concurrent computations of the same key so identical requests make
    one external call.

    Values are stored and returned as-is, so callers cache budget-independent
    data (the validated model payload) and derive priced analyses from it.

    Construct one per process (or per test) and inject it; there is no
    module-level instance.
    """

    def __init__(
        self,
        ttl_sec: float = 600.0,
        max_entries: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.ttl_sec = ttl_sec
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}

    @staticmethod
    def key(script: str, platform: str, connected_providers: Iterable[str]) -> str:
        """SHA-256 of ``script|platform|sorted,providers``."""
        providers = ",".join(sorted(set(connected_providers)))
        return hashlib.sha256(f"{script}|{platform}|{providers}".encode("utf-8")).hexdigest()

    # ── public ────────────────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            created, value = entry
            if self._clock() - created > self.ttl_sec:
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock(), value)
            self._evict()

    def get_or_create(
        self,
        key: str,
        factory: Callable[[], Optional[Any]],
    ) -> Optional[Any]:
        """Return the cached value or compute, cache and return it.

        ``None`` results are returned but not cached.
        """
        cached = self.get(key)
        if cached is not None:
            logger.info("Analysis cache hit")
            return cached

        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            # another caller may have filled it while we waited
            cached = self.get(key)
            if cached is not None:
                logger.info("Analysis cache hit after wait")
                return cached
            value = factory()
            if value is not None:
                self.put(key, value)
        with self._lock:
            if not key_lock.locked():
                self._key_locks.pop(key, None)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    # ── internal ──────────────────────────────────────────────────────────────

    def _evict(self) -> None:
        """Drop expired entries, then oldest entries above capacity. Lock held."""
        now = self._clock()
        for k in [k for k, (created, _) in self._entries.items() if now - created > self.ttl_sec]:
            del self._entries[k]
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cache entry %s", evicted[:12])
