"""Thread-safe in-memory cache with LRU eviction, a byte-size ceiling and
per-entry expiry.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion.
• **Size tracking** via ``json.dumps`` byte length — values stored here are
  JSON-serialisable dicts (serialized conversation states, search results).
• **Expiry** is checked lazily on read; expired entries are dropped when
  touched or when room is needed.
• **threading.Lock** for thread safety (the worker and request handlers may
  share one cache).
• Purely ephemeral — data is lost on process restart.

>>> cache = TTLCache(max_bytes=1024 * 1024, ttl_seconds=300)
>>> cache.put("search:3:{}:hours", [{"content": "..."}])
>>> cache.get("search:3:{}:hours")
[{'content': '...'}]
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 20 * 1024 * 1024


class TTLCache:
    """Least-Recently-Used cache bounded by total estimated bytes, with expiry."""

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        ttl_seconds: float | None = None,
        *,
        clock=time.monotonic,
    ) -> None:
        self._max_bytes = max_bytes
        self._ttl = ttl_seconds
        self._clock = clock
        self._current_bytes = 0
        # key → (value, estimated_size_bytes, expires_at | None)
        self._store: OrderedDict[str, tuple[Any, int, float | None]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _estimate_bytes(value: Any) -> int:
        try:
            return len(json.dumps(value, default=str).encode("utf-8"))
        except (TypeError, ValueError, OverflowError):
            return len(str(value).encode("utf-8"))

    def _expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    def _drop(self, key: str) -> None:
        _, size, _ = self._store.pop(key)
        self._current_bytes -= size

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value (promoting it to MRU) or ``None`` if absent/expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, _, expires_at = entry
            if self._expired(expires_at):
                self._drop(key)
                logger.debug("Cache: expired %s", key)
                return None
            self._store.move_to_end(key)
            return value

    def put(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Insert or overwrite *key*.  Evicts expired, then LRU, entries if needed."""
        size = self._estimate_bytes(value)
        if size > self._max_bytes:
            # A stale older value must not outlive the write that replaced it
            with self._lock:
                if key in self._store:
                    self._drop(key)
            logger.warning(
                "Cache: skipping key %s (size %d > max %d)", key, size, self._max_bytes,
            )
            return

        ttl = ttl_seconds if ttl_seconds is not None else self._ttl
        expires_at = self._clock() + ttl if ttl is not None else None

        with self._lock:
            if key in self._store:
                self._drop(key)

            if self._current_bytes + size > self._max_bytes:
                for stale in [k for k, (_, _, exp) in self._store.items() if self._expired(exp)]:
                    self._drop(stale)

            while self._current_bytes + size > self._max_bytes and self._store:
                evicted_key, (_, evicted_size, _) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.debug("Cache: evicted %s (%d bytes)", evicted_key, evicted_size)

            self._store[key] = (value, size, expires_at)
            self._current_bytes += size

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            if key in self._store:
                self._drop(key)
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._current_bytes = 0

    # ── Introspection ────────────────────────────────────────────────

    @property
    def current_bytes(self) -> int:
        return self._current_bytes

    @property
    def entry_count(self) -> int:
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check if a live key is present *without* promoting it."""
        with self._lock:
            entry = self._store.get(key)
            return entry is not None and not self._expired(entry[2])

    def keys(self) -> list[str]:
        """Live keys, least recently used first."""
        with self._lock:
            return [k for k, (_, _, exp) in self._store.items() if not self._expired(exp)]
