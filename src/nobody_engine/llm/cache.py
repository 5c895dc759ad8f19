"""Bounded, thread-safe response cache with TTL expiry and LRU eviction.

Keys are request fingerprints computed by
:class:`~nobody_engine.llm.client.LLMClient`; values are normalised
:class:`~nobody_engine.llm.models.LLMResponse` objects.

Eviction
--------
Every :meth:`ResponseCache.insert` and :meth:`ResponseCache.get` first
sweeps out entries older than the TTL, so an expired entry is never
returned even if nothing else touched the cache in the meantime.  An
insert of a *new* key into a full cache then evicts the entry with the
smallest access tick.  Both successful reads and writes draw a fresh tick
from one monotonically increasing counter, so recency reflects reads as
well as writes.

Locking
-------
A single ``threading.Lock`` guards all state.  Critical sections are the
sweep plus one dict lookup or assignment; the lock is never held across
network I/O (the client only calls in here before and after its HTTP
round-trip).  The lock is always taken through ``with``, so an exception
raised inside a critical section releases it, and every mutation is a
single dict operation, so an aborted section leaves the mapping
consistent.  There is no poisoned state to recover from.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from nobody_engine.llm.models import LLMResponse

logger = logging.getLogger(__name__)

DEFAULT_CACHE_MAX_ENTRIES = 512
DEFAULT_CACHE_TTL_SECONDS = 600.0


@dataclass
class CacheEntry:
    """One cached response.

    Attributes:
        response:    The cached response.
        cached_at:   Clock reading when the entry was written.
        last_access: Tick of the most recent read or write.
    """

    response: LLMResponse
    cached_at: float
    last_access: int


class ResponseCache:
    """Fingerprint → response store bounded by size and age.

    Attributes:
        _max_entries: Maximum live entries after an insert (at least 1).
        _ttl:         Maximum entry age in seconds.
        _clock:       Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max(max_entries, 1)
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._access_counter = 0
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    # ── Public API ────────────────────────────────────────────────────────────

    def insert(self, key: str, response: LLMResponse) -> None:
        """Store ``response`` under ``key``, evicting if the cache is full."""
        with self._lock:
            self._purge_expired()

            if key not in self._entries and len(self._entries) >= self._max_entries:
                self._evict_lru()

            self._entries[key] = CacheEntry(
                response=response,
                cached_at=self._clock(),
                last_access=self._next_tick(),
            )

    def get(self, key: str) -> LLMResponse | None:
        """Return the live response for ``key`` and refresh its recency."""
        with self._lock:
            self._purge_expired()
            entry = self._entries.get(key)
            if entry is None:
                return None
            entry.last_access = self._next_tick()
            return entry.response

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        # Counts entries not yet swept; expiry only runs on insert/get.
        with self._lock:
            return len(self._entries)

    # ── Internal helpers (caller holds the lock) ──────────────────────────────

    def _next_tick(self) -> int:
        self._access_counter += 1
        return self._access_counter

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items() if now - entry.cached_at > self._ttl
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("ResponseCache: purged %d expired entries", len(expired))

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda k: self._entries[k].last_access)
        del self._entries[oldest_key]
        logger.debug("ResponseCache: evicted LRU entry %s", oldest_key[:16])
