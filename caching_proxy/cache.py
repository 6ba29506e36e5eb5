"""
cache.py: Shared, byte-bounded response cache.

One :class:`CacheManager` is built at startup and handed to every
connection handler.  Entries are keyed by the raw request-target exactly
as the client sent it.

Synchronisation
~~~~~~~~~~~~~~~
:class:`ReaderWriterGate` implements the classic first-reader/last-reader
discipline: any number of lookups run together, the first one to arrive
locks writers out and the last one to leave lets them back in.  An insert
(and the eviction it triggers) holds the gate exclusively, so it never
overlaps a lookup or another insert.  Lookups that arrive while an insert
is running wait for it to finish.

The ``last_access`` bump done by a lookup is a write performed while other
readers may be active.  Two concurrent hits can therefore race on the
counter; the result is still a valid recency ordering for eviction, just
not a strictly serialised one.

Eviction
~~~~~~~~
True LRU by full scan: the entry with the smallest ``last_access`` goes
first.  Entries are kept newest-inserted first, and ties go to whichever
entry the scan meets first.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from .config import DEFAULT_CONFIG, ProxyConfig
from .log import get_logger

logger = get_logger(__name__)


class ReaderWriterGate:
    """Readers share the gate; a writer holds it alone.

    ``threading.Lock`` may be released by a thread other than the one that
    acquired it, which is what lets the last reader out release the
    exclusion taken by the first reader in.
    """

    __slots__ = ("_readers", "_count_lock", "_writer_lock")

    def __init__(self) -> None:
        self._readers = 0
        self._count_lock = threading.Lock()
        self._writer_lock = threading.Lock()

    @property
    def readers(self) -> int:
        return self._readers

    @contextmanager
    def shared(self) -> Iterator[None]:
        with self._count_lock:
            self._readers += 1
            if self._readers == 1:
                self._writer_lock.acquire()
        try:
            yield
        finally:
            with self._count_lock:
                self._readers -= 1
                if self._readers == 0:
                    self._writer_lock.release()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        with self._writer_lock:
            yield


@dataclass
class CacheEntry:
    key: str
    body: bytes
    size: int
    last_access: int


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time counters, for logging only."""

    entries: int = 0
    total_size: int = 0
    hits: int = 0
    misses: int = 0
    insertions: int = 0
    evictions: int = 0
    rejected: int = 0


class CacheManager:
    """Thread-safe LRU cache bounded by total body bytes.

    Parameters
    ----------
    config:
        Supplies ``max_cache_size`` and ``max_object_size``.
    """

    def __init__(self, config: ProxyConfig = DEFAULT_CONFIG) -> None:
        self.max_cache_size = config.max_cache_size
        self.max_object_size = config.max_object_size

        self._entries: list[CacheEntry] = []  # newest insertion first
        self._total_size = 0
        self._access_counter = 0
        self._gate = ReaderWriterGate()

        # Counters are bumped under reader concurrency too, so they get
        # their own lock rather than the gate.
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._insertions = 0
        self._evictions = 0
        self._rejected = 0

    # -- public API --------------------------------------------------------

    @property
    def total_size(self) -> int:
        return self._total_size

    @property
    def gate(self) -> ReaderWriterGate:
        return self._gate

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, key: str) -> Optional[CacheEntry]:
        """Return the first entry matching *key*, bumping its recency.

        A stored key matches when it equals *key*, or, if *key* ends with
        ``/``, when it starts with *key* minus that slash.  The second rule
        lets ``http://h/a/`` hit an entry stored as ``http://h/a``; it also
        lets ``http://h/`` hit ``http://h/anything``.  That looseness is
        kept on purpose.
        """
        with self._gate.shared():
            for entry in self._entries:
                if self._matches(entry.key, key):
                    entry.last_access = self._next_access()
                    self._count(hit=True)
                    logger.trace("[CACHE] hit %s (stored as %s)", key, entry.key)
                    return entry
        self._count(hit=False)
        logger.trace("[CACHE] miss %s", key)
        return None

    def insert(self, key: str, body: bytes, size: Optional[int] = None) -> bool:
        """Store *body* under *key*, evicting LRU entries to make room.

        *size* defaults to ``len(body)`` and is clamped to it, so only the
        first *size* bytes are stored and accounted.  Returns ``False``
        without touching the cache when *size* exceeds the per-object limit.
        """
        size = len(body) if size is None else max(0, min(size, len(body)))
        if size > self.max_object_size:
            with self._stats_lock:
                self._rejected += 1
            logger.trace(
                "[CACHE] %s too large to cache (%d > %d)",
                key,
                size,
                self.max_object_size,
            )
            return False

        with self._gate.exclusive():
            while self._total_size + size > self.max_cache_size:
                if self._evict_one() is None:
                    break

            entry = CacheEntry(
                key=key,
                body=bytes(body[:size]),
                size=size,
                last_access=self._next_access(),
            )
            self._entries.insert(0, entry)
            self._total_size += size
            with self._stats_lock:
                self._insertions += 1

        logger.debug(
            "[CACHE] stored %s (%d bytes, total %d/%d)",
            key,
            size,
            self._total_size,
            self.max_cache_size,
        )
        return True

    def keys(self) -> list[str]:
        """Snapshot of stored keys in scan order."""
        with self._gate.shared():
            return [entry.key for entry in self._entries]

    def stats(self) -> CacheStats:
        with self._stats_lock:
            return CacheStats(
                entries=len(self._entries),
                total_size=self._total_size,
                hits=self._hits,
                misses=self._misses,
                insertions=self._insertions,
                evictions=self._evictions,
                rejected=self._rejected,
            )

    # -- internal ----------------------------------------------------------

    @staticmethod
    def _matches(stored: str, probe: str) -> bool:
        if stored == probe:
            return True
        return probe.endswith("/") and stored.startswith(probe[:-1])

    def _next_access(self) -> int:
        self._access_counter += 1
        return self._access_counter

    def _count(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    def _evict_one(self) -> Optional[CacheEntry]:
        """Remove the least recently accessed entry.  Caller holds the gate."""
        if not self._entries:
            return None

        victim_index = 0
        oldest = self._entries[0].last_access
        for i, entry in enumerate(self._entries):
            if entry.last_access < oldest:
                oldest = entry.last_access
                victim_index = i

        victim = self._entries.pop(victim_index)
        self._total_size -= victim.size
        with self._stats_lock:
            self._evictions += 1
        logger.debug(
            "[CACHE] evicted %s (%d bytes, last access %d)",
            victim.key,
            victim.size,
            victim.last_access,
        )
        return victim
