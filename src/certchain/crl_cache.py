"""
CRL cache — bounded, thread-safe LRU map from distribution-point URL to parsed CRL data.

The cache is constructed by the composition root and injected into the
revocation checker; there is no module-level instance.

Locking:
  - one structural lock guards the OrderedDict, counters and the load-slot table
  - a per-URL lock is held around loading, so N concurrent lookups of the same
    cold URL perform exactly one fetch (1 miss, N-1 hits)
  - loading itself happens outside the structural lock, so slow fetches of one
    URL never block lookups of another
  - a load slot lives only while a load for its URL runs or is awaited, so the
    slot table never outgrows the number of in-flight loads

Freshness:
  - an entry is stale once `next_update + stale_grace` has passed
  - stale entries are refreshed on next use; nothing runs in the background
  - purge_expired() drops stale entries on demand (counted as cleanups)

Eviction is least-recently-used, bounded by entry count and, optionally,
by the approximate byte size of the cached CRLs.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from railway import ErrorCode, Result

from certchain.domain.models import CacheMetrics

log = structlog.get_logger()

DEFAULT_MAX_ENTRIES = 100

# Rough per-entry bookkeeping overhead added to the CRL's encoded size.
_ENTRY_OVERHEAD_BYTES = 128


@dataclass(frozen=True, slots=True)
class RevokedEntry:
    reason: str | None
    revoked_at: datetime | None


@dataclass(frozen=True, slots=True)
class CrlCacheEntry:
    """
    One parsed CRL as cached for a distribution-point URL.

    Entries are replaced wholesale on refresh, never edited in place.
    `issuer_identity` is the digest of the issuer name and key the CRL
    signature was verified against; an entry answers only for that issuer.
    """

    url: str
    issuer: str
    revoked: Mapping[int, RevokedEntry] = field(repr=False)
    this_update: datetime
    next_update: datetime | None
    fetched_at: datetime
    size_bytes: int
    issuer_identity: bytes = field(default=b"", repr=False)

    def lookup(self, serial_number: int) -> RevokedEntry | None:
        return self.revoked.get(serial_number)

    def issued_by(self, identity: bytes) -> bool:
        return bool(self.issuer_identity) and self.issuer_identity == identity

    def is_stale(self, now: datetime, grace: timedelta = timedelta(0)) -> bool:
        """A CRL without nextUpdate never goes stale by itself."""
        return self.next_update is not None and now > self.next_update + grace

    @property
    def footprint(self) -> int:
        return self.size_bytes + len(self.url) + _ENTRY_OVERHEAD_BYTES


class _LoadSlot:
    """Load lock for one URL plus the number of callers holding or awaiting it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class CrlCache:
    """Thread-safe LRU cache of CrlCacheEntry values keyed by URL."""

    def __init__(
        self,
        max_entries: int | None = DEFAULT_MAX_ENTRIES,
        max_bytes: int | None = None,
        stale_grace: timedelta = timedelta(0),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive or None")
        if max_bytes is not None and max_bytes < 1:
            raise ValueError("max_bytes must be positive or None")
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._stale_grace = stale_grace
        self._clock = clock or (lambda: datetime.now(UTC))

        self._lock = threading.Lock()
        self._entries: OrderedDict[str, CrlCacheEntry] = OrderedDict()
        self._load_slots: dict[str, _LoadSlot] = {}
        self._total_bytes = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._cleanups = 0

    # ─────────────────────── Lookup & Load ───────────────────────

    def get(self, url: str) -> CrlCacheEntry | None:
        """Fresh entry for `url` without loading; counts a hit or a miss."""
        return self._fresh(url, count_miss=True)

    def get_or_load(
        self,
        url: str,
        loader: Callable[[], Result[CrlCacheEntry]],
    ) -> Result[CrlCacheEntry]:
        """
        Return the fresh cached entry for `url`, loading it at most once.

        Concurrent callers for the same cold or stale URL wait on the
        per-URL load slot; the first one runs `loader`, the rest find its entry.
        A failed load caches nothing and is returned to the caller as-is.
        """
        if not url:
            return Result.failure(ErrorCode.INPUT_ERROR, "CRL URL must not be empty")

        entry = self._fresh(url, count_miss=False)
        if entry is not None:
            return Result.success(entry)

        with self._loading(url):
            entry = self._fresh(url, count_miss=True)
            if entry is not None:
                return Result.success(entry)
            log.debug("crl_cache.loading", url=url)
            return loader().peek(lambda loaded: self._store(url, loaded))

    def _fresh(self, url: str, count_miss: bool) -> CrlCacheEntry | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(url)
            if entry is not None and not entry.is_stale(now, self._stale_grace):
                self._entries.move_to_end(url)
                self._hits += 1
                return entry
            if count_miss:
                self._misses += 1
            return None

    @contextmanager
    def _loading(self, url: str) -> Iterator[None]:
        """Hold the per-URL load lock; the slot is dropped once no caller needs it."""
        with self._lock:
            slot = self._load_slots.get(url)
            if slot is None:
                slot = self._load_slots[url] = _LoadSlot()
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._lock:
                slot.users -= 1
                if slot.users == 0:
                    del self._load_slots[url]

    def _store(self, url: str, entry: CrlCacheEntry) -> None:
        with self._lock:
            if self._max_bytes is not None and entry.footprint > self._max_bytes:
                log.warning("crl_cache.entry_too_large", url=url, size_bytes=entry.footprint)
                return
            previous = self._entries.pop(url, None)
            if previous is not None:
                self._total_bytes -= previous.footprint
            self._entries[url] = entry
            self._total_bytes += entry.footprint
            self._prune_locked()

    def _prune_locked(self) -> None:
        while self._entries and self._over_limits_locked():
            url, evicted = self._entries.popitem(last=False)
            self._total_bytes -= evicted.footprint
            self._evictions += 1
            log.debug("crl_cache.evicted", url=url)

    def _over_limits_locked(self) -> bool:
        if self._max_entries is not None and len(self._entries) > self._max_entries:
            return True
        return self._max_bytes is not None and self._total_bytes > self._max_bytes

    # ─────────────────────── Maintenance ───────────────────────

    def purge_expired(self) -> int:
        """Drop every stale entry now; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [url for url, e in self._entries.items() if e.is_stale(now, self._stale_grace)]
            for url in expired:
                self._total_bytes -= self._entries.pop(url).footprint
            self._cleanups += len(expired)
        if expired:
            log.info("crl_cache.purged", count=len(expired))
        return len(expired)

    def resize(self, max_entries: int | None = None, max_bytes: int | None = None) -> None:
        """Apply new limits (None = unbounded), evicting least-recently-used entries beyond them."""
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive or None")
        if max_bytes is not None and max_bytes < 1:
            raise ValueError("max_bytes must be positive or None")
        with self._lock:
            self._max_entries = max_entries
            self._max_bytes = max_bytes
            self._prune_locked()

    def clear(self) -> None:
        """Remove every entry and reset all counters."""
        with self._lock:
            self._entries.clear()
            self._total_bytes = 0
            self._hits = self._misses = self._evictions = self._cleanups = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._entries

    @property
    def loads_in_flight(self) -> int:
        """URLs with a load running or awaited right now."""
        with self._lock:
            return len(self._load_slots)

    # ─────────────────────── Observability ───────────────────────

    def metrics(self) -> CacheMetrics:
        with self._lock:
            return CacheMetrics(
                size=len(self._entries),
                max_entries=self._max_entries,
                total_bytes=self._total_bytes,
                max_bytes=self._max_bytes,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                cleanups=self._cleanups,
            )

    def stats_text(self) -> str:
        m = self.metrics()
        capacity = "unbounded" if m.max_entries is None else str(m.max_entries)
        return (
            f"CRL cache: {m.size}/{capacity} entries, {m.total_bytes} bytes, "
            f"hits={m.hits} misses={m.misses} hit_rate={m.hit_rate:.1%}, "
            f"evictions={m.evictions} cleanups={m.cleanups}"
        )
