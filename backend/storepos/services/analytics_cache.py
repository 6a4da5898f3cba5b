# Overview: In-memory analytics snapshot cache owned by the Flask app (not a module global).

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, NamedTuple


class CacheKey(NamedTuple):
    report_kind: str
    period_days: int
    # None for store-wide reports
    cashier_id: str | None = None

    def __str__(self) -> str:
        scope = self.cashier_id or "store"
        return f"{self.report_kind}:{self.period_days}:{scope}"


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    computed_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class AnalyticsCache:
    """
    Thread-safe TTL cache for derived analytics.

    Losing an entry loses no information: every snapshot can be recomputed
    from the transaction table. `clock` returns seconds and is injectable
    so expiry can be tested without sleeping.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.time):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get_entry(self, key: CacheKey) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry

    def get(self, key: CacheKey) -> Any | None:
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def set(self, key: CacheKey, data: Any) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(data=data, computed_at=now, expires_at=now + self.ttl_seconds)
        with self._lock:
            self._entries[key] = entry
        return entry

    def get_or_compute(self, key: CacheKey, compute: Callable[[], Any]) -> Any:
        """
        Cached value, or compute() stored under key on miss/expiry.

        compute() runs outside the lock; two concurrent misses may both
        compute, and the later write wins.
        """
        entry = self.get_entry(key)
        if entry is not None:
            return entry.data
        data = compute()
        self.set(key, data)
        return data

    def invalidate(self, report_kind: str | None = None, cashier_id: str | None = None) -> int:
        """Drop matching entries; no arguments drops everything."""
        with self._lock:
            doomed = [
                key for key in self._entries
                if (report_kind is None or key.report_kind == report_kind)
                and (cashier_id is None or key.cashier_id == cashier_id)
            ]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def keys(self) -> list[CacheKey]:
        with self._lock:
            return list(self._entries)

    def stats(self) -> dict:
        now = self._clock()
        with self._lock:
            expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
            return {
                "total_entries": len(self._entries),
                "valid_entries": len(self._entries) - expired,
                "expired_entries": expired,
                "hits": self._hits,
                "misses": self._misses,
                "ttl_seconds": self.ttl_seconds,
            }
