"""In-process TTL cache for market data snapshots.

Entries are keyed by uppercase symbol. ``get`` only returns entries inside the
freshness window; ``get_stale`` returns the last known value regardless of age
and is what the gateway falls back to when it cannot call upstream.

Usage:
    cache = QuoteCache(ttl_seconds=3 * 60 * 60)
    cache.set("aapl", snapshot)
    cache.get("AAPL")        # snapshot while fresh, None afterwards
    cache.get_stale("AAPL")  # snapshot forever (until overwritten)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Generic, TypeVar

from ipsagent.core.clock import Clock, system_clock


T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the time it was written."""

    value: T
    updated_at: datetime


class QuoteCache(Generic[T]):
    """Thread-safe symbol → snapshot map with a fixed freshness window."""

    def __init__(
        self,
        ttl_seconds: float = 3 * 60 * 60,
        *,
        clock: Clock = system_clock,
        name: str = "quotes",
    ):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.name = name
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(symbol: str) -> str:
        return symbol.strip().upper()

    def get(self, symbol: str) -> T | None:
        """Return the cached value if it is still fresh."""
        with self._lock:
            entry = self._entries.get(self._key(symbol))
        if entry is None:
            return None
        # Fresh while age <= ttl; expired only once strictly past it
        if self._clock.now() - entry.updated_at > self.ttl:
            return None
        return entry.value

    def get_stale(self, symbol: str) -> T | None:
        """Return the last known value regardless of age."""
        with self._lock:
            entry = self._entries.get(self._key(symbol))
        return entry.value if entry is not None else None

    def get_entry(self, symbol: str) -> CacheEntry[T] | None:
        with self._lock:
            return self._entries.get(self._key(symbol))

    def set(self, symbol: str, value: T) -> None:
        """Overwrite the entry and restart its freshness window."""
        entry = CacheEntry(value=value, updated_at=self._clock.now())
        with self._lock:
            self._entries[self._key(symbol)] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> dict[str, Any]:
        """Entry counts for health/diagnostics."""
        now = self._clock.now()
        with self._lock:
            entries = list(self._entries.values())
        fresh = sum(1 for e in entries if now - e.updated_at <= self.ttl)
        return {
            "name": self.name,
            "entries": len(entries),
            "fresh": fresh,
            "stale": len(entries) - fresh,
            "ttl_seconds": int(self.ttl.total_seconds()),
        }
