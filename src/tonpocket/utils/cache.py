"""Time-boxed result cache with stale fallback.

Entries outlive their TTL: a stale entry is not served as fresh, but it is
still returned by :meth:`ResultCache.get` so callers can show last-known data
when a live fetch fails.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class CacheKind(str, Enum):
    """Query kinds with their own lifetime."""

    BALANCE = "balance"
    TRANSACTIONS = "transactions"
    JETTONS = "jettons"
    NFTS = "nfts"


# None means never stale; refreshed only on explicit request
DEFAULT_TTLS: dict[CacheKind, Optional[float]] = {
    CacheKind.BALANCE: 60.0,
    CacheKind.TRANSACTIONS: 120.0,
    CacheKind.JETTONS: 60.0,
    CacheKind.NFTS: None,
}


@dataclass
class CacheEntry:
    """A cached value and when it was fetched."""

    value: Any
    fetched_at: float


@dataclass
class CacheHit:
    """Result of a cache lookup."""

    value: Any
    fetched_at: float
    is_fresh: bool


class ResultCache:
    """Per-kind, per-key cache.

    One instance is created per wallet session and shared by the services.
    """

    def __init__(
        self,
        ttls: Optional[dict[CacheKind, Optional[float]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttls = dict(DEFAULT_TTLS)
        if ttls:
            self.ttls.update(ttls)
        self._clock = clock
        self._entries: dict[tuple[CacheKind, str], CacheEntry] = {}

    def get(self, kind: CacheKind, key: str) -> Optional[CacheHit]:
        """Look up an entry, fresh or stale. Returns None on miss."""
        entry = self._entries.get((kind, key))
        if entry is None:
            return None

        ttl = self.ttls.get(kind)
        is_fresh = ttl is None or (self._clock() - entry.fetched_at) < ttl
        return CacheHit(value=entry.value, fetched_at=entry.fetched_at, is_fresh=is_fresh)

    def get_fresh(self, kind: CacheKind, key: str) -> Optional[Any]:
        """Return the value only if it is still within its TTL."""
        hit = self.get(kind, key)
        if hit is not None and hit.is_fresh:
            return hit.value
        return None

    def get_stale(self, kind: CacheKind, key: str, default: Any = None) -> Any:
        """Return the last known value regardless of age."""
        hit = self.get(kind, key)
        if hit is None:
            return default
        logger.debug(f"Serving {'fresh' if hit.is_fresh else 'stale'} {kind.value} for {key}")
        return hit.value

    def put(self, kind: CacheKind, key: str, value: Any) -> None:
        """Store a value, replacing any previous entry."""
        self._entries[(kind, key)] = CacheEntry(value=value, fetched_at=self._clock())

    def invalidate(self, kind: CacheKind, key: Optional[str] = None) -> None:
        """Drop one key, or every key of a kind."""
        if key is not None:
            self._entries.pop((kind, key), None)
            return
        for entry_key in [k for k in self._entries if k[0] == kind]:
            del self._entries[entry_key]

    def clear(self) -> None:
        """Drop everything (e.g. when the wallet is locked)."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
