"""In-memory result cache with two independent tiers.

Tiers:
- short: cheap, fast-changing aggregates (search, top lists), seconds to minutes
- long: expensive, slow-changing aggregates (overview, openings, moves), hours

The caller decides the tier from the query type; the cache never infers it.
Expiry is checked lazily on read, there is no background sweep. When a tier is
full the least recently used entry is evicted.

Entries may be served stale until their TTL elapses or they are invalidated.
Two concurrent misses on the same key both run the underlying query (no
single-flight).
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

# TTL constants (in seconds)
TTL_SHORT = 60  # 1 minute
TTL_LONG = 3600  # 1 hour

MAX_ENTRIES_PER_TIER = 10000


class CacheTier(str, Enum):
    SHORT = "short"
    LONG = "long"


class CacheStatus(str, Enum):
    HIT = "HIT"
    MISS = "MISS"


@dataclass
class CacheEntry:
    key: str
    value: Any
    tier: CacheTier
    inserted_at: float
    expires_at: float
    hit_count: int = 0

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class CacheTierStats:
    tier: CacheTier
    entries: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "entries": self.entries,
            "hits": self.hits,
            "misses": self.misses,
            "hitRate": round(self.hit_rate, 4),
        }


@dataclass
class _Tier:
    ttl: float
    max_entries: int
    entries: "OrderedDict[str, CacheEntry]" = field(default_factory=OrderedDict)
    hits: int = 0
    misses: int = 0


def fingerprint(query_id: str, params: Mapping[str, Any] | None = None) -> str:
    """Deterministic cache key for a query and its parameters.

    The query identity stays readable as the key class (before the first ':').

    Example:
        >>> fingerprint("top_players", {"time_class": "blitz", "limit": 5})
        'top_players:...'
    """
    canonical = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode()).hexdigest()[:16]
    return f"{query_id}:{digest}"


def key_class(key: str) -> str:
    return key.split(":", 1)[0]


class CacheTierManager:
    """Two-tier TTL + LRU cache with per-tier hit/miss counters."""

    def __init__(
        self,
        ttls: Mapping[CacheTier, float] | None = None,
        max_entries: Mapping[CacheTier, int] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        ttls = ttls or {}
        max_entries = max_entries or {}
        self._tiers: dict[CacheTier, _Tier] = {
            CacheTier.SHORT: _Tier(
                ttl=ttls.get(CacheTier.SHORT, TTL_SHORT),
                max_entries=max_entries.get(CacheTier.SHORT, MAX_ENTRIES_PER_TIER),
            ),
            CacheTier.LONG: _Tier(
                ttl=ttls.get(CacheTier.LONG, TTL_LONG),
                max_entries=max_entries.get(CacheTier.LONG, MAX_ENTRIES_PER_TIER),
            ),
        }
        # key class (query identity) -> tier that owns it
        self._owners: dict[str, CacheTier] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def ttl(self, tier: CacheTier) -> float:
        return self._tiers[tier].ttl

    def get(self, key: str, tier: CacheTier | None = None) -> tuple[Any, CacheStatus]:
        """Look up a key.

        Args:
            key: Cache key (usually from fingerprint()).
            tier: Tier to consult. Without it both tiers are checked, the
                tier that last stored the key class first, else short first.
                A miss counts against the first tier checked.

        Returns:
            (value, HIT) or (None, MISS).
        """
        with self._lock:
            now = self._clock()
            if tier is not None:
                candidates = [tier]
            else:
                candidates = [CacheTier.SHORT, CacheTier.LONG]
                if self._owners.get(key_class(key)) is CacheTier.LONG:
                    candidates.reverse()

            for name in candidates:
                store = self._tiers[name]
                entry = store.entries.get(key)
                if entry is None:
                    continue
                if entry.expired(now):
                    del store.entries[key]
                    store.misses += 1
                    return None, CacheStatus.MISS
                store.entries.move_to_end(key)
                entry.hit_count += 1
                store.hits += 1
                return entry.value, CacheStatus.HIT

            self._tiers[candidates[0]].misses += 1
            return None, CacheStatus.MISS

    def put(self, key: str, value: Any, tier: CacheTier, ttl: float | None = None) -> CacheEntry:
        """Insert or replace a key in `tier`, evicting the LRU entry if full."""
        with self._lock:
            now = self._clock()
            for other_name, other in self._tiers.items():
                if other_name is not tier:
                    other.entries.pop(key, None)

            store = self._tiers[tier]
            store.entries.pop(key, None)
            while len(store.entries) >= store.max_entries:
                store.entries.popitem(last=False)

            entry = CacheEntry(
                key=key,
                value=value,
                tier=tier,
                inserted_at=now,
                expires_at=now + (ttl if ttl is not None else store.ttl),
            )
            store.entries[key] = entry
            self._owners[key_class(key)] = tier
            return entry

    def invalidate(self, key: str) -> bool:
        with self._lock:
            removed = False
            for store in self._tiers.values():
                if store.entries.pop(key, None) is not None:
                    removed = True
            return removed

    def invalidate_all(self, tier: CacheTier | None = None) -> int:
        """Drop every entry of one tier, or of both when `tier` is None."""
        with self._lock:
            cleared = 0
            for name, store in self._tiers.items():
                if tier is None or name is tier:
                    cleared += len(store.entries)
                    store.entries.clear()
            return cleared

    def invalidate_prefix(self, prefix: str, tier: CacheTier | None = None) -> int:
        with self._lock:
            cleared = 0
            for name, store in self._tiers.items():
                if tier is not None and name is not tier:
                    continue
                for key in [k for k in store.entries if k.startswith(prefix)]:
                    del store.entries[key]
                    cleared += 1
            return cleared

    def stats(self, tier: CacheTier) -> CacheTierStats:
        with self._lock:
            now = self._clock()
            store = self._tiers[tier]
            live = sum(1 for entry in store.entries.values() if not entry.expired(now))
            return CacheTierStats(tier=tier, entries=live, hits=store.hits, misses=store.misses)

    def stats_all(self) -> dict[str, CacheTierStats]:
        return {tier.value: self.stats(tier) for tier in CacheTier}
