"""Tests for the two-tier result cache."""

import pytest

from chessstats.stores.cache import (
    TTL_LONG,
    TTL_SHORT,
    CacheStatus,
    CacheTier,
    CacheTierManager,
    fingerprint,
    key_class,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> CacheTierManager:
    return CacheTierManager(clock=clock)


def test_default_ttls(cache: CacheTierManager):
    assert TTL_SHORT == 60
    assert TTL_LONG == 3600
    assert cache.ttl(CacheTier.SHORT) == 60
    assert cache.ttl(CacheTier.LONG) == 3600


def test_short_tier_hit_then_miss_after_ttl(cache: CacheTierManager, clock: FakeClock):
    cache.put("top5:blitz", ["Carlsen", "Nakamura"], CacheTier.SHORT)

    clock.advance(10)
    assert cache.get("top5:blitz") == (["Carlsen", "Nakamura"], CacheStatus.HIT)

    clock.advance(51)  # 61s after insert
    assert cache.get("top5:blitz") == (None, CacheStatus.MISS)

    stats = cache.stats(CacheTier.SHORT)
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.hit_rate == 0.5
    assert stats.entries == 0


def test_expired_entry_is_removed_on_read(cache: CacheTierManager, clock: FakeClock):
    cache.put("overview:all", {"total": 1}, CacheTier.SHORT)
    clock.advance(TTL_SHORT)

    assert cache.get("overview:all", CacheTier.SHORT)[1] is CacheStatus.MISS
    assert cache.get("overview:all", CacheTier.SHORT)[1] is CacheStatus.MISS
    assert cache.stats(CacheTier.SHORT).misses == 2


def test_long_tier_outlives_short_tier(cache: CacheTierManager, clock: FakeClock):
    cache.put("openings:all", "expensive", CacheTier.LONG)
    clock.advance(TTL_SHORT + 1)

    assert cache.get("openings:all") == ("expensive", CacheStatus.HIT)
    assert cache.stats(CacheTier.LONG).hits == 1
    assert cache.stats(CacheTier.SHORT).hits == 0


def test_key_lives_in_one_tier_only(cache: CacheTierManager):
    cache.put("search:x", 1, CacheTier.SHORT)
    cache.put("search:x", 2, CacheTier.LONG)

    assert cache.stats(CacheTier.SHORT).entries == 0
    assert cache.stats(CacheTier.LONG).entries == 1
    assert cache.get("search:x") == (2, CacheStatus.HIT)


def test_miss_on_unknown_key_class_counts_against_short(cache: CacheTierManager):
    assert cache.get("never:seen") == (None, CacheStatus.MISS)
    assert cache.stats(CacheTier.SHORT).misses == 1
    assert cache.stats(CacheTier.LONG).misses == 0


def test_first_lookup_miss_then_hit_gives_half_hit_rate(cache: CacheTierManager):
    assert cache.get("top5:blitz")[1] is CacheStatus.MISS
    cache.put("top5:blitz", ["A"], CacheTier.SHORT)
    assert cache.get("top5:blitz") == (["A"], CacheStatus.HIT)

    stats = cache.stats(CacheTier.SHORT)
    assert (stats.hits, stats.misses) == (1, 1)
    assert stats.hit_rate == 0.5


def test_get_without_tier_finds_key_outside_owning_tier(cache: CacheTierManager):
    # Same key class stored in both tiers: the class now belongs to long
    cache.put("top5:blitz", "A", CacheTier.SHORT)
    cache.put("top5:rapid", "B", CacheTier.LONG)

    assert cache.get("top5:blitz") == ("A", CacheStatus.HIT)
    assert cache.get("top5:rapid") == ("B", CacheStatus.HIT)
    assert cache.stats(CacheTier.SHORT).hits == 1
    assert cache.stats(CacheTier.LONG).hits == 1
    assert cache.stats(CacheTier.LONG).misses == 0


def test_miss_is_counted_on_owning_tier(cache: CacheTierManager):
    cache.put(fingerprint("overview", {}), {"total": 10}, CacheTier.LONG)

    value, status = cache.get(fingerprint("overview", {"year": 2024}))

    assert (value, status) == (None, CacheStatus.MISS)
    assert cache.stats(CacheTier.LONG).misses == 1
    assert cache.stats(CacheTier.SHORT).misses == 0


def test_lru_eviction_within_tier(clock: FakeClock):
    cache = CacheTierManager(max_entries={CacheTier.SHORT: 2}, clock=clock)
    cache.put("k:a", "a", CacheTier.SHORT)
    cache.put("k:b", "b", CacheTier.SHORT)
    cache.get("k:a")  # a is now most recently used
    cache.put("k:c", "c", CacheTier.SHORT)

    assert cache.get("k:b")[1] is CacheStatus.MISS
    assert cache.get("k:a") == ("a", CacheStatus.HIT)
    assert cache.get("k:c") == ("c", CacheStatus.HIT)
    assert cache.stats(CacheTier.SHORT).entries == 2


def test_eviction_does_not_touch_other_tier(clock: FakeClock):
    cache = CacheTierManager(max_entries={CacheTier.SHORT: 1}, clock=clock)
    cache.put("long:1", 1, CacheTier.LONG)
    cache.put("short:1", 1, CacheTier.SHORT)
    cache.put("short:2", 2, CacheTier.SHORT)

    assert cache.stats(CacheTier.LONG).entries == 1
    assert cache.stats(CacheTier.SHORT).entries == 1


def test_put_with_explicit_ttl(cache: CacheTierManager, clock: FakeClock):
    entry = cache.put("k:x", "x", CacheTier.LONG, ttl=5)
    assert entry.expires_at == entry.inserted_at + 5

    clock.advance(5)
    assert cache.get("k:x")[1] is CacheStatus.MISS


def test_invalidate(cache: CacheTierManager):
    cache.put("k:x", 1, CacheTier.SHORT)

    assert cache.invalidate("k:x") is True
    assert cache.invalidate("k:x") is False
    assert cache.get("k:x")[1] is CacheStatus.MISS


def test_invalidate_all_by_tier(cache: CacheTierManager):
    cache.put("a:1", 1, CacheTier.SHORT)
    cache.put("b:1", 1, CacheTier.SHORT)
    cache.put("c:1", 1, CacheTier.LONG)

    assert cache.invalidate_all(CacheTier.SHORT) == 2
    assert cache.stats(CacheTier.LONG).entries == 1
    assert cache.invalidate_all() == 1


def test_invalidate_prefix(cache: CacheTierManager):
    cache.put("top_players:1", 1, CacheTier.SHORT)
    cache.put("top_players:2", 2, CacheTier.SHORT)
    cache.put("overview:1", 3, CacheTier.LONG)

    assert cache.invalidate_prefix("top_players:") == 2
    assert cache.get("overview:1") == (3, CacheStatus.HIT)


def test_hit_rate_zero_without_lookups(cache: CacheTierManager):
    stats = cache.stats(CacheTier.LONG)
    assert stats.hit_rate == 0.0
    assert stats.as_dict() == {"entries": 0, "hits": 0, "misses": 0, "hitRate": 0.0}


def test_stats_all_keys(cache: CacheTierManager):
    assert set(cache.stats_all()) == {"short", "long"}


def test_fingerprint_is_order_independent():
    a = fingerprint("top_players", {"time_class": "blitz", "limit": 5})
    b = fingerprint("top_players", {"limit": 5, "time_class": "blitz"})
    c = fingerprint("top_players", {"limit": 10, "time_class": "blitz"})

    assert a == b
    assert a != c
    assert key_class(a) == "top_players"
    assert fingerprint("overview") == fingerprint("overview", {})
