import asyncio

import pytest

from recipe_cache.cache import CacheManager, keep_score
from recipe_cache.config import CacheSettings
from recipe_cache.errors import StorageError
from recipe_cache.fingerprint import fingerprint_key
from recipe_cache.normalizer import normalize_request
from recipe_cache.store import CacheEntry, InMemoryArtifactStore

DAY = 24 * 60 * 60
RECIPE = {"recipeName": "Soft Scrambled Eggs"}
SIX_TOOLS = ["stove", "pan", "pot", "knife", "cutting board", "spatula"]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FailingStore(InMemoryArtifactStore):
    async def get_raw(self, key):
        raise StorageError("disk on fire")

    async def put_raw(self, key, record):
        raise StorageError("disk on fire")

    async def keys(self):
        raise StorageError("disk on fire")

    async def count(self):
        raise StorageError("disk on fire")


def _fp(prompt="quick breakfast with eggs", allergies=(), tools=SIX_TOOLS):
    return normalize_request(
        prompt, skill_level="basic_skills", allergies=list(allergies), kitchen_tools=list(tools)
    )


def _manager(store=None, clock=None, **settings):
    return CacheManager(
        store if store is not None else InMemoryArtifactStore(),
        CacheSettings(**settings),
        clock=clock or FakeClock(),
    )


def test_exact_hit_bumps_access_count():
    cache = _manager()
    fp = _fp()

    async def run():
        key = await cache.store(fp, RECIPE)
        first = await cache.lookup(fp)
        second = await cache.lookup(fp)
        return key, first, second

    key, first, second = asyncio.run(run())
    assert first.match_type == "exact"
    assert first.key == key == fingerprint_key(fp)
    assert first.artifact == RECIPE
    assert first.access_count == 2
    assert second.access_count == 3
    assert cache.hits == 2 and cache.misses == 0


def test_miss_on_empty_cache():
    cache = _manager()
    assert asyncio.run(cache.lookup(_fp())) is None
    assert cache.misses == 1
    assert cache.hit_rate() == 0.0


def test_similarity_hit_with_one_tool_missing():
    cache = _manager()

    async def run():
        await cache.store(_fp(tools=SIX_TOOLS), RECIPE)
        return await cache.lookup(_fp(tools=SIX_TOOLS[:5]))

    hit = asyncio.run(run())
    assert hit is not None
    assert hit.match_type == "similarity"
    assert hit.similarity > 0.8
    assert hit.access_count == 2


def test_similarity_never_crosses_allergy_sets():
    cache = _manager()

    async def run():
        await cache.store(_fp(allergies=[]), RECIPE)
        return await cache.lookup(_fp(allergies=["peanuts"]))

    assert asyncio.run(run()) is None


def test_best_similarity_candidate_wins():
    cache = _manager()

    async def run():
        await cache.store(_fp(tools=SIX_TOOLS[:4]), {"recipeName": "four tools"})
        await cache.store(_fp(tools=SIX_TOOLS), {"recipeName": "six tools"})
        return await cache.lookup(_fp(tools=SIX_TOOLS[:5]))

    hit = asyncio.run(run())
    assert hit.artifact == {"recipeName": "six tools"}


def test_expired_entry_is_removed_on_lookup():
    clock = FakeClock()
    store = InMemoryArtifactStore()
    cache = _manager(store, clock)
    fp = _fp()

    async def run():
        await cache.store(fp, RECIPE)
        clock.now += 8 * DAY
        return await cache.lookup(fp)

    assert asyncio.run(run()) is None
    assert fingerprint_key(fp) not in store._records


def test_entry_at_exactly_ttl_is_still_fresh():
    clock = FakeClock()
    cache = _manager(clock=clock)
    fp = _fp()

    async def run():
        await cache.store(fp, RECIPE)
        clock.now += 7 * DAY
        return await cache.lookup(fp)

    assert asyncio.run(run()) is not None


def test_expired_entries_are_not_similarity_candidates():
    clock = FakeClock()
    store = InMemoryArtifactStore()
    cache = _manager(store, clock)
    old = _fp(tools=SIX_TOOLS)

    async def run():
        await cache.store(old, RECIPE)
        clock.now += 8 * DAY
        return await cache.lookup(_fp(tools=SIX_TOOLS[:5]))

    assert asyncio.run(run()) is None
    assert store._records == {}


def test_capacity_evicts_lowest_keep_score():
    clock = FakeClock()
    store = InMemoryArtifactStore()
    cache = _manager(store, clock)
    first = _fp(prompt="recipe number 0")

    others = [_fp(prompt=f"recipe number {i}") for i in range(1, 101)]

    async def run():
        await cache.store(first, RECIPE)
        for fp in others[:99]:
            clock.now += 1
            await cache.store(fp, RECIPE)
        # Every entry except the first is used again, well after it was stored.
        clock.now += 3600
        for _ in range(3):
            for fp in others[:99]:
                clock.now += 1
                assert (await cache.lookup(fp)).match_type == "exact"
        clock.now += 1
        await cache.store(others[99], RECIPE)
        return await store.get(fingerprint_key(others[0]))

    oldest_reused = asyncio.run(run())
    assert len(store._records) == 100
    assert fingerprint_key(first) not in store._records
    assert all(fingerprint_key(fp) in store._records for fp in others)
    assert oldest_reused.access_count == 4


def test_frequently_used_entry_survives_eviction():
    clock = FakeClock()
    store = InMemoryArtifactStore()
    cache = _manager(store, clock, max_size=2)
    popular, idle, newcomer = _fp(prompt="popular"), _fp(prompt="idle"), _fp(prompt="newcomer")

    async def run():
        await cache.store(popular, RECIPE)
        await cache.store(idle, RECIPE)
        for _ in range(5):
            await cache.lookup(popular)
        clock.now += 10
        await cache.store(newcomer, RECIPE)

    asyncio.run(run())
    assert set(store._records) == {fingerprint_key(popular), fingerprint_key(newcomer)}


def test_keep_score_prefers_recent_and_frequent():
    now = 1000.0
    stale = CacheEntry("a", _fp(), RECIPE, created_at=0, last_accessed_at=0, access_count=3)
    fresh = CacheEntry("b", _fp(), RECIPE, created_at=0, last_accessed_at=990, access_count=1)
    assert keep_score(fresh, now) > keep_score(stale, now)


def test_corrupt_record_is_skipped_and_removed():
    store = InMemoryArtifactStore()
    cache = _manager(store)

    async def run():
        await cache.store(_fp(tools=SIX_TOOLS), RECIPE)
        store._records["recipe_bad"] = "{not json"
        return await cache.lookup(_fp(tools=SIX_TOOLS[:5]))

    hit = asyncio.run(run())
    assert hit is not None and hit.artifact == RECIPE
    assert "recipe_bad" not in store._records


def test_corrupt_exact_record_reads_as_miss():
    store = InMemoryArtifactStore()
    cache = _manager(store)
    fp = _fp()
    store._records[fingerprint_key(fp)] = '{"artifact": null}'

    assert asyncio.run(cache.lookup(fp)) is None
    assert store._records == {}


def test_corrupt_records_are_evicted_first():
    store = InMemoryArtifactStore()
    cache = _manager(store, max_size=2)
    store._records["recipe_bad"] = "[]"

    async def run():
        await cache.store(_fp(prompt="one"), RECIPE)
        await cache.store(_fp(prompt="two"), RECIPE)

    asyncio.run(run())
    assert "recipe_bad" not in store._records
    assert len(store._records) == 2


def test_storage_failure_degrades_to_miss_and_noop():
    cache = _manager(FailingStore())
    fp = _fp()

    async def run():
        return await cache.lookup(fp), await cache.store(fp, RECIPE)

    hit, key = asyncio.run(run())
    assert hit is None
    assert key is None
    assert cache.misses == 1


def test_stats_propagates_storage_failure():
    cache = _manager(FailingStore())
    with pytest.raises(StorageError):
        asyncio.run(cache.stats())


def test_lazy_delete_spares_replaced_entry():
    clock = FakeClock()
    store = InMemoryArtifactStore()
    cache = _manager(store, clock)
    fp = _fp()
    key = fingerprint_key(fp)

    async def run():
        await cache.store(fp, RECIPE)
        stale_created_at = (await store.get(key)).created_at
        clock.now += 8 * DAY
        await cache.store(fp, {"recipeName": "fresh"})
        await cache._delete_if_unchanged(key, stale_created_at)
        return await store.get(key)

    entry = asyncio.run(run())
    assert entry is not None
    assert entry.artifact == {"recipeName": "fresh"}


def test_overwrite_resets_entry():
    clock = FakeClock()
    store = InMemoryArtifactStore()
    cache = _manager(store, clock)
    fp = _fp()

    async def run():
        await cache.store(fp, RECIPE)
        await cache.lookup(fp)
        clock.now += 60
        await cache.store(fp, {"recipeName": "v2"})
        return await store.get(fingerprint_key(fp))

    entry = asyncio.run(run())
    assert len(store._records) == 1
    assert entry.access_count == 1
    assert entry.created_at == clock.now
    assert entry.artifact == {"recipeName": "v2"}


def test_stats_and_clear():
    clock = FakeClock()
    cache = _manager(clock=clock)

    async def run():
        await cache.store(_fp(prompt="one"), RECIPE)
        clock.now += 30
        await cache.store(_fp(prompt="two"), RECIPE)
        await cache.lookup(_fp(prompt="two"))
        before = await cache.stats()
        await cache.clear()
        after = await cache.stats()
        return before, after

    before, after = asyncio.run(run())
    assert before.count == 2
    assert before.total_size_bytes > 0
    assert before.newest_timestamp - before.oldest_timestamp == 30
    assert before.max_access_count == 2
    assert after.count == 0
    assert after.oldest_timestamp is None
    assert after.max_access_count == 0


def test_concurrent_lookups_count_every_access():
    cache = _manager()
    fp = _fp()

    async def run():
        await cache.store(fp, RECIPE)
        await asyncio.gather(*(cache.lookup(fp) for _ in range(10)))
        return await cache.store_backend.get(fingerprint_key(fp))

    assert asyncio.run(run()).access_count == 11


def test_unserialisable_artifact_store_is_a_noop():
    store = InMemoryArtifactStore()
    cache = _manager(store)

    key = asyncio.run(cache.store(normalize_request("toast"), {"garnish": object()}))

    assert key is None
    assert store._records == {}


def test_rejected_candidates_are_skipped_and_untouched():
    store = InMemoryArtifactStore()
    cache = _manager(store)
    fp = _fp(tools=SIX_TOOLS)

    def not_scrambled_eggs(artifact):
        return artifact.get("recipeName") != RECIPE["recipeName"]

    async def run():
        await cache.store(fp, RECIPE)
        exact = await cache.lookup(fp, accept=not_scrambled_eggs)
        similar = await cache.lookup(_fp(tools=SIX_TOOLS[:5]), accept=not_scrambled_eggs)
        return exact, similar, await store.get(fingerprint_key(fp))

    exact, similar, entry = asyncio.run(run())
    assert exact is None
    assert similar is None
    assert entry.access_count == 1
    assert cache.misses == 2


def test_stats_count_excludes_corrupt_records():
    store = InMemoryArtifactStore()
    cache = _manager(store)

    async def run():
        await cache.store(_fp(), RECIPE)
        store._records["recipe_bad"] = "{not json"
        return await cache.stats()

    stats = asyncio.run(run())
    assert stats.count == 1
    assert stats.corrupt_count == 1
    assert stats.max_access_count == 1
