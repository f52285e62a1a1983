import asyncio

import pytest

from recipe_cache.cache import CacheManager
from recipe_cache.errors import CorruptEntryError, StorageError
from recipe_cache.normalizer import normalize_request
from recipe_cache.store import CorruptEntry, SQLiteArtifactStore

RECIPE = {"recipeName": "Shakshuka", "ingredients": [{"amount": "4", "name": "eggs"}]}


def test_entries_survive_a_new_store_instance(tmp_path):
    db_path = tmp_path / "cache" / "recipes.db"
    fp = normalize_request("shakshuka for two", skill_level="developing", kitchen_tools=["pan"])

    async def run():
        first = SQLiteArtifactStore(db_path)
        await first.init()
        key = await CacheManager(first).store(fp, RECIPE)

        second = SQLiteArtifactStore(db_path)
        await second.init()
        hit = await CacheManager(second).lookup(fp)
        return key, hit

    key, hit = asyncio.run(run())
    assert db_path.exists()
    assert hit is not None
    assert hit.key == key
    assert hit.artifact == RECIPE
    assert hit.access_count == 2


def test_upsert_delete_and_clear(tmp_path):
    store = SQLiteArtifactStore(tmp_path / "recipes.db")

    async def run():
        await store.init()
        await store.put_raw("recipe_a", "one")
        await store.put_raw("recipe_a", "two")
        await store.put_raw("recipe_b", "three")
        snapshot = (await store.get_raw("recipe_a"), await store.count(), await store.keys())
        await store.delete("recipe_b")
        after_delete = await store.keys()
        await store.clear()
        return snapshot, after_delete, await store.count()

    (value, count, keys), after_delete, final_count = asyncio.run(run())
    assert value == "two"
    assert count == 2
    assert keys == ["recipe_a", "recipe_b"]
    assert after_delete == ["recipe_a"]
    assert final_count == 0


def test_corrupt_row_surfaces_as_marker(tmp_path):
    store = SQLiteArtifactStore(tmp_path / "recipes.db")

    async def run():
        await store.init()
        await store.put_raw("recipe_bad", '{"createdAt": "yesterday"}')
        with pytest.raises(CorruptEntryError):
            await store.get("recipe_bad")
        return [item async for item in store.all_entries()]

    items = asyncio.run(run())
    assert len(items) == 1
    assert isinstance(items[0], CorruptEntry)
    assert items[0].key == "recipe_bad"


def test_unusable_path_raises_storage_error(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("")
    store = SQLiteArtifactStore(blocker / "recipes.db")

    with pytest.raises(StorageError):
        asyncio.run(store.init())
