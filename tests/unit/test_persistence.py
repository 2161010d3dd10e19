import asyncio
import json
from pathlib import Path

import pytest

from coinfeed.persistence import FAVORITES_FILE, FavoritesStore, JsonCache


@pytest.fixture()
def cache(tmp_path: Path) -> JsonCache:
    return JsonCache(tmp_path / "cache")


@pytest.mark.asyncio
async def test_write_then_read(cache: JsonCache) -> None:
    assert await cache.read("doc.json") is None
    assert await cache.write("doc.json", [{"id": "bitcoin"}])

    assert await cache.exists("doc.json")
    assert await cache.read("doc.json") == [{"id": "bitcoin"}]
    # No temporary files are left behind.
    assert [p.name for p in cache.directory.iterdir()] == ["doc.json"]


@pytest.mark.asyncio
async def test_write_replaces_existing_document(cache: JsonCache) -> None:
    await cache.write("doc.json", {"v": 1})
    await cache.write("doc.json", {"v": 2})
    assert await cache.read("doc.json") == {"v": 2}


@pytest.mark.asyncio
async def test_unserializable_payload_keeps_previous_document(cache: JsonCache) -> None:
    await cache.write("doc.json", {"v": 1})
    assert not await cache.write("doc.json", {"v": object()})
    assert await cache.read("doc.json") == {"v": 1}
    assert [p.name for p in cache.directory.iterdir()] == ["doc.json"]


@pytest.mark.asyncio
async def test_corrupt_document_reads_as_missing(cache: JsonCache) -> None:
    cache.directory.mkdir(parents=True)
    cache.path_for("doc.json").write_text("{not json", encoding="utf-8")
    assert await cache.read("doc.json") is None


@pytest.mark.asyncio
async def test_remove_ignores_missing_document(cache: JsonCache) -> None:
    await cache.remove("missing.json")
    await cache.write("doc.json", [])
    await cache.remove("doc.json")
    assert not await cache.exists("doc.json")


@pytest.mark.asyncio
async def test_favorites_toggle_persists(cache: JsonCache) -> None:
    store = FavoritesStore(cache)
    assert await store.toggle("ethereum")
    assert await store.toggle("bitcoin")
    assert not await store.toggle("ethereum")

    assert "bitcoin" in store
    assert "ethereum" not in store
    assert len(store) == 1
    on_disk = json.loads(cache.path_for(FAVORITES_FILE).read_text(encoding="utf-8"))
    assert on_disk == ["bitcoin"]


@pytest.mark.asyncio
async def test_favorites_load_from_disk(cache: JsonCache) -> None:
    await cache.write(FAVORITES_FILE, ["solana", "bitcoin"])
    store = FavoritesStore(cache)
    assert await store.load() == frozenset({"solana", "bitcoin"})


@pytest.mark.asyncio
async def test_favorites_ignore_malformed_document(cache: JsonCache) -> None:
    await cache.write(FAVORITES_FILE, {"bitcoin": True})
    store = FavoritesStore(cache)
    assert await store.load() == frozenset()


@pytest.mark.asyncio
async def test_favorites_replace(cache: JsonCache) -> None:
    store = FavoritesStore(cache)
    await store.replace(["a", "b"])
    assert store.ids == frozenset({"a", "b"})
    assert await cache.read(FAVORITES_FILE) == ["a", "b"]


@pytest.mark.asyncio
async def test_overlapping_writes_leave_a_valid_document(cache: JsonCache) -> None:
    """Concurrent writes of one document never corrupt it or collide."""
    big = [{"id": f"coin-{i}", "sparkline": list(range(50))} for i in range(200)]
    small = ["bitcoin"]

    for _ in range(20):
        results = await asyncio.gather(
            cache.write("doc.json", big),
            cache.write("doc.json", small),
            cache.write("doc.json", big),
        )
        assert all(results)
        assert await cache.read("doc.json") in (big, small)

    assert [p.name for p in cache.directory.iterdir()] == ["doc.json"]


@pytest.mark.asyncio
async def test_overlapping_favorite_toggles_persist(cache: JsonCache) -> None:
    store = FavoritesStore(cache)
    await asyncio.gather(*(store.toggle(f"coin-{i}") for i in range(10)))

    reloaded = FavoritesStore(cache)
    assert await reloaded.load() == frozenset(f"coin-{i}" for i in range(10))
