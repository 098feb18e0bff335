"""
Tests for the disk-backed asset cache.
"""
import asyncio
import json
from datetime import timedelta
from pathlib import Path

import pytest

from shared.asset_cache import AssetCache, cache_key, extension_for_mime

from conftest import FakeClock


# =============================================================================
# KEYS AND EXTENSIONS
# =============================================================================

def test_cache_key_is_deterministic():
    url = "https://images.pexels.com/photos/1/bakery.jpeg"
    assert cache_key(url) == cache_key(url)
    assert len(cache_key(url)) == 64
    assert cache_key(url) != cache_key(url + "?w=800")


@pytest.mark.parametrize("mime_type,expected", [
    ("image/jpeg", ".jpg"),
    ("image/png; charset=binary", ".png"),
    ("IMAGE/WEBP", ".webp"),
    ("image/svg+xml", ".svg"),
    ("application/octet-stream", ".bin"),
    (None, ".bin"),
])
def test_extension_for_mime(mime_type, expected):
    assert extension_for_mime(mime_type) == expected


# =============================================================================
# STORE / LOOKUP
# =============================================================================

def test_store_then_lookup_round_trip(cache):
    async def run():
        key = cache_key("https://example.com/a.jpg")
        stored = await cache.store(key, b"abc", "image/jpeg", provenance="rise-and-shine", source_id="https://example.com/a.jpg")
        found = await cache.lookup(key)
        return stored, found

    stored, found = asyncio.run(run())

    assert found is not None
    assert found.key == stored.key
    assert found.local_path.endswith(".jpg")
    assert found.provenance == "rise-and-shine"
    assert found.source_id == "https://example.com/a.jpg"
    assert cache.read_bytes(found) == b"abc"
    assert cache.total_size_bytes == 3


def test_lookup_miss_returns_none(cache):
    assert asyncio.run(cache.lookup(cache_key("nothing"))) is None


def test_lookup_refreshes_last_accessed(cache):
    async def run():
        stored = await cache.store("k", b"x", "image/png")
        return stored, await cache.lookup("k")

    stored, found = asyncio.run(run())
    assert found.last_accessed_at > stored.last_accessed_at
    assert found.created_at == stored.created_at


def test_missing_file_self_heals(cache):
    async def run():
        entry = await cache.store("k", b"12345", "image/png")
        Path(entry.local_path).unlink()
        return await cache.lookup("k")

    assert asyncio.run(run()) is None
    assert not cache.contains("k")
    assert cache.total_size_bytes == 0

    on_disk = json.loads((cache.directory / "index.json").read_text())
    assert on_disk["entries"] == {}


def test_index_survives_restart(tmp_path, clock):
    first = AssetCache(tmp_path / "assets", clock=clock)
    asyncio.run(first.store("k", b"hello", "image/gif", provenance="page-1"))

    second = AssetCache(tmp_path / "assets", clock=clock)
    assert second.contains("k")
    assert second.total_size_bytes == 5
    assert [e.key for e in second.entries_for_provenance("page-1")] == ["k"]


def test_corrupt_index_starts_empty(tmp_path, clock):
    directory = tmp_path / "assets"
    directory.mkdir()
    (directory / "index.json").write_text("{not json")

    cache = AssetCache(directory, clock=clock)
    assert cache.stats().entry_count == 0
    assert json.loads((directory / "index.json").read_text())["entries"] == {}


def test_total_is_recomputed_on_load(tmp_path, clock):
    cache = AssetCache(tmp_path / "assets", clock=clock)
    asyncio.run(cache.store("k", b"1234", "image/png"))

    index_path = tmp_path / "assets" / "index.json"
    data = json.loads(index_path.read_text())
    data["total_size_bytes"] = 999
    index_path.write_text(json.dumps(data))

    assert AssetCache(tmp_path / "assets", clock=clock).total_size_bytes == 4


def test_restore_replaces_entry_and_accounting(cache):
    async def run():
        first = await cache.store("k", b"0123456789", "image/png")
        second = await cache.store("k", b"01234567890123456789", "image/jpeg")
        return first, second

    first, second = asyncio.run(run())

    assert cache.stats().entry_count == 1
    assert cache.total_size_bytes == 20
    assert not Path(first.local_path).exists()
    assert Path(second.local_path).exists()


def test_write_failure_leaves_index_unchanged(cache):
    def broken_write(path, data):
        raise OSError("disk full")

    cache._write_file = broken_write

    with pytest.raises(OSError, match="disk full"):
        asyncio.run(cache.store("k", b"abc", "image/png"))

    assert not cache.contains("k")
    assert cache.total_size_bytes == 0
    assert json.loads((cache.directory / "index.json").read_text())["entries"] == {}


def test_concurrent_stores_keep_total_exact(cache):
    async def run():
        await asyncio.gather(*[
            cache.store(f"key-{i}", b"x" * (i + 1), "image/png")
            for i in range(20)
        ])

    asyncio.run(run())

    expected = sum(range(1, 21))
    assert cache.total_size_bytes == expected
    assert cache.stats().entry_count == 20

    reloaded = json.loads((cache.directory / "index.json").read_text())
    assert reloaded["total_size_bytes"] == expected
    assert len(reloaded["entries"]) == 20


def test_store_error_reaches_caller_even_when_cancelled(cache):
    def broken_write(path, data):
        raise OSError("disk full")

    cache._write_file = broken_write

    async def run():
        task = asyncio.create_task(cache.store("k", b"abc", "image/png"))
        await asyncio.sleep(0)
        # The critical section completes in one step, so the cancel arrives too late
        task.cancel()
        with pytest.raises(OSError, match="disk full"):
            await task

    asyncio.run(run())
    assert not cache.contains("k")


def test_same_cache_across_event_loops(cache):
    async def run(prefix):
        await asyncio.gather(*[
            cache.store(f"{prefix}-{i}", b"x" * 4, "image/png") for i in range(5)
        ])
        return await asyncio.gather(*[cache.lookup(f"{prefix}-{i}") for i in range(5)])

    first = asyncio.run(run("a"))
    second = asyncio.run(run("b"))

    assert all(entry is not None for entry in first + second)
    assert cache.stats().entry_count == 10
    assert cache.total_size_bytes == 40


# =============================================================================
# EVICTION
# =============================================================================

def test_eviction_removes_least_recently_used(tmp_path, clock):
    cache = AssetCache(tmp_path / "assets", capacity_bytes=100, eviction_margin_bytes=0, clock=clock)

    async def run():
        await cache.store("a", b"a" * 40, "image/png")
        await cache.store("b", b"b" * 40, "image/png")
        await cache.lookup("a")
        await cache.store("c", b"c" * 40, "image/png")

    asyncio.run(run())

    assert cache.contains("a")
    assert not cache.contains("b")
    assert cache.contains("c")
    assert cache.total_size_bytes == 80
    assert cache.total_size_bytes <= cache.capacity_bytes


def test_eviction_frees_margin_beyond_incoming(tmp_path, clock):
    cache = AssetCache(tmp_path / "assets", capacity_bytes=100, eviction_margin_bytes=30, clock=clock)

    async def run():
        for key in ("a", "b", "c", "d"):
            await cache.store(key, b"x" * 25, "image/png")
        await cache.store("e", b"x" * 10, "image/png")

    asyncio.run(run())

    # Target is 10 + 30 = 40 bytes, so two 25-byte entries go
    assert not cache.contains("a")
    assert not cache.contains("b")
    assert cache.contains("c")
    assert cache.total_size_bytes == 60


def test_eviction_deletes_expired_entries(tmp_path):
    clock = FakeClock()
    cache = AssetCache(
        tmp_path / "assets",
        capacity_bytes=100,
        max_age=timedelta(days=30),
        eviction_margin_bytes=0,
        clock=clock,
    )

    async def run():
        old = await cache.store("old", b"o" * 5, "image/png")
        clock.advance(days=31)
        await cache.store("a", b"a" * 45, "image/png")
        await cache.store("b", b"b" * 45, "image/png")
        await cache.store("c", b"c" * 10, "image/png")
        return old

    old = asyncio.run(run())

    assert not cache.contains("old")
    assert not Path(old.local_path).exists()
    assert not cache.contains("a")
    assert cache.contains("b")
    assert cache.contains("c")
    assert cache.total_size_bytes == 55


def test_eviction_updates_last_cleanup(tmp_path, clock):
    cache = AssetCache(tmp_path / "assets", capacity_bytes=10, eviction_margin_bytes=0, clock=clock)
    before = cache._index.last_cleanup_at

    async def run():
        await cache.store("a", b"x" * 8, "image/png")
        await cache.store("b", b"x" * 8, "image/png")

    asyncio.run(run())
    assert cache._index.last_cleanup_at > before


def test_oversized_write_still_proceeds(tmp_path, clock):
    cache = AssetCache(tmp_path / "assets", capacity_bytes=10, eviction_margin_bytes=0, clock=clock)
    asyncio.run(cache.store("big", b"x" * 50, "image/png"))
    assert cache.contains("big")
    assert cache.total_size_bytes == 50


# =============================================================================
# STATS / CLEAR
# =============================================================================

def test_stats_empty(cache):
    stats = cache.stats()
    assert stats.entry_count == 0
    assert stats.total_size_bytes == 0
    assert stats.oldest_created_at is None
    assert stats.newest_created_at is None


def test_stats_reports_bounds(cache):
    async def run():
        first = await cache.store("a", b"12", "image/png")
        second = await cache.store("b", b"345", "image/png")
        return first, second

    first, second = asyncio.run(run())
    stats = cache.stats()

    assert stats.entry_count == 2
    assert stats.total_size_bytes == 5
    assert stats.oldest_created_at == first.created_at
    assert stats.newest_created_at == second.created_at


def test_clear_is_idempotent(cache):
    async def run():
        entry = await cache.store("a", b"12", "image/png")
        await cache.clear()
        await cache.clear()
        return entry

    entry = asyncio.run(run())

    assert not Path(entry.local_path).exists()
    assert cache.stats().entry_count == 0
    assert cache.total_size_bytes == 0
