#!/usr/bin/env python3
"""
Asset cache maintenance script.

Shows statistics for the on-disk asset cache, or clears it.
Reads the same environment variables as the workflow nodes
(ASSET_CACHE_DIR, ASSET_CACHE_MAX_BYTES, ...).

Usage:
    python scripts/cache_admin.py stats
    python scripts/cache_admin.py clear
"""
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.asset_cache import AssetCache
from shared.config import ConfigError, load_settings


def open_cache() -> AssetCache:
    settings = load_settings()
    return AssetCache(
        settings.cache_dir,
        capacity_bytes=settings.cache_max_bytes,
        max_age=timedelta(days=settings.cache_max_age_days),
        eviction_margin_bytes=settings.cache_eviction_margin_bytes,
    )


def show_stats(cache: AssetCache):
    stats = cache.stats()
    print(f"Directory:  {cache.directory}")
    print(f"Entries:    {stats.entry_count}")
    print(f"Total size: {stats.total_size_bytes / 1024 / 1024:.1f} MB "
          f"of {cache.capacity_bytes / 1024 / 1024:.0f} MB")
    print(f"Oldest:     {stats.oldest_created_at or '-'}")
    print(f"Newest:     {stats.newest_created_at or '-'}")


async def clear(cache: AssetCache):
    before = cache.stats()
    await cache.clear()
    print(f"✓ Removed {before.entry_count} entries ({before.total_size_bytes / 1024 / 1024:.1f} MB)")


async def main(command: str):
    print("=" * 60)
    print("ASSET CACHE")
    print("=" * 60)
    print()

    try:
        cache = open_cache()
    except ConfigError as e:
        print(f"⚠ {e}")
        return 1

    if command == "stats":
        show_stats(cache)
    elif command == "clear":
        await clear(cache)
    else:
        print(__doc__)
        return 2

    print()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "stats")))
