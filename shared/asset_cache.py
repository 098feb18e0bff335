"""
Content-addressable asset cache on local disk.

Layout (one directory):
- index.json: key -> CacheEntry metadata, total size, last cleanup time
- <key><ext>: one data file per asset, ext inferred from the MIME type

Keys are SHA-256 digests of the asset's source identifier (its fetch URL or
its generation prompt), so the same source is never fetched twice.

Capacity is bounded by size and age. When a write would push the cache over
capacity, an eviction pass walks entries least-recently-used first and deletes
those that are too old or that are needed to make room (incoming size plus a
safety margin). Eviction is best effort: the write proceeds even if the
target cannot be met.

All index mutations go through one asyncio.Lock per event loop. The critical
sections are synchronous (no await between taking the lock and finishing the
update), so a cancelled enrichment task can never leave a half-applied update
and any error surfaces in the calling task.
"""
import asyncio
import hashlib
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Union

import structlog
from pydantic import ValidationError

from .models import CacheEntry, CacheIndex, CacheStats, utc_now

logger = structlog.get_logger()

INDEX_FILENAME = "index.json"
FALLBACK_EXTENSION = ".bin"

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/pjpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/avif": ".avif",
    "image/svg+xml": ".svg",
    "image/x-icon": ".ico",
    "image/vnd.microsoft.icon": ".ico",
}


def cache_key(source_id: str) -> str:
    """Deterministic cache key for a URL or generation prompt."""
    return hashlib.sha256(source_id.encode("utf-8")).hexdigest()


def extension_for_mime(mime_type: Optional[str]) -> str:
    """Map a Content-Type value to a file extension ('.bin' if unknown)."""
    if not mime_type:
        return FALLBACK_EXTENSION
    base = mime_type.split(";", 1)[0].strip().lower()
    return MIME_EXTENSIONS.get(base, FALLBACK_EXTENSION)


class AssetCache:
    """
    Disk-backed asset cache with a durable JSON index.

    Construct one instance per cache directory per process and pass it to
    every component that reads or writes assets.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        capacity_bytes: int = 500 * 1024 * 1024,
        max_age: timedelta = timedelta(days=30),
        eviction_margin_bytes: int = 50 * 1024 * 1024,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the cache, creating the directory and loading the index.

        Args:
            directory: Cache directory (created if missing)
            capacity_bytes: Size bound that triggers eviction
            max_age: Entries older than this are evicted on the next pass
            eviction_margin_bytes: Extra space freed beyond the incoming write
            clock: Time source (injectable for tests)
        """
        self.directory = Path(directory)
        self.capacity_bytes = capacity_bytes
        self.max_age = max_age
        self.eviction_margin_bytes = eviction_margin_bytes
        self._clock = clock
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

        self.directory.mkdir(parents=True, exist_ok=True)
        self._index_path = self.directory / INDEX_FILENAME
        self._index = self._load_index()

    # -------------------------------------------------------------------------
    # Index persistence
    # -------------------------------------------------------------------------

    def _load_index(self) -> CacheIndex:
        if self._index_path.exists():
            try:
                index = CacheIndex.model_validate_json(self._index_path.read_text(encoding="utf-8"))
                # Totals are derived data; never trust a stale aggregate
                index.recompute_total()
                logger.debug("cache_index_loaded", entries=len(index.entries), directory=str(self.directory))
                return index
            except (OSError, ValidationError, ValueError) as e:
                logger.error("cache_index_unreadable", path=str(self._index_path), error=str(e))

        index = CacheIndex(last_cleanup_at=self._clock())
        self._save_index(index)
        return index

    def _save_index(self, index: Optional[CacheIndex] = None) -> None:
        """Write the index atomically (temp file + rename)."""
        index = index or self._index
        payload = index.model_dump_json(indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".index-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self._index_path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _get_lock(self) -> asyncio.Lock:
        """Lock for the running loop; a new loop (e.g. a later asyncio.run) gets a fresh one."""
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def total_size_bytes(self) -> int:
        return self._index.total_size_bytes

    def contains(self, key: str) -> bool:
        return key in self._index.entries

    def path_for(self, key: str, mime_type: Optional[str]) -> Path:
        return self.directory / f"{key}{extension_for_mime(mime_type)}"

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        """
        Return the entry for key, or None on a miss.

        An entry whose backing file has gone missing is purged from the index
        (self-healing read) and reported as a miss. Hits refresh
        last_accessed_at and persist the index.
        """
        if key not in self._index.entries:
            logger.debug("cache_miss", key=key)
            return None

        async with self._get_lock():
            return self._lookup_locked(key)

    def _lookup_locked(self, key: str) -> Optional[CacheEntry]:
        entry = self._index.entries.get(key)
        if entry is None:
            return None

        if not Path(entry.local_path).exists():
            del self._index.entries[key]
            self._index.total_size_bytes -= entry.size_bytes
            self._persist_quietly()
            logger.warning("cache_entry_healed", key=key, local_path=entry.local_path)
            return None

        entry.last_accessed_at = self._clock()
        self._persist_quietly()
        logger.debug("cache_hit", key=key, source_id=entry.source_id[:100])
        return entry.model_copy()

    async def store(
        self,
        key: str,
        data: bytes,
        mime_type: str,
        provenance: str = "",
        source_id: str = "",
    ) -> CacheEntry:
        """
        Persist data under key and return the new entry.

        Runs an eviction pass first if the write would exceed capacity.
        File-system errors propagate to the caller; the index only changes
        after the data file has been written successfully.
        """
        async with self._get_lock():
            return self._store_locked(key, data, mime_type, provenance, source_id)

    def _store_locked(
        self,
        key: str,
        data: bytes,
        mime_type: str,
        provenance: str,
        source_id: str,
    ) -> CacheEntry:
        previous = self._index.entries.get(key)
        replaced_size = previous.size_bytes if previous else 0

        if self._index.total_size_bytes - replaced_size + len(data) > self.capacity_bytes:
            self._evict(len(data), protect=key)
            previous = self._index.entries.get(key)
            replaced_size = previous.size_bytes if previous else 0

        local_path = self.path_for(key, mime_type)
        self._write_file(local_path, data)

        now = self._clock()
        entry = CacheEntry(
            key=key,
            source_id=source_id,
            local_path=str(local_path),
            mime_type=mime_type,
            size_bytes=len(data),
            created_at=now,
            last_accessed_at=now,
            provenance=provenance,
        )
        self._index.entries[key] = entry
        self._index.total_size_bytes += len(data) - replaced_size

        if previous and previous.local_path != entry.local_path:
            Path(previous.local_path).unlink(missing_ok=True)

        self._save_index()
        logger.info(
            "asset_cached",
            key=key,
            size_kb=round(len(data) / 1024, 1),
            mime_type=mime_type,
            provenance=provenance,
        )
        return entry.model_copy()

    def _write_file(self, path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".asset-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            logger.error("cache_write_failed", path=str(path), error=str(e))
            raise

    def _evict(self, incoming_bytes: int, protect: Optional[str] = None) -> int:
        """
        Free space for an incoming write. Returns the number of bytes freed.

        Entries are visited least-recently-used first. An entry is deleted if
        it is older than max_age, or if the freed total is still short of
        incoming_bytes + eviction_margin_bytes. The pass stops as soon as the
        target is met.
        """
        now = self._clock()
        target = incoming_bytes + self.eviction_margin_bytes
        freed = 0
        removed = 0

        candidates = sorted(
            (entry for key, entry in self._index.entries.items() if key != protect),
            key=lambda entry: entry.last_accessed_at,
        )
        logger.info(
            "cache_eviction_started",
            total_size_bytes=self._index.total_size_bytes,
            incoming_bytes=incoming_bytes,
            candidates=len(candidates),
        )

        for entry in candidates:
            expired = now - entry.created_at > self.max_age
            if expired or freed < target:
                try:
                    Path(entry.local_path).unlink(missing_ok=True)
                except OSError as e:
                    logger.error("cache_eviction_delete_failed", key=entry.key, error=str(e))
                    continue
                del self._index.entries[entry.key]
                self._index.total_size_bytes -= entry.size_bytes
                freed += entry.size_bytes
                removed += 1
                logger.debug("cache_evicted", key=entry.key, expired=expired, size_bytes=entry.size_bytes)

            if freed >= target:
                break

        self._index.last_cleanup_at = now
        logger.info("cache_eviction_complete", freed_bytes=freed, removed=removed)
        return freed

    def _persist_quietly(self) -> None:
        """Persist after a read-path mutation; failures are logged, not raised."""
        try:
            self._save_index()
        except OSError as e:
            logger.error("cache_index_save_failed", error=str(e))

    def stats(self) -> CacheStats:
        """Entry count, total size, and oldest/newest creation times."""
        entries = list(self._index.entries.values())
        if not entries:
            return CacheStats(total_size_bytes=self._index.total_size_bytes)

        created = [entry.created_at for entry in entries]
        return CacheStats(
            entry_count=len(entries),
            total_size_bytes=self._index.total_size_bytes,
            oldest_created_at=min(created),
            newest_created_at=max(created),
        )

    async def clear(self) -> None:
        """Delete every cached file and reset the index. Safe to call repeatedly."""
        async with self._get_lock():
            self._clear_locked()

    def _clear_locked(self) -> None:
        removed = 0
        for entry in list(self._index.entries.values()):
            try:
                Path(entry.local_path).unlink(missing_ok=True)
                removed += 1
            except OSError as e:
                logger.error("cache_clear_delete_failed", key=entry.key, error=str(e))

        self._index = CacheIndex(last_cleanup_at=self._clock())
        self._save_index()
        logger.info("cache_cleared", removed=removed)

    def entries_for_provenance(self, provenance: str) -> List[CacheEntry]:
        """All cached assets fetched for a given page/source."""
        return [entry.model_copy() for entry in self._index.entries.values() if entry.provenance == provenance]

    def read_bytes(self, entry: CacheEntry) -> bytes:
        return Path(entry.local_path).read_bytes()
