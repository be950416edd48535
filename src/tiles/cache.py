"""Persistent tile cache with TTL expiry and LRU eviction.

This module provides TileCacheStore, the only owner of tile records and of the
aggregate CacheMetadata. Records live in one key-value namespace, metadata in
another; both are reached through the KeyValueStore protocol.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from domain.models import CacheMetadata, TileKey, TileRecord
from shared.constants import (
    METADATA_KEY,
    METADATA_SCHEMA_VERSION,
    METADATA_STORE_NAMESPACE,
    TILE_CACHE_EVICT_RATIO,
    TILE_CACHE_MAX_SIZE_BYTES,
    TILE_CACHE_MAX_TILES,
    TILE_CACHE_TTL_SECONDS,
    TILE_STORE_NAMESPACE,
)
from shared.errors import CodecError, StoreError, TileCacheError
from shared.formatting import format_bytes
from tiles.codec import decode_tile, encode_tile_with_mime
from tiles.storage import MemoryKeyValueStore, SQLiteKeyValueStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from tiles.storage import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Projection of the cache metadata for display."""

    total_tiles: int
    total_size_bytes: int
    total_size_human: str
    max_size_bytes: int
    max_tile_count: int
    fill_percentage: float
    last_cleanup_at: float
    created_at: float
    regions: list[str] = field(default_factory=list)


@dataclass
class EvictionResult:
    removed: int
    freed_bytes: int


class _KeyLocks:
    """Reference-counted asyncio locks, one per storage key."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class TileCacheStore:
    """Capacity-bounded tile store.

    Features:
    - TTL counted from tile creation; expired tiles are purged on lookup
    - LRU eviction (oldest quarter by last access) once the size or count
      ceiling is crossed, run as a background task
    - Exact byte accounting: overwrites adjust totals by the delta
    - Per-key locks serialise put/remove/evict of the same tile

    Usage:
        store = TileCacheStore.open_sqlite(cache_dir)
        await store.init()
        await store.put(TileKey(15, 100, 200), png_bytes)
        uri = await store.get(TileKey(15, 100, 200))
        await store.dispose()
    """

    def __init__(
        self,
        tile_store: KeyValueStore,
        metadata_store: KeyValueStore,
        *,
        max_cache_size_bytes: int = TILE_CACHE_MAX_SIZE_BYTES,
        max_tile_count: int = TILE_CACHE_MAX_TILES,
        ttl_seconds: float = TILE_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._tiles = tile_store
        self._meta = metadata_store
        self.max_cache_size_bytes = max_cache_size_bytes
        self.max_tile_count = max_tile_count
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._metadata: CacheMetadata | None = None
        self._meta_lock = asyncio.Lock()
        self._evict_lock = asyncio.Lock()
        self._key_locks = _KeyLocks()
        self._eviction_task: asyncio.Task[EvictionResult | None] | None = None
        # Bumped by clear(); deltas computed before a clear are dropped
        self._generation = 0

    @classmethod
    def open_sqlite(cls, cache_dir: str | Path, **limits) -> TileCacheStore:
        """Store persisted as SQLite files in ``cache_dir``."""
        return cls(
            SQLiteKeyValueStore(cache_dir, TILE_STORE_NAMESPACE),
            SQLiteKeyValueStore(cache_dir, METADATA_STORE_NAMESPACE),
            **limits,
        )

    @classmethod
    def in_memory(cls, **limits) -> TileCacheStore:
        """Store that lives only as long as the process."""
        return cls(
            MemoryKeyValueStore(TILE_STORE_NAMESPACE),
            MemoryKeyValueStore(METADATA_STORE_NAMESPACE),
            **limits,
        )

    # --- lifecycle

    async def init(self) -> None:
        """Open both namespaces and load (or create) the metadata record."""
        await self._tiles.open()
        await self._meta.open()
        self._metadata = await self._load_metadata()
        logger.info(
            'Tile cache initialized: %d tiles, %s',
            self._metadata.total_tiles,
            format_bytes(self._metadata.total_size),
        )

    async def dispose(self) -> None:
        """Finish pending eviction and close the stores."""
        await self.wait_for_eviction()
        await self._tiles.close()
        await self._meta.close()
        self._metadata = None
        logger.info('Tile cache closed')

    async def __aenter__(self) -> TileCacheStore:
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()

    @property
    def metadata(self) -> CacheMetadata:
        if self._metadata is None:
            msg = 'Tile cache is not initialized'
            raise StoreError(msg)
        return self._metadata

    # --- metadata

    async def _load_metadata(self) -> CacheMetadata:
        raw = await self._meta.get_item(METADATA_KEY)
        if raw is None:
            meta = CacheMetadata.empty(self._clock())
            await self._meta.set_item(METADATA_KEY, meta.model_dump_json())
            return meta

        try:
            data = json.loads(raw)
        except ValueError:
            data = None

        if isinstance(data, dict):
            version = data.get('schema_version')
            if version == METADATA_SCHEMA_VERSION:
                with contextlib.suppress(ValidationError):
                    return CacheMetadata.model_validate(data)
            elif version is None and 'totalTiles' in data:
                meta = CacheMetadata.from_legacy(data)
                await self._meta.set_item(METADATA_KEY, meta.model_dump_json())
                logger.info('Migrated legacy cache metadata to schema v%d', METADATA_SCHEMA_VERSION)
                return meta

        logger.warning('Cache metadata unreadable, rebuilding totals from tile records')
        return await self._rebuild_metadata()

    async def _rebuild_metadata(self) -> CacheMetadata:
        total_tiles = 0
        total_size = 0
        for skey in await self._tiles.keys():
            record = self._parse_record(skey, await self._tiles.get_item(skey))
            if record is not None:
                total_tiles += 1
                total_size += record.size_bytes
        now = self._clock()
        meta = CacheMetadata(
            total_tiles=total_tiles,
            total_size=total_size,
            last_cleanup_at=now,
            created_at=now,
        )
        await self._meta.set_item(METADATA_KEY, meta.model_dump_json())
        return meta

    async def rebuild_metadata(self) -> CacheMetadata:
        """Recount totals from the records actually stored."""
        async with self._meta_lock:
            regions = list(self.metadata.regions)
            meta = await self._rebuild_metadata()
            meta.regions = regions
            await self._meta.set_item(METADATA_KEY, meta.model_dump_json())
            self._metadata = meta
            return meta

    async def _adjust_metadata(
        self,
        d_tiles: int = 0,
        d_size: int = 0,
        *,
        cleanup_at: float | None = None,
        region: str | None = None,
        generation: int | None = None,
    ) -> CacheMetadata | None:
        """Read-modify-write of the metadata record, atomic under the lock.

        With ``generation`` set, the delta is applied only if no clear() ran
        since that generation was read; otherwise None is returned.
        """
        async with self._meta_lock:
            if generation is not None and generation != self._generation:
                return None
            cur = self.metadata
            new = cur.model_copy(
                update={
                    'total_tiles': max(0, cur.total_tiles + d_tiles),
                    'total_size': max(0, cur.total_size + d_size),
                    'last_cleanup_at': cur.last_cleanup_at if cleanup_at is None else cleanup_at,
                    'regions': [*cur.regions, region] if region else list(cur.regions),
                }
            )
            await self._meta.set_item(METADATA_KEY, new.model_dump_json())
            self._metadata = new
            return new

    async def record_region(self, name: str) -> None:
        """Append a pre-downloaded region name to the audit log."""
        await self._adjust_metadata(region=name)

    # --- records

    def _parse_record(self, skey: str, raw: str | None) -> TileRecord | None:
        if raw is None:
            return None
        try:
            return TileRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning('Corrupt tile record %s ignored', skey)
            return None

    async def _read_record(self, skey: str) -> TileRecord | None:
        return self._parse_record(skey, await self._tiles.get_item(skey))

    def _is_expired(self, record: TileRecord) -> bool:
        if self.ttl_seconds <= 0:
            return False
        return self._clock() - record.created_at > self.ttl_seconds

    async def _delete_locked(self, skey: str, record: TileRecord) -> None:
        generation = self._generation
        await self._tiles.remove_item(skey)
        await self._adjust_metadata(-1, -record.size_bytes, generation=generation)

    async def _fresh_record(self, key: TileKey) -> TileRecord | None:
        """Record for ``key`` or None; purges it when expired. Caller holds the key lock."""
        skey = key.storage_key
        record = await self._read_record(skey)
        if record is None:
            return None
        if self._is_expired(record):
            await self._delete_locked(skey, record)
            logger.debug('Tile %s expired and purged', key)
            return None
        return record

    async def has(self, key: TileKey) -> bool:
        """True iff a non-expired record exists."""
        async with self._key_locks.hold(key.storage_key):
            return await self._fresh_record(key) is not None

    async def get(self, key: TileKey) -> str | None:
        """Data URI of the tile, refreshing its access time; None on miss.

        A record whose payload no longer decodes is purged and reported as a
        miss, like a record that fails to parse.
        """
        skey = key.storage_key
        async with self._key_locks.hold(skey):
            generation = self._generation
            record = await self._fresh_record(key)
            if record is None:
                return None
            try:
                uri = decode_tile(record.data, record.mime)
            except CodecError:
                logger.warning('Corrupt tile payload %s purged', key)
                await self._delete_locked(skey, record)
                return None
            record.last_accessed_at = self._clock()
            await self._tiles.set_item(skey, record.model_dump_json())
            if generation != self._generation:
                # Access-time write raced clear(); do not resurrect the tile
                await self._tiles.remove_item(skey)
                return None
        return uri

    async def get_record(self, key: TileKey) -> TileRecord | None:
        """Stored record without touching its access time or expiry."""
        return await self._read_record(key.storage_key)

    async def put(
        self,
        key: TileKey,
        raw: bytes,
        created_at: float | None = None,
    ) -> TileRecord:
        """Store a tile and account for it.

        Args:
            key: Tile address.
            raw: Image bytes as downloaded.
            created_at: Creation timestamp. Defaults to now.

        Raises:
            CodecError: ``raw`` is not an image; nothing is written.
            StoreError: the write failed; metadata is left unchanged.
        """
        if not isinstance(raw, (bytes, bytearray, memoryview)):
            msg = f'Tile payload must be bytes, got {type(raw).__name__}'
            raise CodecError(msg)
        raw = bytes(raw)
        data, mime = encode_tile_with_mime(raw)

        # A put never runs ahead of an eviction it triggered
        await self.wait_for_eviction()

        skey = key.storage_key
        now = self._clock()
        record = TileRecord(
            zoom=key.zoom,
            x=key.x,
            y=key.y,
            data=data,
            mime=mime,
            size_bytes=len(raw),
            created_at=now if created_at is None else created_at,
            last_accessed_at=now,
        )
        async with self._key_locks.hold(skey):
            generation = self._generation
            old = await self._read_record(skey)
            await self._tiles.set_item(skey, record.model_dump_json())
            try:
                meta = await self._adjust_metadata(
                    0 if old is not None else 1,
                    record.size_bytes - (old.size_bytes if old is not None else 0),
                    generation=generation,
                )
            except StoreError:
                with contextlib.suppress(StoreError):
                    if old is not None:
                        await self._tiles.set_item(skey, old.model_dump_json())
                    else:
                        await self._tiles.remove_item(skey)
                raise
            if meta is None:
                # clear() ran while writing: the cache must stay empty
                await self._tiles.remove_item(skey)
                logger.debug('Tile %s dropped, cache cleared during write', key)
                return record

        if self._over_limits(meta):
            self._schedule_eviction()
        return record

    async def remove(self, key: TileKey) -> bool:
        """Delete a tile; False when it was not cached."""
        skey = key.storage_key
        async with self._key_locks.hold(skey):
            record = await self._read_record(skey)
            if record is None:
                return False
            await self._delete_locked(skey, record)
            return True

    async def clear(self) -> None:
        """Delete every tile and reset metadata; complete on return."""
        task = self._eviction_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        async with self._evict_lock, self._meta_lock:
            self._generation += 1
            await self._tiles.clear()
            meta = CacheMetadata.empty(self._clock())
            await self._meta.set_item(METADATA_KEY, meta.model_dump_json())
            self._metadata = meta
        logger.info('Tile cache cleared')

    async def stats(self) -> CacheStats:
        meta = self.metadata
        return CacheStats(
            total_tiles=meta.total_tiles,
            total_size_bytes=meta.total_size,
            total_size_human=format_bytes(meta.total_size),
            max_size_bytes=self.max_cache_size_bytes,
            max_tile_count=self.max_tile_count,
            fill_percentage=round(meta.total_size / self.max_cache_size_bytes * 100, 1),
            last_cleanup_at=meta.last_cleanup_at,
            created_at=meta.created_at,
            regions=list(meta.regions),
        )

    # --- eviction

    def _over_limits(self, meta: CacheMetadata) -> bool:
        return (
            meta.total_size > self.max_cache_size_bytes
            or meta.total_tiles > self.max_tile_count
        )

    def _schedule_eviction(self) -> None:
        if self._eviction_task is not None and not self._eviction_task.done():
            return
        self._eviction_task = asyncio.create_task(self._run_eviction())

    async def _run_eviction(self) -> EvictionResult | None:
        try:
            return await self.evict()
        except TileCacheError:
            logger.exception('Background cache eviction failed')
            return None

    async def wait_for_eviction(self) -> None:
        """Wait for a scheduled background eviction to finish."""
        task = self._eviction_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            await asyncio.wait({task})

    async def evict(self) -> EvictionResult:
        """Remove the least recently used quarter of the records.

        Records are chosen from a snapshot taken at scan time; a record that
        was re-created after the snapshot is left alone.
        """
        async with self._evict_lock:
            snapshot: list[tuple[float, str, float]] = []
            for skey in await self._tiles.keys():
                record = await self._read_record(skey)
                if record is not None:
                    snapshot.append((record.last_accessed_at, skey, record.created_at))
            snapshot.sort()

            count = int(len(snapshot) * TILE_CACHE_EVICT_RATIO)
            if count == 0 and snapshot and self._over_limits(self.metadata):
                count = 1

            removed = 0
            freed = 0
            try:
                for _, skey, created_at in snapshot[:count]:
                    async with self._key_locks.hold(skey):
                        record = await self._read_record(skey)
                        if record is None or record.created_at != created_at:
                            continue
                        await self._tiles.remove_item(skey)
                        removed += 1
                        freed += record.size_bytes
            finally:
                await self._adjust_metadata(-removed, -freed, cleanup_at=self._clock())

            logger.info(
                'LRU cleanup: removed %d of %d tiles, freed %s',
                removed,
                len(snapshot),
                format_bytes(freed),
            )
            return EvictionResult(removed=removed, freed_bytes=freed)
