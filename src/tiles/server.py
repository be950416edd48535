"""Local-first tile service for the map renderer.

``LocalTileServer.resolve_tile`` always returns something displayable: a
``data:`` URI from the cache, a freshly fetched tile, the offline placeholder,
or the direct remote URL as the last resort.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from domain.models import TileKey
from domain.settings import TileServerOptions
from infrastructure.http.client import resolve_cache_dir
from shared.constants import TILE_SUBDOMAINS
from tiles.cache import TileCacheStore
from tiles.codec import to_data_uri
from tiles.downloader import RegionDownloader
from tiles.fetcher import TileFetcher, remote_tile_url
from tiles.placeholder import placeholder_data_uri

if TYPE_CHECKING:
    from collections.abc import Sequence

    import aiohttp

    from domain.models import BoundingBox
    from domain.settings import AppSettings
    from tiles.connectivity import Connectivity
    from tiles.downloader import DownloadSummary

logger = logging.getLogger(__name__)


@dataclass
class ServerStats:
    cache_hits: int = 0
    cache_misses: int = 0
    remote_requests: int = 0
    errors: int = 0

    @property
    def total_requests(self) -> int:
        return self.cache_hits + self.cache_misses

    @property
    def hit_rate(self) -> float:
        """hits / (hits + misses); 0.0 before the first lookup."""
        total = self.total_requests
        if total == 0:
            return 0.0
        return self.cache_hits / total

    def as_dict(self) -> dict:
        return {
            **asdict(self),
            'total_requests': self.total_requests,
            'hit_rate': self.hit_rate,
        }


class LocalTileServer:
    """Facade over the cache store, the fetcher and the region downloader.

    Features:
    - Local-first lookup with optional remote fallback
    - Offline placeholder when the tile is neither cached nor fetchable
    - Never raises from ``resolve_tile``: failures degrade to the remote URL
    - Hit/miss/remote/error counters

    Usage:
        async with LocalTileServer.from_settings(settings, session) as server:
            src = await server.resolve_tile(12, 2074, 1409)
    """

    def __init__(
        self,
        store: TileCacheStore,
        fetcher: TileFetcher,
        *,
        downloader: RegionDownloader | None = None,
        connectivity: Connectivity | None = None,
        options: TileServerOptions | None = None,
        subdomains: Sequence[str] = TILE_SUBDOMAINS,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.connectivity = connectivity
        self.downloader = downloader or RegionDownloader(
            store, fetcher, connectivity=connectivity
        )
        self._options = options or TileServerOptions()
        self.subdomains = tuple(subdomains)
        self._stats = ServerStats()

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        client: aiohttp.ClientSession,
        *,
        connectivity: Connectivity | None = None,
    ) -> LocalTileServer:
        """Wire store, fetcher and downloader from validated settings."""
        cache = settings.cache
        dl = settings.download
        store = TileCacheStore.open_sqlite(
            resolve_cache_dir(cache.cache_dir),
            max_cache_size_bytes=cache.max_cache_size_bytes,
            max_tile_count=cache.max_tile_count,
            ttl_seconds=cache.ttl_seconds,
        )
        fetcher = TileFetcher(
            client,
            servers=dl.tile_servers,
            subdomains=dl.subdomains,
            max_retries=dl.max_retries,
            retry_delay=dl.retry_delay_s,
            timeout=dl.timeout_s,
            user_agent=dl.user_agent,
        )
        downloader = RegionDownloader(
            store,
            fetcher,
            connectivity=connectivity,
            batch_size=dl.batch_size,
            batch_delay=dl.batch_delay_s,
        )
        return cls(
            store,
            fetcher,
            downloader=downloader,
            connectivity=connectivity,
            options=settings.server.model_copy(),
            subdomains=dl.subdomains,
        )

    # --- lifecycle

    async def init(self) -> None:
        await self.store.init()
        logger.info('Local tile server ready (%s)', self._options)

    async def dispose(self) -> None:
        self.downloader.cancel()
        await self.store.dispose()

    async def __aenter__(self) -> LocalTileServer:
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()

    # --- options

    @property
    def options(self) -> TileServerOptions:
        return self._options.model_copy()

    def configure(
        self,
        *,
        enabled: bool | None = None,
        use_local_first: bool | None = None,
        fallback_to_remote: bool | None = None,
    ) -> TileServerOptions:
        """Toggle facade switches; ``None`` keeps the current value."""
        if enabled is not None:
            self._options.enabled = enabled
        if use_local_first is not None:
            self._options.use_local_first = use_local_first
        if fallback_to_remote is not None:
            self._options.fallback_to_remote = fallback_to_remote
        logger.info('Tile server configured: %s', self._options)
        return self.options

    @property
    def online(self) -> bool:
        return self.connectivity is None or self.connectivity.online

    # --- lookups

    def remote_tile_url(self, z: int, x: int, y: int) -> str:
        return remote_tile_url(z, x, y, self.subdomains)

    def placeholder_tile(self) -> str:
        return placeholder_data_uri()

    async def resolve_tile(self, z: int, x: int, y: int) -> str:
        """Image source for tile z/x/y; never raises."""
        opts = self._options
        if not opts.enabled:
            return self.remote_tile_url(z, x, y)

        try:
            key = TileKey(z, x, y)
            if opts.use_local_first:
                cached = await self.store.get(key)
                if cached is not None:
                    self._stats.cache_hits += 1
                    return cached

            self._stats.cache_misses += 1
            if opts.fallback_to_remote and self.online:
                self._stats.remote_requests += 1
                fetched = await self.fetcher.fetch(key)
                await self.store.put(key, fetched.data)
                return to_data_uri(fetched.data)

            return self.placeholder_tile()
        except Exception as e:
            self._stats.errors += 1
            logger.warning('Tile %s/%s/%s degraded to remote URL: %s', z, x, y, e)
            return self.remote_tile_url(z, x, y)

    # --- stats and maintenance

    def stats(self) -> ServerStats:
        return ServerStats(**asdict(self._stats))

    def reset_stats(self) -> None:
        self._stats = ServerStats()

    async def predownload_region(
        self,
        bounds: BoundingBox | dict,
        min_zoom: int,
        max_zoom: int,
        name: str,
    ) -> DownloadSummary:
        return await self.downloader.predownload_region(bounds, min_zoom, max_zoom, name)

    async def cache_info(self) -> dict:
        """Store statistics plus the last pre-download progress."""
        return {
            'cache': asdict(await self.store.stats()),
            'download': asdict(self.downloader.progress),
            'server': self._stats.as_dict(),
        }

    async def clear_cache(self) -> None:
        await self.store.clear()
        self.reset_stats()
