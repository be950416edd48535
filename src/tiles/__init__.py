"""Tile caching and pre-download system.

This module provides:
- TileCacheStore: persistent tile cache with TTL expiry and LRU eviction
- TileFetcher: HTTP fetcher with mirror fallback
- RegionDownloader: rate-limited bulk pre-download of a region
- LocalTileServer: local-first facade for the map renderer
- FileTileWriter: `<z>/<x>/<y>.png` sink of the standalone downloader
"""

from tiles.cache import CacheStats, EvictionResult, TileCacheStore
from tiles.connectivity import Connectivity, ConnectivityMonitor
from tiles.downloader import (
    DownloadJob,
    DownloadProgress,
    DownloadSummary,
    RegionDownloader,
    TileFailure,
)
from tiles.fetcher import FetchedTile, TileFetcher
from tiles.server import LocalTileServer, ServerStats
from tiles.storage import KeyValueStore, MemoryKeyValueStore, SQLiteKeyValueStore
from tiles.writer import FileTileWriter

__all__ = [
    'CacheStats',
    'Connectivity',
    'ConnectivityMonitor',
    'DownloadJob',
    'DownloadProgress',
    'DownloadSummary',
    'EvictionResult',
    'FetchedTile',
    'FileTileWriter',
    'KeyValueStore',
    'LocalTileServer',
    'MemoryKeyValueStore',
    'RegionDownloader',
    'SQLiteKeyValueStore',
    'ServerStats',
    'TileCacheStore',
    'TileFailure',
    'TileFetcher',
]
