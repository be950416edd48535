"""Tests for the LocalTileServer facade."""

from __future__ import annotations

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from domain.models import TileKey
from domain.settings import settings_from_dict
from shared.errors import NetworkError, StoreError
from tiles.cache import TileCacheStore
from tiles.codec import to_data_uri
from tiles.connectivity import Connectivity
from tiles.fetcher import FetchedTile
from tiles.placeholder import placeholder_data_uri
from tiles.server import LocalTileServer, ServerStats

REMOTE_12 = 'https://a.tile.openstreetmap.org/12/2074/1409.png'


def make_fetcher(data: bytes | None = None, error: Exception | None = None) -> MagicMock:
    fetcher = MagicMock()
    if error is not None:
        fetcher.fetch = AsyncMock(side_effect=error)
    else:
        fetcher.fetch = AsyncMock(
            side_effect=lambda key: FetchedTile(key=key, data=data, url='u', attempts=1)
        )
    return fetcher


@pytest_asyncio.fixture
async def store():
    cache = TileCacheStore.in_memory()
    await cache.init()
    yield cache
    await cache.dispose()


class TestResolveTile:
    """Decision table of resolve_tile."""

    @pytest.mark.asyncio
    async def test_disabled_returns_remote_url(self, store, png_bytes):
        fetcher = make_fetcher(png_bytes)
        server = LocalTileServer(store, fetcher)
        server.configure(enabled=False)
        store.get = AsyncMock()

        assert await server.resolve_tile(12, 2074, 1409) == REMOTE_12
        store.get.assert_not_called()
        fetcher.fetch.assert_not_called()
        assert server.stats().total_requests == 0

    @pytest.mark.asyncio
    async def test_cache_hit(self, store, png_bytes):
        await store.put(TileKey(12, 2074, 1409), png_bytes)
        fetcher = make_fetcher(png_bytes)
        server = LocalTileServer(store, fetcher)

        result = await server.resolve_tile(12, 2074, 1409)

        assert result == to_data_uri(png_bytes)
        assert server.stats().cache_hits == 1
        fetcher.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, store, png_bytes):
        server = LocalTileServer(store, make_fetcher(png_bytes))

        result = await server.resolve_tile(12, 2074, 1409)

        assert result.startswith('data:image/png;base64,')
        assert await store.has(TileKey(12, 2074, 1409))
        stats = server.stats()
        assert stats.cache_misses == 1
        assert stats.remote_requests == 1

        await server.resolve_tile(12, 2074, 1409)
        assert server.stats().cache_hits == 1

    @pytest.mark.asyncio
    async def test_no_fallback_returns_placeholder(self, store, png_bytes):
        fetcher = make_fetcher(png_bytes)
        server = LocalTileServer(store, fetcher)
        server.configure(fallback_to_remote=False)

        assert await server.resolve_tile(12, 2074, 1409) == placeholder_data_uri()
        fetcher.fetch.assert_not_called()
        assert server.stats().cache_misses == 1

    @pytest.mark.asyncio
    async def test_offline_returns_placeholder(self, store, png_bytes):
        fetcher = make_fetcher(png_bytes)
        server = LocalTileServer(store, fetcher, connectivity=Connectivity(online=False))
        assert await server.resolve_tile(12, 2074, 1409) == placeholder_data_uri()
        fetcher.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_skip_local_lookup(self, store, png_bytes):
        await store.put(TileKey(12, 2074, 1409), png_bytes)
        fetcher = make_fetcher(png_bytes)
        server = LocalTileServer(store, fetcher)
        server.configure(use_local_first=False)

        await server.resolve_tile(12, 2074, 1409)
        fetcher.fetch.assert_awaited_once()
        assert server.stats().cache_hits == 0

    @pytest.mark.asyncio
    async def test_network_error_degrades_to_remote_url(self, store):
        server = LocalTileServer(store, make_fetcher(error=NetworkError('down')))
        assert await server.resolve_tile(12, 2074, 1409) == REMOTE_12
        assert server.stats().errors == 1

    @pytest.mark.asyncio
    async def test_store_error_degrades_to_remote_url(self, store, png_bytes):
        store.get = AsyncMock(side_effect=StoreError('locked'))
        server = LocalTileServer(store, make_fetcher(png_bytes))
        assert await server.resolve_tile(12, 2074, 1409) == REMOTE_12
        assert server.stats().errors == 1

    @pytest.mark.asyncio
    async def test_invalid_coordinates_degrade(self, store, png_bytes):
        server = LocalTileServer(store, make_fetcher(png_bytes))
        assert await server.resolve_tile(1, 5, 5) == 'https://b.tile.openstreetmap.org/1/5/5.png'
        assert server.stats().errors == 1


class TestStatsAndMaintenance:
    """Counters, options, cache info."""

    def test_hit_rate(self):
        stats = ServerStats(cache_hits=3, cache_misses=1)
        assert stats.total_requests == 4
        assert ServerStats(cache_hits=1, cache_misses=2).hit_rate == pytest.approx(1 / 3)
        assert stats.hit_rate == 0.75
        assert ServerStats().hit_rate == 0.0
        assert stats.as_dict()['hit_rate'] == 0.75

    @pytest.mark.asyncio
    async def test_reset_stats(self, store, png_bytes):
        server = LocalTileServer(store, make_fetcher(png_bytes))
        await server.resolve_tile(3, 1, 1)
        server.reset_stats()
        assert server.stats() == ServerStats()

    def test_configure_keeps_unset_options(self):
        server = LocalTileServer(TileCacheStore.in_memory(), make_fetcher(b''))
        opts = server.configure(use_local_first=False)
        assert opts.enabled is True
        assert opts.use_local_first is False
        assert opts.fallback_to_remote is True
        opts.enabled = False
        assert server.options.enabled is True

    @pytest.mark.asyncio
    async def test_cache_info_and_clear(self, store, png_bytes):
        server = LocalTileServer(store, make_fetcher(png_bytes))
        await server.predownload_region(
            {'north': 48.9, 'south': 48.8, 'east': 2.4, 'west': 2.2}, 10, 11, 'Paris'
        )
        info = await server.cache_info()
        assert info['cache']['total_tiles'] == 5
        assert info['cache']['regions'] == ['Paris']
        assert info['download']['downloaded'] == 5

        await server.clear_cache()
        info = await server.cache_info()
        assert info['cache']['total_tiles'] == 0
        assert info['server']['total_requests'] == 0

    @pytest.mark.asyncio
    async def test_from_settings(self, png_bytes):
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = settings_from_dict(
                {
                    'cache': {'cache_dir': tmpdir, 'max_tile_count': 50},
                    'server': {'fallback_to_remote': False},
                }
            )
            server = LocalTileServer.from_settings(settings, MagicMock())
            async with server:
                assert server.store.max_tile_count == 50
                assert server.options.fallback_to_remote is False
                assert await server.resolve_tile(3, 1, 1) == placeholder_data_uri()
            assert (Path(tmpdir) / 'tiles.db').exists()

    @pytest.mark.asyncio
    async def test_dispose_cancels_download(self, store):
        server = LocalTileServer(store, make_fetcher(b''))
        with patch.object(server.downloader, 'cancel') as cancel:
            await server.dispose()
        cancel.assert_called_once()
