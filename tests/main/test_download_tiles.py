"""Tests for the download-tiles command."""

from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import download_tiles
from domain.models import build_region
from domain.settings import DownloadSettings
from download_tiles import TileDownloader, main, setup_logging
from shared.errors import NetworkError
from tiles.fetcher import FetchedTile, TileFetcher

PARIS = {'north': 48.9, 'south': 48.8, 'east': 2.4, 'west': 2.2}

CONFIG = """
[download]
request_delay_s = 0

[regions.tiny]
name = "Tiny Region"
north = 48.9
south = 48.8
east = 2.4
west = 2.2
min_zoom = 10
max_zoom = 11
"""


def fetched(payload: bytes):
    return AsyncMock(
        side_effect=lambda key: FetchedTile(key=key, data=payload, url='u', attempts=1)
    )


@pytest.fixture
def options():
    return DownloadSettings(request_delay_s=0)


class TestListing:
    """Region listing and argument handling."""

    def test_no_argument_lists_regions(self, capsys):
        assert main([]) == 0
        out = capsys.readouterr().out
        assert 'paris' in out
        assert 'Paris, France' in out
        assert 'Zoom: 10-18' in out

    @pytest.mark.parametrize('flag', ['-h', '--help'])
    def test_help_lists_regions(self, flag, capsys):
        assert main([flag]) == 0
        assert 'Available regions' in capsys.readouterr().out

    def test_unknown_region(self, capsys):
        assert main(['atlantis']) == 1
        captured = capsys.readouterr()
        assert 'Unknown region: atlantis' in captured.err
        assert 'Available regions' in captured.out

    def test_missing_config(self, tmp_path, capsys):
        assert main(['paris', '--config', str(tmp_path / 'nope.toml')]) == 1
        assert 'Configuration error' in capsys.readouterr().err

    def test_region_entry_not_a_table(self, tmp_path, capsys):
        cfg = tmp_path / 'settings.toml'
        cfg.write_text('[regions]\nfoo = "bar"\n', encoding='utf-8')
        assert main(['--config', str(cfg)]) == 1
        err = capsys.readouterr().err
        assert 'Configuration error' in err
        assert 'foo' in err

    def test_config_regions_listed(self, tmp_path, capsys):
        cfg = tmp_path / 'settings.toml'
        cfg.write_text(CONFIG, encoding='utf-8')
        assert main(['--config', str(cfg)]) == 0
        assert 'Tiny Region' in capsys.readouterr().out


class TestTileDownloader:
    """Tests for TileDownloader."""

    @pytest.mark.asyncio
    async def test_downloads_region_to_files(self, tmp_path, options, png_bytes):
        downloader = TileDownloader(MagicMock(), tmp_path, options)
        downloader.fetcher.fetch = fetched(png_bytes)
        region = build_region(PARIS, 10, 11, 'Paris')

        stats = await downloader.download_region(region)

        assert stats.downloaded == 5
        assert stats.total_size == 5 * len(png_bytes)
        assert (tmp_path / '10' / '518' / '352.png').read_bytes() == png_bytes

    @pytest.mark.asyncio
    async def test_existing_files_skipped(self, tmp_path, options, png_bytes):
        region = build_region(PARIS, 10, 11, 'Paris')
        first = TileDownloader(MagicMock(), tmp_path, options)
        first.fetcher.fetch = fetched(png_bytes)
        await first.download_region(region)

        second = TileDownloader(MagicMock(), tmp_path, options)
        second.fetcher.fetch = fetched(png_bytes)
        stats = await second.download_region(region)

        assert stats.skipped == 5
        assert stats.downloaded == 0
        second.fetcher.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrency_gate(self, tmp_path, png_bytes):
        options = DownloadSettings(request_delay_s=0, concurrency=3)
        downloader = TileDownloader(MagicMock(), tmp_path, options)
        active = 0
        peak = 0

        async def fetch(key):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.005)
            active -= 1
            return FetchedTile(key=key, data=png_bytes, url='u', attempts=1)

        downloader.fetcher.fetch = fetch
        await downloader.download_region(build_region(PARIS, 10, 12, 'Paris'))
        assert downloader.stats.downloaded == 14
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_failures_reported(self, tmp_path, options, capsys):
        downloader = TileDownloader(MagicMock(), tmp_path, options)
        downloader.fetcher.fetch = AsyncMock(
            side_effect=NetworkError('HTTP 503', url='https://a/x.png', status=503, attempts=3)
        )
        region = build_region(PARIS, 10, 12, 'Paris')

        stats = await downloader.download_region(region)
        downloader.print_stats(region)

        assert stats.failed == 14
        assert len(stats.errors) == 14
        out = capsys.readouterr().out
        assert 'Failed:     14' in out
        assert '... and 4 more errors' in out
        assert not (tmp_path / '10').exists()

    @pytest.mark.asyncio
    async def test_write_metadata(self, tmp_path, options, png_bytes):
        downloader = TileDownloader(MagicMock(), tmp_path, options)
        downloader.fetcher.fetch = fetched(png_bytes)
        region = build_region(PARIS, 10, 10, 'Paris, France')
        await downloader.download_region(region)

        path = downloader.write_metadata(region)

        assert path == tmp_path / 'paris__france.json'
        data = json.loads(path.read_text(encoding='utf-8'))
        assert data['region'] == 'Paris, France'
        assert data['bounds'] == PARIS
        assert (data['minZoom'], data['maxZoom']) == (10, 10)
        assert data['stats']['downloaded'] == 1
        assert data['stats']['totalSizeMB'] == '0.00'
        assert data['tileServers'] == list(options.cli_tile_servers)
        assert data['version'] == '1.0'
        assert 'downloadDate' in data

    def test_fetcher_uses_cli_identity(self, tmp_path, options):
        downloader = TileDownloader(MagicMock(), tmp_path, options)
        assert isinstance(downloader.fetcher, TileFetcher)
        assert downloader.fetcher.servers == tuple(options.cli_tile_servers)
        assert 'Tile Downloader' in downloader.fetcher.headers['User-Agent']


class TestMain:
    """End-to-end runs of main()."""

    def test_setup_logging(self, tmp_path):
        out_dir = tmp_path / 'out'
        with patch('download_tiles.logging.basicConfig') as basic:
            log_file = setup_logging(out_dir, verbose=True)
        assert out_dir.is_dir()
        assert log_file == out_dir / 'download_tiles.log'
        kwargs = basic.call_args.kwargs
        assert kwargs['level'] == logging.DEBUG
        handlers = kwargs['handlers']
        assert any(isinstance(h, logging.FileHandler) for h in handlers)
        for h in handlers:
            h.close()

    def test_download_region(self, tmp_path, png_bytes):
        cfg = tmp_path / 'settings.toml'
        cfg.write_text(CONFIG, encoding='utf-8')
        out_dir = tmp_path / 'tiles'
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=None)

        with patch('download_tiles.make_http_session', return_value=session), patch(
            'download_tiles.setup_logging'
        ), patch.object(TileFetcher, 'fetch', fetched(png_bytes)):
            code = main(['tiny', '--output-dir', str(out_dir), '--config', str(cfg)])

        assert code == 0
        assert (out_dir / '11' / '1036').is_dir()
        sidecar = json.loads((out_dir / 'tiny_region.json').read_text(encoding='utf-8'))
        assert sidecar['stats']['downloaded'] == 5

    def test_interrupt_exits_cleanly(self, tmp_path, capsys):
        with patch('download_tiles.setup_logging'), patch.object(
            download_tiles, 'run_download', AsyncMock(side_effect=asyncio.CancelledError)
        ):
            code = main(['paris', '--output-dir', str(tmp_path)])
        assert code == 0
        assert 'interrupted' in capsys.readouterr().out

    def test_unexpected_error(self, tmp_path):
        with patch('download_tiles.setup_logging'), patch.object(
            download_tiles, 'run_download', AsyncMock(side_effect=RuntimeError('boom'))
        ):
            assert main(['paris', '--output-dir', str(tmp_path)]) == 1
