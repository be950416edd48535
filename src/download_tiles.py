"""Standalone downloader of map tiles for offline use.

Downloads a named region into ``<output>/<z>/<x>/<y>.png`` and writes a JSON
sidecar describing the run. Run without arguments to list the regions.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from domain.regions import merge_regions
from domain.settings import AppSettings, load_settings
from infrastructure.http.client import make_http_session
from shared.constants import (
    CLI_ERRORS_SHOWN,
    CLI_LARGE_DOWNLOAD_TILES,
    CLI_METADATA_VERSION,
    CLI_PROGRESS_EVERY,
)
from shared.errors import ConfigError, NetworkError, StoreError
from shared.formatting import format_bytes, slugify
from shared.progress import ConsoleProgress
from tiles.coverage import count_region_tiles, iter_region_tiles, region_ranges
from tiles.downloader import TileFailure
from tiles.fetcher import TileFetcher
from tiles.writer import FileTileWriter

if TYPE_CHECKING:
    import aiohttp

    from domain.models import RegionSpec, TileKey
    from domain.settings import DownloadSettings

logger = logging.getLogger(__name__)

LOG_FILE_NAME = 'download_tiles.log'


def setup_logging(output_dir: Path, *, verbose: bool = False) -> Path:
    """Log to stdout and to ``download_tiles.log`` in the output directory."""
    output_dir.mkdir(parents=True, exist_ok=True)
    log_file = output_dir / LOG_FILE_NAME
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
    )
    return log_file


def list_regions(regions: dict[str, RegionSpec], out=None) -> None:
    """Print every region with its estimated tile count and zoom range."""
    out = out or sys.stdout
    print('\nAvailable regions:', file=out)
    print('=' * 60, file=out)
    for key, region in regions.items():
        count = count_region_tiles(region.bounds, region.min_zoom, region.max_zoom)
        print(f'{key:<15} | {region.name:<20} | {count:>10,} tiles', file=out)
        print(f'{"":<15} | {region.description}', file=out)
        print(f'{"":<15} | Zoom: {region.min_zoom}-{region.max_zoom}', file=out)
        print('', file=out)
    print('Usage: download-tiles [region] [--output-dir DIR] [--config FILE]', file=out)
    print('Example: download-tiles paris', file=out)


@dataclass
class DownloadStats:
    downloaded: int = 0
    failed: int = 0
    skipped: int = 0
    total_size: int = 0
    started_at: float = field(default_factory=time.monotonic)
    errors: list[TileFailure] = field(default_factory=list)

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def processed(self) -> int:
        return self.downloaded + self.failed + self.skipped


class TileDownloader:
    """Region downloader writing tiles to the filesystem.

    Features:
    - At most ``concurrency`` requests in flight (semaphore)
    - Launches spaced by ``request_delay / concurrency`` seconds
    - Existing files are skipped, so an interrupted run can be resumed
    - Mirror rotation and retries delegated to TileFetcher
    """

    def __init__(
        self,
        client: aiohttp.ClientSession,
        output_dir: str | Path,
        options: DownloadSettings,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.options = options
        self.writer = FileTileWriter(self.output_dir)
        self.fetcher = TileFetcher(
            client,
            servers=options.cli_tile_servers,
            subdomains=options.subdomains,
            max_retries=options.max_retries,
            retry_delay=options.request_delay_s,
            timeout=options.timeout_s,
            user_agent=options.cli_user_agent,
        )
        self.stats = DownloadStats()
        self._progress: ConsoleProgress | None = None

    async def _download_one(self, key: TileKey, gate: asyncio.Semaphore) -> None:
        try:
            fetched = await self.fetcher.fetch(key)
            await self.writer.write(key, fetched.data)
        except NetworkError as e:
            self.stats.failed += 1
            self.stats.errors.append(TileFailure(key=key, url=e.url, error=str(e)))
            logger.error('Failed to download %s: %s', key, e)
        except StoreError as e:
            self.stats.failed += 1
            self.stats.errors.append(TileFailure(key=key, url=None, error=str(e)))
            logger.error('Failed to save %s: %s', key, e)
        else:
            self.stats.downloaded += 1
            self.stats.total_size += len(fetched.data)
        finally:
            gate.release()
            await self._advance()

    async def _advance(self) -> None:
        if self._progress is not None:
            await self._progress.step(1, suffix=format_bytes(self.stats.total_size))
        processed = self.stats.processed
        if processed % CLI_PROGRESS_EVERY == 0:
            logger.debug(
                'Progress: %d tiles processed, %s downloaded',
                processed,
                format_bytes(self.stats.total_size),
            )

    async def download_region(self, region: RegionSpec) -> DownloadStats:
        bounds = region.bounds
        total = count_region_tiles(bounds, region.min_zoom, region.max_zoom)
        logger.info('Starting download: %s', region.name)
        logger.info(
            'Bounds: N%s S%s E%s W%s', bounds.north, bounds.south, bounds.east, bounds.west
        )
        logger.info('Zoom levels: %d - %d', region.min_zoom, region.max_zoom)
        logger.info('Estimated tiles: %s', f'{total:,}')
        if total > CLI_LARGE_DOWNLOAD_TILES:
            logger.warning(
                'Large download detected (%s tiles); this may take hours and use '
                'significant bandwidth',
                f'{total:,}',
            )
        for rng in region_ranges(bounds, region.min_zoom, region.max_zoom):
            logger.info('Zoom %d: %d x %d tiles', rng.zoom, rng.width, rng.height)

        concurrency = self.options.concurrency
        launch_delay = self.options.request_delay_s / concurrency
        gate = asyncio.Semaphore(concurrency)
        tasks: set[asyncio.Task[None]] = set()
        self.stats = DownloadStats()
        self._progress = ConsoleProgress(total, label=region.name)
        try:
            for key in iter_region_tiles(bounds, region.min_zoom, region.max_zoom):
                if self.writer.exists(key):
                    self.stats.skipped += 1
                    await self._advance()
                    continue
                await gate.acquire()
                task = asyncio.create_task(self._download_one(key, gate))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
                if launch_delay > 0:
                    await asyncio.sleep(launch_delay)
            if tasks:
                await asyncio.gather(*tasks)
        finally:
            for task in list(tasks):
                task.cancel()
            self._progress.close()
            self._progress = None
        return self.stats

    def print_stats(self, region: RegionSpec, out=None) -> None:
        out = out or sys.stdout
        stats = self.stats
        elapsed = stats.elapsed_s
        rate = stats.downloaded / elapsed if elapsed > 0 else 0.0
        print(f'\nDownload complete: {region.name}', file=out)
        print(f'   Downloaded: {stats.downloaded:,}', file=out)
        print(f'   Skipped:    {stats.skipped:,}', file=out)
        print(f'   Failed:     {stats.failed:,}', file=out)
        print(f'   Total size: {format_bytes(stats.total_size)}', file=out)
        print(f'   Duration:   {elapsed / 60:.1f} minutes', file=out)
        print(f'   Rate:       {rate:.1f} tiles/second', file=out)
        if stats.errors:
            print('\nErrors encountered:', file=out)
            for err in stats.errors[:CLI_ERRORS_SHOWN]:
                print(f'   {err.key}: {err.error}', file=out)
            hidden = len(stats.errors) - CLI_ERRORS_SHOWN
            if hidden > 0:
                print(f'   ... and {hidden} more errors', file=out)

    def write_metadata(self, region: RegionSpec) -> Path:
        """Write ``<output>/<slug>.json`` describing the run."""
        stats = self.stats
        metadata = {
            'region': region.name,
            'bounds': region.bounds.model_dump(),
            'minZoom': region.min_zoom,
            'maxZoom': region.max_zoom,
            'downloadDate': datetime.now(timezone.utc).isoformat(),
            'stats': {
                'downloaded': stats.downloaded,
                'skipped': stats.skipped,
                'failed': stats.failed,
                'totalSizeMB': f'{stats.total_size / 1024 / 1024:.2f}',
                'durationMinutes': f'{stats.elapsed_s / 60:.1f}',
            },
            'tileServers': list(self.options.cli_tile_servers),
            'version': CLI_METADATA_VERSION,
        }
        path = self.output_dir / f'{slugify(region.name)}.json'
        path.write_text(json.dumps(metadata, indent=2), encoding='utf-8')
        logger.info('Metadata saved: %s', path)
        return path


async def run_download(region: RegionSpec, output_dir: Path, settings: AppSettings) -> int:
    opts = settings.download
    async with make_http_session(opts.cli_user_agent, opts.timeout_s) as client:
        downloader = TileDownloader(client, output_dir, opts)
        await downloader.download_region(region)
        downloader.print_stats(region)
        downloader.write_metadata(region)
    print('\nDownload completed.')
    print(f'Tiles saved to: {output_dir}')
    return 0


async def _run_interruptible(region: RegionSpec, output_dir: Path, settings: AppSettings) -> int:
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, main_task.cancel)
    try:
        return await run_download(region, output_dir, settings)
    except asyncio.CancelledError:
        print('\nDownload interrupted by user')
        return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='download-tiles',
        description='Download OpenStreetMap tiles of a region for offline use',
        add_help=False,
    )
    parser.add_argument('region', nargs='?', help='Region key (omit to list regions)')
    parser.add_argument('-h', '--help', action='store_true', help='List regions and exit')
    parser.add_argument('--output-dir', type=Path, default=None, help='Target directory')
    parser.add_argument('--config', type=Path, default=None, help='TOML settings file')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point of the ``download-tiles`` command."""
    args = _build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f'Configuration error: {e}', file=sys.stderr)
        return 1
    regions = merge_regions(settings.regions)

    if not args.region or args.help:
        list_regions(regions)
        return 0

    region = regions.get(args.region)
    if region is None:
        print(f'Unknown region: {args.region}', file=sys.stderr)
        list_regions(regions)
        return 1

    output_dir = args.output_dir or Path(settings.download.output_dir)
    try:
        setup_logging(output_dir, verbose=args.verbose)
        return asyncio.run(_run_interruptible(region, output_dir, settings))
    except KeyboardInterrupt:
        print('\nDownload interrupted by user')
        return 0
    except Exception as e:
        logger.error('Download failed: %s', e, exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
