"""Region pre-download pipeline.

Enumerates the tiles of a region, skips the ones already cached and drains
the rest in small rate-limited batches through TileFetcher into the
TileCacheStore. Per-tile failures are collected, never raised.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from domain.models import TileKey, build_region
from shared.constants import (
    DOWNLOAD_BATCH_DELAY,
    DOWNLOAD_BATCH_SIZE,
    DOWNLOAD_LOG_EVERY,
)
from shared.errors import NetworkError, TileCacheError
from shared.formatting import format_bytes
from tiles.coverage import count_region_tiles, iter_region_tiles

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from domain.models import BoundingBox, RegionSpec
    from tiles.cache import TileCacheStore
    from tiles.connectivity import Connectivity
    from tiles.fetcher import TileFetcher

logger = logging.getLogger(__name__)


@dataclass
class DownloadJob:
    key: TileKey
    region: str
    attempts: int = 0


@dataclass
class TileFailure:
    key: TileKey
    url: str | None
    error: str


@dataclass
class DownloadProgress:
    """Pollable state of the current (or last) pre-download."""

    region: str = ''
    total: int = 0
    queued: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0
    downloaded: int = 0
    failed: int = 0
    skipped: int = 0
    bytes_downloaded: int = 0
    running: bool = False
    paused: bool = False
    cancelled: bool = False

    @property
    def completed(self) -> int:
        return self.downloaded + self.failed + self.skipped

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 100.0
        return round(self.completed / self.total * 100, 1)


@dataclass
class DownloadSummary:
    region: str
    total: int
    downloaded: int
    failed: int
    skipped: int
    bytes_downloaded: int
    elapsed_s: float
    cancelled: bool = False
    failures: list[TileFailure] = field(default_factory=list)

    @property
    def tiles_per_second(self) -> float:
        if self.elapsed_s <= 0:
            return 0.0
        return round(self.downloaded / self.elapsed_s, 2)


class RegionDownloader:
    """Bulk pre-fetch of a region into the tile cache.

    Features:
    - At most ``batch_size`` fetches in flight, ``batch_delay`` between batches
    - Mirror fallback and retries delegated to TileFetcher
    - Already cached tiles are skipped, so a re-run issues no requests
    - Pauses while the injected Connectivity reports offline
    - ``cancel()`` stops dequeuing and cancels the running batch

    Usage:
        downloader = RegionDownloader(store, fetcher)
        summary = await downloader.predownload_region(bounds, 10, 12, 'Paris')
    """

    def __init__(
        self,
        store: TileCacheStore,
        fetcher: TileFetcher,
        *,
        connectivity: Connectivity | None = None,
        batch_size: int = DOWNLOAD_BATCH_SIZE,
        batch_delay: float = DOWNLOAD_BATCH_DELAY,
        on_progress: Callable[[DownloadProgress], Awaitable[None] | None] | None = None,
    ) -> None:
        if batch_size < 1:
            msg = f'batch_size must be >= 1, got {batch_size}'
            raise ValueError(msg)
        self.store = store
        self.fetcher = fetcher
        self.connectivity = connectivity
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.on_progress = on_progress
        self._progress = DownloadProgress()
        self._cancel_event = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def progress(self) -> DownloadProgress:
        """Snapshot of the progress state."""
        return dataclasses.replace(self._progress)

    @property
    def running(self) -> bool:
        return self._progress.running

    def cancel(self) -> None:
        """Stop the running pre-download; no-op when idle."""
        if not self._progress.running:
            return
        logger.info('Pre-download of %s cancelled', self._progress.region)
        self._cancel_event.set()
        for task in list(self._tasks):
            task.cancel()

    async def predownload_region(
        self,
        bounds: BoundingBox | dict,
        min_zoom: int,
        max_zoom: int,
        name: str,
    ) -> DownloadSummary:
        """Validate the parameters and pre-download the region.

        Raises:
            ConfigError: invalid bounds or zoom range; nothing is fetched.
        """
        region = build_region(bounds, min_zoom, max_zoom, name)
        return await self.predownload(region)

    async def predownload(self, region: RegionSpec) -> DownloadSummary:
        if self._progress.running:
            msg = f'Pre-download of {self._progress.region!r} is already running'
            raise TileCacheError(msg)

        self._cancel_event = asyncio.Event()
        started = time.monotonic()
        progress = DownloadProgress(
            region=region.name,
            total=count_region_tiles(region.bounds, region.min_zoom, region.max_zoom),
            running=True,
        )
        self._progress = progress
        failures: list[TileFailure] = []
        logger.info(
            'Pre-download %s: %d tiles, zoom %d-%d',
            region.name,
            progress.total,
            region.min_zoom,
            region.max_zoom,
        )

        try:
            queue: deque[DownloadJob] = deque()
            for key in iter_region_tiles(region.bounds, region.min_zoom, region.max_zoom):
                if self._cancel_event.is_set():
                    break
                if await self.store.has(key):
                    progress.skipped += 1
                else:
                    queue.append(DownloadJob(key=key, region=region.name))
            progress.queued = len(queue)
            await self.store.record_region(region.name)
            await self._notify()

            while queue and not self._cancel_event.is_set():
                if not await self._wait_online():
                    break
                batch = [queue.popleft() for _ in range(min(self.batch_size, len(queue)))]
                progress.queued = len(queue)
                await self._run_batch(batch, failures)
                if queue and self.batch_delay > 0:
                    await self._sleep(self.batch_delay)

            if self._cancel_event.is_set():
                progress.cancelled = True
                queue.clear()
                progress.queued = 0
        finally:
            progress.running = False
            progress.in_flight = 0
            progress.paused = False

        elapsed = time.monotonic() - started
        summary = DownloadSummary(
            region=region.name,
            total=progress.total,
            downloaded=progress.downloaded,
            failed=progress.failed,
            skipped=progress.skipped,
            bytes_downloaded=progress.bytes_downloaded,
            elapsed_s=round(elapsed, 3),
            cancelled=progress.cancelled,
            failures=failures,
        )
        logger.info(
            'Pre-download %s finished: %d downloaded, %d failed, %d skipped, %s in %.1fs%s',
            region.name,
            summary.downloaded,
            summary.failed,
            summary.skipped,
            format_bytes(summary.bytes_downloaded),
            elapsed,
            ' (cancelled)' if summary.cancelled else '',
        )
        await self._notify()
        return summary

    async def _run_batch(self, batch: list[DownloadJob], failures: list[TileFailure]) -> None:
        tasks = [asyncio.create_task(self._run_job(job, failures)) for job in batch]
        self._tasks.update(tasks)
        try:
            await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._tasks.difference_update(tasks)

    async def _run_job(self, job: DownloadJob, failures: list[TileFailure]) -> None:
        progress = self._progress
        progress.in_flight += 1
        progress.peak_in_flight = max(progress.peak_in_flight, progress.in_flight)
        try:
            fetched = await self.fetcher.fetch(job.key)
            job.attempts = fetched.attempts
            # A tile already downloaded is stored even if the run is cancelled
            await asyncio.shield(self.store.put(job.key, fetched.data))
        except NetworkError as e:
            job.attempts = e.attempts
            progress.failed += 1
            failures.append(TileFailure(key=job.key, url=e.url, error=str(e)))
            logger.debug('Tile %s failed: %s', job.key, e)
        except TileCacheError as e:
            progress.failed += 1
            failures.append(TileFailure(key=job.key, url=None, error=str(e)))
            logger.warning('Tile %s could not be cached: %s', job.key, e)
        else:
            progress.downloaded += 1
            progress.bytes_downloaded += len(fetched.data)
        finally:
            progress.in_flight -= 1

        done = progress.downloaded + progress.failed
        if done % DOWNLOAD_LOG_EVERY == 0:
            logger.info(
                'Pre-download %s: %d/%d (%.1f%%)',
                progress.region,
                progress.completed,
                progress.total,
                progress.percent,
            )
        await self._notify()

    async def _wait_online(self) -> bool:
        """Block while offline; False when cancelled meanwhile."""
        conn = self.connectivity
        if conn is None or conn.online:
            return True
        self._progress.paused = True
        logger.info('Pre-download %s paused: offline', self._progress.region)
        await self._notify()
        online = asyncio.create_task(conn.wait_online())
        cancelled = asyncio.create_task(self._cancel_event.wait())
        try:
            await asyncio.wait({online, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (online, cancelled):
                task.cancel()
            self._progress.paused = False
        if self._cancel_event.is_set():
            return False
        logger.info('Pre-download %s resumed', self._progress.region)
        return True

    async def _sleep(self, delay: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)

    async def _notify(self) -> None:
        cb = self.on_progress
        if cb is None:
            return
        with contextlib.suppress(Exception):
            result = cb(self.progress)
            if asyncio.iscoroutine(result):
                await result
