from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING

import aiohttp

from shared.constants import (
    HTTP_ACCEPT,
    HTTP_RETRIES_DEFAULT,
    HTTP_RETRY_DELAY,
    HTTP_TIMEOUT_DEFAULT,
    REMOTE_TILE_TEMPLATE,
    TILE_SERVERS,
    TILE_SUBDOMAINS,
    USER_AGENT,
)
from shared.errors import NetworkError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from domain.models import TileKey

logger = logging.getLogger(__name__)


def format_tile_url(
    template: str,
    zoom: int,
    x: int,
    y: int,
    subdomains: Sequence[str] = TILE_SUBDOMAINS,
) -> str:
    """Fill a ``{s}/{z}/{x}/{y}`` template; subdomain chosen by ``(x + y) % n``."""
    subdomain = subdomains[(x + y) % len(subdomains)] if subdomains else ''
    return (
        template.replace('{z}', str(zoom))
        .replace('{x}', str(x))
        .replace('{y}', str(y))
        .replace('{s}', subdomain)
    )


def build_tile_url(
    template: str,
    key: TileKey,
    subdomains: Sequence[str] = TILE_SUBDOMAINS,
) -> str:
    return format_tile_url(template, key.zoom, key.x, key.y, subdomains)


def remote_tile_url(
    zoom: int, x: int, y: int, subdomains: Sequence[str] = TILE_SUBDOMAINS
) -> str:
    """Direct OSM URL for renderers bypassing the cache."""
    return format_tile_url(REMOTE_TILE_TEMPLATE, zoom, x, y, subdomains)


@dataclass
class FetchedTile:
    key: TileKey
    data: bytes
    url: str
    attempts: int


class TileFetcher:
    """Downloads raw tiles, rotating through mirror servers on failure.

    Attempt N of a tile goes to server ``(start + N) % len(servers)``; after
    ``max_retries`` failed attempts NetworkError is raised.
    """

    def __init__(
        self,
        client: aiohttp.ClientSession,
        *,
        servers: Sequence[str] = TILE_SERVERS,
        subdomains: Sequence[str] = TILE_SUBDOMAINS,
        max_retries: int = HTTP_RETRIES_DEFAULT,
        retry_delay: float = HTTP_RETRY_DELAY,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        user_agent: str = USER_AGENT,
    ) -> None:
        if not servers:
            msg = 'At least one tile server is required'
            raise ValueError(msg)
        self.client = client
        self.servers = tuple(servers)
        self.subdomains = tuple(subdomains)
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.headers = {'User-Agent': user_agent, 'Accept': HTTP_ACCEPT}
        self._stats_requests = 0
        self._stats_failures = 0
        self._stats_bytes = 0

    @property
    def stats(self) -> dict:
        return {
            'requests': self._stats_requests,
            'failures': self._stats_failures,
            'bytes': self._stats_bytes,
        }

    def tile_url(self, key: TileKey, server_index: int = 0) -> str:
        template = self.servers[server_index % len(self.servers)]
        return build_tile_url(template, key, self.subdomains)

    async def fetch_once(self, key: TileKey, server_index: int = 0) -> bytes:
        """Single GET against one server.

        Raises:
            NetworkError: non-200 status, timeout or connection failure.
        """
        url = self.tile_url(key, server_index)
        self._stats_requests += 1
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            resp = await self.client.get(url, headers=self.headers, timeout=timeout)
            try:
                sc = resp.status
                if sc == HTTPStatus.OK:
                    data = await resp.read()
                    self._stats_bytes += len(data)
                    return data
                msg = f'HTTP {sc} for tile {key} url={url}'
                raise NetworkError(msg, url=url, status=sc)
            finally:
                try:
                    release = getattr(resp, 'release', None)
                    if callable(release):
                        release()
                except Exception as e:
                    logger.debug('Failed to release HTTP response: %s', e, exc_info=True)
        except NetworkError:
            self._stats_failures += 1
            raise
        except (aiohttp.ClientError, TimeoutError, OSError) as e:
            self._stats_failures += 1
            msg = f'Request for tile {key} failed url={url}: {e!r}'
            raise NetworkError(msg, url=url) from e

    async def fetch(self, key: TileKey, start_server: int = 0) -> FetchedTile:
        """Download a tile, retrying against the next mirror on failure."""
        last_exc: NetworkError | None = None
        for attempt in range(self.max_retries):
            server_index = (start_server + attempt) % len(self.servers)
            try:
                data = await self.fetch_once(key, server_index)
            except NetworkError as e:
                last_exc = e
                logger.debug('Attempt %d for tile %s failed: %s', attempt + 1, key, e)
                if attempt + 1 < self.max_retries and self.retry_delay > 0:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                continue
            return FetchedTile(
                key=key,
                data=data,
                url=self.tile_url(key, server_index),
                attempts=attempt + 1,
            )
        msg = f'Tile {key} failed after {self.max_retries} attempts: {last_exc}'
        raise NetworkError(
            msg,
            url=last_exc.url if last_exc else None,
            status=last_exc.status if last_exc else None,
            attempts=self.max_retries,
        )
