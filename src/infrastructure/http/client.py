from __future__ import annotations

import logging
import os
import ssl
from pathlib import Path

import aiohttp
import certifi

from shared.constants import (
    APP_NAME,
    CONNECTIVITY_PROBE_TIMEOUT,
    HTTP_CONNECT_TIMEOUT,
    HTTP_CONNECTION_LIMIT,
    HTTP_OK,
    HTTP_TIMEOUT_DEFAULT,
    TILE_CACHE_DIR,
    TILE_CACHE_DIR_ENV,
    USER_AGENT,
)

logger = logging.getLogger(__name__)


def resolve_cache_dir(configured: str | Path | None = None) -> Path:
    """Directory holding the tile cache databases.

    Order: explicit setting, ``TILECACHE_DIR``, ``%LOCALAPPDATA%``, home.
    """
    if configured:
        return Path(configured).expanduser().resolve()

    env_dir = os.getenv(TILE_CACHE_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    raw_dir = Path(TILE_CACHE_DIR)
    if raw_dir.is_absolute():
        return raw_dir

    local = os.getenv('LOCALAPPDATA')
    if local:
        return (Path(local) / APP_NAME / raw_dir).resolve()
    # Fallback: user's home directory
    return (Path.home() / f'.{APP_NAME.lower()}' / 'tiles').resolve()


def make_http_session(
    user_agent: str = USER_AGENT,
    timeout: float = HTTP_TIMEOUT_DEFAULT,
) -> aiohttp.ClientSession:
    # SSL context with certifi's CA bundle
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context, limit_per_host=HTTP_CONNECTION_LIMIT)
    client_timeout = aiohttp.ClientTimeout(total=timeout, connect=HTTP_CONNECT_TIMEOUT)
    return aiohttp.ClientSession(
        connector=connector,
        timeout=client_timeout,
        headers={'User-Agent': user_agent},
    )


async def probe_tile_server(
    client: aiohttp.ClientSession,
    url: str,
    timeout: float = CONNECTIVITY_PROBE_TIMEOUT,
) -> bool:
    """True when ``url`` answers 200 within ``timeout`` seconds."""
    client_timeout = aiohttp.ClientTimeout(total=timeout, connect=timeout)
    try:
        async with client.get(url, timeout=client_timeout) as resp:
            return resp.status == HTTP_OK
    except (TimeoutError, aiohttp.ClientError, OSError) as e:
        logger.debug('Connectivity probe %s failed: %s', url, e)
        return False
