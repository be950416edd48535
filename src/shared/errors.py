"""Error taxonomy of the tile cache.

Per-tile failures (network, codec, store) are caught at the pipeline and
facade boundaries and turned into statistics; ConfigError is raised to the
caller before any network activity.
"""

from __future__ import annotations


class TileCacheError(Exception):
    """Base class for all tile cache errors."""


class NetworkError(TileCacheError):
    """Tile fetch failed: timeout, non-200 status, DNS or connection error."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status: int | None = None,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        self.attempts = attempts


class CodecError(TileCacheError):
    """Tile payload could not be encoded or decoded."""


class StoreError(TileCacheError):
    """Persistent key-value store is unavailable or rejected a write."""


class ConfigError(TileCacheError, ValueError):
    """Invalid region, zoom range or settings."""
