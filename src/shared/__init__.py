"""Shared utilities and helpers."""
from shared.errors import (
    CodecError,
    ConfigError,
    NetworkError,
    StoreError,
    TileCacheError,
)
from shared.formatting import format_bytes
from shared.progress import ConsoleProgress, SingleLineRenderer

__all__ = [
    'CodecError',
    'ConfigError',
    'ConsoleProgress',
    'NetworkError',
    'SingleLineRenderer',
    'StoreError',
    'TileCacheError',
    'format_bytes',
]
