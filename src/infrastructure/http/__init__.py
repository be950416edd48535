"""HTTP client infrastructure."""
from infrastructure.http.client import (
    make_http_session,
    probe_tile_server,
    resolve_cache_dir,
)

__all__ = [
    'make_http_session',
    'probe_tile_server',
    'resolve_cache_dir',
]
