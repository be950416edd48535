"""Filesystem sink of the standalone downloader.

Tiles are laid out as ``<root>/<z>/<x>/<y>.png``, the directory structure
static tile hosts and Leaflet-style ``{z}/{x}/{y}`` templates expect.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from shared.errors import StoreError

if TYPE_CHECKING:
    from domain.models import TileKey

logger = logging.getLogger(__name__)


class FileTileWriter:
    """Atomic writer of tile files.

    Features:
    - Each file is written to a temp file in the target dir, then renamed
    - A partially written tile never appears under its final name
    - ``exists()`` lets reruns skip tiles already on disk

    Usage:
        writer = FileTileWriter(Path('public/tiles'))
        if not writer.exists(key):
            await writer.write(key, png_bytes)
    """

    def __init__(self, root: str | Path, suffix: str = '.png') -> None:
        self.root = Path(root)
        self.suffix = suffix

    def path_for(self, key: TileKey) -> Path:
        return self.root / str(key.zoom) / str(key.x) / f'{key.y}{self.suffix}'

    def exists(self, key: TileKey) -> bool:
        return self.path_for(key).is_file()

    def _write_sync(self, key: TileKey, data: bytes) -> Path:
        target = self.path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f'.{key.y}.', suffix='.tmp')
        try:
            with os.fdopen(fd, 'wb') as fh:
                fh.write(data)
            Path(tmp_name).replace(target)
        except BaseException:
            with contextlib.suppress(OSError):
                Path(tmp_name).unlink()
            raise
        return target

    async def write(self, key: TileKey, data: bytes) -> Path:
        """Write one tile; raises StoreError when the filesystem refuses."""
        try:
            return await asyncio.to_thread(self._write_sync, key, data)
        except OSError as e:
            msg = f'Cannot write tile {key} under {self.root}: {e}'
            raise StoreError(msg) from e
