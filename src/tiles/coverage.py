from __future__ import annotations

from typing import TYPE_CHECKING

from domain.models import TileKey
from geo.slippy import TileRange, count_tiles, tile_bounds_for_zoom

if TYPE_CHECKING:
    from collections.abc import Iterator

    from geo.slippy import BoundsLike


def region_ranges(box: BoundsLike, min_zoom: int, max_zoom: int) -> list[TileRange]:
    """Per-zoom tile rectangles of a region, lowest zoom first."""
    return [tile_bounds_for_zoom(box, z) for z in range(min_zoom, max_zoom + 1)]


def iter_region_tiles(box: BoundsLike, min_zoom: int, max_zoom: int) -> Iterator[TileKey]:
    """
    Enumerate every tile of a region exactly once.

    Order: zoom ascending, then x ascending, then y ascending. The number of
    yielded keys always equals ``count_region_tiles`` for the same arguments.
    """
    for rng in region_ranges(box, min_zoom, max_zoom):
        for x in range(rng.min_x, rng.max_x + 1):
            for y in range(rng.min_y, rng.max_y + 1):
                yield TileKey(rng.zoom, x, y)


def count_region_tiles(box: BoundsLike, min_zoom: int, max_zoom: int) -> int:
    return count_tiles(box, min_zoom, max_zoom)
