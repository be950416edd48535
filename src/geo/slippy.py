"""Slippy-map (Web Mercator XYZ) tile projection.

Pure functions shared by the region pre-download pipeline and the standalone
downloader, so tile counts and enumeration always agree.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

from shared.constants import (
    MERCATOR_MAX_LAT_DEG,
    WORLD_LNG_HALF_SPAN_DEG,
    WORLD_LNG_SPAN_DEG,
)


class BoundsLike(Protocol):
    north: float
    south: float
    east: float
    west: float


@dataclass(frozen=True)
class TileRange:
    """Inclusive tile index rectangle at one zoom level."""

    zoom: int
    min_x: int
    max_x: int
    min_y: int
    max_y: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def count(self) -> int:
        return self.width * self.height


def grid_size(zoom: int) -> int:
    """Number of tiles along one axis at the given zoom."""
    return 1 << zoom


def lon_to_tile_x(lon: float, zoom: int) -> float:
    """Fractional tile X of a longitude."""
    return (lon + WORLD_LNG_HALF_SPAN_DEG) / WORLD_LNG_SPAN_DEG * grid_size(zoom)


def lat_to_tile_y(lat: float, zoom: int) -> float:
    """Fractional tile Y of a latitude (Y grows southward)."""
    lat = min(max(lat, -MERCATOR_MAX_LAT_DEG), MERCATOR_MAX_LAT_DEG)
    lat_rad = math.radians(lat)
    merc = math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad))
    return (1.0 - merc / math.pi) / 2.0 * grid_size(zoom)


def tile_x_to_lon(x: float, zoom: int) -> float:
    """Longitude of the west edge of tile column ``x``."""
    return x / grid_size(zoom) * WORLD_LNG_SPAN_DEG - WORLD_LNG_HALF_SPAN_DEG


def tile_y_to_lat(y: float, zoom: int) -> float:
    """Latitude of the north edge of tile row ``y``."""
    n = math.pi - 2.0 * math.pi * y / grid_size(zoom)
    return math.degrees(math.atan(math.sinh(n)))


def _clamp_index(value: float, zoom: int) -> int:
    return min(max(math.floor(value), 0), grid_size(zoom) - 1)


def lonlat_to_tile(lon: float, lat: float, zoom: int) -> tuple[int, int]:
    """Integer tile (x, y) containing the point, clamped to the grid."""
    return (
        _clamp_index(lon_to_tile_x(lon, zoom), zoom),
        _clamp_index(lat_to_tile_y(lat, zoom), zoom),
    )


def tile_bounds_for_zoom(box: BoundsLike, zoom: int) -> TileRange:
    """Tile rectangle covering ``box`` at ``zoom``.

    West gives min_x, east max_x, north min_y and south max_y. Indices are
    clamped to the grid, so ``east == 180`` stays on the last column.
    """
    min_x, min_y = lonlat_to_tile(box.west, box.north, zoom)
    max_x, max_y = lonlat_to_tile(box.east, box.south, zoom)
    return TileRange(zoom=zoom, min_x=min_x, max_x=max_x, min_y=min_y, max_y=max_y)


def count_tiles(box: BoundsLike, min_zoom: int, max_zoom: int) -> int:
    """Total number of tiles covering ``box`` over the inclusive zoom range."""
    return sum(
        tile_bounds_for_zoom(box, z).count for z in range(min_zoom, max_zoom + 1)
    )
