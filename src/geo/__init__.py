"""Geo module - slippy-map tile projection."""

from .slippy import (
    TileRange,
    count_tiles,
    lat_to_tile_y,
    lon_to_tile_x,
    lonlat_to_tile,
    tile_bounds_for_zoom,
    tile_x_to_lon,
    tile_y_to_lat,
)

__all__ = [
    'TileRange',
    'count_tiles',
    'lat_to_tile_y',
    'lon_to_tile_x',
    'lonlat_to_tile',
    'tile_bounds_for_zoom',
    'tile_x_to_lon',
    'tile_y_to_lat',
]
