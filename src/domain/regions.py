"""Named regions known to the downloader."""

from __future__ import annotations

import logging

from domain.models import RegionSpec, build_region
from shared.errors import ConfigError

logger = logging.getLogger(__name__)


def _region(name, north, south, east, west, min_zoom, max_zoom, description):
    return build_region(
        {'north': north, 'south': south, 'east': east, 'west': west},
        min_zoom,
        max_zoom,
        name,
        description,
    )


PREDEFINED_REGIONS: dict[str, RegionSpec] = {
    'world': _region('World Overview', 85, -85, 180, -180, 0, 6, 'Basic world map for overview'),
    'europe': _region('Europe', 71, 35, 40, -10, 4, 12, 'Complete European region'),
    'usa': _region('United States', 49, 25, -67, -125, 4, 12, 'Continental United States'),
    'asia': _region('Asia', 55, -10, 150, 60, 4, 10, 'Asian continent'),
    'mediterranean': _region('Mediterranean', 46, 30, 36, -6, 6, 14, 'Mediterranean region'),
    # City-specific regions
    'paris': _region('Paris, France', 48.9, 48.8, 2.4, 2.2, 10, 18, 'Paris metropolitan area'),
    'london': _region('London, UK', 51.7, 51.3, 0.3, -0.5, 10, 18, 'Greater London area'),
    'newyork': _region('New York, USA', 40.9, 40.5, -73.7, -74.3, 10, 18, 'New York metropolitan area'),
    'tokyo': _region('Tokyo, Japan', 35.8, 35.5, 139.9, 139.3, 10, 18, 'Tokyo metropolitan area'),
    'rome': _region('Rome, Italy', 41.97, 41.83, 12.56, 12.43, 10, 18, 'Rome city center'),
}


def merge_regions(extra: dict[str, RegionSpec] | None) -> dict[str, RegionSpec]:
    """Predefined regions overlaid with user-declared ones (same key wins)."""
    regions = dict(PREDEFINED_REGIONS)
    for key, region in (extra or {}).items():
        if key in regions:
            logger.info('Region %s overridden by configuration', key)
        regions[key] = region
    return regions


def parse_regions_table(table: dict) -> dict[str, RegionSpec]:
    """Build regions from a ``[regions.<key>]`` TOML table.

    Each entry needs ``name``, ``north``/``south``/``east``/``west`` (or a
    ``bounds`` sub-table), ``min_zoom`` and ``max_zoom``.
    """
    out: dict[str, RegionSpec] = {}
    if not isinstance(table, dict):
        msg = '[regions] must be a table of region tables'
        raise ConfigError(msg)
    for key, raw in table.items():
        if not isinstance(raw, dict):
            msg = f'Region {key!r} must be a table, got {type(raw).__name__}'
            raise ConfigError(msg)
        raw = dict(raw)
        bounds = raw.get('bounds') or {k: raw.get(k) for k in ('north', 'south', 'east', 'west')}
        if not isinstance(bounds, dict):
            msg = f'Region {key!r}: bounds must be a table'
            raise ConfigError(msg)
        out[str(key)] = build_region(
            dict(bounds),
            raw.get('min_zoom', raw.get('minZoom')),
            raw.get('max_zoom', raw.get('maxZoom')),
            str(raw.get('name', key)),
            str(raw.get('description', '')),
        )
    return out
