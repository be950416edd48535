"""Domain layer - tile addresses, regions, cache metadata and settings."""
from domain.models import (
    BoundingBox,
    CacheMetadata,
    RegionSpec,
    TileKey,
    TileRecord,
    build_region,
)
from domain.regions import PREDEFINED_REGIONS, merge_regions
from domain.settings import (
    AppSettings,
    CacheSettings,
    DownloadSettings,
    TileServerOptions,
    load_settings,
    save_settings,
)

__all__ = [
    'PREDEFINED_REGIONS',
    'AppSettings',
    'BoundingBox',
    'CacheMetadata',
    'CacheSettings',
    'DownloadSettings',
    'RegionSpec',
    'TileKey',
    'TileRecord',
    'TileServerOptions',
    'build_region',
    'load_settings',
    'merge_regions',
    'save_settings',
]
