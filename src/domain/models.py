from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from shared.constants import (
    MAX_ZOOM,
    MERCATOR_MAX_LAT_DEG,
    METADATA_SCHEMA_VERSION,
    MIN_ZOOM,
    WORLD_LNG_HALF_SPAN_DEG,
)
from shared.errors import ConfigError


@dataclass(frozen=True, order=True)
class TileKey:
    """Address of one tile in the slippy-map grid."""

    zoom: int
    x: int
    y: int

    def __post_init__(self) -> None:
        if self.zoom < 0 or self.x < 0 or self.y < 0:
            msg = f'Tile coordinates must be non-negative: {self.zoom}/{self.x}/{self.y}'
            raise ConfigError(msg)
        limit = 1 << self.zoom
        if self.x >= limit or self.y >= limit:
            msg = f'Tile {self.zoom}/{self.x}/{self.y} is outside the {limit}x{limit} grid'
            raise ConfigError(msg)

    @property
    def storage_key(self) -> str:
        return f'{self.zoom}_{self.x}_{self.y}'

    @property
    def path(self) -> str:
        return f'{self.zoom}/{self.x}/{self.y}'

    @classmethod
    def parse(cls, storage_key: str) -> TileKey:
        """Inverse of ``storage_key``."""
        try:
            z, x, y = (int(part) for part in storage_key.split('_'))
        except ValueError:
            msg = f'Malformed tile key: {storage_key!r}'
            raise ConfigError(msg) from None
        return cls(z, x, y)

    def __str__(self) -> str:
        return self.path


class BoundingBox(BaseModel):
    """Geographic rectangle in WGS84 degrees."""

    model_config = ConfigDict(frozen=True)

    north: float
    south: float
    east: float
    west: float

    @model_validator(mode='after')
    def validate_box(self) -> BoundingBox:
        for name in ('north', 'south'):
            v = getattr(self, name)
            if not (-MERCATOR_MAX_LAT_DEG <= v <= MERCATOR_MAX_LAT_DEG):
                msg = f'{name}={v} is outside the Web Mercator latitude range'
                raise ValueError(msg)
        for name in ('east', 'west'):
            v = getattr(self, name)
            if not (-WORLD_LNG_HALF_SPAN_DEG <= v <= WORLD_LNG_HALF_SPAN_DEG):
                msg = f'{name}={v} is outside [-180, 180]'
                raise ValueError(msg)
        if self.north <= self.south:
            msg = f'Degenerate box: north ({self.north}) must be greater than south ({self.south})'
            raise ValueError(msg)
        if self.east <= self.west:
            msg = f'Degenerate box: east ({self.east}) must be greater than west ({self.west})'
            raise ValueError(msg)
        return self


class RegionSpec(BaseModel):
    """Region to pre-download: bounds, inclusive zoom range and a label."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1)
    bounds: BoundingBox
    min_zoom: int = Field(alias='minZoom')
    max_zoom: int = Field(alias='maxZoom')
    description: str = ''

    @model_validator(mode='after')
    def validate_zooms(self) -> RegionSpec:
        if not (MIN_ZOOM <= self.min_zoom <= MAX_ZOOM):
            msg = f'min_zoom={self.min_zoom} is outside [{MIN_ZOOM}, {MAX_ZOOM}]'
            raise ValueError(msg)
        if not (MIN_ZOOM <= self.max_zoom <= MAX_ZOOM):
            msg = f'max_zoom={self.max_zoom} is outside [{MIN_ZOOM}, {MAX_ZOOM}]'
            raise ValueError(msg)
        if self.min_zoom > self.max_zoom:
            msg = f'min_zoom ({self.min_zoom}) is greater than max_zoom ({self.max_zoom})'
            raise ValueError(msg)
        return self


def build_region(
    bounds: BoundingBox | dict,
    min_zoom: int,
    max_zoom: int,
    name: str,
    description: str = '',
) -> RegionSpec:
    """Validate region parameters, raising ConfigError instead of ValidationError."""
    try:
        return RegionSpec.model_validate(
            {
                'name': name,
                'bounds': bounds,
                'min_zoom': min_zoom,
                'max_zoom': max_zoom,
                'description': description,
            }
        )
    except ValidationError as e:
        msg = f'Invalid region {name!r}: {e.errors()[0]["msg"]}'
        raise ConfigError(msg) from e


class TileRecord(BaseModel):
    """One cached tile as persisted in the tile namespace."""

    zoom: int
    x: int
    y: int
    data: str
    mime: str = 'image/png'
    size_bytes: int = Field(ge=0)
    created_at: float
    last_accessed_at: float

    @property
    def key(self) -> TileKey:
        return TileKey(self.zoom, self.x, self.y)


class CacheMetadata(BaseModel):
    """Aggregate accounting of a cache instance (singleton record)."""

    schema_version: int = METADATA_SCHEMA_VERSION
    total_tiles: int = Field(default=0, ge=0)
    total_size: int = Field(default=0, ge=0)
    last_cleanup_at: float = 0.0
    created_at: float = 0.0
    regions: list[str] = Field(default_factory=list)

    @classmethod
    def empty(cls, now: float) -> CacheMetadata:
        return cls(last_cleanup_at=now, created_at=now)

    @classmethod
    def from_legacy(cls, raw: dict) -> CacheMetadata:
        """Migrate the unversioned camelCase layout (millisecond timestamps)."""
        return cls(
            total_tiles=max(0, int(raw.get('totalTiles', 0))),
            total_size=max(0, int(raw.get('totalSize', 0))),
            last_cleanup_at=float(raw.get('lastCleanup', 0)) / 1000.0,
            created_at=float(raw.get('created', 0)) / 1000.0,
            regions=[str(r) for r in raw.get('regions', [])],
        )
