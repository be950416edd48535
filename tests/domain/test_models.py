"""Tests for domain models."""

import pytest
from pydantic import ValidationError

from domain.models import (
    BoundingBox,
    CacheMetadata,
    RegionSpec,
    TileKey,
    TileRecord,
    build_region,
)
from domain.regions import PREDEFINED_REGIONS, merge_regions, parse_regions_table
from shared.errors import ConfigError

PARIS_BOUNDS = {'north': 48.9, 'south': 48.8, 'east': 2.4, 'west': 2.2}


class TestTileKey:
    """Tests for TileKey."""

    def test_storage_key_and_path(self):
        key = TileKey(15, 100, 200)
        assert key.storage_key == '15_100_200'
        assert key.path == '15/100/200'
        assert str(key) == '15/100/200'

    def test_parse_round_trip(self):
        key = TileKey(12, 2074, 1409)
        assert TileKey.parse(key.storage_key) == key

    def test_parse_malformed(self):
        with pytest.raises(ConfigError):
            TileKey.parse('12-2074-1409')

    def test_negative_rejected(self):
        with pytest.raises(ConfigError):
            TileKey(3, -1, 0)

    def test_outside_grid_rejected(self):
        """x and y must be below 2**zoom."""
        with pytest.raises(ConfigError):
            TileKey(2, 4, 0)
        assert TileKey(2, 3, 3).y == 3

    def test_hashable_and_ordered(self):
        keys = {TileKey(1, 0, 0), TileKey(1, 0, 0), TileKey(0, 0, 0)}
        assert sorted(keys) == [TileKey(0, 0, 0), TileKey(1, 0, 0)]


class TestBoundingBox:
    """Tests for BoundingBox validation."""

    def test_valid(self):
        box = BoundingBox(**PARIS_BOUNDS)
        assert box.north == 48.9

    def test_degenerate_latitude(self):
        with pytest.raises(ValidationError):
            BoundingBox(north=10, south=10, east=1, west=0)

    def test_degenerate_longitude(self):
        with pytest.raises(ValidationError):
            BoundingBox(north=10, south=0, east=0, west=1)

    def test_outside_mercator(self):
        with pytest.raises(ValidationError):
            BoundingBox(north=89, south=0, east=1, west=0)

    def test_longitude_range(self):
        with pytest.raises(ValidationError):
            BoundingBox(north=10, south=0, east=181, west=0)


class TestRegionSpec:
    """Tests for RegionSpec and build_region."""

    def test_build_region(self):
        region = build_region(PARIS_BOUNDS, 10, 12, 'Paris')
        assert region.min_zoom == 10
        assert region.max_zoom == 12
        assert region.bounds.east == 2.4

    def test_camel_case_aliases(self):
        region = RegionSpec.model_validate(
            {'name': 'Paris', 'bounds': PARIS_BOUNDS, 'minZoom': 10, 'maxZoom': 12}
        )
        assert region.max_zoom == 12

    def test_min_above_max(self):
        with pytest.raises(ConfigError):
            build_region(PARIS_BOUNDS, 12, 10, 'Paris')

    def test_zoom_out_of_range(self):
        with pytest.raises(ConfigError):
            build_region(PARIS_BOUNDS, 10, 25, 'Paris')

    def test_bad_bounds_become_config_error(self):
        with pytest.raises(ConfigError):
            build_region({**PARIS_BOUNDS, 'north': 48.0}, 10, 12, 'Paris')

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            build_region(PARIS_BOUNDS, 10, 12, '')


class TestRegions:
    """Tests for the predefined region catalogue."""

    def test_predefined_keys(self):
        assert set(PREDEFINED_REGIONS) == {
            'world',
            'europe',
            'usa',
            'asia',
            'mediterranean',
            'paris',
            'london',
            'newyork',
            'tokyo',
            'rome',
        }

    def test_paris(self):
        paris = PREDEFINED_REGIONS['paris']
        assert paris.name == 'Paris, France'
        assert (paris.min_zoom, paris.max_zoom) == (10, 18)

    def test_parse_regions_table(self):
        regions = parse_regions_table(
            {'lyon': {'name': 'Lyon', 'north': 45.8, 'south': 45.7, 'east': 4.9,
                      'west': 4.8, 'min_zoom': 10, 'max_zoom': 14}}
        )
        assert regions['lyon'].name == 'Lyon'
        assert regions['lyon'].max_zoom == 14

    def test_parse_regions_table_invalid(self):
        with pytest.raises(ConfigError):
            parse_regions_table({'bad': {'north': 1, 'south': 0, 'east': 1, 'west': 0}})

    @pytest.mark.parametrize(
        'table',
        [
            {'foo': 'bar'},
            {'foo': 3},
            {'foo': {'bounds': 'everywhere', 'min_zoom': 1, 'max_zoom': 2}},
        ],
    )
    def test_parse_regions_table_malformed_entry(self, table):
        with pytest.raises(ConfigError, match='foo'):
            parse_regions_table(table)

    def test_merge_overrides(self):
        custom = build_region(PARIS_BOUNDS, 10, 11, 'Paris (small)')
        merged = merge_regions({'paris': custom})
        assert merged['paris'].max_zoom == 11
        assert PREDEFINED_REGIONS['paris'].max_zoom == 18
        assert 'rome' in merged


class TestCacheMetadata:
    """Tests for CacheMetadata and TileRecord."""

    def test_empty(self):
        meta = CacheMetadata.empty(100.0)
        assert meta.total_tiles == 0
        assert meta.total_size == 0
        assert meta.created_at == meta.last_cleanup_at == 100.0
        assert meta.schema_version == 1

    def test_from_legacy(self):
        meta = CacheMetadata.from_legacy(
            {
                'totalTiles': 3,
                'totalSize': 1200,
                'lastCleanup': 1_700_000_000_000,
                'created': 1_600_000_000_000,
                'regions': ['Paris'],
            }
        )
        assert meta.total_tiles == 3
        assert meta.total_size == 1200
        assert meta.last_cleanup_at == 1_700_000_000.0
        assert meta.created_at == 1_600_000_000.0
        assert meta.regions == ['Paris']

    def test_record_key(self):
        record = TileRecord(
            zoom=3, x=1, y=2, data='', size_bytes=0, created_at=0, last_accessed_at=0
        )
        assert record.key == TileKey(3, 1, 2)
