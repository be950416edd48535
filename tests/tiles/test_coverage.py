"""Tests for region tile enumeration."""

from domain.models import BoundingBox, TileKey
from tiles.coverage import iter_region_tiles, region_ranges

PARIS = BoundingBox(north=48.9, south=48.8, east=2.4, west=2.2)


class TestIterRegionTiles:
    """Tests for iter_region_tiles."""

    def test_order_is_zoom_then_x_then_y(self):
        """Keys come out sorted by (zoom, x, y)."""
        keys = list(iter_region_tiles(PARIS, 10, 12))
        assert keys == sorted(keys)
        assert keys[0] == TileKey(10, 518, 352)

    def test_single_zoom(self):
        """A single zoom level yields that level only."""
        keys = list(iter_region_tiles(PARIS, 11, 11))
        assert {k.zoom for k in keys} == {11}
        assert len(keys) == 4

    def test_region_ranges_per_zoom(self):
        """One inclusive rectangle per zoom, lowest first."""
        ranges = region_ranges(PARIS, 10, 12)
        assert [r.zoom for r in ranges] == [10, 11, 12]
        assert [r.width * r.height for r in ranges] == [1, 4, 9]
