"""
Tests for region geometry and patch sizing in objcls/processing/coordinates.py.
"""

import pytest
from shapely.geometry import Polygon, box

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from objcls.errors import InvalidArgument, MissingCalibration
from objcls.processing.coordinates import (
    Region,
    centroid_to_pixel,
    compute_feature_size,
    extract_patch_bounds,
    patch_origin,
    round_half_up,
)


class TestRoundHalfUp:
    """Tests for round_half_up and centroid_to_pixel."""

    def test_halves_round_up(self):
        assert round_half_up(10.5) == 11
        assert round_half_up(11.5) == 12

    def test_below_half_rounds_down(self):
        assert round_half_up(10.49) == 10

    def test_negative_values(self):
        # floor(-2.5 + 0.5) = -2
        assert round_half_up(-2.5) == -2
        assert round_half_up(-2.6) == -3

    def test_centroid_to_pixel(self):
        assert centroid_to_pixel(99.5, 20.2) == (100, 20)


class TestRegion:
    """Tests for the Region rectangle."""

    def test_rejects_empty_size(self):
        with pytest.raises(InvalidArgument):
            Region(0, 0, 0, 10)
        with pytest.raises(InvalidArgument):
            Region(0, 0, 10, -1)

    def test_rejects_bad_downsample(self):
        with pytest.raises(InvalidArgument):
            Region(0, 0, 10, 10, downsample=0)

    def test_contains_is_half_open(self):
        region = Region(100, 100, 50, 50)

        assert region.contains(100, 100)
        assert region.contains(149, 149)
        assert not region.contains(150, 120)
        assert not region.contains(120, 150)
        assert not region.contains(99, 120)

    def test_contains_rectangle(self):
        region = Region(0, 0, 100, 100)

        assert region.contains(10, 10, 90, 90)
        assert not region.contains(10, 10, 91, 90)

    def test_from_bounds_covers_fractional_bounds(self):
        region = Region.from_bounds(10.2, 20.7, 30.1, 40.0)

        assert (region.x, region.y, region.max_x, region.max_y) == (10, 20, 31, 40)

    def test_from_geometry(self):
        poly = Polygon([(5, 5), (25, 5), (25, 15), (5, 15)])
        region = Region.from_geometry(poly)

        assert (region.x, region.y, region.width, region.height) == (5, 5, 20, 10)

    def test_from_empty_geometry(self):
        with pytest.raises(InvalidArgument):
            Region.from_geometry(Polygon())

    def test_tag(self):
        assert Region(12, 34, 5, 5).tag == "12_34"

    def test_tiles_cover_region_without_overlap(self):
        region = Region(0, 0, 250, 130)
        tiles = list(region.tiles(100))

        assert len(tiles) == 6
        assert sum(t.width * t.height for t in tiles) == 250 * 130
        # Row-major, edge tiles clipped
        assert (tiles[0].x, tiles[0].y) == (0, 0)
        assert (tiles[2].x, tiles[2].width) == (200, 50)
        assert (tiles[3].y, tiles[3].height) == (100, 30)

    def test_tiles_keep_downsample(self):
        tiles = list(Region(0, 0, 20, 20, downsample=2.0).tiles(10))

        assert all(t.downsample == 2.0 for t in tiles)

    def test_tiles_rejects_bad_size(self):
        with pytest.raises(InvalidArgument):
            list(Region(0, 0, 10, 10).tiles(0))

    def test_each_point_in_exactly_one_tile(self):
        region = Region(0, 0, 300, 300)
        tiles = list(region.tiles(128))

        for px, py in [(0, 0), (127, 127), (128, 0), (255, 256), (299, 299)]:
            assert sum(t.contains(px, py) for t in tiles) == 1


class TestComputeFeatureSize:
    """Tests for compute_feature_size."""

    def test_upscales_for_finer_image(self):
        assert compute_feature_size(64, 0.5, 0.25) == 128

    def test_downscales_for_coarser_image(self):
        assert compute_feature_size(64, 0.25, 0.5) == 32

    def test_rounds_half_up(self):
        # 15 * 0.5 / 1.0 = 7.5
        assert compute_feature_size(15, 0.5, 1.0) == 8

    def test_never_below_one(self):
        assert compute_feature_size(1, 0.1, 100.0) == 1

    @pytest.mark.parametrize("pixel_size", [None, 0, -0.5, float("nan")])
    def test_invalid_image_pixel_size(self, pixel_size):
        with pytest.raises(MissingCalibration):
            compute_feature_size(64, 0.5, pixel_size)


class TestPatchOrigin:
    """Tests for patch_origin and extract_patch_bounds."""

    def test_even_size_centred(self):
        assert patch_origin(100.0, 100.0, 128) == (36, 36)

    def test_fractional_centroid(self):
        # 10.5 - 2 = 8.5 -> 9
        assert patch_origin(10.5, 10.4, 4) == (9, 8)

    def test_bounds_have_patch_size(self):
        x1, y1, x2, y2 = extract_patch_bounds(5.0, 5.0, 32)

        assert (x2 - x1, y2 - y1) == (32, 32)
        # Not clipped to the image
        assert x1 < 0 and y1 < 0

    def test_geometry_bounds_roundtrip(self):
        region = Region.from_geometry(box(0, 0, 64, 64))
        x1, y1, x2, y2 = extract_patch_bounds(32, 32, 64)

        assert region.contains(x1, y1, x2 - x1, y2 - y1)
