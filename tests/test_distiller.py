"""Tests for profile distillation."""

import json
import math
from unittest.mock import Mock

import pytest
import numpy as np
from py_topo.distill.distiller import (
    SAMPLE_CACHE_NAME,
    BBox,
    DistillOptions,
    distill,
    load_sample_cache,
    normalize_bbox,
    parse_bbox,
    profile_from_samples,
    sample_cache_key,
    sample_grid_size,
    sample_points,
    write_profile,
)
from py_topo.exceptions import BBoxError, SampleGridError, TileFetchError

OLYMPIC = (-124.2, 47.5, -123.9, 47.8)


class TestBBox:
    """Test bounding box validation."""

    def test_swaps_inverted_axes(self):
        """Test min/max are reordered."""
        bbox = normalize_bbox((10.5, 2.0, 10.0, 1.0))
        assert bbox == BBox(10.0, 1.0, 10.5, 2.0)

    @pytest.mark.parametrize(
        "values",
        [
            (0.0, 0.0, 0.0005, 1.0),
            (0.0, 0.0, 1.0, 0.0002),
            (-181.0, 0.0, 1.0, 1.0),
            (0.0, -91.0, 1.0, 1.0),
            (float("nan"), 0.0, 1.0, 1.0),
            (1.0, 2.0, 3.0),
        ],
    )
    def test_rejects_invalid(self, values):
        """Test degenerate, out-of-range and malformed boxes."""
        with pytest.raises(BBoxError):
            normalize_bbox(values)

    def test_parse(self):
        """Test the comma separated form."""
        assert parse_bbox(" -124.2, 47.5,-123.9 ,47.8 ") == BBox(*OLYMPIC)
        with pytest.raises(BBoxError):
            parse_bbox("-124.2,47.5,-123.9")
        with pytest.raises(BBoxError):
            parse_bbox("west,47.5,-123.9,47.8")

    def test_bbox_error_is_value_error(self):
        """Test callers catching ValueError still see bbox errors."""
        with pytest.raises(ValueError):
            normalize_bbox((0.0, 0.0, 0.0, 0.0))


class TestSampling:
    """Test sample grid sizing and placement."""

    def test_grid_size_capped(self):
        """Test large boxes hit the per-axis cap."""
        assert sample_grid_size(BBox(0.0, 0.0, 1.0, 1.0), 100, 34) == (34, 34)

    def test_grid_size_minimum(self):
        """Test small boxes still get the minimum sample count."""
        assert sample_grid_size(BBox(0.0, 0.0, 0.01, 0.01), 100, 34) == (14, 14)

    def test_grid_size_between(self):
        """Test the sample count follows extent over cell size."""
        width, height = sample_grid_size(BBox(0.0, 0.0, 0.02, 0.02), 100, 34)
        assert width == height == int(math.floor(0.02 * 111320.0 / 100 + 0.5))

    def test_sample_points_cover_box(self):
        """Test samples run row-major from the south-west corner."""
        bbox = BBox(*OLYMPIC)
        lats, lons = sample_points(bbox, 4, 3)
        assert len(lats) == len(lons) == 12
        assert lats[0] == pytest.approx(47.5)
        assert lats[-1] == pytest.approx(47.8)
        assert lons[0] == pytest.approx(-124.2)
        assert lons[3] == pytest.approx(-123.9)
        assert lats[:4] == [lats[0]] * 4

    def test_cache_key_depends_on_grid(self):
        """Test the cache key covers the box and grid size."""
        bbox = BBox(*OLYMPIC)
        assert sample_cache_key(bbox, 34, 34) != sample_cache_key(bbox, 34, 33)
        assert sample_cache_key(bbox, 34, 34) == sample_cache_key(BBox(*OLYMPIC), 34, 34)

    def test_non_finite_cache_is_ignored(self, tmp_path):
        """Test a cache holding NaN or Infinity is treated as absent."""
        path = tmp_path / SAMPLE_CACHE_NAME
        path.write_text("[1.0, NaN, 3.0]", encoding="utf-8")
        assert load_sample_cache(path, 3) is None
        path.write_text("[1.0, Infinity, 3.0]", encoding="utf-8")
        assert load_sample_cache(path, 3) is None
        path.write_text("[1.0, 2.0, 3.0]", encoding="utf-8")
        assert load_sample_cache(path, 3).tolist() == [1.0, 2.0, 3.0]


class TestProfileFromSamples:
    """Test reduction of samples to profile statistics."""

    def test_flat_terrain(self):
        """Test a flat 400 m plateau."""
        elevation = np.full((14, 14), 400.0)
        profile = profile_from_samples(elevation, BBox(*OLYMPIC), "plateau", "Plateau", 100, "fixture")
        assert profile.elev_p10 == profile.elev_p50 == profile.elev_p90 == 10.0
        assert profile.slope_p50 == 0.0
        assert profile.ruggedness == 0.08
        assert profile.notes.startswith("Derived from 14x14 elevation samples in bbox [-124.2000, 47.5000")
        assert profile.source == "fixture"

    def test_sloped_terrain(self):
        """Test rising terrain gives ordered percentiles and positive slope."""
        yy, xx = np.mgrid[0:20, 0:20]
        elevation = xx * 30.0 + yy * 10.0 + np.sin(xx) * 5.0
        profile = profile_from_samples(elevation, BBox(*OLYMPIC), "ridge", "Ridge", 100, "fixture")
        assert profile.elev_p10 < profile.elev_p50 < profile.elev_p90
        assert 0 < profile.slope_p50 <= profile.slope_p90
        assert 0.01 <= profile.river_density <= 0.22
        assert 0.003 <= profile.lake_coverage <= 0.14


class TestDistill:
    """Test the distillation pipeline."""

    @pytest.fixture
    def options(self, tmp_path):
        """Options for a small box cached under tmp_path."""
        return DistillOptions(id="olympic_peninsula", bbox=OLYMPIC, cache_root=tmp_path)

    @staticmethod
    def _fetcher(width, height):
        fetcher = Mock()
        yy, xx = np.mgrid[0:height, 0:width]
        fetcher.fetch_elevations.return_value = (xx * 25.0 + yy * 15.0).ravel()
        return fetcher

    def test_invalid_bbox_before_io(self, tmp_path):
        """Test a bad box fails without touching the fetcher."""
        fetcher = Mock()
        with pytest.raises(BBoxError):
            distill(DistillOptions(id="x", bbox=(0, 0, 0, 0), cache_root=tmp_path), fetcher=fetcher)
        fetcher.fetch_elevations.assert_not_called()
        assert list(tmp_path.iterdir()) == []

    def test_missing_id(self, tmp_path):
        """Test an id is required."""
        with pytest.raises(ValueError):
            distill(DistillOptions(id="  ", bbox=OLYMPIC, cache_root=tmp_path), fetcher=Mock())

    def test_fetch_then_cache(self, options, tmp_path):
        """Test samples are cached and a second run skips fetching."""
        width, height = sample_grid_size(BBox(*OLYMPIC), 100, 34)
        fetcher = self._fetcher(width, height)
        first = distill(options, fetcher=fetcher)
        fetcher.fetch_elevations.assert_called_once()
        cache_file = tmp_path / sample_cache_key(BBox(*OLYMPIC), width, height) / SAMPLE_CACHE_NAME
        assert len(json.loads(cache_file.read_text())) == width * height

        second_fetcher = Mock()
        second = distill(options, fetcher=second_fetcher)
        second_fetcher.fetch_elevations.assert_not_called()
        assert second == first

    def test_defaults_filled(self, options):
        """Test name, cell size and source defaults."""
        width, height = sample_grid_size(BBox(*OLYMPIC), 100, 34)
        profile = distill(options, fetcher=self._fetcher(width, height))
        assert profile.id == "olympic_peninsula"
        assert profile.name == "olympic_peninsula"
        assert profile.cell_meters == 100
        assert "Terrarium" in profile.source

    def test_fetch_error_propagates(self, options, tmp_path):
        """Test tile failures abort without writing a sample cache."""
        fetcher = Mock()
        fetcher.fetch_elevations.side_effect = TileFetchError("status 503", tile=(9, 1, 1))
        with pytest.raises(TileFetchError):
            distill(options, fetcher=fetcher)
        assert list(tmp_path.rglob(SAMPLE_CACHE_NAME)) == []

    def test_sample_size_mismatch(self, options):
        """Test a short sample vector is rejected."""
        fetcher = Mock()
        fetcher.fetch_elevations.return_value = np.zeros(5)
        with pytest.raises(SampleGridError):
            distill(options, fetcher=fetcher)

    def test_write_profile(self, options, tmp_path):
        """Test profiles are written as indented JSON into new directories."""
        width, height = sample_grid_size(BBox(*OLYMPIC), 100, 34)
        profile = distill(options, fetcher=self._fetcher(width, height))
        path = write_profile(tmp_path / "assets" / "profiles" / "olympic_peninsula.json", profile)
        text = path.read_text()
        assert text.endswith("\n")
        assert json.loads(text)["id"] == "olympic_peninsula"
        assert '\n  "name"' in text
