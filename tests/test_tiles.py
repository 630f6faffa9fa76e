"""Tests for Terrarium tile math, decoding and fetching."""

import io
import threading
import time
from unittest.mock import Mock, patch

import pytest
import numpy as np
import requests
from PIL import Image
from py_topo.distill.tiles import (
    TILE_SIZE,
    TileFetcher,
    TileKey,
    choose_zoom,
    decode_terrarium,
    ground_resolution,
    locate,
    lonlat_to_tile,
    wrap_tile_x,
)
from py_topo.exceptions import DistillCancelled, TileFetchError


def terrarium_png(elevation):
    """Encode meters as a Terrarium RGB PNG."""
    value = np.asarray(elevation, dtype=np.float64) + 32768.0
    whole = np.floor(value)
    rgb = np.stack(
        [np.floor(whole / 256.0), np.mod(whole, 256.0), np.floor((value - whole) * 256.0)],
        axis=-1,
    ).astype(np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(rgb).save(buffer, format="PNG")
    return buffer.getvalue()


def ok_response(blob):
    return Mock(status_code=200, content=blob)


class TestTileMath:
    """Test Web-Mercator tile addressing."""

    def test_origin(self):
        """Test lon/lat 0,0 sits at the centre tile corner."""
        x, y = lonlat_to_tile(0.0, 0.0, 1)
        assert x == pytest.approx(1.0)
        assert y == pytest.approx(1.0)

    def test_latitude_is_clamped(self):
        """Test poles project onto the first and last tile rows."""
        assert locate(0.0, 90.0, 3)[0].y == 0
        assert locate(0.0, -90.0, 3)[0].y == 7

    def test_longitude_wraps(self):
        """Test tile x wraps modulo the tile count."""
        assert wrap_tile_x(-1, 4) == 3
        assert wrap_tile_x(4, 4) == 0
        key, px, _ = locate(180.0, 0.0, 2)
        assert key.x == 0
        assert px == 0

    def test_pixels_within_tile(self):
        """Test pixel offsets stay inside the tile."""
        key, px, py = locate(-122.33, 47.61, 9)
        assert isinstance(key, TileKey)
        assert 0 <= px < TILE_SIZE
        assert 0 <= py < TILE_SIZE
        assert str(key) == f"9/{key.x}/{key.y}"

    def test_ground_resolution(self):
        """Test the equatorial resolution and its halving per zoom."""
        assert ground_resolution(0.0, 0) == pytest.approx(156543.03392)
        assert ground_resolution(0.0, 1) == pytest.approx(156543.03392 / 2)
        assert ground_resolution(60.0, 0) == pytest.approx(156543.03392 / 2)

    def test_choose_zoom(self):
        """Test zoom candidates run from 9 down to 5."""
        assert choose_zoom([], 100) == 8
        assert choose_zoom([0.0, 1.0], 100) == 9
        assert choose_zoom([59.0, 61.0], 40) == 9
        assert choose_zoom([0.0], 40) == 5


class TestDecode:
    """Test Terrarium decoding."""

    def test_decode_values(self):
        """Test RGB channels decode to meters including fractions."""
        elevation = np.array([[0.0, -12.5], [1234.0, 8848.0]])
        assert np.allclose(decode_terrarium(terrarium_png(elevation)), elevation)

    def test_decode_garbage(self):
        """Test non-image payloads raise ValueError."""
        with pytest.raises(ValueError):
            decode_terrarium(b"<html>rate limited</html>")


class TestTileFetcher:
    """Test cached, retrying tile access."""

    @pytest.fixture
    def tile_blob(self):
        """A uniform 123 m tile."""
        return terrarium_png(np.full((8, 8), 123.0))

    @pytest.fixture
    def fetcher(self, tmp_path):
        """Fetcher with no delays between attempts."""
        return TileFetcher(tmp_path, url_template="http://tiles.test/{z}/{x}/{y}.png",
                           attempts=3, backoff=0.0, sleep=lambda _: None)

    def test_download_is_cached(self, tmp_path, fetcher, tile_blob):
        """Test a fetched tile is written to disk and reused without network."""
        key = TileKey(7, 20, 44)
        with patch("py_topo.distill.tiles.requests.get", return_value=ok_response(tile_blob)) as get:
            tile = fetcher.get_tile(key)
            fetcher.get_tile(key)
        assert get.call_count == 1
        assert get.call_args[0][0] == "http://tiles.test/7/20/44.png"
        assert np.all(tile == 123.0)
        assert fetcher.tile_path(key).read_bytes() == tile_blob

        reused = TileFetcher(tmp_path, sleep=lambda _: None)
        with patch("py_topo.distill.tiles.requests.get") as get:
            assert np.all(reused.get_tile(key) == 123.0)
        get.assert_not_called()
        assert reused.network_fetches == 0

    def test_retry_after_transport_error(self, fetcher, tile_blob):
        """Test a transient failure is retried."""
        side_effect = [requests.ConnectionError("reset"), ok_response(tile_blob)]
        with patch("py_topo.distill.tiles.requests.get", side_effect=side_effect) as get:
            tile = fetcher.get_tile(TileKey(5, 1, 1))
        assert get.call_count == 2
        assert fetcher.network_fetches == 2
        assert tile.shape == (8, 8)

    def test_bad_status_exhausts_attempts(self, fetcher):
        """Test persistent bad status is a terminal error."""
        with patch("py_topo.distill.tiles.requests.get", return_value=Mock(status_code=503, content=b"")) as get:
            with pytest.raises(TileFetchError) as excinfo:
                fetcher.get_tile(TileKey(5, 2, 3))
        assert get.call_count == 3
        assert excinfo.value.tile == (5, 2, 3)
        assert not isinstance(excinfo.value, DistillCancelled)

    def test_no_pause_after_final_attempt(self, tmp_path):
        """Test backoff only runs between attempts, not after the last one."""
        sleep = Mock()
        fetcher = TileFetcher(tmp_path, url_template="http://tiles.test/{z}/{x}/{y}.png",
                              attempts=3, backoff=0.5, sleep=sleep)
        with patch("py_topo.distill.tiles.requests.get", return_value=Mock(status_code=503, content=b"")) as get:
            with pytest.raises(TileFetchError):
                fetcher.get_tile(TileKey(5, 2, 3))
        assert get.call_count == 3
        assert sleep.call_count == 2
        assert sleep.call_args_list[0][0][0] == pytest.approx(0.5 * 1.4)
        assert sleep.call_args_list[1][0][0] == pytest.approx(1.0 * 1.4)

    def test_undecodable_payload_fails(self, fetcher):
        """Test a payload that never decodes is not cached."""
        with patch("py_topo.distill.tiles.requests.get", return_value=ok_response(b"not a png")):
            with pytest.raises(TileFetchError):
                fetcher.get_tile(TileKey(5, 0, 0))
        assert not fetcher.tile_path(TileKey(5, 0, 0)).exists()

    def test_corrupt_cache_is_refetched(self, fetcher, tile_blob):
        """Test an unreadable cached tile falls through to the network."""
        key = TileKey(6, 3, 3)
        path = fetcher.tile_path(key)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"truncated")
        with patch("py_topo.distill.tiles.requests.get", return_value=ok_response(tile_blob)) as get:
            fetcher.get_tile(key)
        assert get.call_count == 1
        assert path.read_bytes() == tile_blob

    def test_cancel_event_stops_requests(self, tmp_path):
        """Test a set cancel event aborts before any request."""
        cancel = threading.Event()
        cancel.set()
        fetcher = TileFetcher(tmp_path, cancel=cancel)
        with patch("py_topo.distill.tiles.requests.get") as get:
            with pytest.raises(DistillCancelled):
                fetcher.get_tile(TileKey(5, 1, 1))
        get.assert_not_called()

    def test_deadline_stops_retries(self, tmp_path):
        """Test a passed deadline stops further attempts."""
        fetcher = TileFetcher(tmp_path, attempts=4, backoff=0.0, deadline=time.monotonic() - 1.0)
        with patch("py_topo.distill.tiles.requests.get") as get:
            with pytest.raises(DistillCancelled):
                fetcher.get_tile(TileKey(5, 1, 1))
        get.assert_not_called()

    def test_fetch_elevations(self, fetcher, tile_blob):
        """Test every query point reads its tile pixel."""
        lats = [47.60, 47.61, 47.62]
        lons = [-122.34, -122.33, -122.32]
        with patch("py_topo.distill.tiles.requests.get", return_value=ok_response(tile_blob)):
            values = fetcher.fetch_elevations(lats, lons, 100)
        assert values.shape == (3,)
        assert np.all(values == 123.0)

    def test_fetch_elevations_length_mismatch(self, fetcher):
        """Test mismatched coordinate lists are rejected."""
        with pytest.raises(ValueError):
            fetcher.fetch_elevations([1.0], [], 100)
