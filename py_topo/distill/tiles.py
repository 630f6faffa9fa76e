"""
Terrarium elevation tiles: Web-Mercator tile math, decoding and a disk cache.

Terrarium PNG tiles encode elevation in their RGB channels as
``(R * 256 + G + B / 256) - 32768`` meters. Tiles are addressed by slippy-map
(zoom, x, y); every tile fetched from the network is decoded, written under
the cache root and only then used, so later runs over the same area never
touch the network.
"""

import io
import math
import threading
import time
from pathlib import Path
from typing import Callable, Dict, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import requests
import structlog
from PIL import Image, UnidentifiedImageError

from ..config import get_settings
from ..exceptions import DistillCancelled, TileFetchError

logger = structlog.get_logger()

MERCATOR_MAX_LAT = 85.0511
EQUATOR_RESOLUTION = 156543.03392  # meters/pixel at zoom 0 for 256px tiles
ZOOM_CANDIDATES = (9, 8, 7, 6, 5)
TARGET_RESOLUTION_FACTOR = 6.0
TARGET_RESOLUTION_RANGE = (260.0, 2600.0)
TILE_SIZE = 256


class TileKey(NamedTuple):
    z: int
    x: int
    y: int

    def __str__(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


def ground_resolution(lat: float, zoom: int) -> float:
    """Meters per pixel of a 256px tile at a latitude."""
    return EQUATOR_RESOLUTION * math.cos(math.radians(lat)) / (2 ** zoom)


def choose_zoom(lats: Sequence[float], cell_meters: int) -> int:
    """
    Pick the tile zoom for a sample band.

    Candidates are tried from 9 down to 5; the first whose ground
    resolution at the band's mid-latitude is within the target
    (cell size x 6, clamped to [260, 2600] m) wins, else 5.
    """
    if len(lats) == 0:
        return 8
    mid_lat = (min(lats) + max(lats)) * 0.5
    target = min(TARGET_RESOLUTION_RANGE[1], max(TARGET_RESOLUTION_RANGE[0], cell_meters * TARGET_RESOLUTION_FACTOR))
    for zoom in ZOOM_CANDIDATES:
        if ground_resolution(mid_lat, zoom) <= target:
            return zoom
    return ZOOM_CANDIDATES[-1]


def lonlat_to_tile(lon: float, lat: float, zoom: int) -> Tuple[float, float]:
    """Fractional slippy-map tile coordinates; latitude is clamped to the Mercator range."""
    lat = min(MERCATOR_MAX_LAT, max(-MERCATOR_MAX_LAT, lat))
    n = 2.0 ** zoom
    x = (lon + 180.0) / 360.0 * n
    lat_rad = math.radians(lat)
    y = (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n
    return x, y


def wrap_tile_x(x: int, n: int) -> int:
    if n <= 0:
        return x
    return x % n


def locate(lon: float, lat: float, zoom: int) -> Tuple[TileKey, int, int]:
    """
    Tile and pixel holding a coordinate.

    Returns:
        (TileKey, px, py) with pixels clamped to the tile
    """
    fx, fy = lonlat_to_tile(lon, lat, zoom)
    n = 1 << zoom
    raw_x = int(math.floor(fx))
    tile_y = min(n - 1, max(0, int(math.floor(fy))))
    px = min(TILE_SIZE - 1, max(0, int(math.floor((fx - raw_x) * TILE_SIZE))))
    py = min(TILE_SIZE - 1, max(0, int(math.floor((fy - tile_y) * TILE_SIZE))))
    return TileKey(zoom, wrap_tile_x(raw_x, n), tile_y), px, py


def decode_terrarium(blob: bytes) -> np.ndarray:
    """
    Decode a Terrarium PNG into elevations in meters.

    Raises:
        ValueError: The payload is not a readable image
    """
    try:
        with Image.open(io.BytesIO(blob)) as img:
            rgb = np.asarray(img.convert("RGB"), dtype=np.float64)
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"undecodable terrarium tile: {exc}") from exc
    return rgb[..., 0] * 256.0 + rgb[..., 1] + rgb[..., 2] / 256.0 - 32768.0


def _pixel(tile: np.ndarray, px: int, py: int) -> float:
    height, width = tile.shape
    return float(tile[min(py, height - 1), min(px, width - 1)])


class TileFetcher:
    """
    Fetches Terrarium tiles through a memory cache, a disk cache and the network.

    Network fetches retry with increasing backoff. Before each request the
    fetcher checks its cancel event and deadline and aborts with
    DistillCancelled instead of issuing further requests.
    """

    def __init__(
        self,
        cache_dir: Union[str, Path],
        url_template: Optional[str] = None,
        attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        backoff: Optional[float] = None,
        user_agent: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            cache_dir: Directory holding terrarium/<z>/<x>/<y>.png
            url_template: Endpoint with {z}/{x}/{y} placeholders
            attempts: Network attempts per tile
            timeout: Per-request timeout in seconds
            backoff: Base delay between attempts in seconds
            user_agent: User-Agent header
            cancel: Event that aborts fetching once set
            deadline: time.monotonic() value after which fetching aborts
            sleep: Delay function used when no cancel event is given
        """
        settings = get_settings()
        self.cache_dir = Path(cache_dir)
        self.url_template = url_template or settings.tile_url_template
        self.attempts = max(1, attempts if attempts is not None else settings.fetch_attempts)
        self.timeout = timeout if timeout is not None else settings.fetch_timeout_seconds
        self.backoff = backoff if backoff is not None else settings.fetch_backoff_seconds
        self.user_agent = user_agent or settings.user_agent
        self.cancel = cancel
        self.deadline = deadline
        self._sleep = sleep
        self._tiles: Dict[TileKey, np.ndarray] = {}
        self.network_fetches = 0

    def tile_path(self, key: TileKey) -> Path:
        return self.cache_dir / "terrarium" / str(key.z) / str(key.x) / f"{key.y}.png"

    def _cancelled(self) -> bool:
        if self.cancel is not None and self.cancel.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def _wait(self, delay: float) -> None:
        if delay <= 0:
            return
        if self.cancel is not None:
            self.cancel.wait(delay)
        else:
            self._sleep(delay)

    def _read_cached(self, key: TileKey) -> Optional[np.ndarray]:
        path = self.tile_path(key)
        try:
            blob = path.read_bytes()
        except FileNotFoundError:
            return None
        try:
            return decode_terrarium(blob)
        except ValueError as exc:
            logger.warning("Cached tile undecodable, refetching", tile=str(key), error=str(exc))
            return None

    def _download(self, key: TileKey) -> np.ndarray:
        url = self.url_template.format(z=key.z, x=key.x, y=key.y)
        headers = {"User-Agent": self.user_agent}
        last_error: Optional[Exception] = None

        for attempt in range(self.attempts):
            if self._cancelled():
                raise DistillCancelled(f"fetch of terrarium tile {key} cancelled", tile=tuple(key)) from last_error

            # no pause once the last attempt has failed
            delay = self.backoff * (attempt + 1) if attempt < self.attempts - 1 else 0.0
            try:
                self.network_fetches += 1
                response = requests.get(url, headers=headers, timeout=self.timeout)
            except requests.RequestException as exc:
                last_error = exc
                logger.warning("Tile request failed", tile=str(key), attempt=attempt + 1, error=str(exc))
                self._wait(delay)
                continue

            if not 200 <= response.status_code < 300:
                last_error = TileFetchError(f"terrarium tile {key} status {response.status_code}", tile=tuple(key))
                logger.warning("Tile request rejected", tile=str(key), attempt=attempt + 1, status=response.status_code)
                self._wait(delay * 1.4)
                continue

            try:
                tile = decode_terrarium(response.content)
            except ValueError as exc:
                last_error = exc
                logger.warning("Tile payload undecodable", tile=str(key), attempt=attempt + 1, error=str(exc))
                self._wait(delay)
                continue

            path = self.tile_path(key)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(response.content)
            logger.debug("Tile cached", tile=str(key), path=str(path))
            return tile

        raise TileFetchError(
            f"failed to fetch terrarium tile {key} after {self.attempts} attempts: {last_error}",
            tile=tuple(key),
        ) from last_error

    def get_tile(self, key: TileKey) -> np.ndarray:
        """Decoded tile elevations, from memory, disk or network in that order."""
        tile = self._tiles.get(key)
        if tile is not None:
            return tile
        tile = self._read_cached(key)
        if tile is None:
            logger.info("Fetching tile", tile=str(key))
            tile = self._download(key)
        self._tiles[key] = tile
        return tile

    def fetch_elevations(self, lats: Sequence[float], lons: Sequence[float], cell_meters: int) -> np.ndarray:
        """
        Elevation in meters for each (lat, lon) query point.

        Raises:
            TileFetchError: A required tile could not be obtained
            DistillCancelled: Cancelled or past the deadline before a request
        """
        if len(lats) != len(lons):
            raise ValueError("lat/lon length mismatch")
        zoom = choose_zoom(lats, cell_meters)
        values = np.empty(len(lats), dtype=np.float64)
        for i, (lat, lon) in enumerate(zip(lats, lons)):
            key, px, py = locate(lon, lat, zoom)
            values[i] = _pixel(self.get_tile(key), px, py)
        logger.info("Elevations sampled", points=len(values), zoom=zoom, tiles=len(self._tiles),
                    network_fetches=self.network_fetches)
        return values
