"""
Profile distillation from real-world elevation.

Samples a bounding box on a regular grid, reduces the samples to a compact
GenProfile (percentiles, slope, ruggedness, drainage and lake proxies) and
writes it as JSON. This is an offline, build-time operation; runtime
generation only reads the resulting profile files.
"""

import hashlib
import json
import math
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import structlog

from ..config import get_settings
from ..core.profile import GenProfile
from ..core.stats import (
    lake_coverage_proxy,
    meters_to_units,
    percentile_sorted,
    river_density_proxy,
    ruggedness,
    slope_degrees,
)
from ..exceptions import BBoxError, SampleGridError
from .tiles import TileFetcher

logger = structlog.get_logger()

DEFAULT_SOURCE = "Mapzen Terrarium elevation tiles (AWS public), distilled to compact profile stats"
METERS_PER_DEGREE = 111_320.0
MIN_BBOX_SPAN = 0.001
MIN_SAMPLES = 14
SAMPLE_CACHE_NAME = "elevation_samples.json"


@dataclass(frozen=True)
class BBox:
    """WGS84 bounding box in degrees."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    @property
    def mid_lat(self) -> float:
        return (self.min_lat + self.max_lat) * 0.5


def normalize_bbox(values: Sequence[float]) -> BBox:
    """
    Validate a (minLon, minLat, maxLon, maxLat) box.

    Inverted axes are swapped. Boxes outside WGS84 or with a span under
    0.001 degrees on either axis are rejected.

    Raises:
        BBoxError
    """
    if len(values) != 4:
        raise BBoxError("bbox must be minLon,minLat,maxLon,maxLat")
    min_lon, min_lat, max_lon, max_lat = (float(v) for v in values)
    if any(math.isnan(v) for v in (min_lon, min_lat, max_lon, max_lat)):
        raise BBoxError("bbox contains NaN")
    if min_lon > max_lon:
        min_lon, max_lon = max_lon, min_lon
    if min_lat > max_lat:
        min_lat, max_lat = max_lat, min_lat
    if min_lon < -180 or max_lon > 180 or min_lat < -90 or max_lat > 90:
        raise BBoxError("bbox out of WGS84 range")
    if abs(max_lon - min_lon) < MIN_BBOX_SPAN or abs(max_lat - min_lat) < MIN_BBOX_SPAN:
        raise BBoxError("bbox is too small")
    return BBox(min_lon, min_lat, max_lon, max_lat)


def parse_bbox(raw: str) -> BBox:
    """Parse "minLon,minLat,maxLon,maxLat" into a normalized BBox."""
    parts = (raw or "").strip().split(",")
    if len(parts) != 4:
        raise BBoxError("bbox must be minLon,minLat,maxLon,maxLat")
    values = []
    for i, part in enumerate(parts):
        try:
            values.append(float(part.strip()))
        except ValueError as exc:
            raise BBoxError(f"parse bbox value {i}: {part.strip()!r}") from exc
    return normalize_bbox(values)


def bbox_extent_meters(bbox: BBox) -> Tuple[float, float]:
    """Equirectangular (east-west, north-south) extent in meters, each at least 1."""
    lat_dist = abs(bbox.max_lat - bbox.min_lat) * METERS_PER_DEGREE
    lon_dist = abs(bbox.max_lon - bbox.min_lon) * METERS_PER_DEGREE * math.cos(math.radians(bbox.mid_lat))
    return max(1.0, lon_dist), max(1.0, lat_dist)


def sample_grid_size(bbox: BBox, cell_meters: int, sample_cap: int) -> Tuple[int, int]:
    """Samples per axis: extent / cell size, clamped to [14, sample_cap]."""
    lon_m, lat_m = bbox_extent_meters(bbox)
    cap = max(MIN_SAMPLES, sample_cap)
    width = min(cap, max(MIN_SAMPLES, int(math.floor(lon_m / cell_meters + 0.5))))
    height = min(cap, max(MIN_SAMPLES, int(math.floor(lat_m / cell_meters + 0.5))))
    return width, height


def sample_points(bbox: BBox, width: int, height: int) -> Tuple[List[float], List[float]]:
    """
    Row-major sample coordinates covering the box edge to edge.

    Rows run south to north from min_lat, columns west to east from min_lon.
    """
    fy = np.linspace(0.0, 1.0, height) if height > 1 else np.zeros(1)
    fx = np.linspace(0.0, 1.0, width) if width > 1 else np.zeros(1)
    lat_rows = bbox.min_lat + (bbox.max_lat - bbox.min_lat) * fy
    lon_cols = bbox.min_lon + (bbox.max_lon - bbox.min_lon) * fx
    lats = np.repeat(lat_rows, width)
    lons = np.tile(lon_cols, height)
    return lats.tolist(), lons.tolist()


def sample_cache_key(bbox: BBox, width: int, height: int) -> str:
    key = "%.6f:%.6f:%.6f:%.6f:%d:%d" % (bbox.min_lon, bbox.min_lat, bbox.max_lon, bbox.max_lat, width, height)
    return hashlib.sha1(key.encode("utf-8")).hexdigest()


def load_sample_cache(path: Path, expected: int) -> Optional[np.ndarray]:
    """Cached samples, or None when absent, unreadable or the wrong length."""
    try:
        values = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Sample cache unreadable", path=str(path), error=str(exc))
        return None
    if not isinstance(values, list) or len(values) != expected:
        return None
    try:
        samples = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if not np.all(np.isfinite(samples)):
        return None
    return samples


def write_sample_cache(path: Path, values: np.ndarray) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps([float(v) for v in values]), encoding="utf-8")


@dataclass
class DistillOptions:
    """Inputs for one distillation run."""

    id: str
    bbox: Union[BBox, Sequence[float]]
    name: str = ""
    cell_meters: int = 0
    sample_cap: int = 0
    cache_root: Optional[Union[str, Path]] = None
    source: str = ""


def _round(value: float, digits: int) -> float:
    factor = 10.0 ** digits
    return math.floor(value * factor + 0.5) / factor


def profile_from_samples(
    elevation: np.ndarray,
    bbox: BBox,
    profile_id: str,
    name: str,
    cell_meters: int,
    source: str,
) -> GenProfile:
    """
    Reduce a (height, width) grid of elevations in meters to a profile.

    Args:
        elevation: Samples in meters, rows south to north
        bbox: Box the samples cover
        profile_id: Profile identifier
        name: Display name
        cell_meters: Target cell size recorded in the profile
        source: Provenance recorded in the profile
    """
    height, width = elevation.shape
    ordered = np.sort(elevation.ravel())
    lon_m, lat_m = bbox_extent_meters(bbox)
    step_x = lon_m / max(1, width - 1)
    step_y = lat_m / max(1, height - 1)
    slopes = np.sort(slope_degrees(elevation, step_x, step_y))

    profile = GenProfile(
        id=profile_id,
        name=name,
        cell_meters=cell_meters,
        elev_p10=_round(meters_to_units(percentile_sorted(ordered, 0.10)), 3),
        elev_p50=_round(meters_to_units(percentile_sorted(ordered, 0.50)), 3),
        elev_p90=_round(meters_to_units(percentile_sorted(ordered, 0.90)), 3),
        slope_p50=_round(percentile_sorted(slopes, 0.50), 3),
        slope_p90=_round(percentile_sorted(slopes, 0.90), 3),
        ruggedness=_round(ruggedness(elevation), 4),
        river_density=_round(river_density_proxy(elevation), 4),
        lake_coverage=_round(lake_coverage_proxy(elevation), 4),
        notes="Derived from %dx%d elevation samples in bbox [%.4f, %.4f, %.4f, %.4f]"
        % ((width, height) + bbox.as_tuple()),
        source=source,
    )
    logger.info(
        "Profile distilled",
        profile_id=profile.id,
        samples=f"{width}x{height}",
        elev=(profile.elev_p10, profile.elev_p50, profile.elev_p90),
        slope=(profile.slope_p50, profile.slope_p90),
        river_density=profile.river_density,
        lake_coverage=profile.lake_coverage,
    )
    return profile


def distill(
    options: DistillOptions,
    cancel: Optional[threading.Event] = None,
    deadline: Optional[float] = None,
    fetcher: Optional[TileFetcher] = None,
) -> GenProfile:
    """
    Distill a profile for a bounding box.

    Cached samples for the same box and grid size skip tile access entirely;
    otherwise tiles come from the tile cache or the network.

    Args:
        options: Box, identity and sampling parameters
        cancel: Event that aborts network fetching once set
        deadline: time.monotonic() value after which fetching aborts
        fetcher: Tile fetcher override (defaults to one rooted in the cache)

    Raises:
        BBoxError: Invalid box, before any I/O
        ValueError: Missing id
        TileFetchError: Tiles could not be obtained (DistillCancelled on cancel)
    """
    settings = get_settings()
    raw_bbox = options.bbox.as_tuple() if isinstance(options.bbox, BBox) else options.bbox
    bbox = normalize_bbox(raw_bbox)
    profile_id = (options.id or "").strip()
    if not profile_id:
        raise ValueError("id is required")
    cell_meters = options.cell_meters if options.cell_meters > 0 else settings.default_cell_meters
    sample_cap = options.sample_cap if options.sample_cap > 0 else settings.sample_cap
    cache_root = Path(options.cache_root) if options.cache_root else Path(settings.cache_root)
    source = options.source.strip() or DEFAULT_SOURCE
    name = options.name.strip() or profile_id

    width, height = sample_grid_size(bbox, cell_meters, sample_cap)
    cache_path = cache_root / sample_cache_key(bbox, width, height) / SAMPLE_CACHE_NAME
    expected = width * height

    samples = load_sample_cache(cache_path, expected)
    if samples is not None:
        logger.info("Sample cache hit", profile_id=profile_id, path=str(cache_path))
    else:
        lats, lons = sample_points(bbox, width, height)
        if fetcher is None:
            fetcher = TileFetcher(cache_root / "tiles", cancel=cancel, deadline=deadline)
        samples = np.asarray(fetcher.fetch_elevations(lats, lons, cell_meters), dtype=np.float64)
        if samples.size != expected:
            raise SampleGridError(f"elevation sample size mismatch: got {samples.size} want {expected}")
        try:
            write_sample_cache(cache_path, samples)
        except OSError as exc:
            logger.warning("Sample cache not written", path=str(cache_path), error=str(exc))

    return profile_from_samples(samples.reshape(height, width), bbox, profile_id, name, cell_meters, source)


def write_profile(path: Union[str, Path], profile: GenProfile) -> Path:
    """Write a profile as indented JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(profile.to_json(), encoding="utf-8")
    return path
