"""
World topology generation.

Builds a seeded, deterministic terrain grid whose elevation distribution and
drainage density follow a GenProfile. Output depends only on the explicit
arguments (seed, biome label, dimensions, profile, climate rules); no random
state is kept between calls, so regenerating a saved world reproduces it
bit for bit.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from .biomes import TerrainBiome, classify_biomes, roughness_for_biomes
from .climate import (
    ClimateRules,
    climate_bias_for_label,
    climate_for_label,
    constrain_biomes,
    is_coastal_label,
    latitude_temperature,
    normalize_biome_label,
)
from .hydrology import (
    COAST,
    LAKE,
    RIVER,
    WATER,
    CellFlag,
    coast_mask,
    drain_targets,
    expand_lake_coverage,
    flow_accumulation,
    river_threshold,
)
from .noise import layered_noise
from .profile import GenProfile, clamp, default_profile
from .stats import percentile_sorted

logger = structlog.get_logger()

MIN_DIMENSION = 8
ELEVATION_LIMIT = 90
COAST_RING = 2
LAKE_MOISTURE = 180

_CHANNELS = ("elevation", "moisture", "temperature", "biome", "flags", "roughness")
_DTYPES = {
    "elevation": np.int8,
    "moisture": np.uint8,
    "temperature": np.uint8,
    "biome": np.uint8,
    "flags": np.uint8,
    "roughness": np.uint8,
}


@dataclass(frozen=True)
class Cell:
    """One generated terrain cell."""

    elevation: int
    moisture: int
    temperature: int
    biome: TerrainBiome
    flags: CellFlag
    roughness: int

    @property
    def is_water(self) -> bool:
        return bool(self.flags & CellFlag.WATER)

    @property
    def is_river(self) -> bool:
        return bool(self.flags & CellFlag.RIVER)

    @property
    def is_lake(self) -> bool:
        return bool(self.flags & CellFlag.LAKE)

    @property
    def is_coast(self) -> bool:
        return bool(self.flags & CellFlag.COAST)

    def to_dict(self) -> Dict[str, int]:
        return {
            "elevation": int(self.elevation),
            "moisture": int(self.moisture),
            "temperature": int(self.temperature),
            "biome": int(self.biome),
            "flags": int(self.flags),
            "roughness": int(self.roughness),
        }


class TerrainGrid:
    """
    Immutable row-major grid of terrain cells.

    Each attribute is held as a read-only (height, width) numpy array;
    Cell objects are built on demand by cell_at() and cells().
    """

    def __init__(
        self,
        width: int,
        height: int,
        elevation: np.ndarray,
        moisture: np.ndarray,
        temperature: np.ndarray,
        biome: np.ndarray,
        flags: np.ndarray,
        roughness: np.ndarray,
    ):
        self.width = int(width)
        self.height = int(height)
        arrays = {
            "elevation": elevation,
            "moisture": moisture,
            "temperature": temperature,
            "biome": biome,
            "flags": flags,
            "roughness": roughness,
        }
        for name, values in arrays.items():
            array = np.array(values, dtype=_DTYPES[name]).reshape(self.height, self.width)
            array.setflags(write=False)
            setattr(self, name, array)

    @property
    def size(self) -> int:
        return self.width * self.height

    def __len__(self) -> int:
        return self.size

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def index_of(self, x: int, y: int) -> Optional[int]:
        """Row-major index of (x, y), or None when out of bounds."""
        if not self.in_bounds(x, y):
            return None
        return y * self.width + x

    def cell_at(self, x: int, y: int) -> Optional[Cell]:
        """Cell at (x, y), or None when out of bounds."""
        if not self.in_bounds(x, y):
            return None
        return Cell(
            elevation=int(self.elevation[y, x]),
            moisture=int(self.moisture[y, x]),
            temperature=int(self.temperature[y, x]),
            biome=TerrainBiome(int(self.biome[y, x])),
            flags=CellFlag(int(self.flags[y, x])),
            roughness=int(self.roughness[y, x]),
        )

    def cells(self) -> List[Cell]:
        """All cells in row-major order."""
        return list(self)

    def __iter__(self) -> Iterator[Cell]:
        for y in range(self.height):
            for x in range(self.width):
                yield self.cell_at(x, y)

    def flag_mask(self, flag: CellFlag) -> np.ndarray:
        return (self.flags & int(flag)) != 0

    def flag_fraction(self, flag: CellFlag) -> float:
        """Fraction of cells carrying a flag."""
        return float(np.count_nonzero(self.flag_mask(flag))) / float(self.size)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, TerrainGrid):
            return NotImplemented
        if (self.width, self.height) != (other.width, other.height):
            return False
        return all(np.array_equal(getattr(self, name), getattr(other, name)) for name in _CHANNELS)

    __hash__ = None

    def __repr__(self) -> str:
        return f"TerrainGrid(width={self.width}, height={self.height})"

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly form for saving a run."""
        return {
            "width": self.width,
            "height": self.height,
            "cells": [cell.to_dict() for cell in self],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TerrainGrid":
        """Rebuild a grid saved with to_dict()."""
        width = int(data["width"])
        height = int(data["height"])
        cells = data["cells"]
        if len(cells) != width * height:
            raise ValueError(f"expected {width * height} cells, got {len(cells)}")
        columns = {name: [int(cell[name]) for cell in cells] for name in _CHANNELS}
        return cls(width, height, **columns)


def _round_half_away(values: np.ndarray) -> np.ndarray:
    return np.sign(values) * np.floor(np.abs(values) + 0.5)


def _lerp_segment(values: np.ndarray, src_a: float, src_b: float, dst_a: float, dst_b: float) -> np.ndarray:
    den = src_b - src_a
    if abs(den) < 1e-9:
        return np.full(values.shape, (dst_a + dst_b) * 0.5)
    return dst_a + (dst_b - dst_a) * ((values - src_a) / den)


def piecewise_linear_map(values: np.ndarray, src: Sequence[float], dst: Sequence[float]) -> np.ndarray:
    """Map values through matching ascending breakpoints src -> dst."""
    out = np.empty(values.shape, dtype=np.float64)
    assigned = np.zeros(values.shape, dtype=bool)
    for i in range(1, len(src)):
        mask = ~assigned & (values <= src[i])
        out[mask] = _lerp_segment(values[mask], src[i - 1], src[i], dst[i - 1], dst[i])
        assigned |= mask
    rest = ~assigned
    if np.any(rest):
        out[rest] = _lerp_segment(values[rest], src[-2], src[-1], dst[-2], dst[-1])
    return out


def calibrate_elevation(raw: np.ndarray, profile: GenProfile) -> np.ndarray:
    """
    Reshape raw elevation so its percentiles land on the profile's.

    The raw (min, p10, p50, p90, max) are mapped piecewise-linearly onto
    (p10 - 0.85*spread, p10, p50, p90, p90 + 0.85*spread) with
    spread = p90 - p10, then clamped to +/-90.
    """
    ordered = np.sort(raw.ravel())
    src = (
        float(ordered[0]),
        percentile_sorted(ordered, 0.10),
        percentile_sorted(ordered, 0.50),
        percentile_sorted(ordered, 0.90),
        float(ordered[-1]),
    )
    spread = max(1.0, profile.elev_p90 - profile.elev_p10)
    dst = (
        profile.elev_p10 - spread * 0.85,
        profile.elev_p10,
        profile.elev_p50,
        profile.elev_p90,
        profile.elev_p90 + spread * 0.85,
    )
    return np.clip(piecewise_linear_map(raw, src, dst), -ELEVATION_LIMIT, ELEVATION_LIMIT)


def profile_waterline(profile: GenProfile) -> int:
    """Elevation at or below which cells start as open water."""
    shift = int(_round_half_away(np.array(profile.elev_p10 - profile.elev_p50) * 0.20))
    return int(clamp(-22 + shift, -45, -5))


def profile_lake_elevation(profile: GenProfile) -> int:
    """Elevation at or below which wet cells pond into lakes."""
    span = max(1.0, profile.elev_p90 - profile.elev_p10)
    return int(clamp(int(_round_half_away(np.array(profile.elev_p10 + span * 0.22))), -24, 12))


def _coastal_ring(width: int, height: int) -> np.ndarray:
    ring = np.ones((height, width), dtype=bool)
    ring[COAST_RING:height - COAST_RING, COAST_RING:width - COAST_RING] = False
    return ring


def generate_topology(
    seed: int,
    biome_label: str,
    width: int,
    height: int,
    profile: Optional[GenProfile] = None,
    climate: Optional[ClimateRules] = None,
) -> TerrainGrid:
    """
    Generate a terrain grid calibrated toward a profile.

    Args:
        seed: World seed
        biome_label: Free-text location biome ("temperate_rainforest", "arctic_coast", ...)
        width: Grid width; values below 8 are raised to 8
        height: Grid height; values below 8 are raised to 8
        profile: Statistical target; defaults to default_profile()
        climate: Biome constraints; defaults to climate_for_label(biome_label)

    Returns:
        TerrainGrid
    """
    profile = (profile or default_profile()).normalized()
    width = max(MIN_DIMENSION, int(width))
    height = max(MIN_DIMENSION, int(height))
    label = normalize_biome_label(biome_label)
    bias = climate_bias_for_label(label)
    rules = climate if climate is not None else climate_for_label(label)
    reference = default_profile()

    ridge_scale = clamp(profile.ruggedness / reference.ruggedness, 0.7, 1.7)
    lapse_scale = clamp(profile.slope_p50 / reference.slope_p50, 0.7, 1.6)

    elev_noise = layered_noise(seed, width, height, "elev")
    ridge_noise = layered_noise(seed, width, height, "ridge")
    moist_noise = layered_noise(seed, width, height, "moist")
    temp_noise = layered_noise(seed, width, height, "temp")
    rough_noise = layered_noise(seed, width, height, "rough")

    raw = (elev_noise - 0.5) * 120.0 + (np.abs(ridge_noise - 0.5) - 0.25) * 34.0 * ridge_scale - 8.0
    surface = calibrate_elevation(raw, profile)
    elevation = _round_half_away(surface)
    elevation = np.clip(elevation, -ELEVATION_LIMIT, ELEVATION_LIMIT).astype(np.int8)
    elev_f = elevation.astype(np.float64)

    temp_val = np.clip(
        latitude_temperature(height) + (temp_noise - 0.5) * 0.35 + bias.temperature - elev_f / (220.0 * lapse_scale),
        0.0,
        1.0,
    )
    moist_val = np.clip(moist_noise + bias.moisture - elev_f / 280.0, 0.0, 1.0)
    temperature = np.floor(temp_val * 255.0 + 0.5).astype(np.uint8)
    moisture = np.floor(moist_val * 255.0 + 0.5).astype(np.uint8)

    water = elevation.astype(np.int16) <= profile_waterline(profile)
    if is_coastal_label(label):
        water |= _coastal_ring(width, height)
    flags = np.where(water, WATER, 0).astype(np.uint8)

    biome = classify_biomes(elevation, moisture, temperature)
    biome = constrain_biomes(rules, biome, moisture, temperature)
    rough_scale = (
        clamp(profile.ruggedness / reference.ruggedness, 0.65, 1.8)
        + clamp(profile.slope_p90 / reference.slope_p90, 0.7, 1.6)
    ) / 2.0
    roughness = roughness_for_biomes(biome, rough_noise, elevation, rough_scale)

    # Rivers route over the unrounded surface so integer flats still drain
    land = ~water.ravel()
    targets = drain_targets(surface, active=~water)
    accum = flow_accumulation(surface, targets)
    threshold = river_threshold(accum, land, profile.river_density)
    flat_flags = flags.reshape(-1)
    rivers = land & (accum >= threshold)
    flat_flags[rivers] |= RIVER | WATER

    lakes = (
        land
        & ~rivers
        & (elevation.ravel().astype(np.int16) <= profile_lake_elevation(profile))
        & (moisture.ravel() >= LAKE_MOISTURE)
    )
    flat_flags[lakes] |= LAKE | WATER
    expand_lake_coverage(flags, elevation, moisture, profile.lake_coverage)

    coast = coast_mask((flags & WATER) != 0)
    flags[coast] |= COAST
    rebiome = coast & ((biome == int(TerrainBiome.GRASSLAND)) | (biome == int(TerrainBiome.DESERT)))
    biome = np.where(rebiome, np.uint8(TerrainBiome.FOREST), biome).astype(np.uint8)
    biome = constrain_biomes(rules, biome, moisture, temperature)

    logger.debug(
        "Topology generated",
        seed=seed,
        biome=label,
        width=width,
        height=height,
        profile=profile.id,
        river_threshold=threshold,
        rivers=int(np.count_nonzero(rivers)),
    )
    return TerrainGrid(width, height, elevation, moisture, temperature, biome, flags, roughness)


def generate(seed: int, biome_label: str, width: int, height: int) -> TerrainGrid:
    """Generate a grid with the default profile."""
    return generate_topology(seed, biome_label, width, height, default_profile())


def pick_start_cell(grid: TerrainGrid) -> Tuple[int, int]:
    """
    Starting position for a run: the centre cell, or the dry cell nearest to it.

    Returns the centre itself when every cell is water.
    """
    cx, cy = grid.width // 2, grid.height // 2
    dry = ~grid.flag_mask(CellFlag.WATER)
    if dry[cy, cx]:
        return cx, cy
    ys, xs = np.nonzero(dry)
    if xs.size == 0:
        return cx, cy
    dist = np.hypot(xs - cx, ys - cy)
    best = int(np.argmin(dist))
    return int(xs[best]), int(ys[best])
