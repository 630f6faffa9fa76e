"""
Statistics over elevation sample grids.

Used by the profile distiller to fingerprint real terrain, and by the
topology generator to calibrate synthetic elevation to a profile.
"""

import math
from typing import Sequence

import numpy as np

from .hydrology import drain_targets, flow_accumulation, NEIGHBOR_OFFSETS

# meters -> abstract elevation units
METERS_PER_UNIT = 40.0
ELEVATION_UNIT_RANGE = (-90.0, 90.0)
RUGGEDNESS_SCALE = 220.0
RUGGEDNESS_RANGE = (0.08, 2.4)
RIVER_PROXY_QUANTILE = 0.94
RIVER_PROXY_RANGE = (0.01, 0.22)
LAKE_LOW_QUANTILE = 0.24
LAKE_PROXY_FACTOR = 1.8
LAKE_PROXY_RANGE = (0.003, 0.14)


def percentile_sorted(sorted_values: Sequence[float], q: float) -> float:
    """Linear-interpolated percentile of an ascending sequence (q in [0, 1])."""
    n = len(sorted_values)
    if n == 0:
        return 0.0
    if q <= 0:
        return float(sorted_values[0])
    if q >= 1:
        return float(sorted_values[-1])
    pos = q * (n - 1)
    lo = int(math.floor(pos))
    hi = int(math.ceil(pos))
    if lo == hi:
        return float(sorted_values[lo])
    frac = pos - lo
    return float(sorted_values[lo] + (sorted_values[hi] - sorted_values[lo]) * frac)


def percentile(values: Sequence[float], q: float) -> float:
    """Linear-interpolated percentile of unsorted values."""
    return percentile_sorted(np.sort(np.asarray(values, dtype=np.float64).ravel()), q)


def meters_to_units(meters: float) -> float:
    return float(np.clip(meters / METERS_PER_UNIT, *ELEVATION_UNIT_RANGE))


def slope_degrees(elevation: np.ndarray, step_x: float, step_y: float) -> np.ndarray:
    """
    Slope of interior samples from central differences.

    The border ring is skipped because it lacks two-sided neighbours.

    Args:
        elevation: (height, width) elevations in meters
        step_x: Ground distance between columns in meters
        step_y: Ground distance between rows in meters

    Returns:
        Flat array of slopes in degrees ([0.0] for grids under 3x3)
    """
    height, width = elevation.shape
    if width < 3 or height < 3:
        return np.zeros(1)
    step_x = step_x if step_x > 0 else 1.0
    step_y = step_y if step_y > 0 else 1.0
    dzdx = (elevation[1:-1, 2:] - elevation[1:-1, :-2]) / (2.0 * step_x)
    dzdy = (elevation[2:, 1:-1] - elevation[:-2, 1:-1]) / (2.0 * step_y)
    gradient = np.hypot(dzdx, dzdy)
    return np.degrees(np.arctan(gradient)).ravel()


def ruggedness(elevation: np.ndarray) -> float:
    """Population standard deviation in meters, normalized and clamped."""
    if elevation.size == 0:
        return 0.5
    return float(np.clip(np.std(elevation) / RUGGEDNESS_SCALE, *RUGGEDNESS_RANGE))


def river_density_proxy(elevation: np.ndarray) -> float:
    """
    Fraction of samples with high flow accumulation.

    Every sample drains to its lowest strictly-lower neighbour; samples at
    or above the 94th accumulation percentile count as channel samples.
    """
    if elevation.size == 0:
        return 0.05
    accum = flow_accumulation(elevation, drain_targets(elevation)).astype(np.float64)
    threshold = percentile(accum, RIVER_PROXY_QUANTILE)
    hits = np.count_nonzero(accum >= threshold)
    return float(np.clip(hits / accum.size, *RIVER_PROXY_RANGE))


def lake_coverage_proxy(elevation: np.ndarray) -> float:
    """
    Scaled fraction of low-lying interior pits.

    A pit is an interior sample at or below the 24th elevation percentile
    with no neighbour strictly lower than itself.
    """
    height, width = elevation.shape
    if width < 3 or height < 3:
        return 0.02
    low = percentile(elevation, LAKE_LOW_QUANTILE)
    centre = elevation[1:-1, 1:-1]
    is_min = centre <= low
    for dx, dy in NEIGHBOR_OFFSETS:
        neighbour = elevation[1 + dy:height - 1 + dy, 1 + dx:width - 1 + dx]
        is_min &= neighbour >= centre
    minima = int(np.count_nonzero(is_min))
    return float(np.clip(minima / float(width * height) * LAKE_PROXY_FACTOR, *LAKE_PROXY_RANGE))
