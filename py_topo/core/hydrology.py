"""
Drainage simulation for terrain grids.

This module implements:
- Steepest-descent drain targets over the 8-neighbourhood
- Single-pass flow accumulation
- Profile-calibrated river thresholds
- Lake coverage expansion and coast detection

Drain graph invariant: a cell only ever drains to a neighbour with a
strictly lower elevation. Edges therefore always point downhill, the graph
is a forest with no cycles, and visiting cells once in descending elevation
order is enough to push every cell's flow past all of its ancestors. If the
strict comparison is relaxed (e.g. draining across flats) cycles become
possible and single-pass accumulation is no longer correct.
"""

import math
from enum import IntFlag
from typing import Optional

import numpy as np
import structlog

logger = structlog.get_logger()


class CellFlag(IntFlag):
    """Per-cell hydrology flags."""

    NONE = 0
    WATER = 1
    RIVER = 2
    LAKE = 4
    COAST = 8


WATER = int(CellFlag.WATER)
RIVER = int(CellFlag.RIVER)
LAKE = int(CellFlag.LAKE)
COAST = int(CellFlag.COAST)


# (dx, dy); the first four are the 4-neighbourhood. Ties go to the earliest entry.
NEIGHBOR_OFFSETS = ((1, 0), (-1, 0), (0, 1), (0, -1), (1, 1), (1, -1), (-1, 1), (-1, -1))

DEFAULT_RIVER_THRESHOLD = 16
MIN_RIVER_THRESHOLD = 4


def drain_targets(elevation: np.ndarray, active: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Pick each cell's drain target.

    The target is the lowest of the 8 neighbours, provided it is strictly
    lower than the cell itself; otherwise the cell is a sink (-1).

    Args:
        elevation: (height, width) elevations
        active: Optional boolean mask; inactive cells never drain

    Returns:
        Flat int64 array of target indices (row-major) or -1
    """
    height, width = elevation.shape
    elev = elevation.astype(np.float64)
    padded = np.pad(elev, 1, mode="constant", constant_values=np.inf)

    neighbours = np.stack(
        [padded[1 + dy:1 + dy + height, 1 + dx:1 + dx + width] for dx, dy in NEIGHBOR_OFFSETS]
    )
    best = np.argmin(neighbours, axis=0)
    best_elev = np.take_along_axis(neighbours, best[np.newaxis], axis=0)[0]

    offsets = np.array(NEIGHBOR_OFFSETS, dtype=np.int64)
    ys, xs = np.mgrid[0:height, 0:width]
    tx = xs + offsets[best, 0]
    ty = ys + offsets[best, 1]
    targets = np.where(best_elev < elev, ty * width + tx, -1)
    if active is not None:
        targets = np.where(active, targets, -1)
    return targets.ravel().astype(np.int64)


def flow_accumulation(elevation: np.ndarray, targets: np.ndarray) -> np.ndarray:
    """
    Accumulate flow down the drain forest.

    Every cell starts with one unit of flow and hands its running total to
    its target. Cells are processed in descending elevation order, which is
    a topological order of the drain graph (see module docstring).

    Args:
        elevation: Elevations, any shape; flattened row-major
        targets: Flat drain targets from drain_targets()

    Returns:
        Flat int64 accumulation per cell
    """
    flat = elevation.astype(np.float64).ravel()
    order = np.argsort(-flat, kind="stable")
    accum = [1] * flat.size
    target_list = targets.tolist()
    for idx in order.tolist():
        nxt = target_list[idx]
        if nxt >= 0:
            accum[nxt] += accum[idx]
    return np.asarray(accum, dtype=np.int64)


def river_threshold(accum: np.ndarray, candidates: np.ndarray, river_density: float) -> int:
    """
    Accumulation threshold that flags roughly river_density of all cells.

    River density is a fraction of the whole grid, but only candidate cells
    can carry rivers. Accumulation values tie heavily, so the threshold at
    the target rank and the next larger value are both tried and the one
    whose river count lands closer to the target wins.

    Args:
        accum: Flat flow accumulation
        candidates: Flat boolean mask of cells that may carry rivers
        river_density: Target fraction, clamped to [0.005, 0.25]. Denser
            requests flag at most a quarter of the grid

    Returns:
        Threshold (>= 4), or 16 when there are no candidates
    """
    values = np.sort(accum[candidates])
    if values.size == 0:
        return DEFAULT_RIVER_THRESHOLD
    target = min(0.25, max(0.005, river_density))
    if target != river_density:
        logger.debug("River density clamped", requested=river_density, used=target)
    want = min(values.size, int(math.floor(target * accum.size + 0.5)))
    if want <= 0:
        return max(MIN_RIVER_THRESHOLD, int(values[-1]) + 1)

    at_rank = int(values[values.size - want])
    best = at_rank
    best_count = values.size - int(np.searchsorted(values, at_rank, side="left"))
    above = int(np.searchsorted(values, at_rank, side="right"))
    if above < values.size:
        count = values.size - above
        if abs(count - want) < abs(best_count - want):
            best = int(values[above])
    return max(MIN_RIVER_THRESHOLD, best)


def expand_lake_coverage(
    flags: np.ndarray,
    elevation: np.ndarray,
    moisture: np.ndarray,
    target_coverage: float,
) -> int:
    """
    Flag extra lake cells until lakes cover target_coverage of the grid.

    Candidates are interior non-water cells, lowest first and wettest first
    among equal elevations. Modifies flags in place.

    Returns:
        Number of cells newly flagged
    """
    target = int(math.floor(flags.size * min(0.35, max(0.0, target_coverage)) + 0.5))
    if target <= 0:
        return 0
    current = int(np.count_nonzero(flags & LAKE))
    if current >= target:
        return 0

    interior = np.zeros(flags.shape, dtype=bool)
    interior[1:-1, 1:-1] = True
    candidates = np.flatnonzero(interior & ((flags & WATER) == 0))
    if candidates.size == 0:
        return 0

    elev = elevation.ravel()[candidates].astype(np.int16)
    moist = moisture.ravel()[candidates].astype(np.int16)
    ranked = candidates[np.lexsort((-moist, elev))]
    chosen = ranked[: target - current]
    flat = flags.reshape(-1)
    flat[chosen] |= WATER | LAKE
    logger.debug("Expanded lake coverage", added=int(chosen.size), target=target)
    return int(chosen.size)


def coast_mask(water: np.ndarray) -> np.ndarray:
    """Non-water cells with a water cell in their 4-neighbourhood."""
    height, width = water.shape
    padded = np.pad(water, 1, mode="constant", constant_values=False)
    touching = np.zeros(water.shape, dtype=bool)
    for dx, dy in NEIGHBOR_OFFSETS[:4]:
        touching |= padded[1 + dy:1 + dy + height, 1 + dx:1 + dx + width]
    return touching & ~water
