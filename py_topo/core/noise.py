"""
Layered value noise built on the stateless lattice hash.
"""

from typing import Sequence

import numpy as np

from ..utils.hashing import hash_unit, salt_for

OCTAVE_SCALES = (52.0, 26.0, 13.0, 6.0)


def smoothstep(t: np.ndarray) -> np.ndarray:
    t = np.clip(t, 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def value_noise(seed: int, width: int, height: int, cell_size: float, salt: int, octave: int = 0) -> np.ndarray:
    """
    Sample bilinear value noise on a width x height pixel grid.

    Lattice points sit every ``cell_size`` pixels; each lattice value is
    hash_unit(seed, gx, gy, salt, octave) and pixels blend the four
    surrounding lattice values with smoothstep weights.

    Returns:
        (height, width) float64 array in [0, 1]
    """
    if cell_size <= 0:
        cell_size = 1.0

    gx = np.arange(width, dtype=np.float64) / cell_size
    gy = np.arange(height, dtype=np.float64) / cell_size
    x0 = np.floor(gx).astype(np.int64)
    y0 = np.floor(gy).astype(np.int64)
    tx = smoothstep(gx - x0)[np.newaxis, :]
    ty = smoothstep(gy - y0)[:, np.newaxis]

    lattice_x = np.arange(x0[0], x0[-1] + 2, dtype=np.int64)
    lattice_y = np.arange(y0[0], y0[-1] + 2, dtype=np.int64)
    lattice = hash_unit(seed, lattice_x[np.newaxis, :], lattice_y[:, np.newaxis], salt, octave)

    ix = (x0 - lattice_x[0])[np.newaxis, :]
    iy = (y0 - lattice_y[0])[:, np.newaxis]
    n00 = lattice[iy, ix]
    n10 = lattice[iy, ix + 1]
    n01 = lattice[iy + 1, ix]
    n11 = lattice[iy + 1, ix + 1]

    nx0 = n00 + (n10 - n00) * tx
    nx1 = n01 + (n11 - n01) * tx
    return nx0 + (nx1 - nx0) * ty


def layered_noise(
    seed: int,
    width: int,
    height: int,
    channel: str,
    scales: Sequence[float] = OCTAVE_SCALES,
) -> np.ndarray:
    """
    Sum octaves of value noise with halving amplitude, normalized to [0, 1].

    Args:
        seed: World seed
        width: Grid width in cells
        height: Grid height in cells
        channel: Channel name ("elev", "ridge", ...), salts the hash
        scales: Lattice spacing per octave, coarse to fine

    Returns:
        (height, width) float64 array
    """
    salt = salt_for(channel)
    total = np.zeros((height, width), dtype=np.float64)
    weight = 0.0
    amplitude = 1.0
    for octave, scale in enumerate(scales):
        total += value_noise(seed, width, height, scale, salt, octave) * amplitude
        weight += amplitude
        amplitude *= 0.5
    if weight <= 0:
        return np.full((height, width), 0.5)
    return total / weight
