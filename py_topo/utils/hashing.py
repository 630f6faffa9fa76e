"""
Stateless hashing for deterministic terrain noise.

Terrain generation never keeps a random stream: every lattice value is a
pure function of (seed, gx, gy, salt, octave). Two calls with the same
inputs always return the same bits, which is what makes generated worlds
reproducible across save/resume without persisting any RNG state.
"""

import zlib
from typing import Union

import numpy as np

_MASK64 = (1 << 64) - 1
_GOLDEN = 0x9E3779B97F4A7C15
_MIX1 = 0xBF58476D1CE4E5B9
_MIX2 = 0x94D049BB133111EB

_PRIME_X = np.uint64(0xC2B2AE3D27D4EB4F)
_PRIME_Y = np.uint64(0x165667B19E3779F9)

_UNIT_MASK = 0xFFFFFFF

ArrayLike = Union[int, np.ndarray]


def _mix64_int(h: int) -> int:
    """splitmix64 finalizer on a Python int."""
    h &= _MASK64
    h ^= h >> 30
    h = (h * _MIX1) & _MASK64
    h ^= h >> 27
    h = (h * _MIX2) & _MASK64
    h ^= h >> 31
    return h


def _mix64(h: np.ndarray) -> np.ndarray:
    """splitmix64 finalizer over a uint64 array (wraps on overflow)."""
    h = h ^ (h >> np.uint64(30))
    h = h * np.uint64(_MIX1)
    h = h ^ (h >> np.uint64(27))
    h = h * np.uint64(_MIX2)
    h = h ^ (h >> np.uint64(31))
    return h


def salt_for(name: str) -> int:
    """Stable integer salt for a named noise channel."""
    return zlib.crc32(name.encode("utf-8"))


def stream_key(seed: int, salt: int, octave: int = 0) -> int:
    """Fold seed, channel salt and octave index into one 64-bit key."""
    channel = _mix64_int(((salt & 0xFFFFFFFF) * _GOLDEN + (octave & 0xFF)) & _MASK64)
    return _mix64_int((seed & _MASK64) ^ channel)


def lattice_hash(seed: int, gx: ArrayLike, gy: ArrayLike, salt: int, octave: int = 0) -> np.ndarray:
    """
    Hash integer lattice coordinates into 64-bit values.

    Args:
        seed: World seed (any Python int, negative seeds are folded mod 2**64)
        gx: Lattice x coordinate(s)
        gy: Lattice y coordinate(s), broadcast against gx
        salt: Channel salt, see salt_for()
        octave: Octave index within the channel

    Returns:
        uint64 array with the broadcast shape of gx and gy
    """
    gx_u = np.asarray(gx, dtype=np.int64).astype(np.uint64)
    gy_u = np.asarray(gy, dtype=np.int64).astype(np.uint64)
    gx_u, gy_u = np.broadcast_arrays(gx_u, gy_u)

    h = np.full(gx_u.shape, stream_key(seed, salt, octave), dtype=np.uint64)
    h = _mix64(h ^ (gx_u * _PRIME_X))
    h = _mix64(h ^ (gy_u * _PRIME_Y))
    return h


def hash_unit(seed: int, gx: ArrayLike, gy: ArrayLike, salt: int, octave: int = 0) -> np.ndarray:
    """Lattice hash mapped to floats in [0, 1]."""
    bits = lattice_hash(seed, gx, gy, salt, octave) & np.uint64(_UNIT_MASK)
    return bits.astype(np.float64) / float(_UNIT_MASK)
