"""Exceptions raised by py_topo."""

from typing import Optional, Tuple


class TopoError(Exception):
    """Base exception for py_topo errors."""
    pass


class BBoxError(TopoError, ValueError):
    """Bounding box is malformed, outside WGS84 or too small."""
    pass


class TileFetchError(TopoError):
    """An elevation tile could not be fetched or decoded."""

    def __init__(self, message: str, tile: Optional[Tuple[int, int, int]] = None):
        self.tile = tile
        super().__init__(message)


class DistillCancelled(TileFetchError):
    """Distillation was cancelled or ran past its deadline."""
    pass


class SampleGridError(TopoError):
    """Sampled elevations do not match the requested grid."""
    pass
