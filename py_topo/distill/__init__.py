"""
Offline distillation of real-world elevation into generation profiles.
"""

from .batch import BatchResult, LocationJob, load_manifest, run_batch
from .distiller import BBox, DistillOptions, distill, normalize_bbox, parse_bbox, write_profile
from .tiles import TileFetcher, TileKey, choose_zoom, decode_terrarium, lonlat_to_tile

__all__ = ['BatchResult', 'LocationJob', 'load_manifest', 'run_batch',
           'BBox', 'DistillOptions', 'distill', 'normalize_bbox', 'parse_bbox', 'write_profile',
           'TileFetcher', 'TileKey', 'choose_zoom', 'decode_terrarium', 'lonlat_to_tile']
