"""
py_topo - profile-calibrated procedural terrain.

Distills real-world elevation into compact statistical profiles and
generates deterministic terrain grids shaped by them.
"""

__version__ = "0.1.0"
