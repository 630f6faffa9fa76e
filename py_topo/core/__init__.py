"""
Core terrain generation functionality.
"""

from .biomes import TerrainBiome, biome_label, biome_tags, classify_biome
from .climate import ClimateRules, climate_for_label
from .hydrology import CellFlag
from .profile import GenProfile, ProfileStore, default_profile, load_profile
from .topology import Cell, TerrainGrid, generate, generate_topology, pick_start_cell

__all__ = ['TerrainBiome', 'biome_label', 'biome_tags', 'classify_biome',
           'ClimateRules', 'climate_for_label', 'CellFlag',
           'GenProfile', 'ProfileStore', 'default_profile', 'load_profile',
           'Cell', 'TerrainGrid', 'generate', 'generate_topology', 'pick_start_cell']
