"""
Biome classification for generated terrain cells.

This module implements:
- The terrain biome enumeration stored per cell
- Descriptive tags and labels used by climate rules and consumers
- The fixed (elevation, moisture, temperature) decision table
- Per-biome roughness
"""

from enum import IntEnum
from typing import FrozenSet, Optional

import numpy as np


class TerrainBiome(IntEnum):
    """Biome classification stored in each terrain cell."""

    UNKNOWN = 0
    FOREST = 1
    GRASSLAND = 2
    JUNGLE = 3
    WETLAND = 4
    SWAMP = 5
    DESERT = 6
    MOUNTAIN = 7
    TUNDRA = 8
    BOREAL = 9


BIOME_TAGS = {
    TerrainBiome.FOREST: frozenset({"forest", "temperate", "wooded"}),
    TerrainBiome.GRASSLAND: frozenset({"grassland", "open"}),
    TerrainBiome.JUNGLE: frozenset({"jungle", "tropical", "warm", "humid"}),
    TerrainBiome.WETLAND: frozenset({"wetlands", "water", "humid"}),
    TerrainBiome.SWAMP: frozenset({"swamp", "wetlands", "water", "humid"}),
    TerrainBiome.DESERT: frozenset({"desert", "arid", "dry", "hot"}),
    TerrainBiome.MOUNTAIN: frozenset({"mountain", "alpine", "cold"}),
    TerrainBiome.TUNDRA: frozenset({"tundra", "arctic", "subarctic", "cold", "winter_ok"}),
    TerrainBiome.BOREAL: frozenset({"boreal", "subarctic", "cold", "forest", "winter_ok"}),
}

BIOME_LABELS = {
    TerrainBiome.FOREST: "forested",
    TerrainBiome.GRASSLAND: "grassland",
    TerrainBiome.JUNGLE: "jungle",
    TerrainBiome.WETLAND: "wetland",
    TerrainBiome.SWAMP: "swamp",
    TerrainBiome.DESERT: "dry desert",
    TerrainBiome.MOUNTAIN: "mountainous",
    TerrainBiome.TUNDRA: "tundra",
    TerrainBiome.BOREAL: "boreal forest",
}

# Decision table thresholds (elevation units, moisture/temperature bytes)
MOUNTAIN_ELEVATION = 64
COLD_TEMPERATURE = 62
BOREAL_MOISTURE = 140


def normalize_tag(raw: str) -> str:
    return raw.strip().lower().replace("-", "_").replace(" ", "_")


def biome_tags(biome: int) -> FrozenSet[str]:
    """Descriptive tags for a biome; unknown values are "mixed"."""
    try:
        return BIOME_TAGS.get(TerrainBiome(biome), frozenset({"mixed"}))
    except ValueError:
        return frozenset({"mixed"})


def biome_label(biome: int) -> str:
    """Human readable biome label."""
    try:
        return BIOME_LABELS.get(TerrainBiome(biome), "mixed terrain")
    except ValueError:
        return "mixed terrain"


def classify_biome(elevation: int, moisture: int, temperature: int) -> TerrainBiome:
    """Classify one cell with the fixed decision table."""
    e, m, t = int(elevation), int(moisture), int(temperature)
    if e >= MOUNTAIN_ELEVATION:
        return TerrainBiome.MOUNTAIN
    if t <= COLD_TEMPERATURE:
        return TerrainBiome.BOREAL if m >= BOREAL_MOISTURE else TerrainBiome.TUNDRA
    if m >= 205 and t >= 160:
        return TerrainBiome.JUNGLE
    if m >= 185:
        return TerrainBiome.WETLAND
    if m >= 168 and t >= 140:
        return TerrainBiome.SWAMP
    if m <= 70 and t >= 150:
        return TerrainBiome.DESERT
    if m <= 95:
        return TerrainBiome.GRASSLAND
    return TerrainBiome.FOREST


def classify_biomes(elevation: np.ndarray, moisture: np.ndarray, temperature: np.ndarray) -> np.ndarray:
    """
    Vectorized classify_biome() over whole grids.

    Conditions are evaluated in table order, first match wins.

    Returns:
        uint8 array of TerrainBiome values
    """
    e = elevation.astype(np.int16)
    m = moisture.astype(np.int16)
    t = temperature.astype(np.int16)
    cold = t <= COLD_TEMPERATURE
    conditions = [
        e >= MOUNTAIN_ELEVATION,
        cold & (m >= BOREAL_MOISTURE),
        cold,
        (m >= 205) & (t >= 160),
        m >= 185,
        (m >= 168) & (t >= 140),
        (m <= 70) & (t >= 150),
        m <= 95,
    ]
    choices = [
        TerrainBiome.MOUNTAIN,
        TerrainBiome.BOREAL,
        TerrainBiome.TUNDRA,
        TerrainBiome.JUNGLE,
        TerrainBiome.WETLAND,
        TerrainBiome.SWAMP,
        TerrainBiome.DESERT,
        TerrainBiome.GRASSLAND,
    ]
    return np.select(conditions, [int(c) for c in choices], default=int(TerrainBiome.FOREST)).astype(np.uint8)


ROUGHNESS_BONUS = {
    TerrainBiome.MOUNTAIN: 3,
    TerrainBiome.SWAMP: 2,
    TerrainBiome.WETLAND: 2,
    TerrainBiome.JUNGLE: 2,
    TerrainBiome.DESERT: 1,
}


def roughness_for_biomes(
    biomes: np.ndarray,
    noise: np.ndarray,
    elevation: np.ndarray,
    scale: Optional[float] = None,
) -> np.ndarray:
    """
    Movement roughness (1-9) from noise, biome bonus and elevation.

    Args:
        biomes: TerrainBiome values
        noise: Roughness noise channel in [0, 1]
        elevation: Cell elevations
        scale: Optional profile multiplier applied after the bonuses

    Returns:
        uint8 array clamped to [1, 9]
    """
    base = np.round(1.0 + noise * 5.0)
    bonus = np.zeros(biomes.shape, dtype=np.float64)
    for biome, extra in ROUGHNESS_BONUS.items():
        bonus[biomes == int(biome)] = extra
    base = base + bonus + (elevation.astype(np.int16) > 75)
    base = np.clip(base, 1, 9)
    if scale is not None:
        base = np.clip(np.round(base * scale), 1, 9)
    return base.astype(np.uint8)
