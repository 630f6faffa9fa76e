"""
Climate handling for topology generation.

This module implements:
- Biome label normalization and climate biases (temperature/moisture)
- Latitude band temperature
- Climate rules that exclude biome classifications (e.g. no desert in the arctic)
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Sequence, Tuple

import numpy as np
import structlog

from .biomes import TerrainBiome, biome_tags, normalize_tag

logger = structlog.get_logger()

ARCTIC_TOKENS = frozenset({"arctic", "subarctic", "tundra", "polar", "glacier", "ice", "icefield", "frozen"})
DRY_TOKENS = frozenset({"desert", "arid", "dry", "steppe", "badlands", "dunes", "outback"})
TROPICAL_TOKENS = frozenset({"tropical", "jungle", "amazon", "monsoon", "mangrove", "equatorial"})


def normalize_biome_label(label: Optional[str]) -> str:
    """Lowercase snake_case form of a free-text biome label."""
    if not label:
        return ""
    return normalize_tag(label)


def _tokens(label: str) -> FrozenSet[str]:
    return frozenset(part for part in label.split("_") if part)


def is_arctic_label(label: str) -> bool:
    return bool(_tokens(label) & ARCTIC_TOKENS)


def is_dry_label(label: str) -> bool:
    return bool(_tokens(label) & DRY_TOKENS)


def is_tropical_wet_label(label: str) -> bool:
    tokens = _tokens(label)
    if tokens & TROPICAL_TOKENS:
        return True
    return "rainforest" in tokens and "temperate" not in tokens


def is_coastal_label(label: str) -> bool:
    """Labels whose grids get a forced water ring."""
    return "coast" in label or "island" in label


def is_wet_margin_label(label: str) -> bool:
    return is_coastal_label(label) or "delta" in label


@dataclass(frozen=True)
class ClimateBias:
    """Label driven offsets applied to the [0, 1] climate channels."""

    temperature: float = 0.0
    moisture: float = 0.0


def climate_bias_for_label(label: str) -> ClimateBias:
    """
    Temperature/moisture bias for a normalized biome label.

    Arctic labels run colder, dry labels warmer and drier, tropical labels
    warmer and wetter, and coast/island/delta labels wetter.
    """
    temperature = 0.0
    moisture = 0.0
    if is_arctic_label(label):
        temperature -= 0.22
    if is_dry_label(label):
        temperature += 0.09
        moisture -= 0.16
    if is_tropical_wet_label(label):
        temperature += 0.16
        moisture += 0.2
    if is_wet_margin_label(label):
        moisture += 0.12
    return ClimateBias(temperature=temperature, moisture=moisture)


def latitude_temperature(height: int) -> np.ndarray:
    """
    Per-row temperature band peaking at the vertical midline.

    Returns:
        (height, 1) array in [0.65, 1.0]
    """
    lat = np.arange(height, dtype=np.float64) / float(max(1, height - 1))
    return (1.0 - np.abs(lat - 0.5) * 0.7)[:, np.newaxis]


@dataclass(frozen=True)
class ClimateRules:
    """
    Biome constraints for a location's climate.

    A biome is allowed when none of its tags are disallowed and, if
    allowed_biomes is non-empty, it is listed there.
    """

    name: str = ""
    allowed_biomes: Tuple[TerrainBiome, ...] = ()
    disallow_tags: FrozenSet[str] = field(default_factory=frozenset)

    def allows(self, biome: int) -> bool:
        tags = biome_tags(biome)
        disallowed = {normalize_tag(tag) for tag in self.disallow_tags}
        if tags & disallowed:
            return False
        if not self.allowed_biomes:
            return True
        return int(biome) in {int(b) for b in self.allowed_biomes}


_COLD_FIRST = (
    TerrainBiome.TUNDRA,
    TerrainBiome.BOREAL,
    TerrainBiome.MOUNTAIN,
    TerrainBiome.WETLAND,
    TerrainBiome.SWAMP,
    TerrainBiome.FOREST,
    TerrainBiome.GRASSLAND,
)
_WARM_FIRST = (
    TerrainBiome.GRASSLAND,
    TerrainBiome.FOREST,
    TerrainBiome.WETLAND,
    TerrainBiome.MOUNTAIN,
    TerrainBiome.BOREAL,
    TerrainBiome.TUNDRA,
)
_WET_FIRST = (
    TerrainBiome.WETLAND,
    TerrainBiome.SWAMP,
    TerrainBiome.BOREAL,
    TerrainBiome.FOREST,
    TerrainBiome.TUNDRA,
    TerrainBiome.MOUNTAIN,
)


def _replacement_candidates(warm: bool, wet: bool) -> Sequence[TerrainBiome]:
    if wet:
        return _WET_FIRST
    if warm:
        return _WARM_FIRST
    return _COLD_FIRST


def constrain_biome(rules: Optional[ClimateRules], biome: int, moisture: int, temperature: int) -> int:
    """
    Replace a biome the climate disallows with the first allowed candidate.

    Candidate order depends on whether the cell is warm (temperature > 145)
    or wet (moisture > 178); wetness wins.
    """
    if rules is None or rules.allows(biome):
        return int(biome)
    for candidate in _replacement_candidates(int(temperature) > 145, int(moisture) > 178):
        if rules.allows(candidate):
            return int(candidate)
    if rules.allowed_biomes:
        return int(rules.allowed_biomes[0])
    return int(biome)


def constrain_biomes(
    rules: Optional[ClimateRules],
    biomes: np.ndarray,
    moisture: np.ndarray,
    temperature: np.ndarray,
) -> np.ndarray:
    """
    Vectorized constrain_biome().

    The replacement only depends on (biome, warm, wet), so a lookup table
    over those is built once and indexed per cell.
    """
    if rules is None:
        return biomes
    n_biomes = max(int(b) for b in TerrainBiome) + 1
    table = np.zeros((n_biomes, 2, 2), dtype=np.uint8)
    for b in range(n_biomes):
        for warm in (0, 1):
            for wet in (0, 1):
                # Representative byte values on each side of the thresholds
                table[b, warm, wet] = constrain_biome(rules, b, 255 if wet else 0, 255 if warm else 0)
    warm_idx = (temperature.astype(np.int16) > 145).astype(np.intp)
    wet_idx = (moisture.astype(np.int16) > 178).astype(np.intp)
    return table[biomes.astype(np.intp), warm_idx, wet_idx]


def climate_for_label(label: Optional[str]) -> Optional[ClimateRules]:
    """
    Default climate rules implied by a biome label.

    Returns:
        ClimateRules, or None when the label imposes no constraint
    """
    norm = normalize_biome_label(label)
    disallow = set()
    if is_arctic_label(norm):
        disallow |= {"hot", "tropical", "arid"}
    if is_tropical_wet_label(norm):
        disallow |= {"arctic", "subarctic"}
    if is_dry_label(norm):
        disallow |= {"arctic"}
    if not disallow:
        return None
    logger.debug("Climate rules from label", label=norm, disallow=sorted(disallow))
    return ClimateRules(name=norm, disallow_tags=frozenset(disallow))
