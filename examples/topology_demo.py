"""
Example generating a calibrated world and printing it as an ASCII map.
"""

import sys

import numpy as np
from py_topo.core import CellFlag, TerrainBiome, biome_label, generate_topology, load_profile, pick_start_cell
from py_topo.core.profile import default_profile
from py_topo.core.stats import percentile

GLYPHS = {
    TerrainBiome.FOREST: "f",
    TerrainBiome.GRASSLAND: ".",
    TerrainBiome.JUNGLE: "j",
    TerrainBiome.WETLAND: ",",
    TerrainBiome.SWAMP: "s",
    TerrainBiome.DESERT: ":",
    TerrainBiome.MOUNTAIN: "^",
    TerrainBiome.TUNDRA: "-",
    TerrainBiome.BOREAL: "b",
}


def main():
    seed = 811
    label = sys.argv[1] if len(sys.argv) > 1 else "temperate_rainforest"
    profile_id = sys.argv[2] if len(sys.argv) > 2 else ""

    profile = load_profile(profile_id) if profile_id else None
    if profile is None:
        profile = default_profile()
    print(f"Generating {label} with profile {profile.id}...")

    grid = generate_topology(seed, label, 72, 36, profile)
    start = pick_start_cell(grid)

    for y in range(grid.height):
        row = []
        for x in range(grid.width):
            cell = grid.cell_at(x, y)
            if (x, y) == start:
                row.append("@")
            elif cell.is_river:
                row.append("~")
            elif cell.is_lake:
                row.append("o")
            elif cell.is_water:
                row.append(" ")
            else:
                row.append(GLYPHS.get(cell.biome, "?"))
        print("".join(row))

    elevation = grid.elevation.astype(np.float64)
    print()
    print("Elevation p10/p50/p90: %.1f/%.1f/%.1f (target %.1f/%.1f/%.1f)" % (
        percentile(elevation, 0.1), percentile(elevation, 0.5), percentile(elevation, 0.9),
        profile.elev_p10, profile.elev_p50, profile.elev_p90,
    ))
    print("River fraction: %.3f (target %.3f)" % (grid.flag_fraction(CellFlag.RIVER), profile.river_density))
    print("Lake fraction: %.3f (target %.3f)" % (grid.flag_fraction(CellFlag.LAKE), profile.lake_coverage))
    print(f"Start cell: {start} ({biome_label(grid.cell_at(*start).biome)})")


if __name__ == "__main__":
    main()
