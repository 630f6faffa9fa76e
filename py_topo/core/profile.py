"""
Terrain generation profiles.

A profile is a compact statistical fingerprint distilled from a real-world
area (elevation percentiles, slope, ruggedness, drainage and lake coverage).
Runtime generation only ever reads these local JSON records; raw elevation
data is a build-time concern of the distiller.
"""

import os
from pathlib import Path
from typing import Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import get_settings

logger = structlog.get_logger()

RUGGEDNESS_RANGE = (0.05, 3.0)
RIVER_DENSITY_RANGE = (0.001, 0.35)
LAKE_COVERAGE_RANGE = (0.0, 0.35)
SLOPE_P50_RANGE = (0.1, 35.0)
SLOPE_P90_MAX = 55.0


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class GenProfile(BaseModel):
    """Statistical terrain fingerprint for one location."""

    # NaN and Infinity are malformed; normalization cannot order them
    model_config = ConfigDict(allow_inf_nan=False)

    id: str = Field("", description="Location/profile identifier")
    name: str = Field("", description="Display name")
    cell_meters: int = Field(100, description="Target ground size of one cell in meters")
    elev_p10: float = Field(..., description="10th elevation percentile (abstract units)")
    elev_p50: float = Field(..., description="Median elevation (abstract units)")
    elev_p90: float = Field(..., description="90th elevation percentile (abstract units)")
    slope_p50: float = Field(..., description="Median slope in degrees")
    slope_p90: float = Field(..., description="90th slope percentile in degrees")
    ruggedness: float = Field(..., description="Normalized elevation standard deviation")
    river_density: float = Field(..., description="Fraction of cells carrying rivers")
    lake_coverage: float = Field(..., description="Fraction of cells covered by lakes")
    notes: Optional[str] = Field(None, description="Provenance notes")
    source: Optional[str] = Field(None, description="Data source")

    def normalized(self) -> "GenProfile":
        """
        Copy with ordering and range invariants repaired.

        Percentiles are forced into p10 < p50 < p90 with at least one unit
        between neighbours; slope, ruggedness and fractions are clamped.
        """
        p10, p50, p90 = self.elev_p10, self.elev_p50, self.elev_p90
        if p10 > p50 - 1:
            p10 = p50 - 1
        if p90 < p50 + 1:
            p90 = p50 + 1
        slope_p50 = clamp(self.slope_p50, *SLOPE_P50_RANGE)
        slope_p90 = clamp(self.slope_p90, slope_p50 + 0.1, SLOPE_P90_MAX)
        return self.model_copy(
            update={
                "cell_meters": self.cell_meters if self.cell_meters > 0 else 100,
                "elev_p10": p10,
                "elev_p50": p50,
                "elev_p90": p90,
                "slope_p50": slope_p50,
                "slope_p90": slope_p90,
                "ruggedness": clamp(self.ruggedness, *RUGGEDNESS_RANGE),
                "river_density": clamp(self.river_density, *RIVER_DENSITY_RANGE),
                "lake_coverage": clamp(self.lake_coverage, *LAKE_COVERAGE_RANGE),
            }
        )

    def to_json(self) -> str:
        """Indented JSON without unset notes/source, newline terminated."""
        return self.model_dump_json(indent=2, exclude_none=True) + "\n"


def default_profile() -> GenProfile:
    """Fallback profile matching the uncalibrated procedural terrain."""
    return GenProfile(
        id="default_procedural",
        name="Default Procedural Profile",
        cell_meters=100,
        elev_p10=-36,
        elev_p50=-8,
        elev_p90=26,
        slope_p50=3.2,
        slope_p90=9.0,
        ruggedness=0.58,
        river_density=0.055,
        lake_coverage=0.03,
        notes="Fallback profile matching legacy procedural terrain behavior.",
        source="internal default",
    )


class ProfileStore:
    """Read-only access to <profile_dir>/<id>.json profile records."""

    def __init__(self, profile_dir: Optional[Union[str, Path]] = None):
        """
        Args:
            profile_dir: Directory of profile files; defaults to
                Settings.profile_dir (PY_TOPO_PROFILE_DIR) at load time
        """
        self._profile_dir = Path(profile_dir) if profile_dir is not None else None

    @property
    def profile_dir(self) -> Path:
        if self._profile_dir is not None:
            return self._profile_dir
        return Path(get_settings().profile_dir)

    def path_for(self, profile_id: str) -> Path:
        return self.profile_dir / f"{profile_id}.json"

    def load(self, profile_id: str) -> Optional[GenProfile]:
        """
        Load and normalize a profile.

        Returns:
            The normalized profile, or None when the id is blank or the file
            is missing, unreadable or malformed
        """
        profile_id = (profile_id or "").strip()
        if not profile_id or os.sep in profile_id or (os.altsep and os.altsep in profile_id):
            return None
        path = self.path_for(profile_id)
        try:
            blob = path.read_bytes()
        except FileNotFoundError:
            logger.debug("Profile not found", profile_id=profile_id, path=str(path))
            return None
        except OSError as exc:
            logger.warning("Profile unreadable", profile_id=profile_id, path=str(path), error=str(exc))
            return None

        try:
            profile = GenProfile.model_validate_json(blob)
        except ValidationError as exc:
            logger.warning("Profile malformed", profile_id=profile_id, path=str(path), errors=exc.error_count())
            return None

        if not profile.id:
            profile = profile.model_copy(update={"id": profile_id})
        return profile.normalized()

    def load_or_default(self, profile_id: Optional[str]) -> GenProfile:
        """Load a profile, falling back to default_profile()."""
        profile = self.load(profile_id or "")
        if profile is None:
            return default_profile()
        return profile


def load_profile(profile_id: str) -> Optional[GenProfile]:
    """Load a profile from the configured profile directory."""
    return ProfileStore().load(profile_id)
