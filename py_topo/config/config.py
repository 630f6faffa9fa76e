import os
from pathlib import Path

from dotenv import dotenv_values
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env for local/dev environments only where values are missing from the environment
BASE_DIR = Path(__file__).resolve().parent.parent.parent
env_file = BASE_DIR / ".env"

if env_file.exists():
    file_env = dotenv_values(env_file)
    missing_keys = {k: v for k, v in file_env.items() if k not in os.environ and v is not None}
    for k, v in missing_keys.items():
        os.environ[k] = v


class Settings(BaseSettings):
    """Application settings pulled from PY_TOPO_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="PY_TOPO_", extra="ignore")

    # Profile store
    profile_dir: str = Field(default=os.path.join("assets", "profiles"), description="Directory holding <id>.json profiles")

    # Distiller caches and remote source
    cache_root: str = Field(default=os.path.join(".cache", "genprofile"), description="Root for tile and sample caches")
    tile_url_template: str = Field(
        default="https://s3.amazonaws.com/elevation-tiles-prod/terrarium/{z}/{x}/{y}.png",
        description="Terrarium tile endpoint",
    )
    user_agent: str = Field(default="py-topo-distill/1.0", description="User-Agent for tile requests")
    fetch_attempts: int = Field(default=4, ge=1, description="Attempts per tile before giving up")
    fetch_timeout_seconds: float = Field(default=20.0, gt=0, description="Per-request timeout")
    fetch_backoff_seconds: float = Field(default=0.25, ge=0, description="Base backoff between attempts")
    distill_timeout_seconds: float = Field(default=180.0, gt=0, description="Deadline for one distillation run")

    # Distillation defaults
    sample_cap: int = Field(default=34, ge=14, description="Maximum samples per bbox axis")
    default_cell_meters: int = Field(default=100, gt=0, description="Default cell size in meters")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="plain", description="Logging format (plain or json)")


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()


settings = get_settings()
