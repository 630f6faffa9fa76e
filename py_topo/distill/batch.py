"""
Batch distillation over a manifest of locations.
"""

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import structlog

from ..exceptions import TopoError
from .distiller import DistillOptions, distill, normalize_bbox, write_profile

logger = structlog.get_logger()


@dataclass(frozen=True)
class LocationJob:
    """One location to distill."""

    id: str
    name: str
    bbox: Sequence[float]


@dataclass
class BatchResult:
    """Outcome counts of a batch run."""

    wrote: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return f"done wrote={len(self.wrote)} skipped={len(self.skipped)} failed={len(self.failed)}"


def load_manifest(path: Union[str, Path]) -> List[LocationJob]:
    """
    Read a JSON list of {"id", "name", "bbox": [minLon, minLat, maxLon, maxLat]}.

    Raises:
        ValueError: The manifest is not a list of location objects
    """
    entries = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(entries, list):
        raise ValueError("manifest must be a JSON list of locations")
    jobs = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict) or "id" not in entry or "bbox" not in entry:
            raise ValueError(f"manifest entry {i} needs id and bbox")
        jobs.append(LocationJob(id=str(entry["id"]), name=str(entry.get("name") or ""), bbox=list(entry["bbox"])))
    return jobs


def plan_jobs(jobs: Sequence[LocationJob], only: Optional[str] = None) -> List[LocationJob]:
    """Drop blank and duplicate ids (first wins), filter by only, sort by id."""
    by_id: Dict[str, LocationJob] = {}
    for job in jobs:
        job_id = job.id.strip()
        if not job_id or (only and only != job_id) or job_id in by_id:
            continue
        by_id[job_id] = LocationJob(id=job_id, name=job.name.strip() or job_id, bbox=job.bbox)
    return [by_id[job_id] for job_id in sorted(by_id)]


def run_batch(
    jobs: Sequence[LocationJob],
    out_dir: Union[str, Path],
    cell_meters: int = 0,
    force: bool = False,
    only: Optional[str] = None,
    cache_root: Optional[Union[str, Path]] = None,
    timeout: Optional[float] = None,
    echo: Callable[[str], None] = print,
) -> BatchResult:
    """
    Distill one profile per location into <out_dir>/<id>.json.

    Existing files are skipped unless force is set. A failing location is
    reported and the batch moves on to the next one.

    Args:
        jobs: Locations to distill
        out_dir: Profile output directory
        cell_meters: Cell size for every job (0 for the configured default)
        force: Regenerate profiles that already exist
        only: Restrict to a single id
        cache_root: Tile/sample cache override
        timeout: Per-location deadline in seconds
        echo: Progress line sink
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    result = BatchResult()

    planned = plan_jobs(jobs, only)
    if not planned:
        echo("no profiles to generate")
        return result

    for job in planned:
        out_path = out_dir / f"{job.id}.json"
        if not force and out_path.exists():
            echo(f"skip {out_path} (exists)")
            result.skipped.append(job.id)
            continue

        deadline = time.monotonic() + timeout if timeout else None
        try:
            bbox = normalize_bbox(job.bbox)
            profile = distill(
                DistillOptions(id=job.id, name=job.name, bbox=bbox, cell_meters=cell_meters, cache_root=cache_root),
                deadline=deadline,
            )
        except (TopoError, ValueError) as exc:
            echo(f"fail {job.id}: {exc}")
            logger.warning("Profile distillation failed", profile_id=job.id, error=str(exc))
            result.failed[job.id] = str(exc)
            continue

        try:
            write_profile(out_path, profile)
        except OSError as exc:
            echo(f"fail write {out_path}: {exc}")
            result.failed[job.id] = str(exc)
            continue
        echo(f"wrote {out_path}")
        result.wrote.append(job.id)

    echo(result.summary())
    return result
