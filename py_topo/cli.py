"""Command line entry points for profile distillation."""

import argparse
import sys
import time
from pathlib import Path
from typing import List, Optional

import structlog

from .config import get_settings
from .distill.batch import load_manifest, run_batch
from .distill.distiller import DistillOptions, distill, parse_bbox, write_profile
from .exceptions import TopoError
from .log_config import configure_logging

logger = structlog.get_logger()


def _die(message: str) -> int:
    print(message, file=sys.stderr)
    return 1


def distill_main(argv: Optional[List[str]] = None) -> int:
    """Distill one bounding box into a profile file."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Distill a terrain generation profile from real elevation")
    parser.add_argument("--bbox", required=True, help="bbox as minLon,minLat,maxLon,maxLat")
    parser.add_argument("--out", required=True, help="output path for profile JSON")
    parser.add_argument("--id", default="", help="profile id (defaults from output filename)")
    parser.add_argument("--name", default="", help="profile display name")
    parser.add_argument("--cell", type=int, default=settings.default_cell_meters, help="cell size in meters")
    parser.add_argument("--source", default="", help="source note override")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level, settings.log_format)

    if not args.bbox.strip():
        return _die("--bbox is required")
    if not args.out.strip():
        return _die("--out is required")
    try:
        bbox = parse_bbox(args.bbox)
    except TopoError as exc:
        return _die(str(exc))

    profile_id = args.id.strip() or Path(args.out).stem.strip()
    if not profile_id:
        return _die("unable to derive id; set --id")

    deadline = time.monotonic() + settings.distill_timeout_seconds
    try:
        profile = distill(
            DistillOptions(id=profile_id, name=args.name, bbox=bbox, cell_meters=args.cell, source=args.source),
            deadline=deadline,
        )
    except (TopoError, ValueError) as exc:
        return _die(f"generate profile: {exc}")
    try:
        write_profile(args.out, profile)
    except OSError as exc:
        return _die(f"write profile: {exc}")

    print(f"wrote {args.out}")
    print(
        "profile=%s elev(p10/p50/p90)=%.2f/%.2f/%.2f slope(p50/p90)=%.2f/%.2f river=%.3f lake=%.3f"
        % (
            profile.id,
            profile.elev_p10,
            profile.elev_p50,
            profile.elev_p90,
            profile.slope_p50,
            profile.slope_p90,
            profile.river_density,
            profile.lake_coverage,
        )
    )
    return 0


def distill_batch_main(argv: Optional[List[str]] = None) -> int:
    """Distill every location listed in a manifest."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Distill profiles for a manifest of locations")
    parser.add_argument("--manifest", required=True, help="JSON list of {id, name, bbox}")
    parser.add_argument("--out-dir", default=settings.profile_dir, help="profile output directory")
    parser.add_argument("--force", action="store_true", help="regenerate profiles even if JSON exists")
    parser.add_argument("--only", default="", help="generate only a specific profile id")
    parser.add_argument("--cell", type=int, default=settings.default_cell_meters, help="cell size in meters")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level, settings.log_format)

    try:
        jobs = load_manifest(args.manifest)
    except (OSError, ValueError) as exc:
        return _die(f"read manifest: {exc}")

    result = run_batch(
        jobs,
        args.out_dir,
        cell_meters=args.cell,
        force=args.force,
        only=args.only.strip() or None,
        timeout=settings.distill_timeout_seconds,
    )
    return 0 if result.ok else 1


def main() -> None:
    sys.exit(distill_main())


def batch_main() -> None:
    sys.exit(distill_batch_main())


if __name__ == "__main__":
    main()
