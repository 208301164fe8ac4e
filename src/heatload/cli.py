"""
Command line entry point.

Usage:
    # One groups file with a treatment column
    heat-load data/dem/site.tif data/groups/groups.gpkg --output out/groups_hli.gpkg

    # Separate openings and reserves files
    heat-load data/dem/site.tif --openings openings.shp --reserves reserves.shp \\
        --output out/groups_hli.gpkg --overwrite

    # Show the execution plan only
    heat-load data/dem/site.tif groups.gpkg --explain
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from src.config import (
    DEFAULT_ID_COLUMN,
    DEFAULT_LOG_LEVEL,
    DEFAULT_OUTPUT_NAME,
    DEFAULT_TREATMENT_COLUMN,
    OUTPUT_DIR,
    SURFACE_CACHE,
)
from src.heatload.pipeline import HeatLoadConfig, HeatLoadPipeline
from src.heatload.summary import (
    hli_surface_summary,
    quartile_orientation_crosstab,
    summarize_by_treatment,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="heat-load",
        description="Compute Heat Load Index, orientation and quartiles for harvest groups",
    )
    parser.add_argument("dem", type=Path, help="Elevation raster in a projected CRS")
    parser.add_argument(
        "groups", type=Path, nargs="?", help="Groups file with id and treatment columns"
    )
    parser.add_argument("--openings", type=Path, help="Groups file of treatment openings")
    parser.add_argument("--reserves", type=Path, help="Groups file of reserves")
    parser.add_argument(
        "--output",
        type=Path,
        default=OUTPUT_DIR / DEFAULT_OUTPUT_NAME,
        help="Output GeoPackage (default: %(default)s)",
    )
    parser.add_argument("--overwrite", action="store_true", help="Recompute even if output exists")
    parser.add_argument("--no-cache", action="store_true", help="Disable the surface cache")
    parser.add_argument("--cache-dir", type=Path, default=SURFACE_CACHE, help="Surface cache dir")
    parser.add_argument("--workers", type=int, default=None, help="Threads for zonal aggregation")
    parser.add_argument(
        "--all-touched", action="store_true", help="Use every cell a polygon touches"
    )
    parser.add_argument("--id-column", default=DEFAULT_ID_COLUMN, help="Group id column name")
    parser.add_argument("--treatment-column", default=DEFAULT_TREATMENT_COLUMN, help="Treatment column name")
    parser.add_argument("--export-rasters", type=Path, help="Write slope/aspect/HLI GeoTIFFs here")
    parser.add_argument("--explain", action="store_true", help="Print the execution plan and exit")
    parser.add_argument("--log-level", default=DEFAULT_LOG_LEVEL, help="Console log level")
    parser.add_argument("--log-file", type=Path, help="Also write DEBUG logs to this file")
    parser.add_argument("--quiet", action="store_true", help="Hide stage progress")
    return parser


def configure_logging(level: str, log_file: Optional[Path] = None) -> None:
    """Console handler at ``level``, optional file handler at DEBUG."""
    handlers: List[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level.upper())
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    handlers.append(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="w")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s: %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)


def _groups_source(args: argparse.Namespace, parser: argparse.ArgumentParser):
    split = {}
    if args.openings:
        split[args.openings] = "Openings"
    if args.reserves:
        split[args.reserves] = "Reserves"

    if args.groups and split:
        parser.error("give either GROUPS or --openings/--reserves, not both")
    if not args.groups and not split:
        parser.error("no groups given: pass GROUPS or --openings/--reserves")
    return args.groups if args.groups else split


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    config = HeatLoadConfig(
        output_path=args.output,
        overwrite=args.overwrite,
        cache_enabled=not args.no_cache,
        cache_dir=args.cache_dir,
        max_workers=args.workers,
        all_touched=args.all_touched,
        id_column=args.id_column,
        treatment_column=args.treatment_column,
        verbose=not args.quiet,
    )
    pipeline = HeatLoadPipeline(config, dem=args.dem, groups=_groups_source(args, parser))

    if args.explain:
        pipeline.explain("classify_groups")
        return 0

    groups = pipeline.run()

    if args.export_rasters:
        pipeline.export_surfaces(args.export_rasters)
        surface = hli_surface_summary(pipeline.compute_surfaces().hli)
        print("\nHLI surface: " + ", ".join(f"{k}={v:.4f}" for k, v in surface.items()))

    with pd.option_context("display.width", 120, "display.max_columns", 20):
        print("\nBy treatment class:")
        print(summarize_by_treatment(groups).round(4).to_string())
        print("\nOverall HLI quartile x orientation class:")
        print(quartile_orientation_crosstab(groups).to_string())

    logger.info(f"Done: {len(groups)} groups -> {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
