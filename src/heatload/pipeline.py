"""
Heat load pipeline: DEM -> slope/aspect -> HLI -> per-group attributes.

Stages run in dependency order, each at most once per pipeline instance:

1. load_dem: Read the elevation grid
2. load_groups: Read group polygons and align them to the DEM CRS
3. compute_surfaces: Slope, aspect, folded aspect, latitude and HLI rasters (cached)
4. aggregate_groups: Zonal medians per group (parallel over polygons)
5. orient_groups: Bounding-box orientation index per group
6. classify_groups: HLI quartiles within treatment class and overall

Example:
    from src.heatload.pipeline import HeatLoadConfig, HeatLoadPipeline

    config = HeatLoadConfig(output_path="out/groups_hli.gpkg")
    pipeline = HeatLoadPipeline(config, dem="data/dem/site.tif", groups="data/groups/groups.gpkg")

    # Show execution plan
    pipeline.explain("classify_groups")

    groups = pipeline.run()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import geopandas as gpd
import pandas as pd

from src.config import DEFAULT_GEOGRAPHIC_CRS, DEFAULT_ID_COLUMN, DEFAULT_TREATMENT_COLUMN
from src.heatload.cache import (
    ArtifactCache,
    read_groups_artifact,
    should_recompute,
    write_groups_artifact,
)
from src.heatload.classify import QUARTILE_COLUMNS, classify_quartiles
from src.heatload.grid import ElevationGrid, load_elevation_grid, save_raster
from src.heatload.groups import (
    CRSMismatchError,
    check_geometry_mode,
    load_group_files,
    load_groups,
    prepare_groups,
    reconcile_crs,
)
from src.heatload.hli import HeatLoadSurfaces, build_heat_load_surfaces
from src.heatload.orientation import compute_orientation
from src.heatload.terrain import cell_latitudes, compute_slope_aspect
from src.heatload.zonal import aggregate_topography

logger = logging.getLogger(__name__)


@dataclass
class HeatLoadConfig:
    """Run-time settings for one pipeline invocation."""

    output_path: Optional[Path] = None
    """Where the enriched groups are written; None skips writing."""

    overwrite: bool = False
    """Recompute even if ``output_path`` already exists."""

    cache_enabled: bool = True
    """Cache per-cell surfaces between runs."""

    cache_dir: Optional[Path] = None
    """Surface cache directory (default: .hli_cache/ in the working directory)."""

    max_workers: Optional[int] = None
    """Threads for per-polygon aggregation (None = executor default)."""

    all_touched: bool = False
    """Select every touched cell instead of centre-in-polygon."""

    geometry_mode: str = "planar"
    """Geometry model for area/centroid/bounds; only "planar" is supported."""

    geographic_crs: str = DEFAULT_GEOGRAPHIC_CRS
    """Geographic CRS used for latitude."""

    id_column: str = DEFAULT_ID_COLUMN
    treatment_column: str = DEFAULT_TREATMENT_COLUMN

    verbose: bool = True
    """Log stage progress and show progress bars."""

    def __post_init__(self):
        if self.output_path is not None:
            self.output_path = Path(self.output_path)
        if self.cache_dir is not None:
            self.cache_dir = Path(self.cache_dir)
        check_geometry_mode(self.geometry_mode)


@dataclass
class TaskState:
    """Represents execution state of a stage."""

    name: str
    depends_on: List[str] = field(default_factory=list)
    cached: bool = False
    computed: bool = False
    result: Any = None


class HeatLoadPipeline:
    """
    Dependency graph executor for the heat load computation.

    Each stage method returns its result and memoizes it, so calling a late
    stage runs everything it depends on exactly once. Surfaces are read-only
    once computed and are shared by all polygon workers.
    """

    def __init__(
        self,
        config: Optional[HeatLoadConfig] = None,
        *,
        dem: ElevationGrid | Path | str | None = None,
        groups: gpd.GeoDataFrame | Dict[str, str] | Path | str | None = None,
    ):
        """
        Initialize heat load pipeline.

        Args:
            config: Run settings (defaults if None)
            dem: Elevation grid, or path to a raster file
            groups: Group polygons (raw or prepared), a path to a vector file,
                or a mapping of single-class file paths to treatment class
        """
        self.config = config or HeatLoadConfig()
        self.dem_source = dem
        self.groups_source = groups

        self.cache = ArtifactCache(cache_dir=self.config.cache_dir, enabled=self.config.cache_enabled)
        self.tasks: Dict[str, TaskState] = {}

        self._task_graph = {
            "load_dem": {
                "depends_on": [],
                "description": "Read elevation grid",
            },
            "load_groups": {
                "depends_on": ["load_dem"],
                "description": "Read group polygons and align CRS to the DEM",
            },
            "compute_surfaces": {
                "depends_on": ["load_dem"],
                "description": "Slope, aspect, latitude and HLI rasters",
            },
            "aggregate_groups": {
                "depends_on": ["load_groups", "compute_surfaces"],
                "description": "Zonal medians per group",
            },
            "orient_groups": {
                "depends_on": ["load_groups"],
                "description": "Bounding-box orientation index per group",
            },
            "classify_groups": {
                "depends_on": ["aggregate_groups", "orient_groups"],
                "description": "HLI quartiles within class and overall",
            },
        }

    def _log(self, msg: str, *args, level: str = "info"):
        """Log message if verbose with lazy formatting."""
        if self.config.verbose or level in ("warn", "error"):
            if level == "info":
                logger.info(msg, *args)
            elif level == "debug":
                logger.debug(msg, *args)
            elif level == "warn":
                logger.warning(msg, *args)
            elif level == "error":
                logger.error(msg, *args)

    def _done(self, name: str) -> bool:
        return name in self.tasks and self.tasks[name].computed

    def _record(self, name: str, result: Any, cached: bool = False) -> Any:
        self.tasks[name] = TaskState(
            name=name,
            depends_on=list(self._task_graph[name]["depends_on"]),
            cached=cached,
            computed=True,
            result=result,
        )
        return result

    # ===== Pipeline Stages =====

    def load_dem(self) -> ElevationGrid:
        """Stage: Load the elevation grid."""
        if self._done("load_dem"):
            return self.tasks["load_dem"].result

        if self.dem_source is None:
            raise ValueError("No DEM given")
        if isinstance(self.dem_source, ElevationGrid):
            grid = self.dem_source
            self._log("[1/6] Using in-memory DEM %s", grid.shape)
        else:
            self._log("[1/6] Loading DEM from %s", self.dem_source)
            grid = load_elevation_grid(self.dem_source)

        if grid.crs is None:
            raise CRSMismatchError("DEM has no CRS; a projected CRS is required")
        return self._record("load_dem", grid)

    def load_groups(self) -> gpd.GeoDataFrame:
        """
        Stage: Load and validate groups, then align them to the DEM CRS.

        CRS problems are raised here, before any aggregation starts.
        """
        if self._done("load_groups"):
            return self.tasks["load_groups"].result

        grid = self.load_dem()
        cfg = self.config

        if self.groups_source is None:
            raise ValueError("No groups given")
        if isinstance(self.groups_source, gpd.GeoDataFrame):
            self._log("[2/6] Preparing %d in-memory groups", len(self.groups_source))
            groups = prepare_groups(
                self.groups_source,
                id_column=cfg.id_column,
                treatment_column=cfg.treatment_column,
                geometry_mode=cfg.geometry_mode,
                target_crs=grid.crs,
            )
        elif isinstance(self.groups_source, dict):
            self._log("[2/6] Loading groups from %d files", len(self.groups_source))
            groups = load_group_files(
                self.groups_source,
                id_column=cfg.id_column,
                geometry_mode=cfg.geometry_mode,
                target_crs=grid.crs,
            )
        else:
            self._log("[2/6] Loading groups from %s", self.groups_source)
            groups = load_groups(
                self.groups_source,
                id_column=cfg.id_column,
                treatment_column=cfg.treatment_column,
                geometry_mode=cfg.geometry_mode,
                target_crs=grid.crs,
            )

        groups = reconcile_crs(groups, grid.crs)
        return self._record("load_groups", groups)

    def compute_surfaces(self) -> HeatLoadSurfaces:
        """Stage: Slope/aspect, per-cell latitude and HLI, reusing cached surfaces."""
        if self._done("compute_surfaces"):
            return self.tasks["compute_surfaces"].result

        grid = self.load_dem()
        self._log("[3/6] Computing slope/aspect and HLI for %s cells", grid.data.size)

        source_hash = self.cache.compute_source_hash(
            grid, geographic_crs=self.config.geographic_crs
        )
        if not self.config.overwrite:
            cached = self.cache.load_surfaces(source_hash)
            if cached is not None:
                self._log("      [Cache HIT] Loaded surfaces")
                return self._record("compute_surfaces", cached, cached=True)

        terrain = compute_slope_aspect(grid)
        latitude = cell_latitudes(grid, self.config.geographic_crs)
        surfaces = build_heat_load_surfaces(terrain, latitude)
        self._log("      [Fresh] Computed surfaces")

        try:
            self.cache.save_surfaces(surfaces, source_hash)
        except (OSError, ValueError) as e:
            self._log("      [Cache] Failed to save: %s", e, level="warn")

        return self._record("compute_surfaces", surfaces)

    def aggregate_groups(self) -> pd.DataFrame:
        """Stage: Zonal medians of every surface per group."""
        if self._done("aggregate_groups"):
            return self.tasks["aggregate_groups"].result

        groups = self.load_groups()
        surfaces = self.compute_surfaces()
        self._log("[4/6] Aggregating surfaces over %d groups", len(groups))

        topo = aggregate_topography(
            groups,
            surfaces,
            all_touched=self.config.all_touched,
            geographic_crs=self.config.geographic_crs,
            max_workers=self.config.max_workers,
            progress=self.config.verbose,
        )
        return self._record("aggregate_groups", topo)

    def orient_groups(self) -> pd.DataFrame:
        """Stage: Orientation index and class per group."""
        if self._done("orient_groups"):
            return self.tasks["orient_groups"].result

        groups = self.load_groups()
        self._log("[5/6] Computing orientation for %d groups", len(groups))
        return self._record("orient_groups", compute_orientation(groups))

    def classify_groups(self) -> gpd.GeoDataFrame:
        """
        Stage: Assemble the enriched table and assign HLI quartiles.

        Quartiles need every group's HLI, so this waits for aggregation of the
        whole collection.
        """
        if self._done("classify_groups"):
            return self.tasks["classify_groups"].result

        groups = self.load_groups()
        topo = self.aggregate_groups()
        orientation = self.orient_groups()
        self._log("[6/6] Classifying HLI quartiles")

        derived = set(topo.columns) | set(orientation.columns) | set(QUARTILE_COLUMNS)
        stale = [c for c in groups.columns if c in derived]
        if stale:
            self._log("      Replacing input columns %s", stale, level="warn")
        enriched = groups.drop(columns=stale).join(topo).join(orientation)
        quartiles = classify_quartiles(enriched)
        enriched = enriched.join(quartiles)

        geom_col = enriched.geometry.name
        columns = [c for c in enriched.columns if c != geom_col] + [geom_col]
        enriched = gpd.GeoDataFrame(enriched[columns], geometry=geom_col, crs=groups.crs)
        return self._record("classify_groups", enriched)

    # ===== Public API =====

    def run(self) -> gpd.GeoDataFrame:
        """
        Run the full pipeline, or reload the prior result.

        If ``output_path`` exists and ``overwrite`` is False the stored table
        is returned without recomputation.

        Returns:
            Enriched group GeoDataFrame
        """
        output_path = self.config.output_path
        if not should_recompute(output_path, self.config.overwrite):
            self._log("Reusing existing output %s (overwrite=False)", output_path)
            return read_groups_artifact(output_path)

        enriched = self.classify_groups()
        if output_path is not None:
            write_groups_artifact(enriched, output_path)
        return enriched

    def export_surfaces(self, directory: Path | str) -> Dict[str, Path]:
        """Write slope, aspect, folded aspect and HLI rasters as GeoTIFFs."""
        directory = Path(directory)
        surfaces = self.compute_surfaces()
        written = {}
        for name in ("slope", "aspect", "folded_aspect", "hli"):
            written[name] = save_raster(getattr(surfaces, name), directory / f"{name}.tif")
        self._log("Exported %d surfaces to %s", len(written), directory)
        return written

    def explain(self, task_name: str) -> None:
        """
        Explain what would execute to build a stage.

        Shows:
        - Stage dependencies
        - Execution order
        - Whether the output file would short-circuit the run
        """
        if task_name not in self._task_graph:
            print(f"\nUnknown task: {task_name}")
            print(f"Available tasks: {', '.join(self._task_graph.keys())}")
            return

        print("\n" + "=" * 70)
        print(f"Execution Plan for: {task_name}")
        print("=" * 70 + "\n")

        task_info = self._task_graph[task_name]
        print(f"Task: {task_name}")
        print(f"Description: {task_info['description']}")

        if task_info["depends_on"]:
            print("\nDependencies:")
            for dep in task_info["depends_on"]:
                print(f"  - {dep}")

        order = self._compute_execution_order(task_name)
        print("\nExecution order (topological):")
        for i, task in enumerate(order, 1):
            state = "done" if self._done(task) else "pending"
            print(f"  {i}. {task} [{state}]")

        if not should_recompute(self.config.output_path, self.config.overwrite):
            print(f"\nOutput {self.config.output_path} exists: run() will reload it")

    def _compute_execution_order(self, task_name: str) -> List[str]:
        """Topologically sort stages by dependency."""
        visited = set()
        order = []

        def visit(task: str):
            if task in visited:
                return
            visited.add(task)

            task_info = self._task_graph.get(task)
            if task_info:
                for dep in task_info["depends_on"]:
                    visit(dep)

            order.append(task)

        visit(task_name)
        return order

    def cache_stats(self) -> Dict:
        """Get cache statistics."""
        return self.cache.get_cache_stats()

    def clear_cache(self) -> int:
        """Clear cached surfaces."""
        deleted = self.cache.clear_cache()
        self._log("Cleared %d cache files", deleted)
        return deleted
