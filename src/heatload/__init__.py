"""
Heat Load Index analysis for forest harvest groups.

Core functionality:
- ElevationGrid for DEM handling
- Slope/aspect extraction and the McCune & Keon heat load index
- Zonal medians of per-cell surfaces over group polygons
- Orientation index and quartile classification of groups
- HeatLoadPipeline to run it all with artifact caching
"""

from .grid import ElevationGrid, load_elevation_grid, save_raster
from .terrain import compute_slope_aspect, cell_latitudes
from .hli import fold_aspect, heat_load_index, compute_hli_surface
from .zonal import zonal_median, aggregate_topography
from .orientation import orientation_index, classify_orientation, compute_orientation
from .classify import percent_rank, quartile_label, classify_quartiles
from .groups import CRSMismatchError, load_groups, prepare_groups
from .pipeline import HeatLoadConfig, HeatLoadPipeline

__all__ = [
    "ElevationGrid",
    "load_elevation_grid",
    "save_raster",
    "compute_slope_aspect",
    "cell_latitudes",
    "fold_aspect",
    "heat_load_index",
    "compute_hli_surface",
    "zonal_median",
    "aggregate_topography",
    "orientation_index",
    "classify_orientation",
    "compute_orientation",
    "percent_rank",
    "quartile_label",
    "classify_quartiles",
    "CRSMismatchError",
    "load_groups",
    "prepare_groups",
    "HeatLoadConfig",
    "HeatLoadPipeline",
]
