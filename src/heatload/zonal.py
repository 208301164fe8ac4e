"""
Zonal aggregation of per-cell surfaces onto group polygons.

For each polygon the covered cells are selected once and every surface is
reduced by median over the selected cells, ignoring missing (NaN) cells.

Cell selection rule:
- default: cells whose centre falls inside the polygon
- if the polygon intersects the raster but no cell centre falls inside it
  (slivers, polygons smaller than a cell), every touched cell is used, so any
  intersecting polygon selects at least one cell
- ``all_touched=True``: every touched cell, always

Latitude is not aggregated from the raster: it is the geographic latitude of
the polygon centroid.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterio import Affine
from rasterio._err import CPLE_BaseError
from rasterio.errors import RasterioError
from rasterio.features import geometry_mask
from rasterio.warp import transform as warp_transform
from shapely.errors import GEOSException
from shapely.geometry import mapping
from tqdm import tqdm

from src.heatload.grid import ElevationGrid
from src.heatload.hli import HeatLoadSurfaces

logger = logging.getLogger(__name__)

# Output columns of aggregate_topography(), in table order
TOPO_COLUMNS = [
    "slope_deg",
    "slope_rad",
    "aspect_deg",
    "aspect_rad",
    "folded_aspect_deg",
    "folded_aspect_rad",
    "latitude_deg",
    "latitude_rad",
    "hli",
    "hli_cells",
]


def geometry_window(
    geometry, transform: Affine, shape: Tuple[int, int]
) -> Optional[Tuple[slice, slice]]:
    """
    Row/column slices of the grid covering the geometry's bounding box.

    Args:
        geometry: Shapely geometry in the grid CRS
        transform: Grid affine transform
        shape: (rows, cols) of the grid

    Returns:
        (row_slice, col_slice) clipped to the grid, or None if the bounding
        box does not overlap the grid
    """
    minx, miny, maxx, maxy = geometry.bounds
    inv = ~transform
    cols_f, rows_f = zip(*(inv * (x, y) for x in (minx, maxx) for y in (miny, maxy)))

    rows, cols = shape
    row0 = max(int(math.floor(min(rows_f))), 0)
    row1 = min(int(math.ceil(max(rows_f))), rows)
    col0 = max(int(math.floor(min(cols_f))), 0)
    col1 = min(int(math.ceil(max(cols_f))), cols)

    # Zero-width boxes (lines/points) still need one cell
    if row1 == row0 and 0 <= row0 < rows:
        row1 = row0 + 1
    if col1 == col0 and 0 <= col0 < cols:
        col1 = col0 + 1

    if row0 >= row1 or col0 >= col1:
        return None
    return slice(row0, row1), slice(col0, col1)


def zonal_mask(
    geometry,
    transform: Affine,
    shape: Tuple[int, int],
    all_touched: bool = False,
) -> Tuple[Optional[Tuple[slice, slice]], np.ndarray]:
    """
    Select the cells covered by a polygon.

    Args:
        geometry: Polygon or MultiPolygon in the grid CRS
        transform: Grid affine transform
        shape: (rows, cols) of the grid
        all_touched: Select every touched cell instead of centre-in-polygon

    Returns:
        (window, mask): window slices into the grid and a boolean mask of the
        window's shape (True = selected). window is None and mask empty when
        the polygon is outside the grid.
    """
    window = geometry_window(geometry, transform, shape)
    if window is None:
        return None, np.zeros((0, 0), dtype=bool)

    row_slice, col_slice = window
    win_shape = (row_slice.stop - row_slice.start, col_slice.stop - col_slice.start)
    win_transform = transform * Affine.translation(col_slice.start, row_slice.start)

    def _mask(touched: bool) -> np.ndarray:
        return geometry_mask(
            [mapping(geometry)],
            out_shape=win_shape,
            transform=win_transform,
            all_touched=touched,
            invert=True,
        )

    mask = _mask(all_touched)
    if not all_touched and not mask.any():
        mask = _mask(True)
    return window, mask


def zonal_values(surface: ElevationGrid, geometry, all_touched: bool = False) -> np.ndarray:
    """
    Finite cell values of ``surface`` covered by ``geometry``.

    Returns:
        1-D array (possibly empty)
    """
    window, mask = zonal_mask(geometry, surface.transform, surface.shape, all_touched)
    if window is None:
        return np.array([], dtype=np.float64)
    values = surface.data[window][mask]
    return values[np.isfinite(values)]


def _median(values: np.ndarray) -> float:
    values = values[np.isfinite(values)]
    if values.size == 0:
        return np.nan
    return float(np.median(values))


def zonal_median(surface: ElevationGrid, geometry, all_touched: bool = False) -> float:
    """Median of covered, non-missing cells; NaN when no cell qualifies."""
    return _median(zonal_values(surface, geometry, all_touched))


def centroid_latitude(geometry, crs, geographic_crs: str = "EPSG:4326") -> float:
    """
    Geographic latitude (degrees) of a polygon's planar centroid.

    Args:
        geometry: Polygon in ``crs``
        crs: Planar CRS of the geometry
        geographic_crs: Geographic CRS for the latitude (default: WGS84)
    """
    centroid = geometry.centroid
    if centroid.is_empty:
        return np.nan
    _, lats = warp_transform(crs, geographic_crs, [centroid.x], [centroid.y])
    return float(lats[0])


def _missing_record() -> Dict[str, float]:
    record = {col: np.nan for col in TOPO_COLUMNS}
    record["hli_cells"] = 0
    return record


def polygon_topography(
    geometry,
    surfaces: HeatLoadSurfaces,
    all_touched: bool = False,
    geographic_crs: str = "EPSG:4326",
) -> Dict[str, float]:
    """
    Aggregate all surfaces for one polygon.

    The polygon record is all-missing unless at least one selected cell has a
    defined HLI, so a row never carries HLI without slope or the reverse.

    Returns:
        Dict keyed by TOPO_COLUMNS
    """
    if geometry is None or geometry.is_empty:
        return _missing_record()

    grid = surfaces.grid
    window, mask = zonal_mask(geometry, grid.transform, grid.shape, all_touched)
    if window is None or not mask.any():
        return _missing_record()

    arrays = surfaces.as_dict()
    hli_values = arrays["hli"][window][mask]
    valid = np.isfinite(hli_values)
    if not valid.any():
        return _missing_record()

    slope = _median(arrays["slope"][window][mask][valid])
    aspect = _median(arrays["aspect"][window][mask][valid])
    folded = _median(arrays["folded_aspect"][window][mask][valid])
    hli = _median(hli_values[valid])
    latitude = centroid_latitude(geometry, grid.crs, geographic_crs)

    return {
        "slope_deg": slope,
        "slope_rad": math.radians(slope),
        "aspect_deg": aspect,
        "aspect_rad": math.radians(aspect),
        "folded_aspect_deg": folded,
        "folded_aspect_rad": math.radians(folded),
        "latitude_deg": latitude,
        "latitude_rad": math.radians(latitude),
        "hli": hli,
        "hli_cells": int(valid.sum()),
    }


def aggregate_topography(
    groups: gpd.GeoDataFrame,
    surfaces: HeatLoadSurfaces,
    *,
    all_touched: bool = False,
    geographic_crs: str = "EPSG:4326",
    max_workers: Optional[int] = None,
    progress: bool = True,
) -> pd.DataFrame:
    """
    Zonal medians of every surface for every group.

    Polygons are processed concurrently; each worker reads the shared surfaces
    and writes only its own record. A polygon that is empty, lies outside the
    grid or over missing cells, or raises a geometry or GDAL error gets an
    all-missing record and the batch continues.

    Args:
        groups: Group polygons in the surfaces' CRS
        surfaces: Co-registered per-cell surfaces
        all_touched: Cell selection rule (see module docstring)
        geographic_crs: CRS for centroid latitude
        max_workers: Thread count (None = executor default)
        progress: Show a tqdm progress bar

    Returns:
        DataFrame with TOPO_COLUMNS, indexed like ``groups``
    """
    logger.info(f"Aggregating {len(surfaces.as_dict())} surfaces over {len(groups)} groups")

    def _work(idx, geometry):
        try:
            return idx, polygon_topography(geometry, surfaces, all_touched, geographic_crs)
        except (ValueError, GEOSException, RasterioError, CPLE_BaseError) as e:
            logger.warning(f"Zonal aggregation failed for row {idx}: {e}")
            return idx, _missing_record()

    records: Dict[int, Dict[str, float]] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(_work, idx, geom) for idx, geom in groups.geometry.items()]
        with tqdm(total=len(futures), desc="Zonal aggregation", disable=not progress) as pbar:
            for future in as_completed(futures):
                idx, record = future.result()
                records[idx] = record
                pbar.update(1)

    table = pd.DataFrame.from_dict(records, orient="index", columns=TOPO_COLUMNS)
    table = table.reindex(groups.index)
    table["hli_cells"] = table["hli_cells"].fillna(0).astype("int64")

    n_missing = int(table["hli"].isna().sum())
    if n_missing:
        logger.warning(f"{n_missing}/{len(table)} groups have no valid HLI cells")
    logger.info(f"  Median HLI across groups: {table['hli'].median():.4f}")
    return table
