"""
Slope and aspect extraction from elevation grids.

Uses Horn's method (3x3 weighted finite differences), the standard GIS
technique also used by GDAL and terra. A cell gets a value only when its full
3x3 neighbourhood is defined, so raster edges and cells next to missing
elevation come out as NaN and stay NaN in every downstream surface.

Aspect convention: compass bearing of the downslope direction in degrees,
0=North, 90=East, 180=South, 270=West, range [0, 360). Perfectly flat cells
(zero gradient) have no aspect and are NaN.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from rasterio.warp import transform as warp_transform
from scipy import ndimage

from src.heatload.grid import ElevationGrid

logger = logging.getLogger(__name__)

# Horn kernels, applied with correlate (no kernel flip).
# Column kernel gives 8 * dz/dcol, row kernel gives 8 * dz/drow.
HORN_COL_KERNEL = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64)
HORN_ROW_KERNEL = np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.float64)


@dataclass
class TerrainSurfaces:
    """Slope and aspect surfaces co-registered with their source DEM."""

    elevation: ElevationGrid
    """Source elevation grid."""

    slope: ElevationGrid
    """Slope in degrees, [0, 90]."""

    aspect: ElevationGrid
    """Aspect in degrees, [0, 360), NaN for flat cells."""

    @property
    def flat(self) -> np.ndarray:
        """Boolean mask of cells with a defined, exactly zero slope."""
        return self.slope.data == 0


def full_neighbourhood_mask(data: np.ndarray) -> np.ndarray:
    """
    Cells whose entire 3x3 neighbourhood lies inside the grid and is finite.

    Args:
        data: 2-D array with NaN for missing cells

    Returns:
        Boolean mask, True where a 3x3 stencil is fully defined
    """
    finite = np.isfinite(data).astype(np.uint8)
    return ndimage.minimum_filter(finite, size=3, mode="constant", cval=0) == 1


def horn_gradients(grid: ElevationGrid) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute planar elevation gradients with Horn's method.

    The signed transform coefficients are used, so the result is expressed in
    the CRS axes regardless of whether rows run north-to-south or the reverse.

    Args:
        grid: Elevation grid in a projected CRS

    Returns:
        (dz_dx, dz_dy): rise per CRS unit towards +x (east) and +y (north),
        NaN where the 3x3 neighbourhood is incomplete
    """
    valid = full_neighbourhood_mask(grid.data)
    filled = np.where(np.isfinite(grid.data), grid.data, 0.0)

    dz_dcol = ndimage.correlate(filled, HORN_COL_KERNEL, mode="nearest") / 8.0
    dz_drow = ndimage.correlate(filled, HORN_ROW_KERNEL, mode="nearest") / 8.0

    dz_dx = dz_dcol / grid.transform.a
    dz_dy = dz_drow / grid.transform.e

    dz_dx[~valid] = np.nan
    dz_dy[~valid] = np.nan
    return dz_dx, dz_dy


def slope_aspect_from_gradients(
    dz_dx: np.ndarray, dz_dy: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert planar gradients to slope and aspect in degrees.

    Args:
        dz_dx: Rise per unit towards east
        dz_dy: Rise per unit towards north

    Returns:
        (slope_deg, aspect_deg). Aspect is NaN where the gradient is zero.
    """
    slope_deg = np.degrees(np.arctan(np.hypot(dz_dx, dz_dy)))

    # Downslope vector is (-dz_dx, -dz_dy); bearing measured clockwise from north
    aspect_deg = np.degrees(np.arctan2(-dz_dx, -dz_dy)) % 360.0
    aspect_deg[aspect_deg >= 360.0] = 0.0
    aspect_deg[(dz_dx == 0) & (dz_dy == 0)] = np.nan

    return slope_deg, aspect_deg


def compute_slope_aspect(grid: ElevationGrid) -> TerrainSurfaces:
    """
    Derive slope and aspect surfaces from an elevation grid.

    Args:
        grid: Elevation grid in a projected CRS with linear units

    Returns:
        TerrainSurfaces with slope/aspect grids sharing the input geometry

    Raises:
        ValueError: If the grid has no CRS, a geographic CRS, or is smaller than 3x3
    """
    if grid.crs is None:
        raise ValueError("Elevation grid has no CRS; a projected CRS is required")
    if grid.crs.is_geographic:
        raise ValueError(
            f"Elevation grid CRS {grid.crs} is geographic; reproject to a projected CRS "
            "with linear units before computing slope"
        )
    if grid.shape[0] < 3 or grid.shape[1] < 3:
        raise ValueError(f"DEM must be at least 3x3 cells, got {grid.shape}")

    logger.info(f"Computing slope/aspect for DEM shape {grid.shape}")

    dz_dx, dz_dy = horn_gradients(grid)
    slope_deg, aspect_deg = slope_aspect_from_gradients(dz_dx, dz_dy)

    n_valid = int(np.sum(np.isfinite(slope_deg)))
    n_flat = int(np.sum(slope_deg == 0))
    logger.info(f"  Valid slope cells: {n_valid}/{slope_deg.size} ({n_flat} flat)")
    if n_valid:
        logger.debug(
            f"  Slope range: {np.nanmin(slope_deg):.2f} to {np.nanmax(slope_deg):.2f} deg"
        )

    return TerrainSurfaces(
        elevation=grid,
        slope=grid.like(slope_deg),
        aspect=grid.like(aspect_deg),
    )


def cell_latitudes(
    grid: ElevationGrid,
    geographic_crs: str = "EPSG:4326",
    block_rows: int = 512,
) -> np.ndarray:
    """
    Geographic latitude (degrees) of every cell centre.

    Cell centres are transformed from the grid CRS to ``geographic_crs`` in
    blocks of rows to bound memory; each cell is transformed individually.

    Args:
        grid: Grid in a projected CRS
        geographic_crs: Target geographic CRS (default: WGS84)
        block_rows: Rows per transform batch

    Returns:
        Array of latitudes with the grid's shape
    """
    if grid.crs is None:
        raise ValueError("Grid has no CRS; cannot compute latitudes")

    xs, ys = grid.cell_centers()
    if grid.crs.is_geographic:
        return ys

    lats = np.empty(grid.shape, dtype=np.float64)
    rows = grid.shape[0]
    for start in range(0, rows, block_rows):
        stop = min(start + block_rows, rows)
        _, block_lats = warp_transform(
            grid.crs,
            geographic_crs,
            xs[start:stop].ravel().tolist(),
            ys[start:stop].ravel().tolist(),
        )
        lats[start:stop] = np.asarray(block_lats).reshape(stop - start, -1)

    logger.debug(f"Latitude range: {lats.min():.5f} to {lats.max():.5f}")
    return lats
