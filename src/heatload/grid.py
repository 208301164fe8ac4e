"""
Elevation grid model and raster I/O.

An ElevationGrid bundles an elevation array with the affine transform and CRS
that georeference it. Every surface derived from it (slope, aspect, HLI) is
built with ``like()`` so that it shares the exact grid geometry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import rasterio
from rasterio import Affine
from rasterio.crs import CRS

logger = logging.getLogger(__name__)


@dataclass
class ElevationGrid:
    """
    A single-band raster on a regular lattice.

    Missing cells are stored as NaN; the nodata sentinel of the source file is
    kept only so the value can be written back out.

    Attributes:
        data: 2-D float array (rows x cols)
        transform: Affine mapping (col, row) to planar (x, y)
        crs: Coordinate reference system of the planar coordinates
        nodata: Original nodata sentinel (informational)
    """

    data: np.ndarray
    transform: Affine
    crs: Optional[CRS]
    nodata: Optional[float] = None

    def __post_init__(self):
        """Validate dimensionality and coerce to float with NaN as missing."""
        data = np.asarray(self.data)
        if data.ndim != 2:
            raise ValueError(f"Elevation data must be 2D, got shape {data.shape}")
        if data.shape[0] == 0 or data.shape[1] == 0:
            raise ValueError(f"Elevation data must not be empty, got shape {data.shape}")

        data = data.astype(np.float64, copy=True)
        if self.nodata is not None and not np.isnan(self.nodata):
            data[data == self.nodata] = np.nan
        self.data = data

        if self.crs is not None and not isinstance(self.crs, CRS):
            self.crs = CRS.from_user_input(self.crs)

        if self.transform.b != 0 or self.transform.d != 0:
            raise ValueError("Rotated or skewed transforms are not supported")
        if self.transform.a == 0 or self.transform.e == 0:
            raise ValueError(f"Cell size must be non-zero, got transform {self.transform}")

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def cell_size(self) -> Tuple[float, float]:
        """(x, y) cell size in CRS units, always positive."""
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(xmin, ymin, xmax, ymax) of the full grid extent."""
        rows, cols = self.shape
        x0, y0 = self.transform * (0, 0)
        x1, y1 = self.transform * (cols, rows)
        return min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1)

    def like(self, data: np.ndarray) -> "ElevationGrid":
        """Wrap ``data`` in a grid with the same geometry as this one."""
        data = np.asarray(data)
        if data.shape != self.shape:
            raise ValueError(
                f"Derived surface shape {data.shape} does not match grid shape {self.shape}"
            )
        return ElevationGrid(data=data, transform=self.transform, crs=self.crs)

    def same_geometry(self, other: "ElevationGrid") -> bool:
        """True if ``other`` is co-registered cell-for-cell with this grid."""
        return (
            self.shape == other.shape
            and self.transform.almost_equals(other.transform)
            and self.crs == other.crs
        )

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Planar coordinates of every cell centre.

        Returns:
            (xs, ys) arrays with the same shape as the grid
        """
        rows, cols = self.shape
        col_idx, row_idx = np.meshgrid(np.arange(cols) + 0.5, np.arange(rows) + 0.5)
        xs = self.transform.c + col_idx * self.transform.a
        ys = self.transform.f + row_idx * self.transform.e
        return xs, ys


def load_elevation_grid(path: str | Path, band: int = 1) -> ElevationGrid:
    """
    Load a single band of a raster file as an ElevationGrid.

    Supports any raster format readable by rasterio (GeoTIFF, HGT, ...).

    Args:
        path: Path to the raster file
        band: 1-based band index (default: 1)

    Returns:
        ElevationGrid with the nodata sentinel converted to NaN

    Raises:
        ValueError: If the file does not exist or has no such band
        rasterio.errors.RasterioIOError: If the file cannot be read
    """
    path = Path(path)
    if not path.exists():
        raise ValueError(f"DEM file does not exist: {path}")

    logger.info(f"Loading DEM from {path}")
    with rasterio.open(path) as ds:
        if band < 1 or band > ds.count:
            raise ValueError(f"Band {band} not available in {path} ({ds.count} bands)")
        data = ds.read(band).astype(np.float64)
        grid = ElevationGrid(data=data, transform=ds.transform, crs=ds.crs, nodata=ds.nodata)

    logger.info(f"  Shape: {grid.shape}, cell size: {grid.cell_size}, CRS: {grid.crs}")
    if np.all(np.isnan(grid.data)):
        logger.warning(f"DEM {path.name} contains no valid cells")
    else:
        logger.info(
            f"  Value range: {np.nanmin(grid.data):.2f} to {np.nanmax(grid.data):.2f}"
        )
    return grid


def save_raster(grid: ElevationGrid, path: str | Path) -> Path:
    """
    Write a grid as a single-band float32 GeoTIFF with NaN nodata.

    Args:
        grid: Grid to write
        path: Output file path (parent directories are created)

    Returns:
        Path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    rows, cols = grid.shape
    profile = {
        "driver": "GTiff",
        "height": rows,
        "width": cols,
        "count": 1,
        "dtype": "float32",
        "crs": grid.crs,
        "transform": grid.transform,
        "nodata": np.nan,
        "compress": "deflate",
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(grid.data.astype(np.float32), 1)

    logger.debug(f"Wrote raster {path}")
    return path
