"""
Heat Load Index (HLI) surface.

Implements McCune & Keon (2002), equation 2: a closed-form estimate of
potential annual direct incident radiation from slope, folded aspect and
latitude. Values are clamped to [0, 1].

    ln(load) = -1.236
               + 1.350 * cos(lat) * cos(slope)
               - 1.376 * cos(folded) * sin(slope) * sin(lat)
               - 0.331 * sin(lat) * sin(slope)
               + 0.375 * sin(folded) * sin(slope)

All angles in radians. Folded aspect reflects the compass bearing about the
north-south axis (``180 - |aspect - 180|``) so NE and NW, E and W, etc. share
one value: 0 = north-facing (coolest), 180 = south-facing (warmest).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Union

import numpy as np

from src.heatload.grid import ElevationGrid
from src.heatload.terrain import TerrainSurfaces

logger = logging.getLogger(__name__)

NumericType = Union[float, np.ndarray]

# McCune & Keon (2002) eq. 2 coefficients
HLI_INTERCEPT = -1.236
HLI_COS_LAT_COS_SLOPE = 1.350
HLI_COS_FOLDED_SIN_SLOPE_SIN_LAT = -1.376
HLI_SIN_LAT_SIN_SLOPE = -0.331
HLI_SIN_FOLDED_SIN_SLOPE = 0.375

HLI_MIN = 0.0
HLI_MAX = 1.0


def fold_aspect(aspect_deg: NumericType) -> NumericType:
    """
    Fold aspect about the north-south axis.

    Maps [0, 360) onto [0, 180] so that ``fold_aspect(a) == fold_aspect(360 - a)``.
    NaN (undefined aspect) stays NaN.

    Args:
        aspect_deg: Aspect in degrees

    Returns:
        Folded aspect in degrees, same type/shape as input
    """
    return 180.0 - np.abs(np.asarray(aspect_deg, dtype=np.float64) - 180.0)


def heat_load_index(
    slope_deg: NumericType,
    aspect_deg: NumericType,
    latitude_deg: NumericType,
) -> np.ndarray:
    """
    Evaluate the clamped HLI per cell.

    Missing handling:
    - missing slope or latitude -> NaN
    - missing aspect with slope == 0 (flat cell) -> defined; the aspect terms
      are multiplied by sin(slope) and vanish
    - missing aspect with slope != 0 -> NaN

    Args:
        slope_deg: Slope in degrees
        aspect_deg: Aspect in degrees (unfolded), NaN for flat cells
        latitude_deg: Geographic latitude in degrees

    Returns:
        HLI array in [0, 1] with NaN for undefined cells
    """
    slope_deg, aspect_deg, latitude_deg = np.broadcast_arrays(
        np.asarray(slope_deg, dtype=np.float64),
        np.asarray(aspect_deg, dtype=np.float64),
        np.asarray(latitude_deg, dtype=np.float64),
    )

    flat = slope_deg == 0
    folded_deg = fold_aspect(aspect_deg)
    folded_deg = np.where(flat & np.isnan(folded_deg), 0.0, folded_deg)

    slope = np.radians(slope_deg)
    folded = np.radians(folded_deg)
    lat = np.radians(latitude_deg)

    ln_load = (
        HLI_INTERCEPT
        + HLI_COS_LAT_COS_SLOPE * np.cos(lat) * np.cos(slope)
        + HLI_COS_FOLDED_SIN_SLOPE_SIN_LAT * np.cos(folded) * np.sin(slope) * np.sin(lat)
        + HLI_SIN_LAT_SIN_SLOPE * np.sin(lat) * np.sin(slope)
        + HLI_SIN_FOLDED_SIN_SLOPE * np.sin(folded) * np.sin(slope)
    )
    hli = np.exp(ln_load)
    return clamp_hli(hli)


def clamp_hli(hli: np.ndarray) -> np.ndarray:
    """Clamp to [0, 1], leaving NaN untouched."""
    return np.clip(np.asarray(hli, dtype=np.float64), HLI_MIN, HLI_MAX)


def compute_hli_surface(
    surfaces: TerrainSurfaces, latitude_deg: np.ndarray
) -> ElevationGrid:
    """
    Compute the HLI raster from slope/aspect surfaces and per-cell latitude.

    Args:
        surfaces: Slope/aspect surfaces from compute_slope_aspect()
        latitude_deg: Per-cell latitude with the grid's shape

    Returns:
        HLI grid co-registered with the source DEM
    """
    latitude_deg = np.asarray(latitude_deg, dtype=np.float64)
    if latitude_deg.shape != surfaces.slope.shape:
        raise ValueError(
            f"Latitude shape {latitude_deg.shape} does not match grid {surfaces.slope.shape}"
        )

    hli = heat_load_index(surfaces.slope.data, surfaces.aspect.data, latitude_deg)

    n_valid = int(np.sum(np.isfinite(hli)))
    logger.info(f"Computed HLI surface: {n_valid}/{hli.size} valid cells")
    if n_valid:
        logger.info(f"  HLI range: {np.nanmin(hli):.4f} to {np.nanmax(hli):.4f}")

    return surfaces.slope.like(hli)


def folded_aspect_surface(surfaces: TerrainSurfaces) -> ElevationGrid:
    """Folded aspect grid (degrees), NaN where aspect is undefined."""
    return surfaces.aspect.like(fold_aspect(surfaces.aspect.data))


@dataclass
class HeatLoadSurfaces:
    """Per-cell surfaces consumed by zonal aggregation, all co-registered."""

    slope: ElevationGrid
    """Slope in degrees."""

    aspect: ElevationGrid
    """Aspect in degrees, NaN for flat cells."""

    folded_aspect: ElevationGrid
    """Folded aspect in degrees, NaN for flat cells."""

    hli: ElevationGrid
    """Clamped heat load index."""

    def __post_init__(self):
        for name in ("aspect", "folded_aspect", "hli"):
            if not self.slope.same_geometry(getattr(self, name)):
                raise ValueError(f"Surface '{name}' is not co-registered with slope")

    @property
    def grid(self) -> ElevationGrid:
        return self.slope

    def as_dict(self) -> Dict[str, np.ndarray]:
        """Arrays keyed by surface name."""
        return {
            "slope": self.slope.data,
            "aspect": self.aspect.data,
            "folded_aspect": self.folded_aspect.data,
            "hli": self.hli.data,
        }


def build_heat_load_surfaces(
    surfaces: TerrainSurfaces, latitude_deg: np.ndarray
) -> HeatLoadSurfaces:
    """Bundle slope, aspect, folded aspect and HLI for aggregation."""
    return HeatLoadSurfaces(
        slope=surfaces.slope,
        aspect=surfaces.aspect,
        folded_aspect=folded_aspect_surface(surfaces),
        hli=compute_hli_surface(surfaces, latitude_deg),
    )
