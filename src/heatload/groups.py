"""
Harvest group polygons: loading, validation and CRS reconciliation.

Groups are forest-management polygons (treatment openings and reserves)
delivered as vector files. This module turns them into a clean GeoDataFrame
with one row per group:

- ``group_id``: integer id, unique within its treatment class
- ``treatment``: "Openings" or "Reserves"
- ``geometry``: valid (Multi)Polygon in a projected CRS, or an empty polygon
  when repair leaves nothing polygonal
- ``area_m2`` / ``area_ha``: always recomputed from the geometry
- ``geometry_valid``: False for those emptied rows
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import geopandas as gpd
import pandas as pd
from pyproj.exceptions import CRSError
from rasterio.crs import CRS
from shapely.geometry import GeometryCollection, MultiPolygon, Polygon
from shapely.validation import make_valid

from src.config import DEFAULT_ID_COLUMN, DEFAULT_TREATMENT_COLUMN, TREATMENT_CLASSES

logger = logging.getLogger(__name__)

GEOMETRY_MODES = ("planar",)


class CRSMismatchError(ValueError):
    """Raster and polygon coordinate systems cannot be reconciled."""


def check_geometry_mode(geometry_mode: str) -> str:
    """Validate the geometry mode used for area, centroid and bounds operations."""
    if geometry_mode not in GEOMETRY_MODES:
        raise ValueError(
            f"Unsupported geometry_mode '{geometry_mode}'. Supported: {GEOMETRY_MODES}"
        )
    return geometry_mode


def _polygonal_part(geom):
    """Keep only the polygonal parts of a repaired geometry."""
    if geom is None or geom.is_empty:
        return None
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    if isinstance(geom, GeometryCollection):
        polys = []
        for part in geom.geoms:
            if isinstance(part, Polygon):
                polys.append(part)
            elif isinstance(part, MultiPolygon):
                polys.extend(part.geoms)
        if not polys:
            return None
        return polys[0] if len(polys) == 1 else MultiPolygon(polys)
    return None


def repair_geometry(geom):
    """
    Return a valid polygonal version of ``geom``, or None if nothing polygonal remains.

    Args:
        geom: Shapely geometry (possibly invalid, e.g. self-intersecting)

    Returns:
        Valid Polygon/MultiPolygon or None
    """
    if geom is None or geom.is_empty:
        return None
    if not geom.is_valid:
        geom = make_valid(geom)
    return _polygonal_part(geom)


def prepare_groups(
    gdf: gpd.GeoDataFrame,
    *,
    treatment: Optional[str] = None,
    id_column: str = DEFAULT_ID_COLUMN,
    treatment_column: str = DEFAULT_TREATMENT_COLUMN,
    geometry_mode: str = "planar",
    target_crs=None,
) -> gpd.GeoDataFrame:
    """
    Validate and normalise a group collection.

    Args:
        gdf: Raw polygons with an id column (and a treatment column unless
            ``treatment`` is given)
        treatment: Treatment class to assign to every row (overrides column)
        id_column: Name of the integer id column
        treatment_column: Name of the treatment class column
        geometry_mode: Geometry model; only "planar" is supported
        target_crs: If given, reproject to this CRS first (see reconcile_crs)

    Returns:
        GeoDataFrame with columns [group_id, treatment, area_m2, area_ha,
        geometry_valid, <other original attributes>, geometry] and a fresh
        RangeIndex. Every input row is kept.

    Raises:
        ValueError: Empty collection, missing columns, non-integer ids,
            unknown treatment labels, duplicate ids within a class, or a
            geographic CRS
    """
    check_geometry_mode(geometry_mode)

    if gdf is None or len(gdf) == 0:
        raise ValueError("Group collection is empty")

    gdf = gdf.copy()
    if target_crs is not None:
        gdf = reconcile_crs(gdf, target_crs)

    if treatment is not None:
        gdf[treatment_column] = treatment

    missing = [c for c in (id_column, treatment_column) if c not in gdf.columns]
    if missing:
        raise ValueError(f"Group collection is missing required columns: {missing}")

    if gdf.crs is not None and CRS.from_user_input(gdf.crs).is_geographic:
        raise ValueError(
            f"Groups CRS {gdf.crs} is geographic; planar geometry requires a projected CRS"
        )

    ids = pd.to_numeric(gdf[id_column], errors="coerce")
    if ids.isna().any() or not (ids == ids.round()).all():
        raise ValueError(f"Column '{id_column}' must contain integer group ids")
    gdf[id_column] = ids.astype("int64")

    unknown = set(gdf[treatment_column].unique()) - set(TREATMENT_CLASSES)
    if unknown:
        raise ValueError(
            f"Unknown treatment classes {sorted(map(str, unknown))}; expected {TREATMENT_CLASSES}"
        )

    dupes = gdf.duplicated(subset=[treatment_column, id_column], keep=False)
    if dupes.any():
        dup_ids = gdf.loc[dupes, [treatment_column, id_column]].drop_duplicates()
        raise ValueError(
            f"Duplicate group ids within a treatment class: {dup_ids.values.tolist()}"
        )

    n_invalid = int((~gdf.geometry.is_valid).sum())
    if n_invalid:
        logger.warning(f"Repairing {n_invalid} invalid group geometries")
    repaired = [repair_geometry(g) for g in gdf.geometry]
    geometry_valid = pd.Series([g is not None for g in repaired], index=gdf.index)
    gdf[gdf.geometry.name] = gpd.GeoSeries(
        [g if g is not None else Polygon() for g in repaired], index=gdf.index, crs=gdf.crs
    )

    # Degenerate rows stay in the collection; downstream stages give them missing values
    if not geometry_valid.all():
        degenerate = gdf.loc[~geometry_valid, [treatment_column, id_column]].values.tolist()
        logger.warning(
            f"{int((~geometry_valid).sum())} groups have no polygonal area after repair: {degenerate}"
        )
    gdf["geometry_valid"] = geometry_valid.to_numpy()

    # Area is always derived from geometry, never taken from the input
    gdf["area_m2"] = gdf.geometry.area.to_numpy()
    gdf["area_ha"] = gdf["area_m2"] / 10_000.0

    gdf = gdf.rename(columns={id_column: DEFAULT_ID_COLUMN, treatment_column: DEFAULT_TREATMENT_COLUMN})
    front = [DEFAULT_ID_COLUMN, DEFAULT_TREATMENT_COLUMN, "area_m2", "area_ha", "geometry_valid"]
    geom_col = gdf.geometry.name
    rest = [c for c in gdf.columns if c not in front and c != geom_col]
    gdf = gdf[front + rest + [geom_col]].reset_index(drop=True)

    logger.info(
        f"Prepared {len(gdf)} groups: "
        + ", ".join(f"{k}={v}" for k, v in gdf[DEFAULT_TREATMENT_COLUMN].value_counts().items())
    )
    return gdf


def load_groups(
    path: str | Path,
    *,
    treatment: Optional[str] = None,
    layer: Optional[str] = None,
    id_column: str = DEFAULT_ID_COLUMN,
    treatment_column: str = DEFAULT_TREATMENT_COLUMN,
    geometry_mode: str = "planar",
    target_crs=None,
) -> gpd.GeoDataFrame:
    """
    Read a vector file of groups and validate it.

    Args:
        path: Any file readable by geopandas (GeoPackage, shapefile, GeoJSON)
        treatment: Treatment class for every polygon in the file, if the file
            has no treatment column
        layer: Layer name for multi-layer sources
        id_column: Name of the integer id column in the file
        treatment_column: Name of the treatment column in the file
        geometry_mode: Geometry model; only "planar" is supported
        target_crs: CRS to reproject to before validation

    Returns:
        Prepared GeoDataFrame (see prepare_groups)
    """
    path = Path(path)
    if not path.exists():
        raise ValueError(f"Groups file does not exist: {path}")

    logger.info(f"Loading groups from {path}")
    gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
    return prepare_groups(
        gdf,
        treatment=treatment,
        id_column=id_column,
        treatment_column=treatment_column,
        geometry_mode=geometry_mode,
        target_crs=target_crs,
    )


def load_group_files(
    sources: Dict[str | Path, str],
    *,
    id_column: str = DEFAULT_ID_COLUMN,
    geometry_mode: str = "planar",
    target_crs=None,
) -> gpd.GeoDataFrame:
    """
    Load several single-class files (e.g. openings and reserves) into one collection.

    Args:
        sources: Mapping of file path -> treatment class
        id_column: Name of the integer id column in each file
        geometry_mode: Geometry model; only "planar" is supported
        target_crs: CRS to reproject to (default: CRS of the first file)

    Returns:
        Prepared GeoDataFrame of all groups
    """
    if not sources:
        raise ValueError("No group files given")

    frames = []
    crs = None
    for path, treatment in sources.items():
        path = Path(path)
        if not path.exists():
            raise ValueError(f"Groups file does not exist: {path}")
        gdf = gpd.read_file(path)
        gdf[DEFAULT_TREATMENT_COLUMN] = treatment
        if crs is None:
            crs = gdf.crs
        elif gdf.crs != crs:
            gdf = reconcile_crs(gdf, crs)
        frames.append(gdf)

    combined = gpd.GeoDataFrame(pd.concat(frames, ignore_index=True), crs=crs)
    return prepare_groups(
        combined, id_column=id_column, geometry_mode=geometry_mode, target_crs=target_crs
    )


def reconcile_crs(groups: gpd.GeoDataFrame, raster_crs) -> gpd.GeoDataFrame:
    """
    Bring groups into the raster CRS.

    Must be called before any zonal aggregation so that a mismatch fails the
    whole batch up front.

    Args:
        groups: Group polygons
        raster_crs: CRS of the elevation grid

    Returns:
        ``groups`` unchanged if CRSs already match, otherwise a reprojected copy

    Raises:
        CRSMismatchError: If either CRS is undefined or the reprojection fails
    """
    if raster_crs is None:
        raise CRSMismatchError("Raster has no CRS; cannot align groups")
    if groups.crs is None:
        raise CRSMismatchError("Groups have no CRS; cannot align to raster")

    try:
        target = CRS.from_user_input(raster_crs)
        if CRS.from_user_input(groups.crs) == target:
            return groups
        logger.info(f"Reprojecting groups from {groups.crs} to {target}")
        return groups.to_crs(target.to_wkt())
    except (CRSError, ValueError) as e:
        raise CRSMismatchError(
            f"Cannot reconcile groups CRS {groups.crs} with raster CRS {raster_crs}: {e}"
        ) from e

