"""
North-south orientation index of group polygons.

From each polygon's axis-aligned bounding box:

    xlength = xmax - xmin
    ylength = ymax - ymin
    length_width_ratio = ylength / xlength           (reference only)
    north_south_orientation_index = ylength / (xlength + ylength)

The index is bounded in [0, 1]: 0.5 for a square box, towards 0 for wide
(east-west) shapes and towards 1 for tall (north-south) shapes. Classes:

    index <  0.4        -> "More E-W"
    0.4 <= index <= 0.6 -> "Square"
    0.6 <  index <= 1   -> "More N-S"
"""

from __future__ import annotations

import logging
from typing import Dict

import geopandas as gpd
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

ORIENTATION_CLASSES = ["More E-W", "Square", "More N-S"]
EW_THRESHOLD = 0.4
NS_THRESHOLD = 0.6

ORIENTATION_COLUMNS = [
    "xmin",
    "xmax",
    "ymin",
    "ymax",
    "xlength_m",
    "ylength_m",
    "length_width_ratio",
    "north_south_orientation_index",
    "orientation_class",
    "orientation_valid",
]


class DegenerateGeometryError(ValueError):
    """Bounding box has zero extent; the orientation index is undefined."""


class OrientationRangeError(ValueError):
    """Orientation index outside [0, 1]."""


def bounding_box_record(geometry) -> Dict[str, float]:
    """
    Bounding box extents and lengths of one polygon.

    Returns:
        Dict with xmin, xmax, ymin, ymax, xlength_m, ylength_m
    """
    if geometry is None or geometry.is_empty:
        raise DegenerateGeometryError("Geometry is empty")
    xmin, ymin, xmax, ymax = geometry.bounds
    return {
        "xmin": xmin,
        "xmax": xmax,
        "ymin": ymin,
        "ymax": ymax,
        "xlength_m": xmax - xmin,
        "ylength_m": ymax - ymin,
    }


def length_width_ratio(xlength: float, ylength: float) -> float:
    """ylength / xlength; infinite for zero-width boxes."""
    if xlength == 0:
        return np.inf if ylength > 0 else np.nan
    return ylength / xlength


def orientation_index(xlength: float, ylength: float) -> float:
    """
    Bounded north-south orientation index.

    Raises:
        DegenerateGeometryError: If xlength + ylength == 0
    """
    total = xlength + ylength
    if total == 0:
        raise DegenerateGeometryError("Bounding box has zero extent")
    return ylength / total


def classify_orientation(index: float) -> str:
    """
    Map an orientation index to its class label.

    Raises:
        OrientationRangeError: If index is NaN or outside [0, 1]
    """
    if not 0.0 <= index <= 1.0:
        raise OrientationRangeError(f"Orientation index {index} outside [0, 1]")
    if index < EW_THRESHOLD:
        return "More E-W"
    if index <= NS_THRESHOLD:
        return "Square"
    return "More N-S"


def polygon_orientation(geometry) -> Dict[str, object]:
    """
    Full orientation record for one polygon.

    Degenerate boxes keep their extents but get a missing index and class and
    ``orientation_valid = False``.
    """
    record = bounding_box_record(geometry)
    record["length_width_ratio"] = length_width_ratio(record["xlength_m"], record["ylength_m"])
    try:
        index = orientation_index(record["xlength_m"], record["ylength_m"])
    except DegenerateGeometryError:
        record["north_south_orientation_index"] = np.nan
        record["orientation_class"] = None
        record["orientation_valid"] = False
        return record

    record["north_south_orientation_index"] = index
    record["orientation_class"] = classify_orientation(index)
    record["orientation_valid"] = True
    return record


def orientation_categorical(values) -> pd.Categorical:
    """Ordered categorical of orientation labels (missing stays missing)."""
    return pd.Categorical(values, categories=ORIENTATION_CLASSES, ordered=True)


def compute_orientation(groups: gpd.GeoDataFrame) -> pd.DataFrame:
    """
    Orientation attributes for every group, indexed like ``groups``.

    Each polygon is handled independently; a degenerate or empty geometry is
    flagged on its own row without affecting others.
    """
    records = {}
    for idx, geometry in groups.geometry.items():
        try:
            records[idx] = polygon_orientation(geometry)
        except DegenerateGeometryError as e:
            logger.warning(f"Orientation undefined for row {idx}: {e}")
            records[idx] = {col: np.nan for col in ORIENTATION_COLUMNS}
            records[idx]["orientation_class"] = None
            records[idx]["orientation_valid"] = False

    table = pd.DataFrame.from_dict(records, orient="index", columns=ORIENTATION_COLUMNS)
    table = table.reindex(groups.index)
    table["orientation_class"] = orientation_categorical(table["orientation_class"])
    table["orientation_valid"] = table["orientation_valid"].astype(bool)

    n_invalid = int((~table["orientation_valid"]).sum())
    if n_invalid:
        logger.warning(f"{n_invalid} groups have a degenerate bounding box")
    logger.info(
        "Orientation classes: "
        + ", ".join(f"{k}={v}" for k, v in table["orientation_class"].value_counts().items())
    )
    return table
