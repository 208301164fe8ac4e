"""
Summary statistics of the enriched group table, for the written report.
"""

import logging

import numpy as np
import pandas as pd

from src.config import DEFAULT_TREATMENT_COLUMN
from src.heatload.classify import QUARTILE_LABELS
from src.heatload.grid import ElevationGrid
from src.heatload.orientation import ORIENTATION_CLASSES

logger = logging.getLogger(__name__)


def summarize_by_treatment(
    table: pd.DataFrame, group_column: str = DEFAULT_TREATMENT_COLUMN
) -> pd.DataFrame:
    """
    Per treatment class: group count, total area and HLI/slope distribution.

    Groups with missing HLI are counted in ``n_groups`` and ``n_missing_hli``
    and left out of the HLI statistics.
    """
    grouped = table.groupby(group_column, observed=True)
    summary = pd.DataFrame({
        "n_groups": grouped.size(),
        "n_missing_hli": grouped["hli"].apply(lambda s: int(s.isna().sum())),
        "total_area_ha": grouped["area_ha"].sum(),
        "hli_median": grouped["hli"].median(),
        "hli_min": grouped["hli"].min(),
        "hli_max": grouped["hli"].max(),
        "slope_deg_median": grouped["slope_deg"].median(),
    })
    return summary


def quartile_orientation_crosstab(
    table: pd.DataFrame, quartile_column: str = "hli_overall_qrtl"
) -> pd.DataFrame:
    """
    Counts of groups by HLI quartile (rows) and orientation class (columns).

    Every label appears even when no group carries it; groups with a missing
    quartile or orientation class are not counted.
    """
    counts = pd.crosstab(table[quartile_column], table["orientation_class"])
    return counts.reindex(index=QUARTILE_LABELS, columns=ORIENTATION_CLASSES, fill_value=0)


def hli_surface_summary(hli: ElevationGrid) -> dict:
    """Min/median/max of the HLI raster and the fraction of defined cells."""
    values = hli.data[np.isfinite(hli.data)]
    if values.size == 0:
        logger.warning("HLI surface has no valid cells")
        return {"min": np.nan, "median": np.nan, "max": np.nan, "valid_fraction": 0.0}
    return {
        "min": float(values.min()),
        "median": float(np.median(values)),
        "max": float(values.max()),
        "valid_fraction": values.size / hli.data.size,
    }
