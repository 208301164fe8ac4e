"""
Quartile classification of groups by heat load.

Percentile rank is the cumulative distribution of HLI: the fraction of
non-missing values less than or equal to the value in question. Ties share
the highest rank of their block, so a single group, or a class in which every
group has the same HLI, ranks 1.0. Missing HLI gets a missing rank and a
missing label.

Labels use inclusive upper bounds:

    rank <= 0.25 -> "Coolest"
    rank <= 0.50 -> "Med. Cool"
    rank <= 0.75 -> "Med. Warm"
    rank <= 1.00 -> "Warmest"
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from src.config import DEFAULT_TREATMENT_COLUMN

logger = logging.getLogger(__name__)

QUARTILE_LABELS = ["Coolest", "Med. Cool", "Med. Warm", "Warmest"]
QUARTILE_BOUNDS = [0.25, 0.5, 0.75, 1.0]
QUARTILE_COLUMNS = ["hli_group_rank", "hli_overall_rank", "hli_group_qrtl", "hli_overall_qrtl"]


def percent_rank(values: pd.Series) -> pd.Series:
    """
    Fraction of non-missing values <= each value; NaN stays NaN.

    Args:
        values: Numeric series (NaN = missing)

    Returns:
        Series of ranks in (0, 1], same index as ``values``
    """
    values = pd.to_numeric(values, errors="coerce")
    return values.rank(method="max", pct=True, na_option="keep")


def quartile_label(rank: float):
    """
    Label for one percentile rank, or None when the rank is missing.

    Raises:
        ValueError: If rank is outside (0, 1]
    """
    if rank is None or pd.isna(rank):
        return None
    if not 0.0 < rank <= 1.0:
        raise ValueError(f"Percentile rank {rank} outside (0, 1]")
    for bound, label in zip(QUARTILE_BOUNDS, QUARTILE_LABELS):
        if rank <= bound:
            return label
    raise AssertionError(f"rank {rank} not covered by quartile bounds")


def quartile_categorical(ranks: pd.Series) -> pd.Categorical:
    """Ordered categorical of quartile labels for a series of ranks."""
    labels = [quartile_label(r) for r in ranks]
    return pd.Categorical(labels, categories=QUARTILE_LABELS, ordered=True)


def classify_quartiles(
    table: pd.DataFrame,
    *,
    hli_column: str = "hli",
    group_column: str = DEFAULT_TREATMENT_COLUMN,
) -> pd.DataFrame:
    """
    Rank HLI within each treatment class and across all groups.

    Needs the complete table: ranks depend on every group's HLI, so this runs
    only after aggregation has finished for all polygons.

    Args:
        table: Group table with HLI and treatment columns
        hli_column: Name of the HLI column
        group_column: Name of the treatment class column

    Returns:
        DataFrame indexed like ``table`` with columns hli_group_rank,
        hli_overall_rank, hli_group_qrtl, hli_overall_qrtl
    """
    for column in (hli_column, group_column):
        if column not in table.columns:
            raise ValueError(f"Column '{column}' not found in table")

    group_rank = table.groupby(group_column, observed=True)[hli_column].transform(percent_rank)
    overall_rank = percent_rank(table[hli_column])

    result = pd.DataFrame(index=table.index)
    result["hli_group_rank"] = group_rank.astype(np.float64)
    result["hli_overall_rank"] = overall_rank.astype(np.float64)
    result["hli_group_qrtl"] = quartile_categorical(result["hli_group_rank"])
    result["hli_overall_qrtl"] = quartile_categorical(result["hli_overall_rank"])

    logger.info(
        "Overall HLI quartiles: "
        + ", ".join(
            f"{k}={v}" for k, v in result["hli_overall_qrtl"].value_counts(sort=False).items()
        )
    )
    return result
