"""
Tests for the bounding-box north-south orientation index.
"""

import pytest
import numpy as np
import pandas as pd
import geopandas as gpd
from shapely.geometry import LineString, Point, Polygon, box

from src.heatload.orientation import (
    ORIENTATION_CLASSES,
    ORIENTATION_COLUMNS,
    DegenerateGeometryError,
    OrientationRangeError,
    classify_orientation,
    compute_orientation,
    length_width_ratio,
    orientation_index,
    polygon_orientation,
)


class TestOrientationIndex:
    """Tests for orientation_index() and length_width_ratio()"""

    def test_square_is_one_half(self):
        assert orientation_index(50.0, 50.0) == 0.5

    @pytest.mark.parametrize("xlength, ylength", [(10, 90), (300, 20), (1, 1e6), (7.5, 2.5)])
    def test_swapping_axes_mirrors_index(self, xlength, ylength):
        assert orientation_index(xlength, ylength) + orientation_index(ylength, xlength) == pytest.approx(1.0)

    def test_bounded(self):
        assert orientation_index(0.0, 10.0) == 1.0
        assert orientation_index(10.0, 0.0) == 0.0

    def test_zero_extent_is_degenerate(self):
        with pytest.raises(DegenerateGeometryError):
            orientation_index(0.0, 0.0)

    def test_length_width_ratio(self):
        assert length_width_ratio(20.0, 60.0) == 3.0
        assert length_width_ratio(0.0, 5.0) == np.inf
        assert np.isnan(length_width_ratio(0.0, 0.0))


class TestClassifyOrientation:
    """Tests for classify_orientation()"""

    @pytest.mark.parametrize(
        "index, label",
        [
            (0.0, "More E-W"),
            (0.3999, "More E-W"),
            (0.4, "Square"),
            (0.5, "Square"),
            (0.6, "Square"),
            (0.6001, "More N-S"),
            (1.0, "More N-S"),
        ],
    )
    def test_thresholds(self, index, label):
        assert classify_orientation(index) == label

    @pytest.mark.parametrize("index", [-0.01, 1.01, np.nan])
    def test_out_of_range(self, index):
        with pytest.raises(OrientationRangeError):
            classify_orientation(index)


class TestPolygonOrientation:
    """Tests for polygon_orientation() and compute_orientation()"""

    def test_tall_box(self):
        record = polygon_orientation(box(0, 0, 40, 120))
        assert record["xlength_m"] == 40
        assert record["ylength_m"] == 120
        assert record["north_south_orientation_index"] == pytest.approx(0.75)
        assert record["orientation_class"] == "More N-S"
        assert record["orientation_valid"]

    def test_uses_bounding_box_not_shape(self):
        triangle = Polygon([(0, 0), (100, 0), (0, 20)])
        record = polygon_orientation(triangle)
        assert record["north_south_orientation_index"] == pytest.approx(20 / 120)
        assert record["orientation_class"] == "More E-W"

    def test_degenerate_geometry_is_flagged(self):
        record = polygon_orientation(Point(5, 5))
        assert not record["orientation_valid"]
        assert np.isnan(record["north_south_orientation_index"])
        assert record["orientation_class"] is None

    def test_empty_geometry_raises(self):
        with pytest.raises(DegenerateGeometryError):
            polygon_orientation(Polygon())

    def test_table(self):
        groups = gpd.GeoDataFrame(
            geometry=[box(0, 0, 100, 100), box(0, 0, 100, 20), Point(1, 1), LineString([(0, 0), (0, 50)])],
            index=[3, 1, 4, 2],
            crs="EPSG:32610",
        )
        table = compute_orientation(groups)

        assert list(table.index) == [3, 1, 4, 2]
        assert list(table.columns) == ORIENTATION_COLUMNS
        assert isinstance(table["orientation_class"].dtype, pd.CategoricalDtype)
        assert list(table["orientation_class"].cat.categories) == ORIENTATION_CLASSES
        assert table["orientation_class"].cat.ordered

        assert table.loc[3, "orientation_class"] == "Square"
        assert table.loc[1, "orientation_class"] == "More E-W"
        assert pd.isna(table.loc[4, "orientation_class"])
        assert table.loc[2, "orientation_class"] == "More N-S"
        assert table["orientation_valid"].tolist() == [True, True, False, True]

    def test_empty_geometry_flagged_in_table(self):
        groups = gpd.GeoDataFrame(geometry=[box(0, 0, 10, 30), Polygon()], crs="EPSG:32610")
        table = compute_orientation(groups)
        assert table["orientation_valid"].tolist() == [True, False]
        assert np.isnan(table.loc[1, "xlength_m"])
