"""
Tests for zonal aggregation of surfaces onto polygons.

small_grid covers x 500000-500100, y 5000000-5000100 with 10 m cells; the
centre of cell (row, col) is (500005 + 10 col, 5000095 - 10 row). In
indexed_surfaces the HLI of that cell is row * 10 + col.
"""

import math

import pytest
import numpy as np
import geopandas as gpd
from rasterio._err import CPLE_BaseError
from rasterio.errors import RasterioError
from shapely.geometry import MultiPolygon, Polygon, box

from src.heatload.zonal import (
    TOPO_COLUMNS,
    aggregate_topography,
    centroid_latitude,
    geometry_window,
    polygon_topography,
    zonal_mask,
    zonal_median,
)
from conftest import UTM_CRS, surfaces_from_hli

# Covers the centres of cells (2, 2), (2, 3), (3, 2), (3, 3)
FOUR_CELLS = box(500020, 5000060, 500040, 5000080)
# Inside cell (3, 2) but away from its centre
SLIVER = box(500021, 5000061, 500024, 5000064)
OUTSIDE = box(600000, 6000000, 600050, 6000050)


class TestCellSelection:
    """Tests for geometry_window() and zonal_mask()"""

    def test_window_clipped_to_grid(self, small_grid):
        window = geometry_window(box(499950, 5000050, 500015, 5000200), small_grid.transform, small_grid.shape)
        rows, cols = window
        assert rows.start == 0 and cols.start == 0
        assert cols.stop == 2

    def test_window_outside_grid(self, small_grid):
        assert geometry_window(OUTSIDE, small_grid.transform, small_grid.shape) is None

    def test_centre_rule(self, small_grid):
        window, mask = zonal_mask(FOUR_CELLS, small_grid.transform, small_grid.shape)
        assert int(mask.sum()) == 4

    def test_all_touched_selects_more(self, small_grid):
        poly = box(500021, 5000061, 500039, 5000079)
        _, centre = zonal_mask(poly, small_grid.transform, small_grid.shape)
        _, touched = zonal_mask(poly, small_grid.transform, small_grid.shape, all_touched=True)
        assert touched.sum() >= centre.sum()

    def test_sliver_falls_back_to_touched_cells(self, small_grid):
        window, mask = zonal_mask(SLIVER, small_grid.transform, small_grid.shape)
        assert window is not None
        assert int(mask.sum()) == 1


class TestZonalMedian:
    """Tests for zonal_median()"""

    def test_median_of_covered_cells(self, indexed_surfaces):
        assert zonal_median(indexed_surfaces.hli, FOUR_CELLS) == pytest.approx(27.5)

    def test_missing_cells_are_ignored(self, small_grid):
        rows, cols = np.indices(small_grid.shape)
        hli = rows * 10.0 + cols
        hli[2, 2] = np.nan
        surface = small_grid.like(hli)
        assert zonal_median(surface, FOUR_CELLS) == pytest.approx(32.0)

    def test_sliver_uses_its_single_cell(self, indexed_surfaces):
        assert zonal_median(indexed_surfaces.hli, SLIVER) == pytest.approx(32.0)

    def test_outside_is_missing(self, indexed_surfaces):
        assert np.isnan(zonal_median(indexed_surfaces.hli, OUTSIDE))

    def test_multipolygon_uses_all_parts(self, indexed_surfaces):
        # Cells (0, 0) and (9, 9)
        poly = MultiPolygon([box(500000, 5000090, 500010, 5000100), box(500090, 5000000, 500100, 5000010)])
        assert zonal_median(indexed_surfaces.hli, poly) == pytest.approx((0 + 99) / 2)


class TestPolygonTopography:
    """Tests for polygon_topography()"""

    def test_record_fields(self, indexed_surfaces):
        record = polygon_topography(FOUR_CELLS, indexed_surfaces)

        assert list(record) == TOPO_COLUMNS
        assert record["hli"] == pytest.approx(27.5)
        assert record["hli_cells"] == 4
        assert record["slope_deg"] == pytest.approx(10.0)
        assert record["slope_rad"] == pytest.approx(math.radians(10.0))
        assert record["aspect_deg"] == pytest.approx(180.0)
        assert record["folded_aspect_rad"] == pytest.approx(math.pi)
        assert record["latitude_rad"] == pytest.approx(math.radians(record["latitude_deg"]))

    def test_outside_record_is_missing(self, indexed_surfaces):
        record = polygon_topography(OUTSIDE, indexed_surfaces)
        assert record["hli_cells"] == 0
        assert all(np.isnan(record[c]) for c in TOPO_COLUMNS if c != "hli_cells")

    def test_no_valid_hli_means_whole_record_missing(self, small_grid):
        hli = np.full(small_grid.shape, np.nan)
        surfaces = surfaces_from_hli(small_grid, hli)
        record = polygon_topography(FOUR_CELLS, surfaces)
        assert np.isnan(record["slope_deg"])
        assert np.isnan(record["latitude_deg"])

    def test_empty_geometry_record_is_missing(self, indexed_surfaces):
        record = polygon_topography(Polygon(), indexed_surfaces)
        assert record["hli_cells"] == 0
        assert all(np.isnan(record[c]) for c in TOPO_COLUMNS if c != "hli_cells")

    def test_centroid_latitude(self):
        lat = centroid_latitude(FOUR_CELLS, UTM_CRS)
        assert 45.0 < lat < 45.3


class TestAggregateTopography:
    """Tests for aggregate_topography()"""

    def _groups(self):
        return gpd.GeoDataFrame(
            {"group_id": [10, 20, 30]},
            geometry=[FOUR_CELLS, OUTSIDE, SLIVER],
            index=[5, 7, 9],
            crs=UTM_CRS,
        )

    def test_one_row_per_group(self, indexed_surfaces):
        groups = self._groups()
        table = aggregate_topography(groups, indexed_surfaces, progress=False, max_workers=2)

        assert list(table.index) == [5, 7, 9]
        assert list(table.columns) == TOPO_COLUMNS
        assert table.loc[5, "hli"] == pytest.approx(27.5)
        assert np.isnan(table.loc[7, "hli"])
        assert table.loc[9, "hli"] == pytest.approx(32.0)

    def test_cell_counts_are_integers(self, indexed_surfaces):
        table = aggregate_topography(self._groups(), indexed_surfaces, progress=False)
        assert table["hli_cells"].dtype == np.int64
        assert table["hli_cells"].tolist() == [4, 0, 1]

    def test_single_thread_matches_parallel(self, indexed_surfaces):
        groups = self._groups()
        serial = aggregate_topography(groups, indexed_surfaces, progress=False, max_workers=1)
        parallel = aggregate_topography(groups, indexed_surfaces, progress=False, max_workers=4)
        assert serial.equals(parallel)

    def test_empty_geometry_row_is_missing(self, indexed_surfaces):
        groups = gpd.GeoDataFrame(
            {"group_id": [10, 20]}, geometry=[FOUR_CELLS, Polygon()], crs=UTM_CRS
        )
        table = aggregate_topography(groups, indexed_surfaces, progress=False)
        assert table.loc[0, "hli"] == pytest.approx(27.5)
        assert np.isnan(table.loc[1, "hli"])
        assert table.loc[1, "hli_cells"] == 0

    @pytest.mark.parametrize("error", [
        CPLE_BaseError(1, 1, "Failed to transform coordinates"),
        RasterioError("Reprojection failed"),
    ])
    def test_gdal_error_degrades_only_that_row(self, indexed_surfaces, monkeypatch, error):
        import src.heatload.zonal as zonal

        real_latitude = zonal.centroid_latitude

        def failing_latitude(geometry, crs, geographic_crs="EPSG:4326"):
            if geometry.equals(SLIVER):
                raise error
            return real_latitude(geometry, crs, geographic_crs)

        monkeypatch.setattr(zonal, "centroid_latitude", failing_latitude)
        table = aggregate_topography(self._groups(), indexed_surfaces, progress=False)

        assert table.loc[5, "hli"] == pytest.approx(27.5)
        assert np.isnan(table.loc[9, "hli"])
        assert table.loc[9, "hli_cells"] == 0
