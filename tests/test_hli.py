"""
Tests for the McCune & Keon heat load index.
"""

import pytest
import numpy as np

from src.heatload.hli import (
    HeatLoadSurfaces,
    build_heat_load_surfaces,
    clamp_hli,
    compute_hli_surface,
    fold_aspect,
    heat_load_index,
)
from src.heatload.terrain import cell_latitudes, compute_slope_aspect
from conftest import utm_grid


def _unclamped(slope_deg, folded_deg, lat_deg):
    slope, folded, lat = np.radians([slope_deg, folded_deg, lat_deg])
    return np.exp(
        -1.236
        + 1.350 * np.cos(lat) * np.cos(slope)
        - 1.376 * np.cos(folded) * np.sin(slope) * np.sin(lat)
        - 0.331 * np.sin(lat) * np.sin(slope)
        + 0.375 * np.sin(folded) * np.sin(slope)
    )


class TestFoldAspect:
    """Tests for fold_aspect()"""

    @pytest.mark.parametrize("aspect, folded", [(0, 0), (90, 90), (180, 180), (270, 90), (359, 1)])
    def test_known_values(self, aspect, folded):
        assert fold_aspect(aspect) == pytest.approx(folded)

    def test_symmetric_about_north_south_axis(self):
        aspects = np.arange(0.0, 360.0, 7.5)
        np.testing.assert_allclose(fold_aspect(aspects), fold_aspect((360.0 - aspects) % 360.0))

    def test_range(self):
        folded = fold_aspect(np.linspace(0, 359.99, 1000))
        assert folded.min() >= 0.0
        assert folded.max() <= 180.0

    def test_nan_stays_nan(self):
        assert np.isnan(fold_aspect(np.nan))


class TestHeatLoadIndex:
    """Tests for heat_load_index()"""

    def test_matches_formula(self):
        hli = heat_load_index(30.0, 200.0, 45.0)
        assert hli == pytest.approx(_unclamped(30.0, 160.0, 45.0))

    def test_south_warmer_than_north(self):
        south = heat_load_index(25.0, 180.0, 45.0)
        north = heat_load_index(25.0, 0.0, 45.0)
        assert south > north

    def test_east_and_west_are_equal(self):
        assert heat_load_index(20.0, 90.0, 40.0) == pytest.approx(heat_load_index(20.0, 270.0, 40.0))

    def test_bounded_over_full_domain(self):
        slope, aspect, lat = np.meshgrid(
            np.linspace(0, 90, 19), np.linspace(0, 355, 72), np.linspace(-70, 70, 15)
        )
        hli = heat_load_index(slope, aspect, lat)
        assert np.isfinite(hli).all()
        assert hli.min() >= 0.0
        assert hli.max() <= 1.0

    def test_flat_cell_is_defined_without_aspect(self):
        """On a flat cell the aspect terms vanish, so missing aspect does not matter."""
        hli = heat_load_index(0.0, np.nan, 45.0)
        assert hli == pytest.approx(_unclamped(0.0, 0.0, 45.0))
        assert hli == pytest.approx(heat_load_index(0.0, 123.0, 45.0))

    def test_flat_at_equator_is_clamped_to_one(self):
        assert _unclamped(0.0, 0.0, 0.0) > 1.0
        assert heat_load_index(0.0, np.nan, 0.0) == 1.0

    @pytest.mark.parametrize(
        "slope, aspect, lat", [(np.nan, 90.0, 45.0), (10.0, np.nan, 45.0), (10.0, 90.0, np.nan)]
    )
    def test_missing_inputs(self, slope, aspect, lat):
        assert np.isnan(heat_load_index(slope, aspect, lat))

    def test_broadcasts_scalar_latitude(self):
        hli = heat_load_index(np.array([10.0, 20.0]), np.array([180.0, 0.0]), 45.0)
        assert hli.shape == (2,)


class TestClamp:
    """Tests for clamp_hli()"""

    def test_clamps_and_keeps_nan(self):
        result = clamp_hli(np.array([-0.2, 0.5, 1.3, np.nan]))
        np.testing.assert_array_equal(result[:3], [0.0, 0.5, 1.0])
        assert np.isnan(result[3])


class TestHeatLoadSurfaces:
    """Tests for compute_hli_surface() and build_heat_load_surfaces()"""

    def test_surfaces_are_co_registered(self, cone_dem):
        terrain = compute_slope_aspect(cone_dem)
        surfaces = build_heat_load_surfaces(terrain, cell_latitudes(cone_dem))

        assert isinstance(surfaces, HeatLoadSurfaces)
        for grid in (surfaces.aspect, surfaces.folded_aspect, surfaces.hli):
            assert grid.same_geometry(cone_dem)
        assert set(surfaces.as_dict()) == {"slope", "aspect", "folded_aspect", "hli"}

    def test_missing_cells_stay_missing(self, cone_dem):
        terrain = compute_slope_aspect(cone_dem)
        hli = compute_hli_surface(terrain, cell_latitudes(cone_dem)).data

        assert np.isnan(hli[0]).all()
        assert np.isfinite(hli[1:-1, 1:-1]).all()

    def test_flat_dem_hli_defined_everywhere_inside(self, flat_dem):
        terrain = compute_slope_aspect(flat_dem)
        hli = compute_hli_surface(terrain, cell_latitudes(flat_dem)).data
        assert np.isfinite(hli[1:-1, 1:-1]).all()

    def test_latitude_shape_mismatch(self, flat_dem):
        terrain = compute_slope_aspect(flat_dem)
        with pytest.raises(ValueError, match="Latitude shape"):
            compute_hli_surface(terrain, np.zeros((2, 2)))

    def test_rejects_misaligned_surfaces(self):
        a = utm_grid(np.zeros((3, 3)), y_top=5000000.0)
        b = utm_grid(np.zeros((3, 3)), y_top=5000010.0)
        with pytest.raises(ValueError, match="co-registered"):
            HeatLoadSurfaces(slope=a, aspect=a, folded_aspect=a, hli=b)
