"""Pytest configuration and fixtures for heat-load tests."""
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import pytest
import numpy as np
import geopandas as gpd
from rasterio.transform import Affine
from shapely.geometry import box

from src.heatload.grid import ElevationGrid
from src.heatload.hli import HeatLoadSurfaces

# UTM zone 10N, roughly 45 degrees north
UTM_CRS = "EPSG:32610"
CELL = 10.0
X0 = 500000.0


def utm_grid(data, y_top=5000300.0, crs=UTM_CRS):
    """Wrap an array in a north-up 10 m UTM grid whose top-left corner is (X0, y_top)."""
    return ElevationGrid(
        data=np.asarray(data, dtype=np.float64),
        transform=Affine(CELL, 0, X0, 0, -CELL, y_top),
        crs=crs,
    )


def surfaces_from_hli(grid, hli, slope=10.0, aspect=180.0):
    """HeatLoadSurfaces with a given HLI array and constant slope/aspect."""
    hli = np.asarray(hli, dtype=np.float64)
    slope_data = np.full(hli.shape, slope)
    aspect_data = np.full(hli.shape, aspect)
    return HeatLoadSurfaces(
        slope=grid.like(slope_data),
        aspect=grid.like(aspect_data),
        folded_aspect=grid.like(180.0 - np.abs(aspect_data - 180.0)),
        hli=grid.like(hli),
    )


@pytest.fixture
def flat_dem():
    """30x30 flat DEM at 100 m, 10 m cells."""
    return utm_grid(np.full((30, 30), 100.0))


@pytest.fixture
def cone_dem():
    """41x41 cone peaking at the centre cell, falling 0.2 m per metre."""
    rows, cols = 41, 41
    y_top = 5000410.0
    grid = utm_grid(np.zeros((rows, cols)), y_top=y_top)
    xs, ys = grid.cell_centers()
    apex_x = X0 + 20.5 * CELL
    apex_y = y_top - 20.5 * CELL
    z = 1000.0 - 0.2 * np.hypot(xs - apex_x, ys - apex_y)
    return utm_grid(z, y_top=y_top)


@pytest.fixture
def small_grid():
    """10x10 grid whose top-left corner is (500000, 5000100)."""
    return utm_grid(np.zeros((10, 10)), y_top=5000100.0)


@pytest.fixture
def indexed_surfaces(small_grid):
    """Surfaces whose HLI at (row, col) is row * 10 + col."""
    rows, cols = np.indices(small_grid.shape)
    return surfaces_from_hli(small_grid, rows * 10.0 + cols)


@pytest.fixture
def groups_on_flat():
    """Two openings and two reserves inside flat_dem, plus one reserve outside it."""
    return gpd.GeoDataFrame(
        {
            "group_id": [1, 2, 1, 2, 3],
            "treatment": ["Openings", "Openings", "Reserves", "Reserves", "Reserves"],
        },
        geometry=[
            box(500050, 5000050, 500100, 5000100),
            box(500150, 5000050, 500250, 5000100),
            box(500050, 5000150, 500100, 5000250),
            box(500150, 5000150, 500200, 5000200),
            box(600000, 6000000, 600100, 6000100),
        ],
        crs=UTM_CRS,
    )


@pytest.fixture
def cache_dir(tmp_path):
    """Temporary cache directory for tests."""
    cache = tmp_path / "cache"
    cache.mkdir()
    return cache


@pytest.fixture
def project_root():
    """Get the project root directory."""
    return Path(__file__).parent.parent
