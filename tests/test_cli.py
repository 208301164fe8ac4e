"""
Tests for the heat-load command line.
"""

import pytest

from src.heatload.cache import read_groups_artifact
from src.heatload.cli import build_parser, main
from src.heatload.grid import save_raster


@pytest.fixture
def inputs(tmp_path, flat_dem, groups_on_flat):
    dem_path = save_raster(flat_dem, tmp_path / "dem.tif")
    groups_path = tmp_path / "groups.gpkg"
    groups_on_flat.to_file(groups_path, driver="GPKG")
    return dem_path, groups_path


class TestParser:
    """Tests for build_parser()"""

    def test_defaults(self):
        args = build_parser().parse_args(["dem.tif", "groups.gpkg"])
        assert args.id_column == "group_id"
        assert args.treatment_column == "treatment"
        assert not args.overwrite
        assert not args.all_touched

    def test_requires_dem(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestMain:
    """Tests for main()"""

    def test_run_writes_output(self, tmp_path, inputs, capsys):
        dem_path, groups_path = inputs
        out = tmp_path / "out" / "groups_hli.gpkg"

        code = main([
            str(dem_path), str(groups_path),
            "--output", str(out),
            "--cache-dir", str(tmp_path / "cache"),
            "--quiet",
        ])

        assert code == 0
        assert out.exists()
        assert len(read_groups_artifact(out)) == 5
        assert "By treatment class" in capsys.readouterr().out

    def test_split_files(self, tmp_path, inputs, groups_on_flat):
        dem_path, _ = inputs
        openings = tmp_path / "openings.gpkg"
        reserves = tmp_path / "reserves.gpkg"
        groups_on_flat[groups_on_flat["treatment"] == "Openings"].drop(columns="treatment").to_file(openings)
        groups_on_flat[groups_on_flat["treatment"] == "Reserves"].drop(columns="treatment").to_file(reserves)
        out = tmp_path / "split.gpkg"

        code = main([
            str(dem_path),
            "--openings", str(openings),
            "--reserves", str(reserves),
            "--output", str(out),
            "--no-cache",
            "--quiet",
        ])

        assert code == 0
        assert sorted(read_groups_artifact(out)["treatment"]) == ["Openings"] * 2 + ["Reserves"] * 3

    def test_export_rasters(self, tmp_path, inputs):
        dem_path, groups_path = inputs
        rasters = tmp_path / "rasters"

        main([
            str(dem_path), str(groups_path),
            "--output", str(tmp_path / "out.gpkg"),
            "--no-cache",
            "--export-rasters", str(rasters),
            "--quiet",
        ])

        assert (rasters / "hli.tif").exists()
        assert (rasters / "slope.tif").exists()

    def test_explain_does_not_write(self, tmp_path, inputs, capsys):
        dem_path, groups_path = inputs
        out = tmp_path / "out.gpkg"

        assert main([str(dem_path), str(groups_path), "--output", str(out), "--no-cache", "--explain"]) == 0
        assert not out.exists()
        assert "Execution Plan" in capsys.readouterr().out

    def test_groups_and_split_files_conflict(self, inputs):
        dem_path, groups_path = inputs
        with pytest.raises(SystemExit):
            main([str(dem_path), str(groups_path), "--openings", str(groups_path)])

    def test_no_groups(self, inputs):
        dem_path, _ = inputs
        with pytest.raises(SystemExit):
            main([str(dem_path)])
