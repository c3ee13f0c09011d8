"""Smoke tests for CLI commands - no real portal or database."""

import importlib
from datetime import datetime

import pytest
from click.testing import CliRunner
from shapely import geometry as sg

from cadgis.cli import common, pg_cmd
from cadgis.cli.main import cli
from cadgis.pipeline.ledger import LayerLedger, LayerMeta
from cadgis.sources.postgis import PostGISClient
from cadgis.utils.gpkg import list_gpkg_layers

from fakes import FakeDatabase

# cadgis.cli re-exports the main() function under the module name
cli_module = importlib.import_module("cadgis.cli.main")


def pipes_handler(query, params):
    text = str(query)
    if "geometry_columns" in text:
        return [
            {
                "f_table_schema": "public",
                "f_table_name": "pipes",
                "f_geometry_column": "geom",
                "type": "LINESTRING",
                "srid": 27700,
            }
        ]
    if "information_schema" in text:
        return [
            {"column_name": "id", "data_type": "integer"},
            {"column_name": "type", "data_type": "text"},
            {"column_name": "diameter", "data_type": "integer"},
        ]
    return [
        {"id": 1, "type": "Foul", "diameter": 150, "geom": sg.LineString([(0, 0), (10, 0)]).wkb_hex},
        {"id": 2, "type": "Surface Water", "diameter": 300, "geom": sg.LineString([(0, 5), (10, 5)]).wkb_hex},
    ]


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CADGIS_LEDGER_PATH", str(tmp_path / "ledger.json"))
    monkeypatch.setattr(common, "_symbol_library", None)
    # keep log records in the capture sink instead of the runner streams
    monkeypatch.setattr(cli_module, "setup_logging", lambda **kwargs: None)
    return CliRunner()


@pytest.fixture
def fake_postgis(monkeypatch):
    monkeypatch.setattr(
        pg_cmd, "PostGISClient", lambda config: PostGISClient(config, connect=FakeDatabase(pipes_handler))
    )


def test_cli_help(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for group in ("arcgis", "pg", "ledger", "crs", "symbols"):
        assert group in result.output


@pytest.mark.parametrize("group", ["arcgis", "pg", "ledger", "crs", "symbols", "logs"])
def test_group_help(runner, group):
    result = runner.invoke(cli, [group, "--help"])
    assert result.exit_code == 0
    assert "Usage:" in result.output


def test_info(runner):
    result = runner.invoke(cli, ["info"])
    assert result.exit_code == 0
    assert "Target EPSG: 27700" in result.output


def test_crs_list(runner):
    result = runner.invoke(cli, ["crs", "list"])
    assert result.exit_code == 0
    assert "27700" in result.output
    assert "4326" in result.output


def test_crs_transform_identity(runner):
    result = runner.invoke(cli, ["crs", "transform", "27700", "27700", "1", "2"])
    assert result.exit_code == 0
    assert result.output.strip() == "1.000000 2.000000"


def test_crs_transform_unknown_code(runner):
    result = runner.invoke(cli, ["crs", "transform", "2154", "27700", "1", "2"])
    assert result.exit_code == 1
    assert "Unknown CRS: EPSG:2154" in result.output
    assert "Traceback" not in result.output


def test_symbols_list(runner):
    result = runner.invoke(cli, ["symbols", "list"])
    assert result.exit_code == 0
    assert "MANHOLE" in result.output
    assert "REF" in result.output


def test_arcgis_login_without_credentials(runner):
    result = runner.invoke(cli, ["arcgis", "login"])
    assert result.exit_code == 1
    assert "username and password are required" in result.output


class TestLedgerCommands:
    @pytest.fixture
    def ledger(self, tmp_path):
        ledger = LayerLedger(tmp_path / "ledger.json")
        for layer, document in (("pipes", tmp_path / "site.gpkg"), ("old", tmp_path / "old.gpkg")):
            ledger.upsert(
                LayerMeta(
                    layer_name=layer,
                    host="db",
                    database="gis",
                    schema_name="public",
                    table=layer,
                    srid=27700,
                    owning_document=str(document),
                    last_imported=datetime(2024, 5, 1),
                )
            )
        return ledger

    def test_empty(self, runner):
        result = runner.invoke(cli, ["ledger", "list"])
        assert result.exit_code == 0
        assert "No recorded layers" in result.output

    def test_list_and_show(self, runner, ledger):
        result = runner.invoke(cli, ["ledger", "list"])
        assert result.exit_code == 0
        assert "pipes" in result.output and "old" in result.output

        result = runner.invoke(cli, ["ledger", "show", "pipes"])
        assert result.exit_code == 0
        assert "AcadLayer" in result.output

    def test_show_unknown(self, runner, ledger):
        assert runner.invoke(cli, ["ledger", "show", "nope"]).exit_code == 1

    def test_prune(self, runner, ledger, tmp_path):
        result = runner.invoke(cli, ["ledger", "prune", str(tmp_path / "site.gpkg")])
        assert result.exit_code == 0
        assert [m.layer_name for m in ledger.list()] == ["pipes"]

    def test_remove(self, runner, ledger):
        result = runner.invoke(cli, ["ledger", "remove", "old", "never"])
        assert result.exit_code == 0
        assert "No record for never" in result.output
        assert [m.layer_name for m in ledger.list()] == ["pipes"]


class TestPostGISCommands:
    def test_tables(self, runner, fake_postgis):
        result = runner.invoke(cli, ["pg", "tables"])
        assert result.exit_code == 0
        assert "pipes" in result.output

    def test_query_dry_run(self, runner, fake_postgis):
        result = runner.invoke(
            cli,
            ["pg", "query-import", "public", "pipes", "--field", "type", "--where", "diameter > 100", "--dry-run"],
        )
        assert result.exit_code == 0, result.output
        assert result.output.strip() == (
            'SELECT "type", "geom" FROM "public"."pipes" WHERE "diameter" > 100'
        )

    def test_bad_condition(self, runner, fake_postgis):
        result = runner.invoke(
            cli, ["pg", "query-import", "public", "pipes", "--where", "colour = red", "--dry-run"]
        )
        assert result.exit_code == 1
        assert "Unknown column" in result.output

    def test_import_needs_a_drawing(self, runner, fake_postgis):
        result = runner.invoke(cli, ["pg", "import", "public", "pipes"])
        assert result.exit_code == 2
        assert "No drawing given" in result.output

    def test_import_and_refresh(self, runner, fake_postgis, tmp_path):
        drawing = tmp_path / "site.gpkg"
        result = runner.invoke(
            cli, ["pg", "import", "public", "pipes", "--drawing", str(drawing), "--split-by", "type"]
        )
        assert result.exit_code == 0, result.output
        assert sorted(list_gpkg_layers(drawing)) == ["pipes-Foul", "pipes-Surface_Water"]

        ledger = LayerLedger(tmp_path / "ledger.json")
        assert sorted(m.layer_name for m in ledger.list()) == ["pipes-Foul", "pipes-Surface_Water"]
        assert ledger.get("pipes-Foul").owning_document == str(drawing.absolute())

        result = runner.invoke(cli, ["pg", "refresh", "--all", "--drawing", str(drawing)])
        assert result.exit_code == 0, result.output
        assert "pipes-Foul" in result.output

    def test_refresh_needs_layers(self, runner, fake_postgis, tmp_path):
        result = runner.invoke(cli, ["pg", "refresh", "--drawing", str(tmp_path / "site.gpkg")])
        assert result.exit_code == 2
