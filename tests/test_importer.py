"""End-to-end tests of import and refresh against in-memory doubles."""

from datetime import datetime

import pytest
from shapely import geometry as sg

from cadgis.config.models import PostGISConfig
from cadgis.core.exceptions import LabelAttributeError, SourceConnectionError
from cadgis.core.feature import FeatureRecord
from cadgis.core.geometry import make_line, make_point
from cadgis.pipeline.importer import Importer
from cadgis.pipeline.ledger import LayerMeta
from cadgis.render import gpkg_surface
from cadgis.render.gpkg_surface import GeoPackageDrawingSurface
from cadgis.render.surface import InMemoryDrawingSurface, PrimitiveKind
from cadgis.render.symbols import SymbolLibrary
from cadgis.sources.arcgis import ServiceInfo
from cadgis.sources.base import FeatureBatch
from cadgis.sources.postgis import PostGISClient, PostGISFeatureSource, TableInfo

from fakes import FakeDatabase

ASSETS = TableInfo(schema="public", table="assets", geom_column="geom", geom_type="POINT", srid=27700)
VALVES = TableInfo(schema="public", table="valves", geom_column="geom", geom_type="POINT", srid=27700)
CONFIG = PostGISConfig(host="db.example.org", database="gis", username="reader")


def asset_rows():
    return [
        {"id": 1, "kind": "x", "geom": sg.Point(530000, 180000).wkb_hex},
        {"id": 2, "kind": "x", "geom": sg.Point(530010, 180010).wkb_hex},
        {"id": 3, "kind": "y", "geom": sg.Point(530020, 180020).wkb_hex},
    ]


def group_handler(query, params):
    """Answers group filter queries with the matching subset only."""
    rows = asset_rows()
    for key in ("x", "y"):
        if f"= '{key}'" in str(query):
            return [r for r in rows if r["kind"] == key]
    return rows


def valve_rows():
    return [
        {"id": 1, "active": True, "geom": sg.Point(530000, 180000).wkb_hex},
        {"id": 2, "active": False, "geom": sg.Point(530010, 180010).wkb_hex},
    ]


def boolean_handler(query, params):
    """Compares the active column the way a boolean column does: only true/false literals match."""
    query = str(query)
    rows = valve_rows()
    if "AS src WHERE" not in query:
        return rows
    if query.endswith('src."active" = true'):
        return [r for r in rows if r["active"] is True]
    if query.endswith('src."active" = false'):
        return [r for r in rows if r["active"] is False]
    return []


def postgis_source(handler=group_handler):
    database = FakeDatabase(handler)
    return PostGISFeatureSource(PostGISClient(CONFIG, connect=database)), database


@pytest.fixture
def importer(surface, ledger):
    return Importer(surface, target_epsg=27700, ledger=ledger, symbol_library=SymbolLibrary())


class TestImport:
    def test_split_import_creates_one_layer_per_group(self, importer, surface, ledger):
        source, _ = postgis_source()

        report = importer.import_table(source, ASSETS, layer_name="base", split_by="kind")

        assert report.layers == ["base-x", "base-y"]
        assert len(surface.primitives("base-x")) == 2
        assert len(surface.primitives("base-y")) == 1
        assert all(p.kind is PrimitiveKind.POINT for p in surface.primitives("base-x"))
        assert report.drawn_count == 3

        records = {m.layer_name: m for m in ledger.list()}
        assert set(records) == {"base-x", "base-y"}
        assert records["base-x"].import_sql == (
            'SELECT * FROM (SELECT * FROM "public"."assets") AS src WHERE src."kind" = \'x\''
        )
        assert records["base-x"].owning_document == "C:/Drawings/site.dwg"
        assert records["base-x"].host == "db.example.org"

    def test_table_import_records_no_query(self, importer, ledger):
        source, _ = postgis_source()
        importer.import_table(source, ASSETS)
        [record] = ledger.list()
        assert record.layer_name == "assets"
        assert record.import_sql is None
        assert record.schema_name == "public"

    def test_split_attribute_is_case_insensitive(self, importer, surface):
        source, _ = postgis_source()
        report = importer.import_table(source, ASSETS, layer_name="base", split_by="KIND")
        assert report.layers == ["base-x", "base-y"]

    def test_symbols_with_labels(self, importer, surface):
        source, _ = postgis_source()
        importer.import_table(source, ASSETS, symbol_name="VALVE", label_attribute="Kind")
        symbols = surface.primitives("assets")
        assert {p.kind for p in symbols} == {PrimitiveKind.SYMBOL}
        assert [dict(p.attributes) for p in symbols] == [{"ID": "x"}, {"ID": "x"}, {"ID": "y"}]

    def test_label_problems_fail_before_drawing(self, importer, surface, ledger):
        source, _ = postgis_source()
        with pytest.raises(LabelAttributeError):
            importer.import_table(source, ASSETS, symbol_name="VALVE")
        assert surface.layer_names() == []
        assert ledger.list() == []

    def test_symbol_ignored_for_lines(self, importer, surface, loguru_capture):
        batch = FeatureBatch("kerbs", [FeatureRecord.from_raw({"id": 1}, make_line([(0, 0), (1, 1)]))], 27700)
        importer.import_batch(batch, symbol_name="VALVE")
        assert surface.primitives("kerbs")[0].kind is PrimitiveKind.POLYLINE
        assert "symbol VALVE ignored" in loguru_capture.getvalue()

    def test_failure_in_one_group_leaves_drawing_untouched(self, ledger):
        class FailingSurface(InMemoryDrawingSurface):
            def ensure_layer(self, name):
                if name.endswith("-y"):
                    raise RuntimeError("disk full")
                return super().ensure_layer(name)

        surface = FailingSurface()
        source, _ = postgis_source()
        with pytest.raises(RuntimeError):
            Importer(surface, ledger=ledger).import_table(source, ASSETS, layer_name="base", split_by="kind")
        assert surface.layer_names() == []
        assert ledger.list() == []

    def test_empty_result(self, importer, surface, ledger):
        source, _ = postgis_source(lambda q, p: [])
        report = importer.import_table(source, ASSETS)
        assert report.results == []
        assert surface.layer_names() == []
        assert ledger.list() == []

    def test_query_import_with_extent(self, importer, ledger):
        source, database = postgis_source()
        query = 'SELECT "id", "kind", "geom" FROM "public"."assets"'

        importer.import_query(source, ASSETS, query, layer_name="clipped", extent=(0.0, 0.0, 1000.0, 1000.0))

        executed = str(database.connections[0].executed[0][0])
        assert "ST_Intersection" in executed
        assert ledger.get("clipped").import_sql == executed

    def test_service_import_is_not_recorded(self, importer, surface, ledger):
        batch = FeatureBatch("Valves", [FeatureRecord.from_raw({}, make_point(-0.1, 51.5))], 4326)

        class StubServiceSource:
            def fetch_service(self, info):
                yield batch

        report = importer.import_service(StubServiceSource(), ServiceInfo("i1", "Assets", "https://x"))
        assert report.layers == ["Valves"]
        x, y, _ = surface.primitives("Valves")[0].location
        assert 520_000 < x < 540_000
        assert ledger.list() == []

    def test_failing_service_layer_draws_nothing(self, importer, surface):
        first = FeatureBatch("Valves", [FeatureRecord.from_raw({}, make_point(-0.1, 51.5))], 4326)

        class HalfFailingServiceSource:
            def fetch_service(self, info):
                yield first
                raise SourceConnectionError("Hydrants: service unavailable")

        with pytest.raises(SourceConnectionError, match="Hydrants"):
            importer.import_service(HalfFailingServiceSource(), ServiceInfo("i1", "Assets", "https://x"))
        assert surface.layer_names() == []


class TestRefresh:
    def test_refresh_replaces_layer_contents(self, importer, surface, ledger):
        source, _ = postgis_source()
        importer.import_table(source, ASSETS, layer_name="base", split_by="kind")
        before = ledger.get("base-x").last_imported

        rows_after = [{"id": 9, "kind": "x", "geom": sg.Point(1, 1).wkb_hex}]
        refreshed, _ = postgis_source(lambda q, p: rows_after)
        report = importer.refresh(lambda meta: refreshed, ["base-x"])

        assert not report.failed
        assert report.results[0].stats.cleared_count == 2
        assert [p.location for p in surface.primitives("base-x")] == [(1.0, 1.0, 0.0)]
        assert len(surface.primitives("base-y")) == 1
        assert ledger.get("base-x").last_imported >= before

    def test_refresh_runs_recorded_group_query(self, importer, surface):
        source, _ = postgis_source()
        importer.import_table(source, ASSETS, layer_name="base", split_by="kind")

        refreshed, database = postgis_source()
        importer.refresh(lambda meta: refreshed)

        executed = [str(c.executed[0][0]) for c in database.connections]
        assert any(q.endswith("= 'x'") for q in executed)
        assert len(surface.primitives("base-x")) == 2
        assert len(surface.primitives("base-y")) == 1

    def test_boolean_split_refresh_keeps_each_group(self, importer, surface, ledger):
        source, _ = postgis_source(boolean_handler)
        report = importer.import_table(source, VALVES, split_by="active")
        assert report.layers == ["valves-True", "valves-False"]

        refreshed, database = postgis_source(boolean_handler)
        report = importer.refresh(lambda meta: refreshed)

        assert not report.failed
        assert [r.stats.cleared_count for r in report.results] == [1, 1]
        assert [r.stats.drawn_count for r in report.results] == [1, 1]
        assert len(surface.primitives("valves-True")) == 1
        assert len(surface.primitives("valves-False")) == 1
        assert ledger.get("valves-True").import_sql.endswith('src."active" = true')

    def test_write_failure_is_isolated_per_layer(self, tmp_path, ledger, monkeypatch):
        drawing = GeoPackageDrawingSurface(tmp_path / "site.gpkg")
        importer = Importer(drawing, ledger=ledger)
        source, _ = postgis_source()
        importer.import_table(source, ASSETS, layer_name="base", split_by="kind")

        real_write = gpkg_surface.write_gpkg_layer

        def write(gdf, path, layer, *args, **kwargs):
            if layer == "base-x":
                raise OSError("No space left on device")
            return real_write(gdf, path, layer, *args, **kwargs)

        monkeypatch.setattr(gpkg_surface, "write_gpkg_layer", write)
        report = importer.refresh(lambda meta: source, ["base-x", "base-y"])

        assert {r.layer: r.ok for r in report.results} == {"base-x": False, "base-y": True}
        assert "No space left" in report.results[0].error
        assert not drawing.in_transaction
        assert len(drawing.primitives("base-x")) == 2
        assert len(drawing.primitives("base-y")) == 1

    def test_failures_are_isolated_per_layer(self, importer, surface, ledger):
        source, _ = postgis_source()
        importer.import_table(source, ASSETS, layer_name="base", split_by="kind")
        ledger.upsert(
            LayerMeta(
                layer_name="lambert",
                schema_name="public",
                table="assets",
                geom_column="geom",
                srid=2154,
                owning_document=surface.document_id,
            )
        )

        def refuse(**kwargs):
            raise SourceConnectionError("server down")

        offline = PostGISFeatureSource(PostGISClient(CONFIG, connect=refuse))
        online, _ = postgis_source()

        def source_for(meta):
            return offline if meta.layer_name == "base-x" else online

        report = importer.refresh(source_for, ["base-x", "lambert", "base-y", "missing"])

        outcome = {r.layer: r.ok for r in report.results}
        assert outcome == {"base-x": False, "lambert": False, "base-y": True, "missing": False}
        assert "EPSG:2154" in report.results[1].error
        assert len(surface.primitives("base-x")) == 2
        assert "lambert" not in surface.layer_names()

    def test_refresh_claims_the_current_document(self, ledger):
        ledger.upsert(
            LayerMeta(
                layer_name="assets",
                schema_name="public",
                table="assets",
                geom_column="geom",
                srid=27700,
                owning_document="C:/elsewhere.dwg",
                last_imported=datetime(2020, 1, 1),
            )
        )
        surface = InMemoryDrawingSurface("C:/Drawings/new.dwg")
        source, _ = postgis_source()
        Importer(surface, ledger=ledger).refresh(lambda meta: source)

        record = ledger.get("assets")
        assert record.owning_document == "C:/Drawings/new.dwg"
        assert record.last_imported > datetime(2020, 1, 1)
        assert len(surface.primitives("assets")) == 3

    def test_refresh_needs_a_ledger(self, surface):
        with pytest.raises(Exception, match="ledger"):
            Importer(surface).refresh(lambda meta: None)
