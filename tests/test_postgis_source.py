"""Tests for the PostGIS client, query helpers and feature source (no database)."""

import psycopg
import pytest
from psycopg.rows import dict_row
from shapely import geometry as sg

from cadgis.config.models import PostGISConfig
from cadgis.core.exceptions import QueryError, SourceConnectionError
from cadgis.core.geometry import GeometryKind, make_point
from cadgis.sources.postgis import (
    ColumnInfo,
    PostGISClient,
    PostGISFeatureSource,
    QueryCondition,
    TableInfo,
    build_query,
    clip_to_extent,
    default_query,
    group_filter_query,
    reproject_extent,
    validate_query,
)

from fakes import FakeDatabase

PIPES = TableInfo(schema="public", table="pipes", geom_column="geom", geom_type="LINESTRING", srid=27700)


def catalogue_handler(query, params):
    if "geometry_columns" in str(query):
        return [
            {"f_table_schema": "public", "f_table_name": "pipes", "f_geometry_column": "geom", "type": "LINESTRING", "srid": 27700},
            {"f_table_schema": "trees", "f_table_name": "survey", "f_geometry_column": "shape", "type": "POINT", "srid": None},
        ]
    if "information_schema" in str(query):
        return [{"column_name": "id", "data_type": "integer"}, {"column_name": "name", "data_type": "text"}]
    return [{"value": "Foul"}, {"value": None}, {"value": ""}, {"value": 12}]


@pytest.fixture
def config():
    return PostGISConfig(host="db.example.org", database="gis", username="reader", password="pw")


class TestQueryText:
    def test_default_query(self):
        assert default_query("public", "pipes") == 'SELECT * FROM "public"."pipes"'

    def test_identifiers_and_literals_are_quoted(self):
        condition = QueryCondition(ColumnInfo('od"d', "text"), "=", "O'Brien")
        assert condition.to_sql() == '"od""d" = \'O\'\'Brien\''

    def test_like_wraps_value(self):
        assert QueryCondition(ColumnInfo("name", "text"), "like", "oul").to_sql() == "\"name\" LIKE '%oul%'"

    def test_numeric_values_are_not_quoted(self):
        condition = QueryCondition(ColumnInfo("diameter", "double precision"), ">=", "150")
        assert condition.to_sql() == '"diameter" >= 150'

    def test_numeric_column_rejects_text(self):
        with pytest.raises(QueryError):
            QueryCondition(ColumnInfo("diameter", "integer"), "=", "wide").to_sql()

    def test_empty_value_is_ignored(self):
        assert QueryCondition(ColumnInfo("name", "text"), "=", "  ").to_sql() == ""

    def test_invalid_operator(self):
        with pytest.raises(QueryError):
            QueryCondition(ColumnInfo("name", "text"), "!=", "x")

    def test_build_query(self):
        conditions = [
            QueryCondition(ColumnInfo("type", "text"), "=", "Foul"),
            QueryCondition(ColumnInfo("name", "text"), "=", ""),
            QueryCondition(ColumnInfo("diameter", "integer"), ">", "100"),
        ]
        query = build_query(PIPES, ["name", "geom"], conditions)
        assert query == (
            'SELECT "name", "geom" FROM "public"."pipes" '
            "WHERE \"type\" = 'Foul' AND \"diameter\" > 100"
        )

    def test_build_query_all_columns(self):
        assert build_query(PIPES) == default_query("public", "pipes")


class TestValidation:
    @pytest.mark.parametrize(
        "query",
        [
            "DELETE FROM pipes",
            "SELECT geom FROM pipes; DROP TABLE pipes",
            "SELECT id, name FROM pipes",
            "",
        ],
    )
    def test_rejected(self, query):
        with pytest.raises(QueryError):
            validate_query(query, "geom")

    @pytest.mark.parametrize(
        "query",
        ["select * from pipes", "  SELECT id, GEOM FROM pipes ", "SELECT id, ST_Force2D(geom) AS geom FROM pipes"],
    )
    def test_accepted(self, query):
        assert validate_query(query, "geom") == query.strip()


class TestExtent:
    def test_clip_replaces_geometry_and_filters(self):
        query = clip_to_extent('SELECT "name", "geom" FROM "public"."pipes"', "geom", (0.0, 0.0, 10.0, 10.0), 27700)
        envelope = "ST_MakeEnvelope(0.0, 0.0, 10.0, 10.0, 27700)"
        assert query == (
            f'SELECT "name", ST_Intersection("geom", {envelope}) AS "geom" '
            f'FROM "public"."pipes" WHERE "geom" && {envelope}'
        )

    def test_clip_extends_existing_where(self):
        query = clip_to_extent("SELECT * FROM pipes WHERE id > 3", "geom", (0.0, 0.0, 1.0, 1.0), 27700)
        assert "ST_Intersection" not in query
        assert query.endswith('AND "geom" && ST_MakeEnvelope(0.0, 0.0, 1.0, 1.0, 27700)')

    def test_reproject_extent_orders_corners(self):
        xmin, ymin, xmax, ymax = reproject_extent((-0.2, 51.4, -0.1, 51.5), 4326, 27700)
        assert xmin < xmax and ymin < ymax
        assert 520_000 < xmin < 535_000

    def test_same_crs_extent_is_unchanged(self):
        assert reproject_extent((1, 2, 3, 4), 27700, 27700) == (1, 2, 3, 4)


class TestGroupFilter:
    def test_text_value(self):
        assert group_filter_query('SELECT * FROM "public"."pipes"', "type", "Foul") == (
            'SELECT * FROM (SELECT * FROM "public"."pipes") AS src WHERE src."type" = \'Foul\''
        )

    def test_boolean_is_compared_as_boolean(self):
        assert group_filter_query("SELECT * FROM t", "active", True).endswith('src."active" = true')
        assert group_filter_query("SELECT * FROM t", "active", False).endswith('src."active" = false')

    def test_number_is_not_quoted(self):
        assert group_filter_query("SELECT * FROM t", "diameter", 150).endswith('src."diameter" = 150')

    def test_null(self):
        assert group_filter_query("SELECT * FROM t", "type", None).endswith('src."type" IS NULL')

    def test_text_null_is_a_value(self):
        assert group_filter_query("SELECT * FROM t", "type", "NULL").endswith('src."type" = \'NULL\'')


class TestClient:
    def test_connection_settings(self, config):
        database = FakeDatabase(catalogue_handler)
        PostGISClient(config, connect=database).list_tables()
        kwargs = database.connect_kwargs[0]
        assert kwargs["host"] == "db.example.org"
        assert kwargs["dbname"] == "gis"
        assert kwargs["user"] == "reader"
        assert kwargs["row_factory"] is dict_row
        assert database.connections[0].closed

    def test_unreachable_server(self, config):
        def refuse(**kwargs):
            raise psycopg.OperationalError("connection refused")

        with pytest.raises(SourceConnectionError, match="db.example.org"):
            PostGISClient(config, connect=refuse).list_tables()

    def test_list_tables(self, config):
        tables = PostGISClient(config, connect=FakeDatabase(catalogue_handler)).list_tables()
        assert tables[0] == PIPES
        assert tables[1].srid == 0

    def test_get_table(self, config):
        client = PostGISClient(config, connect=FakeDatabase(catalogue_handler))
        assert client.get_table("public", "pipes") == PIPES
        with pytest.raises(QueryError):
            client.get_table("public", "missing")

    def test_list_columns(self, config):
        database = FakeDatabase(catalogue_handler)
        columns = PostGISClient(config, connect=database).list_columns("public", "pipes")
        assert [c.name for c in columns] == ["id", "name"]
        assert columns[0].is_numeric and not columns[1].is_numeric
        assert database.connections[0].executed[0][1] == ("public", "pipes")

    def test_distinct_values_skip_empty(self, config):
        database = FakeDatabase(catalogue_handler)
        values = PostGISClient(config, connect=database).distinct_values("public", "pipes", "type")
        assert values == ["Foul", "12"]
        assert database.connections[0].executed[0][1] == (100,)

    def test_rejected_query(self, config):
        database = FakeDatabase(lambda q, p: psycopg.ProgrammingError('relation "nope" does not exist'))
        with pytest.raises(QueryError, match="does not exist"):
            PostGISClient(config, connect=database).execute("SELECT * FROM nope")
        assert database.connections[0].rolled_back
        assert database.connections[0].closed

    def test_connection_lost_during_query(self, config):
        database = FakeDatabase(lambda q, p: psycopg.OperationalError("server closed the connection"))
        with pytest.raises(SourceConnectionError):
            PostGISClient(config, connect=database).execute("SELECT 1")


class TestFeatureSource:
    def test_rows_become_features(self, config):
        rows = [
            {"id": 1, "name": "a", "geom": sg.LineString([(0, 0), (1, 1)]).wkb_hex},
            {"id": 2, "name": "b", "geom": None},
        ]
        source = PostGISFeatureSource(PostGISClient(config, connect=FakeDatabase(lambda q, p: rows)))
        batch = source.fetch_table(PIPES)

        assert batch.layer_name == "pipes"
        assert batch.source_epsg == 27700
        assert batch.kind is GeometryKind.LINE
        assert batch.attribute_keys() == ["id", "name"]
        assert batch[1].geometry is None

    def test_geometry_alias_is_preferred(self, config):
        rows = [{"id": 1, "shape": b"raw", "GEOM": sg.Point(3, 4).wkb}]
        source = PostGISFeatureSource(PostGISClient(config, connect=FakeDatabase(lambda q, p: rows)))
        batch = source.fetch("SELECT id, shape, ST_Force2D(shape) AS geom FROM trees.survey", "shape", 27700, "trees")
        assert batch[0].geometry == make_point(3, 4)
        assert batch[0].attributes == {"id": 1}

    def test_undecodable_geometry_is_kept_without_geometry(self, config, loguru_capture):
        rows = [{"id": 1, "geom": "nothex"}, {"id": 2, "geom": sg.Point(1, 1).wkb_hex}]
        source = PostGISFeatureSource(PostGISClient(config, connect=FakeDatabase(lambda q, p: rows)))
        batch = source.fetch_table(PIPES)
        assert len(batch) == 2
        assert batch[0].geometry is None
        assert "1 geometries could not be decoded" in loguru_capture.getvalue()

    def test_no_rows(self, config):
        source = PostGISFeatureSource(PostGISClient(config, connect=FakeDatabase(lambda q, p: [])))
        batch = source.fetch_table(PIPES, layer_name="empty")
        assert len(batch) == 0
        assert batch.layer_name == "empty"

    def test_missing_geometry_column(self, config):
        rows = [{"id": 1}]
        source = PostGISFeatureSource(PostGISClient(config, connect=FakeDatabase(lambda q, p: rows)))
        with pytest.raises(QueryError, match=r"^\[pipes\]"):
            source.fetch_table(PIPES)

    def test_invalid_query_never_reaches_database(self, config):
        database = FakeDatabase(lambda q, p: [])
        source = PostGISFeatureSource(PostGISClient(config, connect=database))
        with pytest.raises(QueryError):
            source.fetch("UPDATE pipes SET x = 1", "geom", 27700, "pipes")
        assert database.connections == []
