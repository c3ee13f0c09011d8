# src/cadgis/sources/postgis.py
"""
PostGIS feature source.

Discovers spatial tables through ``geometry_columns``, builds and validates
SELECT statements and decodes the geometry column (EWKB) of every row.
"""

import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import psycopg
from loguru import logger
from psycopg import sql
from psycopg.rows import dict_row

from cadgis.config.models import PostGISConfig
from cadgis.core.crs import CrsRegistry, get_registry
from cadgis.core.exceptions import QueryError, SourceConnectionError
from cadgis.core.feature import FeatureRecord, find_key
from cadgis.core.geometry import from_wkb
from cadgis.sources.base import FeatureBatch, FeatureSource

OPERATORS = ("=", "<>", ">", "<", ">=", "<=", "LIKE")

NUMERIC_TYPE_MARKERS = ("int", "double", "numeric", "real", "float", "decimal")

# Alias used by hand-written queries for the geometry expression
GEOMETRY_ALIAS = "geom"

Extent = Tuple[float, float, float, float]


@dataclass(frozen=True)
class TableInfo:
    """One row of ``geometry_columns``."""

    schema: str
    table: str
    geom_column: str
    geom_type: str
    srid: int

    @property
    def qualified_name(self) -> str:
        return f"{quote_identifier(self.schema)}.{quote_identifier(self.table)}"

    def __str__(self):
        return f"{self.schema}.{self.table}"


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str

    @property
    def is_numeric(self) -> bool:
        data_type = self.data_type.lower()
        return any(marker in data_type for marker in NUMERIC_TYPE_MARKERS)


# =============================================================================
# SQL text helpers
# =============================================================================


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class QueryCondition:
    """``column operator value`` clause of the query builder."""

    column: ColumnInfo
    operator: str
    value: str

    def __post_init__(self):
        if self.operator.upper() not in OPERATORS:
            raise QueryError(f"Unsupported operator '{self.operator}', use one of {', '.join(OPERATORS)}")

    def to_sql(self) -> str:
        """SQL text of the condition, empty when no value was entered."""
        value = (self.value or "").strip()
        if not value:
            return ""
        operator = self.operator.upper()
        if operator == "LIKE":
            literal = quote_literal(f"%{value}%")
        elif self.column.is_numeric:
            try:
                float(value)
            except ValueError:
                raise QueryError(f"'{value}' is not a number for column {self.column.name}") from None
            literal = value
        else:
            literal = quote_literal(value)
        return f"{quote_identifier(self.column.name)} {operator} {literal}"


def default_query(schema: str, table: str) -> str:
    return f"SELECT * FROM {quote_identifier(schema)}.{quote_identifier(table)}"


def build_query(
    table: TableInfo,
    fields: Sequence[str] = (),
    conditions: Sequence[QueryCondition] = (),
) -> str:
    """
    Build a SELECT over selected fields plus the geometry column.

    Args:
        table: Source table
        fields: Attribute columns (all columns when empty)
        conditions: Conditions joined with AND; empty ones are ignored
    """
    if fields:
        columns = [quote_identifier(f) for f in fields if f != table.geom_column]
        columns.append(quote_identifier(table.geom_column))
        select = ", ".join(columns)
    else:
        select = "*"

    clauses = [c for c in (cond.to_sql() for cond in conditions) if c]
    where = " WHERE " + " AND ".join(clauses) if clauses else ""
    return f"SELECT {select} FROM {table.qualified_name}{where}"


def validate_query(query: str, geom_column: str) -> str:
    """
    Check a query before it is executed.

    Raises:
        QueryError: Not a single SELECT statement, or the geometry column
            is not referenced
    """
    text = (query or "").strip()
    if not text.lower().startswith("select"):
        raise QueryError("Only SELECT statements are allowed")
    if ";" in text:
        raise QueryError("Multiple statements are not allowed")
    # SELECT * returns the geometry column implicitly
    if not re.match(r"select\s+\*", text, re.IGNORECASE) and geom_column.lower() not in text.lower():
        raise QueryError(f"The query must include the geometry column '{geom_column}'")
    return text


def reproject_extent(
    extent: Extent, from_epsg: int, to_epsg: int, registry: Optional[CrsRegistry] = None
) -> Extent:
    """Transform an (xmin, ymin, xmax, ymax) box by its two corners."""
    transform = (registry or get_registry()).transform(from_epsg, to_epsg)
    x1, y1 = transform.apply(extent[0], extent[1])
    x2, y2 = transform.apply(extent[2], extent[3])
    return min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2)


def clip_to_extent(query: str, geom_column: str, extent: Extent, srid: int) -> str:
    """
    Restrict a query to a box given in the table's CRS.

    The first geometry column reference in the select list becomes an
    ``ST_Intersection`` with the box, and an ``&&`` filter is appended.
    """
    xmin, ymin, xmax, ymax = extent
    envelope = f"ST_MakeEnvelope({xmin}, {ymin}, {xmax}, {ymax}, {srid})"
    column = quote_identifier(geom_column)
    intersection = f"ST_Intersection({column}, {envelope}) AS {column}"

    match = re.search(r"\bfrom\b", query, re.IGNORECASE)
    if match:
        select_part, rest = query[: match.start()], query[match.start():]
        geom_ref = re.search(re.escape(column), select_part, re.IGNORECASE)
        if geom_ref:
            select_part = select_part[: geom_ref.start()] + intersection + select_part[geom_ref.end():]
        query = select_part + rest

    extent_clause = f"{column} && {envelope}"
    if re.search(r"\bwhere\b", query, re.IGNORECASE):
        return f"{query} AND {extent_clause}"
    return f"{query} WHERE {extent_clause}"


def group_filter_query(query: str, column: str, value: Any) -> str:
    """
    Wrap a query so that it only returns rows of one split group.

    The group is matched on its raw attribute value, rendered as a typed SQL
    literal, so booleans, numerics and timestamps compare as the column type
    and not through their Python text form.
    """
    column_ref = f"src.{quote_identifier(column)}"
    if value is None:
        condition = f"{column_ref} IS NULL"
    else:
        condition = f"{column_ref} = {sql.Literal(value).as_string(None)}"
    return f"SELECT * FROM ({query}) AS src WHERE {condition}"


# =============================================================================
# Client
# =============================================================================


class PostGISClient:
    """psycopg-backed access to a PostGIS database."""

    def __init__(self, config: Optional[PostGISConfig] = None, connect: Callable[..., Any] = psycopg.connect):
        self.config = config or PostGISConfig()
        self._connect = connect

    def __repr__(self):
        return f"<PostGISClient {self.config.username}@{self.config.host}:{self.config.port}/{self.config.database}>"

    @property
    def description(self) -> str:
        return f"{self.config.host}:{self.config.port}/{self.config.database}"

    @contextmanager
    def connection(self) -> Iterator[psycopg.Connection]:
        """Open a connection; it is closed on exit and rolled back on error."""
        try:
            conn = self._connect(
                host=self.config.host,
                port=self.config.port,
                dbname=self.config.database,
                user=self.config.username,
                password=self.config.password,
                connect_timeout=self.config.connect_timeout,
                row_factory=dict_row,
            )
        except psycopg.Error as e:
            raise SourceConnectionError(f"Cannot connect to {self.description}: {e}") from e

        logger.debug(f"Connected to {self.description}")
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _fetch_all(self, query, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    return list(cur.fetchall()) if cur.description else []
            except psycopg.OperationalError as e:
                raise SourceConnectionError(f"Connection to {self.description} lost: {e}") from e
            except psycopg.Error as e:
                raise QueryError(f"Query rejected: {e}") from e

    def test_connection(self) -> str:
        rows = self._fetch_all("SELECT version() AS version")
        return rows[0]["version"] if rows else ""

    def list_tables(self) -> List[TableInfo]:
        rows = self._fetch_all(
            "SELECT f_table_schema, f_table_name, f_geometry_column, type, srid "
            "FROM public.geometry_columns ORDER BY f_table_schema, f_table_name"
        )
        return [
            TableInfo(
                schema=r["f_table_schema"],
                table=r["f_table_name"],
                geom_column=r["f_geometry_column"],
                geom_type=r["type"],
                srid=int(r["srid"] or 0),
            )
            for r in rows
        ]

    def get_table(self, schema: str, table: str) -> TableInfo:
        for info in self.list_tables():
            if info.schema == schema and info.table == table:
                return info
        raise QueryError(f"No spatial table {schema}.{table} in {self.description}")

    def list_columns(self, schema: str, table: str) -> List[ColumnInfo]:
        rows = self._fetch_all(
            "SELECT column_name, data_type FROM information_schema.columns "
            "WHERE table_schema = %s AND table_name = %s ORDER BY ordinal_position",
            (schema, table),
        )
        return [ColumnInfo(name=r["column_name"], data_type=r["data_type"]) for r in rows]

    def distinct_values(self, schema: str, table: str, column: str, limit: Optional[int] = None) -> List[str]:
        """Distinct non-empty values of a column, for building conditions."""
        query = sql.SQL("SELECT DISTINCT {col} AS value FROM {schema}.{table} ORDER BY 1 LIMIT %s").format(
            col=sql.Identifier(column),
            schema=sql.Identifier(schema),
            table=sql.Identifier(table),
        )
        rows = self._fetch_all(query, (limit or self.config.distinct_values_limit,))
        return [str(r["value"]) for r in rows if r["value"] is not None and str(r["value"]) != ""]

    def execute(self, query: str) -> List[Dict[str, Any]]:
        logger.debug(f"Executing: {query}")
        return self._fetch_all(query)


class PostGISFeatureSource(FeatureSource):
    """Feature source over a SQL query against a PostGIS table."""

    def __init__(self, client: PostGISClient):
        self.client = client

    def fetch(
        self,
        query: str,
        geom_column: str,
        srid: int,
        layer_name: str,
        declared_type: Optional[str] = None,
    ) -> FeatureBatch:
        """
        Run a validated query and decode its rows.

        Args:
            query: SELECT statement
            geom_column: Declared geometry column of the table
            srid: CRS of the geometries
            layer_name: Name of the batch
            declared_type: Geometry type from ``geometry_columns``

        Raises:
            QueryError: Invalid or rejected query
            SourceConnectionError: Database unreachable
        """
        query = validate_query(query, geom_column)
        rows = self.client.execute(query)

        batch = FeatureBatch(layer_name=layer_name, source_epsg=srid, declared_type=declared_type)
        if not rows:
            logger.info(f"No rows for {layer_name}")
            return batch

        keys = list(rows[0])
        geometry_key = find_key(keys, GEOMETRY_ALIAS) or find_key(keys, geom_column)
        if geometry_key is None:
            raise QueryError(f"Result has no geometry column '{geom_column}'", layer=layer_name)
        dropped = {k for k in (geometry_key, find_key(keys, geom_column)) if k}

        undecodable = 0
        for row in rows:
            try:
                geometry = from_wkb(row.get(geometry_key))
            except ValueError as e:
                logger.debug(f"{layer_name}: {e}")
                geometry = None
                undecodable += 1
            attributes = {k: v for k, v in row.items() if k not in dropped}
            batch.features.append(FeatureRecord.from_raw(attributes, geometry))

        if undecodable:
            logger.warning(f"{layer_name}: {undecodable} geometries could not be decoded")
        logger.info(f"Fetched {batch.summary()}")
        return batch

    def fetch_table(self, table: TableInfo, layer_name: Optional[str] = None) -> FeatureBatch:
        return self.fetch(
            default_query(table.schema, table.table),
            table.geom_column,
            table.srid,
            layer_name or table.table,
            declared_type=table.geom_type,
        )
