# cadgis/cli/pg_cmd.py
"""
PostGIS commands: catalogue browsing, table and query imports, refresh.
"""

import re
from pathlib import Path
from typing import List, Optional, Sequence

import click
from tabulate import tabulate

from cadgis.cli.common import (
    get_app_config,
    handle_errors,
    make_importer,
    open_drawing,
    print_report,
)
from cadgis.config import AppConfig, PostGISConfig
from cadgis.core.exceptions import QueryError
from cadgis.pipeline.ledger import LayerMeta
from cadgis.sources.postgis import (
    OPERATORS,
    ColumnInfo,
    PostGISClient,
    PostGISFeatureSource,
    QueryCondition,
    build_query,
)
from cadgis.utils.console import console

_CONDITION = re.compile(
    r"^\s*(?P<column>\S+)\s+(?P<op><>|>=|<=|=|>|<|like)\s+(?P<value>.+?)\s*$", re.IGNORECASE
)


def _client(ctx: click.Context) -> PostGISClient:
    app_config: AppConfig = get_app_config(ctx)
    overrides = {k: v for k, v in ctx.obj.get("pg_overrides", {}).items() if v is not None}
    config = app_config.postgis.model_copy(update=overrides) if overrides else app_config.postgis
    return PostGISClient(config)


def client_for_meta(base: PostGISConfig, meta: LayerMeta) -> PostGISClient:
    """Client for the server a layer was imported from; credentials come from configuration."""
    updates = {}
    if meta.host:
        updates["host"] = meta.host
    if meta.database:
        updates["database"] = meta.database
    if meta.username and not base.username:
        updates["username"] = meta.username
    return PostGISClient(base.model_copy(update=updates))


def parse_conditions(expressions: Sequence[str], columns: List[ColumnInfo]) -> List[QueryCondition]:
    """Parse ``column op value`` expressions against the table's columns."""
    by_name = {c.name.lower(): c for c in columns}
    conditions = []
    for expression in expressions:
        match = _CONDITION.match(expression)
        if not match:
            raise QueryError(
                f"Cannot parse condition '{expression}', expected 'column op value' "
                f"with op in {', '.join(OPERATORS)}"
            )
        column = by_name.get(match["column"].strip('"').lower())
        if column is None:
            raise QueryError(f"Unknown column '{match['column']}'")
        conditions.append(QueryCondition(column, match["op"].upper(), match["value"]))
    return conditions


@click.group(name="pg")
@click.option("--host", help="PostGIS host (default: postgis.host)")
@click.option("--port", type=int, help="PostGIS port")
@click.option("--database", "-d", help="Database name")
@click.option("--username", "-u", help="Database user")
@click.option("--password", "-p", help="Database password")
@click.pass_context
def pg_commands(ctx, host, port, database, username, password):
    """PostGIS tables and queries"""
    ctx.ensure_object(dict)
    ctx.obj["pg_overrides"] = {
        "host": host,
        "port": port,
        "database": database,
        "username": username,
        "password": password,
    }


@pg_commands.command("tables")
@click.pass_context
@handle_errors
def tables(ctx):
    """List spatial tables (geometry_columns)."""
    rows = [
        [t.schema, t.table, t.geom_column, t.geom_type, t.srid] for t in _client(ctx).list_tables()
    ]
    if not rows:
        click.echo("ℹ️  No spatial tables found")
        return
    click.echo(tabulate(rows, headers=["Schema", "Table", "Geometry", "Type", "SRID"], tablefmt="grid"))


@pg_commands.command("columns")
@click.argument("schema")
@click.argument("table")
@click.pass_context
@handle_errors
def columns(ctx, schema, table):
    """List the columns of a table."""
    rows = [[c.name, c.data_type] for c in _client(ctx).list_columns(schema, table)]
    click.echo(tabulate(rows, headers=["Column", "Type"], tablefmt="grid"))


@pg_commands.command("values")
@click.argument("schema")
@click.argument("table")
@click.argument("column")
@click.option("--limit", type=int, help="Maximum number of values (default: postgis.distinct_values_limit)")
@click.pass_context
@handle_errors
def values(ctx, schema, table, column, limit):
    """List distinct values of a column."""
    for value in _client(ctx).distinct_values(schema, table, column, limit):
        click.echo(value)


def import_options(func):
    options = [
        click.option("--drawing", type=click.Path(path_type=Path), help="Drawing (GeoPackage) to draw into"),
        click.option("--layer", "layer_name", help="Drawing layer name (default: table name)"),
        click.option("--split-by", help="Create one layer per distinct value of this attribute"),
        click.option("--symbol", "-s", "symbol_name", help="Symbol for point layers"),
        click.option("--label", "-l", "label_attribute", help="Attribute written into the symbol labels"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@pg_commands.command("import")
@click.argument("schema")
@click.argument("table")
@import_options
@click.pass_context
@handle_errors
def import_table(ctx, schema, table, drawing, layer_name, split_by, symbol_name, label_attribute):
    """Import a whole table."""
    app_config = get_app_config(ctx)
    client = _client(ctx)
    table_info = client.get_table(schema, table)

    importer = make_importer(app_config, open_drawing(app_config, drawing))
    report = importer.import_table(
        PostGISFeatureSource(client),
        table_info,
        layer_name=layer_name,
        split_by=split_by,
        symbol_name=symbol_name,
        label_attribute=label_attribute,
    )
    print_report(report, title=f"{schema}.{table}")


@pg_commands.command("query-import")
@click.argument("schema")
@click.argument("table")
@click.option("--sql", "query", help="SELECT statement (built from --field/--where when omitted)")
@click.option("--field", "-f", "fields", multiple=True, help="Attribute column to select")
@click.option("--where", "-w", "conditions", multiple=True, help="Condition 'column op value'")
@click.option(
    "--extent",
    nargs=4,
    type=float,
    help="Clip to XMIN YMIN XMAX YMAX in the drawing CRS",
)
@click.option("--dry-run", is_flag=True, help="Print the query without running it")
@import_options
@click.pass_context
@handle_errors
def query_import(
    ctx, schema, table, query, fields, conditions, extent, dry_run,
    drawing, layer_name, split_by, symbol_name, label_attribute,
):
    """Import the result of a query against a table."""
    app_config = get_app_config(ctx)
    client = _client(ctx)
    table_info = client.get_table(schema, table)

    if not query:
        parsed = parse_conditions(conditions, client.list_columns(schema, table)) if conditions else []
        query = build_query(table_info, fields, parsed)

    if dry_run:
        click.echo(query)
        return

    importer = make_importer(app_config, open_drawing(app_config, drawing))
    report = importer.import_query(
        PostGISFeatureSource(client),
        table_info,
        query,
        layer_name=layer_name,
        split_by=split_by,
        symbol_name=symbol_name,
        label_attribute=label_attribute,
        extent=tuple(extent) if extent else None,
    )
    print_report(report, title=f"{schema}.{table}")


@pg_commands.command("refresh")
@click.argument("layers", nargs=-1)
@click.option("--drawing", type=click.Path(path_type=Path), help="Drawing (GeoPackage) to refresh")
@click.option("--all", "refresh_all", is_flag=True, help="Refresh every recorded layer of the drawing")
@click.pass_context
@handle_errors
def refresh(ctx, layers, drawing, refresh_all):
    """Re-import recorded layers, replacing their contents."""
    app_config = get_app_config(ctx)
    surface = open_drawing(app_config, drawing)
    importer = make_importer(app_config, surface)

    if not layers and not refresh_all:
        raise click.UsageError("Give layer names or --all")

    selected: Optional[List[str]] = list(layers) or None
    if selected is None:
        document = (surface.document_id or "").lower()
        selected = [
            m.layer_name
            for m in importer.ledger.list()
            if not m.owning_document or m.owning_document.lower() == document
        ]
        if not selected:
            console.print("[yellow]No recorded layers for this drawing[/yellow]")
            return

    base = _client(ctx).config
    report = importer.refresh(
        lambda meta: PostGISFeatureSource(client_for_meta(base, meta)), selected
    )
    print_report(report, title="Refresh")
    if report.failed:
        ctx.exit(1)
