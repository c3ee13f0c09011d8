# cadgis/cli/tools_cmd.py
"""
Coordinate system and symbol library utilities.
"""

import click
from tabulate import tabulate

from cadgis.cli.common import get_app_config, get_symbol_library, handle_errors
from cadgis.core.crs import get_registry


@click.group(name="crs")
def crs_commands():
    """Supported coordinate systems"""
    pass


@crs_commands.command("list")
@handle_errors
def list_crs():
    """List the registered EPSG codes."""
    rows = [
        [d.epsg, d.name, "geographic" if d.is_geographic else "projected"]
        for d in get_registry()
    ]
    click.echo(tabulate(rows, headers=["EPSG", "Name", "Kind"], tablefmt="grid"))


@crs_commands.command("transform")
@click.argument("source_epsg", type=int)
@click.argument("target_epsg", type=int)
@click.argument("x", type=float)
@click.argument("y", type=float)
@handle_errors
def transform(source_epsg, target_epsg, x, y):
    """Transform one coordinate pair between registered systems."""
    tx, ty = get_registry().transform(source_epsg, target_epsg).apply(x, y)
    click.echo(f"{tx:.6f} {ty:.6f}")


@click.group(name="symbols")
def symbols_commands():
    """Symbol library"""
    pass


@symbols_commands.command("list")
@click.pass_context
@handle_errors
def list_symbols(ctx):
    """List the symbols of the configured library and their label slots."""
    library = get_symbol_library(get_app_config(ctx))
    rows = [
        [name, ", ".join(definition.label_slots) or "-"]
        for name, definition in library.definitions.items()
    ]
    click.echo(tabulate(rows, headers=["Symbol", "Label slots"], tablefmt="grid"))
