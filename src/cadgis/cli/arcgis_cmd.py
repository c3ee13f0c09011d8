# cadgis/cli/arcgis_cmd.py
"""
ArcGIS Online commands: login check, browsing and service import.
"""

from pathlib import Path
from typing import Optional

import click
from loguru import logger
from tabulate import tabulate

from cadgis.cli.common import (
    get_app_config,
    handle_errors,
    make_importer,
    open_drawing,
    print_report,
)
from cadgis.config import AppConfig
from cadgis.sources.arcgis import ArcGISClient, ArcGISFeatureSource
from cadgis.utils.console import console


def _logged_in_client(app_config: AppConfig, username: Optional[str], password: Optional[str]) -> ArcGISClient:
    client = ArcGISClient(app_config.arcgis)
    client.login(username, password)
    return client


credential_options = [
    click.option("--username", "-u", help="Portal username (default: arcgis.username)"),
    click.option("--password", "-p", help="Portal password (default: arcgis.password)"),
]


def with_credentials(func):
    for option in reversed(credential_options):
        func = option(func)
    return func


@click.group(name="arcgis")
def arcgis_commands():
    """ArcGIS Online feature services"""
    pass


@arcgis_commands.command("login")
@with_credentials
@click.pass_context
@handle_errors
def login(ctx, username, password):
    """Check portal credentials by requesting a token."""
    app_config = get_app_config(ctx)
    client = _logged_in_client(app_config, username, password)
    console.print(f"[green]✅ Logged in as {client.current_username()}[/green]")


@arcgis_commands.command("folders")
@with_credentials
@click.pass_context
@handle_errors
def folders(ctx, username, password):
    """List the user's content folders."""
    client = _logged_in_client(get_app_config(ctx), username, password)
    rows = [[f.title, f.id or "-"] for f in client.list_folders()]
    click.echo(tabulate(rows, headers=["Folder", "Id"], tablefmt="grid"))


@arcgis_commands.command("services")
@click.option("--folder", "-f", "folder_id", default="", help="Folder id (root folder when omitted)")
@with_credentials
@click.pass_context
@handle_errors
def services(ctx, folder_id, username, password):
    """List the Feature Service items of a folder."""
    client = _logged_in_client(get_app_config(ctx), username, password)
    items = client.list_feature_services(folder_id)
    if not items:
        click.echo("ℹ️  No feature services found")
        return
    rows = [[item.title, item.id] for item in items]
    click.echo(tabulate(rows, headers=["Service", "Item id"], tablefmt="grid"))


@arcgis_commands.command("import")
@click.argument("item_ids", nargs=-1, required=True)
@click.option("--drawing", "-d", type=click.Path(path_type=Path), help="Drawing (GeoPackage) to draw into")
@click.option("--symbol", "-s", "symbol_name", help="Symbol for point layers")
@click.option("--label", "-l", "label_attribute", help="Attribute written into the symbol labels")
@with_credentials
@click.pass_context
@handle_errors
def import_services(ctx, item_ids, drawing, symbol_name, label_attribute, username, password):
    """Import every sub-layer of the given Feature Service items."""
    app_config = get_app_config(ctx)
    client = _logged_in_client(app_config, username, password)
    source = ArcGISFeatureSource(client, out_sr=app_config.arcgis.source_epsg)

    surface = open_drawing(app_config, drawing)
    # ArcGIS imports are not refreshable, so they are not recorded
    importer = make_importer(app_config, surface, with_ledger=False)

    for item_id in item_ids:
        info = client.get_service_info(item_id)
        if not info.layers:
            console.print(f"[yellow]⚠️  No sublayers found for '{info.title}'[/yellow]")
            continue
        logger.info(f"Importing {len(info.layers)} sublayer(s) of {info.title}")
        report = importer.import_service(
            source, info, symbol_name=symbol_name, label_attribute=label_attribute
        )
        print_report(report, title=info.title)
