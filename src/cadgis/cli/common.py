# cadgis/cli/common.py
"""
Helpers shared by the command groups: configuration access, drawing and
ledger construction, error reporting and report tables.
"""

import functools
import sys
from pathlib import Path
from typing import Optional

import click
from loguru import logger
from rich.table import Table

from cadgis.config import AppConfig, load_config
from cadgis.config.exceptions import ConfigurationError
from cadgis.core.exceptions import CadGisError
from cadgis.pipeline.importer import ImportReport, Importer
from cadgis.pipeline.ledger import LayerLedger, default_ledger_path
from cadgis.render.symbols import SymbolLibrary, SymbolResolver
from cadgis.utils.console import console

# One library per process: standard symbols are imported at most once
_symbol_library: Optional[SymbolLibrary] = None


def get_app_config(ctx: click.Context) -> AppConfig:
    ctx.ensure_object(dict)
    if "app_config" not in ctx.obj:
        ctx.obj["app_config"] = load_config(
            config_path=ctx.obj.get("config_path"),
            environment=ctx.obj.get("environment", "development"),
        )
    return ctx.obj["app_config"]


def handle_errors(func):
    """Report domain and configuration errors in red and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (click.ClickException, click.exceptions.Exit, click.Abort):
            raise
        except (CadGisError, ConfigurationError) as e:
            console.print(f"[red]❌ {e}[/red]")
            logger.debug(f"{type(e).__name__}: {e}")
            sys.exit(1)
        except Exception as e:
            ctx = click.get_current_context(silent=True)
            if ctx is not None and ctx.find_root().obj and ctx.find_root().obj.get("verbose"):
                console.print_exception()
            else:
                console.print(f"[red]❌ Unexpected error: {e}[/red]")
            sys.exit(1)

    return wrapper


def get_symbol_library(app_config: AppConfig) -> SymbolLibrary:
    global _symbol_library
    if _symbol_library is None:
        _symbol_library = SymbolLibrary(app_config.symbols.library)
    return _symbol_library


def get_ledger(app_config: AppConfig) -> LayerLedger:
    return LayerLedger(app_config.ledger.path or default_ledger_path())


def resolve_drawing(app_config: AppConfig, drawing: Optional[Path]) -> Path:
    path = drawing or app_config.drawing.document
    if path is None:
        raise click.UsageError("No drawing given: use --drawing or set drawing.document")
    return Path(path)


def open_drawing(app_config: AppConfig, drawing: Optional[Path]):
    """Open (or create) the GeoPackage drawing in the target CRS."""
    from cadgis.render.gpkg_surface import GeoPackageDrawingSurface

    path = resolve_drawing(app_config, drawing)
    return GeoPackageDrawingSurface(path, crs=f"EPSG:{app_config.global_.target_epsg}")


def make_importer(app_config: AppConfig, surface, with_ledger: bool = True) -> Importer:
    return Importer(
        surface,
        target_epsg=app_config.global_.target_epsg,
        ledger=get_ledger(app_config) if with_ledger else None,
        symbol_library=get_symbol_library(app_config),
        resolver=SymbolResolver(app_config.arcgis.reserved_prefixes),
        marker_radius=app_config.drawing.marker_radius,
    )


def print_report(report: ImportReport, title: str = "Import") -> None:
    table = Table(title=title)
    table.add_column("Layer", style="cyan")
    table.add_column("Drawn", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Status")

    for result in report.results:
        if result.ok:
            table.add_row(
                result.layer,
                str(result.stats.drawn_count),
                str(result.stats.skipped_count),
                "[green]OK[/green]",
            )
        else:
            table.add_row(result.layer, "-", "-", f"[red]{result.error}[/red]")

    console.print(table)
    console.print(
        f"Total: {report.drawn_count} drawn, {report.skipped_count} skipped, "
        f"{len(report.failed)} failed"
    )
