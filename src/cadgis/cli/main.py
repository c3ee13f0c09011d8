#!/usr/bin/env python
"""
Main CLI entry point for cadgis.
"""

import sys
from pathlib import Path

import click
from loguru import logger
from rich import print as rprint

from cadgis._version import __version__
from cadgis.config import ENVIRONMENT_ALIASES, AppConfig, load_config, resolve_environment
from cadgis.config.loader import set_quiet
from cadgis.utils.logging import cadgis_logger, setup_logging


@click.group(context_settings={"show_default": True})
@click.version_option(version=__version__, prog_name="cadgis")
@click.option(
    "--config", "-c", type=click.Path(exists=True, path_type=Path), help="Configuration file path"
)
@click.option(
    "--env",
    "-e",
    type=click.Choice(list(ENVIRONMENT_ALIASES)),
    default="development",
    envvar="CADGIS_ENVIRONMENT",
    help="Environment (dev/prod/test)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output and debug logging")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Custom log file path (default: from configuration)",
)
@click.option("--log-info", is_flag=True, help="Show logging configuration and exit")
@click.pass_context
def cli(ctx, config, env, verbose, log_file, log_info):
    """cadgis - import GIS features into drawings"""
    ctx.ensure_object(dict)

    environment = resolve_environment(env)

    try:
        set_quiet(not verbose)
        app_config: AppConfig = load_config(config_path=config, environment=environment)

        ctx.obj["app_config"] = app_config
        ctx.obj["config_path"] = config
        ctx.obj["environment"] = environment
        ctx.obj["verbose"] = verbose

        if verbose:
            rprint(f"[cyan]Environment: {environment}[/cyan]")
            rprint(f"[cyan]Log Level: {app_config.global_.log_level}[/cyan]")
            rprint(f"[cyan]Target EPSG: {app_config.global_.target_epsg}[/cyan]")
            rprint(f"[cyan]Temp Dir: {app_config.global_.temp_dir}[/cyan]")

        setup_logging(
            verbose=verbose, log_file=log_file, environment=environment, config_path=config
        )

        if log_info:
            cadgis_logger.show_log_info()
            ctx.exit()

        logger.debug(f"cadgis CLI started (environment: {environment}, config={config})")

    except click.exceptions.Exit:
        raise
    except Exception as e:
        rprint(f"[red]Configuration error: {e}[/red]")
        if verbose:
            import traceback

            rprint(f"[red]{traceback.format_exc()}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def info(ctx) -> None:
    """Display information about the cadgis installation."""
    app_config: AppConfig = ctx.obj["app_config"]
    click.echo(f"cadgis version: {__version__}")
    click.echo(f"Python version: {sys.version.split()[0]}")
    click.echo(f"Environment: {ctx.obj['environment']}")
    click.echo(f"Target EPSG: {app_config.global_.target_epsg}")
    click.echo(f"ArcGIS portal: {app_config.arcgis.portal_url}")
    click.echo(
        f"PostGIS: {app_config.postgis.host}:{app_config.postgis.port}/{app_config.postgis.database}"
    )

    click.echo("\nOptional components:")
    try:
        import geopandas  # noqa: F401

        click.echo("  ✓ GeoPackage drawings (geopandas)")
    except ImportError:
        click.echo("  ✗ GeoPackage drawings (geopandas not installed)")


@cli.group()
def logs():
    """Logging and diagnostics commands."""
    pass


@logs.command("show")
def show_logs():
    """Show current logging configuration."""
    cadgis_logger.show_log_info()


@logs.command("tail")
@click.option("--lines", "-n", default=50, help="Number of lines to show")
def tail_logs(lines):
    """Show recent log entries."""
    log_file = cadgis_logger.get_log_file_path()

    if not log_file or not Path(log_file).exists():
        click.echo("❌ No log file found")
        return

    try:
        with open(log_file, "r", encoding="utf-8") as f:
            recent_lines = f.readlines()[-lines:]
    except OSError as e:
        click.echo(f"❌ Error reading log file: {e}", err=True)
        sys.exit(1)

    click.echo(f"📄 Last {len(recent_lines)} lines from {log_file}:")
    click.echo("─" * 60)
    for line in recent_lines:
        click.echo(line.rstrip())


from cadgis.cli.arcgis_cmd import arcgis_commands  # noqa: E402
from cadgis.cli.ledger_cmd import ledger_commands  # noqa: E402
from cadgis.cli.pg_cmd import pg_commands  # noqa: E402
from cadgis.cli.tools_cmd import crs_commands, symbols_commands  # noqa: E402

cli.add_command(arcgis_commands)
cli.add_command(pg_commands)
cli.add_command(ledger_commands)
cli.add_command(crs_commands)
cli.add_command(symbols_commands)


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
