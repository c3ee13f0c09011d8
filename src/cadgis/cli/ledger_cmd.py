# cadgis/cli/ledger_cmd.py
"""
Layer metadata ledger commands.
"""

from pathlib import Path

import click
from tabulate import tabulate

from cadgis.cli.common import get_app_config, get_ledger, handle_errors
from cadgis.utils.console import console


@click.group(name="ledger")
def ledger_commands():
    """Recorded provenance of imported layers"""
    pass


@ledger_commands.command("list")
@click.option("--document", "-d", type=click.Path(path_type=Path), help="Only layers of this drawing")
@click.pass_context
@handle_errors
def list_layers(ctx, document):
    """List recorded layers."""
    ledger = get_ledger(get_app_config(ctx))
    records = ledger.list()
    if document is not None:
        wanted = str(Path(document).absolute()).lower()
        records = [m for m in records if (m.owning_document or "").lower() == wanted]

    if not records:
        click.echo("ℹ️  No recorded layers")
        return

    rows = [
        [
            m.layer_name,
            f"{m.host}/{m.database}",
            m.source,
            m.srid,
            m.last_imported.strftime("%Y-%m-%d %H:%M"),
            m.owning_document or "-",
        ]
        for m in records
    ]
    click.echo(
        tabulate(
            rows,
            headers=["Layer", "Server", "Source", "SRID", "Imported", "Drawing"],
            tablefmt="grid",
        )
    )
    click.echo(f"\n{len(records)} layer(s) recorded in {ledger.path}")


@ledger_commands.command("show")
@click.argument("layer")
@click.pass_context
@handle_errors
def show_layer(ctx, layer):
    """Show every recorded field of a layer."""
    meta = get_ledger(get_app_config(ctx)).get(layer)
    if meta is None:
        console.print(f"[red]❌ No record for layer '{layer}'[/red]")
        ctx.exit(1)
    rows = [[k, "" if v is None else v] for k, v in meta.to_record().items()]
    click.echo(tabulate(rows, tablefmt="plain"))


@ledger_commands.command("remove")
@click.argument("layers", nargs=-1, required=True)
@click.pass_context
@handle_errors
def remove_layers(ctx, layers):
    """Forget recorded layers."""
    ledger = get_ledger(get_app_config(ctx))
    for layer in layers:
        if ledger.remove(layer):
            console.print(f"[green]✅ Removed {layer}[/green]")
        else:
            console.print(f"[yellow]⚠️  No record for {layer}[/yellow]")


@ledger_commands.command("prune")
@click.argument("documents", nargs=-1, type=click.Path(path_type=Path))
@click.pass_context
@handle_errors
def prune(ctx, documents):
    """
    Drop records of drawings that are not open.

    DOCUMENTS are the drawings still in use (default: drawing.document).
    """
    app_config = get_app_config(ctx)
    if not documents and app_config.drawing.document:
        documents = (app_config.drawing.document,)
    open_ids = [str(Path(d).absolute()) for d in documents]

    removed = get_ledger(app_config).prune(open_ids)
    if not removed:
        click.echo("ℹ️  Nothing to prune")
        return
    for meta in removed:
        click.echo(f"  - {meta.layer_name} ({meta.owning_document})")
    console.print(f"[green]✅ Pruned {len(removed)} record(s)[/green]")
