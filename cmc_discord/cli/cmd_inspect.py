"""Inspection commands for command authors: argument specs and identities."""

import click
from rich.table import Table

from . import cli
from .shared import console, parse_lang_option
from cmc_discord.commands.args import parse_args
from cmc_discord.identity import decode_id, parse_identity


@cli.command(name="parse-args")
@click.argument("spec")
@click.option("--lang", "langs", multiple=True, metavar="TAG=SPEC", help="Localized spec (repeatable)")
@click.option("--names", default=None, help="Comma-separated argument names")
def parse_args_cmd(spec, langs, names):
    """Show how SPEC (the fallback language) is parsed into arguments."""
    try:
        localized = {"fallback": spec, **parse_lang_option(langs)}
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--lang")

    name_list = [n.strip() for n in names.split(",")] if names is not None else None
    args = parse_args(localized, name_list)

    if not args:
        console.print("[dim]No arguments.[/dim]")
        return

    table = Table(title="Arguments")
    table.add_column("#", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Required")
    for lang in localized:
        table.add_column(lang)

    for i, arg in enumerate(args, 1):
        table.add_row(
            str(i),
            arg.name,
            "[dim]optional[/dim]" if arg.optional else "[green]required[/green]",
            *(arg.description.get(lang, "") for lang in localized),
        )
    console.print(table)


@cli.command()
@click.argument("value")
def identity(value):
    """Decode a canonical identity (native@Kind@Platform)."""
    parsed = parse_identity(value)
    if parsed is None:
        console.print(f"Native ID: [bold]{decode_id(value)}[/bold] [dim](not a full canonical identity)[/dim]")
        return

    table = Table(show_header=False, padding=(0, 2))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Native ID", parsed.native_id)
    table.add_row("Kind", parsed.kind.value)
    table.add_row("Platform", parsed.platform)
    console.print(table)
