"""CMC Discord CLI: command line interface."""

import sys

import click

from cmc_discord import __version__
from .shared import console


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="cmc-discord")
@click.pass_context
def cli(ctx):
    """Discord interface for the CMC command bus."""
    if ctx.invoked_subcommand is None:
        _show_help()


def _show_help():
    """Show all available commands."""
    console.print(f"[bold]cmc-discord v{__version__}[/bold] - Discord interface for the CMC command bus\n")

    commands = [
        ("start", "Run the interface on stdin/stdout (launched by the core)"),
        ("parse-args", "Show how an argument spec string is parsed"),
        ("identity", "Decode a canonical identity"),
    ]
    for name, desc in commands:
        console.print(f"    [bold]cmc-discord {name:12s}[/bold] {desc}")
    console.print()
    console.print("[dim]Run 'cmc-discord <command> --help' for details on a specific command.[/dim]")


# Import all command modules (registers commands onto cli group)
from . import cmd_start  # noqa: E402, F401
from . import cmd_inspect  # noqa: E402, F401


def main():
    """CLI entry point."""
    try:
        cli(standalone_mode=False)
    except click.UsageError as e:
        if e.ctx:
            click.echo(e.ctx.command.get_usage(e.ctx), err=True)
        click.echo(f"Error: {e.format_message()}", err=True)
        sys.exit(2)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.exceptions.Exit as e:
        sys.exit(e.code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
