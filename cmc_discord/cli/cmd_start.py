"""Start command."""

import click

from . import cli


@cli.command()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def start(debug):
    """Run the Discord interface on the stdio bus."""
    # Nothing may be printed to stdout here: it carries the bus protocol
    from cmc_discord.main import main as run_main
    run_main(debug=debug)
