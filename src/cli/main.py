"""CLI entry point for VeriFy."""

import logging

import click
from dotenv import load_dotenv

from src.config.settings import AppSettings

logger = logging.getLogger(__name__)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """VeriFy: fetch the latest matching email from a Gmail inbox."""
    load_dotenv()
    settings = AppSettings.from_env()
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    ctx.obj = settings


# Import and register commands after cli is defined to avoid circular imports.
from src.cli.commands import fetch, serve  # noqa: E402

cli.add_command(fetch)
cli.add_command(serve)
