#!/usr/bin/env python3
"""
portprobe - Main entry point for the command-line scanner.
"""
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from portprobe import __version__
from portprobe.commands import register_commands
from portprobe.config import get_settings
from portprobe.ui.themes import load_theme
from portprobe.utils.exceptions import ConfigurationError
from portprobe.utils.formatters import format_error
from portprobe.utils.logger import get_logger

logger = get_logger(__name__)


@click.group()
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase verbosity (can be used multiple times)",
)
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.version_option(__version__, prog_name="portprobe")
@click.pass_context
def cli(ctx: click.Context, verbose: int, debug: bool):
    """portprobe - concurrent TCP connect port scanner."""
    log_level = logging.WARNING
    if verbose == 1:
        log_level = logging.INFO
    elif verbose >= 2 or debug:
        log_level = logging.DEBUG

    err_console = Console(stderr=True)
    try:
        settings = get_settings()
    except ConfigurationError as e:
        err_console.print(format_error("Could not load configuration", str(e)))
        ctx.exit(1)

    theme = load_theme(settings.ui.theme)
    err_console = Console(stderr=True, theme=theme)

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, level=log_level, show_path=False)],
        force=True,
    )
    logging.getLogger("portprobe").setLevel(log_level)

    if debug:
        logger.debug("Debug mode enabled")

    # Store context for subcommands
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = Console(theme=theme, no_color=not settings.ui.color_output)
    ctx.obj["err_console"] = err_console


# Add commands directly to the CLI group
register_commands(cli)


def main():
    """Console script entry point."""
    cli(prog_name="portprobe")


if __name__ == "__main__":
    main()
