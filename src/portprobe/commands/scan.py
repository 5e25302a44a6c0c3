"""Scan command for portprobe.

Handles port scanning operations.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeRemainingColumn
from rich.text import Text

from portprobe.config import Config, get_settings
from portprobe.core.validators import (
    parse_port_spec,
    validate_concurrency,
    validate_target,
    validate_timeout_ms,
)
from portprobe.tools.network import COMMON_PORTS, PortScanner
from portprobe.ui.themes import load_theme
from portprobe.utils.exceptions import PortprobeError
from portprobe.utils.formatters import (
    create_scan_header,
    format_elapsed,
    format_error,
    format_result_line,
    format_scan_results_list,
    format_scan_results_table,
    format_summary,
)
from portprobe.utils.logger import add_file_handler, get_logger

logger = get_logger(__name__)

OUTPUT_FORMATS = ["text", "table", "list", "json"]
EXIT_CANCELLED = 130


def _get_consoles(ctx: click.Context, settings: Config) -> Tuple[Console, Console]:
    obj = ctx.find_root().obj or {}
    console = obj.get("console")
    err_console = obj.get("err_console")
    if console is None:
        console = Console(theme=load_theme(settings.ui.theme), no_color=not settings.ui.color_output)
    if err_console is None:
        err_console = Console(stderr=True, theme=load_theme(settings.ui.theme))
    return console, err_console


def _install_cancel_handler(scanner: PortScanner, console: Console):
    """Route the first Ctrl-C to a cooperative cancel; a second one interrupts."""

    def _handle_signal(signum, frame):
        signal.signal(signal.SIGINT, signal.default_int_handler)
        console.print("\n[warning]Stopping after the current batch...[/warning]")
        scanner.cancel()

    return signal.signal(signal.SIGINT, _handle_signal)


async def _run_scan(
    scanner: PortScanner,
    console: Console,
    progress_console: Console,
    output_format: str,
    show_reasons: bool,
    show_progress: bool,
) -> None:
    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(bar_width=None),
        "[progress.percentage]{task.percentage:>3.0f}%",
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=progress_console,
        transient=True,
        disable=not show_progress,
    ) as progress:
        task = progress.add_task(
            f"[info]Scanning {len(scanner.ports)} ports on {scanner.target}...",
            total=len(scanner.ports),
        )

        async for result in scanner.iter_scan():
            if output_format == "text" and (result.is_open or scanner.include_closed):
                progress.console.print(format_result_line(result, show_reason=show_reasons))
            progress.update(task, completed=scanner.session.scanned)


def _write_output(scanner: PortScanner, output: str, output_format: str, show_reasons: bool) -> None:
    path = Path(output)
    if output_format == "json":
        path.write_text(scanner.to_json() + "\n", encoding="utf-8")
    elif output_format == "table":
        with open(path, "w", encoding="utf-8") as f:
            file_console = Console(
                file=f, theme=load_theme("minimal"), force_terminal=False, width=120
            )
            file_console.print(format_scan_results_table(scanner, show_reason=show_reasons))
    else:
        path.write_text(
            format_scan_results_list(scanner.results, show_reason=show_reasons) + "\n",
            encoding="utf-8",
        )
    logger.info(f"Saved {len(scanner.results)} results to {path}")


@click.command("scan")
@click.argument("target")
@click.option(
    "-p", "--ports",
    default=None,
    help="Ports to scan (e.g., 80 | 1-1024 | 80,443,8080). Default: 1-1024",
)
@click.option(
    "-c", "--common",
    is_flag=True,
    help="Scan common ports only",
)
@click.option(
    "-t", "--timeout",
    type=int,
    default=None,
    help="Connection timeout in milliseconds (default: 2000)",
)
@click.option(
    "--banner-timeout",
    type=int,
    default=None,
    help="Banner grab timeout in milliseconds (default: same as --timeout)",
)
@click.option(
    "--concurrency",
    type=int,
    default=None,
    help="Maximum concurrent connections (default: 100)",
)
@click.option(
    "--show-closed",
    is_flag=True,
    help="Show closed ports in output",
)
@click.option(
    "-b", "--banner",
    is_flag=True,
    help="Attempt banner grabbing on open ports",
)
@click.option(
    "--reasons",
    is_flag=True,
    help="Show why closed ports were classified closed",
)
@click.option(
    "--format", "output_format",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default=None,
    help="Output format",
)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, writable=True),
    help="Save results to file",
)
@click.option(
    "--log",
    type=click.Path(dir_okay=False, writable=True),
    help="Save log to file",
)
@click.pass_context
def scan_command(
    ctx: click.Context,
    target: str,
    ports: Optional[str],
    common: bool,
    timeout: Optional[int],
    banner_timeout: Optional[int],
    concurrency: Optional[int],
    show_closed: bool,
    banner: bool,
    reasons: bool,
    output_format: Optional[str],
    output: Optional[str],
    log: Optional[str],
) -> None:
    """
    Scan TCP ports on a target host.

    Examples:

    \b
    # Scan ports 1-1024
    portprobe scan scanme.nmap.org

    \b
    # Scan specific ports
    portprobe scan localhost -p 80,443,3000,8080

    \b
    # Scan common ports and grab banners
    portprobe scan 10.0.0.1 -c -b

    \b
    # Full range with more concurrency and a longer timeout
    portprobe scan 192.168.1.1 -p 1-65535 --concurrency 200 -t 3000
    """
    err_console = Console(stderr=True)
    try:
        settings = get_settings()
        console, err_console = _get_consoles(ctx, settings)
        scanning = settings.scanning

        target = validate_target(target)
        if common:
            port_list = list(COMMON_PORTS)
            title = "Port Scan - Common Ports"
        else:
            port_list = parse_port_spec(ports if ports is not None else scanning.default_ports)
            title = "Port Scan"

        timeout_ms = validate_timeout_ms(timeout if timeout is not None else scanning.timeout_ms)
        if banner_timeout is None:
            banner_timeout = scanning.banner_timeout_ms or timeout_ms
        banner_timeout_ms = validate_timeout_ms(banner_timeout, name="banner timeout")
        concurrency = validate_concurrency(concurrency if concurrency is not None else scanning.concurrency)
    except PortprobeError as e:
        err_console.print(format_error(str(e)))
        ctx.exit(1)

    output_format = (output_format or settings.output.default_format).lower()
    if output_format not in OUTPUT_FORMATS:
        output_format = "text"
    show_reasons = reasons or settings.output.show_reasons

    if log:
        package_logger = logging.getLogger("portprobe")
        file_handler = add_file_handler(package_logger, Path(log))
        package_logger.setLevel(logging.DEBUG)

        def _detach_log():
            package_logger.removeHandler(file_handler)
            file_handler.close()

        ctx.call_on_close(_detach_log)

    scanner = PortScanner(
        target=target,
        ports=port_list,
        timeout=timeout_ms / 1000,
        concurrency=concurrency,
        include_closed=show_closed or scanning.show_closed,
        grab_banners=banner or scanning.banner_grab,
        banner_timeout=banner_timeout_ms / 1000,
    )

    human_output = output_format in ("text", "table")
    if human_output:
        console.print(create_scan_header(target, port_list, title=title))

    previous_handler = _install_cancel_handler(scanner, err_console)
    try:
        asyncio.run(
            _run_scan(
                scanner,
                console=console,
                progress_console=console if human_output else err_console,
                output_format=output_format,
                show_reasons=show_reasons,
                show_progress=settings.ui.show_progress,
            )
        )
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    summary = scanner.summary()
    if output_format == "table":
        console.print(format_scan_results_table(scanner, show_reason=show_reasons))
    elif output_format == "list":
        console.print(
            format_scan_results_list(scanner.results, show_reason=show_reasons),
            markup=False,
            highlight=False,
        )
    elif output_format == "json":
        console.print_json(scanner.to_json())

    if human_output:
        console.print()
        console.print(format_summary(summary))
        console.print(format_elapsed(summary))

    if output:
        try:
            _write_output(scanner, output, output_format, show_reasons)
        except OSError as e:
            err_console.print(format_error(f"Could not save results to {output}", str(e)))
            ctx.exit(1)
        if human_output:
            console.print(Text(f"\nResults saved to {output}", style="open"))

    if summary.cancelled:
        ctx.exit(EXIT_CANCELLED)


def register_commands(cli):
    """Register scan commands with the main CLI.

    Args:
        cli: The main Click command group
    """
    cli.add_command(scan_command)
