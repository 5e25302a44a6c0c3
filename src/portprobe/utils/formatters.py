"""Output formatters for portprobe."""

from datetime import datetime
from typing import List, Optional

from rich import box
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from portprobe.tools.network import PortResult, PortScanner, ScanSummary

MAX_BANNER_WIDTH = 60


def _banner_preview(result: PortResult, width: int = MAX_BANNER_WIDTH) -> str:
    banner = result.banner_text or ""
    banner = " ".join(banner.split())
    if len(banner) > width:
        banner = banner[:width - 3] + "..."
    return banner


def describe_ports(ports: List[int]) -> str:
    """Short human description of a port list for the scan header."""
    if not ports:
        return "no ports"
    if len(ports) > 1 and ports == list(range(ports[0], ports[-1] + 1)):
        return f"{ports[0]} - {ports[-1]} ({len(ports)} ports)"
    if len(ports) <= 10:
        return ", ".join(str(p) for p in ports)
    return f"{len(ports)} ports"


def create_scan_header(target: str, ports: List[int], title: str = "Port Scan") -> Panel:
    """Create the panel shown before a scan starts.

    Args:
        target: Host being scanned
        ports: Ports that will be probed
        title: Panel title

    Returns:
        A rich Panel with target, ports and start time
    """
    grid = Table.grid(padding=(0, 1))
    grid.add_row(Text("Target:", style="bold"), Text(target, style="highlight"))
    grid.add_row(Text("Ports:", style="bold"), Text(describe_ports(ports), style="warning"))
    grid.add_row(
        Text("Time:", style="bold"),
        Text(datetime.now().strftime("%Y-%m-%d %H:%M:%S"), style="muted"),
    )
    return Panel(
        grid,
        title=f"[bold]{title}[/bold]",
        border_style="primary",
        title_align="left",
        padding=(0, 2),
        expand=False,
    )


def format_result_line(result: PortResult, show_reason: bool = False) -> Text:
    """Format a single result the way it is printed while the scan runs."""
    line = Text("  ")
    if result.is_open:
        line.append("OPEN    ", style="bold_open")
        line.append(f"{result.port:<7} ", style="highlight")
        line.append(result.service, style="service")
        banner = _banner_preview(result)
        if banner:
            line.append(f" | {banner}", style="banner")
    else:
        line.append("CLOSED  ", style="bold_closed")
        line.append(f"{result.port:<7} ", style="muted")
        if show_reason and result.reason:
            line.append(f"({result.reason.value})", style="muted")
    return line


def format_scan_results_table(scanner: PortScanner, show_reason: bool = False) -> Table:
    """Format scan results as a rich Table.

    Args:
        scanner: PortScanner instance with scan results
        show_reason: Whether to add a column with the close reason

    Returns:
        A rich Table object with scan results
    """
    table = Table(
        title=f"Port Scan Results for {scanner.target}",
        box=box.ROUNDED,
        header_style="bold",
        border_style="primary",
        title_justify="left",
    )
    table.add_column("Port", justify="right", style="highlight", no_wrap=True)
    table.add_column("State", justify="left")
    table.add_column("Service", justify="left", style="service")
    table.add_column("Banner", justify="left", style="banner")
    if show_reason:
        table.add_column("Reason", justify="left", style="muted")

    for result in scanner.results:
        state = Text(result.state.value, style="open" if result.is_open else "closed")
        row = [str(result.port), state, result.service, _banner_preview(result) or "-"]
        if show_reason:
            row.append(result.reason.value if result.reason else "-")
        table.add_row(*row)

    return table


def format_scan_results_list(results: List[PortResult], show_reason: bool = False) -> str:
    """Format scan results as plain ``port/tcp state service`` lines.

    Args:
        results: List of PortResult objects
        show_reason: Whether to append the close reason to closed ports

    Returns:
        Formatted string with one port per line
    """
    lines = []
    for result in results:
        line = f"{result.port}/tcp {result.state.value} {result.service}"
        banner = _banner_preview(result)
        if banner:
            line += f" {banner}"
        if show_reason and result.reason:
            line += f" ({result.reason.value})"
        lines.append(line)
    return "\n".join(lines)


def format_summary(summary: ScanSummary) -> Text:
    """Format the ``N open / M closed / T total`` summary line."""
    text = Text("  ")
    text.append(f"{summary.open_count} open", style="open")
    text.append(" / ")
    text.append(f"{summary.closed_count} closed", style="muted")
    text.append(f" / {summary.total_count} total")
    if summary.cancelled:
        text.append(" (cancelled)", style="warning")
    return text


def format_elapsed(summary: ScanSummary) -> Text:
    return Text(f"  Scan completed in {summary.elapsed:.2f}s", style="muted")


def format_error(message: str, details: Optional[str] = None) -> Panel:
    """Format an error message in a panel.

    Args:
        message: Main error message
        details: Optional detailed error information

    Returns:
        A rich Panel with the error message
    """
    text = Text(message, style="bold red")
    if details:
        text.append("\n\n" + details, style="red")

    return Panel(
        text, title="Error", border_style="red", title_align="left", padding=(1, 2)
    )
