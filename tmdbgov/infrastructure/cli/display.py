import logging
from datetime import datetime
from typing import Any, Dict, List

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tmdbgov.domain.interfaces.user_interface import UserInterface
from tmdbgov.domain.models.common import GovernorStatus, StatsSnapshot

logger = logging.getLogger(__name__)

class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Console = None):
        """Initializes the rich Console."""
        self.console = console or Console()

    def display_json(self, payload: Any, **kwargs: Any) -> None:
        """Pretty-prints a JSON body, optionally under a title.

        Args:
            payload: The parsed JSON body.
            **kwargs: Additional arguments including:
                - title: Heading printed above the body
        """
        title = kwargs.get("title")
        if title:
            self.console.print(f"[bold cyan]{title}[/bold cyan]")
        try:
            self.console.print_json(data=payload)
        except (TypeError, ValueError) as e:
            # Not JSON-serializable; fall back to rich's repr
            logger.debug(f"print_json failed, printing repr instead: {e}")
            self.console.print(payload)

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
        """
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message."""
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_progress(self, stream_id: str, loaded: int, total: int, approx_count: int) -> None:
        percent = loaded / total * 100 if total else 100.0
        timestamp = datetime.now().strftime("%H:%M:%S")
        self.console.print(
            f"[dim]{timestamp}[/dim] [bold cyan]{stream_id}[/bold cyan] "
            f"page {loaded}/{total} [dim]({percent:.0f}%, ~{approx_count} items)[/dim]"
        )

    def display_stats(self, stats: StatsSnapshot) -> None:
        """Displays request statistics as a two-column table.

        Args:
            stats: Snapshot from the governor's stats collector.
        """
        table = Table(title="Request statistics", show_header=False, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="bold", justify="right")
        table.add_row("Successful requests", str(stats['total_requests']))
        table.add_row("Timeouts", str(stats['timeout_count']))
        table.add_row("Samples kept", str(len(stats['response_times'])))
        table.add_row("Average response", f"{stats['average_response_time_ms']:.1f} ms")
        table.add_row("Fastest response", f"{stats['min_response_time_ms']:.1f} ms")
        table.add_row("Slowest response", f"{stats['max_response_time_ms']:.1f} ms")
        self.console.print(table)

    def display_status(self, status: GovernorStatus) -> None:
        last = status['last_dispatch_at']
        last_str = datetime.fromtimestamp(last).strftime("%H:%M:%S") if last else "never"
        table = Table(title="Governor status", show_header=False, box=SIMPLE, border_style="cyan", padding=(0, 1))
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="bold")
        table.add_row("Queued requests", str(status['queue_length']))
        table.add_row("Dispatching", "yes" if status['is_dispatching'] else "no")
        table.add_row("Last dispatch", last_str)
        for stream in status['active_streams']:
            state = " (cancelled)" if stream['cancelled'] else ""
            table.add_row(f"Stream {stream['id']}", f"{stream['progress']}{state}")
        self.console.print(table)

    def display_settings(self, settings: Dict[str, Any]) -> None:
        table = Table(title="Effective settings", show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="white")
        for key in sorted(settings):
            table.add_row(key, str(settings[key]))
        self.console.print(table)

    def display_items(self, items: List[Dict[str, Any]], limit: int = 20) -> None:
        """Displays the first ``limit`` movie items as a table.

        Args:
            items: Normalized movie items.
            limit: Maximum number of rows shown.
        """
        table = Table(show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Title", style="bold")
        table.add_column("Year", style="dim")
        table.add_column("Rating", justify="right")

        for i, item in enumerate(items[:limit], 1):
            title = str(item.get("title") or "")
            if len(title) > 60:
                title = title[:57] + "..."
            year = item.get("year")
            rating = item.get("vote_average")
            table.add_row(
                str(i),
                title,
                str(year) if year else "-",
                f"{rating:.1f}" if isinstance(rating, (int, float)) else "-",
            )
        self.console.print(table)
        if len(items) > limit:
            self.console.print(f"[dim]... and {len(items) - limit} more[/dim]")
