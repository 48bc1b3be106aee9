"""
Rich-based console UI for mediakiln.

Draws a transient progress bar driven by progress events and prints a short
summary table per result.

Respects:
- NO_COLOR environment variable
- MEDIAKILN_SCRIPT_MODE environment variable
- sys.stdout.isatty() for automatic detection
"""

import os
import sys
from typing import Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn, TimeElapsedColumn
from rich.table import Table

from mediakiln.models import DiagnosticEvent
from mediakiln.ui.legacy_ui import fmt_hms, fmt_size


def _should_use_color() -> bool:
    """Check if color output should be used."""
    # Check NO_COLOR environment variable (https://no-color.org/)
    if os.getenv("NO_COLOR"):
        return False
    if os.getenv("MEDIAKILN_SCRIPT_MODE"):
        return False
    try:
        if not sys.stdout.isatty():
            return False
    except Exception:
        return False
    return True


class RichConsoleUI:
    """Interactive console output for single conversions."""

    def __init__(self, progress: bool = True, verbose: bool = False, console: Optional[Console] = None):
        use_color = _should_use_color()
        self.console = console or Console(
            force_terminal=use_color if use_color else None,
            no_color=not use_color,
        )
        self.enabled = progress and use_color
        self.verbose = verbose


        self.progress: Optional[Progress] = None
        self.task: Optional[TaskID] = None
        self._stage = ""

    # ---- event listener ----

    def __call__(self, event: DiagnosticEvent) -> None:
        if event.kind == "progress":
            self._update(event.percent or 0.0)
        elif event.kind == "error":
            self.console.print(f"  [red]![/red] {event.message}", markup=True, highlight=False)
        elif event.message.startswith("$ "):
            self.console.print(f"  {event.message}", style="dim", markup=False, highlight=False)
        elif event.origin != "engine":
            self._stage = event.message
            self.console.print(f"  {event.message}", markup=False, highlight=False)
            if self.progress is not None and self.task is not None:
                self.progress.update(self.task, description=event.message[:40])
        elif self.verbose:
            self.console.print(event.message, style="dim", markup=False, highlight=False)

    def _update(self, percent: float) -> None:
        if not self.enabled:
            return
        if self.progress is None or self.task is None:
            self.progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}[/bold blue]"),
                BarColumn(bar_width=40),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TextColumn("•"),
                TimeElapsedColumn(),
                console=self.console,
                transient=True,
            )
            self.progress.start()
            self.task = self.progress.add_task(self._stage[:40] or "Encoding", total=100)
        self.progress.update(self.task, completed=percent)

    def stop(self) -> None:
        """Remove the progress bar, if one is shown."""
        if self.progress is not None:
            self.progress.stop()
            self.progress = None
            self.task = None

    # ---- job lifecycle ----

    def start(self, label: str, input_name: str, output_name: str) -> None:
        self.console.print()
        self.console.print(f"[bold blue]▶[/bold blue] [cyan]{input_name}[/cyan] [dim]({label})[/dim]")
        self.console.print(f"  [dim]→ {output_name}[/dim]")

    def success(self, output_path: str, size: int, elapsed: float) -> None:
        self.stop()
        self.console.print(f"  [green]✓ OK[/green] in {fmt_hms(elapsed)} ({fmt_size(size)})")
        table = Table(box=None, show_header=False)
        table.add_column("Metric", style="bold")
        table.add_column("Value")
        table.add_row("Output", output_path)
        table.add_row("Size", fmt_size(size))
        self.console.print(table)

    def failure(self, message: str) -> None:
        self.stop()
        self.console.print(f"  [red]✗ FAILED[/red]: {message}", highlight=False)

    def log(self, msg: str, style: str = "") -> None:
        """Print a log message."""
        if style:
            self.console.print(msg, style=style)
        else:
            self.console.print(msg)
