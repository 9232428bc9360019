"""
Rich-based progress UI for mp4mobile.

Shows one progress bar per running conversion.

Respects:
- NO_COLOR environment variable
- MP4MOBILE_SCRIPT_MODE environment variable
- sys.stdout.isatty() for automatic detection
"""

import os
import sys
import threading
import time
from typing import Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from mp4mobile.json_progress import ConversionProgress, ProgressStatus
from mp4mobile.ui.legacy_ui import fmt_hms


def _should_use_color() -> bool:
    """Check if color output should be used."""
    # https://no-color.org/
    if os.getenv("NO_COLOR"):
        return False
    if os.getenv("MP4MOBILE_SCRIPT_MODE"):
        return False
    try:
        if not sys.stdout.isatty():
            return False
    except (AttributeError, ValueError):
        return False
    return True


class RichConversionUI:
    """Live progress bars for concurrent conversions; a ProgressSink."""

    def __init__(self, progress_enabled: bool = True, console: Optional[Console] = None):
        use_color = _should_use_color()
        self.console = console or Console(
            force_terminal=use_color if use_color else None,
            no_color=not use_color,
        )
        self.enabled = progress_enabled and use_color

        self.ok = 0
        self.failed = 0

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}[/bold blue]"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("•"),
            TimeElapsedColumn(),
            TextColumn("→"),
            TimeRemainingColumn(),
            console=self.console,
            transient=True,
            disable=not self.enabled,
        )
        self._tasks: Dict[str, TaskID] = {}
        self._names: Dict[str, str] = {}
        self._started: Dict[str, float] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "RichConversionUI":
        self.progress.start()
        return self

    def __exit__(self, *exc) -> None:
        self.progress.stop()

    def add_task(self, task_id: str, name: str) -> None:
        with self._lock:
            self._names[task_id] = name
            self._started[task_id] = time.time()
            self._tasks[task_id] = self.progress.add_task(escape(name), total=100)

    def emit(self, progress: ConversionProgress) -> None:
        with self._lock:
            if progress.task_id not in self._tasks:
                self._names[progress.task_id] = progress.task_id
                self._started[progress.task_id] = time.time()
                self._tasks[progress.task_id] = self.progress.add_task(escape(progress.task_id), total=100)
            rich_task = self._tasks[progress.task_id]
            name = escape(self._names[progress.task_id])

            if progress.status is ProgressStatus.COMPLETED:
                self.ok += 1
                self.progress.update(rich_task, completed=100, visible=False)
                elapsed = fmt_hms(time.time() - self._started[progress.task_id])
                self.console.print(f"[green]✓[/green] [cyan]{name}[/cyan] [dim]→ {escape(str(progress.output_path))}[/dim] ({elapsed})")
            elif progress.status is ProgressStatus.ERROR:
                self.failed += 1
                self.progress.update(rich_task, visible=False)
                self.console.print(f"[red]✗[/red] [cyan]{name}[/cyan]: {escape(progress.error or '')}")
            else:
                self.progress.update(rich_task, completed=progress.progress)

    def log(self, msg: str, style: str = "") -> None:
        """Print a log message."""
        if style:
            self.console.print(msg, style=style)
        else:
            self.console.print(msg)

    def print_summary(self, total_time: float) -> None:
        """Print final summary."""
        self.console.print()

        table = Table(title="Summary", box=None, show_header=False)
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right")

        table.add_row("✓ Converted", f"[green]{self.ok}[/green]")
        table.add_row("✗ Failed", f"[red]{self.failed}[/red]")
        table.add_row("⏱ Total time", fmt_hms(total_time))

        self.console.print(table)

    def get_stats(self):
        """Get (ok, failed) counters."""
        return (self.ok, self.failed)
