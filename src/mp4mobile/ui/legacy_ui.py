"""
Plain-text progress UI for mp4mobile.

Used when rich is not available or in non-interactive terminals.
"""

import shutil
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, TextIO

from mp4mobile.json_progress import ConversionProgress, ProgressStatus


def term_width() -> int:
    """Get terminal width."""
    try:
        return shutil.get_terminal_size((120, 20)).columns
    except (OSError, ValueError):
        return 120


def mkbar(pct: int, width: int = 26) -> str:
    """Create a simple progress bar string."""
    pct = max(0, min(100, pct))
    filled = int(pct * width / 100)
    empty = width - filled
    return "#" * filled + "-" * empty


def shorten(s: str, maxlen: int) -> str:
    """Shorten a string with ellipsis if too long."""
    if maxlen <= 0:
        return ""
    if len(s) <= maxlen:
        return s
    if maxlen <= 3:
        return s[:maxlen]
    return s[: maxlen - 3] + "..."


def fmt_hms(seconds: float) -> str:
    """Format seconds as HH:MM:SS."""
    if seconds < 0:
        seconds = 0
    s = int(round(seconds))
    h = s // 3600
    m = (s % 3600) // 60
    r = s % 60
    return f"{h:02d}:{m:02d}:{r:02d}"


@dataclass
class TaskView:
    """What the UI knows about one conversion."""

    name: str
    pct: float = 0.0
    status: ProgressStatus = ProgressStatus.STARTING
    started_at: float = field(default_factory=time.time)


class LegacyConversionUI:
    """Single-line text progress display, one ProgressSink for all tasks."""

    def __init__(self, progress: bool = True, bar_width: int = 26, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        try:
            is_tty = self.stream.isatty()
        except (AttributeError, ValueError):
            is_tty = False
        self.enabled = progress and is_tty
        self.bar_width = bar_width
        self.tasks: Dict[str, TaskView] = {}
        self._last_render: Optional[str] = None
        self._lock = threading.Lock()

        # Stats tracking
        self.ok = 0
        self.failed = 0

    def __enter__(self) -> "LegacyConversionUI":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def add_task(self, task_id: str, name: str) -> None:
        with self._lock:
            self.tasks[task_id] = TaskView(name=name)

    def emit(self, progress: ConversionProgress) -> None:
        with self._lock:
            view = self.tasks.setdefault(progress.task_id, TaskView(name=progress.task_id))
            view.status = progress.status
            view.pct = progress.progress
            if progress.status is ProgressStatus.COMPLETED:
                self.ok += 1
                self._log(f"[OK] {view.name} -> {progress.output_path} ({fmt_hms(time.time() - view.started_at)})")
            elif progress.status is ProgressStatus.ERROR:
                self.failed += 1
                self._log(f"[FAILED] {view.name}: {progress.error}")
            else:
                self._render(view)

    def _render(self, view: TaskView) -> None:
        """Render progress line to terminal."""
        if not self.enabled:
            return

        w = term_width()
        pct = int(view.pct)
        running = sum(1 for t in self.tasks.values() if not t.status.is_terminal)
        left = f"[{mkbar(pct, self.bar_width)}] {pct:3d}% | {view.status.value} | ({running} running) "
        right = f"| {fmt_hms(time.time() - view.started_at)}"

        avail = max(10, w - len(left) - len(right) - 1)
        line = f"{left}{shorten(view.name, avail)} {right}"
        pad = ""
        if self._last_render is not None and len(self._last_render) > len(line):
            pad = " " * (len(self._last_render) - len(line))
        if line != self._last_render:
            self.stream.write("\r" + line + pad)
            self.stream.flush()
            self._last_render = line

    def _log(self, msg: str) -> None:
        """Print a message, clearing the progress line first."""
        if self.enabled and self._last_render:
            self.stream.write("\r" + " " * len(self._last_render) + "\r")
        print(msg, file=self.stream, flush=True)
        self._last_render = None

    def log(self, msg: str) -> None:
        with self._lock:
            self._log(msg)

    def close(self) -> None:
        """Clear the current progress line."""
        with self._lock:
            if self.enabled and self._last_render:
                self.stream.write("\r" + " " * len(self._last_render) + "\r")
                self.stream.flush()
            self._last_render = None

    def get_stats(self):
        """Get (ok, failed) counters."""
        return (self.ok, self.failed)
