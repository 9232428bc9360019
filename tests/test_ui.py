"""Tests for UI modules."""

import io

import pytest


def _event(task_id, status, progress=0.0, **kwargs):
    from mp4mobile.json_progress import ConversionProgress, ProgressStatus

    return ConversionProgress(task_id, progress, ProgressStatus(status), **kwargs)


class TestLegacyUI:
    """Tests for legacy UI."""

    def test_fmt_hms(self):
        """Test fmt_hms time formatting."""
        from mp4mobile.ui.legacy_ui import fmt_hms

        assert fmt_hms(0) == "00:00:00"
        assert fmt_hms(59) == "00:00:59"
        assert fmt_hms(60) == "00:01:00"
        assert fmt_hms(3661) == "01:01:01"
        assert fmt_hms(-5) == "00:00:00"  # Negative should be 0

    def test_shorten(self):
        """Test shorten string truncation."""
        from mp4mobile.ui.legacy_ui import shorten

        assert shorten("short", 10) == "short"
        assert shorten("verylongstring", 10) == "verylon..."
        assert shorten("abc", 3) == "abc"
        assert shorten("abcdef", 0) == ""

    def test_mkbar(self):
        """Test mkbar progress bar generation."""
        from mp4mobile.ui.legacy_ui import mkbar

        assert mkbar(0, 10) == "-" * 10
        assert mkbar(100, 10) == "#" * 10
        assert mkbar(50, 10) == "#" * 5 + "-" * 5
        assert mkbar(150, 10) == "#" * 10

    def test_term_width(self):
        from mp4mobile.ui.legacy_ui import term_width

        width = term_width()
        assert isinstance(width, int)
        assert width > 0

    def test_disabled_without_tty(self):
        from mp4mobile.ui.legacy_ui import LegacyConversionUI

        ui = LegacyConversionUI(progress=True, bar_width=20, stream=io.StringIO())
        assert ui.bar_width == 20
        assert ui.enabled is False

    def test_results_are_logged_and_counted(self):
        from mp4mobile.ui.legacy_ui import LegacyConversionUI

        stream = io.StringIO()
        with LegacyConversionUI(progress=False, stream=stream) as ui:
            ui.add_task("1", "a.mkv")
            ui.add_task("2", "b.avi")
            ui.emit(_event("1", "starting"))
            ui.emit(_event("1", "converting", 40.0))
            ui.emit(_event("1", "completed", 100.0, output_path="/out/a_converted.mp4"))
            ui.emit(_event("2", "error", error="ffmpeg exited with status 1"))

        output = stream.getvalue()
        assert "[OK] a.mkv -> /out/a_converted.mp4" in output
        assert "[FAILED] b.avi: ffmpeg exited with status 1" in output
        assert "%" not in output  # no progress bar without a terminal
        assert ui.get_stats() == (1, 1)

    def test_unknown_task_uses_id(self):
        from mp4mobile.ui.legacy_ui import LegacyConversionUI

        stream = io.StringIO()
        ui = LegacyConversionUI(progress=False, stream=stream)
        ui.emit(_event("xyz", "error", error="boom"))

        assert "[FAILED] xyz: boom" in stream.getvalue()

    def test_render_when_enabled(self):
        from mp4mobile.ui.legacy_ui import LegacyConversionUI

        stream = io.StringIO()
        ui = LegacyConversionUI(progress=True, bar_width=10, stream=stream)
        ui.enabled = True
        ui.add_task("1", "movie.mkv")
        ui.emit(_event("1", "converting", 50.0))

        line = stream.getvalue()
        assert line.startswith("\r[#####-----]  50% | converting")
        assert "movie.mkv" in line


class TestRichUI:
    """Tests for the Rich UI (if available)."""

    def test_rich_available(self):
        """Test RICH_AVAILABLE flag."""
        from mp4mobile.ui import RICH_AVAILABLE

        assert isinstance(RICH_AVAILABLE, bool)

    def test_rich_ui_stats(self):
        pytest.importorskip("rich")
        from rich.console import Console

        from mp4mobile.ui.simple_rich import RichConversionUI

        console = Console(file=io.StringIO(), force_terminal=False, no_color=True)
        ui = RichConversionUI(progress_enabled=False, console=console)
        ui.add_task("1", "a.mkv")
        ui.emit(_event("1", "converting", 30.0))
        ui.emit(_event("1", "completed", 100.0, output_path="/out/a_converted.mp4"))
        ui.emit(_event("2", "error", error="Conversion cancelled"))

        assert ui.get_stats() == (1, 1)
        output = console.file.getvalue()
        assert "a.mkv" in output
        assert "Conversion cancelled" in output

    def test_rich_ui_prints_brackets_literally(self):
        """File names and errors are text, not console markup."""
        pytest.importorskip("rich")
        from rich.console import Console

        from mp4mobile.ui.simple_rich import RichConversionUI

        console = Console(file=io.StringIO(), force_terminal=False, no_color=True, width=200)
        ui = RichConversionUI(progress_enabled=False, console=console)
        ui.add_task("1", "[x265] clip.mkv")
        ui.add_task("2", "[bold]b.mkv")
        ui.emit(_event("1", "completed", 100.0, output_path="/out/[x265] clip_converted.mp4"))
        ui.emit(_event("2", "error", error="Analysis failed: bad tag [/bold]"))

        output = console.file.getvalue()
        assert "[x265] clip.mkv" in output
        assert "/out/[x265] clip_converted.mp4" in output
        assert "[bold]b.mkv" in output
        assert "bad tag [/bold]" in output

    def test_rich_ui_summary(self):
        pytest.importorskip("rich")
        from rich.console import Console

        from mp4mobile.ui.simple_rich import RichConversionUI

        console = Console(file=io.StringIO(), force_terminal=False, no_color=True, width=80)
        ui = RichConversionUI(progress_enabled=False, console=console)
        ui.print_summary(61)

        output = console.file.getvalue()
        assert "Summary" in output
        assert "00:01:01" in output
