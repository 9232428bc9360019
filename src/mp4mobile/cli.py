"""
Command-line interface for mp4mobile.

This is the main entry point for the application.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
import uuid
from pathlib import Path
from typing import List, Optional, Tuple

from mp4mobile import __author__, __license__, __version__
from mp4mobile.commands import ConverterCommands
from mp4mobile.config import (
    TOML_AVAILABLE,
    Config,
    apply_config_to_args,
    get_app_dirs,
    load_config_file,
    save_default_config,
)
from mp4mobile.converter import FFMPEG, FFPROBE, BACKENDS, detect_backend, locate_executable
from mp4mobile.errors import ConversionFailed, IoFailed, Mp4MobileError
from mp4mobile.json_progress import JSONProgressOutput
from mp4mobile.logs import configure_logging
from mp4mobile.notifications import check_notification_support, notify_failure, notify_interrupted, notify_success
from mp4mobile.tasks import TaskRegistry
from mp4mobile.ui import RICH_AVAILABLE
from mp4mobile.ui.legacy_ui import LegacyConversionUI, fmt_hms

if RICH_AVAILABLE:
    from mp4mobile.ui.simple_rich import RichConversionUI

logger = logging.getLogger(__name__)

PRESETS = ["ultrafast", "superfast", "veryfast", "faster", "fast", "medium", "slow", "slower", "veryslow"]

# -------------------- ARGUMENT PARSING --------------------


def parse_args(args: Optional[List[str]] = None) -> Tuple[Config, argparse.Namespace]:
    """Parse command-line arguments and return config + parsed namespace."""
    parser = argparse.ArgumentParser(
        prog="mp4mobile",
        description="Convert videos to mobile-friendly H.264/AAC MP4, copying streams that are already compatible.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s clip.mkv                     # Writes clip_converted.mp4 next to the input
  %(prog)s *.mov -o ~/phone -j 2        # Two conversions at a time into ~/phone
  %(prog)s --info clip.mkv              # Print codec/container details as JSON
  %(prog)s --hw cpu --crf 20 clip.avi   # Force software encoding
  %(prog)s --json-progress clip.mkv     # Machine-readable progress on stdout
  %(prog)s --check-requirements         # Show which ffmpeg/ffprobe will be used
        """,
    )

    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}\nAuthor: {__author__}\nLicense: {__license__}",
    )

    parser.add_argument("files", nargs="*", help="Media files to convert")

    out_group = parser.add_argument_group("Output settings")
    out_group.add_argument("-o", "--output-dir", type=Path, default=None, help="Output directory (default: alongside input)")
    out_group.add_argument(
        "--delete-source", action="store_true", default=False, help="Delete each input after a successful conversion"
    )

    quality_group = parser.add_argument_group("Encoding")
    quality_group.add_argument("--hw", choices=["auto"] + list(BACKENDS), default="auto")
    quality_group.add_argument("--crf", type=int, default=23)
    quality_group.add_argument("--preset", default="fast", choices=PRESETS)
    quality_group.add_argument("--abr", default="128k", help="AAC bitrate when audio is re-encoded")
    quality_group.add_argument("--threads", type=int, default=0, metavar="N", help="ffmpeg threads (0 = CPU count)")
    quality_group.add_argument("--bin-dir", type=Path, default=None, help="Directory holding bundled ffmpeg/ffprobe")

    parallel_group = parser.add_argument_group("Parallelism")
    parallel_group.add_argument("-j", "--jobs", type=int, default=1, metavar="N", help="Concurrent conversions")

    ui_group = parser.add_argument_group("UI settings")
    ui_group.add_argument("--no-progress", action="store_false", dest="progress")
    ui_group.add_argument("--json-progress", action="store_true", default=False, help="Emit JSON progress lines")

    notify_group = parser.add_argument_group("Notifications")
    notify_group.add_argument("--notify", action="store_true", default=True, help="Desktop notification when done")
    notify_group.add_argument("--no-notify", action="store_false", dest="notify", help="Disable desktop notifications")

    debug_group = parser.add_argument_group("Debug")
    debug_group.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    debug_group.add_argument("--log-file", type=Path, default=None, help="Log file (default: state dir)")

    util_group = parser.add_argument_group("Utility commands")
    util_group.add_argument("--info", action="store_true", help="Print media info as JSON and exit")
    util_group.add_argument("--check-requirements", action="store_true")
    util_group.add_argument("--show-dirs", action="store_true")

    parsed = parser.parse_args(args)

    cfg = Config(
        hw=parsed.hw,
        crf=parsed.crf,
        preset=parsed.preset,
        abr=parsed.abr,
        threads=parsed.threads,
        bin_dir=parsed.bin_dir,
        output_dir=parsed.output_dir,
        delete_source=parsed.delete_source,
        jobs=max(1, parsed.jobs),
        progress=parsed.progress,
        json_progress=parsed.json_progress,
        notify=parsed.notify,
        debug=parsed.debug,
        log_file=parsed.log_file,
    )
    if cfg.debug:
        cfg.log_level = "debug"

    return cfg, parsed


# -------------------- UTILITY COMMANDS --------------------


def show_dirs(app_dirs: dict) -> int:
    """Print application directories."""
    for name, path in app_dirs.items():
        print(f"{name:8} {path}")
    print(f"{'format':8} {'TOML' if TOML_AVAILABLE else 'INI'}")
    return 0


async def check_requirements(cfg: Config) -> int:
    """Print which tools will be used and whether they work."""
    print(f"ffmpeg:   {locate_executable(FFMPEG, cfg)}")
    print(f"ffprobe:  {locate_executable(FFPROBE, cfg)}")

    commands = ConverterCommands(cfg=cfg)
    available = await commands.check_encoder_available()
    print(f"encoder:  {'OK' if available else 'NOT FOUND'}")
    if available:
        try:
            print(f"backend:  {await detect_backend(cfg)}")
        except ValueError as e:
            print(f"backend:  {e}")
            available = False

    support = check_notification_support()
    print(f"notify:   {'OK' if support['any'] else 'unavailable'}")
    return 0 if available else 1


async def print_media_info(files: List[Path], cfg: Config) -> int:
    """Print one JSON document per file."""
    commands = ConverterCommands(cfg=cfg)
    rc = 0
    for path in files:
        try:
            info = await commands.get_media_info(path)
        except Mp4MobileError as e:
            print(json.dumps({"source_path": str(path), "error": e.message}, indent=2))
            rc = 1
            continue
        print(json.dumps(info.to_dict(), indent=2))
    return rc


# -------------------- CONVERSION --------------------


def make_ui(cfg: Config):
    """Pick the progress display: none for JSON output, Rich if available, else text."""
    if cfg.json_progress:
        return None
    if RICH_AVAILABLE and cfg.progress:
        return RichConversionUI(progress_enabled=True)
    return LegacyConversionUI(progress=cfg.progress)


async def run_conversions(files: List[Path], cfg: Config, ui=None) -> Tuple[int, int, bool]:
    """
    Convert ``files`` concurrently (at most ``cfg.jobs`` at a time).

    SIGINT cancels every running conversion through the task registry.

    Returns:
        Tuple of (converted, failed, interrupted).
    """
    registry = TaskRegistry()
    channel = JSONProgressOutput() if cfg.json_progress else None
    commands = ConverterCommands(registry=registry, channel=channel, cfg=cfg)
    semaphore = asyncio.Semaphore(max(1, cfg.jobs))
    interrupted = False

    def on_interrupt() -> None:
        nonlocal interrupted
        interrupted = True
        count = registry.cancel_all()
        logger.warning("Interrupted, cancelling %d conversion(s)", count)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        # Windows event loops do not support signal handlers
        handler_installed = False

    async def convert_one(path: Path) -> Optional[str]:
        task_id = uuid.uuid4().hex[:12]
        out_dir = cfg.output_dir or path.parent
        async with semaphore:
            if interrupted:
                return None
            if ui is not None:
                ui.add_task(task_id, path.name)
            try:
                output = await commands.start_conversion(path, out_dir, task_id, sink=ui)
            except ConversionFailed:
                # Already reported through the progress sink
                return None
        if cfg.delete_source:
            try:
                await commands.delete_file(path)
            except IoFailed as e:
                logger.warning("%s", e.message)
        return output

    try:
        results = await asyncio.gather(*(convert_one(p) for p in files))
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)

    converted = sum(1 for r in results if r is not None)
    return converted, len(results) - converted, interrupted


def convert_main(files: List[Path], cfg: Config) -> int:
    """Run conversions with progress display, summary and notification."""
    if cfg.output_dir is not None:
        cfg.output_dir.mkdir(parents=True, exist_ok=True)

    start_time = time.time()
    ui = make_ui(cfg)
    if ui is None:
        ok, failed, interrupted = asyncio.run(run_conversions(files, cfg))
    else:
        with ui:
            ok, failed, interrupted = asyncio.run(run_conversions(files, cfg, ui))

    total_time = fmt_hms(time.time() - start_time)
    if RICH_AVAILABLE and isinstance(ui, RichConversionUI):
        ui.print_summary(time.time() - start_time)
    elif ui is not None:
        print()
        print("=== Summary ===")
        print(f"Converted: {ok}")
        print(f"Failed: {failed}")
        print(f"Total time: {total_time}")

    if cfg.notify:
        if interrupted:
            notify_interrupted()
        elif failed == 0 and ok > 0:
            if cfg.notify_on_success:
                notify_success(ok, total_time)
        elif failed > 0 and cfg.notify_on_failure:
            notify_failure(ok, failed)

    if interrupted:
        return 130
    return 0 if failed == 0 else 2


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    cfg, args = parse_args(argv)

    app_dirs = get_app_dirs()
    save_default_config(app_dirs["config"])
    file_config = load_config_file(app_dirs["config"])
    if file_config:
        apply_config_to_args(file_config, cfg)

    configure_logging(cfg.log_level, cfg.log_file or app_dirs["logs"] / "mp4mobile.log")

    # Update global config
    from mp4mobile.config import CFG as global_cfg

    global_cfg.__dict__.update(cfg.__dict__)

    if args.show_dirs:
        return show_dirs(app_dirs)
    if args.check_requirements:
        return asyncio.run(check_requirements(cfg))

    files = [Path(f) for f in args.files]
    if not files:
        print("mp4mobile: no input files (see --help)", file=sys.stderr)
        return 2

    if args.info:
        return asyncio.run(print_media_info(files, cfg))

    return convert_main(files, cfg)


if __name__ == "__main__":
    sys.exit(main())
