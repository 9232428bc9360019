"""
mp4mobile - Convert videos to mobile-friendly H.264/AAC MP4.

Streams that already play on phones are copied; everything else is
re-encoded with libx264 (or VideoToolbox on macOS) and AAC. Progress is
reported as ``conversion-progress-<task_id>`` events.

Example usage:
    # As a command-line tool
    $ mp4mobile clip.mkv
    $ mp4mobile --info clip.mkv

    # As a Python module
    import asyncio
    from mp4mobile import ConverterCommands

    commands = ConverterCommands()
    info = asyncio.run(commands.get_media_info("clip.mkv"))
"""

__version__ = "0.1.0"
__author__ = "mp4mobile contributors"
__license__ = "MIT"
__description__ = "Convert videos to mobile-friendly H.264/AAC MP4"

# Public API exports
from mp4mobile.commands import ConverterCommands
from mp4mobile.config import Config, get_app_dirs, load_config_file
from mp4mobile.converter import (
    ConversionPlan,
    MediaInfo,
    build_convert_args,
    convert_file,
    detect_backend,
    inspect_media,
    plan_conversion,
)
from mp4mobile.errors import (
    ConversionCancelled,
    ConversionFailed,
    ExecutableNotFound,
    IoFailed,
    Mp4MobileError,
    NoVideoStream,
    ProbeFailed,
    TaskAlreadyActive,
)
from mp4mobile.json_progress import ConversionProgress, JSONProgressOutput, ProgressStatus, QueueProgressSink
from mp4mobile.tasks import TaskRegistry

__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    # Config
    "Config",
    "get_app_dirs",
    "load_config_file",
    # Commands
    "ConverterCommands",
    "TaskRegistry",
    # Converter
    "MediaInfo",
    "ConversionPlan",
    "inspect_media",
    "detect_backend",
    "plan_conversion",
    "build_convert_args",
    "convert_file",
    # Progress
    "ConversionProgress",
    "ProgressStatus",
    "QueueProgressSink",
    "JSONProgressOutput",
    # Errors
    "Mp4MobileError",
    "ExecutableNotFound",
    "ProbeFailed",
    "NoVideoStream",
    "ConversionFailed",
    "ConversionCancelled",
    "IoFailed",
    "TaskAlreadyActive",
]
