"""Logging setup for mp4mobile."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

_LEVEL_MAP: Dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    level: str = "warning",
    log_file: Optional[Path] = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """Configure the root logger.

    Log records always go to stderr; when ``log_file`` is given they are also
    written to a rotating file. An unusable log file is reported on stderr and
    otherwise ignored.

    Args:
        level: One of debug, info, warning, error (case-insensitive).
        log_file: Optional path of the rotating log file.
        max_bytes: Rotation size of the log file.
        backup_count: Number of rotated files to keep.
    """
    numeric = _LEVEL_MAP.get(level.casefold(), logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric)
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(numeric)
    stderr_handler.setFormatter(formatter)
    root_logger.addHandler(stderr_handler)

    if log_file:
        try:
            path = Path(log_file).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
            # The file keeps everything down to DEBUG for post-mortem analysis
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            root_logger.setLevel(logging.DEBUG)
        except OSError as e:
            root_logger.warning("Log file %s unavailable: %s", log_file, e)
