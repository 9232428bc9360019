"""
User interface components for mp4mobile.

Provides both Rich-based and plain-text progress displays.
"""

import importlib.util

from mp4mobile.ui.legacy_ui import LegacyConversionUI, fmt_hms, mkbar

# Check if Rich is available using importlib
RICH_AVAILABLE = importlib.util.find_spec("rich") is not None

__all__ = [
    "RICH_AVAILABLE",
    "LegacyConversionUI",
    "fmt_hms",
    "mkbar",
]

if RICH_AVAILABLE:
    from mp4mobile.ui.simple_rich import RichConversionUI  # noqa: F401

    __all__.append("RichConversionUI")
