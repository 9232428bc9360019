"""
Configuration management for mp4mobile.

Handles:
- XDG Base Directory compliance
- TOML/INI configuration file loading
- Config dataclass with all options
- Configuration merging (system -> user -> CLI)
- Automatic script mode detection
"""

import configparser
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# -------------------- SCRIPT MODE DETECTION --------------------


def is_script_mode() -> bool:
    """
    Detect if running non-interactively.

    Returns True if:
    - stdout is not a TTY (piped or redirected)
    - NO_COLOR environment variable is set
    - MP4MOBILE_SCRIPT_MODE environment variable is set

    Returns:
        True if running in script mode, False otherwise.
    """
    try:
        if not sys.stdout.isatty():
            return True
    except (AttributeError, ValueError):
        return True

    if os.getenv("NO_COLOR") or os.getenv("MP4MOBILE_SCRIPT_MODE"):
        return True

    return False


# Try TOML support (Python 3.11+ or tomli package)
try:
    import tomllib  # Python 3.11+

    TOML_AVAILABLE = True
except ImportError:
    try:
        import tomli as tomllib  # pip install tomli

        TOML_AVAILABLE = True
    except ImportError:
        TOML_AVAILABLE = False


# -------------------- XDG DIRECTORIES --------------------


def get_xdg_config_home() -> Path:
    """Get XDG config home directory."""
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def get_xdg_state_home() -> Path:
    """Get XDG state home directory."""
    return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state"))


def get_xdg_cache_home() -> Path:
    """Get XDG cache home directory."""
    return Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))


def get_app_dirs() -> Dict[str, Path]:
    """Return all application directories, creating them if needed."""
    dirs = {
        "config": get_xdg_config_home() / "mp4mobile",
        "state": get_xdg_state_home() / "mp4mobile",
        "logs": get_xdg_state_home() / "mp4mobile" / "logs",
        "cache": get_xdg_cache_home() / "mp4mobile",
    }
    for d in dirs.values():
        d.mkdir(parents=True, exist_ok=True)
    return dirs


# -------------------- CONFIGURATION DATACLASS --------------------


@dataclass
class Config:
    """All configuration options for mp4mobile."""

    # Encoding
    hw: str = "auto"  # auto, videotoolbox, cpu
    crf: int = 23
    preset: str = "fast"
    abr: str = "128k"
    profile: str = "main"
    level: str = "4.0"
    hw_quality: int = 65  # VideoToolbox -q:v (1-100, higher=better)
    threads: int = 0  # 0 = logical CPU count

    # Executables
    bin_dir: Optional[Path] = None  # None = directory of the running executable

    # Output
    output_dir: Optional[Path] = None  # None = alongside the input
    delete_source: bool = False

    # Parallelism
    jobs: int = 1

    # UI settings
    progress: bool = True
    json_progress: bool = False

    # Notifications
    notify: bool = True
    notify_on_success: bool = True
    notify_on_failure: bool = True

    # Debug / logging
    debug: bool = False
    log_level: str = "warning"
    log_file: Optional[Path] = None

    def apply_script_mode(self) -> None:
        """
        Disable interactive features when not attached to a terminal.

        Disables:
        - progress: No progress bars
        - notify: No desktop notifications
        """
        if is_script_mode():
            self.progress = False
            self.notify = False

    @classmethod
    def for_library(cls, **kwargs) -> "Config":
        """
        Create a Config instance suited for library usage.

        Progress display and desktop notifications are turned off; the
        caller receives progress through a sink instead.

        Example:
            >>> config = Config.for_library(hw="cpu", crf=20)
            >>> output = await convert_file(path, out_dir, "task-1", sink, cfg=config)
        """
        defaults: Dict[str, Any] = {
            "progress": False,
            "notify": False,
        }
        defaults.update(kwargs)
        return cls(**defaults)


# Global config instance (set by parse_args in cli.py)
CFG = Config()


# -------------------- CONFIG FILE LOADING --------------------


def _parse_ini_value(value: str):
    """Parse INI value: bool, int, float, or string."""
    v = value.strip()
    if not v:
        return ""
    if v.lower() in ("true", "yes", "on"):
        return True
    if v.lower() in ("false", "no", "off"):
        return False
    try:
        return int(v)
    except ValueError:
        pass
    try:
        return float(v)
    except ValueError:
        pass
    return v


def _load_ini_config(path: Path) -> Dict[str, Any]:
    """Load INI file and convert to nested dict."""
    cp = configparser.ConfigParser()
    cp.read(path)
    result: Dict[str, Any] = {}
    for section in cp.sections():
        result[section] = {}
        for key, value in cp.items(section):
            result[section][key] = _parse_ini_value(value)
    return result


def _load_single_config(config_dir: Path) -> Dict[str, Any]:
    """Load config from a single directory (TOML or INI file)."""
    toml_path = config_dir / "config.toml"
    ini_path = config_dir / "config.ini"

    if TOML_AVAILABLE and toml_path.exists():
        try:
            with toml_path.open("rb") as f:
                return dict(tomllib.load(f))
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Failed to load %s: %s", toml_path, e)
            return {}
    elif ini_path.exists():
        try:
            return _load_ini_config(ini_path)
        except (OSError, configparser.Error) as e:
            logger.warning("Failed to load %s: %s", ini_path, e)
            return {}
    return {}


def _deep_merge_dicts(base: dict, override: dict) -> dict:
    """Deep merge two dicts, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value
    return result


def load_config_file(config_dir: Path, system_config_dir: Path = Path("/etc/mp4mobile")) -> dict:
    """
    Load config with priority:
    1. User config: ~/.config/mp4mobile/config.toml (highest priority)
    2. System config: /etc/mp4mobile/config.toml (lowest priority, optional)
    """
    system_config = {}
    if system_config_dir.exists():
        system_config = _load_single_config(system_config_dir)

    user_config = _load_single_config(config_dir)

    if system_config and user_config:
        return _deep_merge_dicts(system_config, user_config)
    return user_config or system_config or {}


def _get_default_config_toml() -> str:
    """Return default config as TOML string."""
    return """# mp4mobile configuration file
# This file is auto-generated on first run

[encoding]
backend = "auto"  # auto, videotoolbox, cpu
crf = 23
preset = "fast"
abr = "128k"
profile = "main"
level = "4.0"
hw_quality = 65
threads = 0  # 0 = number of logical CPUs

[paths]
# Directory holding bundled ffmpeg/ffprobe (default: next to the executable)
# bin_dir = "/opt/mp4mobile/bin"

[output]
# output_dir = "~/Videos/converted"
delete_source = false

[workers]
jobs = 1

[notifications]
enabled = true
on_success = true
on_failure = true

[logging]
level = "warning"  # debug, info, warning, error
# file = "~/.local/state/mp4mobile/logs/mp4mobile.log"
"""


def _get_default_config_ini() -> str:
    """Return default config as INI string."""
    return """# mp4mobile configuration file
# This file is auto-generated on first run

[encoding]
backend = auto
crf = 23
preset = fast
abr = 128k
profile = main
level = 4.0
hw_quality = 65
threads = 0

[paths]
# bin_dir = /opt/mp4mobile/bin

[output]
# output_dir = ~/Videos/converted
delete_source = false

[workers]
jobs = 1

[notifications]
enabled = true
on_success = true
on_failure = true

[logging]
level = warning
"""


def save_default_config(config_dir: Path) -> Path:
    """Create default config file (TOML if available, else INI). Returns path."""
    config_dir.mkdir(parents=True, exist_ok=True)

    if TOML_AVAILABLE:
        path = config_dir / "config.toml"
        if not path.exists():
            path.write_text(_get_default_config_toml())
        return path
    path = config_dir / "config.ini"
    if not path.exists():
        path.write_text(_get_default_config_ini())
    return path


_PATH_ATTRS = ("bin_dir", "output_dir", "log_file")


def apply_config_to_args(file_config: dict, cfg: Config) -> None:
    """
    Apply file config values to a Config instance.

    A value from the file is applied only when the attribute still holds its
    default, so options given on the command line keep priority.
    """
    default_cfg = Config()

    mappings = {
        ("encoding", "backend"): "hw",
        ("encoding", "crf"): "crf",
        ("encoding", "preset"): "preset",
        ("encoding", "abr"): "abr",
        ("encoding", "profile"): "profile",
        ("encoding", "level"): "level",
        ("encoding", "hw_quality"): "hw_quality",
        ("encoding", "threads"): "threads",
        ("paths", "bin_dir"): "bin_dir",
        ("output", "output_dir"): "output_dir",
        ("output", "delete_source"): "delete_source",
        ("workers", "jobs"): "jobs",
        ("notifications", "enabled"): "notify",
        ("notifications", "on_success"): "notify_on_success",
        ("notifications", "on_failure"): "notify_on_failure",
        ("logging", "level"): "log_level",
        ("logging", "file"): "log_file",
    }

    for (section, key), attr_name in mappings.items():
        if section not in file_config or key not in file_config[section]:
            continue
        file_val = file_config[section][key]
        if getattr(cfg, attr_name) != getattr(default_cfg, attr_name):
            continue
        if attr_name in _PATH_ATTRS:
            file_val = Path(str(file_val)).expanduser() if file_val else None
        elif attr_name == "level":
            # INI parsing turns "4.0" into a float
            file_val = str(file_val)
        setattr(cfg, attr_name, file_val)
