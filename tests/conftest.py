"""
Pytest configuration and shared fixtures for mp4mobile tests.
"""

import asyncio
import json
import os
import stat
import sys
import tempfile
from pathlib import Path
from typing import Generator, List, Optional

import pytest

# Add src to path for testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_dir(temp_dir: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = temp_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


@pytest.fixture
def mock_xdg_dirs(temp_dir: Path, monkeypatch):
    """Mock XDG directories to use temporary paths."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir / "config"))
    monkeypatch.setenv("XDG_STATE_HOME", str(temp_dir / "state"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(temp_dir / "cache"))


@pytest.fixture
def default_config():
    """Return a default Config instance for testing."""
    from mp4mobile.config import Config

    return Config()


def probe_document(
    video_codec: Optional[str] = "h264",
    audio_codec: Optional[str] = "aac",
    format_name: str = "mov,mp4,m4a,3gp,3g2,mj2",
    duration: str = "10.000000",
    width: int = 1920,
    height: int = 1080,
    bit_rate: str = "5000000",
) -> dict:
    """Build an ffprobe-style JSON document."""
    streams = []
    if video_codec is not None:
        streams.append({"index": 0, "codec_type": "video", "codec_name": video_codec, "width": width, "height": height})
    if audio_codec is not None:
        streams.append({"index": len(streams), "codec_type": "audio", "codec_name": audio_codec})
    return {
        "streams": streams,
        "format": {"format_name": format_name, "duration": duration, "bit_rate": bit_rate},
    }


def _write_script(path: Path, body: str) -> Path:
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class FakeTools:
    """Shell-script stand-ins for ffprobe and ffmpeg in a private bin dir."""

    def __init__(self, root: Path):
        self.root = root
        self.bin_dir = root / "bin"
        self.bin_dir.mkdir(parents=True, exist_ok=True)
        self.args_file = root / "ffmpeg_args.txt"

    def ffprobe(self, document=None, exit_code: int = 0, raw: Optional[str] = None) -> None:
        """Install an ffprobe printing ``document`` (or ``raw`` text)."""
        out_file = self.root / "probe.json"
        out_file.write_text(raw if raw is not None else json.dumps(document or probe_document()))
        _write_script(self.bin_dir / "ffprobe", f'cat "{out_file}"\nexit {exit_code}\n')

    def ffmpeg(
        self,
        progress_times: Optional[List[str]] = None,
        exit_code: int = 0,
        create_output: bool = True,
        stderr_lines: Optional[List[str]] = None,
        hang: bool = False,
        encoders: Optional[List[str]] = None,
    ) -> None:
        """Install an ffmpeg that prints progress lines and writes its last argument."""
        lines = [
            'if [ "$1" = "-version" ]; then echo "ffmpeg version fake"; exit 0; fi',
            'if [ "$1" = "-hide_banner" ]; then',
        ]
        for name in encoders or ["libx264"]:
            lines.append(f"  echo ' V....D {name}  fake encoder'")
        lines.append("  exit 0")
        lines.append("fi")
        lines.append(f'printf \'%s\\n\' "$@" > "{self.args_file}"')
        lines.append("for last; do :; done")
        for t in progress_times or []:
            lines.append("echo 'frame=1'")
            lines.append(f"echo 'out_time={t}'")
            lines.append("echo 'progress=continue'")
        for err in stderr_lines or []:
            lines.append(f"echo '{err}' >&2")
        if hang:
            lines.append("exec sleep 30")
        if create_output:
            lines.append(': > "$last"')
        lines.append("echo 'progress=end'")
        lines.append(f"exit {exit_code}")
        _write_script(self.bin_dir / "ffmpeg", "\n".join(lines) + "\n")

    def hanging_ffprobe(self) -> Path:
        """Install an ffprobe that records its pid and never finishes; returns the pid file."""
        pid_file = self.root / "ffprobe.pid"
        _write_script(self.bin_dir / "ffprobe", f'echo $$ > "{pid_file}.tmp"\nmv "{pid_file}.tmp" "{pid_file}"\nexec sleep 30\n')
        return pid_file

    async def wait_for_pid(self, pid_file: Path, timeout: float = 10.0) -> int:
        """Poll until a fake tool has written its pid."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not pid_file.exists():
            if loop.time() > deadline:
                raise AssertionError(f"{pid_file.name} never appeared")
            await asyncio.sleep(0.02)
        return int(pid_file.read_text().strip())

    @staticmethod
    def is_running(pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        return True

    def recorded_args(self) -> List[str]:
        return self.args_file.read_text().splitlines()

    def config(self, **kwargs):
        from mp4mobile.config import Config

        values = {"bin_dir": self.bin_dir, "hw": "cpu", "threads": 2, "progress": False, "notify": False}
        values.update(kwargs)
        return Config(**values)


@pytest.fixture
def fake_tools(temp_dir: Path) -> FakeTools:
    """Fake ffprobe/ffmpeg executables (POSIX shells only)."""
    if sys.platform == "win32":
        pytest.skip("fake executables are shell scripts")
    return FakeTools(temp_dir)


@pytest.fixture
def media_file(temp_dir: Path) -> Path:
    """A placeholder input file; the fake tools never read it."""
    path = temp_dir / "clip.mkv"
    path.write_bytes(b"\x1a\x45\xdf\xa3 not really matroska")
    return path


class RecordingChannel:
    """Host event channel collecting (event, payload) pairs."""

    def __init__(self):
        self.events = []

    def emit(self, event, payload):
        self.events.append((event, payload))


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def probe_doc():
    """Factory for ffprobe JSON documents."""
    return probe_document
