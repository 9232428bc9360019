"""
Core conversion logic for mp4mobile.

Contains:
- Executable location (bundled ffmpeg/ffprobe first, then PATH)
- Media inspection and mobile-compatibility classification
- Backend selection (VideoToolbox, CPU)
- Conversion planning and FFmpeg argument building
- FFmpeg progress parsing
- The asynchronous conversion engine
"""

import asyncio
import json
import logging
import math
import os
import re
import shlex
import sys
from collections import deque
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Tuple, Union

from mp4mobile.config import CFG, Config
from mp4mobile.errors import ConversionFailed, ExecutableNotFound, NoVideoStream, ProbeFailed
from mp4mobile.json_progress import ConversionProgress, ProgressSink, ProgressStatus

logger = logging.getLogger(__name__)

FFMPEG = "ffmpeg"
FFPROBE = "ffprobe"

OUTPUT_SUFFIX = "_converted"
OUTPUT_EXT = ".mp4"

# Only the final "completed" event reports 100
MAX_RUNNING_PERCENT = 99.0
STDERR_TAIL_LINES = 20

PathLike = Union[str, Path]

# -------------------- UTILITY FUNCTIONS --------------------


async def run_capture(cmd: List[str]) -> Tuple[int, bytes, bytes]:
    """Run a command to completion and return (returncode, stdout, stderr).

    OSError from the spawn attempt propagates to the caller. On cancellation
    the child is killed and reaped before CancelledError is re-raised.
    """
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        _kill(proc)
        await proc.wait()
        raise
    return proc.returncode, stdout, stderr


async def run_quiet(cmd: List[str], timeout: float = 10.0) -> bool:
    """Run a command quietly, return True if it exits successfully."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug("Cannot run %s: %s", cmd[0], e)
        return False
    try:
        return await asyncio.wait_for(proc.wait(), timeout) == 0
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        return False


def _kill(proc: "asyncio.subprocess.Process") -> None:
    """Kill a child process if it is still running."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass


def _to_float(value: Any) -> float:
    """Parse a number, 0.0 for anything missing, malformed or non-finite."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def _to_uint(value: Any) -> int:
    """Parse a non-negative integer, 0 for anything else."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        result = int(value)
    except (TypeError, ValueError):
        return 0
    return result if result >= 0 else 0


# -------------------- EXECUTABLE LOCATION --------------------


def get_bundled_bin_dir(cfg: Optional[Config] = None) -> Optional[Path]:
    """Directory holding the application's bundled executables.

    ``cfg.bin_dir`` wins; otherwise this is the directory of the running
    executable (the frozen application, or the interpreter).
    """
    if cfg is None:
        cfg = CFG
    if cfg.bin_dir is not None:
        return Path(cfg.bin_dir)
    if not sys.executable:
        return None
    return Path(sys.executable).parent


def locate_executable(name: str, cfg: Optional[Config] = None) -> str:
    """
    Resolve the path of an external tool.

    Returns the bundled copy when it exists, otherwise the bare ``name`` to be
    looked up on PATH at spawn time. Never fails.
    """
    bin_dir = get_bundled_bin_dir(cfg)
    if bin_dir is not None:
        candidates = [bin_dir / name]
        if os.name == "nt" and not name.lower().endswith(".exe"):
            candidates.append(bin_dir / f"{name}.exe")
        for candidate in candidates:
            if candidate.is_file():
                return str(candidate)
    return name


async def check_encoder_available(cfg: Optional[Config] = None) -> bool:
    """Return True if the bundled or the system ffmpeg answers ``-version``."""
    ffmpeg = locate_executable(FFMPEG, cfg)
    if await run_quiet([ffmpeg, "-version"]):
        return True
    if ffmpeg != FFMPEG:
        return await run_quiet([FFMPEG, "-version"])
    return False


# -------------------- MEDIA INSPECTION --------------------


@dataclass(frozen=True)
class MediaInfo:
    """Snapshot of a media file as reported by ffprobe."""

    source_path: str
    file_name: str
    video_codec: str
    audio_codec: str
    container: str  # may hold several comma-separated aliases
    duration_seconds: float
    width: int
    height: int
    bitrate_bps: int
    needs_conversion: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_mobile_compatible(video_codec: str, audio_codec: str, container: str) -> bool:
    """H.264 video with AAC audio in an MP4 container."""
    # Substring match: ffprobe reports e.g. "mov,mp4,m4a,3gp,3g2,mj2"
    return video_codec == "h264" and audio_codec == "aac" and "mp4" in container


def parse_probe_output(path: PathLike, data: Any) -> MediaInfo:
    """
    Build a MediaInfo from parsed ``ffprobe -print_format json`` output.

    Args:
        path: The probed path, kept as given.
        data: Decoded JSON document.

    Returns:
        MediaInfo for the first video and first audio stream.

    Raises:
        ProbeFailed: If the document is not a JSON object.
        NoVideoStream: If no stream has codec_type "video".
    """
    source = str(path)
    if not isinstance(data, dict):
        raise ProbeFailed(f"Unexpected ffprobe output for {source}")

    streams = data.get("streams") or []
    if not isinstance(streams, list):
        streams = []
    streams = [s for s in streams if isinstance(s, dict)]

    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise NoVideoStream(source)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    def codec_of(stream: Optional[dict]) -> str:
        name = (stream or {}).get("codec_name")
        return name.lower() if isinstance(name, str) and name else "unknown"

    fmt = data.get("format") or {}
    if not isinstance(fmt, dict):
        fmt = {}
    container = fmt.get("format_name")
    if not isinstance(container, str) or not container:
        container = "unknown"

    video_codec = codec_of(video)
    audio_codec = codec_of(audio)

    return MediaInfo(
        source_path=source,
        file_name=Path(source).name or source,
        video_codec=video_codec,
        audio_codec=audio_codec,
        container=container,
        duration_seconds=_to_float(fmt.get("duration")),
        width=_to_uint(video.get("width")),
        height=_to_uint(video.get("height")),
        bitrate_bps=_to_uint(fmt.get("bit_rate")),
        needs_conversion=not is_mobile_compatible(video_codec, audio_codec, container),
    )


def ffprobe_cmd(ffprobe: str, path: PathLike) -> List[str]:
    return [ffprobe, "-v", "quiet", "-print_format", "json", "-show_format", "-show_streams", str(path)]


async def inspect_media(path: PathLike, cfg: Optional[Config] = None) -> MediaInfo:
    """
    Probe a media file.

    The bundled ffprobe is tried first; if it cannot be started or exits
    non-zero, the system ffprobe is tried once.

    Raises:
        ProbeFailed: Both attempts failed or the output is not valid JSON.
        NoVideoStream: The file has no video track.
    """
    ffprobe = locate_executable(FFPROBE, cfg)
    attempts = [ffprobe] if ffprobe == FFPROBE else [ffprobe, FFPROBE]

    stdout: Optional[bytes] = None
    last_error = ""
    spawn_failures = 0
    for exe in attempts:
        try:
            returncode, out, _err = await run_capture(ffprobe_cmd(exe, path))
        except OSError as e:
            spawn_failures += 1
            last_error = f"cannot run {exe}: {e}"
            logger.debug("ffprobe attempt failed: %s", last_error)
            continue
        if returncode == 0:
            stdout = out
            break
        last_error = f"{exe} exited with status {returncode}"
        logger.debug("ffprobe attempt failed: %s", last_error)

    if stdout is None:
        message = f"Failed to probe {path}: {last_error}"
        if spawn_failures == len(attempts):
            raise ProbeFailed(message) from ExecutableNotFound(FFPROBE, last_error)
        raise ProbeFailed(message)

    try:
        data = json.loads(stdout.decode("utf-8", errors="replace"))
    except ValueError as e:
        raise ProbeFailed(f"Failed to parse ffprobe output for {path}: {e}") from e

    return parse_probe_output(path, data)


# -------------------- BACKEND SELECTION --------------------


class VideoStrategy(str, Enum):
    COPY = "copy"
    REENCODE_SOFTWARE = "reencode_software"
    REENCODE_HARDWARE = "reencode_hardware"


class AudioStrategy(str, Enum):
    COPY = "copy"
    REENCODE_AAC = "reencode_aac"


# Hardware backend name -> (ffmpeg encoder, platform exposing it)
HW_ENCODERS: Dict[str, Tuple[str, str]] = {
    "videotoolbox": ("h264_videotoolbox", "darwin"),
}
BACKENDS = ("cpu",) + tuple(HW_ENCODERS)


async def have_encoder(ffmpeg: str, name: str) -> bool:
    """Check if ffmpeg lists the specified encoder."""
    try:
        returncode, out, _err = await run_capture([ffmpeg, "-hide_banner", "-encoders"])
    except OSError:
        return False
    if returncode != 0:
        return False
    for line in out.decode("utf-8", errors="replace").splitlines():
        # Format is like: " V....D h264_videotoolbox  VideoToolbox H.264 Encoder"
        parts = line.split()
        if len(parts) >= 2 and parts[1] == name:
            return True
    return False


async def detect_backend(
    cfg: Optional[Config] = None,
    ffmpeg: Optional[str] = None,
    platform: Optional[str] = None,
) -> str:
    """
    Select the video encoding backend.

    Args:
        cfg: Config instance (uses global CFG if not provided).
        ffmpeg: ffmpeg executable to query (located if not provided).
        platform: Value compared against ``sys.platform`` (for tests).

    Returns:
        Backend name: "videotoolbox" or "cpu".
    """
    if cfg is None:
        cfg = CFG
    if cfg.hw != "auto":
        if cfg.hw not in BACKENDS:
            raise ValueError(f"Unknown backend: {cfg.hw}")
        return cfg.hw

    platform = platform or sys.platform
    ffmpeg = ffmpeg or locate_executable(FFMPEG, cfg)
    for backend, (encoder, hw_platform) in HW_ENCODERS.items():
        if platform == hw_platform and await have_encoder(ffmpeg, encoder):
            logger.info("Using hardware encoder %s", encoder)
            return backend
    return "cpu"


# -------------------- CONVERSION PLANNING --------------------


@dataclass(frozen=True)
class ConversionPlan:
    """Per-stream strategy for one conversion."""

    video: VideoStrategy
    audio: AudioStrategy
    backend: str
    threads: int


def get_thread_count(cfg: Optional[Config] = None) -> int:
    """Number of threads handed to ffmpeg (logical CPUs, 4 if unknown)."""
    if cfg is None:
        cfg = CFG
    if cfg.threads > 0:
        return cfg.threads
    return os.cpu_count() or 4


def plan_conversion(info: MediaInfo, backend: str = "cpu", cfg: Optional[Config] = None) -> ConversionPlan:
    """Copy streams that already match the target profile, re-encode the rest."""
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend: {backend}")

    if info.video_codec == "h264":
        video = VideoStrategy.COPY
    elif backend == "cpu":
        video = VideoStrategy.REENCODE_SOFTWARE
    else:
        video = VideoStrategy.REENCODE_HARDWARE

    audio = AudioStrategy.COPY if info.audio_codec == "aac" else AudioStrategy.REENCODE_AAC

    return ConversionPlan(video=video, audio=audio, backend=backend, threads=get_thread_count(cfg))


def video_args_for(plan: ConversionPlan, cfg: Optional[Config] = None) -> List[str]:
    """Get ffmpeg video arguments for the plan's video strategy."""
    if cfg is None:
        cfg = CFG

    if plan.video is VideoStrategy.COPY:
        return ["-c:v", "copy"]
    if plan.video is VideoStrategy.REENCODE_HARDWARE:
        if plan.backend == "videotoolbox":
            return [
                "-c:v",
                "h264_videotoolbox",
                "-q:v",
                str(cfg.hw_quality),
                "-profile:v",
                cfg.profile,
                "-level",
                cfg.level,
                "-allow_sw",
                "1",  # fall back to the software path inside VideoToolbox
            ]
        raise ValueError(f"Unknown backend: {plan.backend}")
    return [
        "-c:v",
        "libx264",
        "-preset",
        cfg.preset,
        "-crf",
        str(cfg.crf),
        "-profile:v",
        cfg.profile,
        "-level",
        cfg.level,
        "-threads",
        str(plan.threads),
    ]


def audio_args_for(plan: ConversionPlan, cfg: Optional[Config] = None) -> List[str]:
    """Get ffmpeg audio arguments for the plan's audio strategy."""
    if cfg is None:
        cfg = CFG
    if plan.audio is AudioStrategy.COPY:
        return ["-c:a", "copy"]
    return ["-c:a", "aac", "-b:a", cfg.abr]


def output_path_for(input_path: PathLike, output_dir: PathLike) -> Path:
    """``<output_dir>/<stem>_converted.mp4``"""
    stem = Path(input_path).stem or "output"
    return Path(output_dir) / f"{stem}{OUTPUT_SUFFIX}{OUTPUT_EXT}"


def build_convert_args(
    input_path: PathLike,
    output_path: PathLike,
    plan: ConversionPlan,
    cfg: Optional[Config] = None,
) -> List[str]:
    """
    Build the ffmpeg argument list (without the executable).

    Progress is requested on stdout as ``key=value`` lines.
    """
    if cfg is None:
        cfg = CFG

    threads = str(plan.threads)
    args = ["-threads", threads, "-y", "-i", str(input_path)]
    args += video_args_for(plan, cfg)
    args += ["-pix_fmt", "yuv420p", "-movflags", "+faststart"]
    args += audio_args_for(plan, cfg)
    args += ["-threads", threads, "-progress", "pipe:1", str(output_path)]
    return args


# -------------------- PROGRESS PARSING --------------------

OUT_TIME_KEY = "out_time="


def parse_time_to_seconds(value: str) -> float:
    """Parse ``HH:MM:SS.frac`` into seconds; malformed parts count as 0."""
    parts = value.strip().split(":")
    if len(parts) != 3:
        return 0.0
    hours, minutes, seconds = (_to_float(p) for p in parts)
    return hours * 3600 + minutes * 60 + seconds


def parse_progress_line(line: str) -> Optional[float]:
    """
    Extract the timestamp from an ffmpeg ``-progress`` line.

    Returns None for every key other than ``out_time``.
    """
    line = line.strip()
    if not line.startswith(OUT_TIME_KEY):
        return None
    return parse_time_to_seconds(line[len(OUT_TIME_KEY) :])


def progress_percent(seconds: float, duration: float) -> float:
    """Percentage of ``duration`` reached, clamped to [0, 99]; 0 when duration is unknown."""
    if duration <= 0:
        return 0.0
    return max(0.0, min(MAX_RUNNING_PERCENT, seconds / duration * 100))


# -------------------- CONVERSION --------------------


async def _collect_stderr(stream: asyncio.StreamReader, tail: Deque[str]) -> None:
    """Drain ffmpeg stderr, keeping its last lines.

    ffmpeg redraws its stats line with carriage returns, so both CR and LF
    end a line here.
    """
    pending = b""
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            break
        pending += chunk
        *lines, pending = re.split(rb"[\r\n]", pending)
        for raw in lines:
            text = raw.decode("utf-8", errors="replace").strip()
            if text:
                tail.append(text)
    text = pending.decode("utf-8", errors="replace").strip()
    if text:
        tail.append(text)


async def convert_file(
    input_path: PathLike,
    output_dir: PathLike,
    task_id: str,
    sink: Optional[ProgressSink] = None,
    cfg: Optional[Config] = None,
    backend: Optional[str] = None,
) -> Path:
    """
    Convert a file to H.264/AAC MP4, reporting progress to ``sink``.

    Events: ``starting`` (0), ``converting`` for each ``out_time`` line of the
    ffmpeg progress stream, then exactly one ``completed`` (100, with output
    path) or ``error`` (with message). A failed inspection produces only the
    ``error`` event.

    Args:
        input_path: Source media file, never modified.
        output_dir: Directory receiving ``<stem>_converted.mp4``.
        task_id: Correlation id stamped on every event.
        sink: Receives progress events.
        cfg: Config instance (uses global CFG if not provided).
        backend: Encoding backend (detected if not provided).

    Returns:
        Path of the produced file.

    Raises:
        ConversionFailed: Inspection failed, ffmpeg could not start, exited
            non-zero, or did not create the output.
        asyncio.CancelledError: The task was cancelled; ffmpeg has been killed.

    Example:
        >>> sink = QueueProgressSink()
        >>> output = await convert_file("clip.mkv", "/tmp", "task-1", sink)
    """
    if cfg is None:
        cfg = CFG

    output_path = output_path_for(input_path, output_dir)

    def _emit(
        status: ProgressStatus,
        progress: float = 0.0,
        output: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if sink is None:
            return
        try:
            sink.emit(ConversionProgress(task_id, progress, status, output, error))
        except Exception:
            # Sink errors never abort the conversion
            logger.warning("Progress sink failed for task %s", task_id, exc_info=True)

    def _fail(message: str, **kwargs: Any) -> ConversionFailed:
        logger.error("Conversion %s failed: %s", task_id, message)
        _emit(ProgressStatus.ERROR, error=message)
        return ConversionFailed(message, **kwargs)

    try:
        info = await inspect_media(input_path, cfg)
    except (ProbeFailed, NoVideoStream) as e:
        raise _fail(f"Analysis failed: {e.message}") from e

    _emit(ProgressStatus.STARTING, 0.0)

    try:
        if backend is None:
            backend = await detect_backend(cfg)
        plan = plan_conversion(info, backend, cfg)
        args = build_convert_args(input_path, output_path, plan, cfg)
    except ValueError as e:
        raise _fail(str(e)) from e

    ffmpeg = locate_executable(FFMPEG, cfg)
    cmd = [ffmpeg] + args
    logger.info(
        "Task %s: %s (video=%s, audio=%s, backend=%s)",
        task_id,
        info.file_name,
        plan.video.value,
        plan.audio.value,
        plan.backend,
    )
    logger.debug("CMD: %s", shlex.join(cmd))

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise _fail(f"Failed to start ffmpeg: {e}") from ExecutableNotFound(ffmpeg, str(e))

    stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
    stderr_task = asyncio.ensure_future(_collect_stderr(proc.stderr, stderr_tail))

    try:
        while True:
            line = await proc.stdout.readline()
            if not line:
                break
            seconds = parse_progress_line(line.decode("utf-8", errors="replace"))
            if seconds is None:
                continue
            _emit(ProgressStatus.CONVERTING, progress_percent(seconds, info.duration_seconds))

        returncode = await proc.wait()
        await stderr_task
    except asyncio.CancelledError:
        _kill(proc)
        stderr_task.cancel()
        logger.info("Conversion %s cancelled, ffmpeg killed", task_id)
        _emit(ProgressStatus.ERROR, error="Conversion cancelled")
        await proc.wait()
        raise

    if returncode == 0 and output_path.exists():
        logger.info("Task %s completed: %s", task_id, output_path)
        _emit(ProgressStatus.COMPLETED, 100.0, output=str(output_path))
        return output_path

    if returncode != 0:
        message = f"ffmpeg exited with status {returncode}"
    else:
        message = "Output file not created"
    if stderr_tail:
        logger.error("ffmpeg stderr (last lines):\n%s", "\n".join(stderr_tail))
    raise _fail(message, returncode=returncode, stderr_tail=list(stderr_tail))
