"""
Commands exposed to a host application (desktop shell, CLI, web service).

Each command is an independently awaitable coroutine. Conversions publish
their progress on the host event channel as ``conversion-progress-<task_id>``
events and are tracked in a TaskRegistry so they can be cancelled.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional, Union

from mp4mobile.config import CFG, Config
from mp4mobile.converter import (
    MediaInfo,
    check_encoder_available,
    convert_file,
    detect_backend,
    inspect_media,
)
from mp4mobile.errors import ConversionCancelled, IoFailed
from mp4mobile.json_progress import (
    ChannelSink,
    ConversionProgress,
    EventChannel,
    FanOutSink,
    ProgressSink,
    ProgressStatus,
)
from mp4mobile.tasks import TaskRegistry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

CANCELLED_MESSAGE = "Conversion cancelled"


class _TaskSink:
    """Forwards a task's events and remembers whether a terminal one went out."""

    def __init__(self, sink: ProgressSink):
        self.sink = sink
        self.terminal_sent = False

    def emit(self, progress: ConversionProgress) -> None:
        if progress.status.is_terminal:
            self.terminal_sent = True
        self.sink.emit(progress)


class ConverterCommands:
    """
    Command surface of the conversion engine.

    Args:
        registry: Shared registry of running conversions (one per process).
        channel: Host event channel receiving progress events.
        cfg: Config instance (uses global CFG if not provided).
        backend: Encoding backend; detected once on first use if not provided.
    """

    def __init__(
        self,
        registry: Optional[TaskRegistry] = None,
        channel: Optional[EventChannel] = None,
        cfg: Optional[Config] = None,
        backend: Optional[str] = None,
    ):
        self.registry = registry if registry is not None else TaskRegistry()
        self.channel = channel
        self.cfg = cfg if cfg is not None else CFG
        self._backend = backend
        self._backend_lock: Optional[asyncio.Lock] = None

    async def backend(self) -> str:
        """Encoding backend, probed on first call and reused afterwards."""
        if self._backend is None:
            if self._backend_lock is None:
                self._backend_lock = asyncio.Lock()
            async with self._backend_lock:
                if self._backend is None:
                    self._backend = await detect_backend(self.cfg)
        return self._backend

    async def check_encoder_available(self) -> bool:
        return await check_encoder_available(self.cfg)

    async def get_media_info(self, path: PathLike) -> MediaInfo:
        """Inspect ``path``; raises ProbeFailed or NoVideoStream."""
        return await inspect_media(path, self.cfg)

    async def start_conversion(
        self,
        input_path: PathLike,
        output_dir: PathLike,
        task_id: str,
        sink: Optional[ProgressSink] = None,
    ) -> str:
        """
        Convert ``input_path`` and return the output path.

        Progress goes to the host channel and, if given, to ``sink``.

        Raises:
            TaskAlreadyActive: ``task_id`` is already running.
            ConversionCancelled: ``cancel_conversion`` was called for the task.
            ConversionFailed: The conversion failed.
        """
        entry = self.registry.register(task_id)
        channel_sink = ChannelSink(self.channel, task_id) if self.channel is not None else None
        task_sink = _TaskSink(FanOutSink(channel_sink, sink))
        try:
            backend = await self.backend()
            output = await convert_file(input_path, output_dir, task_id, task_sink, self.cfg, backend)
        except asyncio.CancelledError:
            if not entry.cancelled:
                raise
            current = asyncio.current_task()
            if current is not None and hasattr(current, "uncancel"):
                # Python 3.11+: the cancellation is consumed here
                current.uncancel()
            if not task_sink.terminal_sent:
                try:
                    task_sink.emit(ConversionProgress(task_id, 0.0, ProgressStatus.ERROR, error=CANCELLED_MESSAGE))
                except Exception:
                    logger.warning("Progress sink failed for task %s", task_id, exc_info=True)
            raise ConversionCancelled(CANCELLED_MESSAGE) from None
        finally:
            self.registry.unregister(task_id, entry)
        return str(output)

    def cancel_conversion(self, task_id: str) -> None:
        """Cancel a running conversion; unknown ids are ignored."""
        if not self.registry.cancel(task_id):
            logger.debug("Cancel ignored for unknown task %s", task_id)

    async def delete_file(self, path: PathLike) -> None:
        """Remove a single file; raises IoFailed."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, os.remove, str(path))
        except OSError as e:
            raise IoFailed(f"Failed to delete file {path}: {e}") from e
        logger.info("Deleted %s", path)
