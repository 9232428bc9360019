"""
Progress events and sinks for mp4mobile.

A conversion reports its lifecycle as a sequence of ConversionProgress
events: one ``starting``, zero or more ``converting``, then exactly one
``completed`` or ``error``. Events are handed to a ProgressSink; this module
provides sinks for an asyncio queue, for a named-event host channel, and
for JSON lines on a stream (integration with web UIs, monitoring tools, etc.).
"""

import asyncio
import json
import sys
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol


PROGRESS_EVENT_PREFIX = "conversion-progress-"


class ProgressStatus(str, Enum):
    """Lifecycle status carried by a progress event."""

    STARTING = "starting"
    CONVERTING = "converting"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStatus.COMPLETED, ProgressStatus.ERROR)


@dataclass(frozen=True)
class ConversionProgress:
    """Progress notification for a single conversion task."""

    task_id: str
    progress: float  # 0-100
    status: ProgressStatus
    output_path: Optional[str] = None  # only on completed
    error: Optional[str] = None  # only on error

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def progress_event_name(task_id: str) -> str:
    """Name of the host event carrying progress for ``task_id``."""
    return f"{PROGRESS_EVENT_PREFIX}{task_id}"


class ProgressSink(Protocol):
    """Receives the ordered progress events of one or more conversions."""

    def emit(self, progress: ConversionProgress) -> None:
        ...


class EventChannel(Protocol):
    """Host event channel: delivers a named event with a JSON-able payload."""

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class QueueProgressSink:
    """Sink writing events into an asyncio queue drained by the host.

    ``emit`` must be called from the thread running the queue's event loop,
    which is the case for events produced by ``convert_file``.
    """

    def __init__(self, queue: Optional["asyncio.Queue[ConversionProgress]"] = None):
        self.queue: "asyncio.Queue[ConversionProgress]" = queue if queue is not None else asyncio.Queue()

    def emit(self, progress: ConversionProgress) -> None:
        self.queue.put_nowait(progress)

    async def drain(self, task_id: Optional[str] = None):
        """Yield queued events until a terminal one (for ``task_id`` if given)."""
        while True:
            progress = await self.queue.get()
            yield progress
            if progress.status.is_terminal and (task_id is None or progress.task_id == task_id):
                return


class ChannelSink:
    """Adapter publishing a task's events on a host channel under its event name."""

    def __init__(self, channel: EventChannel, task_id: str):
        self.channel = channel
        self.task_id = task_id
        self.event_name = progress_event_name(task_id)

    def emit(self, progress: ConversionProgress) -> None:
        self.channel.emit(self.event_name, progress.to_dict())


class FanOutSink:
    """Sink forwarding every event to several sinks, in order."""

    def __init__(self, *sinks: ProgressSink):
        self.sinks = [s for s in sinks if s is not None]

    def emit(self, progress: ConversionProgress) -> None:
        for sink in self.sinks:
            sink.emit(progress)


class JSONProgressOutput:
    """Event channel printing one JSON object per event to a stream.

    Lines look like::

        {"event": "conversion-progress-42", "timestamp": 1700000000.0,
         "payload": {"task_id": "42", "progress": 12.5, "status": "converting", ...}}
    """

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        line = json.dumps({"event": event, "timestamp": time.time(), "payload": payload})
        with self._lock:
            print(line, file=self.stream, flush=True)

    def sink_for(self, task_id: str) -> ChannelSink:
        """Return a ProgressSink publishing ``task_id`` events on this stream."""
        return ChannelSink(self, task_id)
