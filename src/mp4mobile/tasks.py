"""
Registry of in-flight conversion tasks.

Each entry maps a task id to the asyncio task running its conversion.
Cancelling an id cancels that asyncio task; the conversion engine reacts by
killing its ffmpeg child and emitting a terminal ``error`` event.

The map is guarded by a single lock held only while entries are inserted or
removed, so ``cancel`` may be called from any thread.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from mp4mobile.errors import TaskAlreadyActive

logger = logging.getLogger(__name__)


@dataclass
class TaskEntry:
    """Handle on one running conversion."""

    task_id: str
    task: Optional["asyncio.Task"]
    loop: Optional[asyncio.AbstractEventLoop]
    cancelled: bool = False


class TaskRegistry:
    """Process-wide table of running conversions, shared by the command layer."""

    def __init__(self) -> None:
        self._entries: Dict[str, TaskEntry] = {}
        self._lock = threading.Lock()

    def register(self, task_id: str, task: Optional["asyncio.Task"] = None) -> TaskEntry:
        """
        Record a conversion before it starts.

        Args:
            task_id: Caller-supplied id, unique among running conversions.
            task: The asyncio task to cancel on request (defaults to the
                current task when called from a coroutine).

        Raises:
            TaskAlreadyActive: If ``task_id`` is already registered.
        """
        loop = None
        if task is None:
            try:
                task = asyncio.current_task()
            except RuntimeError:
                task = None
        if task is not None:
            loop = task.get_loop()

        entry = TaskEntry(task_id=task_id, task=task, loop=loop)
        with self._lock:
            if task_id in self._entries:
                raise TaskAlreadyActive(task_id)
            self._entries[task_id] = entry
        logger.debug("Registered task %s", task_id)
        return entry

    def unregister(self, task_id: str, entry: Optional[TaskEntry] = None) -> None:
        """
        Forget a finished conversion. Unknown ids are ignored.

        When ``entry`` is given, the id is removed only if it still maps to
        that entry, so a finished run cannot drop a newer run reusing its id.
        """
        with self._lock:
            current = self._entries.get(task_id)
            if current is not None and (entry is None or current is entry):
                del self._entries[task_id]

    def is_active(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._entries

    def active_ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def cancel(self, task_id: str) -> bool:
        """
        Request cancellation of a running conversion.

        The entry is removed immediately. Returns False (a no-op) when the id
        is unknown.
        """
        with self._lock:
            entry = self._entries.pop(task_id, None)
        if entry is None:
            return False

        entry.cancelled = True
        if entry.task is not None and entry.loop is not None and not entry.task.done():
            try:
                entry.loop.call_soon_threadsafe(entry.task.cancel)
            except RuntimeError:
                # Loop already closed: nothing left to stop
                logger.debug("Loop closed before task %s could be cancelled", task_id)
        logger.info("Cancellation requested for task %s", task_id)
        return True

    def cancel_all(self) -> int:
        """Cancel every registered conversion, return how many were cancelled."""
        return sum(1 for task_id in self.active_ids() if self.cancel(task_id))
