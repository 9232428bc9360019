"""
Exception types for mp4mobile.

Every failure surfaced to a caller derives from Mp4MobileError and carries a
human-readable message, the same text delivered in the terminal ``error``
progress event of a conversion.
"""

from typing import List, Optional


class Mp4MobileError(Exception):
    """Base exception for mp4mobile errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ExecutableNotFound(Mp4MobileError):
    """Raised when neither the bundled nor the system executable could be started."""

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        message = f"{name} could not be started"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ProbeFailed(Mp4MobileError):
    """Raised when ffprobe fails on every attempt or its output cannot be parsed."""


class NoVideoStream(Mp4MobileError):
    """Raised when the probed file has no video track."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"No video stream found in {path}")


class ConversionFailed(Mp4MobileError):
    """Raised when a conversion does not produce its output file."""

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        stderr_tail: Optional[List[str]] = None,
    ) -> None:
        """
        Args:
            message: Reason reported to the caller and progress listeners.
            returncode: Encoder exit status, when the encoder ran.
            stderr_tail: Last lines of encoder stderr, kept for diagnostics.
        """
        self.returncode = returncode
        self.stderr_tail = stderr_tail or []
        super().__init__(message)


class ConversionCancelled(ConversionFailed):
    """Raised when a conversion was cancelled through the task registry."""


class IoFailed(Mp4MobileError):
    """Raised when a filesystem operation fails."""


class TaskAlreadyActive(Mp4MobileError):
    """Raised when registering a task id that is already in flight."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} is already running")
