"""
Desktop notification support for mp4mobile.

Sends system notifications when conversions finish.
Uses notify-send (libnotify) as primary method with plyer as fallback.
"""

import logging
import shutil
import subprocess
from typing import Literal, Optional

logger = logging.getLogger(__name__)


def _has_notify_send() -> bool:
    """Check if notify-send is available."""
    return shutil.which("notify-send") is not None


def _has_plyer() -> bool:
    """Check if plyer is available."""
    try:
        from plyer import notification  # noqa: F401

        return True
    except ImportError:
        return False


NOTIFY_SEND_AVAILABLE = _has_notify_send()
PLYER_AVAILABLE = _has_plyer()


def send_notification(
    title: str,
    message: str,
    urgency: Literal["low", "normal", "critical"] = "normal",
    icon: str = "video-x-generic",
    timeout: int = 10,
) -> bool:
    """
    Send a desktop notification.

    Tries notify-send first (Linux standard), then falls back to plyer
    if available.

    Args:
        title: Notification title.
        message: Notification body text.
        urgency: Urgency level - "low", "normal", or "critical".
        icon: Icon name (XDG icon spec) or path.
        timeout: Notification timeout in seconds.

    Returns:
        True if notification was sent successfully, False otherwise.
    """
    if NOTIFY_SEND_AVAILABLE:
        try:
            cmd = [
                "notify-send",
                "--urgency",
                urgency,
                "--app-name",
                "mp4mobile",
                "--icon",
                icon,
                "--expire-time",
                str(timeout * 1000),
                title,
                message,
            ]
            subprocess.run(cmd, check=True, capture_output=True, timeout=5)
            return True
        except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            logger.debug("notify-send failed: %s", e)

    if PLYER_AVAILABLE:
        try:
            from plyer import notification

            notification.notify(
                title=title,
                message=message,
                app_name="mp4mobile",
                app_icon=icon if icon.startswith("/") else None,
                timeout=timeout,
            )
            return True
        except Exception as e:
            # plyer backends raise a wide range of platform-specific errors
            logger.debug("plyer notification failed: %s", e)

    return False


def notify_success(converted_count: int, total_time: str) -> bool:
    """Send a notification after every conversion succeeded."""
    if converted_count == 1:
        message = f"Converted 1 file in {total_time}"
    else:
        message = f"Converted {converted_count} files in {total_time}"
    return send_notification(
        title="mp4mobile - Conversion Complete",
        message=message,
        urgency="normal",
        icon="dialog-information",
    )


def notify_failure(ok_count: int, failed_count: int, error_summary: Optional[str] = None) -> bool:
    """Send a notification when at least one conversion failed."""
    if failed_count == 1:
        message = "Failed to convert 1 file"
    else:
        message = f"Failed to convert {failed_count} files"
    if ok_count > 0:
        message += f" ({ok_count} converted)"
    if error_summary:
        message += f"\n{error_summary}"
    return send_notification(
        title="mp4mobile - Conversion Failed",
        message=message,
        urgency="critical",
        icon="dialog-error",
    )


def notify_interrupted() -> bool:
    """Send a notification when processing was interrupted by the user."""
    return send_notification(
        title="mp4mobile - Interrupted",
        message="Conversions were cancelled",
        urgency="normal",
        icon="dialog-warning",
    )


def check_notification_support() -> dict:
    """
    Check available notification methods.

    Returns:
        Dict with 'notify_send', 'plyer' and 'any' boolean keys.
    """
    return {
        "notify_send": NOTIFY_SEND_AVAILABLE,
        "plyer": PLYER_AVAILABLE,
        "any": NOTIFY_SEND_AVAILABLE or PLYER_AVAILABLE,
    }
