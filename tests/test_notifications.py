"""
Tests for the notifications module.
"""

import shutil

import pytest


@pytest.fixture
def captured(monkeypatch):
    """Capture send_notification calls instead of showing them."""
    import mp4mobile.notifications

    calls = []

    def mock_send(title, message, **kwargs):
        calls.append((title, message, kwargs))
        return True

    monkeypatch.setattr(mp4mobile.notifications, "send_notification", mock_send)
    return calls


class TestNotificationSupport:
    """Tests for notification capability detection."""

    def test_check_notification_support(self):
        from mp4mobile.notifications import check_notification_support

        support = check_notification_support()

        assert set(support) == {"notify_send", "plyer", "any"}
        assert all(isinstance(v, bool) for v in support.values())
        assert support["any"] == (support["notify_send"] or support["plyer"])

    def test_has_notify_send(self):
        from mp4mobile.notifications import NOTIFY_SEND_AVAILABLE

        assert NOTIFY_SEND_AVAILABLE == (shutil.which("notify-send") is not None)


class TestSendNotification:
    """Tests for send_notification function."""

    def test_send_notification_no_backend(self, monkeypatch):
        """Test notification when no backend available."""
        import mp4mobile.notifications
        from mp4mobile.notifications import send_notification

        monkeypatch.setattr(mp4mobile.notifications, "NOTIFY_SEND_AVAILABLE", False)
        monkeypatch.setattr(mp4mobile.notifications, "PLYER_AVAILABLE", False)

        assert send_notification("Test", "Message") is False

    def test_notify_send_failure_falls_through(self, monkeypatch):
        """A failing notify-send without plyer reports False."""
        import subprocess

        import mp4mobile.notifications
        from mp4mobile.notifications import send_notification

        def failing_run(*args, **kwargs):
            raise subprocess.CalledProcessError(1, args[0])

        monkeypatch.setattr(mp4mobile.notifications, "NOTIFY_SEND_AVAILABLE", True)
        monkeypatch.setattr(mp4mobile.notifications, "PLYER_AVAILABLE", False)
        monkeypatch.setattr(mp4mobile.notifications.subprocess, "run", failing_run)

        assert send_notification("Test", "Message") is False


class TestNotificationHelpers:
    """Tests for notification helper functions."""

    def test_notify_success_message(self, captured):
        from mp4mobile.notifications import notify_success

        notify_success(3, "01:30:00")

        assert len(captured) == 1
        title, message, kwargs = captured[0]
        assert "Complete" in title
        assert message == "Converted 3 files in 01:30:00"
        assert kwargs.get("urgency") == "normal"

    def test_notify_success_single(self, captured):
        from mp4mobile.notifications import notify_success

        notify_success(1, "00:05:00")
        assert captured[0][1] == "Converted 1 file in 00:05:00"

    def test_notify_failure_message(self, captured):
        from mp4mobile.notifications import notify_failure

        notify_failure(2, 1, "ffmpeg exited with status 1")

        title, message, kwargs = captured[0]
        assert "Failed" in title
        assert message.startswith("Failed to convert 1 file (2 converted)")
        assert "ffmpeg exited with status 1" in message
        assert kwargs.get("urgency") == "critical"

    def test_notify_interrupted_message(self, captured):
        from mp4mobile.notifications import notify_interrupted

        notify_interrupted()

        title, _message, _kwargs = captured[0]
        assert "Interrupted" in title
