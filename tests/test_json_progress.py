"""Tests for progress events and sinks."""

import io
import json

import pytest


class TestConversionProgress:
    """Tests for the progress event type."""

    def test_to_dict(self):
        from mp4mobile.json_progress import ConversionProgress, ProgressStatus

        event = ConversionProgress("t1", 42.5, ProgressStatus.CONVERTING)
        assert event.to_dict() == {
            "task_id": "t1",
            "progress": 42.5,
            "status": "converting",
            "output_path": None,
            "error": None,
        }

    def test_terminal_statuses(self):
        from mp4mobile.json_progress import ProgressStatus

        assert ProgressStatus.COMPLETED.is_terminal
        assert ProgressStatus.ERROR.is_terminal
        assert not ProgressStatus.STARTING.is_terminal
        assert not ProgressStatus.CONVERTING.is_terminal

    def test_event_name(self):
        from mp4mobile.json_progress import progress_event_name

        assert progress_event_name("abc") == "conversion-progress-abc"


class TestSinks:
    """Tests for the sink adapters."""

    def test_channel_sink(self, channel):
        from mp4mobile.json_progress import ChannelSink, ConversionProgress, ProgressStatus

        sink = ChannelSink(channel, "9")
        sink.emit(ConversionProgress("9", 0.0, ProgressStatus.STARTING))

        assert channel.events == [
            (
                "conversion-progress-9",
                {"task_id": "9", "progress": 0.0, "status": "starting", "output_path": None, "error": None},
            )
        ]

    def test_fan_out_skips_none(self, channel):
        from mp4mobile.json_progress import ChannelSink, ConversionProgress, FanOutSink, ProgressStatus

        received = []

        class ListSink:
            def emit(self, progress):
                received.append(progress)

        sink = FanOutSink(None, ChannelSink(channel, "1"), ListSink())
        event = ConversionProgress("1", 10.0, ProgressStatus.CONVERTING)
        sink.emit(event)

        assert len(sink.sinks) == 2
        assert received == [event]
        assert len(channel.events) == 1

    @pytest.mark.asyncio
    async def test_queue_sink_drain_stops_at_terminal(self):
        from mp4mobile.json_progress import ConversionProgress, ProgressStatus, QueueProgressSink

        sink = QueueProgressSink()
        sink.emit(ConversionProgress("a", 0.0, ProgressStatus.STARTING))
        sink.emit(ConversionProgress("b", 0.0, ProgressStatus.ERROR, error="boom"))
        sink.emit(ConversionProgress("a", 100.0, ProgressStatus.COMPLETED, output_path="/x.mp4"))
        sink.emit(ConversionProgress("a", 0.0, ProgressStatus.STARTING))

        seen = [e async for e in sink.drain("a")]

        assert [(e.task_id, e.status.value) for e in seen] == [
            ("a", "starting"),
            ("b", "error"),
            ("a", "completed"),
        ]
        assert sink.queue.qsize() == 1


class TestJSONProgressOutput:
    """Tests for JSON line output."""

    def test_emit_writes_one_line(self):
        from mp4mobile.json_progress import JSONProgressOutput

        stream = io.StringIO()
        output = JSONProgressOutput(stream=stream)
        output.emit("conversion-progress-5", {"task_id": "5", "progress": 12.5})

        lines = stream.getvalue().splitlines()
        assert len(lines) == 1
        data = json.loads(lines[0])
        assert data["event"] == "conversion-progress-5"
        assert data["payload"] == {"task_id": "5", "progress": 12.5}
        assert isinstance(data["timestamp"], float)

    def test_sink_for(self):
        from mp4mobile.json_progress import ConversionProgress, JSONProgressOutput, ProgressStatus

        stream = io.StringIO()
        sink = JSONProgressOutput(stream=stream).sink_for("7")
        sink.emit(ConversionProgress("7", 100.0, ProgressStatus.COMPLETED, output_path="/out/a_converted.mp4"))

        data = json.loads(stream.getvalue())
        assert data["event"] == "conversion-progress-7"
        assert data["payload"]["status"] == "completed"
        assert data["payload"]["output_path"] == "/out/a_converted.mp4"
