import sys
import threading
import time
import unittest

from fakes import SINK, ScriptedTransport
from looprelay.core.transport import (
    FFmpegTransport,
    GStreamerTransport,
    ProcessTransport,
    TransferHandle,
    transport_timeout,
)
from looprelay.exceptions import StrategyError, TransportCancelled, TransportTimeout
from looprelay.models.playlist import SinkDescriptor
from looprelay.models.relay import AcquiredContent


class PythonProcessTransport(ProcessTransport):
    """Runs a python one-liner instead of an encoder."""

    name = "python"

    def __init__(self, code: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.code = code

    def build_command(self, content, sink):
        return [sys.executable, "-c", self.code]


def clip(duration_sec=1.0, source="/media/a.mp4") -> AcquiredContent:
    return AcquiredContent(source=source, strategy="static", duration_sec=duration_sec)


class TimeoutTests(unittest.TestCase):
    def test_duration_hint_plus_margin(self) -> None:
        self.assertEqual(transport_timeout(120.0, 60.0, 3600.0), 180.0)

    def test_unknown_or_zero_duration_uses_default(self) -> None:
        self.assertEqual(transport_timeout(None, 60.0, 3600.0), 3660.0)
        self.assertEqual(transport_timeout(0, 60.0, 3600.0), 3660.0)


class TransferHandleTests(unittest.TestCase):
    def test_cancel_mid_delivery_ends_within_grace(self) -> None:
        transport = ScriptedTransport(instant=0, cancel_grace_sec=0.2)
        handle = transport.start(clip(), SINK)
        threading.Timer(0.1, handle.cancel).start()

        t0 = time.monotonic()
        with self.assertRaises(TransportCancelled):
            handle.wait(timeout_sec=5.0, grace_sec=0.2)
        self.assertLess(time.monotonic() - t0, 2.0)

    def test_uncooperative_worker_is_detached(self) -> None:
        transport = ScriptedTransport(instant=0, honor_cancel=False)
        handle = transport.start(clip(), SINK)
        handle.cancel()

        t0 = time.monotonic()
        with self.assertRaises(TransportCancelled):
            handle.wait(timeout_sec=5.0, grace_sec=0.1)
        self.assertTrue(handle.detached)
        self.assertLess(time.monotonic() - t0, 1.0)

    def test_run_time_bound_is_a_timeout_error(self) -> None:
        handle = TransferHandle("slow", terminate=lambda: handle.finish())

        with self.assertRaises(TransportTimeout):
            handle.wait(timeout_sec=0.1, grace_sec=0.1)

    def test_cancel_after_completion_keeps_success(self) -> None:
        handle = TransferHandle("fast")
        handle.finish()
        handle.cancel()

        handle.wait(timeout_sec=1.0)
        self.assertFalse(handle.cancelled)


class ProcessTransportTests(unittest.TestCase):
    def test_zero_exit_is_delivered(self) -> None:
        PythonProcessTransport("pass").deliver(clip(), SINK)

    def test_non_zero_exit_raises_strategy_error(self) -> None:
        transport = PythonProcessTransport("import sys; sys.stderr.write('boom\\n'); sys.exit(3)")

        with self.assertRaises(StrategyError) as ctx:
            transport.deliver(clip(), SINK)
        self.assertIn("code 3", ctx.exception.message)
        self.assertIn("boom", ctx.exception.message)

    def test_cancel_terminates_process(self) -> None:
        transport = PythonProcessTransport("import time; time.sleep(30)", cancel_grace_sec=2.0)
        handles = []

        def register(handle: TransferHandle) -> None:
            handles.append(handle)
            threading.Timer(0.2, handle.cancel).start()

        t0 = time.monotonic()
        with self.assertRaises(TransportCancelled):
            transport.deliver(clip(duration_sec=30.0), SINK, on_start=register)
        self.assertLess(time.monotonic() - t0, 5.0)
        self.assertTrue(handles[0].done)

    def test_missing_binary_is_strategy_error(self) -> None:
        transport = FFmpegTransport(ffmpeg_path="/nonexistent/ffmpeg-binary")

        with self.assertRaises(StrategyError):
            transport.start(clip(), SINK)


class CommandTests(unittest.TestCase):
    def test_ffmpeg_pushes_mpegts_to_srt(self) -> None:
        cmd = FFmpegTransport(ffmpeg_path="ffmpeg").build_command(clip(), SINK)

        self.assertEqual(cmd[0], "ffmpeg")
        self.assertIn("-re", cmd)
        self.assertEqual(cmd[cmd.index("-i") + 1], "/media/a.mp4")
        self.assertEqual(cmd[cmd.index("-f") + 1], "mpegts")
        self.assertEqual(cmd[-1], SINK.url)

    def test_ffmpeg_uses_flv_for_rtmp(self) -> None:
        sink = SinkDescriptor.from_url("rtmp://live.example/app/key")
        cmd = FFmpegTransport().build_command(clip(), sink)

        self.assertEqual(cmd[cmd.index("-f") + 1], "flv")

    def test_gstreamer_local_and_remote_sources(self) -> None:
        gst = GStreamerTransport(gst_path="gst-launch-1.0", video_bitrate="2500k")

        local = gst.build_command(clip(), SINK)
        remote = gst.build_command(clip(source="https://cdn.example/v.mp4"), SINK)

        self.assertIn("location=/media/a.mp4", local)
        self.assertIn("uri=https://cdn.example/v.mp4", remote)
        self.assertIn("bitrate=2500", local)
        self.assertEqual(local[-1], f"uri={SINK.url}")

    def test_bare_bitrates_are_kbit_per_second(self) -> None:
        ffmpeg = FFmpegTransport(video_bitrate="2500", audio_bitrate="128").build_command(clip(), SINK)
        gst = GStreamerTransport(video_bitrate="2500").build_command(clip(), SINK)
        gst_mbit = GStreamerTransport(video_bitrate="3M").build_command(clip(), SINK)

        self.assertEqual(ffmpeg[ffmpeg.index("-b:v") + 1], "2500k")
        self.assertEqual(ffmpeg[ffmpeg.index("-b:a") + 1], "128k")
        self.assertIn("bitrate=2500", gst)
        self.assertIn("bitrate=3000", gst_mbit)

    def test_gstreamer_rejects_unsupported_sink(self) -> None:
        sink = SinkDescriptor.from_url("udp://239.0.0.1:1234")

        with self.assertRaises(StrategyError):
            GStreamerTransport().build_command(clip(), sink)


class SinkDescriptorTests(unittest.TestCase):
    def test_parses_srt_stream_id(self) -> None:
        self.assertEqual(SINK.scheme, "srt")
        self.assertEqual(SINK.host, "sink.example")
        self.assertEqual(SINK.port, 2935)
        self.assertEqual(SINK.stream_id, "test-stream")

    def test_rejects_url_without_host(self) -> None:
        with self.assertRaises(ValueError):
            SinkDescriptor.from_url("not a url")


if __name__ == "__main__":
    unittest.main()
