"""Transport strategies: move acquired content to the sink.

Every strategy returns a TransferHandle as soon as delivery has started. The
handle is what stop/skip use to cancel the delivery; wait() on it enforces the
strategy's run-time bound (duration hint + safety margin) and never blocks
past that bound plus the cancel grace period.
"""
import logging
import os
import signal
import subprocess
import threading
import time
from collections import deque
from typing import Callable, List, Optional, Sequence, Tuple

from looprelay.config import (
    AUDIO_BITRATE,
    CANCEL_GRACE_SEC,
    DEFAULT_DURATION_SEC,
    FFMPEG_PATH,
    GST_LAUNCH_PATH,
    SAFETY_MARGIN_SEC,
    VIDEO_BITRATE,
)
from looprelay.core.chain import StrategyChain
from looprelay.exceptions import StrategyError, TransportCancelled, TransportError, TransportTimeout
from looprelay.models.playlist import SinkDescriptor
from looprelay.models.relay import AcquiredContent

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


def transport_timeout(
    duration_hint: Optional[float],
    safety_margin_sec: float = SAFETY_MARGIN_SEC,
    default_duration_sec: float = DEFAULT_DURATION_SEC,
) -> float:
    """Upper bound on one delivery. Unknown or zero durations use the default duration."""
    duration = duration_hint if duration_hint and duration_hint > 0 else default_duration_sec
    return duration + safety_margin_sec


class TransferHandle:
    """Cancellation handle for one in-flight delivery.

    The worker calls finish(); the orchestrator calls cancel() and wait().
    terminate/kill are the hooks into the underlying worker (e.g. a process).
    """

    def __init__(
        self,
        strategy: str,
        terminate: Optional[Callable[[], None]] = None,
        kill: Optional[Callable[[], None]] = None,
    ) -> None:
        self.strategy = strategy
        self._terminate = terminate
        self._kill = kill
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._wake = threading.Event()
        self._cancelled = False
        self._error: Optional[StrategyError] = None
        self.detached = False

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def finish(self, error: Optional[StrategyError] = None) -> None:
        with self._lock:
            if self._done.is_set():
                return
            self._error = error
            self._done.set()
        self._wake.set()

    def cancel(self) -> None:
        """Ask the delivery to stop. Safe to call more than once and after completion."""
        with self._lock:
            if self._cancelled or self._done.is_set():
                return
            self._cancelled = True
        logger.info("Cancelling %s delivery", self.strategy)
        self._wake.set()
        self._signal(self._terminate)

    def _signal(self, hook: Optional[Callable[[], None]]) -> None:
        if hook is None:
            return
        try:
            hook()
        except OSError as e:
            logger.warning("%s: signalling worker failed: %s", self.strategy, e)

    def _reap(self, grace_sec: float) -> None:
        """Give the worker grace_sec to exit, then kill it; detach if it still hangs."""
        if self._done.wait(timeout=grace_sec):
            return
        self._signal(self._kill)
        if self._done.wait(timeout=grace_sec):
            return
        self.detached = True
        logger.error("%s: worker did not exit after kill; detaching", self.strategy)

    def wait(self, timeout_sec: float, grace_sec: float = CANCEL_GRACE_SEC) -> None:
        """Block until delivery ends. Raises TransportCancelled, TransportTimeout or StrategyError."""
        deadline = time.monotonic() + timeout_sec
        while not self._done.is_set():
            if self.cancelled:
                self._reap(grace_sec)
                raise TransportCancelled(f"{self.strategy} delivery cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("%s: exceeded %.0fs bound, terminating", self.strategy, timeout_sec)
                self._signal(self._terminate)
                self._reap(grace_sec)
                raise TransportTimeout(self.strategy, f"exceeded {timeout_sec:.0f}s")
            self._wake.wait(timeout=remaining)
            self._wake.clear()
        if self.cancelled:
            raise TransportCancelled(f"{self.strategy} delivery cancelled")
        if self._error is not None:
            raise self._error


class TransportStrategy:
    """Base strategy. start() must return a handle without waiting for delivery."""

    name = "transport"

    def __init__(
        self,
        safety_margin_sec: float = SAFETY_MARGIN_SEC,
        default_duration_sec: float = DEFAULT_DURATION_SEC,
        cancel_grace_sec: float = CANCEL_GRACE_SEC,
    ) -> None:
        self.safety_margin_sec = safety_margin_sec
        self.default_duration_sec = default_duration_sec
        self.cancel_grace_sec = cancel_grace_sec

    def timeout_for(self, content: AcquiredContent) -> float:
        return transport_timeout(
            content.duration_sec, self.safety_margin_sec, self.default_duration_sec
        )

    def start(self, content: AcquiredContent, sink: SinkDescriptor) -> TransferHandle:
        raise NotImplementedError

    def deliver(
        self,
        content: AcquiredContent,
        sink: SinkDescriptor,
        on_start: Optional[Callable[[TransferHandle], None]] = None,
    ) -> None:
        handle = self.start(content, sink)
        if on_start is not None:
            on_start(handle)
        handle.wait(self.timeout_for(content), self.cancel_grace_sec)


class ProcessTransport(TransportStrategy):
    """Runs an external encoder process; stderr is forwarded to the log."""

    def build_command(self, content: AcquiredContent, sink: SinkDescriptor) -> List[str]:
        raise NotImplementedError

    def start(self, content: AcquiredContent, sink: SinkDescriptor) -> TransferHandle:
        cmd = self.build_command(content, sink)
        logger.info("%s: streaming %s -> %s", self.name, content.source, sink.url)
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=(os.name != "nt"),
            )
        except OSError as e:
            raise StrategyError(self.name, f"could not start {cmd[0]}: {e}") from e

        handle = TransferHandle(
            self.name,
            terminate=lambda: _signal_process(proc, signal.SIGTERM),
            kill=lambda: _signal_process(proc, getattr(signal, "SIGKILL", signal.SIGTERM)),
        )
        thread = threading.Thread(
            target=self._watch, args=(proc, handle), name=f"{self.name}-watch", daemon=True
        )
        thread.start()
        return handle

    def _watch(self, proc: subprocess.Popen, handle: TransferHandle) -> None:
        tail: deque = deque(maxlen=STDERR_TAIL_LINES)
        if proc.stderr is not None:
            for line in proc.stderr:
                line = line.rstrip()
                if line:
                    tail.append(line)
                    logger.debug("%s: %s", self.name, line)
        code = proc.wait()
        logger.info("%s exited with code %s", self.name, code)
        if code == 0:
            handle.finish()
            return
        detail = f" ({tail[-1]})" if tail else ""
        handle.finish(StrategyError(self.name, f"exited with code {code}{detail}"))


def _signal_process(proc: subprocess.Popen, sig: int) -> None:
    if proc.poll() is not None:
        return
    if os.name != "nt":
        try:
            os.killpg(proc.pid, sig)
            return
        except ProcessLookupError:
            return
    if sig == signal.SIGTERM:
        proc.terminate()
    else:
        proc.kill()


class FFmpegTransport(ProcessTransport):
    """ffmpeg re-encode at native rate to MPEG-TS (SRT/UDP) or FLV (RTMP)."""

    name = "ffmpeg"

    def __init__(
        self,
        ffmpeg_path: str = FFMPEG_PATH,
        video_bitrate: str = VIDEO_BITRATE,
        audio_bitrate: str = AUDIO_BITRATE,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.ffmpeg_path = ffmpeg_path
        self.video_bitrate = f"{_kbps(video_bitrate)}k"
        self.audio_bitrate = f"{_kbps(audio_bitrate)}k"

    def build_command(self, content: AcquiredContent, sink: SinkDescriptor) -> List[str]:
        out_format = "flv" if sink.scheme in ("rtmp", "rtmps") else "mpegts"
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "warning",
            "-nostdin",
            "-re",
            "-i", content.source,
            "-c:v", "libx264",
            "-preset", "ultrafast",
            "-tune", "zerolatency",
            "-c:a", "aac",
            "-b:v", self.video_bitrate,
            "-b:a", self.audio_bitrate,
            "-f", out_format,
            sink.url,
        ]


class GStreamerTransport(ProcessTransport):
    """gst-launch pipeline: decode, x264 encode, mux and push to SRT or RTMP."""

    name = "gstreamer"

    def __init__(self, gst_path: str = GST_LAUNCH_PATH, video_bitrate: str = VIDEO_BITRATE, **kwargs) -> None:
        super().__init__(**kwargs)
        self.gst_path = gst_path
        self.bitrate_kbps = _kbps(video_bitrate)

    def build_command(self, content: AcquiredContent, sink: SinkDescriptor) -> List[str]:
        if content.is_remote:
            source = ["uridecodebin", f"uri={content.source}"]
        else:
            source = ["filesrc", f"location={content.source}", "!", "decodebin"]
        if sink.scheme == "srt":
            tail = ["mpegtsmux", "!", "srtsink", f"uri={sink.url}"]
        elif sink.scheme in ("rtmp", "rtmps"):
            tail = ["flvmux", "streamable=true", "!", "rtmpsink", f"location={sink.url}"]
        else:
            raise StrategyError(self.name, f"unsupported sink scheme {sink.scheme!r}")
        return [
            self.gst_path,
            "-q",
            *source,
            "!", "videoconvert",
            "!", "x264enc", "tune=zerolatency", f"bitrate={self.bitrate_kbps}",
            "!", "h264parse",
            "!", *tail,
        ]


def _kbps(bitrate: str) -> int:
    """"2500k" -> 2500, "3M" -> 3000; a bare number is already kbit/s ("2500" -> 2500)."""
    value = bitrate.strip().lower()
    if value.endswith("m"):
        return int(float(value[:-1]) * 1000)
    if value.endswith("k"):
        return int(float(value[:-1]))
    return int(float(value))


class TransportChain:
    """deliver(content, sink) -> (delivering strategy, earlier failures), or TransportError.

    TransportCancelled propagates immediately; no further fallback is tried.
    """

    def __init__(self, strategies: Sequence[TransportStrategy]) -> None:
        self._chain: StrategyChain[TransportStrategy] = StrategyChain(
            strategies, exhausted_error=TransportError, label="transport"
        )

    def names(self) -> List[str]:
        return self._chain.names()

    def deliver(
        self,
        content: AcquiredContent,
        sink: SinkDescriptor,
        on_start: Optional[Callable[[TransferHandle], None]] = None,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> Tuple[str, List[StrategyError]]:
        strategy, _, failures = self._chain.run(
            lambda s: s.deliver(content, sink, on_start),
            should_continue=should_continue,
        )
        return strategy.name, failures


def default_transport_chain() -> TransportChain:
    return TransportChain([FFmpegTransport(), GStreamerTransport()])
