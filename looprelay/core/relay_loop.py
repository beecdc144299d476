"""Background relay loop: one RelayJob per playlist item, round-robin, until stopped."""
import logging
import os
import threading
from typing import Callable, List, Optional

from looprelay.config import ITEM_PAUSE_SEC, RESET_STATS_ON_START
from looprelay.core.acquisition import AcquisitionChain
from looprelay.core.job import RelayJob
from looprelay.core.relay_state import RelayState
from looprelay.core.transport import TransportChain
from looprelay.exceptions import InvariantViolation
from looprelay.models.playlist import PlaylistItem, SinkDescriptor
from looprelay.models.relay import RelaySnapshot

logger = logging.getLogger(__name__)


def _crash_process() -> None:
    os._exit(1)


class RelayLoop:
    """Owns the loop thread; start/stop/skip only go through RelayState's lock.

    Every suspension point (acquisition, delivery, inter-item pause) is cut
    short by stop/skip: acquisition and delivery through the job's cancel
    event and transfer handle, the pause through a wake event. At most one job
    runs at a time; a restarted loop first waits for the previous thread.
    """

    def __init__(
        self,
        playlist: List[PlaylistItem],
        sink: SinkDescriptor,
        acquisition: AcquisitionChain,
        transport: TransportChain,
        item_pause_sec: float = ITEM_PAUSE_SEC,
        reset_stats_on_start: bool = RESET_STATS_ON_START,
        on_fatal: Callable[[], None] = _crash_process,
    ) -> None:
        self.playlist = list(playlist)
        self.sink = sink
        self.acquisition = acquisition
        self.transport = transport
        self.item_pause_sec = item_pause_sec
        self.reset_stats_on_start = reset_stats_on_start
        self.state = RelayState(len(self.playlist))
        self._on_fatal = on_fatal
        self._wake = threading.Event()
        self._thread_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.current_job: Optional[RelayJob] = None

    def start(self) -> int:
        """Start the loop thread. Raises AlreadyRunning if a run is in progress."""
        with self._thread_lock:
            run_id = self.state.try_start(reset_stats=self.reset_stats_on_start)
            previous = self._thread
            self._thread = threading.Thread(
                target=self._run,
                args=(run_id, previous),
                name=f"relay-loop-{run_id}",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "Relay loop started (run %d, %d items, sink %s)", run_id, len(self.playlist), self.sink.url
        )
        return run_id

    def stop(self) -> None:
        """Stop after cancelling the active delivery. Raises AlreadyStopped."""
        job = self.state.request_stop()
        self._wake.set()
        logger.info("Relay loop stop requested%s", " (cancelling active job)" if job else "")

    def skip(self, index: Optional[int] = None) -> int:
        """Cancel the active job and move to the next (or given) index; works while stopped."""
        new_index = self.state.skip(index)
        self._wake.set()
        logger.info("Skip requested; next index %d", new_index)
        return new_index

    def snapshot(self) -> RelaySnapshot:
        return self.state.snapshot()

    @property
    def phase(self) -> str:
        """"acquiring" or "delivering" while a job runs, else "idle"."""
        job = self.current_job
        return job.state if job is not None else "idle"

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the loop thread to exit. True if it has."""
        with self._thread_lock:
            thread = self._thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    def _pause(self, run_id: int) -> bool:
        """Inter-item pause. False if the run was stopped before or during it."""
        self._wake.clear()
        if not self.state.is_active_run(run_id):
            return False
        self._wake.wait(timeout=self.item_pause_sec)
        return self.state.is_active_run(run_id)

    def _run(self, run_id: int, previous: Optional[threading.Thread]) -> None:
        if previous is not None and previous.is_alive():
            logger.info("Run %d: waiting for previous run to wind down", run_id)
            previous.join()
        try:
            while True:
                active = self.state.begin_job(run_id)
                if active is None:
                    break
                item = self.playlist[active.index]
                logger.info(
                    "--- Item %d/%d: %s ---", active.index + 1, len(self.playlist), item.locator
                )
                job = RelayJob(active, item, self.sink, self.acquisition, self.transport)
                self.current_job = job
                try:
                    result = job.run()
                finally:
                    self.current_job = None
                self.state.finish_job(active, result)
                if not self._pause(run_id):
                    break
        except InvariantViolation:
            logger.critical("Relay state corrupted; terminating", exc_info=True)
            self._on_fatal()
            return
        finally:
            self.state.end_run(run_id)
        logger.info("Relay loop run %d exited", run_id)
