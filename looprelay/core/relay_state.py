"""Shared relay state: run flag, playlist position, active job and counters.

All reads and writes go through one lock. Callers only get intent-level
operations (try_start, request_stop, skip, begin_job, finish_job, snapshot);
cancelling a job's worker happens after the lock is released, but the intent
is recorded before the call returns.
"""
import logging
import threading
import time
from typing import Dict, Optional

from looprelay.core.transport import TransferHandle
from looprelay.exceptions import AlreadyRunning, AlreadyStopped, InvariantViolation
from looprelay.models.relay import JobResult, RelayOutcome, RelaySnapshot

logger = logging.getLogger(__name__)


class ActiveJob:
    """Handle on the in-flight job: cancel event for acquisition, transfer handle for delivery."""

    def __init__(self, index: int, run_id: int) -> None:
        self.index = index
        self.run_id = run_id
        self.cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._transfer: Optional[TransferHandle] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def attach(self, handle: TransferHandle) -> bool:
        """Register the delivery handle. False if the job was already cancelled."""
        with self._lock:
            if self.cancel_event.is_set():
                return False
            self._transfer = handle
            return True

    def cancel(self) -> None:
        with self._lock:
            self.cancel_event.set()
            handle = self._transfer
        if handle is not None:
            handle.cancel()


class RelayState:
    def __init__(self, playlist_size: int) -> None:
        if playlist_size < 1:
            raise ValueError("playlist must contain at least one item")
        self._lock = threading.Lock()
        self._size = playlist_size
        self._index = 0
        self._running = False
        self._active: Optional[ActiveJob] = None
        self._run_id = 0
        self._started_at: Optional[float] = None
        self._items_completed = 0
        self._items_cancelled = 0
        self._errors = 0
        self._last_result: Optional[JobResult] = None
        self._titles: Dict[int, str] = {}

    def _check(self) -> None:
        """Caller must hold self._lock."""
        if not 0 <= self._index < self._size:
            raise InvariantViolation(f"current index {self._index} outside playlist of {self._size}")
        if not self._running and self._active is not None:
            raise InvariantViolation("active job registered while relay is stopped")

    def try_start(self, reset_stats: bool = False) -> int:
        """Mark the relay running and return the new run id. Raises AlreadyRunning."""
        with self._lock:
            if self._running:
                raise AlreadyRunning()
            self._running = True
            self._run_id += 1
            self._started_at = time.time()
            if reset_stats:
                self._items_completed = 0
                self._items_cancelled = 0
                self._errors = 0
                self._last_result = None
            self._check()
            return self._run_id

    def request_stop(self) -> Optional[ActiveJob]:
        """Clear the running flag and detach the active job. Raises AlreadyStopped."""
        with self._lock:
            if not self._running:
                raise AlreadyStopped()
            self._running = False
            job, self._active = self._active, None
            if job is not None:
                # the interrupted item counts as finished; a restart continues after it
                self._index = (job.index + 1) % self._size
            self._check()
        if job is not None:
            job.cancel()
        return job

    def skip(self, target_index: Optional[int] = None) -> int:
        """Cancel the active job (if any) and move to the next or given index; returns it."""
        with self._lock:
            if target_index is not None and not 0 <= target_index < self._size:
                raise ValueError(f"index {target_index} outside playlist of {self._size}")
            job, self._active = self._active, None
            if target_index is None:
                self._index = (self._index + 1) % self._size
            else:
                self._index = target_index
            self._check()
            new_index = self._index
        if job is not None:
            job.cancel()
        return new_index

    def is_active_run(self, run_id: int) -> bool:
        with self._lock:
            return self._running and self._run_id == run_id

    def begin_job(self, run_id: int) -> Optional[ActiveJob]:
        """Register a job for the current index, or None if this run was stopped."""
        with self._lock:
            if not self._running or self._run_id != run_id:
                return None
            if self._active is not None:
                raise InvariantViolation("a relay job is already active")
            self._active = ActiveJob(self._index, run_id)
            self._check()
            return self._active

    def finish_job(self, job: ActiveJob, result: JobResult) -> int:
        """Record the job's outcome; advance past it unless stop or skip already released it."""
        with self._lock:
            if result.outcome == RelayOutcome.DELIVERED:
                self._items_completed += 1
            elif result.outcome == RelayOutcome.CANCELLED:
                self._items_cancelled += 1
            else:
                self._errors += 1
            self._last_result = result
            if result.title:
                self._titles[job.index] = result.title
            if self._active is job:
                self._active = None
                self._index = (job.index + 1) % self._size
            self._check()
            return self._index

    def end_run(self, run_id: int) -> None:
        """Called when a loop exits on its own; leaves the state stopped."""
        with self._lock:
            if self._run_id != run_id or not self._running:
                return
            self._running = False
            job, self._active = self._active, None
        logger.warning("Run %d ended without a stop request", run_id)
        if job is not None:
            job.cancel()

    def title_for(self, index: int) -> Optional[str]:
        with self._lock:
            return self._titles.get(index)

    def snapshot(self) -> RelaySnapshot:
        with self._lock:
            uptime = time.time() - self._started_at if self._running and self._started_at else 0.0
            return RelaySnapshot(
                running=self._running,
                current_index=self._index,
                playlist_size=self._size,
                active_job=self._active is not None,
                items_completed=self._items_completed,
                items_cancelled=self._items_cancelled,
                errors=self._errors,
                started_at=self._started_at,
                uptime_sec=uptime,
                current_title=self._titles.get(self._index),
                last_result=self._last_result,
            )
