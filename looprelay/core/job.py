"""One playlist item end-to-end: acquire, deliver, clean up."""
import logging
import time
from typing import Optional

from looprelay.core.acquisition import AcquisitionChain, cleanup_content
from looprelay.core.relay_state import ActiveJob
from looprelay.core.transport import TransferHandle, TransportChain
from looprelay.exceptions import (
    AcquisitionError,
    CleanupError,
    TransportCancelled,
    TransportError,
)
from looprelay.models.playlist import PlaylistItem, SinkDescriptor
from looprelay.models.relay import AcquiredContent, JobResult, RelayOutcome

logger = logging.getLogger(__name__)


class RelayJob:
    """Acquiring -> Delivering -> Delivered | AcquisitionFailed | TransportFailed | Cancelled.

    A job never retries itself; retries live inside the strategies. Staged
    content is removed on every terminal state.
    """

    def __init__(
        self,
        active: ActiveJob,
        item: PlaylistItem,
        sink: SinkDescriptor,
        acquisition: AcquisitionChain,
        transport: TransportChain,
    ) -> None:
        self.active = active
        self.item = item
        self.sink = sink
        self.acquisition = acquisition
        self.transport = transport
        self.state = "idle"

    def _attach(self, handle: TransferHandle) -> None:
        if not self.active.attach(handle):
            # stop/skip arrived between process start and registration
            handle.cancel()

    def run(self) -> JobResult:
        result = JobResult(
            index=self.active.index,
            outcome=RelayOutcome.CANCELLED,
            title=self.item.title,
            started_at=time.time(),
        )
        content = None
        try:
            content = self._acquire(result)
            if content is not None:
                self._deliver(content, result)
        finally:
            self._cleanup(content)
            result.finished_at = time.time()
            self.state = result.outcome.value
        logger.info(
            "Item %d finished: %s in %.1fs (acquired by %s, delivered by %s)",
            result.index, result.outcome.value, result.elapsed_sec,
            result.acquired_by or "-", result.delivered_by or "-",
        )
        return result

    def _acquire(self, result: JobResult) -> Optional[AcquiredContent]:
        self.state = "acquiring"
        cancel = self.active.cancel_event
        try:
            content = self.acquisition.acquire(self.item, cancel)
        except AcquisitionError as e:
            result.errors = [str(a) for a in e.attempts]
            if cancel.is_set():
                result.outcome = RelayOutcome.CANCELLED
            else:
                logger.error("Item %d: acquisition failed: %s", result.index, e)
                result.outcome = RelayOutcome.ACQUISITION_FAILED
            return None
        except Exception:
            logger.exception("Item %d: unexpected acquisition error", result.index)
            result.outcome = RelayOutcome.ACQUISITION_FAILED
            return None
        result.acquired_by = content.strategy
        result.errors = list(content.diagnostics)
        result.title = content.title or result.title
        return content

    def _deliver(self, content: AcquiredContent, result: JobResult) -> None:
        cancel = self.active.cancel_event
        if cancel.is_set():
            # cancelled while acquiring; content is still cleaned up by run()
            result.outcome = RelayOutcome.CANCELLED
            return
        self.state = "delivering"
        try:
            result.delivered_by, failures = self.transport.deliver(
                content,
                self.sink,
                on_start=self._attach,
                should_continue=lambda: not cancel.is_set(),
            )
            result.errors.extend(str(f) for f in failures)
            result.outcome = RelayOutcome.DELIVERED
        except TransportCancelled:
            logger.info("Item %d: delivery cancelled", result.index)
            result.outcome = RelayOutcome.CANCELLED
        except TransportError as e:
            result.errors.extend(str(a) for a in e.attempts)
            if cancel.is_set():
                result.outcome = RelayOutcome.CANCELLED
            else:
                logger.error("Item %d: transport failed: %s", result.index, e)
                result.outcome = RelayOutcome.TRANSPORT_FAILED
        except Exception:
            logger.exception("Item %d: unexpected transport error", result.index)
            result.outcome = RelayOutcome.TRANSPORT_FAILED

    def _cleanup(self, content: Optional[AcquiredContent]) -> None:
        try:
            cleanup_content(content)
        except CleanupError as e:
            logger.warning("Cleanup: %s", e)
