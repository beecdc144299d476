"""Acquired content, job outcomes and relay state snapshots."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class RelayOutcome(Enum):
    """Terminal result of one relay job."""
    DELIVERED = "delivered"
    ACQUISITION_FAILED = "acquisition_failed"
    TRANSPORT_FAILED = "transport_failed"
    CANCELLED = "cancelled"


@dataclass
class AcquiredContent:
    """Playable content for one item: local path or remote URL, plus best-effort metadata."""
    source: str
    strategy: str
    staged: bool = False  # True when the job created a local file that must be removed
    title: Optional[str] = None
    duration_sec: Optional[float] = None  # hint only, sizes the transport timeout
    diagnostics: List[str] = field(default_factory=list)  # failures of earlier strategies

    @property
    def is_remote(self) -> bool:
        return "://" in self.source


@dataclass
class JobResult:
    """What a finished job reports back to the loop (statistics and logging only)."""
    index: int
    outcome: RelayOutcome
    acquired_by: Optional[str] = None
    delivered_by: Optional[str] = None
    title: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def elapsed_sec(self) -> float:
        return max(0.0, self.finished_at - self.started_at)


@dataclass
class RelaySnapshot:
    """Read-only copy of the shared relay state."""
    running: bool
    current_index: int
    playlist_size: int
    active_job: bool
    items_completed: int
    items_cancelled: int
    errors: int
    started_at: Optional[float]
    uptime_sec: float
    current_title: Optional[str]
    last_result: Optional[JobResult]
