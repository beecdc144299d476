"""Data models for playlist items, sink, acquired content and relay state."""
from looprelay.models.playlist import PlaylistItem, SinkDescriptor
from looprelay.models.relay import AcquiredContent, JobResult, RelayOutcome, RelaySnapshot

__all__ = [
    "PlaylistItem",
    "SinkDescriptor",
    "AcquiredContent",
    "JobResult",
    "RelayOutcome",
    "RelaySnapshot",
]
