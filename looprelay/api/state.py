"""Shared application state (injected into routes)."""
import time
from typing import List, Optional

from looprelay.config import DOWNLOAD_DIR, SINK_URL
from looprelay.core.acquisition import default_acquisition_chain
from looprelay.core.playlist_store import load_playlist
from looprelay.core.relay_loop import RelayLoop
from looprelay.core.transport import default_transport_chain
from looprelay.models.playlist import PlaylistItem, SinkDescriptor


class AppState:
    def __init__(self, relay: Optional[RelayLoop] = None) -> None:
        self._relay = relay
        self.process_started_at = time.time()

    @property
    def relay(self) -> RelayLoop:
        if self._relay is None:
            self._relay = RelayLoop(
                playlist=load_playlist(),
                sink=SinkDescriptor.from_url(SINK_URL),
                acquisition=default_acquisition_chain(DOWNLOAD_DIR),
                transport=default_transport_chain(),
            )
        return self._relay

    @property
    def playlist(self) -> List[PlaylistItem]:
        return self.relay.playlist

    @property
    def sink(self) -> SinkDescriptor:
        return self.relay.sink


_state = AppState()


def get_state() -> AppState:
    return _state
