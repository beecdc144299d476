"""FastAPI app, CORS, relay lifecycle and route registration."""
import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from looprelay.config import (
    AUTOSTART,
    AUTOSTART_DELAY_SEC,
    CANCEL_GRACE_SEC,
    DOWNLOAD_DIR,
    HTTP_CONNECT_TIMEOUT_SEC,
    HTTP_TIMEOUT_SEC,
    LOG_LEVEL,
    ensure_download_dir,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(levelname)s: %(name)s: %(message)s",
)

from looprelay.api.state import AppState, get_state
from looprelay.core.acquisition import purge_staged_files
from looprelay.exceptions import ConcurrencyConflict

# Import routes after state to avoid circular imports
from looprelay.api.routes import relay

__all__ = ["app", "AppState", "get_state"]

logger = logging.getLogger(__name__)


def _autostart(state: AppState, stop_event: threading.Event, delay_sec: float) -> None:
    """Start the relay after delay_sec unless the app shuts down first."""
    if stop_event.wait(timeout=delay_sec):
        return
    try:
        state.relay.start()
    except ConcurrencyConflict:
        logger.info("Autostart: relay already running")


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = get_state()
    ensure_download_dir()
    purge_staged_files(DOWNLOAD_DIR)
    relay_loop = state.relay
    logger.info(
        "Sink: %s, playlist: %d item(s)", relay_loop.sink.url, len(relay_loop.playlist)
    )

    _autostart_stop = threading.Event()
    if AUTOSTART:
        threading.Thread(
            target=_autostart,
            args=(state, _autostart_stop, AUTOSTART_DELAY_SEC),
            daemon=True,
        ).start()
        logger.info("Relay autostart in %.1fs", AUTOSTART_DELAY_SEC)

    yield

    # SIGINT/SIGTERM reach here through uvicorn's shutdown: same path as POST /stop
    _autostart_stop.set()
    try:
        relay_loop.stop()
    except ConcurrencyConflict:
        logger.debug("Relay already stopped at shutdown")
    # a blocked transfer needs two grace periods; a blocked HTTP call connect + read
    join_timeout = max(CANCEL_GRACE_SEC * 2, HTTP_CONNECT_TIMEOUT_SEC + HTTP_TIMEOUT_SEC) + 1
    if not relay_loop.join(timeout=join_timeout):
        logger.warning("Relay loop still winding down at shutdown")
    purge_staged_files(DOWNLOAD_DIR)


app = FastAPI(
    title="Loop Relay API",
    description="Control surface for the playlist-to-sink relay",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(relay.router, tags=["relay"])
