"""Relay control: start/stop/skip commands, playlist and status views."""
import time
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from looprelay.api.state import AppState, get_state
from looprelay.exceptions import ConcurrencyConflict
from looprelay.models.relay import JobResult

router = APIRouter()


class SkipBody(BaseModel):
    index: Optional[int] = None


def _result_to_dict(r: Optional[JobResult]) -> Optional[dict]:
    if r is None:
        return None
    return {
        "index": r.index,
        "outcome": r.outcome.value,
        "title": r.title,
        "acquired_by": r.acquired_by,
        "delivered_by": r.delivered_by,
        "elapsed_sec": round(r.elapsed_sec, 1),
        "errors": list(r.errors),
    }


@router.get("/")
def get_root(state: AppState = Depends(get_state)):
    """Service banner: run state, active index, playlist size and sink."""
    snap = state.relay.snapshot()
    return {
        "status": "Playlist relay server",
        "running": snap.running,
        "current_index": snap.current_index,
        "videos": snap.playlist_size,
        "endpoint": state.sink.url,
        "sink": state.sink.to_dict(),
    }


@router.post("/start")
def start_relay(state: AppState = Depends(get_state)):
    """Start the relay loop; returns immediately."""
    try:
        run_id = state.relay.start()
    except ConcurrencyConflict as e:
        return {"ok": True, "changed": False, "message": str(e)}
    return {"ok": True, "changed": True, "message": "starting relay", "run": run_id}


@router.post("/stop")
def stop_relay(state: AppState = Depends(get_state)):
    """Request loop termination and cancel the active delivery."""
    try:
        state.relay.stop()
    except ConcurrencyConflict as e:
        return {"ok": True, "changed": False, "message": str(e)}
    return {"ok": True, "changed": True, "message": "stopping relay"}


@router.post("/skip")
def skip_item(
    body: SkipBody | None = Body(None),
    state: AppState = Depends(get_state),
):
    """Cancel the active delivery and advance (optionally to a given index)."""
    index = body.index if body else None
    try:
        new_index = state.relay.skip(index)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    snap = state.relay.snapshot()
    return {"ok": True, "current_index": new_index, "running": snap.running}


@router.get("/playlist")
def get_playlist(state: AppState = Depends(get_state)):
    """Playlist in order, with the current index marked active."""
    snap = state.relay.snapshot()
    return [
        {
            "index": i,
            "locator": item.locator,
            "video_id": item.video_id,
            "title": state.relay.state.title_for(i) or item.title,
            "active": i == snap.current_index,
        }
        for i, item in enumerate(state.playlist)
    ]


@router.get("/status")
@router.get("/health")
def get_status(state: AppState = Depends(get_state)):
    """Counters, uptime and run flag (item outcomes are only visible here)."""
    snap = state.relay.snapshot()
    return {
        "running": snap.running,
        "current_index": snap.current_index,
        "current_title": snap.current_title,
        "active_job": snap.active_job,
        "phase": state.relay.phase,
        "items_completed": snap.items_completed,
        "items_cancelled": snap.items_cancelled,
        "errors": snap.errors,
        "started_at": snap.started_at,
        "uptime_sec": round(snap.uptime_sec, 1),
        "process_uptime_sec": round(time.time() - state.process_started_at, 1),
        "last_result": _result_to_dict(snap.last_result),
        "acquisition_strategies": state.relay.acquisition.names(),
        "transport_strategies": state.relay.transport.names(),
        "endpoint": state.sink.url,
    }
