"""
Capture session command endpoints.

Each endpoint issues one command to the session coordinator and answers
with the current session / pipeline snapshots. Progress after the command
is delivered over the ``/ws/session`` event stream.
"""

from fastapi import APIRouter

from plainly.core.models import CommandResponse
from plainly.services.coordinator import get_coordinator

router = APIRouter(prefix="/session", tags=["session"])


def _response() -> CommandResponse:
    coordinator = get_coordinator()
    session, pipeline = coordinator.snapshot()
    return CommandResponse(
        session=session,
        pipeline=pipeline,
        recording_id=coordinator.recording_id,
    )


@router.get("", response_model=CommandResponse)
async def get_session_state():
    """Return the current capture session and pipeline run."""
    return _response()


@router.post("/start", response_model=CommandResponse)
async def start_session():
    """Request microphone access and start a new capture."""
    await get_coordinator().start_recording()
    return _response()


@router.post("/pause", response_model=CommandResponse)
async def pause_session():
    await get_coordinator().pause()
    return _response()


@router.post("/resume", response_model=CommandResponse)
async def resume_session():
    await get_coordinator().resume()
    return _response()


@router.post("/stop", response_model=CommandResponse)
async def stop_session():
    """Stop the capture; metadata is saved and processing starts."""
    await get_coordinator().stop()
    return _response()


@router.post("/save", response_model=CommandResponse)
async def save_session():
    """Keep the audio captured before the microphone was lost."""
    await get_coordinator().save_and_finish()
    return _response()


@router.post("/discard", response_model=CommandResponse)
async def discard_session():
    """Throw the capture away; no recording is created."""
    await get_coordinator().discard()
    return _response()


@router.post("/retry", response_model=CommandResponse)
async def retry_pipeline():
    """Re-run processing from the first stage after a failure."""
    get_coordinator().retry()
    return _response()


@router.post("/abort", response_model=CommandResponse)
async def abort_pipeline():
    """Stop following the current processing run."""
    get_coordinator().abort()
    return _response()
