"""
Recording REST endpoints.

Read, rename and delete persisted recordings. All endpoints delegate to
``RecordingRepository``; no business logic here.
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Query

from plainly.core.models import (
    DeleteRecordingResponse,
    RecordingResponse,
    RecordingStatus,
    RenameRecordingRequest,
)
from plainly.services.storage.database import get_session
from plainly.services.storage.repository import RecordingRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recordings", tags=["recordings"])


def _to_response(recording) -> RecordingResponse:
    """Convert an ORM Recording object to its API response model."""
    return RecordingResponse(
        id=recording.id,
        title=recording.title,
        status=RecordingStatus(recording.status),
        created_at=recording.created_at,
        duration_seconds=recording.duration_seconds,
        audio_path=recording.audio_path,
        transcript=recording.transcript,
        summary=recording.summary,
        structured_transcript=recording.structured_transcript,
        no_speech=recording.no_speech,
        processing_error=recording.processing_error,
    )


@router.get("", response_model=list[RecordingResponse])
async def list_recordings(
    status: RecordingStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """List recordings, newest first."""
    async with get_session() as session:
        repo = RecordingRepository(session)
        recordings = await repo.list_recordings(
            status=status.value if status else None,
            limit=limit,
            offset=offset,
        )
        return [_to_response(r) for r in recordings]


@router.get("/{recording_id}", response_model=RecordingResponse)
async def get_recording(recording_id: int):
    async with get_session() as session:
        repo = RecordingRepository(session)
        recording = await repo.get_recording(recording_id)
        return _to_response(recording)


@router.patch("/{recording_id}", response_model=RecordingResponse)
async def rename_recording(recording_id: int, body: RenameRecordingRequest):
    """Replace the recording's title."""
    async with get_session() as session:
        repo = RecordingRepository(session)
        recording = await repo.update_title(recording_id, body.title)
        return _to_response(recording)


@router.delete("/{recording_id}", response_model=DeleteRecordingResponse)
async def delete_recording(recording_id: int):
    """Delete a recording and its audio file."""
    async with get_session() as session:
        repo = RecordingRepository(session)
        audio_path = await repo.delete_recording(recording_id)

    if audio_path:
        try:
            Path(audio_path).unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not delete audio file %s", audio_path)
    return DeleteRecordingResponse(id=recording_id)
