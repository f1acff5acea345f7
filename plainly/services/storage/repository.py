"""
CRUD repository for persisted recordings.

``RecordingRepository`` receives an ``AsyncSession`` and provides all
data-access methods.  It calls ``flush()`` rather than ``commit()`` so
that transaction boundaries are controlled by the caller (typically
:func:`get_session`).
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from plainly.core.exceptions import RecordingNotFoundError
from plainly.core.models import (
    ClassifiedError,
    PipelineResult,
    RecordingStatus,
    SessionSnapshot,
)
from plainly.services.storage.models_db import Recording

logger = logging.getLogger(__name__)


class RecordingRepository:
    """Data-access layer for recordings.

    Args:
        session: An active SQLAlchemy ``AsyncSession``.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def save_metadata(self, snapshot: SessionSnapshot) -> Recording:
        """Persist a freshly stopped capture with status *processing*."""
        recording = Recording(
            session_id=snapshot.id,
            duration_seconds=snapshot.elapsed_seconds,
            audio_path=snapshot.audio_ref,
            status=RecordingStatus.processing.value,
        )
        if snapshot.started_at is not None:
            recording.created_at = snapshot.started_at
        self._session.add(recording)
        await self._session.flush()
        logger.debug("Saved metadata for recording %d", recording.id)
        return recording

    async def get_recording(self, recording_id: int) -> Recording:
        """Return a recording by ID or raise :class:`RecordingNotFoundError`."""
        result = await self._session.execute(select(Recording).where(Recording.id == recording_id))
        recording = result.scalar_one_or_none()
        if recording is None:
            raise RecordingNotFoundError(recording_id)
        return recording

    async def list_recordings(
        self,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Recording]:
        """Return recordings newest first, optionally filtered by *status*."""
        stmt = select(Recording).order_by(Recording.id.desc()).limit(limit).offset(offset)
        if status is not None:
            stmt = stmt.where(Recording.status == status)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def save_result(
        self,
        recording_id: int,
        result: PipelineResult,
        partial: bool = False,
    ) -> Recording:
        """Store pipeline outputs.

        A partial result (a transcript kept after a midway failure) leaves
        the status untouched so ``mark_failed`` decides it.
        """
        recording = await self.get_recording(recording_id)
        recording.transcript = result.transcript
        recording.summary = result.summary
        recording.structured_transcript = result.structured_transcript
        recording.no_speech = result.empty
        if not partial:
            recording.status = RecordingStatus.completed.value
            recording.processing_error = None
        await self._session.flush()
        return recording

    async def mark_failed(self, recording_id: int, error: ClassifiedError) -> Recording:
        """Record a classified pipeline failure; the audio is kept for retry."""
        recording = await self.get_recording(recording_id)
        recording.status = RecordingStatus.failed.value
        recording.processing_error = error.model_dump(mode="json", exclude={"partial_result"})
        await self._session.flush()
        return recording

    async def mark_aborted(self, recording_id: int) -> Recording:
        """Close out a recording whose processing the user cancelled.

        The audio path is left in place; deleting the recording removes it.
        """
        recording = await self.get_recording(recording_id)
        recording.status = RecordingStatus.aborted.value
        await self._session.flush()
        return recording

    async def update_title(self, recording_id: int, title: str) -> Recording:
        recording = await self.get_recording(recording_id)
        recording.title = title
        await self._session.flush()
        return recording

    async def delete_recording(self, recording_id: int) -> str | None:
        """Delete a recording row and return its audio path for file cleanup."""
        recording = await self.get_recording(recording_id)
        audio_path = recording.audio_path
        await self._session.delete(recording)
        await self._session.flush()
        return audio_path
