"""Tests for the RecordingRepository CRUD layer.

All tests use a temporary SQLite database provided by the ``repository``
fixture.
"""

from datetime import UTC, datetime

import pytest

from plainly.core.exceptions import RecordingNotFoundError
from plainly.core.models import (
    ClassifiedError,
    ErrorKind,
    PipelineResult,
    RecoveryOption,
    SessionSnapshot,
    SessionState,
)
from plainly.services.storage.repository import RecordingRepository

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _snapshot(audio_ref: str = "recordings/a.wav", elapsed: float = 42.5) -> SessionSnapshot:
    return SessionSnapshot(
        id="session-1",
        state=SessionState.stopped,
        elapsed_seconds=elapsed,
        max_duration_seconds=600,
        audio_ref=audio_ref,
        started_at=datetime(2026, 3, 1, 9, 30, tzinfo=UTC),
    )


def _midway_error() -> ClassifiedError:
    return ClassifiedError(
        kind=ErrorKind.midway,
        failed_stage_index=2,
        message="Your transcript is saved, but the summary could not be generated.",
        partial_result=PipelineResult(transcript="ok"),
        recovery_options=[RecoveryOption.retry, RecoveryOption.view_partial],
    )


# ===================================================================
# Metadata
# ===================================================================


class TestSaveMetadata:
    async def test_defaults(self, repository: RecordingRepository) -> None:
        rec = await repository.save_metadata(_snapshot())
        assert rec.id is not None
        assert rec.title == "Recording"
        assert rec.status == "processing"
        assert rec.audio_path == "recordings/a.wav"
        assert rec.duration_seconds == pytest.approx(42.5)
        assert rec.transcript is None
        assert rec.session_id == "session-1"

    async def test_get_round_trip(self, repository: RecordingRepository) -> None:
        created = await repository.save_metadata(_snapshot())
        fetched = await repository.get_recording(created.id)
        assert fetched.id == created.id

    async def test_not_found_raises(self, repository: RecordingRepository) -> None:
        with pytest.raises(RecordingNotFoundError):
            await repository.get_recording(9999)


class TestListRecordings:
    async def test_newest_first(self, repository: RecordingRepository) -> None:
        first = await repository.save_metadata(_snapshot("a.wav"))
        second = await repository.save_metadata(_snapshot("b.wav"))
        recordings = await repository.list_recordings()
        assert [r.id for r in recordings] == [second.id, first.id]

    async def test_filter_by_status(self, repository: RecordingRepository) -> None:
        done = await repository.save_metadata(_snapshot("a.wav"))
        await repository.save_metadata(_snapshot("b.wav"))
        await repository.save_result(done.id, PipelineResult(transcript="hello"))

        completed = await repository.list_recordings(status="completed")
        assert [r.id for r in completed] == [done.id]

    async def test_limit_and_offset(self, repository: RecordingRepository) -> None:
        for name in ("a.wav", "b.wav", "c.wav"):
            await repository.save_metadata(_snapshot(name))
        page = await repository.list_recordings(limit=1, offset=1)
        assert [r.audio_path for r in page] == ["b.wav"]


# ===================================================================
# Results
# ===================================================================


class TestSaveResult:
    async def test_full_result_completes(self, repository: RecordingRepository) -> None:
        rec = await repository.save_metadata(_snapshot())
        result = PipelineResult(
            transcript="hello",
            summary={"gist": "Greeting"},
            structured_transcript="raw outline",
        )
        updated = await repository.save_result(rec.id, result)
        assert updated.status == "completed"
        assert updated.summary == {"gist": "Greeting"}
        assert updated.structured_transcript == "raw outline"
        assert updated.no_speech is False

    async def test_empty_result(self, repository: RecordingRepository) -> None:
        rec = await repository.save_metadata(_snapshot())
        updated = await repository.save_result(rec.id, PipelineResult(empty=True))
        assert updated.status == "completed"
        assert updated.no_speech is True

    async def test_partial_then_failed(self, repository: RecordingRepository) -> None:
        rec = await repository.save_metadata(_snapshot())
        error = _midway_error()
        await repository.save_result(rec.id, error.partial_result, partial=True)
        updated = await repository.mark_failed(rec.id, error)

        assert updated.status == "failed"
        assert updated.transcript == "ok"
        assert updated.processing_error["kind"] == "midway"
        assert updated.processing_error["failed_stage_index"] == 2
        assert "partial_result" not in updated.processing_error

    async def test_success_clears_previous_error(self, repository: RecordingRepository) -> None:
        rec = await repository.save_metadata(_snapshot())
        await repository.mark_failed(rec.id, _midway_error())
        updated = await repository.save_result(rec.id, PipelineResult(transcript="retry"))
        assert updated.status == "completed"
        assert updated.processing_error is None


    async def test_mark_aborted_keeps_audio(self, repository: RecordingRepository) -> None:
        rec = await repository.save_metadata(_snapshot())
        updated = await repository.mark_aborted(rec.id)
        assert updated.status == "aborted"
        assert updated.audio_path == "recordings/a.wav"

        aborted = await repository.list_recordings(status="aborted")
        assert [r.id for r in aborted] == [rec.id]


class TestUpdateAndDelete:
    async def test_update_title(self, repository: RecordingRepository) -> None:
        rec = await repository.save_metadata(_snapshot())
        updated = await repository.update_title(rec.id, "Standup")
        assert updated.title == "Standup"

    async def test_delete_returns_audio_path(self, repository: RecordingRepository) -> None:
        rec = await repository.save_metadata(_snapshot("keep/me.wav"))
        assert await repository.delete_recording(rec.id) == "keep/me.wav"
        with pytest.raises(RecordingNotFoundError):
            await repository.get_recording(rec.id)

    async def test_delete_missing_raises(self, repository: RecordingRepository) -> None:
        with pytest.raises(RecordingNotFoundError):
            await repository.delete_recording(12345)
