"""Session coordinator: the composition root of capture and processing.

Owns at most one :class:`RecordingSession` and one
:class:`PipelineOrchestrator` at a time and wires them together:

1. When the session reaches ``stopped`` the recording's metadata is
   persisted right away, so the raw audio survives any later failure.
2. The pipeline is then started for the captured audio ref and watched.
3. Success persists the full result and emits ``recording_ready``; failure
   persists whatever partial result exists and emits ``recording_failed``
   with the recovery options. An aborted pipeline leaves its recording
   marked ``aborted``.

The presentation layer only issues commands and reads the event stream.

Usage::

    coordinator = SessionCoordinator(StreamCaptureDevice, create_processing_service())
    await coordinator.start_recording()
    await coordinator.stop()
"""

import asyncio
import logging
import time
from collections.abc import Callable

from plainly.core.config import Settings, get_settings
from plainly.core.exceptions import (
    NoActiveSessionError,
    PipelineStateError,
    RecordingAlreadyActiveError,
)
from plainly.core.models import (
    Event,
    EventType,
    PipelineRunSnapshot,
    PipelineStatus,
    SessionSnapshot,
)
from plainly.core.utils import summary_headline
from plainly.services.capture.base import BaseCaptureDevice
from plainly.services.events import EventStream
from plainly.services.pipeline.orchestrator import PipelineOrchestrator, PipelineRun
from plainly.services.pipeline.stages import PipelinePolicy
from plainly.services.processing.base import BaseProcessingService
from plainly.services.recording.session import RecordingSession, SessionPolicy
from plainly.services.storage.database import get_session
from plainly.services.storage.repository import RecordingRepository

logger = logging.getLogger(__name__)


class SessionCoordinator:
    """Drives one capture session and its processing pipeline.

    Args:
        device_factory: Builds a fresh capture device for every session.
        service: Remote processing backend handed to each pipeline.
        events: Event stream shared with the presentation layer.
        settings: Source of the session and pipeline timing policies.
        clock: Monotonic time source passed to the state machines.
    """

    def __init__(
        self,
        device_factory: Callable[[], BaseCaptureDevice],
        service: BaseProcessingService,
        events: EventStream | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or get_settings()
        self._device_factory = device_factory
        self._service = service
        self.events = events or EventStream()
        self._clock = clock
        self.session_policy = SessionPolicy.from_settings(settings)
        self.pipeline_policy = PipelinePolicy.from_settings(settings)

        self._session: RecordingSession | None = None
        self._pipeline: PipelineOrchestrator | None = None
        self._recording_id: int | None = None
        self._background: set[asyncio.Task] = set()
        self._live_pipelines: set[PipelineOrchestrator] = set()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def service(self) -> BaseProcessingService:
        return self._service

    @property
    def session(self) -> RecordingSession | None:
        return self._session

    @property
    def pipeline(self) -> PipelineOrchestrator | None:
        return self._pipeline

    @property
    def recording_id(self) -> int | None:
        return self._recording_id

    def snapshot(self) -> tuple[SessionSnapshot | None, PipelineRunSnapshot | None]:
        session = self._session.snapshot() if self._session is not None else None
        pipeline = self._pipeline.snapshot() if self._pipeline is not None else None
        return session, pipeline

    # ------------------------------------------------------------------
    # Capture commands
    # ------------------------------------------------------------------

    async def start_recording(self) -> RecordingSession:
        """Open a new capture session on a fresh device.

        Raises:
            RecordingAlreadyActiveError: The previous session still owns the device.
            PermissionDeniedError: Microphone access was refused.
            DeviceStartError: The device could not start after all retries.
        """
        if self._session is not None and self._session.owns_device:
            raise RecordingAlreadyActiveError()

        # A still-running pipeline finishes in the background; its watcher
        # persists the outcome under its own recording id.
        self._pipeline = None
        self._recording_id = None

        async def on_stopped(audio_ref: str) -> None:
            await self._on_session_stopped(session, audio_ref)

        session = RecordingSession(
            self._device_factory(),
            publish=self.events.publish,
            policy=self.session_policy,
            clock=self._clock,
            on_stopped=on_stopped,
        )
        self._session = session
        await session.start()
        return session

    async def pause(self) -> SessionSnapshot:
        session = self._require_session()
        await session.pause()
        return session.snapshot()

    async def resume(self) -> SessionSnapshot:
        session = self._require_session()
        await session.resume()
        return session.snapshot()

    async def stop(self) -> str | None:
        return await self._require_session().stop()

    async def save_and_finish(self) -> str | None:
        return await self._require_session().save_and_finish()

    async def discard(self) -> bool:
        return await self._require_session().discard()

    # ------------------------------------------------------------------
    # Pipeline commands
    # ------------------------------------------------------------------

    def retry(self) -> PipelineRunSnapshot:
        """Replay the failed pipeline against the same audio ref."""
        pipeline = self._require_pipeline()
        pipeline.retry()
        self._spawn(self._watch_pipeline(pipeline, self._recording_id))
        return pipeline.snapshot()

    def abort(self) -> PipelineRunSnapshot:
        """Stop reacting to the current pipeline; its results are discarded."""
        pipeline = self._require_pipeline()
        pipeline.abort()
        return pipeline.snapshot()

    async def close(self) -> None:
        """Shut down: discard an unfinished capture, abort the pipeline, drain tasks."""
        if self._session is not None and self._session.owns_device:
            await self._session.discard()
        for pipeline in list(self._live_pipelines):
            pipeline.abort()
        self._live_pipelines.clear()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        self.events.close()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    async def _on_session_stopped(self, session: RecordingSession, audio_ref: str) -> None:
        if session.discarded:
            return

        recording_id = await self._save_metadata(session.snapshot())
        pipeline = PipelineOrchestrator(
            audio_ref,
            self._service,
            publish=self.events.publish,
            policy=self.pipeline_policy,
            clock=self._clock,
        )
        # A new capture may have started during the save; the earlier
        # recording then processes in the background without being current.
        if self._session is session:
            self._recording_id = recording_id
            self._pipeline = pipeline
        self._live_pipelines.add(pipeline)
        pipeline.start()
        self._spawn(self._watch_pipeline(pipeline, recording_id))

    async def _save_metadata(self, snapshot: SessionSnapshot) -> int | None:
        try:
            async with get_session() as db:
                recording = await RecordingRepository(db).save_metadata(snapshot)
                recording_id = recording.id
        except Exception:
            logger.exception("Failed to save metadata for session %s", snapshot.id)
            return None
        logger.info("Saved recording %d (%s)", recording_id, snapshot.audio_ref)
        self.events.publish(
            Event(
                type=EventType.recording_saved,
                data={"recording_id": recording_id, "audio_ref": snapshot.audio_ref},
            )
        )
        return recording_id

    async def _watch_pipeline(
        self, pipeline: PipelineOrchestrator, recording_id: int | None
    ) -> None:
        run = await pipeline.wait()
        if run.status != PipelineStatus.failed or pipeline is not self._pipeline:
            self._live_pipelines.discard(pipeline)
        if pipeline.aborted:
            if run.status == PipelineStatus.aborted:
                await self._handle_abort(recording_id)
            return
        if run.status == PipelineStatus.succeeded:
            await self._handle_success(run, recording_id)
        elif run.status == PipelineStatus.failed:
            await self._handle_failure(run, recording_id)

    async def _handle_abort(self, recording_id: int | None) -> None:
        if recording_id is None:
            return
        try:
            async with get_session() as db:
                await RecordingRepository(db).mark_aborted(recording_id)
        except Exception:
            logger.exception("Failed to mark recording %s aborted", recording_id)
            return
        logger.info("Recording %d left unprocessed after abort", recording_id)

    async def _handle_success(self, run: PipelineRun, recording_id: int | None) -> None:
        result = run.result
        if recording_id is not None and result is not None:
            try:
                async with get_session() as db:
                    await RecordingRepository(db).save_result(recording_id, result)
            except Exception:
                logger.exception("Failed to save result for recording %s", recording_id)

        self.events.publish(
            Event(
                type=EventType.recording_ready,
                data={"recording_id": recording_id, "empty": result.empty if result else False},
            )
        )
        if recording_id is not None and result is not None and not result.empty:
            self._spawn(self._generate_title(recording_id, result.transcript, result.summary))

    async def _handle_failure(self, run: PipelineRun, recording_id: int | None) -> None:
        error = run.error
        if error is None:
            return
        if recording_id is not None:
            try:
                async with get_session() as db:
                    repo = RecordingRepository(db)
                    if error.partial_result is not None:
                        await repo.save_result(recording_id, error.partial_result, partial=True)
                    await repo.mark_failed(recording_id, error)
            except Exception:
                logger.exception("Failed to record failure for recording %s", recording_id)

        self.events.publish(
            Event(
                type=EventType.recording_failed,
                data={
                    "recording_id": recording_id,
                    "error": error.model_dump(mode="json"),
                    "recovery_options": [option.value for option in error.recovery_options],
                },
            )
        )

    async def _generate_title(
        self,
        recording_id: int,
        transcript: str,
        summary: dict | str | None,
    ) -> None:
        try:
            title = await self._service.generate_title(transcript, summary_headline(summary))
            async with get_session() as db:
                await RecordingRepository(db).update_title(recording_id, title)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Title generation failed for recording %d", recording_id, exc_info=True)
            return
        self.events.publish(
            Event(
                type=EventType.title_generated,
                data={"recording_id": recording_id, "title": title},
            )
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _require_session(self) -> RecordingSession:
        if self._session is None:
            raise NoActiveSessionError()
        return self._session

    def _require_pipeline(self) -> PipelineOrchestrator:
        if self._pipeline is None:
            raise PipelineStateError("No processing pipeline has been started")
        return self._pipeline


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

_coordinator: SessionCoordinator | None = None


def get_coordinator() -> SessionCoordinator:
    """Return the application-wide coordinator, creating it on first call.

    Each capture gets a fresh :class:`StreamCaptureDevice`; the processing
    backend is the HTTP service configured in settings.
    """
    global _coordinator
    if _coordinator is None:
        from plainly.services.capture.stream import StreamCaptureDevice
        from plainly.services.processing import create_processing_service

        _coordinator = SessionCoordinator(StreamCaptureDevice, create_processing_service())
    return _coordinator


def set_coordinator(coordinator: SessionCoordinator | None) -> None:
    """Install a coordinator (tests build one around fakes)."""
    global _coordinator
    _coordinator = coordinator


async def reset_coordinator() -> None:
    """Close the active coordinator, if any (called during app shutdown)."""
    global _coordinator
    if _coordinator is None:
        return
    coordinator = _coordinator
    _coordinator = None
    await coordinator.close()
    await coordinator.service.aclose()
