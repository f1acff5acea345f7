"""Post-capture processing pipeline.

``PipelineOrchestrator`` drives the four fixed stages for one captured
audio ref. Two tasks run side by side for every attempt:

- the *call chain* invokes the remote services (transcribe, then extract)
  and raises each stage's completion signal as real work finishes;
- the *display sequence* activates stages in order and completes each one
  only when its :class:`StageGate` reports floor AND signal.

A failure in the chain raises every remaining signal at once so the display
sequence never hangs; the sequence then stops at the stage the failure is
attributed to. Timeout notices are advisory and never change stage state.

Usage::

    orchestrator = PipelineOrchestrator(audio_ref, service, publish=events.publish)
    orchestrator.start()
    run = await orchestrator.wait()
    if run.status == PipelineStatus.failed:
        orchestrator.retry()
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from plainly.core.exceptions import PipelineStateError, ProcessingServiceError
from plainly.core.models import (
    ClassifiedError,
    ErrorKind,
    Event,
    EventType,
    ExtractionOutcome,
    NoticeLevel,
    PipelineResult,
    PipelineRunSnapshot,
    PipelineStatus,
    RecoveryOption,
    StageSnapshot,
    StageStatus,
)
from plainly.core.utils import parse_structured_output
from plainly.services.pipeline.gate import StageGate
from plainly.services.pipeline.stages import (
    EXTRACT_STAGE,
    FINALIZE_STAGE,
    POSTPROCESS_STAGE,
    TRANSCRIBE_STAGE,
    PipelinePolicy,
    StageDescriptor,
)
from plainly.services.processing.base import BaseProcessingService

logger = logging.getLogger(__name__)

Publish = Callable[[Event], None]

_NETWORK_MESSAGE = (
    "Unable to connect to the server. Your recording is saved; "
    "check your connection and try again."
)
_MIDWAY_MESSAGE = "Your transcript is saved, but the summary could not be generated."
_GENERIC_MESSAGE = "Something went wrong. Please try again."


@dataclass
class StageTiming:
    """Monotonic timestamps recorded for one stage."""

    activated_at: float | None = None
    floor_elapsed_at: float | None = None
    signal_at: float | None = None
    completed_at: float | None = None


class PipelineRun:
    """Mutable state of the pipeline for one audio ref.

    ``reset()`` is called at the start of every attempt; ``attempt`` counts
    launches (1 for the first run, +1 per retry).
    """

    def __init__(self, audio_ref: str, stages: tuple[StageDescriptor, ...]) -> None:
        self.audio_ref = audio_ref
        self.stages = stages
        self.attempt = 0
        self.status = PipelineStatus.pending
        self.reset()

    def reset(self) -> None:
        self.active_stage_index = -1
        self.stage_status = [StageStatus.pending for _ in self.stages]
        self.timings = [StageTiming() for _ in self.stages]
        self.notice: NoticeLevel | None = None
        self.result: PipelineResult | None = None
        self.error: ClassifiedError | None = None

    def snapshot(self) -> PipelineRunSnapshot:
        return PipelineRunSnapshot(
            audio_ref=self.audio_ref,
            status=self.status,
            attempt=self.attempt,
            active_stage_index=self.active_stage_index,
            stages=[
                StageSnapshot(
                    index=stage.index,
                    label=stage.label,
                    min_display_seconds=stage.min_display_seconds,
                    status=self.stage_status[stage.index],
                    activated_at=timing.activated_at,
                    floor_elapsed_at=timing.floor_elapsed_at,
                    signal_at=timing.signal_at,
                    completed_at=timing.completed_at,
                )
                for stage, timing in zip(self.stages, self.timings, strict=True)
            ],
            notice=self.notice,
            result=self.result,
            error=self.error,
        )


def _discard_event(_event: Event) -> None:
    pass


class PipelineOrchestrator:
    """Runs the fixed 4-stage pipeline for one captured recording.

    Args:
        audio_ref: Reference to the captured audio; the sole input.
        service: Remote processing backend (only this class calls it).
        publish: Sink for presentation events.
        policy: Timing policy (defaults to values from settings).
        clock: Monotonic time source for stage timestamps.
    """

    def __init__(
        self,
        audio_ref: str,
        service: BaseProcessingService,
        publish: Publish | None = None,
        policy: PipelinePolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._service = service
        self._publish = publish or _discard_event
        self._policy = policy or PipelinePolicy.from_settings()
        self._clock = clock
        self._run = PipelineRun(audio_ref, self._policy.build_stages())
        self._aborted = False

        self._task: asyncio.Task | None = None
        self._chain: asyncio.Task | None = None
        self._watchdog: asyncio.Task | None = None

        # Per-attempt state shared between the call chain and the display sequence
        self._gates: list[StageGate] = []
        self._failure: ClassifiedError | None = None
        self._transcript: str | None = None
        self._result: PipelineResult | None = None
        self._work_stage = TRANSCRIBE_STAGE

    @property
    def run(self) -> PipelineRun:
        return self._run

    @property
    def aborted(self) -> bool:
        return self._aborted

    def snapshot(self) -> PipelineRunSnapshot:
        return self._run.snapshot()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Launch the pipeline. Allowed exactly once per orchestrator."""
        if self._task is not None or self._aborted:
            raise PipelineStateError("Pipeline has already been started")
        logger.info("Starting pipeline for %s", self._run.audio_ref)
        return self._launch()

    def retry(self) -> asyncio.Task:
        """Replay the whole chain from stage 0 after a failed run."""
        if self._aborted or self._run.status != PipelineStatus.failed:
            raise PipelineStateError(
                f"Only a failed pipeline can be retried (status={self._run.status.value})"
            )
        logger.info(
            "Retrying pipeline for %s (attempt %d)", self._run.audio_ref, self._run.attempt + 1
        )
        return self._launch()

    async def wait(self) -> PipelineRun:
        """Wait for the current attempt to reach a terminal state."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self._run

    def abort(self) -> None:
        """Stop applying any further side effects for this pipeline.

        In-flight service calls are cancelled and anything they return
        afterwards is discarded.
        """
        if self._aborted:
            return
        self._aborted = True
        for task in (self._watchdog, self._chain, self._task):
            if task is not None and not task.done():
                task.cancel()
        if self._run.status in (PipelineStatus.pending, PipelineStatus.running):
            self._run.status = PipelineStatus.aborted
            logger.info("Pipeline for %s aborted", self._run.audio_ref)
            self._publish(
                Event(
                    type=EventType.pipeline_aborted,
                    data={"audio_ref": self._run.audio_ref, "attempt": self._run.attempt},
                )
            )

    # ------------------------------------------------------------------
    # Display sequence
    # ------------------------------------------------------------------

    def _launch(self) -> asyncio.Task:
        run = self._run
        run.reset()
        run.attempt += 1
        run.status = PipelineStatus.running
        self._gates = [StageGate(s.min_display_seconds, self._clock) for s in run.stages]
        self._failure = None
        self._transcript = None
        self._result = None
        self._work_stage = TRANSCRIBE_STAGE
        self._task = asyncio.create_task(self._execute())
        return self._task

    async def _execute(self) -> None:
        run = self._run
        policy = self._policy
        last_index = len(run.stages) - 1
        self._chain = asyncio.create_task(self._call_chain())
        try:
            for index in range(len(run.stages)):
                if self._aborted:
                    return
                self._activate(index)
                gate = self._gates[index]
                self._watchdog = asyncio.create_task(self._watch_timeouts(index, gate))
                try:
                    await gate.wait()
                finally:
                    self._stop_watchdog()
                if self._aborted:
                    return

                if self._failure is not None and self._failure.failed_stage_index <= index:
                    self._fail(index, self._failure)
                    return
                self._complete(index)

                if index < last_index and policy.stage_gap_seconds > 0:
                    await asyncio.sleep(policy.stage_gap_seconds)

            if policy.finish_delay_seconds > 0:
                await asyncio.sleep(policy.finish_delay_seconds)
            if self._aborted:
                return
            self._succeed()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._aborted:
                return
            index = max(run.active_stage_index, 0)
            logger.exception("Pipeline display sequence failed at stage %d", index)
            self._fail(index, self._classify(exc, index))
        finally:
            if self._chain is not None and not self._chain.done():
                self._chain.cancel()

    def _activate(self, index: int) -> None:
        run = self._run
        run.active_stage_index = index
        run.stage_status[index] = StageStatus.active
        run.timings[index].activated_at = self._clock()
        stage = run.stages[index]
        logger.debug("Stage %d (%s) active", index, stage.label)
        self._publish(
            Event(
                type=EventType.stage_activated,
                data={"index": index, "label": stage.label, "attempt": run.attempt},
            )
        )

    def _record_gate(self, index: int) -> None:
        timing = self._run.timings[index]
        gate = self._gates[index]
        timing.floor_elapsed_at = gate.floor_elapsed_at
        timing.signal_at = gate.signal_at
        timing.completed_at = self._clock()

    def _complete(self, index: int) -> None:
        run = self._run
        self._record_gate(index)
        run.stage_status[index] = StageStatus.completed
        self._clear_notice(index)
        self._publish(
            Event(
                type=EventType.stage_completed,
                data={"index": index, "label": run.stages[index].label, "attempt": run.attempt},
            )
        )

    def _fail(self, index: int, error: ClassifiedError) -> None:
        run = self._run
        self._record_gate(index)
        run.stage_status[index] = StageStatus.failed
        self._clear_notice(index)
        run.error = error
        run.status = PipelineStatus.failed
        logger.warning(
            "Pipeline for %s failed: kind=%s stage=%d (%s)",
            run.audio_ref,
            error.kind.value,
            error.failed_stage_index,
            error.message,
        )
        self._publish(
            Event(
                type=EventType.pipeline_failed,
                data={"error": error.model_dump(mode="json"), "attempt": run.attempt},
            )
        )

    def _succeed(self) -> None:
        run = self._run
        run.result = self._result or PipelineResult()
        run.status = PipelineStatus.succeeded
        logger.info(
            "Pipeline for %s succeeded (attempt %d, empty=%s)",
            run.audio_ref,
            run.attempt,
            run.result.empty,
        )
        self._publish(
            Event(
                type=EventType.pipeline_succeeded,
                data={"result": run.result.model_dump(mode="json"), "attempt": run.attempt},
            )
        )

    # ------------------------------------------------------------------
    # Timeout escalation
    # ------------------------------------------------------------------

    async def _watch_timeouts(self, index: int, gate: StageGate) -> None:
        policy = self._policy
        if await gate.wait_signal(timeout=policy.slow_notice_seconds):
            return
        self._raise_notice(index, NoticeLevel.slow)
        remaining = policy.background_notice_seconds - policy.slow_notice_seconds
        if await gate.wait_signal(timeout=remaining):
            return
        self._raise_notice(index, NoticeLevel.background)

    def _raise_notice(self, index: int, level: NoticeLevel) -> None:
        if self._aborted:
            return
        self._run.notice = level
        logger.info("Stage %d is taking long: %s notice", index, level.value)
        self._publish(
            Event(
                type=EventType.timeout_notice,
                data={"index": index, "level": level.value, "attempt": self._run.attempt},
            )
        )

    def _clear_notice(self, index: int) -> None:
        if self._run.notice is None:
            return
        self._run.notice = None
        self._publish(
            Event(
                type=EventType.timeout_notice,
                data={
                    "index": index,
                    "level": NoticeLevel.cleared.value,
                    "attempt": self._run.attempt,
                },
            )
        )

    def _stop_watchdog(self) -> None:
        if self._watchdog is not None and not self._watchdog.done():
            self._watchdog.cancel()
        self._watchdog = None

    # ------------------------------------------------------------------
    # Call chain
    # ------------------------------------------------------------------

    async def _call_chain(self) -> None:
        gates = self._gates
        try:
            self._work_stage = TRANSCRIBE_STAGE
            transcription = await self._service.transcribe(self._run.audio_ref)
            if self._aborted:
                return
            self._transcript = transcription.text
            gates[TRANSCRIBE_STAGE].signal()
            gates[POSTPROCESS_STAGE].signal()

            if transcription.no_speech or not transcription.text.strip():
                logger.info("No speech in %s; finishing with an empty result", self._run.audio_ref)
                self._result = PipelineResult(transcript="", empty=True)
                gates[EXTRACT_STAGE].signal()
                gates[FINALIZE_STAGE].signal()
                return

            self._work_stage = EXTRACT_STAGE
            extraction = await self._service.extract(transcription.text)
            if self._aborted:
                return
            gates[EXTRACT_STAGE].signal()

            self._work_stage = FINALIZE_STAGE
            self._result = self._finalize(transcription.text, extraction)
            gates[FINALIZE_STAGE].signal()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._aborted:
                return
            self._failure = self._classify(exc, self._work_stage)
            for gate in gates:
                gate.signal()

    def _finalize(self, transcript: str, extraction: ExtractionOutcome) -> PipelineResult:
        return PipelineResult(
            transcript=transcript,
            summary=parse_structured_output(extraction.summary),
            structured_transcript=parse_structured_output(extraction.structured_transcript),
        )

    def _classify(self, exc: Exception, stage_index: int) -> ClassifiedError:
        """Map an exception to a failure class and recovery affordances."""
        partial = PipelineResult(transcript=self._transcript) if self._transcript else None

        if stage_index == TRANSCRIBE_STAGE and isinstance(exc, (ConnectionError, TimeoutError)):
            logger.warning("Transcribe could not reach the service: %s", exc)
            return ClassifiedError(
                kind=ErrorKind.network,
                failed_stage_index=TRANSCRIBE_STAGE,
                message=_NETWORK_MESSAGE,
                recovery_options=[RecoveryOption.retry, RecoveryOption.abandon],
            )

        if stage_index == EXTRACT_STAGE and partial is not None:
            logger.warning("Extract failed after a successful transcribe: %s", exc)
            return ClassifiedError(
                kind=ErrorKind.midway,
                failed_stage_index=EXTRACT_STAGE,
                message=_MIDWAY_MESSAGE,
                partial_result=partial,
                recovery_options=[
                    RecoveryOption.retry,
                    RecoveryOption.view_partial,
                    RecoveryOption.abandon,
                ],
            )

        if not isinstance(exc, ProcessingServiceError):
            logger.error("Unexpected pipeline failure at stage %d: %r", stage_index, exc)
        options = [RecoveryOption.retry, RecoveryOption.abandon]
        if partial is not None:
            options.insert(1, RecoveryOption.view_partial)
        return ClassifiedError(
            kind=ErrorKind.generic,
            failed_stage_index=stage_index,
            message=_generic_message(exc),
            partial_result=partial,
            recovery_options=options,
        )


def _generic_message(exc: Exception) -> str:
    """User-facing text for a generic failure."""
    detail = getattr(exc, "detail", None) or str(exc)
    lowered = detail.lower()
    if "rate limit" in lowered:
        return "Too many requests. Please wait a moment and try again."
    if "too short" in lowered:
        return "Recording is too short. Please record for at least a few seconds."
    if isinstance(exc, ProcessingServiceError) and detail:
        return detail
    return _GENERIC_MESSAGE
