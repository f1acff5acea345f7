"""Capture session state machine.

``RecordingSession`` owns one capture attempt on an exclusively held
capture device: start (with bounded retries), pause / resume, stop,
hardware-interruption recovery and the duration cap.

Elapsed time is derived from a monotonic clock: closed Recording segments
are accumulated and the open one is added on read, so the value freezes
while paused or interrupted and can never decrease. A background ticker
publishes ``duration_tick`` events, the one-shot ``duration_warning`` and
performs the automatic stop at the cap.

Usage::

    session = RecordingSession(device, publish=events.publish, on_stopped=handle)
    await session.start()
    await session.pause()
    await session.resume()
    audio_ref = await session.stop()
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from plainly.core.config import Settings, get_settings
from plainly.core.exceptions import DeviceError, DeviceStartError, PermissionDeniedError
from plainly.core.models import DeviceNotice, Event, EventType, SessionSnapshot, SessionState
from plainly.services.capture.base import BaseCaptureDevice

logger = logging.getLogger(__name__)

Publish = Callable[[Event], None]
StoppedCallback = Callable[[str], Awaitable[None]]

# States in which the session holds the capture device.
_CAPTURING_STATES = frozenset(
    {
        SessionState.recording,
        SessionState.paused,
        SessionState.mic_interrupted,
        SessionState.mic_lost,
    }
)


@dataclass(frozen=True)
class SessionPolicy:
    """Timing policy for a capture session."""

    max_duration_seconds: float = 600.0
    duration_warning_fraction: float = 0.9
    tick_interval_seconds: float = 0.5
    mic_grace_period_seconds: float = 5.0
    device_start_max_retries: int = 3
    device_start_backoff_seconds: float = 0.2
    device_start_backoff_max_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SessionPolicy":
        settings = settings or get_settings()
        return cls(
            max_duration_seconds=settings.max_duration_seconds,
            duration_warning_fraction=settings.duration_warning_fraction,
            tick_interval_seconds=settings.tick_interval_seconds,
            mic_grace_period_seconds=settings.mic_grace_period_seconds,
            device_start_max_retries=settings.device_start_max_retries,
            device_start_backoff_seconds=settings.device_start_backoff_seconds,
            device_start_backoff_max_seconds=settings.device_start_backoff_max_seconds,
        )

    @property
    def warning_threshold_seconds(self) -> float:
        return self.max_duration_seconds * self.duration_warning_fraction


def _discard_event(_event: Event) -> None:
    pass


class RecordingSession:
    """One capture attempt, from start to stop or discard.

    Args:
        device: Capture device, owned exclusively by this session.
        publish: Sink for presentation events.
        policy: Timing policy (defaults to values from settings).
        clock: Monotonic time source in seconds.
        on_stopped: Awaited exactly once with the audio ref after the
            transition to ``stopped``, whoever triggered it.
    """

    def __init__(
        self,
        device: BaseCaptureDevice,
        publish: Publish | None = None,
        policy: SessionPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_stopped: StoppedCallback | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex
        self._device = device
        self._publish = publish or _discard_event
        self._policy = policy or SessionPolicy.from_settings()
        self._clock = clock
        self._on_stopped = on_stopped

        self._state = SessionState.idle
        self._accumulated = 0.0
        self._segment_started: float | None = None
        self._audio_ref: str | None = None
        self._started_at: datetime | None = None
        self._starting = False
        self._stopping = False
        self._warning_sent = False
        self._auto_stopped = False

        self._lock = asyncio.Lock()
        self._discarded = asyncio.Event()
        self._ticker: asyncio.Task | None = None
        self._grace_task: asyncio.Task | None = None

        self._device.set_listener(self._on_device_notice)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def policy(self) -> SessionPolicy:
        return self._policy

    @property
    def device(self) -> BaseCaptureDevice:
        return self._device

    @property
    def audio_ref(self) -> str | None:
        return self._audio_ref

    @property
    def discarded(self) -> bool:
        return self._discarded.is_set()

    @property
    def owns_device(self) -> bool:
        """True while the capture device may not be claimed by another session."""
        if self.discarded:
            return False
        return self._starting or self._state in _CAPTURING_STATES

    @property
    def elapsed_seconds(self) -> float:
        elapsed = self._accumulated
        if self._segment_started is not None:
            elapsed += self._clock() - self._segment_started
        return min(elapsed, self._policy.max_duration_seconds)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            id=self.id,
            state=self._state,
            elapsed_seconds=self.elapsed_seconds,
            max_duration_seconds=self._policy.max_duration_seconds,
            audio_ref=self._audio_ref,
            started_at=self._started_at,
            discarded=self.discarded,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Ask for permission and start the device, retrying with backoff.

        Raises:
            PermissionDeniedError: The user refused microphone access.
            DeviceStartError: The device failed on every attempt. The session
                stays ``idle``; this is the one unrecoverable capture failure.
        """
        async with self._lock:
            if self._state != SessionState.idle or self.discarded:
                return
            if not await self._device.request_permission():
                logger.info("Microphone permission denied for session %s", self.id)
                raise PermissionDeniedError()

            self._starting = True
            try:
                await self._start_device()
            except DeviceError as exc:
                if self.discarded:
                    await self._safe_release()
                    return
                attempts = self._policy.device_start_max_retries + 1
                logger.error(
                    "Could not start capture device for session %s after %d attempts: %s",
                    self.id,
                    attempts,
                    exc.detail,
                )
                self._publish(
                    Event(
                        type=EventType.device_start_failed,
                        data={"session_id": self.id, "attempts": attempts, "detail": exc.detail},
                    )
                )
                raise DeviceStartError(attempts, exc.detail) from exc
            finally:
                self._starting = False

            if self.discarded:
                # Discarded while the device was coming up.
                await self._safe_release()
                return

            self._started_at = datetime.now(UTC)
            self._open_segment()
            self._transition(SessionState.recording)
            self._ticker = asyncio.create_task(self._tick_loop())

    async def pause(self) -> None:
        """User pause. No-op unless recording."""
        async with self._lock:
            if self._state != SessionState.recording or self.discarded:
                return
            try:
                await self._device.pause()
            except DeviceError as exc:
                logger.warning("Failed to pause session %s: %s", self.id, exc.detail)
                return
            if self._state != SessionState.recording:
                return  # interrupted while the device was pausing
            self._close_segment()
            self._transition(SessionState.paused)

    async def resume(self) -> None:
        """User resume. No-op unless paused."""
        async with self._lock:
            if self._state != SessionState.paused or self.discarded:
                return
            try:
                await self._device.resume()
            except DeviceError as exc:
                logger.warning("Failed to resume session %s: %s", self.id, exc.detail)
                return
            if self._state != SessionState.paused:
                return
            self._open_segment()
            self._transition(SessionState.recording)

    async def stop(self) -> str | None:
        """Finalize the capture and return its audio ref.

        Safe to call from the user, the auto-stop ticker and mic-lost
        recovery: the first caller performs the transition, later callers
        get the same audio ref. Returns None when there is nothing to stop
        (idle or discarded) or when the device failed to finalize, in which
        case the session moves to ``mic_lost``.
        """
        async with self._lock:
            if self._state == SessionState.stopped:
                return self._audio_ref
            if self.discarded or self._state not in _CAPTURING_STATES:
                return None

            self._close_segment()
            self._cancel_grace()
            # Device notices arriving while the device finalizes are ignored
            self._stopping = True
            try:
                audio_ref = await self._device.stop()
            except DeviceError as exc:
                logger.warning("Device failed to stop for session %s: %s", self.id, exc.detail)
                self._cancel_ticker()
                self._transition(SessionState.mic_lost)
                return None
            finally:
                self._stopping = False

            if self.discarded:
                await self._safe_release()
                return None

            self._audio_ref = audio_ref
            self._cancel_ticker()
            self._device.set_listener(None)
            self._transition(SessionState.stopped)
            callback = self._on_stopped

        if callback is not None:
            try:
                await callback(audio_ref)
            except Exception:
                logger.exception("on_stopped callback failed for session %s", self.id)
        return audio_ref

    async def save_and_finish(self) -> str | None:
        """Keep the audio captured up to the interruption and stop (MicLost recovery)."""
        if self._state == SessionState.mic_lost:
            logger.info("Saving partial capture for session %s after mic loss", self.id)
        return await self.stop()

    async def discard(self) -> bool:
        """Throw the capture away and release the device.

        Returns:
            True when the session was discarded; False if it had already
            been discarded or stopped (a stopped capture belongs to the
            repository).
        """
        if self.discarded or self._state == SessionState.stopped:
            return False
        self._discarded.set()  # releases a pending start backoff immediately

        async with self._lock:
            self._cancel_ticker()
            self._cancel_grace()
            self._close_segment()
            await self._safe_release()
            self._audio_ref = None
            logger.info("Session %s discarded", self.id)
            self._transition(SessionState.idle)
        return True

    # ------------------------------------------------------------------
    # Device start
    # ------------------------------------------------------------------

    async def _start_device(self) -> None:
        policy = self._policy
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.device_start_max_retries + 1)
            | stop_when_event_set(self._discarded),
            wait=wait_exponential(
                multiplier=policy.device_start_backoff_seconds,
                min=policy.device_start_backoff_seconds,
                max=policy.device_start_backoff_max_seconds,
            ),
            retry=retry_if_exception_type(DeviceError),
            sleep=self._backoff_sleep,
            before_sleep=self._log_start_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if self.discarded:
                    return
                if attempt.retry_state.attempt_number > 1:
                    # Give the device a cooldown reset before the next try.
                    await self._safe_release()
                await self._device.start()

    async def _backoff_sleep(self, seconds: float) -> None:
        """Backoff that ends early when the session is discarded."""
        try:
            await asyncio.wait_for(self._discarded.wait(), timeout=seconds)
        except TimeoutError:
            pass

    def _log_start_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Device start failed for session %s (attempt %d/%d): %s",
            self.id,
            retry_state.attempt_number,
            self._policy.device_start_max_retries + 1,
            exc,
        )

    # ------------------------------------------------------------------
    # Background timers
    # ------------------------------------------------------------------

    async def _tick_loop(self) -> None:
        policy = self._policy
        while not self.discarded and self._state in _CAPTURING_STATES:
            interval = policy.tick_interval_seconds
            if self._state == SessionState.recording:
                remaining = policy.max_duration_seconds - self.elapsed_seconds
                interval = max(min(interval, remaining), 0.0)
            await asyncio.sleep(interval)

            if self._state != SessionState.recording or self.discarded:
                continue
            elapsed = self.elapsed_seconds
            self._publish(
                Event(
                    type=EventType.duration_tick,
                    data={
                        "session_id": self.id,
                        "elapsed_seconds": elapsed,
                        "max_duration_seconds": policy.max_duration_seconds,
                    },
                )
            )
            if not self._warning_sent and elapsed >= policy.warning_threshold_seconds:
                self._warning_sent = True
                self._publish(
                    Event(
                        type=EventType.duration_warning,
                        data={
                            "session_id": self.id,
                            "elapsed_seconds": elapsed,
                            "remaining_seconds": policy.max_duration_seconds - elapsed,
                        },
                    )
                )
            if elapsed >= policy.max_duration_seconds:
                await self._auto_stop()
                return

    async def _auto_stop(self) -> None:
        if self._auto_stopped:
            return
        self._auto_stopped = True
        logger.info(
            "Session %s reached the %.0fs limit; stopping",
            self.id,
            self._policy.max_duration_seconds,
        )
        audio_ref = await self.stop()
        if self._state == SessionState.stopped:
            self._publish(
                Event(
                    type=EventType.auto_stopped,
                    data={
                        "session_id": self.id,
                        "max_duration_seconds": self._policy.max_duration_seconds,
                        "audio_ref": audio_ref,
                    },
                )
            )

    async def _grace_timer(self) -> None:
        await asyncio.sleep(self._policy.mic_grace_period_seconds)
        self._grace_task = None
        if self._state == SessionState.mic_interrupted and not self.discarded:
            logger.warning(
                "Microphone did not recover within %.1fs for session %s",
                self._policy.mic_grace_period_seconds,
                self.id,
            )
            self._transition(SessionState.mic_lost)

    def _on_device_notice(self, notice: DeviceNotice) -> None:
        if self.discarded or self._stopping:
            return
        if notice == DeviceNotice.interrupted:
            if self._state != SessionState.recording:
                return
            self._close_segment()
            self._transition(SessionState.mic_interrupted)
            self._grace_task = asyncio.create_task(self._grace_timer())
        elif notice == DeviceNotice.recovered:
            if self._state != SessionState.mic_interrupted:
                return
            self._cancel_grace()
            self._open_segment()
            self._transition(SessionState.recording)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _open_segment(self) -> None:
        self._segment_started = self._clock()

    def _close_segment(self) -> None:
        self._accumulated = self.elapsed_seconds
        self._segment_started = None

    def _cancel_ticker(self) -> None:
        if self._ticker is not None and self._ticker is not asyncio.current_task():
            self._ticker.cancel()
        self._ticker = None

    def _cancel_grace(self) -> None:
        if self._grace_task is not None and self._grace_task is not asyncio.current_task():
            self._grace_task.cancel()
        self._grace_task = None

    async def _safe_release(self) -> None:
        try:
            await self._device.release()
        except DeviceError as exc:
            logger.warning("Failed to release capture device: %s", exc.detail)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.info("Session %s: %s -> %s", self.id, from_state.value, to_state.value)
        self._publish(
            Event(
                type=EventType.session_state_changed,
                data={
                    "session_id": self.id,
                    "from_state": from_state.value,
                    "to_state": to_state.value,
                    "elapsed_seconds": self.elapsed_seconds,
                    "discarded": self.discarded,
                },
            )
        )
