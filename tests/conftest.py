"""Shared pytest fixtures for the Plainly test suite.

Provides an in-process capture device, a controllable clock, a mock
processing backend and SQLite database helpers.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from plainly.core.exceptions import DeviceError
from plainly.core.models import ExtractionOutcome, TranscriptionOutcome
from plainly.services.capture.base import BaseCaptureDevice

# ---------------------------------------------------------------------------
# Capture device
# ---------------------------------------------------------------------------


class FakeCaptureDevice(BaseCaptureDevice):
    """Capture device that records calls and fails on demand.

    Args:
        permission: Answer to ``request_permission``.
        start_failures: Number of initial ``start`` calls that raise.
        fail_stop: Make ``stop`` raise ``DeviceError``.
        stop_delay: Seconds ``stop`` takes to finalize the capture.
    """

    def __init__(
        self,
        permission: bool = True,
        start_failures: int = 0,
        fail_stop: bool = False,
        audio_ref: str = "recordings/capture.wav",
        stop_delay: float = 0.0,
    ) -> None:
        super().__init__()
        self.permission = permission
        self.start_failures = start_failures
        self.fail_stop = fail_stop
        self.audio_ref = audio_ref
        self.stop_delay = stop_delay
        self.start_calls = 0
        self.stop_calls = 0
        self.release_calls = 0
        self.calls: list[str] = []

    async def request_permission(self) -> bool:
        self.calls.append("request_permission")
        return self.permission

    async def start(self) -> None:
        self.calls.append("start")
        self.start_calls += 1
        if self.start_calls <= self.start_failures:
            raise DeviceError("Microphone busy")

    async def pause(self) -> None:
        self.calls.append("pause")

    async def resume(self) -> None:
        self.calls.append("resume")

    async def stop(self) -> str:
        self.calls.append("stop")
        self.stop_calls += 1
        if self.stop_delay:
            await asyncio.sleep(self.stop_delay)
        if self.fail_stop:
            raise DeviceError("Encoder crashed")
        return self.audio_ref

    async def release(self) -> None:
        self.calls.append("release")
        self.release_calls += 1


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_device():
    """Factory for capture devices with custom failure behaviour."""
    return FakeCaptureDevice


@pytest.fixture
def device():
    """A capture device that always starts and stops cleanly."""
    return FakeCaptureDevice()


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Processing service
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_service():
    """Create a mock processing backend for unit testing.

    Returns:
        AsyncMock: A mock implementing the BaseProcessingService interface
        with a successful transcript, structured outputs and a title.
    """
    from plainly.services.processing.base import BaseProcessingService

    service = AsyncMock(spec=BaseProcessingService)
    service.transcribe.return_value = TranscriptionOutcome(text="Team sync about the launch")
    service.extract.return_value = ExtractionOutcome(
        summary={"gist": "Launch is on track", "bullets": ["Ship Friday"]},
        structured_transcript={"sections": [{"heading": "Launch", "text": "Ship Friday"}]},
    )
    service.generate_title.return_value = "Launch sync"
    return service


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@pytest.fixture
def published():
    """List that collects published events; pass ``published.append`` as publisher."""
    return []


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine(tmp_path):
    """Create a temporary-file SQLite async engine with tables, dispose after test."""
    from sqlalchemy.ext.asyncio import create_async_engine

    from plainly.services.storage.database import init_db

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Yield an AsyncSession bound to the test engine; rolls back after test."""
    from sqlalchemy.ext.asyncio import async_sessionmaker

    factory = async_sessionmaker(db_engine, expire_on_commit=False)
    async with factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def repository(db_session):
    """Return a RecordingRepository bound to the test session."""
    from plainly.services.storage.repository import RecordingRepository

    return RecordingRepository(db_session)


@pytest.fixture
def use_test_db(db_engine):
    """Point ``get_session()`` at the test engine for the duration of a test."""
    from plainly.services.storage import database

    database._engine = db_engine
    database._session_factory = None
    yield db_engine
    database.reset_engine()


# ---------------------------------------------------------------------------
# Audio Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_pcm_bytes():
    """Generate 1 second of 440Hz sine-wave PCM audio (16kHz, 16-bit, mono).

    Returns:
        bytes: Raw PCM audio data.
    """
    import math
    import struct

    sample_rate = 16000
    frequency = 440.0
    amplitude = 16000  # ~50% of max int16

    samples = [
        struct.pack("<h", int(amplitude * math.sin(2 * math.pi * frequency * i / sample_rate)))
        for i in range(sample_rate)
    ]
    return b"".join(samples)
