"""Capture device fed by a remote client.

The client streams raw PCM audio (16-bit, 16 kHz, mono by default) and the
device accumulates it in memory. ``stop()`` writes the audio to a WAV file
under the recordings directory and returns its path as the audio ref.
Hardware interruptions happen on the client; it reports them and the
device relays them to the recording session.
"""

import asyncio
import logging
import uuid
import wave
from pathlib import Path

from plainly.core.config import get_settings
from plainly.core.exceptions import DeviceError
from plainly.core.models import DeviceNotice
from plainly.services.capture.base import BaseCaptureDevice

logger = logging.getLogger(__name__)


class StreamCaptureDevice(BaseCaptureDevice):
    """Capture device whose PCM frames arrive through :meth:`feed`.

    Args:
        recordings_dir: Directory for finalized WAV files.
        sample_rate: PCM sample rate in Hz.
        sample_width: Bytes per sample.
        channels: Number of interleaved channels.
    """

    def __init__(
        self,
        recordings_dir: str | Path | None = None,
        sample_rate: int | None = None,
        sample_width: int | None = None,
        channels: int | None = None,
    ) -> None:
        super().__init__()
        settings = get_settings()
        self._recordings_dir = Path(recordings_dir or settings.recordings_dir)
        self.sample_rate = sample_rate or settings.sample_rate
        self.sample_width = sample_width or settings.sample_width
        self.channels = channels or settings.channels
        self._buffer = bytearray()
        self._running = False
        self._accepting = False
        self._interrupted = False
        self._audio_path: Path | None = None
        self.dropped_bytes = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def buffered_duration(self) -> float:
        """Duration of captured audio in seconds."""
        return len(self._buffer) / (self.sample_rate * self.sample_width * self.channels)

    async def request_permission(self) -> bool:
        # The remote client asks the user before it opens the stream.
        return True

    async def start(self) -> None:
        if self._running:
            raise DeviceError("Capture device is already recording")
        try:
            self._recordings_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DeviceError(f"Recordings directory unavailable: {exc}") from exc
        self._buffer.clear()
        self._audio_path = None
        self._interrupted = False
        self._running = True
        self._accepting = True
        logger.info("Stream capture started (dir=%s)", self._recordings_dir)

    async def pause(self) -> None:
        if not self._running:
            raise DeviceError("Capture device is not recording")
        self._accepting = False

    async def resume(self) -> None:
        if not self._running:
            raise DeviceError("Capture device is not recording")
        self._accepting = True

    def feed(self, data: bytes) -> None:
        """Append PCM bytes from the client; dropped unless actively capturing."""
        if self._running and self._accepting and not self._interrupted:
            self._buffer.extend(data)
        else:
            self.dropped_bytes += len(data)

    def report_interruption(self) -> None:
        """The client lost its microphone input."""
        if not self._running:
            return
        self._interrupted = True
        self.notify(DeviceNotice.interrupted)

    def report_recovery(self) -> None:
        """The client's microphone input came back."""
        if not self._running or not self._interrupted:
            return
        self._interrupted = False
        self.notify(DeviceNotice.recovered)

    async def stop(self) -> str:
        if not self._running:
            if self._audio_path is not None:
                return str(self._audio_path)
            raise DeviceError("Capture device is not recording")
        self._running = False
        self._accepting = False
        path = self._recordings_dir / f"recording_{uuid.uuid4().hex}.wav"
        pcm = bytes(self._buffer)
        try:
            await asyncio.to_thread(self._write_wav, path, pcm)
        except OSError as exc:
            raise DeviceError(f"Failed to write audio file: {exc}") from exc
        self._buffer.clear()
        self._audio_path = path
        logger.info("Stream capture saved %d bytes to %s", len(pcm), path)
        return str(path)

    async def release(self) -> None:
        self._running = False
        self._accepting = False
        self._buffer.clear()
        if self._audio_path is not None:
            self._audio_path.unlink(missing_ok=True)
            logger.info("Discarded captured audio %s", self._audio_path)
            self._audio_path = None

    def _write_wav(self, path: Path, pcm: bytes) -> None:
        with wave.open(str(path), "wb") as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(self.sample_width)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm)
