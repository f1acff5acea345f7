"""
Abstract base class for the remote processing services.

The pipeline orchestrator is the only caller. Implementations translate
connectivity problems into the built-in ``ConnectionError`` /
``TimeoutError`` and any other remote failure into
:class:`~plainly.core.exceptions.ProcessingServiceError`, so the
orchestrator can classify failures without knowing the transport.
"""

from abc import ABC, abstractmethod

from plainly.core.models import ExtractionOutcome, TranscriptionOutcome


class BaseProcessingService(ABC):
    """Interface that every processing backend must implement."""

    @abstractmethod
    async def transcribe(self, audio_ref: str) -> TranscriptionOutcome:
        """Turn captured audio into raw transcript text.

        Args:
            audio_ref: Reference to the captured audio (file path).

        Returns:
            The transcript; empty text with ``no_speech`` set when the
            recording contained no speech.
        """

    @abstractmethod
    async def extract(self, transcript: str) -> ExtractionOutcome:
        """Produce the structured summary and structured transcript.

        Args:
            transcript: Raw transcript text from :meth:`transcribe`.
        """

    @abstractmethod
    async def generate_title(self, transcript: str, summary: str | None = None) -> str:
        """Generate a short (2-5 word) title for a recording."""

    async def aclose(self) -> None:
        """Release transport resources (no-op by default)."""
