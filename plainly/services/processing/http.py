"""
HTTP processing service implementation.

Uses ``httpx.AsyncClient`` to call the processing backend:

- ``POST /api/transcribe`` (multipart ``audio``) -> ``{"transcript"}``
- ``POST /api/generate-outputs`` ``{"transcript"}`` -> ``{"summary", "structuredTranscript"}``
- ``POST /api/generate-title`` ``{"transcript", "summary"}`` -> ``{"title"}``

Requests are sent exactly once; the orchestrator decides what is retried.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path

import httpx

from plainly.core.config import get_settings
from plainly.core.exceptions import ProcessingServiceError
from plainly.core.models import ExtractionOutcome, TranscriptionOutcome
from plainly.core.utils import parse_structured_output
from plainly.services.processing.base import BaseProcessingService

logger = logging.getLogger(__name__)

NO_SPEECH_MARKER = "no speech detected"
DEFAULT_TITLE = "Recording"


class HttpProcessingService(BaseProcessingService):
    """Processing backend reached over HTTP.

    Args:
        base_url: Backend base URL (falls back to settings if not provided).
        timeout: Per-request timeout in seconds.
        client: Pre-built ``httpx.AsyncClient`` (used in tests).
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.processing_base_url).rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout or settings.processing_timeout_seconds,
        )

    async def _post(self, path: str, **kwargs) -> dict:
        """Send a POST request and return the decoded JSON body.

        Transport exceptions are translated to standard Python exceptions so
        that the orchestrator can rely on ``ConnectionError`` / ``TimeoutError``
        for its network classification.

        Raises:
            TimeoutError: The request timed out.
            ConnectionError: The backend could not be reached.
            ProcessingServiceError: The backend answered with an error status.
        """
        try:
            resp = await self._client.post(path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Processing request %s timed out: %s", path, exc)
            raise TimeoutError(f"Request to {path} timed out") from exc
        except httpx.TransportError as exc:
            logger.warning("Processing backend unreachable (%s): %s", self._base_url, exc)
            raise ConnectionError(f"Unable to connect to {self._base_url}: {exc}") from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if resp.is_error:
            detail = payload.get("error") or resp.text or f"HTTP {resp.status_code}"
            logger.warning("Processing request %s failed (%s): %s", path, resp.status_code, detail)
            raise ProcessingServiceError(str(detail), upstream_status=resp.status_code)
        return payload

    async def transcribe(self, audio_ref: str) -> TranscriptionOutcome:
        path = Path(audio_ref)
        try:
            audio = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise ProcessingServiceError(f"Captured audio is not readable: {audio_ref}") from exc

        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        try:
            payload = await self._post(
                "/api/transcribe",
                files={"audio": (path.name, audio, mime_type)},
            )
        except ProcessingServiceError as exc:
            if exc.upstream_status == 400 and NO_SPEECH_MARKER in exc.detail.lower():
                logger.info("No speech detected in %s", path.name)
                return TranscriptionOutcome(text="", no_speech=True)
            raise

        text = str(payload.get("transcript") or "").strip()
        logger.info("Transcribed %s (%d chars)", path.name, len(text))
        return TranscriptionOutcome(text=text, no_speech=not text)

    async def extract(self, transcript: str) -> ExtractionOutcome:
        payload = await self._post("/api/generate-outputs", json={"transcript": transcript})
        return ExtractionOutcome(
            summary=parse_structured_output(payload.get("summary")),
            structured_transcript=parse_structured_output(payload.get("structuredTranscript")),
        )

    async def generate_title(self, transcript: str, summary: str | None = None) -> str:
        body: dict = {"transcript": transcript}
        if summary:
            body["summary"] = summary
        payload = await self._post("/api/generate-title", json=body)
        title = str(payload.get("title") or "").strip().strip('"')
        return title or DEFAULT_TITLE

    async def aclose(self) -> None:
        await self._client.aclose()
