"""Tests for the HTTP processing backend client.

Requests are answered by ``httpx.MockTransport`` handlers, so no network
access is needed.
"""

import json

import httpx
import pytest

from plainly.core.exceptions import ProcessingServiceError
from plainly.services.processing import create_processing_service
from plainly.services.processing.http import HttpProcessingService

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(handler) -> HttpProcessingService:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="http://processing.test",
    )
    return HttpProcessingService(base_url="http://processing.test", client=client)


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "capture.wav"
    path.write_bytes(b"RIFF0000WAVEfmt ")
    return str(path)


# ---------------------------------------------------------------------------
# Transcribe
# ---------------------------------------------------------------------------


class TestTranscribe:
    async def test_returns_transcript(self, audio_file) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = request.content
            return httpx.Response(200, json={"transcript": "  Hello team  "})

        service = _service(handler)
        outcome = await service.transcribe(audio_file)

        assert outcome.text == "Hello team"
        assert not outcome.no_speech
        assert seen["path"] == "/api/transcribe"
        assert b'name="audio"' in seen["body"]
        await service.aclose()

    async def test_no_speech_is_not_an_error(self, audio_file) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "No speech detected in the recording"})

        outcome = await _service(handler).transcribe(audio_file)
        assert outcome.text == ""
        assert outcome.no_speech

    async def test_empty_transcript_flags_no_speech(self, audio_file) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"transcript": ""})

        outcome = await _service(handler).transcribe(audio_file)
        assert outcome.no_speech

    async def test_other_400_raises(self, audio_file) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Recording too short"})

        with pytest.raises(ProcessingServiceError) as exc_info:
            await _service(handler).transcribe(audio_file)
        assert exc_info.value.upstream_status == 400
        assert exc_info.value.detail == "Recording too short"

    async def test_connect_error_becomes_connection_error(self, audio_file) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ConnectionError):
            await _service(handler).transcribe(audio_file)

    async def test_timeout_becomes_timeout_error(self, audio_file) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TimeoutError):
            await _service(handler).transcribe(audio_file)

    async def test_missing_audio_file(self, tmp_path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        with pytest.raises(ProcessingServiceError):
            await _service(handler).transcribe(str(tmp_path / "missing.wav"))


# ---------------------------------------------------------------------------
# Extract / title
# ---------------------------------------------------------------------------


class TestExtract:
    async def test_parses_structured_outputs(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content) == {"transcript": "hello"}
            return httpx.Response(
                200,
                json={
                    "summary": '```json\n{"gist": "Greeting"}\n```',
                    "structuredTranscript": "not json",
                },
            )

        outcome = await _service(handler).extract("hello")
        assert outcome.summary == {"gist": "Greeting"}
        assert outcome.structured_transcript == "not json"

    async def test_server_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="upstream exploded")

        with pytest.raises(ProcessingServiceError) as exc_info:
            await _service(handler).extract("hello")
        assert exc_info.value.upstream_status == 500
        assert "upstream exploded" in exc_info.value.detail


class TestGenerateTitle:
    async def test_returns_title(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body == {"transcript": "hello", "summary": "Greeting"}
            return httpx.Response(200, json={"title": '"Morning hello"'})

        title = await _service(handler).generate_title("hello", "Greeting")
        assert title == "Morning hello"

    async def test_blank_title_falls_back(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"title": ""})

        assert await _service(handler).generate_title("hello") == "Recording"


class TestFactory:
    def test_http_provider(self) -> None:
        service = create_processing_service("http", base_url="http://processing.test")
        assert isinstance(service, HttpProcessingService)

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError):
            create_processing_service("carrier-pigeon")
