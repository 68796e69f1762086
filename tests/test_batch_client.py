from __future__ import annotations

import httpx

from batch_client import HttpBatchTranscriber
from errors import TRANSCRIPTION_TIMEOUT_ERROR


def _client(handler) -> httpx.Client:  # noqa: ANN001
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_posts_raw_pcm_with_query_params() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"success": True, "text": " Bom dia ", "segments": [{"text": "Bom dia", "language": "pt-BR"}]},
        )

    transcriber = HttpBatchTranscriber("http://tutor:3000/", provider="openai", client=_client(handler))
    result = transcriber.transcribe(b"\x00\x00" * 10, 48000)

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/api/speech/transcribe"
    assert request.url.params["sampleRate"] == "48000"
    assert request.url.params["provider"] == "openai"
    assert request.content == b"\x00\x00" * 10
    assert result.success is True
    assert result.text == "Bom dia"
    assert result.segments[0].language == "pt-BR"


def test_server_error_payload_is_returned_as_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"success": False, "text": "", "segments": [], "error": "Transcription timeout"})

    result = HttpBatchTranscriber(client=_client(handler)).transcribe(b"\x00\x00", 48000)

    assert result.success is False
    assert result.error == "Transcription timeout"


def test_non_json_response_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad Gateway")

    result = HttpBatchTranscriber(client=_client(handler)).transcribe(b"\x00\x00", 48000)

    assert result.error is not None
    assert "502" in result.error


def test_network_failure_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = HttpBatchTranscriber(client=_client(handler)).transcribe(b"\x00\x00", 48000)

    assert result.success is False
    assert "connection refused" in (result.error or "")


def test_client_timeout_reports_transcription_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    result = HttpBatchTranscriber(client=_client(handler)).transcribe(b"\x00\x00", 48000)

    assert result.error == TRANSCRIPTION_TIMEOUT_ERROR
