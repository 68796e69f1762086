from __future__ import annotations

import json

import httpx
import pytest

from errors import TransportError
from models import TurnEvent
from turn_client import HttpTurnClient, iter_sse_data


def _sse(*events: dict) -> bytes:
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events).encode("utf-8")


def _client(handler) -> httpx.Client:  # noqa: ANN001
    return httpx.Client(transport=httpx.MockTransport(handler))


def _stream(client: HttpTurnClient, **overrides) -> list[TurnEvent]:  # noqa: ANN003
    kwargs = dict(
        level="A1",
        story="S1",
        chapter="C1",
        section="Dialogue",
        query="Olá",
        conversation_id=None,
        user_id="L001",
    )
    kwargs.update(overrides)
    return list(client.stream_turn(**kwargs))


def test_iter_sse_data_joins_multiline_and_skips_comments() -> None:
    lines = [": keepalive", "data: one", "", "data: a", "data: b", "", "data: tail"]
    assert list(iter_sse_data(iter(lines))) == ["one", "a\nb", "tail"]


def test_stream_turn_posts_request_and_yields_events() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = _sse(
            {"type": "status", "status": "loading"},
            {"type": "conversation_id", "conversationId": "conv-1"},
            {"type": "response.output_text.delta", "delta": "Hel"},
            {"type": "response.output_text.delta", "delta": "lo!"},
            {"type": "status", "status": "done"},
        )
        return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

    events = _stream(HttpTurnClient("http://tutor:3000", client=_client(handler)), conversation_id="conv-0")

    payload = json.loads(seen[0].content)
    assert seen[0].url.path == "/api/conversations/stream"
    assert payload == {
        "level": "A1",
        "story": "S1",
        "chapter": "C1",
        "section": "Dialogue",
        "query": "Olá",
        "conversationId": "conv-0",
        "userId": "L001",
    }
    assert [e.type for e in events] == [
        TurnEvent.STATUS,
        TurnEvent.CONVERSATION_ID,
        TurnEvent.DELTA,
        TurnEvent.DELTA,
        TurnEvent.STATUS,
    ]
    assert events[1].conversation_id == "conv-1"
    assert "".join(e.delta for e in events) == "Hello!"


def test_malformed_event_is_skipped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = b"data: {broken\n\n" + _sse({"type": "status", "status": "done"})
        return httpx.Response(200, content=body)

    events = _stream(HttpTurnClient(client=_client(handler)))
    assert [e.status for e in events] == ["done"]


def test_http_error_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(TransportError, match="503"):
        _stream(HttpTurnClient(client=_client(handler)))


def test_network_failure_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportError):
        _stream(HttpTurnClient(client=_client(handler)))
