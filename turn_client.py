"""Server-sent-event client for the turn-submission endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator, Optional

import httpx

from errors import TransportError
from models import TurnEvent

log = logging.getLogger("lingua_tutor.turn_client")

TURN_PATH = "/api/conversations/stream"


def iter_sse_data(lines: Iterator[str]) -> Iterator[str]:
    """Yield the payload of each event; multi-line ``data:`` fields are joined."""
    buffer: list[str] = []
    for line in lines:
        if not line:
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            buffer.append(line[5:].lstrip())
    if buffer:
        yield "\n".join(buffer)


class HttpTurnClient:
    def __init__(
        self,
        server_url: str = "http://localhost:3000",
        timeout_s: float = 120.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._server_url = server_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout_s)

    def stream_turn(
        self,
        level: str,
        story: str,
        chapter: str,
        section: str,
        query: str,
        conversation_id: Optional[str],
        user_id: str,
    ) -> Iterator[TurnEvent]:
        payload: dict[str, Any] = {
            "level": level,
            "story": story,
            "chapter": chapter,
            "section": section,
            "query": query,
            "conversationId": conversation_id or None,
            "userId": user_id,
        }
        url = f"{self._server_url}{TURN_PATH}"
        try:
            with self._client.stream(
                "POST", url, json=payload, headers={"Accept": "text/event-stream"}
            ) as response:
                if response.is_error:
                    response.read()
                    raise TransportError(f"HTTP {response.status_code}: {response.text[:200]}")
                for data in iter_sse_data(response.iter_lines()):
                    try:
                        yield TurnEvent.from_dict(json.loads(data))
                    except (ValueError, TypeError) as exc:
                        log.debug("event=turn_bad_event error=%s", exc)
        except httpx.HTTPError as exc:
            raise TransportError(str(exc)) from exc

    def close(self) -> None:
        self._client.close()
