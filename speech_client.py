"""Client half of the duplex speech protocol over a WebSocket.

Upstream: binary frames of little-endian int16 mono PCM plus an optional
``{"type": "config"}`` text message. Downstream: JSON speech events,
delivered to ``on_event`` from a reader thread in arrival order.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Optional
from urllib.parse import urlencode

from errors import TransportError
from models import AudioFrame, SpeechEvent, SpeechEventKind

try:
    from websockets.sync.client import connect as ws_connect
except Exception:  # pragma: no cover
    ws_connect = None  # type: ignore

log = logging.getLogger("lingua_tutor.speech_client")

SPEECH_WS_PATH = "/api/speech/ws"


def to_ws_url(server_url: str) -> str:
    if server_url.startswith("https://"):
        return "wss://" + server_url[len("https://"):]
    if server_url.startswith("http://"):
        return "ws://" + server_url[len("http://"):]
    return server_url


class WebSocketSpeechTransport:
    """Opens one ``SpeechConnection`` per recording session."""

    def __init__(
        self,
        server_url: str = "http://localhost:3000",
        open_timeout_s: float = 10.0,
        close_timeout_s: float = 2.0,
    ) -> None:
        self._base_url = to_ws_url(server_url.rstrip("/"))
        self._open_timeout_s = open_timeout_s
        self._close_timeout_s = close_timeout_s

    def connect(
        self,
        sample_rate: int,
        language: str,
        on_event: Callable[[SpeechEvent], None],
    ) -> SpeechConnection:
        if ws_connect is None:
            raise TransportError("websockets is not installed")
        query = urlencode({"sampleRate": sample_rate, "language": language})
        url = f"{self._base_url}{SPEECH_WS_PATH}?{query}"
        try:
            ws = ws_connect(
                url,
                open_timeout=self._open_timeout_s,
                close_timeout=self._close_timeout_s,
            )
        except Exception as exc:
            log.warning("event=speech_ws_connect_failed url=%s error=%s", url, exc)
            raise TransportError(str(exc)) from exc
        connection = SpeechConnection(ws, on_event, self._close_timeout_s)
        log.info("event=speech_ws_connected url=%s", url)
        return connection


class SpeechConnection:
    def __init__(
        self,
        ws: Any,
        on_event: Callable[[SpeechEvent], None],
        close_timeout_s: float = 2.0,
    ) -> None:
        self._ws = ws
        self._close_timeout_s = close_timeout_s
        self._lock = threading.Lock()
        self._closed = False
        self._reader = threading.Thread(target=self._read_loop, args=(on_event,), daemon=True)
        self._reader.start()

    @property
    def is_open(self) -> bool:
        return not self._closed

    def send_frame(self, frame: AudioFrame) -> None:
        if self._closed:
            return
        try:
            self._ws.send(frame.pcm16_bytes)
        except Exception as exc:
            raise TransportError(str(exc)) from exc

    def send_config(self, sample_rate: Optional[int] = None, language: Optional[str] = None) -> None:
        if self._closed:
            return
        message: dict[str, Any] = {"type": "config"}
        if sample_rate:
            message["sampleRate"] = sample_rate
        if language:
            message["languageCode"] = language
        try:
            self._ws.send(json.dumps(message))
        except Exception as exc:
            raise TransportError(str(exc)) from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._ws.close()
        except Exception as exc:
            log.debug("event=speech_ws_close_failed error=%s", exc)
        if self._reader is not threading.current_thread():
            self._reader.join(timeout=self._close_timeout_s)
        log.info("event=speech_ws_closed")

    def _read_loop(self, on_event: Callable[[SpeechEvent], None]) -> None:
        try:
            for raw in self._ws:
                if isinstance(raw, (bytes, bytearray)):
                    continue
                try:
                    event = SpeechEvent.from_json(raw)
                except (ValueError, KeyError, TypeError) as exc:
                    log.debug("event=speech_ws_bad_message error=%s", exc)
                    continue
                on_event(event)
        except Exception as exc:
            if not self._closed:
                log.warning("event=speech_ws_dropped error=%s", exc)
                on_event(SpeechEvent(kind=SpeechEventKind.ERROR, message=f"connection lost: {exc}"))
            return
        if not self._closed:
            on_event(SpeechEvent(kind=SpeechEventKind.SESSION_STOPPED))
