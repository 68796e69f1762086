"""Server side of the duplex speech session.

One ``SpeechSession`` per WebSocket connection. Lifecycle:
``idle -> active -> stopping -> closed``. Binary frames are pushed into the
recogniser while active; recogniser events are relayed downstream through
a queue so they keep their order even though the SDK raises them on its
own threads. Resources are released exactly once.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect

from interfaces import RecognizerFactory, StreamingRecognizer
from models import SpeechEvent, SpeechEventKind

log = logging.getLogger("lingua_tutor.speech_session")

POLICY_VIOLATION = 1008
NORMAL_CLOSURE = 1000


class SessionPhase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    STOPPING = "stopping"
    CLOSED = "closed"


class SpeechSession:
    def __init__(
        self,
        websocket: WebSocket,
        recognizer_factory: RecognizerFactory,
        sample_rate: int,
        language: str,
        configured: bool,
    ) -> None:
        self._ws = websocket
        self._factory = recognizer_factory
        self.sample_rate = sample_rate
        self.language = language
        self._configured = configured
        self.phase = SessionPhase.IDLE
        self._recognizer: Optional[StreamingRecognizer] = None
        self._events: asyncio.Queue[Optional[SpeechEvent]] = asyncio.Queue()
        self._stopped = asyncio.Event()
        self._cleaned = False
        self.frames_received = 0

    async def run(self) -> None:
        await self._ws.accept()
        if not self._configured:
            log.warning("event=speech_session_refused reason=not_configured")
            await self._send(SpeechEvent(kind=SpeechEventKind.ERROR, message="Azure Speech credentials not configured"))
            await self._ws.close(code=POLICY_VIOLATION, reason="Azure credentials not configured")
            self.phase = SessionPhase.CLOSED
            return

        loop = asyncio.get_running_loop()
        sender = asyncio.create_task(self._relay_events())

        def _on_event(event: SpeechEvent) -> None:
            loop.call_soon_threadsafe(self._events.put_nowait, event)

        self.phase = SessionPhase.ACTIVE
        log.info("event=speech_session_open sample_rate=%d language=%s", self.sample_rate, self.language)
        try:
            self._recognizer = self._factory(self.sample_rate, self.language)
            await asyncio.to_thread(self._recognizer.start, _on_event)
        except Exception as exc:
            log.error("event=speech_session_start_failed error=%s", exc)
            _on_event(SpeechEvent(kind=SpeechEventKind.CANCELED, reason="Error", error=str(exc)))

        receiver = asyncio.create_task(self._receive_loop())
        stopper = asyncio.create_task(self._stopped.wait())
        try:
            await asyncio.wait({receiver, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (receiver, stopper):
                task.cancel()
            await self._cleanup()
            self._events.put_nowait(None)
            await sender
            if self._stopped.is_set():
                await self._close_socket(NORMAL_CLOSURE)
            self.phase = SessionPhase.CLOSED
            log.info("event=speech_session_closed frames=%d", self.frames_received)

    async def _receive_loop(self) -> None:
        while self.phase == SessionPhase.ACTIVE:
            try:
                message = await self._ws.receive()
            except (WebSocketDisconnect, RuntimeError):
                return
            if message.get("type") == "websocket.disconnect":
                return
            data = message.get("bytes")
            if data is not None:
                self._push(data)
                continue
            text = message.get("text")
            if text is not None:
                self._handle_command(text)

    def _push(self, data: bytes) -> None:
        recognizer = self._recognizer
        if recognizer is None or self._cleaned:
            return
        self.frames_received += 1
        recognizer.push(data)

    def _handle_command(self, text: str) -> None:
        try:
            command: Any = json.loads(text)
        except ValueError:
            return
        if not isinstance(command, dict) or command.get("type") != "config":
            return
        # Applies to the next recogniser start; the running one keeps its format.
        if command.get("sampleRate"):
            self.sample_rate = int(command["sampleRate"])
        if command.get("languageCode"):
            self.language = str(command["languageCode"])
        log.info("event=speech_session_config sample_rate=%d language=%s", self.sample_rate, self.language)

    async def _relay_events(self) -> None:
        while True:
            event = await self._events.get()
            if event is None:
                return
            if self._stopped.is_set():
                continue
            await self._send(event)
            if event.terminal:
                self.phase = SessionPhase.STOPPING
                self._stopped.set()

    async def _send(self, event: SpeechEvent) -> None:
        try:
            await self._ws.send_text(event.to_json())
        except Exception as exc:
            log.debug("event=speech_send_failed error=%s", exc)

    async def _cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        recognizer = self._recognizer
        self._recognizer = None
        if recognizer is not None:
            try:
                await asyncio.to_thread(recognizer.close)
            except Exception as exc:
                log.warning("event=speech_cleanup_failed error=%s", exc)

    async def _close_socket(self, code: int) -> None:
        try:
            await self._ws.close(code=code)
        except Exception as exc:
            log.debug("event=speech_close_failed error=%s", exc)
