"""State-machine based recording session orchestration.

``StreamingSessionController`` drives the duplex flow: frames go to the
speech transport as they are captured and recognised segments are
appended to the transcript while recording continues.

``BatchSessionController`` drives the record-then-transcribe flow: frames
are collected locally and sent in one request after capture stops.

Both own the capture device and the transport exclusively; callers only
go through ``start_session`` / ``stop_session`` / ``reset``.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator, Optional

from errors import (
    ASR_PROTOCOL_ERROR,
    BACKEND_NOT_CONFIGURED,
    DEVICE_UNAVAILABLE,
    RECOGNITION_TIMEOUT,
    TRANSCRIPTION_TIMEOUT_ERROR,
    TRANSPORT_ERROR,
    DeviceUnavailable,
    TransportError,
)
from interfaces import AudioCapture, BatchTranscriber, SpeechConnection, SpeechTransport
from models import AudioFrame, SessionState, SpeechEvent, SpeechEventKind, TranscriptionResult

log = logging.getLogger("lingua_tutor.session_controller")

StateCallback = Callable[[SessionState, SessionState], None]
TextCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]


def append_segment(transcript: str, segment: str) -> str:
    return (transcript + " " + segment).strip()


class _BaseSessionController:
    def __init__(
        self,
        capture: AudioCapture,
        sample_rate: int = 48000,
        max_duration_s: int = 30,
        on_state_change: Optional[StateCallback] = None,
        on_transcript: Optional[TextCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_tick: Optional[Callable[[int], None]] = None,
    ) -> None:
        self._capture = capture
        self.sample_rate = sample_rate
        self.max_duration_s = max_duration_s
        self._on_state_change = on_state_change
        self._on_transcript = on_transcript
        self._on_error = on_error

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session_id = 0
        self._transcript = ""
        self._detected_language: Optional[str] = None
        self._capture.set_callbacks(on_tick=on_tick, on_max_duration=self.stop_session)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == SessionState.RECORDING

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def detected_language(self) -> Optional[str]:
        return self._detected_language

    @property
    def elapsed_seconds(self) -> int:
        return self._capture.elapsed_seconds

    def add_state_listener(self, listener: StateCallback) -> None:
        previous = self._on_state_change

        def _chained(from_state: SessionState, to_state: SessionState) -> None:
            if previous:
                previous(from_state, to_state)
            listener(from_state, to_state)

        self._on_state_change = _chained

    def add_transcript_listener(self, listener: TextCallback) -> None:
        previous = self._on_transcript

        def _chained(text: str) -> None:
            if previous:
                previous(text)
            listener(text)

        self._on_transcript = _chained

    def clear_transcript(self) -> None:
        with self._lock:
            if not self._transcript:
                return
            self._transcript = ""
        self._emit_transcript("")

    def reset(self) -> None:
        """Tear everything down and forget the transcript."""
        with self._lock:
            self._teardown()
            self._transition(SessionState.IDLE)
            self._transcript = ""
            self._detected_language = None
        self._emit_transcript("")

    def _begin(self) -> Optional[int]:
        """idle -> connecting; returns the new session id or None when busy."""
        with self._lock:
            if self._state != SessionState.IDLE:
                log.debug("event=start_ignored state=%s", self._state.value)
                return None
            self._session_id += 1
            self._transcript = ""
            self._detected_language = None
            self._transition(SessionState.CONNECTING)
            session_id = self._session_id
        self._emit_transcript("")
        return session_id

    def _is_current(self, session_id: int, state: SessionState) -> bool:
        return self._session_id == session_id and self._state == state

    def _open_capture(self, session_id: int) -> Optional[Iterator[AudioFrame]]:
        try:
            return self._capture.open(self.sample_rate, self.max_duration_s)
        except DeviceUnavailable as exc:
            with self._lock:
                if self._session_id == session_id:
                    self._fail(DEVICE_UNAVAILABLE, str(exc))
            return None

    def _fail(self, code: str, message: str) -> None:
        log.warning("event=session_failed code=%s message=%s", code, message)
        self._teardown()
        self._transition(SessionState.IDLE)
        self._emit_error(code, message)

    def _teardown(self) -> None:
        # Capture stops first so no new audio is taken while the connection closes.
        self._safe_close_capture()

    def _safe_close_capture(self) -> None:
        try:
            self._capture.close()
        except Exception as exc:  # pragma: no cover
            log.warning("event=capture_teardown_failed error=%s", exc)

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _emit_transcript(self, text: str) -> None:
        if self._on_transcript:
            self._on_transcript(text)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        log.debug("event=transition from=%s to=%s", from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)


class StreamingSessionController(_BaseSessionController):
    def __init__(
        self,
        capture: AudioCapture,
        transport: SpeechTransport,
        sample_rate: int = 48000,
        language: str = "pt-BR",
        max_duration_s: int = 30,
        on_state_change: Optional[StateCallback] = None,
        on_partial: Optional[TextCallback] = None,
        on_transcript: Optional[TextCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_tick: Optional[Callable[[int], None]] = None,
    ) -> None:
        super().__init__(
            capture,
            sample_rate=sample_rate,
            max_duration_s=max_duration_s,
            on_state_change=on_state_change,
            on_transcript=on_transcript,
            on_error=on_error,
            on_tick=on_tick,
        )
        self._transport = transport
        self.language = language
        self._on_partial = on_partial
        self._pump: Optional[threading.Thread] = None
        self._connection: Optional[SpeechConnection] = None

    def start_session(self) -> None:
        session_id = self._begin()
        if session_id is None:
            return
        frames = self._open_capture(session_id)
        if frames is None:
            return
        try:
            connection = self._transport.connect(
                self.sample_rate,
                self.language,
                lambda event: self._handle_speech_event(session_id, event),
            )
        except TransportError as exc:
            with self._lock:
                if self._is_current(session_id, SessionState.CONNECTING):
                    self._fail(TRANSPORT_ERROR, str(exc))
            return

        with self._lock:
            if not self._is_current(session_id, SessionState.CONNECTING):
                log.info("event=stale_connect_discarded session=%d current=%d", session_id, self._session_id)
                self._safe_close_connection(connection)
                # A newer session owns the capture device once it has started.
                if self._session_id == session_id:
                    self._safe_close_capture()
                return
            self._connection = connection
            self._transition(SessionState.RECORDING)
            self._pump = threading.Thread(
                target=self._pump_frames, args=(session_id, frames, connection), daemon=True
            )
            self._pump.start()
        log.info("event=session_recording session=%d", session_id)

    def stop_session(self) -> None:
        with self._lock:
            if self._state == SessionState.IDLE:
                return
            self._teardown()
            self._transition(SessionState.IDLE)
        log.info("event=session_stopped session=%d transcript_len=%d", self._session_id, len(self._transcript))

    def _pump_frames(self, session_id: int, frames: Iterator[AudioFrame], connection: SpeechConnection) -> None:
        for frame in frames:
            if not self._is_current(session_id, SessionState.RECORDING):
                break
            try:
                connection.send_frame(frame)
            except TransportError as exc:
                with self._lock:
                    if self._session_id == session_id and self._state != SessionState.IDLE:
                        self._fail(TRANSPORT_ERROR, str(exc))
                break

    def _handle_speech_event(self, session_id: int, event: SpeechEvent) -> None:
        with self._lock:
            if self._session_id != session_id or self._state == SessionState.IDLE:
                return
            kind = event.kind
            if kind == SpeechEventKind.RECOGNIZING:
                if self._on_partial and event.text:
                    self._on_partial(event.text)
                return
            if kind == SpeechEventKind.RECOGNIZED:
                if not event.text:
                    return
                self._transcript = append_segment(self._transcript, event.text)
                if event.detected_language:
                    self._detected_language = event.detected_language
                transcript = self._transcript
            elif kind == SpeechEventKind.NOMATCH:
                log.debug("event=nomatch session=%d", session_id)
                return
            elif kind == SpeechEventKind.STARTED:
                log.info("event=recognition_started session=%d", session_id)
                return
            elif kind == SpeechEventKind.CANCELED:
                if event.reason == "Error":
                    self._fail(ASR_PROTOCOL_ERROR, event.error or "recognition canceled")
                else:
                    self._teardown()
                    self._transition(SessionState.IDLE)
                return
            elif kind == SpeechEventKind.SESSION_STOPPED:
                self._teardown()
                self._transition(SessionState.IDLE)
                return
            else:
                code = BACKEND_NOT_CONFIGURED if "configured" in event.message else TRANSPORT_ERROR
                self._fail(code, event.message)
                return
        self._emit_transcript(transcript)

    def _teardown(self) -> None:
        super()._teardown()
        connection = self._connection
        self._connection = None
        if connection is not None:
            self._safe_close_connection(connection)

    def _safe_close_connection(self, connection: SpeechConnection) -> None:
        try:
            connection.close()
        except Exception as exc:  # pragma: no cover
            log.warning("event=transport_teardown_failed error=%s", exc)


class BatchSessionController(_BaseSessionController):
    def __init__(
        self,
        capture: AudioCapture,
        transcriber: BatchTranscriber,
        sample_rate: int = 48000,
        max_duration_s: int = 30,
        on_state_change: Optional[StateCallback] = None,
        on_transcript: Optional[TextCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_tick: Optional[Callable[[int], None]] = None,
    ) -> None:
        super().__init__(
            capture,
            sample_rate=sample_rate,
            max_duration_s=max_duration_s,
            on_state_change=on_state_change,
            on_transcript=on_transcript,
            on_error=on_error,
            on_tick=on_tick,
        )
        self._transcriber = transcriber
        self._collector: Optional[threading.Thread] = None
        self._pcm = bytearray()

    def start_session(self) -> None:
        session_id = self._begin()
        if session_id is None:
            return
        frames = self._open_capture(session_id)
        if frames is None:
            return
        with self._lock:
            if not self._is_current(session_id, SessionState.CONNECTING):
                if self._session_id == session_id:
                    self._safe_close_capture()
                return
            self._pcm = bytearray()
            self._collector = threading.Thread(
                target=self._collect_frames, args=(frames, self._pcm), daemon=True
            )
            self._collector.start()
            self._transition(SessionState.RECORDING)
        log.info("event=session_recording session=%d", session_id)

    def stop_session(self) -> None:
        """recording -> transcribing -> idle. Blocks while transcribing."""
        with self._lock:
            if self._state == SessionState.CONNECTING:
                self._teardown()
                self._transition(SessionState.IDLE)
                return
            if self._state != SessionState.RECORDING:
                return
            session_id = self._session_id
            self._transition(SessionState.TRANSCRIBING)
            self._teardown()
            collector = self._collector
            self._collector = None
            pcm = self._pcm

        if collector is not None and collector is not threading.current_thread():
            collector.join()
        audio = bytes(pcm)
        if not audio:
            log.info("event=batch_skipped reason=no_audio session=%d", session_id)
            self._finish(session_id, TranscriptionResult())
            return

        try:
            result = self._transcriber.transcribe(audio, self.sample_rate)
        except Exception as exc:
            result = TranscriptionResult(error=str(exc))
        self._finish(session_id, result)

    def _finish(self, session_id: int, result: TranscriptionResult) -> None:
        text, error = result.text, result.error
        with self._lock:
            if not self._is_current(session_id, SessionState.TRANSCRIBING):
                return
            if text:
                self._transcript = append_segment(self._transcript, text)
                languages = [s.language for s in result.segments if s.language]
                if languages:
                    self._detected_language = languages[-1]
            transcript = self._transcript
            self._transition(SessionState.IDLE)
        if error:
            code = RECOGNITION_TIMEOUT if error == TRANSCRIPTION_TIMEOUT_ERROR else ASR_PROTOCOL_ERROR
            self._emit_error(code, error)
        if text:
            self._emit_transcript(transcript)

    def _collect_frames(self, frames: Iterator[AudioFrame], sink: bytearray) -> None:
        for frame in frames:
            sink.extend(frame.pcm16_bytes)
