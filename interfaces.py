"""Protocol interfaces used by the controllers, the pipeline and the server."""

from __future__ import annotations

from typing import Callable, Iterator, Optional, Protocol

import numpy as np

from models import (
    AudioFrame,
    Message,
    SpeechEvent,
    TranscriptionOptions,
    TranscriptionResult,
    TurnEvent,
)


class AudioCapture(Protocol):
    @property
    def elapsed_seconds(self) -> int: ...

    def open(self, sample_rate: int, max_duration_s: int) -> Iterator[AudioFrame]: ...

    def close(self) -> None: ...

    def levels(self) -> np.ndarray: ...

    def set_callbacks(
        self,
        on_tick: Optional[Callable[[int], None]] = None,
        on_max_duration: Optional[Callable[[], None]] = None,
    ) -> None: ...


class SpeechConnection(Protocol):
    def send_frame(self, frame: AudioFrame) -> None: ...

    def close(self) -> None: ...


class SpeechTransport(Protocol):
    def connect(
        self,
        sample_rate: int,
        language: str,
        on_event: Callable[[SpeechEvent], None],
    ) -> SpeechConnection: ...


class BatchTranscriber(Protocol):
    def transcribe(self, pcm: bytes, sample_rate: int) -> TranscriptionResult: ...


class TurnStreamClient(Protocol):
    def stream_turn(
        self,
        level: str,
        story: str,
        chapter: str,
        section: str,
        query: str,
        conversation_id: Optional[str],
        user_id: str,
    ) -> Iterator[TurnEvent]: ...


class RecordingControl(Protocol):
    @property
    def is_recording(self) -> bool: ...

    @property
    def transcript(self) -> str: ...

    def start_session(self) -> None: ...

    def stop_session(self) -> None: ...

    def clear_transcript(self) -> None: ...


class ConversationStore(Protocol):
    level: str
    story: str
    chapter: str
    section: str
    learner_id: str
    last_client_status: str
    conversation_id: str
    is_submitting: bool

    def messages(self) -> list[Message]: ...

    def add_message(self, text: str, is_agent: bool) -> Message: ...

    def set_conversation_id(self, conversation_id: str) -> None: ...

    def save_conversation(self, conversation_id: str) -> None: ...

    def set_is_submitting(self, value: bool) -> None: ...


class TranscriptionProvider(Protocol):
    name: str

    def is_configured(self) -> bool: ...

    def transcribe(
        self, pcm: bytes, options: Optional[TranscriptionOptions] = None
    ) -> TranscriptionResult: ...


class StreamingRecognizer(Protocol):
    """Server-side continuous recogniser fed by pushed PCM."""

    def start(self, on_event: Callable[[SpeechEvent], None]) -> None: ...

    def push(self, pcm: bytes) -> None: ...

    def close(self) -> None: ...


RecognizerFactory = Callable[[int, str], StreamingRecognizer]
