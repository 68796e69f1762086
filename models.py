"""Core data models shared by the client and the speech server."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"


class SpeechEventKind(str, Enum):
    RECOGNIZING = "recognizing"
    RECOGNIZED = "recognized"
    NOMATCH = "nomatch"
    CANCELED = "canceled"
    SESSION_STOPPED = "sessionStopped"
    STARTED = "started"
    ERROR = "error"


class StreamStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    FETCHING_CONTENT = "fetching_content"
    PREPARING_LESSON = "preparing_lesson"
    GENERATING_LESSON_PLAN = "generating_lesson_plan"
    STREAMING_RESPONSE = "streaming_response"
    DONE = "done"
    EVALUATION_COMPLETE = "evaluation_complete"


class ProviderName(str, Enum):
    AZURE = "azure"
    OPENAI = "openai"
    ELEVENLABS = "elevenlabs"
    DASHSCOPE = "dashscope"


DIALOGUE_COMPLETE_STATUS = "Dialogue Reading complete"
DIALOGUE_COMPLETE_MESSAGE = "Dialogue Reading completed"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 48000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class SpeechEvent:
    """One downstream message of the duplex speech protocol."""

    kind: SpeechEventKind
    text: str = ""
    detected_language: Optional[str] = None
    reason: str = ""
    error: Optional[str] = None
    message: str = ""

    @property
    def terminal(self) -> bool:
        return self.kind in (
            SpeechEventKind.CANCELED,
            SpeechEventKind.SESSION_STOPPED,
            SpeechEventKind.ERROR,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"event": self.kind.value}
        if self.kind in (SpeechEventKind.RECOGNIZING, SpeechEventKind.RECOGNIZED):
            data["text"] = self.text
        if self.kind == SpeechEventKind.RECOGNIZED and self.detected_language:
            data["detectedLanguage"] = self.detected_language
        if self.kind == SpeechEventKind.CANCELED:
            data["reason"] = self.reason
            if self.error:
                data["error"] = self.error
        if self.kind == SpeechEventKind.ERROR:
            data["message"] = self.message
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SpeechEvent":
        kind = SpeechEventKind(data["event"])
        return cls(
            kind=kind,
            text=str(data.get("text", "")),
            detected_language=data.get("detectedLanguage") or None,
            reason=str(data.get("reason", "")),
            error=data.get("error") or None,
            message=str(data.get("message", "")),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "SpeechEvent":
        return cls.from_dict(json.loads(raw))


@dataclass
class TurnEvent:
    """One event of the turn-submission stream."""

    type: str
    status: str = ""
    conversation_id: str = ""
    delta: str = ""
    error: str = ""

    STATUS = "status"
    CONVERSATION_ID = "conversation_id"
    DELTA = "response.output_text.delta"
    ERROR = "error"

    def to_dict(self) -> dict[str, Any]:
        if self.type == self.STATUS:
            return {"type": self.type, "status": self.status}
        if self.type == self.CONVERSATION_ID:
            return {"type": self.type, "conversationId": self.conversation_id}
        if self.type == self.DELTA:
            return {"type": self.type, "delta": self.delta}
        return {"type": self.type, "error": self.error}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TurnEvent":
        return cls(
            type=str(data.get("type", "")),
            status=str(data.get("status", "")),
            conversation_id=str(data.get("conversationId", "")),
            delta=str(data.get("delta", "")),
            error=str(data.get("error", "")),
        )


@dataclass
class Message:
    text: str
    is_agent: bool
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))


@dataclass
class ConversationData:
    conversation_id: str
    level: str = ""
    story: str = ""
    chapter: str = ""
    section: str = ""
    mode: str = ""
    messages: list[Message] = field(default_factory=list)


@dataclass
class TranscriptionOptions:
    sample_rate: int = 16000
    language: Optional[str] = None
    additional_languages: list[str] = field(default_factory=list)


@dataclass
class TranscriptionSegment:
    text: str
    language: Optional[str] = None


@dataclass
class TranscriptionResult:
    text: str = ""
    error: Optional[str] = None
    segments: list[TranscriptionSegment] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.error
