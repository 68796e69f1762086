"""Turn responder: produces the event stream for one tutoring turn."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional, Protocol

from pydantic import BaseModel, Field

from models import StreamStatus, TurnEvent

try:
    import openai
except Exception:  # pragma: no cover
    openai = None  # type: ignore

log = logging.getLogger("lingua_tutor.responder")

DEFAULT_INSTRUCTIONS = (
    "You are a patient spoken-language tutor. Teach from the lesson context, "
    "keep replies short enough to be read aloud, and ask one question at a time."
)


class TurnRequest(BaseModel):
    level: str
    story: str
    chapter: str
    section: str
    query: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    user_id: Optional[str] = Field(default=None, alias="userId")

    model_config = {"populate_by_name": True}


class TurnResponder(Protocol):
    def stream(self, request: TurnRequest) -> AsyncIterator[TurnEvent]: ...


class LessonContentSource(Protocol):
    def get_chapter_text(self, level: str, story: str, section: str, chapter: str) -> Optional[str]: ...


class NoLessonContent:
    def get_chapter_text(self, level: str, story: str, section: str, chapter: str) -> Optional[str]:
        return None


def status_event(status: StreamStatus) -> TurnEvent:
    return TurnEvent(type=TurnEvent.STATUS, status=status.value)


class OpenAITurnResponder:
    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4.1-mini",
        prompt_id: Optional[str] = None,
        content: Optional[LessonContentSource] = None,
        client: Any = None,
    ) -> None:
        self._api_key = api_key or ""
        self._model = model
        self._prompt_id = prompt_id
        self._content = content or NoLessonContent()
        self._client = client

    async def stream(self, request: TurnRequest) -> AsyncIterator[TurnEvent]:
        yield status_event(StreamStatus.LOADING)
        try:
            client = self._get_client()
            conversation_id = request.conversation_id
            if not conversation_id:
                conversation = await client.conversations.create()
                conversation_id = conversation.id
            yield TurnEvent(type=TurnEvent.CONVERSATION_ID, conversation_id=conversation_id)

            yield status_event(StreamStatus.FETCHING_CONTENT)
            script = self._content.get_chapter_text(
                request.level, request.story, request.section, request.chapter
            )

            yield status_event(StreamStatus.PREPARING_LESSON)
            user_context = {
                "level": request.level,
                "story": request.story,
                "chapter": request.chapter,
                "section": request.section,
                "relevant_kb_info": {"scripts": [script] if script else []},
            }

            yield status_event(StreamStatus.STREAMING_RESPONSE)
            stream = await client.responses.create(
                conversation=conversation_id,
                stream=True,
                **self._request_params(user_context, request.query or ""),
            )
            async for event in stream:
                if getattr(event, "type", "") == "response.output_text.delta":
                    yield TurnEvent(type=TurnEvent.DELTA, delta=event.delta)

            yield status_event(StreamStatus.DONE)
        except Exception as exc:
            log.error("event=turn_stream_failed error=%s", exc)
            yield TurnEvent(type=TurnEvent.ERROR, error=str(exc) or "Unknown error")

    def _request_params(self, user_context: dict[str, Any], query: str) -> dict[str, Any]:
        if self._prompt_id:
            return {
                "prompt": {
                    "id": self._prompt_id,
                    "variables": {
                        "user_context": json.dumps(user_context, ensure_ascii=False),
                        "user_message": query,
                    },
                }
            }
        return {
            "model": self._model,
            "instructions": DEFAULT_INSTRUCTIONS + "\n\nLesson context:\n" + json.dumps(user_context, ensure_ascii=False),
            "input": query or "Start the lesson.",
        }

    def _get_client(self) -> Any:
        if self._client is None:
            if openai is None:
                raise RuntimeError("openai is not installed")
            if not self._api_key:
                raise RuntimeError("OpenAI API key not configured")
            self._client = openai.AsyncOpenAI(api_key=self._api_key)
        return self._client
