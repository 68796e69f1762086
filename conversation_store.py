"""Session-level conversation store with optional JSON persistence."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from models import ConversationData, DIALOGUE_COMPLETE_STATUS, Message

log = logging.getLogger("lingua_tutor.conversation_store")

DEFAULT_MODE = "Teacher[Script]"


class ConversationStore:
    """Conversation id, chat history, lesson selection and submit flag.

    Every mutation goes through a method so the turn pipeline can treat the
    store as an injected dependency. When ``path`` is given the state is
    written after each mutation and restored on construction.
    """

    def __init__(self, path: Optional[Path] = None, learner_id: str = "L001") -> None:
        self._path = path
        self._lock = threading.RLock()
        self.learner_id = learner_id
        self.level = ""
        self.story = ""
        self.chapter = ""
        self.section = ""
        self.mode = DEFAULT_MODE
        self.last_client_status = ""
        self.conversation_id = ""
        self.transcription_language: Optional[str] = None
        self.is_submitting = False
        self._messages: list[Message] = []
        self._conversations: dict[str, ConversationData] = {}
        if self._path is not None:
            self._load(self._path)

    # -- lesson selection ------------------------------------------------------

    def set_level(self, level: str) -> None:
        with self._lock:
            self.level, self.story, self.section, self.chapter = level, "", "", ""
            self._persist()

    def set_story(self, story: str) -> None:
        with self._lock:
            self.story, self.section, self.chapter = story, "", ""
            self._persist()

    def set_section(self, section: str) -> None:
        with self._lock:
            self.section, self.chapter = section, ""
            self._persist()

    def set_chapter(self, chapter: str) -> None:
        with self._lock:
            self.chapter = chapter
            self._persist()

    def set_last_client_status(self, status: str) -> None:
        with self._lock:
            self.last_client_status = status
            self._persist()

    @property
    def has_lesson(self) -> bool:
        return bool(self.level and self.story and self.section and self.chapter)

    @property
    def is_dialogue_complete(self) -> bool:
        return self.last_client_status == DIALOGUE_COMPLETE_STATUS

    # -- chat ------------------------------------------------------------------

    def messages(self) -> list[Message]:
        with self._lock:
            return list(self._messages)

    def conversations(self) -> dict[str, ConversationData]:
        with self._lock:
            return dict(self._conversations)

    def add_message(self, text: str, is_agent: bool) -> Message:
        message = Message(text=text, is_agent=is_agent)
        with self._lock:
            self._messages.append(message)
            self._persist()
        return message

    def clear_messages(self) -> None:
        with self._lock:
            self._messages = []
            self._persist()

    def set_is_submitting(self, value: bool) -> None:
        self.is_submitting = value

    def set_conversation_id(self, conversation_id: str) -> None:
        """Switch conversations.

        The current history is saved under the current id first. A known id
        restores its lesson and history, ``""`` starts an empty conversation,
        and an unknown id (assigned by the server) keeps the current history.
        """
        with self._lock:
            current = self.conversation_id
            if conversation_id == current:
                return
            if current and self._messages:
                self._conversations[current] = self._snapshot(current)

            saved = self._conversations.get(conversation_id)
            self.conversation_id = conversation_id
            if saved is not None:
                self.level = saved.level
                self.story = saved.story
                self.section = saved.section
                self.chapter = saved.chapter
                self.mode = saved.mode
                self._messages = list(saved.messages)
            elif conversation_id == "":
                self._messages = []
            self._persist()
        log.info("event=conversation_switched from=%s to=%s", current or "-", conversation_id or "-")

    def save_conversation(self, conversation_id: str) -> None:
        with self._lock:
            self.conversation_id = conversation_id
            self._conversations[conversation_id] = self._snapshot(conversation_id)
            self._persist()

    def reset(self) -> None:
        with self._lock:
            self.level = self.story = self.section = self.chapter = ""
            self.conversation_id = ""
            self.last_client_status = ""
            self._messages = []
            self._conversations = {}
            self.is_submitting = False
            self._persist()

    def _snapshot(self, conversation_id: str) -> ConversationData:
        return ConversationData(
            conversation_id=conversation_id,
            level=self.level,
            story=self.story,
            chapter=self.chapter,
            section=self.section,
            mode=self.mode,
            messages=list(self._messages),
        )

    # -- persistence -----------------------------------------------------------

    def _persist(self) -> None:
        if self._path is None:
            return
        data = {
            "learner_id": self.learner_id,
            "level": self.level,
            "story": self.story,
            "chapter": self.chapter,
            "section": self.section,
            "mode": self.mode,
            "last_client_status": self.last_client_status,
            "conversation_id": self.conversation_id,
            "messages": [asdict(m) for m in self._messages],
            "conversations": {k: asdict(v) for k, v in self._conversations.items()},
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            log.warning("event=store_write_failed path=%s error=%s", self._path, exc)

    def _load(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return
        self.learner_id = str(data.get("learner_id", self.learner_id))
        self.level = str(data.get("level", ""))
        self.story = str(data.get("story", ""))
        self.chapter = str(data.get("chapter", ""))
        self.section = str(data.get("section", ""))
        self.mode = str(data.get("mode", DEFAULT_MODE))
        self.last_client_status = str(data.get("last_client_status", ""))
        self.conversation_id = str(data.get("conversation_id", ""))
        self._messages = [Message(**m) for m in data.get("messages", [])]
        self._conversations = {
            key: ConversationData(
                **{**value, "messages": [Message(**m) for m in value.get("messages", [])]}
            )
            for key, value in data.get("conversations", {}).items()
        }
