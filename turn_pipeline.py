"""One conversational turn: stop recording, stream the reply, finalize.

The pipeline never touches the capture device or transport directly; it
goes through the recording controller. Conversation state lives in the
injected store.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from auto_submit import HandsOffAutoSubmitTimer
from errors import TurnSubmissionFailure
from interfaces import ConversationStore, RecordingControl, TurnStreamClient
from models import DIALOGUE_COMPLETE_MESSAGE, DIALOGUE_COMPLETE_STATUS, StreamStatus, TurnEvent

log = logging.getLogger("lingua_tutor.turn_pipeline")

StatusCallback = Callable[[StreamStatus], None]
TextCallback = Callable[[str], None]


class TurnSubmissionPipeline:
    def __init__(
        self,
        store: ConversationStore,
        turn_client: TurnStreamClient,
        recording: RecordingControl,
        is_hands_off: Callable[[], bool] = lambda: False,
        timer: Optional[HandsOffAutoSubmitTimer] = None,
        restart_delay_s: float = 0.3,
        on_status: Optional[StatusCallback] = None,
        on_streaming_text: Optional[TextCallback] = None,
        on_evaluation_updated: Optional[Callable[[], None]] = None,
    ) -> None:
        self._store = store
        self._turn_client = turn_client
        self._recording = recording
        self._is_hands_off = is_hands_off
        self._timer = timer
        self._restart_delay_s = restart_delay_s
        self._on_status = on_status
        self._on_streaming_text = on_streaming_text
        self._on_evaluation_updated = on_evaluation_updated

        self._lock = threading.Lock()
        self._active_turn = 0
        self._turn_counter = 0
        self._accumulator = ""
        self._status = StreamStatus.IDLE
        self.evaluation_updated = False

    @property
    def in_flight(self) -> bool:
        return self._active_turn != 0

    @property
    def status(self) -> StreamStatus:
        return self._status

    @property
    def streaming_text(self) -> str:
        return self._accumulator

    def attach_timer(self, timer: HandsOffAutoSubmitTimer) -> None:
        self._timer = timer

    def can_submit(self) -> bool:
        store = self._store
        chat_empty = not store.messages() and not self._accumulator
        return (
            store.last_client_status == DIALOGUE_COMPLETE_STATUS
            or bool(self._recording.transcript.strip())
            or chat_empty
        )

    def submit(self) -> bool:
        """Run one turn to completion. Returns False when refused."""
        store = self._store
        with self._lock:
            if self._active_turn or store.is_submitting:
                log.debug("event=submit_refused reason=in_flight")
                return False
            dialogue_complete = store.last_client_status == DIALOGUE_COMPLETE_STATUS
            if not self.can_submit():
                log.debug("event=submit_refused reason=nothing_to_send")
                return False
            if not (store.level and store.story and store.section and store.chapter) and not dialogue_complete:
                log.debug("event=submit_refused reason=lesson_unset")
                return False
            self._turn_counter += 1
            turn = self._turn_counter
            self._active_turn = turn

        # Decided before teardown: stopping changes the observable recording state.
        should_restart = self._is_hands_off() and self._recording.is_recording
        query = self._recording.transcript.strip()
        if self._timer is not None:
            self._timer.cancel(forget_transcript=True)
        self._recording.stop_session()

        store.set_is_submitting(True)
        self._set_status(StreamStatus.LOADING)
        if query:
            store.add_message(query, False)
        elif dialogue_complete:
            store.add_message(DIALOGUE_COMPLETE_MESSAGE, False)

        self._recording.clear_transcript()
        self._set_streaming_text("")
        log.info("event=turn_started turn=%d query_len=%d restart=%s", turn, len(query), should_restart)

        try:
            self._consume(turn, query, should_restart)
        except Exception as exc:
            if self._active_turn == turn:
                log.warning("event=turn_failed turn=%d error=%s", turn, exc)
                self._set_streaming_text("")
                store.add_message(f"Error: {exc}", True)
            else:
                log.warning("event=turn_stream_failed_after_done turn=%d error=%s", turn, exc)
        finally:
            self._release(turn)
            if not self._active_turn:
                self._set_status(StreamStatus.IDLE)
        return True

    def reset(self) -> None:
        if self._timer is not None:
            self._timer.cancel(forget_transcript=True)
        self._recording.stop_session()
        self._recording.clear_transcript()
        self._set_streaming_text("")
        self._set_status(StreamStatus.IDLE)
        self._store.reset()

    def _consume(self, turn: int, query: str, should_restart: bool) -> None:
        store = self._store
        finalized = False
        events = self._turn_client.stream_turn(
            level=store.level,
            story=store.story,
            chapter=store.chapter,
            section=store.section,
            query=query,
            conversation_id=store.conversation_id or None,
            user_id=store.learner_id,
        )
        for event in events:
            if finalized:
                # The next turn may already own the accumulator and status.
                self._after_done(turn, event)
                continue
            if event.type == TurnEvent.STATUS:
                status = self._parse_status(event.status)
                if status is None:
                    continue
                self._set_status(status)
                if status == StreamStatus.DONE:
                    self._finalize(turn, should_restart)
                    finalized = True
                elif status == StreamStatus.EVALUATION_COMPLETE:
                    self._evaluation_complete()
            elif event.type == TurnEvent.CONVERSATION_ID:
                if event.conversation_id:
                    store.set_conversation_id(event.conversation_id)
            elif event.type == TurnEvent.DELTA:
                self._set_streaming_text(self._accumulator + event.delta)
            elif event.type == TurnEvent.ERROR:
                raise TurnSubmissionFailure(event.error or "turn stream reported an error")
        if not finalized:
            log.info("event=turn_stream_ended_without_done turn=%d", turn)
            self._finalize(turn, should_restart=False)

    def _after_done(self, turn: int, event: TurnEvent) -> None:
        if event.type == TurnEvent.STATUS and event.status == StreamStatus.EVALUATION_COMPLETE.value:
            if not self._active_turn:
                self._set_status(StreamStatus.EVALUATION_COMPLETE)
            self._evaluation_complete()
            return
        log.debug("event=event_after_done_ignored turn=%d type=%s", turn, event.type)

    def _evaluation_complete(self) -> None:
        self.evaluation_updated = True
        if self._on_evaluation_updated:
            self._on_evaluation_updated()

    def _finalize(self, turn: int, should_restart: bool) -> None:
        store = self._store
        # Snapshot and clear before any flag lets the next turn in.
        with self._lock:
            final_text = self._accumulator
            self._accumulator = ""
        if self._on_streaming_text:
            self._on_streaming_text("")
        if final_text:
            store.add_message(final_text, True)
            if store.conversation_id:
                store.save_conversation(store.conversation_id)
        self._release(turn)
        log.info("event=turn_finalized turn=%d reply_len=%d", turn, len(final_text))
        if should_restart:
            restart = threading.Timer(self._restart_delay_s, self._restart_recording)
            restart.daemon = True
            restart.start()

    def _restart_recording(self) -> None:
        if not self._is_hands_off() or self.in_flight:
            return
        self._recording.start_session()

    def _release(self, turn: int) -> None:
        with self._lock:
            if self._active_turn != turn:
                return
            self._active_turn = 0
        self._store.set_is_submitting(False)

    def _parse_status(self, raw: str) -> Optional[StreamStatus]:
        try:
            return StreamStatus(raw)
        except ValueError:
            log.debug("event=unknown_status status=%s", raw)
            return None

    def _set_status(self, status: StreamStatus) -> None:
        self._status = status
        if self._on_status:
            self._on_status(status)

    def _set_streaming_text(self, text: str) -> None:
        self._accumulator = text
        if self._on_streaming_text:
            self._on_streaming_text(text)
