from __future__ import annotations

import threading
import time

from conversation_store import ConversationStore
from errors import TransportError
from models import DIALOGUE_COMPLETE_MESSAGE, DIALOGUE_COMPLETE_STATUS, StreamStatus, TurnEvent
from turn_pipeline import TurnSubmissionPipeline


class FakeRecording:
    def __init__(self, transcript: str = "", recording: bool = True) -> None:
        self.transcript = transcript
        self.is_recording = recording
        self.starts = 0
        self.stops = 0
        self.started = threading.Event()

    def start_session(self) -> None:
        self.starts += 1
        self.is_recording = True
        self.started.set()

    def stop_session(self) -> None:
        self.stops += 1
        self.is_recording = False

    def clear_transcript(self) -> None:
        self.transcript = ""


class FakeTurnClient:
    def __init__(self, events: list[TurnEvent] | None = None, raises: Exception | None = None) -> None:
        self.events = events or []
        self.raises = raises
        self.calls: list[dict] = []
        self.gate: threading.Event | None = None

    def stream_turn(self, **kwargs):  # noqa: ANN003, ANN201
        self.calls.append(kwargs)
        if self.gate is not None:
            self.gate.wait(2.0)
        for event in self.events:
            yield event
        if self.raises is not None:
            raise self.raises


class FakeTimer:
    def __init__(self) -> None:
        self.cancels: list[bool] = []

    def cancel(self, forget_transcript: bool = False) -> None:
        self.cancels.append(forget_transcript)


def _status(value: str) -> TurnEvent:
    return TurnEvent(type=TurnEvent.STATUS, status=value)


def _delta(text: str) -> TurnEvent:
    return TurnEvent(type=TurnEvent.DELTA, delta=text)


def _store() -> ConversationStore:
    store = ConversationStore()
    store.set_level("A1")
    store.set_story("Mercado")
    store.set_section("Dialogue")
    store.set_chapter("1")
    return store


def _reply(*deltas: str, conversation_id: str | None = None, done: bool = True) -> list[TurnEvent]:
    events = [_status("loading")]
    if conversation_id:
        events.append(TurnEvent(type=TurnEvent.CONVERSATION_ID, conversation_id=conversation_id))
    events.append(_status("streaming_response"))
    events.extend(_delta(d) for d in deltas)
    if done:
        events.append(_status("done"))
    return events


def test_streamed_deltas_become_one_agent_message() -> None:
    store = _store()
    recording = FakeRecording("Olá")
    client = FakeTurnClient(_reply("Hel", "lo!"))
    statuses: list[StreamStatus] = []
    pipeline = TurnSubmissionPipeline(store, client, recording, on_status=statuses.append)

    assert pipeline.submit() is True

    assert [(m.text, m.is_agent) for m in store.messages()] == [("Olá", False), ("Hello!", True)]
    assert client.calls[0]["query"] == "Olá"
    assert client.calls[0]["user_id"] == "L001"
    assert client.calls[0]["conversation_id"] is None
    assert recording.stops == 1
    assert recording.transcript == ""
    assert pipeline.streaming_text == ""
    assert pipeline.in_flight is False
    assert store.is_submitting is False
    assert statuses[0] == StreamStatus.LOADING
    assert StreamStatus.DONE in statuses
    assert pipeline.status == StreamStatus.IDLE


def test_conversation_id_is_adopted_and_saved() -> None:
    store = _store()
    client = FakeTurnClient(_reply("Oi", conversation_id="conv-9"))
    pipeline = TurnSubmissionPipeline(store, client, FakeRecording("Olá"))

    pipeline.submit()

    assert store.conversation_id == "conv-9"
    saved = store.conversations()["conv-9"]
    assert [m.text for m in saved.messages] == ["Olá", "Oi"]


def test_error_event_adds_error_message() -> None:
    store = _store()
    client = FakeTurnClient([_status("loading"), _delta("Hel"), TurnEvent(type=TurnEvent.ERROR, error="model overloaded")])
    pipeline = TurnSubmissionPipeline(store, client, FakeRecording("Olá"))

    assert pipeline.submit() is True

    last = store.messages()[-1]
    assert last.is_agent is True
    assert last.text == "Error: model overloaded"
    assert pipeline.streaming_text == ""
    assert pipeline.in_flight is False
    assert store.is_submitting is False


def test_transport_failure_adds_error_message() -> None:
    store = _store()
    client = FakeTurnClient(raises=TransportError("HTTP 503"))
    pipeline = TurnSubmissionPipeline(store, client, FakeRecording("Olá"))

    pipeline.submit()

    assert store.messages()[-1].text == "Error: HTTP 503"
    assert pipeline.in_flight is False


def test_stream_without_done_finalizes_without_restart() -> None:
    store = _store()
    recording = FakeRecording("Olá")
    client = FakeTurnClient(_reply("Até", " logo", done=False))
    pipeline = TurnSubmissionPipeline(
        store, client, recording, is_hands_off=lambda: True, restart_delay_s=0.01
    )

    pipeline.submit()

    assert store.messages()[-1].text == "Até logo"
    assert not recording.started.wait(0.2)


def test_hands_off_restarts_recording_after_reply() -> None:
    store = _store()
    recording = FakeRecording("Olá", recording=True)
    client = FakeTurnClient(_reply("Oi"))
    pipeline = TurnSubmissionPipeline(
        store, client, recording, is_hands_off=lambda: True, restart_delay_s=0.01
    )

    pipeline.submit()

    assert recording.started.wait(2.0)
    assert recording.starts == 1


def test_no_restart_when_not_recording_before_submit() -> None:
    store = _store()
    recording = FakeRecording("Olá", recording=False)
    pipeline = TurnSubmissionPipeline(
        store, FakeTurnClient(_reply("Oi")), recording, is_hands_off=lambda: True, restart_delay_s=0.01
    )

    pipeline.submit()

    assert not recording.started.wait(0.2)


def test_refused_without_lesson() -> None:
    store = ConversationStore()
    client = FakeTurnClient(_reply("Oi"))
    pipeline = TurnSubmissionPipeline(store, client, FakeRecording("Olá"))

    assert pipeline.submit() is False
    assert client.calls == []


def test_refused_when_nothing_to_send() -> None:
    store = _store()
    store.add_message("Olá", is_agent=False)
    client = FakeTurnClient(_reply("Oi"))
    pipeline = TurnSubmissionPipeline(store, client, FakeRecording(""))

    assert pipeline.can_submit() is False
    assert pipeline.submit() is False
    assert client.calls == []


def test_empty_chat_can_start_the_lesson() -> None:
    store = _store()
    client = FakeTurnClient(_reply("Bem-vindo!"))
    pipeline = TurnSubmissionPipeline(store, client, FakeRecording(""))

    assert pipeline.submit() is True
    assert [(m.text, m.is_agent) for m in store.messages()] == [("Bem-vindo!", True)]
    assert client.calls[0]["query"] == ""


def test_dialogue_complete_sends_completion_message() -> None:
    store = ConversationStore()
    store.add_message("earlier", is_agent=True)
    store.set_last_client_status(DIALOGUE_COMPLETE_STATUS)
    pipeline = TurnSubmissionPipeline(store, FakeTurnClient(_reply("Parabéns")), FakeRecording(""))

    assert pipeline.submit() is True
    texts = [m.text for m in store.messages()]
    assert texts[-2:] == [DIALOGUE_COMPLETE_MESSAGE, "Parabéns"]


def test_second_submit_refused_while_in_flight() -> None:
    store = _store()
    client = FakeTurnClient(_reply("Oi"))
    client.gate = threading.Event()
    pipeline = TurnSubmissionPipeline(store, client, FakeRecording("Olá"))

    worker = threading.Thread(target=pipeline.submit)
    worker.start()
    deadline = time.time() + 2.0
    while not pipeline.in_flight and time.time() < deadline:
        time.sleep(0.01)

    assert pipeline.in_flight is True
    assert pipeline.submit() is False

    client.gate.set()
    worker.join(2.0)
    assert len(client.calls) == 1
    assert pipeline.in_flight is False


def test_submit_cancels_pending_auto_submit() -> None:
    timer = FakeTimer()
    pipeline = TurnSubmissionPipeline(_store(), FakeTurnClient(_reply("Oi")), FakeRecording("Olá"))
    pipeline.attach_timer(timer)  # type: ignore[arg-type]

    pipeline.submit()

    assert timer.cancels == [True]


def test_evaluation_complete_sets_flag() -> None:
    calls: list[bool] = []
    events = _reply("Oi") + [_status("evaluation_complete")]
    pipeline = TurnSubmissionPipeline(
        _store(), FakeTurnClient(events), FakeRecording("Olá"), on_evaluation_updated=lambda: calls.append(True)
    )

    pipeline.submit()

    assert pipeline.evaluation_updated is True
    assert calls == [True]


def test_reset_clears_store_and_recording() -> None:
    store = _store()
    store.add_message("Olá", is_agent=False)
    recording = FakeRecording("algo")
    pipeline = TurnSubmissionPipeline(store, FakeTurnClient(), recording)

    pipeline.reset()

    assert store.messages() == []
    assert recording.transcript == ""
    assert recording.stops == 1
    assert pipeline.status == StreamStatus.IDLE


class ScriptedTurnClient:
    """Serves one generator function per call to ``stream_turn``."""

    def __init__(self, *scripts) -> None:  # noqa: ANN002
        self.scripts = list(scripts)

    def stream_turn(self, **kwargs):  # noqa: ANN003, ANN201
        return self.scripts.pop(0)()


def test_late_events_from_finished_turn_do_not_touch_next_turn() -> None:
    first_done = threading.Event()
    resume_first = threading.Event()
    second_started = threading.Event()
    resume_second = threading.Event()

    def first_turn():  # noqa: ANN202
        yield _delta("First")
        yield _status("done")
        first_done.set()
        resume_first.wait(2.0)
        yield _delta(" trailing")
        yield _status("loading")
        raise TransportError("late failure after done")

    def second_turn():  # noqa: ANN202
        yield _status("streaming_response")
        yield _delta("Hel")
        second_started.set()
        resume_second.wait(2.0)
        yield _delta("lo!")
        yield _status("done")

    store = _store()
    recording = FakeRecording("Olá")
    pipeline = TurnSubmissionPipeline(store, ScriptedTurnClient(first_turn, second_turn), recording)

    first = threading.Thread(target=pipeline.submit)
    first.start()
    assert first_done.wait(2.0)

    recording.transcript = "Tudo bem?"
    second = threading.Thread(target=pipeline.submit)
    second.start()
    assert second_started.wait(2.0)

    resume_first.set()
    first.join(2.0)
    assert pipeline.streaming_text == "Hel"
    assert pipeline.status == StreamStatus.STREAMING_RESPONSE
    assert pipeline.in_flight is True

    resume_second.set()
    second.join(2.0)
    agent = [m.text for m in store.messages() if m.is_agent]
    assert agent == ["First", "Hello!"]
    assert pipeline.in_flight is False


def test_evaluation_after_done_still_refreshes() -> None:
    calls: list[bool] = []
    events = _reply("Oi") + [_delta("ignored"), _status("evaluation_complete")]
    pipeline = TurnSubmissionPipeline(
        _store(), FakeTurnClient(events), FakeRecording("Olá"), on_evaluation_updated=lambda: calls.append(True)
    )

    pipeline.submit()

    assert calls == [True]
    assert pipeline.streaming_text == ""
