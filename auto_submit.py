"""Hands-off auto submission: submit the turn after a pause in speech."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

log = logging.getLogger("lingua_tutor.auto_submit")

CountdownCallback = Callable[[Optional[int]], None]


class HandsOffAutoSubmitTimer:
    """Debounced, cancelable countdown.

    ``update`` must be called whenever one of the inputs changes (new
    transcript, mode toggled, recording state, submission flag). Every call
    cancels the pending deadline first, then arms a fresh one if the
    conditions hold, so at most one deadline is outstanding. The inputs are
    re-read when the deadline fires.
    """

    def __init__(
        self,
        submit: Callable[[], None],
        get_transcript: Callable[[], str],
        is_enabled: Callable[[], bool],
        is_recording: Callable[[], bool],
        is_submitting: Callable[[], bool],
        delay_s: float = 3.0,
        countdown_from: int = 3,
        on_countdown: Optional[CountdownCallback] = None,
    ) -> None:
        self._submit = submit
        self._get_transcript = get_transcript
        self._is_enabled = is_enabled
        self._is_recording = is_recording
        self._is_submitting = is_submitting
        self._delay_s = delay_s
        self._countdown_from = countdown_from
        self._on_countdown = on_countdown

        self._lock = threading.RLock()
        self._generation = 0
        self._deadline: Optional[threading.Timer] = None
        self._ticker_stop: Optional[threading.Event] = None
        self._last_armed = ""

    @property
    def pending(self) -> bool:
        deadline = self._deadline
        return deadline is not None and deadline.is_alive()

    def update(self) -> None:
        with self._lock:
            self._cancel_locked()
            transcript = self._get_transcript()
            if not self._can_arm(transcript):
                return
            self._last_armed = transcript
            self._generation += 1
            generation = self._generation
            self._deadline = threading.Timer(self._delay_s, self._on_deadline, args=(generation,))
            self._deadline.daemon = True
            self._ticker_stop = threading.Event()
            ticker = threading.Thread(
                target=self._run_countdown, args=(self._ticker_stop,), daemon=True
            )
            self._deadline.start()
            ticker.start()
        log.debug("event=auto_submit_armed transcript_len=%d", len(transcript))

    def cancel(self, forget_transcript: bool = False) -> None:
        with self._lock:
            self._cancel_locked()
            if forget_transcript:
                self._last_armed = ""

    def _can_arm(self, transcript: str) -> bool:
        return (
            self._is_enabled()
            and self._is_recording()
            and not self._is_submitting()
            and bool(transcript.strip())
            and transcript != self._last_armed
        )

    def _cancel_locked(self) -> None:
        self._generation += 1
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        if self._ticker_stop is not None:
            self._ticker_stop.set()
            self._ticker_stop = None
            self._emit_countdown(None)

    def _on_deadline(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._deadline = None
            if self._ticker_stop is not None:
                self._ticker_stop.set()
                self._ticker_stop = None
            self._emit_countdown(None)
            if not (
                self._is_enabled()
                and self._is_recording()
                and self._get_transcript().strip()
                and not self._is_submitting()
            ):
                log.debug("event=auto_submit_skipped")
                return
        log.info("event=auto_submit_fired")
        self._submit()

    def _run_countdown(self, stop: threading.Event) -> None:
        remaining = self._countdown_from
        tick_s = self._delay_s / max(self._countdown_from, 1)
        if stop.is_set():
            return
        self._emit_countdown(remaining)
        while not stop.wait(tick_s):
            remaining -= 1
            if remaining <= 0:
                return
            self._emit_countdown(remaining)

    def _emit_countdown(self, value: Optional[int]) -> None:
        if self._on_countdown:
            self._on_countdown(value)
