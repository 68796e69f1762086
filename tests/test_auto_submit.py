from __future__ import annotations

import threading
import time

from auto_submit import HandsOffAutoSubmitTimer


class Inputs:
    def __init__(self) -> None:
        self.transcript = ""
        self.enabled = True
        self.recording = True
        self.submitting = False
        self.submits = 0
        self.fired = threading.Event()

    def submit(self) -> None:
        self.submits += 1
        self.fired.set()


def _timer(inputs: Inputs, delay_s: float = 0.2, **kwargs) -> HandsOffAutoSubmitTimer:  # noqa: ANN003
    return HandsOffAutoSubmitTimer(
        submit=inputs.submit,
        get_transcript=lambda: inputs.transcript,
        is_enabled=lambda: inputs.enabled,
        is_recording=lambda: inputs.recording,
        is_submitting=lambda: inputs.submitting,
        delay_s=delay_s,
        **kwargs,
    )


def test_fires_after_quiet_period() -> None:
    inputs = Inputs()
    timer = _timer(inputs)

    inputs.transcript = "Olá"
    timer.update()
    assert timer.pending is True

    assert inputs.fired.wait(2.0)
    assert inputs.submits == 1
    time.sleep(0.05)
    assert timer.pending is False


def test_new_transcript_restarts_the_countdown() -> None:
    inputs = Inputs()
    timer = _timer(inputs, delay_s=0.3)

    inputs.transcript = "Olá"
    started = time.monotonic()
    timer.update()
    time.sleep(0.15)
    inputs.transcript = "Olá tudo bem"
    timer.update()

    assert not inputs.fired.wait(0.2)
    assert inputs.fired.wait(2.0)
    assert time.monotonic() - started >= 0.45
    assert inputs.submits == 1


def test_unchanged_transcript_does_not_rearm() -> None:
    inputs = Inputs()
    timer = _timer(inputs, delay_s=0.1)

    inputs.transcript = "Olá"
    timer.update()
    assert inputs.fired.wait(2.0)

    inputs.fired.clear()
    timer.update()
    assert timer.pending is False
    assert not inputs.fired.wait(0.3)
    assert inputs.submits == 1


def test_not_armed_when_disabled_blank_or_submitting() -> None:
    inputs = Inputs()
    timer = _timer(inputs)

    inputs.transcript = "   "
    timer.update()
    assert timer.pending is False

    inputs.transcript = "Olá"
    inputs.enabled = False
    timer.update()
    assert timer.pending is False

    inputs.enabled = True
    inputs.submitting = True
    timer.update()
    assert timer.pending is False

    inputs.submitting = False
    inputs.recording = False
    timer.update()
    assert timer.pending is False


def test_conditions_are_rechecked_when_deadline_fires() -> None:
    inputs = Inputs()
    timer = _timer(inputs, delay_s=0.1)

    inputs.transcript = "Olá"
    timer.update()
    inputs.recording = False

    time.sleep(0.3)
    assert inputs.submits == 0


def test_cancel_clears_pending_and_countdown() -> None:
    inputs = Inputs()
    countdown: list = []
    timer = _timer(inputs, delay_s=0.3, on_countdown=countdown.append)

    inputs.transcript = "Olá"
    timer.update()
    time.sleep(0.05)
    timer.cancel(forget_transcript=True)

    assert timer.pending is False
    assert not inputs.fired.wait(0.4)
    assert countdown[0] == 3
    assert countdown[-1] is None

    # Forgotten transcript can arm again.
    timer.update()
    assert timer.pending is True
    timer.cancel()


def test_countdown_reports_each_second_then_clears() -> None:
    inputs = Inputs()
    countdown: list = []
    timer = _timer(inputs, delay_s=0.3, countdown_from=3, on_countdown=countdown.append)

    inputs.transcript = "Olá"
    timer.update()
    assert inputs.fired.wait(2.0)

    values = [v for v in countdown if v is not None]
    assert values[0] == 3
    assert values == sorted(values, reverse=True)
    assert countdown[-1] is None


def test_at_most_one_deadline_outstanding() -> None:
    inputs = Inputs()
    timer = _timer(inputs, delay_s=0.1)

    for i in range(5):
        inputs.transcript = f"frase {i}"
        timer.update()

    assert inputs.fired.wait(2.0)
    time.sleep(0.2)
    assert inputs.submits == 1
