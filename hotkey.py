"""Global record hotkey based on pynput.

In toggle mode each press flips recording on or off; in push-to-talk
mode recording runs while the key is held.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore


class GlobalHotkeyAdapter:
    def __init__(self, hotkey_name: str = "Key.alt_l", push_to_talk: bool = False) -> None:
        self._hotkey_name = hotkey_name
        self._push_to_talk = push_to_talk
        self._listener: Optional[object] = None
        self._pressed = False
        self._lock = threading.Lock()
        self._on_start: Callable[[], None] = lambda: None
        self._on_stop: Callable[[], None] = lambda: None
        self._is_recording: Callable[[], bool] = lambda: False

    def start(
        self,
        on_start: Callable[[], None],
        on_stop: Callable[[], None],
        is_recording: Callable[[], bool],
    ) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        self._on_start = on_start
        self._on_stop = on_stop
        self._is_recording = is_recording
        self._listener = keyboard.Listener(on_press=self.handle_press, on_release=self.handle_release)
        self._listener.start()

    def handle_press(self, key: object) -> None:
        if str(key) != self._hotkey_name:
            return
        with self._lock:
            if self._pressed:
                return
            self._pressed = True
        if self._push_to_talk or not self._is_recording():
            self._on_start()
        else:
            self._on_stop()

    def handle_release(self, key: object) -> None:
        if str(key) != self._hotkey_name:
            return
        with self._lock:
            if not self._pressed:
                return
            self._pressed = False
        if self._push_to_talk:
            self._on_stop()

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None
