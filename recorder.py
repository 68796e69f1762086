"""Microphone capture engine.

Owns the input device stream, converts float samples to int16 PCM frames,
keeps the latest buffer for level meters and runs the elapsed-seconds
clock that enforces the maximum recording duration.
"""

from __future__ import annotations

import logging
import threading
import time
from queue import Queue
from typing import Any, Callable, Iterator, Optional

import numpy as np

from audio_codec import float_to_pcm16
from errors import DeviceUnavailable
from models import AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

log = logging.getLogger("lingua_tutor.recorder")

TickCallback = Callable[[int], None]


class SoundDeviceCapture:
    def __init__(
        self,
        chunk_size: int = 4096,
        channels: int = 1,
        tick_interval_s: float = 1.0,
        on_tick: Optional[TickCallback] = None,
        on_max_duration: Optional[Callable[[], None]] = None,
    ) -> None:
        self.chunk_size = chunk_size
        self.channels = channels
        self.sample_rate = 48000
        self.max_duration_s = 30
        self._tick_interval_s = tick_interval_s
        self._on_tick = on_tick
        self._on_max_duration = on_max_duration

        self._lock = threading.Lock()
        self._stream: Any = None
        self._running = False
        self._cleaned = True
        self._queue: Queue[AudioFrame | None] = Queue()
        self._levels = np.zeros(0, dtype=np.float32)
        self._waveform = np.zeros(0, dtype=np.float32)
        self._elapsed = 0
        self._clock_stop = threading.Event()
        self._clock: Optional[threading.Thread] = None

    @property
    def elapsed_seconds(self) -> int:
        return self._elapsed

    @property
    def is_open(self) -> bool:
        return self._running

    def set_callbacks(
        self,
        on_tick: Optional[TickCallback] = None,
        on_max_duration: Optional[Callable[[], None]] = None,
    ) -> None:
        self._on_tick = on_tick
        self._on_max_duration = on_max_duration

    def open(self, sample_rate: int = 48000, max_duration_s: int = 30) -> Iterator[AudioFrame]:
        """Acquire the microphone and return the frame sequence.

        The sequence ends when ``close`` is called. Raises
        ``DeviceUnavailable`` when no input device can be opened.
        """
        with self._lock:
            if self._running:
                raise DeviceUnavailable("capture is already open")
            if sd is None:
                raise DeviceUnavailable("sounddevice is not installed")
            self.sample_rate = sample_rate
            self.max_duration_s = max_duration_s
            self._queue = Queue()
            self._elapsed = 0
            self._levels = np.zeros(0, dtype=np.float32)
            self._waveform = np.zeros(0, dtype=np.float32)
            try:
                self._stream = sd.InputStream(
                    samplerate=sample_rate,
                    channels=self.channels,
                    dtype="float32",
                    blocksize=self.chunk_size,
                    callback=self._on_audio,
                )
                self._stream.start()
            except Exception as exc:
                self._stream = None
                log.warning("event=capture_open_failed error=%s", exc)
                raise DeviceUnavailable(str(exc)) from exc
            self._running = True
            self._cleaned = False
            self._clock_stop = threading.Event()
            self._clock = threading.Thread(target=self._run_clock, daemon=True)
            self._clock.start()
            log.info("event=capture_open sample_rate=%d max_duration_s=%d", sample_rate, max_duration_s)
            return self._frames(self._queue)

    def close(self) -> None:
        """Release the device. Safe to call any number of times."""
        with self._lock:
            if self._cleaned:
                return
            self._cleaned = True
            self._running = False
            self._clock_stop.set()
            stream = self._stream
            self._stream = None
            if stream is not None:
                try:
                    stream.stop()
                    stream.close()
                except Exception as exc:
                    log.warning("event=capture_close_failed error=%s", exc)
            self._queue.put_nowait(None)
            clock = self._clock
            self._clock = None
        if clock is not None and clock is not threading.current_thread():
            clock.join(timeout=self._tick_interval_s * 2)
        log.info("event=capture_closed elapsed_s=%d", self._elapsed)

    def levels(self) -> np.ndarray:
        """Magnitude spectrum of the most recent block."""
        return self._levels.copy()

    def waveform(self) -> np.ndarray:
        return self._waveform.copy()

    def _frames(self, queue: Queue[AudioFrame | None]) -> Iterator[AudioFrame]:
        while True:
            frame = queue.get()
            if frame is None:  # Sentinel
                return
            yield frame

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running:
            return
        if status:
            log.debug("event=capture_status status=%s", status)
        block = np.asarray(indata, dtype=np.float32)
        mono = block[:, 0] if block.ndim == 2 else block
        self._waveform = mono.copy()
        self._levels = np.abs(np.fft.rfft(mono)).astype(np.float32) / max(len(mono), 1)
        frame = AudioFrame(
            pcm16_bytes=float_to_pcm16(mono).tobytes(),
            sample_rate=self.sample_rate,
            channels=1,
            timestamp_ms=int(time.time() * 1000),
        )
        self._queue.put_nowait(frame)

    def _run_clock(self) -> None:
        stop = self._clock_stop
        while not stop.wait(self._tick_interval_s):
            self._elapsed += 1
            if self._on_tick:
                self._on_tick(self._elapsed)
            if self._elapsed >= self.max_duration_s:
                log.info("event=capture_max_duration elapsed_s=%d", self._elapsed)
                if self._on_max_duration:
                    self._on_max_duration()
                return
