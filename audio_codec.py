"""PCM sample conversion and WAV container helpers."""

from __future__ import annotations

import base64
import io
import wave
from typing import Any

import numpy as np

SAMPLE_WIDTH = 2

MIN_PROCESSING_TIMEOUT_S = 5.0
PROCESSING_GRACE_S = 3.0


def float_to_pcm16(samples: Any) -> np.ndarray:
    """Convert float samples in [-1, 1] to signed 16-bit PCM.

    Negative samples scale by 0x8000 and non-negative ones by 0x7FFF, so
    -1.0 lands on -32768 and 1.0 on 32767.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return np.clip(np.rint(scaled), -0x8000, 0x7FFF).astype("<i2")


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = SAMPLE_WIDTH,
) -> bytes:
    """Wrap raw little-endian PCM bytes in a minimal WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()


def pcm_to_wav_base64(pcm: bytes, sample_rate: int = 16000, channels: int = 1) -> str:
    return base64.b64encode(pcm_to_wav(pcm, sample_rate, channels)).decode("ascii")


def pcm_duration_s(num_bytes: int, sample_rate: int, channels: int = 1) -> float:
    if sample_rate <= 0:
        return 0.0
    return num_bytes / float(sample_rate * channels * SAMPLE_WIDTH)


def processing_timeout_s(num_bytes: int, sample_rate: int) -> float:
    """Time to wait for a batch recognition: audio length plus grace, 5s floor."""
    return max(MIN_PROCESSING_TIMEOUT_S, pcm_duration_s(num_bytes, sample_rate) + PROCESSING_GRACE_S)


def normalize_language_code(code: str) -> str:
    """pt-BR -> pt, en_US -> en."""
    base = code.replace("_", "-").split("-")[0]
    return (base or code).lower()
