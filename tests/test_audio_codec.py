from __future__ import annotations

import base64
import io
import wave

import numpy as np

from audio_codec import (
    float_to_pcm16,
    normalize_language_code,
    pcm_duration_s,
    pcm_to_wav,
    pcm_to_wav_base64,
    processing_timeout_s,
)


def test_float_to_pcm16_scales_asymmetrically() -> None:
    samples = float_to_pcm16([-1.0, 0.0, 1.0])
    assert samples.dtype == np.dtype("<i2")
    assert samples.tolist() == [-32768, 0, 32767]


def test_float_to_pcm16_clips_out_of_range_input() -> None:
    assert float_to_pcm16([-2.5, 3.0]).tolist() == [-32768, 32767]


def test_float_to_pcm16_rounds_to_nearest() -> None:
    # 0.25 * 32767 = 8191.75, -0.25 * 32768 = -8192
    assert float_to_pcm16([0.25, -0.25]).tolist() == [8192, -8192]


def test_pcm_to_wav_header_matches_format() -> None:
    pcm = b"\x00\x00" * 480
    wav = pcm_to_wav(pcm, sample_rate=48000)

    assert wav[:4] == b"RIFF"
    with wave.open(io.BytesIO(wav), "rb") as wf:
        assert wf.getframerate() == 48000
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.readframes(wf.getnframes()) == pcm


def test_pcm_to_wav_base64_decodes_to_wav() -> None:
    decoded = base64.b64decode(pcm_to_wav_base64(b"\x00\x00" * 160))
    assert decoded[:4] == b"RIFF"


def test_duration_and_processing_timeout() -> None:
    three_seconds = 48000 * 2 * 3
    assert pcm_duration_s(three_seconds, 48000) == 3.0
    assert processing_timeout_s(three_seconds, 48000) == 6.0
    assert processing_timeout_s(100, 48000) == 5.0
    assert pcm_duration_s(100, 0) == 0.0


def test_normalize_language_code() -> None:
    assert normalize_language_code("pt-BR") == "pt"
    assert normalize_language_code("en_US") == "en"
    assert normalize_language_code("es") == "es"
