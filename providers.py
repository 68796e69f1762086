"""Batch transcription providers and the registry that selects them.

Every provider takes raw 16-bit mono PCM plus ``TranscriptionOptions`` and
returns a ``TranscriptionResult``; failures are reported in ``error``
instead of raised.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import httpx

from audio_codec import normalize_language_code, pcm_to_wav, pcm_to_wav_base64, processing_timeout_s
from errors import TRANSCRIPTION_TIMEOUT_ERROR, BackendNotConfigured
from interfaces import TranscriptionProvider
from models import ProviderName, TranscriptionOptions, TranscriptionResult, TranscriptionSegment
from recognizer import build_azure_recognizer, detected_language_of, speechsdk
from settings import Settings

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

try:
    import openai
except Exception:  # pragma: no cover
    openai = None  # type: ignore

log = logging.getLogger("lingua_tutor.providers")

ELEVENLABS_STT_URL = "https://api.elevenlabs.io/v1/speech-to-text"


class AzureTranscriptionProvider:
    """Continuous recognition over a pushed buffer with language id.

    Waits ``max(5s, audio + 3s)`` for the service to report end of stream,
    then stops recognition explicitly; ``hard_timeout_s`` bounds the whole
    call even if the stop never completes.
    """

    name = "Azure Speech Services"

    def __init__(
        self,
        key: Optional[str],
        region: Optional[str],
        default_language: str = "pt-BR",
        additional_languages: Optional[list[str]] = None,
        hard_timeout_s: float = 45.0,
    ) -> None:
        self._key = key or ""
        self._region = region or ""
        self._default_language = default_language
        self._additional_languages = additional_languages if additional_languages is not None else ["en-US"]
        self._hard_timeout_s = hard_timeout_s

    def is_configured(self) -> bool:
        return bool(self._key and self._region)

    def transcribe(self, pcm: bytes, options: Optional[TranscriptionOptions] = None) -> TranscriptionResult:
        if not self.is_configured():
            return TranscriptionResult(error="Azure Speech credentials not configured")
        options = options or TranscriptionOptions()
        primary = options.language or self._default_language
        extra = options.additional_languages or self._additional_languages
        languages = [primary] + [lang for lang in extra if lang != primary]

        try:
            recognizer, push_stream = build_azure_recognizer(
                self._key, self._region, options.sample_rate, languages
            )
        except BackendNotConfigured as exc:
            return TranscriptionResult(error=str(exc))

        segments: list[TranscriptionSegment] = []
        done = threading.Event()
        failure: list[str] = []

        def _recognized(evt: Any) -> None:
            if evt.result.reason == speechsdk.ResultReason.RecognizedSpeech and evt.result.text:
                segments.append(
                    TranscriptionSegment(text=evt.result.text, language=detected_language_of(evt.result))
                )

        def _canceled(evt: Any) -> None:
            details = evt.cancellation_details
            if details.reason == speechsdk.CancellationReason.Error:
                log.error("event=batch_canceled provider=azure error=%s", details.error_details)
                failure.append(details.error_details or "Unknown transcription error")
            done.set()

        recognizer.recognized.connect(_recognized)
        recognizer.canceled.connect(_canceled)
        recognizer.session_stopped.connect(lambda evt: done.set())

        try:
            try:
                recognizer.start_continuous_recognition_async().get()
            except Exception as exc:
                log.error("event=batch_start_failed provider=azure error=%s", exc)
                return TranscriptionResult(error=str(exc))

            push_stream.write(pcm)
            push_stream.close()

            window = min(processing_timeout_s(len(pcm), options.sample_rate), self._hard_timeout_s)
            log.info("event=batch_started provider=azure bytes=%d timeout_s=%.1f", len(pcm), window)
            if not done.wait(window):
                log.info("event=batch_processing_timeout provider=azure")
                self._stop_async(recognizer, done)
                if not done.wait(max(self._hard_timeout_s - window, 0.0)):
                    log.error("event=batch_hard_timeout provider=azure")
                    failure.append(TRANSCRIPTION_TIMEOUT_ERROR)
        finally:
            try:
                push_stream.close()
            except Exception as exc:
                log.debug("event=push_stream_close_failed error=%s", exc)

        text = " ".join(s.text for s in segments).strip()
        return TranscriptionResult(text=text, error=failure[0] if failure else None, segments=segments)

    def _stop_async(self, recognizer: Any, done: threading.Event) -> None:
        def _stop() -> None:
            try:
                recognizer.stop_continuous_recognition_async().get()
            except Exception as exc:
                log.warning("event=batch_stop_failed provider=azure error=%s", exc)
            done.set()

        threading.Thread(target=_stop, daemon=True).start()


class OpenAITranscriptionProvider:
    name = "OpenAI Whisper"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini-transcribe",
        default_language: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self._api_key = api_key or ""
        self._model = model
        self._default_language = default_language
        self._client = client

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def transcribe(self, pcm: bytes, options: Optional[TranscriptionOptions] = None) -> TranscriptionResult:
        if not self.is_configured():
            return TranscriptionResult(error="OpenAI API key not configured")
        options = options or TranscriptionOptions()
        wav = pcm_to_wav(pcm, options.sample_rate)
        language = options.language or self._default_language
        kwargs: dict[str, Any] = {
            "model": self._model,
            "file": ("audio.wav", wav, "audio/wav"),
            "response_format": "text",
        }
        if language:
            kwargs["language"] = normalize_language_code(language)
        log.info("event=batch_started provider=openai bytes=%d model=%s", len(pcm), self._model)
        try:
            result = self._get_client().audio.transcriptions.create(**kwargs)
        except Exception as exc:
            log.error("event=batch_failed provider=openai error=%s", exc)
            return TranscriptionResult(error=str(exc))
        text = result if isinstance(result, str) else getattr(result, "text", "")
        return TranscriptionResult(text=(text or "").strip())

    def _get_client(self) -> Any:
        if self._client is None:
            if openai is None:
                raise RuntimeError("openai is not installed")
            self._client = openai.OpenAI(api_key=self._api_key)
        return self._client


class ElevenLabsTranscriptionProvider:
    name = "ElevenLabs Scribe"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "scribe_v2",
        default_language: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        timeout_s: float = 40.0,
    ) -> None:
        self._api_key = api_key or ""
        self._model = model
        self._default_language = default_language
        self._client = client or httpx.Client(timeout=timeout_s)

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def transcribe(self, pcm: bytes, options: Optional[TranscriptionOptions] = None) -> TranscriptionResult:
        if not self.is_configured():
            return TranscriptionResult(error="ElevenLabs API key not configured")
        options = options or TranscriptionOptions()
        wav = pcm_to_wav(pcm, options.sample_rate)
        data = {"model_id": self._model}
        language = options.language or self._default_language
        if language:
            data["language_code"] = normalize_language_code(language)
        log.info("event=batch_started provider=elevenlabs bytes=%d model=%s", len(pcm), self._model)
        try:
            response = self._client.post(
                ELEVENLABS_STT_URL,
                headers={"xi-api-key": self._api_key},
                data=data,
                files={"file": ("audio.wav", wav, "audio/wav")},
            )
            if response.is_error:
                raise RuntimeError(f"ElevenLabs API error ({response.status_code}): {response.text}")
            payload = response.json()
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            log.error("event=batch_failed provider=elevenlabs error=%s", exc)
            return TranscriptionResult(error=str(exc))
        return TranscriptionResult(text=str(payload.get("text", "")).strip())


class DashscopeTranscriptionProvider:
    name = "DashScope Qwen ASR"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "qwen3-asr-flash",
        request_timeout_s: float = 30.0,
    ) -> None:
        self._api_key = api_key or ""
        self._model = model
        self._request_timeout_s = request_timeout_s

    def is_configured(self) -> bool:
        return bool(self._api_key) and dashscope is not None

    def transcribe(self, pcm: bytes, options: Optional[TranscriptionOptions] = None) -> TranscriptionResult:
        if dashscope is None:
            return TranscriptionResult(error="dashscope is not installed")
        if not self._api_key:
            return TranscriptionResult(error="DashScope API key not configured")
        options = options or TranscriptionOptions()
        audio = "data:audio/wav;base64," + pcm_to_wav_base64(pcm, options.sample_rate)
        asr_options: dict[str, Any] = {"enable_itn": False}
        if options.language:
            asr_options["language"] = normalize_language_code(options.language)
        log.info("event=batch_started provider=dashscope bytes=%d model=%s", len(pcm), self._model)
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=self._api_key,
                model=self._model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": audio}]},
                ],
                result_format="message",
                asr_options=asr_options,
                stream=True,
                timeout=self._request_timeout_s,
            )
            latest_text = ""
            for chunk in response:
                text = self._extract_text(chunk)
                if text:
                    latest_text = text
        except Exception as exc:
            log.error("event=batch_failed provider=dashscope error=%s", exc)
            return TranscriptionResult(error=str(exc))
        return TranscriptionResult(text=latest_text.strip())

    def _extract_text(self, chunk: object) -> str:
        """Pull text from a dashscope streaming chunk dict."""
        if isinstance(chunk, dict):
            output = chunk.get("output", {})
            choices = output.get("choices", [])
            if not choices:
                return ""
            content = choices[0].get("message", {}).get("content", [])
            if not content:
                return ""
            value = content[0]
            if isinstance(value, dict):
                return str(value.get("text", ""))
        return ""


def build_provider_registry(settings: Settings) -> dict[ProviderName, TranscriptionProvider]:
    registry: dict[ProviderName, TranscriptionProvider] = {
        ProviderName.AZURE: AzureTranscriptionProvider(
            key=settings.azure_speech_key,
            region=settings.azure_speech_region,
            default_language=settings.primary_language,
            additional_languages=[settings.auxiliary_language],
            hard_timeout_s=settings.transcription_hard_timeout_seconds,
        ),
        ProviderName.OPENAI: OpenAITranscriptionProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_transcription_model,
        ),
        ProviderName.ELEVENLABS: ElevenLabsTranscriptionProvider(
            api_key=settings.elevenlabs_api_key,
            model=settings.elevenlabs_model,
        ),
        ProviderName.DASHSCOPE: DashscopeTranscriptionProvider(
            api_key=settings.dashscope_api_key,
            model=settings.dashscope_model,
        ),
    }
    for key, provider in registry.items():
        log.info("event=provider_registered provider=%s configured=%s", key.value, provider.is_configured())
    return registry
