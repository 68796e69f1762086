"""Streaming recogniser backed by the Azure Speech SDK.

Audio is pushed as 16-bit mono PCM; recognition runs continuously with
language identification across a primary and an auxiliary language,
biased toward the primary one at the start and for single-language
segments. SDK callbacks arrive on SDK threads and are translated into
``SpeechEvent`` objects.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Sequence

from errors import BackendNotConfigured
from models import SpeechEvent, SpeechEventKind

try:
    import azure.cognitiveservices.speech as speechsdk
except Exception:  # pragma: no cover
    speechsdk = None  # type: ignore

log = logging.getLogger("lingua_tutor.recognizer")


def build_azure_recognizer(
    key: str,
    region: str,
    sample_rate: int,
    languages: Sequence[str],
) -> tuple[Any, Any]:
    """Create a (recognizer, push_stream) pair with continuous language id."""
    if speechsdk is None:
        raise BackendNotConfigured("azure-cognitiveservices-speech is not installed")
    if not key or not region:
        raise BackendNotConfigured("Azure Speech credentials not configured")
    primary = languages[0]

    speech_config = speechsdk.SpeechConfig(subscription=key, region=region)
    speech_config.set_profanity(speechsdk.ProfanityOption.Raw)
    speech_config.speech_recognition_language = primary
    speech_config.set_property(
        speechsdk.PropertyId.SpeechServiceConnection_LanguageIdMode, "Continuous"
    )
    speech_config.set_property_by_name("SpeechServiceConnection_AtStartLanguageIdPriority", primary)
    speech_config.set_property_by_name("SpeechServiceConnection_SingleLanguageIdPriority", primary)

    auto_detect = speechsdk.languageconfig.AutoDetectSourceLanguageConfig(languages=list(languages))
    stream_format = speechsdk.audio.AudioStreamFormat(
        samples_per_second=sample_rate, bits_per_sample=16, channels=1
    )
    push_stream = speechsdk.audio.PushAudioInputStream(stream_format=stream_format)
    audio_config = speechsdk.audio.AudioConfig(stream=push_stream)
    recognizer = speechsdk.SpeechRecognizer(
        speech_config=speech_config,
        auto_detect_source_language_config=auto_detect,
        audio_config=audio_config,
    )
    return recognizer, push_stream


def detected_language_of(result: Any) -> Optional[str]:
    try:
        return speechsdk.AutoDetectSourceLanguageResult(result).language or None
    except Exception:
        return None


def cancellation_reason_name(reason: Any) -> str:
    if reason == speechsdk.CancellationReason.Error:
        return "Error"
    if reason == speechsdk.CancellationReason.EndOfStream:
        return "EndOfStream"
    return f"Unknown({reason})"


class AzureStreamingRecognizer:
    def __init__(
        self,
        key: str,
        region: str,
        sample_rate: int = 48000,
        primary_language: str = "pt-BR",
        auxiliary_language: str = "en-US",
    ) -> None:
        self._key = key
        self._region = region
        self.sample_rate = sample_rate
        self._languages = [primary_language]
        if auxiliary_language and auxiliary_language != primary_language:
            self._languages.append(auxiliary_language)
        self._recognizer: Any = None
        self._push_stream: Any = None
        self._lock = threading.Lock()
        self._cleaned = False

    def start(self, on_event: Callable[[SpeechEvent], None]) -> None:
        recognizer, push_stream = build_azure_recognizer(
            self._key, self._region, self.sample_rate, self._languages
        )
        self._recognizer = recognizer
        self._push_stream = push_stream

        def _recognizing(evt: Any) -> None:
            if evt.result.text:
                on_event(SpeechEvent(kind=SpeechEventKind.RECOGNIZING, text=evt.result.text))

        def _recognized(evt: Any) -> None:
            reason = evt.result.reason
            if reason == speechsdk.ResultReason.RecognizedSpeech:
                on_event(
                    SpeechEvent(
                        kind=SpeechEventKind.RECOGNIZED,
                        text=evt.result.text,
                        detected_language=detected_language_of(evt.result),
                    )
                )
            elif reason == speechsdk.ResultReason.NoMatch:
                on_event(SpeechEvent(kind=SpeechEventKind.NOMATCH))

        def _canceled(evt: Any) -> None:
            details = evt.cancellation_details
            event = SpeechEvent(
                kind=SpeechEventKind.CANCELED,
                reason=cancellation_reason_name(details.reason),
            )
            if details.reason == speechsdk.CancellationReason.Error and details.error_details:
                event.error = details.error_details
                log.error("event=recognition_canceled error=%s", details.error_details)
            on_event(event)

        def _session_stopped(evt: Any) -> None:
            on_event(SpeechEvent(kind=SpeechEventKind.SESSION_STOPPED))

        recognizer.recognizing.connect(_recognizing)
        recognizer.recognized.connect(_recognized)
        recognizer.canceled.connect(_canceled)
        recognizer.session_stopped.connect(_session_stopped)

        try:
            recognizer.start_continuous_recognition_async().get()
        except Exception as exc:
            log.error("event=recognition_start_failed error=%s", exc)
            on_event(SpeechEvent(kind=SpeechEventKind.CANCELED, reason="Error", error=str(exc)))
            self.close()
            return
        log.info("event=recognition_started sample_rate=%d languages=%s", self.sample_rate, ",".join(self._languages))
        on_event(SpeechEvent(kind=SpeechEventKind.STARTED))

    def push(self, pcm: bytes) -> None:
        push_stream = self._push_stream
        if push_stream is None or self._cleaned:
            return
        push_stream.write(pcm)

    def close(self) -> None:
        with self._lock:
            if self._cleaned:
                return
            self._cleaned = True
            recognizer, push_stream = self._recognizer, self._push_stream
            self._recognizer = None
            self._push_stream = None
        if recognizer is not None:
            try:
                recognizer.stop_continuous_recognition_async().get()
            except Exception as exc:
                log.warning("event=recognition_stop_failed error=%s", exc)
        if push_stream is not None:
            try:
                push_stream.close()
            except Exception as exc:
                log.debug("event=push_stream_close_failed error=%s", exc)


def azure_recognizer_factory(
    key: str,
    region: str,
    auxiliary_language: str = "en-US",
) -> Callable[[int, str], AzureStreamingRecognizer]:
    def _factory(sample_rate: int, language: str) -> AzureStreamingRecognizer:
        return AzureStreamingRecognizer(
            key=key,
            region=region,
            sample_rate=sample_rate,
            primary_language=language,
            auxiliary_language=auxiliary_language,
        )

    return _factory
