"""HTTP client for the batch transcription endpoint."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from errors import TRANSCRIPTION_TIMEOUT_ERROR
from models import ProviderName, TranscriptionResult, TranscriptionSegment

log = logging.getLogger("lingua_tutor.batch_client")

TRANSCRIBE_PATH = "/api/speech/transcribe"


class HttpBatchTranscriber:
    def __init__(
        self,
        server_url: str = "http://localhost:3000",
        provider: ProviderName | str = ProviderName.AZURE,
        timeout_s: float = 60.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._server_url = server_url.rstrip("/")
        self._provider = ProviderName(provider)
        self._client = client or httpx.Client(timeout=timeout_s)

    def transcribe(self, pcm: bytes, sample_rate: int) -> TranscriptionResult:
        url = f"{self._server_url}{TRANSCRIBE_PATH}"
        params = {"sampleRate": str(sample_rate), "provider": self._provider.value}
        log.info("event=batch_request bytes=%d sample_rate=%d provider=%s", len(pcm), sample_rate, self._provider.value)
        try:
            response = self._client.post(
                url,
                params=params,
                content=pcm,
                headers={"Content-Type": "application/octet-stream"},
            )
        except httpx.TimeoutException as exc:
            log.warning("event=batch_request_timeout error=%s", exc)
            return TranscriptionResult(text="", error=TRANSCRIPTION_TIMEOUT_ERROR)
        except httpx.HTTPError as exc:
            log.warning("event=batch_request_failed error=%s", exc)
            return TranscriptionResult(text="", error=str(exc))

        try:
            data = response.json()
        except ValueError:
            return TranscriptionResult(
                text="", error=f"HTTP {response.status_code}: {response.text[:200]}"
            )

        segments = [
            TranscriptionSegment(text=str(s.get("text", "")), language=s.get("language"))
            for s in data.get("segments") or []
        ]
        error = data.get("error")
        if response.is_error and not error:
            error = f"HTTP {response.status_code}"
        return TranscriptionResult(
            text=str(data.get("text", "")).strip(),
            error=error or None,
            segments=segments,
        )

    def close(self) -> None:
        self._client.close()
