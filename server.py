"""FastAPI application for the speech and turn endpoints.

Endpoints
---------
  WS   /api/speech/ws              duplex recognition session
  POST /api/speech/transcribe      batch transcription of a PCM body
  GET  /api/speech/status          speech backend configuration
  POST /api/conversations/stream   turn submission, server-sent events
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from errors import TRANSCRIPTION_TIMEOUT_ERROR
from interfaces import RecognizerFactory, TranscriptionProvider
from models import ProviderName, TranscriptionOptions, TranscriptionResult
from providers import build_provider_registry
from recognizer import azure_recognizer_factory
from responder import OpenAITurnResponder, TurnRequest, TurnResponder
from settings import Settings
from speech_session import SpeechSession

log = logging.getLogger("lingua_tutor.server")


def result_payload(result: TranscriptionResult) -> dict:
    payload: dict = {
        "success": result.success,
        "text": result.text,
        "segments": [{"text": s.text, "language": s.language} for s in result.segments],
    }
    if result.error:
        payload["error"] = result.error
    return payload


def create_app(
    settings: Optional[Settings] = None,
    recognizer_factory: Optional[RecognizerFactory] = None,
    providers: Optional[dict[ProviderName, TranscriptionProvider]] = None,
    responder: Optional[TurnResponder] = None,
) -> FastAPI:
    settings = settings or Settings()
    recognizer_factory = recognizer_factory or azure_recognizer_factory(
        key=settings.azure_speech_key or "",
        region=settings.azure_speech_region or "",
        auxiliary_language=settings.auxiliary_language,
    )
    providers = providers if providers is not None else build_provider_registry(settings)
    responder = responder or OpenAITurnResponder(
        api_key=settings.openai_api_key,
        model=settings.tutor_model,
        prompt_id=settings.tutor_prompt_id,
    )

    app = FastAPI(title="Lingua Tutor Speech API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings

    if settings.speech_configured:
        log.info("event=speech_configured region=%s", settings.azure_speech_region)
    else:
        log.warning("event=speech_not_configured hint=set AZURE_SPEECH_KEY and AZURE_SPEECH_REGION")

    @app.get("/api/speech/status")
    async def speech_status() -> dict:
        return {
            "configured": settings.speech_configured,
            "region": settings.azure_speech_region or "not configured",
        }

    @app.websocket("/api/speech/ws")
    async def speech_ws(websocket: WebSocket) -> None:
        params = websocket.query_params
        try:
            sample_rate = int(params.get("sampleRate") or settings.default_sample_rate)
        except ValueError:
            sample_rate = settings.default_sample_rate
        language = params.get("language") or settings.primary_language
        session = SpeechSession(
            websocket,
            recognizer_factory,
            sample_rate=sample_rate,
            language=language,
            configured=settings.speech_configured,
        )
        await session.run()

    @app.post("/api/speech/transcribe")
    async def transcribe(request: Request) -> JSONResponse:
        params = request.query_params
        try:
            sample_rate = int(params.get("sampleRate") or settings.default_sample_rate)
        except ValueError:
            return JSONResponse({"error": "Invalid sampleRate"}, status_code=400)
        try:
            provider_name = ProviderName(params.get("provider") or settings.transcription_provider)
        except ValueError:
            return JSONResponse({"error": f"Unknown provider: {params.get('provider')}"}, status_code=400)
        provider = providers.get(provider_name)
        if provider is None:
            return JSONResponse({"error": f"Provider not available: {provider_name.value}"}, status_code=400)

        audio = await request.body()
        if not audio:
            return JSONResponse({"error": "No audio data provided"}, status_code=400)
        log.info("event=transcribe_request bytes=%d sample_rate=%d provider=%s", len(audio), sample_rate, provider_name.value)

        options = TranscriptionOptions(
            sample_rate=sample_rate,
            language=settings.primary_language,
            additional_languages=[settings.auxiliary_language],
        )
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(provider.transcribe, audio, options),
                timeout=settings.transcription_hard_timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.error("event=transcribe_hard_timeout provider=%s", provider_name.value)
            result = TranscriptionResult(error=TRANSCRIPTION_TIMEOUT_ERROR)
        except Exception as exc:
            log.exception("event=transcribe_failed provider=%s", provider_name.value)
            result = TranscriptionResult(error=str(exc) or "Unknown error")

        log.info("event=transcribe_result text=%r error=%s", result.text[:50], result.error)
        return JSONResponse(result_payload(result), status_code=200 if result.success else 500)

    @app.post("/api/conversations/stream")
    async def stream_turn(turn: TurnRequest) -> StreamingResponse:
        async def _events() -> AsyncIterator[str]:
            async for event in responder.stream(turn):
                yield f"data: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"

        return StreamingResponse(_events(), media_type="text/event-stream")

    return app
