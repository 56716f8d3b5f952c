import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import AppSettings, CONFIG_PATH, load_settings, save_settings
from .errors import InvalidInput, MisconfiguredProvider, PhiloError, SynthesisError, UnknownProvider
from .openai_client import OpenAIClient
from .orchestrator import ConversationOrchestrator
from .schemas import ChatRequest, ChatResponse, TranscriptionResponse
from .transcription import Transcriber
from .tts import SpeechGateway, build_gateway


logger = logging.getLogger("uvicorn.error")


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    return request.app.state.orchestrator


def get_speech(request: Request) -> SpeechGateway:
    return request.app.state.speech


def get_transcriber(request: Request) -> Transcriber:
    return request.app.state.transcriber


def get_config_path(request: Request) -> Path:
    return request.app.state.config_path


async def synthesize_best_effort(speech: SpeechGateway, text: str, settings: AppSettings) -> Optional[str]:
    if not settings.tts_enabled:
        return None
    try:
        return await speech.synthesize(text, settings.tts_provider)
    except (SynthesisError, UnknownProvider, MisconfiguredProvider) as exc:
        logger.warning("TTS failed, answering without audio: %s", exc)
        return None
    except Exception as exc:
        logger.exception("TTS crashed, answering without audio: %s", exc)
        return None


router = APIRouter()


@router.get("/health")
async def health(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    return {"ok": True, "assistant_cached": orchestrator.assistant_cached}


@router.post("/api/chat")
async def chat(
    payload: ChatRequest,
    settings: AppSettings = Depends(get_settings),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    speech: SpeechGateway = Depends(get_speech),
):
    try:
        answer = await orchestrator.answer(payload.message, payload.thread_id)
    except PhiloError:
        raise
    except Exception as exc:
        logger.exception("Chat request failed: %s", exc)
        raise PhiloError("An unexpected error occurred") from exc
    audio_url = await synthesize_best_effort(speech, answer.text, settings)
    body = ChatResponse(
        response=answer.text,
        thread_id=answer.thread_id,
        sources=answer.sources,
        audio_url=audio_url,
        tools_used=answer.tools_used,
    )
    return body.model_dump(by_alias=True)


@router.post("/api/transcribe")
async def transcribe(
    audio: Optional[UploadFile] = File(None),
    transcriber: Transcriber = Depends(get_transcriber),
    settings: AppSettings = Depends(get_settings),
):
    if audio is None:
        raise InvalidInput("Audio file is required")
    data = await audio.read()
    if len(data) > settings.upload_max_mb * 1024 * 1024:
        raise InvalidInput(f"Audio file too large (>{settings.upload_max_mb} MB).")
    try:
        text = await transcriber.transcribe(
            data,
            filename=audio.filename or "recording.webm",
            content_type=audio.content_type or "audio/webm",
        )
    except PhiloError:
        raise
    except Exception as exc:
        logger.exception("Transcription failed: %s", exc)
        raise PhiloError("Transcription failed") from exc
    return TranscriptionResponse(text=text).model_dump()


@router.get("/api/tts/providers")
async def tts_providers(
    settings: AppSettings = Depends(get_settings),
    speech: SpeechGateway = Depends(get_speech),
):
    return {
        "providers": speech.providers(),
        "default": settings.tts_provider,
        "status": speech.provider_status(),
    }


@router.get("/settings")
async def get_settings_route(settings: AppSettings = Depends(get_settings)):
    return {"settings": settings.to_safe_dict()}


@router.post("/settings")
async def update_settings_route(
    request: Request,
    settings: AppSettings = Depends(get_settings),
    config_path: Path = Depends(get_config_path),
):
    body = await request.json()
    if not isinstance(body, dict):
        raise InvalidInput("Settings payload must be a JSON object")
    try:
        new_settings = AppSettings(**{**settings.model_dump(), **body})
    except ValidationError as exc:
        raise InvalidInput(f"Invalid settings: {_error_fields(exc.errors())}") from exc
    save_settings(new_settings, config_path=config_path)
    state = request.app.state
    state.settings = new_settings
    client = state.openai_client
    old_client = None
    if (
        new_settings.openai_base_url != settings.openai_base_url
        or new_settings.request_timeout_s != settings.request_timeout_s
    ):
        old_client = client
        client = OpenAIClient(
            new_settings.openai_api_key,
            base_url=new_settings.openai_base_url,
            timeout=new_settings.request_timeout_s,
        )
        state.openai_client = client
    else:
        client.api_key = new_settings.openai_api_key
    old_speech = state.speech
    state.speech = build_gateway(new_settings, client)
    await old_speech.close()
    state.orchestrator.reconfigure(new_settings, client)
    state.transcriber.client = client
    state.transcriber.model = new_settings.transcription_model
    state.transcriber.language = new_settings.transcription_language
    if old_client is not None:
        await old_client.close()
    return {"ok": True, "settings": new_settings.to_safe_dict()}


def _error_fields(errors) -> str:
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in errors]
    return ", ".join(f for f in fields if f) or "request"


async def philo_error_handler(request: Request, exc: PhiloError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": f"Invalid request: {_error_fields(exc.errors())}"}, status_code=400)


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s crashed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": "An unexpected error occurred"}, status_code=500)


def create_app(
    settings: AppSettings,
    *,
    openai_client: Optional[OpenAIClient] = None,
    orchestrator: Optional[ConversationOrchestrator] = None,
    speech: Optional[SpeechGateway] = None,
    transcriber: Optional[Transcriber] = None,
    config_path: Optional[Path] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not app.state.settings.openai_api_key:
            logger.warning("OPENAI_API_KEY is not set; chat and transcription will fail")
        try:
            yield
        finally:
            await app.state.speech.close()
            await app.state.openai_client.close()

    app = FastAPI(title="Philo Research Assistant", lifespan=lifespan)
    client = openai_client or OpenAIClient(
        settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.request_timeout_s,
    )
    app.state.settings = settings
    app.state.openai_client = client
    app.state.orchestrator = orchestrator or ConversationOrchestrator(client, settings)
    app.state.speech = speech or build_gateway(settings, client)
    app.state.transcriber = transcriber or Transcriber(
        client,
        model=settings.transcription_model,
        language=settings.transcription_language,
    )
    app.state.config_path = config_path or CONFIG_PATH

    app.add_exception_handler(PhiloError, philo_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(router)
    return app


app = create_app(load_settings())


if __name__ == "__main__":
    import os
    import uvicorn

    settings = app.state.settings
    reload_enabled = os.getenv("PHILO_RELOAD", "").lower() in ("1", "true", "yes", "on")
    try:
        uvicorn.run(
            "philo.main:app",
            host=getattr(settings, "host", "0.0.0.0"),
            port=settings.port,
            reload=reload_enabled,
        )
    except KeyboardInterrupt:
        pass
