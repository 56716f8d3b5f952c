"""Text-to-speech providers behind one ``synthesize(text, provider)`` call.

Every provider returns a self-contained ``data:`` URL the browser can play
directly. To add a backend, subclass :class:`TTSProvider`, give it a ``name``
and register it in :func:`build_gateway`.
"""

import base64
import logging
from typing import Dict, List, Optional

import httpx

from .config import AppSettings, ElevenLabsConfig, OpenAITTSConfig
from .errors import BackendError, MisconfiguredProvider, SynthesisError, UnknownProvider
from .openai_client import OpenAIClient


logger = logging.getLogger("uvicorn.error")

ELLIPSIS = "..."

# Some well-known ElevenLabs voices; more at https://api.elevenlabs.io/v1/voices
ELEVENLABS_VOICES = {
    "rachel": "21m00Tcm4TlvDq8ikWAM",
    "josh": "TxGEqnHWrfWFTfGW9XjX",
    "bella": "EXAVITQu4vr4xnSDxMaL",
}
DEFAULT_ELEVENLABS_VOICE = ELEVENLABS_VOICES["rachel"]


def truncate_text(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - len(ELLIPSIS)] + ELLIPSIS


def to_data_url(audio: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(audio).decode('ascii')}"


class TTSProvider:
    name = ""
    max_chars = 4096

    @property
    def configured(self) -> bool:
        return True

    def missing_config_message(self) -> str:
        return f"TTS provider '{self.name}' is not configured."

    async def synthesize(self, text: str) -> str:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class OpenAITTSProvider(TTSProvider):
    name = "openai"

    def __init__(self, client: OpenAIClient, config: OpenAITTSConfig):
        self.client = client
        self.config = config
        self.max_chars = config.max_chars

    @property
    def configured(self) -> bool:
        return self.client.enabled

    def missing_config_message(self) -> str:
        return (
            "OpenAI API key not configured. "
            "Please set OPENAI_API_KEY in your environment variables, "
            "or switch to ElevenLabs by setting TTS_PROVIDER=elevenlabs"
        )

    async def synthesize(self, text: str) -> str:
        try:
            audio = await self.client.create_speech(text, model=self.config.model, voice=self.config.voice)
        except BackendError as exc:
            raise SynthesisError(f"OpenAI TTS failed: {exc}") from exc
        return to_data_url(audio, "audio/mp3")


class ElevenLabsTTSProvider(TTSProvider):
    name = "elevenlabs"

    def __init__(
        self,
        api_key: Optional[str],
        config: ElevenLabsConfig,
        voice_id: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.config = config
        self.voice_id = voice_id or DEFAULT_ELEVENLABS_VOICE
        self.max_chars = config.max_chars
        self.client = httpx.AsyncClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def missing_config_message(self) -> str:
        return (
            "ElevenLabs API key not configured. "
            "Please set ELEVENLABS_API_KEY in your environment variables, "
            "or switch to OpenAI TTS by setting TTS_PROVIDER=openai"
        )

    async def synthesize(self, text: str) -> str:
        url = f"{self.config.base_url.rstrip('/')}/v1/text-to-speech/{self.voice_id}"
        payload = {
            "text": text,
            "model_id": self.config.model_id,
            "voice_settings": {
                "stability": self.config.stability,
                "similarity_boost": self.config.similarity_boost,
            },
        }
        headers = {
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
            "xi-api-key": self.api_key or "",
        }
        try:
            resp = await self.client.post(url, json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SynthesisError(f"ElevenLabs API error: {exc.response.text}") from exc
        except httpx.RequestError as exc:
            raise SynthesisError(f"ElevenLabs request failed: {exc}") from exc
        return to_data_url(resp.content, "audio/mpeg")

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()


class SpeechGateway:
    def __init__(self, providers: List[TTSProvider], default_provider: str = "openai"):
        self._providers: Dict[str, TTSProvider] = {p.name: p for p in providers}
        self.default_provider = default_provider

    def providers(self) -> List[str]:
        return list(self._providers)

    def provider_status(self) -> Dict[str, bool]:
        return {name: provider.configured for name, provider in self._providers.items()}

    def get(self, provider_name: Optional[str] = None) -> TTSProvider:
        name = (provider_name or self.default_provider or "").strip().lower()
        provider = self._providers.get(name)
        if provider is None:
            raise UnknownProvider(
                f"Unknown TTS provider: {name or '<empty>'}. Available: {', '.join(self.providers())}"
            )
        if not provider.configured:
            raise MisconfiguredProvider(provider.missing_config_message())
        return provider

    async def synthesize(self, text: str, provider_name: Optional[str] = None) -> str:
        provider = self.get(provider_name)
        clipped = truncate_text(text, provider.max_chars)
        if len(clipped) != len(text):
            logger.info("TTS input truncated from %d to %d chars for %s", len(text), len(clipped), provider.name)
        return await provider.synthesize(clipped)

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()


def build_gateway(settings: AppSettings, client: OpenAIClient) -> SpeechGateway:
    return SpeechGateway(
        [
            OpenAITTSProvider(client, settings.openai_tts),
            ElevenLabsTTSProvider(
                settings.elevenlabs_api_key,
                settings.elevenlabs,
                voice_id=settings.elevenlabs_voice_id,
                timeout=settings.request_timeout_s,
            ),
        ],
        default_provider=settings.tts_provider,
    )
