from typing import Optional

from .errors import InvalidInput
from .openai_client import OpenAIClient


class Transcriber:
    def __init__(self, client: OpenAIClient, model: str = "whisper-1", language: str = "en"):
        self.client = client
        self.model = model
        self.language = language

    async def transcribe(
        self,
        audio: Optional[bytes],
        filename: str = "recording.webm",
        content_type: str = "audio/webm",
    ) -> str:
        if not audio:
            raise InvalidInput("Audio file is required")
        result = await self.client.create_transcription(
            audio,
            filename=filename or "recording.webm",
            content_type=content_type or "application/octet-stream",
            model=self.model,
            language=self.language,
        )
        return str(result.get("text") or "")
