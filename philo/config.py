import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from dotenv import load_dotenv

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "PHILO_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}
SECRET_FIELDS = ("openai_api_key", "elevenlabs_api_key")

DEFAULT_VECTOR_STORE_ID = "vs_67f55053de9c8191a46b2a3a553a011d"


class OpenAITTSConfig(BaseModel):
    model: str = "tts-1"
    voice: str = "nova"
    max_chars: int = Field(default=4096, ge=4)

    model_config = {"protected_namespaces": ()}


class ElevenLabsConfig(BaseModel):
    base_url: str = "https://api.elevenlabs.io"
    model_id: str = "eleven_monolingual_v1"
    stability: float = 0.5
    similarity_boost: float = 0.75
    max_chars: int = Field(default=5000, ge=4)

    model_config = {"protected_namespaces": ()}


class AppSettings(BaseModel):
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    request_timeout_s: float = 60.0

    # Assistant binding
    assistant_id: Optional[str] = None
    assistant_name: str = "Philo"
    assistant_model: str = "gpt-4o"
    vector_store_id: str = DEFAULT_VECTOR_STORE_ID

    # Run polling
    poll_interval_s: float = 1.0
    poll_max_attempts: int = 60

    # Speech
    tts_enabled: bool = True
    tts_provider: str = "openai"
    openai_tts: OpenAITTSConfig = Field(default_factory=OpenAITTSConfig)
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_voice_id: Optional[str] = None
    elevenlabs: ElevenLabsConfig = Field(default_factory=ElevenLabsConfig)
    transcription_model: str = "whisper-1"
    transcription_language: str = "en"
    upload_max_mb: int = 25

    host: str = "0.0.0.0"
    port: int = 8000

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        for key in SECRET_FIELDS:
            if data.get(key):
                data[key] = "********"
        return data

    model_config = {"protected_namespaces": ()}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "openai_api_key": os.getenv("OPENAI_API_KEY"),
        "openai_base_url": os.getenv("OPENAI_BASE_URL"),
        "request_timeout_s": os.getenv("REQUEST_TIMEOUT_S"),
        "assistant_id": os.getenv("OPENAI_ASSISTANT_ID"),
        "assistant_model": os.getenv("ASSISTANT_MODEL"),
        "vector_store_id": os.getenv("VECTOR_STORE_ID"),
        "poll_interval_s": os.getenv("POLL_INTERVAL_S"),
        "poll_max_attempts": os.getenv("POLL_MAX_ATTEMPTS"),
        "tts_enabled": os.getenv("TTS_ENABLED"),
        "tts_provider": os.getenv("TTS_PROVIDER"),
        "elevenlabs_api_key": os.getenv("ELEVENLABS_API_KEY"),
        "elevenlabs_voice_id": os.getenv("ELEVENLABS_VOICE_ID"),
        "upload_max_mb": os.getenv("UPLOAD_MAX_MB"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    if "request_timeout_s" in cleaned:
        cleaned["request_timeout_s"] = float(cleaned["request_timeout_s"])
    if "poll_interval_s" in cleaned:
        cleaned["poll_interval_s"] = float(cleaned["poll_interval_s"])
    if "poll_max_attempts" in cleaned:
        cleaned["poll_max_attempts"] = int(cleaned["poll_max_attempts"])
    if "tts_enabled" in cleaned:
        cleaned["tts_enabled"] = str(cleaned["tts_enabled"]).lower() in ENV_OVERRIDE_TRUE
    if "tts_provider" in cleaned:
        cleaned["tts_provider"] = str(cleaned["tts_provider"]).strip().lower()
    if "upload_max_mb" in cleaned:
        cleaned["upload_max_mb"] = int(cleaned["upload_max_mb"])
    if "port" in cleaned:
        cleaned["port"] = int(cleaned["port"])
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except Exception:
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        merged = {**file_data, **env_data}
    else:
        merged = {**env_data, **file_data}
    for key in SECRET_FIELDS:
        if not merged.get(key) and env_data.get(key):
            merged[key] = env_data[key]
    return AppSettings(**merged)


def save_settings(settings: AppSettings, config_path: Optional[Path] = None) -> None:
    path = config_path or CONFIG_PATH
    path.write_text(settings.model_dump_json(indent=2))
