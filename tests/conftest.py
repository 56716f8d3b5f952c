from pathlib import Path

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from philo.config import AppSettings
from philo.main import create_app
from philo.orchestrator import ConversationOrchestrator
from tests.fakes import FakeOpenAIClient, FakeSleep


def make_settings(**overrides) -> AppSettings:
    settings = AppSettings(
        openai_api_key="test-key",
        openai_base_url="https://openai.test/v1",
        assistant_id=None,
        vector_store_id="vs_test",
        poll_interval_s=1.0,
        poll_max_attempts=60,
        tts_enabled=True,
        tts_provider="openai",
        elevenlabs_api_key=None,
        host="127.0.0.1",
        port=8000,
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def app_factory(tmp_path: Path):
    def _factory(
        *,
        fake_client: FakeOpenAIClient | None = None,
        config_path: Path | None = None,
        **settings_overrides,
    ):
        settings = make_settings(**settings_overrides)
        client = fake_client or FakeOpenAIClient()
        orchestrator = ConversationOrchestrator(client, settings, sleep=FakeSleep())
        cfg_path = config_path or (tmp_path / "config.json")
        app = create_app(settings, openai_client=client, orchestrator=orchestrator, config_path=cfg_path)
        return app, cfg_path, client

    return _factory


@pytest.fixture
async def client(app_factory):
    app, config_path, fake_client = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.config_path = config_path  # type: ignore[attr-defined]
            http_client.fake_client = fake_client  # type: ignore[attr-defined]
            yield http_client
