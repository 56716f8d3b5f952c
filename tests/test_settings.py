import json

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from philo.config import load_settings


@pytest.mark.asyncio
async def test_get_settings_masks_credentials(app_factory):
    app, _, _ = app_factory(elevenlabs_api_key="eleven-secret")
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.get("/settings")
            assert res.status_code == 200
            data = res.json()["settings"]
            assert data["openai_api_key"] == "********"
            assert data["elevenlabs_api_key"] == "********"


@pytest.mark.asyncio
async def test_post_settings_persists_and_switches_provider(app_factory):
    app, config_path, _ = app_factory()
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post(
                "/settings",
                json={"tts_provider": "elevenlabs", "elevenlabs_api_key": "eleven-new"},
            )
            assert res.status_code == 200
            providers = (await client.get("/api/tts/providers")).json()
            assert providers["default"] == "elevenlabs"
            assert providers["status"]["elevenlabs"] is True

    saved = json.loads(config_path.read_text())
    assert saved["tts_provider"] == "elevenlabs"
    assert saved["elevenlabs_api_key"] == "eleven-new"


@pytest.mark.asyncio
async def test_post_settings_with_assistant_id_replaces_cached_handle(app_factory):
    app, _, fake = app_factory()
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            await client.post("/settings", json={"assistant_id": "asst_pinned"})
            res = await client.post("/api/chat", json={"message": "hello"})
            assert res.status_code == 200
            assert fake.assistants_created == 0


def test_config_precedence_configjson_wins_by_default(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"tts_provider": "elevenlabs"}))
    monkeypatch.setenv("TTS_PROVIDER", "openai")
    monkeypatch.delenv("PHILO_ENV_OVERRIDES_CONFIG", raising=False)
    settings = load_settings(config_path=config_path)
    assert settings.tts_provider == "elevenlabs"


def test_env_override_when_philo_env_override_set(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"tts_provider": "elevenlabs"}))
    monkeypatch.setenv("TTS_PROVIDER", "OpenAI")
    monkeypatch.setenv("PHILO_ENV_OVERRIDES_CONFIG", "1")
    settings = load_settings(config_path=config_path)
    assert settings.tts_provider == "openai"


def test_credentials_backfilled_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"openai_api_key": None, "poll_max_attempts": 30}))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("POLL_INTERVAL_S", "0.5")
    monkeypatch.delenv("PHILO_ENV_OVERRIDES_CONFIG", raising=False)
    settings = load_settings(config_path=config_path)
    assert settings.openai_api_key == "sk-env"
    assert settings.poll_interval_s == 0.5
    assert settings.poll_max_attempts == 30


@pytest.mark.asyncio
async def test_post_settings_with_bad_value_is_400_and_not_saved(app_factory):
    app, config_path, _ = app_factory()
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/settings", json={"poll_max_attempts": "lots"})
            assert res.status_code == 400
            assert res.json()["error"].startswith("Invalid settings")
            assert "poll_max_attempts" in res.json()["error"]
            assert app.state.settings.poll_max_attempts == 60
    assert not config_path.exists()


@pytest.mark.asyncio
async def test_post_settings_rejects_tts_limit_too_small_for_ellipsis(app_factory):
    app, config_path, _ = app_factory()
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/settings", json={"openai_tts": {"max_chars": 2}})
            assert res.status_code == 400
            assert "openai_tts.max_chars" in res.json()["error"]
    assert not config_path.exists()


@pytest.mark.asyncio
async def test_post_settings_with_new_base_url_rebuilds_shared_client(app_factory):
    app, config_path, fake = app_factory()
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/settings", json={"openai_base_url": "https://proxy.test/v1"})
            assert res.status_code == 200
            rebuilt = app.state.openai_client
            assert rebuilt is not fake
            assert rebuilt.base_url == "https://proxy.test/v1"
            assert rebuilt.api_key == "test-key"
            assert app.state.orchestrator.client is rebuilt
            assert app.state.transcriber.client is rebuilt
            assert app.state.speech.get("openai").client is rebuilt

    saved = json.loads(config_path.read_text())
    assert saved["openai_base_url"] == "https://proxy.test/v1"


@pytest.mark.asyncio
async def test_post_settings_with_new_api_key_keeps_client(app_factory):
    app, _, fake = app_factory()
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/settings", json={"openai_api_key": "sk-rotated"})
            assert res.status_code == 200
            assert app.state.openai_client is fake
            assert fake.api_key == "sk-rotated"
