"""Tests for settings loading."""

from pathlib import Path

import pytest

from gemini_research_agent.config import (
    DEFAULT_BASE_URL,
    ConfigurationError,
    Settings,
    load_settings,
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> pytest.MonkeyPatch:
    """No API key in the environment and no .env file in the working directory."""
    monkeypatch.chdir(tmp_path)
    for name in ("GEMINI_API_KEY", "APP_ENV", "NODE_ENV", "BASE_URL", "PORT", "HOST"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadSettings:
    def test_missing_key_raises_configuration_error(self, clean_env: pytest.MonkeyPatch) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings()
        assert "GEMINI_API_KEY" in str(exc_info.value)
        assert "https://aistudio.google.com/apikey" in str(exc_info.value)

    def test_blank_key_raises_configuration_error(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("GEMINI_API_KEY", "   ")

        with pytest.raises(ConfigurationError):
            load_settings()

    def test_server_settings_do_not_need_a_key(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("PORT", "9000")

        settings = Settings()

        assert settings.gemini_api_key == ""
        assert settings.port == 9000
        assert settings.host == "localhost"

    def test_key_from_environment(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("GEMINI_API_KEY", "env-key")

        settings = load_settings()

        assert settings.gemini_api_key == "env-key"
        assert settings.base_url == DEFAULT_BASE_URL
        assert settings.port == 3000

    def test_key_from_dotenv_file(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text("GEMINI_API_KEY=file-key\nPORT=8080\n", encoding="utf-8")

        settings = load_settings()

        assert settings.gemini_api_key == "file-key"
        assert settings.port == 8080

    def test_overrides_win(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("GEMINI_API_KEY", "env-key")

        settings = load_settings(gemini_api_key="override", default_poll_interval=2)

        assert settings.gemini_api_key == "override"
        assert settings.default_poll_interval == 2

    def test_each_call_is_fresh(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("GEMINI_API_KEY", "one")
        first = load_settings()
        clean_env.setenv("GEMINI_API_KEY", "two")
        second = load_settings()

        assert first.gemini_api_key == "one"
        assert second.gemini_api_key == "two"


class TestEnvironment:
    @pytest.mark.parametrize("variable", ["APP_ENV", "NODE_ENV"])
    def test_development_mode(self, clean_env: pytest.MonkeyPatch, variable: str) -> None:
        clean_env.setenv("GEMINI_API_KEY", "k")
        clean_env.setenv(variable, "development")

        assert load_settings().is_development

    def test_production_by_default(self, clean_env: pytest.MonkeyPatch) -> None:
        settings = Settings(gemini_api_key="k", _env_file=None)
        assert settings.environment == "production"
        assert not settings.is_development
