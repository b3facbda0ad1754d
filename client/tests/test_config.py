"""Tests for settings loading."""
import pytest
import yaml
from pydantic import ValidationError

from pickup.config import AppConfig, BACKEND_URL_ENV, ChatSettings, load_config


@pytest.fixture(autouse=True)
def no_env_override(monkeypatch):
    monkeypatch.delenv(BACKEND_URL_ENV, raising=False)


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config.backend.base_url == "http://10.0.0.58:3000"
        assert config.chat.match_window_seconds == 10
        assert config.chat.max_message_length == 500
        assert config.realtime.reconnection is True

    def test_yaml_values_are_applied(self, tmp_path):
        path = tmp_path / "pickup.settings.yaml"
        path.write_text(yaml.safe_dump({
            "backend": {"base_url": "https://api.example.com/"},
            "realtime": {"url": "wss://rt.example.com", "connect_timeout_seconds": 3},
            "chat": {"match_window_seconds": 5},
            "logging": {"level": "debug"},
        }))

        config = load_config(path)

        assert config.backend.base_url == "https://api.example.com"
        assert config.realtime_url == "wss://rt.example.com"
        assert config.realtime.connect_timeout_seconds == 3
        assert config.chat.match_window_seconds == 5
        assert config.logging.level == "debug"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "pickup.settings.yaml"
        path.write_text("")
        assert load_config(path) == AppConfig()

    def test_realtime_url_falls_back_to_backend(self):
        config = AppConfig(backend={"base_url": "http://localhost:3000"})
        assert config.realtime_url == "http://localhost:3000"

    def test_env_overrides_backend_url(self, tmp_path, monkeypatch):
        monkeypatch.setenv(BACKEND_URL_ENV, "http://override:4000")
        config = load_config(tmp_path / "absent.yaml")
        assert config.backend.base_url == "http://override:4000"


class TestChatSettings:
    def test_window_must_be_positive(self):
        with pytest.raises(ValidationError):
            ChatSettings(match_window_seconds=0)

    def test_length_limit_must_be_positive(self):
        with pytest.raises(ValidationError):
            ChatSettings(max_message_length=0)
