"""
Tests for ConfigService and the module-level settings helpers.
"""

import json

import pytest

from chatstream.config import settings
from chatstream.services.config_service import ConfigService


def test_dot_notation_get_and_set(tmp_path):
    config = ConfigService(config_path=tmp_path / "config.json")
    assert config.get("providers.openai.api_key") is None
    assert config.get("providers.openai.api_key", "fallback") == "fallback"

    config.set("providers.openai.api_key", "sk-1")
    config.set("defaults.temperature", 0.4)
    assert config.get("providers.openai.api_key") == "sk-1"
    assert config.get("defaults") == {"temperature": 0.4}
    assert config.get("defaults.temperature.nested", "x") == "x"


def test_api_key_lookup_strips_and_ignores_blank():
    config = ConfigService(data={"providers": {
        "openai": {"api_key": "  sk-padded  "},
        "anthropic": {"api_key": "   "},
        "google": "not-a-dict",
    }})
    assert config.get_api_key("openai") == "sk-padded"
    assert config.get_api_key("anthropic") is None
    assert config.get_api_key("google") is None
    assert config.get_api_key("deepseek") is None

    config.set_api_key("deepseek", "ds-1")
    assert config.get_api_key("deepseek") == "ds-1"


def test_base_url_override():
    config = ConfigService(data={"providers": {"ollama": {"base_url": " http://gpu-box:11434 "}}})
    assert config.get_base_url("ollama") == "http://gpu-box:11434"
    assert config.get_base_url("openai") is None


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "nested" / "config.json"
    config = ConfigService(config_path=path)
    config.set_api_key("openai", "sk-saved")
    assert config.save() is True

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["providers"]["openai"]["api_key"] == "sk-saved"

    again = ConfigService(config_path=path)
    assert again.get_api_key("openai") == "sk-saved"
    assert again.load()["providers"]["openai"]["api_key"] == "sk-saved"


def test_load_missing_file_raises(tmp_path):
    config = ConfigService(config_path=tmp_path / "absent.json")
    assert config.get_all() == {}
    with pytest.raises(FileNotFoundError):
        config.load()


def test_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{ invalid", encoding="utf-8")

    config = ConfigService(config_path=path)
    assert config.get_all() == {}
    with pytest.raises(ValueError):
        config.load()


def test_storage_path(tmp_path):
    config = ConfigService(config_path=tmp_path / "config.json")
    assert config.get_storage_path() == tmp_path / "conversations.json"

    config.set("storage.path", str(tmp_path / "elsewhere" / "chats.json"))
    assert config.get_storage_path() == tmp_path / "elsewhere" / "chats.json"


def test_settings_helpers_use_given_path(tmp_path):
    path = tmp_path / "config.json"
    service = settings.get_config_service(path)
    assert settings.get_config_service() is service

    settings.save_config({"defaults": {"model": "ollama:llama3"}})
    assert settings.load_config() == {"defaults": {"model": "ollama:llama3"}}
    assert json.loads(path.read_text(encoding="utf-8"))["defaults"]["model"] == "ollama:llama3"
