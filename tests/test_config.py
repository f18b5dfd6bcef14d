"""Tests for Settings and the JSON config store."""

import json

import pytest

from devcontrol.config import (
    DEFAULT_BLOCKED_COMMANDS,
    DEFAULT_PORT,
    ConfigStore,
    Settings,
)
from devcontrol.errors import ConfigError


class TestSettings:
    def test_defaults(self, monkeypatch, tmp_path):
        for var in ("DEVCONTROL_CONFIG_DIR", "DEVCONTROL_PORT", "DEVCONTROL_LOG_LEVEL", "MCP_CLAUDE_DEBUG"):
            monkeypatch.delenv(var, raising=False)
        settings = Settings.from_env(tmp_path / "missing.env")
        assert settings.port == DEFAULT_PORT
        assert settings.log_level == "INFO"
        assert settings.claude_debug is False
        assert settings.config_file.name == "config.json"
        assert settings.audit_log_file.name == "tool-calls.log"

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DEVCONTROL_CONFIG_DIR", str(tmp_path / "cfg"))
        monkeypatch.setenv("DEVCONTROL_PORT", "9100")
        monkeypatch.setenv("DEVCONTROL_LOG_LEVEL", "debug")
        monkeypatch.setenv("MCP_CLAUDE_DEBUG", "true")
        settings = Settings.from_env(tmp_path / "missing.env")
        assert settings.config_dir == tmp_path / "cfg"
        assert settings.port == 9100
        assert settings.log_level == "DEBUG"
        assert settings.claude_debug is True

    def test_dotenv_file(self, monkeypatch, tmp_path):
        # setenv first so monkeypatch removes what load_dotenv writes
        monkeypatch.setenv("DEVCONTROL_PORT", "0")
        monkeypatch.delenv("DEVCONTROL_PORT")
        env_file = tmp_path / ".env"
        env_file.write_text("DEVCONTROL_PORT=9200\n")
        settings = Settings.from_env(env_file)
        assert settings.port == 9200


class TestConfigStore:
    def test_creates_file_with_defaults(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        store = ConfigStore(path)
        config = store.get_all()
        assert path.exists()
        assert config["blocked_commands"] == DEFAULT_BLOCKED_COMMANDS
        assert config["claude_cli_name"] == "claude"
        assert config["default_timeout_ms"] == 1000
        assert json.loads(path.read_text()) == config

    def test_set_persists(self, tmp_path):
        path = tmp_path / "config.json"
        ConfigStore(path).set("default_shell", "/bin/zsh")
        assert ConfigStore(path).get("default_shell") == "/bin/zsh"

    def test_get_returns_copies(self, tmp_path):
        store = ConfigStore(tmp_path / "config.json")
        store.get("blocked_commands").append("ls")
        assert "ls" not in store.blocked_commands

    def test_existing_file_is_merged_with_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"blocked_commands": ["rm"], "custom": 1}))
        store = ConfigStore(path)
        assert store.blocked_commands == ["rm"]
        assert store.get("custom") == 1
        assert store.get("claude_cli_name") == "claude"

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        store = ConfigStore(path)
        assert store.blocked_commands == DEFAULT_BLOCKED_COMMANDS

    def test_loaded_values_are_validated(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "default_timeout_ms": "5000",
            "default_shell": "/bin/sh",
        }))
        store = ConfigStore(path)
        assert store.default_timeout_ms == 5000
        assert store.default_shell == "/bin/sh"

    def test_invalid_loaded_values_fall_back_per_key(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "default_timeout_ms": "soon",
            "blocked_commands": "sudo",
            "claude_cli_name": "claude-beta",
        }))
        store = ConfigStore(path)
        assert store.default_timeout_ms == 1000
        assert store.blocked_commands == DEFAULT_BLOCKED_COMMANDS
        assert store.get("claude_cli_name") == "claude-beta"

    @pytest.mark.parametrize("value", [0, -5, "abc", 1.5, True, None])
    def test_invalid_timeout_rejected(self, tmp_path, value):
        store = ConfigStore(tmp_path / "config.json")
        with pytest.raises(ConfigError):
            store.set("default_timeout_ms", value)

    def test_timeout_string_is_coerced(self, tmp_path):
        store = ConfigStore(tmp_path / "config.json")
        store.set("default_timeout_ms", "2500")
        assert store.default_timeout_ms == 2500

    def test_relative_cli_path_rejected(self, tmp_path):
        store = ConfigStore(tmp_path / "config.json")
        with pytest.raises(ConfigError):
            store.set("claude_cli_path", "bin/claude")

    def test_cli_path_can_be_cleared(self, tmp_path):
        store = ConfigStore(tmp_path / "config.json")
        store.set("claude_cli_path", "/opt/claude")
        store.set("claude_cli_path", "")
        assert store.get("claude_cli_path") is None

    def test_blocked_commands_must_be_strings(self, tmp_path):
        store = ConfigStore(tmp_path / "config.json")
        with pytest.raises(ConfigError):
            store.set("blocked_commands", "sudo")

    def test_update_and_reset(self, tmp_path):
        store = ConfigStore(tmp_path / "config.json")
        updated = store.update({"default_shell": "/bin/sh", "blocked_commands": []})
        assert updated["default_shell"] == "/bin/sh"
        assert updated["blocked_commands"] == []
        reset = store.reset()
        assert reset["blocked_commands"] == DEFAULT_BLOCKED_COMMANDS

    def test_update_is_all_or_nothing(self, tmp_path):
        store = ConfigStore(tmp_path / "config.json")
        with pytest.raises(ConfigError):
            store.update({"default_shell": "/bin/sh", "default_timeout_ms": -1})
        assert store.default_shell != "/bin/sh"
        assert store.default_timeout_ms == 1000
