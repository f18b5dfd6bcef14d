from __future__ import annotations

import copy
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .errors import ConfigError

log = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".devcontrol-mcp"
DEFAULT_PORT = 8902

DEFAULT_BLOCKED_COMMANDS = [
    # Disk and partition management
    "mkfs", "format", "mount", "umount", "fdisk", "dd", "parted", "diskpart",
    # System administration and user management
    "sudo", "su", "passwd", "adduser", "useradd", "usermod", "groupadd",
    "chsh", "visudo",
    # System control
    "shutdown", "reboot", "halt", "poweroff", "init",
    # Network and security
    "iptables", "firewall", "netsh",
    # Windows system commands
    "sfc", "bcdedit", "reg", "net", "sc", "runas", "cipher", "takeown",
]


def default_config() -> dict[str, Any]:
    return {
        "blocked_commands": list(DEFAULT_BLOCKED_COMMANDS),
        "default_shell": "powershell.exe" if sys.platform == "win32" else "bash",
        "claude_cli_path": None,
        "claude_cli_name": "claude",
        "default_timeout_ms": 1000,
    }


@dataclass(frozen=True)
class Settings:
    """Process-level settings, read once at startup."""

    config_dir: Path = DEFAULT_CONFIG_DIR
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    claude_debug: bool = False

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def audit_log_file(self) -> Path:
        return self.config_dir / "tool-calls.log"

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Settings:
        load_dotenv(env_path)

        raw_dir = os.getenv("DEVCONTROL_CONFIG_DIR")
        config_dir = Path(raw_dir).expanduser() if raw_dir else DEFAULT_CONFIG_DIR

        return cls(
            config_dir=config_dir,
            port=int(os.getenv("DEVCONTROL_PORT", str(DEFAULT_PORT))),
            log_level=os.getenv("DEVCONTROL_LOG_LEVEL", "INFO").upper(),
            claude_debug=os.getenv("MCP_CLAUDE_DEBUG", "").lower() == "true",
        )


class ConfigStore:
    """JSON-backed server configuration, editable at runtime through tools.

    The file is created with defaults on first load. If it cannot be read
    the store keeps working from in-memory defaults.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._config: dict[str, Any] = {}
        self._loaded = False

    def load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                with open(self.path, encoding="utf-8") as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("config root must be a JSON object")
                self._config = _merge_with_defaults(data, self.path)
            else:
                self._config = default_config()
                self._save()
        except (OSError, ValueError) as exc:
            log.error("Failed to load config from %s: %s; using defaults", self.path, exc)
            self._config = default_config()

    def get_all(self) -> dict[str, Any]:
        self.load()
        return copy.deepcopy(self._config)

    def get(self, key: str, default: Any = None) -> Any:
        self.load()
        return copy.deepcopy(self._config.get(key, default))

    def set(self, key: str, value: Any) -> None:
        self.load()
        self._config[key] = _validate(key, value)
        self._save()

    def update(self, updates: dict[str, Any]) -> dict[str, Any]:
        self.load()
        validated = {key: _validate(key, value) for key, value in updates.items()}
        self._config.update(validated)
        self._save()
        return self.get_all()

    def reset(self) -> dict[str, Any]:
        self._loaded = True
        self._config = default_config()
        self._save()
        return self.get_all()

    # Typed accessors used by the handlers

    @property
    def blocked_commands(self) -> list[str]:
        return list(self.get("blocked_commands") or [])

    @property
    def default_shell(self) -> str:
        return self.get("default_shell") or default_config()["default_shell"]

    @property
    def default_timeout_ms(self) -> int:
        return self.get("default_timeout_ms") or default_config()["default_timeout_ms"]

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._config, f, indent=2)
        os.replace(tmp, self.path)


def _validate(key: str, value: Any) -> Any:
    if key == "default_timeout_ms":
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ConfigError(f"{key} must be a positive integer, got {value!r}")
        try:
            number = float(value)
        except ValueError:
            raise ConfigError(f"{key} must be a positive integer, got {value!r}") from None
        if not number.is_integer() or number <= 0:
            raise ConfigError(f"{key} must be a positive integer, got {value!r}")
        return int(number)

    if key == "claude_cli_path":
        if value in (None, ""):
            return None
        if not isinstance(value, str):
            raise ConfigError(f"{key} must be a string, got {value!r}")
        if not os.path.isabs(value):
            raise ConfigError(f"{key} must be an absolute path, got {value!r}")
        return value

    if key == "blocked_commands":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"{key} must be a list of strings")
        return value

    if key in ("default_shell", "claude_cli_name"):
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"{key} must be a non-empty string")
        return value

    return value


def _merge_with_defaults(data: dict[str, Any], path: Path) -> dict[str, Any]:
    """Overlay validated file values on the defaults, key by key."""
    merged = default_config()
    for key, value in data.items():
        try:
            merged[key] = _validate(key, value)
        except ConfigError as exc:
            log.error("Ignoring %s from %s: %s; using the default", key, path, exc)
    return merged
