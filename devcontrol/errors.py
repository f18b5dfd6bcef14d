"""Exceptions raised by the session manager and its collaborators.

None of these are allowed to escape a tool call: the handlers in
:mod:`devcontrol.handlers` turn them into error payloads.
"""

from __future__ import annotations

from typing import Any


def error_response(error: BaseException | str, **extra: Any) -> dict[str, Any]:
    """Build the payload a tool returns instead of raising."""
    if isinstance(error, BaseException):
        message = str(error)
        error_type = type(error).__name__
    else:
        message = error
        error_type = "Error"
    return {"status": "error", "error": message, "error_type": error_type, **extra}


class DevControlError(Exception):
    """Base class for all devcontrol errors."""


class SpawnError(DevControlError):
    """The shell or executable could not be started."""

    def __init__(self, command: str, shell: str, reason: str) -> None:
        self.command = command
        self.shell = shell
        self.reason = reason
        super().__init__(f"Failed to start command with shell '{shell}': {reason}")


class UnknownSessionError(DevControlError, KeyError):
    """No active or retained session exists for a pid."""

    def __init__(self, pid: int) -> None:
        self.pid = pid
        super().__init__(pid)

    def __str__(self) -> str:
        return f"No session found for PID {self.pid}"


class TerminationError(DevControlError):
    """A termination signal could not be delivered, or the process survived it."""

    def __init__(self, pid: int, reason: str) -> None:
        self.pid = pid
        self.reason = reason
        super().__init__(f"Failed to terminate PID {pid}: {reason}")


class BlockedCommandError(DevControlError):
    """The command line contains a command from the blocklist."""

    def __init__(self, command: str, blocked: str) -> None:
        self.command = command
        self.blocked = blocked
        super().__init__(f"Command not allowed: '{blocked}' is blocked by configuration")


class ConfigError(DevControlError, ValueError):
    """A configuration value failed validation."""
