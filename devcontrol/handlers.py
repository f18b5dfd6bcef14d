"""Tool handlers: validate arguments, call the services, shape the response.

Every handler returns a JSON-serialisable dict. Failures come back as
``{"status": "error", ...}`` payloads; nothing raises across this boundary.
"""

from __future__ import annotations

import logging
from typing import Any

import psutil

from . import processes
from .claude_code import ClaudeCodeTool
from .config import ConfigStore
from .errors import (
    BlockedCommandError,
    ConfigError,
    TerminationError,
    UnknownSessionError,
    error_response,
)
from .policy import check_command
from .terminal import SessionManager

log = logging.getLogger(__name__)


class ToolHandlers:
    def __init__(
        self,
        manager: SessionManager,
        config: ConfigStore,
        claude: ClaudeCodeTool | None = None,
    ) -> None:
        self.manager = manager
        self.config = config
        self.claude = claude or ClaudeCodeTool(manager, config)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self) -> dict[str, Any]:
        return {"config": self.config.get_all()}

    def set_config_value(self, key: str, value: Any) -> dict[str, Any]:
        if not key:
            return error_response("key must be a non-empty string")
        try:
            self.config.set(key, value)
        except ConfigError as exc:
            return error_response(exc, key=key)
        except OSError as exc:
            log.error("Failed to save config: %s", exc)
            return error_response(f"Failed to save configuration: {exc}", key=key)
        return {"key": key, "value": self.config.get(key), "status": "updated"}

    # ------------------------------------------------------------------
    # Terminal sessions
    # ------------------------------------------------------------------

    async def execute_command(
        self,
        command: str,
        timeout_ms: int | None = None,
        shell: str | None = None,
    ) -> dict[str, Any]:
        if not command or not command.strip():
            return error_response("command must be a non-empty string")
        try:
            check_command(command, self.config.blocked_commands)
        except BlockedCommandError as exc:
            log.warning("Rejected blocked command: %s", command)
            return error_response(exc, blocked=exc.blocked)

        if timeout_ms is None:
            timeout_ms = self.config.default_timeout_ms
        try:
            result = await self.manager.execute_command(
                command,
                timeout_ms=timeout_ms,
                shell=shell or self.config.default_shell,
            )
        except ValueError as exc:
            return error_response(exc, pid=-1)
        if result.failed_to_start:
            return error_response(result.output, pid=-1, output=result.output, isBlocked=False)

        response = result.to_dict()
        if result.is_blocked:
            response["status"] = "running"
            response["message"] = (
                f"Command is still running. Use read_output with PID {result.pid} "
                "to get more output."
            )
        else:
            response["status"] = "completed"
        return response

    def read_output(self, pid: int) -> dict[str, Any]:
        try:
            return self.manager.read_output(pid).to_dict()
        except UnknownSessionError as exc:
            return error_response(exc, pid=pid)

    async def force_terminate(self, pid: int) -> dict[str, Any]:
        try:
            success = await self.manager.force_terminate(pid)
        except (UnknownSessionError, TerminationError) as exc:
            return error_response(exc, pid=pid, success=False)
        return {"pid": pid, "success": success}

    def list_sessions(self) -> dict[str, Any]:
        sessions = [s.to_dict() for s in self.manager.list_sessions()]
        return {"count": len(sessions), "sessions": sessions}

    # ------------------------------------------------------------------
    # Host processes
    # ------------------------------------------------------------------

    def list_processes(self) -> dict[str, Any]:
        found = processes.list_processes()
        return {"count": len(found), "processes": processes.as_dicts(found)}

    def kill_process(self, pid: int) -> dict[str, Any]:
        try:
            processes.kill_process(pid)
        except psutil.NoSuchProcess:
            return error_response(f"No process with PID {pid}", pid=pid, success=False)
        except psutil.AccessDenied:
            return error_response(f"Permission denied to kill PID {pid}", pid=pid, success=False)
        return {"pid": pid, "success": True}

    # ------------------------------------------------------------------
    # Delegated CLI
    # ------------------------------------------------------------------

    async def claude_code(
        self,
        prompt: str,
        work_folder: str | None = None,
        tools: list[str] | None = None,
    ) -> dict[str, Any]:
        if not prompt or not prompt.strip():
            return error_response("prompt must be a non-empty string")
        return await self.claude.run(prompt, work_folder=work_folder, tools=tools)
