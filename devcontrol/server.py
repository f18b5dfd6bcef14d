"""MCP Server exposing command sessions, config and host process tools."""

from __future__ import annotations

import logging
import os
import re
from typing import Any

from mcp.server.fastmcp import FastMCP

from .audit import ToolCallAuditor
from .config import DEFAULT_PORT
from .errors import error_response
from .handlers import ToolHandlers

log = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 1000


def tool_description(tool_name: str, default: str) -> str:
    """Return ``MCP_DESC_<TOOL_NAME>`` from the environment, or ``default``."""
    env_var = "MCP_DESC_" + re.sub(r"[^A-Z0-9]", "_", tool_name.upper())
    custom = os.environ.get(env_var)
    if custom is None or not custom.strip():
        return default
    if len(custom) > MAX_DESCRIPTION_LENGTH:
        log.warning(
            "Tool description for %s exceeds %d characters and will be truncated",
            tool_name, MAX_DESCRIPTION_LENGTH,
        )
        return custom[:MAX_DESCRIPTION_LENGTH] + "... (truncated)"
    return custom


def create_server(
    handlers: ToolHandlers,
    auditor: ToolCallAuditor | None = None,
    port: int = DEFAULT_PORT,
) -> FastMCP:
    """Create and configure the MCP server around a set of handlers."""

    mcp = FastMCP(
        name="devcontrol",
        instructions=(
            "Runs shell commands on this host. execute_command returns the output "
            "directly if the command finishes within timeout_ms, otherwise a PID "
            "to poll with read_output and stop with force_terminate."
        ),
        host="127.0.0.1",
        port=port,
        stateless_http=True,
    )

    def audit(tool_name: str, arguments: dict[str, Any] | None = None) -> None:
        if auditor is not None:
            auditor.record(tool_name, arguments)

    # ------------------------------------------------------------------
    # Configuration tools
    # ------------------------------------------------------------------
    @mcp.tool(
        name="get_config",
        description=tool_description(
            "get_config",
            "Get the complete server configuration as JSON. Includes blocked_commands "
            "(commands that execute_command refuses), default_shell, claude_cli_path, "
            "claude_cli_name and default_timeout_ms.",
        ),
    )
    async def get_config() -> dict:
        audit("get_config")
        try:
            return handlers.get_config()
        except Exception as exc:
            log.exception("get_config failed")
            return error_response(f"Failed to get configuration: {exc}")

    @mcp.tool(
        name="set_config_value",
        description=tool_description(
            "set_config_value",
            "Set a configuration value by key. Should be used in a separate chat from "
            "command execution. Keys include blocked_commands (list), default_shell "
            "(string), claude_cli_path (absolute path), claude_cli_name (string) and "
            "default_timeout_ms (positive integer).",
        ),
    )
    async def set_config_value(key: str, value: Any) -> dict:
        audit("set_config_value", {"key": key, "value": value})
        try:
            return handlers.set_config_value(key, value)
        except Exception as exc:
            log.exception("set_config_value failed")
            return error_response(f"Failed to set configuration value: {exc}")

    # ------------------------------------------------------------------
    # Terminal tools
    # ------------------------------------------------------------------
    @mcp.tool(
        name="execute_command",
        description=tool_description(
            "execute_command",
            "Execute a terminal command with a timeout. If the command does not "
            "finish within timeout_ms it keeps running in the background; use "
            "read_output with the returned PID to follow it.",
        ),
    )
    async def execute_command(
        command: str,
        timeout_ms: int | None = None,
        shell: str | None = None,
    ) -> dict:
        """Execute a terminal command.

        Args:
            command: The command line to run.
            timeout_ms: How long to wait before returning with isBlocked=true.
            shell: Shell to run the command with. Defaults to default_shell.
        """
        audit("execute_command", {"command": command, "timeout_ms": timeout_ms, "shell": shell})
        try:
            return await handlers.execute_command(command, timeout_ms=timeout_ms, shell=shell)
        except Exception as exc:
            log.exception("execute_command failed")
            return error_response(exc, pid=-1)

    @mcp.tool(
        name="read_output",
        description=tool_description(
            "read_output",
            "Read new output from a terminal session. Returns exitCode once the "
            "session has finished; after that the PID is forgotten.",
        ),
    )
    async def read_output(pid: int) -> dict:
        audit("read_output", {"pid": pid})
        try:
            return handlers.read_output(pid)
        except Exception as exc:
            log.exception("read_output failed")
            return error_response(exc, pid=pid)

    @mcp.tool(
        name="force_terminate",
        description=tool_description(
            "force_terminate",
            "Force terminate a running terminal session and its child processes.",
        ),
    )
    async def force_terminate(pid: int) -> dict:
        audit("force_terminate", {"pid": pid})
        try:
            return await handlers.force_terminate(pid)
        except Exception as exc:
            log.exception("force_terminate failed")
            return error_response(exc, pid=pid, success=False)

    @mcp.tool(
        name="list_sessions",
        description=tool_description(
            "list_sessions",
            "List all active terminal sessions with their PID, blocked flag and "
            "runtime in seconds.",
        ),
    )
    async def list_sessions() -> dict:
        audit("list_sessions")
        try:
            return handlers.list_sessions()
        except Exception as exc:
            log.exception("list_sessions failed")
            return error_response(exc)

    # ------------------------------------------------------------------
    # Host process tools
    # ------------------------------------------------------------------
    @mcp.tool(
        name="list_processes",
        description=tool_description(
            "list_processes",
            "List all running processes on the host with PID, command name, CPU "
            "usage and memory usage.",
        ),
    )
    async def list_processes() -> dict:
        audit("list_processes")
        try:
            return handlers.list_processes()
        except Exception as exc:
            log.exception("list_processes failed")
            return error_response(exc)

    @mcp.tool(
        name="kill_process",
        description=tool_description(
            "kill_process",
            "Terminate a running host process by PID. Use with caution: the "
            "process is killed forcefully.",
        ),
    )
    async def kill_process(pid: int) -> dict:
        audit("kill_process", {"pid": pid})
        try:
            return handlers.kill_process(pid)
        except Exception as exc:
            log.exception("kill_process failed")
            return error_response(exc, pid=pid, success=False)

    # ------------------------------------------------------------------
    # Claude Code meta-tool
    # ------------------------------------------------------------------
    @mcp.tool(
        name="claude_code",
        description=tool_description(
            "claude_code",
            "Run a prompt through the Claude Code CLI. Returns the output if it "
            "finishes within 30 seconds, otherwise a PID to poll with read_output; "
            "the job itself has no time limit. Use work_folder for the working "
            "directory and tools to restrict the CLI's allowed tools (e.g. "
            "['Bash', 'Read', 'Write']). The CLI runs outside this server's "
            "command blocklist.",
        ),
    )
    async def claude_code(
        prompt: str,
        work_folder: str | None = None,
        tools: list[str] | None = None,
    ) -> dict:
        audit("claude_code", {"prompt": prompt, "work_folder": work_folder, "tools": tools})
        try:
            return await handlers.claude_code(prompt, work_folder=work_folder, tools=tools)
        except Exception as exc:
            log.exception("claude_code failed")
            return error_response(f"Claude Code execution error: {exc}")

    return mcp
