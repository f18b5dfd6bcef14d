"""Delegate a whole Claude Code CLI invocation to the session manager.

The CLI runs as an ordinary session with a short initial timeout. That
timeout only decides whether the caller gets the finished output or a pid
to poll with ``read_output``; it does not bound the job. A delegated job
runs until it exits, is force-terminated, or the server shuts down.
"""

from __future__ import annotations

import logging
import os
import shlex
from pathlib import Path
from typing import Any

from .config import ConfigStore
from .errors import TerminationError, error_response
from .terminal import SessionManager

log = logging.getLogger(__name__)

INITIAL_TIMEOUT_MS = 30_000
DEFAULT_LOCAL_CLI = Path.home() / ".claude" / "local" / "claude"


def find_claude_cli(config: ConfigStore, local_cli: Path = DEFAULT_LOCAL_CLI) -> str:
    """Resolve the Claude CLI executable.

    Order: configured ``claude_cli_path`` (the store only accepts absolute
    paths), the default local install at ~/.claude/local/claude, then
    ``claude_cli_name`` on PATH.
    """
    configured_path = config.get("claude_cli_path")
    configured_name = config.get("claude_cli_name") or "claude"

    if configured_path:
        if os.path.exists(configured_path):
            log.debug("Using configured Claude CLI path: %s", configured_path)
            return configured_path
        log.warning(
            "Configured claude_cli_path %s does not exist; falling back", configured_path,
        )

    if local_cli.exists():
        log.debug("Found Claude CLI at default local path: %s", local_cli)
        return str(local_cli)

    log.warning(
        "Claude CLI not found at %s or configured claude_cli_path; "
        "relying on %r being on PATH", local_cli, configured_name,
    )
    return configured_name


def build_command(executable: str, prompt: str, tools: list[str] | None = None) -> str:
    """Build the shell-quoted CLI command line."""
    argv = [executable, "-p", prompt]
    if tools:
        argv += ["--allowedTools", *tools]
    return shlex.join(argv)


class ClaudeCodeTool:
    plugin_id = "claude"
    display_name = "Claude Code"

    def __init__(
        self,
        manager: SessionManager,
        config: ConfigStore,
        *,
        initial_timeout_ms: int = INITIAL_TIMEOUT_MS,
        local_cli: Path = DEFAULT_LOCAL_CLI,
    ) -> None:
        self.manager = manager
        self.config = config
        self.initial_timeout_ms = initial_timeout_ms
        self.local_cli = local_cli

    def resolve_workdir(self, work_folder: str | None) -> str:
        """Use ``work_folder`` if it exists, otherwise the home directory."""
        home = str(Path.home())
        if not work_folder:
            return home
        resolved = Path(work_folder).expanduser().resolve()
        if not resolved.is_dir():
            log.warning("work_folder %s does not exist; using %s", work_folder, home)
            return home
        return str(resolved)

    async def run(
        self,
        prompt: str,
        work_folder: str | None = None,
        tools: list[str] | None = None,
    ) -> dict[str, Any]:
        executable = find_claude_cli(self.config, self.local_cli)

        cwd = self.resolve_workdir(work_folder)
        command = build_command(executable, prompt, tools)
        log.debug("Executing Claude Code command in %s: %s", cwd, command)

        result = await self.manager.execute_command(
            command,
            timeout_ms=self.initial_timeout_ms,
            shell=self.config.default_shell,
            cwd=cwd,
        )

        if result.failed_to_start:
            return error_response(f"Failed to start Claude Code process: {result.output}")

        lowered = result.output.lower()
        if "permission" in lowered and "accept" in lowered:
            if result.is_blocked:
                try:
                    await self.manager.force_terminate(result.pid)
                except TerminationError as exc:
                    log.warning("Could not stop Claude Code job: %s", exc)
            return error_response(
                "Claude Code CLI requires one-time permission acceptance. Please run "
                f'"{executable} --dangerously-skip-permissions" in a separate terminal, '
                "follow the prompts to accept permissions, and then try again.",
                pid=result.pid,
            )

        if result.is_blocked:
            return {
                "pid": result.pid,
                "status": "running",
                "working_directory": cwd,
                "output": result.output,
                "message": (
                    f"Claude Code job started with PID {result.pid} and is still running. "
                    f"Use read_output with PID {result.pid} to check status."
                ),
            }

        return {
            "pid": result.pid,
            "status": "completed",
            "working_directory": cwd,
            "output": result.output,
        }
