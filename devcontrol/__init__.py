"""devcontrol: MCP tool server for running shell commands on a host.

Commands either finish within their timeout or become background
sessions that can be polled, listed and terminated:
  - execute_command: run a command, return output or a PID to poll
  - read_output:     incremental output of a session
  - force_terminate: stop a session and its child processes
  - list_sessions:   sessions that are still running
  - claude_code:     delegate a whole Claude Code CLI run as a session

Run with:
    python -m devcontrol
"""

from devcontrol.server import create_server
from devcontrol.terminal import SessionManager

__version__ = "0.1.0"

__all__ = ["SessionManager", "create_server", "__version__"]
