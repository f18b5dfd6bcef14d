"""Command execution sessions.

A command is started through :class:`SessionManager.execute_command` and
either finishes within its timeout or keeps running as a background
session that callers poll with ``read_output`` and stop with
``force_terminate``.
"""

from devcontrol.terminal.buffer import OutputBuffer, OutputDelta
from devcontrol.terminal.manager import SessionManager
from devcontrol.terminal.registry import Session, SessionRegistry

__all__ = [
    "OutputBuffer",
    "OutputDelta",
    "Session",
    "SessionManager",
    "SessionRegistry",
]
