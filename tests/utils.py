"""Test helpers shared across modules."""

from __future__ import annotations

import asyncio
import time

from devcontrol.models import OutputRead
from devcontrol.terminal import SessionManager

SHELL = "/bin/sh"


async def wait_until_finished(
    manager: SessionManager,
    pid: int,
    timeout: float = 10.0,
) -> tuple[str, OutputRead]:
    """Poll read_output until the session reports completion.

    Returns everything read along the way and the final (terminal) read.
    """
    collected: list[str] = []
    deadline = time.monotonic() + timeout
    while True:
        result = manager.read_output(pid)
        collected.append(result.output)
        if result.completed:
            return "".join(collected), result
        if time.monotonic() > deadline:
            raise AssertionError(f"session {pid} did not finish within {timeout}s")
        await asyncio.sleep(0.05)
