"""Start shell processes for the session manager.

The spawner does no content inspection; blocklist checks happen in the
handlers before a command ever reaches it.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import PureWindowsPath

from devcontrol.errors import SpawnError
from devcontrol.terminal.buffer import OutputBuffer

log = logging.getLogger(__name__)

READ_CHUNK = 4096


@dataclass
class SpawnedProcess:
    """A started shell process and the read end of its merged output pipe."""

    process: asyncio.subprocess.Process
    stdout: asyncio.StreamReader
    _transport: asyncio.BaseTransport | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    def close_output(self) -> None:
        """Close the output pipe, e.g. when a grandchild still holds it open."""
        if self._transport is not None and not self._transport.is_closing():
            self._transport.close()


def shell_argv(shell: str, command: str) -> list[str]:
    """Return the argv that runs ``command`` through ``shell``."""
    name = PureWindowsPath(shell).name.lower()
    if name in ("cmd", "cmd.exe"):
        return [shell, "/c", command]
    if name.startswith(("powershell", "pwsh")):
        return [shell, "-NoProfile", "-Command", command]
    return [shell, "-c", command]


def _spawn_error(command: str, shell: str, exc: OSError) -> SpawnError:
    if isinstance(exc, FileNotFoundError):
        return SpawnError(command, shell, f"shell not found ({exc.strerror or exc})")
    if isinstance(exc, PermissionError):
        return SpawnError(command, shell, f"permission denied ({exc.strerror or exc})")
    return SpawnError(command, shell, str(exc))


async def spawn_process(
    command: str,
    shell: str,
    cwd: str | None = None,
) -> SpawnedProcess:
    """Start ``command`` under ``shell`` with stderr merged into stdout.

    On POSIX the output pipe is created here rather than by asyncio, so
    ``process.wait()`` returns when the shell exits even if a background
    child keeps the pipe open.

    Raises SpawnError if the shell, the working directory or the
    permissions to run them are missing.
    """
    if cwd is not None and not os.path.isdir(cwd):
        raise SpawnError(command, shell, f"working directory does not exist: {cwd}")

    if sys.platform == "win32":
        try:
            process = await asyncio.create_subprocess_exec(
                *shell_argv(shell, command),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=cwd,
            )
        except OSError as exc:
            raise _spawn_error(command, shell, exc) from exc
        assert process.stdout is not None
        return SpawnedProcess(process=process, stdout=process.stdout)

    read_fd, write_fd = os.pipe()
    try:
        # Own process group so the whole tree can be signalled at once
        process = await asyncio.create_subprocess_exec(
            *shell_argv(shell, command),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=write_fd,
            stderr=asyncio.subprocess.STDOUT,
            cwd=cwd,
            start_new_session=True,
        )
    except OSError as exc:
        os.close(read_fd)
        raise _spawn_error(command, shell, exc) from exc
    finally:
        os.close(write_fd)

    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    transport, _ = await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader),
        os.fdopen(read_fd, "rb", buffering=0),
    )
    log.debug("Spawned pid=%s: %s", process.pid, command)
    return SpawnedProcess(process=process, stdout=reader, _transport=transport)


async def pump_output(stream: asyncio.StreamReader, buf: OutputBuffer) -> None:
    """Copy a process stream into its output buffer until EOF."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(READ_CHUNK)
        if not chunk:
            break
        buf.append(decoder.decode(chunk))
    buf.append(decoder.decode(b"", final=True))


def signal_tree(process: asyncio.subprocess.Process, force: bool = False) -> None:
    """Send SIGTERM (or SIGKILL when ``force``) to the process and its children.

    Raises ProcessLookupError if nothing is left to signal and
    PermissionError / OSError if the signal cannot be delivered.
    """
    if sys.platform == "win32":
        if force:
            process.kill()
        else:
            process.terminate()
        return
    sig = signal.SIGKILL if force else signal.SIGTERM
    os.killpg(process.pid, sig)
