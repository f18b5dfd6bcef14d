"""Session Manager: runs commands as synchronous results or pollable background jobs."""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from typing import Any

from devcontrol.errors import SpawnError, TerminationError, UnknownSessionError
from devcontrol.models import (
    ActiveSession,
    CommandResult,
    CompletedSession,
    OutputRead,
    SessionState,
)
from devcontrol.terminal.buffer import DEFAULT_MAX_OUTPUT, OutputBuffer
from devcontrol.terminal.registry import (
    DEFAULT_COMPLETED_TTL,
    DEFAULT_MAX_COMPLETED,
    Session,
    SessionRegistry,
)
from devcontrol.terminal.spawner import pump_output, signal_tree, spawn_process

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 1000
DEFAULT_TERMINATE_GRACE = 1.0  # seconds between SIGTERM and SIGKILL
KILL_WAIT = 2.0                # seconds to wait for exit after SIGKILL
OUTPUT_DRAIN_TIMEOUT = 1.0     # seconds to collect trailing output after exit


def _timeout_seconds(timeout_ms: object) -> float:
    """Validate a millisecond timeout before anything is spawned."""
    if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)):
        raise ValueError(f"timeout_ms must be a number, got {timeout_ms!r}")
    if timeout_ms < 0:
        raise ValueError(f"timeout_ms must not be negative, got {timeout_ms!r}")
    return timeout_ms / 1000


def _terminated_exit_code(returncode: int | None) -> int:
    """Exit status reported for a session ended by force_terminate."""
    if returncode is None or returncode == 0:
        return 128 + signal.SIGTERM
    if returncode < 0:
        return 128 - returncode
    return returncode


class SessionManager:
    """Tracks every process started through :meth:`execute_command`.

    Owns the registry and the output buffers; callers address sessions by
    pid and only receive read-only projections.
    """

    def __init__(
        self,
        *,
        default_shell: str = "bash",
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_output: int = DEFAULT_MAX_OUTPUT,
        completed_ttl: float = DEFAULT_COMPLETED_TTL,
        max_completed: int = DEFAULT_MAX_COMPLETED,
        terminate_grace: float = DEFAULT_TERMINATE_GRACE,
    ) -> None:
        self.default_shell = default_shell
        self.default_timeout_ms = default_timeout_ms
        self.max_output = max_output
        self.terminate_grace = terminate_grace
        self._registry = SessionRegistry(
            completed_ttl=completed_ttl,
            max_completed=max_completed,
        )
        self._closed = False

    async def __aenter__(self) -> SessionManager:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute_command(
        self,
        command: str,
        timeout_ms: int | None = None,
        shell: str | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run a command, waiting at most ``timeout_ms`` for it to finish.

        If the process exits in time the session is completed and the full
        output is returned with ``is_blocked=False``. Otherwise the process
        keeps running in the background and the output so far is returned
        with ``is_blocked=True``; poll it with :meth:`read_output`.
        A command that cannot be started yields ``pid=-1``; an invalid
        ``timeout_ms`` raises ValueError before anything is started.
        """
        if self._closed:
            raise RuntimeError("SessionManager has been shut down")
        self._registry.purge_expired()

        shell = shell or self.default_shell
        timeout = _timeout_seconds(self.default_timeout_ms if timeout_ms is None else timeout_ms)

        try:
            spawned = await spawn_process(command, shell, cwd=cwd)
        except SpawnError as exc:
            log.warning("Could not start command %r: %s", command, exc.reason)
            return CommandResult(pid=-1, output=str(exc), is_blocked=False)

        session = Session(
            pid=spawned.pid,
            command=command,
            shell=shell,
            buffer=OutputBuffer(max_size=self.max_output),
            _spawned=spawned,
        )
        self._registry.add(session)
        session._pump_task = asyncio.create_task(
            pump_output(spawned.stdout, session.buffer),
            name=f"session-{session.pid}-output",
        )
        session._watch_task = asyncio.create_task(
            self._watch(session),
            name=f"session-{session.pid}-watcher",
        )
        log.info("Started session pid=%s: %s", session.pid, command)

        # Race process exit against the timeout; asyncio.wait never cancels
        # the watcher, so the process keeps running if the timer wins.
        await asyncio.wait({session._watch_task}, timeout=timeout)

        if session.state.is_final:
            delta = session.buffer.read_new()
            return CommandResult(
                pid=session.pid,
                output=delta.text,
                is_blocked=False,
                truncated=delta.truncated,
            )

        session.mark_blocked()
        delta = session.buffer.read_new()
        log.info(
            "Session pid=%s still running after %.1f s; continuing in background",
            session.pid, timeout,
        )
        return CommandResult(
            pid=session.pid,
            output=delta.text,
            is_blocked=True,
            truncated=delta.truncated,
        )

    def read_output(self, pid: int) -> OutputRead:
        """Return output produced since the last read of ``pid``.

        For a finished session this is the terminal read: it carries the
        exit code and the record is purged afterwards.
        """
        self._registry.purge_expired()

        session = self._registry.get_active(pid)
        if session is not None:
            delta = session.buffer.read_new()
            return OutputRead(
                pid=pid,
                output=delta.text,
                state=session.state,
                is_blocked=session.is_blocked,
                truncated=delta.truncated,
            )

        session = self._registry.discard_completed(pid)
        if session is not None:
            delta = session.buffer.read_new()
            return OutputRead(
                pid=pid,
                output=delta.text,
                state=session.state,
                exit_code=session.exit_code,
                truncated=delta.truncated,
            )

        raise UnknownSessionError(pid)

    async def force_terminate(self, pid: int) -> bool:
        """Terminate the process tree behind ``pid``.

        Sends SIGTERM, escalates to SIGKILL after ``terminate_grace`` seconds
        and returns True once the session has been moved to completed.
        Returns True straight away if it already finished.
        """
        self._registry.purge_expired()

        if self._registry.get_completed(pid) is not None:
            return True
        session = self._registry.get_active(pid)
        if session is None:
            raise UnknownSessionError(pid)

        process = session.process
        assert process is not None

        try:
            signal_tree(process)
        except ProcessLookupError:
            # Nothing left to signal; the watcher may just not have run yet.
            if await self._wait_for_exit(session, self.terminate_grace):
                return True
            raise TerminationError(pid, "process not found") from None
        except OSError as exc:
            raise TerminationError(pid, exc.strerror or str(exc)) from exc

        session.terminating = True
        log.info("Sent SIGTERM to session pid=%s", pid)
        if await self._wait_for_exit(session, self.terminate_grace):
            return True

        log.warning("Session pid=%s ignored SIGTERM; sending SIGKILL", pid)
        try:
            signal_tree(process, force=True)
        except ProcessLookupError:
            pass
        except OSError as exc:
            raise TerminationError(pid, exc.strerror or str(exc)) from exc

        if await self._wait_for_exit(session, KILL_WAIT):
            return True
        raise TerminationError(pid, "process did not exit after SIGKILL")

    def list_sessions(self) -> list[ActiveSession]:
        """Return a projection of every still-running session."""
        self._registry.purge_expired()
        now = time.monotonic()
        return [s.active_view(now) for s in self._registry.active()]

    def list_completed(self) -> list[CompletedSession]:
        """Return retained completed sessions without consuming them."""
        self._registry.purge_expired()
        return [s.completed_view() for s in self._registry.completed()]

    async def shutdown(self) -> None:
        """Stop accepting commands and terminate every active session."""
        if self._closed:
            return
        self._closed = True

        sessions = self._registry.active()
        if sessions:
            log.info("Terminating %d active session(s)", len(sessions))
        results = await asyncio.gather(
            *(self.force_terminate(s.pid) for s in sessions),
            return_exceptions=True,
        )
        for session, result in zip(sessions, results):
            if isinstance(result, BaseException):
                log.warning(
                    "Could not terminate session pid=%s on shutdown: %s",
                    session.pid, result,
                )
                for task in (session._watch_task, session._pump_task):
                    if task is not None and not task.done():
                        task.cancel()
                if session._spawned is not None:
                    session._spawned.close_output()
        self._registry.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _wait_for_exit(session: Session, timeout: float) -> bool:
        task = session._watch_task
        if task is None:
            return session.state.is_final
        await asyncio.wait({task}, timeout=timeout)
        return task.done()

    async def _watch(self, session: Session) -> None:
        """Wait for the process to exit and make the single terminal transition."""
        spawned = session._spawned
        assert spawned is not None
        process = spawned.process
        try:
            returncode = await process.wait()
            pump = session._pump_task
            if pump is not None:
                # A background grandchild may hold the pipe open; give up
                # on trailing output after a short drain.
                done, _ = await asyncio.wait({pump}, timeout=OUTPUT_DRAIN_TIMEOUT)
                if not done:
                    log.debug("Session pid=%s: stopped reading output after exit", session.pid)
                    pump.cancel()
                    spawned.close_output()
                elif not pump.cancelled() and pump.exception() is not None:
                    log.warning(
                        "Session pid=%s: output reader failed: %s",
                        session.pid, pump.exception(),
                    )
        except Exception:
            log.exception("Watcher for session pid=%s failed", session.pid)
            returncode = process.returncode

        if session.terminating:
            self._registry.complete(
                session.pid,
                _terminated_exit_code(returncode),
                SessionState.TERMINATED,
            )
            log.info("Session pid=%s terminated", session.pid)
        else:
            self._registry.complete(session.pid, returncode, SessionState.COMPLETED)
            log.info("Session pid=%s exited with code %s", session.pid, returncode)
