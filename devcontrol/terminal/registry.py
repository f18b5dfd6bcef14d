"""Session records and the active/completed tables that hold them."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from devcontrol.models import ActiveSession, CompletedSession, SessionState
from devcontrol.terminal.buffer import OutputBuffer
from devcontrol.terminal.spawner import SpawnedProcess

log = logging.getLogger(__name__)

DEFAULT_COMPLETED_TTL = 600.0  # seconds
DEFAULT_MAX_COMPLETED = 100


@dataclass
class Session:
    """State for a single tracked process."""

    pid: int
    command: str
    shell: str
    buffer: OutputBuffer
    state: SessionState = SessionState.CREATED
    is_blocked: bool = False
    exit_code: int | None = None
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    # Monotonic clock readings for runtime and retention; the wall-clock
    # times above are only reported.
    start_monotonic: float = field(default_factory=time.monotonic)
    end_monotonic: float | None = None
    terminating: bool = False
    _spawned: SpawnedProcess | None = field(default=None, repr=False)
    _pump_task: asyncio.Task[None] | None = field(default=None, repr=False)
    _watch_task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        return self._spawned.process if self._spawned is not None else None

    def mark_blocked(self) -> None:
        self.is_blocked = True
        self.state = SessionState.BLOCKED

    def active_view(self, now: float | None = None) -> ActiveSession:
        now = time.monotonic() if now is None else now
        return ActiveSession(
            pid=self.pid,
            is_blocked=self.is_blocked,
            runtime=max(now - self.start_monotonic, 0.0),
        )

    def completed_view(self) -> CompletedSession:
        return CompletedSession(
            pid=self.pid,
            output=self.buffer.all(),
            exit_code=self.exit_code,
            start_time=self.start_time,
            end_time=self.end_time or self.start_time,
        )


class SessionRegistry:
    """In-memory map of pid -> Session, split into active and completed tables.

    Every mutation is a plain synchronous method, so a pid moves between
    tables within a single event-loop turn and readers never observe it in
    both (or neither, while it is still tracked).
    """

    def __init__(
        self,
        *,
        completed_ttl: float = DEFAULT_COMPLETED_TTL,
        max_completed: int = DEFAULT_MAX_COMPLETED,
    ) -> None:
        self.completed_ttl = completed_ttl
        self.max_completed = max_completed
        self._active: dict[int, Session] = {}
        self._completed: dict[int, Session] = {}

    def __len__(self) -> int:
        return len(self._active) + len(self._completed)

    def __contains__(self, pid: object) -> bool:
        return pid in self._active or pid in self._completed

    def add(self, session: Session) -> None:
        if session.pid in self._active:
            raise ValueError(f"PID {session.pid} is already tracked as active")
        stale = self._completed.pop(session.pid, None)
        if stale is not None:
            log.debug("PID %s reused; dropping retained completed session", session.pid)
        session.state = SessionState.RUNNING
        self._active[session.pid] = session

    def get_active(self, pid: int) -> Session | None:
        return self._active.get(pid)

    def get_completed(self, pid: int) -> Session | None:
        return self._completed.get(pid)

    def active(self) -> list[Session]:
        return list(self._active.values())

    def completed(self) -> list[Session]:
        return list(self._completed.values())

    def complete(
        self,
        pid: int,
        exit_code: int | None,
        state: SessionState = SessionState.COMPLETED,
    ) -> Session | None:
        """Move a session from the active to the completed table.

        Returns None if the pid is not active (already moved or never added).
        """
        if not state.is_final:
            raise ValueError(f"Cannot complete a session into state {state.value!r}")
        session = self._active.pop(pid, None)
        if session is None:
            return None
        session.exit_code = exit_code
        session.end_time = time.time()
        session.end_monotonic = time.monotonic()
        session.is_blocked = False
        session.state = state
        self._completed[pid] = session

        while len(self._completed) > self.max_completed:
            oldest = next(iter(self._completed))
            del self._completed[oldest]
            log.debug("Evicted completed session %s (limit %d)", oldest, self.max_completed)
        return session

    def discard_completed(self, pid: int) -> Session | None:
        return self._completed.pop(pid, None)

    def purge_expired(self, now: float | None = None) -> list[int]:
        """Drop completed sessions older than the retention window."""
        now = time.monotonic() if now is None else now
        expired = [
            pid
            for pid, session in self._completed.items()
            if session.end_monotonic is not None
            and now - session.end_monotonic >= self.completed_ttl
        ]
        for pid in expired:
            del self._completed[pid]
        if expired:
            log.debug("Purged %d expired completed sessions", len(expired))
        return expired

    def clear(self) -> None:
        self._active.clear()
        self._completed.clear()
