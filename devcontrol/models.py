from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

class SessionState(str, enum.Enum):
    CREATED = "created"
    RUNNING = "running"
    BLOCKED = "blocked"        # initial timeout elapsed, process still alive
    COMPLETED = "completed"    # natural exit
    TERMINATED = "terminated"  # killed by force_terminate / shutdown

    @property
    def is_final(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.TERMINATED)


# ---------------------------------------------------------------------------
# Projections handed out by the SessionManager. The process handle never
# leaves the registry; callers only ever see these.
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CommandResult:
    pid: int
    output: str
    is_blocked: bool
    truncated: bool = False

    @property
    def failed_to_start(self) -> bool:
        return self.pid == -1

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "output": self.output,
            "isBlocked": self.is_blocked,
            "truncated": self.truncated,
        }


@dataclass(frozen=True)
class OutputRead:
    """Result of read_output: a delta for an active session, or the terminal read."""

    pid: int
    output: str
    state: SessionState
    is_blocked: bool = False
    exit_code: int | None = None
    truncated: bool = False

    @property
    def completed(self) -> bool:
        return self.state.is_final

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"pid": self.pid, "output": self.output}
        if self.completed:
            data["exitCode"] = self.exit_code
            data["status"] = self.state.value
        else:
            data["isBlocked"] = self.is_blocked
        if self.truncated:
            data["truncated"] = True
        return data


@dataclass(frozen=True)
class ActiveSession:
    pid: int
    is_blocked: bool
    runtime: float  # seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "isBlocked": self.is_blocked,
            "runtime": round(self.runtime, 1),
        }


@dataclass(frozen=True)
class CompletedSession:
    pid: int
    output: str
    exit_code: int | None
    start_time: float
    end_time: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "output": self.output,
            "exitCode": self.exit_code,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }
