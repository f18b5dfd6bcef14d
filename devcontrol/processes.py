"""Host process listing and killing, independent of tracked sessions."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

import psutil

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    command: str
    cpu: str
    memory: str


def list_processes() -> list[ProcessInfo]:
    """Snapshot of every process visible to the server."""
    result: list[ProcessInfo] = []
    for proc in psutil.process_iter(["pid", "name", "cpu_percent", "memory_percent"]):
        info = proc.info
        result.append(ProcessInfo(
            pid=info["pid"],
            command=info.get("name") or "",
            cpu=f"{info.get('cpu_percent') or 0.0:.1f}%",
            memory=f"{info.get('memory_percent') or 0.0:.1f}%",
        ))
    return result


def kill_process(pid: int) -> None:
    """Kill a host process by pid.

    Raises psutil.NoSuchProcess or psutil.AccessDenied.
    """
    proc = psutil.Process(pid)
    name = proc.name()
    proc.kill()
    log.info("Killed host process pid=%s (%s)", pid, name)


def as_dicts(processes: list[ProcessInfo]) -> list[dict]:
    return [asdict(p) for p in processes]
