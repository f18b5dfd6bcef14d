"""Append-only audit log of tool calls."""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_RETENTION_COUNT = 5


class ToolCallAuditor:
    """Write one line per tool invocation to a size-rotated log file.

    Uses its own non-propagating logger so audit lines never end up in the
    server's stderr log, and a failing disk never fails the tool call.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        max_bytes: int = MAX_LOG_BYTES,
        backup_count: int = LOG_RETENTION_COUNT,
    ) -> None:
        self.path = Path(path)
        self._logger = logging.getLogger(f"devcontrol.audit.{id(self):x}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handler: logging.Handler = logging.handlers.RotatingFileHandler(
                self.path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            log.error("Cannot open audit log %s: %s; tool calls will not be audited", self.path, exc)
            handler = logging.NullHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        self._handler = handler
        self._logger.addHandler(handler)

    def record(self, tool_name: str, arguments: dict[str, Any] | None = None) -> None:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
        line = f"{timestamp} | {tool_name:<20}"
        if arguments:
            line += f"\t| Arguments: {json.dumps(arguments, default=str)}"
        self._logger.info(line)

    def close(self) -> None:
        self._logger.removeHandler(self._handler)
        self._handler.close()
