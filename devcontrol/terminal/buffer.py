"""Per-session output accumulator with a delivery cursor."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

DEFAULT_MAX_OUTPUT = 1_000_000  # characters


@dataclass(frozen=True)
class OutputDelta:
    text: str
    truncated: bool = False  # undelivered output was dropped before this read


@dataclass
class OutputBuffer:
    """Bounded append-only text buffer with a read cursor.

    Offsets are absolute character positions in everything ever appended.
    When the retained size exceeds ``max_size`` the oldest characters are
    dropped; the cursor never moves backwards, so a read never repeats text.
    """

    max_size: int = DEFAULT_MAX_OUTPUT
    _buf: deque[str] = field(default_factory=deque)
    _retained: int = 0
    _dropped: int = 0  # absolute offset of the first retained character
    _cursor: int = 0   # absolute offset of the first undelivered character
    truncated: bool = False

    @property
    def end(self) -> int:
        return self._dropped + self._retained

    @property
    def pending(self) -> int:
        """Number of retained characters not yet delivered."""
        return self.end - max(self._cursor, self._dropped)

    def append(self, data: str) -> None:
        if not data:
            return
        self._buf.append(data)
        self._retained += len(data)
        while self._retained > self.max_size:
            excess = self._retained - self.max_size
            head = self._buf[0]
            if len(head) <= excess:
                self._buf.popleft()
                cut = len(head)
            else:
                self._buf[0] = head[excess:]
                cut = excess
            self._retained -= cut
            self._dropped += cut
            self.truncated = True

    def read_new(self) -> OutputDelta:
        """Return everything appended since the last read and advance the cursor."""
        missed = self._cursor < self._dropped
        start = max(self._cursor, self._dropped)
        self._cursor = self.end
        return OutputDelta(text=self._slice_from(start), truncated=missed)

    def all(self) -> str:
        """Return all retained output without touching the cursor."""
        return "".join(self._buf)

    def _slice_from(self, offset: int) -> str:
        skip = offset - self._dropped
        if skip <= 0:
            return "".join(self._buf)
        parts: list[str] = []
        for chunk in self._buf:
            if skip >= len(chunk):
                skip -= len(chunk)
                continue
            parts.append(chunk[skip:] if skip else chunk)
            skip = 0
        return "".join(parts)
