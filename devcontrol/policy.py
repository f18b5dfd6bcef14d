"""Command blocklist checks applied before a command is spawned."""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import PureWindowsPath

from .errors import BlockedCommandError

# Separators that start a new command: ; && || | & newlines, and the
# substitutions $( ... ), `...`, <( ... ) and >( ... )
_SEPARATOR_RE = re.compile(r"&&|\|\||[$<>]\(|[;|&\n`]")
_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")


def base_commands(command: str) -> list[str]:
    """Return the lower-cased program name of every simple command in a line.

        "FOO=1 /usr/bin/Sudo ls; echo hi | grep h"  ->  ["sudo", "echo", "grep"]
    """
    names: list[str] = []
    for segment in _SEPARATOR_RE.split(command):
        for word in segment.split():
            word = word.strip("()\"'`")
            if not word or _ASSIGNMENT_RE.match(word):
                continue
            # PureWindowsPath splits on both / and \
            name = PureWindowsPath(word).name.lower()
            names.append(name.removesuffix(".exe"))
            break
    return names


def check_command(command: str, blocked: Iterable[str]) -> None:
    """Raise BlockedCommandError if any command in the line is blocked."""
    blocked_set = {b.lower() for b in blocked}
    for name in base_commands(command):
        if name in blocked_set:
            raise BlockedCommandError(command, name)
