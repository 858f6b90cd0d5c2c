"""Connection provider interface.

Providers do transport only:
- no copy-protocol knowledge
- no sudo handling
- no abort policy

A session is owned by the single operation that opened it and must be closed
on every exit path (sessions are context managers).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..config import Config


# Pseudo-terminal geometry requested for run/sudo.
PTY_TERM = "xterm"
PTY_WIDTH = 80
PTY_HEIGHT = 40

READ_SIZE = 32768


@dataclass(frozen=True)
class ExecResult:
    command: str
    exit_status: int
    output: str


class RemoteProcess(Protocol):
    def write(self, data: bytes) -> None: ...

    def close_stdin(self) -> None: ...

    def read(self, size: int = READ_SIZE) -> bytes:
        """Return the next output bytes, or ``b""`` once output is exhausted."""
        ...

    def wait(self) -> int: ...

    def stderr(self) -> bytes:
        """Stderr captured so far; only meaningful after :meth:`wait`."""
        ...


class Session(Protocol):
    def start(self, command: str, *, pty: bool = False) -> RemoteProcess: ...

    def close(self) -> None: ...

    def __enter__(self) -> "Session": ...

    def __exit__(self, *exc: object) -> None: ...


class ConnectionProvider(Protocol):
    def open_session(self, config: Config) -> Session: ...
