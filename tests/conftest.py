"""In-process fake SSH provider.

``FakeProvider`` hands out sessions whose processes emulate the remote side:
``scp -t`` / ``scp -f`` against the local filesystem, and scripted output for
anything else. No network is involved.
"""

from __future__ import annotations

import os
import shlex
import threading
from typing import Callable, List, Optional, Sequence

import pytest

from loom.config import Config


class FakeProcess:
    def __init__(self) -> None:
        self.out = bytearray()
        self.written = bytearray()
        self.stdin_closed = False
        self.exit_status = 0
        self.err = b""
        self.waited = False

    def write(self, data: bytes) -> None:
        if self.stdin_closed:
            raise OSError("stdin is closed")
        self.written += data
        self.on_input(bytes(data))

    def on_input(self, data: bytes) -> None:
        pass

    def close_stdin(self) -> None:
        self.stdin_closed = True

    def read(self, size: int = 32768) -> bytes:
        chunk = bytes(self.out[:size])
        del self.out[:size]
        return chunk

    def wait(self) -> int:
        self.waited = True
        return self.exit_status

    def stderr(self) -> bytes:
        return self.err


class ScpSink(FakeProcess):
    """Remote ``scp -t TARGET``."""

    def __init__(self, target: str, fail_names: Sequence[str] = ()) -> None:
        super().__init__()
        self.target = target
        self.fail_names = set(fail_names)
        self._buf = bytearray()
        self._pending: Optional[tuple] = None
        self._done = False
        self.out += b"\x00"

    def _error(self, msg: str) -> None:
        self.out += b"\x02" + msg.encode() + b"\n"
        self.err += msg.encode() + b"\n"
        self.exit_status = 1
        self._done = True

    def on_input(self, data: bytes) -> None:
        self._buf += data
        while not self._done:
            if self._pending is None:
                idx = self._buf.find(b"\n")
                if idx < 0:
                    return
                line = bytes(self._buf[:idx])
                del self._buf[: idx + 1]
                mode, size, name = line[1:].decode().split(" ", 2)
                if name in self.fail_names:
                    self._error(f"scp: {name}: Permission denied")
                    return
                dest = os.path.join(self.target, name) if os.path.isdir(self.target) else self.target
                if not os.path.isdir(os.path.dirname(dest) or "."):
                    self._error(f"scp: {dest}: No such file or directory")
                    return
                self._pending = (int(mode, 8), int(size), dest)
                self.out += b"\x00"
            else:
                mode, size, dest = self._pending
                if len(self._buf) < size + 1:
                    return
                payload = bytes(self._buf[:size])
                assert self._buf[size] == 0
                del self._buf[: size + 1]
                with open(dest, "wb") as f:
                    f.write(payload)
                os.chmod(dest, mode)
                self._pending = None
                self.out += b"\x00"


class ScpSource(FakeProcess):
    """Remote ``scp -f PATH``; each NUL from the client advances one step."""

    def __init__(self, path: str, send_times: bool = False, truncate: Optional[int] = None, header: Optional[bytes] = None) -> None:
        super().__init__()
        self.steps: List[bytes] = []
        if not os.path.isfile(path):
            self.steps.append(b"\x01scp: " + path.encode() + b": No such file or directory\n")
            self.exit_status = 1
            return
        with open(path, "rb") as f:
            payload = f.read()
        mode = os.stat(path).st_mode & 0o7777
        if send_times:
            self.steps.append(b"T1700000000 0 1700000000 0\n")
        if header is None:
            header = f"C{mode:04o} {len(payload)} {os.path.basename(path)}\n".encode()
        self.steps.append(header)
        if truncate is not None:
            self.steps.append(payload[:truncate])
        else:
            self.steps.append(payload + b"\x00")

    def on_input(self, data: bytes) -> None:
        for b in data:
            assert b == 0
            if self.steps:
                self.out += self.steps.pop(0)


WAIT_FOR_INPUT = object()


class ScriptedProcess(FakeProcess):
    """Emits ``chunks`` one per read(); ``WAIT_FOR_INPUT`` blocks until the
    client writes something (as a real sudo would while prompting)."""

    def __init__(self, chunks: Sequence[object], exit_status: int = 0, fail_with: Optional[Exception] = None) -> None:
        super().__init__()
        self.chunks = list(chunks)
        self.exit_status = exit_status
        self.fail_with = fail_with
        self._input = threading.Event()
        self._lock = threading.Lock()
        self._hung_up = False

    def write(self, data: bytes) -> None:
        with self._lock:
            super().write(data)
        self._input.set()

    def hangup(self) -> None:
        """The session was closed: end the stream like a closed channel."""
        self._hung_up = True
        self._input.set()

    def read(self, size: int = 32768) -> bytes:
        while self.chunks and not self._hung_up:
            item = self.chunks.pop(0)
            if item is WAIT_FOR_INPUT:
                # Give up after a while so a missing answer ends the stream.
                self._input.wait(5)
                self._input.clear()
                continue
            return item  # type: ignore[return-value]
        if self._hung_up:
            return b""
        if self.fail_with is not None:
            raise self.fail_with
        return b""


class FakeSession:
    def __init__(self, provider: "FakeProvider") -> None:
        self.provider = provider
        self.started: List[tuple] = []
        self.processes: List[FakeProcess] = []
        self.closed = False

    def start(self, command: str, *, pty: bool = False) -> FakeProcess:
        self.started.append((command, pty))
        argv = shlex.split(command) if "scp" in command else []
        if argv[:2] == ["/usr/bin/scp", "-qrt"]:
            proc: FakeProcess = ScpSink(os.path.expanduser(argv[2]), fail_names=self.provider.sink_fail_names)
        elif argv[:2] == ["/usr/bin/scp", "-qrf"]:
            proc = self.provider.source_factory(os.path.expanduser(argv[2]))
        elif self.provider.command_factory is not None:
            proc = self.provider.command_factory(command, pty)
        else:
            proc = ScriptedProcess([])
        self.processes.append(proc)
        return proc

    def close(self) -> None:
        self.closed = True
        for proc in self.processes:
            if isinstance(proc, ScriptedProcess):
                proc.hangup()

    def __enter__(self) -> "FakeSession":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class FakeProvider:
    def __init__(self) -> None:
        self.sessions: List[FakeSession] = []
        self.configs: List[Config] = []
        self.command_factory: Optional[Callable[[str, bool], FakeProcess]] = None
        self.source_factory: Callable[[str], FakeProcess] = ScpSource
        self.sink_fail_names: List[str] = []

    def open_session(self, config: Config) -> FakeSession:
        self.configs.append(config)
        s = FakeSession(self)
        self.sessions.append(s)
        return s

    @property
    def commands(self) -> List[str]:
        return [cmd for s in self.sessions for cmd, _ in s.started]


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def config() -> Config:
    return Config(host="testhost", user="alice", password="s3cret")
