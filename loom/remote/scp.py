"""Copy-protocol (scp) transfer engine.

The remote side runs ``scp -t <target>`` (sink, for pushes) or
``scp -f <file>`` (source, for pulls) and talks over its stdin/stdout:

* control lines are ASCII and newline terminated; a file is announced as
  ``C<mode:4 octal> <size> <name>``, followed by exactly ``size`` raw bytes
  and one status byte;
* every step is acknowledged with a single NUL byte; ``\\x01`` (warning) or
  ``\\x02`` (fatal) followed by a message line signal an error.

Both directions read the peer's acknowledgments step by step rather than
firing a fixed number of NULs and hoping for the best. Only single regular
files are supported: directory records (``D``/``E``) are rejected.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import posixpath
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from ..config import Config
from ..errors import RemoteExecError, TransferError
from .session import ConnectionProvider, RemoteProcess, Session
from .ssh_transport import shell_quote


logger = logging.getLogger(__name__)

REMOTE_SCP = "/usr/bin/scp"
STATUS_OK = b"\x00"
STATUS_WARNING = b"\x01"
STATUS_FATAL = b"\x02"
# Mode used for put_string payloads.
STRING_FILE_MODE = 0o644

_DIRECTIVE_RE = re.compile(rb"^C([0-7]{4}) ([0-9]+) (.+)$")
_MAGIC_RE = re.compile(r"[*?[]")
# Leading "~" or "~user" segment, left for the remote shell to expand.
_TILDE_RE = re.compile(r"^(~[A-Za-z0-9._-]*)(?:/|$)")


@dataclass(frozen=True)
class TransferDirective:
    """One file announcement: ``C<mode> <size> <name>``."""

    mode: int
    size: int
    name: str

    def encode(self) -> bytes:
        if not 0 <= self.mode <= 0o7777:
            raise TransferError(f"invalid file mode: {self.mode:o}")
        if self.size < 0:
            raise TransferError(f"invalid payload size: {self.size}")
        if not self.name or "/" in self.name or "\n" in self.name:
            raise TransferError(f"invalid file name for copy protocol: {self.name!r}")
        return f"C{self.mode:04o} {self.size} {self.name}\n".encode("utf-8")

    @staticmethod
    def parse(line: bytes) -> "TransferDirective":
        """Parse a header line (with or without its trailing newline)."""

        m = _DIRECTIVE_RE.match(line.rstrip(b"\n"))
        if m is None:
            raise TransferError(f"malformed copy header: {line[:80]!r}")
        mode = int(m.group(1), 8)
        size = int(m.group(2))
        name = m.group(3).decode("utf-8", errors="replace")
        return TransferDirective(mode=mode, size=size, name=name)


@dataclass(frozen=True)
class ReceivedFile:
    directive: TransferDirective
    payload: bytes


class ScpStream:
    """Buffered reader over a remote process's output."""

    def __init__(self, proc: RemoteProcess, command: str):
        self.proc = proc
        self.command = command
        self._buf = bytearray()
        self._eof = False

    def _fill(self) -> bool:
        if self._eof:
            return False
        data = self.proc.read()
        if not data:
            self._eof = True
            return False
        self._buf += data
        return True

    def read_line(self) -> Optional[bytes]:
        """Next line without its newline; None at a clean EOF."""

        while True:
            idx = self._buf.find(b"\n")
            if idx >= 0:
                line = bytes(self._buf[:idx])
                del self._buf[: idx + 1]
                return line
            if not self._fill():
                if self._buf:
                    raise TransferError(f"truncated control line from {self.command!r}: {bytes(self._buf[:80])!r}")
                return None

    def read_exact(self, n: int) -> bytes:
        while len(self._buf) < n:
            if not self._fill():
                raise TransferError(f"short payload: expected {n} bytes, got {len(self._buf)}")
        data = bytes(self._buf[:n])
        del self._buf[:n]
        return data

    def expect_ok(self) -> None:
        """Consume one acknowledgment; raise on an error reply or EOF."""

        if not self._buf and not self._fill():
            fail_closed(self.proc, self.command)
        code = bytes(self._buf[:1])
        del self._buf[:1]
        if code == STATUS_OK:
            return
        if code in (STATUS_WARNING, STATUS_FATAL):
            msg = self.read_line() or b""
            raise TransferError(msg.decode("utf-8", errors="replace").strip() or "remote scp error")
        raise TransferError(f"unexpected copy-protocol response {code!r}")


def finish(proc: RemoteProcess, command: str) -> None:
    """Close our side and require a zero exit status."""

    proc.close_stdin()
    status = proc.wait()
    if status != 0:
        raise RemoteExecError(command, status, stderr=proc.stderr().decode("utf-8", errors="replace"))


def fail_closed(proc: RemoteProcess, command: str) -> None:
    """The peer closed the stream mid-protocol; report the most specific error."""

    status = proc.wait()
    if status != 0:
        raise RemoteExecError(command, status, stderr=proc.stderr().decode("utf-8", errors="replace"))
    raise TransferError(f"remote closed the copy stream early: {command}")


def remote_path_arg(path: str) -> str:
    """Quote a remote path for the remote shell, keeping ``~``/``~user`` expandable."""

    m = _TILDE_RE.match(path)
    if m is None:
        return shell_quote(path)
    head, rest = m.group(0), path[m.end():]
    return head + shell_quote(rest) if rest else head


def match_local(pattern: str) -> List[str]:
    """Sorted local paths matching ``pattern``.

    Like :func:`glob.glob`, except that wildcards also match names starting
    with a dot.
    """

    if not _MAGIC_RE.search(pattern):
        return [pattern] if os.path.lexists(pattern) else []
    dirname, base = os.path.split(pattern)
    if not dirname:
        dirs = [""]
    elif _MAGIC_RE.search(dirname):
        dirs = match_local(dirname)
    else:
        dirs = [dirname]

    found: List[str] = []
    for d in dirs:
        try:
            names = os.listdir(d or os.curdir)
        except OSError:
            continue
        if _MAGIC_RE.search(base):
            found.extend(os.path.join(d, n) for n in fnmatch.filter(names, base))
        elif base in names:
            found.append(os.path.join(d, base))
    return sorted(found)


def send_file(session: Session, remote_target: str, directive: TransferDirective, payload: bytes) -> None:
    """Push one payload to ``remote_target`` through a remote ``scp -t``."""

    if len(payload) != directive.size:
        raise TransferError(f"payload is {len(payload)} bytes, directive says {directive.size}")
    header = directive.encode()
    command = f"{REMOTE_SCP} -qrt {remote_path_arg(remote_target)}"
    proc = session.start(command)
    stream = ScpStream(proc, command)

    stream.expect_ok()
    proc.write(header)
    stream.expect_ok()
    proc.write(payload)
    proc.write(STATUS_OK)
    stream.expect_ok()
    finish(proc, command)


def receive_file(session: Session, remote_file: str) -> ReceivedFile:
    """Pull one regular file through a remote ``scp -f``."""

    command = f"{REMOTE_SCP} -qrf {remote_path_arg(remote_file)}"
    proc = session.start(command)
    stream = ScpStream(proc, command)

    proc.write(STATUS_OK)
    while True:
        line = stream.read_line()
        if line is None:
            fail_closed(proc, command)
        code = line[:1]
        if code in (STATUS_WARNING, STATUS_FATAL):
            msg = line[1:].decode("utf-8", errors="replace").strip()
            raise TransferError(msg or f"remote scp error for {remote_file}")
        if code == b"T":
            # Timestamps (-p); nothing to keep.
            proc.write(STATUS_OK)
            continue
        if code == b"C":
            directive = TransferDirective.parse(line)
            proc.write(STATUS_OK)
            payload = stream.read_exact(directive.size)
            stream.expect_ok()
            proc.write(STATUS_OK)
            break
        if code in (b"D", b"E"):
            raise TransferError(f"directory transfer is not supported: {remote_file}")
        raise TransferError(f"malformed copy header: {line[:80]!r}")

    finish(proc, command)
    return ReceivedFile(directive=directive, payload=payload)


def local_destination(remote_file: str, local_file: str) -> str:
    """Where a pulled file lands.

    An existing directory receives ``basename(remote_file)``; anything else is
    used verbatim as the file name.
    """

    if len(local_file) > 1:
        local_file = local_file.rstrip("/") or "/"
    if os.path.isdir(local_file):
        return os.path.join(local_file, posixpath.basename(remote_file))
    return local_file


class TransferEngine:
    """put/put_string/get over the copy protocol. One session per file."""

    def __init__(
        self,
        config: Config,
        provider: ConnectionProvider,
        echo: Optional[Callable[[str], None]] = None,
    ):
        self.config = config
        self.provider = provider
        self._echo = echo

    def _announce(self, s: str) -> None:
        logger.info(s)
        if self._echo is not None:
            self._echo(s + "\n")

    def put(self, local_pattern: str, remote_target: str) -> List[str]:
        """Copy every local file matching ``local_pattern`` to ``remote_target``.

        Stops at the first failing file; files already copied stay copied.
        Returns the local paths that were transferred.
        """

        files = match_local(local_pattern)
        if not files:
            raise TransferError(f"No files match {local_pattern}")

        done: List[str] = []
        for local_file in files:
            self._announce(f"put: {local_file} {remote_target}")
            try:
                with open(local_file, "rb") as f:
                    payload = f.read()
                mode = os.stat(local_file).st_mode & 0o777
            except OSError as e:
                raise TransferError(f"cannot read {local_file}: {e}") from e

            directive = TransferDirective(mode=mode, size=len(payload), name=os.path.basename(local_file))
            with self.provider.open_session(self.config) as session:
                send_file(session, remote_target, directive, payload)
            done.append(local_file)
        return done

    def put_string(self, data: Union[str, bytes], remote_file: str) -> None:
        """Create ``remote_file`` with ``data`` as content and mode 0644."""

        self._announce(f"putstring: {remote_file}")
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        directive = TransferDirective(
            mode=STRING_FILE_MODE,
            size=len(payload),
            name=posixpath.basename(remote_file),
        )
        with self.provider.open_session(self.config) as session:
            send_file(session, remote_file, directive, payload)

    def get(self, remote_file: str, local_file: str) -> str:
        """Copy ``remote_file`` to the local host; return the written path."""

        self._announce(f"get: {remote_file} {local_file}")
        if not local_file:
            raise TransferError("local destination is empty")
        with self.provider.open_session(self.config) as session:
            received = receive_file(session, remote_file)

        dest = local_destination(remote_file, local_file)
        try:
            with open(dest, "wb") as f:
                f.write(received.payload)
            os.chmod(dest, received.directive.mode & 0o7777)
        except OSError as e:
            raise TransferError(f"cannot write {dest}: {e}") from e
        logger.debug("get: wrote %d bytes to %s (mode %04o)", len(received.payload), dest, received.directive.mode)
        return dest
