"""SSH connection providers.

Two providers implement :class:`loom.remote.session.ConnectionProvider`:

* :class:`ParamikoProvider` (default) speaks SSH in-process via paramiko. It
  supports password authentication and explicit key files.
* :class:`SystemSshProvider` drives the *system* ssh binary. It reuses the
  user's SSH config, agent and keys, but cannot do password authentication
  (the password is still used to answer sudo).

Each :meth:`open_session` call yields a fresh connection owned by one
operation.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from typing import List, Optional

import paramiko

from ..config import DEFAULT_KEY_FILE, Config
from ..errors import AuthError, SSHConnectionError
from .session import PTY_HEIGHT, PTY_TERM, PTY_WIDTH, READ_SIZE


logger = logging.getLogger(__name__)


def shell_quote(s: str) -> str:
    """Quote a string for safe use in a remote bash command.

    We use single quotes and escape embedded single quotes using the classic
    POSIX pattern:  'foo'"'"'bar'
    """

    if s == "":
        return "''"
    return "'" + s.replace("'", "'\"'\"'") + "'"


def load_private_key(path: str) -> paramiko.PKey:
    """Parse a private key file (RSA, ECDSA, Ed25519).

    Raises :class:`FileNotFoundError` when the file is missing and
    :class:`AuthError` when it cannot be parsed.
    """

    path = os.path.expanduser(path)
    if not os.path.isfile(path):
        raise FileNotFoundError(path)
    try:
        return paramiko.PKey.from_path(path)
    except Exception as e:
        raise AuthError(f"cannot parse private key {path}: {e}") from e


def resolve_key_files(config: Config) -> List[str]:
    """Return the key files to offer, validating each one.

    The default key is optional: a missing or unreadable ~/.ssh/id_rsa is
    skipped. Extra keys from the config must exist and parse.
    """

    keys: List[str] = []
    default = os.path.expanduser(DEFAULT_KEY_FILE)
    try:
        load_private_key(default)
        keys.append(default)
    except FileNotFoundError:
        pass
    except AuthError as e:
        logger.warning("ignoring default key: %s", e)

    for keyfile in config.key_files:
        try:
            load_private_key(keyfile)
        except FileNotFoundError as e:
            raise AuthError(f"key file not found: {keyfile}") from e
        keys.append(os.path.expanduser(keyfile))
    return keys


# ---------------------------------------------------------------------------
# paramiko
# ---------------------------------------------------------------------------

class ParamikoProcess:
    def __init__(self, channel: paramiko.Channel):
        self._chan = channel
        self._stderr = b""

    def write(self, data: bytes) -> None:
        self._chan.sendall(data)

    def close_stdin(self) -> None:
        self._chan.shutdown_write()

    def read(self, size: int = READ_SIZE) -> bytes:
        return self._chan.recv(size)

    def wait(self) -> int:
        status = self._chan.recv_exit_status()
        chunks = []
        while True:
            data = self._chan.recv_stderr(READ_SIZE)
            if not data:
                break
            chunks.append(data)
        self._stderr += b"".join(chunks)
        return int(status)

    def stderr(self) -> bytes:
        return self._stderr


class ParamikoSession:
    def __init__(self, client: paramiko.SSHClient):
        self._client = client
        self._channels: List[paramiko.Channel] = []

    def start(self, command: str, *, pty: bool = False) -> ParamikoProcess:
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise SSHConnectionError("SSH transport is not active")
        try:
            chan = transport.open_session()
            self._channels.append(chan)
            if pty:
                chan.get_pty(term=PTY_TERM, width=PTY_WIDTH, height=PTY_HEIGHT)
            chan.exec_command(command)
        except paramiko.SSHException as e:
            raise SSHConnectionError(f"cannot start remote command: {e}") from e
        return ParamikoProcess(chan)

    def close(self) -> None:
        for chan in self._channels:
            try:
                chan.close()
            except (paramiko.SSHException, OSError, EOFError):
                pass
        self._channels = []
        self._client.close()

    def __enter__(self) -> "ParamikoSession":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class ParamikoProvider:
    """Open sessions with paramiko.

    Unknown host keys are accepted with a warning, matching ssh's behaviour for
    scripted first contact.
    """

    def open_session(self, config: Config) -> ParamikoSession:
        host, port = config.address
        user = config.effective_user
        keys = resolve_key_files(config)

        client = paramiko.SSHClient()
        try:
            client.load_system_host_keys()
        except OSError:
            logger.debug("no readable system known_hosts")
        client.set_missing_host_key_policy(paramiko.WarningPolicy())

        logger.debug("connecting to %s@%s:%d (keys=%d, password=%s)", user, host, port, len(keys), bool(config.password))
        try:
            client.connect(
                hostname=host,
                port=port,
                username=user,
                password=config.password or None,
                key_filename=keys or None,
                look_for_keys=False,
                allow_agent=True,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            raise AuthError(f"authentication failed for {user}@{host}:{port}: {e}") from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise SSHConnectionError(f"cannot connect to {host}:{port}: {e}") from e
        return ParamikoSession(client)


# ---------------------------------------------------------------------------
# system ssh
# ---------------------------------------------------------------------------

# ssh reserves 255 for its own failures.
SSH_FAILURE_STATUS = 255


def _classify_ssh_failure(stderr: str) -> type:
    s = (stderr or "").lower()
    if "permission denied" in s or "host key verification failed" in s:
        return AuthError
    return SSHConnectionError


class SystemSshProcess:
    def __init__(self, proc: subprocess.Popen, command: str):
        self._proc = proc
        self._command = command
        self._stderr = b""

    def write(self, data: bytes) -> None:
        assert self._proc.stdin is not None
        self._proc.stdin.write(data)
        self._proc.stdin.flush()

    def close_stdin(self) -> None:
        if self._proc.stdin is not None and not self._proc.stdin.closed:
            self._proc.stdin.close()

    def read(self, size: int = READ_SIZE) -> bytes:
        assert self._proc.stdout is not None
        return self._proc.stdout.read1(size)

    def wait(self) -> int:
        if self._proc.stderr is not None:
            self._stderr += self._proc.stderr.read()
        rc = self._proc.wait()
        if rc == SSH_FAILURE_STATUS:
            err = self._stderr.decode("utf-8", errors="replace").strip()
            exc_type = _classify_ssh_failure(err)
            raise exc_type(f"ssh failed (rc={rc}) running {self._command!r}: {err}")
        return int(rc)

    def stderr(self) -> bytes:
        return self._stderr

    def terminate(self) -> None:
        if self._proc.poll() is None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._proc.kill()
                self._proc.wait()
        for stream in (self._proc.stdin, self._proc.stdout, self._proc.stderr):
            if stream is not None:
                try:
                    stream.close()
                except OSError:
                    pass


class SystemSshSession:
    def __init__(self, base_cmd: List[str]):
        self._base = base_cmd
        self._procs: List[SystemSshProcess] = []

    def argv(self, command: str, *, pty: bool = False) -> List[str]:
        # ssh's -tt needs a local tty unless forced twice.
        tty = ["-tt"] if pty else ["-T"]
        return self._base[:1] + tty + self._base[1:] + [command]

    def start(self, command: str, *, pty: bool = False) -> SystemSshProcess:
        argv = self.argv(command, pty=pty)
        logger.debug("[ssh] $ %s", command)
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise SSHConnectionError(f"ssh failed to start: {e}") from e
        p = SystemSshProcess(proc, command)
        self._procs.append(p)
        return p

    def close(self) -> None:
        for p in self._procs:
            p.terminate()
        self._procs = []

    def __enter__(self) -> "SystemSshSession":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class SystemSshProvider:
    """Thin wrapper around the system ssh client."""

    def __init__(self, ssh_binary: str = "ssh", ssh_extra_args: str = ""):
        self.ssh_binary = ssh_binary
        self.ssh_extra_args = ssh_extra_args

    def _extra_args(self) -> List[str]:
        extra = (self.ssh_extra_args or "").strip()
        if not extra:
            return []
        try:
            return shlex.split(extra)
        except ValueError:
            # If parsing fails, fall back to a naive split.
            return extra.split()

    def base_command(self, config: Config) -> List[str]:
        host, port = config.address
        cmd: List[str] = [self.ssh_binary, "-p", str(int(port)), "-o", "BatchMode=yes"]
        for keyfile in config.key_files:
            path = os.path.expanduser(keyfile)
            if not os.path.isfile(path):
                raise AuthError(f"key file not found: {keyfile}")
            cmd += ["-i", path]
        cmd += self._extra_args()
        cmd += ["-l", config.effective_user, host]
        return cmd

    def open_session(self, config: Config) -> SystemSshSession:
        if shutil.which(self.ssh_binary) is None:
            raise SSHConnectionError(f"ssh not found: {self.ssh_binary}")
        if config.password:
            logger.debug("system ssh provider: password used for sudo only")
        return SystemSshSession(self.base_command(config))


def get_provider(name: Optional[str]):
    name = (name or "paramiko").strip().lower()
    if name == "paramiko":
        return ParamikoProvider()
    if name == "system":
        return SystemSshProvider()
    raise ValueError(f"unknown provider: {name}")
