"""Remote command execution (run / sudo).

Both paths request a pseudo-terminal and drain the remote output as it
arrives. For sudo, a reader thread posts raw output chunks to a queue; the
calling thread consumes them, feeds a :class:`PromptDetector`, and is the only
code that writes to the remote stdin. The password is injected at most once
per invocation.
"""

from __future__ import annotations

import codecs
import logging
import queue
import threading
from typing import Callable, List, Optional

from ..config import Config
from ..errors import AuthError, LoomError, RemoteExecError
from .prompt import PromptDetector
from .session import ConnectionProvider, ExecResult, RemoteProcess


logger = logging.getLogger(__name__)

SUDO_PATH = "/usr/local/sbin:/usr/local/bin:/sbin:/bin:/usr/sbin:/usr/bin:/root/bin"

# Queue sentinel posted by the reader thread once output is exhausted.
_EOF = object()


def sudo_command(cmd: str) -> str:
    """Wrap ``cmd`` so it runs as root through a bash here-document."""

    return f"/usr/bin/sudo bash <<CMD\nexport PATH={SUDO_PATH}\n{cmd}\nCMD"


def _pump_output(proc: RemoteProcess, chunks: "queue.Queue[object]") -> None:
    """Reader thread: forward output chunks until EOF (or an error)."""

    try:
        while True:
            data = proc.read()
            if not data:
                break
            chunks.put(data)
    except Exception as e:  # re-raised by the consumer
        chunks.put(e)
    finally:
        chunks.put(_EOF)


class _PasswordInjector:
    """Owns the remote stdin for one sudo invocation; writes at most once."""

    def __init__(self, proc: RemoteProcess, password: Optional[str]):
        self._proc = proc
        self._password = password
        self.injected = False

    def inject(self) -> None:
        if self.injected:
            logger.debug("sudo prompt seen again; password already sent, ignoring")
            return
        if self._password is None:
            raise AuthError("sudo asked for a password but none is configured")
        self._proc.write(self._password.encode("utf-8") + b"\n")
        self.injected = True
        logger.debug("sudo password sent")


class RemoteExecutor:
    def __init__(
        self,
        config: Config,
        provider: ConnectionProvider,
        echo: Optional[Callable[[str], None]] = None,
    ):
        self.config = config
        self.provider = provider
        self._echo = echo

    def _show(self, text: str) -> None:
        if self._echo is not None and text:
            self._echo(text)

    def run(self, cmd: str) -> str:
        """Run ``cmd`` on the remote host and return its combined output."""

        self._show(f"run: {cmd}\n")
        logger.info("run: %s", cmd)
        return self._execute(cmd, cmd, detector=None).output

    def sudo(self, cmd: str) -> str:
        """Run ``cmd`` as root, answering the sudo password prompt if it appears."""

        self._show(f"sudo: {cmd}\n")
        logger.info("sudo: %s", cmd)
        detector = PromptDetector(self.config.prompt_pattern())
        return self._execute(sudo_command(cmd), cmd, detector=detector).output

    def _execute(self, command: str, label: str, detector: Optional[PromptDetector]) -> ExecResult:
        reader: Optional[threading.Thread] = None
        try:
            with self.provider.open_session(self.config) as session:
                proc = session.start(command, pty=True)
                injector = _PasswordInjector(proc, self.config.password)
                chunks: "queue.Queue[object]" = queue.Queue()
                reader = threading.Thread(target=_pump_output, args=(proc, chunks), name="loom-output", daemon=True)
                reader.start()

                parts: List[bytes] = []
                decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
                while True:
                    item = chunks.get()
                    if item is _EOF:
                        break
                    if isinstance(item, BaseException):
                        if isinstance(item, LoomError):
                            raise item
                        raise RemoteExecError(label, -1, stderr=f"output stream failed: {item}") from item
                    data = item
                    parts.append(data)
                    self._show(decoder.decode(data))
                    if detector is not None and detector.match(data):
                        injector.inject()

                status = proc.wait()
                output = b"".join(parts).decode("utf-8", errors="replace")
        finally:
            # Closing the session ends the stream, so the reader exits.
            if reader is not None:
                reader.join()

        if status != 0:
            raise RemoteExecError(label, status, output=output)
        return ExecResult(command=label, exit_status=status, output=output)
