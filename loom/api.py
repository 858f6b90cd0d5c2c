"""Public API.

>>> from loom import Config, Loom
>>> box = Loom(Config(host="web1:2222", user="deploy", password="..."))
>>> box.put_string("hello\\n", "/tmp/hello.txt")
>>> box.sudo("systemctl restart nginx")

Every call opens its own SSH session and closes it before returning. Failures
raise :class:`loom.errors.LoomError` subclasses; ``Config.abort_on_error`` is
left to the caller (the ``loom`` CLI honours it).
"""

from __future__ import annotations

import sys
from typing import Callable, List, Optional, Union

from .config import Config
from .local import run_local
from .remote.executor import RemoteExecutor
from .remote.scp import TransferEngine
from .remote.session import ConnectionProvider
from .remote.ssh_transport import get_provider


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class Loom:
    def __init__(
        self,
        config: Config,
        provider: Optional[ConnectionProvider] = None,
        echo: Optional[Callable[[str], None]] = None,
    ):
        self.config = config
        self.provider = provider if provider is not None else get_provider(config.provider)
        if echo is None and config.display_output:
            echo = _write_stdout
        self._echo = echo
        self._executor = RemoteExecutor(config, self.provider, echo=echo)
        self._transfer = TransferEngine(config, self.provider, echo=echo)

    def run(self, cmd: str) -> str:
        return self._executor.run(cmd)

    def sudo(self, cmd: str) -> str:
        return self._executor.sudo(cmd)

    def put(self, local_pattern: str, remote_target: str) -> List[str]:
        return self._transfer.put(local_pattern, remote_target)

    def put_string(self, data: Union[str, bytes], remote_file: str) -> None:
        self._transfer.put_string(data, remote_file)

    def get(self, remote_file: str, local_file: str) -> str:
        return self._transfer.get(remote_file, local_file)

    def local(self, cmd: str) -> str:
        if self._echo is not None:
            self._echo(f"local: {cmd}\n")
        out = run_local(cmd)
        if self._echo is not None:
            self._echo(out)
        return out
