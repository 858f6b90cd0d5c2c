"""Run commands on the local host."""

from __future__ import annotations

import logging
import shlex
import subprocess

from .errors import LocalExecError


logger = logging.getLogger(__name__)


def run_local(cmd: str) -> str:
    """Execute ``cmd`` locally (no shell) and return its stdout.

    Stderr is not captured. A missing executable or a non-zero exit raises
    :class:`LocalExecError`.
    """

    try:
        argv = shlex.split(cmd)
    except ValueError as e:
        raise LocalExecError(cmd, None, f"cannot parse command {cmd!r}: {e}") from e
    if not argv:
        raise LocalExecError(cmd, None, "empty command")

    logger.info("local: %s", cmd)
    try:
        proc = subprocess.run(argv, stdout=subprocess.PIPE, check=False)
    except OSError as e:
        raise LocalExecError(cmd, None, f"cannot run {argv[0]}: {e}") from e
    out = (proc.stdout or b"").decode("utf-8", errors="replace")
    if proc.returncode != 0:
        raise LocalExecError(cmd, proc.returncode)
    return out
