"""Error types raised by loom operations.

Every operation raises to its immediate caller. Whether a failure should end
the program is decided by the caller (see ``loom.cli``), never in here.
"""

from __future__ import annotations

from typing import Optional


class LoomError(Exception):
    """Base class for all loom failures."""


class SSHConnectionError(LoomError):
    """The remote host could not be reached or the SSH handshake failed."""


class AuthError(LoomError):
    """Authentication failed, a key file could not be parsed, or sudo asked
    for a password that is not configured."""


class TransferError(LoomError):
    """A copy-protocol transfer failed (no glob match, unreadable source,
    malformed header, short payload, remote error line)."""


class RemoteExecError(LoomError):
    """A remote command exited with a non-zero status."""

    def __init__(self, command: str, exit_status: int, output: str = "", stderr: str = ""):
        self.command = command
        self.exit_status = exit_status
        self.output = output
        self.stderr = stderr
        msg = f"remote command exited with status {exit_status}: {command}"
        detail = (stderr or "").strip()
        if detail:
            msg += f"\n{detail}"
        super().__init__(msg)


class LocalExecError(LoomError):
    """A local command could not be started or exited with a non-zero status."""

    def __init__(self, command: str, returncode: Optional[int], message: str = ""):
        self.command = command
        self.returncode = returncode
        if not message:
            message = f"local command exited with status {returncode}: {command}"
        super().__init__(message)
