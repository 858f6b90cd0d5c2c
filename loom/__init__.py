"""loom: scripted remote administration over SSH (run, sudo, put, get)."""

__version__ = "0.4.0"

from .api import Loom
from .config import Config
from .errors import (
    AuthError,
    LocalExecError,
    LoomError,
    RemoteExecError,
    SSHConnectionError,
    TransferError,
)

__all__ = [
    "AuthError",
    "Config",
    "LocalExecError",
    "Loom",
    "LoomError",
    "RemoteExecError",
    "SSHConnectionError",
    "TransferError",
    "__version__",
]
