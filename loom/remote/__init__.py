"""Remote execution and file transfer over SSH.

Sessions come from a connection provider (paramiko by default, or the system
ssh client); the copy protocol and sudo handling are implemented here.
"""

from .executor import RemoteExecutor
from .prompt import PromptDetector
from .scp import TransferDirective, TransferEngine
from .ssh_transport import ParamikoProvider, SystemSshProvider, get_provider

__all__ = [
    "ParamikoProvider",
    "PromptDetector",
    "RemoteExecutor",
    "SystemSshProvider",
    "TransferDirective",
    "TransferEngine",
    "get_provider",
]
