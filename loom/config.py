"""Connection configuration shared by all loom operations."""

from __future__ import annotations

import getpass
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


DEFAULT_PORT = 22
DEFAULT_KEY_FILE = os.path.join("~", ".ssh", "id_rsa")
PROVIDERS = ("paramiko", "system")


def split_host_port(host: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """Split ``host[:port]`` into ``(host, port)``.

    IPv6 literals must be bracketed when a port is given (``[::1]:2222``);
    a bare IPv6 address without brackets is taken as a host with no port.
    """

    host = (host or "").strip()
    if not host:
        raise ValueError("host is empty")
    if host.startswith("["):
        end = host.find("]")
        if end < 0:
            raise ValueError(f"unterminated IPv6 literal: {host}")
        name = host[1:end]
        rest = host[end + 1:]
        if not rest:
            return name, default_port
        if not rest.startswith(":"):
            raise ValueError(f"invalid host: {host}")
        return name, int(rest[1:])
    if host.count(":") == 1:
        name, port = host.split(":", 1)
        return name, int(port)
    return host, default_port


@dataclass
class Config:
    """SSH and behaviour settings used by :class:`loom.api.Loom`.

    ``password`` is used both for SSH password authentication (paramiko
    provider only) and for answering the sudo prompt. It is never serialized.
    """

    host: str = ""
    # Current OS user when empty.
    user: str = ""
    password: Optional[str] = field(default=None, repr=False)
    # Extra private keys; ~/.ssh/id_rsa is always attempted as well.
    key_files: List[str] = field(default_factory=list)
    display_output: bool = False
    # Consulted by the CLI only; library calls always raise.
    abort_on_error: bool = False
    provider: str = "paramiko"
    sudo_prompt: Optional[str] = None

    @property
    def effective_user(self) -> str:
        return self.user or getpass.getuser()

    @property
    def address(self) -> Tuple[str, int]:
        return split_host_port(self.host)

    @property
    def user_host_pretty(self) -> str:
        name, port = self.address
        return f"{self.effective_user}@{name}:{port}"

    def prompt_pattern(self) -> str:
        if self.sudo_prompt:
            return self.sudo_prompt
        return f"[sudo] password for {self.effective_user}:"

    def with_host(self, host: str) -> "Config":
        d = self.to_dict()
        d["host"] = host
        cfg = Config.from_dict(d)
        cfg.password = self.password
        return cfg

    def to_dict(self) -> Dict[str, object]:
        return {
            "host": self.host,
            "user": self.user,
            "key_files": list(self.key_files),
            "display_output": bool(self.display_output),
            "abort_on_error": bool(self.abort_on_error),
            "provider": self.provider,
            "sudo_prompt": self.sudo_prompt,
        }

    @staticmethod
    def from_dict(d: Dict[str, object]) -> "Config":
        # Be resilient to missing/new keys.
        provider = str(d.get("provider") or "paramiko")
        if provider not in PROVIDERS:
            raise ValueError(f"unknown provider: {provider}")
        keys = d.get("key_files") or []
        if isinstance(keys, str):
            keys = [keys]
        prompt = d.get("sudo_prompt")
        return Config(
            host=str(d.get("host", "") or ""),
            user=str(d.get("user", "") or ""),
            key_files=[str(k) for k in keys],
            display_output=bool(d.get("display_output", False)),
            abort_on_error=bool(d.get("abort_on_error", False)),
            provider=provider,
            sudo_prompt=str(prompt) if prompt else None,
        )
