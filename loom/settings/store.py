from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import Config
from ..log_utils import loom_home


logger = logging.getLogger(__name__)


def default_settings() -> Dict[str, Any]:
    return {
        "schema_version": 1,
        "last_saved_at": None,
        # Each entry: {"id": ..., plus Config.to_dict() keys}
        "hosts": [],
        "default_host_id": None,
    }


@dataclass
class SettingsStore:
    """Load/save host profiles.

    The store keeps settings as a plain dict to remain forward compatible with
    new keys across versions.
    """

    filename: str = "settings.json"
    home: Path = field(default_factory=loom_home)

    def path(self) -> Path:
        return self.home / self.filename

    def load(self) -> Dict[str, Any]:
        path = self.path()
        base = default_settings()

        if not path.exists():
            return base

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("settings.json root is not an object")
            if not isinstance(data.get("hosts", []), list):
                raise ValueError("settings.json 'hosts' is not a list")
            # merge defaults (do not delete unknown keys)
            merged = dict(base)
            merged.update(data)
            return merged
        except (OSError, ValueError) as e:
            logger.warning("settings file %s is unreadable (%s); using defaults", path, e)
            try:
                ts = time.strftime("%Y%m%d_%H%M%S")
                bak = path.with_name(f"{path.name}.bak.{ts}")
                bak.write_bytes(path.read_bytes())
            except OSError:
                # Best-effort backup
                pass
            return base

    def save(self, data: Dict[str, Any]) -> None:
        self.home.mkdir(parents=True, exist_ok=True)
        path = self.path()
        tmp = path.with_suffix(path.suffix + ".tmp")

        # Shallow copy so we can stamp timestamp without mutating caller
        payload = dict(data or {})
        payload.setdefault("schema_version", 1)
        payload["last_saved_at"] = time.strftime("%Y-%m-%dT%H:%M:%S")
        for host in payload.get("hosts", []):
            if isinstance(host, dict):
                host.pop("password", None)

        # Atomic write
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, path)

    # Host profile helpers ------------------------------------------------
    def hosts(self) -> List[Dict[str, Any]]:
        return [h for h in self.load().get("hosts", []) if isinstance(h, dict)]

    def get_host(self, host_id: Optional[str] = None) -> Optional[Config]:
        """Return the profile ``host_id`` (or the default profile) as a Config."""

        data = self.load()
        host_id = host_id or data.get("default_host_id")
        if not host_id:
            return None
        for h in data.get("hosts", []):
            if isinstance(h, dict) and h.get("id") == host_id:
                return Config.from_dict(h)
        return None

    def put_host(self, host_id: str, config: Config, make_default: bool = False) -> None:
        data = self.load()
        entry = dict(config.to_dict())
        entry["id"] = host_id
        hosts = [h for h in data.get("hosts", []) if isinstance(h, dict) and h.get("id") != host_id]
        hosts.append(entry)
        data["hosts"] = sorted(hosts, key=lambda h: str(h.get("id")))
        if make_default or not data.get("default_host_id"):
            data["default_host_id"] = host_id
        self.save(data)

    def remove_host(self, host_id: str) -> bool:
        data = self.load()
        hosts = [h for h in data.get("hosts", []) if isinstance(h, dict)]
        kept = [h for h in hosts if h.get("id") != host_id]
        if len(kept) == len(hosts):
            return False
        data["hosts"] = kept
        if data.get("default_host_id") == host_id:
            data["default_host_id"] = kept[0]["id"] if kept else None
        self.save(data)
        return True
