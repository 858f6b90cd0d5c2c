"""Persistent host profiles for loom.

Profiles are stored in a single versioned JSON file under the user's home
folder.

Design goals:
  * Atomic writes (no corrupted settings on crash)
  * Resilient loads (backup and fall back to defaults)
  * No secrets (SSH passwords etc.)
"""

from .store import SettingsStore

__all__ = ["SettingsStore"]
