"""Logging-related utilities.

This module intentionally has *no* heavy dependencies so it can be reused by
both the CLI and library code paths.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import Optional


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

# A reasonably complete ANSI escape sequence matcher (CSI + single-character).
_ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


def loom_home() -> Path:
    return Path.home() / ".loom"


def sanitize_log(text: str) -> str:
    """Sanitize captured pty output for display.

    - Normalize carriage returns (``\\r``) into newlines (``\\n``); a pty turns
      every ``\\n`` into ``\\r\\n``.
    - Strip ANSI escape sequences (colors, cursor movement, etc.).

    The function is conservative: it avoids filtering content; it only
    normalizes formatting artifacts.
    """

    if not text:
        return ""

    # Normalize CR to NL (including CRLF).
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    # Strip ANSI control sequences.
    return _ANSI_ESCAPE_RE.sub("", text)


def setup_logging(verbose: bool = False, log_path: Optional[Path] = None) -> Optional[str]:
    """Configure logging to stderr and a persistent file.

    Returns the log file path, or None if the file handler could not be
    created. An existing root configuration (e.g. when embedded) is kept.
    """

    root = logging.getLogger()
    if root.handlers:
        return None

    level = logging.DEBUG if verbose else logging.INFO
    stream = logging.StreamHandler(sys.stderr)
    stream.setLevel(level)
    handlers: list[logging.Handler] = [stream]

    path: Optional[Path] = None
    try:
        path = log_path or (loom_home() / "loom.log")
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(path), mode="a", encoding="utf-8"))
    except OSError:
        path = None

    logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT, handlers=handlers)
    # paramiko is chatty at DEBUG.
    logging.getLogger("paramiko").setLevel(logging.WARNING)
    return str(path) if path else None
