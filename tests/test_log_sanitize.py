from __future__ import annotations

import logging
from pathlib import Path

from loom.log_utils import sanitize_log, setup_logging


def test_sanitize_log_removes_ansi_and_cr() -> None:
    raw = (
        "hello\rworld\r\n"
        "\x1b[0;93mwarning: unit nginx.service changed on disk\x1b[m\r\n"
        "done\x1b[0m"
    )

    cleaned = sanitize_log(raw)

    assert "\r" not in cleaned
    assert "\x1b" not in cleaned

    lines = cleaned.splitlines()
    assert lines[0] == "hello"
    assert lines[1] == "world"
    assert lines[2] == "warning: unit nginx.service changed on disk"
    assert lines[3] == "done"


def test_sanitize_log_empty() -> None:
    assert sanitize_log("") == ""


def test_setup_logging_keeps_existing_configuration(tmp_path: Path) -> None:
    root = logging.getLogger()
    handler = logging.NullHandler()
    root.addHandler(handler)
    try:
        assert setup_logging(log_path=tmp_path / "loom.log") is None
        assert not (tmp_path / "loom.log").exists()
    finally:
        root.removeHandler(handler)
