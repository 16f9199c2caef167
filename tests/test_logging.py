"""Tests for log setup helpers."""

from __future__ import annotations

import io
import logging
from datetime import datetime
from pathlib import Path

import pytest

from buttplug_lite import logging as app_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    levels = {name: logging.getLogger(name).level for name in ("", "buttplug_lite", "uvicorn")}
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


def test_parse_log_filter_root_and_named_levels() -> None:
    parsed = app_logging.parse_log_filter("warn, buttplug_lite=debug,uvicorn=error")
    assert parsed.root == logging.WARNING
    assert parsed.loggers == {"buttplug_lite": logging.DEBUG, "uvicorn": logging.ERROR}


@pytest.mark.parametrize("text", ["loud", "buttplug_lite=loud", "=debug"])
def test_parse_log_filter_rejects_bad_input(text: str) -> None:
    with pytest.raises(ValueError):
        app_logging.parse_log_filter(text)


@pytest.mark.parametrize(
    "verbosity, root, package",
    [
        (0, logging.WARNING, logging.INFO),
        (1, logging.WARNING, logging.DEBUG),
        (2, logging.INFO, logging.DEBUG),
        (3, logging.DEBUG, logging.DEBUG),
        (7, logging.DEBUG, logging.DEBUG),
    ],
)
def test_preset_filter(verbosity: int, root: int, package: int) -> None:
    preset = app_logging.preset_filter(verbosity)
    assert preset.root == root
    assert preset.loggers["buttplug_lite"] == package


def test_log_file_name_is_timestamped() -> None:
    assert app_logging.log_file_name(datetime(2024, 3, 9, 7, 5, 1)) == "2024-03-09_07-05-01.log"


def test_clean_up_old_logs_keeps_newest(tmp_path: Path) -> None:
    for day in range(1, 8):
        (tmp_path / f"2024-01-0{day}_00-00-00.log").write_text("x", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("keep", encoding="utf-8")

    removed = app_logging.clean_up_old_logs(tmp_path, keep=3)

    assert [path.name for path in removed] == [f"2024-01-0{day}_00-00-00.log" for day in range(1, 5)]
    assert sorted(path.name for path in tmp_path.iterdir()) == [
        "2024-01-05_00-00-00.log",
        "2024-01-06_00-00-00.log",
        "2024-01-07_00-00-00.log",
        "notes.txt",
    ]


def test_configure_logging_writes_to_file(tmp_path: Path, restore_logging) -> None:
    log_path = app_logging.configure_logging(0, log_dir=tmp_path / "logs")

    assert log_path is not None and log_path.parent == tmp_path / "logs"
    logging.getLogger("buttplug_lite.test").info("hello file")
    logging.getLogger("other.library").info("suppressed")
    for handler in logging.getLogger().handlers:
        handler.flush()

    text = log_path.read_text(encoding="utf-8")
    assert "hello file" in text
    assert "suppressed" not in text


def test_configure_logging_stdout_uses_custom_filter(restore_logging) -> None:
    stream = io.StringIO()
    log_path = app_logging.configure_logging(
        0,
        use_stdout=True,
        log_filter="debug,buttplug_lite=warn",
        stream=stream,
    )

    assert log_path is None
    logging.getLogger("buttplug_lite.test").info("package info hidden")
    logging.getLogger("other.library").debug("library debug shown")

    output = stream.getvalue()
    assert "package info hidden" not in output
    assert "library debug shown" in output


def test_configure_logging_falls_back_to_console(tmp_path: Path, restore_logging) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    stream = io.StringIO()

    log_path = app_logging.configure_logging(0, log_dir=blocker / "logs", stream=stream)

    assert log_path is None
    assert "File-based logging failed" in stream.getvalue()
