"""Log setup for the application and its verbosity presets."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TextIO

PACKAGE_LOGGER = "buttplug_lite"
MAXIMUM_LOG_FILES = 50
DEFAULT_LOG_DIR = Path("~/.local/share/buttplug_lite/logs").expanduser()
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": logging.CRITICAL + 10,
}


@dataclass(slots=True)
class LogFilter:
    """Root level plus per-logger overrides."""

    root: int = logging.WARNING
    loggers: dict[str, int] = field(default_factory=dict)

    def apply(self) -> None:
        logging.getLogger().setLevel(self.root)
        for name, level in self.loggers.items():
            logging.getLogger(name).setLevel(level)


def _parse_level(value: str) -> int:
    try:
        return _LEVELS[value.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown log level {value!r}") from None


def parse_log_filter(text: str) -> LogFilter:
    """Parse ``level,logger=level,...`` into a :class:`LogFilter`.

    A bare level sets the root logger; ``name=level`` pairs set named loggers.
    """

    result = LogFilter()
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        name, sep, level = part.partition("=")
        if not sep:
            result.root = _parse_level(name)
        elif not name.strip():
            raise ValueError(f"missing logger name in {part!r}")
        else:
            result.loggers[name.strip()] = _parse_level(level)
    return result


def preset_filter(verbosity: int) -> LogFilter:
    if verbosity <= 0:
        return LogFilter(logging.WARNING, {PACKAGE_LOGGER: logging.INFO})
    if verbosity == 1:
        return LogFilter(logging.WARNING, {PACKAGE_LOGGER: logging.DEBUG})
    if verbosity == 2:
        return LogFilter(logging.INFO, {PACKAGE_LOGGER: logging.DEBUG})
    return LogFilter(logging.DEBUG, {PACKAGE_LOGGER: logging.DEBUG})


def log_file_name(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%Y-%m-%d_%H-%M-%S.log")


def clean_up_old_logs(log_dir: Path, keep: int = MAXIMUM_LOG_FILES) -> list[Path]:
    """Delete all but the newest *keep* ``.log`` files in *log_dir*; return the removed paths."""

    # timestamped names sort chronologically
    logs = sorted(path for path in log_dir.iterdir() if path.is_file() and path.suffix == ".log")
    stale = logs[: max(len(logs) - keep, 0)]
    for path in stale:
        path.unlink()
    return stale


def configure_logging(
    verbosity: int = 0,
    *,
    use_stdout: bool = False,
    log_filter: str | None = None,
    log_dir: Path | None = None,
    stream: TextIO | None = None,
) -> Path | None:
    """Install handlers on the root logger and return the log file path, if any.

    A custom *log_filter* replaces the verbosity presets entirely. When the log
    directory cannot be prepared, logging falls back to the console.
    """

    levels = parse_log_filter(log_filter) if log_filter else preset_filter(verbosity)
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()
    formatter = logging.Formatter(LOG_FORMAT)

    log_path: Path | None = None
    fallback_error: OSError | None = None
    if not use_stdout:
        directory = log_dir or DEFAULT_LOG_DIR
        try:
            directory.mkdir(parents=True, exist_ok=True)
            clean_up_old_logs(directory)
            log_path = directory / log_file_name()
            handler: logging.Handler = logging.FileHandler(log_path, encoding="utf-8")
        except OSError as exc:
            fallback_error = exc
            log_path = None
    if log_path is None:
        handler = logging.StreamHandler(stream or sys.stderr)

    handler.setFormatter(formatter)
    root.addHandler(handler)
    levels.apply()
    if fallback_error is not None:
        logging.getLogger(__name__).warning("File-based logging failed. Falling back to console: %s", fallback_error)
    return log_path


__all__ = [
    "DEFAULT_LOG_DIR",
    "LogFilter",
    "MAXIMUM_LOG_FILES",
    "clean_up_old_logs",
    "configure_logging",
    "log_file_name",
    "parse_log_filter",
    "preset_filter",
]
