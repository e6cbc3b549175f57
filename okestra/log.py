"""Console logging with a colour per level."""

from __future__ import annotations

import sys
import threading
from datetime import datetime
from enum import Enum


class LogLevel(str, Enum):
    """Severity of a log line."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARNING"
    ERROR = "ERROR"

    def __str__(self) -> str:
        return self.value


_COLORS = {
    LogLevel.DEBUG.value: "\033[92m",  # light green
    LogLevel.INFO.value: "\033[34m",  # blue
    LogLevel.WARN.value: "\033[33m",  # yellow
    LogLevel.ERROR.value: "\033[31m",  # red
}
_DEFAULT_COLOR = "\033[0m"
_RESET = "\033[0m"

_lock = threading.Lock()


def _level_name(level: LogLevel | str) -> str:
    return level.value if isinstance(level, LogLevel) else str(level)


def log(level: LogLevel | str, message: str) -> None:
    """Write ``message`` to standard error, coloured by ``level`` and timestamped."""
    color = _COLORS.get(_level_name(level), _DEFAULT_COLOR)
    stamp = datetime.now().strftime("%Y/%m/%d %H:%M:%S")
    line = f"{color}{stamp} {message}"
    if not line.endswith("\n"):
        line += "\n"
    with _lock:
        stream = sys.stderr
        stream.write(line + _RESET)
        stream.flush()