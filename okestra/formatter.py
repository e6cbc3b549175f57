"""Pattern-based formatting of telemetry records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

from okestra.log import LogLevel

_ZERO_TIME = datetime(1, 1, 1)
_FIELD_PATTERN = re.compile(r"\$[a-zA-Z0-9_]+")


@dataclass
class PatternMetadata:
    """Values that pattern fields are replaced with."""

    date: datetime = _ZERO_TIME
    level: str = ""
    message: str = ""
    event: str = ""
    node: str = ""
    time: datetime = _ZERO_TIME
    metadata: dict[str, Any] = field(default_factory=dict)


PatternFunc = Callable[[PatternMetadata], None]


def _text(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def _format_date(d: datetime) -> str:
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def _format_time(t: datetime) -> str:
    return f"{t.hour:02d}:{t.minute:02d}:{t.second:02d}"


def format_metadata(metadata: dict[str, Any] | None) -> str:
    """Render metadata as comma separated ``key:value`` pairs."""
    if not metadata:
        return ""
    return ",".join(f"{key}:{value}" for key, value in metadata.items())


def _pattern_value(data: PatternMetadata, name: str) -> str:
    if name == "date":
        return _format_date(data.date)
    if name == "time":
        return _format_time(data.time)
    if name == "level":
        return data.level
    if name == "event":
        return data.event
    if name == "node":
        return data.node
    if name == "metadata":
        return format_metadata(data.metadata)
    if name == "message":
        return data.message
    return ""


class Formatter:
    """Compiles a pattern into parts and renders it with record values."""

    def __init__(self) -> None:
        self.pattern_list: list[str] = []

    def compile_string(self, pattern: str) -> None:
        """Split ``pattern`` into ``$name`` fields and the literal text between them."""
        parts: list[str] = []
        last = 0
        for match in _FIELD_PATTERN.finditer(pattern):
            start, end = match.span()
            if start > last:
                parts.append(pattern[last:start])
            parts.append(match.group())
            last = end
        if last < len(pattern):
            parts.append(pattern[last:])
        self.pattern_list = parts

    def compile_json(self, pattern: Iterable[str]) -> None:
        """Use an already split list of literals and fields."""
        self.pattern_list = list(pattern)

    def format_string(self, *args: PatternFunc) -> str:
        """Render the compiled pattern with values set by the given setters."""
        data = PatternMetadata()
        for setter in args:
            setter(data)
        return "".join(
            _pattern_value(data, part[1:]) if part.startswith("$") else part
            for part in self.pattern_list
        )


def set_date(d: datetime) -> PatternFunc:
    def apply(data: PatternMetadata) -> None:
        data.date = d

    return apply


def set_time(t: datetime) -> PatternFunc:
    def apply(data: PatternMetadata) -> None:
        data.time = t

    return apply


def set_level(level: LogLevel | str) -> PatternFunc:
    def apply(data: PatternMetadata) -> None:
        data.level = _text(level)

    return apply


def set_message(message: str) -> PatternFunc:
    def apply(data: PatternMetadata) -> None:
        data.message = message

    return apply


def set_event(event: Any) -> PatternFunc:
    def apply(data: PatternMetadata) -> None:
        data.event = _text(event)

    return apply


def set_node(node: str) -> PatternFunc:
    def apply(data: PatternMetadata) -> None:
        data.node = node

    return apply


def set_metadata(meta: dict[str, Any] | None) -> PatternFunc:
    def apply(data: PatternMetadata) -> None:
        data.metadata = meta if meta is not None else {}

    return apply