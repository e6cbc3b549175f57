"""Telemetry handler that writes events as formatted log lines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from okestra.formatter import (
    Formatter,
    set_date,
    set_event,
    set_level,
    set_message,
    set_metadata,
    set_node,
    set_time,
)
from okestra.log import LogLevel, log
from okestra.telemetry import TelemetryEventDefinition, TelemetryHandler

_DEFAULT_FORMAT = "$date $time [$level] $event - $metadata $message"
_CONFIG_FORMAT = "$date $time [$level] $event - metadata:$metadata - message:$message"


class FieldKind(str, Enum):
    """Whether a field lives in the measurements or the metadata."""

    MEASUREMENT = "measurement"
    METADATA = "metadata"


class EventKind(str, Enum):
    """Suffix of an event name that a configuration applies to."""

    START = "start"
    STOP = "stop"
    ERROR = "exception"
    BASE = ""


@dataclass(frozen=True)
class OmitField:
    """A field to drop before logging."""

    kind: FieldKind
    name: str


@dataclass(frozen=True)
class FieldConverterSpec:
    """A conversion applied to a field before logging."""

    kind: FieldKind
    converter: Callable[[Any], Any]


@dataclass
class LogHandlerConfig:
    """How events of one kind are logged."""

    event_kind: EventKind = EventKind.BASE
    log_level: LogLevel = LogLevel.INFO
    log_format: str = ""
    omit_fields: list[OmitField] = field(default_factory=list)
    field_converters: dict[str, FieldConverterSpec] = field(default_factory=dict)

    @property
    def format(self) -> str:
        return self.log_format or _DEFAULT_FORMAT


def default_log_handler_config() -> list[LogHandlerConfig]:
    """Configurations for the base, start, stop and exception variants of an event."""
    return [
        LogHandlerConfig(EventKind.BASE, LogLevel.INFO, _CONFIG_FORMAT),
        LogHandlerConfig(EventKind.START, LogLevel.INFO, _CONFIG_FORMAT),
        LogHandlerConfig(EventKind.STOP, LogLevel.INFO, _CONFIG_FORMAT),
        LogHandlerConfig(EventKind.ERROR, LogLevel.ERROR, _CONFIG_FORMAT),
    ]


def get_event_kind_config(
    event: str, definition: TelemetryEventDefinition
) -> LogHandlerConfig | None:
    """Find the configuration whose name plus kind suffix equals ``event``."""
    parts = str(event).split(".")
    for config in definition.config or ():
        name = list(definition.name)
        if config.event_kind.value:
            name.append(config.event_kind.value)
        if parts == name:
            return config
    return None


def _update_fields(
    config: LogHandlerConfig, kind: FieldKind, fields: dict[str, Any] | None
) -> dict[str, Any]:
    result = dict(fields or {})
    for key, value in result.items():
        spec = config.field_converters.get(key)
        if spec is not None and spec.kind == kind:
            result[key] = spec.converter(value)
    for omit in config.omit_fields:
        if omit.kind == kind:
            result.pop(omit.name, None)
    return result


class LogHandler(TelemetryHandler):
    """Logs matching telemetry events to the console."""

    def __init__(self, handler_id: str) -> None:
        self._id = handler_id

    def id(self) -> str:
        return self._id

    def attach_handlers(self) -> list[TelemetryEventDefinition]:
        return [
            TelemetryEventDefinition(
                name=["okestra", "cg", "data", "request"],
                config=default_log_handler_config(),
            )
        ]

    def handle_event(
        self,
        event: str,
        measurements: dict[str, Any] | None,
        metadata: dict[str, Any] | None,
        definition: TelemetryEventDefinition,
    ) -> str | None:
        """Log the event and return the line written, or None if no config applies."""
        config = get_event_kind_config(event, definition)
        if config is None:
            return None
        measurements = _update_fields(config, FieldKind.MEASUREMENT, measurements)
        metadata = _update_fields(config, FieldKind.METADATA, metadata)
        merged = {**measurements, **metadata}
        merged.pop("message", None)
        merged.pop("node", None)

        node = str(metadata.get("node", "localhost"))
        message = str(metadata.get("message", ""))

        formatter = Formatter()
        formatter.compile_string(config.format)
        now = datetime.now()
        line = formatter.format_string(
            set_date(now),
            set_time(now),
            set_level(config.log_level),
            set_event(event),
            set_node(node),
            set_metadata(merged),
            set_message(message),
        )
        log(config.log_level, line + "\n")
        return line