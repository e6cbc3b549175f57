"""Telemetry events dispatched to registered handlers."""

from __future__ import annotations

import threading
import time
import traceback
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

SUPERVISOR_STATE_EVENT = "okestra.supervisor.state"
SUPERVISOR_STATE_ERROR_EVENT = "okestra.supervisor.state.error"
SUPERVISOR_EVENT = "okestra.supervisor"

_SUFFIXES = ("", ".start", ".stop", ".exception")

TelemetryCallback = Callable[[], "tuple[dict[str, Any] | None, dict[str, Any] | None]"]


@dataclass
class TelemetryEventDefinition:
    """An event name, split on dots, and the handler's configuration for it."""

    name: list[str] = field(default_factory=list)
    config: Any = None


class TelemetryHandler(ABC):
    """Receives telemetry events that match the definitions it attaches."""

    @abstractmethod
    def id(self) -> str:
        """Unique identifier of the handler."""

    @abstractmethod
    def attach_handlers(self) -> list[TelemetryEventDefinition]:
        """Definitions of the events this handler wants."""

    @abstractmethod
    def handle_event(
        self,
        event: str,
        measurements: dict[str, Any] | None,
        metadata: dict[str, Any] | None,
        definition: TelemetryEventDefinition,
    ) -> Any:
        """Process one event."""


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def event_matches(matching_event: Sequence[str], event: str) -> bool:
    """Whether ``event`` is the joined name or its start, stop or exception variant."""
    joined = ".".join(matching_event)
    return str(event) in {joined + suffix for suffix in _SUFFIXES}


class Telemetry:
    """Holds handlers and dispatches events to them, optionally on a thread pool."""

    def __init__(self, use_threads: bool = False, pool_size: int = 8) -> None:
        if use_threads and pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self.handlers: dict[str, TelemetryHandler] = {}
        self.use_threads = use_threads
        self._lock = threading.Lock()
        self._pool: ThreadPoolExecutor | None = (
            ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="telemetry")
            if use_threads
            else None
        )
        self._pending: list[Future] = []

    def __enter__(self) -> Telemetry:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def add_handler(self, handler: TelemetryHandler) -> None:
        """Register ``handler``, replacing any with the same id."""
        with self._lock:
            self.handlers[handler.id()] = handler

    def remove_handler(self, handler: TelemetryHandler) -> None:
        """Unregister the handler with the same id as ``handler``."""
        with self._lock:
            self.handlers.pop(handler.id(), None)

    def trigger_event(
        self,
        event: str,
        measurements: dict[str, Any] | None,
        metadata: dict[str, Any] | None,
    ) -> None:
        """Send ``event`` to every handler with a matching definition."""
        with self._lock:
            handlers = list(self.handlers.values())
        for handler in handlers:
            for definition in handler.attach_handlers():
                if event_matches(definition.name, event):
                    self._dispatch(handler, event, measurements, metadata, definition)

    def _dispatch(
        self,
        handler: TelemetryHandler,
        event: str,
        measurements: dict[str, Any] | None,
        metadata: dict[str, Any] | None,
        definition: TelemetryEventDefinition,
    ) -> None:
        if self._pool is None:
            handler.handle_event(event, measurements, metadata, definition)
            return
        future = self._pool.submit(
            handler.handle_event, event, measurements, metadata, definition
        )
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def execute(self, event: str, callback: TelemetryCallback) -> None:
        """Run ``callback`` between start and stop events.

        The callback returns ``(measurements, metadata)``. If it raises, an
        exception event is sent and the exception propagates.
        """
        start_time = _now_ms()
        self.trigger_event(f"{event}.start", {"startTime": start_time}, None)
        try:
            result_measurements, metadata = callback()
        except BaseException as exc:
            self.trigger_event(
                f"{event}.exception",
                {
                    "error": exc,
                    "errorTime": _now_ms(),
                    "stackTrace": traceback.format_exc(),
                },
                {},
            )
            raise
        stop_time = _now_ms()
        measurements = dict(result_measurements or {})
        measurements["duration"] = stop_time - start_time
        measurements["startTime"] = start_time
        measurements["stopTime"] = stop_time
        self.trigger_event(f"{event}.stop", measurements, metadata)

    def close(self) -> None:
        """Wait for dispatched events to finish and stop the thread pool."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            with self._lock:
                pending, self._pending = self._pending, []
            for future in pending:
                future.result()


def start_telemetry_server(use_threads: bool = False, pool_size: int = 8) -> Telemetry:
    """Create a telemetry dispatcher."""
    return Telemetry(use_threads=use_threads, pool_size=pool_size)