import pytest

from okestra.telemetry import (
    SUPERVISOR_EVENT,
    SUPERVISOR_STATE_ERROR_EVENT,
    SUPERVISOR_STATE_EVENT,
    Telemetry,
    TelemetryEventDefinition,
    TelemetryHandler,
    event_matches,
    start_telemetry_server,
)


class Recorder(TelemetryHandler):
    def __init__(self, handler_id, name):
        self._id = handler_id
        self._name = name
        self.events = []

    def id(self):
        return self._id

    def attach_handlers(self):
        return [TelemetryEventDefinition(name=list(self._name), config="cfg")]

    def handle_event(self, event, measurements, metadata, definition):
        self.events.append((event, measurements, metadata, definition))


NAME = ["okestra", "cg", "data", "request"]


@pytest.mark.parametrize(
    "event,expected",
    [
        ("okestra.cg.data.request", True),
        ("okestra.cg.data.request.start", True),
        ("okestra.cg.data.request.stop", True),
        ("okestra.cg.data.request.exception", True),
        ("okestra.cg.data.request.error", False),
        ("okestra.cg.data", False),
        ("other", False),
    ],
)
def test_event_matches(event, expected):
    assert event_matches(NAME, event) is expected


def test_event_constants():
    assert event_matches(["okestra", "supervisor"], SUPERVISOR_EVENT) is True
    assert event_matches(["okestra", "supervisor", "state"], SUPERVISOR_STATE_EVENT) is True
    assert (
        event_matches(["okestra", "supervisor", "state", "error"], SUPERVISOR_STATE_ERROR_EVENT)
        is True
    )
    assert (
        event_matches(["okestra", "supervisor", "state"], SUPERVISOR_STATE_ERROR_EVENT)
        is False
    )
    server = start_telemetry_server()
    handler = Recorder("a", ["okestra", "supervisor"])
    server.add_handler(handler)
    server.trigger_event(SUPERVISOR_EVENT, {}, {})
    server.trigger_event(SUPERVISOR_STATE_EVENT, {}, {})
    assert [e[0] for e in handler.events] == ["okestra.supervisor"]


def test_trigger_event_reaches_matching_handler_only():
    server = start_telemetry_server()
    hit = Recorder("a", NAME)
    miss = Recorder("b", ["other"])
    server.add_handler(hit)
    server.add_handler(miss)
    server.trigger_event("okestra.cg.data.request", {"m": 1}, {"k": "v"})
    assert len(hit.events) == 1
    event, measurements, metadata, definition = hit.events[0]
    assert event == "okestra.cg.data.request"
    assert measurements == {"m": 1}
    assert metadata == {"k": "v"}
    assert definition.config == "cfg"
    assert miss.events == []


def test_remove_handler():
    server = start_telemetry_server()
    handler = Recorder("a", NAME)
    server.add_handler(handler)
    server.remove_handler(handler)
    server.trigger_event("okestra.cg.data.request", {}, {})
    assert handler.events == []
    assert server.handlers == {}


def test_add_handler_replaces_same_id():
    server = start_telemetry_server()
    first = Recorder("a", NAME)
    second = Recorder("a", NAME)
    server.add_handler(first)
    server.add_handler(second)
    server.trigger_event("okestra.cg.data.request", {}, {})
    assert first.events == []
    assert len(second.events) == 1


def test_execute_sends_start_and_stop():
    server = start_telemetry_server()
    handler = Recorder("a", NAME)
    server.add_handler(handler)
    server.execute("okestra.cg.data.request", lambda: ({"x": 1}, {"user": "test"}))
    names = [e[0] for e in handler.events]
    assert names == ["okestra.cg.data.request.start", "okestra.cg.data.request.stop"]
    start_measurements = handler.events[0][1]
    stop_measurements = handler.events[1][1]
    assert handler.events[0][2] is None
    assert stop_measurements["x"] == 1
    assert stop_measurements["startTime"] == start_measurements["startTime"]
    assert stop_measurements["duration"] == (
        stop_measurements["stopTime"] - stop_measurements["startTime"]
    )
    assert stop_measurements["duration"] >= 0
    assert handler.events[1][2] == {"user": "test"}


def test_execute_exception_is_reported_and_reraised():
    server = start_telemetry_server()
    handler = Recorder("a", NAME)
    server.add_handler(handler)

    def boom():
        raise RuntimeError("test")

    with pytest.raises(RuntimeError, match="test"):
        server.execute("okestra.cg.data.request", boom)
    names = [e[0] for e in handler.events]
    assert names == [
        "okestra.cg.data.request.start",
        "okestra.cg.data.request.exception",
    ]
    measurements = handler.events[1][1]
    assert isinstance(measurements["error"], RuntimeError)
    assert "RuntimeError" in measurements["stackTrace"]
    assert handler.events[1][2] == {}


def test_threaded_dispatch_delivers_all_events():
    handler = Recorder("a", NAME)
    with start_telemetry_server(use_threads=True, pool_size=2) as server:
        server.add_handler(handler)
        for _ in range(10):
            server.trigger_event("okestra.cg.data.request", {}, {})
    assert len(handler.events) == 10


def test_threaded_needs_positive_pool():
    with pytest.raises(ValueError):
        Telemetry(use_threads=True, pool_size=0)