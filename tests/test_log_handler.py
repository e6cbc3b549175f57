import pytest

from okestra.log import LogLevel
from okestra.log_handler import (
    EventKind,
    FieldConverterSpec,
    FieldKind,
    LogHandler,
    LogHandlerConfig,
    OmitField,
    default_log_handler_config,
    get_event_kind_config,
)
from okestra.telemetry import TelemetryEventDefinition, start_telemetry_server

NAME = ["okestra", "cg", "data", "request"]


def _metadata():
    return {
        "node": "test",
        "user": "test",
        "requestId": 123432,
        "message": "user created successfully.",
    }


def test_trigger_event_logs_line(capsys):
    server = start_telemetry_server()
    server.add_handler(LogHandler("log-test"))
    server.trigger_event("okestra.cg.data.request", {"startedAt": 5}, _metadata())
    err = capsys.readouterr().err
    assert "[INFO] okestra.cg.data.request - metadata:" in err
    assert "message:user created successfully." in err
    assert "requestId:123432" in err
    assert "user:test" in err
    assert "startedAt:5" in err
    assert "node:" not in err


def test_execute_event_logs_start_base_and_stop(capsys):
    server = start_telemetry_server()
    server.add_handler(LogHandler("log-test"))

    def work():
        measurements = {"startedAt": 5}
        metadata = _metadata()
        server.trigger_event("okestra.cg.data.request", measurements, metadata)
        return measurements, metadata

    server.execute("okestra.cg.data.request", work)
    lines = [line for line in capsys.readouterr().err.splitlines() if "[INFO]" in line]
    assert len(lines) == 3
    assert "okestra.cg.data.request.start" in lines[0]
    assert "okestra.cg.data.request.stop" in lines[2]
    assert "duration:" in lines[2]


def test_execute_event_with_exception(capsys):
    server = start_telemetry_server()
    server.add_handler(LogHandler("log-test"))

    def boom():
        raise RuntimeError("test")

    with pytest.raises(RuntimeError):
        server.execute("okestra.cg.data.request", boom)
    err = capsys.readouterr().err
    assert "[ERROR] okestra.cg.data.request.exception" in err


def test_handle_event_returns_formatted_line(capsys):
    handler = LogHandler("log-test")
    definition = handler.attach_handlers()[0]
    line = handler.handle_event(
        "okestra.cg.data.request.stop", {"a": 1}, {"message": "hi"}, definition
    )
    assert line.endswith("[INFO] okestra.cg.data.request.stop - metadata:a:1 - message:hi")
    assert line in capsys.readouterr().err


def test_handle_event_without_config_returns_none(capsys):
    handler = LogHandler("log-test")
    definition = handler.attach_handlers()[0]
    assert handler.handle_event("okestra.cg", {}, {}, definition) is None
    assert capsys.readouterr().err == ""


def test_handle_event_does_not_mutate_inputs(capsys):
    handler = LogHandler("log-test")
    definition = handler.attach_handlers()[0]
    metadata = _metadata()
    handler.handle_event("okestra.cg.data.request", {}, metadata, definition)
    assert metadata == _metadata()


def test_id_and_attach_handlers():
    handler = LogHandler("log-test")
    assert handler.id() == "log-test"
    definitions = handler.attach_handlers()
    assert definitions[0].name == NAME
    assert len(definitions[0].config) == 4


def test_default_config_kinds_and_levels():
    configs = default_log_handler_config()
    assert [c.event_kind for c in configs] == [
        EventKind.BASE,
        EventKind.START,
        EventKind.STOP,
        EventKind.ERROR,
    ]
    assert [c.log_level for c in configs] == [
        LogLevel.INFO,
        LogLevel.INFO,
        LogLevel.INFO,
        LogLevel.ERROR,
    ]


@pytest.mark.parametrize(
    "event,kind",
    [
        ("okestra.cg.data.request", EventKind.BASE),
        ("okestra.cg.data.request.start", EventKind.START),
        ("okestra.cg.data.request.stop", EventKind.STOP),
        ("okestra.cg.data.request.exception", EventKind.ERROR),
    ],
)
def test_get_event_kind_config(event, kind):
    definition = TelemetryEventDefinition(NAME, default_log_handler_config())
    assert get_event_kind_config(event, definition).event_kind == kind


def test_get_event_kind_config_no_match():
    definition = TelemetryEventDefinition(NAME, default_log_handler_config())
    assert get_event_kind_config("okestra.cg.data.request.error", definition) is None


class CustomHandler(LogHandler):
    def __init__(self, configs):
        super().__init__("custom")
        self._configs = configs

    def attach_handlers(self):
        return [TelemetryEventDefinition(NAME, self._configs)]


def test_omit_fields_and_converters(capsys):
    config = LogHandlerConfig(
        event_kind=EventKind.BASE,
        log_level=LogLevel.WARN,
        log_format="$level|$node|$metadata|$message",
        omit_fields=[
            OmitField(FieldKind.METADATA, "user"),
            OmitField(FieldKind.METADATA, "startedAt"),
        ],
        field_converters={
            "requestId": FieldConverterSpec(FieldKind.METADATA, lambda v: f"id-{v}"),
            "startedAt": FieldConverterSpec(FieldKind.METADATA, lambda v: "never"),
        },
    )
    handler = CustomHandler([config])
    line = handler.handle_event(
        "okestra.cg.data.request", {"startedAt": 5}, _metadata(), handler.attach_handlers()[0]
    )
    assert line == "WARNING|test|startedAt:5,requestId:id-123432|user created successfully."


def test_default_format_when_empty(capsys):
    handler = CustomHandler([LogHandlerConfig()])
    line = handler.handle_event(
        "okestra.cg.data.request", {}, {"message": "m"}, handler.attach_handlers()[0]
    )
    assert line.endswith("[INFO] okestra.cg.data.request -  m")