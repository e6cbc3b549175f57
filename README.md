# okestra

Supervisors, process groups and telemetry for threaded Python services.
It uses only the standard library.

## What is in the package

- `okestra.pg` has `ProcessGroup`, a thread-safe registry of group owners
  and their members.
  - `join` adds a member and sends the owner a `CREATE` signal.
  - `leave` removes a member. If the owner `monitor`s that member, the owner
    receives the `PGSignal` that was passed to `leave`.
  - `remove_group` drops a group and sends every member a `MEMBER_KILLED`
    signal.
  - Operations on unknown owners or groups raise `PGError`.
  - Owner notifications go through an optional `dispatch` callable. By
    default they are called synchronously.
- `okestra.supervisor` has `Supervisor`. It starts children on background
  threads and follows the statuses each child reports.
  - A child that ends is handled by the `RestartStrategy`: `ALWAYS`,
    `TRANSIENT` or `NEVER`. `TRANSIENT` does not restart a child that left
    normally.
  - Retries are limited: `max_retries` within `retry_period` milliseconds.
    When the limit is reached, `FailStrategy.FAIL_ONE` only drops the child.
    `FAIL_ALL` also stops the supervisor.
  - A supervisor can be the child of another supervisor.
  - Failures raise `SupervisorError`.
- `okestra.telemetry` has `Telemetry`, also returned by
  `start_telemetry_server()`. It sends events to the handlers registered with
  it.
  - A handler is a subclass of `TelemetryHandler`.
  - A handler receives an event when one of its `TelemetryEventDefinition`
    names, joined with dots, equals the event. The name with `.start`,
    `.stop` or `.exception` added also matches.
  - `execute(event, callback)` wraps a callable that returns
    `(measurements, metadata)`. It emits `<event>.start` and `<event>.stop`.
    If the callable raises, it emits `<event>.exception` and re-raises.
  - With `use_threads=True`, handlers run on a thread pool. `close()` waits
    for them to finish.
- `okestra.log_handler` has `LogHandler`. It formats events named
  `okestra.cg.data.request`, and that name's start, stop and exception
  variants, and writes them with `okestra.log.log`.
  - The `LogHandlerConfig` entries from `default_log_handler_config()` set
    the level and pattern for each event kind.
- `okestra.formatter` has `Formatter`, which renders patterns such as
  `"$date $time [$level] $event - $metadata $message"`.
- `okestra.log` has `log(level, message)`. It writes a timestamped line to
  standard error, in a colour that depends on the `LogLevel`.

## Installation

```
pip install .
pip install ".[test]"   # with pytest
```

## Supervising a worker

A child is any object with `key()`, `start(supervisor)`, `stop()` and
`handle_signal(source, signal)`.

`start` returns the child's id and an iterable of `Status` values. The
supervisor reads this iterable on its own thread. Each status is handled as
follows:

- `RUNNING` and `STARTING` are recorded.
- `DONE` makes the child leave the group.
- Any other status counts as a failure.

```python
import queue

from okestra.pg import ProcessGroup
from okestra.supervisor import (
    RestartStrategy, Status, Supervisor, SupervisorEnv, SupervisorSpec,
)


class Worker:
    def __init__(self, name):
        self.name = name
        self.statuses = queue.Queue()

    def key(self):
        return self.name

    def start(self, supervisor):
        return self.name, iter(self.statuses.get, None)

    def stop(self):
        self.statuses.put(None)

    def handle_signal(self, source, signal):
        pass


spec = SupervisorSpec(
    name="workers",
    key="workers",
    restart_strategy=RestartStrategy.TRANSIENT,
    max_retries=3,
    retry_period=500,
    max_children=3,
    monitor_children=True,
)
sup = Supervisor(spec, SupervisorEnv(is_local=True), ProcessGroup())
sup.start()

worker = Worker("worker-1")
sup.start_child(worker)
# once the child has started:
print(sup.child_stats("worker-1").status)   # Status.RUNNING
print(sup.supervised_stats())

worker.statuses.put(Status.DONE)            # the child leaves; TRANSIENT does not restart it
```

Leave and fatal-error signals reach the supervisor only for monitored
children. The restart strategy acts on those signals. Set
`monitor_children=True` so that every child is monitored once it joins.

Stopping:

- `Supervisor.stop()` waits until every child's status iterable has ended.
- `stop_child(key)` calls the child's `stop()` and forgets it.
- If a `threading.Event` is passed as `cancel`, setting the event stops the
  supervisor.

## Telemetry

```python
from okestra.log_handler import LogHandler
from okestra.telemetry import start_telemetry_server

telemetry = start_telemetry_server()
telemetry.add_handler(LogHandler("console"))

telemetry.trigger_event(
    "okestra.cg.data.request",
    {"startedAt": 0},
    {"node": "local", "user": "demo", "message": "user created"},
)
telemetry.execute("okestra.cg.data.request", lambda: ({}, {"message": "done"}))
```

A `Supervisor` reports through the `Telemetry` it is given. It emits
`okestra.supervisor` around each child start and
`okestra.supervisor.state.error` when a child ends or fails. To record these
events, register a `TelemetryHandler` whose definitions name them.

## Formatting on its own

```python
from datetime import datetime
from okestra.formatter import Formatter, set_date, set_level, set_message, set_time
from okestra.log import LogLevel

f = Formatter()
f.compile_string("$date $time [$level] $message")
when = datetime(2023, 10, 10, 15, 30, 45)
print(f.format_string(set_date(when), set_time(when),
                      set_level(LogLevel.INFO), set_message("Hello, world!")))
# 2023-10-10 15:30:45 [INFO] Hello, world!
```

Unknown `$fields` render as empty strings.

## What it does not do

- There is no command-line program and no server. It is a library to use
  from your own code.
- Everything runs in one process. `SupervisorEnv.is_local` and `node_name`
  are plain values that you set. A supervisor that is not local refuses to
  start children.
- `SupervisorSpec.global_lock` and `supervisor_type` are stored but change
  nothing.
- Configuration is not read from environment variables. Telemetry threading
  is set through the arguments of `start_telemetry_server`.

## Running the tests

```
pytest
```