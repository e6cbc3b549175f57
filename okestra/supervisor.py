"""Supervisors that start children, watch their status and restart them."""

from __future__ import annotations

import queue
import threading
import time
from contextlib import suppress
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Iterator, Protocol

from okestra.pg import (
    PGError,
    PGSignal,
    PGSignalKillReason,
    PGSignalKind,
    PGSignalSendMode,
    PGSignalSource,
    ProcessGroup,
)
from okestra.telemetry import (
    SUPERVISOR_EVENT,
    SUPERVISOR_STATE_ERROR_EVENT,
    Telemetry,
    start_telemetry_server,
)


class FailStrategy(str, Enum):
    """What happens to the other children when one exhausts its retries."""

    FAIL_ONE = "failOne"
    FAIL_ALL = "failAll"


class RestartStrategy(str, Enum):
    """When a child that signalled its end is started again."""

    ALWAYS = "always"
    TRANSIENT = "transient"
    NEVER = "never"


class SupervisorType(str, Enum):
    """What a supervisor supervises."""

    SUPERVISOR = "supervisor"
    TASK = "task"


class Status(str, Enum):
    """Lifecycle state of a supervisor or a child."""

    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"
    DONE = "done"
    STARTING = "starting"


@dataclass
class SupervisorStats:
    """Counters describing a supervisor's children."""

    running: int = 0
    completed: int = 0
    failures: int = 0
    starting: int = 0
    status: Status | None = None


@dataclass
class ChildSpec:
    """Restart bookkeeping for one supervised child."""

    failure_count: int = 0
    retry_count: int = 0
    last_failure: datetime | None = None
    last_retry: datetime | None = None
    started_at: datetime | None = None
    status: Status = Status.RUNNING
    sub: Any = field(default=None, repr=False)


@dataclass
class SupervisorSpec:
    """How a supervisor behaves. ``retry_period`` is in milliseconds.

    A negative ``max_children`` means there is no limit.
    """

    name: str
    key: str
    fail_strategy: FailStrategy = FailStrategy.FAIL_ONE
    restart_strategy: RestartStrategy = RestartStrategy.NEVER
    supervisor_type: SupervisorType = SupervisorType.TASK
    max_retries: int = 0
    retry_period: int = 0
    global_lock: bool = False
    max_children: int = -1
    monitor_children: bool = False


@dataclass
class SupervisorEnv:
    """Where the supervisor runs."""

    is_local: bool = True
    node_name: str = ""


class SupervisorError(Exception):
    """A supervisor operation failed."""

    def __init__(self, op: str, err: BaseException | str, key: str) -> None:
        self.op = op
        self.err = err
        self.key = key
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"supervisor error: {self.err}"


class _Supervisable(Protocol):
    def key(self) -> str: ...

    def start(self, supervisor: str) -> tuple[str, Iterable[Status] | None]: ...

    def stop(self) -> Any: ...

    def handle_signal(self, source: str, signal: PGSignal) -> Any: ...


class _WaitGroup:
    def __init__(self) -> None:
        self._count = 0
        self._cond = threading.Condition()

    def add(self) -> None:
        with self._cond:
            self._count += 1

    def done(self) -> None:
        with self._cond:
            self._count -= 1
            if self._count <= 0:
                self._cond.notify_all()

    def wait(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._count <= 0)


class _StatusStream:
    """Statuses a supervised supervisor reports; iteration ends once closed."""

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: queue.Queue[Any] = queue.Queue()

    def send(self, status: Status) -> None:
        self._queue.put(status)

    def close(self) -> None:
        self._queue.put(self._CLOSED)

    def __iter__(self) -> Iterator[Status]:
        while True:
            item = self._queue.get()
            if item is self._CLOSED:
                self._queue.put(self._CLOSED)
                return
            yield item


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class Supervisor:
    """Starts children, follows the statuses they report and restarts them.

    ``cancel``, when given, stops the supervisor once the event is set.
    """

    def __init__(
        self,
        spec: SupervisorSpec,
        env: SupervisorEnv | None = None,
        pg: ProcessGroup | None = None,
        telemetry: Telemetry | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.spec = spec
        self.env = env if env is not None else SupervisorEnv()
        self.id = spec.key
        self._pg = pg if pg is not None else ProcessGroup()
        self._telemetry = telemetry if telemetry is not None else start_telemetry_server()
        self._cancel = cancel
        self._children: dict[str, ChildSpec] = {}
        self._supervisor_name = spec.key
        self._is_master = True
        self._status = Status.RUNNING
        self._stats = SupervisorStats()
        self._lock = threading.RLock()
        self._wg = _WaitGroup()
        self._status_stream: _StatusStream | None = None

    # lifecycle

    def start(self, supervisor_name: str = "") -> tuple[str, Iterable[Status] | None]:
        """Register the supervisor's group; a non-empty name makes it supervised."""
        if supervisor_name:
            self._supervisor_name = supervisor_name
            self._is_master = False
            self._status_stream = _StatusStream()

        if self._status is not Status.RUNNING:
            raise SupervisorError(
                "Start",
                f"supervisor is not running, status is {self._status.value}",
                self.id,
            )

        try:
            self._pg.register_group(self)
        except Exception as exc:
            self._status = Status.FAILED
            raise SupervisorError("Start", exc, self.id) from exc

        if self._cancel is not None:
            threading.Thread(
                target=self._stop_on_cancel, name=f"{self.id}-cancel", daemon=True
            ).start()

        return self.id, self._status_stream

    def _stop_on_cancel(self) -> None:
        assert self._cancel is not None
        self._cancel.wait()
        with suppress(PGError):
            self.stop()

    def stop(self) -> None:
        """Leave the process group, wait for child monitors and mark stopped."""
        self._pg.remove_group(self)
        self._wg.wait()
        with self._lock:
            self._status = Status.STOPPED
            self._children = {}
        if self._status_stream is not None:
            self._status_stream.close()

    # group owner interface

    def key(self) -> str:
        return self.id

    def is_local(self) -> bool:
        return self.env.is_local

    def node_name(self) -> str:
        return self.env.node_name

    def handle_signal(self, source: str, signal: PGSignal) -> None:
        """React to a child joining or leaving, or to the parent killing us."""
        stop_now = False
        monitor = False
        with self._lock:
            if not self._is_master and signal.reason is PGSignalKillReason.MEMBER_KILLED:
                stop_now = True
            else:
                child = self._children.get(source)
                if child is None:
                    raise SupervisorError("HandleSignal", "child not found", self.id)
                if signal.signal is PGSignalKind.CREATE:
                    monitor = self.spec.monitor_children
                else:
                    self._identify_restart_strategy(child, signal)
        if stop_now:
            self.stop()
        elif monitor:
            self._pg.monitor(self, source)

    # stats

    def children_stats(self) -> dict[str, ChildSpec]:
        with self._lock:
            return dict(self._children)

    def supervised_stats(self) -> SupervisorStats:
        with self._lock:
            return replace(self._stats, status=self._status)

    def child_stats(self, key: str) -> ChildSpec:
        with self._lock:
            child = self._children.get(key)
        if child is None:
            raise SupervisorError("ChildStats", "child not found", self.id)
        return child

    def update_status(self, status: Status) -> None:
        with self._lock:
            self._status = Status(status)

    # children

    def stop_child(self, key: str) -> None:
        """Stop the child ``key`` and stop supervising it."""
        with self._lock:
            child = self._children.get(key)
            if child is None:
                raise SupervisorError("StopChild", "child not found", self.id)
            child.sub.stop()
            self.remove_child(key)

    def start_child(self, child: _Supervisable) -> None:
        """Start ``child`` and follow its status in the background."""
        with self._lock:
            if child.key() in self._children:
                raise SupervisorError("StartChild", "child already exists", self.id)
            limit = self.spec.max_children
            if limit >= 0 and len(self._children) >= limit:
                raise SupervisorError("StartChild", "max children reached", self.id)
            self._do_start_child(child)

    def remove_child(self, name: str) -> None:
        """Forget the child ``name``, counting it as completed."""
        with self._lock:
            if name not in self._children:
                return
            self._stats.running -= 1
            self._stats.completed += 1
            del self._children[name]

    def _do_start_child(self, child: _Supervisable) -> None:
        if not self.is_local():
            raise SupervisorError("StartChild", "supervisor is not local", self.id)
        with self._lock:
            self._stats.starting += 1
        self._wg.add()
        threading.Thread(
            target=self._run_child,
            args=(child,),
            name=f"{self.id}-{child.key()}",
            daemon=True,
        ).start()

    def _run_child(self, child: _Supervisable) -> None:
        try:
            self._supervise(child)
        except Exception:
            with self._lock:
                self._stats.failures += 1
            with suppress(PGError, SupervisorError):
                self._pg.leave(
                    self.id,
                    child.key(),
                    PGSignal(
                        recipient_key=self.id,
                        signal=PGSignalKind.PANIC,
                        reason=PGSignalKillReason.FATAL_ERROR,
                        mode=PGSignalSendMode.UNICAST,
                        source=PGSignalSource.MEMBER,
                        source_key=child.key(),
                    ),
                )
        finally:
            self._wg.done()

    def _supervise(self, child: _Supervisable) -> None:
        key = child.key()
        measurements: dict[str, Any] = {}
        metadata: dict[str, Any] = {"child": key, "supervisor": self.id}
        stream: Iterable[Status] | None = None

        def launch() -> tuple[dict[str, Any], dict[str, Any]]:
            nonlocal stream
            child_id, stream = child.start(self.id)
            self._add_or_update_child_spec(child_id, child)
            with self._lock:
                self._stats.running += 1
                self._stats.starting -= 1
            self._pg.join(self.id, child)
            return measurements, metadata

        try:
            self._telemetry.execute(SUPERVISOR_EVENT, launch)
        except Exception:
            return

        for raw in stream or ():
            status = Status(raw)
            metadata["status"] = status
            with self._lock:
                spec = self._children.get(key)
                if spec is not None:
                    spec.status = status

            if status is Status.DONE:
                with suppress(PGError, SupervisorError):
                    self._pg.leave(
                        self.id,
                        key,
                        PGSignal(
                            recipient_key=self.id,
                            signal=PGSignalKind.NORMAL,
                            reason=PGSignalKillReason.LEAVE,
                            mode=PGSignalSendMode.UNICAST,
                            source=PGSignalSource.MEMBER,
                            source_key=key,
                        ),
                    )
                self._publish_error(SupervisorError("runningChild", "child done", key), metadata)
                return

            if status not in (Status.RUNNING, Status.STARTING):
                err = SupervisorError(status.value, f"child {status.value}", key)
                self._publish_error(err, metadata)
                raise err

            with self._lock:
                removed = key not in self._children
            if removed:
                child.stop()
                err = SupervisorError(
                    "runningChild", "child under supervision, has been removed", key
                )
                self._publish_error(err, metadata)
                raise err

        self._publish_error(SupervisorError("runningChild", "child stopped", key), metadata)

    def _add_or_update_child_spec(self, child_id: str, child: _Supervisable) -> None:
        now = datetime.now()
        with self._lock:
            spec = self._children.get(child_id)
            if spec is None:
                self._children[child_id] = ChildSpec(
                    status=Status.RUNNING, started_at=now, sub=child
                )
            else:
                spec.status = Status.RUNNING
                spec.started_at = now
                spec.last_retry = now

    def _identify_restart_strategy(self, child: ChildSpec, signal: PGSignal) -> None:
        strategy = self.spec.restart_strategy
        if strategy is RestartStrategy.ALWAYS:
            self._try_restart_child(child)
        elif strategy is RestartStrategy.TRANSIENT:
            if signal.reason is PGSignalKillReason.LEAVE:
                self.remove_child(child.sub.key())
                return
            self._try_restart_child(child)
        else:
            self.remove_child(child.sub.key())

    def _try_restart_child(self, child: ChildSpec) -> None:
        if self._has_maxed_out_retries(child):
            self._stats.failures += 1
            self._stats.completed += 1
            self.remove_child(child.sub.key())
            self._take_failure_action()
            raise SupervisorError(
                "IdentifyRestartStrategy",
                "max retries reached within set period",
                self.id,
            )
        child.last_failure = datetime.now()
        child.failure_count += 1
        child.retry_count += 1
        child.status = Status.FAILED
        self._do_start_child(child.sub)

    def _has_maxed_out_retries(self, child: ChildSpec) -> bool:
        if child.last_failure is None:
            return False
        elapsed_ms = (datetime.now() - child.last_failure).total_seconds() * 1000
        if elapsed_ms > self.spec.retry_period:
            child.failure_count = 0
            child.retry_count = 0
            return False
        return child.retry_count >= self.spec.max_retries

    def _take_failure_action(self) -> None:
        if self.spec.fail_strategy is FailStrategy.FAIL_ONE:
            return
        threading.Thread(target=self._stop_quietly, daemon=True).start()

    def _stop_quietly(self) -> None:
        with suppress(PGError):
            self.stop()

    def _publish_error(self, err: SupervisorError, metadata: dict[str, Any]) -> None:
        metadata["error"] = err
        self._telemetry.trigger_event(
            SUPERVISOR_STATE_ERROR_EVENT,
            {"occurredAt": _now_ms()},
            dict(metadata),
        )