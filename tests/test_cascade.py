from __future__ import annotations

import json
import os
import threading
import time
from concurrent.futures import Future
from pathlib import Path
from typing import List

import pytest

from flowcascade.engine import (
    Cascade,
    CascadeConfig,
    CascadeConnector,
    CascadeDef,
    CascadeError,
    CascadeListener,
    FileEndpoint,
    FunctionUnit,
    Identifier,
    NeverSkip,
    SpawnStrategy,
    Status,
    UnitError,
    UnitListener,
)
from flowcascade.engine import shutdown

TIMEOUT = 5.0


class Recorder(CascadeListener):
    def __init__(self, handle: bool = False) -> None:
        self.events: List[str] = []
        self.throwables: List[BaseException] = []
        self._handle = handle

    def on_starting(self, cascade):
        self.events.append("starting")

    def on_stopping(self, cascade):
        self.events.append("stopping")

    def on_completed(self, cascade):
        self.events.append("completed")

    def on_throwable(self, cascade, throwable):
        self.events.append("throwable")
        self.throwables.append(throwable)
        return self._handle


class ExplodingListener(CascadeListener):
    def on_starting(self, cascade):
        raise RuntimeError("listener exploded")


def _connect(*units, name=None, **config) -> Cascade:
    config.setdefault("shutdown_timeout", 10.0)
    return CascadeConnector(CascadeConfig(**config)).connect(*units, name=name)


def _recording(name, calls, sources=(), sinks=(), **kwargs) -> FunctionUnit:
    lock = threading.Lock()

    def run(unit):
        with lock:
            calls.append(unit.name)

    return FunctionUnit(name, run, sources, sinks, **kwargs)


def test_units_run_in_dependency_order():
    calls: List[str] = []
    a = _recording("A", calls, sinks=["/x"])
    b = _recording("B", calls, sources=["/x"], sinks=["/y"])
    c = _recording("C", calls, sources=["/y"], sinks=["/z"])
    cascade = _connect(c, b, a)

    cascade.complete()

    assert calls == ["A", "B", "C"]
    assert cascade.status is Status.SUCCESSFUL
    assert [unit.stats.status for unit in (a, b, c)] == [Status.SUCCESSFUL] * 3
    assert cascade.stats.counts()["successful"] == 3


def test_fan_in_waits_for_every_predecessor():
    a_done = threading.Event()
    b_done = threading.Event()
    seen = {}

    def slow_a(unit):
        time.sleep(0.1)
        a_done.set()

    def b(unit):
        b_done.set()

    def c(unit):
        seen["both"] = a_done.is_set() and b_done.is_set()

    cascade = _connect(
        FunctionUnit("A", slow_a, sinks=["/x"]),
        FunctionUnit("B", b, sinks=["/y"]),
        FunctionUnit("C", c, sources=["/x", "/y"]),
    )
    cascade.complete()

    assert seen == {"both": True}


def test_failure_aborts_downstream_units():
    calls: List[str] = []

    def explode(unit):
        raise RuntimeError("boom")

    a = FunctionUnit("A", explode, sinks=["/x"])
    b = _recording("B", calls, sources=["/x"], sinks=["/y"])
    recorder = Recorder()
    cascade = _connect(a, b)
    cascade.add_listener(recorder)

    with pytest.raises(UnitError) as excinfo:
        cascade.complete()

    assert excinfo.value.unit_name == "A"
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert calls == []
    assert cascade.status is Status.FAILED
    assert a.stats.status is Status.FAILED
    assert b.stats.status is Status.STOPPED
    assert recorder.events[0] == "starting"
    assert recorder.events[-1] == "completed"
    assert "throwable" in recorder.events
    assert isinstance(recorder.throwables[0], UnitError)


def test_first_failure_in_topological_order_is_reported():
    def fail_late(unit):
        time.sleep(0.2)
        raise RuntimeError("late")

    def fail_early(unit):
        raise RuntimeError("early")

    cascade = _connect(
        FunctionUnit("X", fail_late, sinks=["/x"]),
        FunctionUnit("Y", fail_early, sinks=["/y"]),
    )

    with pytest.raises(UnitError) as excinfo:
        cascade.complete()

    assert excinfo.value.unit_name == "X"


def test_handled_throwable_is_not_raised():
    def explode(unit):
        raise RuntimeError("boom")

    recorder = Recorder(handle=True)
    cascade = _connect(FunctionUnit("A", explode, sinks=["/x"]))
    cascade.add_listener(recorder)

    cascade.complete()

    assert cascade.status is Status.FAILED
    assert len(recorder.throwables) == 1


def test_independent_units_run_concurrently():
    barrier = threading.Barrier(2, timeout=TIMEOUT)

    def meet(unit):
        barrier.wait()

    cascade = _connect(
        FunctionUnit("left", meet, sinks=["/l"]),
        FunctionUnit("right", meet, sinks=["/r"]),
    )
    cascade.complete()

    assert cascade.status is Status.SUCCESSFUL


def _tracking_units(count: int, **kwargs) -> tuple[List[FunctionUnit], List[int]]:
    lock = threading.Lock()
    active = [0]
    peaks: List[int] = []

    def work(unit):
        with lock:
            active[0] += 1
            peaks.append(active[0])
        time.sleep(0.05)
        with lock:
            active[0] -= 1

    units = [FunctionUnit(f"u{i}", work, sinks=[f"/u{i}"], **kwargs) for i in range(count)]
    return units, peaks


def test_max_concurrent_units_bounds_parallelism():
    units, peaks = _tracking_units(3)
    cascade = CascadeConnector(CascadeConfig(shutdown_timeout=10.0)).connect_def(
        CascadeDef(name="bounded", units=units, max_concurrent_units=1)
    )

    cascade.complete()

    assert cascade.max_concurrent_units == 1
    assert len(peaks) == 3
    assert max(peaks) == 1


def test_config_max_concurrent_units_is_inherited():
    units, peaks = _tracking_units(3)
    cascade = _connect(*units, max_concurrent_units=1)

    cascade.complete()

    assert max(peaks) == 1


def test_several_local_units_run_one_at_a_time():
    units, peaks = _tracking_units(3, runs_locally=True)
    cascade = _connect(*units)

    cascade.complete()

    assert max(peaks) == 1


def _stale_files(tmp_path: Path) -> tuple[Path, Path]:
    source = tmp_path / "input.txt"
    sink = tmp_path / "output.txt"
    source.write_text("in", encoding="utf8")
    sink.write_text("out", encoding="utf8")
    now = time.time()
    os.utime(source, (now - 100, now - 100))
    os.utime(sink, (now - 10, now - 10))
    return source, sink


def test_up_to_date_unit_is_skipped_and_unblocks_downstream(tmp_path):
    source, sink = _stale_files(tmp_path)
    calls: List[str] = []
    a = _recording("A", calls, sources=[FileEndpoint(source)], sinks=[FileEndpoint(sink)])
    b = _recording("B", calls, sources=[FileEndpoint(sink)], sinks=["report"])
    cascade = _connect(a, b)

    cascade.complete()

    assert calls == ["B"]
    assert a.stats.status is Status.SKIPPED
    assert b.stats.status is Status.SUCCESSFUL
    assert cascade.status is Status.SUCCESSFUL
    assert [event["unit"] for event in cascade.logger.events("unit_skip")] == ["A"]


def test_cascade_skip_strategy_overrides_units(tmp_path):
    source, sink = _stale_files(tmp_path)
    calls: List[str] = []
    a = _recording("A", calls, sources=[FileEndpoint(source)], sinks=[FileEndpoint(sink)])
    cascade = _connect(a)

    assert cascade.set_skip_strategy(NeverSkip()) is None
    assert isinstance(cascade.skip_strategy, NeverSkip)
    cascade.complete()

    assert calls == ["A"]
    assert a.stats.status is Status.SUCCESSFUL


def test_stop_while_running_is_idempotent():
    started = threading.Event()
    calls: List[str] = []

    def wait_for_stop(unit):
        started.set()
        unit.wait_for_stop(TIMEOUT)

    a = FunctionUnit("A", wait_for_stop, sinks=["/x"])
    b = _recording("B", calls, sources=["/x"], sinks=["/y"])
    recorder = Recorder()
    cascade = _connect(a, b)
    cascade.add_listener(recorder)

    cascade.start()
    assert started.wait(TIMEOUT)
    cascade.stop()
    cascade.stop()
    cascade.complete()

    assert cascade.status is Status.STOPPED
    assert a.stats.status is Status.STOPPED
    assert calls == []
    assert recorder.events.count("stopping") == 1
    assert recorder.events[-1] == "completed"
    assert all(job.is_done() for job in cascade.jobs())


def test_stop_before_start_runs_nothing():
    calls: List[str] = []
    cascade = _connect(_recording("A", calls, sinks=["/x"]))

    cascade.stop()
    cascade.complete()

    assert calls == []
    assert cascade.status is Status.STOPPED


def test_listener_failure_stops_cascade():
    calls: List[str] = []
    recorder = Recorder()
    cascade = _connect(_recording("A", calls, sinks=["/x"]))
    bad = ExplodingListener()
    cascade.add_listener(bad)
    cascade.add_listener(recorder)

    cascade.complete()

    assert calls == []
    assert cascade.status is Status.STOPPED
    assert recorder.events == ["stopping", "starting", "completed"]
    failures = cascade.listener_failures
    assert len(failures) == 1
    assert failures[0].listener is bad
    assert failures[0].event == "on_starting"
    assert cascade.logger.events("listener_failed")


def test_add_and_remove_listener():
    cascade = _connect(_recording("A", [], sinks=["/x"]))
    recorder = Recorder()

    assert not cascade.has_listeners()
    cascade.add_listener(recorder)
    assert cascade.has_listeners()
    assert cascade.remove_listener(recorder) is True
    assert cascade.remove_listener(recorder) is False
    assert not cascade.has_listeners()


class ListeningIdentifier(Identifier):
    def __init__(self, identifier, recorder):
        super().__init__(identifier)
        self.recorder = recorder

    def as_listener(self):
        return self.recorder


def test_endpoint_listeners_are_registered():
    recorder = Recorder()
    sink = ListeningIdentifier("/listening", recorder)
    cascade = _connect(_recording("A", [], sinks=[sink]))

    assert cascade.has_listeners()
    cascade.complete()

    assert recorder.events == ["starting", "completed"]


class ImmediateFailureStrategy(SpawnStrategy):
    def __init__(self) -> None:
        self.started = False

    def start(self, owner, max_concurrency, jobs):
        self.started = True
        futures = []
        for _ in jobs:
            future: Future = Future()
            future.set_result(RuntimeError("spawn failure"))
            futures.append(future)
        return futures

    def is_shutdown(self, owner):
        return True

    def shutdown(self, owner, timeout):
        return None


def test_complete_wraps_foreign_failures():
    strategy = ImmediateFailureStrategy()
    connector = CascadeConnector(CascadeConfig(), spawn_strategy=strategy)
    cascade = connector.connect(_recording("A", [], sinks=["/x"]))

    with pytest.raises(CascadeError) as excinfo:
        cascade.complete()

    assert strategy.started
    assert not isinstance(excinfo.value, UnitError)
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert cascade.status is Status.FAILED


def test_finished_cascade_cannot_restart():
    calls: List[str] = []
    cascade = _connect(_recording("A", calls, sinks=["/x"]))

    cascade.complete()
    cascade.start()
    cascade.complete()

    assert calls == ["A"]
    assert cascade.stats.cleaned_up


def test_jobs_are_wired_to_predecessors():
    a = _recording("A", [], sinks=["/x"])
    b = _recording("B", [], sources=["/x"])
    cascade = _connect(a, b)

    cascade.complete()

    job_a, job_b = cascade.jobs()
    assert job_a.unit is a
    assert job_b.predecessors == [job_a]
    assert job_a.succeeded() and job_b.succeeded()


def test_unit_listener_can_handle_unit_failure():
    class Handler(UnitListener):
        def __init__(self):
            self.events = []

        def on_starting(self, unit):
            self.events.append("starting")

        def on_completed(self, unit):
            self.events.append("completed")

        def on_throwable(self, unit, throwable):
            self.events.append("throwable")
            return True

    def explode(unit):
        raise RuntimeError("boom")

    a = FunctionUnit("A", explode, sinks=["/x"])
    handler = Handler()
    a.add_listener(handler)
    cascade = _connect(a)

    cascade.complete()

    assert handler.events == ["starting", "throwable", "completed"]
    assert a.stats.status is Status.FAILED


def test_exit_hook_registered_only_while_running():
    seen = []

    def inspect(unit):
        seen.extend(shutdown.registered_hooks())

    a = FunctionUnit("A", inspect, sinks=["/x"], stop_on_exit=True)
    cascade = _connect(a)

    cascade.complete()

    assert [hook.__self__ for hook in seen] == [cascade]
    assert all(getattr(hook, "__self__", None) is not cascade for hook in shutdown.registered_hooks())


def test_run_log_written_as_json_lines(tmp_path):
    cascade = _connect(_recording("A", [], sinks=["/x"]), name="logged", log_dir=tmp_path / "logs", run_id="run-1")

    cascade.complete()

    log_path = tmp_path / "logs" / "run-1-logged.jsonl"
    assert cascade.logger.log_path == log_path
    events = [json.loads(line) for line in log_path.read_text(encoding="utf8").splitlines()]
    types = [event["type"] for event in events]
    for expected in ("cascade_start", "unit_start", "unit_end", "executor_shutdown", "cascade_end"):
        assert expected in types
    assert types.index("cascade_start") < types.index("unit_start") < types.index("cascade_end")
    cascade_end = [event for event in events if event["type"] == "cascade_end"][0]
    assert cascade_end["stats"]["status"] == "successful"

    summary = log_path.with_suffix(".md").read_text(encoding="utf8")
    assert "# Cascade Run Summary" in summary
    assert "| A | successful |" in summary


def test_banner_logged_once_per_process():
    first = _connect(_recording("first", [], sinks=["/first"]))
    first.complete()
    second = _connect(_recording("second", [], sinks=["/second"]))
    second.complete()

    assert second.logger.events("banner") == []


def _noop(unit):
    return None


class CleanupCounter(FunctionUnit):
    def __init__(self, *args, cleanup_error=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.cleanups = 0
        self._cleanup_error = cleanup_error

    def cleanup(self):
        self.cleanups += 1
        if self._cleanup_error is not None:
            raise self._cleanup_error


def test_skipped_unit_is_not_cleaned_up(tmp_path):
    source, sink = _stale_files(tmp_path)
    a = CleanupCounter("A", _noop, sources=[FileEndpoint(source)], sinks=[FileEndpoint(sink)])
    b = CleanupCounter("B", _noop, sources=[FileEndpoint(sink)], sinks=["report"])
    cascade = _connect(a, b)

    cascade.complete()

    assert a.stats.status is Status.SKIPPED
    assert a.cleanups == 0
    assert b.cleanups == 1
    assert [event["unit"] for event in cascade.logger.events("unit_end")] == ["A", "B"]


def test_system_exit_from_unit_fails_cascade():
    calls: List[str] = []

    def exits(unit):
        raise SystemExit(3)

    a = FunctionUnit("A", exits, sinks=["/x"])
    b = _recording("B", calls, sources=["/x"], sinks=["/y"])
    cascade = _connect(a, b)

    with pytest.raises(UnitError) as excinfo:
        cascade.complete()

    assert excinfo.value.unit_name == "A"
    assert isinstance(excinfo.value.__cause__, SystemExit)
    assert calls == []
    assert a.stats.status is Status.FAILED
    assert cascade.status is Status.FAILED


def test_cleanup_failure_fails_unit():
    calls: List[str] = []
    a = CleanupCounter("A", _noop, sinks=["/x"], cleanup_error=OSError("disk gone"))
    b = _recording("B", calls, sources=["/x"], sinks=["/y"])
    cascade = _connect(a, b)

    with pytest.raises(UnitError, match="unit failed: A") as excinfo:
        cascade.complete()

    assert isinstance(excinfo.value.__cause__, OSError)
    assert a.cleanups == 1
    assert a.stats.status is Status.FAILED
    assert cascade.status is Status.FAILED
    assert calls == []


def test_cleanup_failure_does_not_mask_unit_failure():
    def boom(unit):
        raise RuntimeError("boom")

    a = CleanupCounter("A", boom, sinks=["/x"], cleanup_error=OSError("disk gone"))
    cascade = _connect(a)

    with pytest.raises(UnitError) as excinfo:
        cascade.complete()

    cause = excinfo.value.__cause__
    assert isinstance(cause, RuntimeError) and str(cause) == "boom"
    assert a.cleanups == 1
    warnings = cascade.logger.events("warning")
    assert [event["error_type"] for event in warnings if event["source"] == "A"] == ["OSError"]


def test_concurrent_stops_shut_down_once():
    started = threading.Event()

    def wait_for_stop(unit):
        started.set()
        unit.wait_for_stop(TIMEOUT)

    recorder = Recorder()
    cascade = _connect(FunctionUnit("A", wait_for_stop, sinks=["/x"]))
    cascade.add_listener(recorder)
    barrier = threading.Barrier(2, timeout=TIMEOUT)

    def stop():
        barrier.wait()
        cascade.stop()

    cascade.start()
    assert started.wait(TIMEOUT)
    threads = [threading.Thread(target=stop) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(TIMEOUT)
    cascade.complete()

    assert cascade.status is Status.STOPPED
    assert recorder.events.count("stopping") == 1
    assert len(cascade.logger.events("executor_shutdown")) == 1


def test_unstarted_cascade_does_not_open_run_log(tmp_path):
    log_dir = tmp_path / "logs"
    cascade = _connect(_recording("A", [], sinks=["/x"]), name="idle", log_dir=log_dir, run_id="run-1")

    assert cascade.to_dot().startswith("digraph G {")
    assert not cascade.logger.is_writing
    assert not (log_dir / "run-1-idle.jsonl").exists()

    cascade.stop()
    cascade.complete()

    assert not cascade.logger.is_writing
    assert cascade.status is Status.STOPPED
    assert cascade.logger.events("cascade_start") == []
