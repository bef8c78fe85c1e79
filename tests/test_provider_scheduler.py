import io
import json
import threading

import pytest

from tfworkspace.provider_scheduler import (
    NoOpInUse,
    NoOpProviderScheduler,
    SharedProviderScheduler,
    WorkspaceProviderScheduler,
)
from tfworkspace.tferrors import RetryScheduleError, is_retry_schedule_error

NAME = "provider-test"


class FakeProcess:
    def __init__(self, output="", pipe_error=None):
        self.output = output
        self.pipe_error = pipe_error
        self.stopped = threading.Event()

    def stdout_pipe(self):
        if self.pipe_error is not None:
            raise self.pipe_error
        return io.StringIO(self.output)

    def start(self):
        pass

    def wait(self):
        self.stopped.wait()

    def stop(self):
        self.stopped.set()


class FakeExecutor:
    def __init__(self, pipe_error=None):
        self.pipe_error = pipe_error
        self.processes = []

    def command(self, path, args, env):
        n = len(self.processes)
        process = FakeProcess(f"1|5|unix|addr{n}|grpc|\n", self.pipe_error)
        self.processes.append(process)
        return process


def address(config):
    return json.loads(config)[NAME]["Addr"]["String"]


def shared(ttl, executor):
    return SharedProviderScheduler(
        ttl, runner_options={"executor": executor, "native_provider_name": NAME}
    )


def test_noop_scheduler():
    scheduler = NoOpProviderScheduler()
    in_use, config = scheduler.start("h1")
    assert config == ""
    assert isinstance(in_use, NoOpInUse)
    assert scheduler.stop("h1") is None


def test_shared_forks_once_per_handle():
    executor = FakeExecutor()
    scheduler = shared(10, executor)
    _, first = scheduler.start("h1")
    _, again = scheduler.start("h1")
    assert first == again
    assert len(executor.processes) == 1
    _, other = scheduler.start("h2")
    assert len(executor.processes) == 2
    assert address(other) != address(first)


def test_shared_keeps_runner_while_in_use_then_replaces_it():
    executor = FakeExecutor()
    scheduler = shared(1, executor)
    in_use, first = scheduler.start("h1")
    in_use.increment()
    _, reused = scheduler.start("h1")
    assert reused == first
    assert len(executor.processes) == 1
    in_use.decrement()
    _, replaced = scheduler.start("h1")
    assert len(executor.processes) == 2
    assert address(replaced) != address(first)
    assert executor.processes[0].stopped.wait(timeout=2)


def test_shared_reuse_budget_exceeded():
    executor = FakeExecutor()
    scheduler = shared(1, executor)
    in_use, _ = scheduler.start("h1")
    in_use.increment()
    in_use.increment()
    with pytest.raises(RetryScheduleError) as info:
        scheduler.start("h1")
    assert is_retry_schedule_error(info.value)
    assert info.value.invocation_count == 2
    assert info.value.ttl == 1


def test_shared_start_error_is_wrapped():
    boom = OSError("boom")
    scheduler = shared(10, FakeExecutor(pipe_error=boom))
    with pytest.raises(RuntimeError) as info:
        scheduler.start("h1")
    assert str(info.value).startswith("cannot start the shared provider runner for handle: h1")
    assert info.value.__cause__ is boom


def test_workspace_scheduler_stops_when_idle():
    executor = FakeExecutor()
    scheduler = WorkspaceProviderScheduler(
        runner_options={"executor": executor, "native_provider_name": NAME}
    )
    in_use, config = scheduler.start("h1")
    assert address(config) == "addr0"
    in_use.increment()
    scheduler.stop("h1")
    process = executor.processes[0]
    assert not process.stopped.wait(timeout=0.1)
    in_use.decrement()
    assert process.stopped.wait(timeout=2)


def test_workspace_scheduler_reuses_runner():
    executor = FakeExecutor()
    scheduler = WorkspaceProviderScheduler(
        runner_options={"executor": executor, "native_provider_name": NAME}
    )
    first_in_use, first = scheduler.start("h1")
    second_in_use, second = scheduler.start("h1")
    assert first == second
    assert first_in_use is second_in_use
    assert len(executor.processes) == 1


def test_workspace_in_use_cannot_go_negative():
    scheduler = WorkspaceProviderScheduler(
        runner_options={"executor": FakeExecutor(), "native_provider_name": NAME}
    )
    in_use, _ = scheduler.start("h1")
    with pytest.raises(ValueError):
        in_use.decrement()


def test_workspace_start_error_is_wrapped():
    boom = OSError("boom")
    scheduler = WorkspaceProviderScheduler(
        runner_options={"executor": FakeExecutor(pipe_error=boom)}
    )
    with pytest.raises(RuntimeError, match="cannot start a workspace provider runner") as info:
        scheduler.start("h1")
    assert info.value.__cause__ is boom