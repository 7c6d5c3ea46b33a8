from __future__ import annotations

import ctypes

import pytest

from interRSIS.errors import NativeCallError
from interRSIS.Library.native import SchedulerState
from interRSIS.Library.scheduler import Scheduler


@pytest.fixture
def scheduler(framework, loader):
    return Scheduler(framework.table(), loader)


def test_lifecycle_calls_are_forwarded(scheduler, framework):
    scheduler.initialize()
    assert scheduler.state() is SchedulerState.CONFIG
    scheduler.init()
    assert scheduler.state() is SchedulerState.INITIALIZED
    scheduler.step(10)
    assert scheduler.state() is SchedulerState.PAUSED
    scheduler.run()
    assert scheduler.state() is SchedulerState.RUNNING
    scheduler.pause()
    scheduler.end()
    assert scheduler.state() is SchedulerState.ENDED
    scheduler.shutdown()

    assert framework.calls == [
        "initialize",
        "init_scheduler",
        "step_scheduler",
        "run_scheduler",
        "pause_scheduler",
        "end_scheduler",
        "shutdown",
    ]


def test_scheduler_name_comes_from_the_message_call(scheduler):
    assert scheduler.name() == "RealTimeScheduler"
    assert scheduler.message() == "RealTimeScheduler"


def test_failed_calls_carry_the_native_message(scheduler, framework):
    framework.fail.add("step_scheduler")
    with pytest.raises(NativeCallError, match="step_scheduler refused") as excinfo:
        scheduler.step()
    assert excinfo.value.status == 1
    assert excinfo.value.call == "step_scheduler"


def test_invalid_arguments(scheduler):
    with pytest.raises(ValueError):
        scheduler.add_thread(0.0)
    with pytest.raises(ValueError):
        scheduler.step(-1)


def test_unknown_state_is_an_error(scheduler, framework):
    framework.state = 42
    with pytest.raises(NativeCallError, match="unknown state 42"):
        scheduler.state()


def test_scheduling_relocates_the_model(scheduler, framework, loader, signals):
    ref = loader.create_model("Sat", "sat")
    signals.set(ref, "inputs.voltage", 4.5)
    old = loader.instance(ref).obj

    scheduler.add_thread(100.0)
    scheduler.schedule_model(ref, 0, divisor=2, offset=1)

    new = loader.instance(ref).obj
    assert new != old
    assert framework.scheduled == [(0, 2, 1)]
    assert ctypes.c_double.from_address(old).value == 0.0
    assert signals.get(ref, "inputs.voltage") == 4.5
    signals.set(ref, "inputs.voltage", 5.0)
    assert ctypes.c_double.from_address(new).value == 5.0


def test_failed_scheduling_keeps_the_pointer(scheduler, loader):
    ref = loader.create_model("Sat", "sat")
    old = loader.instance(ref).obj

    with pytest.raises(NativeCallError, match="Thread 3 does not exist"):
        scheduler.schedule_model(ref, 3)
    assert loader.instance(ref).obj == old
