"""Thin facade over the framework's scheduler calls."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from ..errors import NativeCallError
from ..Log import Log
from ..Model.instances import ModelInstance, ModelReference
from .native import CmdStatus, FrameworkTable, SchedulerState

if TYPE_CHECKING:
    from loguru import Logger


class ModelLookup(Protocol):
    def instance(self, model: ModelReference | str) -> ModelInstance: ...


class Scheduler:
    """Drive the native scheduler through a bound :class:`FrameworkTable`.

    Every call returning a status is checked; a non-zero status raises
    :class:`NativeCallError` carrying the framework's last message when one
    is available.
    """

    def __init__(
        self,
        framework: FrameworkTable,
        models: ModelLookup,
        logger: "Logger | None" = None,
    ) -> None:
        self._framework = framework
        self._models = models
        self._logger = logger or Log().logger

    def initialize(self) -> None:
        self._check(self._framework.initialize(), "library_initialize")

    def shutdown(self) -> None:
        self._check(self._framework.shutdown(), "library_shutdown")

    def message(self) -> str:
        raw = self._framework.get_message()
        return raw.decode("utf-8", errors="replace") if raw else ""

    def name(self) -> str:
        self._check(self._framework.get_scheduler_name(), "get_scheduler_name")
        return self.message()

    def add_thread(self, frequency: float) -> None:
        if frequency <= 0:
            raise ValueError(f"Thread frequency must be positive, got {frequency}")
        self._check(self._framework.new_thread(float(frequency)), "new_thread")

    def schedule_model(
        self,
        model: ModelReference | str,
        thread: int,
        divisor: int = 1,
        offset: int = 0,
    ) -> None:
        """Hand ``model`` to ``thread``.

        The framework moves the object while scheduling it; the returned
        pointer replaces the instance's old one, which is never used again.
        """

        instance = self._models.instance(model)
        new_obj = self._framework.add_model(int(thread), instance.obj, int(divisor), int(offset))
        if not new_obj:
            raise NativeCallError(
                f"Call to `add_model` failed for {instance.name}: {self.message()}",
                model=instance.name,
                call="add_model",
            )
        instance.relocate(new_obj)
        self._logger.debug(f"Scheduled {instance.name} on thread {thread} (divisor {divisor}, offset {offset})")

    def init(self) -> None:
        self._check(self._framework.init_scheduler(), "init_scheduler")

    def step(self, steps: int = 1) -> None:
        if steps < 0:
            raise ValueError(f"Cannot step a negative number of frames: {steps}")
        self._check(self._framework.step_scheduler(int(steps)), "step_scheduler")

    def pause(self) -> None:
        self._check(self._framework.pause_scheduler(), "pause_scheduler")

    def run(self) -> None:
        self._check(self._framework.run_scheduler(), "run_scheduler")

    def end(self) -> None:
        self._check(self._framework.end_scheduler(), "end_scheduler")

    def state(self) -> SchedulerState:
        raw = int(self._framework.get_state())
        try:
            return SchedulerState(raw)
        except ValueError as exc:
            raise NativeCallError(f"Scheduler reported unknown state {raw}", status=raw) from exc

    def _check(self, status: int, call: str) -> None:
        if int(status) != CmdStatus.OK:
            message = self.message()
            detail = f": {message}" if message else ""
            raise NativeCallError(
                f"Call to `{call}` in framework library failed{detail}",
                call=call,
                status=int(status),
            )


__all__ = ["Scheduler"]
