import logging
import threading
from collections.abc import Sequence
from enum import Enum
from typing import Protocol

from image_builder import state_bag as keys
from image_builder.errors import StepError
from image_builder.metrics import metrics
from image_builder.sanitize import sanitize_error
from image_builder.state_bag import StateBag


logger = logging.getLogger(__name__)


class StepAction(str, Enum):
    CONTINUE = "continue"
    HALT = "halt"


class Step:
    """One unit of the build pipeline.

    ``run`` returns HALT to stop the pipeline; the reason, if any, is left in
    the state bag under ``error``. ``cleanup`` is called for every step whose
    ``run`` was entered, in reverse order, and must tolerate partial state.
    """

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        raise NotImplementedError

    def cleanup(self, state: StateBag) -> None:
        return None


class RunObserver(Protocol):
    def step_started(self, step: str) -> None: ...

    def step_finished(self, step: str, action: StepAction) -> None: ...

    def step_cleaned(self, step: str, error: str | None) -> None: ...


def halt(state: StateBag, error: BaseException | str) -> StepAction:
    if isinstance(error, str):
        error = StepError(error)
    state.put_error(error)
    return StepAction.HALT


class Runner:
    def __init__(self, steps: Sequence[Step], observer: RunObserver | None = None):
        self.steps = list(steps)
        self.observer = observer
        self._cancel = threading.Event()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(
        self, state: StateBag, cancel: threading.Event | None = None
    ) -> StepAction:
        if cancel is not None:
            self._cancel = cancel
        return run_steps(self.steps, state, self._cancel, self.observer)


def run_steps(
    steps: Sequence[Step],
    state: StateBag,
    cancel: threading.Event,
    observer: RunObserver | None = None,
) -> StepAction:
    started: list[Step] = []
    action = StepAction.CONTINUE
    try:
        for step in steps:
            if cancel.is_set():
                state.put(keys.CANCELLED, True)
                action = StepAction.HALT
                logger.info("pipeline cancelled before step=%s", step.name)
                break

            started.append(step)
            _notify(observer, "step_started", step.name)
            try:
                action = step.run(cancel, state)
            except Exception as exc:  # noqa: BLE001
                logger.exception("step raised step=%s", step.name)
                state.put_error(StepError(f"{step.name}: {sanitize_error(exc)}"))
                action = StepAction.HALT
            _notify(observer, "step_finished", step.name, action)

            if action == StepAction.HALT:
                state.put(keys.HALTED, True)
                metrics.step_halted(step.name)
                logger.info("pipeline halted step=%s", step.name)
                break
            if cancel.is_set():
                state.put(keys.CANCELLED, True)
                action = StepAction.HALT
                logger.info("pipeline cancelled after step=%s", step.name)
                break
    finally:
        for step in reversed(started):
            cleanup_error: str | None = None
            try:
                step.cleanup(state)
            except Exception as exc:  # noqa: BLE001
                cleanup_error = sanitize_error(exc)
                metrics.inc("cleanup_errors_total")
                logger.warning(
                    "step cleanup failed step=%s error=%s", step.name, cleanup_error
                )
            _notify(observer, "step_cleaned", step.name, cleanup_error)
    return action


def _notify(observer: RunObserver | None, event: str, *args: object) -> None:
    if observer is None:
        return
    try:
        getattr(observer, event)(*args)
    except Exception as exc:  # noqa: BLE001
        logger.warning("run observer failed event=%s error=%s", event, exc)
