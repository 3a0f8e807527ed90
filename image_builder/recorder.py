import logging

from image_builder.db import session_scope
from image_builder.repositories import write_event
from image_builder.runner import StepAction


logger = logging.getLogger(__name__)


class EventRecorder:
    """Runner observer that persists step progress as build events."""

    def __init__(self, build_id: str):
        self.build_id = build_id

    def _write(self, event_type: str, payload: dict) -> None:
        with session_scope() as session:
            write_event(session, event_type, payload, self.build_id)

    def step_started(self, step: str) -> None:
        self._write("step.started", {"step": step})

    def step_finished(self, step: str, action: StepAction) -> None:
        if action == StepAction.HALT:
            logger.info("step halted step=%s build_id=%s", step, self.build_id)
            self._write("step.halted", {"step": step})
        else:
            self._write("step.finished", {"step": step})

    def step_cleaned(self, step: str, error: str | None) -> None:
        payload: dict = {"step": step}
        if error:
            payload["error"] = error
        self._write("step.cleanup", payload)
