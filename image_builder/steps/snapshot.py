import threading

from image_builder.runner import Step, StepAction
from image_builder.state_bag import StateBag
from image_builder.steps.common import fail, get_ui, get_vm


DEFAULT_SNAPSHOT_NAME = "Created by image-builder"


class StepCreateSnapshot(Step):
    def __init__(self, create_snapshot: bool, snapshot_name: str = ""):
        self.create_snapshot = create_snapshot
        self.snapshot_name = snapshot_name or DEFAULT_SNAPSHOT_NAME

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        if not self.create_snapshot:
            return StepAction.CONTINUE
        get_ui(state).say("Creating snapshot...")
        try:
            get_vm(state).create_snapshot(self.snapshot_name)
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc)
        return StepAction.CONTINUE


class StepConvertToTemplate(Step):
    def __init__(self, convert_to_template: bool):
        self.convert_to_template = convert_to_template

    def run(self, cancel: threading.Event, state: StateBag) -> StepAction:
        if not self.convert_to_template:
            return StepAction.CONTINUE
        get_ui(state).say("Converting virtual machine to template...")
        try:
            get_vm(state).convert_to_template()
        except Exception as exc:  # noqa: BLE001
            return fail(state, exc)
        return StepAction.CONTINUE
